# stepguard/schemas/device_session_schema.py

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel

from stepguard.db.models.device_model import DeviceInfo
from stepguard.db.models.device_session_model import (
    AccessLevel,
    DeviceSessionModel,
    SessionState,
    VerificationLevel,
)


class DeviceSessionResponse(BaseModel):
    id: str
    device_id: str
    device: DeviceInfo
    confidence_score: int
    confidence_level: str
    state: SessionState
    access_level: AccessLevel
    verification_level: VerificationLevel
    is_trusted: bool
    needs_verification: bool
    is_current: bool = False
    created_at: datetime
    last_active: datetime
    last_verified: Optional[datetime] = None
    expires_at: datetime

    @classmethod
    def from_model(cls, session: DeviceSessionModel, confidence_level: str, current_session_id: Optional[str] = None):
        return cls(
            id=session.id,
            device_id=session.device_id,
            device=session.device,
            confidence_score=session.confidence_score,
            confidence_level=confidence_level,
            state=session.state,
            access_level=session.access_level,
            verification_level=session.verification_level,
            is_trusted=session.is_trusted,
            needs_verification=session.needs_verification,
            is_current=session.id == current_session_id,
            created_at=session.created_at,
            last_active=session.last_active,
            last_verified=session.last_verified,
            expires_at=session.expires_at,
        )


class DeviceSessionsListResponse(BaseModel):
    sessions: List[DeviceSessionResponse]
    total: int


class RevokeAllResponse(BaseModel):
    revoked: int
