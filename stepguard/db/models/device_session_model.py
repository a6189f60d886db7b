# stepguard/db/models/device_session_model.py

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from stepguard.db.models.device_model import DeviceInfo
from stepguard.utils.time_utils import utcnow


class AccessLevel(str, Enum):
    RESTRICTED = "restricted"
    FULL = "full"


class VerificationLevel(str, Enum):
    UNVERIFIED = "unverified"
    VERIFIED = "verified"


class LoginMethod(str, Enum):
    PASSWORD = "password"
    OAUTH = "oauth"


class SessionState(str, Enum):
    UNVERIFIED = "unverified"
    VERIFIED = "verified"
    TRUSTED = "trusted"
    # Revoked sessions are deleted, so this state is never read back from the store
    REVOKED = "revoked"


class DeviceSessionModel(BaseModel):
    """
    Model for the device_sessions collection.

    ``id`` is the identity provider's session identifier, so revoking the
    record and invalidating the upstream session address the same thing.
    The device descriptor is embedded so confidence scoring needs no join.
    """

    id: str = Field(..., alias="_id")
    user_id: str
    device_id: str
    device: DeviceInfo

    confidence_score: int = Field(..., ge=0, le=100)
    access_level: AccessLevel = AccessLevel.RESTRICTED
    verification_level: VerificationLevel = VerificationLevel.UNVERIFIED
    is_trusted: bool = False
    needs_verification: bool = True

    created_at: datetime = Field(default_factory=utcnow)
    last_active: datetime = Field(default_factory=utcnow)
    last_verified: Optional[datetime] = None
    expires_at: datetime

    class Config:
        populate_by_name = True
        use_enum_values = True
        json_schema_extra = {
            "example": {
                "_id": "4d1c1b8e-4a43-4c44-9d0b-8a4b9d0f6c11",
                "user_id": "6932f0839e3c414dc16273a0",
                "device_id": "6932f0839e3c414dc16273b1",
                "device": {
                    "device_name": "Chrome on Windows",
                    "browser": "Chrome",
                    "os": "Windows 10",
                    "ip_address": "192.168.1.20",
                },
                "confidence_score": 85,
                "access_level": "full",
                "verification_level": "unverified",
                "is_trusted": True,
                "needs_verification": False,
                "created_at": "2025-12-13T10:30:00",
                "last_active": "2025-12-13T10:30:00",
                "last_verified": None,
                "expires_at": "2026-12-13T10:30:00",
            }
        }

    @property
    def state(self) -> SessionState:
        if self.is_trusted:
            return SessionState.TRUSTED
        if self.verification_level == VerificationLevel.VERIFIED:
            return SessionState.VERIFIED
        return SessionState.UNVERIFIED

    def to_document(self) -> dict:
        return self.model_dump(by_alias=True, mode="python")
