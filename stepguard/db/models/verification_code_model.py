# stepguard/db/models/verification_code_model.py

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from stepguard.utils.time_utils import utcnow


class VerificationCodeModel(BaseModel):
    """
    One-time device verification code.

    Only the hash of the code is stored. A record disappears when it is
    consumed; expired records are ignored by lookups and left in place.
    """

    id: Optional[str] = Field(None, alias="_id")
    device_session_id: str
    code_hash: str
    created_at: datetime = Field(default_factory=utcnow)
    expires_at: datetime

    class Config:
        populate_by_name = True


class BackupCodeModel(BaseModel):
    """Hashed recovery code. ``used_at`` is set exactly once."""

    id: Optional[str] = Field(None, alias="_id")
    user_id: str
    code_hash: str
    created_at: datetime = Field(default_factory=utcnow)
    used_at: Optional[datetime] = None

    class Config:
        populate_by_name = True
