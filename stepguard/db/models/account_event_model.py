# stepguard/db/models/account_event_model.py
"""
AccountEvent model for the append-only security ledger.

Records are inserted once and never updated or deleted.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field

from stepguard.utils.time_utils import utcnow


class EventType(str, Enum):
    # Security
    TWO_FACTOR_ENABLED = "2FA_ENABLED"
    TWO_FACTOR_DISABLED = "2FA_DISABLED"
    BACKUP_CODES_GENERATED = "BACKUP_CODES_GENERATED"
    BACKUP_CODE_USED = "BACKUP_CODE_USED"
    PASSWORD_CHANGED = "PASSWORD_CHANGED"
    EMAIL_CHANGED = "EMAIL_CHANGED"

    # Social providers
    SOCIAL_PROVIDER_CONNECTED = "SOCIAL_PROVIDER_CONNECTED"
    SOCIAL_PROVIDER_DISCONNECTED = "SOCIAL_PROVIDER_DISCONNECTED"

    # Devices
    NEW_DEVICE_LOGIN = "NEW_DEVICE_LOGIN"
    DEVICE_VERIFIED = "DEVICE_VERIFIED"
    DEVICE_TRUSTED = "DEVICE_TRUSTED"
    DEVICE_TRUSTED_AUTO = "DEVICE_TRUSTED_AUTO"
    DEVICE_REVOKED = "DEVICE_REVOKED"
    DEVICE_REVOKED_ALL = "DEVICE_REVOKED_ALL"
    SENSITIVE_ACTION_VERIFIED = "SENSITIVE_ACTION_VERIFIED"

    # Account
    ACCOUNT_CREATED = "ACCOUNT_CREATED"
    ACCOUNT_DELETED = "ACCOUNT_DELETED"
    PROFILE_UPDATED = "PROFILE_UPDATED"
    DATA_EXPORT_REQUESTED = "DATA_EXPORT_REQUESTED"


class EventCategory(str, Enum):
    SUCCESS = "success"
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"


# Category used when the caller does not pass one
DEFAULT_CATEGORIES = {
    EventType.TWO_FACTOR_ENABLED: EventCategory.SUCCESS,
    EventType.TWO_FACTOR_DISABLED: EventCategory.WARNING,
    EventType.BACKUP_CODES_GENERATED: EventCategory.SUCCESS,
    EventType.BACKUP_CODE_USED: EventCategory.WARNING,
    EventType.PASSWORD_CHANGED: EventCategory.WARNING,
    EventType.EMAIL_CHANGED: EventCategory.WARNING,
    EventType.SOCIAL_PROVIDER_CONNECTED: EventCategory.SUCCESS,
    EventType.SOCIAL_PROVIDER_DISCONNECTED: EventCategory.WARNING,
    EventType.NEW_DEVICE_LOGIN: EventCategory.INFO,
    EventType.DEVICE_VERIFIED: EventCategory.SUCCESS,
    EventType.DEVICE_TRUSTED: EventCategory.SUCCESS,
    EventType.DEVICE_TRUSTED_AUTO: EventCategory.INFO,
    EventType.DEVICE_REVOKED: EventCategory.WARNING,
    EventType.DEVICE_REVOKED_ALL: EventCategory.WARNING,
    EventType.SENSITIVE_ACTION_VERIFIED: EventCategory.SUCCESS,
    EventType.ACCOUNT_CREATED: EventCategory.SUCCESS,
    EventType.ACCOUNT_DELETED: EventCategory.WARNING,
    EventType.PROFILE_UPDATED: EventCategory.INFO,
    EventType.DATA_EXPORT_REQUESTED: EventCategory.INFO,
}


class AccountEvent(BaseModel):
    """Account event for MongoDB storage"""

    user_id: str
    event_type: EventType
    device_session_id: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utcnow)

    class Config:
        use_enum_values = True
        json_schema_extra = {
            "example": {
                "user_id": "6932f0839e3c414dc16273a0",
                "event_type": "DEVICE_VERIFIED",
                "device_session_id": "4d1c1b8e-4a43-4c44-9d0b-8a4b9d0f6c11",
                "metadata": {
                    "category": "success",
                    "description": "Device verified: Chrome on Windows 10",
                    "device": {"device_name": "Chrome on Windows", "browser": "Chrome"},
                },
                "created_at": "2025-12-13T10:30:00",
            }
        }


class AccountEventInDB(AccountEvent):
    """Account event with MongoDB _id"""

    id: Optional[str] = Field(None, alias="_id")

    class Config:
        populate_by_name = True
