# stepguard/db/models/device_model.py

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from stepguard.utils.time_utils import utcnow


class DeviceInfo(BaseModel):
    """
    Device descriptor as seen on a request.

    Identity is by value (name + browser + OS); ``ip_address`` is the address
    the device was seen from and does not take part in identity.
    """

    device_name: str
    browser: Optional[str] = None
    os: Optional[str] = None
    ip_address: Optional[str] = None

    class Config:
        frozen = True
        json_schema_extra = {
            "example": {
                "device_name": "Chrome on Windows",
                "browser": "Chrome",
                "os": "Windows 10",
                "ip_address": "192.168.1.20",
            }
        }

    def natural_key(self) -> dict:
        return {
            "device_name": self.device_name,
            "browser": self.browser,
            "os": self.os,
        }


class DeviceModel(BaseModel):
    """Model for the devices collection. Created on first sighting, never updated."""

    id: Optional[str] = Field(None, alias="_id")
    user_id: str
    device_name: str
    browser: Optional[str] = None
    os: Optional[str] = None
    ip_address: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)

    class Config:
        populate_by_name = True
