# stepguard/schemas/device_verification_schema.py

from datetime import datetime

from pydantic import BaseModel, Field


class SendCodeRequest(BaseModel):
    device_session_id: str


class SendCodeResponse(BaseModel):
    message: str = "Verification code sent"
    expires_at: datetime


class VerifyDeviceRequest(BaseModel):
    device_session_id: str
    code: str = Field(..., min_length=1, max_length=32)
