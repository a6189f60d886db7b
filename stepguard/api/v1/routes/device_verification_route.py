# stepguard/api/v1/routes/device_verification_route.py

from fastapi import APIRouter, Depends

from stepguard.api.deps import auth_throttle, get_engine
from stepguard.core.security import CurrentUser, get_current_user
from stepguard.schemas.device_verification_schema import (
    SendCodeRequest,
    SendCodeResponse,
    VerifyDeviceRequest,
)
from stepguard.services.engine import DeviceTrustEngine

router = APIRouter(
    prefix="/device-verification",
    tags=["Device Verification"],
    dependencies=[Depends(auth_throttle)],
)


@router.post("/send-code", response_model=SendCodeResponse)
async def send_device_code(
    payload: SendCodeRequest,
    current_user: CurrentUser = Depends(get_current_user),
    engine: DeviceTrustEngine = Depends(get_engine),
):
    """Email a one-time code that verifies the given device session."""
    expires_at = await engine.codes.send_code(payload.device_session_id, current_user.id)
    return {"expires_at": expires_at}


@router.post("/verify")
async def verify_device(
    payload: VerifyDeviceRequest,
    current_user: CurrentUser = Depends(get_current_user),
    engine: DeviceTrustEngine = Depends(get_engine),
):
    await engine.codes.verify_device(payload.device_session_id, payload.code, current_user.id)
    return {"message": "Device verified successfully"}
