# stepguard/api/v1/routes/step_up_route.py

from fastapi import APIRouter, Depends

from stepguard.api.deps import auth_throttle, get_engine
from stepguard.core.security import CurrentUser, get_current_user, get_device_session_id
from stepguard.schemas.step_up_schema import (
    StepUpChallengeRequest,
    StepUpChallengeResponse,
    StepUpRequirementRequest,
    StepUpVerifyRequest,
    StepUpVerifyResponse,
    VerificationRequirement,
)
from stepguard.services.engine import DeviceTrustEngine

router = APIRouter(
    prefix="/step-up",
    tags=["Step-Up Verification"],
    dependencies=[Depends(auth_throttle)],
)


@router.post("/requirements", response_model=VerificationRequirement)
async def get_verification_requirement(
    payload: StepUpRequirementRequest,
    current_user: CurrentUser = Depends(get_current_user),
    session_id: str = Depends(get_device_session_id),
    engine: DeviceTrustEngine = Depends(get_engine),
):
    """
    Whether ``action`` needs a fresh identity check from this device, and
    which factors can satisfy it.
    """
    return await engine.step_up.resolve_verification_requirement(current_user.id, payload.action, session_id)


@router.post("/challenge", response_model=StepUpChallengeResponse)
async def start_challenge(
    payload: StepUpChallengeRequest,
    current_user: CurrentUser = Depends(get_current_user),
    session_id: str = Depends(get_device_session_id),
    engine: DeviceTrustEngine = Depends(get_engine),
):
    challenge_id = await engine.step_up.start_challenge(current_user.id, session_id, payload.factor)
    return {"challenge_id": challenge_id}


@router.post("/verify", response_model=StepUpVerifyResponse)
async def complete_verification(
    payload: StepUpVerifyRequest,
    current_user: CurrentUser = Depends(get_current_user),
    session_id: str = Depends(get_device_session_id),
    engine: DeviceTrustEngine = Depends(get_engine),
):
    session = await engine.step_up.complete_verification(
        current_user.id,
        session_id,
        payload.action,
        payload.factor,
        payload.code,
    )
    return {"verified": True, "device_session_id": session.id}
