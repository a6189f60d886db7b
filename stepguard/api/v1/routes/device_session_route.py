# stepguard/api/v1/routes/device_session_route.py

from typing import Optional

from fastapi import APIRouter, Depends, Request, Response, status

from stepguard.api.deps import api_throttle, auth_throttle, get_engine
from stepguard.core.policy import SensitiveAction
from stepguard.core.security import CurrentUser, get_current_user, get_device_session_id
from stepguard.db.models.device_session_model import DeviceSessionModel
from stepguard.schemas.device_session_schema import (
    DeviceSessionResponse,
    DeviceSessionsListResponse,
    RevokeAllResponse,
)
from stepguard.services.engine import DeviceTrustEngine
from stepguard.utils.device_utils import get_request_device

router = APIRouter(
    prefix="/device-sessions",
    tags=["Device Sessions"]
)

SESSION_COOKIE = "device_session_id"


def _serialize(engine: DeviceTrustEngine, session: DeviceSessionModel, current_session_id: Optional[str] = None) -> DeviceSessionResponse:
    level = engine.scorer.level(session.confidence_score).value
    return DeviceSessionResponse.from_model(session, level, current_session_id)


@router.post(
    "",
    response_model=DeviceSessionResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(auth_throttle)],
)
async def establish_device_session(
    request: Request,
    response: Response,
    current_user: CurrentUser = Depends(get_current_user),
    engine: DeviceTrustEngine = Depends(get_engine),
):
    """
    Open a device session for the signed-in user, scored against the
    devices they used before.

    The upstream session id and the login method come from the verified
    access token, never from the request body.
    """
    device = get_request_device(request)
    session = await engine.sessions.establish_session(
        current_user.id,
        device,
        login_method=current_user.login_method,
        session_id=current_user.session_id,
    )

    response.set_cookie(
        SESSION_COOKIE,
        session.id,
        max_age=engine.policy.session_max_age_days * 24 * 60 * 60,
        httponly=True,
        samesite="lax",
    )
    return _serialize(engine, session, session.id)


@router.get("", response_model=DeviceSessionsListResponse, dependencies=[Depends(api_throttle)])
async def list_device_sessions(
    request: Request,
    current_user: CurrentUser = Depends(get_current_user),
    engine: DeviceTrustEngine = Depends(get_engine),
):
    current_session_id = request.headers.get("X-Device-Session-Id") or request.cookies.get(SESSION_COOKIE)
    sessions = await engine.sessions.list_sessions(current_user.id)
    return {
        "sessions": [_serialize(engine, s, current_session_id) for s in sessions],
        "total": len(sessions),
    }


@router.get("/current", response_model=DeviceSessionResponse, dependencies=[Depends(api_throttle)])
async def get_current_device_session(
    current_user: CurrentUser = Depends(get_current_user),
    session_id: str = Depends(get_device_session_id),
    engine: DeviceTrustEngine = Depends(get_engine),
):
    session = await engine.sessions.get_session(session_id, current_user.id)
    await engine.sessions.touch(session.id)
    return _serialize(engine, session, session.id)


@router.post("/revoke-all", response_model=RevokeAllResponse, dependencies=[Depends(auth_throttle)])
async def revoke_all_other_device_sessions(
    current_user: CurrentUser = Depends(get_current_user),
    session_id: str = Depends(get_device_session_id),
    engine: DeviceTrustEngine = Depends(get_engine),
):
    await engine.step_up.require_fresh_verification(current_user.id, SensitiveAction.REVOKE_ALL_DEVICES, session_id)
    revoked = await engine.sessions.revoke_all_other_sessions(current_user.id, session_id)
    return {"revoked": revoked}


@router.post("/{target_session_id}/trust", response_model=DeviceSessionResponse, dependencies=[Depends(api_throttle)])
async def trust_device_session(
    target_session_id: str,
    current_user: CurrentUser = Depends(get_current_user),
    session_id: str = Depends(get_device_session_id),
    engine: DeviceTrustEngine = Depends(get_engine),
):
    await engine.step_up.require_fresh_verification(current_user.id, SensitiveAction.TRUST_DEVICE, session_id)
    session = await engine.sessions.promote(target_session_id, current_user.id)
    return _serialize(engine, session, session_id)


@router.delete("/{target_session_id}", dependencies=[Depends(auth_throttle)])
async def revoke_device_session(
    target_session_id: str,
    current_user: CurrentUser = Depends(get_current_user),
    session_id: str = Depends(get_device_session_id),
    engine: DeviceTrustEngine = Depends(get_engine),
):
    await engine.step_up.require_fresh_verification(current_user.id, SensitiveAction.REVOKE_DEVICE, session_id)
    await engine.sessions.revoke_session(target_session_id, current_user.id)
    return {"message": "Device session revoked"}
