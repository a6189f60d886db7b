# stepguard/api/v1/routes/backup_code_route.py

from fastapi import APIRouter, Depends

from stepguard.api.deps import auth_throttle, get_engine
from stepguard.core.policy import SensitiveAction
from stepguard.core.security import CurrentUser, get_current_user, get_device_session_id
from stepguard.schemas.backup_code_schema import BackupCodesResponse
from stepguard.services.engine import DeviceTrustEngine

router = APIRouter(prefix="/backup-codes", tags=["Backup Codes"])


@router.post("", response_model=BackupCodesResponse, dependencies=[Depends(auth_throttle)])
async def generate_backup_codes(
    current_user: CurrentUser = Depends(get_current_user),
    session_id: str = Depends(get_device_session_id),
    engine: DeviceTrustEngine = Depends(get_engine),
):
    await engine.step_up.require_fresh_verification(current_user.id, SensitiveAction.GENERATE_BACKUP_CODES, session_id)
    codes = await engine.backup_codes.generate_backup_codes(current_user.id)
    return {"codes": codes}
