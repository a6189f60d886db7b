# stepguard/api/v1/routes/account_event_route.py

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query

from stepguard.api.deps import api_throttle, get_engine
from stepguard.core.security import CurrentUser, get_current_user
from stepguard.schemas.account_event_schema import AccountEventResponse, AccountEventsPage
from stepguard.services.engine import DeviceTrustEngine

router = APIRouter(prefix="/account-events", tags=["Account Events"])


@router.get("", response_model=AccountEventsPage, dependencies=[Depends(api_throttle)])
async def list_account_events(
    cursor: Optional[datetime] = Query(None, description="created_at of the last event on the previous page"),
    limit: int = Query(20, ge=1, le=100),
    current_user: CurrentUser = Depends(get_current_user),
    engine: DeviceTrustEngine = Depends(get_engine),
):
    events, next_cursor = await engine.ledger.list_events(current_user.id, cursor=cursor, limit=limit)
    return {
        "events": [
            AccountEventResponse(
                id=event.id,
                event_type=event.event_type,
                device_session_id=event.device_session_id,
                metadata=event.metadata,
                created_at=event.created_at,
            )
            for event in events
        ],
        "next_cursor": next_cursor,
    }
