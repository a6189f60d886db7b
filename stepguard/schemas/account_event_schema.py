# stepguard/schemas/account_event_schema.py

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class AccountEventResponse(BaseModel):
    id: str = Field(..., alias="_id")
    event_type: str
    device_session_id: Optional[str] = None
    metadata: Dict[str, Any]
    created_at: datetime

    class Config:
        populate_by_name = True


class AccountEventsPage(BaseModel):
    events: List[AccountEventResponse]
    next_cursor: Optional[datetime] = None
