# stepguard/services/account_event_service.py
"""
Account Event Ledger.

Append-only audit trail of security relevant transitions. Reads are
paginated newest first with a cursor on ``created_at``.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import DESCENDING

from stepguard.db.models.account_event_model import (
    DEFAULT_CATEGORIES,
    AccountEvent,
    AccountEventInDB,
    EventCategory,
    EventType,
)
from stepguard.db.mongodb import with_str_id
from stepguard.services.background_worker import BackgroundDispatcher

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 100


def _describe(event_type: EventType) -> str:
    return event_type.value.replace("_", " ").capitalize()


class AccountEventLedger:
    def __init__(self, db: AsyncIOMotorDatabase, dispatcher: BackgroundDispatcher):
        self.db = db
        self.dispatcher = dispatcher

    @staticmethod
    def build_event(
        user_id: str,
        event_type: EventType,
        device_session_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> AccountEvent:
        event_type = EventType(event_type)
        payload = dict(metadata or {})
        category = payload.get("category") or DEFAULT_CATEGORIES.get(event_type, EventCategory.INFO)
        payload["category"] = EventCategory(category).value
        payload.setdefault("description", _describe(event_type))

        return AccountEvent(
            user_id=user_id,
            event_type=event_type,
            device_session_id=device_session_id,
            metadata=payload,
        )

    async def append(
        self,
        user_id: str,
        event_type: EventType,
        device_session_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> str:
        """
        Insert one event and return its id. Raises on store failure.
        """
        event = self.build_event(user_id, event_type, device_session_id, metadata)
        result = await self.db.account_events.insert_one(event.model_dump(mode="python"))
        logger.info("Logged account event %s for user %s", event.event_type, user_id)
        return str(result.inserted_id)

    def record_event(
        self,
        user_id: str,
        event_type: EventType,
        device_session_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ):
        """
        Fire-and-forget append. The caller never waits for, or sees a
        failure of, the insert.
        """

        async def job():
            await self.append(user_id, event_type, device_session_id, metadata)

        self.dispatcher.submit(job, f"account event {EventType(event_type).value} for user {user_id}")

    async def list_events(
        self,
        user_id: str,
        cursor: Optional[datetime] = None,
        limit: int = 20,
    ) -> Tuple[List[AccountEventInDB], Optional[datetime]]:
        """
        Events for a user, newest first.

        Returns:
            tuple: (events, next_cursor) where next_cursor is None on the last page
        """
        limit = max(1, min(limit, MAX_PAGE_SIZE))
        query: Dict[str, Any] = {"user_id": user_id}
        if cursor is not None:
            query["created_at"] = {"$lt": cursor}

        # one extra row tells us whether another page exists
        docs = await self.db.account_events.find(query).sort("created_at", DESCENDING).limit(limit + 1).to_list(length=limit + 1)

        events = [AccountEventInDB.model_validate(with_str_id(doc)) for doc in docs[:limit]]
        next_cursor = events[-1].created_at if len(docs) > limit else None
        return events, next_cursor
