# stepguard/services/verification_code_service.py
"""
Verification Code Issuer & Validator.

Codes are numeric, drawn from ``secrets`` and stored only as a hash. Several
live codes may exist for one device session (resends); any unexpired one
validates, newest first. Consumption deletes the code with a conditional
delete, so of two concurrent submissions of the same code exactly one wins.
"""

import logging
import secrets
from datetime import datetime, timedelta
from typing import Optional, Tuple

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import DESCENDING

from stepguard.core.errors import CodeAlreadyConsumedError, InvalidCodeError
from stepguard.core.policy import DeviceTrustPolicy
from stepguard.core.security import hash_code, verify_code
from stepguard.db.models.account_event_model import EventType
from stepguard.db.models.verification_code_model import VerificationCodeModel
from stepguard.db.mongodb import UnitOfWork, session_kwargs
from stepguard.services.account_event_service import AccountEventLedger
from stepguard.services.alert_service import SecurityAlerter
from stepguard.services.device_session_service import DeviceSessionManager
from stepguard.utils.time_utils import utcnow

logger = logging.getLogger(__name__)


def generate_numeric_code(length: int) -> str:
    return "".join(str(secrets.randbelow(10)) for _ in range(length))


class VerificationCodeService:
    def __init__(
        self,
        db: AsyncIOMotorDatabase,
        policy: DeviceTrustPolicy,
        sessions: DeviceSessionManager,
        ledger: AccountEventLedger,
        alerter: SecurityAlerter,
        uow: Optional[UnitOfWork] = None,
    ):
        self.db = db
        self.policy = policy
        self.sessions = sessions
        self.ledger = ledger
        self.alerter = alerter
        self.uow = uow or UnitOfWork(None)

    async def issue_code(
        self,
        session_id: str,
        user_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Tuple[str, datetime]:
        """
        Create a new code for a live device session.

        Returns:
            tuple: (plain code, expires_at). The plain code is never stored.
        """
        now = now or utcnow()
        session = await self.sessions.get_session(session_id, user_id, now=now)

        code = generate_numeric_code(self.policy.code_length)
        record = VerificationCodeModel(
            device_session_id=session.id,
            code_hash=hash_code(code),
            created_at=now,
            expires_at=now + timedelta(minutes=self.policy.code_expiry_minutes),
        )
        await self.db.verification_codes.insert_one(record.model_dump(exclude={"id"}))

        logger.info("Issued verification code for device session %s", session.id)
        return code, record.expires_at

    async def send_code(self, session_id: str, user_id: str) -> datetime:
        """Issue a code and queue it for email delivery. Returns its expiry."""
        code, expires_at = await self.issue_code(session_id, user_id)
        self.alerter.alert(
            user_id,
            "Your device verification code",
            f"Enter this code to verify your device: {code}",
            {"expires_in_minutes": self.policy.code_expiry_minutes},
            transactional=True,
        )
        return expires_at

    async def _find_match(self, session_id: str, code: str, now: datetime) -> Optional[dict]:
        cursor = self.db.verification_codes.find(
            {"device_session_id": session_id, "expires_at": {"$gt": now}}
        ).sort("created_at", DESCENDING)

        for doc in await cursor.to_list(length=None):
            if verify_code(code, doc["code_hash"]):
                return doc
        return None

    async def consume_code(self, session_id: str, code: str, now: Optional[datetime] = None) -> bool:
        """
        Validate ``code`` for the session, delete it and mark the session verified.

        Raises ``InvalidCodeError`` when no live code matches and
        ``CodeAlreadyConsumedError`` when a concurrent request consumed the
        same code first. Both carry the same public detail.
        """
        now = now or utcnow()
        await self.sessions.get_session(session_id, now=now)

        match = await self._find_match(session_id, code, now)
        if match is None:
            logger.warning("Rejected verification code for device session %s", session_id)
            raise InvalidCodeError()

        async with self.uow.begin() as db_session:
            deleted = await self.db.verification_codes.find_one_and_delete(
                {"_id": match["_id"], "expires_at": {"$gt": now}},
                **session_kwargs(db_session),
            )
            if deleted is None:
                logger.warning("Verification code for device session %s was already consumed", session_id)
                raise CodeAlreadyConsumedError()

            try:
                await self.sessions.mark_verified(session_id, db_session=db_session, now=now)
            except Exception:
                # without a transaction, put the code back so the user is not locked out
                if db_session is None:
                    await self.db.verification_codes.insert_one(deleted)
                raise

        logger.info("Consumed verification code for device session %s", session_id)
        return True

    async def verify_device(
        self,
        session_id: str,
        code: str,
        user_id: Optional[str] = None,
    ):
        """Unknown-device login flow: consume a device code and log the verification."""
        session = await self.sessions.get_session(session_id, user_id)
        await self.consume_code(session_id, code)

        self.ledger.record_event(
            session.user_id,
            EventType.DEVICE_VERIFIED,
            session_id,
            {"device": session.device.model_dump()},
        )
