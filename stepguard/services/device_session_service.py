# stepguard/services/device_session_service.py
"""
Device Session Lifecycle Manager.

State machine per device session:

    create ──> Trusted      (confidence >= high threshold)
           └─> Unverified   (otherwise)
    Unverified ── verify ──> Verified ── promote ──> Trusted
    any ── revoke ──> Revoked (record deleted, upstream session invalidated)

Unknown, expired and foreign session ids all resolve to
``SessionNotFoundError`` so no caller can skip a check by passing a bad id.
"""

import logging
import uuid
from datetime import datetime, timedelta
from typing import List, Optional

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import DESCENDING, ReturnDocument
from pymongo.errors import DuplicateKeyError

from stepguard.core.device_confidence import DeviceConfidenceScorer
from stepguard.core.errors import ConflictError, SessionNotFoundError
from stepguard.core.policy import DeviceTrustPolicy
from stepguard.db.models.account_event_model import EventType
from stepguard.db.models.device_model import DeviceInfo
from stepguard.db.models.device_session_model import (
    AccessLevel,
    DeviceSessionModel,
    LoginMethod,
    VerificationLevel,
)
from stepguard.db.mongodb import UnitOfWork, session_kwargs
from stepguard.services.account_event_service import AccountEventLedger
from stepguard.services.alert_service import SecurityAlerter
from stepguard.services.identity_provider import IdentityProvider
from stepguard.utils.time_utils import utcnow

logger = logging.getLogger(__name__)


def _device_metadata(device: DeviceInfo) -> dict:
    return {"device": device.model_dump()}


class DeviceSessionManager:
    def __init__(
        self,
        db: AsyncIOMotorDatabase,
        policy: DeviceTrustPolicy,
        identity_provider: IdentityProvider,
        ledger: AccountEventLedger,
        alerter: SecurityAlerter,
        uow: Optional[UnitOfWork] = None,
        scorer: Optional[DeviceConfidenceScorer] = None,
    ):
        self.db = db
        self.policy = policy
        self.identity_provider = identity_provider
        self.ledger = ledger
        self.alerter = alerter
        self.uow = uow or UnitOfWork(None)
        self.scorer = scorer or DeviceConfidenceScorer(policy)

    # -----------------------------
    # DEVICES
    # -----------------------------
    async def find_or_create_device(self, user_id: str, device: DeviceInfo) -> str:
        """
        Device record id for (user, name, browser, os), created on first sighting.

        A single upsert so two concurrent first logins cannot create duplicates.
        """
        key = {"user_id": user_id, **device.natural_key()}
        doc = await self.db.devices.find_one_and_update(
            key,
            {"$setOnInsert": {"ip_address": device.ip_address, "created_at": utcnow()}},
            upsert=True,
            return_document=ReturnDocument.AFTER,
        )
        return str(doc["_id"])

    # -----------------------------
    # CREATE
    # -----------------------------
    async def create_session(
        self,
        user_id: str,
        device: DeviceInfo,
        confidence_score: int,
        session_id: Optional[str] = None,
        trust_reason: str = "confidence",
    ) -> DeviceSessionModel:
        """
        Persist a new device session in its initial state.

        Parameters
        ----------
        user_id : str
            Owner of the session
        device : DeviceInfo
            Device the session was opened from
        confidence_score : int
            Score from the confidence scorer (0-100)
        session_id : Optional[str]
            Identity provider session id; a random id is used when absent
        trust_reason : str
            Recorded on the auto-trust event when the session starts trusted

        Returns
        -------
        DeviceSessionModel
            The stored session
        """
        device_id = await self.find_or_create_device(user_id, device)

        now = utcnow()
        trusted = confidence_score >= self.policy.high_confidence_threshold
        session = DeviceSessionModel(
            id=session_id or str(uuid.uuid4()),
            user_id=user_id,
            device_id=device_id,
            device=device,
            confidence_score=confidence_score,
            access_level=AccessLevel.FULL if trusted else AccessLevel.RESTRICTED,
            verification_level=VerificationLevel.UNVERIFIED,
            is_trusted=trusted,
            needs_verification=not trusted,
            created_at=now,
            last_active=now,
            expires_at=now + timedelta(days=self.policy.session_max_age_days),
        )
        try:
            await self.db.device_sessions.insert_one(session.to_document())
        except DuplicateKeyError:
            logger.warning("Device session %s already exists, refusing to create it for user %s", session.id, user_id)
            raise ConflictError(detail="Device session already exists")

        logger.info(
            "Created device session %s for user %s (confidence=%s, state=%s)",
            session.id, user_id, confidence_score, session.state.value,
        )

        self.ledger.record_event(
            user_id,
            EventType.NEW_DEVICE_LOGIN,
            session.id,
            {**_device_metadata(device), "confidence_score": confidence_score},
        )
        if trusted:
            self.ledger.record_event(
                user_id,
                EventType.DEVICE_TRUSTED_AUTO,
                session.id,
                {**_device_metadata(device), "reason": trust_reason},
            )

        return session

    async def establish_session(
        self,
        user_id: str,
        device: DeviceInfo,
        login_method: LoginMethod = LoginMethod.PASSWORD,
        session_id: Optional[str] = None,
    ) -> DeviceSessionModel:
        """
        Score the device against the user's history and open a session.

        An account with no sessions yet scores 100 and OAuth logins score the
        configured OAuth confidence; everything else is scored by best match
        against prior sessions.
        """
        login_method = LoginMethod(login_method)
        prior_sessions = await self.list_sessions(user_id)

        if not prior_sessions:
            score, reason = self.scorer(device, prior_sessions), "new_account"
        elif login_method == LoginMethod.OAUTH:
            score, reason = self.policy.oauth_confidence_score, "oauth"
        else:
            score, reason = self.scorer(device, prior_sessions), "confidence"

        session = await self.create_session(
            user_id,
            device,
            score,
            session_id=session_id,
            trust_reason=reason,
        )

        if (
            self.policy.alert_on_unknown_device_login
            and prior_sessions
            and score < self.policy.unknown_device_alert_threshold
        ):
            self.alerter.alert(
                user_id,
                "New sign-in from an unrecognized device",
                "Your account was signed in from a device we have not seen before. "
                "If this was not you, revoke the session and change your password.",
                {
                    "device": device.device_name,
                    "browser": device.browser,
                    "os": device.os,
                    "ip_address": device.ip_address,
                    "confidence_score": score,
                },
            )

        return session

    # -----------------------------
    # READ
    # -----------------------------
    async def get_session(
        self,
        session_id: str,
        user_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> DeviceSessionModel:
        """Load a live session, optionally checking its owner. Fails closed."""
        now = now or utcnow()
        doc = await self.db.device_sessions.find_one({"_id": session_id})

        if doc is None:
            logger.warning("Device session %s not found", session_id)
            raise SessionNotFoundError()

        session = DeviceSessionModel.model_validate(doc)
        if user_id is not None and session.user_id != user_id:
            logger.warning("Device session %s does not belong to user %s", session_id, user_id)
            raise SessionNotFoundError()

        if session.expires_at <= now:
            logger.warning("Device session %s expired at %s", session_id, session.expires_at)
            raise SessionNotFoundError()

        return session

    async def list_sessions(self, user_id: str) -> List[DeviceSessionModel]:
        """Live sessions for a user, most recently active first."""
        cursor = self.db.device_sessions.find(
            {"user_id": user_id, "expires_at": {"$gt": utcnow()}}
        ).sort("last_active", DESCENDING)
        docs = await cursor.to_list(length=None)
        return [DeviceSessionModel.model_validate(doc) for doc in docs]

    # -----------------------------
    # UPDATE
    # -----------------------------
    async def touch(self, session_id: str):
        result = await self.db.device_sessions.update_one(
            {"_id": session_id},
            {"$set": {"last_active": utcnow()}},
        )
        if result.matched_count == 0:
            raise SessionNotFoundError()

    async def mark_verified(self, session_id: str, db_session=None, now: Optional[datetime] = None):
        """
        Move a session to Verified and restart its grace period.

        ``db_session`` binds the write to an open transaction.
        """
        now = now or utcnow()
        result = await self.db.device_sessions.update_one(
            {"_id": session_id, "expires_at": {"$gt": now}},
            {
                "$set": {
                    "verification_level": VerificationLevel.VERIFIED.value,
                    "access_level": AccessLevel.FULL.value,
                    "needs_verification": False,
                    "last_verified": now,
                    "last_active": now,
                }
            },
            **session_kwargs(db_session),
        )
        if result.matched_count == 0:
            raise SessionNotFoundError()

        logger.info("Device session %s verified", session_id)

    async def flag_needs_verification(self, session_id: str):
        await self.db.device_sessions.update_one(
            {"_id": session_id},
            {"$set": {"needs_verification": True}},
        )

    async def promote(self, session_id: str, user_id: str) -> DeviceSessionModel:
        """Explicit "trust this device". Only a verified session can be promoted."""
        session = await self.get_session(session_id, user_id)
        if session.is_trusted:
            return session

        if session.verification_level != VerificationLevel.VERIFIED.value:
            raise ConflictError(detail="Device must be verified before it can be trusted")

        doc = await self.db.device_sessions.find_one_and_update(
            {"_id": session_id},
            {"$set": {"is_trusted": True, "access_level": AccessLevel.FULL.value}},
            return_document=ReturnDocument.AFTER,
        )
        if doc is None:
            raise SessionNotFoundError()

        logger.info("Device session %s promoted to trusted", session_id)
        self.ledger.record_event(user_id, EventType.DEVICE_TRUSTED, session_id, _device_metadata(session.device))
        return DeviceSessionModel.model_validate(doc)

    # -----------------------------
    # GRACE PERIOD
    # -----------------------------
    def is_grace_period_expired(self, session: DeviceSessionModel, now: Optional[datetime] = None) -> bool:
        """
        True when the session must re-verify before a fresh-verification action.

        A session that has never been verified is expired unless it was
        created trusted.
        """
        now = now or utcnow()
        if session.last_verified is None:
            return not session.is_trusted
        return now - session.last_verified > timedelta(minutes=self.policy.grace_period_minutes)

    async def check_grace_period(
        self,
        session_id: str,
        now: Optional[datetime] = None,
        user_id: Optional[str] = None,
    ) -> bool:
        session = await self.get_session(session_id, user_id, now=now)
        return self.is_grace_period_expired(session, now)

    # -----------------------------
    # REVOKE
    # -----------------------------
    async def _revoke(self, session: DeviceSessionModel):
        # Upstream first: if it fails the local record must survive
        await self.identity_provider.invalidate_session(session.id)

        async with self.uow.begin() as db_session:
            await self.db.verification_codes.delete_many(
                {"device_session_id": session.id}, **session_kwargs(db_session)
            )
            await self.db.device_sessions.delete_one({"_id": session.id}, **session_kwargs(db_session))

        logger.info("Device session %s revoked", session.id)

    async def revoke_session(self, session_id: str, user_id: str):
        """
        Revoke one session: invalidate it at the identity provider, then delete
        it and its verification codes. Raises ``UpstreamFailure`` without
        touching local state when the identity provider call fails.
        """
        session = await self.get_session(session_id, user_id)
        await self._revoke(session)

        self.ledger.record_event(user_id, EventType.DEVICE_REVOKED, session_id, _device_metadata(session.device))
        self.alerter.alert(
            user_id,
            "A device was removed from your account",
            f"The session on {session.device.device_name} was signed out.",
            {"device": session.device.device_name, "browser": session.device.browser, "os": session.device.os},
        )

    async def revoke_all_other_sessions(self, user_id: str, current_session_id: str) -> int:
        """
        Revoke every live session of the user except the current one.

        Returns the number of sessions revoked. Stops at the first upstream
        failure; sessions revoked before it stay revoked.
        """
        # the caller must itself hold a live session
        await self.get_session(current_session_id, user_id)

        revoked = 0
        for session in await self.list_sessions(user_id):
            if session.id == current_session_id:
                continue
            await self._revoke(session)
            revoked += 1
            self.ledger.record_event(
                user_id,
                EventType.DEVICE_REVOKED_ALL,
                session.id,
                _device_metadata(session.device),
            )

        if revoked:
            self.alerter.alert(
                user_id,
                "All other devices were signed out",
                f"{revoked} other session(s) on your account were signed out.",
                {"sessions_revoked": revoked},
            )
        return revoked
