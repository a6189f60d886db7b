# stepguard/services/step_up_service.py
"""
Step-Up Verification Resolver.

Decides per (user, action, device session) whether a fresh identity check is
needed, which factors can satisfy it, and completes the check once the user
answers a challenge.

Factor preference: authenticator > sms > backup codes > password > device code.
Password and device code are only offered when no second factor is enrolled.
"""

import logging
from datetime import datetime
from typing import List, Optional

from stepguard.core.errors import (
    InvalidCodeError,
    MethodNotEnabledError,
    MisconfigurationError,
    NotFoundError,
    VerificationRequiredError,
)
from stepguard.core.policy import DeviceTrustPolicy, SensitiveAction, TWO_FACTOR_METHODS, VerificationMethod
from stepguard.db.models.account_event_model import EventType
from stepguard.db.models.device_session_model import DeviceSessionModel
from stepguard.db.mongodb import UnitOfWork
from stepguard.schemas.step_up_schema import (
    AuthenticatorFactor,
    BackupCodeFactor,
    DeviceCodeFactor,
    PasswordFactor,
    SmsFactor,
    VerificationFactor,
    VerificationRequirement,
)
from stepguard.services.account_event_service import AccountEventLedger
from stepguard.services.alert_service import SecurityAlerter
from stepguard.services.backup_code_service import BackupCodeService
from stepguard.services.device_session_service import DeviceSessionManager
from stepguard.services.identity_provider import IdentityProvider
from stepguard.services.verification_code_service import VerificationCodeService

logger = logging.getLogger(__name__)

FACTOR_TYPES = {
    "totp": VerificationMethod.AUTHENTICATOR,
    "phone": VerificationMethod.SMS,
}


def _action_label(action: SensitiveAction) -> str:
    return action.value.replace("_", " ")


class StepUpResolver:
    def __init__(
        self,
        policy: DeviceTrustPolicy,
        sessions: DeviceSessionManager,
        identity_provider: IdentityProvider,
        codes: VerificationCodeService,
        backup_codes: BackupCodeService,
        ledger: AccountEventLedger,
        alerter: SecurityAlerter,
        uow: Optional[UnitOfWork] = None,
    ):
        self.policy = policy
        self.sessions = sessions
        self.identity_provider = identity_provider
        self.codes = codes
        self.backup_codes = backup_codes
        self.ledger = ledger
        self.alerter = alerter
        self.uow = uow or UnitOfWork(None)

    # -----------------------------
    # AVAILABLE FACTORS
    # -----------------------------
    async def available_factors(self, user_id: str) -> List[VerificationFactor]:
        """
        Verification factors the user can answer right now, most preferred first.

        Identity provider failures propagate; no trust decision is guessed.
        """
        enrolled = await self.identity_provider.list_verified_factors(user_id)

        factors: List[VerificationFactor] = []

        totp = [f for f in enrolled if FACTOR_TYPES.get(f.factor_type) == VerificationMethod.AUTHENTICATOR]
        if totp and self.policy.is_enabled(VerificationMethod.AUTHENTICATOR):
            factors.append(AuthenticatorFactor(factor_id=totp[0].id))

        phone = [f for f in enrolled if FACTOR_TYPES.get(f.factor_type) == VerificationMethod.SMS]
        if phone and self.policy.is_enabled(VerificationMethod.SMS):
            factors.append(SmsFactor(factor_id=phone[0].id))

        has_two_factor = any(VerificationMethod(f.type) in TWO_FACTOR_METHODS for f in factors)

        if self.policy.is_enabled(VerificationMethod.BACKUP_CODES) and await self.backup_codes.has_backup_codes(user_id):
            factors.append(BackupCodeFactor())

        if not has_two_factor:
            if self.policy.is_enabled(VerificationMethod.PASSWORD):
                user = await self.identity_provider.get_user(user_id)
                if user.has_password:
                    factors.append(PasswordFactor())

            if self.policy.is_enabled(VerificationMethod.DEVICE_CODE):
                factors.append(DeviceCodeFactor())

        return factors

    # -----------------------------
    # RESOLVE
    # -----------------------------
    async def resolve_verification_requirement(
        self,
        user_id: str,
        action: SensitiveAction,
        session_id: str,
        now: Optional[datetime] = None,
    ) -> VerificationRequirement:
        """
        Parameters
        ----------
        user_id : str
            User attempting the action
        action : SensitiveAction
            Action type, looked up in the policy's action table
        session_id : str
            Device session the request came from
        now : Optional[datetime]
            Clock override for grace period checks

        Returns
        -------
        VerificationRequirement
            ``required=False`` when the action may proceed immediately

        Raises
        ------
        SessionNotFoundError
            Session is unknown, expired or owned by another user
        MisconfigurationError
            Verification is required but the account has no usable method
        """
        action = SensitiveAction(action)
        session = await self.sessions.get_session(session_id, user_id, now=now)
        action_policy = self.policy.for_action(action)

        if not action_policy.requires_fresh_verification:
            return VerificationRequirement(required=False)

        if not self.sessions.is_grace_period_expired(session, now):
            return VerificationRequirement(required=False)

        factors = await self.available_factors(user_id)
        if not factors:
            logger.error("User %s has no verification method for %s", user_id, action.value)
            raise MisconfigurationError()

        await self.sessions.flag_needs_verification(session.id)
        logger.info(
            "Step-up verification required for %s on session %s (default=%s)",
            action.value, session.id, factors[0].type,
        )

        if action_policy.alert_on_initiate:
            self.alerter.alert(
                user_id,
                f"Verification requested to {_action_label(action)}",
                f"Someone started to {_action_label(action)} on your account and was asked to verify their identity.",
                self._alert_context(session, action),
            )

        return VerificationRequirement(required=True, methods=factors, default=factors[0])

    async def require_fresh_verification(
        self,
        user_id: str,
        action: SensitiveAction,
        session_id: str,
    ) -> VerificationRequirement:
        """Gate for sensitive routes: raises ``VerificationRequiredError`` with the challenge set."""
        requirement = await self.resolve_verification_requirement(user_id, action, session_id)
        if requirement.required:
            raise VerificationRequiredError(requirement)
        return requirement

    # -----------------------------
    # CHALLENGE / COMPLETE
    # -----------------------------
    async def _check_factor_owner(self, user_id: str, factor_id: str):
        enrolled = await self.identity_provider.list_verified_factors(user_id)
        if not any(f.id == factor_id for f in enrolled):
            logger.warning("Factor %s is not a verified factor of user %s", factor_id, user_id)
            raise NotFoundError(detail="Verification factor not found")

    def _check_enabled(self, factor: VerificationFactor):
        if not self.policy.is_enabled(VerificationMethod(factor.type)):
            raise MethodNotEnabledError()

    async def start_challenge(self, user_id: str, session_id: str, factor: VerificationFactor) -> str:
        """
        Start an identity provider challenge (sends the SMS for phone factors).

        Only authenticator and SMS factors have challenges.
        """
        await self.sessions.get_session(session_id, user_id)
        self._check_enabled(factor)

        if not isinstance(factor, (AuthenticatorFactor, SmsFactor)):
            raise MethodNotEnabledError(detail="Verification method has no challenge")

        await self._check_factor_owner(user_id, factor.factor_id)
        return await self.identity_provider.challenge_factor(factor.factor_id)

    async def _verify_identity_factor(self, user_id: str, factor, code: str) -> bool:
        await self._check_factor_owner(user_id, factor.factor_id)
        challenge_id = factor.challenge_id
        if challenge_id is None and isinstance(factor, SmsFactor):
            # a new SMS challenge would send a code the user has not seen
            logger.warning("SMS verification for factor %s submitted without a challenge", factor.factor_id)
            return False
        if challenge_id is None:
            challenge_id = await self.identity_provider.challenge_factor(factor.factor_id)
        return await self.identity_provider.verify_factor_challenge(factor.factor_id, challenge_id, code)

    async def _verify_backup_code(self, user_id: str, session_id: str, code: str):
        async with self.uow.begin() as db_session:
            claimed = await self.backup_codes.claim_backup_code(user_id, code, db_session=db_session)
            if claimed is None:
                raise InvalidCodeError()

            try:
                await self.sessions.mark_verified(session_id, db_session=db_session)
            except Exception:
                # without a transaction, hand the code back so it is not burned
                if db_session is None:
                    await self.backup_codes.release_backup_code(claimed["_id"])
                raise

        await self.backup_codes.record_backup_code_use(user_id, session_id)

    async def complete_verification(
        self,
        user_id: str,
        session_id: str,
        action: SensitiveAction,
        factor: VerificationFactor,
        code: str,
    ) -> DeviceSessionModel:
        """
        Check the user's answer to a challenge and mark the session verified.

        Every failed answer raises ``InvalidCodeError`` whatever the method.
        """
        action = SensitiveAction(action)
        session = await self.sessions.get_session(session_id, user_id)
        self._check_enabled(factor)

        if isinstance(factor, (AuthenticatorFactor, SmsFactor)):
            if not await self._verify_identity_factor(user_id, factor, code):
                raise InvalidCodeError()
            await self.sessions.mark_verified(session.id)

        elif isinstance(factor, BackupCodeFactor):
            await self._verify_backup_code(user_id, session.id, code)

        elif isinstance(factor, PasswordFactor):
            if not await self.identity_provider.verify_password(user_id, code):
                raise InvalidCodeError()
            await self.sessions.mark_verified(session.id)

        elif isinstance(factor, DeviceCodeFactor):
            # consuming the code marks the session verified in the same unit of work
            await self.codes.consume_code(session.id, code)

        else:
            raise TypeError(f"Unhandled verification factor: {factor!r}")

        logger.info("Step-up verification for %s completed on session %s via %s", action.value, session.id, factor.type)

        self.ledger.record_event(
            user_id,
            EventType.SENSITIVE_ACTION_VERIFIED,
            session.id,
            {"action": action.value, "method": factor.type},
        )

        if self.policy.for_action(action).alert_on_complete:
            self.alerter.alert(
                user_id,
                f"Identity verified to {_action_label(action)}",
                f"Your identity was verified to {_action_label(action)} on your account.",
                self._alert_context(session, action),
            )

        return await self.sessions.get_session(session.id, user_id)

    @staticmethod
    def _alert_context(session: DeviceSessionModel, action: SensitiveAction) -> dict:
        return {
            "action": _action_label(action),
            "device": session.device.device_name,
            "browser": session.device.browser,
            "os": session.device.os,
            "ip_address": session.device.ip_address,
        }
