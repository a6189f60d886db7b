# stepguard/services/engine.py

from typing import Optional

from motor.motor_asyncio import AsyncIOMotorDatabase

from stepguard.core.policy import DeviceTrustPolicy
from stepguard.db.mongodb import UnitOfWork
from stepguard.services.account_event_service import AccountEventLedger
from stepguard.services.alert_service import SecurityAlerter
from stepguard.services.background_worker import BackgroundDispatcher
from stepguard.services.backup_code_service import BackupCodeService
from stepguard.services.device_session_service import DeviceSessionManager
from stepguard.services.email_service import EmailNotifier
from stepguard.services.identity_provider import IdentityProvider
from stepguard.services.step_up_service import StepUpResolver
from stepguard.services.verification_code_service import VerificationCodeService


class DeviceTrustEngine:
    """
    Wires the device trust services around one database, policy and set of
    collaborators. Built once at startup and stored on ``app.state``.
    """

    def __init__(
        self,
        db: AsyncIOMotorDatabase,
        policy: DeviceTrustPolicy,
        identity_provider: IdentityProvider,
        notifier: EmailNotifier,
        dispatcher: BackgroundDispatcher,
        uow: Optional[UnitOfWork] = None,
    ):
        self.db = db
        self.policy = policy
        self.identity_provider = identity_provider
        self.dispatcher = dispatcher

        self.ledger = AccountEventLedger(db, dispatcher)
        self.alerter = SecurityAlerter(identity_provider, notifier, dispatcher)
        self.sessions = DeviceSessionManager(db, policy, identity_provider, self.ledger, self.alerter, uow=uow)
        self.codes = VerificationCodeService(db, policy, self.sessions, self.ledger, self.alerter, uow=uow)
        self.backup_codes = BackupCodeService(db, policy, self.ledger)
        self.step_up = StepUpResolver(
            policy,
            self.sessions,
            identity_provider,
            self.codes,
            self.backup_codes,
            self.ledger,
            self.alerter,
            uow=uow,
        )

    @property
    def scorer(self):
        return self.sessions.scorer
