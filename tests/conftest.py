"""
Shared fixtures: an in-memory Mongo database, in-test fakes for the
identity provider and notifier, and a fully wired engine.
"""

from typing import Dict, List

import pytest
from mongomock_motor import AsyncMongoMockClient

from stepguard.core.errors import UpstreamFailure
from stepguard.core.policy import DeviceTrustPolicy
from stepguard.db.models.device_model import DeviceInfo
from stepguard.services.background_worker import BackgroundDispatcher
from stepguard.services.engine import DeviceTrustEngine
from stepguard.services.identity_provider import IdentityFactor, IdentityProvider, IdentityUser


class FakeIdentityProvider(IdentityProvider):
    """
    In-memory identity provider.

    ``factor_codes`` maps factor id to the code its challenge accepts.
    Set ``fail_invalidate`` / ``fail_factors`` to simulate an outage.
    """

    def __init__(self):
        self.users: Dict[str, IdentityUser] = {}
        self.factors: Dict[str, List[IdentityFactor]] = {}
        self.factor_codes: Dict[str, str] = {}
        self.passwords: Dict[str, str] = {}
        self.challenges: Dict[str, str] = {}
        self.invalidated: List[str] = []
        self.fail_invalidate = False
        self.fail_factors = False

    def add_user(self, user_id: str, password: str = None):
        self.users[user_id] = IdentityUser(
            id=user_id,
            email=f"{user_id}@example.com",
            email_verified=True,
            has_password=password is not None,
        )
        if password is not None:
            self.passwords[user_id] = password

    def enroll(self, user_id: str, factor_id: str, factor_type: str = "totp", code: str = "123456", status: str = "verified"):
        self.factors.setdefault(user_id, []).append(
            IdentityFactor(id=factor_id, factor_type=factor_type, status=status)
        )
        self.factor_codes[factor_id] = code

    async def get_user(self, user_id: str) -> IdentityUser:
        if user_id not in self.users:
            self.add_user(user_id)
        return self.users[user_id]

    async def list_verified_factors(self, user_id: str) -> List[IdentityFactor]:
        if self.fail_factors:
            raise UpstreamFailure("identity provider unavailable")
        return [f for f in self.factors.get(user_id, []) if f.is_verified]

    async def challenge_factor(self, factor_id: str) -> str:
        challenge_id = f"challenge-{len(self.challenges) + 1}"
        self.challenges[challenge_id] = factor_id
        return challenge_id

    async def verify_factor_challenge(self, factor_id: str, challenge_id: str, code: str) -> bool:
        if self.challenges.get(challenge_id) != factor_id:
            return False
        return self.factor_codes.get(factor_id) == code

    async def verify_password(self, user_id: str, password: str) -> bool:
        return self.passwords.get(user_id) == password

    async def invalidate_session(self, session_id: str) -> None:
        if self.fail_invalidate:
            raise UpstreamFailure("identity provider unavailable")
        self.invalidated.append(session_id)


class FakeNotifier:
    def __init__(self):
        self.sent = []

    async def send(self, email, title, message, context=None, transactional=False) -> bool:
        self.sent.append({
            "email": email,
            "title": title,
            "message": message,
            "context": context,
            "transactional": transactional,
        })
        return True


@pytest.fixture
def db():
    return AsyncMongoMockClient()["stepguard_test"]


@pytest.fixture
def policy():
    return DeviceTrustPolicy()


@pytest.fixture
def identity_provider():
    return FakeIdentityProvider()


@pytest.fixture
def notifier():
    return FakeNotifier()


@pytest.fixture
def dispatcher():
    # not started: drain() runs queued jobs inline
    return BackgroundDispatcher()


@pytest.fixture
def engine(db, policy, identity_provider, notifier, dispatcher):
    return DeviceTrustEngine(db, policy, identity_provider, notifier, dispatcher)


@pytest.fixture
def laptop():
    return DeviceInfo(
        device_name="Chrome on Windows",
        browser="Chrome",
        os="Windows 10",
        ip_address="192.168.1.20",
    )


@pytest.fixture
def phone():
    return DeviceInfo(
        device_name="iPhone",
        browser="Mobile Safari",
        os="iOS 17.1",
        ip_address="10.0.0.7",
    )
