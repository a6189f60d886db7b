# stepguard/services/identity_provider.py
"""
Identity provider boundary.

The identity provider owns passwords, MFA factor enrollment and the auth
session tokens. This service only asks it questions and never decides trust
on its behalf: any transport or server failure surfaces as
``UpstreamFailure``.
"""

import abc
import logging
from typing import List, Optional

import httpx
from pydantic import BaseModel

from stepguard.core.errors import UpstreamFailure

logger = logging.getLogger(__name__)


class IdentityFactor(BaseModel):
    id: str
    factor_type: str  # "totp" or "phone"
    status: str = "verified"
    friendly_name: Optional[str] = None

    @property
    def is_verified(self) -> bool:
        return self.status == "verified"


class IdentityUser(BaseModel):
    id: str
    email: str
    email_verified: bool = False
    has_password: bool = False


class IdentityProvider(abc.ABC):
    @abc.abstractmethod
    async def get_user(self, user_id: str) -> IdentityUser:
        ...

    @abc.abstractmethod
    async def list_verified_factors(self, user_id: str) -> List[IdentityFactor]:
        ...

    @abc.abstractmethod
    async def challenge_factor(self, factor_id: str) -> str:
        """Start a challenge and return its id."""

    @abc.abstractmethod
    async def verify_factor_challenge(self, factor_id: str, challenge_id: str, code: str) -> bool:
        ...

    @abc.abstractmethod
    async def verify_password(self, user_id: str, password: str) -> bool:
        ...

    @abc.abstractmethod
    async def invalidate_session(self, session_id: str) -> None:
        ...


class HttpIdentityProvider(IdentityProvider):
    """
    Identity provider reached over its admin HTTP API.

    Expected endpoints:
        GET    /admin/users/{user_id}
        GET    /admin/users/{user_id}/factors
        POST   /factors/{factor_id}/challenge
        POST   /factors/{factor_id}/verify
        POST   /admin/users/{user_id}/verify-password
        DELETE /admin/sessions/{session_id}
    """

    def __init__(self, base_url: str, api_key: str = "", timeout: float = 5.0,
                 client: Optional[httpx.AsyncClient] = None):
        headers = {"Authorization": f"Bearer {api_key}"} if api_key else {}
        self._client = client or httpx.AsyncClient(base_url=base_url, headers=headers, timeout=timeout)

    async def aclose(self):
        await self._client.aclose()

    async def _request(self, method: str, url: str, **kwargs) -> httpx.Response:
        try:
            return await self._client.request(method, url, **kwargs)
        except httpx.HTTPError as e:
            logger.error("Identity provider %s %s failed: %s", method, url, e)
            raise UpstreamFailure(f"Identity provider unreachable: {e}") from e

    @staticmethod
    def _raise_for_status(response: httpx.Response):
        if response.status_code >= 400:
            logger.error(
                "Identity provider returned %s for %s %s",
                response.status_code, response.request.method, response.request.url,
            )
            raise UpstreamFailure(f"Identity provider returned {response.status_code}")

    async def get_user(self, user_id: str) -> IdentityUser:
        response = await self._request("GET", f"/admin/users/{user_id}")
        self._raise_for_status(response)
        return IdentityUser.model_validate(response.json())

    async def list_verified_factors(self, user_id: str) -> List[IdentityFactor]:
        response = await self._request("GET", f"/admin/users/{user_id}/factors")
        self._raise_for_status(response)
        factors = [IdentityFactor.model_validate(item) for item in response.json()]
        # enrolled-but-unconfirmed factors are not proof of anything
        return [factor for factor in factors if factor.is_verified]

    async def challenge_factor(self, factor_id: str) -> str:
        response = await self._request("POST", f"/factors/{factor_id}/challenge")
        self._raise_for_status(response)
        return response.json()["id"]

    async def verify_factor_challenge(self, factor_id: str, challenge_id: str, code: str) -> bool:
        response = await self._request(
            "POST",
            f"/factors/{factor_id}/verify",
            json={"challenge_id": challenge_id, "code": code},
        )
        if response.status_code in (400, 401, 422):
            return False
        self._raise_for_status(response)
        return True

    async def verify_password(self, user_id: str, password: str) -> bool:
        response = await self._request(
            "POST",
            f"/admin/users/{user_id}/verify-password",
            json={"password": password},
        )
        if response.status_code in (400, 401, 422):
            return False
        self._raise_for_status(response)
        return True

    async def invalidate_session(self, session_id: str) -> None:
        response = await self._request("DELETE", f"/admin/sessions/{session_id}")
        if response.status_code == 404:
            # already gone upstream
            return
        self._raise_for_status(response)
