# stepguard/api/deps.py

from typing import Optional

from fastapi import Request

from stepguard.core.errors import RateLimitedError
from stepguard.core.rate_limit import RequestThrottler
from stepguard.services.engine import DeviceTrustEngine
from stepguard.utils.ip_utils import get_client_ip


def get_engine(request: Request) -> DeviceTrustEngine:
    return request.app.state.engine


def _throttle(name: str):
    async def dependency(request: Request):
        throttler: Optional[RequestThrottler] = getattr(request.app.state, name, None)
        if throttler is None:
            return
        if not await throttler.check_limit(get_client_ip(request)):
            raise RateLimitedError()

    return dependency


# Authentication and verification endpoints get the tighter limit
auth_throttle = _throttle("auth_throttler")
api_throttle = _throttle("api_throttler")
