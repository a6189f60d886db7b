# stepguard/utils/device_utils.py

from typing import Optional

from fastapi import Request
from user_agents import parse

from stepguard.db.models.device_model import DeviceInfo
from stepguard.utils.ip_utils import get_client_ip

UNKNOWN_DEVICE = "Unknown Device"


def _join(family: str, version: str) -> Optional[str]:
    if not family or family == "Other":
        return None
    return f"{family} {version}".strip() if version else family


def parse_device_info(user_agent: str, ip_address: Optional[str] = None) -> DeviceInfo:
    """
    Extract a device descriptor from a user-agent string.

    The OS keeps its version ("Windows 10", "Mac OS X 14.1") because the
    confidence scorer only compares the family token before the first space.
    """
    ua_parsed = parse(user_agent or "")

    browser = ua_parsed.browser.family if ua_parsed.browser.family != "Other" else None
    os_name = _join(ua_parsed.os.family, ua_parsed.os.version_string)

    model = ua_parsed.device.model or ua_parsed.device.family
    if model and model != "Other":
        device_name = model
    elif browser and ua_parsed.os.family != "Other":
        device_name = f"{browser} on {ua_parsed.os.family}"
    else:
        device_name = UNKNOWN_DEVICE

    return DeviceInfo(
        device_name=device_name,
        browser=browser,
        os=os_name,
        ip_address=ip_address,
    )


def get_request_device(request: Request) -> DeviceInfo:
    return parse_device_info(
        request.headers.get("User-Agent", ""),
        ip_address=get_client_ip(request),
    )
