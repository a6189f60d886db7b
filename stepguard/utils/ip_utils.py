# stepguard/utils/ip_utils.py

from typing import Optional

from fastapi import Request


def get_client_ip(request: Request) -> str:
    """
    Extract real client IP (handles proxies/load balancers)
    """
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()

    real_ip = request.headers.get("X-Real-IP")
    if real_ip:
        return real_ip

    return request.client.host if request.client else "unknown"


def ipv4_prefix(ip_address: Optional[str]) -> Optional[str]:
    """
    First three dot-separated octets ("192.168.1" for "192.168.1.20").

    Addresses without three octets (IPv6, "unknown") are returned whole so
    they only match an identical address.
    """
    if not ip_address:
        return None
    parts = ip_address.split(".")
    if len(parts) < 3:
        return ip_address
    return ".".join(parts[:3])
