import ipaddress
from typing import Annotated

from fastapi import Depends, Request


def parse_ip(value: str | None) -> str | None:
    """Parse and normalize an IPv4/IPv6 address, returning None when it is not one."""
    if not value:
        return None
    try:
        return str(ipaddress.ip_address(value.strip()))
    except ValueError:
        return None


def extract_forwarded_ip(headers) -> str | None:
    """
    Get the best-effort client address from proxy headers.

    Only the first entry of X-Forwarded-For is considered (falling back to
    X-Real-IP). A missing or malformed value yields None, which disables
    per-address rate limiting for the request instead of guessing.
    """
    forwarded = headers.get("X-Forwarded-For") or headers.get("X-Real-IP") or ""
    if not forwarded.strip():
        return None
    return parse_ip(forwarded.split(",", 1)[0])


def get_client_ip(request: Request) -> str | None:
    return extract_forwarded_ip(request.headers)


IPAddress = Annotated[str | None, Depends(get_client_ip)]
