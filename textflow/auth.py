"""Anonymous session tokens.

A caller's identity is an opaque random UUID issued once and carried in a
signed JWT. Nothing else about the caller is known or stored.

Functions:
    create_anonymous_session: Issue a new member id and its access token.
    create_access_token: Create a JWT access token.
    verify_token: Verify and decode a JWT token.
    member_id_from_token: Resolve the member id carried by a token.
"""

from datetime import timedelta
import secrets
from uuid import UUID, uuid4

from textflow.config import settings
from textflow.helpers import utcnow
from textflow.log import log

from jose import JWTError, jwt

logger = log("Auth")

TOKEN_TYPE = "anonymous"


def create_access_token(data: dict, expires_delta: timedelta | None = None) -> str:
    """Create a JWT access token.

    Args:
        data: The payload data for the token.
        expires_delta: Optional custom expiration time.

    Returns:
        The encoded JWT token string.
    """
    to_encode = data.copy()
    if expires_delta:
        expire = utcnow() + expires_delta
    else:
        expire = utcnow() + timedelta(minutes=settings.access_token_expire_minutes)

    to_encode.update({"exp": expire, "jti": secrets.token_hex(16)})
    return jwt.encode(to_encode, settings.secret_key, algorithm=settings.algorithm)


def verify_token(token: str) -> dict | None:
    """Verify and decode a JWT access token.

    Returns:
        The decoded payload, or None if verification fails.
    """
    try:
        return jwt.decode(token, settings.secret_key, algorithms=[settings.algorithm])
    except JWTError:
        return None


def create_anonymous_session() -> tuple[UUID, str]:
    member_id = uuid4()
    token = create_access_token({"sub": str(member_id), "typ": TOKEN_TYPE})
    logger.debug(f"Issued anonymous session for member {member_id}")
    return member_id, token


def member_id_from_token(token: str | None) -> UUID | None:
    if not token:
        return None
    payload = verify_token(token)
    if payload is None or payload.get("typ") != TOKEN_TYPE:
        return None
    try:
        return UUID(payload["sub"])
    except (KeyError, TypeError, ValueError):
        return None
