from typing import Annotated
from uuid import UUID

from textflow.auth import member_id_from_token
from textflow.models.error import ErrorType, RequestError

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

security = HTTPBearer(auto_error=False, description="Anonymous session token from /api/auth/anonymous")


async def get_current_member(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security)],
) -> UUID:
    """Resolve the calling member from the bearer token, or fail with AUTH_REQUIRED."""
    member_id = member_id_from_token(credentials.credentials if credentials else None)
    if member_id is None:
        raise RequestError(ErrorType.AUTH_REQUIRED)
    return member_id


CurrentMember = Annotated[UUID, Depends(get_current_member)]
