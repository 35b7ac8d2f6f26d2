"""Anonymous session endpoint."""

from uuid import UUID

from textflow.auth import create_anonymous_session
from textflow.config import settings

from fastapi import APIRouter
from pydantic import BaseModel

router = APIRouter(prefix="/api/auth", tags=["Auth"])


class AnonymousSessionResp(BaseModel):
    """Response model for a newly issued anonymous session.

    Attributes:
        member_id: The opaque identity the token stands for.
        access_token: Bearer token to send with every chat request.
        token_type: Always ``Bearer``.
        expires_in: Token lifetime in seconds.
    """

    member_id: UUID
    access_token: str
    token_type: str = "Bearer"
    expires_in: int


@router.post(
    "/anonymous",
    response_model=AnonymousSessionResp,
    name="Create Anonymous Session",
    description="Issue a new anonymous identity and its bearer token.",
)
async def create_session():
    member_id, token = create_anonymous_session()
    return AnonymousSessionResp(
        member_id=member_id,
        access_token=token,
        expires_in=settings.access_token_expire_minutes * 60,
    )
