from dataclasses import dataclass
from enum import Enum
from typing import Any

from fastapi import HTTPException


class ErrorType(Enum):
    """
    All possible error types that could be passed to the client.

    Each entry is a tuple of the message key, status code and fallback message.
    The message key is returned verbatim so the client can translate it.

    Remember to keep this enum in sync with the frontend's error message table.
    """

    UNKNOWN = ("UNKNOWN", 500, "Unknown error")

    # session
    AUTH_REQUIRED = ("AUTH_REQUIRED", 401, "Anonymous session is missing or expired")

    # room lifecycle
    ROOM_CREATE_RETRY_EXCEEDED = ("ROOM_CREATE_RETRY_EXCEEDED", 503, "No free room code, please try again later")
    INVALID_ROOM_CODE = ("INVALID_ROOM_CODE", 422, "Room code must be exactly 4 digits")
    JOIN_RATE_LIMIT_USER = ("JOIN_RATE_LIMIT_USER", 429, "Too many join attempts from this session")
    JOIN_RATE_LIMIT_IP = ("JOIN_RATE_LIMIT_IP", 429, "Too many join attempts from this network")
    ROOM_NOT_FOUND_OR_EXPIRED = ("ROOM_NOT_FOUND_OR_EXPIRED", 404, "Room does not exist or has expired")
    ROOM_MEMBER_NOT_FOUND_OR_EXPIRED = (
        "ROOM_MEMBER_NOT_FOUND_OR_EXPIRED",
        404,
        "You are no longer in this room, or it has expired",
    )

    # messaging
    INVALID_NICKNAME = ("INVALID_NICKNAME", 422, "Nickname must be 1-20 characters")
    NICKNAME_REQUIRED = ("NICKNAME_REQUIRED", 403, "Set a nickname before sending messages")
    INVALID_MESSAGE_LENGTH = ("INVALID_MESSAGE_LENGTH", 422, "Message must be 1-500 characters")

    # audit
    INVALID_EVENT_TYPE = ("INVALID_EVENT_TYPE", 422, "Unknown chat event type")

    @property
    def msg_key(self) -> str:
        return self.value[0]


@dataclass(eq=False)
class RequestError(HTTPException):
    """
    A wrapper for API errors to simplify response composition.

    Attributes:
        error_type (ErrorType): The error type this instance was raised with.
        msg_key (str): The key of the error message for localization.
        status_code (int): The status code should be responded.
        fallback_msg (str): The fallback message for clients without localization support.

    Args:
        error_type (ErrorType): The error type to initialize from.
        extra (dict[str, Any] | None): Details to include in the response.
        status_code (int): Overrides the default one given by the error type.
        headers (dict[str, str] | None): Will be attached to the response header.
    """

    msg_key: str
    status_code: int = 422
    fallback_msg: str | None = None

    def __init__(
        self,
        error_type: ErrorType,
        extra: dict[str, Any] | None = None,
        *,
        status_code: int | None = None,
        headers: dict[str, str] | None = None,
    ):
        self.error_type = error_type
        self.msg_key, default_status, self.fallback_msg = error_type.value
        self.details: dict[str, Any] = dict(extra) if extra else {}

        detail: dict[str, Any] = {"error": self.msg_key, **self.details}
        if self.fallback_msg:
            detail["message"] = self.fallback_msg

        final_status = status_code if status_code is not None else default_status
        super().__init__(final_status, detail=detail, headers=headers)

    @property
    def formatted_message(self) -> str:
        return self.fallback_msg or self.msg_key

    def __str__(self) -> str:
        return self.msg_key
