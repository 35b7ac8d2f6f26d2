from .chat import ChatMessage, ChatRoom, ChatRoomMember
from .events import ChatEventLog
from .join_attempt import ChatJoinAttempt

__all__ = [
    "ChatEventLog",
    "ChatJoinAttempt",
    "ChatMessage",
    "ChatRoom",
    "ChatRoomMember",
]
