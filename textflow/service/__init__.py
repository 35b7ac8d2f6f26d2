from .chat_room_service import ChatRoomService, generate_room_code
from .chat_server import ChatServer, server as chat_server

__all__ = [
    "ChatRoomService",
    "ChatServer",
    "chat_server",
    "generate_room_code",
]
