from typing import Annotated

from textflow.dependencies.database import Database
from textflow.service import ChatRoomService

from fastapi import Depends


def get_chat_service(session: Database) -> ChatRoomService:
    return ChatRoomService(session)


ChatService = Annotated[ChatRoomService, Depends(get_chat_service)]
