"""Anonymous chat router module.

Room lifecycle endpoints and the per-room message stream.
"""

from . import room, stream  # noqa: F401
from .router import router as chat_router

__all__ = ["chat_router"]
