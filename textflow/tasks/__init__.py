"""Application tasks module.

Scheduled background jobs of the chat server.
"""

from .chat_purge import register_chat_purge_job, run_manual_chat_purge

__all__ = [
    "register_chat_purge_job",
    "run_manual_chat_purge",
]
