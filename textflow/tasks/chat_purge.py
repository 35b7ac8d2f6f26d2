"""Chat purge scheduled task.

Removes abandoned memberships and dead rooms once per interval, independent of
any request.
"""

from textflow.config import settings
from textflow.dependencies.database import with_db
from textflow.dependencies.scheduler import get_scheduler
from textflow.log import logger
from textflow.models.chat import PurgeResult
from textflow.service import ChatRoomService


async def run_manual_chat_purge() -> PurgeResult:
    """Run one purge sweep and log what it removed."""
    async with with_db() as session:
        result = await ChatRoomService(session).purge()
    if result.removed_members or result.removed_rooms:
        logger.success(
            f"Chat purge removed {result.removed_members} membership(s) and {result.removed_rooms} room(s)"
        )
    else:
        logger.debug("Chat purge found nothing to remove")
    return result


async def scheduled_purge_job() -> None:
    """Scheduled wrapper; a failed sweep is logged and retried on the next tick."""
    try:
        await run_manual_chat_purge()
    except Exception:
        logger.exception("Chat purge failed")


def register_chat_purge_job() -> None:
    if not settings.enable_chat_purge:
        logger.info("Chat purge job disabled")
        return
    get_scheduler().add_job(
        scheduled_purge_job,
        "interval",
        id="purge_chat",
        seconds=settings.chat_purge_interval_seconds,
        replace_existing=True,
        coalesce=True,
        max_instances=1,
    )
