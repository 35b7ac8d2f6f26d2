from datetime import UTC
from functools import lru_cache

from textflow.log import system_logger

from apscheduler.schedulers.asyncio import AsyncIOScheduler

logger = system_logger("Scheduler")


@lru_cache
def get_scheduler() -> AsyncIOScheduler:
    return AsyncIOScheduler(timezone=UTC)


def start_scheduler() -> None:
    scheduler = get_scheduler()
    if not scheduler.running:
        scheduler.start()
        logger.info(f"Scheduler started with {len(scheduler.get_jobs())} job(s)")


def stop_scheduler() -> None:
    scheduler = get_scheduler()
    if scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("Scheduler stopped")
