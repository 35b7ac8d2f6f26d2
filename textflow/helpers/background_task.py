"""Fire-and-forget coroutines.

Room events are pushed to WebSocket streams outside the operation that
produced them, so a slow client never holds a request open.
"""

import asyncio
from collections.abc import Callable, Coroutine
from typing import Any, ParamSpec

P = ParamSpec("P")


class BackgroundTasks:
    """Holds strong references to scheduled tasks until they finish."""

    def __init__(self):
        self.tasks: set[asyncio.Task] = set()

    def add_task(self, func: Callable[P, Coroutine[Any, Any, Any]], *args: P.args, **kwargs: P.kwargs) -> None:
        """Schedule ``func(*args, **kwargs)`` on the running event loop."""
        task = asyncio.create_task(func(*args, **kwargs))
        self.tasks.add(task)
        task.add_done_callback(self.tasks.discard)

    async def join(self) -> None:
        """Wait for every scheduled task, including those scheduled while waiting."""
        while self.tasks:
            await asyncio.gather(*list(self.tasks), return_exceptions=True)

    def stop(self) -> None:
        """Cancel whatever is still pending, e.g. on shutdown."""
        for task in list(self.tasks):
            task.cancel()
        self.tasks.clear()


bg_tasks = BackgroundTasks()
