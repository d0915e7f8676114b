from typing import Awaitable, Set
import asyncio
import structlog

logger = structlog.get_logger(__name__)


class BackgroundTaskRunner:
    """Supervises detached tasks whose outcome the caller never awaits.

    Holds a strong reference to each task until it finishes; failures are
    observed only through logging.
    """

    def __init__(self):
        self.tasks: Set[asyncio.Task] = set()

    def submit(self, coro: Awaitable, name: str) -> asyncio.Task:
        """Schedule a coroutine and return immediately"""

        task = asyncio.ensure_future(coro)
        task.set_name(name)
        self.tasks.add(task)
        task.add_done_callback(self._on_done)

        logger.debug("Background task submitted", task=name)
        return task

    def _on_done(self, task: asyncio.Task):
        self.tasks.discard(task)

        if task.cancelled():
            logger.info("Background task cancelled", task=task.get_name())
            return

        error = task.exception()
        if error is not None:
            logger.error("Background task failed",
                        task=task.get_name(),
                        error=str(error),
                        exc_info=error)

    async def drain(self):
        """Wait until every submitted task has finished"""

        while self.tasks:
            await asyncio.gather(*list(self.tasks), return_exceptions=True)

    async def shutdown(self, timeout: float = 10.0):
        """Give running tasks a grace period, then cancel the rest"""

        if not self.tasks:
            return

        pending = list(self.tasks)
        done, still_running = await asyncio.wait(pending, timeout=timeout)
        for task in still_running:
            task.cancel()
        if still_running:
            await asyncio.gather(*still_running, return_exceptions=True)

        logger.info("Background tasks stopped", finished=len(done), cancelled=len(still_running))
