import asyncio
from collections.abc import Coroutine

from meterproxy.observability.logger import get_logger

log = get_logger("tasks")


class DetachedTasks:
    """Holds references to fire-and-forget tasks and logs their failures.

    Work spawned here never feeds back into a response. ``drain`` lets
    shutdown (and tests) wait for in-flight accounting to settle.
    """

    def __init__(self):
        self._tasks: set[asyncio.Task] = set()

    def spawn(self, coro: Coroutine, name: str) -> asyncio.Task:
        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._finished)
        return task

    def _finished(self, task: asyncio.Task):
        self._tasks.discard(task)
        if task.cancelled():
            log.warning("task_cancelled", task=task.get_name())
            return
        exc = task.exception()
        if exc is not None:
            log.error("task_failed", task=task.get_name(), error=str(exc), error_type=type(exc).__name__)

    async def drain(self, timeout: float | None = None):
        # Accounting can spawn follow-up work, so loop until nothing is left
        while True:
            pending = {task for task in self._tasks if not task.done()}
            if not pending:
                return
            _, still_pending = await asyncio.wait(pending, timeout=timeout)
            if still_pending:
                log.warning("tasks_drain_timeout", pending=len(still_pending))
                return
