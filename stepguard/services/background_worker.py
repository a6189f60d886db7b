# stepguard/services/background_worker.py
import asyncio
import logging
from typing import Awaitable, Callable, Optional

logger = logging.getLogger(__name__)

Job = Callable[[], Awaitable[object]]


class BackgroundDispatcher:
    """
    Fire-and-forget work queue for side effects (ledger appends, email alerts).

    - Callers ``submit`` a coroutine factory and return immediately
    - A single worker task drains the queue in submission order
    - Failures are logged per job and never reach the caller
    """

    def __init__(self, maxsize: int = 0):
        self._queue: "asyncio.Queue[tuple[str, Job]]" = asyncio.Queue(maxsize=maxsize)
        self._worker: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._worker is not None and not self._worker.done()

    def start(self):
        if not self.running:
            self._worker = asyncio.get_running_loop().create_task(self._run())
            logger.info("Background dispatcher started")

    def submit(self, job: Job, description: str = "background job"):
        try:
            self._queue.put_nowait((description, job))
        except asyncio.QueueFull:
            logger.error("Background queue full, dropping %s", description)

    async def drain(self):
        """Wait until every submitted job has finished."""
        if not self.running:
            await self._run_pending()
            return
        await self._queue.join()

    async def stop(self):
        await self.drain()
        if self._worker is not None:
            self._worker.cancel()
            try:
                await self._worker
            except asyncio.CancelledError:
                pass
            self._worker = None
            logger.info("Background dispatcher stopped")

    async def _execute(self, description: str, job: Job):
        try:
            await job()
        except Exception:
            logger.exception("Background job failed: %s", description)
        finally:
            self._queue.task_done()

    async def _run_pending(self):
        while not self._queue.empty():
            description, job = self._queue.get_nowait()
            await self._execute(description, job)

    async def _run(self):
        while True:
            description, job = await self._queue.get()
            await self._execute(description, job)
