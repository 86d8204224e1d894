import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

from loguru import logger

from core.errors import BridgeError, TaskFailed
from core.state import QueueStatus, TaskError, now_ms

Work = Callable[[], Awaitable[Any]]


@dataclass
class _Job:
    work: Work
    task_type: str
    future: asyncio.Future


class TaskQueue:
    """Single-lane pipeline for everything that touches the speaker.

    Jobs run one at a time in submission order on a single consumer task.
    A failing job settles its own future and the consumer moves on, so one
    bad request never wedges the queue.
    """

    def __init__(self):
        self.status = QueueStatus()
        self._jobs: asyncio.Queue[_Job] = asyncio.Queue()
        self._worker: Optional[asyncio.Task] = None
        self._closing = False

    def submit(self, work: Work, task_type: str = "task") -> asyncio.Future:
        """Queue `work` and return a future for its result without waiting."""
        loop = asyncio.get_running_loop()
        future = loop.create_future()
        self.status.depth += 1
        self._jobs.put_nowait(_Job(work, task_type, future))
        self._ensure_worker()
        return future

    async def enqueue(self, work: Work, task_type: str = "task") -> Any:
        """Queue `work` and wait until it has run."""
        return await self.submit(work, task_type)

    @property
    def depth(self) -> int:
        return self.status.depth

    def _ensure_worker(self) -> None:
        if self._worker is None or self._worker.done():
            self._worker = asyncio.create_task(self._consume(), name="task-queue")

    async def _consume(self) -> None:
        while True:
            job = await self._jobs.get()
            try:
                await self._execute(job)
            finally:
                self._jobs.task_done()

    async def _execute(self, job: _Job) -> None:
        logger.debug("[queue] Running '{}' (depth={})", job.task_type, self.status.depth)
        try:
            result = await job.work()
        except asyncio.CancelledError as e:
            if self._closing or asyncio.current_task().cancelling():
                self._finish(job.task_type, TaskError(job.task_type, "cancelled", now_ms()))
                if not job.future.done():
                    job.future.cancel()
                raise
            # Cancelled from inside the job body: a failure of that job only.
            self._fail(job, TaskFailed(job.task_type, e), cause=e)
        except BridgeError as e:
            self._fail(job, e)
        except Exception as e:
            self._fail(job, TaskFailed(job.task_type, e), cause=e)
        else:
            self._finish(job.task_type, None)
            if not job.future.done():
                job.future.set_result(result)

    def _fail(self, job: _Job, error: BridgeError, cause: Optional[BaseException] = None) -> None:
        reason = cause if cause is not None else error
        message = str(reason) or type(reason).__name__
        logger.warning("[queue] Task '{}' failed: {}", job.task_type, message)
        self._finish(job.task_type, TaskError(job.task_type, message, now_ms()))
        if cause is not None:
            error.__cause__ = cause
        if not job.future.done():
            job.future.set_exception(error)

    def _finish(self, task_type: str, error: Optional[TaskError]) -> None:
        # One synchronous step: readers never see a partial update.
        self.status.depth = max(0, self.status.depth - 1)
        self.status.last_task_type = task_type
        self.status.last_task_error = error
        self.status.last_task_finished_at = now_ms()

    async def join(self) -> None:
        """Wait until every submitted job has settled."""
        await self._jobs.join()

    async def close(self) -> None:
        self._closing = True
        if self._worker is not None:
            self._worker.cancel()
            try:
                await self._worker
            except asyncio.CancelledError:
                pass
            self._worker = None
        self._closing = False
        while not self._jobs.empty():
            job = self._jobs.get_nowait()
            self._jobs.task_done()
            self.status.depth = max(0, self.status.depth - 1)
            if not job.future.done():
                job.future.cancel()
