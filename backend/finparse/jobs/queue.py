"""In-process job queue with a fixed pool of asyncio workers.

Jobs move through ``pending -> running -> completed | failed``, with failed
attempts going through ``retrying`` and back to ``pending`` until the retry
ceiling is reached. Retries are re-enqueued through a ``Scheduler`` after a
linear backoff of ``retry_count * backoff_unit`` seconds.
"""

from __future__ import annotations

import asyncio
from functools import partial
from typing import Awaitable, Callable, Optional
from uuid import uuid4

from finparse.core.exceptions import QueueClosedError, QueueStopTimeout
from finparse.core.logging import get_logger
from finparse.core.utils import utc_now
from finparse.jobs.scheduler import AsyncioScheduler, Scheduler
from finparse.jobs.store import InMemoryJobStore
from finparse.schemas.job_models import DEFAULT_MAX_RETRIES, JobStatus, ParseDocumentJob

logger = get_logger("finparse.jobs.queue")

JobHandler = Callable[[ParseDocumentJob], Awaitable[None]]

DEFAULT_BUFFER_SIZE = 100
DEFAULT_WORKER_COUNT = 5


class JobQueue:
    def __init__(
        self,
        store: InMemoryJobStore,
        buffer_size: int = DEFAULT_BUFFER_SIZE,
        worker_count: int = DEFAULT_WORKER_COUNT,
        scheduler: Optional[Scheduler] = None,
        backoff_unit: float = 1.0,
        default_max_retries: int = DEFAULT_MAX_RETRIES,
    ) -> None:
        if buffer_size < 1:
            raise ValueError("buffer_size must be at least 1")
        if worker_count < 1:
            raise ValueError("worker_count must be at least 1")
        self.store = store
        self.worker_count = worker_count
        self.scheduler = scheduler or AsyncioScheduler()
        self.backoff_unit = backoff_unit
        self.default_max_retries = default_max_retries

        self._queue: asyncio.Queue[ParseDocumentJob] = asyncio.Queue(maxsize=buffer_size)
        self._closed = False
        self._closed_event = asyncio.Event()
        self._workers: list[asyncio.Task] = []
        self._busy: set[asyncio.Task] = set()

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def depth(self) -> int:
        """Number of jobs waiting in the buffer."""
        return self._queue.qsize()

    # -------------------------------------------------------------------------
    # Publishing
    # -------------------------------------------------------------------------

    async def enqueue(self, job: ParseDocumentJob) -> ParseDocumentJob:
        """Persist a job and place it on the queue.

        Waits while the buffer is full. Cancelling the caller (directly or via
        ``asyncio.wait_for``) abandons the put and propagates the cancellation.

        Returns:
            A copy of the job with its id, status and defaults filled in

        Raises:
            QueueClosedError: If the queue is closed, before or while waiting
        """
        if self._closed:
            raise QueueClosedError("queue is closed")

        job = job.model_copy(deep=True)
        if not job.job_id:
            job.job_id = str(uuid4())
        if job.status is None:
            job.status = JobStatus.PENDING
        if job.created_at is None:
            job.created_at = utc_now()
        if not job.max_retries:
            job.max_retries = self.default_max_retries

        self.store.save(job)
        await self._put(job)
        logger.debug(f"Enqueued job {job.job_id} for {job.source_uri}")
        return job.model_copy(deep=True)

    async def _put(self, job: ParseDocumentJob) -> None:
        try:
            self._queue.put_nowait(job)
            return
        except asyncio.QueueFull:
            pass

        put_task = asyncio.ensure_future(self._queue.put(job))
        closed_task = asyncio.ensure_future(self._closed_event.wait())
        try:
            await asyncio.wait({put_task, closed_task}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            closed_task.cancel()
            if not put_task.done():
                put_task.cancel()

        if put_task.done() and not put_task.cancelled():
            return
        raise QueueClosedError("queue closed while waiting for buffer space")

    # -------------------------------------------------------------------------
    # Consuming
    # -------------------------------------------------------------------------

    async def start(self, handler: JobHandler) -> None:
        """Spawn the worker pool; each worker runs ``handler`` for one job at a time."""
        if self._closed:
            raise QueueClosedError("queue is closed")
        if self._workers:
            raise RuntimeError("queue already started")
        self._workers = [
            asyncio.create_task(self._worker(handler), name=f"finparse-worker-{i}")
            for i in range(self.worker_count)
        ]
        logger.info(f"Started {self.worker_count} job workers")

    async def serve(self, handler: JobHandler) -> None:
        """Run the worker pool until this coroutine is cancelled.

        Cancellation aborts in-flight jobs; they keep their last saved status.
        """
        await self.start(handler)
        try:
            await asyncio.Event().wait()
        finally:
            await self._abort()

    async def _worker(self, handler: JobHandler) -> None:
        task = asyncio.current_task()
        while not self._closed:
            job = await self._queue.get()
            self._busy.add(task)
            try:
                await self._process(job, handler)
            finally:
                self._busy.discard(task)
                self._queue.task_done()

    async def _process(self, job: ParseDocumentJob, handler: JobHandler) -> None:
        job.status = JobStatus.RUNNING
        job.started_at = utc_now()
        job.completed_at = None
        self.store.save(job)
        logger.info(f"Job {job.job_id} running (attempt {job.retry_count + 1}/{job.max_retries})")

        try:
            await handler(job)
        except Exception as e:
            job.completed_at = utc_now()
            job.error = str(e)
            job.retry_count += 1
            if job.retry_count < job.max_retries:
                job.status = JobStatus.RETRYING
                self.store.save(job)
                delay = job.retry_count * self.backoff_unit
                logger.warning(f"Job {job.job_id} failed, retrying in {delay}s: {e}")
                self.scheduler.call_later(delay, partial(self._requeue, job.model_copy(deep=True)))
            else:
                job.status = JobStatus.FAILED
                self.store.save(job)
                logger.error(f"Job {job.job_id} failed after {job.retry_count} attempts: {e}")
            return

        job.status = JobStatus.COMPLETED
        job.error = ""
        job.completed_at = utc_now()
        self.store.save(job)
        logger.info(f"Job {job.job_id} completed")

    async def _requeue(self, job: ParseDocumentJob) -> None:
        job.status = JobStatus.PENDING
        job.started_at = None
        job.completed_at = None
        try:
            await self.enqueue(job)
        except QueueClosedError:
            logger.warning(f"Dropping retry of job {job.job_id}: queue is closed")

    # -------------------------------------------------------------------------
    # Shutdown
    # -------------------------------------------------------------------------

    def _close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._closed_event.set()
        self.scheduler.cancel_all()

    async def stop(self, timeout: Optional[float] = None) -> None:
        """Stop accepting work and wait for in-flight jobs.

        Idle workers exit immediately. Busy workers finish their current job.

        Raises:
            QueueStopTimeout: If jobs are still running after ``timeout`` seconds;
                the remaining workers are cancelled and those jobs keep their
                last saved status
        """
        self._close()
        idle = [task for task in self._workers if task not in self._busy and not task.done()]
        for task in idle:
            task.cancel()
        await asyncio.gather(*idle, return_exceptions=True)

        running = [task for task in self._workers if not task.done()]
        if not running:
            logger.info("Job queue stopped")
            return

        if timeout is not None:
            timeout = max(timeout, 0)
        _, pending = await asyncio.wait(running, timeout=timeout)
        if pending:
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)
            raise QueueStopTimeout(
                f"{len(pending)} jobs still running after {timeout}s",
                details={"pending": len(pending)},
            )
        logger.info("Job queue stopped")

    async def close(self) -> None:
        """Stop with no deadline; safe to call more than once."""
        await self.stop(None)

    async def _abort(self) -> None:
        self._close()
        for task in self._workers:
            task.cancel()
        await asyncio.gather(*self._workers, return_exceptions=True)
        logger.info("Job workers aborted")
