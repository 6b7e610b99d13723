"""Tests for the asyncio job queue and worker pool."""

from __future__ import annotations

import asyncio
from typing import Callable

import pytest

from finparse.core.exceptions import QueueClosedError, QueueStopTimeout
from finparse.jobs.queue import JobQueue
from finparse.jobs.scheduler import ManualScheduler
from finparse.jobs.store import InMemoryJobStore
from finparse.schemas.job_models import JobStatus, ParseDocumentJob


async def wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(0.005)


def _job(name: str = "jan") -> ParseDocumentJob:
    return ParseDocumentJob(source_uri=f"gs://bucket/{name}.pdf", document_id=f"doc-{name}")


def _status(store: InMemoryJobStore, job_id: str) -> JobStatus:
    return store.get(job_id).status


class FlakyHandler:
    """Fails the first ``failures`` calls, then succeeds."""

    def __init__(self, failures: int) -> None:
        self.failures = failures
        self.calls = 0

    async def __call__(self, job: ParseDocumentJob) -> None:
        self.calls += 1
        if self.calls <= self.failures:
            raise RuntimeError(f"attempt {self.calls} failed")


class BlockingHandler:
    def __init__(self) -> None:
        self.release = asyncio.Event()
        self.active = 0
        self.peak = 0

    async def __call__(self, job: ParseDocumentJob) -> None:
        self.active += 1
        self.peak = max(self.peak, self.active)
        try:
            await self.release.wait()
        finally:
            self.active -= 1


class TestEnqueue:
    @pytest.mark.asyncio
    async def test_assigns_defaults_and_persists(self):
        store = InMemoryJobStore()
        queue = JobQueue(store)

        job = await queue.enqueue(_job())

        assert job.job_id
        assert job.status == JobStatus.PENDING
        assert job.created_at is not None
        assert job.max_retries == 3
        assert store.get(job.job_id).status == JobStatus.PENDING
        assert queue.depth == 1

    @pytest.mark.asyncio
    async def test_keeps_explicit_values(self):
        queue = JobQueue(InMemoryJobStore())
        job = await queue.enqueue(ParseDocumentJob(job_id="fixed", source_uri="gs://b/x.pdf", max_retries=5))
        assert job.job_id == "fixed"
        assert job.max_retries == 5

    @pytest.mark.asyncio
    async def test_blocks_when_buffer_full(self):
        queue = JobQueue(InMemoryJobStore(), buffer_size=1)
        await queue.enqueue(_job("a"))

        with pytest.raises(asyncio.TimeoutError):
            await asyncio.wait_for(queue.enqueue(_job("b")), timeout=0.05)
        assert queue.depth == 1

    @pytest.mark.asyncio
    async def test_blocked_enqueue_completes_once_a_worker_frees_space(self):
        store = InMemoryJobStore()
        handler = BlockingHandler()
        queue = JobQueue(store, buffer_size=1, worker_count=1)
        await queue.start(handler)
        first = await queue.enqueue(_job("a"))
        await wait_until(lambda: handler.active == 1)
        second = await queue.enqueue(_job("b"))

        blocked = asyncio.create_task(queue.enqueue(_job("c")))
        await asyncio.sleep(0.02)
        assert not blocked.done()

        handler.release.set()
        third = await asyncio.wait_for(blocked, timeout=1)

        for job in (first, second, third):
            await wait_until(lambda job=job: _status(store, job.job_id) == JobStatus.COMPLETED)
        await queue.close()

    @pytest.mark.asyncio
    async def test_caller_cancellation_propagates(self):
        queue = JobQueue(InMemoryJobStore(), buffer_size=1)
        await queue.enqueue(_job("a"))

        task = asyncio.create_task(queue.enqueue(_job("b")))
        await asyncio.sleep(0.01)
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task
        assert queue.depth == 1

    @pytest.mark.asyncio
    async def test_rejects_after_close(self):
        queue = JobQueue(InMemoryJobStore())
        await queue.close()
        with pytest.raises(QueueClosedError):
            await queue.enqueue(_job())

    @pytest.mark.asyncio
    async def test_blocked_enqueue_fails_when_queue_closes(self):
        queue = JobQueue(InMemoryJobStore(), buffer_size=1)
        await queue.enqueue(_job("a"))

        task = asyncio.create_task(queue.enqueue(_job("b")))
        await asyncio.sleep(0.01)
        await queue.close()

        with pytest.raises(QueueClosedError):
            await task


class TestProcessing:
    @pytest.mark.asyncio
    async def test_successful_job_completes(self):
        store = InMemoryJobStore()
        queue = JobQueue(store)
        seen = []

        async def handler(job):
            seen.append(job.source_uri)
            job.parsing_run_id = "run-1"

        await queue.start(handler)
        job = await queue.enqueue(_job())
        await wait_until(lambda: _status(store, job.job_id) == JobStatus.COMPLETED)
        await queue.close()

        stored = store.get(job.job_id)
        assert seen == ["gs://bucket/jan.pdf"]
        assert stored.parsing_run_id == "run-1"
        assert stored.started_at is not None
        assert stored.completed_at is not None
        assert stored.error == ""
        assert stored.retry_count == 0

    @pytest.mark.asyncio
    async def test_fails_permanently_after_max_retries(self):
        store = InMemoryJobStore()
        scheduler = ManualScheduler()
        handler = FlakyHandler(failures=100)
        queue = JobQueue(store, worker_count=1, scheduler=scheduler)
        await queue.start(handler)

        job = await queue.enqueue(_job())
        await wait_until(lambda: store.get(job.job_id).retry_count == 1)
        assert _status(store, job.job_id) == JobStatus.RETRYING
        assert scheduler.delays == [1.0]

        await scheduler.advance(1.0)
        await wait_until(lambda: store.get(job.job_id).retry_count == 2)
        assert _status(store, job.job_id) == JobStatus.RETRYING
        assert scheduler.delays == [2.0]

        await scheduler.advance(2.0)
        await wait_until(lambda: _status(store, job.job_id) == JobStatus.FAILED)
        await queue.close()

        stored = store.get(job.job_id)
        assert handler.calls == 3
        assert stored.retry_count == 3
        assert stored.error == "attempt 3 failed"
        assert scheduler.pending == 0

    @pytest.mark.asyncio
    async def test_succeeds_after_transient_failures(self):
        store = InMemoryJobStore()
        scheduler = ManualScheduler()
        handler = FlakyHandler(failures=2)
        queue = JobQueue(store, worker_count=1, scheduler=scheduler)
        await queue.start(handler)

        job = await queue.enqueue(_job())
        await wait_until(lambda: store.get(job.job_id).retry_count == 1)
        await scheduler.advance(1.0)
        await wait_until(lambda: store.get(job.job_id).retry_count == 2)
        await scheduler.advance(2.0)
        await wait_until(lambda: _status(store, job.job_id) == JobStatus.COMPLETED)
        await queue.close()

        stored = store.get(job.job_id)
        assert handler.calls == 3
        assert stored.retry_count == 2
        assert stored.error == ""

    @pytest.mark.asyncio
    async def test_backoff_is_linear_in_retry_count(self):
        store = InMemoryJobStore()
        scheduler = ManualScheduler()
        queue = JobQueue(store, worker_count=1, scheduler=scheduler, backoff_unit=0.5)
        await queue.start(FlakyHandler(failures=100))

        job = await queue.enqueue(ParseDocumentJob(source_uri="gs://b/x.pdf", max_retries=4))
        await wait_until(lambda: store.get(job.job_id).retry_count == 1)
        assert scheduler.delays == [0.5]

        # Not yet due.
        assert await scheduler.advance(0.25) == 0
        assert await scheduler.advance(0.25) == 1
        await wait_until(lambda: store.get(job.job_id).retry_count == 2)
        assert scheduler.delays == [1.0]
        await queue.close()

    @pytest.mark.asyncio
    async def test_retry_with_real_timer(self):
        store = InMemoryJobStore()
        queue = JobQueue(store, worker_count=1, backoff_unit=0.01)
        await queue.start(FlakyHandler(failures=1))

        job = await queue.enqueue(_job())
        await wait_until(lambda: _status(store, job.job_id) == JobStatus.COMPLETED)
        await queue.close()

        assert store.get(job.job_id).retry_count == 1

    @pytest.mark.asyncio
    async def test_worker_pool_bounds_concurrency(self):
        store = InMemoryJobStore()
        handler = BlockingHandler()
        queue = JobQueue(store, worker_count=5)
        await queue.start(handler)

        jobs = [await queue.enqueue(_job(str(i))) for i in range(7)]
        await wait_until(lambda: handler.active == 5)
        assert queue.depth == 2

        handler.release.set()
        await wait_until(lambda: all(_status(store, j.job_id) == JobStatus.COMPLETED for j in jobs))
        await queue.close()
        assert handler.peak == 5

    @pytest.mark.asyncio
    async def test_pending_retries_dropped_on_close(self):
        store = InMemoryJobStore()
        scheduler = ManualScheduler()
        queue = JobQueue(store, worker_count=1, scheduler=scheduler)
        await queue.start(FlakyHandler(failures=100))

        job = await queue.enqueue(_job())
        await wait_until(lambda: _status(store, job.job_id) == JobStatus.RETRYING)
        await queue.close()

        assert scheduler.pending == 0
        assert _status(store, job.job_id) == JobStatus.RETRYING


class TestShutdown:
    @pytest.mark.asyncio
    async def test_stop_waits_for_in_flight_job(self):
        store = InMemoryJobStore()
        handler = BlockingHandler()
        queue = JobQueue(store, worker_count=2)
        await queue.start(handler)
        job = await queue.enqueue(_job())
        await wait_until(lambda: handler.active == 1)

        stopping = asyncio.create_task(queue.stop(timeout=2))
        await asyncio.sleep(0.01)
        assert not stopping.done()
        handler.release.set()
        await stopping

        assert _status(store, job.job_id) == JobStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_stop_with_expired_deadline_keeps_last_status(self):
        store = InMemoryJobStore()
        handler = BlockingHandler()
        queue = JobQueue(store, worker_count=1)
        await queue.start(handler)
        job = await queue.enqueue(_job())
        await wait_until(lambda: _status(store, job.job_id) == JobStatus.RUNNING)

        with pytest.raises(QueueStopTimeout) as exc_info:
            await queue.stop(timeout=0)

        assert isinstance(exc_info.value, TimeoutError)
        assert _status(store, job.job_id) == JobStatus.RUNNING
        assert store.get(job.job_id).retry_count == 0

    @pytest.mark.asyncio
    async def test_close_is_idempotent(self):
        queue = JobQueue(InMemoryJobStore())
        await queue.start(FlakyHandler(failures=0))
        await queue.close()
        await queue.close()
        assert queue.closed

    @pytest.mark.asyncio
    async def test_start_after_close_rejected(self):
        queue = JobQueue(InMemoryJobStore())
        await queue.close()
        with pytest.raises(QueueClosedError):
            await queue.start(FlakyHandler(failures=0))

    @pytest.mark.asyncio
    async def test_serve_cancellation_aborts_in_flight_jobs(self):
        store = InMemoryJobStore()
        handler = BlockingHandler()
        queue = JobQueue(store, worker_count=1)

        serving = asyncio.create_task(queue.serve(handler))
        await wait_until(lambda: len(queue._workers) == 1)
        job = await queue.enqueue(_job())
        await wait_until(lambda: handler.active == 1)

        serving.cancel()
        with pytest.raises(asyncio.CancelledError):
            await serving

        assert queue.closed
        assert handler.active == 0
        assert _status(store, job.job_id) == JobStatus.RUNNING
