import asyncio
from datetime import datetime, timedelta

from app.schemas.job import JobCreate, JobStatus
from app.workers.queue import JobQueue
from tests.conftest import RecordingExecutor


def _create(job_store, prompt="portrait", created_at=None):
    return job_store.create(JobCreate(type="generate", prompt=prompt, inputs={}), created_at=created_at)


def _queue(executor, job_store, concurrency=1, max_retries=2):
    return JobQueue(
        executor=executor,
        jobs=job_store,
        concurrency=concurrency,
        max_retries=max_retries,
        retry_delay=0,
        tick_delay=0,
    )


def test_add_ignores_job_already_pending(job_store):
    executor = RecordingExecutor(job_store)
    job_id = _create(job_store)

    async def scenario():
        queue = _queue(executor, job_store)
        assert queue.add(job_id) is True
        assert queue.add(job_id) is False
        assert queue.pending == [job_id]
        await queue.wait_idle()

    asyncio.run(scenario())

    assert executor.calls == [job_id]
    assert job_store.get(job_id).status == JobStatus.SUCCEEDED


def test_add_ignores_job_already_running(job_store):
    executor = RecordingExecutor(job_store, delay=0.05)
    job_id = _create(job_store)

    async def scenario():
        queue = _queue(executor, job_store)
        queue.add(job_id)
        while not queue.running:
            await asyncio.sleep(0.005)
        assert queue.add(job_id) is False
        await queue.wait_idle()

    asyncio.run(scenario())

    assert executor.calls == [job_id]


def test_concurrency_is_bounded(job_store):
    executor = RecordingExecutor(job_store, delay=0.02)
    job_ids = [_create(job_store, prompt=f"p{i}") for i in range(5)]

    async def scenario():
        queue = _queue(executor, job_store, concurrency=2)
        for job_id in job_ids:
            queue.add(job_id)
        await queue.wait_idle()

    asyncio.run(scenario())

    assert executor.max_active == 2
    assert sorted(executor.calls) == sorted(job_ids)


def test_single_slot_runs_in_submission_order(job_store):
    executor = RecordingExecutor(job_store, delay=0.005)
    job_ids = [_create(job_store, prompt=f"p{i}") for i in range(4)]

    async def scenario():
        queue = _queue(executor, job_store, concurrency=1)
        for job_id in job_ids:
            queue.add(job_id)
        await queue.wait_idle()

    asyncio.run(scenario())

    assert executor.calls == job_ids
    assert executor.max_active == 1


def test_cancel_removes_pending_job(job_store):
    executor = RecordingExecutor(job_store)
    first = _create(job_store, prompt="first")
    second = _create(job_store, prompt="second")

    async def scenario():
        queue = _queue(executor, job_store)
        queue.add(first)
        queue.add(second)
        assert queue.cancel(first) is True
        assert queue.cancel(first) is False
        await queue.wait_idle()

    asyncio.run(scenario())

    assert executor.calls == [second]


def test_failed_job_retried_until_cap(job_store):
    executor = RecordingExecutor(job_store, fail=True)
    job_id = _create(job_store)

    async def scenario():
        queue = _queue(executor, job_store, max_retries=2)
        queue.add(job_id)
        await queue.wait_idle()

    asyncio.run(scenario())

    # two retries after the first failure
    assert executor.calls == [job_id, job_id, job_id]
    job = job_store.get(job_id)
    assert job.status == JobStatus.FAILED
    assert job.retries == 3


def test_zero_retries_runs_once(job_store):
    executor = RecordingExecutor(job_store, fail=True)
    job_id = _create(job_store)

    async def scenario():
        queue = _queue(executor, job_store, max_retries=0)
        queue.add(job_id)
        await queue.wait_idle()

    asyncio.run(scenario())

    assert executor.calls == [job_id]


def test_succeeded_job_not_retried(job_store):
    executor = RecordingExecutor(job_store)
    job_id = _create(job_store)

    async def scenario():
        queue = _queue(executor, job_store, max_retries=5)
        queue.add(job_id)
        await queue.wait_idle()

    asyncio.run(scenario())

    assert executor.calls == [job_id]


def test_executor_crash_recorded_as_failure(job_store):
    executor = RecordingExecutor(job_store, crash=True)
    job_id = _create(job_store)

    async def scenario():
        queue = _queue(executor, job_store, max_retries=0)
        queue.add(job_id)
        await queue.wait_idle()
        assert queue.running == set()

    asyncio.run(scenario())

    job = job_store.get(job_id)
    assert job.status == JobStatus.FAILED
    assert job.error == "executor crashed"
    assert job.retries == 1


def test_resume_on_boot_enqueues_unfinished_jobs(job_store):
    executor = RecordingExecutor(job_store)
    base = datetime(2026, 10, 1, 9, 0, 0)
    pending = _create(job_store, prompt="pending", created_at=base)
    running = _create(job_store, prompt="running", created_at=base + timedelta(seconds=1))
    done = _create(job_store, prompt="done", created_at=base + timedelta(seconds=2))
    job_store.update(running, status=JobStatus.RUNNING)
    job_store.update(done, status=JobStatus.SUCCEEDED)

    async def scenario():
        queue = _queue(executor, job_store)
        resumed = await queue.resume_on_boot()
        again = await queue.resume_on_boot()
        await queue.wait_idle()
        return resumed, again

    resumed, again = asyncio.run(scenario())

    assert resumed == [pending, running]
    assert again == []
    assert executor.calls == [pending, running]


class _BrokenScanStore:
    def __init__(self, inner):
        self.inner = inner

    def list_by_status(self, statuses):
        raise RuntimeError("database unavailable")

    def __getattr__(self, name):
        return getattr(self.inner, name)


def test_resume_on_boot_failure_is_logged(job_store, caplog):
    executor = RecordingExecutor(job_store)
    job_id = _create(job_store)

    async def scenario():
        queue = _queue(executor, _BrokenScanStore(job_store))
        resumed = await queue.resume_on_boot()
        assert queue.add(job_id) is True
        await queue.wait_idle()
        return resumed

    resumed = asyncio.run(scenario())

    assert resumed == []
    assert "Resume failed" in caplog.text
    assert executor.calls == [job_id]


def test_shutdown_leaves_running_job_for_next_boot(job_store):
    executor = RecordingExecutor(job_store, delay=1.0)
    job_id = _create(job_store)

    async def scenario():
        queue = _queue(executor, job_store)
        queue.add(job_id)
        while not queue.running:
            await asyncio.sleep(0.005)
        job_store.update(job_id, status=JobStatus.RUNNING)
        await queue.shutdown()
        assert queue.add(job_id) is False

    asyncio.run(scenario())

    assert job_store.get(job_id).status == JobStatus.RUNNING


def test_burst_of_adds_triggers_one_scheduling_pass(job_store):
    executor = RecordingExecutor(job_store)
    job_ids = [_create(job_store, prompt=f"p{i}") for i in range(5)]

    async def scenario():
        queue = JobQueue(executor=executor, jobs=job_store, concurrency=5, tick_delay=0.02)
        passes = []
        fill_slots = queue._fill_slots

        def counting_fill_slots():
            passes.append(len(queue.pending))
            fill_slots()

        queue._fill_slots = counting_fill_slots
        for job_id in job_ids:
            queue.add(job_id)
        assert passes == []
        await queue.wait_idle()
        return passes

    passes = asyncio.run(scenario())

    # the first pass saw all five adds; later passes come from completions
    assert passes[0] == 5
    assert len(passes) <= 1 + len(job_ids)
    assert sorted(executor.calls) == sorted(job_ids)


def test_zero_concurrency_means_one_slot(job_store):
    queue = JobQueue(executor=RecordingExecutor(job_store), jobs=job_store, concurrency=0)

    assert queue.concurrency == 1
