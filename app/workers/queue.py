"""
Job Queue
In-process scheduler for job executions: FIFO admission, bounded
concurrency, cancellation of pending jobs, capped retry of failures and
recovery of unfinished jobs after a restart.

All public methods must be called from the event loop that runs the queue;
the pending list and running set are only touched on that loop.
"""

import asyncio
import logging
from collections import deque
from typing import Deque, List, Optional, Set

from app.core.config import settings
from app.core.errors import SchedulerInternalError
from app.schemas.job import ACTIVE_STATUSES, JobStatus

logger = logging.getLogger(__name__)


class JobQueue:
    """
    Scheduler for ``JobExecutor.execute`` calls.

    Features:
    - FIFO pending list, at most one pending or running entry per job id
    - At most ``concurrency`` executions in flight
    - Debounced scheduling passes (bursts of ``add`` trigger one pass)
    - FAILED jobs re-enqueued after ``retry_delay`` while their persisted
      retry count is within ``max_retries``
    - One boot scan per queue for PENDING/RUNNING jobs
    """

    def __init__(
        self,
        executor,
        jobs,
        concurrency: Optional[int] = None,
        max_retries: Optional[int] = None,
        retry_delay: Optional[float] = None,
        tick_delay: Optional[float] = None,
    ):
        self._executor = executor
        self._jobs = jobs
        self.concurrency = max(settings.JOB_QUEUE_CONCURRENCY if concurrency is None else concurrency, 1)
        self.max_retries = settings.JOB_QUEUE_MAX_RETRIES if max_retries is None else max_retries
        self.retry_delay = settings.JOB_QUEUE_RETRY_DELAY_SECONDS if retry_delay is None else retry_delay
        self.tick_delay = settings.JOB_QUEUE_TICK_SECONDS if tick_delay is None else tick_delay

        self._pending: Deque[str] = deque()
        self._running: Set[str] = set()
        self._tasks: Set[asyncio.Task] = set()
        self._retry_handles: Set[asyncio.TimerHandle] = set()
        self._tick_handle: Optional[asyncio.TimerHandle] = None
        self._booted = False
        self._closed = False

    @property
    def pending(self) -> List[str]:
        return list(self._pending)

    @property
    def running(self) -> Set[str]:
        return set(self._running)

    def add(self, job_id: str) -> bool:
        """
        Enqueue ``job_id`` at the tail unless it is already pending or running.

        Returns:
            True if the job was enqueued
        """
        if self._closed:
            logger.warning(f"[Queue] Ignoring add({job_id}) on a stopped queue")
            return False
        if job_id in self._pending or job_id in self._running:
            return False
        self._pending.append(job_id)
        logger.debug(f"[Queue] Enqueued {job_id} (pending={len(self._pending)})")
        self._schedule()
        return True

    def cancel(self, job_id: str) -> bool:
        """
        Drop ``job_id`` from the pending list.

        A running execution is not interrupted; the caller marks its
        persisted status CANCELLED separately.

        Returns:
            True if the job was pending
        """
        try:
            self._pending.remove(job_id)
        except ValueError:
            return False
        logger.info(f"[Queue] Cancelled pending job {job_id}")
        return True

    async def resume_on_boot(self) -> List[str]:
        """
        Enqueue jobs left PENDING or RUNNING by a previous process.
        Runs once per queue; later calls return an empty list.

        Returns:
            Job ids enqueued by this call
        """
        if self._booted:
            return []
        self._booted = True

        try:
            orphans = await asyncio.to_thread(self._jobs.list_by_status, ACTIVE_STATUSES)
        except Exception as e:
            logger.exception(f"[Queue] Resume failed: {SchedulerInternalError(str(e))}")
            return []

        resumed = [job.id for job in orphans if self.add(job.id)]
        if resumed:
            logger.info(f"[Queue] Resumed {len(resumed)} unfinished job(s): {', '.join(resumed)}")
        return resumed

    def _schedule(self) -> None:
        """Request a scheduling pass; a pass already requested absorbs this one."""
        if self._tick_handle is not None or self._closed:
            return
        loop = asyncio.get_running_loop()
        self._tick_handle = loop.call_later(self.tick_delay, self._tick)

    def _tick(self) -> None:
        self._tick_handle = None
        try:
            self._fill_slots()
        except Exception as e:
            logger.exception(f"[Queue] Scheduling pass failed: {SchedulerInternalError(str(e))}")

    def _fill_slots(self) -> None:
        loop = asyncio.get_running_loop()
        while len(self._running) < self.concurrency and self._pending:
            job_id = self._pending.popleft()
            self._running.add(job_id)
            task = loop.create_task(self._run_one(job_id), name=f"job:{job_id}")
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

    async def _run_one(self, job_id: str) -> None:
        try:
            result = await self._executor.execute(job_id)
            if result.status == JobStatus.FAILED:
                await self._maybe_retry(job_id, result.retries)
        except Exception as e:
            logger.exception(f"[Queue] Job {job_id} crashed: {e}")
            await self._record_crash(job_id, e)
        finally:
            self._running.discard(job_id)
            self._schedule()

    async def _record_crash(self, job_id: str, error: Exception) -> None:
        """Executor raised instead of returning: persist FAILED and maybe retry."""
        try:
            job = await asyncio.to_thread(self._jobs.get, job_id)
            if job is None or job.status == JobStatus.CANCELLED:
                return
            retries = (job.retries or 0) + 1
            await asyncio.to_thread(
                self._jobs.update,
                job_id,
                status=JobStatus.FAILED,
                error=str(error) or error.__class__.__name__,
                retries=retries,
            )
        except Exception:
            logger.exception(f"[Queue] Could not record failure of {job_id}")
            return
        await self._maybe_retry(job_id, retries)

    async def _maybe_retry(self, job_id: str, fallback_retries: Optional[int]) -> None:
        """
        Re-enqueue a FAILED job after ``retry_delay`` while it has retries left.

        ``retries`` counts failed attempts, so R retries allow R + 1 attempts.
        """
        if self._closed:
            return
        try:
            job = await asyncio.to_thread(self._jobs.get, job_id)
        except Exception:
            logger.exception(f"[Queue] Could not reload {job_id} for retry")
            job = None

        if job is not None and job.status != JobStatus.FAILED:
            return
        retries = job.retries if job is not None else (fallback_retries or 0)

        if retries <= self.max_retries:
            logger.warning(
                f"[Retry {retries}/{self.max_retries}] job {job_id} failed. "
                f"Retrying in {self.retry_delay:.1f}s..."
            )
            self._retry_later(job_id)
        else:
            logger.error(f"[Failed] job {job_id} exhausted all {self.max_retries} retries")

    def _retry_later(self, job_id: str) -> None:
        handle: Optional[asyncio.TimerHandle] = None

        def fire() -> None:
            self._retry_handles.discard(handle)
            self.add(job_id)

        handle = asyncio.get_running_loop().call_later(self.retry_delay, fire)
        self._retry_handles.add(handle)

    def is_idle(self) -> bool:
        return not (self._pending or self._running or self._retry_handles or self._tick_handle)

    async def wait_idle(self, poll_interval: float = 0.01) -> None:
        """Wait until nothing is pending, running or waiting to be retried."""
        while not self.is_idle():
            await asyncio.sleep(poll_interval)

    async def shutdown(self) -> None:
        """
        Stop scheduling and cancel in-flight executions.

        Interrupted jobs stay RUNNING in the store and are picked up by the
        next process's boot scan.
        """
        self._closed = True
        if self._tick_handle is not None:
            self._tick_handle.cancel()
            self._tick_handle = None
        for handle in self._retry_handles:
            handle.cancel()
        self._retry_handles.clear()

        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._pending.clear()
        logger.info(f"[Queue] Stopped ({len(tasks)} execution(s) interrupted)")
