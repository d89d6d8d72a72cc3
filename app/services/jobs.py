"""
Job Service
Client-side job operations: submit, cancel/delete, rerun, cost summary.
These are the only callers of ``JobQueue.add``/``cancel`` besides the queue,
so they run on the queue's event loop; store calls go to worker threads.
"""

import asyncio
import logging
from datetime import datetime
from typing import List, Optional

from app.core.config import settings
from app.core.errors import NotFoundError, ReferenceBudgetExceeded
from app.schemas.job import ACTIVE_STATUSES, CostSummary, JobCreate, JobRecord, JobStatus
from app.services.context import combine_reference_ids
from app.services.costs import summarize_costs

logger = logging.getLogger(__name__)


def count_references(job_in: JobCreate, girls=None) -> int:
    """
    References the job would send: distinct manual ids, URLs, and selected
    context images the character actually has.
    """
    inputs = job_in.inputs
    manual, _ = combine_reference_ids(inputs.manual_image_ids, [], inputs.image_ids)
    total = len(manual) + len(inputs.ref_urls)

    slots = inputs.selected_image_slots()
    if slots and job_in.girl_id and girls is not None:
        assets = girls.get_context_assets(job_in.girl_id) or {}
        context_ids = {assets[s].image_id for s in slots if s in assets and assets[s].image_id}
        total += len(context_ids - set(manual))
    return total


async def submit_job(jobs, queue, job_in: JobCreate, girls=None, max_references: Optional[int] = None) -> str:
    """
    Persist a PENDING job and enqueue it.

    Raises:
        ReferenceBudgetExceeded: too many reference images
    """
    limit = settings.MAX_REFERENCES if max_references is None else max_references
    requested = await asyncio.to_thread(count_references, job_in, girls)
    if requested > limit:
        raise ReferenceBudgetExceeded(requested, limit)

    job_id = await asyncio.to_thread(jobs.create, job_in)
    queue.add(job_id)
    logger.info(f"[Jobs] Submitted {job_in.type.value} job {job_id} ({requested} reference(s))")
    return job_id


def get_job(jobs, job_id: str) -> JobRecord:
    job = jobs.get(job_id)
    if job is None:
        raise NotFoundError(f"Job not found: {job_id}")
    return job


def list_jobs(jobs, limit: int = 50) -> List[JobRecord]:
    return jobs.list_recent(limit)


async def cancel_or_delete_job(jobs, queue, storage, job_id: str) -> JobStatus:
    """
    Cancel an active job, or delete a finished one with its artifact.

    Returns:
        CANCELLED if the job was cancelled, otherwise the deleted job's status
    """
    job = await asyncio.to_thread(get_job, jobs, job_id)

    if job.status in ACTIVE_STATUSES:
        queue.cancel(job_id)
        await asyncio.to_thread(jobs.update, job_id, status=JobStatus.CANCELLED)
        logger.info(f"[Jobs] Cancelled {job_id} (was {job.status.value})")
        return JobStatus.CANCELLED

    storage_path = (job.result or {}).get("storage_path")
    if storage_path:
        await storage.delete(storage_path)
    await asyncio.to_thread(jobs.delete, job_id)
    logger.info(f"[Jobs] Deleted {job_id}")
    return job.status


async def rerun_job(jobs, queue, job_id: str, prompt: Optional[str] = None) -> str:
    """
    Create and enqueue a new job from an existing one. The new job has a
    fresh retry budget and points back through ``rerun_of``.
    """
    original = await asyncio.to_thread(get_job, jobs, job_id)
    job_in = JobCreate(
        type=original.type,
        prompt=original.prompt if prompt is None else prompt,
        girl_id=original.girl_id,
        inputs=original.inputs,
        rerun_of=original.id,
    )
    new_id = await asyncio.to_thread(jobs.create, job_in)
    await asyncio.to_thread(jobs.update, original.id, last_rerun_id=new_id)
    queue.add(new_id)
    logger.info(f"[Jobs] Rerun of {original.id} submitted as {new_id}")
    return new_id


def cost_summary(jobs, now: datetime) -> CostSummary:
    return summarize_costs(jobs.list_by_status([JobStatus.SUCCEEDED]), now)
