"""
Jobs API Routes
Submit, inspect, cancel/delete and rerun jobs.
"""

from typing import List, Optional
from fastapi import APIRouter, Body, Depends, HTTPException, Response, status

from app.api.deps import get_runtime
from app.core.errors import NotFoundError, ReferenceBudgetExceeded
from app.schemas.job import JobCreate, JobCreateResponse, JobRecord, RerunRequest
from app.services import jobs as job_service
from app.workers.runtime import Runtime

router = APIRouter()


@router.post("", response_model=JobCreateResponse, status_code=status.HTTP_202_ACCEPTED)
async def create_job(
    request: JobCreate,
    runtime: Runtime = Depends(get_runtime),
):
    """Persist a PENDING job and hand it to the queue."""
    try:
        job_id = await job_service.submit_job(
            runtime.jobs,
            runtime.queue,
            request,
            girls=runtime.girls,
            max_references=runtime.settings.MAX_REFERENCES,
        )
    except ReferenceBudgetExceeded as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    return JobCreateResponse(job_id=job_id)


@router.get("", response_model=List[JobRecord])
def list_jobs(
    limit: int = 50,
    runtime: Runtime = Depends(get_runtime),
):
    """Newest jobs first."""
    return job_service.list_jobs(runtime.jobs, limit=min(max(limit, 1), 200))


@router.get("/{job_id}", response_model=JobRecord)
def get_job(
    job_id: str,
    runtime: Runtime = Depends(get_runtime),
):
    """Get job status and result."""
    try:
        return job_service.get_job(runtime.jobs, job_id)
    except NotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Job not found")


@router.delete("/{job_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_job(
    job_id: str,
    runtime: Runtime = Depends(get_runtime),
):
    """Cancel a PENDING/RUNNING job; delete a finished one and its image."""
    try:
        await job_service.cancel_or_delete_job(runtime.jobs, runtime.queue, runtime.storage, job_id)
    except NotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Job not found")
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{job_id}/rerun", response_model=JobCreateResponse, status_code=status.HTTP_202_ACCEPTED)
async def rerun_job(
    job_id: str,
    request: Optional[RerunRequest] = Body(default=None),
    runtime: Runtime = Depends(get_runtime),
):
    """Submit a copy of a job as a new job with a fresh retry budget."""
    try:
        new_id = await job_service.rerun_job(runtime.jobs, runtime.queue, job_id, prompt=request.prompt if request else None)
    except NotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Job not found")
    return JobCreateResponse(job_id=new_id)
