"""
Costs API Routes
Spend summary over succeeded jobs.
"""

from fastapi import APIRouter, Depends

from app.api.deps import get_runtime
from app.schemas.job import CostSummary
from app.services import jobs as job_service
from app.workers.runtime import Runtime

router = APIRouter()


@router.get("/summary", response_model=CostSummary)
def get_cost_summary(runtime: Runtime = Depends(get_runtime)):
    """USD spent today, over the last 7 days and over the last 30 days."""
    return job_service.cost_summary(runtime.jobs, runtime.clock.now())
