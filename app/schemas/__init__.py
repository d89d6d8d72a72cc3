# Pydantic schemas package
from app.schemas.girl import CONTEXT_TYPES, CONTEXT_LABELS, ContextAsset
from app.schemas.job import (
    ASPECT_RATIOS, ACTIVE_STATUSES, TERMINAL_STATUSES,
    JobStatus, JobType, ContextSelection, ReferenceInputs, GenerateInputs, EditInputs,
    JobInputs, parse_job_inputs, JobCreate, JobRecord, JobCreateResponse, RerunRequest, CostSummary
)
from app.schemas.library import StoredImage

__all__ = [
    "CONTEXT_TYPES", "CONTEXT_LABELS", "ContextAsset",
    "ASPECT_RATIOS", "ACTIVE_STATUSES", "TERMINAL_STATUSES",
    "JobStatus", "JobType", "ContextSelection", "ReferenceInputs", "GenerateInputs", "EditInputs",
    "JobInputs", "parse_job_inputs", "JobCreate", "JobRecord", "JobCreateResponse", "RerunRequest",
    "CostSummary",
    "StoredImage",
]
