"""
Job Schemas
Pydantic models for job records, typed job inputs and API payloads.
"""

from datetime import datetime
from typing import Annotated, Any, Dict, List, Literal, Optional, Union
from enum import Enum
from pydantic import BaseModel, Field, TypeAdapter, field_validator, model_validator

from app.core.config import settings
from app.schemas.girl import CONTEXT_TYPES

ASPECT_RATIOS = ["1:1", "2:3", "3:2", "3:4", "4:3", "9:16", "16:9", "21:9"]


class JobStatus(str, Enum):
    """Job status enum."""
    PENDING = "PENDING"
    RUNNING = "RUNNING"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"


ACTIVE_STATUSES = (JobStatus.PENDING, JobStatus.RUNNING)
TERMINAL_STATUSES = (JobStatus.SUCCEEDED, JobStatus.FAILED, JobStatus.CANCELLED)


class JobType(str, Enum):
    """Kind of requested work."""
    GENERATE = "generate"
    EDIT = "edit"


class ContextSelection(BaseModel):
    """Per-slot selection flags."""
    use_image: bool = False
    use_text: bool = False


class ReferenceInputs(BaseModel):
    """Reference and output options shared by every job type."""
    manual_image_ids: List[str] = []
    image_ids: List[str] = []  # legacy raw list, only used when no manual ids
    ref_urls: List[str] = []
    context_selections: Dict[str, ContextSelection] = {}
    aspect_ratio: str = Field(default_factory=lambda: settings.DEFAULT_ASPECT_RATIO)
    image_size: str = Field(default_factory=lambda: settings.DEFAULT_IMAGE_SIZE)
    image_only: bool = False

    @field_validator("manual_image_ids", "image_ids", "ref_urls", mode="before")
    @classmethod
    def _drop_blank_ids(cls, v):
        if v is None:
            return []
        if isinstance(v, list):
            return [item.strip() for item in v if isinstance(item, str) and item.strip()]
        return v

    @field_validator("context_selections", mode="before")
    @classmethod
    def _known_slots_only(cls, v):
        if not isinstance(v, dict):
            return {}
        return {slot: value for slot, value in v.items() if slot in CONTEXT_TYPES}

    @field_validator("aspect_ratio")
    @classmethod
    def _supported_aspect_ratio(cls, v: str) -> str:
        if v not in ASPECT_RATIOS:
            raise ValueError(f"Unsupported aspect ratio: {v}. Supported: {', '.join(ASPECT_RATIOS)}")
        return v

    def selected_image_slots(self) -> List[str]:
        return [
            slot for slot in CONTEXT_TYPES
            if slot in self.context_selections and self.context_selections[slot].use_image
        ]

    def has_any_reference(self) -> bool:
        return bool(
            self.manual_image_ids
            or self.image_ids
            or self.ref_urls
            or any(s.use_image or s.use_text for s in self.context_selections.values())
        )


class GenerateInputs(ReferenceInputs):
    """Text-to-image generation, optionally guided by references."""
    type: Literal["generate"] = "generate"


class EditInputs(ReferenceInputs):
    """Edit of one or more source references."""
    type: Literal["edit"] = "edit"

    @model_validator(mode="after")
    def _requires_reference(self):
        if not self.has_any_reference():
            raise ValueError("Edit jobs need at least one reference image, URL or context slot")
        return self


JobInputs = Annotated[Union[GenerateInputs, EditInputs], Field(discriminator="type")]

_job_inputs_adapter = TypeAdapter(JobInputs)


def _type_value(job_type: Any) -> str:
    return getattr(job_type, "value", job_type) or JobType.GENERATE.value


def parse_job_inputs(job_type: Any, raw: Optional[Dict[str, Any]]) -> Union[GenerateInputs, EditInputs]:
    """Validate a stored inputs dict against the variant for ``job_type``."""
    data = dict(raw or {})
    data["type"] = _type_value(job_type)
    return _job_inputs_adapter.validate_python(data)


class JobCreate(BaseModel):
    """Schema for job submission."""
    type: JobType = JobType.GENERATE
    prompt: str = ""
    girl_id: Optional[str] = None
    inputs: JobInputs
    rerun_of: Optional[str] = None

    @model_validator(mode="before")
    @classmethod
    def _tag_inputs(cls, data):
        if isinstance(data, dict):
            inputs = data.get("inputs")
            if inputs is None or isinstance(inputs, dict):
                tagged = {**(inputs or {}), "type": _type_value(data.get("type"))}
                data = {**data, "inputs": tagged}
        return data


class JobRecord(BaseModel):
    """Persisted job as seen by the queue, executor and API."""
    id: str
    type: JobType = JobType.GENERATE
    prompt: str = ""
    girl_id: Optional[str] = None
    inputs: Dict[str, Any] = {}
    status: JobStatus = JobStatus.PENDING
    error: Optional[str] = None
    retries: int = 0
    rerun_of: Optional[str] = None
    last_rerun_id: Optional[str] = None
    result: Optional[Dict[str, Any]] = None
    resolved_references: Optional[Dict[str, Any]] = None
    usage: Optional[Dict[str, Any]] = None
    cost_usd: Optional[float] = None
    created_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None

    class Config:
        from_attributes = True

    @field_validator("inputs", mode="before")
    @classmethod
    def _inputs_dict(cls, v):
        return v if isinstance(v, dict) else {}

    @field_validator("retries", mode="before")
    @classmethod
    def _retries_int(cls, v):
        return v or 0


class JobCreateResponse(BaseModel):
    job_id: str


class RerunRequest(BaseModel):
    """Optional overrides for a rerun."""
    prompt: Optional[str] = None


class CostSummary(BaseModel):
    """Spend on succeeded jobs over rolling windows (USD)."""
    today: float = 0.0
    last7: float = 0.0
    last30: float = 0.0
