"""
Error Types
Exception hierarchy shared by the job queue, executor and reference resolver.
"""

from typing import Optional


class JobQueueError(Exception):
    """Base exception for job pipeline errors."""

    def __init__(self, message: str, retryable: bool = True, details: Optional[dict] = None):
        super().__init__(message)
        self.retryable = retryable
        self.details = details or {}


class NotFoundError(JobQueueError):
    """A referenced job, character or stored image does not exist."""

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(message, retryable=False, details=details)


class UpstreamFailure(JobQueueError):
    """Provider call or file upload failed (network error, non-2xx, no images)."""

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(message, retryable=True, details=details)


class ResourceFetchFailure(JobQueueError):
    """An external reference URL could not be fetched."""

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(message, retryable=True, details=details)


class SchedulerInternalError(JobQueueError):
    """Boot scan or scheduling pass failure. Logged, never raised to callers."""


class ReferenceBudgetExceeded(JobQueueError):
    """A submitted job asks for more reference images than allowed."""

    def __init__(self, requested: int, limit: int):
        super().__init__(
            f"Too many reference images: {requested} requested, at most {limit} allowed",
            retryable=False,
            details={"requested": requested, "limit": limit},
        )


__all__ = [
    "JobQueueError",
    "NotFoundError",
    "UpstreamFailure",
    "ResourceFetchFailure",
    "SchedulerInternalError",
    "ReferenceBudgetExceeded",
]
