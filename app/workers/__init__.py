# Workers package - in-process job execution

from app.workers.executor import (
    ExecutionResult,
    JobExecutor,
    artifact_path,
)
from app.workers.queue import JobQueue
from app.workers.runtime import Runtime, build_runtime

__all__ = [
    # Executor
    "ExecutionResult",
    "JobExecutor",
    "artifact_path",
    # Queue
    "JobQueue",
    # Composition
    "Runtime",
    "build_runtime",
]
