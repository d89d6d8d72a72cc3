"""
Job Store
Persistence for job records with partial-field (patch) updates.
"""

import uuid
from datetime import datetime
from typing import Any, Iterable, List, Optional

from sqlalchemy.orm import sessionmaker

from app.core.database import SessionLocal
from app.core.errors import NotFoundError
from app.models.job import Job
from app.schemas.job import JobCreate, JobRecord, JobStatus

# Columns a patch may touch; ``id`` and ``created_at`` are immutable
_PATCHABLE = {
    "type", "prompt", "girl_id", "inputs", "status", "error", "retries",
    "rerun_of", "last_rerun_id", "result", "resolved_references", "usage",
    "cost_usd", "started_at", "finished_at",
}


def new_job_id() -> str:
    return f"job_{uuid.uuid4().hex[:12]}"


def _status_value(status: Any) -> str:
    return getattr(status, "value", status)


class JobStore:
    """Job CRUD over a SQLAlchemy session factory."""

    def __init__(self, session_factory: sessionmaker = SessionLocal):
        self._session_factory = session_factory

    def create(self, job_in: JobCreate, created_at: Optional[datetime] = None) -> str:
        """
        Create a new PENDING job.

        Returns:
            The new job id
        """
        db = self._session_factory()
        try:
            job_id = new_job_id()
            db_job = Job(
                id=job_id,
                type=job_in.type.value,
                prompt=job_in.prompt or "",
                girl_id=job_in.girl_id,
                inputs=job_in.inputs.model_dump(exclude={"type"}),
                status=JobStatus.PENDING.value,
                retries=0,
                rerun_of=job_in.rerun_of,
            )
            if created_at is not None:
                db_job.created_at = created_at
            db.add(db_job)
            db.commit()
            return job_id
        finally:
            db.close()

    def get(self, job_id: str) -> Optional[JobRecord]:
        """Retrieve a job by id, or None."""
        db = self._session_factory()
        try:
            db_job = db.get(Job, job_id)
            return JobRecord.model_validate(db_job) if db_job else None
        finally:
            db.close()

    def update(self, job_id: str, **patch: Any) -> None:
        """
        Apply a partial update.

        Raises:
            NotFoundError: if the job does not exist
            ValueError: on an unknown field
        """
        unknown = set(patch) - _PATCHABLE
        if unknown:
            raise ValueError(f"Cannot patch job fields: {', '.join(sorted(unknown))}")

        db = self._session_factory()
        try:
            db_job = db.get(Job, job_id)
            if db_job is None:
                raise NotFoundError(f"Job not found: {job_id}")
            for field, value in patch.items():
                if field == "status":
                    value = _status_value(value)
                setattr(db_job, field, value)
            db.commit()
        finally:
            db.close()

    def list_by_status(self, statuses: Iterable[Any]) -> List[JobRecord]:
        """Jobs in any of ``statuses``, oldest first."""
        values = [_status_value(s) for s in statuses]
        db = self._session_factory()
        try:
            rows = (
                db.query(Job)
                .filter(Job.status.in_(values))
                .order_by(Job.created_at.asc())
                .all()
            )
            return [JobRecord.model_validate(row) for row in rows]
        finally:
            db.close()

    def list_recent(self, limit: int = 50) -> List[JobRecord]:
        """Newest jobs first."""
        db = self._session_factory()
        try:
            rows = db.query(Job).order_by(Job.created_at.desc()).limit(limit).all()
            return [JobRecord.model_validate(row) for row in rows]
        finally:
            db.close()

    def delete(self, job_id: str) -> bool:
        """Delete a job. Returns False when it did not exist."""
        db = self._session_factory()
        try:
            db_job = db.get(Job, job_id)
            if db_job is None:
                return False
            db.delete(db_job)
            db.commit()
            return True
        finally:
            db.close()
