"""
Job Model
Database model for image generation/edit jobs.
"""

from datetime import datetime
from sqlalchemy import Column, String, Text, DateTime, Integer, Float, JSON

from app.core.database import Base


class Job(Base):
    """Generation job model."""

    __tablename__ = "jobs"

    id = Column(String, primary_key=True)  # job_xxxx format
    type = Column(String, nullable=False, default="generate")  # generate | edit

    # Request
    prompt = Column(Text, nullable=False, default="")
    girl_id = Column(String, nullable=True, index=True)
    inputs = Column(JSON, default=dict)

    # Status: PENDING, RUNNING, SUCCEEDED, FAILED, CANCELLED
    status = Column(String, default="PENDING", index=True)
    error = Column(Text, nullable=True)
    retries = Column(Integer, default=0, nullable=False)

    # Reruns
    rerun_of = Column(String, nullable=True, index=True)
    last_rerun_id = Column(String, nullable=True)

    # Result
    result = Column(JSON, nullable=True)
    resolved_references = Column(JSON, nullable=True)

    # Accounting
    usage = Column(JSON, nullable=True)
    cost_usd = Column(Float, nullable=True)

    # Timestamps
    created_at = Column(DateTime, default=datetime.utcnow)
    started_at = Column(DateTime, nullable=True)
    finished_at = Column(DateTime, nullable=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def __repr__(self):
        return f"<Job(id='{self.id}', status='{self.status}')>"
