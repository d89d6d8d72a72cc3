"""
Girl Model
Character profile holding named context assets (one per context slot).
"""

from datetime import datetime
from sqlalchemy import Column, String, DateTime, JSON

from app.core.database import Base


class Girl(Base):
    """Character profile model."""

    __tablename__ = "girls"

    id = Column(String, primary_key=True)
    name = Column(String, nullable=False)

    # {"bedroom": {"image_id": "...", "description": "..."}, ...}
    context_assets = Column(JSON, default=dict)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
