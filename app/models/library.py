"""
Library Image Model
Metadata for images stored in durable storage and usable as references.
"""

from datetime import datetime
from sqlalchemy import Column, String, DateTime

from app.core.database import Base


class LibraryImage(Base):
    """Stored reference image."""

    __tablename__ = "library_images"

    id = Column(String, primary_key=True)
    storage_path = Column(String, nullable=False)
    mime_type = Column(String, nullable=False, default="image/png")
    filename = Column(String, nullable=True)
    girl_id = Column(String, nullable=True, index=True)
    public_url = Column(String, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
