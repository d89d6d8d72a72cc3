"""
Library Store
Metadata lookups for stored reference images.
"""

from typing import Optional

from sqlalchemy.orm import sessionmaker

from app.core.database import SessionLocal
from app.models.library import LibraryImage
from app.schemas.library import StoredImage


class LibraryStore:
    """Stored-image metadata over a SQLAlchemy session factory."""

    def __init__(self, session_factory: sessionmaker = SessionLocal):
        self._session_factory = session_factory

    def get(self, image_id: str) -> Optional[StoredImage]:
        db = self._session_factory()
        try:
            image = db.get(LibraryImage, image_id)
            return StoredImage.model_validate(image) if image else None
        finally:
            db.close()
