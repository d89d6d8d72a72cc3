"""
Girl Store
Read-only access to a character's context assets.
"""

from typing import Dict, Optional

from sqlalchemy.orm import sessionmaker

from app.core.database import SessionLocal
from app.models.girl import Girl
from app.schemas.girl import ContextAsset
from app.services.context import normalize_context_assets


class GirlStore:
    """Character lookups over a SQLAlchemy session factory."""

    def __init__(self, session_factory: sessionmaker = SessionLocal):
        self._session_factory = session_factory

    def get_context_assets(self, girl_id: str) -> Optional[Dict[str, ContextAsset]]:
        """
        Context assets for every slot, or None if the character does not exist.
        Missing or malformed slots come back empty.
        """
        db = self._session_factory()
        try:
            girl = db.get(Girl, girl_id)
            if girl is None:
                return None
            return normalize_context_assets(girl.context_assets)
        finally:
            db.close()
