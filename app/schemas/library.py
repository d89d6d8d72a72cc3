"""
Library Schemas
Stored reference image metadata.
"""

from typing import Optional
from pydantic import BaseModel


class StoredImage(BaseModel):
    """Location and type of a stored image."""
    id: str
    storage_path: str
    mime_type: str = "image/png"
    filename: Optional[str] = None

    class Config:
        from_attributes = True
