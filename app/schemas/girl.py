"""
Girl Schemas
Context slots and context assets owned by a character.
"""

from typing import Dict, Tuple
from pydantic import BaseModel, field_validator

# Fixed semantic slots, in prompt/reference order
CONTEXT_TYPES: Tuple[str, ...] = ("bedroom", "bathroom", "phone")

CONTEXT_LABELS: Dict[str, str] = {
    "bedroom": "Bedroom",
    "bathroom": "Bathroom",
    "phone": "Phone",
}


def is_valid_context_type(value: str) -> bool:
    return value in CONTEXT_TYPES


class ContextAsset(BaseModel):
    """Reference image and description for one context slot."""
    image_id: str = ""
    description: str = ""

    @field_validator("image_id", "description", mode="before")
    @classmethod
    def _clean(cls, v):
        if v is None:
            return ""
        if isinstance(v, str):
            return v.strip()
        return ""

    @property
    def is_empty(self) -> bool:
        return not self.image_id and not self.description
