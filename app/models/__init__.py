# Database models package
from app.models.girl import Girl
from app.models.job import Job
from app.models.library import LibraryImage

__all__ = [
    "Girl",
    "Job",
    "LibraryImage",
]
