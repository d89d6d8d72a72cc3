# Persistence stores
from app.crud.crud_job import JobStore, new_job_id
from app.crud.crud_girl import GirlStore
from app.crud.crud_library import LibraryStore

__all__ = ["JobStore", "new_job_id", "GirlStore", "LibraryStore"]
