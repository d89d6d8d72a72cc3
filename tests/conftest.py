"""Shared fixtures: SQLite database, stores and provider/storage doubles."""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta
from typing import Dict, List, Optional

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

import app.models  # noqa: F401 - registers tables on Base.metadata
from app.core.clock import Clock
from app.core.database import Base
from app.core.errors import NotFoundError
from app.crud import GirlStore, JobStore, LibraryStore
from app.models import Girl, LibraryImage
from app.schemas.job import JobStatus
from app.services.gemini_image import FileHandle, GeneratedImage, GenerationOutput
from app.services.references import MemoryHandleCache, ReferenceResolver
from app.workers.executor import ExecutionResult, JobExecutor


# ---------------------------------------------------------------------------
# Test doubles
# ---------------------------------------------------------------------------


class FakeClock(Clock):
    def __init__(self, start: Optional[datetime] = None):
        self.current = start or datetime(2026, 10, 18, 12, 0, 0)

    def now(self) -> datetime:
        return self.current

    def advance(self, seconds: float) -> None:
        self.current += timedelta(seconds=seconds)


class FakeProvider:
    """Records uploads and generation calls."""

    def __init__(self, images_out: int = 1, text: str = "Here you go", error: Optional[Exception] = None):
        self.images_out = images_out
        self.text = text
        self.error = error
        self.uploads: List[tuple] = []
        self.calls: List[dict] = []
        self.before_generate = None

    async def upload_file(self, data: bytes, mime_type: str = "image/png", display_name: str = "reference.png") -> FileHandle:
        self.uploads.append((data, mime_type, display_name))
        return FileHandle(uri=f"files/upload-{len(self.uploads)}", mime_type=mime_type)

    async def generate(self, file_handles, prompt, aspect_ratio=None, image_size=None, image_only=False) -> GenerationOutput:
        self.calls.append({
            "handles": list(file_handles),
            "prompt": prompt,
            "aspect_ratio": aspect_ratio,
            "image_size": image_size,
            "image_only": image_only,
        })
        if self.before_generate is not None:
            self.before_generate()
        if self.error is not None:
            raise self.error
        return GenerationOutput(
            images=[GeneratedImage(data=b"image-%d" % i, mime_type="image/png") for i in range(self.images_out)],
            text=self.text,
        )


class FakeStorage:
    def __init__(self, files: Optional[Dict[str, bytes]] = None):
        self.files: Dict[str, bytes] = dict(files or {})
        self.writes: List[str] = []
        self.deleted: List[str] = []

    async def read(self, path: str) -> bytes:
        if path not in self.files:
            raise NotFoundError(f"Stored file not found: {path}")
        return self.files[path]

    async def write(self, path: str, data: bytes, mime_type: str = "image/png") -> str:
        self.files[path] = data
        self.writes.append(path)
        return f"https://cdn.test/{path}"

    async def delete(self, path: str) -> None:
        self.deleted.append(path)
        self.files.pop(path, None)


class RecordingExecutor:
    """Stand-in for JobExecutor that tracks call order and concurrency."""

    def __init__(self, jobs: JobStore, delay: float = 0.0, fail: bool = False, crash: bool = False):
        self.jobs = jobs
        self.delay = delay
        self.fail = fail
        self.crash = crash
        self.calls: List[str] = []
        self.active = 0
        self.max_active = 0

    async def execute(self, job_id: str) -> ExecutionResult:
        self.calls.append(job_id)
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            await asyncio.sleep(self.delay)
            if self.crash:
                raise RuntimeError("executor crashed")
            job = self.jobs.get(job_id)
            if self.fail:
                retries = job.retries + 1
                self.jobs.update(job_id, status=JobStatus.FAILED, error="boom", retries=retries)
                return ExecutionResult(status=JobStatus.FAILED.value, retries=retries, error="boom")
            self.jobs.update(job_id, status=JobStatus.SUCCEEDED)
            return ExecutionResult(status=JobStatus.SUCCEEDED.value)
        finally:
            self.active -= 1


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def session_factory(tmp_path):
    # Store calls run in worker threads, so each session gets its own connection
    engine = create_engine(
        f"sqlite:///{tmp_path / 'jobs.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    Base.metadata.create_all(engine)
    factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    yield factory
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture
def job_store(session_factory) -> JobStore:
    return JobStore(session_factory)


@pytest.fixture
def girl_store(session_factory) -> GirlStore:
    return GirlStore(session_factory)


@pytest.fixture
def library_store(session_factory) -> LibraryStore:
    return LibraryStore(session_factory)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def storage() -> FakeStorage:
    return FakeStorage()


@pytest.fixture
def add_girl(session_factory):
    def _add(girl_id: str, context_assets: dict, name: str = "Mia") -> None:
        db = session_factory()
        try:
            db.add(Girl(id=girl_id, name=name, context_assets=context_assets))
            db.commit()
        finally:
            db.close()
    return _add


@pytest.fixture
def add_library_image(session_factory, storage):
    def _add(image_id: str, data: bytes = b"ref", mime_type: str = "image/png") -> None:
        path = f"library/{image_id}.png"
        storage.files[path] = data
        db = session_factory()
        try:
            db.add(LibraryImage(id=image_id, storage_path=path, mime_type=mime_type, filename=f"{image_id}.png"))
            db.commit()
        finally:
            db.close()
    return _add


@pytest.fixture
def resolver(provider, storage, library_store, clock) -> ReferenceResolver:
    return ReferenceResolver(
        provider=provider,
        storage=storage,
        library=library_store,
        cache=MemoryHandleCache(),
        clock=clock,
        ttl_seconds=46 * 60 * 60,
        safety_margin_seconds=5 * 60,
    )


@pytest.fixture
def executor(job_store, girl_store, resolver, provider, storage, clock) -> JobExecutor:
    return JobExecutor(
        jobs=job_store,
        girls=girl_store,
        resolver=resolver,
        provider=provider,
        storage=storage,
        clock=clock,
        max_references=3,
    )
