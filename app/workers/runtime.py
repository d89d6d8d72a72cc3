"""
Runtime
Composition root: builds stores, services, the executor and the one job
queue owned by the process.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.orm import sessionmaker

from app.core.clock import Clock, SystemClock
from app.core.config import Settings, settings as default_settings
from app.core.database import SessionLocal
from app.core.redis import RedisManager
from app.crud import GirlStore, JobStore, LibraryStore
from app.services.gemini_image import GeminiImageService
from app.services.references import ReferenceResolver, build_handle_cache
from app.services.storage import StorageService
from app.workers.executor import JobExecutor
from app.workers.queue import JobQueue

logger = logging.getLogger(__name__)


@dataclass
class Runtime:
    """Everything a request handler or worker needs."""
    settings: Settings
    clock: Clock
    jobs: JobStore
    girls: GirlStore
    library: LibraryStore
    storage: StorageService
    provider: GeminiImageService
    resolver: ReferenceResolver
    executor: JobExecutor
    queue: JobQueue
    redis: Optional[RedisManager] = None

    async def close(self) -> None:
        await self.queue.shutdown()
        if self.redis is not None:
            self.redis.close()


def build_runtime(
    config: Optional[Settings] = None,
    session_factory: sessionmaker = SessionLocal,
    clock: Optional[Clock] = None,
) -> Runtime:
    """Wire the process's services from settings."""
    config = config or default_settings
    clock = clock or SystemClock()

    jobs = JobStore(session_factory)
    girls = GirlStore(session_factory)
    library = LibraryStore(session_factory)
    storage = StorageService(config)
    provider = GeminiImageService(
        api_key=config.GEMINI_API_KEY,
        model_name=config.GEMINI_MODEL,
        timeout_seconds=config.GENERATION_TIMEOUT_SECONDS,
    )

    redis_manager = None
    redis_client = None
    if config.HANDLE_CACHE_BACKEND.lower() == "redis":
        redis_manager = RedisManager(config.REDIS_URL)
        redis_client = redis_manager.get_connection()
    cache = build_handle_cache(redis_client, config.HANDLE_CACHE_BACKEND)

    resolver = ReferenceResolver(
        provider=provider,
        storage=storage,
        library=library,
        cache=cache,
        clock=clock,
        ttl_seconds=config.FILE_URI_TTL_SECONDS,
        safety_margin_seconds=config.FILE_URI_SAFETY_MARGIN_SECONDS,
        fetch_timeout=config.URL_FETCH_TIMEOUT_SECONDS,
    )
    executor = JobExecutor(
        jobs=jobs,
        girls=girls,
        resolver=resolver,
        provider=provider,
        storage=storage,
        clock=clock,
        max_references=config.MAX_REFERENCES,
    )
    queue = JobQueue(
        executor=executor,
        jobs=jobs,
        concurrency=config.JOB_QUEUE_CONCURRENCY,
        max_retries=config.JOB_QUEUE_MAX_RETRIES,
        retry_delay=config.JOB_QUEUE_RETRY_DELAY_SECONDS,
        tick_delay=config.JOB_QUEUE_TICK_SECONDS,
    )
    logger.info(
        f"[Runtime] Queue concurrency={queue.concurrency} max_retries={queue.max_retries} "
        f"storage={storage.backend} cache={type(cache).__name__}"
    )

    return Runtime(
        settings=config,
        clock=clock,
        jobs=jobs,
        girls=girls,
        library=library,
        storage=storage,
        provider=provider,
        resolver=resolver,
        executor=executor,
        queue=queue,
        redis=redis_manager,
    )
