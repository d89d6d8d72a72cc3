# Services package - business logic and external integrations
from app.services.gemini_image import FileHandle, GeminiImageService, GenerationOutput, GeneratedImage
from app.services.storage import StorageService
from app.services.references import (
    CachedHandle,
    MemoryHandleCache,
    RedisHandleCache,
    ReferenceResolver,
    build_handle_cache,
)
from app.services.context import assemble_context
from app.services.costs import estimate_cost, summarize_costs

__all__ = [
    "FileHandle",
    "GeminiImageService",
    "GenerationOutput",
    "GeneratedImage",
    "StorageService",
    "CachedHandle",
    "MemoryHandleCache",
    "RedisHandleCache",
    "ReferenceResolver",
    "build_handle_cache",
    "assemble_context",
    "estimate_cost",
    "summarize_costs",
]
