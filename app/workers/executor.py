"""
Job Executor
Runs one job end-to-end and leaves it in a terminal persisted state.

The executor never retries; a retried job is a fresh call to ``execute``
scheduled by the queue. Re-running a job id overwrites its previous artifact.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Dict, List, Optional

from app.core.clock import Clock, SystemClock
from app.core.config import settings
from app.core.errors import NotFoundError, UpstreamFailure
from app.schemas.girl import ContextAsset
from app.schemas.job import JobRecord, JobStatus, parse_job_inputs
from app.services.context import ContextAssembly, assemble_context, empty_context_assets
from app.services.costs import build_usage, estimate_cost
from app.services.gemini_image import FileHandle, GeneratedImage

logger = logging.getLogger(__name__)

NOT_FOUND = "NOT_FOUND"


@dataclass
class ExecutionResult:
    """Outcome of one ``execute`` call."""
    status: str
    retries: Optional[int] = None
    error: Optional[str] = None


def artifact_extension(mime_type: str) -> str:
    mime_type = (mime_type or "").lower()
    if "png" in mime_type:
        return "png"
    if "webp" in mime_type:
        return "webp"
    return "jpg"


def artifact_path(job_id: str, mime_type: str) -> str:
    """Storage path of a job's generated image."""
    return f"generations/{job_id}.{artifact_extension(mime_type)}"


class JobExecutor:
    """Executes generation/edit jobs against the provider."""

    def __init__(
        self,
        jobs,
        girls,
        resolver,
        provider,
        storage,
        clock: Optional[Clock] = None,
        max_references: Optional[int] = None,
    ):
        self.jobs = jobs
        self.girls = girls
        self.resolver = resolver
        self.provider = provider
        self.storage = storage
        self.clock = clock or SystemClock()
        self.max_references = settings.MAX_REFERENCES if max_references is None else max_references

    async def execute(self, job_id: str) -> ExecutionResult:
        """
        Execute one job.

        Returns:
            ExecutionResult with SUCCEEDED, FAILED, CANCELLED or NOT_FOUND
        """
        job = await asyncio.to_thread(self.jobs.get, job_id)
        if job is None:
            logger.warning(f"[Executor] Job not found: {job_id}")
            return ExecutionResult(status=NOT_FOUND)

        if job.status == JobStatus.CANCELLED:
            logger.info(f"[Executor] Skipping cancelled job {job_id}")
            return ExecutionResult(status=JobStatus.CANCELLED.value)

        started_at = self.clock.now()
        await asyncio.to_thread(
            self.jobs.update, job_id, status=JobStatus.RUNNING, started_at=started_at, error=None
        )
        logger.info(f"[START] job {job_id} | type={job.type.value} retries={job.retries}")

        try:
            return await self._run(job)
        except Exception as e:
            return await self._fail(job, e, started_at)

    async def _run(self, job: JobRecord) -> ExecutionResult:
        inputs = parse_job_inputs(job.type, job.inputs)

        # Step 1-3: context, ordered references, final prompt
        assembly = assemble_context(job.prompt, inputs, await self._load_context_assets(job))

        total_refs = len(assembly.reference_image_ids) + len(inputs.ref_urls)
        if total_refs > self.max_references:
            logger.warning(
                f"[Executor] Job {job.id} has {total_refs} references (limit {self.max_references}); "
                f"sending all of them"
            )

        # Step 4: provider handles, stored images first, then URLs
        handles: List[FileHandle] = []
        for image_id in assembly.reference_image_ids:
            handles.append(await self.resolver.resolve_stored_image(image_id))
        for url in inputs.ref_urls:
            handles.append(await self.resolver.resolve_url(url))

        # Step 5-6: generate
        output = await self.provider.generate(
            handles,
            assembly.prompt,
            aspect_ratio=inputs.aspect_ratio,
            image_size=inputs.image_size,
            image_only=inputs.image_only,
        )
        if not output.images:
            raise UpstreamFailure("Model returned no images")

        # Step 7: persist artifact
        primary: GeneratedImage = output.images[0]
        storage_path = artifact_path(job.id, primary.mime_type)
        public_url = await self.storage.write(storage_path, primary.data, primary.mime_type)

        # Step 8: usage, cost, terminal state
        images_out = len(output.images)
        usage = build_usage(images_out)
        if output.total_tokens:
            usage["reported_total_tokens"] = output.total_tokens
        if output.output_tokens:
            usage["reported_output_tokens"] = output.output_tokens
        cost_usd = estimate_cost(images_out)

        return await self._succeed(job, assembly, storage_path, public_url, output.text or "", usage, cost_usd)

    async def _load_context_assets(self, job: JobRecord) -> Dict[str, ContextAsset]:
        if not job.girl_id:
            return empty_context_assets()
        assets = await asyncio.to_thread(self.girls.get_context_assets, job.girl_id)
        if assets is None:
            raise NotFoundError(f"Character not found: {job.girl_id}")
        return assets

    async def _cancelled_meanwhile(self, job_id: str) -> bool:
        current = await asyncio.to_thread(self.jobs.get, job_id)
        return current is not None and current.status == JobStatus.CANCELLED

    async def _succeed(
        self,
        job: JobRecord,
        assembly: ContextAssembly,
        storage_path: str,
        public_url: str,
        note: str,
        usage: dict,
        cost_usd: float,
    ) -> ExecutionResult:
        # A RUNNING job cancelled by the client keeps its CANCELLED status
        cancelled = await self._cancelled_meanwhile(job.id)
        status = JobStatus.CANCELLED if cancelled else JobStatus.SUCCEEDED

        await asyncio.to_thread(
            self.jobs.update,
            job.id,
            status=status,
            finished_at=self.clock.now(),
            result={
                "storage_path": storage_path,
                "public_url": public_url,
                "note": note,
                "prompt_applied": assembly.prompt,
                "context_snapshot": assembly.snapshot(),
            },
            resolved_references=assembly.resolved_references(),
            usage=usage,
            cost_usd=cost_usd,
        )
        logger.info(f"[COMPLETE] job {job.id} | {status.value} | {public_url} | ${cost_usd:.4f}")
        return ExecutionResult(status=status.value, retries=job.retries)

    async def _fail(self, job: JobRecord, error: Exception, started_at) -> ExecutionResult:
        message = str(error) or error.__class__.__name__
        duration = (self.clock.now() - started_at).total_seconds()

        if await self._cancelled_meanwhile(job.id):
            logger.info(f"[ERROR] job {job.id} failed after cancellation: {message}")
            await asyncio.to_thread(self.jobs.update, job.id, error=message, finished_at=self.clock.now())
            return ExecutionResult(status=JobStatus.CANCELLED.value, retries=job.retries, error=message)

        retries = (job.retries or 0) + 1
        await asyncio.to_thread(
            self.jobs.update,
            job.id,
            status=JobStatus.FAILED,
            error=message,
            retries=retries,
            finished_at=self.clock.now(),
        )
        logger.error(f"[ERROR] job {job.id} | Duration: {duration:.2f}s | attempt {retries} | Error: {message}")
        return ExecutionResult(status=JobStatus.FAILED.value, retries=retries, error=message)
