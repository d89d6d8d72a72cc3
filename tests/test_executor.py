import asyncio

import httpx

from app.core.errors import UpstreamFailure
from app.schemas.job import JobCreate, JobStatus
from app.services.references import MemoryHandleCache, ReferenceResolver
from app.workers.executor import NOT_FOUND, JobExecutor, artifact_path


GIRL_ASSETS = {
    "bedroom": {"image_id": "ctx_bed", "description": "Pink sheets, fairy lights"},
    "bathroom": {"image_id": "", "description": "White marble tiles"},
    "phone": {"image_id": "ctx_phone", "description": ""},
}


def _submit(job_store, **fields):
    payload = {"type": "generate", "prompt": "Make her smile", "inputs": {}}
    payload.update(fields)
    return job_store.create(JobCreate(**payload))


def test_artifact_path_uses_mime_extension():
    assert artifact_path("job_1", "image/png") == "generations/job_1.png"
    assert artifact_path("job_1", "image/webp") == "generations/job_1.webp"
    assert artifact_path("job_1", "image/jpeg") == "generations/job_1.jpg"


def test_execute_success_records_result(
    executor, job_store, provider, storage, add_girl, add_library_image
):
    add_girl("girl_1", GIRL_ASSETS)
    add_library_image("lib_a")
    add_library_image("ctx_bed")
    job_id = _submit(
        job_store,
        girl_id="girl_1",
        inputs={
            "manual_image_ids": ["lib_a"],
            "context_selections": {
                "bedroom": {"use_image": True, "use_text": True},
                "bathroom": {"use_text": True},
            },
            "aspect_ratio": "3:4",
        },
    )

    result = asyncio.run(executor.execute(job_id))

    assert result.status == JobStatus.SUCCEEDED.value
    call = provider.calls[0]
    assert call["prompt"] == (
        "Make her smile\n\n"
        "Use the bedroom from reference image 2: Pink sheets, fairy lights\n"
        "Use her bathroom as described: White marble tiles"
    )
    assert [h.uri for h in call["handles"]] == ["files/upload-1", "files/upload-2"]
    assert call["aspect_ratio"] == "3:4"

    job = job_store.get(job_id)
    assert job.status == JobStatus.SUCCEEDED
    assert job.started_at is not None
    assert job.finished_at is not None
    assert job.result["storage_path"] == f"generations/{job_id}.png"
    assert job.result["public_url"] == f"https://cdn.test/generations/{job_id}.png"
    assert job.result["note"] == "Here you go"
    assert job.result["context_snapshot"]["bedroom"]["reference_index"] == 2
    assert job.result["context_snapshot"]["bathroom"]["applied_image"] is False
    assert job.resolved_references["combined_image_ids"] == ["lib_a", "ctx_bed"]
    assert job.resolved_references["context_reference_positions"] == {"bedroom": 2}
    assert job.usage == {"images_out": 1, "output_tokens": 1290}
    assert job.cost_usd == 0.0387
    assert storage.files[f"generations/{job_id}.png"] == b"image-0"


def test_execute_missing_job_returns_not_found(executor):
    result = asyncio.run(executor.execute("job_missing"))

    assert result.status == NOT_FOUND


def test_execute_skips_cancelled_job(executor, job_store, provider):
    job_id = _submit(job_store)
    job_store.update(job_id, status=JobStatus.CANCELLED)

    result = asyncio.run(executor.execute(job_id))

    assert result.status == JobStatus.CANCELLED.value
    assert provider.calls == []
    assert job_store.get(job_id).status == JobStatus.CANCELLED


def test_execute_no_images_fails(executor, job_store, provider):
    provider.images_out = 0
    job_id = _submit(job_store)

    result = asyncio.run(executor.execute(job_id))

    assert result.status == JobStatus.FAILED.value
    assert result.retries == 1
    job = job_store.get(job_id)
    assert job.status == JobStatus.FAILED
    assert job.error == "Model returned no images"
    assert job.retries == 1
    assert job.result is None


def test_execute_provider_error_increments_retries(executor, job_store, provider):
    provider.error = UpstreamFailure("503 from provider")
    job_id = _submit(job_store)
    job_store.update(job_id, retries=1, status=JobStatus.FAILED)

    result = asyncio.run(executor.execute(job_id))

    assert result.retries == 2
    job = job_store.get(job_id)
    assert job.status == JobStatus.FAILED
    assert job.error == "503 from provider"


def test_execute_missing_library_image_fails(executor, job_store, provider):
    job_id = _submit(job_store, inputs={"manual_image_ids": ["lib_gone"]})

    result = asyncio.run(executor.execute(job_id))

    assert result.status == JobStatus.FAILED.value
    assert "lib_gone" in job_store.get(job_id).error
    assert provider.calls == []


def test_execute_missing_character_fails(executor, job_store):
    job_id = _submit(job_store, girl_id="girl_unknown")

    result = asyncio.run(executor.execute(job_id))

    assert result.status == JobStatus.FAILED.value
    assert "girl_unknown" in job_store.get(job_id).error


def test_cancel_while_running_keeps_cancelled(executor, job_store, provider):
    job_id = _submit(job_store)
    provider.before_generate = lambda: job_store.update(job_id, status=JobStatus.CANCELLED)

    result = asyncio.run(executor.execute(job_id))

    assert result.status == JobStatus.CANCELLED.value
    job = job_store.get(job_id)
    assert job.status == JobStatus.CANCELLED
    assert job.result["storage_path"] == f"generations/{job_id}.png"
    assert job.cost_usd == 0.0387


def test_failure_after_cancel_is_not_counted(executor, job_store, provider):
    provider.error = UpstreamFailure("timeout")
    job_id = _submit(job_store)
    provider.before_generate = lambda: job_store.update(job_id, status=JobStatus.CANCELLED)

    result = asyncio.run(executor.execute(job_id))

    assert result.status == JobStatus.CANCELLED.value
    job = job_store.get(job_id)
    assert job.status == JobStatus.CANCELLED
    assert job.retries == 0
    assert job.error == "timeout"


def test_url_references_follow_stored_images(
    job_store, girl_store, library_store, provider, storage, clock, add_library_image
):
    add_library_image("lib_a")

    def handler(request):
        return httpx.Response(200, content=b"remote", headers={"content-type": "image/jpeg"})

    async def scenario():
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            resolver = ReferenceResolver(
                provider=provider,
                storage=storage,
                library=library_store,
                cache=MemoryHandleCache(),
                clock=clock,
                http_client=client,
            )
            executor = JobExecutor(
                jobs=job_store,
                girls=girl_store,
                resolver=resolver,
                provider=provider,
                storage=storage,
                clock=clock,
            )
            return await executor.execute(job_id)

    job_id = _submit(
        job_store,
        type="edit",
        inputs={"manual_image_ids": ["lib_a"], "ref_urls": ["https://img.test/a/look.jpg"]},
    )

    result = asyncio.run(scenario())

    assert result.status == JobStatus.SUCCEEDED.value
    assert [u[2] for u in provider.uploads] == ["lib_a.png", "look.jpg"]
    assert provider.uploads[1][1] == "image/jpeg"


def test_execute_over_budget_job_sends_all_references(
    executor, job_store, provider, add_library_image, caplog
):
    image_ids = [f"lib_{i}" for i in range(5)]
    for image_id in image_ids:
        add_library_image(image_id)
    job_id = _submit(job_store, inputs={"manual_image_ids": image_ids})

    result = asyncio.run(executor.execute(job_id))

    assert result.status == JobStatus.SUCCEEDED.value
    assert len(provider.calls[0]["handles"]) == 5
    assert job_store.get(job_id).status == JobStatus.SUCCEEDED
    assert "5 references (limit 3)" in caplog.text
