import asyncio
import time

import pytest

from app.core.config import Settings
from app.core.errors import NotFoundError
from app.services.storage import StorageService


def _local_storage(tmp_path):
    config = Settings(
        USE_GCS=False,
        USE_LOCAL_STORAGE=True,
        LOCAL_STORAGE_PATH=str(tmp_path / "storage"),
        API_BASE_URL="http://api.test/",
    )
    return StorageService(config)


def test_local_write_read_delete(tmp_path):
    storage = _local_storage(tmp_path)

    url = asyncio.run(storage.write("generations/job_1.png", b"png-bytes"))

    assert storage.backend == "local"
    assert url == "http://api.test/files/generations/job_1.png"
    assert asyncio.run(storage.read("generations/job_1.png")) == b"png-bytes"

    asyncio.run(storage.delete("generations/job_1.png"))
    with pytest.raises(NotFoundError):
        asyncio.run(storage.read("generations/job_1.png"))


def test_local_write_overwrites(tmp_path):
    storage = _local_storage(tmp_path)

    asyncio.run(storage.write("generations/job_1.png", b"first"))
    asyncio.run(storage.write("generations/job_1.png", b"second"))

    assert asyncio.run(storage.read("generations/job_1.png")) == b"second"


def test_deleting_missing_file_is_not_an_error(tmp_path):
    storage = _local_storage(tmp_path)

    asyncio.run(storage.delete("generations/never.png"))


def test_paths_outside_storage_root_are_rejected(tmp_path):
    storage = _local_storage(tmp_path)
    (tmp_path / "secret.txt").write_bytes(b"top secret")

    with pytest.raises(NotFoundError):
        asyncio.run(storage.read("../secret.txt"))
    with pytest.raises(NotFoundError):
        asyncio.run(storage.read("generations/../../secret.txt"))


class _SlowBlob:
    def __init__(self, delay):
        self.delay = delay
        self.cache_control = None
        self.public_url = "https://storage.test/blob"

    def upload_from_string(self, data, content_type=None):
        time.sleep(self.delay)

    def make_public(self):
        pass


class _SlowBucket:
    def __init__(self, delay):
        self.delay = delay

    def blob(self, path):
        return _SlowBlob(self.delay)


def test_concurrent_writes_do_not_block_each_other(tmp_path):
    storage = _local_storage(tmp_path)
    storage.use_gcs = True
    storage.bucket_uploads = storage.bucket_outputs = _SlowBucket(0.3)
    ticks = []

    async def heartbeat():
        for _ in range(5):
            ticks.append(time.monotonic())
            await asyncio.sleep(0.05)

    async def scenario():
        started = time.monotonic()
        await asyncio.gather(
            storage.write("generations/job_a.png", b"a"),
            storage.write("generations/job_b.png", b"b"),
            heartbeat(),
        )
        return time.monotonic() - started

    elapsed = asyncio.run(scenario())

    assert elapsed < 0.5
    assert len(ticks) == 5
    assert max(b - a for a, b in zip(ticks, ticks[1:])) < 0.2
