from unittest.mock import MagicMock

from redis.exceptions import ConnectionError

from app.core.redis import RedisManager, mask_redis_url


def test_mask_redis_url_hides_credentials():
    assert mask_redis_url("redis://:secret@cache.internal:6379/0") == "redis://***@cache.internal:6379/0"
    assert mask_redis_url("redis://localhost:6379") == "redis://localhost:6379"


def test_health_check_reports_unreachable_server():
    manager = RedisManager("redis://localhost:6379")
    client = MagicMock()
    client.ping.side_effect = ConnectionError("refused")
    manager._client = client

    health = manager.health_check()

    assert health["connected"] is False
    assert "refused" in health["error"]


def test_health_check_reports_version():
    manager = RedisManager("redis://localhost:6379")
    client = MagicMock()
    client.info.return_value = {"redis_version": "7.2.4"}
    manager._client = client

    assert manager.health_check() == {
        "connected": True,
        "redis_version": "7.2.4",
        "url": "redis://localhost:6379",
    }
