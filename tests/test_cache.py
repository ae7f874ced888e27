"""Test response caching."""

import json

import pytest

from fplcontest.cache import ResponseCache
from fplcontest.config import CacheMode, FplContestConfig

URL = "https://example.com/api/fixtures/"


class FakeClock:
    def __init__(self, now: float = 1_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


class TestResponseCache:
    def test_memory_get_set(self, clock):
        cache = ResponseCache(mode=CacheMode.MEMORY, ttl_seconds=60, clock=clock)

        assert cache.get(URL, event=1) is None
        cache.set(URL, [{"id": 1}], event=1)
        assert cache.get(URL, event=1) == [{"id": 1}]
        # Parameters are part of the key
        assert cache.get(URL, event=2) is None

    def test_memory_entries_expire(self, clock):
        cache = ResponseCache(mode=CacheMode.MEMORY, ttl_seconds=60, clock=clock)
        cache.set(URL, {"ok": True})

        clock.now += 59
        assert cache.get(URL) == {"ok": True}
        clock.now += 1
        assert cache.get(URL) is None
        assert cache.size()["memory_entries"] == 0

    def test_filesystem_get_set(self, tmp_path, clock):
        cache = ResponseCache(
            mode=CacheMode.FILESYSTEM, ttl_seconds=60, cache_dir=tmp_path, clock=clock
        )

        assert cache.get(URL, event=3) is None
        cache.set(URL, {"events": [3]}, event=3)

        assert cache.get(URL, event=3) == {"events": [3]}
        assert cache.size()["file_entries"] == 1

    def test_filesystem_discards_corrupt_files(self, tmp_path, clock):
        cache = ResponseCache(
            mode=CacheMode.FILESYSTEM, ttl_seconds=60, cache_dir=tmp_path, clock=clock
        )
        cache.set(URL, {"ok": True})
        (path,) = tmp_path.glob("*.json")
        path.write_text("{not json", encoding="utf-8")

        assert cache.get(URL) is None
        assert not path.exists()

    def test_filesystem_requires_directory(self):
        with pytest.raises(ValueError, match="cache_dir"):
            ResponseCache(mode=CacheMode.FILESYSTEM)

    def test_cache_off(self, clock):
        cache = ResponseCache(mode=CacheMode.OFF, clock=clock)
        cache.set(URL, {"ok": True})
        assert cache.get(URL) is None

    def test_cache_key_generation(self):
        cache = ResponseCache()
        key1 = cache._get_cache_key(URL, event=1)
        key2 = cache._get_cache_key(URL, event=2)
        key3 = cache._get_cache_key("https://example.com/api/other/", event=1)

        assert len({key1, key2, key3}) == 3
        assert key1 == cache._get_cache_key(URL, event=1)

    def test_clear_with_pattern(self, clock):
        cache = ResponseCache(mode=CacheMode.MEMORY, ttl_seconds=60, clock=clock)
        cache.set(URL, [1])
        cache.set("https://example.com/api/bootstrap-static/", {"events": []})

        assert cache.clear("fixtures") == 1
        assert cache.get(URL) is None
        assert cache.get("https://example.com/api/bootstrap-static/") == {"events": []}
        assert cache.clear() == 1

    def test_clear_filesystem_with_pattern(self, tmp_path, clock):
        cache = ResponseCache(
            mode=CacheMode.FILESYSTEM, ttl_seconds=60, cache_dir=tmp_path, clock=clock
        )
        cache.set(URL, [1])
        cache.set("https://example.com/api/bootstrap-static/", {})

        assert cache.clear("bootstrap") == 1
        remaining = [json.loads(p.read_text(encoding="utf-8"))["url"] for p in tmp_path.glob("*.json")]
        assert remaining == [URL]

    def test_negative_ttl_rejected(self):
        with pytest.raises(ValueError):
            ResponseCache(ttl_seconds=-1)


def test_from_config(tmp_path):
    settings = FplContestConfig()
    settings.cache_mode = CacheMode.FILESYSTEM
    settings.cache_dir = tmp_path
    settings.cache_ttl_seconds = 12.5

    cache = ResponseCache.from_config(settings)

    assert cache.mode == CacheMode.FILESYSTEM
    assert cache.cache_dir == tmp_path
    assert cache.ttl_seconds == 12.5
