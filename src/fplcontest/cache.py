"""Time-bounded cache for upstream API responses.

The cache is a plain object owned by whoever talks to the upstream feed.
There is no module-level instance: callers build one (usually through
:meth:`ResponseCache.from_config`) and pass it to :class:`~fplcontest.fpl_api.FplClient`.
"""

from __future__ import annotations

import hashlib
import json
import logging
import time
from pathlib import Path
from typing import Any, Callable, Dict, Tuple

from .config import CacheMode, FplContestConfig, get_config

logger = logging.getLogger(__name__)


class ResponseCache:
    """Cache decoded JSON payloads in memory or on disk with a TTL."""

    def __init__(
        self,
        *,
        mode: CacheMode = CacheMode.MEMORY,
        ttl_seconds: float = 300.0,
        cache_dir: str | Path | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if ttl_seconds < 0:
            raise ValueError("ttl_seconds must be non-negative")
        if mode == CacheMode.FILESYSTEM and cache_dir is None:
            raise ValueError("cache_dir is required for filesystem caching")
        self.mode = mode
        self.ttl_seconds = float(ttl_seconds)
        self.cache_dir = Path(cache_dir) if cache_dir is not None else None
        self._clock = clock
        self._memory: Dict[str, Tuple[float, str, Any]] = {}

    @classmethod
    def from_config(cls, config: FplContestConfig | None = None) -> "ResponseCache":
        settings = config or get_config()
        return cls(
            mode=settings.cache_mode,
            ttl_seconds=settings.cache_ttl_seconds,
            cache_dir=settings.cache_dir,
        )

    def _get_cache_key(self, url: str, **params: Any) -> str:
        payload = json.dumps({"url": url, "params": params}, sort_keys=True, default=str)
        return hashlib.sha256(payload.encode("utf-8")).hexdigest()

    def _path_for(self, key: str) -> Path:
        assert self.cache_dir is not None
        return self.cache_dir / f"{key}.json"

    def _is_fresh(self, stored_at: float) -> bool:
        return self._clock() - stored_at < self.ttl_seconds

    def get(self, url: str, **params: Any) -> Any | None:
        """Return the cached payload for ``url`` or ``None`` on a miss."""

        if self.mode == CacheMode.OFF:
            return None
        key = self._get_cache_key(url, **params)
        if self.mode == CacheMode.MEMORY:
            cached = self._memory.get(key)
            if cached is None:
                return None
            stored_at, _url, payload = cached
            if not self._is_fresh(stored_at):
                del self._memory[key]
                return None
            return payload

        path = self._path_for(key)
        if not path.exists():
            return None
        try:
            with path.open("r", encoding="utf-8") as handle:
                record = json.load(handle)
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning("Discarding unreadable cache file %s: %s", path, exc)
            path.unlink(missing_ok=True)
            return None
        if not self._is_fresh(float(record.get("stored_at", 0.0))):
            path.unlink(missing_ok=True)
            return None
        return record.get("payload")

    def set(self, url: str, payload: Any, **params: Any) -> None:
        """Store ``payload`` for ``url``."""

        if self.mode == CacheMode.OFF:
            return
        key = self._get_cache_key(url, **params)
        stored_at = self._clock()
        if self.mode == CacheMode.MEMORY:
            self._memory[key] = (stored_at, url, payload)
            return
        path = self._path_for(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        with path.open("w", encoding="utf-8") as handle:
            json.dump({"url": url, "stored_at": stored_at, "payload": payload}, handle)

    def clear(self, pattern: str | None = None) -> int:
        """Drop cached entries whose URL contains ``pattern`` (all when omitted).

        Returns the number of entries removed.
        """

        removed = 0
        if self.mode == CacheMode.MEMORY:
            doomed = [
                key
                for key, (_stored_at, url, _payload) in self._memory.items()
                if pattern is None or pattern in url
            ]
            for key in doomed:
                del self._memory[key]
            removed = len(doomed)
        elif self.mode == CacheMode.FILESYSTEM and self.cache_dir and self.cache_dir.exists():
            for path in self.cache_dir.glob("*.json"):
                if pattern is not None:
                    try:
                        with path.open("r", encoding="utf-8") as handle:
                            url = str(json.load(handle).get("url", ""))
                    except (OSError, json.JSONDecodeError):
                        url = ""
                    if url and pattern not in url:
                        continue
                path.unlink(missing_ok=True)
                removed += 1
        logger.debug("Cleared %d cached responses", removed)
        return removed

    def size(self) -> Dict[str, int]:
        """Return entry counts per backing store."""

        file_entries = 0
        if self.cache_dir is not None and self.cache_dir.exists():
            file_entries = sum(1 for _ in self.cache_dir.glob("*.json"))
        return {"memory_entries": len(self._memory), "file_entries": file_entries}


__all__ = ["ResponseCache"]
