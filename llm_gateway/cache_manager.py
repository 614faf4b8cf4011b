"""
Two-tier persistent cache for LLM responses.

    L1: in-memory LRU, bounded size, short TTL
    L2: one file per key under <cache_dir>/<cache_type>/<key>.cache,
        expiry judged by file mtime

Both tiers behave as one logical cache: an L2 hit is promoted to L1,
put() writes through to both. Expired and unreadable entries are misses.
"""

import logging
import os
import re
import tempfile
import threading
import time
from collections import OrderedDict
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Tuple

from llm_gateway.exceptions import CacheError
from scan_engine.config import ScanEngineConfig, DEFAULT_CONFIG
from scan_engine.metrics import MetricsCollector, get_metrics
from scan_engine.utils import sha256_hex

logger = logging.getLogger(__name__)

_HEX_KEY_RE = re.compile(r"^[0-9a-f]{64}$")
CACHE_SUFFIX = ".cache"


def _short(key: str) -> str:
    return key[:12]


class PersistentCacheManager:
    """
    Thread-safe L1/L2 cache keyed by SHA-256 hex strings.

    Usage:
        cache = PersistentCacheManager.from_config(config)
        cache.put(key, payload)
        payload = cache.get(key)
        print(cache.stats())
    """

    def __init__(
        self,
        cache_dir: str,
        cache_type: str = "ai_llm_calls",
        l1_max_size: int = 500,
        l1_ttl_seconds: float = 3600,
        l2_ttl_seconds: float = 7 * 24 * 3600,
        persistent: bool = True,
        clock: Callable[[], float] = time.time,
        metrics: MetricsCollector = None,
    ):
        self.cache_type = cache_type
        self.l1_max_size = max(1, l1_max_size)
        self.l1_ttl_seconds = l1_ttl_seconds
        self.l2_ttl_seconds = l2_ttl_seconds
        self.persistent = persistent
        self._clock = clock
        self._metrics = metrics or get_metrics()

        self._lock = threading.Lock()
        self._l1: "OrderedDict[str, Tuple[str, float]]" = OrderedDict()
        self._hits = 0
        self._misses = 0
        self._l1_hits = 0
        self._l2_hits = 0

        self.l2_path = Path(os.path.expanduser(cache_dir)) / cache_type
        if self.persistent:
            try:
                self.l2_path.mkdir(parents=True, exist_ok=True)
                logger.info(f"Persistent cache directory: {self.l2_path}")
            except OSError as e:
                logger.warning(f"Failed to create cache directory {self.l2_path}: {e}")
                self.persistent = False

    @classmethod
    def from_config(cls, config: ScanEngineConfig = None, **kwargs) -> "PersistentCacheManager":
        config = config or DEFAULT_CONFIG
        return cls(
            cache_dir=config.resolved_cache_dir,
            cache_type=config.cache_type,
            l1_max_size=config.l1_max_size,
            l1_ttl_seconds=config.l1_ttl_seconds,
            l2_ttl_seconds=config.l2_ttl_seconds,
            **kwargs,
        )

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------
    def get(self, key: str) -> Optional[str]:
        now = self._clock()
        with self._lock:
            entry = self._l1.get(key)
            if entry is not None:
                value, stored_at = entry
                if now - stored_at <= self.l1_ttl_seconds:
                    self._l1.move_to_end(key)
                    self._hits += 1
                    self._l1_hits += 1
                    self._metrics.record_cache_hit(_short(key))
                    logger.debug(f"Cache L1 HIT: {_short(key)}")
                    return value
                del self._l1[key]

        value = self._read_l2(key, now) if self.persistent else None

        with self._lock:
            if value is not None:
                self._store_l1(key, value, now)
                self._hits += 1
                self._l2_hits += 1
                self._metrics.record_cache_hit(_short(key))
                logger.debug(f"Cache L2 HIT (promoted to L1): {_short(key)}")
                return value
            self._misses += 1
        self._metrics.record_cache_miss(_short(key))
        logger.debug(f"Cache MISS: {_short(key)}")
        return None

    def _read_l2(self, key: str, now: float) -> Optional[str]:
        path = self._cache_file(key)
        try:
            mtime = path.stat().st_mtime
        except FileNotFoundError:
            return None
        except OSError as e:
            logger.warning(f"Failed to stat cache file {path}: {e}")
            return None

        if now - mtime > self.l2_ttl_seconds:
            self._delete_file(path)
            logger.debug(f"Expired cache deleted: {_short(key)}")
            return None

        try:
            return path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            logger.warning(f"Unreadable cache file {path}, deleting: {e}")
            self._metrics.record_cache_corruption(_short(key))
            self._delete_file(path)
            return None

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------
    def put(self, key: str, value: str) -> None:
        """
        Write through to both tiers.

        Raises:
            CacheError: when the L2 file cannot be written. L1 already
                holds the value at that point.
        """
        with self._lock:
            self._store_l1(key, value, self._clock())
        logger.debug(f"Cached to L1: {_short(key)}")

        if not self.persistent:
            return

        path = self._cache_file(key)
        tmp_name = None
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(prefix=".", suffix=".tmp", dir=str(path.parent))
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(value)
            os.replace(tmp_name, path)
            tmp_name = None
            logger.debug(f"Cached to L2: {_short(key)}")
        except OSError as e:
            raise CacheError(key, "write", str(e))
        finally:
            if tmp_name and os.path.exists(tmp_name):
                os.unlink(tmp_name)

    def remove(self, key: str) -> None:
        with self._lock:
            self._l1.pop(key, None)
        if self.persistent:
            self._delete_file(self._cache_file(key))

    def clear(self) -> int:
        """Empty both tiers. Returns the number of L2 files removed."""
        with self._lock:
            self._l1.clear()
        logger.info("L1 cache cleared")

        removed = 0
        if self.persistent and self.l2_path.is_dir():
            for path in self.l2_path.glob(f"*{CACHE_SUFFIX}"):
                if self._delete_file(path):
                    removed += 1
            logger.info(f"L2 cache cleared ({removed} files)")
        return removed

    def cleanup_expired(self) -> int:
        """Drop expired entries from both tiers. Returns L2 files removed."""
        now = self._clock()
        with self._lock:
            expired = [k for k, (_, ts) in self._l1.items() if now - ts > self.l1_ttl_seconds]
            for k in expired:
                del self._l1[k]

        removed = 0
        if self.persistent and self.l2_path.is_dir():
            for path in self.l2_path.glob(f"*{CACHE_SUFFIX}"):
                try:
                    if now - path.stat().st_mtime > self.l2_ttl_seconds and self._delete_file(path):
                        removed += 1
                except OSError:
                    continue
        logger.info(f"Cache cleanup completed: {len(expired)} L1, {removed} L2 entries expired")
        return removed

    def stats(self) -> Dict[str, Any]:
        with self._lock:
            total = self._hits + self._misses
            result = {
                "hits": self._hits,
                "misses": self._misses,
                "l1_hits": self._l1_hits,
                "l2_hits": self._l2_hits,
                "l1_size": len(self._l1),
                "hit_rate": (self._hits / total) if total else 0.0,
            }
        result["l2_size"] = self._l2_count()
        return result

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _store_l1(self, key: str, value: str, now: float) -> None:
        """Caller holds self._lock."""
        self._l1[key] = (value, now)
        self._l1.move_to_end(key)
        while len(self._l1) > self.l1_max_size:
            self._l1.popitem(last=False)

    def _cache_file(self, key: str) -> Path:
        name = key if _HEX_KEY_RE.match(key) else sha256_hex(key)
        return self.l2_path / f"{name}{CACHE_SUFFIX}"

    def _l2_count(self) -> int:
        if not self.persistent or not self.l2_path.is_dir():
            return 0
        return sum(1 for _ in self.l2_path.glob(f"*{CACHE_SUFFIX}"))

    @staticmethod
    def _delete_file(path: Path) -> bool:
        try:
            path.unlink()
            return True
        except FileNotFoundError:
            return False
        except OSError as e:
            logger.warning(f"Failed to delete cache file {path}: {e}")
            return False
