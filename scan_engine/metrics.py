"""
Run-level counters and timings for the scan pipeline.

One collector is shared by the orchestrator (analyzer timings and
failures), the LLM cache and providers, the decision engine and the GVI
engine. Timings are aggregated in place, so a long scan keeps a fixed
footprint no matter how many files or LLM calls it makes.

Counter names are dotted and grouped by the stage that owns them:
    analyzer.<name>.*   scan stage
    triage.*            AI validation
    gvi.*               remediation loop
    cache.*, llm.*      gateway
"""

import time
import logging
import threading
from contextlib import contextmanager
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


class _Timing:
    """Running aggregate for one timed operation."""

    __slots__ = ("count", "failures", "total_ms", "min_ms", "max_ms")

    def __init__(self):
        self.count = 0
        self.failures = 0
        self.total_ms = 0.0
        self.min_ms = float("inf")
        self.max_ms = 0.0

    def add(self, duration_ms: float, success: bool) -> None:
        self.count += 1
        if not success:
            self.failures += 1
        self.total_ms += duration_ms
        self.min_ms = min(self.min_ms, duration_ms)
        self.max_ms = max(self.max_ms, duration_ms)

    def as_dict(self) -> Dict[str, float]:
        return {
            "count": self.count,
            "avg_ms": round(self.total_ms / self.count, 2),
            "min_ms": round(self.min_ms, 2),
            "max_ms": round(self.max_ms, 2),
            "failures": self.failures,
        }


class MetricsCollector:
    """
    Thread-safe metrics for one pipeline run.

    Usage:
        metrics = get_metrics()

        with metrics.timer("analyzer.Semgrep"):
            issues = adapter.analyze_all(files)

        metrics.increment("gvi.iterations")
        metrics.log_summary()
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._counters: Dict[str, int] = {}
        self._timings: Dict[str, _Timing] = {}
        self._errors: Dict[str, int] = {}
        self._started = time.monotonic()

    # --- Counters ---

    def increment(self, name: str, amount: int = 1) -> None:
        with self._lock:
            self._counters[name] = self._counters.get(name, 0) + amount

    def get_counter(self, name: str) -> int:
        with self._lock:
            return self._counters.get(name, 0)

    # --- Timings ---

    @contextmanager
    def timer(self, operation: str):
        """
        Time a block. Also bumps `<operation>.success` or
        `<operation>.failure` depending on whether the block raised.
        """
        start = time.perf_counter()
        success = True
        try:
            yield
        except Exception:
            success = False
            raise
        finally:
            self.record_timing(operation, (time.perf_counter() - start) * 1000, success)

    def record_timing(self, operation: str, duration_ms: float, success: bool = True) -> None:
        outcome = f"{operation}.{'success' if success else 'failure'}"
        with self._lock:
            self._timings.setdefault(operation, _Timing()).add(duration_ms, success)
            self._counters[outcome] = self._counters.get(outcome, 0) + 1

    # --- Cache ---

    def record_cache_hit(self, cache_key: str = "") -> None:
        self.increment("cache.hits")
        logger.debug(f"Cache HIT: {cache_key}")

    def record_cache_miss(self, cache_key: str = "") -> None:
        self.increment("cache.misses")
        logger.debug(f"Cache MISS: {cache_key}")

    def record_cache_corruption(self, cache_key: str = "") -> None:
        self.increment("cache.corrupted")
        logger.debug(f"Cache entry unreadable: {cache_key}")

    @property
    def cache_hit_rate(self) -> float:
        with self._lock:
            hits = self._counters.get("cache.hits", 0)
            lookups = hits + self._counters.get("cache.misses", 0)
        return hits / lookups if lookups else 0.0

    # --- LLM ---

    def record_llm_request(self, provider: str, success: bool) -> None:
        with self._lock:
            for name in ("llm.requests.total", f"llm.requests.{provider}"):
                self._counters[name] = self._counters.get(name, 0) + 1
            if not success:
                self._counters["llm.requests.failed"] = self._counters.get("llm.requests.failed", 0) + 1

    def record_rate_limit_wait(self, waited_seconds: float) -> None:
        if waited_seconds <= 0:
            return
        self.increment("llm.rate_limited")
        self.record_timing("llm.rate_limit_wait", waited_seconds * 1000)

    # --- Errors ---

    def record_error(self, error_type: str, source: str = "") -> None:
        """Count a failure by exception type; `source` is the analyzer or stage."""
        with self._lock:
            self._errors[error_type] = self._errors.get(error_type, 0) + 1
        logger.debug(f"Error recorded: {error_type} from {source or 'unknown'}")

    # --- Reporting ---

    def _section(self, prefix: str) -> Dict[str, int]:
        """Caller holds self._lock."""
        return {
            name[len(prefix):]: value
            for name, value in sorted(self._counters.items())
            if name.startswith(prefix)
        }

    def summary(self) -> Dict[str, Any]:
        """Per-stage counters, timings and error counts as a JSON-ready dict."""
        hit_rate = self.cache_hit_rate
        with self._lock:
            return {
                "elapsed_seconds": round(time.monotonic() - self._started, 2),
                "scan": self._section("analyzer."),
                "triage": self._section("triage."),
                "gvi": self._section("gvi."),
                "cache": dict(self._section("cache."), hit_rate=round(hit_rate, 4)),
                "llm": self._section("llm."),
                "timings": {op: t.as_dict() for op, t in sorted(self._timings.items())},
                "errors": dict(self._errors),
            }

    def log_summary(self, level: int = logging.INFO) -> None:
        logger.log(level, f"Pipeline metrics: {self.summary()}")

    def reset(self) -> None:
        with self._lock:
            self._counters.clear()
            self._timings.clear()
            self._errors.clear()
            self._started = time.monotonic()


_global_metrics: Optional[MetricsCollector] = None
_metrics_lock = threading.Lock()


def get_metrics() -> MetricsCollector:
    """Process-wide collector used when a component is not handed its own."""
    global _global_metrics
    with _metrics_lock:
        if _global_metrics is None:
            _global_metrics = MetricsCollector()
        return _global_metrics
