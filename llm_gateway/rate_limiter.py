"""
Token-bucket rate limiter shared by every LLM provider.

One instance is built by the provider factory and injected into each
provider, so all outbound calls draw from the same budget.

Modes:
    qps - refill = requests_per_second * safety_margin, 1 permit per call
    tpm - refill = tokens_per_minute / 60 * safety_margin,
          estimated prompt tokens per call
"""

import logging
import threading
import time
from typing import Callable, Optional

from scan_engine.config import ScanEngineConfig, DEFAULT_CONFIG
from scan_engine.exceptions import ConfigError
from scan_engine.metrics import MetricsCollector, get_metrics

logger = logging.getLogger(__name__)


class RateLimiter:
    """
    Blocking token bucket.

    acquire() sleeps outside the lock until enough permits have accrued.
    There is no cancellation: a blocked caller always proceeds eventually.
    Callers that need a hard deadline wrap the whole call themselves.
    """

    def __init__(
        self,
        rate_per_second: float,
        capacity: Optional[float] = None,
        mode: str = "qps",
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
        metrics: MetricsCollector = None,
    ):
        if rate_per_second <= 0:
            raise ConfigError("rate_per_second", rate_per_second, "rate must be positive")
        self.mode = mode
        self.rate = float(rate_per_second)
        # default burst: one second of refill, never below a single permit
        self.capacity = float(capacity) if capacity is not None else max(1.0, self.rate)
        self._clock = clock
        self._sleep = sleep
        self._metrics = metrics or get_metrics()
        self._lock = threading.Lock()
        self._tokens = self.capacity
        self._last_refill = clock()

    @classmethod
    def from_config(cls, config: ScanEngineConfig = None) -> "RateLimiter":
        config = config or DEFAULT_CONFIG
        mode = (config.rate_limit_mode or "qps").lower()
        if mode == "tpm":
            rate = (config.tokens_per_minute / 60.0) * config.safety_margin
            logger.info(
                f"Rate limiter configured: TPM mode, limit={rate:.1f} tokens/s "
                f"({int(config.safety_margin * 100)}% of {config.tokens_per_minute} TPM)"
            )
        elif mode == "qps":
            rate = config.requests_per_second * config.safety_margin
            logger.info(
                f"Rate limiter configured: QPS mode, limit={rate:.2f} req/s "
                f"({int(config.safety_margin * 100)}% of {config.requests_per_second})"
            )
        else:
            raise ConfigError("rate_limit_mode", config.rate_limit_mode, "expected 'qps' or 'tpm'")
        return cls(rate, mode=mode)

    def permits_for(self, request) -> int:
        """Permits one request costs under the current mode."""
        if self.mode == "tpm":
            return max(1, request.estimate_tokens())
        return 1

    def acquire(self, permits: int = 1) -> float:
        """Block until `permits` are available. Returns seconds spent waiting."""
        permits = max(1, int(permits))
        waited = 0.0
        while True:
            with self._lock:
                if permits > self.capacity:
                    # a single oversized call must still be able to proceed
                    logger.debug(f"Raising limiter capacity {self.capacity:.0f} -> {permits}")
                    self.capacity = float(permits)

                now = self._clock()
                elapsed = max(0.0, now - self._last_refill)
                self._tokens = min(self.capacity, self._tokens + elapsed * self.rate)
                self._last_refill = now

                if self._tokens >= permits:
                    self._tokens -= permits
                    break

                missing = permits - self._tokens
                wait_time = max(missing / self.rate, 0.001)

            self._sleep(wait_time)
            waited += wait_time

        if waited > 0:
            logger.debug(f"Rate limiter waited {waited:.3f}s for {permits} permit(s)")
            self._metrics.record_rate_limit_wait(waited)
        return waited

    @property
    def available_permits(self) -> float:
        with self._lock:
            elapsed = max(0.0, self._clock() - self._last_refill)
            return min(self.capacity, self._tokens + elapsed * self.rate)

    def __repr__(self) -> str:
        return f"RateLimiter(mode={self.mode}, rate={self.rate:.2f}/s, capacity={self.capacity:.0f})"
