"""
Provider interface and the shared machinery every vendor provider uses.

send_request() is fail-closed: missing credentials, unsupported models
and vendor errors all come back as LLMResponse.failure(...). Only the
vendor SDK call itself (_send) may raise, and it is retried with
tenacity before being converted.
"""

import logging
from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Tuple, Type

from tenacity import (
    RetryError,
    Retrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from llm_gateway.exceptions import ProviderUnavailableError
from llm_gateway.models import LLMRequest, LLMResponse
from llm_gateway.rate_limiter import RateLimiter
from scan_engine.metrics import MetricsCollector, get_metrics

logger = logging.getLogger(__name__)

MODEL_ALIASES = ("fast", "standard", "premium")


class LLMProvider(ABC):
    """What the rest of the pipeline sees of a provider."""

    @property
    @abstractmethod
    def name(self) -> str:
        ...

    @abstractmethod
    def is_available(self) -> bool:
        ...

    @abstractmethod
    def available_models(self) -> List[str]:
        ...

    @abstractmethod
    def send_request(self, request: LLMRequest) -> LLMResponse:
        ...

    def supports_model(self, model: str) -> bool:
        return model in self.available_models()

    def resolve_model(self, model: str) -> str:
        """Map a fast/standard/premium alias to a concrete model name."""
        return model


class BaseLLMProvider(LLMProvider):
    """
    Common behavior for vendor providers: credentials check, model check,
    rate limiting and retries around the SDK call.

    Subclasses set PROVIDER_NAME, DEFAULT_BASE_URL, MODELS and
    MODEL_ALIAS_MAP, and implement _send().
    """

    PROVIDER_NAME = ""
    DEFAULT_BASE_URL = ""
    MODELS: Tuple[str, ...] = ()
    MODEL_ALIAS_MAP: Dict[str, str] = {}
    RETRYABLE_ERRORS: Tuple[Type[BaseException], ...] = (ConnectionError, TimeoutError)

    def __init__(
        self,
        api_key: str = "",
        base_url: Optional[str] = None,
        rate_limiter: Optional[RateLimiter] = None,
        timeout: float = 60.0,
        max_retries: int = 3,
        metrics: MetricsCollector = None,
    ):
        self.api_key = api_key or ""
        self.base_url = base_url or self.DEFAULT_BASE_URL
        self.rate_limiter = rate_limiter
        self.timeout = timeout
        self.max_retries = max(1, max_retries)
        self.metrics = metrics or get_metrics()
        self.logger = logging.getLogger(f"llm_gateway.providers.{self.PROVIDER_NAME or 'base'}")
        self._client = None

    # ------------------------------------------------------------------
    # Contract
    # ------------------------------------------------------------------
    @property
    def name(self) -> str:
        return self.PROVIDER_NAME

    def is_available(self) -> bool:
        return bool(self.api_key.strip())

    def available_models(self) -> List[str]:
        return list(self.MODELS)

    def resolve_model(self, model: str) -> str:
        return self.MODEL_ALIAS_MAP.get(model, model)

    def send_request(self, request: LLMRequest) -> LLMResponse:
        if not self.is_available():
            error = ProviderUnavailableError(self.name)
            self.logger.debug(error.message)
            return LLMResponse.failure(error.message, model=request.model, provider=self.name)

        model = self.resolve_model(request.model)
        if model != request.model:
            request = request.with_model(model)

        if not self.supports_model(model):
            return LLMResponse.failure(
                f"Model {model} is not supported by {self.name}",
                model=model, provider=self.name,
            )

        self.logger.debug(f"Sending request to {self.name} with model {model}")
        try:
            response = self._send_with_retries(request)
        except RetryError as e:
            cause = e.last_attempt.exception() if e.last_attempt else e
            self.logger.error(f"Failed to send request to {self.name}: {cause}")
            response = LLMResponse.failure(f"Failed to send request: {cause}", model, self.name)
        except Exception as e:
            self.logger.error(f"Failed to send request to {self.name}: {e}")
            response = LLMResponse.failure(f"Failed to send request: {e}", model, self.name)

        if not response.provider:
            response.provider = self.name
        self.metrics.record_llm_request(self.name, response.success)
        return response

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------
    def _send_with_retries(self, request: LLMRequest) -> LLMResponse:
        permits = self.rate_limiter.permits_for(request) if self.rate_limiter else 1

        retrying = Retrying(
            retry=retry_if_exception_type(self.RETRYABLE_ERRORS),
            wait=wait_exponential(multiplier=1, min=1, max=10),
            stop=stop_after_attempt(self.max_retries),
            before_sleep=before_sleep_log(self.logger, logging.WARNING),
        )
        for attempt in retrying:
            with attempt:
                if self.rate_limiter is not None:
                    self.rate_limiter.acquire(permits)
                return self._send(request)
        raise RuntimeError("unreachable")  # pragma: no cover

    @property
    def client(self):
        """Vendor SDK client, created on first use."""
        if self._client is None:
            self._client = self._create_client()
        return self._client

    @abstractmethod
    def _create_client(self):
        ...

    @abstractmethod
    def _send(self, request: LLMRequest) -> LLMResponse:
        """Perform the vendor call. May raise; retried for RETRYABLE_ERRORS."""
        ...

    def __repr__(self) -> str:
        return f"{type(self).__name__}(available={self.is_available()}, base_url={self.base_url})"
