"""
Caching decorator for any LLMProvider.

A hit returns without touching the delegate, so it also costs nothing
from the shared rate limiter. Only successful responses are stored.
"""

import json
import logging
import time
from typing import Any, Dict, List

from llm_gateway.base_provider import LLMProvider
from llm_gateway.cache_manager import PersistentCacheManager
from llm_gateway.exceptions import CacheCorruptedError, CacheError
from llm_gateway.models import LLMRequest, LLMResponse

logger = logging.getLogger(__name__)


def serialize_response(response: LLMResponse) -> str:
    return json.dumps(response.to_dict())


def deserialize_response(key: str, payload: str) -> LLMResponse:
    try:
        return LLMResponse.from_dict(json.loads(payload))
    except (ValueError, KeyError, TypeError) as e:
        raise CacheCorruptedError(key, str(e))


class CachedLLMProvider(LLMProvider):
    """
    Wraps a provider with a PersistentCacheManager.

    Usage:
        provider = CachedLLMProvider(OpenAIProvider(api_key=key), cache)
        response = provider.send_request(request)
    """

    def __init__(self, delegate: LLMProvider, cache: PersistentCacheManager):
        self.delegate = delegate
        self.cache = cache
        logger.info(f"CachedLLMProvider initialized for {delegate.name}")

    @property
    def name(self) -> str:
        return f"{self.delegate.name} (cached)"

    def is_available(self) -> bool:
        return self.delegate.is_available()

    def available_models(self) -> List[str]:
        return self.delegate.available_models()

    def supports_model(self, model: str) -> bool:
        return self.delegate.supports_model(model)

    def resolve_model(self, model: str) -> str:
        return self.delegate.resolve_model(model)

    def send_request(self, request: LLMRequest) -> LLMResponse:
        model = self.resolve_model(request.model)
        if model != request.model:
            request = request.with_model(model)

        key = request.cache_key()
        payload = self.cache.get(key)
        if payload is not None:
            try:
                response = deserialize_response(key, payload)
                logger.debug(f"Cache hit for {self.delegate.name} [{key[:12]}]")
                return response
            except CacheCorruptedError as e:
                logger.warning(f"Failed to deserialize cached response, will call LLM: {e}")
                self.cache.remove(key)

        start = time.time()
        response = self.delegate.send_request(request)
        duration_ms = (time.time() - start) * 1000

        if response.success:
            try:
                self.cache.put(key, serialize_response(response))
                logger.debug(
                    f"Cached response for {self.delegate.name} [{key[:12]}] "
                    f"after {duration_ms:.0f}ms"
                )
            except CacheError as e:
                logger.warning(f"Failed to cache response: {e}")
        return response

    def get_cache_stats(self) -> Dict[str, Any]:
        return self.cache.stats()

    def clear_cache(self) -> int:
        return self.cache.clear()
