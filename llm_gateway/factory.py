"""
Provider registry, construction from configuration, and role routing.

Roles name what a call is for (analyzer, planner, coder, reviewer);
resolve_role() maps one to a (provider, model) pair from configuration
alone, and ProviderFactory turns that pair into a live provider with a
fallback when the preferred one has no credentials.
"""

import logging
from typing import Dict, List, Optional, Tuple, Type

from llm_gateway.base_provider import BaseLLMProvider, LLMProvider, MODEL_ALIASES
from llm_gateway.cache_manager import PersistentCacheManager
from llm_gateway.cached_provider import CachedLLMProvider
from llm_gateway.claude_provider import ClaudeProvider
from llm_gateway.exceptions import ProviderUnavailableError
from llm_gateway.openai_provider import OpenAIProvider, SiliconFlowProvider
from llm_gateway.rate_limiter import RateLimiter
from scan_engine.config import ScanEngineConfig, DEFAULT_CONFIG
from scan_engine.exceptions import ConfigError

logger = logging.getLogger(__name__)


PROVIDER_REGISTRY: Dict[str, Type[BaseLLMProvider]] = {
    "openai": OpenAIProvider,
    "claude": ClaudeProvider,
    "siliconflow": SiliconFlowProvider,
}

ROLE_DEFAULTS: Dict[str, Tuple[str, str]] = {
    "analyzer": ("openai", "gpt-3.5-turbo"),
    "planner": ("claude", "claude-3-sonnet-20240229"),
    "coder": ("claude", "claude-3-sonnet-20240229"),
    "reviewer": ("claude", "claude-3-opus-20240229"),
}


def parse_provider_model(spec: str) -> Tuple[str, str]:
    """Split 'provider::model' into its parts."""
    provider, sep, model = (spec or "").partition("::")
    provider, model = provider.strip().lower(), model.strip()
    if not sep or not provider or not model:
        raise ConfigError("role", spec, "expected 'provider::model'")
    return provider, model


def resolve_role(role: str, config: ScanEngineConfig = None) -> Tuple[str, str]:
    """
    (provider, model) for a role. Overrides in config.role_overrides win
    over ROLE_DEFAULTS; fast/standard/premium aliases resolve against the
    chosen provider. Unknown roles fall back to the analyzer mapping.
    """
    config = config or DEFAULT_CONFIG
    role = (role or "").lower()
    override = config.role_overrides.get(role)
    if override:
        provider, model = parse_provider_model(override)
    else:
        provider, model = ROLE_DEFAULTS.get(role, ROLE_DEFAULTS["analyzer"])

    provider_cls = PROVIDER_REGISTRY.get(provider)
    if model in MODEL_ALIASES and provider_cls is not None:
        model = provider_cls.MODEL_ALIAS_MAP.get(model, model)
    return provider, model


def create_provider(name: str, config: ScanEngineConfig = None,
                    rate_limiter: Optional[RateLimiter] = None) -> BaseLLMProvider:
    """Build one registered provider from configuration."""
    config = config or DEFAULT_CONFIG
    provider_cls = PROVIDER_REGISTRY.get((name or "").lower())
    if provider_cls is None:
        raise ProviderUnavailableError(name, f"unknown provider; choose from {sorted(PROVIDER_REGISTRY)}")

    credentials = {
        "openai": (config.openai_api_key, config.openai_base_url),
        "claude": (config.claude_api_key, config.claude_base_url),
        "siliconflow": (config.siliconflow_api_key, config.siliconflow_base_url),
    }
    api_key, base_url = credentials.get(provider_cls.PROVIDER_NAME, ("", None))
    return provider_cls(
        api_key=api_key,
        base_url=base_url,
        rate_limiter=rate_limiter,
        timeout=config.request_timeout,
        max_retries=config.max_retries,
    )


class ProviderFactory:
    """
    Name-keyed set of live providers sharing one rate limiter and cache.

    Usage:
        factory = ProviderFactory.create_default(config)
        provider, model = factory.get_provider_for_role("coder")
        response = provider.send_request(LLMRequest.create(model, prompt))
    """

    def __init__(self, config: ScanEngineConfig = None,
                 cache: Optional[PersistentCacheManager] = None):
        self.config = config or DEFAULT_CONFIG
        self.cache = cache
        self._providers: Dict[str, LLMProvider] = {}

    @classmethod
    def create_default(cls, config: ScanEngineConfig = None,
                       rate_limiter: Optional[RateLimiter] = None,
                       cache: Optional[PersistentCacheManager] = None) -> "ProviderFactory":
        """Every registered provider, one shared limiter, one shared cache."""
        config = config or DEFAULT_CONFIG
        rate_limiter = rate_limiter or RateLimiter.from_config(config)
        if cache is None and config.cache_enabled:
            cache = PersistentCacheManager.from_config(config)

        factory = cls(config, cache=cache)
        for name in PROVIDER_REGISTRY:
            factory.register_provider(name, create_provider(name, config, rate_limiter))

        available = factory.available_providers()
        if available:
            logger.info(f"LLM providers available: {', '.join(available)}")
        else:
            logger.warning("No LLM provider has credentials configured; AI features will fail closed")
        return factory

    def register_provider(self, name: str, provider: LLMProvider) -> None:
        """Register a provider, wrapping it with the cache when one is configured."""
        if self.cache is not None and not isinstance(provider, CachedLLMProvider):
            provider = CachedLLMProvider(provider, self.cache)
        self._providers[name.lower()] = provider

    def has_provider(self, name: str) -> bool:
        return (name or "").lower() in self._providers

    def get_provider(self, name: str) -> LLMProvider:
        provider = self._providers.get((name or "").lower())
        if provider is None:
            raise ProviderUnavailableError(name, "provider not registered")
        return provider

    @property
    def provider_names(self) -> List[str]:
        return list(self._providers)

    def available_providers(self) -> List[str]:
        return [name for name, p in self._providers.items() if p.is_available()]

    def get_provider_for_role(self, role: str) -> Tuple[LLMProvider, str]:
        """
        Live provider and model for a role. When the configured provider
        is missing or has no credentials, the first available registered
        provider is used with its 'standard' model.
        """
        provider_name, model = resolve_role(role, self.config)
        provider = self._providers.get(provider_name)
        if provider is not None and provider.is_available():
            return provider, model

        for name, candidate in self._providers.items():
            if candidate.is_available():
                fallback_model = candidate.resolve_model("standard")
                logger.warning(
                    f"Provider '{provider_name}' unavailable for role '{role}', "
                    f"falling back to {name}::{fallback_model}"
                )
                return candidate, fallback_model

        if provider is None:
            raise ProviderUnavailableError(provider_name, "provider not registered")
        # nothing is available; the caller gets a fail-closed response
        return provider, model

    def get_cache_stats(self) -> Dict[str, object]:
        return self.cache.stats() if self.cache is not None else {}

    def clear_cache(self) -> int:
        return self.cache.clear() if self.cache is not None else 0
