"""
llm_gateway - uniform, cached, rate-limited access to LLM providers.

Architecture:
    ┌─────────────────────────────────────────────────┐
    │          LLMClient / ProviderFactory            │  ← Public API
    │  (role routing, fallback, provider registry)    │
    ├─────────────────────────────────────────────────┤
    │             CachedLLMProvider                   │  ← Decorator
    │  (content-addressed SHA-256 keys)               │
    ├─────────────────────────────────────────────────┤
    │          PersistentCacheManager                 │  ← Storage
    │  (L1 memory LRU + L2 disk files)                │
    ├─────────────────────────────────────────────────┤
    │  OpenAIProvider │ ClaudeProvider │ SiliconFlow  │  ← Vendors
    │  (tenacity retries around the SDK call)         │
    ├─────────────────────────────────────────────────┤
    │               RateLimiter                       │  ← Shared gate
    │  (token bucket, qps or tpm)                     │
    └─────────────────────────────────────────────────┘

Supporting modules:
    models.py       - Message, LLMRequest, LLMResponse
    exceptions.py   - LLMError hierarchy
"""

# --- Core Public API ---
from llm_gateway.client import LLMClient, extract_json_object, strip_code_fences
from llm_gateway.factory import (
    PROVIDER_REGISTRY,
    ROLE_DEFAULTS,
    ProviderFactory,
    create_provider,
    parse_provider_model,
    resolve_role,
)

# --- Providers ---
from llm_gateway.base_provider import BaseLLMProvider, LLMProvider
from llm_gateway.openai_provider import OpenAIProvider, SiliconFlowProvider
from llm_gateway.claude_provider import ClaudeProvider
from llm_gateway.cached_provider import CachedLLMProvider

# --- Infrastructure ---
from llm_gateway.cache_manager import PersistentCacheManager
from llm_gateway.rate_limiter import RateLimiter

# --- Models ---
from llm_gateway.models import LLMRequest, LLMResponse, Message, MessageRole

# --- Exceptions ---
from llm_gateway.exceptions import (
    LLMError,
    ProviderUnavailableError,
    LLMResponseError,
    CacheError,
    CacheCorruptedError,
)

__all__ = [
    # Core
    "LLMClient",
    "ProviderFactory",
    "PROVIDER_REGISTRY",
    "ROLE_DEFAULTS",
    "create_provider",
    "parse_provider_model",
    "resolve_role",
    "extract_json_object",
    "strip_code_fences",
    # Providers
    "LLMProvider",
    "BaseLLMProvider",
    "OpenAIProvider",
    "SiliconFlowProvider",
    "ClaudeProvider",
    "CachedLLMProvider",
    # Infrastructure
    "PersistentCacheManager",
    "RateLimiter",
    # Models
    "LLMRequest",
    "LLMResponse",
    "Message",
    "MessageRole",
    # Exceptions
    "LLMError",
    "ProviderUnavailableError",
    "LLMResponseError",
    "CacheError",
    "CacheCorruptedError",
]
