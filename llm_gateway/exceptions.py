"""
Exception hierarchy for the llm_gateway package.

Provider failures never cross send_request(): they become failed
LLMResponse objects. These types exist for the layers around it: the
cache (corruption, write failures) and LLMClient helpers that turn a
failed response back into an exception for callers that prefer one.
"""

from scan_engine.exceptions import ScanEngineError


class LLMError(ScanEngineError):
    """Base exception for all llm_gateway errors."""


class ProviderUnavailableError(LLMError):
    """A provider is unknown or has no credentials configured."""

    def __init__(self, provider: str, reason: str = "API key not configured"):
        super().__init__(
            f"Provider {provider} is not available ({reason})",
            details={"provider": provider, "reason": reason}
        )


class LLMResponseError(LLMError):
    """The model answered, but the answer is unusable."""

    def __init__(self, message: str, raw_content: str = "", provider: str = ""):
        super().__init__(
            message,
            details={"provider": provider, "raw_content": raw_content[:500]}
        )
        self.raw_content = raw_content


# --- Cache Errors ---

class CacheError(LLMError):
    """Writing to or maintaining the persistent cache failed."""

    def __init__(self, key: str, operation: str, reason: str = ""):
        super().__init__(
            f"Cache {operation} failed for key {key[:12]}: {reason}",
            details={"key": key, "operation": operation, "reason": reason}
        )


class CacheCorruptedError(CacheError):
    """A cached payload could not be deserialized."""

    def __init__(self, key: str, reason: str = ""):
        super().__init__(key, "deserialize", reason)
