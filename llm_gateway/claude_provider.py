"""Anthropic Claude provider (Messages API)."""

import anthropic

from llm_gateway.base_provider import BaseLLMProvider
from llm_gateway.models import LLMRequest, LLMResponse, MessageRole


class ClaudeProvider(BaseLLMProvider):
    """
    Claude takes the system prompt as a separate parameter, so system
    messages are joined and lifted out of the message list.
    """

    PROVIDER_NAME = "claude"
    DEFAULT_BASE_URL = "https://api.anthropic.com"
    MODELS = (
        "claude-3-haiku-20240307",
        "claude-3-sonnet-20240229",
        "claude-3-opus-20240229",
        "claude-3-5-sonnet-20241022",
    )
    MODEL_ALIAS_MAP = {
        "fast": "claude-3-haiku-20240307",
        "standard": "claude-3-sonnet-20240229",
        "premium": "claude-3-opus-20240229",
    }
    RETRYABLE_ERRORS = (
        anthropic.APIConnectionError,
        anthropic.APITimeoutError,
        anthropic.RateLimitError,
        anthropic.InternalServerError,
        ConnectionError,
        TimeoutError,
    )

    def _create_client(self):
        return anthropic.Anthropic(
            api_key=self.api_key,
            base_url=self.base_url,
            timeout=self.timeout,
            max_retries=0,
        )

    def _send(self, request: LLMRequest) -> LLMResponse:
        kwargs = {
            "model": request.model,
            "max_tokens": request.max_tokens,
            "temperature": request.temperature,
            "messages": [
                m.to_dict() for m in request.messages if m.role != MessageRole.SYSTEM
            ],
        }
        system = request.system_prompt()
        if system:
            kwargs["system"] = system

        message = self.client.messages.create(**kwargs)

        content = "".join(
            getattr(block, "text", "") for block in message.content
            if getattr(block, "type", "") == "text"
        )
        usage = message.usage
        prompt_tokens = usage.input_tokens if usage else 0
        completion_tokens = usage.output_tokens if usage else 0
        return LLMResponse(
            content=content,
            model=message.model or request.model,
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            total_tokens=prompt_tokens + completion_tokens,
            provider=self.name,
        )
