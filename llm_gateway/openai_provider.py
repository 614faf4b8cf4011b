"""
OpenAI-compatible providers: OpenAI itself and SiliconFlow.

Both speak the chat-completions API, so SiliconFlow reuses the OpenAI
SDK pointed at its own base URL.
"""

import openai
from openai import OpenAI

from llm_gateway.base_provider import BaseLLMProvider
from llm_gateway.models import LLMRequest, LLMResponse


class OpenAIProvider(BaseLLMProvider):
    PROVIDER_NAME = "openai"
    DEFAULT_BASE_URL = "https://api.openai.com/v1"
    MODELS = (
        "gpt-3.5-turbo",
        "gpt-3.5-turbo-16k",
        "gpt-4",
        "gpt-4-turbo-preview",
        "gpt-4-32k",
    )
    MODEL_ALIAS_MAP = {
        "fast": "gpt-3.5-turbo",
        "standard": "gpt-4-turbo-preview",
        "premium": "gpt-4",
    }
    RETRYABLE_ERRORS = (
        openai.APIConnectionError,
        openai.APITimeoutError,
        openai.RateLimitError,
        openai.InternalServerError,
        ConnectionError,
        TimeoutError,
    )

    def _create_client(self):
        # retries are handled by tenacity in the base class
        return OpenAI(
            base_url=self.base_url,
            api_key=self.api_key,
            timeout=self.timeout,
            max_retries=0,
        )

    def _send(self, request: LLMRequest) -> LLMResponse:
        completion = self.client.chat.completions.create(
            model=request.model,
            messages=[m.to_dict() for m in request.messages],
            temperature=request.temperature,
            max_tokens=request.max_tokens,
            stream=False,
        )

        content = ""
        if completion.choices:
            content = completion.choices[0].message.content or ""

        usage = completion.usage
        return LLMResponse(
            content=content,
            model=completion.model or request.model,
            prompt_tokens=usage.prompt_tokens if usage else 0,
            completion_tokens=usage.completion_tokens if usage else 0,
            total_tokens=usage.total_tokens if usage else 0,
            provider=self.name,
        )


class SiliconFlowProvider(OpenAIProvider):
    PROVIDER_NAME = "siliconflow"
    DEFAULT_BASE_URL = "https://api.siliconflow.cn/v1"
    MODELS = (
        # Qwen
        "Qwen/Qwen2.5-7B-Instruct",
        "Qwen/Qwen2.5-14B-Instruct",
        "Qwen/Qwen2.5-32B-Instruct",
        "Qwen/Qwen2.5-72B-Instruct",
        "Qwen/Qwen2.5-Coder-7B-Instruct",
        # DeepSeek
        "deepseek-ai/DeepSeek-V2.5",
        "deepseek-ai/DeepSeek-Coder-V2-Instruct",
        # GLM
        "THUDM/glm-4-9b-chat",
        # Yi
        "01-ai/Yi-1.5-9B-Chat",
        "01-ai/Yi-1.5-34B-Chat",
        # Llama
        "meta-llama/Meta-Llama-3.1-8B-Instruct",
        "meta-llama/Meta-Llama-3.1-70B-Instruct",
        # Mistral
        "mistralai/Mistral-7B-Instruct-v0.3",
        "mistralai/Mixtral-8x7B-Instruct-v0.1",
    )
    MODEL_ALIAS_MAP = {
        "fast": "Qwen/Qwen2.5-7B-Instruct",
        "standard": "Qwen/Qwen2.5-72B-Instruct",
        "premium": "deepseek-ai/DeepSeek-V2.5",
    }
