"""
Role-oriented convenience wrapper over ProviderFactory.

complete() keeps the fail-closed contract and returns an LLMResponse;
complete_text() and complete_json() raise instead, for callers that
would rather handle an exception.
"""

import json
import logging
import re
from typing import Any, Dict, Optional

from llm_gateway.exceptions import LLMResponseError, ProviderUnavailableError
from llm_gateway.factory import ProviderFactory
from llm_gateway.models import LLMRequest, LLMResponse

logger = logging.getLogger(__name__)

_FENCE_RE = re.compile(r"^```[a-zA-Z0-9_+-]*\s*\n?|\n?```\s*$")


def strip_code_fences(text: str) -> str:
    """Remove one surrounding markdown code fence, if present."""
    cleaned = (text or "").strip()
    if cleaned.startswith("```"):
        cleaned = _FENCE_RE.sub("", cleaned).strip()
    return cleaned


def extract_json_object(text: str) -> Dict[str, Any]:
    """
    Parse the first JSON object in a model reply. Markdown fences and
    surrounding prose are tolerated.
    """
    cleaned = strip_code_fences(text)
    start = cleaned.find("{")
    end = cleaned.rfind("}")
    if start < 0 or end <= start:
        raise LLMResponseError("No JSON object found in response", raw_content=text or "")
    try:
        data = json.loads(cleaned[start:end + 1])
    except json.JSONDecodeError as e:
        raise LLMResponseError(f"Invalid JSON in response: {e}", raw_content=text or "")
    if not isinstance(data, dict):
        raise LLMResponseError("Response JSON is not an object", raw_content=text or "")
    return data


class LLMClient:
    """
    Usage:
        client = LLMClient(ProviderFactory.create_default(config))
        response = client.complete("analyzer", prompt, system=SYSTEM_PROMPT,
                                   temperature=0.3, max_tokens=2000)
    """

    def __init__(self, factory: ProviderFactory):
        self.factory = factory

    def complete(self, role: str, user: str, system: Optional[str] = None,
                 temperature: float = 0.7, max_tokens: int = 2000) -> LLMResponse:
        try:
            provider, model = self.factory.get_provider_for_role(role)
        except ProviderUnavailableError as e:
            return LLMResponse.failure(e.message)
        request = LLMRequest.create(model=model, user=user, system=system,
                                    temperature=temperature, max_tokens=max_tokens)
        logger.debug(f"Role '{role}' -> {provider.name}::{model}")
        return provider.send_request(request)

    def complete_text(self, role: str, user: str, system: Optional[str] = None,
                      temperature: float = 0.7, max_tokens: int = 2000) -> str:
        response = self.complete(role, user, system, temperature, max_tokens)
        if not response.success:
            raise ProviderUnavailableError(response.provider or role, response.error or "request failed")
        return response.content

    def complete_json(self, role: str, user: str, system: Optional[str] = None,
                      temperature: float = 0.7, max_tokens: int = 2000) -> Dict[str, Any]:
        return extract_json_object(self.complete_text(role, user, system, temperature, max_tokens))

    def is_available(self) -> bool:
        return bool(self.factory.available_providers())
