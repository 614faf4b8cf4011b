"""
Request/response models for LLM calls.

LLMRequest knows how to derive its own content-addressed cache key and a
token estimate for rate limiting; LLMResponse is a plain value object
that serializes to JSON for the persistent cache.
"""

import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from scan_engine.exceptions import ValidationError
from scan_engine.utils import sha256_hex


class MessageRole(str, Enum):
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"

    @classmethod
    def from_string(cls, value: str) -> "MessageRole":
        cleaned = (value or "").strip().lower()
        for member in cls:
            if member.value == cleaned:
                return member
        raise ValueError(f"Unknown message role: {value!r}")


@dataclass(frozen=True)
class Message:
    role: MessageRole
    content: str

    @classmethod
    def system(cls, content: str) -> "Message":
        return cls(MessageRole.SYSTEM, content)

    @classmethod
    def user(cls, content: str) -> "Message":
        return cls(MessageRole.USER, content)

    @classmethod
    def assistant(cls, content: str) -> "Message":
        return cls(MessageRole.ASSISTANT, content)

    def to_dict(self) -> Dict[str, str]:
        return {"role": self.role.value, "content": self.content}


@dataclass
class LLMRequest:
    """
    One chat-completion request.

    Example:
        request = LLMRequest.create(
            model="gpt-4",
            system="You are a C/C++ security expert.",
            user=prompt,
            temperature=0.3,
            max_tokens=2000,
        )
    """
    messages: List[Message]
    model: str
    temperature: float = 0.7
    max_tokens: int = 2000
    stream: bool = False

    def __post_init__(self):
        if not self.messages:
            raise ValidationError("messages", "at least one message is required")
        if not self.model or not self.model.strip():
            raise ValidationError("model", "model is required")
        self.messages = list(self.messages)

    @classmethod
    def create(cls, model: str, user: str, system: Optional[str] = None,
               temperature: float = 0.7, max_tokens: int = 2000,
               stream: bool = False) -> "LLMRequest":
        messages = []
        if system:
            messages.append(Message.system(system))
        messages.append(Message.user(user))
        return cls(messages=messages, model=model, temperature=temperature,
                   max_tokens=max_tokens, stream=stream)

    def with_model(self, model: str) -> "LLMRequest":
        return LLMRequest(list(self.messages), model, self.temperature,
                          self.max_tokens, self.stream)

    def contents(self, role: MessageRole) -> List[str]:
        return [m.content for m in self.messages if m.role == role]

    def system_prompt(self) -> str:
        return "\n\n".join(self.contents(MessageRole.SYSTEM))

    @property
    def total_chars(self) -> int:
        return sum(len(m.content) for m in self.messages)

    def estimate_tokens(self) -> int:
        """Rough estimate: 4 characters per token plus a 20% buffer."""
        return int(math.ceil((self.total_chars / 4.0) * 1.2))

    def cache_key(self) -> str:
        """
        SHA-256 over model, temperature and the system/user message
        contents. max_tokens and stream do not change the answer's
        identity and are left out.
        """
        def _digest(role: MessageRole) -> str:
            parts = self.contents(role)
            return sha256_hex("|".join(parts)) if parts else "empty"

        raw = (
            f"model={self.model}"
            f"|temp={self.temperature:.2f}"
            f"|system={_digest(MessageRole.SYSTEM)}"
            f"|user={_digest(MessageRole.USER)}"
        )
        return sha256_hex(raw)


@dataclass
class LLMResponse:
    content: str = ""
    model: str = ""
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0
    success: bool = True
    error: Optional[str] = None
    provider: str = ""
    extra: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def failure(cls, error: str, model: str = "", provider: str = "") -> "LLMResponse":
        return cls(success=False, error=error, model=model, provider=provider)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "content": self.content,
            "model": self.model,
            "prompt_tokens": self.prompt_tokens,
            "completion_tokens": self.completion_tokens,
            "total_tokens": self.total_tokens,
            "success": self.success,
            "error": self.error,
            "provider": self.provider,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LLMResponse":
        """Strict inverse of to_dict(); raises KeyError/TypeError/ValueError on bad input."""
        if not isinstance(data["content"], str):
            raise TypeError("content must be a string")
        return cls(
            content=data["content"],
            model=str(data.get("model", "")),
            prompt_tokens=int(data.get("prompt_tokens", 0)),
            completion_tokens=int(data.get("completion_tokens", 0)),
            total_tokens=int(data.get("total_tokens", 0)),
            success=bool(data.get("success", True)),
            error=data.get("error"),
            provider=str(data.get("provider", "")),
        )
