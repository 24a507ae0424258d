"""
LLM Provider Base

Abstract base class for the chat-completion providers behind the LLM oracles.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True)
class Message:
    """Chat message."""

    role: str  # system, user, assistant
    content: str

    def to_dict(self) -> dict[str, str]:
        """Convert to dict for API calls."""
        return {"role": self.role, "content": self.content}


@dataclass
class LLMResponse:
    """Response from LLM."""

    content: str
    model: str
    provider: str
    usage: dict[str, int] = field(default_factory=dict)
    finish_reason: str | None = None

    @property
    def input_tokens(self) -> int:
        return self.usage.get("input_tokens", 0)

    @property
    def output_tokens(self) -> int:
        return self.usage.get("output_tokens", 0)

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens


class BaseLLMProvider(ABC):
    """
    Abstract base class for LLM providers.

    Provides common functionality and enforces interface.
    """

    # Whether acomplete accepts a sampling ``seed`` keyword
    supports_seed: bool = False

    def __init__(
        self,
        model: str,
        api_key: str | None = None,
        base_url: str | None = None,
        timeout: float = 60.0,
        max_retries: int = 2,
    ) -> None:
        """
        Initialize provider.

        Args:
            model: Model identifier.
            api_key: API key (if required).
            base_url: Custom API endpoint.
            timeout: Request timeout in seconds.
            max_retries: Client-level retries on transient transport errors.
        """
        self._model = model
        self._api_key = api_key
        self._base_url = base_url
        self._timeout = timeout
        self._max_retries = max_retries

    @property
    @abstractmethod
    def name(self) -> str:
        """Provider name (e.g., 'openai', 'anthropic')."""
        ...

    @property
    def model(self) -> str:
        """Current model."""
        return self._model

    @abstractmethod
    async def acomplete(
        self,
        messages: list[Message],
        temperature: float = 0.0,
        max_tokens: int | None = None,
        **kwargs: Any,
    ) -> LLMResponse:
        """
        Async completion.

        Args:
            messages: List of chat messages.
            temperature: Sampling temperature (0.0 = deterministic).
            max_tokens: Maximum tokens to generate.
            **kwargs: Provider-specific arguments.

        Returns:
            LLMResponse with generated content.

        Raises:
            LLMRateLimitError: Provider throttled the request.
            LLMProviderError: Provider rejected the request.
        """
        ...


def build_messages(system: str | None = None, user: str | None = None) -> list[Message]:
    """Build a system + user message list."""
    messages: list[Message] = []
    if system:
        messages.append(Message(role="system", content=system))
    if user:
        messages.append(Message(role="user", content=user))
    return messages
