"""
Anthropic Provider

LLM provider implementation for the Anthropic Messages API.
"""

from typing import Any

import anthropic
from anthropic import AsyncAnthropic

from asr.core.exceptions import LLMError, LLMProviderError, LLMRateLimitError
from asr.llm.base import BaseLLMProvider, LLMResponse, Message


class AnthropicProvider(BaseLLMProvider):
    """Anthropic Claude API provider."""

    def __init__(
        self,
        model: str = "claude-sonnet-4-20250514",
        api_key: str | None = None,
        base_url: str | None = None,
        timeout: float = 60.0,
        max_retries: int = 2,
    ) -> None:
        super().__init__(model, api_key, base_url, timeout, max_retries)

        client_kwargs: dict[str, Any] = {
            "timeout": timeout,
            "max_retries": max_retries,
        }
        if api_key:
            client_kwargs["api_key"] = api_key
        if base_url:
            client_kwargs["base_url"] = base_url

        self._client = AsyncAnthropic(**client_kwargs)

    @property
    def name(self) -> str:
        return "anthropic"

    @staticmethod
    def _convert_messages(messages: list[Message]) -> tuple[str | None, list[dict[str, str]]]:
        """Split out the system prompt; Anthropic takes it as a separate parameter."""
        system_prompt: str | None = None
        converted: list[dict[str, str]] = []
        for msg in messages:
            if msg.role == "system":
                system_prompt = msg.content
            else:
                converted.append(msg.to_dict())
        return system_prompt, converted

    async def acomplete(
        self,
        messages: list[Message],
        temperature: float = 0.0,
        max_tokens: int | None = None,
        **kwargs: Any,
    ) -> LLMResponse:
        """Async completion."""
        system_prompt, converted = self._convert_messages(messages)

        call_kwargs: dict[str, Any] = {
            "model": self._model,
            "messages": converted,
            "temperature": temperature,
            "max_tokens": max_tokens or 4096,
        }
        if system_prompt:
            call_kwargs["system"] = system_prompt
        call_kwargs.update(kwargs)

        try:
            response = await self._client.messages.create(**call_kwargs)
        except anthropic.RateLimitError as e:
            raise LLMRateLimitError(provider=self.name, retry_after=60.0) from e
        except anthropic.APIStatusError as e:
            raise LLMProviderError(
                str(e),
                provider=self.name,
                status_code=e.status_code,
                retryable=e.status_code >= 500,
            ) from e
        except anthropic.APIError as e:
            raise LLMProviderError(str(e), provider=self.name) from e
        except Exception as e:
            raise LLMError(f"Anthropic error: {e}") from e

        content = "".join(block.text for block in response.content if hasattr(block, "text"))
        return LLMResponse(
            content=content,
            model=response.model,
            provider=self.name,
            usage={
                "input_tokens": response.usage.input_tokens,
                "output_tokens": response.usage.output_tokens,
            },
            finish_reason=response.stop_reason,
        )
