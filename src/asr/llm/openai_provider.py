"""
OpenAI Provider

LLM provider implementation for the OpenAI Chat Completions API.
"""

from typing import Any

import openai
from openai import AsyncOpenAI

from asr.core.exceptions import LLMError, LLMProviderError, LLMRateLimitError
from asr.llm.base import BaseLLMProvider, LLMResponse, Message


class OpenAIProvider(BaseLLMProvider):
    """
    OpenAI API provider.

    Passes ``seed`` through when given, so repeated screening calls are
    as reproducible as the API allows.
    """

    supports_seed = True

    def __init__(
        self,
        model: str = "gpt-4o",
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

        self._client = AsyncOpenAI(**client_kwargs)

    @property
    def name(self) -> str:
        return "openai"

    async def acomplete(
        self,
        messages: list[Message],
        temperature: float = 0.0,
        max_tokens: int | None = None,
        **kwargs: Any,
    ) -> LLMResponse:
        """Async completion."""
        try:
            response = await self._client.chat.completions.create(
                model=self._model,
                messages=[m.to_dict() for m in messages],
                temperature=temperature,
                max_tokens=max_tokens,
                **kwargs,
            )
        except openai.RateLimitError as e:
            retry_after = 60.0
            if e.response is not None:
                retry_after = float(e.response.headers.get("Retry-After", 60))
            raise LLMRateLimitError(provider=self.name, retry_after=retry_after) from e
        except openai.APIStatusError as e:
            raise LLMProviderError(
                str(e),
                provider=self.name,
                status_code=e.status_code,
                retryable=e.status_code >= 500,
            ) from e
        except openai.APIError as e:
            raise LLMProviderError(str(e), provider=self.name) from e
        except Exception as e:
            raise LLMError(f"OpenAI error: {e}") from e

        choice = response.choices[0]
        return LLMResponse(
            content=choice.message.content or "",
            model=response.model,
            provider=self.name,
            usage={
                "input_tokens": response.usage.prompt_tokens if response.usage else 0,
                "output_tokens": response.usage.completion_tokens if response.usage else 0,
            },
            finish_reason=choice.finish_reason,
        )
