"""
Shared plumbing for the LLM-backed oracles: prompt rendering, retrying
provider calls, and strict JSON response parsing.
"""

from __future__ import annotations

import hashlib
import json
import logging
import re
from typing import Any, TypeVar

from pydantic import BaseModel, ValidationError as PydanticValidationError
from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential_jitter,
)

from asr.core.exceptions import (
    LLMError,
    LLMRateLimitError,
    OracleCallError,
    OracleResponseError,
)
from asr.core.schemas import Criteria, Record
from asr.llm.base import BaseLLMProvider, LLMResponse, Message
from asr.observability import get_asr_metrics

logger = logging.getLogger(__name__)

# Full text beyond this is cut before prompting
MAX_FULLTEXT_CHARS = 60_000

_JSON_OBJECT = re.compile(r"\{[\s\S]*\}")

ModelT = TypeVar("ModelT", bound=BaseModel)


def prompt_hash(*parts: str) -> str:
    """Short content hash of the prompt, stored on votes for reproducibility."""
    return hashlib.sha256("".join(parts).encode("utf-8")).hexdigest()[:16]


def format_criteria(criteria: Criteria) -> str:
    inclusion = "\n".join(f"{i}. {c}" for i, c in enumerate(criteria.inclusion, 1))
    exclusion = "\n".join(f"{i}. {c}" for i, c in enumerate(criteria.exclusion, 1)) or "None"
    return f"""PCC CRITERIA:
Population: {criteria.pcc.population}
Concept: {criteria.pcc.concept}
Context: {criteria.pcc.context}

INCLUSION CRITERIA:
{inclusion}

EXCLUSION CRITERIA:
{exclusion}"""


def format_record(record: Record) -> str:
    keywords = ", ".join(record.keywords) if record.keywords else "None"
    return f"""TITLE: {record.title}

AUTHORS: {", ".join(record.authors) or "Unknown"}

YEAR: {record.year or "Unknown"}

JOURNAL: {record.venue or "Unknown"}

ABSTRACT:
{record.abstract or "No abstract available"}

KEYWORDS: {keywords}"""


def truncate_full_text(text: str) -> str:
    if len(text) <= MAX_FULLTEXT_CHARS:
        return text
    return text[:MAX_FULLTEXT_CHARS] + "\n\n[... full text truncated ...]"


async def complete_with_retry(
    provider: BaseLLMProvider,
    messages: list[Message],
    *,
    oracle: str,
    record_id: str,
    temperature: float,
    max_tokens: int,
    max_attempts: int,
    **kwargs: Any,
) -> LLMResponse:
    """
    Call the provider, retrying rate limits with exponential backoff.

    Raises:
        OracleCallError: The provider failed after retries.
    """
    metrics = get_asr_metrics()
    try:
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(max_attempts),
            wait=wait_exponential_jitter(initial=1, max=30, jitter=2),
            retry=retry_if_exception_type(LLMRateLimitError),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        ):
            with attempt:
                with metrics.oracle_latency.time(labels={"oracle": oracle}):
                    response = await provider.acomplete(
                        messages, temperature=temperature, max_tokens=max_tokens, **kwargs
                    )
    except LLMError as e:
        metrics.errors.inc(labels={"type": type(e).__name__})
        raise OracleCallError(f"{oracle} call failed: {e.message}", oracle, record_id) from e

    metrics.llm_tokens.inc(response.total_tokens, labels={"oracle": oracle})
    return response


def parse_json_response(
    content: str, schema: type[ModelT], *, oracle: str, record_id: str
) -> ModelT:
    """
    Extract the JSON object from an LLM reply and validate it.

    Tolerates markdown fences and prose around the object.

    Raises:
        OracleResponseError: No JSON object, invalid JSON, or schema mismatch.
    """
    match = _JSON_OBJECT.search(content)
    if not match:
        raise OracleResponseError(f"No JSON object in {oracle} response", oracle, record_id)
    try:
        data = json.loads(match.group(0))
    except json.JSONDecodeError as e:
        raise OracleResponseError(
            f"Invalid JSON in {oracle} response: {e.msg}", oracle, record_id
        ) from e
    try:
        return schema.model_validate(data)
    except PydanticValidationError as e:
        raise OracleResponseError(
            f"{oracle} response does not match schema: {e.error_count()} error(s)",
            oracle,
            record_id,
        ) from e
