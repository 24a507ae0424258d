"""
Data Extractor

LLM-backed data charting for records included after full-text screening.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, Field

from asr.config import get_settings
from asr.llm import build_messages
from asr.screening._helpers import (
    complete_with_retry,
    format_criteria,
    format_record,
    parse_json_response,
    truncate_full_text,
)
from asr.screening.oracles import ExtractionRequest

if TYPE_CHECKING:
    from asr.llm.base import BaseLLMProvider

EXTRACTION_SYSTEM_PROMPT = """You are a data extraction specialist for scoping reviews following PRISMA-ScR.

Extract structured data from the full text of an included study.

RULES:
1. Extract information exactly as reported; do not infer
2. Use null when the information is not reported
3. Cite page numbers for key findings where possible
4. Rate how completely the study reported the requested items

{criteria}

Respond with ONLY valid JSON in this exact format:
{{
  "design": "Primary study design",
  "setting": "Setting description",
  "country": "Country name",
  "population_details": "Population characteristics",
  "sample_size": "n=X or 'Not reported'",
  "intervention_or_concept": "Main intervention or concept studied",
  "outcomes": ["Outcome 1"],
  "key_findings": ["Finding (p.X)"],
  "study_limitations": ["Limitation 1"],
  "funding_source": "Funder" or null,
  "data_completeness": "High|Medium|Low",
  "extraction_confidence": "High|Medium|Low"
}}"""


class ExtractionRecord(BaseModel):
    """Charted fields for one included study."""

    design: str | None = None
    setting: str | None = None
    country: str | None = None
    population_details: str | None = None
    sample_size: str | None = None
    intervention_or_concept: str | None = None
    outcomes: list[str] = Field(default_factory=list)
    key_findings: list[str] = Field(default_factory=list)
    study_limitations: list[str] = Field(default_factory=list)
    funding_source: str | None = None
    data_completeness: str | None = None
    extraction_confidence: str | None = None


class LLMDataExtractor:
    """DataExtractor implementation backed by an LLM provider."""

    def __init__(
        self,
        provider: BaseLLMProvider,
        temperature: float | None = None,
        max_tokens: int | None = None,
        max_attempts: int | None = None,
    ) -> None:
        settings = get_settings().llm
        self._provider = provider
        self._temperature = (
            settings.extraction_temperature if temperature is None else temperature
        )
        self._max_tokens = max_tokens or settings.max_tokens
        self._max_attempts = max_attempts or settings.max_attempts

    async def extract(self, request: ExtractionRequest) -> dict[str, Any]:
        record_id = request.record.record_id
        system = EXTRACTION_SYSTEM_PROMPT.format(criteria=format_criteria(request.criteria))
        user = (
            f"Extract data from this study:\n\n{format_record(request.record)}\n\n"
            f"FULL TEXT:\n{truncate_full_text(request.full_text)}"
        )
        response = await complete_with_retry(
            self._provider,
            build_messages(system=system, user=user),
            oracle="extractor",
            record_id=record_id,
            temperature=self._temperature,
            max_tokens=self._max_tokens,
            max_attempts=self._max_attempts,
        )
        extracted = parse_json_response(
            response.content, ExtractionRecord, oracle="extractor", record_id=record_id
        )
        return extracted.model_dump()
