"""
Screener

LLM-backed reviewer for abstract and full-text screening.
Three instances with distinct reviewer ids and seeds form a panel.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, Field, field_validator

from asr.config import get_settings
from asr.core.enums import ScreeningStage, VoteDecision
from asr.core.exceptions import OracleResponseError
from asr.core.schemas import EvidenceQuote, Vote, utcnow
from asr.llm import build_messages
from asr.screening._helpers import (
    complete_with_retry,
    format_criteria,
    format_record,
    parse_json_response,
    prompt_hash,
    truncate_full_text,
)
from asr.screening.oracles import ScreeningRequest

if TYPE_CHECKING:
    from asr.llm.base import BaseLLMProvider

PANEL_SIZE = 3

ABSTRACT_SYSTEM_PROMPT = """You are a methodical scoping-review screener following PRISMA-ScR guidelines.

Review the study title and abstract against the criteria below.

RULES:
1. Apply the PCC (Population, Concept, Context) criteria strictly
2. Do not infer beyond what the title and abstract state
3. If the information is insufficient to decide, answer "unsure"
4. Give at least 2 clear reasons for your decision
5. Quote at least 1 verbatim passage with its location (title or abstract)

{criteria}

Respond with ONLY valid JSON in this exact format:
{{
  "decision": "include|exclude|unsure",
  "reasons": ["reason 1", "reason 2"],
  "evidence_quotes": [
    {{"text": "verbatim quote", "location": "Abstract"}}
  ]
}}"""

FULLTEXT_SYSTEM_PROMPT = """You are a methodical scoping-review screener following PRISMA-ScR guidelines.

Review the FULL TEXT of the study against the criteria below.

RULES:
1. Apply the PCC (Population, Concept, Context) criteria strictly
2. Read the full text, not just the abstract
3. Exclude if the study does not clearly meet ALL inclusion criteria
4. Give at least 2 clear reasons for your decision
5. Quote at least 2 verbatim passages with page or section locations

{criteria}

Respond with ONLY valid JSON in this exact format:
{{
  "decision": "include|exclude|unsure",
  "reasons": ["reason 1", "reason 2"],
  "evidence_quotes": [
    {{"text": "verbatim quote", "location": "p. 3, Methods"}},
    {{"text": "another quote", "location": "p. 7, Results"}}
  ]
}}"""

MIN_FULLTEXT_QUOTES = 2


class ScreeningPayload(BaseModel):
    """Expected JSON body of a screening reply."""

    decision: VoteDecision
    reasons: list[str] = Field(..., min_length=2)
    evidence_quotes: list[EvidenceQuote] = Field(..., min_length=1)

    @field_validator("decision", mode="before")
    @classmethod
    def normalize_decision(cls, v: Any) -> Any:
        return v.strip().lower() if isinstance(v, str) else v

    @field_validator("reasons")
    @classmethod
    def reasons_not_blank(cls, v: list[str]) -> list[str]:
        if any(not r.strip() for r in v):
            raise ValueError("reasons must not be blank")
        return v


def build_screening_prompt(request: ScreeningRequest) -> tuple[str, str]:
    """Render (system, user) prompts for a screening request."""
    criteria = format_criteria(request.criteria)
    record = format_record(request.record)

    if request.stage == ScreeningStage.ABSTRACT:
        system = ABSTRACT_SYSTEM_PROMPT.format(criteria=criteria)
        user = f"Screen this study:\n\n{record}"
    else:
        system = FULLTEXT_SYSTEM_PROMPT.format(criteria=criteria)
        user = (
            f"Screen this study:\n\n{record}\n\n"
            f"FULL TEXT:\n{truncate_full_text(request.full_text or '')}"
        )
    return system, user


class LLMScreener:
    """
    One reviewer backed by an LLM provider.

    Usage:
        screener = LLMScreener("abstract-screener-1", provider, seed=42)
        vote = await screener.screen(request)
    """

    def __init__(
        self,
        reviewer_id: str,
        provider: BaseLLMProvider,
        temperature: float | None = None,
        seed: int | None = None,
        max_tokens: int | None = None,
        max_attempts: int | None = None,
    ) -> None:
        settings = get_settings().llm
        self._reviewer_id = reviewer_id
        self._provider = provider
        self._temperature = (
            settings.screening_temperature if temperature is None else temperature
        )
        self._seed = settings.seed if seed is None else seed
        self._max_tokens = max_tokens or settings.max_tokens
        self._max_attempts = max_attempts or settings.max_attempts

    @property
    def reviewer_id(self) -> str:
        return self._reviewer_id

    @property
    def seed(self) -> int:
        return self._seed

    async def screen(self, request: ScreeningRequest) -> Vote:
        """
        Screen one record.

        Raises:
            OracleCallError: Provider failed.
            OracleResponseError: Reply unparsable or below evidence requirements.
        """
        record_id = request.record.record_id
        if request.stage == ScreeningStage.FULLTEXT and not request.full_text:
            raise OracleResponseError(
                "Full-text screening requested without full text", self._reviewer_id, record_id
            )

        system, user = build_screening_prompt(request)
        kwargs: dict[str, Any] = {}
        if self._provider.supports_seed:
            kwargs["seed"] = self._seed

        response = await complete_with_retry(
            self._provider,
            build_messages(system=system, user=user),
            oracle=self._reviewer_id,
            record_id=record_id,
            temperature=self._temperature,
            max_tokens=self._max_tokens,
            max_attempts=self._max_attempts,
            **kwargs,
        )
        payload = parse_json_response(
            response.content, ScreeningPayload, oracle=self._reviewer_id, record_id=record_id
        )

        if (
            request.stage == ScreeningStage.FULLTEXT
            and len(payload.evidence_quotes) < MIN_FULLTEXT_QUOTES
        ):
            raise OracleResponseError(
                f"Full-text vote needs at least {MIN_FULLTEXT_QUOTES} evidence quotes",
                self._reviewer_id,
                record_id,
            )

        return Vote(
            record_id=record_id,
            stage=request.stage,
            reviewer_id=self._reviewer_id,
            decision=payload.decision,
            reasons=tuple(payload.reasons),
            evidence=tuple(payload.evidence_quotes),
            model=response.model,
            prompt_hash=prompt_hash(system, user),
            seed=self._seed,
            cast_at=utcnow(),
        )


def create_screening_panel(
    stage: ScreeningStage,
    provider: BaseLLMProvider,
    base_seed: int | None = None,
) -> list[LLMScreener]:
    """
    Build the three-reviewer panel for a stage.

    Reviewer ids are ``{stage}-screener-{n}``; seeds are consecutive from
    ``base_seed`` so the reviewers sample independently.
    """
    seed = get_settings().llm.seed if base_seed is None else base_seed
    return [
        LLMScreener(f"{stage.value}-screener-{n}", provider, seed=seed + n - 1)
        for n in range(1, PANEL_SIZE + 1)
    ]
