"""
Adjudicator

LLM-backed tie-breaker for escalated screening panels.
"""

from __future__ import annotations

from collections import Counter
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, field_validator

from asr.config import get_settings
from asr.core.enums import ScreeningStage, VoteDecision
from asr.core.schemas import AdjudicationResult
from asr.llm import build_messages
from asr.screening._helpers import (
    complete_with_retry,
    format_criteria,
    format_record,
    parse_json_response,
    prompt_hash,
    truncate_full_text,
)
from asr.screening.oracles import AdjudicationRequest

if TYPE_CHECKING:
    from asr.llm.base import BaseLLMProvider

ADJUDICATOR_SYSTEM_PROMPT = """You are an expert adjudicator for scoping-review screening following PRISMA-ScR.

You make the final decision when the three screening reviewers disagree or
one of them was unsure.

RULES:
1. Review every reviewer's vote, reasons and quotes
2. Apply the PCC criteria strictly and objectively
3. Cite specific evidence in your rationale
4. Include when the evidence is borderline but meets the criteria
5. Your decision MUST be "include" or "exclude"; "unsure" is not allowed

{criteria}

Respond with ONLY valid JSON in this exact format:
{{
  "final_decision": "include|exclude",
  "adjudicator_rationale": "Rationale citing the specific evidence"
}}"""


class AdjudicationPayload(BaseModel):
    """Expected JSON body of an adjudication reply.

    Missing fields are allowed here; the consensus engine rejects them
    with AdjudicationContractError.
    """

    final_decision: VoteDecision | None = None
    adjudicator_rationale: str | None = None

    @field_validator("final_decision", mode="before")
    @classmethod
    def normalize_decision(cls, v: Any) -> Any:
        return v.strip().lower() if isinstance(v, str) else v


def build_adjudication_prompt(request: AdjudicationRequest) -> str:
    """Render the user prompt: record, optional full text, the three votes."""
    parts = [
        f"ADJUDICATION REQUEST - {request.stage.value.upper()} SCREENING",
        format_record(request.record),
        f"DOI: {request.record.external_id or 'N/A'}",
    ]
    if request.stage == ScreeningStage.FULLTEXT and request.full_text:
        parts.append(f"FULL TEXT:\n{truncate_full_text(request.full_text)}")

    parts.append(f"REVIEWER VOTES ({len(request.votes)}):")
    for i, vote in enumerate(request.votes, 1):
        reasons = "\n".join(f"  {j}. {r}" for j, r in enumerate(vote.reasons, 1))
        quotes = "\n".join(
            f'  {j}. "{q.text}" ({q.location or "unspecified"})'
            for j, q in enumerate(vote.evidence, 1)
        )
        parts.append(
            f"REVIEWER {i} ({vote.reviewer_id}):\n"
            f"Decision: {vote.decision.value}\n"
            f"Reasons:\n{reasons}\n"
            f"Evidence Quotes:\n{quotes}"
        )

    tally = Counter(v.decision for v in request.votes)
    parts.append(
        "VOTE SUMMARY:\n"
        f"Include: {tally[VoteDecision.INCLUDE]}\n"
        f"Exclude: {tally[VoteDecision.EXCLUDE]}\n"
        f"Unsure: {tally[VoteDecision.UNSURE]}"
    )
    parts.append("Provide your final adjudication decision in JSON format.")
    return "\n\n".join(parts)


class LLMAdjudicator:
    """Adjudication oracle backed by an LLM provider."""

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
            settings.adjudication_temperature if temperature is None else temperature
        )
        self._max_tokens = max_tokens or settings.max_tokens
        self._max_attempts = max_attempts or settings.max_attempts

    async def adjudicate(self, request: AdjudicationRequest) -> AdjudicationResult:
        """
        Decide an escalated panel.

        The result is returned as parsed; contract enforcement (binary decision,
        non-blank rationale) happens in the consensus engine.
        """
        record_id = request.record.record_id
        system = ADJUDICATOR_SYSTEM_PROMPT.format(criteria=format_criteria(request.criteria))
        user = build_adjudication_prompt(request)

        response = await complete_with_retry(
            self._provider,
            build_messages(system=system, user=user),
            oracle="adjudicator",
            record_id=record_id,
            temperature=self._temperature,
            max_tokens=self._max_tokens,
            max_attempts=self._max_attempts,
        )
        payload = parse_json_response(
            response.content, AdjudicationPayload, oracle="adjudicator", record_id=record_id
        )
        return AdjudicationResult(
            decision=payload.final_decision,
            rationale=payload.adjudicator_rationale,
            model=response.model,
            prompt_hash=prompt_hash(system, user),
        )
