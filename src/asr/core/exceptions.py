"""
ASR Custom Exceptions

This module defines all custom exceptions used throughout the ASR system.
Exceptions are organized by layer/responsibility.
"""

from typing import Any


class ASRError(Exception):
    """Base exception for all ASR errors."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


# =============================================================================
# VALIDATION ERRORS
# =============================================================================


class ValidationError(ASRError):
    """Malformed criteria, configuration or state. Raised before work starts."""

    pass


class CriteriaValidationError(ValidationError):
    """Criteria document is invalid or incomplete."""

    def __init__(self, message: str, errors: list[str] | None = None):
        super().__init__(message, {"errors": errors or []})


class ConfigurationError(ValidationError):
    """Error in system configuration."""

    pass


class MissingAPIKeyError(ConfigurationError):
    """Required API key is missing."""

    def __init__(self, key_name: str):
        super().__init__(f"Missing required API key: {key_name}", {"key_name": key_name})


class FunnelInvariantError(ValidationError):
    """Funnel counters violate ordering or monotonicity."""

    def __init__(self, message: str, counters: dict[str, int]):
        super().__init__(message, {"counters": counters})


class StateInvariantError(ValidationError):
    """An append-only RunState collection would be overwritten."""

    pass


# =============================================================================
# CONSENSUS ERRORS
# =============================================================================


class ConsensusError(ASRError):
    """Base error for the consensus protocol."""

    pass


class VoteCountError(ConsensusError):
    """Consensus invoked with a panel other than exactly three votes."""

    def __init__(self, count: int, record_id: str | None = None):
        super().__init__(
            f"Consensus requires exactly 3 votes, got {count}",
            {"count": count, "record_id": record_id},
        )


class PanelMismatchError(VoteCountError):
    """Votes in a panel disagree on record, stage or reviewer identity."""

    def __init__(self, message: str, record_ids: list[str], stages: list[str]):
        ConsensusError.__init__(self, message, {"record_ids": record_ids, "stages": stages})


class AdjudicationContractError(ConsensusError):
    """Escalated panel without a binary decision and rationale from the adjudicator."""

    def __init__(self, message: str, record_id: str):
        super().__init__(message, {"record_id": record_id})


# =============================================================================
# ORACLE ERRORS
# =============================================================================


class OracleCallError(ASRError):
    """Screening or adjudication oracle failed."""

    def __init__(self, message: str, oracle: str, record_id: str | None = None):
        super().__init__(message, {"oracle": oracle, "record_id": record_id})


class OracleResponseError(OracleCallError):
    """Oracle returned an unparsable or contract-violating response."""

    pass


# =============================================================================
# PARSING ERRORS
# =============================================================================


class ParsingError(ASRError):
    """Base error for input parsing."""

    pass


class RecordParsingError(ParsingError):
    """Error parsing a bibliographic source file."""

    def __init__(self, message: str, file_path: str | None = None):
        super().__init__(message, {"file_path": file_path})


class FullTextExtractionError(ParsingError):
    """Error extracting text from a full-text PDF."""

    def __init__(self, message: str, file_path: str | None = None):
        super().__init__(message, {"file_path": file_path})


# =============================================================================
# LLM ERRORS
# =============================================================================


class LLMError(ASRError):
    """Base error for LLM operations."""

    pass


class LLMProviderError(LLMError):
    """Error from LLM provider."""

    def __init__(
        self, message: str, provider: str, status_code: int | None = None, retryable: bool = False
    ):
        super().__init__(
            message, {"provider": provider, "status_code": status_code, "retryable": retryable}
        )
        self.retryable = retryable


class LLMRateLimitError(LLMProviderError):
    """Rate limit exceeded."""

    def __init__(self, provider: str, retry_after: float | None = None):
        super().__init__(f"Rate limit exceeded for {provider}", provider=provider, retryable=True)
        self.retry_after = retry_after


# =============================================================================
# ORCHESTRATION ERRORS
# =============================================================================


class OrchestrationError(ASRError):
    """Base error for pipeline orchestration."""

    pass


class StageExecutionError(OrchestrationError):
    """A stage cannot run given the current run state."""

    def __init__(self, stage: str, message: str):
        super().__init__(f"Error in stage '{stage}': {message}", {"stage": stage})


# =============================================================================
# STORAGE ERRORS
# =============================================================================


class StorageError(ASRError):
    """Base error for storage operations."""

    pass


class PersistenceError(StorageError):
    """RunState could not be read or written."""

    def __init__(self, message: str, run_id: str | None = None):
        super().__init__(message, {"run_id": run_id})


class RunNotFoundError(StorageError):
    """Requested run not found."""

    def __init__(self, run_id: str):
        super().__init__(f"Run not found: {run_id}", {"run_id": run_id})
