"""
ASR Screening Layer

Oracle contracts and the LLM-backed reviewers, adjudicator and extractor.
"""

from asr.screening.adjudicator import LLMAdjudicator
from asr.screening.extractor import ExtractionRecord, LLMDataExtractor
from asr.screening.oracles import (
    AdjudicationOracle,
    AdjudicationRequest,
    DataExtractor,
    ExtractionRequest,
    FullTextExtractor,
    RecordParser,
    ScreeningOracle,
    ScreeningRequest,
)
from asr.screening.screener import LLMScreener, create_screening_panel

__all__ = [
    # Contracts
    "ScreeningOracle",
    "AdjudicationOracle",
    "FullTextExtractor",
    "DataExtractor",
    "RecordParser",
    "ScreeningRequest",
    "AdjudicationRequest",
    "ExtractionRequest",
    # LLM implementations
    "LLMScreener",
    "LLMAdjudicator",
    "LLMDataExtractor",
    "ExtractionRecord",
    "create_screening_panel",
]
