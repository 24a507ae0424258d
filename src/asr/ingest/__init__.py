"""
ASR Ingestion Layer

Bibliographic source parsers.
"""

from asr.ingest.parsers import (
    DEFAULT_PARSERS,
    CitationTextRecordParser,
    JsonRecordParser,
    MedlineRecordParser,
    PubmedXmlRecordParser,
    RisRecordParser,
    parse_sources,
    parser_for,
)

__all__ = [
    "JsonRecordParser",
    "RisRecordParser",
    "MedlineRecordParser",
    "PubmedXmlRecordParser",
    "CitationTextRecordParser",
    "DEFAULT_PARSERS",
    "parse_sources",
    "parser_for",
]
