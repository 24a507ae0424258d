"""
ASR Deduplication Layer

Near-duplicate collapsing of bibliographic records.
"""

from asr.dedup.deduplicator import (
    author_overlap,
    deduplicate,
    match_records,
    title_similarity,
)

__all__ = [
    "deduplicate",
    "match_records",
    "title_similarity",
    "author_overlap",
]
