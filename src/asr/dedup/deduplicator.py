"""
Record Deduplication

Collapses near-duplicate bibliographic records into a unique working set.

Each record is compared, in input order, against the records already
accepted as unique. Three strategies cascade and the first match wins:

1. exact_identifier: normalized external identifiers are equal
2. title_similarity: normalized-title similarity >= threshold
3. author_year_title: same year, author Jaccard > 0.5, title similarity > 0.7

The first-seen record always survives as canonical.
"""

from __future__ import annotations

import logging
from difflib import SequenceMatcher

from asr.core.enums import DedupStrategy
from asr.core.schemas import DedupeResult, DuplicateGroup, DuplicateMatch, Record
from asr.core.text import normalize_author, normalize_identifier, normalize_title

logger = logging.getLogger(__name__)

DEFAULT_TITLE_SIMILARITY = 0.85
AUTHOR_OVERLAP_THRESHOLD = 0.5
AUTHOR_YEAR_TITLE_SIMILARITY = 0.7


def title_similarity(a: str, b: str) -> float:
    """Similarity ratio in [0, 1] of two titles after normalization."""
    return SequenceMatcher(None, normalize_title(a), normalize_title(b), autojunk=False).ratio()


def author_overlap(a: tuple[str, ...] | list[str], b: tuple[str, ...] | list[str]) -> float:
    """Jaccard overlap of normalized author sets. 0.0 when either is empty."""
    set_a = {normalize_author(x) for x in a if x.strip()}
    set_b = {normalize_author(x) for x in b if x.strip()}
    if not set_a or not set_b:
        return 0.0
    return len(set_a & set_b) / len(set_a | set_b)


def match_records(
    candidate: Record, existing: Record, title_similarity_threshold: float
) -> tuple[DedupStrategy, float | None] | None:
    """
    Check whether ``candidate`` duplicates ``existing``.

    Returns:
        (strategy, score) for the first strategy that matched, else None.
    """
    candidate_id = normalize_identifier(candidate.external_id)
    existing_id = normalize_identifier(existing.external_id)
    if candidate_id and existing_id and candidate_id == existing_id:
        return DedupStrategy.EXACT_IDENTIFIER, 1.0

    similarity = title_similarity(candidate.title, existing.title)
    if similarity >= title_similarity_threshold:
        return DedupStrategy.TITLE_SIMILARITY, similarity

    if (
        candidate.year is not None
        and candidate.year == existing.year
        and author_overlap(candidate.authors, existing.authors) > AUTHOR_OVERLAP_THRESHOLD
        and similarity > AUTHOR_YEAR_TITLE_SIMILARITY
    ):
        return DedupStrategy.AUTHOR_YEAR_TITLE, similarity

    return None


def deduplicate(
    records: list[Record], title_similarity_threshold: float = DEFAULT_TITLE_SIMILARITY
) -> DedupeResult:
    """
    Collapse duplicate records, keeping the first-seen one.

    Never raises: with no matches the result is the input unchanged.

    Args:
        records: Records in ingestion order.
        title_similarity_threshold: Minimum title similarity for strategy 2.

    Returns:
        DedupeResult with unique records (input order) and duplicate groups.
    """
    unique: list[Record] = []
    groups: dict[str, DuplicateGroup] = {}

    for record in records:
        for kept in unique:
            match = match_records(record, kept, title_similarity_threshold)
            if match is None:
                continue
            strategy, score = match
            group = groups.setdefault(kept.record_id, DuplicateGroup(canonical_id=kept.record_id))
            group.matches.append(
                DuplicateMatch(
                    duplicate_id=record.record_id,
                    strategy=strategy,
                    score=score,
                    source_file=record.source_file,
                )
            )
            logger.debug(
                "Duplicate %s of %s (%s, score=%s)",
                record.record_id,
                kept.record_id,
                strategy.value,
                score,
            )
            break
        else:
            unique.append(record)

    result = DedupeResult(unique=unique, groups=list(groups.values()))
    logger.info(
        "Deduplicated %d records to %d unique (%d duplicates)",
        len(records),
        len(unique),
        result.duplicates_removed,
    )
    return result
