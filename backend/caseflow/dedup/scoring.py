"""Scoring & Ranking: turn raw search rows into ordered duplicate candidates.

Score = sum of the weights of matched exact identifiers
      + NAME_MATCH_WEIGHT x name similarity (when the name branch matched).

The score is left unnormalized so that more evidence always ranks higher;
``DuplicateCandidate.confidence`` caps it to 1.0 for display.
"""

import logging
from typing import Iterable

from caseflow.config import TRACE_ENABLED
from caseflow.dedup.models import (
    CaseSummary,
    DuplicateCandidate,
    MatchField,
    RawMatch,
    confidence_band,
)
from caseflow.dedup.settings import MatchSettings

logger = logging.getLogger(__name__)

__all__ = ["rank_candidates", "score_fields", "confidence_band"]


def _trace(msg: str):
    """Emit a trace-level debug message when CASEFLOW_TRACE is enabled."""
    if TRACE_ENABLED:
        logger.debug(f"[TRACE] {msg}")


def score_fields(
    matched: Iterable[MatchField],
    name_similarity: float | None,
    settings: MatchSettings,
) -> float:
    """Weighted sum for one candidate."""
    score = 0.0
    for f in matched:
        if f == MatchField.CUSTOMER_NAME:
            score += settings.name_match_weight * (name_similarity or 0.0)
        else:
            score += settings.exact_match_weights.get(f.value, 0.0)
    return score


def _sort_key(c: DuplicateCandidate):
    created = c.case.created_at.timestamp() if c.case.created_at else 0.0
    return (-c.match_score, -created, c.case.case_number or "", c.case.id)


def rank_candidates(
    raw_matches: Iterable[RawMatch],
    settings: MatchSettings,
) -> list[DuplicateCandidate]:
    """Merge rows by case id, score them and return them best first.

    A case found by both search branches keeps the union of its matched
    fields and the highest name similarity seen. Ties on score go to the
    newer case, then case number and id, so the same data always yields
    the same order.
    """
    merged: dict[str, tuple[CaseSummary, set[MatchField], float | None]] = {}
    for row in raw_matches:
        fields = {f for f, hit in row.flags.items() if hit}
        if row.name_similarity is not None and row.flags.get(MatchField.CUSTOMER_NAME):
            fields.add(MatchField.CUSTOMER_NAME)
        if not fields:
            continue

        entry = merged.get(row.case.id)
        if entry is None:
            merged[row.case.id] = (row.case, fields, row.name_similarity)
            continue
        case, seen, sim = entry
        seen |= fields
        if row.name_similarity is not None:
            sim = row.name_similarity if sim is None else max(sim, row.name_similarity)
        merged[row.case.id] = (case, seen, sim)

    candidates = []
    for case, fields, sim in merged.values():
        score = score_fields(fields, sim, settings)
        _trace(
            f"SCORE case={case.case_number} fields={sorted(f.value for f in fields)} "
            f"name_sim={sim} score={score:.4f}"
        )
        candidates.append(DuplicateCandidate(
            case=case,
            matched_fields=frozenset(fields),
            match_score=score,
            name_similarity=sim,
        ))

    candidates.sort(key=_sort_key)
    return candidates
