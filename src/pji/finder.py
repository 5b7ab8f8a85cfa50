"""Fuzzy ranking of registry entries.

``find`` is a pure function: it never touches the registry. Callers report
the chosen record back through ``Registry.touch``.
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import UTC, datetime

from .registry import RepoRecord

SCORE_MATCH = 1.0
SCORE_CONSECUTIVE = 4.0
SCORE_BOUNDARY = 3.0
SCORE_SUBSTRING = 20.0
SCORE_PREFIX = 10.0
SCORE_NAME = 15.0
PENALTY_LENGTH = 0.1

BOUNDARY_CHARS = "/-_. "

_NEVER = datetime.min.replace(tzinfo=UTC)


def subsequence_score(query: str, text: str) -> float | None:
    """Score ``query`` as a case-insensitive subsequence of ``text``.

    Returns None when it does not match. Contiguous runs, matches at
    segment boundaries and exact substrings score higher; long candidates
    score lower.
    """
    q = query.casefold()
    t = text.casefold()
    if not q:
        return 0.0

    best: float | None = None
    start = t.find(q[0])
    while start != -1:
        score = _score_from(q, t, start)
        if score is None:
            # No alignment from here, so none from any later start either
            break
        if best is None or score > best:
            best = score
        start = t.find(q[0], start + 1)
    if best is None:
        return None

    position = t.find(q)
    if position != -1:
        best += SCORE_SUBSTRING
        if position == 0:
            best += SCORE_PREFIX
    return best - PENALTY_LENGTH * len(t)


def _score_from(q: str, t: str, start: int) -> float | None:
    score = 0.0
    previous = -2
    position = start
    for ch in q:
        index = t.find(ch, position)
        if index == -1:
            return None
        score += SCORE_MATCH
        if index == previous + 1:
            score += SCORE_CONSECUTIVE
        if index == 0 or t[index - 1] in BOUNDARY_CHARS:
            score += SCORE_BOUNDARY
        previous = index
        position = index + 1
    return score


def score_record(query: str, record: RepoRecord) -> float | None:
    """Best score of ``query`` against the name, then the full path."""
    name_score = subsequence_score(query, record.name)
    path_score = subsequence_score(query, record.identity.relative_path)
    if name_score is not None:
        name_score += SCORE_NAME
        if path_score is None or name_score >= path_score:
            return name_score
    return path_score


def _recency(record: RepoRecord) -> datetime:
    return record.last_opened_at or _NEVER


def find(
    records: Iterable[RepoRecord],
    query: str = "",
    limit: int | None = None,
) -> list[tuple[RepoRecord, float]]:
    """Rank records against ``query``, best first.

    An empty query lists everything, most recently opened first, then by
    name. Equal scores fall back to recency, then to the canonical path.
    """
    query = query.strip()
    if not query:
        ranked = sorted(records, key=lambda r: r.name.casefold())
        ranked.sort(key=_recency, reverse=True)
        results = [(r, 0.0) for r in ranked]
    else:
        scored = []
        for record in records:
            score = score_record(query, record)
            if score is not None:
                scored.append((record, score))
        scored.sort(key=lambda item: item[0].identity.relative_path)
        scored.sort(key=lambda item: (item[1], _recency(item[0])), reverse=True)
        results = scored
    if limit is not None:
        results = results[:limit]
    return results
