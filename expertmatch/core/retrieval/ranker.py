"""
Ranker

Deterministic ordering of scored entities: sort, deduplicate, truncate and
assign dense 1-based ranks. `dense_rank` is shared by doctor matching,
facility routing and the consultation queue.
"""
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple, TypeVar

from expertmatch.config import RankingSettings
from expertmatch.core.retrieval.signals import RankedCandidate, ScoredCandidate

T = TypeVar("T")


def dense_rank(
    items: Iterable[T],
    identity: Callable[[T], str],
    score: Callable[[T], float],
    tie_break: Callable[[T], Tuple[Any, ...]] = lambda _item: (),
    limit: Optional[int] = None,
) -> List[Tuple[int, T]]:
    """
    Rank `items` by descending score.

    Duplicates (same identity) keep the occurrence with the higher score.
    Ties are resolved by `tie_break` ascending, then by identity ascending.
    Returns (rank, item) pairs with ranks 1..n and no gaps.
    """
    best: Dict[str, T] = {}
    for item in items:
        key = identity(item)
        current = best.get(key)
        if current is None or score(item) > score(current):
            best[key] = item

    ordered = sorted(best.values(), key=lambda item: (-score(item), tie_break(item), identity(item)))
    if limit is not None:
        ordered = ordered[:limit]
    return [(rank, item) for rank, item in enumerate(ordered, start=1)]


def _experience_tie_break(candidate: ScoredCandidate) -> Tuple[float]:
    experience = candidate.experience
    # Unavailable experience sorts after any known value
    return (-(experience if experience is not None else -1.0),)


class Ranker:
    """Orders ScoredCandidates: composite desc, experience desc, doctor id asc."""

    def __init__(self, settings: Optional[RankingSettings] = None):
        self.settings = settings or RankingSettings()

    def rank(self, scored: Iterable[ScoredCandidate], max_results: Optional[int] = None) -> List[RankedCandidate]:
        ranked = dense_rank(
            scored,
            identity=lambda c: c.doctor_id,
            score=lambda c: c.composite,
            tie_break=_experience_tie_break,
            limit=max_results or self.settings.max_results,
        )
        return [RankedCandidate(rank=rank, candidate=candidate) for rank, candidate in ranked]
