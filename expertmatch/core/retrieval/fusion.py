"""
Fusion Engine

Combines normalized signals into one composite score per candidate and
explains it.

    composite = sum(w_i * s_i for present i) / sum(w_i for present i)

Weights are re-normalized over the signals actually present, so a
candidate missing a signal is scored on the remaining evidence instead of
being zero-filled. The composite is clamped to [0, 1].

The hard specialty filter also lives here: it runs before collection and
removes candidates entirely, it never down-weights them.
"""
from typing import Dict, Iterable, List, Mapping, Optional, Sequence

from expertmatch.config import FusionWeights, RankingSettings
from expertmatch.core.domain import Doctor, MedicalCase
from expertmatch.core.llm.rationale import clip_rationale
from expertmatch.core.retrieval.normalizer import clamp
from expertmatch.core.retrieval.signals import (
    EMBEDDING, EXPERIENCE, GRAPH, LEXICAL, SIGNAL_NAMES,
    NormalizedSignals, ScoredCandidate,
)
from expertmatch.utils import get_logger
from expertmatch.utils.exceptions import NoCandidatesError

logger = get_logger(__name__)

SIGNAL_CLAUSES: Dict[str, str] = {
    EMBEDDING: "high case-text similarity",
    GRAPH: "strong specialty graph link",
    LEXICAL: "strong keyword overlap",
    EXPERIENCE: "favorable historical outcomes",
}

GENERIC_RATIONALE = "Matched on available criteria"


def fuse_terms(values: Mapping[str, Optional[float]], weights: Mapping[str, float]) -> float:
    """
    Weighted mean over present terms.

    A term is present when its value is not None. Returns 0.0 when no term
    is present or the present weights sum to zero.
    """
    total_weight = 0.0
    weighted = 0.0
    for name, value in values.items():
        if value is None:
            continue
        weight = weights.get(name, 0.0)
        total_weight += weight
        weighted += weight * value
    if total_weight <= 0:
        return 0.0
    return clamp(weighted / total_weight)


def apply_specialty_filter(case: MedicalCase, candidates: Iterable[Doctor]) -> List[Doctor]:
    """
    Keep candidates holding the case's required specialty.

    Raises:
        NoCandidatesError: the filter (or an empty pool) left no candidate.
    """
    candidates = list(candidates)
    if not case.required_specialty:
        if not candidates:
            raise NoCandidatesError(case.id, "candidate_pool", None)
        return candidates

    kept = [d for d in candidates if d.has_specialty(case.required_specialty)]
    dropped = len(candidates) - len(kept)
    if dropped:
        logger.info(f"Specialty filter '{case.required_specialty}' removed {dropped} candidate(s) for case {case.id}")
    if not kept:
        raise NoCandidatesError(case.id, "required_specialty", case.required_specialty)
    return kept


class FusionEngine:
    """Stateless - safe to share across concurrent requests."""

    def __init__(self, weights: Optional[FusionWeights] = None, settings: Optional[RankingSettings] = None):
        self.weights = weights or FusionWeights()
        self.settings = settings or RankingSettings()
        self._weights = self.weights.as_dict()

    def composite(self, values: Mapping[str, Optional[float]]) -> float:
        return fuse_terms(values, self._weights)

    def rationale(self, values: Mapping[str, Optional[float]], missing: Sequence[str] = ()) -> str:
        """
        Short explanation of which signals drove the score.

        Lists clauses for signals at or above the notable threshold,
        strongest first; fewer than two notable signals give the generic
        text. Unavailable signals are named so partial evidence is visible.
        """
        threshold = self.settings.notable_threshold
        notable = [
            (value, SIGNAL_NAMES.index(name), name)
            for name, value in values.items()
            if value is not None and value >= threshold and self._weights.get(name, 0.0) > 0
        ]
        notable.sort(key=lambda item: (-item[0], item[1]))

        if len(notable) >= 2:
            clauses = [SIGNAL_CLAUSES[name] for _, _, name in notable]
            text = ", ".join(clauses)
            text = text[0].upper() + text[1:]
        else:
            text = GENERIC_RATIONALE

        if missing:
            text = f"{text}; partial evidence ({', '.join(missing)} unavailable)"
        return clip_rationale(text, self.settings.rationale_max_length)

    def score(self, normalized: NormalizedSignals) -> ScoredCandidate:
        missing = normalized.missing()
        composite = self.composite(normalized.values)
        return ScoredCandidate(
            doctor=normalized.doctor,
            composite=composite,
            signals=dict(normalized.values),
            rationale=self.rationale(normalized.values, missing),
            missing=missing,
        )

    def fuse(self, normalized: Iterable[NormalizedSignals]) -> List[ScoredCandidate]:
        scored = [self.score(n) for n in normalized]
        logger.debug(f"Fused {len(scored)} candidate(s)")
        return scored
