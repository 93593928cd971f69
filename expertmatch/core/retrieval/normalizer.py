"""
Score Normalizer

Maps each provider's native scale onto [0, 1], preserving order:

    embedding   cosine in [-1, 1]          -> (c + 1) / 2
    graph       path (relationship, depth) -> strength / depth, no path -> 0.0
    lexical     native score               -> min-max over the candidate batch
    experience  ExperienceRecords          -> weighted outcome quality, none -> 0.5

An unavailable signal stays unavailable (None); it is excluded from fusion
rather than treated as zero.
"""
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Mapping, Optional

from expertmatch.config import ExperienceSettings
from expertmatch.core.domain import ExperienceRecord, GraphEdgeWeight
from expertmatch.core.retrieval.signals import (
    EMBEDDING, EXPERIENCE, GRAPH, LEXICAL,
    CollectedSignals, NormalizedSignals, is_unavailable,
)
from expertmatch.utils import get_logger

logger = get_logger(__name__)


def clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    return max(low, min(high, value))


def normalize_cosine(similarity: float) -> float:
    return clamp((similarity + 1.0) / 2.0)


def normalize_graph(edge: Optional[GraphEdgeWeight]) -> float:
    """Inverse-distance weight of the strongest path; exactly 0.0 without a path."""
    if edge is None or edge.depth <= 0:
        return 0.0
    return clamp(edge.strength / edge.depth)


def normalize_min_max(raw: Mapping[str, float]) -> Dict[str, float]:
    """Batch min-max scaling; every value is 0.0 when all raw values are equal."""
    if not raw:
        return {}
    low = min(raw.values())
    high = max(raw.values())
    span = high - low
    if span <= 0:
        return {key: 0.0 for key in raw}
    return {key: clamp((value - low) / span) for key, value in raw.items()}


def _as_utc(moment: datetime) -> datetime:
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment


class ExperienceAggregator:
    """
    Outcome-quality score of a doctor for a specialty.

    Each record contributes
        quality = share * (rating - 1) / 4 + (1 - share) * outcome_quality
    (outcome quality alone when the rating is missing), weighted by
        0.5 ** (age_days / half_life_days) * 1 / (1 + complications)
    """

    def __init__(self, settings: Optional[ExperienceSettings] = None):
        self.settings = settings or ExperienceSettings()

    def record_quality(self, record: ExperienceRecord) -> float:
        outcome = record.outcome.quality
        if record.rating is None:
            return outcome
        rating = (clamp(float(record.rating), 1.0, 5.0) - 1.0) / 4.0
        share = self.settings.rating_share
        return clamp(share * rating + (1.0 - share) * outcome)

    def record_weight(self, record: ExperienceRecord, now: datetime) -> float:
        recency = 1.0
        if record.completed_at is not None:
            age_days = max(0.0, (_as_utc(now) - _as_utc(record.completed_at)).total_seconds() / 86400.0)
            recency = 0.5 ** (age_days / self.settings.recency_half_life_days)
        return recency / (1.0 + len(record.complications))

    @staticmethod
    def relevant(records: Iterable[ExperienceRecord], specialty: Optional[str]) -> List[ExperienceRecord]:
        """Records for `specialty`; records without a specialty always count."""
        if not specialty:
            return list(records)
        wanted = specialty.strip().lower()
        return [r for r in records if not r.specialty or r.specialty.strip().lower() == wanted]

    def score(self, records: Iterable[ExperienceRecord], specialty: Optional[str] = None,
              now: Optional[datetime] = None) -> float:
        now = now or datetime.now(timezone.utc)
        relevant = self.relevant(records, specialty)
        if not relevant:
            return self.settings.neutral_score

        total_weight = 0.0
        weighted = 0.0
        for record in relevant:
            weight = self.record_weight(record, now)
            total_weight += weight
            weighted += weight * self.record_quality(record)

        if total_weight <= 0:
            return self.settings.neutral_score
        return clamp(weighted / total_weight)


class ScoreNormalizer:
    """Stateless; `now` is injectable for reproducible recency weights."""

    def __init__(self, experience: Optional[ExperienceAggregator] = None):
        self.experience = experience or ExperienceAggregator()

    def normalize(self, collected: CollectedSignals, now: Optional[datetime] = None) -> List[NormalizedSignals]:
        specialty = collected.case.required_specialty
        lexical_raw = {
            c.doctor.id: float(c.lexical)
            for c in collected.candidates
            if not is_unavailable(c.lexical)
        }
        lexical = normalize_min_max(lexical_raw)

        normalized = []
        for c in collected.candidates:
            values: Dict[str, Optional[float]] = {
                EMBEDDING: None if is_unavailable(c.embedding) else normalize_cosine(float(c.embedding)),
                GRAPH: None if is_unavailable(c.graph) else normalize_graph(c.graph),
                LEXICAL: lexical.get(c.doctor.id),
                EXPERIENCE: None if is_unavailable(c.experience) else self.experience.score(c.experience, specialty, now),
            }
            normalized.append(NormalizedSignals(doctor=c.doctor, values=values))
            logger.debug(f"Normalized signals for doctor {c.doctor.id}: {values}")
        return normalized
