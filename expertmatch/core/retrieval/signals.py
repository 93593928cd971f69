"""
Signal containers passed between pipeline stages.

    SignalCollector -> CollectedSignals
    ScoreNormalizer -> NormalizedSignals (one per candidate)
    FusionEngine    -> ScoredCandidate
    Ranker          -> RankedCandidate
"""
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple, Union

from expertmatch.core.domain import Doctor, ExperienceRecord, GraphEdgeWeight, MedicalCase

EMBEDDING = "embedding"
GRAPH = "graph"
LEXICAL = "lexical"
EXPERIENCE = "experience"

SIGNAL_NAMES: Tuple[str, ...] = (EMBEDDING, GRAPH, LEXICAL, EXPERIENCE)


@dataclass(frozen=True)
class SignalUnavailable:
    """Marker for a signal that could not be obtained (failure or timeout)."""
    provider: str
    reason: str


def is_unavailable(value: Any) -> bool:
    return isinstance(value, SignalUnavailable)


@dataclass
class CandidateSignals:
    """
    Raw provider output for one candidate.

    embedding   – cosine similarity in [-1, 1]
    graph       – strongest path, or None when no path exists
    lexical     – native lexical score
    experience  – the doctor's experience records (possibly empty)
    """
    doctor: Doctor
    embedding: Union[float, SignalUnavailable]
    graph: Union[Optional[GraphEdgeWeight], SignalUnavailable]
    lexical: Union[float, SignalUnavailable]
    experience: Union[List[ExperienceRecord], SignalUnavailable]

    def raw(self, name: str) -> Any:
        return getattr(self, name)

    def contributing(self) -> List[str]:
        return [name for name in SIGNAL_NAMES if not is_unavailable(self.raw(name))]

    def unavailable(self) -> List[str]:
        return [name for name in SIGNAL_NAMES if is_unavailable(self.raw(name))]


@dataclass
class CollectedSignals:
    """Everything the collector gathered for one case."""
    case: MedicalCase
    candidates: List[CandidateSignals]
    failures: Dict[str, str] = field(default_factory=dict)
    elapsed_ms: float = 0.0

    def for_doctor(self, doctor_id: str) -> Optional[CandidateSignals]:
        for candidate in self.candidates:
            if candidate.doctor.id == doctor_id:
                return candidate
        return None

    def contributing(self, doctor_id: str) -> List[str]:
        candidate = self.for_doctor(doctor_id)
        return candidate.contributing() if candidate else []

    @property
    def is_degraded(self) -> bool:
        return bool(self.failures)


@dataclass
class NormalizedSignals:
    """Per-candidate signals on [0, 1]; None marks an unavailable signal."""
    doctor: Doctor
    values: Dict[str, Optional[float]]

    def available(self) -> Dict[str, float]:
        return {k: v for k, v in self.values.items() if v is not None}

    def missing(self) -> Tuple[str, ...]:
        return tuple(k for k in SIGNAL_NAMES if self.values.get(k) is None)


@dataclass
class ScoredCandidate:
    doctor: Doctor
    composite: float
    signals: Dict[str, Optional[float]]
    rationale: str
    missing: Tuple[str, ...] = ()

    @property
    def doctor_id(self) -> str:
        return self.doctor.id

    @property
    def experience(self) -> Optional[float]:
        return self.signals.get(EXPERIENCE)


@dataclass
class RankedCandidate:
    rank: int
    candidate: ScoredCandidate

    @property
    def doctor_id(self) -> str:
        return self.candidate.doctor.id

    @property
    def score(self) -> float:
        return self.candidate.composite
