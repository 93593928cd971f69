"""
Priority Scorer

Consult-queue ordering at case granularity. Each case gets a priority
value fused from three terms with the same re-normalizing weighted mean used
for candidates:

    urgency     UrgencyLevel.weight (CRITICAL 1.0 ... LOW 0.25)
    wait        min(1, hours since submission / saturation hours)
    complexity  mean(min(1, ICD-10 count / cap), min(1, symptom chars / cap))

A case without a submission time has no wait term.

Queue order: urgency ordinal first, then priority value descending, then
case id. A more urgent case always comes first regardless of wait.
"""
from dataclasses import replace
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional

from expertmatch.config import PrioritySettings
from expertmatch.core.domain import MedicalCase, PriorityScore
from expertmatch.core.retrieval.fusion import fuse_terms
from expertmatch.core.retrieval.normalizer import clamp
from expertmatch.core.retrieval.ranker import dense_rank
from expertmatch.utils import get_logger

logger = get_logger(__name__)

URGENCY = "urgency"
WAIT = "wait"
COMPLEXITY = "complexity"


def _hours_between(start: datetime, end: datetime) -> float:
    if start.tzinfo is None:
        start = start.replace(tzinfo=timezone.utc)
    if end.tzinfo is None:
        end = end.replace(tzinfo=timezone.utc)
    return max(0.0, (end - start).total_seconds() / 3600.0)


class PriorityScorer:

    def __init__(self, settings: Optional[PrioritySettings] = None):
        self.settings = settings or PrioritySettings()
        self._weights = {
            URGENCY: self.settings.urgency_weight,
            WAIT: self.settings.wait_weight,
            COMPLEXITY: self.settings.complexity_weight,
        }

    def components(self, case: MedicalCase, now: datetime) -> Dict[str, Optional[float]]:
        s = self.settings
        wait = None
        if case.submitted_at is not None:
            wait = clamp(_hours_between(case.submitted_at, now) / s.wait_saturation_hours)
        diagnoses = clamp(len(case.icd10_codes) / s.diagnosis_count_cap) if s.diagnosis_count_cap > 0 else 0.0
        symptoms = clamp(len(case.symptoms or "") / s.symptom_length_cap) if s.symptom_length_cap > 0 else 0.0
        return {
            URGENCY: case.urgency_level.weight,
            WAIT: wait,
            COMPLEXITY: (diagnoses + symptoms) / 2.0,
        }

    @staticmethod
    def _rationale(case: MedicalCase, now: datetime) -> str:
        parts = [f"{case.urgency_level.value} urgency"]
        if case.submitted_at is not None:
            parts.append(f"waiting {_hours_between(case.submitted_at, now):.0f}h")
        if case.icd10_codes:
            parts.append(f"{len(case.icd10_codes)} coded diagnosis(es)")
        return ", ".join(parts)

    def score(self, case: MedicalCase, now: Optional[datetime] = None) -> PriorityScore:
        """Unranked priority of a single case (rank 0)."""
        now = now or datetime.now(timezone.utc)
        components = self.components(case, now)
        return PriorityScore(
            case_id=case.id,
            urgency=case.urgency_level,
            score=fuse_terms(components, self._weights),
            rank=0,
            rationale=self._rationale(case, now),
            components={k: v for k, v in components.items() if v is not None},
        )

    def prioritize(self, cases: Iterable[MedicalCase], now: Optional[datetime] = None) -> List[PriorityScore]:
        """Queue order for `cases`, ranks 1..n."""
        now = now or datetime.now(timezone.utc)
        scores = [self.score(case, now) for case in cases]
        # Negated ordinal as the primary key: most urgent first
        ranked = dense_rank(
            scores,
            identity=lambda p: p.case_id,
            score=lambda p: float(-p.urgency.ordinal),
            tie_break=lambda p: (-p.score,),
        )
        logger.debug(f"Prioritized {len(ranked)} case(s)")
        return [replace(p, rank=rank) for rank, p in ranked]
