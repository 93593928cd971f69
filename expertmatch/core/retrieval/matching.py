"""
Matching Service

End-to-end doctor matching for one case:

    resolve pool -> specialty hard filter -> collect -> normalize -> fuse
        -> min-score filter -> rank -> (LLM rationale) -> replace ranking

Usage:
    service = MatchingService(doctors, matches, collector)
    result = await service.match(case, MatchOptions(max_results=5))
    for m in result.matches:
        print(m.rank, m.doctor_id, m.match_score, m.match_rationale)

An empty pool after hard filtering is an explicit empty result: the case's
persisted ranking is replaced with zero entries and `reason` says why.
"""
import asyncio
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from expertmatch.config import RankingSettings
from expertmatch.core.domain import ConsultationMatch, Doctor, MatchOptions, MatchStatus, MedicalCase
from expertmatch.core.llm.rationale import RationaleEnhancer
from expertmatch.core.retrieval.collector import SignalCollector
from expertmatch.core.retrieval.fusion import FusionEngine, apply_specialty_filter
from expertmatch.core.retrieval.normalizer import ScoreNormalizer
from expertmatch.core.retrieval.ranker import Ranker
from expertmatch.core.retrieval.signals import RankedCandidate
from expertmatch.repositories.doctors import DoctorRepository
from expertmatch.repositories.matches import ConsultationMatchRepository, new_match_id
from expertmatch.utils import get_logger
from expertmatch.utils.exceptions import NoCandidatesError

logger = get_logger(__name__)


def normalize_case_id(case_id: Optional[str]) -> str:
    """Trimmed, lower-cased case id; blank ids are rejected."""
    if case_id is None or not str(case_id).strip():
        raise ValueError("Case ID cannot be null or empty")
    return str(case_id).strip().lower()


@dataclass
class MatchResult:
    """Outcome of one matching run."""
    case_id: str
    matches: List[ConsultationMatch]
    ranked: List[RankedCandidate] = field(default_factory=list)
    failures: Dict[str, str] = field(default_factory=dict)
    contributing: Dict[str, List[str]] = field(default_factory=dict)
    reason: Optional[str] = None

    @property
    def is_degraded(self) -> bool:
        return bool(self.failures)

    @property
    def is_empty(self) -> bool:
        return not self.matches

    def to_dict(self) -> Dict[str, Any]:
        return {
            "case_id": self.case_id,
            "matches": [m.to_dict() for m in self.matches],
            "is_degraded": self.is_degraded,
            "failures": dict(self.failures),
            "contributing": {k: list(v) for k, v in self.contributing.items()},
            "reason": self.reason,
        }


class MatchingService:
    """Explicitly wired; holds no per-request state."""

    def __init__(
        self,
        doctors: DoctorRepository,
        matches: ConsultationMatchRepository,
        collector: SignalCollector,
        normalizer: Optional[ScoreNormalizer] = None,
        fusion: Optional[FusionEngine] = None,
        ranker: Optional[Ranker] = None,
        enhancer: Optional[RationaleEnhancer] = None,
        settings: Optional[RankingSettings] = None,
        id_factory: Callable[[], str] = new_match_id,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.settings = settings or RankingSettings()
        self.doctors = doctors
        self.matches = matches
        self.collector = collector
        self.normalizer = normalizer or ScoreNormalizer()
        self.fusion = fusion or FusionEngine(settings=self.settings)
        self.ranker = ranker or Ranker(self.settings)
        self.enhancer = enhancer
        self.id_factory = id_factory
        self.clock = clock

    # -------------------------------------------------------------------------
    # Candidate pool
    # -------------------------------------------------------------------------

    def resolve_pool(self, case: MedicalCase, options: MatchOptions) -> List[Doctor]:
        """Doctors worth scoring, before the hard specialty filter."""
        if options.preferred_specialties:
            pool: List[Doctor] = []
            for specialty in options.preferred_specialties:
                pool.extend(self.doctors.find_by_specialty(specialty))
        elif case.required_specialty:
            pool = self.doctors.find_by_specialty(case.required_specialty)
        else:
            pool = self.doctors.find_all(limit=self.settings.candidate_pool_limit)

        unique: Dict[str, Doctor] = {}
        for doctor in pool:
            unique.setdefault(doctor.id, doctor)
        candidates = list(unique.values())

        if options.require_telehealth:
            candidates = [d for d in candidates if d.telehealth_enabled]
        if options.preferred_facility_ids:
            wanted = set(options.preferred_facility_ids)
            candidates = [d for d in candidates if wanted.intersection(d.facility_ids)]
        if options.preferred_specialties:
            candidates = [d for d in candidates if any(d.has_specialty(s) for s in options.preferred_specialties)]

        logger.info(f"Candidate pool for case {case.id}: {len(candidates)} doctor(s)")
        return candidates

    # -------------------------------------------------------------------------
    # Pipeline
    # -------------------------------------------------------------------------

    async def _rationales(self, case: MedicalCase, ranked: List[RankedCandidate]) -> List[str]:
        templates = [r.candidate.rationale for r in ranked]
        if self.enhancer is None or not self.settings.enhance_rationale:
            return templates
        return list(await asyncio.gather(*(
            self.enhancer.enhance(case, r.candidate.doctor, r.candidate.rationale) for r in ranked
        )))

    async def _persist(self, case_id: str, matches: List[ConsultationMatch]) -> None:
        await asyncio.to_thread(self.matches.replace_for_case, case_id, matches)

    async def match(self, case: MedicalCase, options: Optional[MatchOptions] = None) -> MatchResult:
        """
        Rank specialists for `case` and persist the ranking.

        Raises:
            ValueError: blank case id.
            SignalCollectionError: a provider failed structurally.
            PersistenceError: the ranking could not be stored; the previous
                ranking is unchanged.
        """
        options = options or MatchOptions(max_results=self.settings.max_results)
        case = replace(case, id=normalize_case_id(case.id))

        pool = await asyncio.to_thread(self.resolve_pool, case, options)
        try:
            if not pool:
                raise NoCandidatesError(case.id, "candidate_pool", None)
            candidates = apply_specialty_filter(case, pool)
        except NoCandidatesError as e:
            logger.info(f"No candidates for case {case.id}: {e.message}")
            await self._persist(case.id, [])
            return MatchResult(case_id=case.id, matches=[], reason=e.message)

        collected = await self.collector.collect(case, candidates)
        normalized = self.normalizer.normalize(collected, now=self.clock())
        scored = self.fusion.fuse(normalized)

        if options.min_score is not None:
            before = len(scored)
            scored = [s for s in scored if s.composite >= options.min_score]
            logger.debug(f"min_score={options.min_score} removed {before - len(scored)} candidate(s)")

        ranked = self.ranker.rank(scored, max_results=options.max_results)
        rationales = await self._rationales(case, ranked)

        matches = [
            ConsultationMatch(
                id=self.id_factory(),
                case_id=case.id,
                doctor_id=r.doctor_id,
                match_score=r.score,
                match_rationale=rationale,
                rank=r.rank,
                status=MatchStatus.PENDING,
            )
            for r, rationale in zip(ranked, rationales)
        ]
        await self._persist(case.id, matches)

        reason = None if matches else f"No candidate reached min_score={options.min_score}"
        logger.info(
            f"Matched case {case.id}: {len(matches)} result(s)"
            + (f", degraded ({', '.join(sorted(collected.failures))})" if collected.is_degraded else "")
        )
        return MatchResult(
            case_id=case.id,
            matches=matches,
            ranked=ranked,
            failures=dict(collected.failures),
            contributing={c.doctor.id: c.contributing() for c in collected.candidates},
            reason=reason,
        )
