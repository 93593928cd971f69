"""
Route Scorer

Facility suitability for a case, on the same filter -> normalize -> fuse ->
rank skeleton as doctor matching.

Hard filters (facility excluded entirely):
    - every RoutingOptions.required_capabilities entry present
    - facility type among RoutingOptions.preferred_facility_types, when given
    - distance within RoutingOptions.max_distance_km, when the distance is known

Terms (absent terms are dropped and the weights re-normalized):
    capability  1.0 when a capability matches the required specialty, else 0.5
    outcomes    experience aggregate over affiliated doctors (neutral 0.5)
    capacity    (capacity - occupancy) / capacity, unknown capacity -> absent
    proximity   1 / (1 + km / scale_km), missing coordinates -> absent
"""
import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Sequence

from geopy.distance import geodesic

from expertmatch.config import RoutingSettings
from expertmatch.core.domain import ExperienceRecord, Facility, FacilityMatch, MedicalCase, RoutingOptions
from expertmatch.core.providers.base import ExperienceStore
from expertmatch.core.retrieval.fusion import fuse_terms
from expertmatch.core.retrieval.matching import normalize_case_id
from expertmatch.core.retrieval.normalizer import ExperienceAggregator, clamp
from expertmatch.core.retrieval.ranker import dense_rank
from expertmatch.repositories.doctors import DoctorRepository
from expertmatch.repositories.facilities import FacilityRepository
from expertmatch.utils import get_logger
from expertmatch.utils.exceptions import NoCandidatesError

logger = get_logger(__name__)

CAPABILITY = "capability"
OUTCOMES = "outcomes"
CAPACITY = "capacity"
PROXIMITY = "proximity"

# hard filters in application order; min_score applies to the fused score
FILTER_ORDER = ("required_capabilities", "preferred_facility_types", "max_distance_km", "min_score")


def distance_km(case: MedicalCase, facility: Facility) -> Optional[float]:
    """Geodesic distance, or None when either side has no coordinates."""
    if case.coordinates is None or facility.coordinates is None:
        return None
    return geodesic(case.coordinates, facility.coordinates).km


def capacity_ratio(facility: Facility) -> Optional[float]:
    if facility.capacity is None or facility.capacity <= 0:
        return None
    occupancy = facility.current_occupancy or 0
    return clamp((facility.capacity - occupancy) / facility.capacity)


class RouteScorer:
    """Pure scoring over already loaded facilities and outcome values."""

    def __init__(self, settings: Optional[RoutingSettings] = None):
        self.settings = settings or RoutingSettings()
        self._weights = {
            CAPABILITY: self.settings.capability_weight,
            OUTCOMES: self.settings.outcomes_weight,
            CAPACITY: self.settings.capacity_weight,
            PROXIMITY: self.settings.proximity_weight,
        }

    @staticmethod
    def rejecting_filter(facility: Facility, options: RoutingOptions, distance: Optional[float]) -> Optional[str]:
        """Name of the first hard filter `facility` fails, or None."""
        if not all(facility.has_capability(c) for c in options.required_capabilities):
            return "required_capabilities"
        if options.preferred_facility_types:
            wanted = {t.strip().lower() for t in options.preferred_facility_types}
            if facility.facility_type.strip().lower() not in wanted:
                return "preferred_facility_types"
        if options.max_distance_km is not None and distance is not None and distance > options.max_distance_km:
            return "max_distance_km"
        return None

    def components(self, case: MedicalCase, facility: Facility, outcome: Optional[float],
                   distance: Optional[float]) -> Dict[str, Optional[float]]:
        capability = 0.5
        if case.required_specialty and facility.has_capability(case.required_specialty):
            capability = 1.0
        proximity = None
        if distance is not None:
            proximity = 1.0 / (1.0 + distance / self.settings.proximity_scale_km)
        return {
            CAPABILITY: capability,
            OUTCOMES: outcome,
            CAPACITY: capacity_ratio(facility),
            PROXIMITY: proximity,
        }

    @staticmethod
    def _rationale(case: MedicalCase, components: Dict[str, Optional[float]], distance: Optional[float]) -> str:
        clauses = []
        if components[CAPABILITY] == 1.0:
            clauses.append(f"{case.required_specialty} capability")
        if components[OUTCOMES] is not None and components[OUTCOMES] >= 0.6:
            clauses.append("favorable outcomes of affiliated doctors")
        if components[CAPACITY] is not None and components[CAPACITY] >= 0.6:
            clauses.append("spare capacity")
        if distance is not None:
            clauses.append(f"{distance:.0f} km away")
        if not clauses:
            return "Matched on available criteria"
        text = ", ".join(clauses)
        return text[0].upper() + text[1:]

    def rank(
        self,
        case: MedicalCase,
        facilities: Iterable[Facility],
        outcomes: Dict[str, Optional[float]],
        options: Optional[RoutingOptions] = None,
    ) -> List[FacilityMatch]:
        """
        Ranked facilities for `case`.

        `outcomes` maps facility id to its outcome value; a missing key means
        the neutral value, a None value means the signal was unavailable.

        Raises:
            NoCandidatesError: the hard filters excluded every facility.
        """
        options = options or RoutingOptions(max_results=self.settings.max_results)
        scored = []
        rejected: Dict[str, int] = {}
        for facility in facilities:
            distance = distance_km(case, facility)
            failed = self.rejecting_filter(facility, options, distance)
            if failed is not None:
                rejected[failed] = rejected.get(failed, 0) + 1
                continue
            outcome = outcomes.get(facility.id, 0.5)
            components = self.components(case, facility, outcome, distance)
            score = fuse_terms(components, self._weights)
            if options.min_score is not None and score < options.min_score:
                rejected["min_score"] = rejected.get("min_score", 0) + 1
                continue
            scored.append(FacilityMatch(
                facility=facility,
                route_score=score,
                rank=0,
                rationale=self._rationale(case, components, distance),
                components={k: v for k, v in components.items() if v is not None},
            ))

        if not scored:
            # the last filter to reject anything emptied the set
            emptied_by = [name for name in FILTER_ORDER if rejected.get(name)]
            if not emptied_by:
                raise NoCandidatesError(case.id, "facilities", [])
            name = emptied_by[-1]
            value = getattr(options, name)
            raise NoCandidatesError(case.id, name, list(value) if isinstance(value, tuple) else value)

        ranked = dense_rank(
            scored,
            identity=lambda m: m.facility.id,
            score=lambda m: m.route_score,
            limit=options.max_results,
        )
        return [
            FacilityMatch(m.facility, m.route_score, rank, m.rationale, m.components)
            for rank, m in ranked
        ]


@dataclass
class RoutingResult:
    case_id: str
    facilities: List[FacilityMatch]
    reason: Optional[str] = None
    failures: Dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "case_id": self.case_id,
            "facilities": [f.to_dict() for f in self.facilities],
            "reason": self.reason,
            "failures": dict(self.failures),
        }


class FacilityRoutingService:
    """Loads facilities and outcome history, then delegates to RouteScorer."""

    def __init__(
        self,
        facilities: FacilityRepository,
        doctors: DoctorRepository,
        experience: Optional[ExperienceStore] = None,
        scorer: Optional[RouteScorer] = None,
        aggregator: Optional[ExperienceAggregator] = None,
        settings: Optional[RoutingSettings] = None,
    ):
        self.settings = settings or RoutingSettings()
        self.facilities = facilities
        self.doctors = doctors
        self.experience = experience
        self.scorer = scorer or RouteScorer(self.settings)
        self.aggregator = aggregator or ExperienceAggregator()

    def _doctor_ids_by_facility(self, facility_ids: Sequence[str]) -> Dict[str, List[str]]:
        return {
            fid: self.doctors.find_ids_by_facility(fid, limit=self.settings.facility_doctor_limit)
            for fid in facility_ids
        }

    async def _outcomes(self, case: MedicalCase, facilities: Sequence[Facility],
                        failures: Dict[str, str]) -> Dict[str, Optional[float]]:
        if self.experience is None:
            return {}
        by_facility = await asyncio.to_thread(self._doctor_ids_by_facility, [f.id for f in facilities])
        all_ids = sorted({d for ids in by_facility.values() for d in ids})
        try:
            records = await self.experience.find_by_doctor_ids(all_ids) if all_ids else {}
        except Exception as e:
            logger.warning(f"Experience unavailable for routing case {case.id}: {e}")
            failures["outcomes"] = f"{type(e).__name__}: {e}"
            return {f.id: None for f in facilities}

        now = datetime.now(timezone.utc)
        outcomes: Dict[str, Optional[float]] = {}
        for facility in facilities:
            facility_records: List[ExperienceRecord] = []
            for doctor_id in by_facility.get(facility.id, []):
                facility_records.extend(records.get(doctor_id, []))
            outcomes[facility.id] = self.aggregator.score(facility_records, case.required_specialty, now)
        return outcomes

    async def route(self, case: MedicalCase, options: Optional[RoutingOptions] = None) -> RoutingResult:
        options = options or RoutingOptions(max_results=self.settings.max_results)
        case_id = normalize_case_id(case.id)
        facilities = await asyncio.to_thread(self.facilities.find_all)
        failures: Dict[str, str] = {}
        outcomes = await self._outcomes(case, facilities, failures)
        try:
            ranked = self.scorer.rank(case, facilities, outcomes, options)
        except NoCandidatesError as e:
            logger.info(f"No facility for case {case_id}: {e.message}")
            return RoutingResult(case_id=case_id, facilities=[], reason=e.message, failures=failures)
        logger.info(f"Routed case {case_id}: {len(ranked)} facility(ies)")
        return RoutingResult(case_id=case_id, facilities=ranked, failures=failures)
