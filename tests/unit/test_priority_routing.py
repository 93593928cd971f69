"""
Unit Tests for Priority and Route Scoring
"""
from datetime import datetime, timedelta, timezone

import pytest

from expertmatch.config import RoutingSettings
from expertmatch.core.domain import Doctor, Facility, MedicalCase, OutcomeCategory, RoutingOptions, UrgencyLevel
from expertmatch.core.retrieval import FacilityRoutingService, PriorityScorer, RouteScorer
from expertmatch.core.retrieval.routing import capacity_ratio, distance_km
from expertmatch.utils.exceptions import NoCandidatesError

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)

BERLIN = (52.5200, 13.4050)
POTSDAM = (52.3906, 13.0645)
MUNICH = (48.1351, 11.5820)


def case_at(urgency, hours_waiting=None, codes=(), symptoms="", case_id="case"):
    return MedicalCase(
        id=case_id,
        urgency_level=urgency,
        submitted_at=NOW - timedelta(hours=hours_waiting) if hours_waiting is not None else None,
        icd10_codes=tuple(codes),
        symptoms=symptoms,
    )


def facility(facility_id, coords=None, capabilities=("Cardiology",), capacity=100, occupancy=50,
             facility_type="HOSPITAL"):
    lat, lon = coords if coords else (None, None)
    return Facility(id=facility_id, name=facility_id.upper(), facility_type=facility_type,
                    capabilities=tuple(capabilities), capacity=capacity, current_occupancy=occupancy,
                    latitude=lat, longitude=lon)


# =============================================================================
# PRIORITY
# =============================================================================

class TestPriorityScorer:

    def test_components(self):
        case = case_at(UrgencyLevel.HIGH, hours_waiting=36, codes=("I20.0", "I10"), symptoms="x" * 250)
        components = PriorityScorer().components(case, NOW)
        assert components["urgency"] == 0.75
        assert components["wait"] == pytest.approx(0.5)
        assert components["complexity"] == pytest.approx((2 / 5 + 0.5) / 2)

    def test_no_submission_time_drops_wait(self):
        score = PriorityScorer().score(case_at(UrgencyLevel.LOW), NOW)
        assert "wait" not in score.components
        assert 0.0 <= score.score <= 1.0

    def test_rationale(self):
        score = PriorityScorer().score(case_at(UrgencyLevel.HIGH, hours_waiting=5, codes=("I20.0",)), NOW)
        assert score.rationale == "HIGH urgency, waiting 5h, 1 coded diagnosis(es)"

    def test_urgency_dominates_wait(self):
        queue = PriorityScorer().prioritize([
            case_at(UrgencyLevel.LOW, hours_waiting=500, case_id="old-routine"),
            case_at(UrgencyLevel.CRITICAL, hours_waiting=0, case_id="fresh-critical"),
            case_at(UrgencyLevel.MEDIUM, hours_waiting=10, case_id="medium"),
        ], now=NOW)
        assert [p.case_id for p in queue] == ["fresh-critical", "medium", "old-routine"]
        assert [p.rank for p in queue] == [1, 2, 3]

    def test_same_urgency_longer_wait_first(self):
        queue = PriorityScorer().prioritize([
            case_at(UrgencyLevel.HIGH, hours_waiting=1, case_id="b"),
            case_at(UrgencyLevel.HIGH, hours_waiting=48, case_id="a"),
        ], now=NOW)
        assert [p.case_id for p in queue] == ["a", "b"]

    def test_full_tie_broken_by_id(self):
        queue = PriorityScorer().prioritize([
            case_at(UrgencyLevel.MEDIUM, case_id="c-2"),
            case_at(UrgencyLevel.MEDIUM, case_id="c-1"),
        ], now=NOW)
        assert [p.case_id for p in queue] == ["c-1", "c-2"]


# =============================================================================
# ROUTING
# =============================================================================

class TestRoutingHelpers:

    def test_distance(self):
        case = MedicalCase(id="c", latitude=BERLIN[0], longitude=BERLIN[1])
        assert distance_km(case, facility("f", MUNICH)) == pytest.approx(504, abs=10)
        assert distance_km(case, facility("f")) is None

    def test_capacity_ratio(self):
        assert capacity_ratio(facility("f", capacity=100, occupancy=25)) == 0.75
        assert capacity_ratio(facility("f", capacity=100, occupancy=None)) == 1.0
        assert capacity_ratio(facility("f", capacity=None)) is None
        assert capacity_ratio(facility("f", capacity=10, occupancy=12)) == 0.0


class TestRouteScorer:

    @pytest.fixture
    def case(self):
        return MedicalCase(id="case-r", required_specialty="Cardiology",
                           latitude=BERLIN[0], longitude=BERLIN[1])

    def test_closer_facility_wins_all_else_equal(self, case):
        ranked = RouteScorer().rank(case, [facility("far", MUNICH), facility("near", POTSDAM)], {})
        assert [m.facility.id for m in ranked] == ["near", "far"]
        assert [m.rank for m in ranked] == [1, 2]

    def test_required_capability_filter(self, case):
        options = RoutingOptions(required_capabilities=("ICU",))
        ranked = RouteScorer().rank(case, [facility("a", capabilities=("Cardiology", "icu")),
                                           facility("b")], {}, options)
        assert [m.facility.id for m in ranked] == ["a"]

    def test_everything_filtered(self, case):
        with pytest.raises(NoCandidatesError) as exc:
            RouteScorer().rank(case, [facility("a")], {}, RoutingOptions(required_capabilities=("Burns",)))
        assert exc.value.filter_name == "required_capabilities"
        assert exc.value.value == ["Burns"]

    def test_empty_set_names_type_filter(self, case):
        options = RoutingOptions(preferred_facility_types=("CLINIC",))
        with pytest.raises(NoCandidatesError) as exc:
            RouteScorer().rank(case, [facility("a", POTSDAM)], {}, options)
        assert exc.value.filter_name == "preferred_facility_types"
        assert exc.value.value == ["CLINIC"]

    def test_empty_set_names_distance_filter(self, case):
        options = RoutingOptions(max_distance_km=100, preferred_facility_types=("CLINIC", "HOSPITAL"))
        with pytest.raises(NoCandidatesError) as exc:
            RouteScorer().rank(case, [facility("munich", MUNICH),
                                      facility("clinic", POTSDAM, facility_type="PHARMACY")], {}, options)
        assert exc.value.filter_name == "max_distance_km"
        assert exc.value.value == 100

    def test_no_facilities_at_all(self, case):
        with pytest.raises(NoCandidatesError) as exc:
            RouteScorer().rank(case, [], {})
        assert exc.value.filter_name == "facilities"

    def test_max_distance_and_type(self, case):
        options = RoutingOptions(max_distance_km=100, preferred_facility_types=("hospital",))
        ranked = RouteScorer().rank(case, [
            facility("munich", MUNICH),
            facility("potsdam", POTSDAM),
            facility("clinic", POTSDAM, facility_type="CLINIC"),
            facility("unknown-location"),
        ], {}, options)
        assert sorted(m.facility.id for m in ranked) == ["potsdam", "unknown-location"]

    def test_outcomes_and_capacity_matter(self, case):
        ranked = RouteScorer().rank(case, [facility("busy", POTSDAM, occupancy=95),
                                           facility("free", POTSDAM, occupancy=5)],
                                    {"busy": 0.9, "free": 0.9})
        assert ranked[0].facility.id == "free"
        assert ranked[0].components["capacity"] == pytest.approx(0.95)

    def test_unavailable_outcome_is_excluded(self, case):
        ranked = RouteScorer().rank(case, [facility("a", POTSDAM)], {"a": None})
        assert "outcomes" not in ranked[0].components

    def test_min_score_and_limit(self, case):
        facilities = [facility(f"f{i}", POTSDAM) for i in range(6)]
        assert len(RouteScorer(RoutingSettings(max_results=3)).rank(case, facilities, {})) == 3
        with pytest.raises(NoCandidatesError) as exc:
            RouteScorer().rank(case, facilities, {}, RoutingOptions(min_score=0.99))
        assert exc.value.filter_name == "min_score"


class TestFacilityRoutingService:

    @pytest.mark.asyncio
    async def test_outcomes_from_affiliated_doctors(self, facility_repo, doctor_repo, experience_store,
                                                    experience_record):
        facility_repo.insert(facility("fac-good", POTSDAM))
        facility_repo.insert(facility("fac-poor", POTSDAM))
        doctor_repo.insert(Doctor(id="doc-g", specialties=("Cardiology",), facility_ids=("fac-good",)))
        doctor_repo.insert(Doctor(id="doc-p", specialties=("Cardiology",), facility_ids=("fac-poor",)))
        experience_store.insert(experience_record("doc-g", OutcomeCategory.SUCCESS, rating=5))
        experience_store.insert(experience_record("doc-p", OutcomeCategory.WORSENED, rating=1))

        service = FacilityRoutingService(facility_repo, doctor_repo, experience_store)
        case = MedicalCase(id="  CASE-R ", required_specialty="Cardiology",
                           latitude=BERLIN[0], longitude=BERLIN[1])
        result = await service.route(case)

        assert result.case_id == "case-r"
        assert [f.facility.id for f in result.facilities] == ["fac-good", "fac-poor"]
        assert result.facilities[0].components["outcomes"] == pytest.approx(1.0)
        assert result.failures == {}

    @pytest.mark.asyncio
    async def test_no_facility_is_empty_result(self, facility_repo, doctor_repo):
        service = FacilityRoutingService(facility_repo, doctor_repo)
        result = await service.route(MedicalCase(id="case-x"))
        assert result.facilities == []
        assert result.reason

    @pytest.mark.asyncio
    async def test_experience_failure_is_recorded(self, facility_repo, doctor_repo, fakes):
        facility_repo.insert(facility("fac-1", POTSDAM))
        doctor_repo.insert(Doctor(id="doc-1", facility_ids=("fac-1",)))
        service = FacilityRoutingService(facility_repo, doctor_repo,
                                         fakes.Experience(error=ConnectionError("down")))
        result = await service.route(MedicalCase(id="case-y"))
        assert "outcomes" in result.failures
        assert "outcomes" not in result.facilities[0].components
