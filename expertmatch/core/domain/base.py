"""
Matching Domain - Base Types

Immutable value types shared by the providers, the retrieval pipeline and
the repositories. Records are frozen dataclasses: equality is structural and
copies are made with dataclasses.replace.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional, Tuple


class UrgencyLevel(str, Enum):
    """
    Clinical urgency of a case, most urgent first.

    CRITICAL – life-threatening, immediate attention
    HIGH     – attention needed within hours
    MEDIUM   – attention needed within days
    LOW      – routine, attention needed within weeks
    """
    CRITICAL = "CRITICAL"
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"

    @property
    def ordinal(self) -> int:
        """0 for the most urgent level."""
        return _URGENCY_ORDINAL[self]

    @property
    def weight(self) -> float:
        return _URGENCY_WEIGHT[self]


_URGENCY_ORDINAL = {
    UrgencyLevel.CRITICAL: 0,
    UrgencyLevel.HIGH: 1,
    UrgencyLevel.MEDIUM: 2,
    UrgencyLevel.LOW: 3,
}

_URGENCY_WEIGHT = {
    UrgencyLevel.CRITICAL: 1.0,
    UrgencyLevel.HIGH: 0.75,
    UrgencyLevel.MEDIUM: 0.5,
    UrgencyLevel.LOW: 0.25,
}


class CaseType(str, Enum):
    INPATIENT = "INPATIENT"
    SECOND_OPINION = "SECOND_OPINION"
    CONSULT_REQUEST = "CONSULT_REQUEST"


class ComplexityLevel(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


class OutcomeCategory(str, Enum):
    """Outcome of a past case, with its quality value in [0, 1]."""
    SUCCESS = "SUCCESS"
    IMPROVED = "IMPROVED"
    STABLE = "STABLE"
    COMPLICATED = "COMPLICATED"
    WORSENED = "WORSENED"
    UNKNOWN = "UNKNOWN"

    @property
    def quality(self) -> float:
        return _OUTCOME_QUALITY[self]

    @classmethod
    def parse(cls, value: Any) -> "OutcomeCategory":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().upper())
        except ValueError:
            return cls.UNKNOWN


_OUTCOME_QUALITY = {
    OutcomeCategory.SUCCESS: 1.0,
    OutcomeCategory.IMPROVED: 0.8,
    OutcomeCategory.STABLE: 0.5,
    OutcomeCategory.COMPLICATED: 0.25,
    OutcomeCategory.WORSENED: 0.0,
    OutcomeCategory.UNKNOWN: 0.5,
}


class MatchStatus(str, Enum):
    PENDING = "PENDING"
    ACCEPTED = "ACCEPTED"
    DECLINED = "DECLINED"


# ── Entities ────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class MedicalCase:
    """A case to be matched. Immutable once case analysis has completed."""
    id: str
    chief_complaint: str = ""
    symptoms: str = ""
    urgency_level: UrgencyLevel = UrgencyLevel.MEDIUM
    required_specialty: Optional[str] = None
    case_type: CaseType = CaseType.CONSULT_REQUEST
    patient_age: Optional[int] = None
    current_diagnosis: str = ""
    icd10_codes: Tuple[str, ...] = ()
    snomed_codes: Tuple[str, ...] = ()
    abstract_text: str = ""
    submitted_at: Optional[datetime] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None

    def search_text(self) -> str:
        """Free text used for lexical search."""
        parts = [
            self.chief_complaint,
            self.symptoms,
            self.current_diagnosis,
            self.abstract_text,
            " ".join(self.icd10_codes),
        ]
        return " ".join(p.strip() for p in parts if p and p.strip())

    @property
    def coordinates(self) -> Optional[Tuple[float, float]]:
        if self.latitude is None or self.longitude is None:
            return None
        return (self.latitude, self.longitude)


@dataclass(frozen=True)
class Doctor:
    """
    A candidate specialist. Read-only input to the engine.

    `id` is an opaque external identifier (UUID, long numeric string, ...);
    it is never parsed as a number.
    """
    id: str
    name: str = ""
    specialties: Tuple[str, ...] = ()
    certifications: Tuple[str, ...] = ()
    facility_ids: Tuple[str, ...] = ()
    telehealth_enabled: bool = False
    availability_status: str = "AVAILABLE"
    email: str = ""
    profile_text: str = ""

    def has_specialty(self, specialty: Optional[str]) -> bool:
        if not specialty:
            return False
        wanted = specialty.strip().lower()
        return any(s.strip().lower() == wanted for s in self.specialties)

    def document(self) -> str:
        """Profile text embedded and keyword-indexed for this doctor."""
        parts = [
            ", ".join(self.specialties),
            ", ".join(self.certifications),
            self.profile_text,
        ]
        return ". ".join(p for p in parts if p)


@dataclass(frozen=True)
class Facility:
    id: str
    name: str = ""
    facility_type: str = ""
    capabilities: Tuple[str, ...] = ()
    capacity: Optional[int] = None
    current_occupancy: Optional[int] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    location_city: str = ""
    location_country: str = ""

    def has_capability(self, capability: str) -> bool:
        wanted = capability.strip().lower()
        return any(c.strip().lower() == wanted for c in self.capabilities)

    @property
    def coordinates(self) -> Optional[Tuple[float, float]]:
        if self.latitude is None or self.longitude is None:
            return None
        return (self.latitude, self.longitude)


@dataclass(frozen=True)
class ExperienceRecord:
    """A doctor's involvement in a past case, with its outcome."""
    id: str
    doctor_id: str
    case_id: str
    specialty: Optional[str] = None
    procedures: Tuple[str, ...] = ()
    complexity_level: ComplexityLevel = ComplexityLevel.MEDIUM
    outcome: OutcomeCategory = OutcomeCategory.UNKNOWN
    complications: Tuple[str, ...] = ()
    time_to_resolution_days: Optional[int] = None
    rating: Optional[int] = None
    completed_at: Optional[datetime] = None


@dataclass(frozen=True)
class GraphEdgeWeight:
    """
    Strongest relationship path found between a case and a doctor.

    depth     – number of hops (1 = direct link)
    strength  – relationship-type weight in (0, 1]
    """
    relationship: str
    depth: int
    strength: float = 1.0


@dataclass(frozen=True)
class ConsultationMatch:
    """One persisted row of a case ranking."""
    id: str
    case_id: str
    doctor_id: str
    match_score: float
    match_rationale: str
    rank: int
    status: MatchStatus = MatchStatus.PENDING

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "case_id": self.case_id,
            "doctor_id": self.doctor_id,
            "match_score": round(self.match_score, 4),
            "match_rationale": self.match_rationale,
            "rank": self.rank,
            "status": self.status.value,
        }


# ── Request options ─────────────────────────────────────────────────────────

@dataclass(frozen=True)
class MatchOptions:
    """Options for doctor-case matching."""
    max_results: int = 10
    min_score: Optional[float] = None
    preferred_specialties: Tuple[str, ...] = ()
    require_telehealth: bool = False
    preferred_facility_ids: Tuple[str, ...] = ()

    def __post_init__(self):
        if self.max_results <= 0:
            object.__setattr__(self, "max_results", 10)


@dataclass(frozen=True)
class RoutingOptions:
    """Options for facility routing."""
    max_results: int = 5
    min_score: Optional[float] = None
    preferred_facility_types: Tuple[str, ...] = ()
    required_capabilities: Tuple[str, ...] = ()
    max_distance_km: Optional[float] = None

    def __post_init__(self):
        if self.max_results <= 0:
            object.__setattr__(self, "max_results", 5)


@dataclass(frozen=True)
class FacilityMatch:
    """A ranked facility for a routing request."""
    facility: Facility
    route_score: float
    rank: int
    rationale: str
    components: Dict[str, float] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "facility_id": self.facility.id,
            "facility_name": self.facility.name,
            "route_score": round(self.route_score, 4),
            "rank": self.rank,
            "rationale": self.rationale,
            "components": {k: round(v, 4) for k, v in self.components.items()},
        }


@dataclass(frozen=True)
class PriorityScore:
    """Consult-queue priority for one case."""
    case_id: str
    urgency: UrgencyLevel
    score: float
    rank: int
    rationale: str
    components: Dict[str, float] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "case_id": self.case_id,
            "urgency": self.urgency.value,
            "score": round(self.score, 4),
            "rank": self.rank,
            "rationale": self.rationale,
            "components": {k: round(v, 4) for k, v in self.components.items()},
        }
