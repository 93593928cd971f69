"""
Matching domain types.
"""
from .base import (
    UrgencyLevel,
    CaseType,
    ComplexityLevel,
    OutcomeCategory,
    MatchStatus,
    MedicalCase,
    Doctor,
    Facility,
    ExperienceRecord,
    GraphEdgeWeight,
    ConsultationMatch,
    MatchOptions,
    RoutingOptions,
    FacilityMatch,
    PriorityScore,
)

__all__ = [
    "UrgencyLevel",
    "CaseType",
    "ComplexityLevel",
    "OutcomeCategory",
    "MatchStatus",
    "MedicalCase",
    "Doctor",
    "Facility",
    "ExperienceRecord",
    "GraphEdgeWeight",
    "ConsultationMatch",
    "MatchOptions",
    "RoutingOptions",
    "FacilityMatch",
    "PriorityScore",
]
