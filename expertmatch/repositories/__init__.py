"""
SQL-backed collaborators of the matching engine.
"""
from .database import (
    metadata,
    create_engine_from_settings,
    create_schema,
    drop_schema,
)
from .sql_registry import SqlRegistry
from .doctors import DoctorRepository
from .facilities import FacilityRepository
from .experiences import SqlExperienceStore
from .matches import ConsultationMatchRepository, new_match_id

__all__ = [
    "metadata",
    "create_engine_from_settings",
    "create_schema",
    "drop_schema",
    "SqlRegistry",
    "DoctorRepository",
    "FacilityRepository",
    "SqlExperienceStore",
    "ConsultationMatchRepository",
    "new_match_id",
]
