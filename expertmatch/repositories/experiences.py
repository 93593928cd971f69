"""
SQL Experience Store

ClinicalExperience lookups for the experience signal and the facility
outcome term. Implements the ExperienceStore provider contract; the
blocking query runs in a worker thread.
"""
import asyncio
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional, Sequence

from sqlalchemy.engine import Engine

from expertmatch.core.domain import ComplexityLevel, ExperienceRecord, OutcomeCategory
from expertmatch.repositories.doctors import decode_list, encode_list
from expertmatch.repositories.sql_registry import SqlRegistry
from expertmatch.utils import get_logger

logger = get_logger(__name__)


def _parse_datetime(raw: Any) -> Optional[datetime]:
    if raw is None or raw == "":
        return None
    if isinstance(raw, datetime):
        return raw
    return datetime.fromisoformat(str(raw))


def _to_record(row: Mapping[str, Any]) -> ExperienceRecord:
    try:
        complexity = ComplexityLevel(str(row["complexity_level"]).upper())
    except ValueError:
        complexity = ComplexityLevel.MEDIUM
    return ExperienceRecord(
        id=row["id"],
        doctor_id=row["doctor_id"],
        case_id=row["case_id"],
        specialty=row["specialty"],
        procedures=decode_list(row["procedures"]),
        complexity_level=complexity,
        outcome=OutcomeCategory.parse(row["outcome"]),
        complications=decode_list(row["complications"]),
        time_to_resolution_days=row["time_to_resolution_days"],
        rating=row["rating"],
        completed_at=_parse_datetime(row["completed_at"]),
    )


class SqlExperienceStore:
    STATEMENTS = (
        "clinicalexperience/findByDoctorIds",
        "clinicalexperience/findByDoctorId",
        "clinicalexperience/insert",
    )

    def __init__(self, engine: Engine, sql: SqlRegistry):
        sql.require(*self.STATEMENTS)
        self.engine = engine
        self.sql = sql

    def find_by_doctor_ids_sync(self, doctor_ids: Sequence[str]) -> Dict[str, List[ExperienceRecord]]:
        grouped: Dict[str, List[ExperienceRecord]] = {}
        if not doctor_ids:
            return grouped
        with self.engine.connect() as conn:
            rows = conn.execute(
                self.sql.statement("clinicalexperience/findByDoctorIds", expanding=("doctor_ids",)),
                {"doctor_ids": list(dict.fromkeys(doctor_ids))},
            ).mappings().all()
        for row in rows:
            record = _to_record(row)
            grouped.setdefault(record.doctor_id, []).append(record)
        return grouped

    async def find_by_doctor_ids(self, doctor_ids: Sequence[str]) -> Dict[str, List[ExperienceRecord]]:
        grouped = await asyncio.to_thread(self.find_by_doctor_ids_sync, list(doctor_ids))
        logger.debug(f"Loaded experience for {len(grouped)}/{len(doctor_ids)} doctor(s)")
        return grouped

    def find_by_doctor_id(self, doctor_id: str) -> List[ExperienceRecord]:
        with self.engine.connect() as conn:
            rows = conn.execute(self.sql.statement("clinicalexperience/findByDoctorId"),
                                {"doctor_id": doctor_id}).mappings().all()
        return [_to_record(r) for r in rows]

    def insert(self, record: ExperienceRecord) -> None:
        with self.engine.begin() as conn:
            conn.execute(self.sql.statement("clinicalexperience/insert"), {
                "id": record.id,
                "doctor_id": record.doctor_id,
                "case_id": record.case_id,
                "specialty": record.specialty,
                "procedures": encode_list(record.procedures),
                "complexity_level": record.complexity_level.value,
                "outcome": record.outcome.value,
                "complications": encode_list(record.complications),
                "time_to_resolution_days": record.time_to_resolution_days,
                "rating": record.rating,
                "completed_at": record.completed_at.isoformat() if record.completed_at else None,
            })
