"""
Doctor Repository

Candidate-pool resolution by specialty, facility and id. Specialties and
facility affiliations are read from their link tables and attached to the
Doctor records.
"""
import json
from typing import Any, Dict, Iterable, List, Mapping, Sequence, Tuple

from sqlalchemy.engine import Engine

from expertmatch.core.domain import Doctor
from expertmatch.repositories.sql_registry import SqlRegistry
from expertmatch.utils import get_logger

logger = get_logger(__name__)


def decode_list(raw: Any) -> Tuple[str, ...]:
    """JSON text column -> tuple of strings."""
    if raw is None or raw == "":
        return ()
    if isinstance(raw, (list, tuple)):
        return tuple(str(v) for v in raw)
    return tuple(str(v) for v in json.loads(raw))


def encode_list(values: Iterable[str]) -> str:
    return json.dumps(list(values))


class DoctorRepository:
    STATEMENTS = (
        "doctor/findBySpecialty",
        "doctor/findByIds",
        "doctor/findAll",
        "doctor/findByFacilityIds",
        "doctor/findIdsByFacility",
        "doctor/findSpecialtiesByDoctorIds",
        "doctor/findFacilitiesByDoctorIds",
        "doctor/insert",
        "doctor/insertSpecialty",
        "doctor/insertFacility",
    )

    def __init__(self, engine: Engine, sql: SqlRegistry):
        sql.require(*self.STATEMENTS)
        self.engine = engine
        self.sql = sql

    # ── Mapping ───────────────────────────────────────────────────────────

    def _attach(self, conn, rows: Sequence[Mapping[str, Any]]) -> List[Doctor]:
        if not rows:
            return []
        ids = [row["id"] for row in rows]
        specialties: Dict[str, List[str]] = {}
        for doctor_id, specialty in conn.execute(
            self.sql.statement("doctor/findSpecialtiesByDoctorIds", expanding=("ids",)), {"ids": ids}
        ):
            specialties.setdefault(doctor_id, []).append(specialty)
        facility_ids: Dict[str, List[str]] = {}
        for doctor_id, facility_id in conn.execute(
            self.sql.statement("doctor/findFacilitiesByDoctorIds", expanding=("ids",)), {"ids": ids}
        ):
            facility_ids.setdefault(doctor_id, []).append(facility_id)

        return [
            Doctor(
                id=row["id"],
                name=row["name"] or "",
                email=row["email"] or "",
                specialties=tuple(specialties.get(row["id"], ())),
                certifications=decode_list(row["certifications"]),
                facility_ids=tuple(facility_ids.get(row["id"], ())),
                telehealth_enabled=bool(row["telehealth_enabled"]),
                availability_status=row["availability_status"] or "AVAILABLE",
                profile_text=row["profile_text"] or "",
            )
            for row in rows
        ]

    def _query(self, name: str, params: Dict[str, Any], expanding: Tuple[str, ...] = ()) -> List[Doctor]:
        with self.engine.connect() as conn:
            rows = conn.execute(self.sql.statement(name, expanding=expanding), params).mappings().all()
            return self._attach(conn, rows)

    # ── Queries ───────────────────────────────────────────────────────────

    def find_by_specialty(self, specialty: str) -> List[Doctor]:
        """Every doctor holding `specialty`; the hard filter needs the whole pool."""
        doctors = self._query("doctor/findBySpecialty", {"specialty": specialty})
        logger.debug(f"find_by_specialty({specialty!r}) -> {len(doctors)} doctor(s)")
        return doctors

    def find_by_ids(self, ids: Sequence[str]) -> List[Doctor]:
        if not ids:
            return []
        return self._query("doctor/findByIds", {"ids": list(ids)}, expanding=("ids",))

    def find_all(self, limit: int = 1000) -> List[Doctor]:
        """First `limit` doctors by id; logs a warning when more exist."""
        doctors = self._query("doctor/findAll", {"limit": limit + 1})
        if len(doctors) > limit:
            logger.warning(f"Doctor pool truncated to {limit} by id; more doctors exist")
            doctors = doctors[:limit]
        return doctors

    def find_by_facility_ids(self, facility_ids: Sequence[str]) -> List[Doctor]:
        if not facility_ids:
            return []
        return self._query("doctor/findByFacilityIds", {"facility_ids": list(facility_ids)},
                           expanding=("facility_ids",))

    def find_ids_by_facility(self, facility_id: str, limit: int = 500) -> List[str]:
        with self.engine.connect() as conn:
            result = conn.execute(self.sql.statement("doctor/findIdsByFacility"),
                                  {"facility_id": facility_id, "limit": limit})
            return [row[0] for row in result]

    # ── Writes ────────────────────────────────────────────────────────────

    def insert(self, doctor: Doctor) -> None:
        with self.engine.begin() as conn:
            conn.execute(self.sql.statement("doctor/insert"), {
                "id": doctor.id,
                "name": doctor.name,
                "email": doctor.email,
                "certifications": encode_list(doctor.certifications),
                "telehealth_enabled": doctor.telehealth_enabled,
                "availability_status": doctor.availability_status,
                "profile_text": doctor.profile_text,
            })
            if doctor.specialties:
                conn.execute(self.sql.statement("doctor/insertSpecialty"),
                             [{"doctor_id": doctor.id, "specialty": s} for s in dict.fromkeys(doctor.specialties)])
            if doctor.facility_ids:
                conn.execute(self.sql.statement("doctor/insertFacility"),
                             [{"doctor_id": doctor.id, "facility_id": f} for f in dict.fromkeys(doctor.facility_ids)])

    def insert_all(self, doctors: Iterable[Doctor]) -> int:
        count = 0
        for doctor in doctors:
            self.insert(doctor)
            count += 1
        return count
