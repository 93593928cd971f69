"""
Facility Repository
"""
from typing import Any, List, Mapping, Sequence

from sqlalchemy.engine import Engine

from expertmatch.core.domain import Facility
from expertmatch.repositories.doctors import decode_list, encode_list
from expertmatch.repositories.sql_registry import SqlRegistry


def _to_facility(row: Mapping[str, Any]) -> Facility:
    return Facility(
        id=row["id"],
        name=row["name"] or "",
        facility_type=row["facility_type"] or "",
        capabilities=decode_list(row["capabilities"]),
        capacity=row["capacity"],
        current_occupancy=row["current_occupancy"],
        latitude=row["latitude"],
        longitude=row["longitude"],
        location_city=row["location_city"] or "",
        location_country=row["location_country"] or "",
    )


class FacilityRepository:
    STATEMENTS = ("facility/findAll", "facility/findByIds", "facility/insert")

    def __init__(self, engine: Engine, sql: SqlRegistry):
        sql.require(*self.STATEMENTS)
        self.engine = engine
        self.sql = sql

    def find_all(self) -> List[Facility]:
        with self.engine.connect() as conn:
            rows = conn.execute(self.sql.statement("facility/findAll")).mappings().all()
        return [_to_facility(r) for r in rows]

    def find_by_ids(self, ids: Sequence[str]) -> List[Facility]:
        if not ids:
            return []
        with self.engine.connect() as conn:
            rows = conn.execute(self.sql.statement("facility/findByIds", expanding=("ids",)),
                                {"ids": list(ids)}).mappings().all()
        return [_to_facility(r) for r in rows]

    def insert(self, facility: Facility) -> None:
        with self.engine.begin() as conn:
            conn.execute(self.sql.statement("facility/insert"), {
                "id": facility.id,
                "name": facility.name,
                "facility_type": facility.facility_type,
                "capabilities": encode_list(facility.capabilities),
                "capacity": facility.capacity,
                "current_occupancy": facility.current_occupancy,
                "latitude": facility.latitude,
                "longitude": facility.longitude,
                "location_city": facility.location_city,
                "location_country": facility.location_country,
            })
