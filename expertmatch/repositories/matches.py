"""
Consultation Match Repository

At most one current ranking per case. `replace_for_case` deletes the old
rows and inserts the new ones in a single transaction, so readers see either
the previous ranking or the new one, never a mix.
"""
import secrets
from typing import Any, List, Mapping, Sequence

from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from expertmatch.core.domain import ConsultationMatch, MatchStatus
from expertmatch.repositories.sql_registry import SqlRegistry
from expertmatch.utils import get_logger
from expertmatch.utils.exceptions import PersistenceError

logger = get_logger(__name__)


def new_match_id() -> str:
    """24-character hex identifier."""
    return secrets.token_hex(12)


def _to_match(row: Mapping[str, Any]) -> ConsultationMatch:
    try:
        status = MatchStatus(row["status"])
    except ValueError:
        status = MatchStatus.PENDING
    return ConsultationMatch(
        id=row["id"],
        case_id=row["case_id"],
        doctor_id=row["doctor_id"],
        match_score=float(row["match_score"]),
        match_rationale=row["match_rationale"] or "",
        rank=int(row["rank"]),
        status=status,
    )


def _params(match: ConsultationMatch) -> dict:
    return {
        "id": match.id,
        "case_id": match.case_id,
        "doctor_id": match.doctor_id,
        "match_score": match.match_score,
        "match_rationale": match.match_rationale,
        "rank": match.rank,
        "status": match.status.value,
    }


class ConsultationMatchRepository:
    STATEMENTS = (
        "consultationmatch/insert",
        "consultationmatch/deleteByCaseId",
        "consultationmatch/count",
        "consultationmatch/countByCaseId",
        "consultationmatch/deleteAll",
        "consultationmatch/findByCaseId",
    )

    def __init__(self, engine: Engine, sql: SqlRegistry):
        sql.require(*self.STATEMENTS)
        self.engine = engine
        self.sql = sql

    def delete_by_case_id(self, case_id: str) -> int:
        with self.engine.begin() as conn:
            return conn.execute(self.sql.statement("consultationmatch/deleteByCaseId"),
                                {"case_id": case_id}).rowcount

    def insert_batch(self, matches: Sequence[ConsultationMatch]) -> int:
        if not matches:
            return 0
        with self.engine.begin() as conn:
            conn.execute(self.sql.statement("consultationmatch/insert"), [_params(m) for m in matches])
        return len(matches)

    def count(self) -> int:
        with self.engine.connect() as conn:
            return int(conn.execute(self.sql.statement("consultationmatch/count")).scalar() or 0)

    def count_by_case_id(self, case_id: str) -> int:
        with self.engine.connect() as conn:
            return int(conn.execute(self.sql.statement("consultationmatch/countByCaseId"),
                                    {"case_id": case_id}).scalar() or 0)

    def delete_all(self) -> int:
        with self.engine.begin() as conn:
            return conn.execute(self.sql.statement("consultationmatch/deleteAll")).rowcount

    def find_by_case_id(self, case_id: str) -> List[ConsultationMatch]:
        with self.engine.connect() as conn:
            rows = conn.execute(self.sql.statement("consultationmatch/findByCaseId"),
                                {"case_id": case_id}).mappings().all()
        return [_to_match(r) for r in rows]

    def replace_for_case(self, case_id: str, matches: Sequence[ConsultationMatch]) -> int:
        """
        Atomically supersede the ranking of `case_id` with `matches`.

        Raises:
            PersistenceError: the transaction failed and was rolled back;
                the previous ranking is unchanged.
        """
        foreign = [m.id for m in matches if m.case_id != case_id]
        if foreign:
            raise PersistenceError(case_id, "replace ranking", f"matches belong to another case: {foreign}")

        try:
            with self.engine.begin() as conn:
                removed = conn.execute(self.sql.statement("consultationmatch/deleteByCaseId"),
                                       {"case_id": case_id}).rowcount
                if matches:
                    conn.execute(self.sql.statement("consultationmatch/insert"), [_params(m) for m in matches])
        except SQLAlchemyError as e:
            logger.error(f"Replacing ranking for case {case_id} failed: {e}", exc_info=True)
            raise PersistenceError(case_id, "replace ranking", str(e)) from e

        logger.info(f"Ranking for case {case_id} replaced: {removed} removed, {len(matches)} inserted")
        return len(matches)
