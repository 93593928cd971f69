"""
Apache AGE Graph Provider

Runs Cypher against a PostgreSQL database with the Apache AGE extension.

AGE has no bind parameters for Cypher, so `$name` placeholders are embedded
as Cypher literals before the statement is wrapped in
`ag_catalog.cypher(...)`. The SQL column list must match the RETURN clause:
one `c agtype` column for a single expression, `c0..cn` otherwise.

GraphSignalQueries turns a (case, doctor) pair into the strongest
GraphEdgeWeight found by a fixed set of relationship probes.
"""
import asyncio
import json
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from sqlalchemy import text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import DBAPIError, ProgrammingError

from expertmatch.core.domain import GraphEdgeWeight, MedicalCase
from expertmatch.core.providers.base import GraphProvider
from expertmatch.utils import get_logger
from expertmatch.utils.exceptions import ProviderUnavailable, QueryStructureError

logger = get_logger(__name__)

_AGTYPE_SUFFIX = re.compile(r"::(vertex|edge|path|numeric|agtype)\s*$")
_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


# =============================================================================
# CYPHER HELPERS
# =============================================================================

def format_cypher_value(value: Any) -> str:
    """Render a Python value as a Cypher literal."""
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return repr(value)
    if isinstance(value, (list, tuple, set, frozenset)):
        return "[" + ", ".join(format_cypher_value(v) for v in value) + "]"
    if isinstance(value, Mapping):
        items = []
        for key, v in value.items():
            if not _IDENTIFIER.match(str(key)):
                raise QueryStructureError(f"Invalid Cypher map key: {key!r}", provider="graph")
            items.append(f"{key}: {format_cypher_value(v)}")
        return "{" + ", ".join(items) + "}"
    escaped = str(value).replace("\\", "\\\\").replace("'", "\\'")
    return f"'{escaped}'"


def embed_parameters(statement: str, params: Optional[Mapping[str, Any]]) -> str:
    """Replace each `$name` placeholder with the literal form of params[name]."""
    if not params:
        return statement
    result = statement
    for name, value in params.items():
        if not _IDENTIFIER.match(name):
            raise QueryStructureError(f"Invalid parameter name: {name!r}", provider="graph", statement=statement)
        pattern = re.compile(r"\$" + re.escape(name) + r"(?![A-Za-z0-9_])")
        literal = format_cypher_value(value)
        result = pattern.sub(lambda _m: literal, result)
    return result


def count_return_columns(statement: str) -> int:
    """Number of top-level expressions in the RETURN clause (1 when absent)."""
    match = re.search(r"\bRETURN\b", statement, flags=re.IGNORECASE)
    if match is None:
        return 1
    clause = statement[match.end():]
    commas = 0
    depth = 0
    quote: Optional[str] = None
    previous = ""
    for ch in clause:
        if quote:
            if ch == quote and previous != "\\":
                quote = None
        elif ch in ("'", '"'):
            quote = ch
        elif ch in "([{":
            depth += 1
        elif ch in ")]}":
            depth -= 1
        elif ch == "," and depth == 0:
            commas += 1
        previous = ch
    return commas + 1


def build_cypher_sql(graph_name: str, statement: str) -> str:
    if not _IDENTIFIER.match(graph_name):
        raise QueryStructureError(f"Invalid graph name: {graph_name!r}", provider="graph")
    columns = count_return_columns(statement)
    if columns == 1:
        column_defs = "c agtype"
    else:
        column_defs = ", ".join(f"c{i} agtype" for i in range(columns))
    return (
        f"SELECT * FROM ag_catalog.cypher('{graph_name}'::name, "
        f"$query${statement}$query$) AS t({column_defs})"
    )


def parse_agtype(raw: Any) -> Any:
    """Decode an agtype column value into plain Python data."""
    if raw is None or not isinstance(raw, str):
        return raw
    value = _AGTYPE_SUFFIX.sub("", raw.strip())
    try:
        return json.loads(value)
    except ValueError:
        return value


# =============================================================================
# PROVIDER
# =============================================================================

class AgeGraphProvider:
    """GraphProvider over SQLAlchemy. Blocking I/O runs in a worker thread."""

    def __init__(self, engine: Engine, graph_name: str = "expertmatch_graph"):
        self.engine = engine
        self.graph_name = graph_name

    def _graph_exists_sync(self) -> bool:
        try:
            with self.engine.connect() as conn:
                count = conn.execute(
                    text("SELECT COUNT(*) FROM ag_catalog.ag_graph WHERE name = :graph_name"),
                    {"graph_name": self.graph_name},
                ).scalar()
            return bool(count)
        except DBAPIError as e:
            logger.debug(f"Graph check failed (AGE may not be available): {e}")
            return False

    async def graph_exists(self) -> bool:
        return await asyncio.to_thread(self._graph_exists_sync)

    def _query_sync(self, sql: str, statement: str) -> List[Dict[str, Any]]:
        try:
            with self.engine.connect() as conn:
                conn.exec_driver_sql("LOAD 'age'")
                conn.exec_driver_sql('SET search_path = ag_catalog, "$user", public')
                result = conn.exec_driver_sql(sql)
                keys = list(result.keys())
                rows = [
                    {key: parse_agtype(value) for key, value in zip(keys, row)}
                    for row in result
                ]
        except ProgrammingError as e:
            raise QueryStructureError(f"Malformed Cypher statement: {e.orig}", provider="graph",
                                      statement=statement) from e
        except DBAPIError as e:
            raise ProviderUnavailable("graph", str(e.orig)) from e
        return rows

    async def query(self, statement: str, params: Optional[Mapping[str, Any]] = None) -> List[Dict[str, Any]]:
        if not statement or not statement.strip():
            raise QueryStructureError("Cypher statement cannot be empty", provider="graph")
        cypher = embed_parameters(statement.strip(), params)
        sql = build_cypher_sql(self.graph_name, cypher)
        logger.debug(f"Executing Cypher: {cypher}")
        return await asyncio.to_thread(self._query_sync, sql, statement)


# =============================================================================
# RELATIONSHIP PROBES
# =============================================================================

@dataclass(frozen=True)
class GraphProbe:
    """One relationship pattern between a case and a doctor."""
    relationship: str
    depth: int
    strength: float
    statement: str
    requires: Tuple[str, ...] = ()


# Ordered by strength / depth, strongest first; the first hit is the best path.
DEFAULT_PROBES: Tuple[GraphProbe, ...] = (
    GraphProbe(
        relationship="TREATED_CASE",
        depth=1,
        strength=1.0,
        statement=(
            "MATCH (d:Doctor {id: $doctorId})-[:TREATED]->(c:MedicalCase {id: $caseId}) "
            "RETURN count(c)"
        ),
    ),
    # AGE has no relationship-type alternation, so CONSULTED_ON gets its own statement
    GraphProbe(
        relationship="CONSULTED_CASE",
        depth=1,
        strength=1.0,
        statement=(
            "MATCH (d:Doctor {id: $doctorId})-[:CONSULTED_ON]->(c:MedicalCase {id: $caseId}) "
            "RETURN count(c)"
        ),
    ),
    GraphProbe(
        relationship="TREATS_CONDITION",
        depth=1,
        strength=0.9,
        statement=(
            "MATCH (d:Doctor {id: $doctorId})-[:TREATS_CONDITION]->(i:ICD10Code) "
            "WHERE i.code IN $icd10Codes RETURN count(i)"
        ),
        requires=("icd10Codes",),
    ),
    GraphProbe(
        relationship="SPECIALIZES_IN",
        depth=1,
        strength=0.8,
        statement=(
            "MATCH (d:Doctor {id: $doctorId})-[:SPECIALIZES_IN]->(s:MedicalSpecialty) "
            "WHERE toLower(s.name) = toLower($specialty) RETURN count(s)"
        ),
        requires=("specialty",),
    ),
    GraphProbe(
        relationship="SHARED_CONDITION",
        depth=2,
        strength=0.9,
        statement=(
            "MATCH (d:Doctor {id: $doctorId})-[:TREATED]->(:MedicalCase)-[:HAS_CONDITION]->(i:ICD10Code) "
            "WHERE i.code IN $icd10Codes RETURN count(i)"
        ),
        requires=("icd10Codes",),
    ),
    GraphProbe(
        relationship="FACILITY_COLLEAGUE",
        depth=3,
        strength=0.75,
        statement=(
            "MATCH (d:Doctor {id: $doctorId})-[:AFFILIATED_WITH]->(:Facility)<-[:AFFILIATED_WITH]-"
            "(o:Doctor)-[:TREATED]->(c:MedicalCase {id: $caseId}) RETURN count(o)"
        ),
    ),
)


def _hit_count(rows: Sequence[Dict[str, Any]]) -> int:
    total = 0
    for row in rows:
        value = row.get("c", next(iter(row.values()), 0)) if row else 0
        if isinstance(value, (int, float)):
            total += int(value)
        elif value:
            total += 1
    return total


class GraphSignalQueries:
    """Best relationship path between a case and a candidate doctor."""

    def __init__(self, graph: GraphProvider, probes: Sequence[GraphProbe] = DEFAULT_PROBES):
        self.graph = graph
        self.probes = tuple(probes)

    @staticmethod
    def _params(case: MedicalCase, doctor_id: str) -> Dict[str, Any]:
        return {
            "doctorId": doctor_id,
            "caseId": case.id,
            "icd10Codes": list(case.icd10_codes),
            "specialty": case.required_specialty or "",
        }

    async def edge_weight(self, case: MedicalCase, doctor_id: str) -> Optional[GraphEdgeWeight]:
        """
        Run probes in order and return the first hit, or None when no path
        exists. Provider errors propagate to the caller.
        """
        params = self._params(case, doctor_id)
        for probe in self.probes:
            if any(not params.get(name) for name in probe.requires):
                continue
            rows = await self.graph.query(probe.statement, params)
            if _hit_count(rows) > 0:
                logger.debug(f"Graph hit {probe.relationship} for case {case.id} / doctor {doctor_id}")
                return GraphEdgeWeight(probe.relationship, probe.depth, probe.strength)
        return None
