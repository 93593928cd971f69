"""
Pytest Configuration and Fixtures

Shared fixtures for the matching engine tests: in-memory fake providers,
fast settings and a SQLite database built from the production schema.
"""
import asyncio
import math
import sys
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence, Set

import pytest
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from expertmatch.config import CollectorSettings, RankingSettings
from expertmatch.core.domain import (
    Doctor,
    ExperienceRecord,
    MedicalCase,
    OutcomeCategory,
    UrgencyLevel,
)
from expertmatch.core.resilience import RetryWithBackoff
from expertmatch.core.retrieval import MatchingService, SignalCollector
from expertmatch.repositories import (
    ConsultationMatchRepository,
    DoctorRepository,
    FacilityRepository,
    SqlExperienceStore,
    SqlRegistry,
    create_schema,
)


# =============================================================================
# FAKE PROVIDERS
# =============================================================================

def unit_vector(similarity: float) -> List[float]:
    """2-d vector whose cosine with [1, 0] equals `similarity`."""
    return [similarity, math.sqrt(max(0.0, 1.0 - similarity ** 2))]


class FakeEmbeddingProvider:
    """Vectors looked up by exact text; unknown text maps to [1, 0]."""

    def __init__(self, by_text: Optional[Dict[str, List[float]]] = None, error: Optional[Exception] = None,
                 delay: float = 0.0):
        self.by_text = by_text or {}
        self.error = error
        self.delay = delay
        self.calls = 0

    async def embed(self, text: str) -> List[float]:
        return (await self.embed_batch([text]))[0]

    async def embed_batch(self, texts: Sequence[str]) -> List[List[float]]:
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return [self.by_text.get(t, [1.0, 0.0]) for t in texts]


class FakeGraphProvider:
    """
    Answers relationship probes from a doctor -> markers table.

    A probe hits when its statement contains one of the doctor's markers
    (CONSULTED_ON, TREATS_CONDITION, SPECIALIZES_IN, HAS_CONDITION,
    AFFILIATED_WITH).
    """

    def __init__(self, hits: Optional[Dict[str, Set[str]]] = None, exists: bool = True,
                 error: Optional[Exception] = None, delay: float = 0.0):
        self.hits = hits or {}
        self.exists = exists
        self.error = error
        self.delay = delay
        self.statements: List[str] = []

    async def graph_exists(self) -> bool:
        return self.exists

    async def query(self, statement: str, params: Optional[Mapping[str, Any]] = None) -> List[Dict[str, Any]]:
        self.statements.append(statement)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        markers = self.hits.get((params or {}).get("doctorId"), set())
        hit = any(marker in statement for marker in markers)
        return [{"c": 1 if hit else 0}]


class FakeLexicalIndex:
    def __init__(self, scores: Optional[Dict[str, float]] = None, error: Optional[Exception] = None):
        self.scores = scores or {}
        self.error = error

    async def score(self, query: str, documents: Mapping[str, str]) -> Dict[str, float]:
        if self.error is not None:
            raise self.error
        return {doc_id: self.scores.get(doc_id, 0.0) for doc_id in documents}


class FakeExperienceStore:
    def __init__(self, records: Optional[Dict[str, List[ExperienceRecord]]] = None,
                 error: Optional[Exception] = None):
        self.records = records or {}
        self.error = error

    async def find_by_doctor_ids(self, doctor_ids: Sequence[str]) -> Dict[str, List[ExperienceRecord]]:
        if self.error is not None:
            raise self.error
        return {d: list(self.records[d]) for d in doctor_ids if d in self.records}


@pytest.fixture
def fakes():
    """Namespace of fake provider classes and helpers."""
    class Fakes:
        Embedding = FakeEmbeddingProvider
        Graph = FakeGraphProvider
        Lexical = FakeLexicalIndex
        Experience = FakeExperienceStore
        vector = staticmethod(unit_vector)
    return Fakes


# =============================================================================
# DOMAIN FIXTURES
# =============================================================================

@pytest.fixture
def cardiology_case() -> MedicalCase:
    return MedicalCase(
        id="case-001",
        chief_complaint="Chest pain on exertion",
        symptoms="Exertional chest pain radiating to left arm, dyspnea",
        urgency_level=UrgencyLevel.HIGH,
        required_specialty="Cardiology",
        current_diagnosis="Suspected unstable angina",
        icd10_codes=("I20.0",),
    )


@pytest.fixture
def cardiology_pool() -> List[Doctor]:
    """A and B hold Cardiology, C does not."""
    return [
        Doctor(id="doc-a", name="Dr. A", specialties=("Cardiology",), profile_text="profile A",
               facility_ids=("fac-1",), telehealth_enabled=True),
        Doctor(id="doc-b", name="Dr. B", specialties=("Cardiology",), profile_text="profile B",
               facility_ids=("fac-2",)),
        Doctor(id="doc-c", name="Dr. C", specialties=("Neurology",), profile_text="profile C",
               facility_ids=("fac-1",)),
    ]


@pytest.fixture
def experience_record():
    def make(doctor_id: str, outcome: OutcomeCategory = OutcomeCategory.SUCCESS, rating: Optional[int] = 5,
             specialty: Optional[str] = "Cardiology", complications=(), completed_at=None, record_id=None):
        return ExperienceRecord(
            id=record_id or f"exp-{doctor_id}-{outcome.value.lower()}",
            doctor_id=doctor_id,
            case_id="past-case",
            specialty=specialty,
            outcome=outcome,
            rating=rating,
            complications=tuple(complications),
            completed_at=completed_at,
        )
    return make


# =============================================================================
# SETTINGS
# =============================================================================

@pytest.fixture
def collector_settings() -> CollectorSettings:
    return CollectorSettings(
        request_timeout_seconds=1.0,
        embedding_timeout_seconds=0.5,
        graph_timeout_seconds=0.5,
        lexical_timeout_seconds=0.5,
        experience_timeout_seconds=0.5,
        max_concurrency=4,
        provider_retry_attempts=2,
    )


@pytest.fixture
def no_wait_retry() -> RetryWithBackoff:
    async def no_sleep(_delay):
        return None
    return RetryWithBackoff(max_attempts=2, base_delay=0.0, sleep=no_sleep)


# =============================================================================
# DATABASE
# =============================================================================

@pytest.fixture
def engine():
    """Fresh in-memory SQLite shared across threads."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    create_schema(engine)
    yield engine
    engine.dispose()


@pytest.fixture(scope="session")
def sql_registry() -> SqlRegistry:
    return SqlRegistry.load()


@pytest.fixture
def doctor_repo(engine, sql_registry) -> DoctorRepository:
    return DoctorRepository(engine, sql_registry)


@pytest.fixture
def facility_repo(engine, sql_registry) -> FacilityRepository:
    return FacilityRepository(engine, sql_registry)


@pytest.fixture
def experience_store(engine, sql_registry) -> SqlExperienceStore:
    return SqlExperienceStore(engine, sql_registry)


@pytest.fixture
def match_repo(engine, sql_registry) -> ConsultationMatchRepository:
    return ConsultationMatchRepository(engine, sql_registry)


@pytest.fixture
def seeded_doctors(doctor_repo, cardiology_pool) -> List[Doctor]:
    doctor_repo.insert_all(cardiology_pool)
    return cardiology_pool


@pytest.fixture
def build_service(doctor_repo, match_repo, collector_settings, no_wait_retry):
    """Factory: MatchingService wired to the SQLite repositories and given providers."""
    def build(embedding=None, graph=None, lexical=None, experience=None, ranking: Optional[RankingSettings] = None):
        collector = SignalCollector(
            embedding=embedding,
            graph=graph,
            lexical=lexical,
            experience=experience,
            settings=collector_settings,
            retry=no_wait_retry,
        )
        return MatchingService(doctor_repo, match_repo, collector, settings=ranking)
    return build
