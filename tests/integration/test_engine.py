"""
Integration Tests for Engine Wiring

build_engine over SQLite without API keys: no graph, no embeddings, no LLM.
Matching still works on lexical and experience evidence.
"""
from dataclasses import replace

import pytest

from expertmatch.config import Settings
from expertmatch.core.domain import Facility, MatchStatus, OutcomeCategory, UrgencyLevel
from expertmatch.core.llm import GeminiConfig
from expertmatch.core.providers import AgeGraphProvider, EmbeddingConfig
from expertmatch.services.engine import build_engine
from expertmatch.utils.exceptions import ProviderUnavailable, QueryStructureError

pytestmark = pytest.mark.integration


@pytest.fixture
def wired(engine):
    return build_engine(
        Settings(),
        db=engine,
        gemini_config=GeminiConfig(api_key=None),
        embedding_config=EmbeddingConfig(api_key=None),
    )


class TestBuildEngine:

    def test_offline_wiring(self, wired):
        assert not wired.gemini.is_available
        collector = wired.matching.collector
        assert collector.graph is None
        assert collector.embedding is None
        assert collector.lexical is not None
        assert wired.get_stats()["gemini"]["is_available"] is False

    @pytest.mark.asyncio
    async def test_match_on_lexical_and_experience(self, wired, doctor_repo, experience_store,
                                                   cardiology_pool, cardiology_case, experience_record):
        a, b, c = cardiology_pool
        doctor_repo.insert_all([
            replace(a, profile_text="Interventional angina chest pain specialist"),
            replace(b, profile_text="Heart failure and valve disease"),
            c,
        ])
        experience_store.insert(experience_record("doc-b", OutcomeCategory.SUCCESS, rating=5))

        result = await wired.matching.match(cardiology_case)

        assert {m.doctor_id for m in result.matches} == {"doc-a", "doc-b"}
        assert set(result.failures) == {"embedding", "graph"}
        assert all(m.status is MatchStatus.PENDING for m in result.matches)

    @pytest.mark.asyncio
    async def test_routing_and_priority_wired(self, wired, facility_repo, cardiology_case):
        facility_repo.insert(Facility(id="fac-1", capabilities=("Cardiology",), capacity=10, current_occupancy=2))
        routed = await wired.routing.route(cardiology_case)
        assert [f.facility.id for f in routed.facilities] == ["fac-1"]

        queue = wired.priority.prioritize([cardiology_case])
        assert queue[0].urgency is UrgencyLevel.HIGH
        assert queue[0].rank == 1


class TestAgeGraphProviderWithoutAge:

    @pytest.mark.asyncio
    async def test_graph_missing_on_plain_database(self, engine):
        assert await AgeGraphProvider(engine).graph_exists() is False

    @pytest.mark.asyncio
    async def test_query_without_age_is_unavailable(self, engine):
        with pytest.raises(ProviderUnavailable):
            await AgeGraphProvider(engine).query("MATCH (n) RETURN count(n)")

    @pytest.mark.asyncio
    async def test_empty_statement_is_structural(self, engine):
        with pytest.raises(QueryStructureError):
            await AgeGraphProvider(engine).query("   ")
