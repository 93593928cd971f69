"""
ExpertMatch Engine

Composition root: builds every collaborator once from Settings and hands
them to the services explicitly. Components are stateless between requests,
so one engine is shared by all callers of a process.

Usage:
    engine = build_engine()
    result = await engine.matching.match(case)
    engine.close()
"""
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.engine import Engine

from expertmatch.config import Settings
from expertmatch.core.llm import CaseDescriptionService, GeminiClient, GeminiConfig, RationaleEnhancer
from expertmatch.core.providers import (
    AgeGraphProvider,
    EmbeddingConfig,
    GeminiEmbeddingProvider,
    KeywordLexicalIndex,
)
from expertmatch.core.resilience import CallLimiter, RetryWithBackoff
from expertmatch.core.retrieval import (
    ExperienceAggregator,
    FacilityRoutingService,
    FusionEngine,
    MatchingService,
    PriorityScorer,
    Ranker,
    RouteScorer,
    ScoreNormalizer,
    SignalCollector,
)
from expertmatch.repositories import (
    ConsultationMatchRepository,
    DoctorRepository,
    FacilityRepository,
    SqlExperienceStore,
    SqlRegistry,
    create_engine_from_settings,
)
from expertmatch.utils import get_logger

logger = get_logger(__name__)


@dataclass
class ExpertMatchEngine:
    settings: Settings
    db: Engine
    matching: MatchingService
    routing: FacilityRoutingService
    priority: PriorityScorer
    gemini: GeminiClient

    def get_stats(self):
        return {
            "database": self.db.url.render_as_string(hide_password=True),
            "gemini": self.gemini.get_stats(),
        }

    def close(self) -> None:
        self.db.dispose()
        logger.info("ExpertMatch engine closed")


def build_engine(
    settings: Optional[Settings] = None,
    db: Optional[Engine] = None,
    gemini_config: Optional[GeminiConfig] = None,
    embedding_config: Optional[EmbeddingConfig] = None,
) -> ExpertMatchEngine:
    """
    Wire the matching, routing and priority services.

    The graph signal needs Apache AGE and is only wired on PostgreSQL;
    on other databases it reports "provider not configured".
    """
    settings = settings or Settings.from_env()
    db = db or create_engine_from_settings(settings.database)
    sql = SqlRegistry.load()

    limiter = CallLimiter.from_settings(settings.limiter)
    llm_retry = RetryWithBackoff.from_settings(settings.retry)
    gemini = GeminiClient(gemini_config)

    embedding = GeminiEmbeddingProvider(embedding_config, limiter)
    graph = None
    if db.dialect.name == "postgresql":
        graph = AgeGraphProvider(db, settings.database.graph_name)
    else:
        logger.warning(f"Graph signal disabled: Apache AGE needs PostgreSQL, got {db.dialect.name}")

    doctors = DoctorRepository(db, sql)
    experience = SqlExperienceStore(db, sql)
    aggregator = ExperienceAggregator(settings.experience)

    collector = SignalCollector(
        embedding=embedding if embedding.is_available else None,
        graph=graph,
        lexical=KeywordLexicalIndex(),
        experience=experience,
        settings=settings.collector,
        describer=CaseDescriptionService(gemini, limiter, llm_retry) if gemini.is_available else None,
    )
    matching = MatchingService(
        doctors,
        ConsultationMatchRepository(db, sql),
        collector,
        normalizer=ScoreNormalizer(aggregator),
        fusion=FusionEngine(settings.fusion, settings.ranking),
        ranker=Ranker(settings.ranking),
        enhancer=RationaleEnhancer(gemini, limiter, llm_retry, settings.ranking),
        settings=settings.ranking,
    )
    routing = FacilityRoutingService(
        FacilityRepository(db, sql),
        doctors,
        experience,
        scorer=RouteScorer(settings.routing),
        aggregator=aggregator,
        settings=settings.routing,
    )

    logger.info(f"ExpertMatch engine ready (llm={'on' if gemini.is_available else 'mock'}, "
                f"graph={'on' if graph else 'off'})")
    return ExpertMatchEngine(
        settings=settings,
        db=db,
        matching=matching,
        routing=routing,
        priority=PriorityScorer(settings.priority),
        gemini=gemini,
    )
