"""
Hybrid Retrieval and Ranking

Signal Collector -> Score Normalizer -> Fusion Engine -> Ranker, plus the
Priority and Route scorers built on the same primitives.

Usage:
    from expertmatch.core.retrieval import MatchingService

    result = await service.match(case)
"""
from .signals import (
    EMBEDDING,
    GRAPH,
    LEXICAL,
    EXPERIENCE,
    SIGNAL_NAMES,
    SignalUnavailable,
    is_unavailable,
    CandidateSignals,
    CollectedSignals,
    NormalizedSignals,
    ScoredCandidate,
    RankedCandidate,
)
from .collector import SignalCollector, cosine_similarity
from .normalizer import (
    ScoreNormalizer,
    ExperienceAggregator,
    normalize_cosine,
    normalize_graph,
    normalize_min_max,
)
from .fusion import FusionEngine, fuse_terms, apply_specialty_filter, GENERIC_RATIONALE
from .ranker import Ranker, dense_rank
from .matching import MatchingService, MatchResult, normalize_case_id
from .priority import PriorityScorer
from .routing import RouteScorer, FacilityRoutingService, RoutingResult

__all__ = [
    "EMBEDDING",
    "GRAPH",
    "LEXICAL",
    "EXPERIENCE",
    "SIGNAL_NAMES",
    "SignalUnavailable",
    "is_unavailable",
    "CandidateSignals",
    "CollectedSignals",
    "NormalizedSignals",
    "ScoredCandidate",
    "RankedCandidate",
    "SignalCollector",
    "cosine_similarity",
    "ScoreNormalizer",
    "ExperienceAggregator",
    "normalize_cosine",
    "normalize_graph",
    "normalize_min_max",
    "FusionEngine",
    "fuse_terms",
    "apply_specialty_filter",
    "GENERIC_RATIONALE",
    "Ranker",
    "dense_rank",
    "MatchingService",
    "MatchResult",
    "normalize_case_id",
    "PriorityScorer",
    "RouteScorer",
    "FacilityRoutingService",
    "RoutingResult",
]
