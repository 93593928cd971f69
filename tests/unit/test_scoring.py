"""
Unit Tests for Normalization, Fusion and Ranking
"""
import math
from datetime import datetime, timedelta, timezone

import pytest

from expertmatch.config import ExperienceSettings, FusionWeights, RankingSettings
from expertmatch.core.domain import Doctor, GraphEdgeWeight, MedicalCase, OutcomeCategory
from expertmatch.core.retrieval import (
    GENERIC_RATIONALE,
    CandidateSignals,
    CollectedSignals,
    ExperienceAggregator,
    FusionEngine,
    NormalizedSignals,
    Ranker,
    ScoredCandidate,
    ScoreNormalizer,
    SignalUnavailable,
    apply_specialty_filter,
    dense_rank,
    fuse_terms,
    normalize_cosine,
    normalize_graph,
    normalize_min_max,
)
from expertmatch.utils.exceptions import NoCandidatesError

NOW = datetime(2026, 1, 15, tzinfo=timezone.utc)


def scored(doctor_id, composite, experience=None):
    return ScoredCandidate(
        doctor=Doctor(id=doctor_id),
        composite=composite,
        signals={"embedding": None, "graph": None, "lexical": None, "experience": experience},
        rationale="",
    )


# =============================================================================
# NORMALIZER
# =============================================================================

class TestNormalizers:

    def test_cosine_maps_to_unit_interval(self):
        assert normalize_cosine(-1.0) == 0.0
        assert normalize_cosine(0.0) == 0.5
        assert normalize_cosine(1.0) == 1.0

    def test_graph_inverse_depth(self):
        assert normalize_graph(None) == 0.0
        assert normalize_graph(GraphEdgeWeight("SPECIALIZES_IN", 1, 0.8)) == pytest.approx(0.8)
        assert normalize_graph(GraphEdgeWeight("FACILITY_COLLEAGUE", 3, 0.75)) == pytest.approx(0.25)

    def test_min_max(self):
        assert normalize_min_max({"a": 10.0, "b": 55.0, "c": 100.0}) == {"a": 0.0, "b": 0.5, "c": 1.0}

    def test_min_max_all_equal(self):
        assert normalize_min_max({"a": 42.0, "b": 42.0}) == {"a": 0.0, "b": 0.0}
        assert normalize_min_max({}) == {}


class TestExperienceAggregator:

    def test_no_records_is_neutral(self):
        assert ExperienceAggregator().score([], "Cardiology", NOW) == 0.5

    def test_other_specialty_records_ignored(self, experience_record):
        records = [experience_record("doc-a", OutcomeCategory.WORSENED, rating=1, specialty="Dermatology")]
        assert ExperienceAggregator().score(records, "Cardiology", NOW) == 0.5

    def test_perfect_record(self, experience_record):
        records = [experience_record("doc-a", OutcomeCategory.SUCCESS, rating=5)]
        assert ExperienceAggregator().score(records, "Cardiology", NOW) == pytest.approx(1.0)

    def test_rating_and_outcome_mix(self, experience_record):
        record = experience_record("doc-a", OutcomeCategory.STABLE, rating=3)
        # 0.6 * 0.5 + 0.4 * 0.5
        assert ExperienceAggregator().record_quality(record) == pytest.approx(0.5)

    def test_missing_rating_uses_outcome(self, experience_record):
        record = experience_record("doc-a", OutcomeCategory.IMPROVED, rating=None)
        assert ExperienceAggregator().record_quality(record) == pytest.approx(0.8)

    def test_complications_and_age_reduce_weight(self, experience_record):
        aggregator = ExperienceAggregator(ExperienceSettings(recency_half_life_days=100))
        fresh = experience_record("doc-a", completed_at=NOW)
        old = experience_record("doc-a", completed_at=NOW - timedelta(days=100))
        complicated = experience_record("doc-a", complications=("bleeding",), completed_at=NOW)
        assert aggregator.record_weight(fresh, NOW) == pytest.approx(1.0)
        assert aggregator.record_weight(old, NOW) == pytest.approx(0.5)
        assert aggregator.record_weight(complicated, NOW) == pytest.approx(0.5)

    def test_recent_outcomes_dominate(self, experience_record):
        records = [
            experience_record("doc-a", OutcomeCategory.SUCCESS, rating=5, completed_at=NOW, record_id="r1"),
            experience_record("doc-a", OutcomeCategory.WORSENED, rating=1,
                              completed_at=NOW - timedelta(days=3650), record_id="r2"),
        ]
        assert ExperienceAggregator().score(records, "Cardiology", NOW) > 0.95


class TestScoreNormalizer:

    def test_unavailable_stays_none(self, cardiology_case, cardiology_pool):
        a, b, _ = cardiology_pool
        collected = CollectedSignals(
            case=cardiology_case,
            candidates=[
                CandidateSignals(a, 0.8, GraphEdgeWeight("SPECIALIZES_IN", 1, 0.8), 80.0,
                                 SignalUnavailable("experience", "timeout")),
                CandidateSignals(b, SignalUnavailable("embedding", "timeout"), None, 20.0,
                                 SignalUnavailable("experience", "timeout")),
            ],
        )
        first, second = ScoreNormalizer().normalize(collected, now=NOW)
        assert first.values == {"embedding": pytest.approx(0.9), "graph": pytest.approx(0.8),
                                "lexical": 1.0, "experience": None}
        assert second.values["embedding"] is None
        assert second.values["graph"] == 0.0
        assert second.values["lexical"] == 0.0
        assert second.missing() == ("embedding", "experience")

    def test_all_values_in_unit_interval(self, cardiology_case, cardiology_pool, experience_record):
        collected = CollectedSignals(
            case=cardiology_case,
            candidates=[
                CandidateSignals(d, -0.3 + i * 0.6, None, float(i), [experience_record(d.id)])
                for i, d in enumerate(cardiology_pool)
            ],
        )
        for normalized in ScoreNormalizer().normalize(collected, now=NOW):
            assert all(0.0 <= v <= 1.0 for v in normalized.available().values())


# =============================================================================
# FUSION
# =============================================================================

class TestFuseTerms:

    def test_weighted_mean(self):
        weights = {"embedding": 0.5, "graph": 0.5}
        assert fuse_terms({"embedding": 1.0, "graph": 0.0}, weights) == pytest.approx(0.5)

    def test_missing_terms_renormalize(self):
        weights = FusionWeights().as_dict()
        values = {"embedding": 0.8, "graph": None, "lexical": None, "experience": None}
        assert fuse_terms(values, weights) == pytest.approx(0.8)

    def test_nothing_present(self):
        assert fuse_terms({"embedding": None}, {"embedding": 1.0}) == 0.0

    def test_zero_weight_terms(self):
        assert fuse_terms({"lexical": 1.0}, {"lexical": 0.0}) == 0.0


class TestSpecialtyFilter:

    def test_keeps_only_specialty_holders(self, cardiology_case, cardiology_pool):
        kept = apply_specialty_filter(cardiology_case, cardiology_pool)
        assert [d.id for d in kept] == ["doc-a", "doc-b"]

    def test_case_insensitive(self, cardiology_pool):
        case = MedicalCase(id="c", required_specialty="  cardiology ")
        assert len(apply_specialty_filter(case, cardiology_pool)) == 2

    def test_nobody_qualifies(self, cardiology_pool):
        case = MedicalCase(id="c", required_specialty="Oncology")
        with pytest.raises(NoCandidatesError) as exc:
            apply_specialty_filter(case, cardiology_pool)
        assert exc.value.filter_name == "required_specialty"

    def test_no_specialty_keeps_everyone(self, cardiology_pool):
        assert len(apply_specialty_filter(MedicalCase(id="c"), cardiology_pool)) == 3


class TestFusionEngine:

    def test_composite_matches_formula(self):
        engine = FusionEngine(FusionWeights(0.4, 0.3, 0.1, 0.2))
        values = {"embedding": 0.9, "graph": 0.8, "lexical": 0.5, "experience": 0.7}
        expected = (0.4 * 0.9 + 0.3 * 0.8 + 0.1 * 0.5 + 0.2 * 0.7) / 1.0
        assert engine.composite(values) == pytest.approx(expected)

    def test_rationale_names_strongest_signals(self):
        engine = FusionEngine()
        text = engine.rationale({"embedding": 0.7, "graph": 0.9, "lexical": 0.1, "experience": 0.65})
        assert text == "Strong specialty graph link, high case-text similarity, favorable historical outcomes"

    def test_single_notable_signal_is_generic(self):
        text = FusionEngine().rationale({"embedding": 0.9, "graph": 0.0, "lexical": 0.0, "experience": 0.5})
        assert text == GENERIC_RATIONALE

    def test_rationale_mentions_missing(self):
        text = FusionEngine().rationale({"embedding": 0.9, "graph": None}, missing=("graph",))
        assert text == f"{GENERIC_RATIONALE}; partial evidence (graph unavailable)"

    def test_rationale_is_bounded(self):
        engine = FusionEngine(settings=RankingSettings(rationale_max_length=40))
        text = engine.rationale({"embedding": 0.9, "graph": 0.9, "lexical": 0.9, "experience": 0.9})
        assert len(text) <= 40

    def test_score_carries_missing(self, cardiology_pool):
        normalized = NormalizedSignals(cardiology_pool[0], {"embedding": 0.9, "graph": None,
                                                            "lexical": 0.5, "experience": 0.5})
        result = FusionEngine().score(normalized)
        assert result.missing == ("graph",)
        assert 0.0 <= result.composite <= 1.0
        assert not math.isnan(result.composite)


# =============================================================================
# RANKER
# =============================================================================

class TestDenseRank:

    def test_ranks_are_dense_and_sorted(self):
        ranked = dense_rank([("a", 0.2), ("b", 0.9), ("c", 0.5)], identity=lambda t: t[0], score=lambda t: t[1])
        assert [(rank, item[0]) for rank, item in ranked] == [(1, "b"), (2, "c"), (3, "a")]

    def test_duplicates_keep_higher_score(self):
        ranked = dense_rank([("a", 0.2), ("a", 0.7), ("b", 0.5)], identity=lambda t: t[0], score=lambda t: t[1])
        assert [item for _, item in ranked] == [("a", 0.7), ("b", 0.5)]

    def test_limit(self):
        ranked = dense_rank(range(10), identity=str, score=float, limit=3)
        assert [item for _, item in ranked] == [9, 8, 7]


class TestRanker:

    def test_ties_broken_by_experience_then_id(self):
        ranked = Ranker().rank([
            scored("doc-z", 0.8, experience=0.9),
            scored("doc-b", 0.8, experience=0.4),
            scored("doc-a", 0.8, experience=0.4),
            scored("doc-c", 0.8, experience=None),
        ])
        assert [r.doctor_id for r in ranked] == ["doc-z", "doc-a", "doc-b", "doc-c"]
        assert [r.rank for r in ranked] == [1, 2, 3, 4]

    def test_scores_non_increasing(self):
        ranked = Ranker().rank([scored(f"doc-{i}", (i * 37 % 11) / 10) for i in range(8)])
        scores = [r.score for r in ranked]
        assert scores == sorted(scores, reverse=True)

    def test_truncates_to_max_results(self):
        ranker = Ranker(RankingSettings(max_results=2))
        assert len(ranker.rank([scored(f"doc-{i}", 0.1 * i) for i in range(5)])) == 2
        assert len(ranker.rank([scored(f"doc-{i}", 0.1 * i) for i in range(5)], max_results=4)) == 4

    def test_deterministic(self):
        items = [scored("doc-b", 0.5), scored("doc-a", 0.5), scored("doc-c", 0.5)]
        first = [r.doctor_id for r in Ranker().rank(items)]
        second = [r.doctor_id for r in Ranker().rank(list(reversed(items)))]
        assert first == second == ["doc-a", "doc-b", "doc-c"]
