"""
Tests for the pipeline context records
"""
import dataclasses
import math

import pytest

from gift_concierge.context import (
    CandidateScores,
    CheckResult,
    GiftRequest,
    ListenerFacts,
    Budget,
    StoredItem,
    StoredRecommendation,
    ValidationVerdict,
    mean_edge_weight,
    to_jsonable,
)


def test_hybrid_score_blends_graph_and_vector():
    """Hybrid score is 0.6 graph + 0.4 vector by default"""
    scores = CandidateScores.blend(0.5, 0.75)
    assert scores.hybrid_score == pytest.approx(0.6 * 0.5 + 0.4 * 0.75)
    assert scores.confidence_score == pytest.approx((0.5 + 0.75) / 2)


@pytest.mark.parametrize("graph,vector", [(-0.2, 0.4), (1.4, 0.9), (0.3, 2.0), (0.0, 0.0)])
def test_blend_keeps_scores_in_unit_interval(graph, vector):
    scores = CandidateScores.blend(graph, vector)
    for value in (scores.graph_score, scores.vector_score, scores.hybrid_score, scores.confidence_score):
        assert 0.0 <= value <= 1.0
    assert scores.hybrid_score == pytest.approx(0.6 * scores.graph_score + 0.4 * scores.vector_score)


def test_blend_honours_configured_weights():
    scores = CandidateScores.blend(1.0, 0.0, graph_weight=0.3, vector_weight=0.7)
    assert scores.hybrid_score == pytest.approx(0.3)


def test_mean_edge_weight_is_zero_without_edges():
    """No matched edges yields 0.0, never NaN"""
    value = mean_edge_weight({})
    assert value == 0.0
    assert not math.isnan(value)
    assert mean_edge_weight({"technology": 0.9, "gadgets": 0.7}) == pytest.approx(0.8)


def test_records_are_frozen():
    request = GiftRequest(query="q", user_id="u", session_id="s")
    with pytest.raises(dataclasses.FrozenInstanceError):
        request.query = "other"


def test_check_result_effective_score_defaults():
    assert CheckResult(name="quality", passed=True).effective_score() == 1.0
    assert CheckResult(name="quality", passed=False).effective_score() == 0.0
    assert CheckResult(name="relevance", passed=True, score=0.7).effective_score() == 0.7


def test_verdict_collects_reasons():
    checks = (
        CheckResult(name="budget", passed=True, score=1.0),
        CheckResult(name="relevance", passed=False, score=0.4, issues=("too low",)),
    )
    verdict = ValidationVerdict.from_checks("p-1", checks)
    assert verdict.passed is False
    assert verdict.overall_score == pytest.approx(0.7)
    assert verdict.pass_reasons == ("Strong budget score",)
    assert verdict.fail_reasons == ("Failed relevance: too low",)
    assert verdict.check("relevance").score == 0.4


def test_to_jsonable_drops_previous_links():
    facts = ListenerFacts(
        previous=GiftRequest(query="q", user_id="u", session_id="s"),
        budget=Budget(min=0, max=50),
        interests=("books",),
    )
    payload = to_jsonable(facts)
    assert "previous" not in payload
    assert payload["interests"] == ["books"]
    assert isinstance(payload["extracted_at"], str)


def test_stored_recommendation_lookup():
    stored = StoredRecommendation(
        recommendation_id="rec-1",
        user_id="u",
        session_id="s",
        query="q",
        items=(StoredItem(product_id="a", rank=1, confidence=0.9),),
    )
    assert stored.product_ids == frozenset({"a"})
    assert stored.item("a").rank == 1
    assert stored.item("missing") is None
