"""
End-to-end tests for the recommendation pipeline and feedback loop
"""
import pytest

from conftest import FakeEmbedder, FakeReasoning, TECH_DAD_QUERY, listener_reply
from gift_concierge.errors import ExtractionFailure, OrchestratorFailure, ReasoningError, RetrievalError
from gift_concierge.orchestrator import STAGE_NAMES
from gift_concierge.service import parse_explicit_feedback, parse_user_actions


def _recommend(service, query=TECH_DAD_QUERY, user_id="user-1"):
    return service.recommend(query=query, user_id=user_id, session_id="s-1")


def test_tech_dad_scenario(make_service):
    reasoning = FakeReasoning()
    result = _recommend(make_service(reasoning))

    ids = [item["product"]["id"] for item in result["recommendations"]]
    assert ids == ["p-drone", "p-headphones", "p-charger"]
    assert result["totalRecommendations"] == 3
    assert [item["rank"] for item in result["recommendations"]] == [1, 2, 3]
    assert all(item["product"]["price"] <= 100 for item in result["recommendations"])

    drone, _, charger = result["recommendations"]
    assert drone["tags"] == ["Best Match", "Highly Recommended", "Personalized"]
    assert "Budget Friendly" in charger["tags"]
    assert "technology" in drone["reasoning"]
    assert result["intro"] == "Here are a few ideas your dad will love."
    assert result["recommendation_id"].startswith("rec_")

    assert reasoning.names()[:3] == ["listener", "relationship", "meaning"]
    assert reasoning.names().count("story") == 3
    assert reasoning.names()[-1] == "framing"


def test_trace_and_timings_cover_every_stage(make_service):
    result = _recommend(make_service())

    assert set(result["trace"]) == set(STAGE_NAMES) | {"request"}
    assert list(result["timings"]) == list(STAGE_NAMES)
    assert all(ms >= 0 for ms in result["timings"].values())
    stats = result["execution_stats"]
    assert stats["slowest_stage"]["name"] in STAGE_NAMES
    assert stats["total_ms"] >= stats["slowest_stage"]["ms"]

    trace = result["trace"]
    assert trace["request"]["query"] == TECH_DAD_QUERY
    assert trace["listener"]["confidence"] == pytest.approx(0.61)
    assert trace["constraints"]["validation_status"] == "all_valid"
    assert trace["validator"]["summary"]["passed"] == 3
    assert {r["candidate"]["product"]["id"] for r in trace["validator"]["rejected"]} == {"p-kit", "p-mug"}


def test_listener_timeout_still_recommends(make_service):
    reasoning = FakeReasoning({"listener": ReasoningError("timeout", "slow model")})
    result = _recommend(make_service(reasoning))

    listener = result["trace"]["listener"]
    assert listener["degraded"] is True
    assert listener["confidence"] == pytest.approx(0.1)
    assert listener["budget"]["max"] == 1000
    assert result["totalRecommendations"] > 0
    assert result["recommendations"][0]["product"]["id"] == "p-watch"


def test_zero_candidates_produces_empty_presentation(make_service):
    reply = listener_reply()
    reply["budget"] = {"min": 0, "max": 10}
    reasoning = FakeReasoning({"listener": reply})
    result = _recommend(make_service(reasoning))

    assert result["recommendations"] == []
    assert result["totalRecommendations"] == 0
    assert "quality checks" in result["intro"]
    assert "story" not in reasoning.names()
    assert "framing" not in reasoning.names()


def test_relationship_failure_aborts_with_stage(make_service, db):
    reasoning = FakeReasoning({"relationship": ReasoningError("upstream", "503")})
    with pytest.raises(OrchestratorFailure) as excinfo:
        _recommend(make_service(reasoning))

    assert excinfo.value.stage == "relationship"
    assert isinstance(excinfo.value.cause, ExtractionFailure)
    assert "meaning" not in reasoning.names()
    assert db.stats()["recommendation_count"] == 0


def test_retrieval_failure_aborts_with_stage(make_service):
    embedder = FakeEmbedder(error=RuntimeError("embedding endpoint down"))
    with pytest.raises(OrchestratorFailure) as excinfo:
        _recommend(make_service(embedder=embedder))
    assert excinfo.value.stage == "explorer"
    assert isinstance(excinfo.value.cause, RetrievalError)


def test_empty_query_is_rejected(make_service):
    with pytest.raises(ValueError):
        _recommend(make_service(), query="   ")


def test_recommendation_is_persisted(make_service):
    service = make_service()
    result = _recommend(service)
    stored = service.get_recommendation(result["recommendation_id"])

    assert stored["user_id"] == "user-1"
    assert [item["product_id"] for item in stored["items"]] == ["p-drone", "p-headphones", "p-charger"]
    assert stored["trace"]["presenter"]["intro"] == result["intro"]
    with pytest.raises(KeyError):
        service.get_recommendation("rec_missing")


def test_feedback_updates_graph(make_service, db):
    service = make_service()
    result = _recommend(service)

    feedback = service.submit_feedback(
        recommendation_id=result["recommendation_id"],
        user_actions={"liked": ["p-drone"], "dismissed": ["p-charger"], "purchased": ["p-mug"]},
        explicit_feedback={"ratings": {"p-drone": 5}},
    )

    assert feedback["updatesApplied"] == 4
    assert db.edge_weight("p-drone", "technology") == pytest.approx(0.99)
    assert db.edge_weight("p-drone", "gadgets") == pytest.approx(0.88)
    assert db.edge_weight("p-charger", "technology") == pytest.approx(0.675)
    assert feedback["rejected"] == [{"product_id": "p-mug", "reason": "purchased: not part of recommendation"}]
    assert feedback["outcomes"]["successfulRecommendations"] == 1
    assert feedback["outcomes"]["totalRecommendations"] == 3
    assert "explicit_rating" in {pattern["pattern_type"] for pattern in feedback["patterns"]}


def test_feedback_on_unknown_recommendation(make_service):
    with pytest.raises(KeyError):
        make_service().submit_feedback(recommendation_id="rec_nope", user_actions={"liked": ["p-drone"]})


def test_memory_recalls_previous_feedback(make_service):
    service = make_service()
    first = _recommend(service)
    service.submit_feedback(recommendation_id=first["recommendation_id"], user_actions={"liked": ["p-drone"]})

    second = _recommend(service)
    memory = second["trace"]["memory"]

    assert memory["past_conversations"][0]["recommendation_id"] == first["recommendation_id"]
    assert memory["past_conversations"][0]["outcome"] == "liked"
    patterns = [p["pattern"] for p in memory["recognized_patterns"]]
    assert any(p.startswith("Repeat recipient") for p in patterns)
    assert any(p.startswith("Favorite occasion") for p in patterns)
    assert memory["user_preferences"]["preferred_vendors"] == ["SkyTech"]


def test_memory_is_scoped_per_user(make_service):
    service = make_service()
    _recommend(service, user_id="alice")
    result = _recommend(service, user_id="bob")
    assert result["trace"]["memory"]["past_conversations"] == []


def test_parse_user_actions():
    actions = parse_user_actions({"liked": ["a", " "], "viewed": "b"})
    assert actions.liked == ("a",)
    assert actions.viewed == ("b",)
    with pytest.raises(ValueError):
        parse_user_actions({"loved": ["a"]})


@pytest.mark.parametrize("rating", [-1, 6])
def test_parse_explicit_feedback_rejects_out_of_range(rating):
    with pytest.raises(ValueError):
        parse_explicit_feedback({"ratings": {"a": rating}})


def test_stats_report_configuration(make_service):
    stats = make_service().stats()
    assert stats["product_count"] == 6
    assert stats["graph_weight"] == 0.6
    assert "ai_enabled" in stats
