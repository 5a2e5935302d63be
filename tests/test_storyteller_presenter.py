"""
Tests for the Storyteller and Presenter stages
"""
import pytest

from conftest import FakeReasoning, make_facts, make_relationship
from gift_concierge.constraints import Constraints
from gift_concierge.context import (
    Candidate,
    CandidateScores,
    ExplorationResult,
    MatchReasons,
    MeaningFramework,
    Product,
    Story,
    StoryElements,
)
from gift_concierge.errors import ReasoningError
from gift_concierge.presenter import Presenter, fallback_framing, tags_for
from gift_concierge.storyteller import Storyteller, personalization_level
from gift_concierge.validator import Validator


def _candidate(pid, price=40.0, hybrid=0.8, vector=0.8, proof=0):
    return Candidate(
        product=Product(
            id=pid,
            title=f"Gift {pid}",
            price=price,
            vendor="V",
            description="A well made thing.",
            image_url="https://img.example/x.jpg",
        ),
        scores=CandidateScores(graph_score=hybrid, vector_score=vector, hybrid_score=hybrid, confidence_score=hybrid),
        match_reasons=MatchReasons(matched_interests=("technology",), social_proof_count=proof),
    )


def _validation(candidates, cfg):
    constraints = Constraints().run(make_relationship(make_facts()))
    meaning = MeaningFramework(previous=constraints, gift_archetype="practical_luxury", emotional_message="")
    return Validator(cfg).run(ExplorationResult(previous=meaning, candidates=tuple(candidates)))


def _story(pid, level="low"):
    return Story(product_id=pid, reasoning="r", story_elements=StoryElements(), tone="warm", personalization_level=level)


@pytest.mark.parametrize(
    "text,level",
    [
        ("Perfect for his love of technology and gadgets.", "high"),
        ("A great pick for anyone into TECHNOLOGY.", "medium"),
        ("A lovely gift.", "low"),
    ],
)
def test_personalization_level_counts_interest_mentions(text, level):
    assert personalization_level(text, ("technology", "gadgets")) == level


def test_storyteller_writes_one_story_per_accepted_candidate(cfg):
    validation = _validation([_candidate("a"), _candidate("b")], cfg)
    reasoning = FakeReasoning()
    stories = Storyteller(reasoning, cfg).run(validation)

    assert [story.product_id for story in stories.stories] == ["a", "b"]
    assert all(story.personalization_level == "high" for story in stories.stories)
    assert all(not story.fallback for story in stories.stories)
    assert reasoning.names().count("story") == 2
    assert stories.avg_story_length > 0


def test_failed_story_uses_template_without_losing_others(cfg):
    def story_route(spec):
        if spec.payload["product"]["title"] == "Gift b":
            raise ReasoningError("timeout", "slow")
        return {"reasoning": "Ideal for a technology lover.", "tone": "warm"}

    validation = _validation([_candidate("a"), _candidate("b"), _candidate("c")], cfg)
    stories = Storyteller(FakeReasoning({"story": story_route}), cfg).run(validation)

    assert len(stories.stories) == 3
    by_id = {story.product_id: story for story in stories.stories}
    assert by_id["b"].fallback is True
    assert "Gift b" in by_id["b"].reasoning
    assert "birthday" in by_id["b"].reasoning
    assert by_id["a"].fallback is False
    assert by_id["a"].personalization_level == "medium"


def test_storyteller_with_no_candidates_makes_no_calls(cfg):
    reasoning = FakeReasoning()
    stories = Storyteller(reasoning, cfg).run(_validation([], cfg))
    assert stories.stories == ()
    assert stories.avg_story_length == 0.0
    assert reasoning.calls == []


def test_tags(cfg):
    top = _candidate("a", price=35.0, hybrid=0.9, proof=12)
    assert tags_for(top, 1, _story("a", "high"), cfg) == (
        "Best Match",
        "Budget Friendly",
        "Highly Recommended",
        "Popular Choice",
        "Personalized",
    )
    plain = _candidate("b", price=50.0, hybrid=0.85, proof=10)
    assert tags_for(plain, 2, _story("b", "medium"), cfg) == ()
    assert tags_for(plain, 2, None, cfg) == ()


@pytest.mark.parametrize("count", [0, 1, 3, 5, 7])
def test_ranks_are_contiguous_and_capped(cfg, count):
    candidates = [_candidate(f"p{i}", hybrid=0.7 + i * 0.02) for i in range(count)]
    validation = _validation(candidates, cfg)
    stories = Storyteller(FakeReasoning(), cfg).run(validation)
    presentation = Presenter(FakeReasoning(), cfg).run(stories)

    expected = min(count, cfg.max_recommendations)
    assert presentation.total_recommendations == expected
    assert [rec.rank for rec in presentation.recommendations] == list(range(1, expected + 1))
    scores = [rec.confidence for rec in presentation.recommendations]
    assert scores == sorted(scores, reverse=True)
    if expected:
        assert presentation.recommendations[0].tags[0] == "Best Match"


def test_presenter_ties_prefer_cheaper_product(cfg):
    validation = _validation([_candidate("dear", price=90.0), _candidate("cheap", price=20.0)], cfg)
    stories = Storyteller(FakeReasoning(), cfg).run(validation)
    presentation = Presenter(FakeReasoning(), cfg).run(stories)
    assert [rec.product.id for rec in presentation.recommendations] == ["cheap", "dear"]


def test_presenter_uses_model_framing(cfg):
    validation = _validation([_candidate("a")], cfg)
    stories = Storyteller(FakeReasoning(), cfg).run(validation)
    presentation = Presenter(FakeReasoning(), cfg).run(stories)
    assert presentation.intro == "Here are a few ideas your dad will love."
    assert presentation.outro == "Want me to dig deeper?"
    assert presentation.recommendations[0].reasoning.startswith("The Gift a")


def test_framing_failure_falls_back_to_template(cfg):
    validation = _validation([_candidate("a"), _candidate("b")], cfg)
    stories = Storyteller(FakeReasoning(), cfg).run(validation)
    reasoning = FakeReasoning({"framing": ReasoningError("malformed", "bad json")})
    presentation = Presenter(reasoning, cfg).run(stories)

    assert (presentation.intro, presentation.outro) == fallback_framing("dad", "birthday", 2)
    assert presentation.total_recommendations == 2


def test_zero_candidates_gets_template_intro_without_model_call(cfg):
    stories = Storyteller(FakeReasoning(), cfg).run(_validation([], cfg))
    reasoning = FakeReasoning()
    presentation = Presenter(reasoning, cfg).run(stories)

    assert presentation.recommendations == ()
    assert presentation.total_recommendations == 0
    assert "quality checks" in presentation.intro
    assert presentation.outro
    assert reasoning.calls == []
