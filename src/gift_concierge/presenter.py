"""Presenter stage: ranks, tags and frames the final recommendations."""

from __future__ import annotations

import logging

from gift_concierge.config import PipelineConfig
from gift_concierge.context import Candidate, FinalRecommendation, Presentation, Story, StorySet
from gift_concierge.errors import ReasoningError
from gift_concierge.ports import PromptSpec, ReasoningPort
from gift_concierge.schemas import FramingReply, parse_reply


_LOGGER = logging.getLogger(__name__)

_INSTRUCTION = """
You are a helpful friend presenting gift recommendations. Write a warm, conversational introduction
(2-3 sentences: acknowledge what they are looking for and set context) and a closing (1-2 sentences:
invite follow-up questions and offer to refine or explore more).
"""

_RESPONSE_SHAPE = """
{"intro": "...", "outro": "..."}
"""


def tags_for(candidate: Candidate, rank: int, story: Story | None, cfg: PipelineConfig) -> tuple[str, ...]:
    tags: list[str] = []
    if rank == 1:
        tags.append("Best Match")
    if candidate.product.price < cfg.budget_friendly_price:
        tags.append("Budget Friendly")
    if candidate.scores.hybrid_score > cfg.highly_recommended_score:
        tags.append("Highly Recommended")
    if candidate.match_reasons.social_proof_count > cfg.popular_choice_min_proof:
        tags.append("Popular Choice")
    if story is not None and story.personalization_level == "high":
        tags.append("Personalized")
    return tuple(tags)


def fallback_framing(recipient_label: str, occasion: str | None, count: int) -> tuple[str, str]:
    occasion_text = f" for {occasion}" if occasion else ""
    if count == 0:
        intro = (
            f"I looked for gifts{occasion_text} for {recipient_label}, "
            "but nothing I found cleared all of my quality checks."
        )
        outro = "Try widening the budget or telling me a bit more about what they enjoy."
    else:
        intro = f"Here are {count} gift idea{'s' if count != 1 else ''}{occasion_text} picked with {recipient_label} in mind."
        outro = "Want me to refine these or explore a different direction?"
    return intro, outro


class Presenter:
    def __init__(self, reasoning: ReasoningPort, cfg: PipelineConfig) -> None:
        self.reasoning = reasoning
        self.cfg = cfg

    def _framing(self, stories: StorySet, count: int) -> tuple[str, str]:
        facts = stories.facts
        recipient_label = facts.recipient.label() if facts.recipient else "them"
        occasion = facts.occasion.name if facts.occasion else None
        if count == 0:
            return fallback_framing(recipient_label, occasion, 0)

        spec = PromptSpec(
            name="framing",
            instruction=_INSTRUCTION,
            response_shape=_RESPONSE_SHAPE,
            payload={"recipient": recipient_label, "occasion": occasion, "recommendationCount": count},
            temperature=0.7,
        )
        try:
            reply = parse_reply(FramingReply, self.reasoning.complete(spec))
        except ReasoningError as exc:
            _LOGGER.warning("Presenter framing fell back to a template (%s).", exc.kind)
            return fallback_framing(recipient_label, occasion, count)
        return reply.intro.strip(), reply.outro.strip()

    def run(self, stories: StorySet) -> Presentation:
        accepted = sorted(
            stories.previous.accepted,
            key=lambda candidate: (-candidate.scores.hybrid_score, -candidate.scores.vector_score, candidate.product.price),
        )
        top = accepted[: self.cfg.max_recommendations]

        recommendations: list[FinalRecommendation] = []
        for rank, candidate in enumerate(top, start=1):
            story = stories.story_for(candidate.product.id)
            recommendations.append(
                FinalRecommendation(
                    rank=rank,
                    product=candidate.product,
                    reasoning=story.reasoning if story else "",
                    confidence=candidate.scores.confidence_score,
                    tags=tags_for(candidate, rank, story, self.cfg),
                    matched_interests=candidate.match_reasons.matched_interests,
                )
            )

        intro, outro = self._framing(stories, len(recommendations))
        return Presentation(
            previous=stories,
            intro=intro,
            outro=outro,
            recommendations=tuple(recommendations),
        )
