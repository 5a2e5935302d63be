"""Storyteller stage: one short personalized narrative per accepted candidate."""

from __future__ import annotations

import logging
from typing import Any, Sequence

from gift_concierge.concurrency import run_batch
from gift_concierge.config import PipelineConfig
from gift_concierge.context import Candidate, Story, StoryElements, StorySet, ValidationOutcome
from gift_concierge.ports import PromptSpec, ReasoningPort
from gift_concierge.schemas import StoryReply, parse_reply


_LOGGER = logging.getLogger(__name__)

_INSTRUCTION = """
You are a thoughtful friend helping someone find the perfect gift. Write a personal 2-3 sentence explanation
of why this product would be a great gift. Write like you are talking to a friend, connect the gift to the
recipient's interests and personality, explain why it is meaningful rather than what it is, and avoid marketing speak.
"""

_RESPONSE_SHAPE = """
{
  "reasoning": "...",
  "storyElements": {"connectionToRecipient": "...", "emotionalResonance": "...", "practicalValue": "..."},
  "tone": "warm|enthusiastic|thoughtful|practical"
}
"""


def personalization_level(reasoning: str, interests: Sequence[str]) -> str:
    lowered = reasoning.lower()
    mentioned = sum(1 for interest in interests if interest.strip() and interest.strip().lower() in lowered)
    if mentioned >= 2:
        return "high"
    if mentioned == 1:
        return "medium"
    return "low"


def fallback_story(candidate: Candidate, recipient_label: str, occasion: str | None, interests: Sequence[str]) -> Story:
    occasion_text = f" for {occasion}" if occasion else ""
    reasoning = f"{candidate.product.title} is a thoughtful pick{occasion_text} that {recipient_label} can enjoy."
    return Story(
        product_id=candidate.product.id,
        reasoning=reasoning,
        story_elements=StoryElements(),
        tone="warm",
        personalization_level=personalization_level(reasoning, interests),
        fallback=True,
    )


class Storyteller:
    def __init__(self, reasoning: ReasoningPort, cfg: PipelineConfig) -> None:
        self.reasoning = reasoning
        self.cfg = cfg

    def _spec(self, candidate: Candidate, validation: ValidationOutcome) -> PromptSpec:
        facts = validation.facts
        meaning = validation.meaning
        product = candidate.product
        payload: dict[str, Any] = {
            "product": {
                "title": product.title,
                "description": product.description,
                "price": product.price,
                "vendor": product.vendor,
            },
            "recipient": facts.recipient.label() if facts.recipient else None,
            "interests": list(facts.interests),
            "meaningFramework": {
                "giftArchetype": meaning.gift_archetype,
                "emotionalMessage": meaning.emotional_message,
                "coreValues": list(meaning.core_values),
            },
            "relationship": meaning.relationship.relationship_type,
            "matchedInterests": list(candidate.match_reasons.matched_interests),
        }
        return PromptSpec(
            name="story",
            instruction=_INSTRUCTION,
            response_shape=_RESPONSE_SHAPE,
            payload=payload,
            temperature=0.7,
        )

    def run(self, validation: ValidationOutcome) -> StorySet:
        facts = validation.facts
        interests = facts.interests
        recipient_label = facts.recipient.label() if facts.recipient else "them"
        occasion = facts.occasion.name if facts.occasion else None
        candidates = validation.accepted

        specs = [self._spec(candidate, validation) for candidate in candidates]
        # Every member is awaited; per-member timeouts come from the reasoning adapter.
        results = run_batch(
            "Story generation",
            [lambda spec=spec: parse_reply(StoryReply, self.reasoning.complete(spec)) for spec in specs],
            self.cfg.reasoning_timeout_seconds * 1.5,
        )

        stories: list[Story] = []
        for candidate, result in zip(candidates, results):
            if isinstance(result, Exception):
                _LOGGER.warning("Story for product %s fell back to a template: %s", candidate.product.id, result)
                stories.append(fallback_story(candidate, recipient_label, occasion, interests))
                continue
            reasoning = result.reasoning.strip()
            elements = result.story_elements
            stories.append(
                Story(
                    product_id=candidate.product.id,
                    reasoning=reasoning,
                    story_elements=StoryElements(
                        connection_to_recipient=elements.connection_to_recipient,
                        emotional_resonance=elements.emotional_resonance,
                        practical_value=elements.practical_value,
                    ),
                    tone=result.tone or "warm",
                    personalization_level=personalization_level(reasoning, interests),
                )
            )

        avg_length = sum(len(story.reasoning) for story in stories) / len(stories) if stories else 0.0
        return StorySet(previous=validation, stories=tuple(stories), avg_story_length=avg_length)
