"""Meaning stage: decides what would make the gift resonate and how to search for it."""

from __future__ import annotations

import logging

from gift_concierge.context import (
    ConstraintSet,
    DiscoveryHints,
    MeaningFramework,
    PersonalRelevance,
    ResonanceCriteria,
)
from gift_concierge.errors import ExtractionFailure, ReasoningError
from gift_concierge.ports import PromptSpec, ReasoningPort
from gift_concierge.schemas import DiscoveryHintsReply, MeaningReply, parse_reply


_LOGGER = logging.getLogger(__name__)

_INSTRUCTION = """
You are an expert at understanding what makes gifts meaningful. From the context decide which gift archetype
would be most meaningful (practical_luxury, experience, sentimental, aspirational...), the emotional message the
gift should communicate, the core values it should align with and what would personally resonate with the recipient.
Also propose discovery hints: short semantic search queries, interest pathways (single lowercase interest names)
and archetype filters.
"""

_RESPONSE_SHAPE = """
{
  "meaningFramework": {
    "giftArchetype": "...",
    "emotionalMessage": "...",
    "coreValues": ["..."],
    "personalRelevance": {"connectsToInterests": ["..."], "addressesNeeds": ["..."], "celebratesPersonality": "..."}
  },
  "resonanceCriteria": {
    "functionalNeeds": ["..."], "aspirationalNeeds": ["..."], "emotionalNeeds": ["..."], "socialNeeds": ["..."]
  },
  "discoveryHints": {"semanticQueries": ["..."], "interestPathways": ["..."], "archetypeFilters": ["..."]}
}
"""


def derive_hints(
    reply: DiscoveryHintsReply,
    interests: tuple[str, ...],
    recipient_label: str,
    archetype: str,
) -> DiscoveryHints:
    """Model hints, topped up from the stated interests where the model left gaps."""
    pathways = [value.strip().lower() for value in reply.interest_pathways]
    queries = list(reply.semantic_queries)
    filters = list(reply.archetype_filters)

    if interests:
        if not pathways:
            pathways = [interest.strip().lower() for interest in interests]
        if not queries:
            queries = [f"{interest} gift for {recipient_label}" for interest in interests]
        if not filters:
            filters = [archetype]

    return DiscoveryHints(
        semantic_queries=tuple(queries),
        interest_pathways=tuple(dict.fromkeys(pathways)),
        archetype_filters=tuple(filters),
    )


class Meaning:
    def __init__(self, reasoning: ReasoningPort) -> None:
        self.reasoning = reasoning

    def run(self, constraints: ConstraintSet) -> MeaningFramework:
        facts = constraints.facts
        relationship = constraints.relationship
        recipient = facts.recipient
        spec = PromptSpec(
            name="meaning",
            instruction=_INSTRUCTION,
            response_shape=_RESPONSE_SHAPE,
            payload={
                "recipient": {
                    "name": recipient.name if recipient else None,
                    "relationshipType": relationship.relationship_type,
                    "age": recipient.age if recipient else None,
                },
                "interests": list(facts.interests),
                "values": list(facts.values),
                "occasion": facts.occasion.name if facts.occasion else None,
                "relationship": {
                    "closeness": relationship.closeness,
                    "formality": relationship.formality,
                    "riskTolerance": relationship.risk_tolerance,
                    "recommendedArchetypes": list(relationship.recommended_archetypes),
                    "avoidArchetypes": list(relationship.avoid_archetypes),
                },
            },
            temperature=0.4,
        )
        try:
            reply = parse_reply(MeaningReply, self.reasoning.complete(spec))
        except ReasoningError as exc:
            raise ExtractionFailure("meaning", str(exc)) from exc

        framework = reply.meaning_framework
        resonance = reply.resonance_criteria
        archetype = framework.gift_archetype.strip().lower().replace(" ", "_")
        hints = derive_hints(
            reply.discovery_hints,
            facts.interests,
            recipient.label() if recipient else relationship.relationship_type,
            archetype,
        )
        if reply.discovery_hints.semantic_queries == [] and facts.interests:
            _LOGGER.info("Meaning derived discovery hints from %d stated interest(s).", len(facts.interests))

        return MeaningFramework(
            previous=constraints,
            gift_archetype=archetype,
            emotional_message=framework.emotional_message.strip(),
            core_values=tuple(framework.core_values),
            personal_relevance=PersonalRelevance(
                connects_to_interests=tuple(framework.personal_relevance.connects_to_interests),
                addresses_needs=tuple(framework.personal_relevance.addresses_needs),
                celebrates_personality=framework.personal_relevance.celebrates_personality,
            ),
            resonance=ResonanceCriteria(
                functional=tuple(resonance.functional_needs),
                aspirational=tuple(resonance.aspirational_needs),
                emotional=tuple(resonance.emotional_needs),
                social=tuple(resonance.social_needs),
            ),
            discovery_hints=hints,
        )
