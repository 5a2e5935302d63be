"""Relationship stage: calibrates budget and gift archetypes to the relationship."""

from __future__ import annotations

import logging

from gift_concierge.config import PipelineConfig
from gift_concierge.context import Budget, MemorySnapshot, RelationshipCalibration
from gift_concierge.errors import ExtractionFailure, ReasoningError
from gift_concierge.ports import PromptSpec, ReasoningPort
from gift_concierge.schemas import PriceRangeReply, RelationshipReply, enum_or_none, parse_reply


_LOGGER = logging.getLogger(__name__)

_INSTRUCTION = """
Analyze the relationship dynamics for gift-giving. Consider the relationship type and closeness,
the appropriate price range for this relationship, the formality level, how personal versus generic
the gift should be, and the risk tolerance (safe choices versus bold or unique ones).
"""

_RESPONSE_SHAPE = """
{
  "relationshipAnalysis": {
    "type": "...",
    "closeness": "intimate|close|casual|professional",
    "duration": "new|established|longtime",
    "socialNorms": {
      "appropriatePriceRange": {"min": 0, "max": 0},
      "formalityLevel": "formal|casual|playful",
      "personalVsGeneric": "highly_personal|moderately_personal|generic_ok"
    },
    "riskTolerance": "safe|moderate|bold"
  },
  "calibration": {
    "adjustedBudget": {"min": 0, "max": 0},
    "recommendedArchetypes": ["..."],
    "avoidArchetypes": ["..."],
    "personalizationLevel": "high|medium|low"
  }
}
"""

_CLOSENESS = {"intimate", "close", "casual", "professional"}
_DURATION = {"new", "established", "longtime"}
_FORMALITY = {"formal", "casual", "playful"}
_PERSONAL = {"highly_personal", "moderately_personal", "generic_ok"}
_RISK = {"safe", "moderate", "bold"}
_PERSONALIZATION = {"high", "medium", "low"}


def calibrate_budget(
    proposed: PriceRangeReply | None,
    fallback: Budget,
    cfg: PipelineConfig,
) -> Budget | None:
    """Clamps a proposed range into the platform bounds.

    Bounds are clamped independently and never reordered, so a reversed
    proposal stays reversed and is reported downstream as impossible. A
    ceiling at or below zero counts as missing and falls back.
    """
    if proposed is None:
        return None
    proposed_max = proposed.max if proposed.max is not None and proposed.max > 0 else None
    if proposed_max is None and not proposed.min:
        return None

    def clamp(value: float) -> float:
        return max(cfg.platform_budget_min, min(cfg.platform_budget_max, value))

    low = clamp(proposed.min) if proposed.min is not None else clamp(fallback.min)
    high = clamp(proposed_max) if proposed_max is not None else clamp(fallback.max)
    return Budget(min=low, max=high, flexibility=fallback.flexibility)


class Relationship:
    def __init__(self, reasoning: ReasoningPort, cfg: PipelineConfig) -> None:
        self.reasoning = reasoning
        self.cfg = cfg

    def run(self, memory: MemorySnapshot) -> RelationshipCalibration:
        facts = memory.facts
        recipient = facts.recipient
        spec = PromptSpec(
            name="relationship",
            instruction=_INSTRUCTION,
            response_shape=_RESPONSE_SHAPE,
            payload={
                "recipient": {
                    "name": recipient.name if recipient else None,
                    "relationshipType": recipient.relationship_type if recipient else None,
                    "age": recipient.age if recipient else None,
                },
                "occasion": facts.occasion.name if facts.occasion else None,
                "budget": {"min": facts.budget.min, "max": facts.budget.max},
                "knownPatterns": [pattern.pattern for pattern in memory.recognized_patterns],
            },
            temperature=0.3,
        )
        try:
            reply = parse_reply(RelationshipReply, self.reasoning.complete(spec))
        except ReasoningError as exc:
            raise ExtractionFailure("relationship", str(exc)) from exc

        analysis = reply.relationship_analysis
        norms = analysis.social_norms
        calibration = reply.calibration

        relationship_type = (
            (analysis.type or "").strip().lower()
            or (recipient.relationship_type if recipient and recipient.relationship_type else "")
            or "unknown"
        )
        price_range = None
        if norms.appropriate_price_range is not None:
            price_range = calibrate_budget(norms.appropriate_price_range, facts.budget, self.cfg)

        adjusted = calibrate_budget(calibration.adjusted_budget, facts.budget, self.cfg)
        if adjusted is not None:
            _LOGGER.info(
                "Relationship calibrated budget %.2f-%.2f (stated %.2f-%.2f).",
                adjusted.min,
                adjusted.max,
                facts.budget.min,
                facts.budget.max,
            )

        return RelationshipCalibration(
            previous=memory,
            relationship_type=relationship_type,
            closeness=enum_or_none(analysis.closeness, _CLOSENESS) or "casual",
            formality=enum_or_none(norms.formality_level, _FORMALITY) or "casual",
            risk_tolerance=enum_or_none(analysis.risk_tolerance, _RISK) or "moderate",
            duration=enum_or_none(analysis.duration, _DURATION),
            personal_vs_generic=enum_or_none(norms.personal_vs_generic, _PERSONAL) or "moderately_personal",
            appropriate_price_range=price_range,
            adjusted_budget=adjusted,
            recommended_archetypes=tuple(calibration.recommended_archetypes),
            avoid_archetypes=tuple(calibration.avoid_archetypes),
            personalization_level=enum_or_none(calibration.personalization_level, _PERSONALIZATION) or "medium",
        )
