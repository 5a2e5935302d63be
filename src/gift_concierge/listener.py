"""Listener stage: turns the raw gift request into structured facts."""

from __future__ import annotations

import logging

from gift_concierge.config import PipelineConfig
from gift_concierge.context import Budget, GiftRequest, ListenerFacts, Occasion, Recipient, clamp01
from gift_concierge.errors import ReasoningError
from gift_concierge.ports import PromptSpec, ReasoningPort
from gift_concierge.schemas import BudgetReply, ListenerReply, RecipientReply, parse_reply


_LOGGER = logging.getLogger(__name__)

_INSTRUCTION = """
You are an expert at understanding gift-giving requests. Extract structured information from the shopper's request:
recipient details (name, relationship, age, gender), occasion (name, ISO date, urgency),
budget (min, max, flexibility), interests explicitly mentioned, values (eco-friendly, local, handmade...),
hard constraints ("must be digital", "no alcohol"...), emotional tone, confidence level and gift significance.
Only include fields that are explicitly mentioned or can be confidently inferred.
"""

_RESPONSE_SHAPE = """
{
  "recipient": {"name": "...", "relationshipType": "...", "age": 0, "gender": "..."},
  "occasion": {"name": "...", "date": "YYYY-MM-DD", "urgency": "immediate|planned|future"},
  "budget": {"min": 0, "max": 0, "flexibility": "strict|flexible|unspecified"},
  "interests": ["..."],
  "values": ["..."],
  "constraints": ["..."],
  "emotionalTone": "excited|stressed|casual|formal|urgent",
  "confidenceLevel": "certain|exploring|confused",
  "giftSignificance": "major|moderate|small_gesture"
}
"""


def completeness_confidence(reply: ListenerReply) -> float:
    """Weighted completeness of the extraction, never the model's own claim."""
    score = 0.0

    recipient = reply.recipient
    if recipient is not None and _recipient_present(recipient):
        score += 10
        if recipient.relationship_type:
            score += 10
        if recipient.age or recipient.gender:
            score += 10

    budget = reply.budget
    if budget is not None and (budget.min is not None or budget.max is not None):
        score += 10
        if (budget.min or 0) > 0 and (budget.max or 0) > 0:
            score += 10

    if reply.interests:
        score += min(25, len(reply.interests) * 8)

    if reply.occasion is not None and reply.occasion.name:
        score += 15

    if reply.values:
        score += 5
    if reply.constraints:
        score += 5

    return clamp01(score / 100.0)


def _recipient_present(recipient: RecipientReply) -> bool:
    return any([recipient.name, recipient.relationship_type, recipient.age, recipient.gender])


def normalize_budget(reply: BudgetReply | None, cfg: PipelineConfig) -> tuple[Budget, bool]:
    """Returns the normalized budget and whether the shopper stated one.

    Bounds are only reordered when both were stated. A lone floor above the
    default ceiling opens the range up to the platform maximum.
    """
    if reply is None or (reply.min is None and reply.max is None):
        return Budget(min=cfg.default_budget_min, max=cfg.default_budget_max), False

    low = max(0.0, reply.min) if reply.min is not None else cfg.default_budget_min
    if reply.max is None:
        high = cfg.default_budget_max if low <= cfg.default_budget_max else max(low, cfg.platform_budget_max)
    else:
        high = max(0.0, reply.max)
        if reply.min is not None and low > high:
            low, high = high, low
    return Budget(min=low, max=high, flexibility=reply.flexibility or "unspecified"), True


class Listener:
    def __init__(self, reasoning: ReasoningPort, cfg: PipelineConfig) -> None:
        self.reasoning = reasoning
        self.cfg = cfg

    def fallback(self, request: GiftRequest) -> ListenerFacts:
        return ListenerFacts(
            previous=request,
            budget=Budget(min=self.cfg.default_budget_min, max=self.cfg.default_budget_max),
            confidence=self.cfg.fallback_confidence,
            degraded=True,
        )

    def run(self, request: GiftRequest) -> ListenerFacts:
        spec = PromptSpec(
            name="listener",
            instruction=_INSTRUCTION,
            response_shape=_RESPONSE_SHAPE,
            payload={"query": request.query},
            temperature=0.3,
        )
        try:
            reply = parse_reply(ListenerReply, self.reasoning.complete(spec))
        except ReasoningError as exc:
            _LOGGER.warning("Listener extraction fell back to defaults (%s).", exc.kind)
            return self.fallback(request)

        budget, budget_stated = normalize_budget(reply.budget, self.cfg)

        recipient = None
        if reply.recipient is not None and _recipient_present(reply.recipient):
            recipient = Recipient(
                name=reply.recipient.name,
                relationship_type=reply.recipient.relationship_type.lower()
                if reply.recipient.relationship_type
                else None,
                age=reply.recipient.age,
                gender=reply.recipient.gender,
            )

        occasion = None
        if reply.occasion is not None and reply.occasion.name:
            occasion = Occasion(
                name=reply.occasion.name,
                date=reply.occasion.date,
                urgency=reply.occasion.urgency or "planned",
            )

        return ListenerFacts(
            previous=request,
            budget=budget,
            recipient=recipient,
            occasion=occasion,
            interests=tuple(reply.interests),
            values=tuple(reply.values),
            constraints=tuple(reply.constraints),
            emotional_tone=reply.emotional_tone,
            confidence_level=reply.confidence_level,
            gift_significance=reply.gift_significance,
            budget_stated=budget_stated,
            confidence=completeness_confidence(reply),
        )
