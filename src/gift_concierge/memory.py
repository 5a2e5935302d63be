"""Memory stage: recalls the user's gift history and spots recurring patterns."""

from __future__ import annotations

import logging
from collections import Counter
from typing import Any

from gift_concierge.concurrency import run_with_timeout
from gift_concierge.config import PipelineConfig
from gift_concierge.context import (
    Budget,
    ListenerFacts,
    MemorySnapshot,
    PastConversation,
    PastRecipient,
    RecognizedPattern,
    UserPreferences,
)
from gift_concierge.ports import RetrievalPort


_LOGGER = logging.getLogger(__name__)

_RECENT_CONVERSATIONS = 10


def _to_preferences(raw: dict[str, Any] | None) -> UserPreferences | None:
    if not raw:
        return None
    typical = raw.get("typical_budget")
    typical_budget = None
    if isinstance(typical, dict) and typical.get("max") is not None:
        typical_budget = Budget(min=float(typical.get("min") or 0.0), max=float(typical["max"]))
    return UserPreferences(
        typical_budget=typical_budget,
        preferred_vendors=tuple(raw.get("preferred_vendors") or ()),
        avoided_categories=tuple(raw.get("avoided_categories") or ()),
        value_alignment=tuple(raw.get("value_alignment") or ()),
    )


def recognize_patterns(
    facts: ListenerFacts,
    conversations: tuple[PastConversation, ...],
    recipients: tuple[PastRecipient, ...],
    preferences: UserPreferences | None,
) -> tuple[RecognizedPattern, ...]:
    patterns: list[RecognizedPattern] = []

    relationship = facts.recipient.relationship_type if facts.recipient else None
    if relationship:
        for past in recipients:
            if past.relationship_type != relationship:
                continue
            patterns.append(
                RecognizedPattern(
                    pattern=f"Repeat recipient: gifted your {relationship} {past.gifts_given_count} time(s) before",
                    confidence=0.8,
                    source="past_purchases" if past.successful_gifts else "user_profile",
                )
            )
            break

    if facts.occasion is not None:
        current = facts.occasion.name.strip().lower()
        seen = Counter((item.occasion or "").strip().lower() for item in conversations)
        count = seen.get(current, 0) + 1
        if current and count >= 2:
            patterns.append(
                RecognizedPattern(
                    pattern=f"Favorite occasion: {facts.occasion.name} ({count} requests)",
                    confidence=min(1.0, count / 5.0),
                    source="conversation_history",
                )
            )

    if facts.budget_stated and preferences is not None and preferences.typical_budget is not None:
        typical_max = preferences.typical_budget.max
        if typical_max > 0 and abs(facts.budget.max - typical_max) <= 0.25 * typical_max:
            patterns.append(
                RecognizedPattern(
                    pattern=f"Budget habit: usually spends up to about ${typical_max:.0f}",
                    confidence=0.6,
                    source="user_profile",
                )
            )

    return tuple(patterns)


class Memory:
    def __init__(self, store: RetrievalPort, cfg: PipelineConfig) -> None:
        self.store = store
        self.cfg = cfg

    def _recall(self, user_id: str) -> tuple[list[dict[str, Any]], list[dict[str, Any]], dict[str, Any] | None]:
        timeout = self.cfg.retrieval_timeout_seconds
        conversations = run_with_timeout(
            "Past conversation lookup",
            lambda: self.store.past_conversations(user_id, limit=_RECENT_CONVERSATIONS),
            timeout,
        )
        recipients = run_with_timeout("Past recipient lookup", lambda: self.store.past_recipients(user_id), timeout)
        preferences = run_with_timeout("User preference lookup", lambda: self.store.user_preferences(user_id), timeout)
        return conversations, recipients, preferences

    def run(self, facts: ListenerFacts) -> MemorySnapshot:
        user_id = facts.previous.user_id
        try:
            raw_conversations, raw_recipients, raw_preferences = self._recall(user_id)
        except Exception:
            _LOGGER.warning("Memory recall failed for user %s; continuing with an empty history.", user_id)
            return MemorySnapshot(previous=facts)

        conversations = tuple(
            PastConversation(
                recommendation_id=str(row["recommendation_id"]),
                session_id=str(row["session_id"]),
                timestamp=str(row["timestamp"]),
                query=str(row["query"]),
                recipient_name=row.get("recipient_name"),
                occasion=row.get("occasion"),
                recommendations_given=int(row.get("recommendations_given") or 0),
                outcome_known=bool(row.get("outcome_known")),
                outcome=row.get("outcome"),
            )
            for row in raw_conversations
        )
        recipients = tuple(
            PastRecipient(
                recipient_id=str(row["recipient_id"]),
                relationship_type=str(row["relationship_type"]),
                name=row.get("name"),
                gifts_given_count=int(row.get("gifts_given_count") or 0),
                successful_gifts=tuple(row.get("successful_gifts") or ()),
                known_interests=tuple(row.get("known_interests") or ()),
            )
            for row in raw_recipients
        )
        preferences = _to_preferences(raw_preferences)

        return MemorySnapshot(
            previous=facts,
            past_conversations=conversations,
            past_recipients=recipients,
            user_preferences=preferences,
            recognized_patterns=recognize_patterns(facts, conversations, recipients, preferences),
        )
