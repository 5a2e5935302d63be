"""Learning stage: turns feedback on a stored recommendation into edge-weight updates and patterns."""

from __future__ import annotations

import logging
from collections import Counter

from gift_concierge.config import PipelineConfig
from gift_concierge.context import (
    EdgeMutation,
    LearnedPattern,
    LearningEvent,
    LearningOutcome,
    StoredItem,
    StoredRecommendation,
    clamp01,
)
from gift_concierge.ports import RetrievalPort


_LOGGER = logging.getLogger(__name__)


def _dedupe(values: tuple[str, ...]) -> list[str]:
    return list(dict.fromkeys(value for value in values if value))


def identify_patterns(
    event: LearningEvent,
    stored: StoredRecommendation,
    valid: dict[str, list[str]],
) -> tuple[LearnedPattern, ...]:
    total = len(stored.items)
    if total == 0:
        return ()

    liked = valid.get("liked", [])
    dismissed = valid.get("dismissed", [])
    positive = _dedupe(tuple(liked) + tuple(valid.get("purchased", [])))
    positive_items = [item for item in (stored.item(pid) for pid in positive) if item is not None]

    patterns: list[LearnedPattern] = []
    if liked:
        patterns.append(
            LearnedPattern(
                pattern_type="user_preference",
                description=f"User liked {len(liked)} of {total} recommendations",
                confidence=clamp01(len(liked) / total),
                examples=tuple(liked),
            )
        )

    if positive_items:
        avg_price = sum(item.price for item in positive_items) / len(positive_items)
        patterns.append(
            LearnedPattern(
                pattern_type="price_preference",
                description=f"Positive reactions cluster around ${avg_price:.2f}",
                confidence=clamp01(len(positive_items) / total),
                examples=tuple(item.product_id for item in positive_items),
            )
        )

        vendors = Counter(item.vendor for item in positive_items if item.vendor)
        for vendor, count in vendors.most_common():
            if count < 2:
                break
            patterns.append(
                LearnedPattern(
                    pattern_type="vendor_affinity",
                    description=f"Repeated positive reactions to {vendor}",
                    confidence=clamp01(count / len(positive_items)),
                    examples=tuple(item.product_id for item in positive_items if item.vendor == vendor),
                )
            )

    if dismissed and len(dismissed) / total >= 0.5:
        patterns.append(
            LearnedPattern(
                pattern_type="dismissal_signal",
                description=f"User dismissed {len(dismissed)} of {total} recommendations",
                confidence=clamp01(len(dismissed) / total),
                examples=tuple(dismissed),
            )
        )

    feedback = event.explicit_feedback
    if feedback is not None:
        ratings = [(pid, rating) for pid, rating in feedback.ratings if pid in stored.product_ids]
        if ratings:
            mean_rating = sum(rating for _, rating in ratings) / len(ratings)
            patterns.append(
                LearnedPattern(
                    pattern_type="explicit_rating",
                    description=f"Average explicit rating {mean_rating:.1f} of 5",
                    confidence=clamp01(mean_rating / 5.0),
                    examples=tuple(pid for pid, _ in ratings),
                )
            )

    return tuple(patterns)


class Learning:
    def __init__(self, store: RetrievalPort, cfg: PipelineConfig) -> None:
        self.store = store
        self.cfg = cfg

    def _record(self, kind: str, subject_id: str, object_id: str | None) -> None:
        try:
            self.store.record_event(kind, subject_id, object_id)
        except Exception:
            _LOGGER.warning("Could not record %s event for %s -> %s.", kind, subject_id, object_id)

    def _interests_for(self, item: StoredItem) -> list[str]:
        if item.matched_interests:
            return list(item.matched_interests)
        try:
            edges = self.store.traverse([item.product_id], None)
        except Exception:
            _LOGGER.warning("Could not load interest edges for product %s.", item.product_id)
            return []
        return [edge.interest for edge in edges.get(item.product_id, [])]

    def plan_mutations(self, stored: StoredRecommendation, valid: dict[str, list[str]]) -> list[EdgeMutation]:
        mutations: list[EdgeMutation] = []
        positive = _dedupe(tuple(valid.get("liked", [])) + tuple(valid.get("purchased", [])))
        for product_id in positive:
            item = stored.item(product_id)
            for interest in self._interests_for(item) if item else []:
                mutations.append(
                    EdgeMutation(
                        product_id=product_id,
                        interest=interest,
                        multiplier=self.cfg.boost_multiplier,
                        clamp_min=self.cfg.weight_floor,
                        clamp_max=self.cfg.weight_ceiling,
                        reason="Strengthen interest edge for liked/purchased product",
                    )
                )
        for product_id in _dedupe(tuple(valid.get("dismissed", []))):
            item = stored.item(product_id)
            for interest in self._interests_for(item) if item else []:
                mutations.append(
                    EdgeMutation(
                        product_id=product_id,
                        interest=interest,
                        multiplier=self.cfg.decay_multiplier,
                        clamp_min=self.cfg.weight_floor,
                        clamp_max=self.cfg.weight_ceiling,
                        reason="Weaken interest edge for dismissed product",
                    )
                )
        return mutations

    def apply(self, mutations: list[EdgeMutation]) -> int:
        applied = 0
        for mutation in mutations:
            try:
                ok = self.store.upsert_edge_weight(
                    mutation.product_id,
                    mutation.interest,
                    mutation.multiplier,
                    mutation.clamp_min,
                    mutation.clamp_max,
                )
            except Exception as exc:
                _LOGGER.warning(
                    "Edge update %s/%s failed and was skipped: %s", mutation.product_id, mutation.interest, exc
                )
                continue
            if ok:
                applied += 1
            else:
                _LOGGER.warning("Edge %s/%s not found; update skipped.", mutation.product_id, mutation.interest)
        return applied

    def run(self, event: LearningEvent, stored: StoredRecommendation) -> LearningOutcome:
        self._record("recommendation", stored.user_id, stored.recommendation_id)

        valid: dict[str, list[str]] = {}
        rejected: list[tuple[str, str]] = []
        for kind, product_ids in event.user_actions.by_kind():
            for product_id in _dedupe(product_ids):
                if product_id not in stored.product_ids:
                    _LOGGER.warning(
                        "Feedback %s on product %s rejected: not part of recommendation %s.",
                        kind,
                        product_id,
                        stored.recommendation_id,
                    )
                    rejected.append((product_id, f"{kind}: not part of recommendation"))
                    continue
                valid.setdefault(kind, []).append(product_id)
                self._record(kind, stored.recommendation_id, product_id)

        if event.explicit_feedback is not None:
            for product_id, _ in event.explicit_feedback.ratings:
                if product_id not in stored.product_ids:
                    rejected.append((product_id, "rating: not part of recommendation"))

        mutations = self.plan_mutations(stored, valid)
        applied = self.apply(mutations)

        successful = _dedupe(tuple(valid.get("liked", [])) + tuple(valid.get("purchased", [])))
        successful_items = [item for item in (stored.item(pid) for pid in successful) if item is not None]
        avg_confidence = (
            sum(item.confidence for item in successful_items) / len(successful_items) if successful_items else 0.0
        )

        return LearningOutcome(
            mutations=tuple(mutations),
            patterns=identify_patterns(event, stored, valid),
            updates_applied=applied,
            successful_recommendations=len(successful_items),
            total_recommendations=len(stored.items),
            avg_confidence_of_successful=avg_confidence,
            rejected_product_ids=tuple(rejected),
        )
