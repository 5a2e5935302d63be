"""Gift concierge service: wires the ports, runs the pipeline and accepts feedback."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Mapping

from gift_concierge.cohere_utils import CohereConfig, CohereEmbedder, CohereReasoning, ai_configured
from gift_concierge.config import PipelineConfig
from gift_concierge.context import (
    ExplicitFeedback,
    FinalRecommendation,
    GiftRequest,
    LearningEvent,
    StoredItem,
    StoredRecommendation,
    UserActions,
    to_jsonable,
)
from gift_concierge.db import GiftGraphDB
from gift_concierge.learning import Learning
from gift_concierge.orchestrator import Orchestrator, PipelineResult
from gift_concierge.ports import Embedder, ReasoningPort


_LOGGER = logging.getLogger(__name__)

_ACTION_KINDS = ("viewed", "clicked", "liked", "dismissed", "purchased")


def _id_list(values: Any) -> tuple[str, ...]:
    if not values:
        return ()
    if isinstance(values, str):
        values = [values]
    return tuple(str(value).strip() for value in values if str(value).strip())


def parse_user_actions(raw: Mapping[str, Any] | None) -> UserActions:
    raw = raw or {}
    unknown = set(raw) - set(_ACTION_KINDS)
    if unknown:
        raise ValueError(f"Unknown action kind(s): {', '.join(sorted(unknown))}")
    return UserActions(**{kind: _id_list(raw.get(kind)) for kind in _ACTION_KINDS})


def parse_explicit_feedback(raw: Mapping[str, Any] | None) -> ExplicitFeedback | None:
    if not raw:
        return None
    ratings: list[tuple[str, float]] = []
    for product_id, value in dict(raw.get("ratings") or {}).items():
        rating = float(value)
        if not 0.0 <= rating <= 5.0:
            raise ValueError("Ratings must be between 0 and 5.")
        ratings.append((str(product_id), rating))
    comments = tuple((str(pid), str(text)) for pid, text in dict(raw.get("comments") or {}).items())
    return ExplicitFeedback(ratings=tuple(ratings), comments=comments)


def _public_recommendation(item: FinalRecommendation) -> dict[str, Any]:
    product = item.product
    return {
        "rank": item.rank,
        "product": {
            "id": product.id,
            "title": product.title,
            "description": product.description,
            "price": round(product.price, 2),
            "vendor": product.vendor,
            "image_url": product.image_url,
            "url": product.url,
        },
        "reasoning": item.reasoning,
        "confidence": round(item.confidence, 4),
        "tags": list(item.tags),
        "matched_interests": list(item.matched_interests),
    }


class GiftConciergeService:
    def __init__(
        self,
        *,
        db: GiftGraphDB,
        reasoning: ReasoningPort,
        embedder: Embedder,
        cfg: PipelineConfig | None = None,
    ) -> None:
        self.db = db
        self.cfg = cfg or PipelineConfig()
        self.orchestrator = Orchestrator(reasoning=reasoning, store=db, embedder=embedder, cfg=self.cfg)
        self.learning = Learning(db, self.cfg)

    @classmethod
    def from_env(cls, root_dir: Path | None = None) -> "GiftConciergeService":
        root = root_dir or Path(__file__).resolve().parents[2]
        cfg = PipelineConfig.from_env()
        cohere_cfg = CohereConfig.from_env()
        return cls(
            db=GiftGraphDB(root / "data" / "gift_concierge.db"),
            reasoning=CohereReasoning(cfg=cohere_cfg, timeout_seconds=cfg.reasoning_timeout_seconds),
            embedder=CohereEmbedder(cfg=cohere_cfg, timeout_seconds=cfg.retrieval_timeout_seconds),
            cfg=cfg,
        )

    def _persist(self, request: GiftRequest, result: PipelineResult, trace: dict[str, Any]) -> None:
        presentation = result.presentation
        facts = presentation.facts
        stored = StoredRecommendation(
            recommendation_id=result.recommendation_id,
            user_id=request.user_id,
            session_id=request.session_id,
            query=request.query,
            items=tuple(
                StoredItem(
                    product_id=item.product.id,
                    rank=item.rank,
                    confidence=item.confidence,
                    price=item.product.price,
                    vendor=item.product.vendor,
                    matched_interests=item.matched_interests,
                )
                for item in presentation.recommendations
            ),
        )
        # Memory matches later requests on the recipient's own wording, e.g. "dad".
        relationship_type = facts.recipient.relationship_type if facts.recipient else None
        if not relationship_type:
            relationship_type = presentation.lineage()["relationship"].relationship_type
        self.db.save_recommendation(
            stored,
            recipient_name=facts.recipient.name if facts.recipient else None,
            relationship_type=relationship_type,
            occasion=facts.occasion.name if facts.occasion else None,
            budget_min=facts.budget.min if facts.budget_stated else None,
            budget_max=facts.budget.max if facts.budget_stated else None,
            values=facts.values,
            interests=facts.interests,
            trace=trace,
        )

    def recommend(self, *, query: str, user_id: str, session_id: str) -> dict[str, Any]:
        cleaned = query.strip()
        if not cleaned:
            raise ValueError("query must not be empty.")
        request = GiftRequest(query=cleaned, user_id=user_id.strip() or "anonymous", session_id=session_id.strip())

        result = self.orchestrator.execute(request)
        trace = result.trace()
        self._persist(request, result, trace)

        presentation = result.presentation
        return {
            "recommendation_id": result.recommendation_id,
            "intro": presentation.intro,
            "outro": presentation.outro,
            "recommendations": [_public_recommendation(item) for item in presentation.recommendations],
            "totalRecommendations": presentation.total_recommendations,
            "trace": trace,
            "timings": {name: round(ms, 2) for name, ms in result.timings_ms.items()},
            "execution_stats": result.execution_stats(),
        }

    def submit_feedback(
        self,
        *,
        recommendation_id: str,
        user_actions: Mapping[str, Any] | None,
        explicit_feedback: Mapping[str, Any] | None = None,
    ) -> dict[str, Any]:
        stored = self.db.get_recommendation(recommendation_id)
        if stored is None:
            raise KeyError(f"Recommendation {recommendation_id} not found.")

        event = LearningEvent(
            recommendation_id=recommendation_id,
            user_actions=parse_user_actions(user_actions),
            explicit_feedback=parse_explicit_feedback(explicit_feedback),
        )
        outcome = self.learning.run(event, stored)
        _LOGGER.info(
            "Feedback for %s applied %d of %d edge update(s).",
            recommendation_id,
            outcome.updates_applied,
            len(outcome.mutations),
        )
        return {
            "updatesApplied": outcome.updates_applied,
            "patterns": to_jsonable(outcome.patterns),
            "outcomes": {
                "successfulRecommendations": outcome.successful_recommendations,
                "totalRecommendations": outcome.total_recommendations,
                "avgConfidenceOfSuccessful": outcome.avg_confidence_of_successful,
            },
            "rejected": [{"product_id": pid, "reason": reason} for pid, reason in outcome.rejected_product_ids],
        }

    def get_recommendation(self, recommendation_id: str) -> dict[str, Any]:
        stored = self.db.get_recommendation(recommendation_id)
        if stored is None:
            raise KeyError(f"Recommendation {recommendation_id} not found.")
        payload = to_jsonable(stored)
        payload["trace"] = self.db.get_trace(recommendation_id)
        return payload

    def stats(self) -> dict[str, Any]:
        details = self.db.stats()
        details["ai_enabled"] = ai_configured()
        details["graph_weight"] = self.cfg.graph_weight
        details["vector_weight"] = self.cfg.vector_weight
        return details
