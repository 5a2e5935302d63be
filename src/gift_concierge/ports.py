"""Narrow capability interfaces the stages depend on.

Stages receive these through their constructors; production wiring uses the
Cohere client and the SQLite graph store, tests substitute deterministic fakes.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Mapping, Protocol, Sequence

from gift_concierge.context import Product


@dataclass(frozen=True)
class PromptSpec:
    """A fixed instruction, the request payload and the JSON shape expected back."""

    name: str
    instruction: str
    response_shape: str
    payload: Mapping[str, Any] = field(default_factory=dict)
    temperature: float = 0.3

    def render(self) -> str:
        return (
            f"{self.instruction.strip()}\n\n"
            "Return ONLY valid JSON matching this shape. No markdown. No extra keys.\n"
            f"{self.response_shape.strip()}\n\n"
            f"INPUT_JSON: {json.dumps(self.payload, default=str)}"
        )


class ReasoningPort(Protocol):
    def complete(self, spec: PromptSpec) -> dict[str, Any]:
        """Best-effort JSON object for ``spec`` or a ``ReasoningError``."""
        ...


class Embedder(Protocol):
    def embed(self, text: str) -> list[float]:
        ...


@dataclass(frozen=True)
class ProductHit:
    product: Product
    vector_score: float
    social_proof_count: int = 0


@dataclass(frozen=True)
class InterestEdge:
    interest: str
    weight: float


class RetrievalPort(Protocol):
    def vector_query(
        self,
        embedding: Sequence[float],
        k: int,
        price_min: float,
        price_max: float,
    ) -> list[ProductHit]:
        ...

    def traverse(
        self,
        product_ids: Sequence[str],
        interest_names: Sequence[str] | None,
    ) -> dict[str, list[InterestEdge]]:
        ...

    def upsert_edge_weight(
        self,
        product_id: str,
        interest: str,
        multiplier: float,
        clamp_min: float,
        clamp_max: float,
    ) -> bool:
        ...

    def record_event(
        self,
        kind: str,
        subject_id: str,
        object_id: str | None,
        timestamp: str | None = None,
    ) -> None:
        ...

    def past_conversations(self, user_id: str, *, limit: int = 10) -> list[dict[str, Any]]:
        ...

    def past_recipients(self, user_id: str) -> list[dict[str, Any]]:
        ...

    def user_preferences(self, user_id: str) -> dict[str, Any] | None:
        ...
