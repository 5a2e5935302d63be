"""
Pytest configuration and fixtures
"""
from __future__ import annotations

import copy
from pathlib import Path
from typing import Any, Callable

import pytest

from gift_concierge.config import PipelineConfig
from gift_concierge.context import (
    Budget,
    GiftRequest,
    ListenerFacts,
    MemorySnapshot,
    Occasion,
    Product,
    Recipient,
    RelationshipCalibration,
    UserPreferences,
)
from gift_concierge.db import GiftGraphDB
from gift_concierge.errors import ReasoningError
from gift_concierge.ports import PromptSpec
from gift_concierge.service import GiftConciergeService


TECH_DAD_QUERY = "birthday gift for tech-savvy dad under $100"


def listener_reply() -> dict[str, Any]:
    return {
        "recipient": {"relationshipType": "dad"},
        "occasion": {"name": "birthday", "urgency": "planned"},
        "budget": {"min": 0, "max": 100, "flexibility": "strict"},
        "interests": ["technology", "gadgets"],
        "values": [],
        "constraints": [],
        "emotionalTone": "excited",
        "confidenceLevel": "certain",
        "giftSignificance": "moderate",
    }


def relationship_reply() -> dict[str, Any]:
    return {
        "relationshipAnalysis": {
            "type": "parent",
            "closeness": "close",
            "duration": "longtime",
            "socialNorms": {
                "appropriatePriceRange": {"min": 20, "max": 150},
                "formalityLevel": "casual",
                "personalVsGeneric": "moderately_personal",
            },
            "riskTolerance": "moderate",
        },
        "calibration": {
            "recommendedArchetypes": ["practical_luxury"],
            "avoidArchetypes": ["gag_gift"],
            "personalizationLevel": "medium",
        },
    }


def meaning_reply() -> dict[str, Any]:
    return {
        "meaningFramework": {
            "giftArchetype": "practical_luxury",
            "emotionalMessage": "I see how much you love tinkering",
            "coreValues": ["quality"],
            "personalRelevance": {"connectsToInterests": ["technology"]},
        },
        "resonanceCriteria": {"functionalNeeds": ["useful every day"]},
        "discoveryHints": {
            "semanticQueries": ["tech gadget gift for dad"],
            "interestPathways": ["technology", "gadgets"],
            "archetypeFilters": ["practical_luxury"],
        },
    }


def story_reply(spec: PromptSpec) -> dict[str, Any]:
    title = spec.payload["product"]["title"]
    return {
        "reasoning": f"The {title} fits his love of technology and gadgets perfectly.",
        "storyElements": {"connectionToRecipient": "tinkerer", "emotionalResonance": "seen"},
        "tone": "warm",
    }


def framing_reply() -> dict[str, Any]:
    return {"intro": "Here are a few ideas your dad will love.", "outro": "Want me to dig deeper?"}


class FakeReasoning:
    """Deterministic reasoning port routed by prompt name.

    A route may be a dict (returned as a copy), an exception instance (raised)
    or a callable taking the prompt spec.
    """

    def __init__(self, routes: dict[str, Any] | None = None) -> None:
        self.routes: dict[str, Any] = {
            "listener": listener_reply(),
            "relationship": relationship_reply(),
            "meaning": meaning_reply(),
            "story": story_reply,
            "framing": framing_reply(),
        }
        self.routes.update(routes or {})
        self.calls: list[PromptSpec] = []

    def complete(self, spec: PromptSpec) -> dict[str, Any]:
        self.calls.append(spec)
        route = self.routes.get(spec.name)
        if route is None:
            raise ReasoningError("upstream", f"no route for {spec.name}")
        if isinstance(route, Exception):
            raise route
        if callable(route):
            return route(spec)
        return copy.deepcopy(route)

    def names(self) -> list[str]:
        return [spec.name for spec in self.calls]


class FakeEmbedder:
    def __init__(self, vector: list[float] | None = None, error: Exception | None = None) -> None:
        self.vector = vector or [1.0, 0.0, 0.0]
        self.error = error
        self.texts: list[str] = []

    def embed(self, text: str) -> list[float]:
        self.texts.append(text)
        if self.error is not None:
            raise self.error
        return list(self.vector)


# (product, embedding, interest edges)
CATALOG: list[tuple[Product, list[float], dict[str, float]]] = [
    (
        Product(
            id="p-drone",
            title="Mini Camera Drone",
            price=89.0,
            vendor="SkyTech",
            description="Foldable drone with a 4K camera.",
            image_url="https://img.example/drone.jpg",
            category="electronics",
        ),
        [1.0, 0.0, 0.0],
        {"technology": 0.9, "gadgets": 0.8},
    ),
    (
        Product(
            id="p-headphones",
            title="Noise Cancelling Headphones",
            price=79.0,
            vendor="AudioWorks",
            description="Over-ear headphones with long battery life.",
            image_url="https://img.example/headphones.jpg",
            category="electronics",
        ),
        [1.0, 0.0, 0.0],
        {"technology": 0.8, "music": 0.9},
    ),
    (
        Product(
            id="p-charger",
            title="Magnetic Charging Dock",
            price=35.0,
            vendor="VoltCo",
            description="Charges phone, watch and earbuds at once.",
            image_url="https://img.example/dock.jpg",
            category="electronics",
        ),
        [1.0, 0.0, 0.0],
        {"technology": 0.75, "gadgets": 0.75},
    ),
    (
        Product(
            id="p-kit",
            title="Soldering Starter Kit",
            price=45.0,
            vendor="MakerLab",
            description="Everything needed for a first electronics project.",
            image_url=None,
            category="hobby",
        ),
        [1.0, 0.0, 0.0],
        {"technology": 0.7},
    ),
    (
        Product(
            id="p-mug",
            title="Ceramic Coffee Mug",
            price=25.0,
            vendor="HomeGoods",
            description="A sturdy mug for the morning brew.",
            image_url="https://img.example/mug.jpg",
            category="kitchen",
        ),
        [0.0, 1.0, 0.0],
        {"coffee": 0.9},
    ),
    (
        Product(
            id="p-watch",
            title="Smart Watch Pro",
            price=149.0,
            vendor="SkyTech",
            description="Fitness tracking smart watch.",
            image_url="https://img.example/watch.jpg",
            category="electronics",
        ),
        [1.0, 0.0, 0.0],
        {"technology": 1.0, "gadgets": 1.0},
    ),
]


def seed_catalog(db: GiftGraphDB) -> None:
    db.upsert_products((product, embedding) for product, embedding, _ in CATALOG)
    db.upsert_interest_edges(
        (product.id, interest, weight) for product, _, edges in CATALOG for interest, weight in edges.items()
    )


@pytest.fixture
def cfg() -> PipelineConfig:
    return PipelineConfig(reasoning_timeout_seconds=5.0, retrieval_timeout_seconds=5.0)


@pytest.fixture
def db(tmp_path: Path) -> GiftGraphDB:
    """Real SQLite store in a temp directory, seeded with a small catalog"""
    store = GiftGraphDB(tmp_path / "gift_concierge_test.db")
    seed_catalog(store)
    return store


@pytest.fixture
def reasoning() -> FakeReasoning:
    return FakeReasoning()


@pytest.fixture
def embedder() -> FakeEmbedder:
    return FakeEmbedder()


@pytest.fixture
def make_service(db, cfg) -> Callable[..., GiftConciergeService]:
    def _make(reasoning: FakeReasoning | None = None, embedder: FakeEmbedder | None = None) -> GiftConciergeService:
        return GiftConciergeService(
            db=db,
            reasoning=reasoning or FakeReasoning(),
            embedder=embedder or FakeEmbedder(),
            cfg=cfg,
        )

    return _make


def make_facts(
    *,
    query: str = TECH_DAD_QUERY,
    user_id: str = "user-1",
    budget: Budget | None = None,
    interests: tuple[str, ...] = ("technology", "gadgets"),
    values: tuple[str, ...] = (),
    constraints: tuple[str, ...] = (),
    occasion: Occasion | None = None,
    recipient: Recipient | None = None,
) -> ListenerFacts:
    return ListenerFacts(
        previous=GiftRequest(query=query, user_id=user_id, session_id="s-1"),
        budget=budget or Budget(min=0.0, max=100.0, flexibility="strict"),
        recipient=recipient or Recipient(relationship_type="dad"),
        occasion=occasion or Occasion(name="birthday"),
        interests=interests,
        values=values,
        constraints=constraints,
        budget_stated=True,
        confidence=0.6,
    )


def make_relationship(
    facts: ListenerFacts,
    *,
    adjusted_budget: Budget | None = None,
    preferences: UserPreferences | None = None,
) -> RelationshipCalibration:
    return RelationshipCalibration(
        previous=MemorySnapshot(previous=facts, user_preferences=preferences),
        relationship_type="parent",
        closeness="close",
        formality="casual",
        risk_tolerance="moderate",
        adjusted_budget=adjusted_budget,
    )
