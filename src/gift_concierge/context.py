"""Typed, append-only pipeline context.

Each stage output is a frozen record holding a single ``previous`` reference to
the record it was built from, so the final presentation carries its complete
lineage (request -> listener -> ... -> presenter). Collections are tuples;
nothing is mutated after construction.
"""

from __future__ import annotations

import dataclasses
import math
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Any, Mapping


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def clamp01(value: float) -> float:
    if value is None or math.isnan(value):
        return 0.0
    return max(0.0, min(1.0, float(value)))


# --------------------------------------------------------------------------- request / listener


@dataclass(frozen=True)
class GiftRequest:
    query: str
    user_id: str
    session_id: str


@dataclass(frozen=True)
class Budget:
    min: float
    max: float
    flexibility: str = "unspecified"


@dataclass(frozen=True)
class Recipient:
    name: str | None = None
    relationship_type: str | None = None
    age: int | None = None
    gender: str | None = None

    def label(self) -> str:
        return self.name or self.relationship_type or "them"


@dataclass(frozen=True)
class Occasion:
    name: str
    date: str | None = None
    urgency: str = "planned"


@dataclass(frozen=True)
class ListenerFacts:
    previous: GiftRequest
    budget: Budget
    recipient: Recipient | None = None
    occasion: Occasion | None = None
    interests: tuple[str, ...] = ()
    values: tuple[str, ...] = ()
    constraints: tuple[str, ...] = ()
    emotional_tone: str | None = None
    confidence_level: str | None = None
    gift_significance: str | None = None
    budget_stated: bool = False
    confidence: float = 0.0
    degraded: bool = False
    extracted_at: datetime = field(default_factory=_utc_now)


# --------------------------------------------------------------------------- memory


@dataclass(frozen=True)
class PastConversation:
    recommendation_id: str
    session_id: str
    timestamp: str
    query: str
    recipient_name: str | None
    occasion: str | None
    recommendations_given: int
    outcome_known: bool
    outcome: str | None = None


@dataclass(frozen=True)
class PastRecipient:
    recipient_id: str
    relationship_type: str
    name: str | None = None
    gifts_given_count: int = 0
    successful_gifts: tuple[str, ...] = ()
    known_interests: tuple[str, ...] = ()


@dataclass(frozen=True)
class UserPreferences:
    typical_budget: Budget | None = None
    preferred_vendors: tuple[str, ...] = ()
    avoided_categories: tuple[str, ...] = ()
    value_alignment: tuple[str, ...] = ()


@dataclass(frozen=True)
class RecognizedPattern:
    pattern: str
    confidence: float
    source: str


@dataclass(frozen=True)
class MemorySnapshot:
    previous: ListenerFacts
    past_conversations: tuple[PastConversation, ...] = ()
    past_recipients: tuple[PastRecipient, ...] = ()
    user_preferences: UserPreferences | None = None
    recognized_patterns: tuple[RecognizedPattern, ...] = ()
    recalled_at: datetime = field(default_factory=_utc_now)

    @property
    def facts(self) -> ListenerFacts:
        return self.previous


# --------------------------------------------------------------------------- relationship


@dataclass(frozen=True)
class RelationshipCalibration:
    previous: MemorySnapshot
    relationship_type: str
    closeness: str
    formality: str
    risk_tolerance: str
    duration: str | None = None
    personal_vs_generic: str = "moderately_personal"
    appropriate_price_range: Budget | None = None
    adjusted_budget: Budget | None = None
    recommended_archetypes: tuple[str, ...] = ()
    avoid_archetypes: tuple[str, ...] = ()
    personalization_level: str = "medium"
    analyzed_at: datetime = field(default_factory=_utc_now)

    @property
    def facts(self) -> ListenerFacts:
        return self.previous.facts

    @property
    def memory(self) -> MemorySnapshot:
        return self.previous


# --------------------------------------------------------------------------- constraints

VALIDATION_STATUSES = ("all_valid", "conflicts_found", "impossible_constraints")


@dataclass(frozen=True)
class HardBudget:
    min: float
    max: float

    def contains(self, price: float) -> bool:
        return self.min <= price <= self.max


@dataclass(frozen=True)
class HardConstraints:
    budget: HardBudget
    required: tuple[str, ...] = ()
    excluded: tuple[str, ...] = ()
    delivery_by: date | None = None


@dataclass(frozen=True)
class SoftPreferences:
    vendors: tuple[str, ...] = ()
    categories: tuple[str, ...] = ()
    values: tuple[str, ...] = ()


@dataclass(frozen=True)
class ConstraintConflict:
    constraint: str
    issue: str
    resolution: str | None = None


@dataclass(frozen=True)
class ConstraintSet:
    previous: RelationshipCalibration
    hard: HardConstraints
    soft: SoftPreferences
    validation_status: str
    conflicts: tuple[ConstraintConflict, ...] = ()
    validated_at: datetime = field(default_factory=_utc_now)

    @property
    def facts(self) -> ListenerFacts:
        return self.previous.facts

    @property
    def relationship(self) -> RelationshipCalibration:
        return self.previous


# --------------------------------------------------------------------------- meaning


@dataclass(frozen=True)
class PersonalRelevance:
    connects_to_interests: tuple[str, ...] = ()
    addresses_needs: tuple[str, ...] = ()
    celebrates_personality: str | None = None


@dataclass(frozen=True)
class ResonanceCriteria:
    functional: tuple[str, ...] = ()
    aspirational: tuple[str, ...] = ()
    emotional: tuple[str, ...] = ()
    social: tuple[str, ...] = ()


@dataclass(frozen=True)
class DiscoveryHints:
    semantic_queries: tuple[str, ...] = ()
    interest_pathways: tuple[str, ...] = ()
    archetype_filters: tuple[str, ...] = ()

    def is_empty(self) -> bool:
        return not (self.semantic_queries or self.interest_pathways or self.archetype_filters)


@dataclass(frozen=True)
class MeaningFramework:
    previous: ConstraintSet
    gift_archetype: str
    emotional_message: str
    core_values: tuple[str, ...] = ()
    personal_relevance: PersonalRelevance = field(default_factory=PersonalRelevance)
    resonance: ResonanceCriteria = field(default_factory=ResonanceCriteria)
    discovery_hints: DiscoveryHints = field(default_factory=DiscoveryHints)
    identified_at: datetime = field(default_factory=_utc_now)

    @property
    def facts(self) -> ListenerFacts:
        return self.previous.facts

    @property
    def constraints(self) -> ConstraintSet:
        return self.previous

    @property
    def relationship(self) -> RelationshipCalibration:
        return self.previous.relationship


# --------------------------------------------------------------------------- explorer


@dataclass(frozen=True)
class Product:
    id: str
    title: str
    price: float
    vendor: str = ""
    description: str = ""
    image_url: str | None = None
    url: str | None = None
    category: str | None = None


@dataclass(frozen=True)
class CandidateScores:
    graph_score: float
    vector_score: float
    hybrid_score: float
    confidence_score: float

    @classmethod
    def blend(
        cls,
        graph_score: float,
        vector_score: float,
        *,
        graph_weight: float = 0.6,
        vector_weight: float = 0.4,
    ) -> "CandidateScores":
        graph = clamp01(graph_score)
        vector = clamp01(vector_score)
        return cls(
            graph_score=graph,
            vector_score=vector,
            hybrid_score=clamp01(graph_weight * graph + vector_weight * vector),
            confidence_score=(graph + vector) / 2.0,
        )


def mean_edge_weight(weights: Mapping[str, float]) -> float:
    """Mean relevance over matched edges; 0.0 when nothing matched."""
    if not weights:
        return 0.0
    return clamp01(sum(weights.values()) / len(weights))


@dataclass(frozen=True)
class MatchReasons:
    matched_interests: tuple[str, ...] = ()
    matched_values: tuple[str, ...] = ()
    matched_archetype: str = ""
    social_proof_count: int = 0


@dataclass(frozen=True)
class Candidate:
    product: Product
    scores: CandidateScores
    match_reasons: MatchReasons = field(default_factory=MatchReasons)
    edge_weights: tuple[tuple[str, float], ...] = ()


@dataclass(frozen=True)
class SearchMetadata:
    total_evaluated: int = 0
    diversity_score: float = 0.0
    coverage_score: float = 0.0
    avg_confidence: float = 0.0
    diversity_applied: bool = False


@dataclass(frozen=True)
class ExplorationResult:
    previous: MeaningFramework
    candidates: tuple[Candidate, ...]
    search_metadata: SearchMetadata = field(default_factory=SearchMetadata)
    execution_time_ms: float = 0.0
    explored_at: datetime = field(default_factory=_utc_now)

    @property
    def facts(self) -> ListenerFacts:
        return self.previous.facts

    @property
    def constraints(self) -> ConstraintSet:
        return self.previous.constraints

    @property
    def meaning(self) -> MeaningFramework:
        return self.previous


# --------------------------------------------------------------------------- validator

CHECK_NAMES = ("budget", "constraints", "relevance", "quality", "appropriateness")


@dataclass(frozen=True)
class CheckResult:
    name: str
    passed: bool
    score: float | None = None
    issues: tuple[str, ...] = ()

    def effective_score(self) -> float:
        if self.score is not None:
            return clamp01(self.score)
        return 1.0 if self.passed else 0.0


@dataclass(frozen=True)
class ValidationVerdict:
    product_id: str
    passed: bool
    checks: tuple[CheckResult, ...]
    overall_score: float
    pass_reasons: tuple[str, ...] = ()
    fail_reasons: tuple[str, ...] = ()

    @classmethod
    def from_checks(cls, product_id: str, checks: tuple[CheckResult, ...]) -> "ValidationVerdict":
        pass_reasons: list[str] = []
        fail_reasons: list[str] = []
        for check in checks:
            if check.passed and check.score is not None and check.score > 0.8:
                pass_reasons.append(f"Strong {check.name} score")
            if not check.passed:
                detail = ", ".join(check.issues) or "below threshold"
                fail_reasons.append(f"Failed {check.name}: {detail}")
        overall = sum(check.effective_score() for check in checks) / len(checks) if checks else 0.0
        return cls(
            product_id=product_id,
            passed=bool(checks) and all(check.passed for check in checks),
            checks=checks,
            overall_score=clamp01(overall),
            pass_reasons=tuple(pass_reasons),
            fail_reasons=tuple(fail_reasons),
        )

    def check(self, name: str) -> CheckResult | None:
        for result in self.checks:
            if result.name == name:
                return result
        return None


@dataclass(frozen=True)
class RejectedCandidate:
    candidate: Candidate
    verdict: ValidationVerdict


@dataclass(frozen=True)
class ValidationSummary:
    total_candidates: int = 0
    passed: int = 0
    rejected: int = 0
    avg_validation_score: float = 0.0


@dataclass(frozen=True)
class ValidationOutcome:
    previous: ExplorationResult
    accepted: tuple[Candidate, ...]
    rejected: tuple[RejectedCandidate, ...]
    verdicts: tuple[ValidationVerdict, ...]
    summary: ValidationSummary
    validated_at: datetime = field(default_factory=_utc_now)

    @property
    def facts(self) -> ListenerFacts:
        return self.previous.facts

    @property
    def meaning(self) -> MeaningFramework:
        return self.previous.meaning


# --------------------------------------------------------------------------- storyteller


@dataclass(frozen=True)
class StoryElements:
    connection_to_recipient: str = ""
    emotional_resonance: str = ""
    practical_value: str | None = None


@dataclass(frozen=True)
class Story:
    product_id: str
    reasoning: str
    story_elements: StoryElements
    tone: str
    personalization_level: str
    fallback: bool = False


@dataclass(frozen=True)
class StorySet:
    previous: ValidationOutcome
    stories: tuple[Story, ...]
    avg_story_length: float = 0.0
    crafted_at: datetime = field(default_factory=_utc_now)

    @property
    def facts(self) -> ListenerFacts:
        return self.previous.facts

    def story_for(self, product_id: str) -> Story | None:
        for story in self.stories:
            if story.product_id == product_id:
                return story
        return None


# --------------------------------------------------------------------------- presenter


@dataclass(frozen=True)
class FinalRecommendation:
    rank: int
    product: Product
    reasoning: str
    confidence: float
    tags: tuple[str, ...] = ()
    matched_interests: tuple[str, ...] = ()


@dataclass(frozen=True)
class Presentation:
    previous: StorySet
    intro: str
    outro: str
    recommendations: tuple[FinalRecommendation, ...]
    ordering_strategy: str = "confidence_desc"
    tone: str = "friend"
    presented_at: datetime = field(default_factory=_utc_now)

    @property
    def total_recommendations(self) -> int:
        return len(self.recommendations)

    @property
    def facts(self) -> ListenerFacts:
        return self.previous.facts

    def lineage(self) -> dict[str, Any]:
        """Walks the previous-chain back to the request, keyed by stage name."""
        stories = self.previous
        validation = stories.previous
        exploration = validation.previous
        meaning = exploration.previous
        constraints = meaning.previous
        relationship = constraints.previous
        memory = relationship.previous
        listener = memory.previous
        return {
            "request": listener.previous,
            "listener": listener,
            "memory": memory,
            "relationship": relationship,
            "constraints": constraints,
            "meaning": meaning,
            "explorer": exploration,
            "validator": validation,
            "storyteller": stories,
            "presenter": self,
        }


# --------------------------------------------------------------------------- learning


@dataclass(frozen=True)
class UserActions:
    viewed: tuple[str, ...] = ()
    clicked: tuple[str, ...] = ()
    liked: tuple[str, ...] = ()
    dismissed: tuple[str, ...] = ()
    purchased: tuple[str, ...] = ()

    def by_kind(self) -> tuple[tuple[str, tuple[str, ...]], ...]:
        return (
            ("viewed", self.viewed),
            ("clicked", self.clicked),
            ("liked", self.liked),
            ("dismissed", self.dismissed),
            ("purchased", self.purchased),
        )


@dataclass(frozen=True)
class ExplicitFeedback:
    ratings: tuple[tuple[str, float], ...] = ()
    comments: tuple[tuple[str, str], ...] = ()


@dataclass(frozen=True)
class LearningEvent:
    recommendation_id: str
    user_actions: UserActions
    explicit_feedback: ExplicitFeedback | None = None


@dataclass(frozen=True)
class StoredItem:
    product_id: str
    rank: int
    confidence: float
    price: float = 0.0
    vendor: str = ""
    matched_interests: tuple[str, ...] = ()


@dataclass(frozen=True)
class StoredRecommendation:
    recommendation_id: str
    user_id: str
    session_id: str
    query: str
    items: tuple[StoredItem, ...]
    created_at: str = ""

    @property
    def product_ids(self) -> frozenset[str]:
        return frozenset(item.product_id for item in self.items)

    def item(self, product_id: str) -> StoredItem | None:
        for item in self.items:
            if item.product_id == product_id:
                return item
        return None


@dataclass(frozen=True)
class EdgeMutation:
    product_id: str
    interest: str
    multiplier: float
    clamp_min: float
    clamp_max: float
    reason: str


@dataclass(frozen=True)
class LearnedPattern:
    pattern_type: str
    description: str
    confidence: float
    examples: tuple[str, ...] = ()


@dataclass(frozen=True)
class LearningOutcome:
    mutations: tuple[EdgeMutation, ...]
    patterns: tuple[LearnedPattern, ...]
    updates_applied: int
    successful_recommendations: int
    total_recommendations: int
    avg_confidence_of_successful: float
    rejected_product_ids: tuple[tuple[str, str], ...] = ()
    learned_at: datetime = field(default_factory=_utc_now)


# --------------------------------------------------------------------------- serialization


def to_jsonable(value: Any) -> Any:
    """Turns context records into plain JSON-compatible structures.

    ``previous`` links are dropped so each stage serializes only its own fields;
    the trace is assembled stage by stage instead of as one nested document.
    """
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return {
            item.name: to_jsonable(getattr(value, item.name))
            for item in dataclasses.fields(value)
            if item.name != "previous"
        }
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, (list, tuple)):
        return [to_jsonable(item) for item in value]
    if isinstance(value, dict):
        return {str(key): to_jsonable(item) for key, item in value.items()}
    if isinstance(value, float) and math.isnan(value):
        return None
    return value
