"""Pipeline tunables with documented defaults, overridable through GC_* environment variables."""

from __future__ import annotations

import os
from dataclasses import dataclass


def env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = float(raw)
    except Exception:
        return default
    return value if value > 0 else default


def env_int(name: str, default: int, *, allow_zero: bool = False) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw)
    except Exception:
        return default
    return value if value > 0 or (allow_zero and value == 0) else default


@dataclass(frozen=True)
class PipelineConfig:
    # Explorer: hybridScore = graph_weight * graphScore + vector_weight * vectorScore
    graph_weight: float = 0.6
    vector_weight: float = 0.4
    candidate_pool_size: int = 15
    overfetch_multiple: int = 4
    max_vendor_share: float = 0.4

    # Validator
    relevance_threshold: float = 0.6

    # Presenter
    max_recommendations: int = 5
    budget_friendly_price: float = 50.0
    highly_recommended_score: float = 0.85
    popular_choice_min_proof: int = 10

    # Learning
    boost_multiplier: float = 1.1
    decay_multiplier: float = 0.9
    weight_floor: float = 0.05
    weight_ceiling: float = 1.0

    # Budgets
    default_budget_min: float = 0.0
    default_budget_max: float = 1000.0
    platform_budget_min: float = 0.0
    platform_budget_max: float = 10000.0

    # Listener
    fallback_confidence: float = 0.1

    # Per-call timeouts (seconds)
    reasoning_timeout_seconds: float = 20.0
    retrieval_timeout_seconds: float = 10.0

    @classmethod
    def from_env(cls) -> "PipelineConfig":
        defaults = cls()
        return cls(
            graph_weight=env_float("GC_GRAPH_WEIGHT", defaults.graph_weight),
            vector_weight=env_float("GC_VECTOR_WEIGHT", defaults.vector_weight),
            candidate_pool_size=env_int("GC_CANDIDATE_POOL_SIZE", defaults.candidate_pool_size),
            overfetch_multiple=env_int("GC_OVERFETCH_MULTIPLE", defaults.overfetch_multiple),
            max_vendor_share=env_float("GC_MAX_VENDOR_SHARE", defaults.max_vendor_share),
            relevance_threshold=env_float("GC_RELEVANCE_THRESHOLD", defaults.relevance_threshold),
            max_recommendations=env_int("GC_MAX_RECOMMENDATIONS", defaults.max_recommendations),
            budget_friendly_price=env_float("GC_BUDGET_FRIENDLY_PRICE", defaults.budget_friendly_price),
            highly_recommended_score=env_float("GC_HIGHLY_RECOMMENDED_SCORE", defaults.highly_recommended_score),
            popular_choice_min_proof=env_int("GC_POPULAR_CHOICE_MIN_PROOF", defaults.popular_choice_min_proof),
            boost_multiplier=env_float("GC_BOOST_MULTIPLIER", defaults.boost_multiplier),
            decay_multiplier=env_float("GC_DECAY_MULTIPLIER", defaults.decay_multiplier),
            weight_floor=env_float("GC_WEIGHT_FLOOR", defaults.weight_floor),
            weight_ceiling=env_float("GC_WEIGHT_CEILING", defaults.weight_ceiling),
            default_budget_min=defaults.default_budget_min,
            default_budget_max=env_float("GC_DEFAULT_BUDGET_MAX", defaults.default_budget_max),
            platform_budget_min=defaults.platform_budget_min,
            platform_budget_max=env_float("GC_PLATFORM_BUDGET_MAX", defaults.platform_budget_max),
            fallback_confidence=env_float("GC_FALLBACK_CONFIDENCE", defaults.fallback_confidence),
            reasoning_timeout_seconds=env_float("GC_REASONING_TIMEOUT_SECONDS", defaults.reasoning_timeout_seconds),
            retrieval_timeout_seconds=env_float("GC_RETRIEVAL_TIMEOUT_SECONDS", defaults.retrieval_timeout_seconds),
        )
