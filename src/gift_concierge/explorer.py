"""Explorer stage: hybrid graph + vector candidate discovery with a diversity pass."""

from __future__ import annotations

import logging
import math
import time
from typing import Sequence

import numpy as np

from gift_concierge.concurrency import run_batch, run_with_timeout
from gift_concierge.config import PipelineConfig
from gift_concierge.context import (
    Candidate,
    CandidateScores,
    ExplorationResult,
    MatchReasons,
    MeaningFramework,
    SearchMetadata,
    mean_edge_weight,
)
from gift_concierge.errors import RetrievalError
from gift_concierge.ports import Embedder, InterestEdge, ProductHit, RetrievalPort


_LOGGER = logging.getLogger(__name__)


def build_query_text(meaning: MeaningFramework) -> str:
    parts = [meaning.emotional_message, *meaning.core_values, *meaning.discovery_hints.semantic_queries]
    text = " ".join(part.strip() for part in parts if part and part.strip())
    return text or meaning.facts.previous.query


def rank_key(candidate: Candidate) -> tuple[float, float, float, str]:
    return (
        -candidate.scores.hybrid_score,
        -candidate.scores.vector_score,
        candidate.product.price,
        candidate.product.id,
    )


def price_bands(prices: Sequence[float]) -> list[int]:
    """Tercile index (0 low, 1 mid, 2 high) for each price."""
    if not prices:
        return []
    values = np.asarray(prices, dtype=np.float64)
    low_cut, high_cut = np.quantile(values, [1.0 / 3.0, 2.0 / 3.0])
    return [0 if value <= low_cut else 1 if value <= high_cut else 2 for value in values]


def diversify(ranked: list[Candidate], limit: int, max_vendor_share: float) -> tuple[list[Candidate], bool]:
    """Bounds the pool to ``limit`` while capping vendor share and spanning price terciles.

    Returns the selection in hybrid order and whether the diversity policy was
    applied; when the policy cannot fill the pool it falls back to the plain
    top ``limit`` by hybrid score.
    """
    if limit <= 0:
        return [], False
    if len(ranked) <= limit:
        return list(ranked), False

    cap = max(1, math.ceil(limit * max_vendor_share))
    bands = price_bands([candidate.product.price for candidate in ranked])
    vendor_counts: dict[str, int] = {}
    chosen: set[int] = set()

    def take(index: int) -> bool:
        vendor = ranked[index].product.vendor.strip().lower()
        if index in chosen or vendor_counts.get(vendor, 0) >= cap:
            return False
        chosen.add(index)
        vendor_counts[vendor] = vendor_counts.get(vendor, 0) + 1
        return True

    # Seed one candidate per price tercile, best-ranked first.
    for band in (0, 1, 2):
        for index, candidate_band in enumerate(bands):
            if candidate_band == band and take(index):
                break

    for index in range(len(ranked)):
        if len(chosen) >= limit:
            break
        take(index)

    if len(chosen) < limit:
        return list(ranked[:limit]), False
    return [ranked[index] for index in sorted(chosen)], True


def diversity_score(candidates: Sequence[Candidate]) -> float:
    if not candidates:
        return 0.0
    vendor_ratio = len({candidate.product.vendor.strip().lower() for candidate in candidates}) / len(candidates)
    terciles = len(set(price_bands([candidate.product.price for candidate in candidates])))
    return (vendor_ratio + min(terciles, 3) / 3.0) / 2.0


def coverage_score(candidates: Sequence[Candidate], pathways: Sequence[str]) -> float:
    if not pathways:
        return 0.0
    matched = {interest for candidate in candidates for interest in candidate.match_reasons.matched_interests}
    return sum(1 for pathway in pathways if pathway in matched) / len(pathways)


def _text_matches(haystack: str, needles: Sequence[str]) -> tuple[str, ...]:
    lowered = haystack.lower()
    return tuple(needle for needle in needles if needle and needle.strip().lower() in lowered)


class Explorer:
    def __init__(self, store: RetrievalPort, embedder: Embedder, cfg: PipelineConfig) -> None:
        self.store = store
        self.embedder = embedder
        self.cfg = cfg

    def _vector_hits(self, meaning: MeaningFramework) -> list[ProductHit]:
        budget = meaning.constraints.hard.budget
        try:
            embedding = self.embedder.embed(build_query_text(meaning))
            return run_with_timeout(
                "Vector similarity query",
                lambda: self.store.vector_query(
                    embedding,
                    self.cfg.candidate_pool_size * self.cfg.overfetch_multiple,
                    budget.min,
                    budget.max,
                ),
                self.cfg.retrieval_timeout_seconds,
            )
        except RetrievalError:
            raise
        except Exception as exc:
            raise RetrievalError(f"Vector similarity query failed: {exc}") from exc

    def _traverse(self, hits: list[ProductHit], pathways: tuple[str, ...]) -> list[list[InterestEdge]]:
        if not pathways:
            return [[] for _ in hits]
        results = run_batch(
            "Interest traversal",
            [lambda pid=hit.product.id: self.store.traverse([pid], list(pathways)) for hit in hits],
            self.cfg.retrieval_timeout_seconds,
        )
        edges: list[list[InterestEdge]] = []
        for hit, result in zip(hits, results):
            if isinstance(result, Exception):
                raise RetrievalError(f"Interest traversal failed for product {hit.product.id}: {result}") from result
            edges.append(list(result.get(hit.product.id, [])))
        return edges

    def run(self, meaning: MeaningFramework) -> ExplorationResult:
        started = time.perf_counter()
        constraints = meaning.constraints
        if constraints.validation_status == "impossible_constraints":
            _LOGGER.warning("Explorer skipped retrieval: constraints are impossible to satisfy.")
            return ExplorationResult(previous=meaning, candidates=())

        budget = constraints.hard.budget
        # Budget filter runs before scoring.
        hits = [hit for hit in self._vector_hits(meaning) if budget.contains(hit.product.price)]
        pathways = meaning.discovery_hints.interest_pathways
        edges_per_hit = self._traverse(hits, pathways)

        scored: list[Candidate] = []
        for hit, edges in zip(hits, edges_per_hit):
            weights = {edge.interest: edge.weight for edge in edges}
            product = hit.product
            product_text = " ".join([product.title, product.description, product.category or ""])
            archetype_hits = _text_matches(product_text, meaning.discovery_hints.archetype_filters)
            scored.append(
                Candidate(
                    product=product,
                    scores=CandidateScores.blend(
                        mean_edge_weight(weights),
                        hit.vector_score,
                        graph_weight=self.cfg.graph_weight,
                        vector_weight=self.cfg.vector_weight,
                    ),
                    match_reasons=MatchReasons(
                        matched_interests=tuple(weights),
                        matched_values=_text_matches(product_text, meaning.core_values),
                        matched_archetype=archetype_hits[0] if archetype_hits else "",
                        social_proof_count=hit.social_proof_count,
                    ),
                    edge_weights=tuple(sorted(weights.items())),
                )
            )

        scored.sort(key=rank_key)
        selected, applied = diversify(scored, self.cfg.candidate_pool_size, self.cfg.max_vendor_share)
        if not applied and len(scored) > self.cfg.candidate_pool_size:
            _LOGGER.info("Diversity pass could not fill the pool; using hybrid order.")

        avg_confidence = (
            sum(candidate.scores.confidence_score for candidate in selected) / len(selected) if selected else 0.0
        )
        elapsed_ms = (time.perf_counter() - started) * 1000.0
        return ExplorationResult(
            previous=meaning,
            candidates=tuple(selected),
            search_metadata=SearchMetadata(
                total_evaluated=len(scored),
                diversity_score=diversity_score(selected),
                coverage_score=coverage_score(selected, pathways),
                avg_confidence=avg_confidence,
                diversity_applied=applied,
            ),
            execution_time_ms=elapsed_ms,
        )
