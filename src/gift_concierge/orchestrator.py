"""Runs the nine recommendation stages in order and assembles the execution trace."""

from __future__ import annotations

import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Callable

from gift_concierge.config import PipelineConfig
from gift_concierge.constraints import Constraints
from gift_concierge.context import GiftRequest, Presentation, to_jsonable
from gift_concierge.errors import OrchestratorFailure
from gift_concierge.explorer import Explorer
from gift_concierge.listener import Listener
from gift_concierge.meaning import Meaning
from gift_concierge.memory import Memory
from gift_concierge.ports import Embedder, ReasoningPort, RetrievalPort
from gift_concierge.presenter import Presenter
from gift_concierge.relationship import Relationship
from gift_concierge.storyteller import Storyteller
from gift_concierge.validator import Validator


_LOGGER = logging.getLogger(__name__)

STAGE_NAMES = (
    "listener",
    "memory",
    "relationship",
    "constraints",
    "meaning",
    "explorer",
    "validator",
    "storyteller",
    "presenter",
)


@dataclass(frozen=True)
class PipelineResult:
    recommendation_id: str
    presentation: Presentation
    timings_ms: dict[str, float]
    total_ms: float
    created_at: float = field(default_factory=time.time)

    def trace(self) -> dict[str, Any]:
        return {name: to_jsonable(record) for name, record in self.presentation.lineage().items()}

    def execution_stats(self) -> dict[str, Any]:
        if not self.timings_ms:
            return {"total_ms": self.total_ms}
        slowest = max(self.timings_ms.items(), key=lambda item: item[1])
        fastest = min(self.timings_ms.items(), key=lambda item: item[1])
        return {
            "total_ms": self.total_ms,
            "slowest_stage": {"name": slowest[0], "ms": slowest[1]},
            "fastest_stage": {"name": fastest[0], "ms": fastest[1]},
            "avg_stage_ms": sum(self.timings_ms.values()) / len(self.timings_ms),
        }


class Orchestrator:
    def __init__(
        self,
        *,
        reasoning: ReasoningPort,
        store: RetrievalPort,
        embedder: Embedder,
        cfg: PipelineConfig,
    ) -> None:
        self.stages: tuple[tuple[str, Callable[[Any], Any]], ...] = (
            ("listener", Listener(reasoning, cfg).run),
            ("memory", Memory(store, cfg).run),
            ("relationship", Relationship(reasoning, cfg).run),
            ("constraints", Constraints().run),
            ("meaning", Meaning(reasoning).run),
            ("explorer", Explorer(store, embedder, cfg).run),
            ("validator", Validator(cfg).run),
            ("storyteller", Storyteller(reasoning, cfg).run),
            ("presenter", Presenter(reasoning, cfg).run),
        )

    def execute(self, request: GiftRequest) -> PipelineResult:
        started = time.perf_counter()
        timings: dict[str, float] = {}
        current: Any = request
        for name, stage in self.stages:
            stage_started = time.perf_counter()
            try:
                current = stage(current)
            except Exception as exc:
                _LOGGER.error("Stage %s failed: %s", name, exc)
                raise OrchestratorFailure(name, exc) from exc
            timings[name] = (time.perf_counter() - stage_started) * 1000.0
            _LOGGER.info("Stage %s finished in %.1fms.", name, timings[name])

        total_ms = (time.perf_counter() - started) * 1000.0
        return PipelineResult(
            recommendation_id=f"rec_{uuid.uuid4().hex[:16]}",
            presentation=current,
            timings_ms=timings,
            total_ms=total_ms,
        )
