"""Failure classes raised by ports, stages and the orchestrator."""

from __future__ import annotations


REASONING_ERROR_KINDS = ("timeout", "malformed", "upstream")


class ReasoningError(RuntimeError):
    def __init__(self, kind: str, message: str) -> None:
        if kind not in REASONING_ERROR_KINDS:
            kind = "upstream"
        super().__init__(f"[{kind}] {message}")
        self.kind = kind


class RetrievalError(RuntimeError):
    pass


class ExtractionFailure(RuntimeError):
    """A reasoning-backed stage had no safe default to fall back to."""

    def __init__(self, stage: str, message: str) -> None:
        super().__init__(f"{stage} extraction failed: {message}")
        self.stage = stage


class OrchestratorFailure(RuntimeError):
    """One pipeline stage raised; carries the stage name and the original cause."""

    def __init__(self, stage: str, cause: BaseException) -> None:
        super().__init__(f"Stage '{stage}' failed: {cause}")
        self.stage = stage
        self.cause = cause
