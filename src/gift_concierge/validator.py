"""Validator stage: the five-check gate every candidate must clear."""

from __future__ import annotations

import logging
from typing import Callable

from gift_concierge.config import PipelineConfig
from gift_concierge.context import (
    Candidate,
    CheckResult,
    ConstraintSet,
    ExplorationResult,
    RejectedCandidate,
    RelationshipCalibration,
    ValidationOutcome,
    ValidationSummary,
    ValidationVerdict,
)


_LOGGER = logging.getLogger(__name__)

Check = Callable[[Candidate, ConstraintSet, RelationshipCalibration, PipelineConfig], CheckResult]


def check_budget(
    candidate: Candidate,
    constraints: ConstraintSet,
    relationship: RelationshipCalibration,
    cfg: PipelineConfig,
) -> CheckResult:
    # Re-checked against the current hard budget; the retrieval filter may have used a looser one.
    in_budget = constraints.hard.budget.contains(candidate.product.price)
    return CheckResult(
        name="budget",
        passed=in_budget,
        score=1.0 if in_budget else 0.0,
        issues=() if in_budget else (f"Price {candidate.product.price:.2f} outside budget",),
    )


def check_constraints(
    candidate: Candidate,
    constraints: ConstraintSet,
    relationship: RelationshipCalibration,
    cfg: PipelineConfig,
) -> CheckResult:
    # No product attribute data yet: required/excluded attributes cannot be evaluated.
    return CheckResult(name="constraints", passed=True)


def check_relevance(
    candidate: Candidate,
    constraints: ConstraintSet,
    relationship: RelationshipCalibration,
    cfg: PipelineConfig,
) -> CheckResult:
    score = candidate.scores.hybrid_score
    passed = score > cfg.relevance_threshold
    return CheckResult(
        name="relevance",
        passed=passed,
        score=score,
        issues=() if passed else (f"Hybrid score {score:.2f} at or below {cfg.relevance_threshold:.2f}",),
    )


def check_quality(
    candidate: Candidate,
    constraints: ConstraintSet,
    relationship: RelationshipCalibration,
    cfg: PipelineConfig,
) -> CheckResult:
    product = candidate.product
    issues: list[str] = []
    if not product.description.strip():
        issues.append("Missing description")
    if not product.image_url:
        issues.append("Missing image")
    if product.price <= 0:
        issues.append("Invalid price")
    return CheckResult(name="quality", passed=not issues, issues=tuple(issues))


def check_appropriateness(
    candidate: Candidate,
    constraints: ConstraintSet,
    relationship: RelationshipCalibration,
    cfg: PipelineConfig,
) -> CheckResult:
    # Relationship-based concern detection is not modelled yet.
    return CheckResult(name="appropriateness", passed=True)


CHECKS: tuple[Check, ...] = (
    check_budget,
    check_constraints,
    check_relevance,
    check_quality,
    check_appropriateness,
)


def validate_candidate(
    candidate: Candidate,
    constraints: ConstraintSet,
    relationship: RelationshipCalibration,
    cfg: PipelineConfig,
    checks: tuple[Check, ...] = CHECKS,
) -> ValidationVerdict:
    results = tuple(check(candidate, constraints, relationship, cfg) for check in checks)
    return ValidationVerdict.from_checks(candidate.product.id, results)


class Validator:
    def __init__(self, cfg: PipelineConfig, checks: tuple[Check, ...] = CHECKS) -> None:
        self.cfg = cfg
        self.checks = checks

    def run(self, exploration: ExplorationResult) -> ValidationOutcome:
        constraints = exploration.constraints
        relationship = constraints.relationship

        accepted: list[Candidate] = []
        rejected: list[RejectedCandidate] = []
        verdicts: list[ValidationVerdict] = []
        for candidate in exploration.candidates:
            verdict = validate_candidate(candidate, constraints, relationship, self.cfg, self.checks)
            verdicts.append(verdict)
            if verdict.passed:
                accepted.append(candidate)
            else:
                rejected.append(RejectedCandidate(candidate=candidate, verdict=verdict))

        if exploration.candidates and not accepted:
            _LOGGER.warning("No candidates passed validation (%d rejected).", len(rejected))

        avg_score = sum(verdict.overall_score for verdict in verdicts) / len(verdicts) if verdicts else 0.0
        return ValidationOutcome(
            previous=exploration,
            accepted=tuple(accepted),
            rejected=tuple(rejected),
            verdicts=tuple(verdicts),
            summary=ValidationSummary(
                total_candidates=len(verdicts),
                passed=len(accepted),
                rejected=len(rejected),
                avg_validation_score=avg_score,
            ),
        )
