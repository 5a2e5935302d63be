"""Constraints stage: normalizes hard constraints and soft preferences locally."""

from __future__ import annotations

import logging
from datetime import date, datetime, timezone
from typing import Callable

from gift_concierge.context import (
    ConstraintConflict,
    ConstraintSet,
    HardBudget,
    HardConstraints,
    RelationshipCalibration,
    SoftPreferences,
)


_LOGGER = logging.getLogger(__name__)


def split_constraints(constraints: tuple[str, ...]) -> tuple[tuple[str, ...], tuple[str, ...]]:
    required: list[str] = []
    excluded: list[str] = []
    for raw in constraints:
        text = raw.strip()
        lowered = text.lower()
        if lowered.startswith("must"):
            required.append(text)
        elif lowered.startswith("no "):
            excluded.append(text)
    return tuple(required), tuple(excluded)


def _attribute(text: str) -> str:
    lowered = text.strip().lower()
    for prefix in ("must be ", "must have ", "must ", "no "):
        if lowered.startswith(prefix):
            return lowered[len(prefix) :].strip()
    return lowered


def parse_delivery_date(raw: str | None) -> date | None:
    if not raw:
        return None
    try:
        return date.fromisoformat(raw.strip()[:10])
    except ValueError:
        return None


# Conflict rules share one signature; each returns zero or more conflicts.
ConflictRule = Callable[[HardConstraints, SoftPreferences, tuple[str, ...], date], list[ConstraintConflict]]


def _reversed_budget(
    hard: HardConstraints,
    soft: SoftPreferences,
    avoided: tuple[str, ...],
    today: date,
) -> list[ConstraintConflict]:
    if hard.budget.min > hard.budget.max:
        return [
            ConstraintConflict(
                constraint="budget",
                issue="Minimum budget exceeds maximum",
                resolution="Adjust budget range",
            )
        ]
    return []


def _required_and_excluded(
    hard: HardConstraints,
    soft: SoftPreferences,
    avoided: tuple[str, ...],
    today: date,
) -> list[ConstraintConflict]:
    excluded = {_attribute(text) for text in hard.excluded}
    return [
        ConstraintConflict(
            constraint=text,
            issue=f"'{_attribute(text)}' is both required and excluded",
            resolution="Drop one of the two constraints",
        )
        for text in hard.required
        if _attribute(text) in excluded
    ]


def _delivery_in_past(
    hard: HardConstraints,
    soft: SoftPreferences,
    avoided: tuple[str, ...],
    today: date,
) -> list[ConstraintConflict]:
    if hard.delivery_by is not None and hard.delivery_by < today:
        return [
            ConstraintConflict(
                constraint="deliveryBy",
                issue=f"Delivery date {hard.delivery_by.isoformat()} is already in the past",
                resolution="Choose a digital or same-day gift, or update the date",
            )
        ]
    return []


def _vendor_avoided(
    hard: HardConstraints,
    soft: SoftPreferences,
    avoided: tuple[str, ...],
    today: date,
) -> list[ConstraintConflict]:
    avoided_lower = {value.strip().lower() for value in avoided}
    return [
        ConstraintConflict(
            constraint=f"vendor:{vendor}",
            issue=f"Preferred vendor '{vendor}' is also an avoided category",
            resolution="Treat the vendor as neutral",
        )
        for vendor in soft.vendors
        if vendor.strip().lower() in avoided_lower
    ]


CONFLICT_RULES: tuple[ConflictRule, ...] = (
    _reversed_budget,
    _required_and_excluded,
    _delivery_in_past,
    _vendor_avoided,
)


class Constraints:
    def __init__(self, rules: tuple[ConflictRule, ...] = CONFLICT_RULES, today: Callable[[], date] | None = None):
        self.rules = rules
        self._today = today or (lambda: datetime.now(timezone.utc).date())

    def run(self, relationship: RelationshipCalibration) -> ConstraintSet:
        facts = relationship.facts
        budget = relationship.adjusted_budget or facts.budget
        required, excluded = split_constraints(facts.constraints)

        hard = HardConstraints(
            budget=HardBudget(min=budget.min, max=budget.max),
            required=required,
            excluded=excluded,
            delivery_by=parse_delivery_date(facts.occasion.date if facts.occasion else None),
        )

        preferences = relationship.memory.user_preferences
        soft = SoftPreferences(
            vendors=preferences.preferred_vendors if preferences else (),
            categories=(),
            values=facts.values,
        )
        avoided = preferences.avoided_categories if preferences else ()

        today = self._today()
        conflicts: list[ConstraintConflict] = []
        for rule in self.rules:
            conflicts.extend(rule(hard, soft, avoided, today))

        if hard.budget.min > hard.budget.max:
            status = "impossible_constraints"
        elif conflicts:
            status = "conflicts_found"
        else:
            status = "all_valid"
        if conflicts:
            _LOGGER.warning("Constraint check found %d conflict(s); status=%s.", len(conflicts), status)

        return ConstraintSet(
            previous=relationship,
            hard=hard,
            soft=soft,
            validation_status=status,
            conflicts=tuple(conflicts),
        )
