"""Availability resolution for a therapist on one (date, shift type).

Rules are evaluated top to bottom and the first match decides; earlier rules
are stronger than later ones. ``inactive`` and ``on_fmla`` are hard blocks that
cannot be overridden here. The remaining blocks are soft: a manager may
confirm them with a recorded reason.
"""

from __future__ import annotations

import datetime
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Sequence, Tuple

from work_patterns import (
    NormalizedPattern,
    is_never_day,
    is_off_rotation_weekend,
    is_outside_hard_works_days,
)

INACTIVE = "inactive"
ON_FMLA = "on_fmla"
OVERRIDE_FORCE_OFF = "override_force_off"
BLOCKED_OFFS_DOW = "blocked_offs_dow"
BLOCKED_EVERY_OTHER_WEEKEND = "blocked_every_other_weekend"
BLOCKED_OUTSIDE_WORKS_DOW_HARD = "blocked_outside_works_dow_hard"
OVERRIDE_FORCE_ON = "override_force_on"

HARD_BLOCK_REASONS = frozenset({INACTIVE, ON_FMLA})
SOFT_BLOCK_REASONS = frozenset(
    {OVERRIDE_FORCE_OFF, BLOCKED_OFFS_DOW, BLOCKED_EVERY_OTHER_WEEKEND, BLOCKED_OUTSIDE_WORKS_DOW_HARD}
)

REASON_LABELS = {
    OVERRIDE_FORCE_OFF: "Force off override",
    BLOCKED_OFFS_DOW: "Never works this weekday",
    BLOCKED_EVERY_OTHER_WEEKEND: "Off weekend by alternating rotation",
    BLOCKED_OUTSIDE_WORKS_DOW_HARD: "Outside hard works-day rule",
    INACTIVE: "Inactive therapist",
    ON_FMLA: "Therapist on FMLA",
}


@dataclass(frozen=True)
class AvailabilityRequest:
    therapist_id: int
    cycle_id: int
    date: datetime.date
    shift_type: str
    is_active: bool
    on_fmla: bool
    pattern: NormalizedPattern
    overrides: Sequence = field(default_factory=tuple)


@dataclass(frozen=True)
class AvailabilityResolution:
    allowed: bool
    reason: Optional[str] = None
    override_note: Optional[str] = None

    @property
    def hard_block(self) -> bool:
        return self.reason in HARD_BLOCK_REASONS

    @property
    def soft_block(self) -> bool:
        return not self.allowed and self.reason in SOFT_BLOCK_REASONS

    @property
    def label(self) -> Optional[str]:
        return format_reason(self.reason)


def format_reason(reason: Optional[str]) -> Optional[str]:
    if reason is None:
        return None
    return REASON_LABELS.get(reason)


def scope_matches(override_scope: str, shift_type: str) -> bool:
    return override_scope == "both" or override_scope == shift_type


def find_matching_override(request: AvailabilityRequest):
    """Prefer an override scoped to the exact shift type over a 'both' override."""
    candidates = [
        override
        for override in request.overrides
        if override.therapist_id == request.therapist_id
        and override.cycle_id == request.cycle_id
        and override.date == request.date
        and scope_matches(override.shift_type, request.shift_type)
    ]
    for override in candidates:
        if override.shift_type == request.shift_type:
            return override
    return candidates[0] if candidates else None


def _override_type_is(override_type: str) -> Callable[[AvailabilityRequest], bool]:
    def _check(request: AvailabilityRequest) -> bool:
        override = find_matching_override(request)
        return override is not None and override.override_type == override_type

    return _check


# (predicate, reason, allowed) evaluated in order.
AVAILABILITY_RULES: List[Tuple[Callable[[AvailabilityRequest], bool], str, bool]] = [
    (lambda request: not request.is_active, INACTIVE, False),
    (lambda request: request.on_fmla, ON_FMLA, False),
    (_override_type_is("force_off"), OVERRIDE_FORCE_OFF, False),
    (lambda request: is_never_day(request.pattern, request.date), BLOCKED_OFFS_DOW, False),
    (lambda request: is_off_rotation_weekend(request.pattern, request.date), BLOCKED_EVERY_OTHER_WEEKEND, False),
    (lambda request: is_outside_hard_works_days(request.pattern, request.date), BLOCKED_OUTSIDE_WORKS_DOW_HARD, False),
    (_override_type_is("force_on"), OVERRIDE_FORCE_ON, True),
]


def resolve_availability(request: AvailabilityRequest) -> AvailabilityResolution:
    for predicate, reason, allowed in AVAILABILITY_RULES:
        if not predicate(request):
            continue
        note = None
        if reason in (OVERRIDE_FORCE_OFF, OVERRIDE_FORCE_ON):
            note = getattr(find_matching_override(request), "note", None)
        return AvailabilityResolution(allowed=allowed, reason=reason, override_note=note)
    return AvailabilityResolution(allowed=True)
