"""Recurring availability patterns for therapists.

A stored pattern may be missing or partially filled in; ``normalize_work_pattern``
turns whatever is stored into a ``NormalizedPattern`` whose unset parts carry
no constraint. Weekday indexes use 0 = Sunday.
"""

from __future__ import annotations

import datetime
from dataclasses import dataclass, field
from typing import Any, FrozenSet, Iterable, Optional

from validation import parse_iso_date, weekday_index

WEEKEND_ROTATIONS = ("none", "every_other")
WORKS_DOW_MODES = ("hard", "soft")
SHIFT_PREFERENCES = ("day", "night", "either")
SATURDAY = 6
SUNDAY = 0


@dataclass(frozen=True)
class NormalizedPattern:
    therapist_id: Optional[int] = None
    works_dow: FrozenSet[int] = field(default_factory=frozenset)
    offs_dow: FrozenSet[int] = field(default_factory=frozenset)
    weekend_rotation: str = "none"
    weekend_anchor_date: Optional[datetime.date] = None
    works_dow_mode: str = "hard"
    shift_preference: str = "either"


def normalize_dow_values(values: Optional[Iterable[Any]]) -> FrozenSet[int]:
    if values is None or isinstance(values, (str, bytes)):
        return frozenset()
    cleaned = set()
    for value in values:
        if isinstance(value, bool):
            continue
        try:
            number = int(value)
        except (TypeError, ValueError):
            continue
        if number != value and not isinstance(value, str):
            continue
        if 0 <= number <= 6:
            cleaned.add(number)
    return frozenset(cleaned)


def weekend_saturday(date_value: datetime.date) -> Optional[datetime.date]:
    """Return the Saturday of the weekend a date belongs to, or None on weekdays."""
    index = weekday_index(date_value)
    if index == SATURDAY:
        return date_value
    if index == SUNDAY:
        return date_value - datetime.timedelta(days=1)
    return None


def _anchor_saturday(value: datetime.date) -> datetime.date:
    saturday = weekend_saturday(value)
    if saturday is not None:
        return saturday
    return value + datetime.timedelta(days=SATURDAY - weekday_index(value))


def normalize_work_pattern(raw: Any = None, *, therapist_id: Optional[int] = None) -> NormalizedPattern:
    """Accept a WorkPattern row, a mapping, or None."""
    if raw is None:
        return NormalizedPattern(therapist_id=therapist_id)

    def _field(name: str, default=None):
        if isinstance(raw, dict):
            return raw.get(name, default)
        return getattr(raw, name, default)

    works = _field("works_dow_list")
    if works is None:
        works = _field("works_dow")
    offs = _field("offs_dow_list")
    if offs is None:
        offs = _field("offs_dow")

    rotation = _field("weekend_rotation")
    rotation = rotation if rotation in WEEKEND_ROTATIONS else "none"
    anchor = parse_iso_date(_field("weekend_anchor_date"))
    if rotation == "every_other" and anchor is None:
        rotation = "none"
    if rotation == "every_other":
        anchor = _anchor_saturday(anchor)
    else:
        anchor = None

    mode = _field("works_dow_mode")
    preference = _field("shift_preference")
    return NormalizedPattern(
        therapist_id=_field("therapist_id", therapist_id) or therapist_id,
        works_dow=normalize_dow_values(works),
        offs_dow=normalize_dow_values(offs),
        weekend_rotation=rotation,
        weekend_anchor_date=anchor,
        works_dow_mode=mode if mode in WORKS_DOW_MODES else "hard",
        shift_preference=preference if preference in SHIFT_PREFERENCES else "either",
    )


def is_weekend_on(pattern: NormalizedPattern, date_value: datetime.date) -> bool:
    """Alternate weekends from the anchor Saturday: even week offsets are worked."""
    saturday = weekend_saturday(date_value)
    if saturday is None or pattern.weekend_rotation != "every_other":
        return True
    if pattern.weekend_anchor_date is None:
        return True
    weeks_since_anchor = (saturday - pattern.weekend_anchor_date).days // 7
    return weeks_since_anchor % 2 == 0


def is_never_day(pattern: NormalizedPattern, date_value: datetime.date) -> bool:
    return weekday_index(date_value) in pattern.offs_dow


def is_off_rotation_weekend(pattern: NormalizedPattern, date_value: datetime.date) -> bool:
    return weekend_saturday(date_value) is not None and not is_weekend_on(pattern, date_value)


def is_outside_hard_works_days(pattern: NormalizedPattern, date_value: datetime.date) -> bool:
    if not pattern.works_dow or pattern.works_dow_mode != "hard":
        return False
    return weekday_index(date_value) not in pattern.works_dow
