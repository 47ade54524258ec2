from __future__ import annotations

import datetime
import sys
from pathlib import Path

APP_DIR = Path(__file__).resolve().parents[1] / "app"
if str(APP_DIR) not in sys.path:
    sys.path.insert(0, str(APP_DIR))

from database import WorkPattern  # noqa: E402
from work_patterns import (  # noqa: E402
    NormalizedPattern,
    is_never_day,
    is_off_rotation_weekend,
    is_outside_hard_works_days,
    is_weekend_on,
    normalize_dow_values,
    normalize_work_pattern,
    weekend_saturday,
)

D = datetime.date


def test_missing_pattern_normalizes_to_inert_defaults() -> None:
    pattern = normalize_work_pattern(None, therapist_id=7)
    assert pattern == NormalizedPattern(therapist_id=7)
    assert pattern.works_dow == frozenset()
    assert pattern.weekend_rotation == "none"
    assert pattern.works_dow_mode == "hard"
    assert pattern.shift_preference == "either"
    assert not is_outside_hard_works_days(pattern, D(2026, 3, 3))


def test_dow_values_are_cleaned() -> None:
    assert normalize_dow_values([1, 2, "3", 9, -1, True, 2.5]) == frozenset({1, 2, 3})
    assert normalize_dow_values("1,2") == frozenset()
    assert normalize_dow_values(None) == frozenset()


def test_unknown_modes_fall_back() -> None:
    pattern = normalize_work_pattern(
        {"works_dow_mode": "strict", "shift_preference": "evening", "weekend_rotation": "monthly"}
    )
    assert pattern.works_dow_mode == "hard"
    assert pattern.shift_preference == "either"
    assert pattern.weekend_rotation == "none"


def test_every_other_without_anchor_is_disabled() -> None:
    pattern = normalize_work_pattern({"weekend_rotation": "every_other"})
    assert pattern.weekend_rotation == "none"
    assert pattern.weekend_anchor_date is None
    assert not is_off_rotation_weekend(pattern, D(2026, 3, 14))


def test_anchor_snaps_to_weekend_saturday() -> None:
    sunday = normalize_work_pattern({"weekend_rotation": "every_other", "weekend_anchor_date": "2026-03-08"})
    assert sunday.weekend_anchor_date == D(2026, 3, 7)
    wednesday = normalize_work_pattern({"weekend_rotation": "every_other", "weekend_anchor_date": D(2026, 3, 4)})
    assert wednesday.weekend_anchor_date == D(2026, 3, 7)


def test_weekend_saturday() -> None:
    assert weekend_saturday(D(2026, 3, 7)) == D(2026, 3, 7)
    assert weekend_saturday(D(2026, 3, 8)) == D(2026, 3, 7)
    assert weekend_saturday(D(2026, 3, 9)) is None


def test_alternating_weekends_from_anchor() -> None:
    pattern = normalize_work_pattern({"weekend_rotation": "every_other", "weekend_anchor_date": "2026-03-07"})
    assert is_weekend_on(pattern, D(2026, 3, 7))
    assert is_weekend_on(pattern, D(2026, 3, 8))
    assert not is_weekend_on(pattern, D(2026, 3, 14))
    assert not is_weekend_on(pattern, D(2026, 3, 15))
    assert is_weekend_on(pattern, D(2026, 3, 21))
    assert not is_weekend_on(pattern, D(2026, 2, 28))
    # Weekdays are never affected by the rotation.
    assert not is_off_rotation_weekend(pattern, D(2026, 3, 11))
    assert is_off_rotation_weekend(pattern, D(2026, 3, 14))


def test_orm_row_uses_list_properties() -> None:
    row = WorkPattern(therapist_id=3, works_dow_mode="soft", shift_preference="night")
    row.works_dow_list = [3, 1]
    row.offs_dow_list = [0]
    assert row.works_dow == "1,3"

    pattern = normalize_work_pattern(row)
    assert pattern.therapist_id == 3
    assert pattern.works_dow == frozenset({1, 3})
    assert pattern.offs_dow == frozenset({0})
    assert pattern.shift_preference == "night"
    assert is_never_day(pattern, D(2026, 3, 8))
    # Soft mode never blocks outside the works days.
    assert not is_outside_hard_works_days(pattern, D(2026, 3, 3))


def test_hard_works_days() -> None:
    pattern = normalize_work_pattern({"works_dow": [1, 2], "works_dow_mode": "hard"})
    assert not is_outside_hard_works_days(pattern, D(2026, 3, 2))
    assert is_outside_hard_works_days(pattern, D(2026, 3, 4))
