from __future__ import annotations

import datetime
from typing import Dict, Iterable, List, Mapping, Optional, Set, Tuple

from sqlalchemy import select

from database import SHIFT_TYPES, Shift, Therapist
from policy import coverage_limits, weekly_limit_for

COUNTED_STATUSES = frozenset({"scheduled", "on_call"})


def parse_iso_date(value) -> Optional[datetime.date]:
    if isinstance(value, datetime.datetime):
        return value.date()
    if isinstance(value, datetime.date):
        return value
    if not isinstance(value, str):
        return None
    value = value.strip()
    # Only the extended YYYY-MM-DD form; fromisoformat also takes compact and week dates.
    if len(value) != 10 or not value.isascii() or value[4] != "-" or value[7] != "-":
        return None
    try:
        return datetime.date.fromisoformat(value)
    except ValueError:
        return None


def weekday_index(date_value: datetime.date) -> int:
    """Return the weekday with 0 = Sunday ... 6 = Saturday."""
    return (date_value.weekday() + 1) % 7


def week_bounds_for_date(date_value: datetime.date) -> Tuple[datetime.date, datetime.date]:
    """Return the Sunday..Saturday week containing the date."""
    week_start = date_value - datetime.timedelta(days=weekday_index(date_value))
    return week_start, week_start + datetime.timedelta(days=6)


def is_date_within_range(date_value: datetime.date, start: datetime.date, end: datetime.date) -> bool:
    return start <= date_value <= end


def build_date_range(start: datetime.date, end: datetime.date) -> List[datetime.date]:
    if start > end:
        return []
    return [start + datetime.timedelta(days=offset) for offset in range((end - start).days + 1)]


def counts_toward_limits(status: Optional[str]) -> bool:
    """Sick and called-off shifts do not count toward coverage or weekly limits."""
    return status in COUNTED_STATUSES


def coverage_slot_key(date_value: datetime.date, shift_type: str) -> str:
    return f"{date_value.isoformat()}:{shift_type}"


def weekly_count_key(user_id, week_start: datetime.date) -> str:
    return f"{user_id}:{week_start.isoformat()}"


def exceeds_coverage_limit(current_count: int, maximum: int) -> bool:
    return current_count >= maximum


def exceeds_weekly_limit(worked_dates: Set[datetime.date], target_date: datetime.date, limit: int) -> bool:
    if target_date in worked_dates:
        return len(worked_dates) > limit
    return len(worked_dates) + 1 > limit


def active_coverage_count(shifts: Iterable[Shift], *, exclude_shift_id: Optional[int] = None) -> int:
    return sum(
        1
        for shift in shifts
        if shift.id != exclude_shift_id and counts_toward_limits(shift.status)
    )


def worked_dates_in_week(
    shifts: Iterable[Shift],
    target_date: datetime.date,
    *,
    exclude_shift_id: Optional[int] = None,
) -> Set[datetime.date]:
    week_start, week_end = week_bounds_for_date(target_date)
    worked: Set[datetime.date] = set()
    for shift in shifts:
        if shift.id == exclude_shift_id:
            continue
        if not counts_toward_limits(shift.status):
            continue
        if week_start <= shift.date <= week_end:
            worked.add(shift.date)
    return worked


def slot_coverage_status(count: int, minimum: int, maximum: int) -> str:
    if count >= maximum:
        return "full"
    if count < minimum:
        return "under"
    return "ok"


def summarize_coverage_violations(
    cycle_dates: Iterable[datetime.date],
    coverage_by_slot: Mapping[str, int],
    minimum: int,
    maximum: int,
) -> Dict[str, int]:
    under = 0
    over = 0
    for date_value in cycle_dates:
        for shift_type in SHIFT_TYPES:
            count = coverage_by_slot.get(coverage_slot_key(date_value, shift_type), 0)
            if count < minimum:
                under += 1
            if count > maximum:
                over += 1
    return {"underCoverage": under, "overCoverage": over, "violations": under + over}


def summarize_weekly_violations(
    therapist_ids: Iterable,
    cycle_week_dates: Mapping[datetime.date, Set[datetime.date]],
    worked_dates_by_user_week: Mapping[str, Set[datetime.date]],
    limits: Mapping,
    default_limit: int,
) -> Dict[str, int]:
    """Count therapist-weeks scheduled under or over their required days."""
    under = 0
    over = 0
    for therapist_id in therapist_ids:
        limit = limits.get(therapist_id, default_limit)
        for week_start, dates_in_cycle in cycle_week_dates.items():
            required = min(limit, len(dates_in_cycle))
            worked = len(worked_dates_by_user_week.get(weekly_count_key(therapist_id, week_start), set()))
            if worked < required:
                under += 1
            if worked > required:
                over += 1
    return {"underCount": under, "overCount": over, "violations": under + over}


def cycle_week_dates(start: datetime.date, end: datetime.date) -> Dict[datetime.date, Set[datetime.date]]:
    weeks: Dict[datetime.date, Set[datetime.date]] = {}
    for date_value in build_date_range(start, end):
        week_start, _ = week_bounds_for_date(date_value)
        weeks.setdefault(week_start, set()).add(date_value)
    return weeks


def build_cycle_coverage_report(session, cycle, policy: Mapping) -> Dict[str, object]:
    """Coverage and weekly-workload violations across a whole cycle."""
    minimum, maximum = coverage_limits(dict(policy))
    cycle_dates = build_date_range(cycle.start_date, cycle.end_date)
    shifts = list(session.scalars(select(Shift).where(Shift.cycle_id == cycle.id)))

    coverage_by_slot: Dict[str, int] = {}
    worked_by_user_week: Dict[str, Set[datetime.date]] = {}
    for shift in shifts:
        if not counts_toward_limits(shift.status):
            continue
        slot = coverage_slot_key(shift.date, shift.shift_type)
        coverage_by_slot[slot] = coverage_by_slot.get(slot, 0) + 1
        week_start, _ = week_bounds_for_date(shift.date)
        worked_by_user_week.setdefault(weekly_count_key(shift.user_id, week_start), set()).add(shift.date)

    therapists = list(
        session.scalars(
            select(Therapist).where(
                Therapist.role != "manager",
                Therapist.is_active.is_(True),
                Therapist.on_fmla.is_(False),
            )
        )
    )
    limits = {
        therapist.id: weekly_limit_for(dict(policy), therapist.employment_type, therapist.max_work_days_per_week)
        for therapist in therapists
    }
    slots = {
        key: slot_coverage_status(count, minimum, maximum) for key, count in sorted(coverage_by_slot.items())
    }
    return {
        "cycleId": cycle.id,
        "coverage": summarize_coverage_violations(cycle_dates, coverage_by_slot, minimum, maximum),
        "weekly": summarize_weekly_violations(
            limits.keys(),
            cycle_week_dates(cycle.start_date, cycle.end_date),
            worked_by_user_week,
            limits,
            weekly_limit_for(dict(policy), None, None),
        ),
        "slots": slots,
    }
