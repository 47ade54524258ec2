from __future__ import annotations

import copy
import math
from typing import Any, Dict, Optional

from database import get_active_policy, upsert_policy
from roles import normalize_employment_type


MAX_SHIFT_COVERAGE_PER_SLOT = 5
MIN_SHIFT_COVERAGE_PER_SLOT = 2
MAX_WORK_DAYS_PER_WEEK = 3
PART_TIME_MAX_WORK_DAYS_PER_WEEK = 3
PRN_MAX_WORK_DAYS_PER_WEEK = 1
WEEKLY_LIMIT_FLOOR = 1
WEEKLY_LIMIT_CEILING = 7

BASELINE_POLICY: Dict[str, Any] = {
    "name": "Baseline Staffing",
    "description": "Seeded coverage and weekly workload limits for therapist shifts.",
    "coverage": {
        "max_per_slot": MAX_SHIFT_COVERAGE_PER_SLOT,
        "min_per_slot": MIN_SHIFT_COVERAGE_PER_SLOT,
    },
    "weekly_limits": {
        "full_time": MAX_WORK_DAYS_PER_WEEK,
        "part_time": PART_TIME_MAX_WORK_DAYS_PER_WEEK,
        "prn": PRN_MAX_WORK_DAYS_PER_WEEK,
        "floor": WEEKLY_LIMIT_FLOOR,
        "ceiling": WEEKLY_LIMIT_CEILING,
    },
    "week_start": "sunday",
}


def build_default_policy() -> Dict[str, Any]:
    """Return a deepcopy so callers can mutate the policy safely."""
    return copy.deepcopy(BASELINE_POLICY)


def ensure_default_policy(session_factory) -> None:
    """Seed the baseline policy exactly once."""

    with session_factory() as session:
        if get_active_policy(session):
            return
        baseline = build_default_policy()
        name = baseline.get("name", "Baseline Staffing")
        params = {key: value for key, value in baseline.items() if key != "name"}
        upsert_policy(session, name, params, edited_by="system")


def load_active_policy(conn) -> Dict:
    """Return the active policy payload as a normalized dict."""
    if conn is None:
        return _normalize_policy({})
    if callable(conn):
        with conn() as session:
            policy = get_active_policy(session)
            return _normalize_policy(policy.params_dict() if policy else {})
    policy = get_active_policy(conn)
    return _normalize_policy(policy.params_dict() if policy else {})


def _to_int(value: Any, default: int) -> int:
    if isinstance(value, bool):
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _normalize_policy(policy: Dict) -> Dict:
    """Fill missing sections from the baseline and clamp limits into range."""
    normalized = copy.deepcopy(policy) if isinstance(policy, dict) else {}
    defaults = BASELINE_POLICY

    coverage_cfg = normalized.get("coverage")
    if not isinstance(coverage_cfg, dict):
        coverage_cfg = {}
    maximum = max(1, _to_int(coverage_cfg.get("max_per_slot"), defaults["coverage"]["max_per_slot"]))
    minimum = _to_int(coverage_cfg.get("min_per_slot"), defaults["coverage"]["min_per_slot"])
    coverage_cfg["max_per_slot"] = maximum
    coverage_cfg["min_per_slot"] = min(max(0, minimum), maximum)
    normalized["coverage"] = coverage_cfg

    weekly_cfg = normalized.get("weekly_limits")
    if not isinstance(weekly_cfg, dict):
        weekly_cfg = {}
    floor = max(1, _to_int(weekly_cfg.get("floor"), defaults["weekly_limits"]["floor"]))
    ceiling = max(floor, _to_int(weekly_cfg.get("ceiling"), defaults["weekly_limits"]["ceiling"]))
    weekly_cfg["floor"] = floor
    weekly_cfg["ceiling"] = ceiling
    for key in ("full_time", "part_time", "prn"):
        value = _to_int(weekly_cfg.get(key), defaults["weekly_limits"][key])
        weekly_cfg[key] = min(max(value, floor), ceiling)
    normalized["weekly_limits"] = weekly_cfg
    normalized.setdefault("week_start", defaults["week_start"])
    return normalized


def coverage_limits(policy: Dict) -> tuple[int, int]:
    """Return (minimum, maximum) coverage per slot."""
    coverage_cfg = _normalize_policy(policy)["coverage"]
    return coverage_cfg["min_per_slot"], coverage_cfg["max_per_slot"]


def default_weekly_limit(policy: Optional[Dict], employment_type: Optional[str]) -> int:
    weekly_cfg = _normalize_policy(policy or {})["weekly_limits"]
    return weekly_cfg[normalize_employment_type(employment_type)]


def sanitize_weekly_limit(value: Any, fallback: int, policy: Optional[Dict] = None) -> int:
    """Return the configured per-therapist limit when it is a whole number in range."""
    weekly_cfg = _normalize_policy(policy or {})["weekly_limits"]
    if value is None or isinstance(value, bool):
        return fallback
    try:
        numeric = float(value)
    except (TypeError, ValueError):
        return fallback
    if not math.isfinite(numeric):
        return fallback
    rounded = int(numeric)
    if rounded < weekly_cfg["floor"] or rounded > weekly_cfg["ceiling"]:
        return fallback
    return rounded


def weekly_limit_for(policy: Optional[Dict], employment_type: Optional[str], configured: Any) -> int:
    fallback = default_weekly_limit(policy, employment_type)
    return sanitize_weekly_limit(configured, fallback, policy)
