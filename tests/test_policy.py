from __future__ import annotations

import sys
import unittest
from pathlib import Path

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

APP_DIR = Path(__file__).resolve().parents[1] / "app"
if str(APP_DIR) not in sys.path:
    sys.path.insert(0, str(APP_DIR))

from database import Base, get_policies, upsert_policy  # noqa: E402
from policy import (  # noqa: E402
    build_default_policy,
    coverage_limits,
    default_weekly_limit,
    ensure_default_policy,
    load_active_policy,
    sanitize_weekly_limit,
    weekly_limit_for,
    _normalize_policy,
)


class PolicyNormalizationTests(unittest.TestCase):
    def test_default_policy_is_a_copy(self) -> None:
        first = build_default_policy()
        first["coverage"]["max_per_slot"] = 99
        self.assertEqual(build_default_policy()["coverage"]["max_per_slot"], 5)

    def test_missing_sections_fall_back_to_baseline(self) -> None:
        normalized = _normalize_policy({})
        self.assertEqual(coverage_limits(normalized), (2, 5))
        self.assertEqual(normalized["weekly_limits"]["full_time"], 3)
        self.assertEqual(normalized["weekly_limits"]["part_time"], 3)
        self.assertEqual(normalized["weekly_limits"]["prn"], 1)
        self.assertEqual(normalized["week_start"], "sunday")

    def test_coverage_bounds_are_clamped(self) -> None:
        normalized = _normalize_policy({"coverage": {"max_per_slot": 0, "min_per_slot": 9}})
        self.assertEqual(normalized["coverage"]["max_per_slot"], 1)
        self.assertEqual(normalized["coverage"]["min_per_slot"], 1)

    def test_weekly_limits_are_clamped_to_floor_and_ceiling(self) -> None:
        normalized = _normalize_policy({"weekly_limits": {"prn": 12, "part_time": 0, "full_time": "abc"}})
        self.assertEqual(normalized["weekly_limits"]["prn"], 7)
        self.assertEqual(normalized["weekly_limits"]["part_time"], 1)
        self.assertEqual(normalized["weekly_limits"]["full_time"], 3)

    def test_default_weekly_limit_by_employment_type(self) -> None:
        self.assertEqual(default_weekly_limit(None, "full_time"), 3)
        self.assertEqual(default_weekly_limit(None, "part_time"), 3)
        self.assertEqual(default_weekly_limit(None, "prn"), 1)
        self.assertEqual(default_weekly_limit(None, "contractor"), 3)
        self.assertEqual(default_weekly_limit({"weekly_limits": {"prn": 2}}, "PRN"), 2)

    def test_sanitize_weekly_limit(self) -> None:
        for bad in (None, True, "abc", float("inf"), float("nan"), 0, 8):
            with self.subTest(value=bad):
                self.assertEqual(sanitize_weekly_limit(bad, 3), 3)
        self.assertEqual(sanitize_weekly_limit(4.7, 3), 4)
        self.assertEqual(sanitize_weekly_limit("5", 3), 5)
        self.assertEqual(sanitize_weekly_limit(7, 3), 7)

    def test_configured_limit_overrides_employment_default(self) -> None:
        self.assertEqual(weekly_limit_for(None, "prn", 5), 5)
        self.assertEqual(weekly_limit_for(None, "prn", None), 1)
        self.assertEqual(weekly_limit_for(None, "full_time", 9), 3)


class PolicyStorageTests(unittest.TestCase):
    def setUp(self) -> None:
        self.engine = create_engine(
            "sqlite://",
            future=True,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
        Base.metadata.create_all(self.engine)
        self.Session = sessionmaker(bind=self.engine, expire_on_commit=False, future=True)

    def tearDown(self) -> None:
        self.engine.dispose()

    def test_ensure_default_policy_seeds_once(self) -> None:
        ensure_default_policy(self.Session)
        ensure_default_policy(self.Session)
        with self.Session() as session:
            policies = get_policies(session)
            self.assertEqual(len(policies), 1)
            self.assertEqual(policies[0].name, "Baseline Staffing")
            self.assertEqual(coverage_limits(load_active_policy(session)), (2, 5))

    def test_most_recent_policy_is_active(self) -> None:
        ensure_default_policy(self.Session)
        with self.Session() as session:
            upsert_policy(session, "Tight", {"coverage": {"max_per_slot": 3}}, edited_by="tests")
        policy = load_active_policy(self.Session)
        self.assertEqual(coverage_limits(policy), (2, 3))

    def test_no_connection_returns_baseline(self) -> None:
        self.assertEqual(coverage_limits(load_active_policy(None)), (2, 5))


if __name__ == "__main__":
    unittest.main()
