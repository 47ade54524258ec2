from __future__ import annotations

import datetime
import sys
from pathlib import Path
from typing import Dict, List

from sqlalchemy import select

ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from database import (  # noqa: E402
    ScheduleCycle,
    SessionLocal,
    Therapist,
    WorkPattern,
    init_database,
    upsert_availability_override,
)
from policy import ensure_default_policy  # noqa: E402
from validation import week_bounds_for_date  # noqa: E402

MANAGER_EMAIL = "manager@teamwise.test"
CYCLE_WEEKS = 6

THERAPISTS: List[Dict] = [
    {
        "full_name": "Avery Brooks",
        "email": "avery@teamwise.test",
        "employment_type": "full_time",
        "is_lead_eligible": True,
        "shift_type": "day",
        "pattern": {"works_dow": [1, 2, 3, 4], "offs_dow": [], "works_dow_mode": "soft"},
    },
    {
        "full_name": "Jordan Patel",
        "email": "jordan@teamwise.test",
        "employment_type": "full_time",
        "is_lead_eligible": False,
        "shift_type": "day",
        "pattern": {"works_dow": [], "offs_dow": [0], "weekend_rotation": "every_other"},
    },
    {
        "full_name": "Riley Chen",
        "email": "riley@teamwise.test",
        "employment_type": "part_time",
        "is_lead_eligible": True,
        "shift_type": "night",
        "pattern": {"works_dow": [3, 4, 5, 6], "offs_dow": [], "works_dow_mode": "hard"},
    },
    {
        "full_name": "Morgan Diaz",
        "email": "morgan@teamwise.test",
        "employment_type": "prn",
        "is_lead_eligible": False,
        "shift_type": "night",
        "max_work_days_per_week": 2,
        "pattern": None,
    },
    {
        "full_name": "Casey Nguyen",
        "email": "casey@teamwise.test",
        "employment_type": "full_time",
        "is_lead_eligible": False,
        "shift_type": "day",
        "on_fmla": True,
        "pattern": None,
    },
]


def next_cycle_start(today: datetime.date) -> datetime.date:
    week_start, _ = week_bounds_for_date(today)
    return week_start + datetime.timedelta(days=7)


def seed_demo(today: datetime.date | None = None) -> bool:
    """Create the demo directory and cycle; returns False when it already exists."""
    init_database()
    ensure_default_policy(SessionLocal)
    today = today or datetime.date.today()
    with SessionLocal() as session:
        existing = session.scalars(select(Therapist).where(Therapist.email == MANAGER_EMAIL)).first()
        if existing:
            print("Demo data already present; skipping.")
            return False

        manager = Therapist(full_name="Demo Manager", email=MANAGER_EMAIL, role="manager", is_lead_eligible=False)
        session.add(manager)

        start = next_cycle_start(today)
        cycle = ScheduleCycle(
            label=f"Cycle starting {start.isoformat()}",
            start_date=start,
            end_date=start + datetime.timedelta(days=CYCLE_WEEKS * 7 - 1),
            published=False,
        )
        session.add(cycle)

        created: List[Therapist] = []
        for row in THERAPISTS:
            therapist = Therapist(
                full_name=row["full_name"],
                email=row["email"],
                role="therapist",
                employment_type=row["employment_type"],
                is_lead_eligible=row["is_lead_eligible"],
                shift_type=row["shift_type"],
                on_fmla=row.get("on_fmla", False),
                max_work_days_per_week=row.get("max_work_days_per_week"),
            )
            pattern = row.get("pattern")
            if pattern:
                work_pattern = WorkPattern(
                    weekend_rotation=pattern.get("weekend_rotation", "none"),
                    weekend_anchor_date=(
                        start + datetime.timedelta(days=6) if pattern.get("weekend_rotation") == "every_other" else None
                    ),
                    works_dow_mode=pattern.get("works_dow_mode", "hard"),
                )
                work_pattern.works_dow_list = pattern.get("works_dow", [])
                work_pattern.offs_dow_list = pattern.get("offs_dow", [])
                therapist.work_pattern = work_pattern
            session.add(therapist)
            created.append(therapist)
        session.commit()

        upsert_availability_override(
            session,
            cycle_id=cycle.id,
            therapist_id=created[0].id,
            date_value=start + datetime.timedelta(days=2),
            override_type="force_off",
            shift_type="both",
            note="Conference day",
            created_by=manager.id,
            source="manager",
        )
    print(f"Seeded manager, {len(THERAPISTS)} therapists and a {CYCLE_WEEKS}-week cycle.")
    return True


if __name__ == "__main__":
    seed_demo()
