from __future__ import annotations

import datetime
import sys
from pathlib import Path

import pytest
from sqlalchemy import create_engine, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

APP_DIR = Path(__file__).resolve().parents[1] / "app"
if str(APP_DIR) not in sys.path:
    sys.path.insert(0, str(APP_DIR))

from database import Base, ScheduleCycle, Shift, Therapist  # noqa: E402
from designated_lead import (  # noqa: E402
    INVALID_INPUT,
    LEAD_NOT_ELIGIBLE,
    MULTIPLE_LEADS_PREVENTED,
    set_designated_lead,
)

SLOT_DATE = datetime.date(2026, 3, 3)


def _seed(session):
    cycle = ScheduleCycle(label="Spring", start_date=datetime.date(2026, 3, 1), end_date=datetime.date(2026, 4, 11))
    lead_a = Therapist(full_name="Avery Brooks", role="therapist", is_lead_eligible=True)
    lead_b = Therapist(full_name="Riley Chen", role="therapist", is_lead_eligible=True)
    staff = Therapist(full_name="Jordan Patel", role="therapist", is_lead_eligible=False)
    manager = Therapist(full_name="Demo Manager", role="manager", is_lead_eligible=True)
    session.add_all([cycle, lead_a, lead_b, staff, manager])
    session.commit()
    return {"cycle": cycle, "a": lead_a, "b": lead_b, "staff": staff, "manager": manager}


def _add_shift(session, cycle, therapist, role="staff", shift_type="day"):
    shift = Shift(
        cycle_id=cycle.id,
        user_id=therapist.id,
        date=SLOT_DATE,
        shift_type=shift_type,
        status="scheduled",
        role=role,
    )
    session.add(shift)
    session.commit()
    return shift


def _slot_roles(session, cycle_id):
    rows = session.scalars(
        select(Shift).where(Shift.cycle_id == cycle_id, Shift.date == SLOT_DATE, Shift.shift_type == "day")
    )
    return {row.user_id: row.role for row in rows}


@pytest.fixture()
def lead_db():
    engine = create_engine(
        "sqlite://",
        future=True,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    Session = sessionmaker(bind=engine, expire_on_commit=False, future=True)
    session = Session()
    try:
        yield session, _seed(session)
    finally:
        session.close()
        engine.dispose()


def _designate(session, seeded, who, **kwargs):
    return set_designated_lead(
        session,
        cycle_id=seeded["cycle"].id,
        therapist_id=seeded[who].id,
        date_value=SLOT_DATE,
        shift_type=kwargs.pop("shift_type", "day"),
        **kwargs,
    )


def test_promotes_existing_staff_row(lead_db) -> None:
    session, seeded = lead_db
    shift = _add_shift(session, seeded["cycle"], seeded["a"])

    result = _designate(session, seeded, "a")

    assert result.ok
    assert result.shift_id == shift.id
    assert not result.created
    assert _slot_roles(session, seeded["cycle"].id) == {seeded["a"].id: "lead"}


def test_inserts_lead_row_when_therapist_has_no_shift(lead_db) -> None:
    session, seeded = lead_db

    result = _designate(session, seeded, "a")

    assert result.ok and result.created
    row = session.get(Shift, result.shift_id)
    assert row.role == "lead"
    assert row.status == "scheduled"


def test_previous_lead_is_demoted(lead_db) -> None:
    session, seeded = lead_db
    _add_shift(session, seeded["cycle"], seeded["a"], role="lead")
    _add_shift(session, seeded["cycle"], seeded["b"])

    result = _designate(session, seeded, "b")

    assert result.ok
    assert result.previous_lead_user_id == seeded["a"].id
    assert _slot_roles(session, seeded["cycle"].id) == {seeded["a"].id: "staff", seeded["b"].id: "lead"}


def test_ineligible_therapist_and_managers_are_rejected(lead_db) -> None:
    session, seeded = lead_db
    _add_shift(session, seeded["cycle"], seeded["staff"])

    for who in ("staff", "manager"):
        result = _designate(session, seeded, who)
        assert not result.ok
        assert result.reason == LEAD_NOT_ELIGIBLE
    assert _slot_roles(session, seeded["cycle"].id) == {seeded["staff"].id: "staff"}


def test_unknown_shift_type_is_invalid(lead_db) -> None:
    session, seeded = lead_db
    result = _designate(session, seeded, "a", shift_type="evening")
    assert result.reason == INVALID_INPUT


def test_override_metadata_is_written_on_the_lead_row(lead_db) -> None:
    session, seeded = lead_db
    result = _designate(
        session,
        seeded,
        "a",
        override_metadata={
            "availability_override": True,
            "availability_override_reason": "Covering",
            "availability_override_by": seeded["manager"].id,
        },
    )
    row = session.get(Shift, result.shift_id)
    assert row.availability_override is True
    assert row.availability_override_reason == "Covering"
    assert row.availability_override_by == seeded["manager"].id


def test_store_allows_only_one_lead_per_slot(lead_db) -> None:
    session, seeded = lead_db
    _add_shift(session, seeded["cycle"], seeded["a"], role="lead")
    with pytest.raises(IntegrityError):
        _add_shift(session, seeded["cycle"], seeded["b"], role="lead")
    session.rollback()
    # Leads on the other shift type of the same date are independent.
    _add_shift(session, seeded["cycle"], seeded["b"], role="lead", shift_type="night")


class _RacingSession:
    """Let a competing designation commit right after the slot has been read."""

    def __init__(self, session, on_read):
        self._session = session
        self._on_read = on_read

    def scalars(self, statement):
        rows = list(self._session.scalars(statement))
        if self._on_read is not None:
            hook, self._on_read = self._on_read, None
            hook()
        return rows

    def __getattr__(self, name):
        return getattr(self._session, name)


def test_concurrent_designation_is_reported(tmp_path) -> None:
    engine = create_engine(f"sqlite:///{(tmp_path / 'lead.db').as_posix()}", future=True)
    Base.metadata.create_all(engine)
    Session = sessionmaker(bind=engine, expire_on_commit=False, future=True)
    with Session() as setup:
        seeded = _seed(setup)
        cycle_id, a_id, b_id = seeded["cycle"].id, seeded["a"].id, seeded["b"].id

    def competing_designation() -> None:
        with Session() as other:
            other.add(
                Shift(cycle_id=cycle_id, user_id=b_id, date=SLOT_DATE, shift_type="day", status="scheduled", role="lead")
            )
            other.commit()

    with Session() as session:
        result = set_designated_lead(
            _RacingSession(session, competing_designation),
            cycle_id=cycle_id,
            therapist_id=a_id,
            date_value=SLOT_DATE,
            shift_type="day",
        )
        assert not result.ok
        assert result.reason == MULTIPLE_LEADS_PREVENTED
        assert _slot_roles(session, cycle_id) == {b_id: "lead"}
    engine.dispose()
