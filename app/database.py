from __future__ import annotations

import datetime
import json
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
    create_engine,
    select,
    text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship, sessionmaker


DATA_DIR = Path(__file__).resolve().parent / "data"
DATA_DIR.mkdir(parents=True, exist_ok=True)
DATABASE_URL = f"sqlite:///{(DATA_DIR / 'scheduling.db').as_posix()}"

SHIFT_TYPES = ("day", "night")
OVERRIDE_SCOPES = ("day", "night", "both")
OVERRIDE_TYPES = ("force_off", "force_on")
SHIFT_STATUSES = ("scheduled", "on_call", "sick", "called_off")

SHIFT_SLOT_CONSTRAINT = "uq_shifts_cycle_user_date_type"
LEAD_SLOT_INDEX = "uq_shifts_one_lead_per_slot"


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


class Base(DeclarativeBase):
    """Metadata for directory, cycle and shift tables living in scheduling.db."""

    pass


class Therapist(Base):
    __tablename__ = "therapists"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    full_name: Mapped[str] = mapped_column(String(120), nullable=False)
    email: Mapped[str | None] = mapped_column(String(160), nullable=True, unique=True)
    role: Mapped[str] = mapped_column(String(16), nullable=False, default="therapist")
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    on_fmla: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    employment_type: Mapped[str] = mapped_column(String(16), nullable=False, default="full_time")
    is_lead_eligible: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    max_work_days_per_week: Mapped[int | None] = mapped_column(Integer, nullable=True)
    shift_type: Mapped[str] = mapped_column(String(8), nullable=False, default="day")
    created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow
    )

    work_pattern: Mapped[Optional["WorkPattern"]] = relationship(
        back_populates="therapist", cascade="all, delete-orphan", uselist=False
    )


class WorkPattern(Base):
    __tablename__ = "work_patterns"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    therapist_id: Mapped[int] = mapped_column(
        ForeignKey("therapists.id", ondelete="CASCADE"), nullable=False, unique=True
    )
    # Comma separated weekday indexes, 0 = Sunday.
    works_dow: Mapped[str] = mapped_column(String(32), nullable=False, default="")
    offs_dow: Mapped[str] = mapped_column(String(32), nullable=False, default="")
    weekend_rotation: Mapped[str] = mapped_column(String(16), nullable=False, default="none")
    weekend_anchor_date: Mapped[datetime.date | None] = mapped_column(Date, nullable=True)
    works_dow_mode: Mapped[str] = mapped_column(String(8), nullable=False, default="hard")
    shift_preference: Mapped[str] = mapped_column(String(8), nullable=False, default="either")
    updated_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow
    )

    therapist: Mapped[Therapist] = relationship(back_populates="work_pattern")

    @property
    def works_dow_list(self) -> List[int]:
        return _split_dow(self.works_dow)

    @works_dow_list.setter
    def works_dow_list(self, values: Iterable[int]) -> None:
        self.works_dow = _join_dow(values)

    @property
    def offs_dow_list(self) -> List[int]:
        return _split_dow(self.offs_dow)

    @offs_dow_list.setter
    def offs_dow_list(self, values: Iterable[int]) -> None:
        self.offs_dow = _join_dow(values)


def _split_dow(value: Optional[str]) -> List[int]:
    result: List[int] = []
    for token in (value or "").split(","):
        token = token.strip()
        if token.lstrip("-").isdigit():
            result.append(int(token))
    return result


def _join_dow(values: Iterable[int]) -> str:
    return ",".join(str(int(value)) for value in sorted(set(values or [])))


class ScheduleCycle(Base):
    __tablename__ = "schedule_cycles"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    label: Mapped[str] = mapped_column(String(80), nullable=False)
    start_date: Mapped[datetime.date] = mapped_column(Date, nullable=False)
    end_date: Mapped[datetime.date] = mapped_column(Date, nullable=False)
    published: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    shifts: Mapped[List["Shift"]] = relationship(back_populates="cycle", cascade="all, delete-orphan")


class AvailabilityOverride(Base):
    __tablename__ = "availability_overrides"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    cycle_id: Mapped[int] = mapped_column(ForeignKey("schedule_cycles.id", ondelete="CASCADE"), nullable=False)
    therapist_id: Mapped[int] = mapped_column(ForeignKey("therapists.id", ondelete="CASCADE"), nullable=False)
    date: Mapped[datetime.date] = mapped_column(Date, nullable=False)
    shift_type: Mapped[str] = mapped_column(String(8), nullable=False, default="both")
    override_type: Mapped[str] = mapped_column(String(16), nullable=False)
    note: Mapped[str | None] = mapped_column(String(255), nullable=True)
    created_by: Mapped[int | None] = mapped_column(Integer, nullable=True)
    source: Mapped[str] = mapped_column(String(16), nullable=False, default="manager")
    created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow
    )

    __table_args__ = (
        UniqueConstraint(
            "cycle_id", "therapist_id", "date", "shift_type", name="uq_availability_overrides_slot"
        ),
    )


class Shift(Base):
    __tablename__ = "shifts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    cycle_id: Mapped[int] = mapped_column(ForeignKey("schedule_cycles.id", ondelete="CASCADE"), nullable=False)
    user_id: Mapped[int] = mapped_column(ForeignKey("therapists.id", ondelete="CASCADE"), nullable=False)
    date: Mapped[datetime.date] = mapped_column(Date, nullable=False)
    shift_type: Mapped[str] = mapped_column(String(8), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="scheduled")
    role: Mapped[str] = mapped_column(String(8), nullable=False, default="staff")
    availability_override: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    availability_override_reason: Mapped[str | None] = mapped_column(String(255), nullable=True)
    availability_override_by: Mapped[int | None] = mapped_column(Integer, nullable=True)
    availability_override_at: Mapped[datetime.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    status_note: Mapped[str | None] = mapped_column(String(255), nullable=True)
    status_updated_by: Mapped[int | None] = mapped_column(Integer, nullable=True)
    status_updated_at: Mapped[datetime.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow
    )

    cycle: Mapped[ScheduleCycle] = relationship(back_populates="shifts")

    __table_args__ = (
        UniqueConstraint("cycle_id", "user_id", "date", "shift_type", name=SHIFT_SLOT_CONSTRAINT),
        Index(
            LEAD_SLOT_INDEX,
            "cycle_id",
            "date",
            "shift_type",
            unique=True,
            sqlite_where=text("role = 'lead'"),
            postgresql_where=text("role = 'lead'"),
        ),
        Index("ix_shifts_user_date", "user_id", "date"),
    )


class Policy(Base):
    __tablename__ = "policies"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    paramsJSON: Mapped[str] = mapped_column(String(8000), nullable=False, default="{}")
    lastEditedBy: Mapped[str] = mapped_column(String(60), nullable=False, default="system")
    lastEditedAt: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    __table_args__ = (
        UniqueConstraint("name", name="uq_policies_name"),
    )

    def params_dict(self) -> Dict:
        try:
            value = json.loads(self.paramsJSON or "{}")
            if isinstance(value, dict):
                return value
        except json.JSONDecodeError:
            pass
        return {}


class AuditLog(Base):
    __tablename__ = "audit_log"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(60), nullable=False)
    action: Mapped[str] = mapped_column(String(60), nullable=False)
    target_type: Mapped[str] = mapped_column(String(32), nullable=False, default="shift")
    target_id: Mapped[str | None] = mapped_column(String(80), nullable=True)
    payloadJSON: Mapped[str] = mapped_column(String(2000), nullable=False, default="{}")
    created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)


class Notification(Base):
    __tablename__ = "notifications"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("therapists.id", ondelete="CASCADE"), nullable=False)
    event_type: Mapped[str] = mapped_column(String(40), nullable=False)
    title: Mapped[str] = mapped_column(String(120), nullable=False)
    message: Mapped[str] = mapped_column(String(500), nullable=False)
    target_type: Mapped[str | None] = mapped_column(String(32), nullable=True)
    target_id: Mapped[str | None] = mapped_column(String(80), nullable=True)
    read_at: Mapped[datetime.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)


engine = create_engine(
    DATABASE_URL,
    echo=False,
    future=True,
)
SessionLocal = sessionmaker(bind=engine, expire_on_commit=False, future=True)


def init_database() -> None:
    Base.metadata.create_all(engine)


def get_cycle(session, cycle_id: int) -> Optional[ScheduleCycle]:
    return session.get(ScheduleCycle, cycle_id)


def get_therapist(session, therapist_id: int) -> Optional[Therapist]:
    return session.get(Therapist, therapist_id)


def get_work_pattern(session, therapist_id: int) -> Optional[WorkPattern]:
    stmt = select(WorkPattern).where(WorkPattern.therapist_id == therapist_id)
    return session.scalars(stmt).first()


def get_shift(session, shift_id: int) -> Optional[Shift]:
    return session.get(Shift, shift_id)


def list_overrides_for_date(
    session, therapist_id: int, cycle_id: int, date_value: datetime.date
) -> List[AvailabilityOverride]:
    stmt = (
        select(AvailabilityOverride)
        .where(
            AvailabilityOverride.therapist_id == therapist_id,
            AvailabilityOverride.cycle_id == cycle_id,
            AvailabilityOverride.date == date_value,
        )
        .order_by(AvailabilityOverride.id)
    )
    return list(session.scalars(stmt))


def find_shift_in_slot(
    session, cycle_id: int, user_id: int, date_value: datetime.date, shift_type: str
) -> Optional[Shift]:
    stmt = select(Shift).where(
        Shift.cycle_id == cycle_id,
        Shift.user_id == user_id,
        Shift.date == date_value,
        Shift.shift_type == shift_type,
    )
    return session.scalars(stmt).first()


def list_slot_shifts(
    session,
    cycle_id: int,
    date_value: datetime.date,
    shift_type: str,
    *,
    exclude_shift_id: Optional[int] = None,
) -> List[Shift]:
    stmt = select(Shift).where(
        Shift.cycle_id == cycle_id,
        Shift.date == date_value,
        Shift.shift_type == shift_type,
    )
    if exclude_shift_id is not None:
        stmt = stmt.where(Shift.id != exclude_shift_id)
    return list(session.scalars(stmt.order_by(Shift.id)))


def list_user_shifts_between(
    session,
    user_id: int,
    start: datetime.date,
    end: datetime.date,
    *,
    exclude_shift_id: Optional[int] = None,
) -> List[Shift]:
    """Return every shift for a user between start and end inclusive, across all cycles."""
    stmt = select(Shift).where(
        Shift.user_id == user_id,
        Shift.date >= start,
        Shift.date <= end,
    )
    if exclude_shift_id is not None:
        stmt = stmt.where(Shift.id != exclude_shift_id)
    return list(session.scalars(stmt.order_by(Shift.date, Shift.id)))


def upsert_availability_override(
    session,
    *,
    cycle_id: int,
    therapist_id: int,
    date_value: datetime.date,
    override_type: str,
    shift_type: str = "both",
    note: Optional[str] = None,
    created_by: Optional[int] = None,
    source: str = "manager",
) -> AvailabilityOverride:
    if override_type not in OVERRIDE_TYPES:
        raise ValueError(f"Unsupported override type '{override_type}'.")
    if shift_type not in OVERRIDE_SCOPES:
        raise ValueError(f"Unsupported override shift scope '{shift_type}'.")
    if source not in {"therapist", "manager"}:
        raise ValueError(f"Unsupported override source '{source}'.")
    stmt = select(AvailabilityOverride).where(
        AvailabilityOverride.cycle_id == cycle_id,
        AvailabilityOverride.therapist_id == therapist_id,
        AvailabilityOverride.date == date_value,
        AvailabilityOverride.shift_type == shift_type,
    )
    existing = session.scalars(stmt).first()
    if existing is None:
        existing = AvailabilityOverride(
            cycle_id=cycle_id,
            therapist_id=therapist_id,
            date=date_value,
            shift_type=shift_type,
        )
        session.add(existing)
    existing.override_type = override_type
    existing.note = (note or "").strip() or None
    existing.created_by = created_by
    existing.source = source
    session.commit()
    session.refresh(existing)
    return existing


def get_policies(session) -> List[Policy]:
    stmt = select(Policy).order_by(Policy.name.asc(), Policy.id.asc())
    return list(session.scalars(stmt))


def upsert_policy(session, name: str, params_dict: Dict, *, edited_by: str = "system") -> Policy:
    existing: Optional[Policy] = session.execute(
        select(Policy).where(Policy.name == name)
    ).scalars().first()
    payload = params_dict if isinstance(params_dict, dict) else {}
    if existing:
        existing.paramsJSON = json.dumps(payload)
        existing.lastEditedBy = edited_by
        existing.lastEditedAt = _utcnow()
        session.commit()
        session.refresh(existing)
        return existing
    policy = Policy(
        name=name,
        paramsJSON=json.dumps(payload),
        lastEditedBy=edited_by,
        lastEditedAt=_utcnow(),
    )
    session.add(policy)
    session.commit()
    session.refresh(policy)
    return policy


def get_active_policy(session) -> Optional[Policy]:
    stmt = select(Policy).order_by(Policy.lastEditedAt.desc(), Policy.id.desc())
    return session.scalars(stmt).first()


def record_audit_log(
    session,
    user_id: str,
    action: str,
    target_type: str = "shift",
    target_id: Optional[str] = None,
    payload: Optional[Dict[str, Any]] = None,
) -> AuditLog:
    log = AuditLog(
        user_id=str(user_id),
        action=action,
        target_type=target_type,
        target_id=str(target_id) if target_id is not None else None,
        payloadJSON=json.dumps(payload or {}),
    )
    session.add(log)
    session.commit()
    return log


def integrity_error_kind(exc: Exception) -> Optional[str]:
    """Classify a uniqueness violation on the shifts table.

    Returns "shift_slot" for the (cycle, user, date, shift type) constraint,
    "lead_slot" for the one-lead-per-slot index, otherwise None.
    """
    message = str(getattr(exc, "orig", None) or exc)
    if SHIFT_SLOT_CONSTRAINT in message or "shifts.user_id" in message:
        return "shift_slot"
    if LEAD_SLOT_INDEX in message or "shifts.cycle_id, shifts.date, shifts.shift_type" in message:
        return "lead_slot"
    return None
