from __future__ import annotations

import datetime
from dataclasses import dataclass
from typing import Any, Dict, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from database import SHIFT_TYPES, Shift, get_therapist, integrity_error_kind
from roles import can_designate_lead

LEAD_NOT_ELIGIBLE = "lead_not_eligible"
MULTIPLE_LEADS_PREVENTED = "multiple_leads_prevented"
INVALID_INPUT = "invalid_input"


@dataclass
class LeadResult:
    ok: bool
    reason: Optional[str] = None
    shift_id: Optional[int] = None
    created: bool = False
    previous_lead_user_id: Optional[int] = None


def set_designated_lead(
    session,
    *,
    cycle_id: int,
    therapist_id: int,
    date_value: datetime.date,
    shift_type: str,
    override_metadata: Optional[Dict[str, Any]] = None,
) -> LeadResult:
    """Make the therapist the only lead of the (cycle, date, shift type) slot.

    The previous lead, if any, is demoted to staff and the therapist's row is
    promoted (or inserted as a scheduled lead shift) in one transaction. When
    override_metadata is given it is written onto the promoted row as well.
    """
    if shift_type not in SHIFT_TYPES:
        return LeadResult(ok=False, reason=INVALID_INPUT)

    therapist = get_therapist(session, therapist_id)
    if therapist is None or not can_designate_lead(therapist.role, therapist.is_lead_eligible):
        return LeadResult(ok=False, reason=LEAD_NOT_ELIGIBLE)

    slot_rows = list(
        session.scalars(
            select(Shift).where(
                Shift.cycle_id == cycle_id,
                Shift.date == date_value,
                Shift.shift_type == shift_type,
            )
        )
    )
    previous_lead_user_id = None
    target: Optional[Shift] = None
    try:
        for row in slot_rows:
            if row.user_id == therapist_id:
                target = row
            elif row.role == "lead":
                previous_lead_user_id = row.user_id
                row.role = "staff"
        # Demotions must reach the store before the promotion or the
        # one-lead index rejects the write.
        session.flush()

        created = target is None
        if target is None:
            target = Shift(
                cycle_id=cycle_id,
                user_id=therapist_id,
                date=date_value,
                shift_type=shift_type,
                status="scheduled",
                role="lead",
            )
            session.add(target)
        else:
            target.role = "lead"
        if override_metadata is not None:
            for key, value in override_metadata.items():
                setattr(target, key, value)
        session.flush()
        session.commit()
    except IntegrityError as exc:
        session.rollback()
        if integrity_error_kind(exc) == "lead_slot":
            return LeadResult(ok=False, reason=MULTIPLE_LEADS_PREVENTED)
        raise
    except Exception:
        session.rollback()
        raise
    return LeadResult(
        ok=True,
        shift_id=target.id,
        created=created,
        previous_lead_user_id=previous_lead_user_id,
    )
