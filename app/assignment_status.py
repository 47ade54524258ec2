from __future__ import annotations

import datetime
import logging
from typing import Any, Callable, Dict, Optional

from sqlalchemy.exc import SQLAlchemyError

from database import SHIFT_STATUSES, Shift, get_shift, get_therapist, record_audit_log
from drag_actions import DragDropError, coerce_id
from drag_drop import DragDropResult
from observability import log_event
from roles import can_update_assignment_status

logger = logging.getLogger(__name__)


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


def assignment_to_dict(shift: Shift) -> Dict[str, Any]:
    return {
        "id": shift.id,
        "status": shift.status,
        "statusNote": shift.status_note,
        "statusUpdatedBy": shift.status_updated_by,
        "statusUpdatedAt": shift.status_updated_at.isoformat() if shift.status_updated_at else None,
    }


def update_assignment_status(
    session,
    actor_id: Optional[int],
    shift_id: Any,
    status: Any,
    note: Any = None,
    *,
    audit_writer: Callable[..., Any] = record_audit_log,
    clock: Callable[[], datetime.datetime] = _utcnow,
) -> Shift:
    """Change a shift's status; sick and called-off shifts stop counting toward limits.

    Raises DragDropError for unauthenticated, forbidden, malformed or missing
    targets. The audit write runs after the commit and cannot fail the update.
    """
    if actor_id is None:
        raise DragDropError("unauthorized", "Unauthorized")
    parsed_id = coerce_id(shift_id)
    label = status.strip() if isinstance(status, str) else ""
    if parsed_id is None or label not in SHIFT_STATUSES:
        raise DragDropError("invalid_request", "Invalid status update payload.")

    actor = get_therapist(session, actor_id)
    if actor is None or not can_update_assignment_status(actor.role, actor.is_lead_eligible):
        raise DragDropError("forbidden", "Only leads or managers can update assignment statuses.")

    shift = get_shift(session, parsed_id)
    if shift is None:
        raise DragDropError("shift_not_found", "Assignment not found.")

    previous = shift.status
    shift.status = label
    shift.status_note = (note.strip() or None) if isinstance(note, str) else None
    shift.status_updated_by = actor.id
    shift.status_updated_at = clock()
    try:
        session.commit()
    except SQLAlchemyError:
        session.rollback()
        raise

    try:
        audit_writer(
            session,
            actor.id,
            "shift_status_changed",
            "shift",
            shift.id,
            {"from": previous, "to": label, "note": shift.status_note},
        )
    except Exception:
        session.rollback()
        log_event(logger, "error", "audit_log_failed", exc_info=True, action="shift_status_changed", target_id=shift.id)

    log_event(
        logger,
        "info",
        "assignment_status_updated",
        actor_id=actor.id,
        shift_id=shift.id,
        previous=previous,
        status=label,
    )
    return shift


def handle_assignment_status(session, actor_id: Optional[int], payload: Any) -> DragDropResult:
    """Request wrapper: ``{"assignmentId", "status", "note"}`` in, ``{"assignment"}`` out."""
    if not isinstance(payload, dict):
        payload = {}
    try:
        shift = update_assignment_status(
            session,
            actor_id,
            payload.get("assignmentId"),
            payload.get("status"),
            payload.get("note"),
        )
    except DragDropError as exc:
        return DragDropResult(status_code=exc.status_code, body=exc.to_body())
    except SQLAlchemyError:
        log_event(logger, "error", "drag_drop_store_error", exc_info=True, actor_id=actor_id, action="assignment_status")
        return DragDropResult(
            status_code=500,
            body={"error": "Could not update assignment status.", "code": "internal_error"},
        )
    return DragDropResult(status_code=200, body={"assignment": assignment_to_dict(shift)})
