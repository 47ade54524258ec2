"""Shift mutation orchestrator behind the schedule drag-and-drop endpoint.

Every request is one complete transition: authorize the manager, parse the
action, load the cycle, run availability and limit checks, then perform
exactly one write. Business-rule rejections raise ``DragDropError`` before
anything is written; the only failure possible after the write is a store
constraint violation, which is rolled back and reported. Audit and
notification calls run after the commit and never change the response.
"""

from __future__ import annotations

import datetime
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from availability import AvailabilityRequest, AvailabilityResolution, resolve_availability
from database import (
    ScheduleCycle,
    Shift,
    Therapist,
    find_shift_in_slot,
    get_cycle,
    get_shift,
    get_therapist,
    get_work_pattern,
    integrity_error_kind,
    list_overrides_for_date,
    list_slot_shifts,
    list_user_shifts_between,
    record_audit_log,
)
from designated_lead import LEAD_NOT_ELIGIBLE, MULTIPLE_LEADS_PREVENTED, set_designated_lead
from drag_actions import (
    AssignAction,
    DragAction,
    DragDropError,
    MoveAction,
    RemoveAction,
    SetLeadAction,
    parse_drag_action,
)
from notifications import notify_users
from observability import log_event
from policy import coverage_limits, load_active_policy, weekly_limit_for
from roles import can_designate_lead, is_manager_role
from validation import (
    active_coverage_count,
    counts_toward_limits,
    exceeds_coverage_limit,
    exceeds_weekly_limit,
    is_date_within_range,
    week_bounds_for_date,
    worked_dates_in_week,
)
from work_patterns import normalize_work_pattern

logger = logging.getLogger(__name__)

COVERAGE_BELOW_MINIMUM = "coverage_below_minimum"


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


@dataclass
class DragDropResult:
    status_code: int
    body: Dict[str, Any] = field(default_factory=dict)


def _success(message: str, undo: Optional[DragAction] = None, warnings: Optional[List[Dict]] = None) -> DragDropResult:
    body: Dict[str, Any] = {"message": message}
    if undo is not None:
        body["undoAction"] = undo.to_payload()
    if warnings:
        body["warnings"] = warnings
    return DragDropResult(status_code=200, body=body)


class ShiftMutationOrchestrator:
    """Apply assign / move / remove / set_lead actions for one manager request.

    ``audit_writer`` and ``notifier`` default to the store-backed collaborators
    and share their call signatures; ``policy`` defaults to the active policy
    row and ``clock`` stamps override metadata.
    """

    def __init__(
        self,
        session,
        *,
        audit_writer: Callable[..., Any] = record_audit_log,
        notifier: Callable[..., Any] = notify_users,
        policy: Optional[Dict] = None,
        clock: Callable[[], datetime.datetime] = _utcnow,
    ) -> None:
        self.session = session
        self.audit_writer = audit_writer
        self.notifier = notifier
        self._policy = policy
        self.clock = clock

    @property
    def policy(self) -> Dict:
        if self._policy is None:
            self._policy = load_active_policy(self.session)
        return self._policy

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------
    def handle(self, actor_id: Optional[int], payload: Any) -> DragDropResult:
        action_name = payload.get("action") if isinstance(payload, dict) else None
        try:
            actor = self._authorize(actor_id)
            action = parse_drag_action(payload)
            result = self.execute(actor, action)
        except DragDropError as exc:
            log_event(
                logger,
                "warn",
                "drag_drop_rejected",
                actor_id=actor_id,
                action=action_name,
                code=exc.code,
                status=exc.status_code,
            )
            return DragDropResult(status_code=exc.status_code, body=exc.to_body())
        except SQLAlchemyError:
            self.session.rollback()
            log_event(logger, "error", "drag_drop_store_error", exc_info=True, actor_id=actor_id, action=action_name)
            return DragDropResult(
                status_code=500,
                body={"error": "Could not apply schedule change.", "code": "internal_error"},
            )
        log_event(
            logger,
            "info",
            "drag_drop_applied",
            actor_id=actor_id,
            action=action_name,
            message=result.body.get("message"),
        )
        return result

    def execute(self, actor: Therapist, action: DragAction) -> DragDropResult:
        cycle = self._load_cycle(action.cycle_id)
        if isinstance(action, AssignAction):
            return self.assign(actor, cycle, action)
        if isinstance(action, MoveAction):
            return self.move(actor, cycle, action)
        if isinstance(action, RemoveAction):
            return self.remove(actor, cycle, action)
        if isinstance(action, SetLeadAction):
            return self.set_lead(actor, cycle, action)
        raise DragDropError("invalid_request", "Unsupported action")

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------
    def assign(self, actor: Therapist, cycle: ScheduleCycle, action: AssignAction) -> DragDropResult:
        self._require_in_cycle(cycle, action.date)
        therapist, resolution = self._check_availability(
            action.user_id, cycle.id, action.date, action.shift_type, action.availability_override
        )
        if not action.override_weekly_rules:
            self._check_limits(therapist, cycle.id, action.date, action.shift_type)

        shift = Shift(
            cycle_id=cycle.id,
            user_id=therapist.id,
            date=action.date,
            shift_type=action.shift_type,
            status="scheduled",
            role="staff",
            **self._override_metadata(
                actor, resolution, action.availability_override, action.availability_override_reason
            ),
        )
        self.session.add(shift)
        self._commit("That therapist already has a shift on this date.")
        shift_id = shift.id

        self._record_audit(
            actor,
            "shift_added",
            "shift",
            shift_id,
            {"userId": therapist.id, "date": action.date.isoformat(), "shiftType": action.shift_type},
        )
        self._notify(
            [therapist.id],
            "shift_assigned",
            "New shift assigned",
            f"You were assigned a {action.shift_type} shift on {action.date.isoformat()}.",
            "shift",
            shift_id,
        )
        undo = RemoveAction(
            cycle_id=cycle.id,
            user_id=therapist.id,
            date=action.date,
            shift_type=action.shift_type,
        )
        return _success("Shift assigned.", undo)

    def move(self, actor: Therapist, cycle: ScheduleCycle, action: MoveAction) -> DragDropResult:
        self._require_in_cycle(cycle, action.target_date)
        shift = get_shift(self.session, action.shift_id)
        if shift is None or shift.cycle_id != cycle.id:
            raise DragDropError("shift_not_found", "Shift not found in this cycle")
        if shift.date == action.target_date and shift.shift_type == action.target_shift_type:
            return _success("Shift already on that date.")

        therapist, resolution = self._check_availability(
            shift.user_id, cycle.id, action.target_date, action.target_shift_type, action.availability_override
        )
        if not action.override_weekly_rules and counts_toward_limits(shift.status):
            self._check_limits(
                therapist, cycle.id, action.target_date, action.target_shift_type, exclude_shift_id=shift.id
            )

        origin_date = shift.date
        origin_shift_type = shift.shift_type
        origin_override = bool(shift.availability_override)
        origin_reason = shift.availability_override_reason

        shift.date = action.target_date
        shift.shift_type = action.target_shift_type
        for key, value in self._override_metadata(
            actor, resolution, action.availability_override, action.availability_override_reason
        ).items():
            setattr(shift, key, value)
        self._commit("Therapist already has a shift on that date.")
        shift_id = shift.id

        self._record_audit(
            actor,
            "shift_moved",
            "shift",
            shift_id,
            {
                "fromDate": origin_date.isoformat(),
                "fromShiftType": origin_shift_type,
                "toDate": action.target_date.isoformat(),
                "toShiftType": action.target_shift_type,
            },
        )
        undo = MoveAction(
            cycle_id=cycle.id,
            shift_id=shift_id,
            target_date=origin_date,
            target_shift_type=origin_shift_type,
            override_weekly_rules=True,
            availability_override=origin_override,
            availability_override_reason=origin_reason if origin_override else None,
        )
        return _success("Shift moved.", undo, self._coverage_warnings(cycle.id, origin_date, origin_shift_type))

    def remove(self, actor: Therapist, cycle: ScheduleCycle, action: RemoveAction) -> DragDropResult:
        if action.shift_id is not None:
            shift = get_shift(self.session, action.shift_id)
        else:
            shift = find_shift_in_slot(self.session, cycle.id, action.user_id, action.date, action.shift_type)
        if shift is None or shift.cycle_id != cycle.id:
            raise DragDropError("shift_not_found", "Shift not found in this cycle")

        shift_id = shift.id
        user_id = shift.user_id
        date_value = shift.date
        shift_type = shift.shift_type
        was_override = bool(shift.availability_override)
        override_reason = shift.availability_override_reason

        self.session.delete(shift)
        self._commit("Could not remove shift")

        self._record_audit(
            actor,
            "shift_removed",
            "shift",
            shift_id,
            {"userId": user_id, "date": date_value.isoformat(), "shiftType": shift_type},
        )
        undo = AssignAction(
            cycle_id=cycle.id,
            user_id=user_id,
            shift_type=shift_type,
            date=date_value,
            override_weekly_rules=True,
            availability_override=was_override,
            availability_override_reason=override_reason if was_override else None,
        )
        return _success("Shift removed from schedule.", undo, self._coverage_warnings(cycle.id, date_value, shift_type))

    def set_lead(self, actor: Therapist, cycle: ScheduleCycle, action: SetLeadAction) -> DragDropResult:
        self._require_in_cycle(cycle, action.date)
        candidate = get_therapist(self.session, action.therapist_id)
        if candidate is None or not can_designate_lead(candidate.role, candidate.is_lead_eligible):
            raise DragDropError(LEAD_NOT_ELIGIBLE, "Only lead-eligible therapists can be designated as lead.")

        therapist, resolution = self._check_availability(
            candidate.id, cycle.id, action.date, action.shift_type, action.availability_override
        )
        existing = find_shift_in_slot(self.session, cycle.id, therapist.id, action.date, action.shift_type)
        if existing is None and not action.override_weekly_rules:
            self._check_limits(therapist, cycle.id, action.date, action.shift_type)

        metadata = self._override_metadata(
            actor, resolution, action.availability_override, action.availability_override_reason
        )
        try:
            outcome = set_designated_lead(
                self.session,
                cycle_id=cycle.id,
                therapist_id=therapist.id,
                date_value=action.date,
                shift_type=action.shift_type,
                override_metadata=metadata,
            )
        except IntegrityError as exc:
            if integrity_error_kind(exc) == "shift_slot":
                raise DragDropError("duplicate_assignment", "That therapist already has a shift on this date.") from exc
            raise
        if not outcome.ok:
            if outcome.reason == LEAD_NOT_ELIGIBLE:
                raise DragDropError(LEAD_NOT_ELIGIBLE, "Only lead-eligible therapists can be designated as lead.")
            if outcome.reason == MULTIPLE_LEADS_PREVENTED:
                raise DragDropError(MULTIPLE_LEADS_PREVENTED, "A designated lead already exists for that shift.")
            raise DragDropError("internal_error", "Could not set designated lead.")

        self._record_audit(
            actor,
            "designated_lead_assigned",
            "shift_slot",
            f"{cycle.id}:{action.date.isoformat()}:{action.shift_type}",
            {"therapistId": therapist.id, "previousLeadUserId": outcome.previous_lead_user_id},
        )
        return _success("Designated lead updated.")

    # ------------------------------------------------------------------
    # Checks
    # ------------------------------------------------------------------
    def _authorize(self, actor_id: Optional[int]) -> Therapist:
        if actor_id is None:
            raise DragDropError("unauthorized", "Unauthorized")
        actor = get_therapist(self.session, actor_id)
        if actor is None or not is_manager_role(actor.role):
            raise DragDropError("forbidden", "Manager access required")
        return actor

    def _load_cycle(self, cycle_id: int) -> ScheduleCycle:
        cycle = get_cycle(self.session, cycle_id)
        if cycle is None:
            raise DragDropError("cycle_not_found", "Schedule cycle not found")
        return cycle

    @staticmethod
    def _require_in_cycle(cycle: ScheduleCycle, date_value: datetime.date) -> None:
        if not is_date_within_range(date_value, cycle.start_date, cycle.end_date):
            raise DragDropError("date_out_of_range", "Date is outside this cycle")

    def resolve_for(
        self, therapist: Therapist, cycle_id: int, date_value: datetime.date, shift_type: str
    ) -> AvailabilityResolution:
        pattern = normalize_work_pattern(
            get_work_pattern(self.session, therapist.id), therapist_id=therapist.id
        )
        request = AvailabilityRequest(
            therapist_id=therapist.id,
            cycle_id=cycle_id,
            date=date_value,
            shift_type=shift_type,
            is_active=therapist.is_active is not False,
            on_fmla=therapist.on_fmla is True,
            pattern=pattern,
            overrides=tuple(list_overrides_for_date(self.session, therapist.id, cycle_id, date_value)),
        )
        return resolve_availability(request)

    def _check_availability(
        self,
        therapist_id: int,
        cycle_id: int,
        date_value: datetime.date,
        shift_type: str,
        confirmed: bool,
    ) -> tuple[Therapist, AvailabilityResolution]:
        therapist = get_therapist(self.session, therapist_id)
        if therapist is None:
            raise DragDropError("therapist_not_found", "Therapist not found")
        resolution = self.resolve_for(therapist, cycle_id, date_value, shift_type)
        if resolution.allowed:
            return therapist, resolution
        if resolution.hard_block:
            raise DragDropError(
                "availability_hard_block",
                resolution.label or "This therapist cannot be assigned.",
            )
        if not confirmed:
            raise DragDropError(
                "availability_conflict",
                "Conflicts with scheduling constraints.",
                extra={
                    "availability": {
                        "therapistId": therapist.id,
                        "therapistName": therapist.full_name or "Therapist",
                        "date": date_value.isoformat(),
                        "shiftType": shift_type,
                        "reason": resolution.label,
                    }
                },
            )
        return therapist, resolution

    def _check_limits(
        self,
        therapist: Therapist,
        cycle_id: int,
        date_value: datetime.date,
        shift_type: str,
        *,
        exclude_shift_id: Optional[int] = None,
    ) -> None:
        _, maximum = coverage_limits(self.policy)
        slot_shifts = list_slot_shifts(self.session, cycle_id, date_value, shift_type)
        count = active_coverage_count(slot_shifts, exclude_shift_id=exclude_shift_id)
        if exceeds_coverage_limit(count, maximum):
            raise DragDropError(
                "coverage_exceeded",
                f"Each shift can have at most {maximum} scheduled team members.",
            )

        week_start, week_end = week_bounds_for_date(date_value)
        week_shifts = list_user_shifts_between(self.session, therapist.id, week_start, week_end)
        worked = worked_dates_in_week(week_shifts, date_value, exclude_shift_id=exclude_shift_id)
        limit = weekly_limit_for(self.policy, therapist.employment_type, therapist.max_work_days_per_week)
        if exceeds_weekly_limit(worked, date_value, limit):
            raise DragDropError(
                "weekly_limit_exceeded",
                f"Therapists are limited to {limit} day(s) per week unless override is enabled.",
            )

    def _override_metadata(
        self,
        actor: Therapist,
        resolution: AvailabilityResolution,
        confirmed: bool,
        reason: Optional[str],
    ) -> Dict[str, Any]:
        applied = resolution.soft_block and confirmed
        return {
            "availability_override": applied,
            "availability_override_reason": reason if applied else None,
            "availability_override_by": actor.id if applied else None,
            "availability_override_at": self.clock() if applied else None,
        }

    def _coverage_warnings(
        self, cycle_id: int, date_value: datetime.date, shift_type: str
    ) -> List[Dict[str, Any]]:
        minimum, _ = coverage_limits(self.policy)
        count = active_coverage_count(list_slot_shifts(self.session, cycle_id, date_value, shift_type))
        if count >= minimum:
            return []
        return [
            {
                "code": COVERAGE_BELOW_MINIMUM,
                "date": date_value.isoformat(),
                "shiftType": shift_type,
                "count": count,
                "minimum": minimum,
            }
        ]

    # ------------------------------------------------------------------
    # Writes and side effects
    # ------------------------------------------------------------------
    def _commit(self, duplicate_message: str) -> None:
        try:
            self.session.flush()
            self.session.commit()
        except IntegrityError as exc:
            self.session.rollback()
            kind = integrity_error_kind(exc)
            if kind == "shift_slot":
                raise DragDropError("duplicate_assignment", duplicate_message) from exc
            if kind == "lead_slot":
                raise DragDropError(MULTIPLE_LEADS_PREVENTED, "A designated lead already exists for that shift.") from exc
            raise

    def _record_audit(self, actor: Therapist, action: str, target_type: str, target_id, payload: Dict) -> None:
        try:
            self.audit_writer(self.session, actor.id, action, target_type, target_id, payload)
        except Exception:
            self.session.rollback()
            log_event(logger, "error", "audit_log_failed", exc_info=True, action=action, target_id=target_id)

    def _notify(self, user_ids, event_type: str, title: str, message: str, target_type: str, target_id) -> None:
        try:
            self.notifier(self.session, user_ids, event_type, title, message, target_type, target_id)
        except Exception:
            self.session.rollback()
            log_event(logger, "error", "notification_failed", exc_info=True, event_type=event_type, target_id=target_id)


def apply_drag_action(session, actor_id: Optional[int], payload: Any, **kwargs) -> DragDropResult:
    """Convenience wrapper used by the HTTP layer and scripts."""
    return ShiftMutationOrchestrator(session, **kwargs).handle(actor_id, payload)
