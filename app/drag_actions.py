"""Request shapes for single-shift schedule edits.

Each action parses from (and renders back to) the camelCase JSON body used by
the drag-and-drop endpoint. Undo actions returned by the orchestrator are
built from the same classes so they can be replayed verbatim.
"""

from __future__ import annotations

import datetime
from dataclasses import dataclass
from typing import Any, ClassVar, Dict, Mapping, Optional, Union

from database import SHIFT_TYPES
from validation import parse_iso_date

INVALID_REQUEST = "invalid_request"

ERROR_STATUS = {
    "invalid_request": 400,
    "date_out_of_range": 400,
    "unauthorized": 401,
    "forbidden": 403,
    "cycle_not_found": 404,
    "shift_not_found": 404,
    "therapist_not_found": 404,
    "availability_hard_block": 409,
    "availability_conflict": 409,
    "coverage_exceeded": 409,
    "weekly_limit_exceeded": 409,
    "duplicate_assignment": 409,
    "lead_not_eligible": 409,
    "multiple_leads_prevented": 409,
    "internal_error": 500,
}


class DragDropError(Exception):
    """A rejected schedule edit: a machine-readable code plus the message shown to the manager."""

    def __init__(
        self,
        code: str,
        message: str,
        *,
        status_code: Optional[int] = None,
        extra: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.status_code = status_code or ERROR_STATUS.get(code, 400)
        self.extra = dict(extra or {})

    def to_body(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"error": self.message, "code": self.code}
        body.update(self.extra)
        return body


def _invalid(message: str) -> DragDropError:
    return DragDropError(INVALID_REQUEST, message)


def coerce_id(value: Any) -> Optional[int]:
    """Accept positive ints or digit strings; anything else is treated as missing."""
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value if value > 0 else None
    if isinstance(value, str):
        value = value.strip()
        if not (value.isascii() and value.isdigit()):
            return None
        number = int(value)
        return number if number > 0 else None
    return None


def _shift_type(value: Any) -> Optional[str]:
    return value if value in SHIFT_TYPES else None


def _reason(value: Any) -> Optional[str]:
    if not isinstance(value, str):
        return None
    return value.strip() or None


def _set_optional(payload: Dict[str, Any], key: str, value: Any) -> None:
    if value:
        payload[key] = value


@dataclass(frozen=True)
class AssignAction:
    cycle_id: int
    user_id: int
    shift_type: str
    date: datetime.date
    override_weekly_rules: bool = False
    availability_override: bool = False
    availability_override_reason: Optional[str] = None

    action: ClassVar[str] = "assign"

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "action": self.action,
            "cycleId": self.cycle_id,
            "userId": self.user_id,
            "shiftType": self.shift_type,
            "date": self.date.isoformat(),
            "overrideWeeklyRules": self.override_weekly_rules,
        }
        _set_optional(payload, "availabilityOverride", self.availability_override)
        _set_optional(payload, "availabilityOverrideReason", self.availability_override_reason)
        return payload


@dataclass(frozen=True)
class MoveAction:
    cycle_id: int
    shift_id: int
    target_date: datetime.date
    target_shift_type: str
    override_weekly_rules: bool = False
    availability_override: bool = False
    availability_override_reason: Optional[str] = None

    action: ClassVar[str] = "move"

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "action": self.action,
            "cycleId": self.cycle_id,
            "shiftId": self.shift_id,
            "targetDate": self.target_date.isoformat(),
            "targetShiftType": self.target_shift_type,
            "overrideWeeklyRules": self.override_weekly_rules,
        }
        _set_optional(payload, "availabilityOverride", self.availability_override)
        _set_optional(payload, "availabilityOverrideReason", self.availability_override_reason)
        return payload


@dataclass(frozen=True)
class RemoveAction:
    """Remove by shift id, or by the (user, date, shift type) natural key within the cycle."""

    cycle_id: int
    shift_id: Optional[int] = None
    user_id: Optional[int] = None
    date: Optional[datetime.date] = None
    shift_type: Optional[str] = None

    action: ClassVar[str] = "remove"

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"action": self.action, "cycleId": self.cycle_id}
        if self.shift_id is not None:
            payload["shiftId"] = self.shift_id
            return payload
        payload["userId"] = self.user_id
        payload["date"] = self.date.isoformat() if self.date else None
        payload["shiftType"] = self.shift_type
        return payload


@dataclass(frozen=True)
class SetLeadAction:
    cycle_id: int
    therapist_id: int
    date: datetime.date
    shift_type: str
    override_weekly_rules: bool = False
    availability_override: bool = False
    availability_override_reason: Optional[str] = None

    action: ClassVar[str] = "set_lead"

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "action": self.action,
            "cycleId": self.cycle_id,
            "therapistId": self.therapist_id,
            "date": self.date.isoformat(),
            "shiftType": self.shift_type,
            "overrideWeeklyRules": self.override_weekly_rules,
        }
        _set_optional(payload, "availabilityOverride", self.availability_override)
        _set_optional(payload, "availabilityOverrideReason", self.availability_override_reason)
        return payload


DragAction = Union[AssignAction, MoveAction, RemoveAction, SetLeadAction]


def _parse_assign(payload: Mapping[str, Any], cycle_id: int) -> AssignAction:
    user_id = coerce_id(payload.get("userId"))
    shift_type = _shift_type(payload.get("shiftType"))
    date_value = parse_iso_date(payload.get("date"))
    if user_id is None or shift_type is None or date_value is None:
        raise _invalid("Missing assignment data")
    return AssignAction(
        cycle_id=cycle_id,
        user_id=user_id,
        shift_type=shift_type,
        date=date_value,
        override_weekly_rules=payload.get("overrideWeeklyRules") is True,
        availability_override=payload.get("availabilityOverride") is True,
        availability_override_reason=_reason(payload.get("availabilityOverrideReason")),
    )


def _parse_move(payload: Mapping[str, Any], cycle_id: int) -> MoveAction:
    shift_id = coerce_id(payload.get("shiftId"))
    target_shift_type = _shift_type(payload.get("targetShiftType"))
    target_date = parse_iso_date(payload.get("targetDate"))
    if shift_id is None or target_shift_type is None or target_date is None:
        raise _invalid("Missing move data")
    return MoveAction(
        cycle_id=cycle_id,
        shift_id=shift_id,
        target_date=target_date,
        target_shift_type=target_shift_type,
        override_weekly_rules=payload.get("overrideWeeklyRules") is True,
        availability_override=payload.get("availabilityOverride") is True,
        availability_override_reason=_reason(payload.get("availabilityOverrideReason")),
    )


def _parse_remove(payload: Mapping[str, Any], cycle_id: int) -> RemoveAction:
    shift_id = coerce_id(payload.get("shiftId"))
    if shift_id is not None:
        return RemoveAction(cycle_id=cycle_id, shift_id=shift_id)
    user_id = coerce_id(payload.get("userId"))
    shift_type = _shift_type(payload.get("shiftType"))
    date_value = parse_iso_date(payload.get("date"))
    if user_id is None or shift_type is None or date_value is None:
        raise _invalid("Missing remove data")
    return RemoveAction(cycle_id=cycle_id, user_id=user_id, date=date_value, shift_type=shift_type)


def _parse_set_lead(payload: Mapping[str, Any], cycle_id: int) -> SetLeadAction:
    therapist_id = coerce_id(payload.get("therapistId"))
    shift_type = _shift_type(payload.get("shiftType"))
    date_value = parse_iso_date(payload.get("date"))
    if therapist_id is None or shift_type is None or date_value is None:
        raise _invalid("Missing designated lead data")
    return SetLeadAction(
        cycle_id=cycle_id,
        therapist_id=therapist_id,
        date=date_value,
        shift_type=shift_type,
        override_weekly_rules=payload.get("overrideWeeklyRules") is True,
        availability_override=payload.get("availabilityOverride") is True,
        availability_override_reason=_reason(payload.get("availabilityOverrideReason")),
    )


_PARSERS = {
    "assign": _parse_assign,
    "move": _parse_move,
    "remove": _parse_remove,
    "set_lead": _parse_set_lead,
}


def parse_drag_action(payload: Any) -> DragAction:
    """Validate a request body and return the matching action; raises DragDropError."""
    if not isinstance(payload, Mapping):
        raise _invalid("Request body must be a JSON object")
    action = payload.get("action")
    cycle_id = coerce_id(payload.get("cycleId"))
    if not action or cycle_id is None:
        raise _invalid("Missing action or cycleId")
    parser = _PARSERS.get(action) if isinstance(action, str) else None
    if parser is None:
        raise _invalid("Unsupported action")
    return parser(payload, cycle_id)
