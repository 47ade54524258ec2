from __future__ import annotations

from typing import Optional


ROLE_VALUES = ("manager", "therapist", "staff", "lead")
EMPLOYMENT_TYPES = ("full_time", "part_time", "prn")


def normalize_role(role: Optional[str]) -> str:
    return (role or "").strip().lower()


def parse_role(role: Optional[str]) -> Optional[str]:
    label = normalize_role(role)
    if label in ROLE_VALUES:
        return label
    return None


def is_manager_role(role: Optional[str]) -> bool:
    return parse_role(role) == "manager"


def is_therapist_role(role: Optional[str]) -> bool:
    """Legacy staff/lead labels collapse to therapist."""
    parsed = parse_role(role)
    return parsed is not None and parsed != "manager"


def normalize_employment_type(value: Optional[str]) -> str:
    label = (value or "").strip().lower().replace("-", "_").replace(" ", "_")
    if label in EMPLOYMENT_TYPES:
        return label
    return "full_time"


def can_designate_lead(role: Optional[str], is_lead_eligible: Optional[bool]) -> bool:
    return normalize_role(role) == "therapist" and bool(is_lead_eligible)


def can_update_assignment_status(role: Optional[str], is_lead_eligible: Optional[bool]) -> bool:
    if is_manager_role(role) or normalize_role(role) == "lead":
        return True
    return is_therapist_role(role) and bool(is_lead_eligible)
