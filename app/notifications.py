from __future__ import annotations

from typing import Iterable, List, Optional

from database import Notification

TARGET_TYPES = {"schedule_cycle", "shift", "shift_post", "system"}


def create_notifications(session, rows: List[dict]) -> List[Notification]:
    if not rows:
        return []
    created = [Notification(**row) for row in rows]
    session.add_all(created)
    session.commit()
    return created


def notify_users(
    session,
    user_ids: Iterable,
    event_type: str,
    title: str,
    message: str,
    target_type: Optional[str] = None,
    target_id: Optional[str] = None,
) -> List[Notification]:
    """Insert one notification per distinct, non-empty user id."""
    deduped: List = []
    for user_id in user_ids or []:
        if user_id and user_id not in deduped:
            deduped.append(user_id)
    if target_type is not None and target_type not in TARGET_TYPES:
        raise ValueError(f"Unsupported notification target type '{target_type}'.")
    rows = [
        {
            "user_id": user_id,
            "event_type": event_type,
            "title": title,
            "message": message,
            "target_type": target_type,
            "target_id": str(target_id) if target_id is not None else None,
        }
        for user_id in deduped
    ]
    return create_notifications(session, rows)
