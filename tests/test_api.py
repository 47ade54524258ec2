from __future__ import annotations

import datetime
import sys
from pathlib import Path

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

APP_DIR = Path(__file__).resolve().parents[1] / "app"
if str(APP_DIR) not in sys.path:
    sys.path.insert(0, str(APP_DIR))

import api  # noqa: E402
from database import Base, ScheduleCycle, Shift, Therapist, upsert_policy  # noqa: E402
from policy import build_default_policy  # noqa: E402


@pytest.fixture()
def client_env():
    engine = create_engine(
        "sqlite://",
        future=True,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    Session = sessionmaker(bind=engine, expire_on_commit=False, future=True)

    with Session() as session:
        policy = build_default_policy()
        upsert_policy(session, policy.pop("name"), policy, edited_by="tests")
        manager = Therapist(full_name="Demo Manager", role="manager")
        therapist = Therapist(full_name="Avery Brooks", role="therapist")
        cycle = ScheduleCycle(label="Spring", start_date=datetime.date(2026, 3, 1), end_date=datetime.date(2026, 4, 11))
        session.add_all([manager, therapist, cycle])
        session.commit()
        ids = {"manager": manager.id, "therapist": therapist.id, "cycle": cycle.id}

    def override_get_db():
        db = Session()
        try:
            yield db
        finally:
            db.close()

    api.app.dependency_overrides[api.get_db] = override_get_db
    try:
        yield TestClient(api.app), Session, ids
    finally:
        api.app.dependency_overrides.clear()
        engine.dispose()


def _assign(ids, **extra):
    payload = {
        "action": "assign",
        "cycleId": ids["cycle"],
        "userId": ids["therapist"],
        "shiftType": "day",
        "date": "2026-03-03",
        "overrideWeeklyRules": False,
    }
    payload.update(extra)
    return payload


def test_health(client_env) -> None:
    client, _, _ = client_env
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_drag_drop_requires_user_header(client_env) -> None:
    client, _, ids = client_env
    response = client.post("/api/v1/schedule/drag-drop", json=_assign(ids))
    assert response.status_code == 401
    assert response.json()["code"] == "unauthorized"

    response = client.post("/api/v1/schedule/drag-drop", json=_assign(ids), headers={"X-User-Id": "abc"})
    assert response.status_code == 401

    response = client.post("/api/v1/schedule/drag-drop", json=_assign(ids), headers={"X-User-Id": "²".encode("latin-1")})
    assert response.status_code == 401


def test_drag_drop_rejects_malformed_json(client_env) -> None:
    client, _, ids = client_env
    response = client.post(
        "/api/v1/schedule/drag-drop",
        content="{not json",
        headers={"X-User-Id": str(ids["manager"]), "Content-Type": "application/json"},
    )
    assert response.status_code == 400
    assert response.json()["code"] == "invalid_request"


def test_drag_drop_assign_round_trip(client_env) -> None:
    client, Session, ids = client_env
    headers = {"X-User-Id": str(ids["manager"])}

    response = client.post("/api/v1/schedule/drag-drop", json=_assign(ids), headers=headers)
    assert response.status_code == 200
    body = response.json()
    assert body["message"] == "Shift assigned."
    assert body["undoAction"]["action"] == "remove"

    undo = client.post("/api/v1/schedule/drag-drop", json=body["undoAction"], headers=headers)
    assert undo.status_code == 200
    with Session() as session:
        assert session.query(Shift).count() == 0


def test_drag_drop_forbidden_for_therapists(client_env) -> None:
    client, _, ids = client_env
    response = client.post(
        "/api/v1/schedule/drag-drop", json=_assign(ids), headers={"X-User-Id": str(ids["therapist"])}
    )
    assert response.status_code == 403


def test_assignment_status_endpoint(client_env) -> None:
    client, Session, ids = client_env
    with Session() as session:
        shift = Shift(
            cycle_id=ids["cycle"],
            user_id=ids["therapist"],
            date=datetime.date(2026, 3, 3),
            shift_type="day",
        )
        session.add(shift)
        session.commit()
        shift_id = shift.id

    response = client.post(
        "/api/v1/schedule/assignment-status",
        json={"assignmentId": shift_id, "status": "sick", "note": "Flu"},
        headers={"X-User-Id": str(ids["manager"])},
    )
    assert response.status_code == 200
    assert response.json()["assignment"]["status"] == "sick"

    forbidden = client.post(
        "/api/v1/schedule/assignment-status",
        json={"assignmentId": shift_id, "status": "scheduled"},
        headers={"X-User-Id": str(ids["therapist"])},
    )
    assert forbidden.status_code == 403


def test_cycle_coverage_report(client_env) -> None:
    client, _, ids = client_env
    headers = {"X-User-Id": str(ids["manager"])}
    client.post("/api/v1/schedule/drag-drop", json=_assign(ids), headers=headers)

    response = client.get(f"/api/v1/cycles/{ids['cycle']}/coverage")
    assert response.status_code == 200
    report = response.json()
    assert report["cycleId"] == ids["cycle"]
    # 42 days x 2 shift types, all under the minimum of 2.
    assert report["coverage"]["underCoverage"] == 84
    assert report["slots"] == {"2026-03-03:day": "under"}

    assert client.get("/api/v1/cycles/999/coverage").status_code == 404
