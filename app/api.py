"""FastAPI surface for the therapist shift-rule engine.

Session handling lives outside this service: the caller's therapist id
arrives in the ``X-User-Id`` header and every decision is made by the
orchestrator modules, which this layer only wires to HTTP.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
import sys
from pathlib import Path
from typing import Any, Dict, Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

# Ensure flat absolute imports (e.g., "import database") still resolve.
APP_DIR = Path(__file__).resolve().parent
if str(APP_DIR) not in sys.path:
    sys.path.insert(0, str(APP_DIR))

from assignment_status import handle_assignment_status  # noqa: E402
from database import SessionLocal, get_cycle, init_database  # noqa: E402
from drag_actions import coerce_id  # noqa: E402
from drag_drop import DragDropResult, apply_drag_action  # noqa: E402
from policy import ensure_default_policy, load_active_policy  # noqa: E402
from validation import build_cycle_coverage_report  # noqa: E402


@asynccontextmanager
async def lifespan(_: FastAPI):
    init_database()
    ensure_default_policy(SessionLocal)
    yield


app = FastAPI(title="Therapist Shift Rules API", version="0.1", lifespan=lifespan)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_actor_id(x_user_id: Optional[str] = Header(None)) -> Optional[int]:
    return coerce_id(x_user_id)


async def _read_json(request: Request) -> Any:
    try:
        return await request.json()
    except ValueError:
        return None


def _respond(result: DragDropResult) -> JSONResponse:
    return JSONResponse(status_code=result.status_code, content=jsonable_encoder(result.body))


def _unauthorized() -> JSONResponse:
    return JSONResponse(status_code=401, content={"error": "Unauthorized", "code": "unauthorized"})


def _malformed() -> JSONResponse:
    return JSONResponse(status_code=400, content={"error": "Malformed JSON body", "code": "invalid_request"})


@app.get("/health")
def health() -> Dict[str, str]:
    return {"status": "ok"}


@app.post("/api/v1/schedule/drag-drop")
async def drag_drop(request: Request, actor_id=Depends(get_actor_id), db=Depends(get_db)) -> JSONResponse:
    if actor_id is None:
        return _unauthorized()
    payload = await _read_json(request)
    if payload is None:
        return _malformed()
    return _respond(apply_drag_action(db, actor_id, payload))


@app.post("/api/v1/schedule/assignment-status")
async def assignment_status(request: Request, actor_id=Depends(get_actor_id), db=Depends(get_db)) -> JSONResponse:
    if actor_id is None:
        return _unauthorized()
    payload = await _read_json(request)
    if payload is None:
        return _malformed()
    return _respond(handle_assignment_status(db, actor_id, payload))


@app.get("/api/v1/cycles/{cycle_id}/coverage")
def cycle_coverage(cycle_id: int, db=Depends(get_db)) -> JSONResponse:
    cycle = get_cycle(db, cycle_id)
    if cycle is None:
        raise HTTPException(status_code=404, detail="Schedule cycle not found")
    report = build_cycle_coverage_report(db, cycle, load_active_policy(db))
    return JSONResponse(content=jsonable_encoder(report))
