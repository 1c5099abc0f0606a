"""
FastAPI control surface for study cycles and their players.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Callable, List, Optional

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware

from ..composer import validate_draft
from ..config import PROFILES_PATH, StudyCycleConfig, load_profiles
from ..errors import (
    CycleNotFound,
    InvalidCommand,
    InvalidTransition,
    PersistenceError,
    StudyCycleError,
    ValidationError,
)
from ..models import format_duration
from . import schemas
from .state import AppState

LOG = logging.getLogger(__name__)


def _http_error(exc: StudyCycleError) -> HTTPException:
    if isinstance(exc, ValidationError):
        return HTTPException(status_code=422, detail=str(exc))
    if isinstance(exc, CycleNotFound):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, PersistenceError):
        return HTTPException(status_code=502, detail=str(exc))
    if isinstance(exc, InvalidTransition):
        return HTTPException(status_code=409, detail=str(exc))
    if isinstance(exc, InvalidCommand):
        return HTTPException(status_code=400, detail=str(exc))
    return HTTPException(status_code=500, detail=str(exc))


def _block_payload(blocks: List[schemas.BlockInput]) -> List[dict]:
    return [{"subject_id": block.subject_id, "allocated_minutes": block.allocated_minutes} for block in blocks]


def create_app(
    *,
    state: Optional[AppState] = None,
    config: Optional[StudyCycleConfig] = None,
    lifespan: Optional[Callable[..., object]] = None,
) -> FastAPI:
    app_state = state or AppState(config=config or StudyCycleConfig())

    @asynccontextmanager
    async def app_lifespan(app: FastAPI) -> AsyncIterator[None]:
        try:
            if lifespan is not None:
                async with lifespan(app):  # type: ignore[attr-defined]
                    yield
            else:
                yield
        finally:
            app_state.close_all()
            if app_state.dispatcher is not None:
                await app_state.dispatcher.drain()
            LOG.info("Study cycle API shut down")

    app = FastAPI(title="Study Cycle API", lifespan=app_lifespan)
    app.state.study = app_state
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/healthz")
    async def healthz() -> dict:
        return {"status": "ok", "profile": app_state.config.profile}

    @app.get("/profiles")
    async def list_profiles() -> dict:
        return {"profiles": load_profiles(PROFILES_PATH)}

    @app.get("/subjects", response_model=List[schemas.SubjectModel])
    async def list_subjects() -> List[schemas.SubjectModel]:
        return [schemas.SubjectModel(**subject) for subject in app_state.catalog.to_list()]

    # ---------------------------------------------------------------- cycles

    @app.get("/cycles")
    async def list_cycles(owner_id: str) -> dict:
        try:
            cycles = app_state.list_cycles(owner_id)
        except StudyCycleError as exc:
            raise _http_error(exc) from exc
        return {"cycles": [cycle.to_dict() for cycle in cycles]}

    @app.post("/cycles/preview")
    async def preview_cycle(payload: schemas.CycleDraftRequest) -> dict:
        try:
            name, specs = validate_draft(payload.name, _block_payload(payload.blocks))
        except StudyCycleError as exc:
            raise _http_error(exc) from exc
        total = sum(minutes for _, minutes in specs)
        return {
            "name": name,
            "subjects": len(specs),
            "totalMinutes": total,
            "label": format_duration(total),
        }

    @app.post("/cycles", status_code=201)
    async def create_cycle(payload: schemas.CycleCreateRequest) -> dict:
        try:
            cycle = app_state.create_cycle(payload.owner_id, payload.name, _block_payload(payload.blocks))
        except StudyCycleError as exc:
            raise _http_error(exc) from exc
        return {"cycle": cycle.to_dict()}

    @app.put("/cycles/{cycle_id}")
    async def update_cycle(cycle_id: str, payload: schemas.CycleDraftRequest) -> dict:
        try:
            cycle = app_state.update_cycle(cycle_id, payload.name, _block_payload(payload.blocks))
        except StudyCycleError as exc:
            raise _http_error(exc) from exc
        return {"cycle": cycle.to_dict()}

    @app.delete("/cycles/{cycle_id}")
    async def delete_cycle(cycle_id: str) -> dict:
        try:
            app_state.delete_cycle(cycle_id)
        except StudyCycleError as exc:
            raise _http_error(exc) from exc
        return {"deleted": cycle_id}

    @app.post("/cycles/{cycle_id}/active")
    async def set_cycle_active(cycle_id: str, payload: schemas.CycleActiveRequest) -> dict:
        try:
            cycle = app_state.set_cycle_active(cycle_id, payload.is_active)
        except StudyCycleError as exc:
            raise _http_error(exc) from exc
        return {"cycle": cycle.to_dict()}

    # ---------------------------------------------------------------- player

    @app.post("/player/{cycle_id}")
    async def open_player(cycle_id: str, payload: Optional[schemas.PlayerOpenRequest] = None) -> dict:
        user_id = payload.user_id if payload is not None else None
        try:
            engine = app_state.open_player(cycle_id, user_id=user_id)
        except StudyCycleError as exc:
            raise _http_error(exc) from exc
        return {"player": engine.snapshot().to_dict()}

    @app.get("/player/{cycle_id}")
    async def get_player(cycle_id: str) -> dict:
        try:
            engine = app_state.player(cycle_id)
        except KeyError:
            raise HTTPException(status_code=404, detail=f"No open player for cycle '{cycle_id}'") from None
        return {"player": engine.snapshot().to_dict()}

    @app.post("/player/{cycle_id}/command")
    async def player_command(cycle_id: str, payload: schemas.PlayerCommandRequest) -> dict:
        try:
            engine = app_state.player(cycle_id)
        except KeyError:
            raise HTTPException(status_code=404, detail=f"No open player for cycle '{cycle_id}'") from None
        try:
            snapshot = engine.apply(payload.op, index=payload.index)
        except StudyCycleError as exc:
            raise _http_error(exc) from exc
        return {"player": snapshot.to_dict()}

    @app.delete("/player/{cycle_id}")
    async def close_player(cycle_id: str) -> dict:
        if not app_state.close_player(cycle_id):
            raise HTTPException(status_code=404, detail=f"No open player for cycle '{cycle_id}'")
        return {"closed": cycle_id}

    @app.get("/feedback")
    async def recent_feedback(limit: int = 20) -> dict:
        return {"messages": [entry.to_dict() for entry in app_state.feedback.recent(limit)]}

    return app
