"""FastAPI endpoints through which the instrumentation layer reports signals.

Handlers are ``async def`` without awaits, so the event loop applies signals
one at a time and the active session never sees concurrent writers.
"""

from __future__ import annotations

from typing import Any

from fastapi import Depends, FastAPI
from pydantic import BaseModel, Field

from matchtracker import __version__
from matchtracker.recorder.attribution import AttributionResolver, load_extension
from matchtracker.recorder.config import load_settings
from matchtracker.recorder.models import EvidenceKind, RosterEntry
from matchtracker.recorder.store import create_store
from matchtracker.recorder.tracker import SessionTracker


class StartSessionRequest(BaseModel):
    map_name: str | None = None
    game_mode: str | None = None


class EndSessionRequest(BaseModel):
    reason: str | None = None
    winners: list[str] | None = None
    win_condition: str | None = None


class RosterPlayer(BaseModel):
    player_id: int = Field(ge=0)
    name: str
    color_name: str = ""
    role: str = ""
    team: str | None = None
    is_impostor: bool = False
    modifiers: list[str] = Field(default_factory=list)
    total_tasks: int = Field(default=0, ge=0)
    is_dead: bool = False
    cosmetics: dict[str, str] = Field(default_factory=dict)


class RosterRequest(BaseModel):
    players: list[RosterPlayer]


class RoleRequest(BaseModel):
    player_id: int = Field(ge=0)
    role: str = Field(min_length=1)
    team: str | None = None
    modifiers: list[str] | None = None
    is_impostor: bool = False


class DeathSignalRequest(BaseModel):
    victim_id: int = Field(ge=0)
    evidence_kind: EvidenceKind
    killer_name: str | None = None
    cause: str | None = None
    reason: str | None = None
    positions: dict[int, tuple[float, float]] | None = None


class MultiKillRequest(BaseModel):
    killer_name: str = Field(min_length=1)
    victim_ids: list[int]
    cause: str | None = None


class EjectionRequest(BaseModel):
    player_id: int | None = None
    was_tie: bool = False


class MeetingRequest(BaseModel):
    is_emergency: bool
    caller_name: str | None = None


class TaskStepRequest(BaseModel):
    player_id: int = Field(ge=0)
    task_id: int | str
    is_final_step: bool


class SignalResponse(BaseModel):
    accepted: bool
    phase: str
    session_id: str | None = None


class EndSessionResponse(SignalResponse):
    record: str | None = None


class SessionStateResponse(BaseModel):
    phase: str
    session: dict[str, Any] | None = None


class RecordListResponse(BaseModel):
    pending: list[str]
    delivered: list[str]


def _default_tracker() -> SessionTracker:
    settings = load_settings()
    resolver = AttributionResolver(
        proximity_threshold=settings.proximity_threshold,
        neutral_killer_roles=settings.neutral_killer_roles,
        extension=load_extension(settings.extension),
    )
    return SessionTracker(store=create_store(settings.storage_dir), resolver=resolver)


def create_app(tracker: SessionTracker | None = None) -> FastAPI:
    app = FastAPI(title="Match Tracker Recorder", version=__version__)
    session_tracker = tracker if tracker is not None else _default_tracker()
    app.state.tracker = session_tracker

    def get_tracker() -> SessionTracker:
        return session_tracker

    def respond(local_tracker: SessionTracker, accepted: bool) -> SignalResponse:
        return SignalResponse(
            accepted=accepted,
            phase=local_tracker.phase.value,
            session_id=local_tracker.session_id,
        )

    @app.post("/api/session/start", response_model=SignalResponse)
    async def start_session(
        payload: StartSessionRequest,
        local_tracker: SessionTracker = Depends(get_tracker),
    ) -> SignalResponse:
        accepted = local_tracker.start_session(map_name=payload.map_name, game_mode=payload.game_mode)
        return respond(local_tracker, bool(accepted))

    @app.post("/api/session/end", response_model=EndSessionResponse)
    async def end_session(
        payload: EndSessionRequest,
        local_tracker: SessionTracker = Depends(get_tracker),
    ) -> EndSessionResponse:
        session_id = local_tracker.session_id
        path = local_tracker.end_session(
            reason=payload.reason,
            winners=payload.winners,
            win_condition=payload.win_condition,
        )
        return EndSessionResponse(
            accepted=path is not None,
            phase=local_tracker.phase.value,
            session_id=session_id,
            record=path.name if path is not None else None,
        )

    @app.post("/api/session/roster", response_model=SignalResponse)
    async def capture_roster(
        payload: RosterRequest,
        local_tracker: SessionTracker = Depends(get_tracker),
    ) -> SignalResponse:
        entries = [
            RosterEntry(
                player_id=player.player_id,
                name=player.name,
                color_name=player.color_name,
                role=player.role,
                team=player.team,
                is_impostor=player.is_impostor,
                modifiers=tuple(player.modifiers),
                total_tasks=player.total_tasks,
                is_dead=player.is_dead,
                cosmetics=dict(player.cosmetics),
            )
            for player in payload.players
        ]
        captured = local_tracker.capture_roster(entries)
        return respond(local_tracker, bool(captured))

    @app.post("/api/session/roles", response_model=SignalResponse)
    async def assign_role(
        payload: RoleRequest,
        local_tracker: SessionTracker = Depends(get_tracker),
    ) -> SignalResponse:
        accepted = local_tracker.assign_role(
            player_id=payload.player_id,
            role=payload.role,
            team=payload.team,
            modifiers=payload.modifiers,
            is_impostor=payload.is_impostor,
        )
        return respond(local_tracker, bool(accepted))

    @app.post("/api/session/deaths", response_model=SignalResponse)
    async def record_death(
        payload: DeathSignalRequest,
        local_tracker: SessionTracker = Depends(get_tracker),
    ) -> SignalResponse:
        accepted = local_tracker.record_death_signal(
            victim_id=payload.victim_id,
            evidence_kind=payload.evidence_kind,
            killer_name=payload.killer_name,
            cause=payload.cause,
            reason=payload.reason,
            positions=payload.positions,
        )
        return respond(local_tracker, bool(accepted))

    @app.post("/api/session/kills/multi", response_model=SignalResponse)
    async def record_multi_kill(
        payload: MultiKillRequest,
        local_tracker: SessionTracker = Depends(get_tracker),
    ) -> SignalResponse:
        changed = local_tracker.record_multi_kill(
            killer_name=payload.killer_name,
            victim_ids=payload.victim_ids,
            cause=payload.cause,
        )
        return respond(local_tracker, bool(changed))

    @app.post("/api/session/ejections", response_model=SignalResponse)
    async def record_ejection(
        payload: EjectionRequest,
        local_tracker: SessionTracker = Depends(get_tracker),
    ) -> SignalResponse:
        accepted = local_tracker.record_ejection(player_id=payload.player_id, was_tie=payload.was_tie)
        return respond(local_tracker, bool(accepted))

    @app.post("/api/session/meetings", response_model=SignalResponse)
    async def record_meeting(
        payload: MeetingRequest,
        local_tracker: SessionTracker = Depends(get_tracker),
    ) -> SignalResponse:
        accepted = local_tracker.record_meeting(is_emergency=payload.is_emergency, caller_name=payload.caller_name)
        return respond(local_tracker, bool(accepted))

    @app.post("/api/session/tasks", response_model=SignalResponse)
    async def record_task_step(
        payload: TaskStepRequest,
        local_tracker: SessionTracker = Depends(get_tracker),
    ) -> SignalResponse:
        accepted = local_tracker.record_task_step(
            player_id=payload.player_id,
            task_id=payload.task_id,
            is_final_step=payload.is_final_step,
        )
        return respond(local_tracker, bool(accepted))

    @app.get("/api/session", response_model=SessionStateResponse)
    async def get_session(local_tracker: SessionTracker = Depends(get_tracker)) -> SessionStateResponse:
        return SessionStateResponse(phase=local_tracker.phase.value, session=local_tracker.snapshot())

    @app.get("/api/records", response_model=RecordListResponse)
    def list_records(local_tracker: SessionTracker = Depends(get_tracker)) -> RecordListResponse:
        store = local_tracker.store
        return RecordListResponse(
            pending=[path.name for path in store.pending_records()],
            delivered=[path.name for path in store.delivered_records()],
        )

    return app
