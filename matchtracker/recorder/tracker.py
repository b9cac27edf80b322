"""Session state machine owning the one in-progress session.

Every public entry point is called from the host's single callback context
and never raises: failures are logged and the session carries on with
whatever was recorded so far.
"""

from __future__ import annotations

from datetime import datetime, timezone
import functools
import logging
from pathlib import Path
import time
from typing import Any, Callable, Iterable, Mapping, Sequence, TypeVar

from matchtracker.recorder.attribution import AttributionResolver, Position
from matchtracker.recorder.engine import (
    compute_statistics,
    counted_task_total,
    recount_kills,
    resolve_winner,
)
from matchtracker.recorder.identity import generate_session_id
from matchtracker.recorder.labels import classify_team
from matchtracker.recorder.models import (
    DEFAULT_KILL_TYPE,
    TEAM_CREWMATE,
    TEAM_IMPOSTOR,
    Attribution,
    EvidenceKind,
    MatchSession,
    PlayerRecord,
    RosterEntry,
    SessionEvent,
    SessionPhase,
)
from matchtracker.recorder.state import build_initial_session, session_to_document
from matchtracker.recorder.store import RecordStore

logger = logging.getLogger(__name__)

F = TypeVar("F", bound=Callable[..., Any])

EJECTED = "Ejected"
KILLED = "Killed"


def _recorder_entry(default: Any = None) -> Callable[[F], F]:
    def decorate(func: F) -> F:
        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            try:
                return func(*args, **kwargs)
            except Exception:
                logger.exception("Recorder failure in %s", func.__name__)
                return default

        return wrapper  # type: ignore[return-value]

    return decorate


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class SessionTracker:
    def __init__(
        self,
        store: RecordStore,
        resolver: AttributionResolver | None = None,
        on_persisted: Callable[[Path], None] | None = None,
        clock: Callable[[], float] = time.monotonic,
        wall_clock: Callable[[], datetime] = _utc_now,
        id_factory: Callable[[], str] = generate_session_id,
    ) -> None:
        self.store = store
        self.resolver = resolver if resolver is not None else AttributionResolver()
        self.on_persisted = on_persisted
        self._clock = clock
        self._wall_clock = wall_clock
        self._id_factory = id_factory
        self._phase = SessionPhase.IDLE
        self._session: MatchSession | None = None
        self._epoch = 0.0
        self._last_timestamp = 0.0
        self._recorded_victims: set[int] = set()
        self._counted_tasks: set[tuple[int, str]] = set()

    @property
    def phase(self) -> SessionPhase:
        return self._phase

    @property
    def session(self) -> MatchSession | None:
        return self._session

    def _active_session(self) -> MatchSession | None:
        if self._phase is not SessionPhase.ACTIVE:
            return None
        return self._session

    def _elapsed(self) -> float:
        elapsed = max(self._last_timestamp, self._clock() - self._epoch)
        self._last_timestamp = elapsed
        return elapsed

    def _append_event(
        self,
        session: MatchSession,
        event_type: str,
        description: str,
        involved: Sequence[str] = (),
        data: dict[str, Any] | None = None,
    ) -> SessionEvent:
        event = SessionEvent(
            event_type=event_type,
            timestamp=self._elapsed(),
            description=description,
            involved_players=tuple(involved),
            data=data,
        )
        session.events.append(event)
        return event

    # Lifecycle

    @_recorder_entry(default=False)
    def start_session(self, map_name: str | None = None, game_mode: str | None = None) -> bool:
        if self._phase is not SessionPhase.IDLE:
            logger.warning("Session start ignored: session %s is %s", self.session_id, self._phase.value)
            return False

        session = build_initial_session(
            session_id=self._id_factory(),
            map_name=map_name,
            game_mode=game_mode,
            started_at=self._wall_clock(),
        )
        self._epoch = self._clock()
        self._last_timestamp = 0.0
        self._recorded_victims.clear()
        self._counted_tasks.clear()
        self.resolver.reset()
        self._session = session
        self._phase = SessionPhase.ACTIVE
        self._append_event(session, "SessionStart", "Session started")
        logger.info("Session tracking started: %s", session.session_id)
        return True

    @property
    def session_id(self) -> str | None:
        return self._session.session_id if self._session is not None else None

    @_recorder_entry(default=None)
    def end_session(
        self,
        reason: str | None,
        winners: Sequence[str] | None = None,
        win_condition: str | None = None,
    ) -> Path | None:
        session = self._active_session()
        if session is None:
            logger.warning("Session end ignored: no active session")
            return None

        self._phase = SessionPhase.FINALIZING
        path: Path | None = None
        try:
            try:
                self._finalize(session, reason, winners, win_condition)
            except Exception:
                logger.exception("Could not finalize session %s; persisting what was recorded", session.session_id)
            path = self.store.save(session_to_document(session))
        finally:
            self._session = None
            self._recorded_victims.clear()
            self._counted_tasks.clear()
            self.resolver.reset()
            self._phase = SessionPhase.IDLE

        if path is None:
            logger.error("Session %s was not persisted", session.session_id)
            return None
        logger.info("Session tracking ended: %s", session.session_id)
        if self.on_persisted is not None:
            try:
                self.on_persisted(path)
            except Exception:
                logger.exception("Could not hand %s to the upload pipeline", path)
        return path

    def _finalize(
        self,
        session: MatchSession,
        reason: str | None,
        winners: Sequence[str] | None,
        win_condition: str | None,
    ) -> None:
        players = list(session.players.values())
        metadata = session.metadata
        metadata.game_duration = max(0.0, self._clock() - self._epoch)
        if metadata.player_count == 0:
            metadata.player_count = len(players)
        metadata.total_tasks = counted_task_total(players)
        recount_kills(players)
        session.winner = resolve_winner(session, reason, winners, win_condition)
        session.statistics = compute_statistics(session)
        self._append_event(
            session,
            "SessionEnd",
            f"{session.winner.winning_team} wins by {session.winner.win_condition}",
            data={
                "reason": reason or "",
                "winningTeam": session.winner.winning_team,
                "winners": list(session.winner.winners),
            },
        )
        logger.info(
            "Statistics calculated: %d kills, %d deaths, %d ejections",
            session.statistics.total_kills,
            session.statistics.total_deaths,
            session.statistics.total_ejections,
        )

    # Players

    @_recorder_entry(default=0)
    def capture_roster(self, entries: Iterable[RosterEntry]) -> int:
        session = self._active_session()
        if session is None:
            return 0
        for entry in entries:
            player = session.players.get(entry.player_id)
            role = entry.role or (TEAM_IMPOSTOR if entry.is_impostor else TEAM_CREWMATE)
            team = entry.team or classify_team(role, entry.is_impostor)
            if player is None:
                player = PlayerRecord(player_id=entry.player_id, player_name=entry.name)
                session.players[entry.player_id] = player
                logger.info("Added player: %s (%s) - %s (%s)", entry.name, entry.color_name, role, team)
            player.player_name = entry.name or player.player_name
            player.color_name = entry.color_name or player.color_name
            player.role = role
            player.team = team
            if entry.modifiers:
                player.modifiers = list(entry.modifiers)
            if entry.total_tasks:
                player.total_tasks = entry.total_tasks
            for key, value in entry.cosmetics.items():
                attribute = f"{key}_id"
                if hasattr(player, attribute):
                    setattr(player, attribute, value)
            if entry.is_dead:
                player.mark_dead()
                self._recorded_victims.add(entry.player_id)
        session.metadata.player_count = len(session.players)
        return len(session.players)

    @_recorder_entry(default=False)
    def assign_role(
        self,
        player_id: int,
        role: str,
        team: str | None = None,
        modifiers: Sequence[str] | None = None,
        is_impostor: bool = False,
    ) -> bool:
        session = self._active_session()
        if session is None:
            return False
        player = session.players.get(player_id)
        if player is None:
            logger.warning("Role assigned to unknown player id %s", player_id)
            return False
        player.role = role
        player.team = team or classify_team(role, is_impostor or player.team == TEAM_IMPOSTOR)
        if modifiers is not None:
            player.modifiers = list(modifiers)
        logger.info("Updated player: %s - %s (%s)", player.player_name, player.role, player.team)
        return True

    # Deaths

    @_recorder_entry(default=False)
    def record_death_signal(
        self,
        victim_id: int,
        evidence_kind: EvidenceKind | str,
        killer_name: str | None = None,
        cause: str | None = None,
        reason: str | None = None,
        positions: Mapping[int, Position] | None = None,
    ) -> bool:
        """Reconcile one death/kill signal; returns True when the record changed."""
        session = self._active_session()
        if session is None:
            return False
        kind = EvidenceKind(evidence_kind)
        if kind in (EvidenceKind.EXPLICIT_KILL, EvidenceKind.CUSTOM_KILL) and killer_name:
            return self._apply_kill_evidence(session, victim_id, kind, killer_name, cause)

        victim = session.players.get(victim_id)
        if victim is None:
            logger.warning("Could not find player with id %s to record death", victim_id)
            return False
        if victim_id in self._recorded_victims:
            logger.debug("Duplicate death signal for %s dropped", victim.player_name)
            return False
        attribution = self.resolver.resolve_generic_death(
            victim_id,
            session.players.values(),
            reason,
            positions,
            observed_at=self._elapsed(),
        )
        return self._confirm_death(session, victim, attribution)

    @_recorder_entry(default=0)
    def record_multi_kill(self, killer_name: str, victim_ids: Iterable[int], cause: str | None = None) -> int:
        session = self._active_session()
        if session is None:
            return 0
        changed = 0
        for victim_id in victim_ids:
            if self._apply_kill_evidence(session, victim_id, EvidenceKind.CUSTOM_KILL, killer_name, cause):
                changed += 1
        return changed

    def _apply_kill_evidence(
        self,
        session: MatchSession,
        victim_id: int,
        kind: EvidenceKind,
        killer_name: str,
        cause: str | None,
    ) -> bool:
        killer = session.find_player_by_name(killer_name)
        attribution = Attribution(
            killer_name=killer_name,
            kill_type=self.resolver.kill_label(cause, killer),
            evidence=kind,
            observed_at=self._elapsed(),
        )
        victim = session.players.get(victim_id)
        if victim_id in self._recorded_victims and victim is not None:
            return self._patch_death(session, victim, attribution)
        if kind is EvidenceKind.CUSTOM_KILL or victim is None:
            # Death not confirmed yet: keep the evidence for the death signal.
            self.resolver.register_pending(victim_id, attribution)
            logger.info("Pending attribution for player %s: %s (%s)", victim_id, killer_name, attribution.kill_type)
            return False
        return self._confirm_death(session, victim, self.resolver.confirm(victim_id, attribution))

    def _confirm_death(self, session: MatchSession, victim: PlayerRecord, attribution: Attribution) -> bool:
        if victim.player_id in self._recorded_victims:
            return False
        self._recorded_victims.add(victim.player_id)
        victim.mark_dead()
        victim.death_cause = KILLED
        victim.kill_type = attribution.kill_type or DEFAULT_KILL_TYPE
        victim.killed_by = attribution.killer_name
        victim.time_of_death = self._elapsed()
        recount_kills(session.players.values())

        if attribution.killer_name is not None:
            description = f"{victim.player_name} {victim.kill_type} by {attribution.killer_name}"
            involved = [victim.player_name, attribution.killer_name]
        else:
            description = f"{victim.player_name} died ({victim.kill_type})"
            involved = [victim.player_name]
        self._append_event(
            session,
            "PlayerKilled",
            description,
            involved,
            data={"killType": victim.kill_type, "cause": KILLED, "evidence": attribution.evidence.value},
        )
        logger.info("Recorded death: %s", description)
        return True

    def _patch_death(self, session: MatchSession, victim: PlayerRecord, attribution: Attribution) -> bool:
        if victim.was_ejected or not self.resolver.should_patch(victim.player_id, attribution):
            return False
        victim.killed_by = attribution.killer_name
        victim.kill_type = attribution.kill_type
        self.resolver.record_patch(victim.player_id, attribution)
        recount_kills(session.players.values())
        logger.info(
            "Updated death info: %s was %s by %s",
            victim.player_name,
            attribution.kill_type,
            attribution.killer_name,
        )
        return True

    @_recorder_entry(default=False)
    def record_ejection(self, player_id: int | None, was_tie: bool = False) -> bool:
        session = self._active_session()
        if session is None:
            return False
        if was_tie or player_id is None:
            self._append_event(session, "VoteTied", "No one was ejected")
            return True
        player = session.players.get(player_id)
        if player is None:
            logger.warning("Could not find player with id %s to record ejection", player_id)
            return False
        if player_id in self._recorded_victims:
            return False
        self._recorded_victims.add(player_id)
        self.resolver.take_pending(player_id)
        player.mark_dead()
        player.was_ejected = True
        player.death_cause = EJECTED
        player.kill_type = EJECTED
        player.killed_by = None
        player.time_of_death = self._elapsed()
        recount_kills(session.players.values())
        self._append_event(
            session,
            "PlayerEjected",
            f"{player.player_name} was ejected",
            [player.player_name],
            data={"role": player.role, "team": player.team},
        )
        return True

    # Meetings and tasks

    @_recorder_entry(default=False)
    def record_meeting(self, is_emergency: bool, caller_name: str | None = None) -> bool:
        session = self._active_session()
        if session is None:
            return False
        session.metadata.total_meetings += 1
        for player in session.players.values():
            if player.is_alive:
                player.survived_meetings += 1
        caller = caller_name or "Unknown"
        if is_emergency:
            event_type, description = "EmergencyMeeting", f"{caller} called emergency meeting"
        else:
            event_type, description = "BodyReported", f"{caller} reported a body"
        self._append_event(session, event_type, description, [caller_name] if caller_name else [])
        return True

    @_recorder_entry(default=False)
    def record_task_step(self, player_id: int, task_id: str | int, is_final_step: bool) -> bool:
        """Count a task once, on its final step, for living non-impostor players."""
        session = self._active_session()
        if session is None or not is_final_step:
            return False
        player = session.players.get(player_id)
        if player is None:
            logger.warning("Task signal from unknown player id %s", player_id)
            return False
        if player.team == TEAM_IMPOSTOR or not player.is_alive:
            return False
        key = (player_id, str(task_id))
        if key in self._counted_tasks:
            return False
        self._counted_tasks.add(key)
        player.tasks_completed += 1
        session.metadata.completed_tasks += 1
        logger.info("%s completed task (%d/%d)", player.player_name, player.tasks_completed, player.total_tasks)
        return True

    @_recorder_entry(default=None)
    def snapshot(self) -> dict[str, Any] | None:
        if self._session is None:
            return None
        document = session_to_document(self._session)
        document["phase"] = self._phase.value
        return document
