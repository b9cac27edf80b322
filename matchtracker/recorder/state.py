"""State builders for session aggregates and their persisted documents."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from matchtracker import __version__
from matchtracker.recorder.models import MatchSession, PlayerRecord, SessionEvent, SessionMetadata

SCHEMA_VERSION = 1


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def build_initial_session(
    session_id: str,
    map_name: str | None = None,
    game_mode: str | None = None,
    started_at: datetime | None = None,
) -> MatchSession:
    """Return an empty session with its static metadata captured."""
    metadata = SessionMetadata(
        map_name=map_name or "Unknown",
        game_mode=game_mode or "Classic",
        recorder_version=__version__,
    )
    return MatchSession(
        session_id=session_id,
        started_at=started_at or _utc_now(),
        metadata=metadata,
    )


def player_to_document(player: PlayerRecord) -> dict[str, Any]:
    return {
        "playerId": player.player_id,
        "playerName": player.player_name,
        "colorName": player.color_name,
        "hatId": player.hat_id,
        "petId": player.pet_id,
        "skinId": player.skin_id,
        "visorId": player.visor_id,
        "nameplateId": player.nameplate_id,
        "role": player.role,
        "team": player.team,
        "modifiers": list(player.modifiers),
        "isAlive": player.is_alive,
        "deathCause": player.death_cause,
        "killType": player.kill_type,
        "timeOfDeath": player.time_of_death,
        "killedBy": player.killed_by,
        "killCount": player.kill_count,
        "tasksCompleted": player.tasks_completed,
        "totalTasks": player.total_tasks,
        "wasEjected": player.was_ejected,
        "survivedMeetings": player.survived_meetings,
    }


def event_to_document(event: SessionEvent) -> dict[str, Any]:
    return {
        "eventType": event.event_type,
        "timestamp": round(event.timestamp, 3),
        "description": event.description,
        "involvedPlayers": list(event.involved_players),
        "data": dict(event.data) if event.data is not None else None,
    }


def session_to_document(session: MatchSession) -> dict[str, Any]:
    """Serialize a session into the persisted record layout."""
    metadata = session.metadata
    return {
        "schemaVersion": SCHEMA_VERSION,
        "sessionId": session.session_id,
        "timestamp": session.started_at.isoformat(),
        "metadata": {
            "mapName": metadata.map_name,
            "gameMode": metadata.game_mode,
            "playerCount": metadata.player_count,
            "gameDuration": round(metadata.game_duration, 3),
            "totalMeetings": metadata.total_meetings,
            "totalTasks": metadata.total_tasks,
            "completedTasks": metadata.completed_tasks,
            "recorderVersion": metadata.recorder_version,
        },
        "players": [player_to_document(session.players[key]) for key in sorted(session.players)],
        "events": [event_to_document(event) for event in session.events],
        "winner": {
            "winningTeam": session.winner.winning_team,
            "winCondition": session.winner.win_condition,
            "winners": list(session.winner.winners),
            "mvp": session.winner.mvp,
        },
        "statistics": {
            "totalKills": session.statistics.total_kills,
            "totalEjections": session.statistics.total_ejections,
            "totalDeaths": session.statistics.total_deaths,
            "taskCompletionRate": session.statistics.task_completion_rate,
        },
    }
