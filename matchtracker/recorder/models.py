"""Domain models for the session aggregate, evidence and delivery results."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any

TEAM_CREWMATE = "Crewmate"
TEAM_IMPOSTOR = "Impostor"
TEAM_NEUTRAL = "Neutral"
TEAM_UNKNOWN = "Unknown"

DEFAULT_KILL_TYPE = "Killed"


class SessionPhase(str, Enum):
    IDLE = "idle"
    ACTIVE = "active"
    FINALIZING = "finalizing"


class EvidenceKind(str, Enum):
    """Sources that can attribute a death, ordered by ``rank``."""

    CUSTOM_KILL = "custom-kill"
    EXPLICIT_KILL = "explicit-kill"
    GENERIC_DEATH = "generic-death"
    PROXIMITY = "proximity"
    UNKNOWN = "unknown"

    @property
    def rank(self) -> int:
        return _EVIDENCE_RANK[self]


_EVIDENCE_RANK = {
    EvidenceKind.CUSTOM_KILL: 4,
    EvidenceKind.EXPLICIT_KILL: 3,
    EvidenceKind.PROXIMITY: 1,
    EvidenceKind.GENERIC_DEATH: 0,
    EvidenceKind.UNKNOWN: 0,
}


@dataclass(frozen=True)
class Attribution:
    killer_name: str | None
    kill_type: str
    evidence: EvidenceKind
    observed_at: float = 0.0

    @property
    def rank(self) -> int:
        if self.killer_name is None:
            return 0
        return self.evidence.rank


UNKNOWN_ATTRIBUTION = Attribution(killer_name=None, kill_type=DEFAULT_KILL_TYPE, evidence=EvidenceKind.UNKNOWN)


@dataclass(frozen=True)
class RosterEntry:
    player_id: int
    name: str
    color_name: str = ""
    role: str = ""
    team: str | None = None
    is_impostor: bool = False
    modifiers: tuple[str, ...] = ()
    total_tasks: int = 0
    is_dead: bool = False
    cosmetics: dict[str, str] = field(default_factory=dict)


@dataclass
class PlayerRecord:
    player_id: int
    player_name: str
    color_name: str = ""
    hat_id: str = ""
    pet_id: str = ""
    skin_id: str = ""
    visor_id: str = ""
    nameplate_id: str = ""
    role: str = TEAM_CREWMATE
    team: str = TEAM_CREWMATE
    modifiers: list[str] = field(default_factory=list)
    is_alive: bool = True
    death_cause: str | None = None
    kill_type: str | None = None
    time_of_death: float | None = None
    killed_by: str | None = None
    kill_count: int = 0
    tasks_completed: int = 0
    total_tasks: int = 0
    was_ejected: bool = False
    survived_meetings: int = 0

    def mark_dead(self) -> bool:
        """Flip the alive flag once; returns False when already dead."""
        if not self.is_alive:
            return False
        self.is_alive = False
        return True


@dataclass(frozen=True)
class SessionEvent:
    event_type: str
    timestamp: float
    description: str
    involved_players: tuple[str, ...] = ()
    data: dict[str, Any] | None = None


@dataclass
class SessionMetadata:
    map_name: str = "Unknown"
    game_mode: str = "Classic"
    player_count: int = 0
    game_duration: float = 0.0
    total_meetings: int = 0
    total_tasks: int = 0
    completed_tasks: int = 0
    recorder_version: str = ""


@dataclass
class WinnerInfo:
    winning_team: str = ""
    win_condition: str = ""
    winners: list[str] = field(default_factory=list)
    mvp: str | None = None


@dataclass
class SessionStatistics:
    total_kills: int = 0
    total_ejections: int = 0
    total_deaths: int = 0
    task_completion_rate: float = 0.0


@dataclass
class MatchSession:
    session_id: str
    started_at: datetime
    metadata: SessionMetadata = field(default_factory=SessionMetadata)
    players: dict[int, PlayerRecord] = field(default_factory=dict)
    events: list[SessionEvent] = field(default_factory=list)
    winner: WinnerInfo = field(default_factory=WinnerInfo)
    statistics: SessionStatistics = field(default_factory=SessionStatistics)

    def find_player_by_name(self, name: str) -> PlayerRecord | None:
        for player in self.players.values():
            if player.player_name == name:
                return player
        return None


@dataclass(frozen=True)
class UploadOutcome:
    path: Path
    delivered: bool
    attempts: int
    delivered_path: Path | None = None
