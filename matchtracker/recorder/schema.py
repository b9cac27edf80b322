"""Pydantic models for reading persisted session records.

Readers must cope with records written by older versions: absent or null
fields fall back to their empty/zero defaults and unknown keys are kept.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel


class _RecordModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    @model_validator(mode="before")
    @classmethod
    def _drop_nulls(cls, data: Any) -> Any:
        if isinstance(data, dict):
            return {key: value for key, value in data.items() if value is not None}
        return data


class MetadataDocument(_RecordModel):
    map_name: str = "Unknown"
    game_mode: str = "Classic"
    player_count: int = 0
    game_duration: float = 0.0
    total_meetings: int = 0
    total_tasks: int = 0
    completed_tasks: int = 0
    recorder_version: str = ""


class PlayerDocument(_RecordModel):
    player_id: int = 0
    player_name: str = ""
    color_name: str = ""
    hat_id: str = ""
    pet_id: str = ""
    skin_id: str = ""
    visor_id: str = ""
    nameplate_id: str = ""
    role: str = "Crewmate"
    team: str = "Crewmate"
    modifiers: list[str] = Field(default_factory=list)
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


class EventDocument(_RecordModel):
    event_type: str = ""
    timestamp: float = 0.0
    description: str = ""
    involved_players: list[str] = Field(default_factory=list)
    data: dict[str, Any] | None = None


class WinnerDocument(_RecordModel):
    winning_team: str = ""
    win_condition: str = ""
    winners: list[str] = Field(default_factory=list)
    mvp: str | None = None


class StatisticsDocument(_RecordModel):
    total_kills: int = 0
    total_ejections: int = 0
    total_deaths: int = 0
    task_completion_rate: float = 0.0


class SessionDocument(_RecordModel):
    schema_version: int = 1
    session_id: str = ""
    timestamp: str = ""
    metadata: MetadataDocument = Field(default_factory=MetadataDocument)
    players: list[PlayerDocument] = Field(default_factory=list)
    events: list[EventDocument] = Field(default_factory=list)
    winner: WinnerDocument = Field(default_factory=WinnerDocument)
    statistics: StatisticsDocument = Field(default_factory=StatisticsDocument)
