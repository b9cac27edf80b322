"""Derived aggregates for a session: kill counts, winner and statistics."""

from __future__ import annotations

from collections import Counter
from typing import Iterable, Sequence

from matchtracker.recorder.labels import normalize, resolve_end_reason
from matchtracker.recorder.models import (
    TEAM_IMPOSTOR,
    TEAM_NEUTRAL,
    TEAM_UNKNOWN,
    MatchSession,
    PlayerRecord,
    SessionStatistics,
    WinnerInfo,
)


def recount_kills(players: Iterable[PlayerRecord]) -> dict[str, int]:
    """Re-derive every kill count from the current victim -> killer mapping."""
    roster = list(players)
    counts = Counter(player.killed_by for player in roster if player.killed_by is not None and not player.is_alive)
    for player in roster:
        player.kill_count = counts.get(player.player_name, 0)
    return dict(counts)


def counted_task_total(players: Iterable[PlayerRecord]) -> int:
    return sum(player.total_tasks for player in players if player.team != TEAM_IMPOSTOR)


def completion_rate(completed: int, total: int) -> float:
    if total <= 0:
        return 0.0
    return min(1.0, max(0.0, completed / total))


def compute_statistics(session: MatchSession) -> SessionStatistics:
    players = list(session.players.values())
    completed = sum(player.tasks_completed for player in players if player.team != TEAM_IMPOSTOR)
    return SessionStatistics(
        total_kills=sum(player.kill_count for player in players),
        total_ejections=sum(1 for player in players if player.was_ejected),
        total_deaths=sum(1 for player in players if not player.is_alive),
        task_completion_rate=completion_rate(completed, counted_task_total(players)),
    )


def resolve_winner(
    session: MatchSession,
    reason: str | None,
    explicit_winners: Sequence[str] | None = None,
    win_condition: str | None = None,
) -> WinnerInfo:
    """Work out the winning team and roster from the terminal reason.

    A third-party (Neutral) win takes priority over the default
    Crewmate/Impostor classification.
    """
    end_reason = resolve_end_reason(reason)
    players = list(session.players.values())
    named = [name for name in (explicit_winners or []) if name]
    named_teams = {player.team for player in players if player.player_name in named}

    team = end_reason.team
    if named and (TEAM_NEUTRAL in named_teams or team == TEAM_UNKNOWN):
        team = TEAM_NEUTRAL

    if named:
        winners = list(dict.fromkeys(named))
    elif team == TEAM_UNKNOWN:
        winners = []
    else:
        roster = [player for player in players if player.team == team]
        narrowed = [
            player
            for player in roster
            if (end_reason.role is None or end_reason.role in normalize(player.role))
            and (not end_reason.alive_only or player.is_alive)
        ]
        winners = [player.player_name for player in (narrowed or roster)]

    return WinnerInfo(
        winning_team=team,
        win_condition=win_condition or end_reason.condition,
        winners=winners,
        mvp=select_mvp(players, winners),
    )


def select_mvp(players: Iterable[PlayerRecord], winners: Sequence[str]) -> str | None:
    candidates = [player for player in players if player.player_name in winners]
    if not candidates:
        return None
    best = max(candidates, key=lambda player: (player.kill_count, player.tasks_completed, -player.player_id))
    return best.player_name
