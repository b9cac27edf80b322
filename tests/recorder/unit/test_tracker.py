from datetime import datetime, timezone
from pathlib import Path

from matchtracker.recorder.models import RosterEntry, SessionPhase
from matchtracker.recorder.store import InMemoryRecordStore
from matchtracker.recorder.tracker import SessionTracker


class _Clock:
    def __init__(self) -> None:
        self.now = 100.0

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class _FailingStore(InMemoryRecordStore):
    def save(self, document: dict) -> Path | None:
        raise RuntimeError("disk on fire")


def _ids():
    counter = iter(range(1000))
    return lambda: f"session{next(counter):04d}{'0' * 20}"


def _tracker(store=None, on_persisted=None, clock=None) -> SessionTracker:
    return SessionTracker(
        store=store if store is not None else InMemoryRecordStore(),
        on_persisted=on_persisted,
        clock=clock if clock is not None else _Clock(),
        wall_clock=lambda: datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc),
        id_factory=_ids(),
    )


def _six_players() -> list[RosterEntry]:
    return [
        RosterEntry(player_id=0, name="Alice", role="Impostor", is_impostor=True, total_tasks=3),
        RosterEntry(player_id=1, name="Bob", role="Crewmate", total_tasks=4),
        RosterEntry(player_id=2, name="Cara", role="Warlock", is_impostor=True, total_tasks=3),
        RosterEntry(player_id=3, name="Dan", role="Medic", total_tasks=4),
        RosterEntry(player_id=4, name="Eve", role="Sheriff", total_tasks=4),
        RosterEntry(player_id=5, name="Finn", role="Engineer", total_tasks=4),
    ]


def _started(**kwargs) -> SessionTracker:
    tracker = _tracker(**kwargs)
    tracker.start_session(map_name="The Skeld", game_mode="Classic")
    tracker.capture_roster(_six_players())
    return tracker


def _players_by_name(tracker: SessionTracker) -> dict:
    return {player.player_name: player for player in tracker.session.players.values()}


def _death_events(tracker: SessionTracker) -> list:
    return [event for event in tracker.session.events if event.event_type == "PlayerKilled"]


def test_start_session_while_active_is_noop() -> None:
    tracker = _tracker()
    assert tracker.start_session(map_name="Polus") is True
    session_id = tracker.session_id
    started_at = tracker.session.started_at

    assert tracker.start_session(map_name="MIRA HQ") is False

    assert tracker.session_id == session_id
    assert tracker.session.started_at == started_at
    assert tracker.session.metadata.map_name == "Polus"
    assert [event.event_type for event in tracker.session.events] == ["SessionStart"]


def test_signals_before_start_are_ignored() -> None:
    tracker = _tracker()

    assert tracker.record_meeting(is_emergency=True, caller_name="Bob") is False
    assert tracker.end_session("ImpostorsByKill") is None
    assert tracker.phase is SessionPhase.IDLE


def test_roster_capture_builds_one_record_per_player_id() -> None:
    tracker = _started()

    tracker.capture_roster([RosterEntry(player_id=1, name="Bob", role="Jester", modifiers=("Giant",))])

    players = _players_by_name(tracker)
    assert len(tracker.session.players) == 6
    assert all(player.is_alive for player in players.values())
    assert players["Alice"].team == "Impostor"
    assert players["Cara"].team == "Impostor"
    assert players["Bob"].team == "Neutral"
    assert players["Bob"].modifiers == ["Giant"]
    assert tracker.session.metadata.player_count == 6


def test_players_are_matched_by_id_not_name() -> None:
    tracker = _tracker()
    tracker.start_session()
    tracker.capture_roster([RosterEntry(player_id=0, name="Red"), RosterEntry(player_id=1, name="Red")])

    tracker.assign_role(1, "Sheriff", modifiers=["Torch"])

    assert tracker.session.players[0].role == "Crewmate"
    assert tracker.session.players[1].role == "Sheriff"
    assert tracker.session.players[1].modifiers == ["Torch"]


def test_explicit_kill_then_redundant_generic_death_scenario() -> None:
    tracker = _started()

    tracker.record_death_signal(1, "explicit-kill", killer_name="Alice")

    players = _players_by_name(tracker)
    assert players["Bob"].is_alive is False
    assert players["Bob"].killed_by == "Alice"
    assert players["Alice"].kill_count == 1

    assert tracker.record_death_signal(1, "generic-death", reason="Kill") is False

    assert len(_death_events(tracker)) == 1
    assert players["Alice"].kill_count == 1

    session = tracker.session
    path = tracker.end_session("impostors win by kill")

    assert path is not None
    assert session.winner.winning_team == "Impostor"
    assert session.winner.winners == ["Alice", "Cara"]
    assert session.statistics.total_kills == 1
    assert session.statistics.total_deaths == 1
    assert tracker.phase is SessionPhase.IDLE


def test_custom_kill_before_generic_death_uses_pending_attribution() -> None:
    tracker = _started()

    tracker.record_death_signal(3, "custom-kill", killer_name="Eve", cause="SheriffShot")
    assert tracker.session.players[3].is_alive is True

    tracker.record_death_signal(3, "generic-death", reason="Kill")

    dan = tracker.session.players[3]
    assert dan.is_alive is False
    assert dan.killed_by == "Eve"
    assert dan.kill_type == "Shot"
    assert tracker.session.players[4].kill_count == 1


def test_generic_death_uses_proximity_then_retroactive_patch() -> None:
    tracker = _started()
    positions = {5: (0.0, 0.0), 0: (1.0, 0.0), 2: (3.0, 0.0)}

    tracker.record_death_signal(5, "generic-death", reason="Kill", positions=positions)

    players = _players_by_name(tracker)
    assert players["Finn"].killed_by == "Alice"
    assert players["Alice"].kill_count == 1

    assert tracker.record_death_signal(5, "custom-kill", killer_name="Cara", cause="WarlockCurse") is True

    assert players["Finn"].killed_by == "Cara"
    assert players["Finn"].kill_type == "Cursed"
    assert players["Alice"].kill_count == 0
    assert players["Cara"].kill_count == 1
    assert len(_death_events(tracker)) == 1


def test_kill_counts_match_killed_by_after_patches() -> None:
    tracker = _started()
    tracker.record_death_signal(1, "generic-death", reason="Kill", positions={1: (0, 0), 0: (1, 0)})
    tracker.record_death_signal(3, "explicit-kill", killer_name="Alice")
    tracker.record_death_signal(1, "explicit-kill", killer_name="Cara")
    tracker.record_death_signal(3, "custom-kill", killer_name="Cara", cause="Bomber")

    session = tracker.session
    tracker.end_session("ImpostorsByKill")

    for player in session.players.values():
        expected = sum(1 for other in session.players.values() if other.killed_by == player.player_name)
        assert player.kill_count == expected
    assert session.statistics.total_kills == 2


def test_generic_death_without_evidence_records_unknown_attribution() -> None:
    tracker = _started()

    tracker.record_death_signal(4, "generic-death", reason="Exile")

    eve = tracker.session.players[4]
    assert eve.is_alive is False
    assert eve.killed_by is None
    assert eve.kill_type == "Killed"


def test_multi_kill_registers_pending_for_each_victim() -> None:
    tracker = _started()

    tracker.record_multi_kill("Cara", [1, 3], cause="Bomber")
    tracker.record_death_signal(1, "generic-death", reason="Kill")
    tracker.record_death_signal(3, "generic-death", reason="Kill")

    assert tracker.session.players[1].kill_type == "Bombed"
    assert tracker.session.players[3].killed_by == "Cara"
    assert tracker.session.players[2].kill_count == 2


def test_ejection_is_deduplicated_with_deaths() -> None:
    tracker = _started()

    assert tracker.record_ejection(2) is True
    assert tracker.record_death_signal(2, "generic-death", reason="Exile") is False
    assert tracker.record_death_signal(2, "custom-kill", killer_name="Eve") is False

    cara = tracker.session.players[2]
    assert cara.was_ejected is True
    assert cara.death_cause == "Ejected"
    assert cara.killed_by is None
    assert tracker.session.players[4].kill_count == 0


def test_tied_vote_records_event_without_death() -> None:
    tracker = _started()

    tracker.record_ejection(None, was_tie=True)

    assert tracker.session.events[-1].event_type == "VoteTied"
    assert all(player.is_alive for player in tracker.session.players.values())


def test_meetings_count_and_track_survivors() -> None:
    tracker = _started()
    tracker.record_death_signal(1, "explicit-kill", killer_name="Alice")

    tracker.record_meeting(is_emergency=False, caller_name="Dan")
    tracker.record_meeting(is_emergency=True, caller_name="Eve")

    assert tracker.session.metadata.total_meetings == 2
    assert [event.event_type for event in tracker.session.events[-2:]] == ["BodyReported", "EmergencyMeeting"]
    assert tracker.session.players[3].survived_meetings == 2
    assert tracker.session.players[1].survived_meetings == 0


def test_multi_step_task_counts_once_on_final_step() -> None:
    tracker = _started()

    tracker.record_task_step(3, "wires", is_final_step=False)
    tracker.record_task_step(3, "wires", is_final_step=False)
    tracker.record_task_step(3, "wires", is_final_step=True)

    assert tracker.session.players[3].tasks_completed == 1
    assert tracker.session.metadata.completed_tasks == 1


def test_same_task_completion_twice_counts_once() -> None:
    tracker = _started()

    assert tracker.record_task_step(3, 7, is_final_step=True) is True
    assert tracker.record_task_step(3, "7", is_final_step=True) is False

    assert tracker.session.players[3].tasks_completed == 1


def test_impostor_and_dead_player_tasks_are_ignored() -> None:
    tracker = _started()
    tracker.record_death_signal(1, "explicit-kill", killer_name="Alice")

    assert tracker.record_task_step(0, "fake", is_final_step=True) is False
    assert tracker.record_task_step(1, "ghost", is_final_step=True) is False

    assert tracker.session.players[0].tasks_completed == 0
    assert tracker.session.players[1].tasks_completed == 0
    assert tracker.session.metadata.completed_tasks == 0


def test_end_session_computes_metadata_and_task_rate() -> None:
    clock = _Clock()
    tracker = _started(clock=clock)
    tracker.record_task_step(3, "a", is_final_step=True)
    tracker.record_task_step(4, "b", is_final_step=True)
    clock.advance(90.5)

    session = tracker.session
    tracker.end_session("CrewmatesByTask")

    assert session.metadata.game_duration == 90.5
    assert session.metadata.total_tasks == 16
    assert session.statistics.task_completion_rate == 2 / 16
    assert session.winner.winners == ["Bob", "Dan", "Eve", "Finn"]
    assert session.events[-1].event_type == "SessionEnd"


def test_task_rate_is_zero_without_tasks() -> None:
    tracker = _tracker()
    tracker.start_session()
    tracker.capture_roster([RosterEntry(player_id=0, name="Solo")])

    session = tracker.session
    tracker.end_session("CrewmatesByTask")

    assert session.statistics.task_completion_rate == 0.0


def test_event_timestamps_are_non_decreasing() -> None:
    clock = _Clock()
    tracker = _started(clock=clock)
    clock.advance(5)
    tracker.record_meeting(is_emergency=True, caller_name="Bob")
    clock.advance(-3)
    tracker.record_meeting(is_emergency=True, caller_name="Dan")

    timestamps = [event.timestamp for event in tracker.session.events]
    assert timestamps == sorted(timestamps)


def test_end_session_hands_record_to_callback() -> None:
    store = InMemoryRecordStore()
    received: list[Path] = []
    tracker = _started(store=store, on_persisted=received.append)

    path = tracker.end_session("ImpostorsBySabotage")

    assert received == [path]
    assert store.load_record(path)["winner"]["winningTeam"] == "Impostor"
    assert len(store.load_record(path)["players"]) == 6


def test_end_session_persistence_failure_does_not_raise() -> None:
    received: list[Path] = []
    tracker = _started(store=_FailingStore(), on_persisted=received.append)

    assert tracker.end_session("ImpostorsByKill") is None

    assert received == []
    assert tracker.phase is SessionPhase.IDLE
    assert tracker.start_session() is True


def test_end_session_still_persists_when_finalization_fails(monkeypatch) -> None:
    store = InMemoryRecordStore()
    tracker = _started(store=store)

    def explode(*args, **kwargs):
        raise ValueError("bad winner")

    monkeypatch.setattr("matchtracker.recorder.tracker.resolve_winner", explode)

    path = tracker.end_session("ImpostorsByKill")

    assert path is not None
    assert store.load_record(path)["players"]


def test_unknown_evidence_kind_is_logged_not_raised() -> None:
    tracker = _started()

    assert tracker.record_death_signal(1, "telepathy") is False
    assert tracker.session.players[1].is_alive is True


def test_snapshot_reports_active_session() -> None:
    tracker = _started()

    snapshot = tracker.snapshot()

    assert snapshot["phase"] == "active"
    assert snapshot["metadata"]["mapName"] == "The Skeld"
    assert tracker.end_session("ImpostorsByKill") is not None
    assert tracker.snapshot() is None


def test_player_dead_at_roster_time_gets_no_death_event() -> None:
    tracker = _tracker()
    tracker.start_session()
    tracker.capture_roster(
        [
            RosterEntry(player_id=0, name="Alice", role="Impostor", is_impostor=True),
            RosterEntry(player_id=1, name="Ghost", is_dead=True),
        ]
    )

    assert tracker.record_death_signal(1, "generic-death", reason="Kill") is False
    tracker.record_death_signal(1, "explicit-kill", killer_name="Alice")

    assert tracker.session.players[1].is_alive is False
    assert _death_events(tracker) == []
