from matchtracker.recorder.attribution import AttributionResolver, best_attribution, load_extension
from matchtracker.recorder.models import Attribution, EvidenceKind, PlayerRecord


def _players() -> list[PlayerRecord]:
    return [
        PlayerRecord(player_id=0, player_name="Victim"),
        PlayerRecord(player_id=1, player_name="Imp", role="Impostor", team="Impostor"),
        PlayerRecord(player_id=2, player_name="Wolf", role="Werewolf", team="Neutral"),
        PlayerRecord(player_id=3, player_name="Crew", role="Medic", team="Crewmate"),
    ]


class _Extension:
    def kill_type_for_cause(self, cause: str) -> str | None:
        return "Frozen" if cause == "IceBeam" else None

    def is_neutral_killer(self, role: str) -> bool | None:
        return True if role == "Cryomancer" else None


def test_proximity_picks_nearest_eligible_player_within_threshold() -> None:
    resolver = AttributionResolver(proximity_threshold=5.0)
    positions = {0: (0.0, 0.0), 1: (4.0, 0.0), 2: (1.0, 1.0), 3: (0.1, 0.0)}

    attribution = resolver.infer_from_proximity(0, _players(), positions)

    assert attribution is not None
    assert attribution.killer_name == "Wolf"
    assert attribution.kill_type == "Mauled"
    assert attribution.evidence is EvidenceKind.PROXIMITY


def test_proximity_ignores_players_beyond_threshold_and_dead_players() -> None:
    resolver = AttributionResolver(proximity_threshold=2.0)
    players = _players()
    players[2].is_alive = False
    positions = {0: (0.0, 0.0), 1: (3.0, 0.0), 2: (0.5, 0.0)}

    assert resolver.infer_from_proximity(0, players, positions) is None


def test_proximity_requires_victim_position() -> None:
    resolver = AttributionResolver()

    assert resolver.infer_from_proximity(0, _players(), {1: (0.0, 0.0)}) is None
    assert resolver.infer_from_proximity(0, _players(), None) is None


def test_neutral_killer_membership_is_configuration() -> None:
    resolver = AttributionResolver(neutral_killer_roles=())
    positions = {0: (0.0, 0.0), 2: (1.0, 0.0)}

    assert resolver.infer_from_proximity(0, _players(), positions) is None


def test_generic_death_prefers_pending_attribution() -> None:
    resolver = AttributionResolver()
    pending = Attribution(killer_name="Imp", kill_type="Shot", evidence=EvidenceKind.CUSTOM_KILL)
    resolver.register_pending(0, pending)

    attribution = resolver.resolve_generic_death(0, _players(), "Kill", {0: (0.0, 0.0), 2: (0.5, 0.0)})

    assert attribution == pending
    assert resolver.has_pending(0) is False


def test_generic_death_without_kill_reason_skips_proximity() -> None:
    resolver = AttributionResolver()

    attribution = resolver.resolve_generic_death(0, _players(), "Exile", {0: (0.0, 0.0), 1: (0.5, 0.0)})

    assert attribution.killer_name is None
    assert attribution.kill_type == "Killed"


def test_register_pending_keeps_higher_confidence_evidence() -> None:
    resolver = AttributionResolver()
    custom = Attribution(killer_name="Wolf", kill_type="Mauled", evidence=EvidenceKind.CUSTOM_KILL)
    explicit = Attribution(killer_name="Imp", kill_type="Killed", evidence=EvidenceKind.EXPLICIT_KILL)

    assert resolver.register_pending(5, custom) is True
    assert resolver.register_pending(5, explicit) is False
    assert resolver.take_pending(5) == custom


def test_should_patch_requires_at_least_equal_confidence() -> None:
    resolver = AttributionResolver()
    proximity = Attribution(killer_name="Imp", kill_type="Killed", evidence=EvidenceKind.PROXIMITY)
    resolver.confirm(0, proximity)

    custom = Attribution(killer_name="Wolf", kill_type="Mauled", evidence=EvidenceKind.CUSTOM_KILL)
    assert resolver.should_patch(0, custom) is True
    resolver.record_patch(0, custom)

    weaker = Attribution(killer_name="Imp", kill_type="Killed", evidence=EvidenceKind.EXPLICIT_KILL)
    assert resolver.should_patch(0, weaker) is False


def test_should_patch_does_not_downgrade_label_for_same_killer() -> None:
    resolver = AttributionResolver()
    resolver.confirm(0, Attribution(killer_name="Sher", kill_type="Shot", evidence=EvidenceKind.EXPLICIT_KILL))

    generic_label = Attribution(killer_name="Sher", kill_type="Killed", evidence=EvidenceKind.CUSTOM_KILL)

    assert resolver.should_patch(0, generic_label) is False


def test_best_attribution_ranks_evidence() -> None:
    proximity = Attribution(killer_name="Imp", kill_type="Killed", evidence=EvidenceKind.PROXIMITY)
    custom = Attribution(killer_name="Wolf", kill_type="Mauled", evidence=EvidenceKind.CUSTOM_KILL)

    assert best_attribution([None, proximity, custom]) == custom
    assert best_attribution([None]).evidence is EvidenceKind.UNKNOWN


def test_extension_is_consulted_before_base_tables() -> None:
    resolver = AttributionResolver(neutral_killer_roles=(), extension=_Extension())
    cryo = PlayerRecord(player_id=4, player_name="Cryo", role="Cryomancer", team="Neutral")

    assert resolver.label_for_cause("IceBeam") == "Frozen"
    assert resolver.label_for_cause("SheriffShot") == "Shot"
    assert resolver.is_kill_eligible(cryo) is True


def test_load_extension_missing_module_falls_back_to_none() -> None:
    assert load_extension("matchtracker_missing_extension:source") is None
    assert load_extension(None) is None


def test_load_extension_instantiates_classes() -> None:
    source = load_extension("collections:OrderedDict")

    assert source is not None
    assert not isinstance(source, type)
