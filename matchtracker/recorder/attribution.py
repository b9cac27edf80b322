"""Death attribution: ranked evidence, pending registry and proximity fallback."""

from __future__ import annotations

from dataclasses import dataclass, field
import importlib
import logging
import math
from typing import Iterable, Mapping, Protocol, Sequence

from matchtracker.recorder.config import DEFAULT_NEUTRAL_KILLERS
from matchtracker.recorder.labels import (
    is_neutral_killer,
    is_ordinary_kill,
    kill_type_for_cause,
    kill_type_for_role,
)
from matchtracker.recorder.models import (
    DEFAULT_KILL_TYPE,
    TEAM_IMPOSTOR,
    UNKNOWN_ATTRIBUTION,
    Attribution,
    EvidenceKind,
    PlayerRecord,
)

logger = logging.getLogger(__name__)

Position = Sequence[float]


class ExtendedAttributionSource(Protocol):
    """Optional collaborator exposed by an extended role system."""

    def kill_type_for_cause(self, cause: str) -> str | None:
        """Return a label for an extension-specific cause, or None when unknown."""

    def is_neutral_killer(self, role: str) -> bool | None:
        """Return whether the role kills independently, or None when unknown."""


def load_extension(target: str | None) -> ExtendedAttributionSource | None:
    """Resolve a ``module:attribute`` extension, or None when unavailable."""
    if not target:
        return None
    module_name, _, attribute = target.partition(":")
    try:
        module = importlib.import_module(module_name)
        source = getattr(module, attribute or "extension")
    except (ImportError, AttributeError):
        logger.warning("Attribution extension %s not available - using base attribution only", target)
        return None
    if isinstance(source, type):
        source = source()
    logger.info("Attribution extension loaded: %s", target)
    return source


@dataclass
class AttributionResolver:
    proximity_threshold: float = 5.0
    neutral_killer_roles: tuple[str, ...] = DEFAULT_NEUTRAL_KILLERS
    extension: ExtendedAttributionSource | None = None
    _pending: dict[int, Attribution] = field(default_factory=dict, init=False, repr=False)
    _applied: dict[int, Attribution] = field(default_factory=dict, init=False, repr=False)

    def reset(self) -> None:
        self._pending.clear()
        self._applied.clear()

    def label_for_cause(self, cause: str | None) -> str:
        if cause and self.extension is not None:
            label = self.extension.kill_type_for_cause(cause)
            if label:
                return label
        return kill_type_for_cause(cause)

    def label_for_role(self, role: str | None) -> str:
        return kill_type_for_role(role)

    def kill_label(self, cause: str | None, killer: PlayerRecord | None) -> str:
        """Prefer the stated cause, then the killer's role, then the generic label."""
        label = self.label_for_cause(cause)
        if label == DEFAULT_KILL_TYPE and killer is not None:
            label = self.label_for_role(killer.role)
        return label

    def is_kill_eligible(self, player: PlayerRecord) -> bool:
        if player.team == TEAM_IMPOSTOR:
            return True
        if self.extension is not None:
            verdict = self.extension.is_neutral_killer(player.role)
            if verdict is not None:
                return verdict
        return is_neutral_killer(player.role, self.neutral_killer_roles)

    def has_pending(self, victim_id: int) -> bool:
        return victim_id in self._pending

    def register_pending(self, victim_id: int, attribution: Attribution) -> bool:
        """Keep the best evidence seen for a victim whose death is not confirmed yet."""
        current = self._pending.get(victim_id)
        if current is not None and current.rank > attribution.rank:
            return False
        self._pending[victim_id] = attribution
        return True

    def take_pending(self, victim_id: int) -> Attribution | None:
        return self._pending.pop(victim_id, None)

    def confirm(self, victim_id: int, *candidates: Attribution | None) -> Attribution:
        """Pick the attribution for a confirmed death, consuming any pending entry."""
        best = best_attribution([self.take_pending(victim_id), *candidates])
        self._applied[victim_id] = best
        return best

    def should_patch(self, victim_id: int, attribution: Attribution) -> bool:
        if attribution.killer_name is None:
            return False
        current = self._applied.get(victim_id, UNKNOWN_ATTRIBUTION)
        if current.killer_name == attribution.killer_name and attribution.kill_type in (
            current.kill_type,
            DEFAULT_KILL_TYPE,
        ):
            return False
        return attribution.rank >= current.rank

    def record_patch(self, victim_id: int, attribution: Attribution) -> None:
        self._applied[victim_id] = attribution

    def infer_from_proximity(
        self,
        victim_id: int,
        players: Iterable[PlayerRecord],
        positions: Mapping[int, Position] | None,
        observed_at: float = 0.0,
    ) -> Attribution | None:
        """Guess the nearest living kill-eligible player within the threshold."""
        if not positions or victim_id not in positions:
            return None
        victim_position = positions[victim_id]
        nearest: PlayerRecord | None = None
        nearest_distance = math.inf
        for player in players:
            if player.player_id == victim_id or not player.is_alive:
                continue
            if player.player_id not in positions or not self.is_kill_eligible(player):
                continue
            distance = math.dist(victim_position, positions[player.player_id])
            if distance < nearest_distance:
                nearest = player
                nearest_distance = distance
        if nearest is None or nearest_distance >= self.proximity_threshold:
            return None
        logger.info("Inferred killer %s from proximity (%.2f)", nearest.player_name, nearest_distance)
        return Attribution(
            killer_name=nearest.player_name,
            kill_type=self.label_for_role(nearest.role),
            evidence=EvidenceKind.PROXIMITY,
            observed_at=observed_at,
        )

    def resolve_generic_death(
        self,
        victim_id: int,
        players: Iterable[PlayerRecord],
        reason: str | None,
        positions: Mapping[int, Position] | None,
        observed_at: float = 0.0,
    ) -> Attribution:
        """Attribution cascade for a death signal that carries no killer."""
        if victim_id in self._pending:
            return self.confirm(victim_id)
        inferred = None
        if is_ordinary_kill(reason):
            inferred = self.infer_from_proximity(victim_id, players, positions, observed_at)
        return self.confirm(victim_id, inferred)


def best_attribution(candidates: Iterable[Attribution | None]) -> Attribution:
    """Highest-ranked candidate; earlier candidates win ties."""
    best = UNKNOWN_ATTRIBUTION
    for candidate in candidates:
        if candidate is not None and candidate.rank > best.rank:
            best = candidate
    return best
