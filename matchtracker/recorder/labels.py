"""Lookup tables for kill-type labels, team classification and end reasons."""

from __future__ import annotations

from dataclasses import dataclass

from matchtracker.recorder.models import (
    DEFAULT_KILL_TYPE,
    TEAM_CREWMATE,
    TEAM_IMPOSTOR,
    TEAM_NEUTRAL,
    TEAM_UNKNOWN,
)

# Matched as substrings of the normalized cause, first hit wins.
CAUSE_LABELS: tuple[tuple[tuple[str, ...], str], ...] = (
    (("warlock",), "Cursed"),
    (("bomber",), "Bombed"),
    (("arsonist",), "Ignited"),
    (("werewolf",), "Mauled"),
    (("vampire",), "Bitten"),
    (("sheriff",), "Shot"),
    (("vigilante",), "Shot"),
    (("hunter",), "Hunted"),
    (("glitch",), "Hacked"),
    (("juggernaut",), "Slashed"),
    (("venerer",), "Venerated"),
    (("puppeteer",), "Controlled"),
    (("parasite",), "Infected"),
    (("soul", "collector"), "Reaped"),
    (("pestilence",), "Infected"),
    (("plaguebearer",), "Infected"),
    (("assassin",), "Guessed"),
    (("guess",), "Guessed"),
    (("prosecute",), "Prosecuted"),
    (("inquisitor",), "Vanquished"),
    (("mercenary",), "Executed"),
    (("chef",), "Poisoned"),
    (("altruist",), "Sacrificed"),
    (("oracle",), "Confessed"),
    (("doomsayer",), "Observed"),
)

ROLE_LABELS: tuple[tuple[str, str], ...] = (
    ("soulcollector", "Reaped"),
    ("werewolf", "Mauled"),
    ("juggernaut", "Slashed"),
    ("glitch", "Hacked"),
    ("vampire", "Bitten"),
    ("arsonist", "Ignited"),
    ("pestilence", "Infected"),
    ("plaguebearer", "Infected"),
    ("inquisitor", "Vanquished"),
    ("sheriff", "Shot"),
    ("vigilante", "Shot"),
    ("hunter", "Hunted"),
    ("veteran", "Defended"),
)

NEUTRAL_ROLES = (
    "jester",
    "arsonist",
    "glitch",
    "executioner",
    "plaguebearer",
    "pestilence",
    "werewolf",
    "juggernaut",
    "amnesiac",
    "vampire",
    "doomsayer",
    "survivor",
    "mercenary",
    "inquisitor",
    "fairy",
    "chef",
    "spectre",
    "soul",
)

ORDINARY_KILL_REASONS = frozenset({"kill", "killed", "murder"})


@dataclass(frozen=True)
class EndReason:
    team: str
    condition: str
    # Narrows a team roster to the players who actually won.
    role: str | None = None
    alive_only: bool = False


END_REASONS: dict[str, EndReason] = {
    "crewmatesbyvote": EndReason(TEAM_CREWMATE, "Voted Out All Impostors"),
    "crewmatesbytask": EndReason(TEAM_CREWMATE, "Completed All Tasks"),
    "impostordisconnect": EndReason(TEAM_CREWMATE, "Impostor Disconnect"),
    "hideandseek_crewmatesbytimer": EndReason(TEAM_CREWMATE, "Survived Timer"),
    "impostorsbykill": EndReason(TEAM_IMPOSTOR, "Kill All Crewmates"),
    "impostorsbysabotage": EndReason(TEAM_IMPOSTOR, "Sabotage Win"),
    "impostorsbyvote": EndReason(TEAM_IMPOSTOR, "Voting Majority"),
    "crewmatedisconnect": EndReason(TEAM_IMPOSTOR, "Crewmate Disconnect"),
    "hideandseek_impostorsbykills": EndReason(TEAM_IMPOSTOR, "All Crewmates Killed"),
    "neutralwin": EndReason(TEAM_NEUTRAL, "Neutral Win"),
    "jesterwin": EndReason(TEAM_NEUTRAL, "Jester Ejected", role="jester"),
    "soloneutralwin": EndReason(TEAM_NEUTRAL, "Last Killer Standing", alive_only=True),
}


def normalize(value: str | None) -> str:
    if not value:
        return ""
    return value.strip().lower().replace(" ", "").replace("-", "")


def kill_type_for_cause(cause: str | None) -> str:
    """Map a free-form cause string to a label; always returns a label."""
    lowered = normalize(cause)
    if lowered in ("", "null"):
        return DEFAULT_KILL_TYPE
    for needles, label in CAUSE_LABELS:
        if all(needle in lowered for needle in needles):
            return label
    return DEFAULT_KILL_TYPE


def kill_type_for_role(role: str | None) -> str:
    lowered = normalize(role)
    for needle, label in ROLE_LABELS:
        if needle in lowered:
            return label
    return DEFAULT_KILL_TYPE


def classify_team(role: str | None, is_impostor: bool = False) -> str:
    lowered = normalize(role)
    if any(needle in lowered for needle in NEUTRAL_ROLES):
        return TEAM_NEUTRAL
    if is_impostor or "impostor" in lowered:
        return TEAM_IMPOSTOR
    return TEAM_CREWMATE


def is_neutral_killer(role: str | None, neutral_killer_roles: tuple[str, ...]) -> bool:
    lowered = normalize(role)
    if lowered == "":
        return False
    return any(needle in lowered for needle in neutral_killer_roles)


def is_ordinary_kill(reason: str | None) -> bool:
    return normalize(reason) in ORDINARY_KILL_REASONS


def resolve_end_reason(reason: str | None) -> EndReason:
    key = normalize(reason).replace("_", "").replace("winby", "by")
    for name, end_reason in END_REASONS.items():
        if name.replace("_", "") == key:
            return end_reason
    return EndReason(TEAM_UNKNOWN, reason or "Unknown")
