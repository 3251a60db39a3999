"""Specialization attribution for runs.

A run's spec comes from the authoritative per-run source when it has an
entry for the exact (dungeon, level, completion ms) key; otherwise the
character's currently active spec is used. Runs completed on a spec the
character has since dropped are mis-attributed under fallback; the
``source`` tag on every resolution makes that visible.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum
from typing import NamedTuple


class Role(str, Enum):
    TANK = "TANK"
    HEALING = "HEALING"
    DPS = "DPS"


class SpecSource(str, Enum):
    AUTHORITATIVE = "authoritative"
    FALLBACK = "fallback"


class SpecKey(NamedTuple):
    """Lookup key shared by the run being resolved and the authoritative map."""

    dungeon: str
    level: int
    completed_ms: int


@dataclass(frozen=True)
class SpecAssignment:
    spec_name: str
    role: Role


@dataclass(frozen=True)
class SpecResolution:
    spec_name: str | None
    role: Role
    source: SpecSource


TANK_SPECS = frozenset({"Blood", "Vengeance", "Protection", "Guardian", "Brewmaster"})
HEALER_SPECS = frozenset({"Discipline", "Holy", "Restoration", "Mistweaver", "Preservation"})


def role_for_spec(spec_name: str | None) -> Role:
    """Role implied by a spec name. Unknown names are DPS."""
    if spec_name in TANK_SPECS:
        return Role.TANK
    if spec_name in HEALER_SPECS:
        return Role.HEALING
    return Role.DPS


def parse_role(value: str | None, spec_name: str | None = None) -> Role:
    """Coerce an upstream role string; fall back to the spec-derived role."""
    if value:
        try:
            return Role(value.strip().upper())
        except ValueError:
            pass
    return role_for_spec(spec_name)


def resolve_spec(
    key: SpecKey,
    authoritative: Mapping[SpecKey, SpecAssignment],
    fallback_spec_name: str | None,
    fallback_role: str | Role | None,
) -> SpecResolution:
    """Pick the spec and role to attribute to the run identified by ``key``."""
    hit = authoritative.get(key)
    if hit is not None:
        return SpecResolution(spec_name=hit.spec_name, role=hit.role, source=SpecSource.AUTHORITATIVE)

    role = fallback_role if isinstance(fallback_role, Role) else parse_role(fallback_role, fallback_spec_name)
    return SpecResolution(spec_name=fallback_spec_name, role=role, source=SpecSource.FALLBACK)
