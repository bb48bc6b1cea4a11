"""
Geometric entities — the parametric primitives a sketch is made of.

Every entity is a flat, fixed-length parameter vector:

========  =====  ===========================================
kind      arity  parameters
========  =====  ===========================================
point     2      ``[x, y]``
line      4      ``[x1, y1, x2, y2]``
circle    3      ``[cx, cy, r]``
arc       5      ``[cx, cy, r, start_angle, end_angle]``
========  =====  ===========================================

A ``fixed`` entity is read-only to the solver: it contributes no unknowns
and its parameters are never written back.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Sequence, Tuple

from .errors import InvalidEntityError, SerializationError


# =========================================================================
# Entity kinds
# =========================================================================

class EntityKind(Enum):
    POINT = "point"
    LINE = "line"
    CIRCLE = "circle"
    ARC = "arc"


PARAM_ARITY = {
    EntityKind.POINT: 2,
    EntityKind.LINE: 4,
    EntityKind.CIRCLE: 3,
    EntityKind.ARC: 5,
}

# Direction used for entities that have no natural direction (points,
# circles, arcs).  Constraints that need a direction see +X and the solve
# reports a warning.
DEFAULT_DIRECTION: Tuple[float, float] = (1.0, 0.0)


def parse_kind(kind) -> EntityKind:
    """Accept an :class:`EntityKind`, its value (``"line"``) or its name."""
    if isinstance(kind, EntityKind):
        return kind
    try:
        return EntityKind(str(kind).lower())
    except ValueError:
        raise InvalidEntityError(f"Unknown entity type {kind!r}") from None


def check_parameters(kind: EntityKind, parameters: Sequence[float]) -> List[float]:
    """Validate arity and finiteness; return the parameters as floats."""
    expected = PARAM_ARITY[kind]
    if len(parameters) != expected:
        raise InvalidEntityError(
            f"A {kind.value} takes {expected} parameters, got {len(parameters)}"
        )
    values = [float(v) for v in parameters]
    if not all(math.isfinite(v) for v in values):
        raise InvalidEntityError(f"Non-finite parameter in {values}")
    return values


# =========================================================================
# Geometry helpers (operate on raw parameter sequences)
# =========================================================================

def representative_point(kind: EntityKind, p: Sequence[float]) -> Tuple[float, float]:
    """
    The point a distance / coincident constraint measures from.

    Points use themselves, lines their start point, circles and arcs
    their centre.  All four happen to be ``p[0], p[1]``.
    """
    return (p[0], p[1])


def direction(kind: EntityKind, p: Sequence[float]) -> Tuple[float, float]:
    """
    Normalised direction of a line-like entity.

    A zero-length line has direction ``(0, 0)`` rather than NaN.
    Non-line entities fall back to :data:`DEFAULT_DIRECTION`.
    """
    if kind is not EntityKind.LINE:
        return DEFAULT_DIRECTION
    dx = p[2] - p[0]
    dy = p[3] - p[1]
    length = math.hypot(dx, dy)
    if length == 0.0:
        return (0.0, 0.0)
    return (dx / length, dy / length)


# =========================================================================
# Entity record
# =========================================================================

@dataclass
class GeoEntity:
    """A geometric entity as held by the store."""
    eid: str
    kind: EntityKind
    parameters: List[float] = field(default_factory=list)
    fixed: bool = False

    def __post_init__(self):
        if not isinstance(self.eid, str) or not self.eid:
            raise InvalidEntityError(f"Entity id must be a non-empty string, got {self.eid!r}")
        self.kind = parse_kind(self.kind)
        self.parameters = check_parameters(self.kind, self.parameters)
        self.fixed = bool(self.fixed)

    @property
    def arity(self) -> int:
        return PARAM_ARITY[self.kind]

    @property
    def is_line(self) -> bool:
        return self.kind is EntityKind.LINE

    def point(self) -> Tuple[float, float]:
        return representative_point(self.kind, self.parameters)

    def direction(self) -> Tuple[float, float]:
        return direction(self.kind, self.parameters)

    def copy(self) -> "GeoEntity":
        return GeoEntity(self.eid, self.kind, list(self.parameters), self.fixed)

    def to_dict(self) -> dict:
        return {
            "id": self.eid,
            "type": self.kind.value,
            "parameters": list(self.parameters),
            "fixed": self.fixed,
        }

    @classmethod
    def from_dict(cls, d: dict) -> "GeoEntity":
        try:
            return cls(
                eid=d["id"],
                kind=d["type"],
                parameters=list(d["parameters"]),
                fixed=d.get("fixed", False),
            )
        except (KeyError, TypeError) as exc:
            raise SerializationError(f"Malformed entity record {d!r}: {exc}") from exc


# -- Convenience constructors ------------------------------------------------

def point(eid: str, x: float, y: float, fixed: bool = False) -> GeoEntity:
    return GeoEntity(eid, EntityKind.POINT, [x, y], fixed)


def line(eid: str, x1: float, y1: float, x2: float, y2: float,
         fixed: bool = False) -> GeoEntity:
    return GeoEntity(eid, EntityKind.LINE, [x1, y1, x2, y2], fixed)


def circle(eid: str, cx: float, cy: float, r: float, fixed: bool = False) -> GeoEntity:
    return GeoEntity(eid, EntityKind.CIRCLE, [cx, cy, r], fixed)


def arc(eid: str, cx: float, cy: float, r: float,
        start_angle: float, end_angle: float, fixed: bool = False) -> GeoEntity:
    """Arc angles are in radians."""
    return GeoEntity(eid, EntityKind.ARC, [cx, cy, r, start_angle, end_angle], fixed)
