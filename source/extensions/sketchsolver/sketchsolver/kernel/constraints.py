"""
Constraint records.

The seven constraint kinds form a closed set: :class:`ConstraintType` is
the only place a kind is declared, and the residual table in
:mod:`.residuals` refuses to import unless it covers every member.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

from .errors import (
    ConstraintArityError,
    InvalidConstraintError,
    MissingValueError,
    SerializationError,
)

DEFAULT_CONSTRAINT_TOLERANCE = 1e-6


class ConstraintType(Enum):
    DISTANCE = "distance"
    ANGLE = "angle"              # value in degrees
    PARALLEL = "parallel"
    PERPENDICULAR = "perpendicular"
    COINCIDENT = "coincident"
    HORIZONTAL = "horizontal"
    VERTICAL = "vertical"


CONSTRAINT_ARITY = {
    ConstraintType.DISTANCE: 2,
    ConstraintType.ANGLE: 2,
    ConstraintType.PARALLEL: 2,
    ConstraintType.PERPENDICULAR: 2,
    ConstraintType.COINCIDENT: 2,
    ConstraintType.HORIZONTAL: 1,
    ConstraintType.VERTICAL: 1,
}

VALUE_REQUIRED = frozenset({ConstraintType.DISTANCE, ConstraintType.ANGLE})

# Kinds whose residual is built from entity directions.  Applied to a
# non-line entity they see the +X fallback direction.
DIRECTIONAL = frozenset({
    ConstraintType.ANGLE,
    ConstraintType.PARALLEL,
    ConstraintType.PERPENDICULAR,
    ConstraintType.HORIZONTAL,
    ConstraintType.VERTICAL,
})


def parse_ctype(ctype) -> ConstraintType:
    if isinstance(ctype, ConstraintType):
        return ctype
    try:
        return ConstraintType(str(ctype).lower())
    except ValueError:
        raise InvalidConstraintError(f"Unknown constraint type {ctype!r}") from None


@dataclass
class Constraint:
    """
    A relation between one or two entities.

    ``satisfied`` is written by the solver after every solve; it is output,
    not input, and is not persisted.  ``priority`` is carried through
    save / load but does not weight the solve.
    """
    cid: str
    ctype: ConstraintType
    entity_ids: List[str] = field(default_factory=list)
    value: Optional[float] = None
    tolerance: float = DEFAULT_CONSTRAINT_TOLERANCE
    priority: int = 0
    satisfied: bool = False

    def __post_init__(self):
        if not isinstance(self.cid, str) or not self.cid:
            raise InvalidConstraintError(
                f"Constraint id must be a non-empty string, got {self.cid!r}"
            )
        self.ctype = parse_ctype(self.ctype)
        self.entity_ids = [str(e) for e in self.entity_ids]
        expected = CONSTRAINT_ARITY[self.ctype]
        if len(self.entity_ids) != expected:
            raise ConstraintArityError(
                f"Constraint '{self.cid}': {self.ctype.value} takes {expected} "
                f"entities, got {len(self.entity_ids)}"
            )
        if self.value is None:
            if self.ctype in VALUE_REQUIRED:
                raise MissingValueError(
                    f"Constraint '{self.cid}': {self.ctype.value} needs a value"
                )
        else:
            self.value = float(self.value)
            if not math.isfinite(self.value):
                raise InvalidConstraintError(f"Constraint '{self.cid}': value must be finite")
        self.tolerance = float(self.tolerance)
        if not self.tolerance > 0.0:
            raise InvalidConstraintError(
                f"Constraint '{self.cid}': tolerance must be positive, got {self.tolerance}"
            )

    @property
    def is_directional(self) -> bool:
        return self.ctype in DIRECTIONAL

    def references(self, eid: str) -> bool:
        return eid in self.entity_ids

    def copy(self) -> "Constraint":
        return Constraint(
            cid=self.cid,
            ctype=self.ctype,
            entity_ids=list(self.entity_ids),
            value=self.value,
            tolerance=self.tolerance,
            priority=self.priority,
            satisfied=self.satisfied,
        )

    def to_dict(self) -> dict:
        d = {
            "id": self.cid,
            "type": self.ctype.value,
            "entityIds": list(self.entity_ids),
            "tolerance": self.tolerance,
            "priority": self.priority,
        }
        if self.value is not None:
            d["value"] = self.value
        return d

    @classmethod
    def from_dict(cls, d: dict) -> "Constraint":
        try:
            return cls(
                cid=d["id"],
                ctype=d["type"],
                entity_ids=list(d["entityIds"]),
                value=d.get("value"),
                tolerance=d.get("tolerance", DEFAULT_CONSTRAINT_TOLERANCE),
                priority=d.get("priority", 0),
            )
        except (KeyError, TypeError) as exc:
            raise SerializationError(f"Malformed constraint record {d!r}: {exc}") from exc
