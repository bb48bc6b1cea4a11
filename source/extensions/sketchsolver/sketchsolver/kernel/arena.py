"""
Parameter arena — the flat view of a store that a single solve works on.

Built once at the start of :meth:`ConstraintSolver.solve`:

* every entity's parameters are laid out back to back in one
  ``float64`` vector ``values`` (fixed entities included, so residuals
  can read them without branching);
* ``free_positions[j]`` is the slot in ``values`` of Jacobian column ``j``;
  ``column_of[k]`` is the inverse map (``-1`` for fixed slots);
* each constraint is compiled into a :class:`BoundConstraint` carrying
  entity kinds and offsets, so the hot loops never touch an id lookup.

Only free slots are ever written, and only :meth:`write_back` copies them
into the store.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np

from .constraints import Constraint, ConstraintType
from .entities import PARAM_ARITY, EntityKind
from .store import SketchStore


@dataclass(frozen=True)
class BoundConstraint:
    """A constraint resolved against an arena."""
    cid: str
    ctype: ConstraintType
    kinds: Tuple[EntityKind, ...]
    offsets: Tuple[int, ...]
    # Target value in solver units (angles already in radians)
    target: float
    tolerance: float
    # Jacobian columns this row can be non-zero in
    columns: Tuple[int, ...]

    def params(self, values: np.ndarray, k: int) -> np.ndarray:
        """Parameter slice of the *k*-th referenced entity."""
        off = self.offsets[k]
        return values[off:off + PARAM_ARITY[self.kinds[k]]]


class ParameterArena:
    """Contiguous parameter storage plus the id → slot map for one solve."""

    def __init__(self, store: SketchStore):
        self._offsets: Dict[str, int] = {}
        self._kinds: Dict[str, EntityKind] = {}
        self._free_ids: List[str] = []
        flat: List[float] = []
        free: List[int] = []

        for entity in store:
            off = len(flat)
            self._offsets[entity.eid] = off
            self._kinds[entity.eid] = entity.kind
            flat.extend(entity.parameters)
            if not entity.fixed:
                self._free_ids.append(entity.eid)
                free.extend(range(off, off + entity.arity))

        self.values = np.array(flat, dtype=np.float64)
        self.free_positions = np.array(free, dtype=np.intp)
        self.column_of = np.full(len(flat), -1, dtype=np.intp)
        self.column_of[self.free_positions] = np.arange(len(free), dtype=np.intp)

        self.bound: List[BoundConstraint] = [self.bind(c) for c in store.constraints]

    # -- Shape ---------------------------------------------------------------

    @property
    def n_free(self) -> int:
        return int(self.free_positions.size)

    @property
    def n_equations(self) -> int:
        return len(self.bound)

    @property
    def free_entity_ids(self) -> List[str]:
        return list(self._free_ids)

    # -- Binding ---------------------------------------------------------------

    def bind(self, constraint: Constraint) -> BoundConstraint:
        kinds = tuple(self._kinds[eid] for eid in constraint.entity_ids)
        offsets = tuple(self._offsets[eid] for eid in constraint.entity_ids)

        columns: List[int] = []
        for kind, off in zip(kinds, offsets):
            for pos in range(off, off + PARAM_ARITY[kind]):
                col = int(self.column_of[pos])
                if col >= 0 and col not in columns:
                    columns.append(col)

        target = constraint.value if constraint.value is not None else 0.0
        if constraint.ctype is ConstraintType.ANGLE:
            target = math.radians(target)

        return BoundConstraint(
            cid=constraint.cid,
            ctype=constraint.ctype,
            kinds=kinds,
            offsets=offsets,
            target=target,
            tolerance=constraint.tolerance,
            columns=tuple(columns),
        )

    # -- Free-parameter vector --------------------------------------------------

    def apply_step(self, delta: np.ndarray, damping: float):
        """``free += damping * delta``."""
        self.values[self.free_positions] += damping * delta

    def snapshot(self) -> np.ndarray:
        return self.values.copy()

    def restore(self, snap: np.ndarray):
        self.values[:] = snap

    # -- Results ---------------------------------------------------------------

    def entity_parameters(self, eid: str) -> List[float]:
        off = self._offsets[eid]
        return self.values[off:off + PARAM_ARITY[self._kinds[eid]]].tolist()

    def write_back(self, store: SketchStore, eids: Optional[Sequence[str]] = None):
        """Copy free-entity parameters back into *store*."""
        for eid in (eids if eids is not None else self._free_ids):
            store.update_entity(eid, self.entity_parameters(eid))
