"""
sketchsolver programmatic API — headless facade for sketch hosts.

Wraps a :class:`ConstraintSolver` with the conveniences a modelling host
wants: auto-named entities, one-call constraint helpers, and JSON
save / load of the persisted form.

Example::

    from sketchsolver.api import SketchSolverAPI

    api = SketchSolverAPI()
    origin = api.add_point(0, 0, fixed=True)
    tip = api.add_point(1, 1)
    api.constrain_distance(origin, tip, 5.0)
    result = api.solve()
    assert result.success
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Dict, Optional, Tuple, Union

from .kernel.config import SolverConfig
from .kernel.constraints import DEFAULT_CONSTRAINT_TOLERANCE, Constraint, ConstraintType
from .kernel.entities import EntityKind, GeoEntity
from .kernel.errors import SerializationError
from .kernel.result import SolveResult, SolverStatistics
from .kernel.solver import ConstraintSolver
from .kernel.store import SketchStore
from .log import logger

FORMAT_VERSION = 1


class SketchSolverAPI:
    """
    Headless programmatic API over a single sketch's constraint system.

    Parameters:
        config: Solver configuration; defaults to :class:`SolverConfig`.
    """

    def __init__(self, config: Optional[SolverConfig] = None):
        self._solver = ConstraintSolver(config=config)
        self._counters: Dict[str, int] = {}

    # =====================================================================
    # Internal helpers
    # =====================================================================

    def _next_id(self, prefix: str) -> str:
        n = self._counters.get(prefix, 0) + 1
        taken = self._solver.store
        while f"{prefix}{n}" in taken or taken.get_constraint(f"{prefix}{n}") is not None:
            n += 1
        self._counters[prefix] = n
        return f"{prefix}{n}"

    def _add(self, kind: EntityKind, params, fixed: bool, eid: Optional[str]) -> str:
        eid = eid or self._next_id(kind.value.capitalize())
        self._solver.add_entity(GeoEntity(eid, kind, list(params), fixed))
        return eid

    def _constrain(self, ctype: ConstraintType, eids, value=None,
                   tolerance: float = DEFAULT_CONSTRAINT_TOLERANCE,
                   cid: Optional[str] = None) -> str:
        cid = cid or self._next_id(ctype.value.capitalize())
        self._solver.add_constraint(
            Constraint(cid, ctype, list(eids), value=value, tolerance=tolerance)
        )
        return cid

    # =====================================================================
    # Properties
    # =====================================================================

    @property
    def solver(self) -> ConstraintSolver:
        return self._solver

    @property
    def store(self) -> SketchStore:
        return self._solver.store

    @property
    def statistics(self) -> SolverStatistics:
        return self._solver.get_statistics()

    # =====================================================================
    # Entities
    # =====================================================================

    def add_point(self, x: float, y: float, fixed: bool = False,
                  eid: Optional[str] = None) -> str:
        """Add a point.  Returns its id (``Point1``, ``Point2``, ... if not given)."""
        return self._add(EntityKind.POINT, (x, y), fixed, eid)

    def add_line(self, start: Tuple[float, float], end: Tuple[float, float],
                 fixed: bool = False, eid: Optional[str] = None) -> str:
        return self._add(EntityKind.LINE, (*start, *end), fixed, eid)

    def add_circle(self, center: Tuple[float, float], radius: float,
                   fixed: bool = False, eid: Optional[str] = None) -> str:
        return self._add(EntityKind.CIRCLE, (*center, radius), fixed, eid)

    def add_arc(self, center: Tuple[float, float], radius: float,
                start_angle: float, end_angle: float,
                fixed: bool = False, eid: Optional[str] = None) -> str:
        """Angles are in radians."""
        return self._add(EntityKind.ARC, (*center, radius, start_angle, end_angle), fixed, eid)

    def remove(self, eid: str) -> bool:
        """Remove an entity (and its constraints) or a constraint by id."""
        if eid in self._solver.store:
            return self._solver.remove_entity(eid)
        return self._solver.remove_constraint(eid)

    def parameters(self, eid: str) -> Tuple[float, ...]:
        entity = self._solver.get_entity(eid)
        if entity is None:
            raise KeyError(eid)
        return tuple(entity.parameters)

    # =====================================================================
    # Constraints
    # =====================================================================

    def constrain_distance(self, a: str, b: str, distance: float, **kw) -> str:
        return self._constrain(ConstraintType.DISTANCE, (a, b), distance, **kw)

    def constrain_angle(self, a: str, b: str, angle_deg: float, **kw) -> str:
        """Unsigned angle between two lines, in degrees."""
        return self._constrain(ConstraintType.ANGLE, (a, b), angle_deg, **kw)

    def constrain_parallel(self, a: str, b: str, **kw) -> str:
        return self._constrain(ConstraintType.PARALLEL, (a, b), **kw)

    def constrain_perpendicular(self, a: str, b: str, **kw) -> str:
        return self._constrain(ConstraintType.PERPENDICULAR, (a, b), **kw)

    def constrain_coincident(self, a: str, b: str, **kw) -> str:
        return self._constrain(ConstraintType.COINCIDENT, (a, b), **kw)

    def constrain_horizontal(self, eid: str, **kw) -> str:
        return self._constrain(ConstraintType.HORIZONTAL, (eid,), **kw)

    def constrain_vertical(self, eid: str, **kw) -> str:
        return self._constrain(ConstraintType.VERTICAL, (eid,), **kw)

    # =====================================================================
    # Solving
    # =====================================================================

    def solve(self, config: Optional[SolverConfig] = None, cancel=None) -> SolveResult:
        return self._solver.solve(config=config, cancel=cancel)

    # =====================================================================
    # Persistence
    # =====================================================================

    def to_dict(self) -> dict:
        d = self._solver.store.to_dict()
        d["version"] = FORMAT_VERSION
        d["config"] = self._solver.config.to_dict()
        return d

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), indent=2)

    @classmethod
    def from_dict(cls, d: dict) -> "SketchSolverAPI":
        version = d.get("version", FORMAT_VERSION)
        if isinstance(version, bool) or not isinstance(version, int):
            raise SerializationError(f"Sketch format version must be an integer, got {version!r}")
        if version > FORMAT_VERSION:
            raise SerializationError(f"Unsupported sketch format version {version}")
        config = SolverConfig.from_dict(d["config"]) if "config" in d else None
        api = cls(config=config)
        api._solver = ConstraintSolver(config=api._solver.config, store=SketchStore.from_dict(d))
        return api

    @classmethod
    def from_json(cls, json_str: str) -> "SketchSolverAPI":
        try:
            data = json.loads(json_str)
        except json.JSONDecodeError as exc:
            raise SerializationError(f"Invalid sketch JSON: {exc}") from exc
        if not isinstance(data, dict):
            raise SerializationError("Sketch JSON must be an object")
        return cls.from_dict(data)

    def save(self, path: Union[str, Path]):
        """Write the persisted form to *path* as JSON."""
        path = Path(path)
        path.write_text(self.to_json(), encoding="utf-8")
        logger.info("Saved %d entities / %d constraints to %s",
                    self.store.entity_count, self.store.constraint_count, path)

    @classmethod
    def load(cls, path: Union[str, Path]) -> "SketchSolverAPI":
        path = Path(path)
        api = cls.from_json(path.read_text(encoding="utf-8"))
        logger.info("Loaded %d entities / %d constraints from %s",
                    api.store.entity_count, api.store.constraint_count, path)
        return api
