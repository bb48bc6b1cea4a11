"""Result Reporter — what a solve hands back to its caller."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Tuple

from .dof import DOFReport
from .entities import EntityKind, GeoEntity


class SolverState(Enum):
    INITIALIZED = "initialized"
    ITERATING = "iterating"
    CONVERGED = "converged"
    EXHAUSTED = "exhausted"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class EntityState:
    """Immutable snapshot of one entity after a solve."""
    eid: str
    kind: EntityKind
    parameters: Tuple[float, ...]
    fixed: bool

    @classmethod
    def of(cls, entity: GeoEntity) -> "EntityState":
        return cls(entity.eid, entity.kind, tuple(entity.parameters), entity.fixed)

    def to_dict(self) -> dict:
        return {
            "id": self.eid,
            "type": self.kind.value,
            "parameters": list(self.parameters),
            "fixed": self.fixed,
        }


@dataclass(frozen=True)
class ConstraintReport:
    cid: str
    residual: float
    satisfied: bool

    def to_dict(self) -> dict:
        return {"id": self.cid, "residual": self.residual, "satisfied": self.satisfied}


@dataclass
class SolveResult:
    """
    Outcome of :meth:`ConstraintSolver.solve`.

    ``success`` is ``True`` only for :attr:`SolverState.CONVERGED`.  The
    entity map is always populated, including after exhaustion or failure,
    with the best state the solver reached.  ``errors`` collects both
    errors and warnings as human-readable strings.
    """
    success: bool = False
    iterations: int = 0
    residual: float = float("inf")
    entities: Dict[str, EntityState] = field(default_factory=dict)
    errors: List[str] = field(default_factory=list)
    state: SolverState = SolverState.INITIALIZED
    constraints: Dict[str, ConstraintReport] = field(default_factory=dict)
    dof: Optional[DOFReport] = None
    residual_history: List[float] = field(default_factory=list)
    rank_deficiency: int = 0

    @property
    def satisfied_count(self) -> int:
        return sum(1 for r in self.constraints.values() if r.satisfied)

    @property
    def unsatisfied(self) -> List[str]:
        return [cid for cid, r in self.constraints.items() if not r.satisfied]

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "iterations": self.iterations,
            "residual": self.residual,
            "entities": {eid: s.to_dict() for eid, s in self.entities.items()},
            "errors": list(self.errors),
            "state": self.state.value,
            "constraints": {cid: r.to_dict() for cid, r in self.constraints.items()},
            "dof": self.dof.to_dict() if self.dof is not None else None,
            "residualHistory": list(self.residual_history),
            "rankDeficiency": self.rank_deficiency,
        }


@dataclass(frozen=True)
class SolverStatistics:
    entity_count: int
    constraint_count: int
    degrees_of_freedom: int

    def to_dict(self) -> dict:
        return {
            "entityCount": self.entity_count,
            "constraintCount": self.constraint_count,
            "degreesOfFreedom": self.degrees_of_freedom,
        }
