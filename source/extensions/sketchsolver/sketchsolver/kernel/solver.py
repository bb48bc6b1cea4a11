"""
2D geometric constraint solver — damped Newton-Raphson over a sketch store.

Architecture
------------
* The :class:`SketchStore` owns entities and constraints.
* At the start of a solve the store is flattened into a
  :class:`ParameterArena`; every constraint contributes exactly one
  scalar residual (:mod:`.residuals`).
* :class:`NewtonDriver` iterates: residual norm → Jacobian
  (:mod:`.jacobian`) → correction (:mod:`.linalg`) → damped update, until
  the norm drops below ``tolerance`` or ``max_iterations`` runs out.
* Final parameters are written back to the store, each constraint's
  ``satisfied`` flag is refreshed and a :class:`SolveResult` is returned.

Numerical trouble never raises out of :meth:`ConstraintSolver.solve`; it
ends up in ``SolveResult.errors`` with the best state reached so far.

Usage::

    solver = ConstraintSolver()
    solver.add_entity(point("A", 0, 0, fixed=True))
    solver.add_entity(point("B", 1, 1))
    solver.add_constraint(Constraint("d", ConstraintType.DISTANCE, ["A", "B"], value=5))
    result = solver.solve()
    assert result.success
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any, Callable, List, Optional, Sequence, Union

import numpy as np

from ..log import logger
from .arena import ParameterArena
from .config import SolverConfig
from .constraints import Constraint
from .dof import DOFReport, JacobianDiagnosis, analyze_dof, diagnose_jacobian
from .entities import GeoEntity
from .errors import LinearSolveError
from .jacobian import JacobianBuilder
from .linalg import solve_correction
from .residuals import evaluate, residual_norm, residual_vector
from .result import (
    ConstraintReport,
    EntityState,
    SolveResult,
    SolverState,
    SolverStatistics,
)
from .store import SketchStore

# A cancellation source: a zero-argument callable returning True to stop,
# or anything with an ``is_set()`` method such as ``threading.Event``.
CancelToken = Union[Callable[[], bool], Any]


def _is_cancelled(cancel: Optional[CancelToken]) -> bool:
    if cancel is None:
        return False
    is_set = getattr(cancel, "is_set", None)
    if is_set is not None:
        return bool(is_set())
    return bool(cancel())


# =========================================================================
# Iteration driver
# =========================================================================

@dataclass
class DriverOutcome:
    state: SolverState
    iterations: int = 0
    residual: float = float("inf")
    history: List[float] = field(default_factory=list)
    rank_deficiency: int = 0
    errors: List[str] = field(default_factory=list)


class NewtonDriver:
    """
    Damped Newton-Raphson loop over a :class:`ParameterArena`.

    State machine: ``INITIALIZED → ITERATING → {CONVERGED | EXHAUSTED |
    FAILED | CANCELLED}``.  On exhaustion the lowest-residual state seen is
    restored into the arena.
    """

    def __init__(self, config: SolverConfig, builder: Optional[JacobianBuilder] = None):
        self.config = config
        self.builder = builder or JacobianBuilder(config.jacobian_mode, config.fd_epsilon)
        self.state = SolverState.INITIALIZED

    def run(self, arena: ParameterArena, cancel: Optional[CancelToken] = None) -> DriverOutcome:
        cfg = self.config
        self.state = SolverState.ITERATING
        out = DriverOutcome(state=self.state)
        best_norm = math.inf
        best_snap = arena.snapshot()

        for iteration in range(1, cfg.max_iterations + 1):
            if _is_cancelled(cancel):
                self.state = SolverState.CANCELLED
                out.residual = residual_norm(residual_vector(arena.bound, arena.values))
                out.errors.append(f"Solve cancelled after {out.iterations} iteration(s)")
                break

            out.iterations = iteration
            residuals = residual_vector(arena.bound, arena.values)
            norm = residual_norm(residuals)
            if not math.isfinite(norm):
                arena.restore(best_snap)
                out.residual = best_norm
                self.state = SolverState.FAILED
                out.errors.append(f"Residual became non-finite at iteration {iteration}")
                break

            out.history.append(norm)
            if norm < best_norm:
                best_norm = norm
                best_snap = arena.snapshot()
            out.residual = norm

            if norm < cfg.tolerance:
                self.state = SolverState.CONVERGED
                break

            jac = self.builder.build(arena, residuals)
            try:
                correction = solve_correction(jac, residuals, cfg.pivot_tolerance)
            except LinearSolveError as exc:
                arena.restore(best_snap)
                out.residual = best_norm
                self.state = SolverState.FAILED
                out.errors.append(f"Failed to solve linear system: {exc}")
                break

            out.rank_deficiency = max(out.rank_deficiency, correction.rank_deficiency)
            logger.debug(
                "iteration %d: residual=%.6e form=%s skipped_pivots=%d",
                iteration, norm, correction.form, correction.rank_deficiency,
            )

            limit = cfg.max_rank_deficiency
            if limit is not None and correction.rank_deficiency > limit:
                self.state = SolverState.FAILED
                out.errors.append(
                    f"Rank-deficient system at iteration {iteration}: "
                    f"{correction.rank_deficiency} pivot(s) below {cfg.pivot_tolerance:g} "
                    f"(limit {limit})"
                )
                break

            arena.apply_step(correction.delta, cfg.damping_factor)
        else:
            # Budget spent; the last step has not been checked yet
            norm = residual_norm(residual_vector(arena.bound, arena.values))
            if math.isfinite(norm) and norm < best_norm:
                best_norm = norm
                out.history.append(norm)
            else:
                arena.restore(best_snap)
            out.residual = best_norm
            if best_norm < cfg.tolerance:
                self.state = SolverState.CONVERGED
            else:
                self.state = SolverState.EXHAUSTED
                out.errors.append(
                    f"Solver did not converge after {cfg.max_iterations} iterations "
                    f"(residual {best_norm:.3e}, tolerance {cfg.tolerance:g})"
                )

        out.state = self.state
        return out


# =========================================================================
# Public facade
# =========================================================================

class ConstraintSolver:
    """
    Geometric constraint solver for 2D sketches.

    Owns a :class:`SketchStore` and a :class:`SolverConfig`.  The config
    setters validate and replace the stored config; ``solve(config=...)``
    overrides it for a single call.

    Parameters:
        config: Initial configuration (defaults: 100 iterations, tolerance
            ``1e-6``, damping ``0.5``).
        store: Existing store to operate on.  A new one is created if omitted.
    """

    def __init__(self, config: Optional[SolverConfig] = None, store: Optional[SketchStore] = None):
        self._store = store if store is not None else SketchStore()
        self._config = config if config is not None else SolverConfig()
        logger.debug("Constraint solver initialised (%s)", self._config)

    # -- State queries -------------------------------------------------------

    @property
    def store(self) -> SketchStore:
        return self._store

    @property
    def config(self) -> SolverConfig:
        return self._config

    @property
    def entities(self) -> List[GeoEntity]:
        return self._store.entities

    @property
    def constraints(self) -> List[Constraint]:
        return self._store.constraints

    def get_entity(self, eid: str) -> Optional[GeoEntity]:
        return self._store.get_entity(eid)

    def get_constraint(self, cid: str) -> Optional[Constraint]:
        return self._store.get_constraint(cid)

    def get_statistics(self) -> SolverStatistics:
        dof = analyze_dof(self._store)
        return SolverStatistics(
            entity_count=self._store.entity_count,
            constraint_count=self._store.constraint_count,
            degrees_of_freedom=dof.free_parameters,
        )

    # -- Store operations ------------------------------------------------------

    def add_entity(self, entity: GeoEntity) -> None:
        self._store.add_entity(entity)

    def remove_entity(self, eid: str) -> bool:
        return self._store.remove_entity(eid)

    def update_entity(self, eid: str, parameters: Sequence[float]) -> bool:
        return self._store.update_entity(eid, parameters)

    def add_constraint(self, constraint: Constraint) -> None:
        self._store.add_constraint(constraint)

    def remove_constraint(self, cid: str) -> bool:
        return self._store.remove_constraint(cid)

    def clear(self):
        self._store.clear()

    # -- Configuration -----------------------------------------------------------

    def configure(self, config: SolverConfig) -> "ConstraintSolver":
        self._config = config
        return self

    def set_max_iterations(self, n: int) -> "ConstraintSolver":
        self._config = self._config.with_max_iterations(n)
        return self

    def set_tolerance(self, t: float) -> "ConstraintSolver":
        self._config = self._config.with_tolerance(t)
        return self

    def set_damping_factor(self, f: float) -> "ConstraintSolver":
        self._config = self._config.with_damping_factor(f)
        return self

    # -- Diagnostics ---------------------------------------------------------------

    def analyze(self) -> DOFReport:
        """Counting-based DOF classification of the current system."""
        return analyze_dof(self._store)

    def diagnose(self, config: Optional[SolverConfig] = None) -> JacobianDiagnosis:
        """Numerical rank of the Jacobian at the current state."""
        cfg = config or self._config
        arena = ParameterArena(self._store)
        builder = JacobianBuilder(cfg.jacobian_mode, cfg.fd_epsilon)
        return diagnose_jacobian(builder.build(arena))

    def _direction_warnings(self) -> List[str]:
        warnings = []
        for c in self._store.constraints:
            if not c.is_directional:
                continue
            for eid in c.entity_ids:
                entity = self._store.get_entity(eid)
                if entity is not None and not entity.is_line:
                    warnings.append(
                        f"Constraint '{c.cid}' ({c.ctype.value}) references "
                        f"{entity.kind.value} '{eid}', which has no direction; "
                        f"(1, 0) is used"
                    )
        return warnings

    # -- Solver ----------------------------------------------------------------------

    def solve(
        self,
        config: Optional[SolverConfig] = None,
        cancel: Optional[CancelToken] = None,
    ) -> SolveResult:
        """
        Solve the constraint system in place.

        Args:
            config: Overrides the solver's stored config for this call.
            cancel: Polled once per iteration; see :data:`CancelToken`.

        Returns:
            A :class:`SolveResult`.  ``success`` is ``True`` only when the
            residual norm fell below ``tolerance``.
        """
        cfg = config or self._config
        result = SolveResult()

        dof = analyze_dof(self._store)
        result.dof = dof
        if dof.is_over_constrained:
            result.errors.append(dof.describe())
            logger.warning(dof.describe())
        else:
            logger.debug(dof.describe())
        result.errors.extend(self._direction_warnings())

        arena = ParameterArena(self._store)
        driver = NewtonDriver(cfg)
        outcome = driver.run(arena, cancel)

        arena.write_back(self._store)

        # Per-constraint satisfaction at the final state
        for c, bc in zip(self._store.constraints, arena.bound):
            r = evaluate(bc, arena.values)
            c.satisfied = abs(r) < c.tolerance
            result.constraints[c.cid] = ConstraintReport(c.cid, r, c.satisfied)

        result.state = outcome.state
        result.success = outcome.state is SolverState.CONVERGED
        result.iterations = outcome.iterations
        result.residual = outcome.residual
        result.residual_history = outcome.history
        result.rank_deficiency = outcome.rank_deficiency
        result.errors.extend(outcome.errors)
        if outcome.rank_deficiency and cfg.max_rank_deficiency is None:
            result.errors.append(
                f"Rank-deficient correction: up to {outcome.rank_deficiency} pivot(s) "
                f"below {cfg.pivot_tolerance:g} were skipped; some constraints may be "
                f"redundant or unreachable"
            )
        result.entities = {e.eid: EntityState.of(e) for e in self._store}

        if result.success:
            logger.info(
                "Solve converged in %d iteration(s), residual %.3e",
                result.iterations, result.residual,
            )
        else:
            logger.warning(
                "Solve ended %s after %d iteration(s), residual %.3e",
                result.state.value, result.iterations, result.residual,
            )
        return result

    def residuals(self) -> np.ndarray:
        """Residual vector of the current state, in constraint order."""
        arena = ParameterArena(self._store)
        return residual_vector(arena.bound, arena.values)

    def __repr__(self) -> str:
        stats = self.get_statistics()
        return (
            f"ConstraintSolver(entities={stats.entity_count}, "
            f"constraints={stats.constraint_count}, dof={stats.degrees_of_freedom})"
        )
