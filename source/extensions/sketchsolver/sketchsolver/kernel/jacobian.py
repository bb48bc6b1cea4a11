"""
Jacobian Builder — d(residual) / d(free parameter).

The default is a forward finite difference: perturb one free parameter,
re-evaluate the constraint, restore the parameter, divide the delta by
epsilon.  Only the columns a constraint actually references are
perturbed, so the work per row is bounded by the arity of its entities.

Analytic derivatives plug in per constraint type through
:func:`register_analytic`.  An analytic function receives the arena
values and the bound constraint and returns ``(slot, derivative)`` pairs,
or ``None`` when the derivative is undefined at the current point (e.g.
two coincident points under a distance constraint); the builder then
falls back to a finite difference for that row.
"""

from __future__ import annotations

import math
from typing import Callable, Dict, List, Optional, Tuple

import numpy as np

from .arena import BoundConstraint, ParameterArena
from .constraints import ConstraintType
from .entities import EntityKind
from .residuals import evaluate

JACOBIAN_MODES = ("forward", "central", "analytic")

Partials = List[Tuple[int, float]]
AnalyticFn = Callable[[np.ndarray, BoundConstraint], Optional[Partials]]

_ANALYTIC: Dict[ConstraintType, AnalyticFn] = {}


def register_analytic(ctype: ConstraintType, fn: Optional[AnalyticFn] = None):
    """
    Register an analytic derivative for *ctype*.

    Usable directly (``register_analytic(T, fn)``) or as a decorator
    (``@register_analytic(T)``).  A later registration replaces an
    earlier one.
    """
    def _register(f: AnalyticFn) -> AnalyticFn:
        _ANALYTIC[ctype] = f
        return f

    if fn is not None:
        return _register(fn)
    return _register


# =========================================================================
# Builder
# =========================================================================

class JacobianBuilder:
    """
    Assembles the dense ``(equations x free parameters)`` Jacobian.

    Parameters:
        mode: ``"forward"``, ``"central"`` or ``"analytic"``.
        epsilon: Finite-difference step.
        analytic: Per-builder overrides merged over the global registry.
    """

    def __init__(
        self,
        mode: str = "forward",
        epsilon: float = 1e-8,
        analytic: Optional[Dict[ConstraintType, AnalyticFn]] = None,
    ):
        if mode not in JACOBIAN_MODES:
            raise ValueError(f"Unknown Jacobian mode {mode!r}")
        self.mode = mode
        self.epsilon = epsilon
        self._analytic = dict(_ANALYTIC)
        if analytic:
            self._analytic.update(analytic)
        # Rows that fell back from analytic to finite differences
        self.fallback_rows = 0

    def build(self, arena: ParameterArena, residuals: Optional[np.ndarray] = None) -> np.ndarray:
        """
        Jacobian at the arena's current values.

        *residuals* (the residual vector at the same point) saves one
        evaluation per row for forward differences.
        """
        jac = np.zeros((arena.n_equations, arena.n_free), dtype=np.float64)
        self.fallback_rows = 0
        values = arena.values
        for i, bc in enumerate(arena.bound):
            if not bc.columns:
                continue
            if self.mode == "analytic":
                fn = self._analytic.get(bc.ctype)
                partials = fn(values, bc) if fn is not None else None
                if partials is not None:
                    for pos, deriv in partials:
                        col = arena.column_of[pos]
                        if col >= 0:
                            jac[i, col] += deriv
                    continue
                if fn is not None:
                    self.fallback_rows += 1
            r0 = residuals[i] if residuals is not None else evaluate(bc, values)
            if self.mode == "central":
                self._central_row(jac[i], arena, bc)
            else:
                self._forward_row(jac[i], arena, bc, r0)
        return jac

    def _forward_row(self, row: np.ndarray, arena: ParameterArena, bc: BoundConstraint, r0: float):
        values = arena.values
        eps = self.epsilon
        for col in bc.columns:
            pos = arena.free_positions[col]
            saved = values[pos]
            values[pos] = saved + eps
            r1 = evaluate(bc, values)
            values[pos] = saved
            row[col] = (r1 - r0) / eps

    def _central_row(self, row: np.ndarray, arena: ParameterArena, bc: BoundConstraint):
        values = arena.values
        eps = self.epsilon
        for col in bc.columns:
            pos = arena.free_positions[col]
            saved = values[pos]
            values[pos] = saved + eps
            r_plus = evaluate(bc, values)
            values[pos] = saved - eps
            r_minus = evaluate(bc, values)
            values[pos] = saved
            row[col] = (r_plus - r_minus) / (2.0 * eps)


# =========================================================================
# Built-in analytic derivatives
# =========================================================================

def _point_slots(bc: BoundConstraint, k: int) -> Tuple[int, int]:
    # The representative point is always the first two parameters
    off = bc.offsets[k]
    return off, off + 1


def _direction_partials(values: np.ndarray, bc: BoundConstraint, k: int):
    """
    Unit direction ``u`` of entity *k* and its partials.

    Returns ``(u, [(slot, du_x, du_y), ...])``; non-line entities have a
    constant direction and no partials.  ``None`` for a zero-length line.
    """
    if bc.kinds[k] is not EntityKind.LINE:
        return (1.0, 0.0), []
    p = bc.params(values, k)
    off = bc.offsets[k]
    dx = p[2] - p[0]
    dy = p[3] - p[1]
    length = math.hypot(dx, dy)
    if length == 0.0:
        return None
    ux, uy = dx / length, dy / length
    dux_ddx, dux_ddy = uy * uy / length, -ux * uy / length
    duy_ddx, duy_ddy = -ux * uy / length, ux * ux / length
    partials = [
        (off, -dux_ddx, -duy_ddx),
        (off + 1, -dux_ddy, -duy_ddy),
        (off + 2, dux_ddx, duy_ddx),
        (off + 3, dux_ddy, duy_ddy),
    ]
    return (float(ux), float(uy)), partials


def _separation_partials(values: np.ndarray, bc: BoundConstraint) -> Optional[Partials]:
    p1 = bc.params(values, 0)
    p2 = bc.params(values, 1)
    dx = p1[0] - p2[0]
    dy = p1[1] - p2[1]
    dist = math.hypot(dx, dy)
    if dist == 0.0:
        return None
    gx, gy = dx / dist, dy / dist
    ax, ay = _point_slots(bc, 0)
    bx, by = _point_slots(bc, 1)
    return [(ax, gx), (ay, gy), (bx, -gx), (by, -gy)]


register_analytic(ConstraintType.DISTANCE, _separation_partials)
register_analytic(ConstraintType.COINCIDENT, _separation_partials)


@register_analytic(ConstraintType.HORIZONTAL)
def _horizontal_partials(values: np.ndarray, bc: BoundConstraint) -> Optional[Partials]:
    d = _direction_partials(values, bc, 0)
    if d is None:
        return None
    return [(slot, duy) for slot, _, duy in d[1]]


@register_analytic(ConstraintType.VERTICAL)
def _vertical_partials(values: np.ndarray, bc: BoundConstraint) -> Optional[Partials]:
    d = _direction_partials(values, bc, 0)
    if d is None:
        return None
    return [(slot, dux) for slot, dux, _ in d[1]]


@register_analytic(ConstraintType.PERPENDICULAR)
def _perpendicular_partials(values: np.ndarray, bc: BoundConstraint) -> Optional[Partials]:
    da = _direction_partials(values, bc, 0)
    db = _direction_partials(values, bc, 1)
    if da is None or db is None:
        return None
    (ax, ay), pa = da
    (bx, by), pb = db
    out = [(slot, dux * bx + duy * by) for slot, dux, duy in pa]
    out += [(slot, ax * dux + ay * duy) for slot, dux, duy in pb]
    return out


@register_analytic(ConstraintType.PARALLEL)
def _parallel_partials(values: np.ndarray, bc: BoundConstraint) -> Optional[Partials]:
    da = _direction_partials(values, bc, 0)
    db = _direction_partials(values, bc, 1)
    if da is None or db is None:
        return None
    (ax, ay), pa = da
    (bx, by), pb = db
    cross = ax * by - ay * bx
    if cross == 0.0:
        # |cross| has no derivative here
        return None
    s = 1.0 if cross > 0.0 else -1.0
    out = [(slot, s * (dux * by - duy * bx)) for slot, dux, duy in pa]
    out += [(slot, s * (ax * duy - ay * dux)) for slot, dux, duy in pb]
    return out
