"""
Residual Evaluator.

Each constraint maps the current parameters to one signed scalar whose
zero crossing means "satisfied":

================  ============================================
distance          ``|P(e1) - P(e2)| - value``
angle             ``angle(dir(e1), dir(e2)) - radians(value)``
parallel          ``|dir(e1) x dir(e2)|``
perpendicular     ``dir(e1) . dir(e2)``
coincident        ``|P(e1) - P(e2)|``
horizontal        ``dir(e).y``
vertical          ``dir(e).x``
================  ============================================

``P`` is the representative point (start point of a line, centre of a
circle / arc) and ``dir`` the normalised direction, see
:mod:`.entities`.  The overall system residual is the Euclidean norm of
the residual vector.
"""

from __future__ import annotations

import math
from typing import Callable, Dict, List, Tuple

import numpy as np

from .arena import BoundConstraint, ParameterArena
from .constraints import Constraint, ConstraintType
from .entities import direction, representative_point
from .store import SketchStore

ResidualFn = Callable[[np.ndarray, BoundConstraint], float]


# =========================================================================
# Accessors
# =========================================================================

def _point(values: np.ndarray, bc: BoundConstraint, k: int) -> Tuple[float, float]:
    return representative_point(bc.kinds[k], bc.params(values, k))


def _dir(values: np.ndarray, bc: BoundConstraint, k: int) -> Tuple[float, float]:
    return direction(bc.kinds[k], bc.params(values, k))


def angle_between(a: Tuple[float, float], b: Tuple[float, float]) -> float:
    """
    Unsigned angle in ``[0, pi]`` between two vectors.

    A zero vector makes the angle undefined; ``pi / 2`` is returned so the
    residual stays finite.
    """
    denom = math.hypot(*a) * math.hypot(*b)
    if denom == 0.0:
        return math.pi / 2.0
    cos_theta = (a[0] * b[0] + a[1] * b[1]) / denom
    return math.acos(max(-1.0, min(1.0, cos_theta)))


# =========================================================================
# Per-kind residuals
# =========================================================================

def _distance(values: np.ndarray, bc: BoundConstraint) -> float:
    x1, y1 = _point(values, bc, 0)
    x2, y2 = _point(values, bc, 1)
    return math.hypot(x1 - x2, y1 - y2) - bc.target


def _angle(values: np.ndarray, bc: BoundConstraint) -> float:
    return angle_between(_dir(values, bc, 0), _dir(values, bc, 1)) - bc.target


def _parallel(values: np.ndarray, bc: BoundConstraint) -> float:
    ax, ay = _dir(values, bc, 0)
    bx, by = _dir(values, bc, 1)
    return abs(ax * by - ay * bx)


def _perpendicular(values: np.ndarray, bc: BoundConstraint) -> float:
    ax, ay = _dir(values, bc, 0)
    bx, by = _dir(values, bc, 1)
    return ax * bx + ay * by


def _coincident(values: np.ndarray, bc: BoundConstraint) -> float:
    x1, y1 = _point(values, bc, 0)
    x2, y2 = _point(values, bc, 1)
    return math.hypot(x1 - x2, y1 - y2)


def _horizontal(values: np.ndarray, bc: BoundConstraint) -> float:
    return _dir(values, bc, 0)[1]


def _vertical(values: np.ndarray, bc: BoundConstraint) -> float:
    return _dir(values, bc, 0)[0]


RESIDUALS: Dict[ConstraintType, ResidualFn] = {
    ConstraintType.DISTANCE: _distance,
    ConstraintType.ANGLE: _angle,
    ConstraintType.PARALLEL: _parallel,
    ConstraintType.PERPENDICULAR: _perpendicular,
    ConstraintType.COINCIDENT: _coincident,
    ConstraintType.HORIZONTAL: _horizontal,
    ConstraintType.VERTICAL: _vertical,
}

_missing = set(ConstraintType) - set(RESIDUALS)
if _missing:
    raise RuntimeError(
        "No residual for constraint type(s): "
        + ", ".join(sorted(t.value for t in _missing))
    )


# =========================================================================
# Evaluation
# =========================================================================

def evaluate(bc: BoundConstraint, values: np.ndarray) -> float:
    return float(RESIDUALS[bc.ctype](values, bc))


def residual_vector(bound: List[BoundConstraint], values: np.ndarray) -> np.ndarray:
    return np.array([evaluate(bc, values) for bc in bound], dtype=np.float64)


def residual_norm(residuals: np.ndarray) -> float:
    if residuals.size == 0:
        return 0.0
    return float(np.linalg.norm(residuals))


def evaluate_constraint(store: SketchStore, constraint: Constraint) -> float:
    """
    Residual of a single constraint against the store's current state.

    Convenience for callers and diagnostics; the solver itself evaluates
    against an arena it builds once per solve.
    """
    arena = ParameterArena(store)
    return evaluate(arena.bind(constraint), arena.values)
