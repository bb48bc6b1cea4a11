"""
Degrees-of-freedom accounting.

Two levels of diagnosis:

* :func:`analyze_dof` — the counting check run before every solve.  Each
  free entity contributes its parameter arity, each constraint exactly one
  equation.  Advisory only: the solver iterates whatever the outcome.
* :func:`diagnose_jacobian` — the numerical rank of the Jacobian at the
  current state, which sees through the counting check (two identical
  distance constraints count as two equations but remove one DOF).
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional

import numpy as np
from scipy.linalg import svdvals

from .store import SketchStore


class DOFClassification(Enum):
    UNDER_CONSTRAINED = "under-constrained"
    WELL_CONSTRAINED = "well-constrained"
    OVER_CONSTRAINED = "over-constrained"


@dataclass(frozen=True)
class DOFReport:
    free_parameters: int
    equations: int
    classification: DOFClassification

    @property
    def remaining(self) -> int:
        """Free parameters minus equations (negative when over-constrained)."""
        return self.free_parameters - self.equations

    @property
    def is_over_constrained(self) -> bool:
        return self.classification is DOFClassification.OVER_CONSTRAINED

    @property
    def is_under_constrained(self) -> bool:
        return self.classification is DOFClassification.UNDER_CONSTRAINED

    def describe(self) -> str:
        return (
            f"System is {self.classification.value}: {self.equations} constraint "
            f"equation(s) for {self.free_parameters} free parameter(s)"
        )

    def to_dict(self) -> dict:
        return {
            "freeParameters": self.free_parameters,
            "equations": self.equations,
            "classification": self.classification.value,
        }


def free_parameter_count(store: SketchStore) -> int:
    return sum(e.arity for e in store if not e.fixed)


def classify(free_parameters: int, equations: int) -> DOFClassification:
    if equations > free_parameters:
        return DOFClassification.OVER_CONSTRAINED
    if equations < free_parameters:
        return DOFClassification.UNDER_CONSTRAINED
    return DOFClassification.WELL_CONSTRAINED


def analyze_dof(store: SketchStore) -> DOFReport:
    free = free_parameter_count(store)
    equations = store.constraint_count
    return DOFReport(free, equations, classify(free, equations))


# =========================================================================
# Numerical rank
# =========================================================================

@dataclass(frozen=True)
class JacobianDiagnosis:
    equations: int
    unknowns: int
    rank: int
    condition_number: float

    @property
    def redundant_equations(self) -> int:
        """Equations that add no independent information (redundant or conflicting)."""
        return self.equations - self.rank

    @property
    def effective_dof(self) -> int:
        """Free parameters left undetermined by the constraints."""
        return self.unknowns - self.rank

    @property
    def is_full_rank(self) -> bool:
        return self.rank == min(self.equations, self.unknowns)

    def to_dict(self) -> dict:
        return {
            "equations": self.equations,
            "unknowns": self.unknowns,
            "rank": self.rank,
            "redundantEquations": self.redundant_equations,
            "effectiveDof": self.effective_dof,
            "conditionNumber": self.condition_number,
        }


def diagnose_jacobian(jacobian: np.ndarray, tol: Optional[float] = None) -> JacobianDiagnosis:
    """
    Rank and conditioning of a Jacobian from its singular values.

    *tol* defaults to ``max(m, n) * eps * s_max``, the usual cut-off for
    numerical rank.
    """
    m, n = jacobian.shape
    if m == 0 or n == 0:
        return JacobianDiagnosis(m, n, 0, float("inf"))
    s = svdvals(jacobian)
    s_max = float(s[0]) if s.size else 0.0
    if tol is None:
        tol = max(m, n) * np.finfo(np.float64).eps * s_max
    rank = int(np.sum(s > tol))
    s_min = float(s[-1])
    if rank < min(m, n) or s_min == 0.0:
        cond = float("inf")
    else:
        cond = s_max / s_min
    return JacobianDiagnosis(m, n, rank, cond)
