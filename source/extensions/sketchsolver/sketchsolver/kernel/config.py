"""Solver configuration."""

from __future__ import annotations

import math
from dataclasses import asdict, dataclass, replace
from typing import Optional

from .errors import SolverConfigError
from .jacobian import JACOBIAN_MODES
from .linalg import DEFAULT_PIVOT_TOLERANCE


@dataclass(frozen=True)
class SolverConfig:
    """
    Everything that shapes a solve, in one immutable value.

    Attributes:
        max_iterations: Newton iterations before giving up (>= 1).
        tolerance: Convergence threshold on the residual norm (> 0).
        damping_factor: Fraction of each correction applied, in ``(0, 1]``.
        jacobian_mode: ``"forward"``, ``"central"`` or ``"analytic"``.
        fd_epsilon: Finite-difference perturbation.
        pivot_tolerance: Pivots below this are treated as rank-deficient.
        max_rank_deficiency: ``None`` tolerates rank-deficient steps (the
            skipped unknowns get a zero correction).  An integer ``k``
            fails the solve as soon as a step skips more than ``k`` pivots.
    """
    max_iterations: int = 100
    tolerance: float = 1e-6
    damping_factor: float = 0.5
    jacobian_mode: str = "forward"
    fd_epsilon: float = 1e-8
    pivot_tolerance: float = DEFAULT_PIVOT_TOLERANCE
    max_rank_deficiency: Optional[int] = None

    def __post_init__(self):
        if isinstance(self.max_iterations, bool) or not isinstance(self.max_iterations, int):
            raise SolverConfigError(f"max_iterations must be an integer, got {self.max_iterations!r}")
        if self.max_iterations < 1:
            raise SolverConfigError(f"max_iterations must be >= 1, got {self.max_iterations}")
        if not (math.isfinite(self.tolerance) and self.tolerance > 0.0):
            raise SolverConfigError(f"tolerance must be positive, got {self.tolerance}")
        if not (0.0 < self.damping_factor <= 1.0):
            raise SolverConfigError(
                f"damping_factor must be in (0, 1], got {self.damping_factor}"
            )
        if self.jacobian_mode not in JACOBIAN_MODES:
            raise SolverConfigError(
                f"jacobian_mode must be one of {', '.join(JACOBIAN_MODES)}, "
                f"got {self.jacobian_mode!r}"
            )
        if not self.fd_epsilon > 0.0:
            raise SolverConfigError(f"fd_epsilon must be positive, got {self.fd_epsilon}")
        if not self.pivot_tolerance >= 0.0:
            raise SolverConfigError(
                f"pivot_tolerance must be non-negative, got {self.pivot_tolerance}"
            )
        if self.max_rank_deficiency is not None and self.max_rank_deficiency < 0:
            raise SolverConfigError(
                f"max_rank_deficiency must be >= 0 or None, got {self.max_rank_deficiency}"
            )

    # -- Modified copies -----------------------------------------------------

    def with_max_iterations(self, n: int) -> "SolverConfig":
        return replace(self, max_iterations=n)

    def with_tolerance(self, t: float) -> "SolverConfig":
        return replace(self, tolerance=t)

    def with_damping_factor(self, f: float) -> "SolverConfig":
        return replace(self, damping_factor=f)

    def with_jacobian_mode(self, mode: str) -> "SolverConfig":
        return replace(self, jacobian_mode=mode)

    def with_max_rank_deficiency(self, k: Optional[int]) -> "SolverConfig":
        return replace(self, max_rank_deficiency=k)

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, d: dict) -> "SolverConfig":
        known = {k: v for k, v in d.items() if k in cls.__dataclass_fields__}
        return cls(**known)


DEFAULT_CONFIG = SolverConfig()
