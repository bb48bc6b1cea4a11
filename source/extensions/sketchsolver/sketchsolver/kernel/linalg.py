"""Linear solve for the Newton correction ``J . delta = -r``."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Tuple

import numpy as np

from .errors import LinearSolveError

DEFAULT_PIVOT_TOLERANCE = 1e-12


@dataclass
class Correction:
    """Result of one linear solve."""
    delta: np.ndarray
    # Columns whose pivot fell below the tolerance and were skipped
    rank_deficiency: int
    # "square", "min-norm" (fewer equations than unknowns) or "normal"
    form: str


def gaussian_elimination(
    a: np.ndarray,
    b: np.ndarray,
    pivot_tolerance: float = DEFAULT_PIVOT_TOLERANCE,
) -> Tuple[np.ndarray, int]:
    """
    Solve the square system ``a . x = b`` by Gaussian elimination with
    partial pivoting on the augmented matrix ``[a | b]``.

    A column whose largest remaining pivot is below *pivot_tolerance* is
    skipped: its unknown is left at zero and the count of skipped columns
    is returned alongside the solution.

    Returns:
        ``(x, skipped)``
    """
    n = a.shape[0]
    if a.ndim != 2 or a.shape[1] != n or b.shape != (n,):
        raise ValueError(f"Expected a square system, got {a.shape} and {b.shape}")

    aug = np.empty((n, n + 1), dtype=np.float64)
    aug[:, :n] = a
    aug[:, n] = b
    skipped = 0

    # Forward elimination
    for i in range(n):
        pivot = i + int(np.argmax(np.abs(aug[i:, i])))
        if pivot != i:
            aug[[i, pivot]] = aug[[pivot, i]]
        if abs(aug[i, i]) < pivot_tolerance:
            skipped += 1
            continue
        factors = aug[i + 1:, i] / aug[i, i]
        aug[i + 1:, i:] -= np.outer(factors, aug[i, i:])

    # Back substitution
    x = np.zeros(n, dtype=np.float64)
    for i in range(n - 1, -1, -1):
        if abs(aug[i, i]) < pivot_tolerance:
            continue
        x[i] = (aug[i, n] - aug[i, i + 1:n] @ x[i + 1:]) / aug[i, i]
    return x, skipped


def solve_correction(
    jacobian: np.ndarray,
    residuals: np.ndarray,
    pivot_tolerance: float = DEFAULT_PIVOT_TOLERANCE,
) -> Correction:
    """
    Newton correction for ``J . delta = -r``.

    * square ``J``: eliminated directly.  If a pivot is skipped the
      minimum-norm step below is taken instead, so an identically-zero
      row cannot pin an unknown in place;
    * wide ``J`` (fewer equations than unknowns): minimum-norm step,
      ``(J J^T) y = -r``, ``delta = J^T y``.  The step moves only along
      the constraint gradients, so e.g. a distance constraint pulls a
      point straight along the line through its anchor;
    * tall ``J`` (over-constrained): normal equations,
      ``(J^T J) delta = -J^T r``, a least-squares step.

    Raises:
        LinearSolveError: Empty system, or a non-finite correction.
    """
    m, n = jacobian.shape
    if m == 0 or n == 0:
        raise LinearSolveError(f"Cannot solve a {m}x{n} correction system")

    rhs = -residuals
    if m > n:
        delta, skipped = gaussian_elimination(
            jacobian.T @ jacobian, jacobian.T @ rhs, pivot_tolerance
        )
        form = "normal"
    else:
        skipped = 0
        if m == n:
            delta, skipped = gaussian_elimination(jacobian, rhs, pivot_tolerance)
            form = "square"
        if m < n or skipped:
            # A skipped square pivot would freeze its unknown at zero
            y, wide_skipped = gaussian_elimination(
                jacobian @ jacobian.T, rhs, pivot_tolerance
            )
            delta = jacobian.T @ y
            skipped = max(skipped, wide_skipped)
            form = "min-norm"

    if not np.all(np.isfinite(delta)):
        raise LinearSolveError("Correction vector contains non-finite values")
    return Correction(delta=delta, rank_deficiency=skipped, form=form)
