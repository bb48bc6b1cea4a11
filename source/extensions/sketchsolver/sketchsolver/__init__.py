"""
sketchsolver — numeric geometric constraint solving for 2D sketches.

Entities (points, lines, circles, arcs) and relational constraints
(distance, angle, parallel, perpendicular, coincident, horizontal,
vertical) go into a :class:`ConstraintSolver`; ``solve()`` moves the free
entities until every constraint residual is within tolerance, or reports
why it could not.
"""

from .kernel import (
    ConstraintSolver,
    SolverConfig,
    SolveResult,
    SolverState,
    SketchStore,
    GeoEntity,
    EntityKind,
    Constraint,
    ConstraintType,
    SketchSolverError,
    MissingEntityError,
)
from .api import SketchSolverAPI

__version__ = "0.1.0"
