"""
Exception hierarchy for the sketch constraint kernel.

Store mutations raise these *before* touching any state.  Numerical
trouble inside :meth:`ConstraintSolver.solve` is never raised; it is
collected into :attr:`SolveResult.errors` instead.
"""


class SketchSolverError(Exception):
    """Base class for every error raised by sketchsolver."""
    pass


class MissingEntityError(SketchSolverError, KeyError):
    """A constraint references an entity id that is not in the store."""

    def __init__(self, entity_id: str, constraint_id: str = ""):
        self.entity_id = entity_id
        self.constraint_id = constraint_id
        where = f" (constraint '{constraint_id}')" if constraint_id else ""
        super().__init__(f"Entity '{entity_id}' not found{where}")

    def __str__(self) -> str:
        # KeyError would otherwise repr() the message
        return self.args[0]


class InvalidEntityError(SketchSolverError, ValueError):
    """Unknown entity kind, wrong parameter count, or non-finite parameter."""
    pass


class InvalidConstraintError(SketchSolverError, ValueError):
    """Unknown constraint type or out-of-range tolerance / value."""
    pass


class ConstraintArityError(InvalidConstraintError):
    """A constraint references the wrong number of entities for its type."""
    pass


class MissingValueError(InvalidConstraintError):
    """A distance / angle constraint was created without a target value."""
    pass


class SolverConfigError(SketchSolverError, ValueError):
    """A solver configuration value is out of range."""
    pass


class SerializationError(SketchSolverError, ValueError):
    """A persisted entity / constraint record is malformed."""
    pass


class LinearSolveError(SketchSolverError, ArithmeticError):
    """The correction system has no rows / columns or produced non-finite values."""
    pass
