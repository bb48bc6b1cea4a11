from .errors import (
    SketchSolverError,
    MissingEntityError,
    InvalidEntityError,
    InvalidConstraintError,
    ConstraintArityError,
    MissingValueError,
    SolverConfigError,
    SerializationError,
    LinearSolveError,
)
from .entities import EntityKind, GeoEntity, PARAM_ARITY, point, line, circle, arc
from .constraints import Constraint, ConstraintType, CONSTRAINT_ARITY
from .store import SketchStore
from .config import SolverConfig, DEFAULT_CONFIG
from .dof import DOFClassification, DOFReport, JacobianDiagnosis, analyze_dof, diagnose_jacobian
from .jacobian import JacobianBuilder, register_analytic
from .linalg import gaussian_elimination, solve_correction
from .result import SolveResult, SolverState, EntityState, ConstraintReport, SolverStatistics
from .solver import ConstraintSolver, NewtonDriver
