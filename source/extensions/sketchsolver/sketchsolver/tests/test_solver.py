"""
Tests for the damped Newton solver and its result report.

Covers the reference sketches (distance, horizontal, coincident and a
mixed point system), the termination states, rank-deficiency policy,
cancellation and per-call configuration.
"""

import logging
import math
import threading
import unittest

import numpy as np

from sketchsolver.kernel import (
    Constraint,
    ConstraintSolver,
    ConstraintType,
    DEFAULT_CONFIG,
    SolverConfig,
    SolverConfigError,
    SolverState,
    line,
    point,
)
from sketchsolver.kernel.residuals import angle_between
from sketchsolver.log import logger, set_debug


def _distance_sketch(bx=1.0, by=1.0, value=5.0):
    solver = ConstraintSolver()
    solver.add_entity(point("A", 0, 0, fixed=True))
    solver.add_entity(point("B", bx, by))
    solver.add_constraint(Constraint("d", ConstraintType.DISTANCE, ["A", "B"], value=value))
    return solver


class TestReferenceSketches(unittest.TestCase):

    def test_distance_preserves_direction(self):
        solver = _distance_sketch()
        result = solver.solve()

        self.assertTrue(result.success)
        self.assertIs(result.state, SolverState.CONVERGED)
        self.assertLess(result.residual, 1e-6)
        self.assertLessEqual(result.iterations, 100)
        x, y = result.entities["B"].parameters
        self.assertAlmostEqual(math.hypot(x, y), 5.0, delta=1e-6)
        self.assertGreater(x, 0.0)
        self.assertAlmostEqual(x, y, places=9)

    def test_horizontal_line(self):
        solver = ConstraintSolver()
        solver.add_entity(line("L", 0, 0, 2, 3))
        solver.add_constraint(Constraint("h", ConstraintType.HORIZONTAL, ["L"]))
        result = solver.solve()

        self.assertTrue(result.success)
        x1, y1, x2, y2 = solver.get_entity("L").parameters
        self.assertAlmostEqual(y1, y2, delta=1e-5)
        self.assertGreater(abs(x2 - x1), 0.5)

    def test_coincident_points(self):
        solver = ConstraintSolver()
        solver.add_entity(point("P1", 0, 0))
        solver.add_entity(point("P2", 1, 0))
        solver.add_constraint(Constraint("c", ConstraintType.COINCIDENT, ["P1", "P2"]))
        result = solver.solve()

        self.assertTrue(result.success)
        p1 = solver.get_entity("P1").parameters
        p2 = solver.get_entity("P2").parameters
        self.assertLess(math.hypot(p1[0] - p2[0], p1[1] - p2[1]), 1e-6)

    def test_horizontal_point_at_distance(self):
        """The horizontal row is identically zero; the distance still converges."""
        solver = ConstraintSolver()
        solver.add_entity(point("A", 0, 0, fixed=True))
        solver.add_entity(point("P", 1, 1))
        solver.add_constraint(Constraint("h", ConstraintType.HORIZONTAL, ["P"]))
        solver.add_constraint(Constraint("d", ConstraintType.DISTANCE, ["A", "P"], value=3))
        result = solver.solve()

        self.assertTrue(result.success)
        self.assertLessEqual(result.iterations, 100)
        x, y = solver.get_entity("P").parameters
        self.assertAlmostEqual(math.hypot(x, y), 3.0, delta=1e-6)
        self.assertEqual(result.rank_deficiency, 1)
        self.assertTrue(any("Rank-deficient" in e for e in result.errors))
        self.assertTrue(any("no direction" in e for e in result.errors))

    def test_horizontal_point_outside_reach_of_x(self):
        """Starting above the circle, y has to move too despite the zero row."""
        solver = ConstraintSolver()
        solver.add_entity(point("A", 0, 0, fixed=True))
        solver.add_entity(point("P", 1, 5))
        solver.add_constraint(Constraint("h", ConstraintType.HORIZONTAL, ["P"]))
        solver.add_constraint(Constraint("d", ConstraintType.DISTANCE, ["A", "P"], value=3))
        result = solver.solve()

        self.assertTrue(result.success)
        self.assertIs(result.state, SolverState.CONVERGED)
        x, y = solver.get_entity("P").parameters
        self.assertAlmostEqual(math.hypot(x, y), 3.0, delta=1e-6)
        self.assertLess(y, 5.0)
        self.assertEqual(result.rank_deficiency, 1)


class TestSolverInvariants(unittest.TestCase):

    def test_fixed_entities_untouched(self):
        solver = _distance_sketch()
        before = list(solver.get_entity("A").parameters)
        solver.solve()
        self.assertEqual(solver.get_entity("A").parameters, before)

    def test_second_solve_is_immediate(self):
        solver = _distance_sketch()
        self.assertTrue(solver.solve().success)
        again = solver.solve()
        self.assertTrue(again.success)
        self.assertEqual(again.iterations, 1)

    def test_coincident_start_stays_finite(self):
        """Distance from a point sitting exactly on the anchor."""
        solver = _distance_sketch(bx=0.0, by=0.0)
        result = solver.solve()
        params = solver.get_entity("B").parameters
        self.assertTrue(all(math.isfinite(v) for v in params))
        self.assertTrue(result.success)
        self.assertAlmostEqual(math.hypot(*params), 5.0, delta=1e-6)

    def test_residual_history_decreases(self):
        result = _distance_sketch().solve()
        self.assertEqual(len(result.residual_history), result.iterations)
        self.assertLess(result.residual_history[-1], result.residual_history[0])

    def test_satisfied_flags(self):
        solver = _distance_sketch()
        self.assertFalse(solver.get_constraint("d").satisfied)
        result = solver.solve()
        self.assertTrue(solver.get_constraint("d").satisfied)
        self.assertTrue(result.constraints["d"].satisfied)
        self.assertEqual(result.satisfied_count, 1)
        self.assertEqual(result.unsatisfied, [])


class TestTermination(unittest.TestCase):

    def test_exhaustion_keeps_best_state(self):
        solver = _distance_sketch()
        result = solver.solve(SolverConfig(max_iterations=3))

        self.assertFalse(result.success)
        self.assertIs(result.state, SolverState.EXHAUSTED)
        self.assertEqual(result.iterations, 3)
        self.assertTrue(any("did not converge" in e for e in result.errors))
        self.assertLess(result.residual, abs(math.sqrt(2) - 5))
        x, y = result.entities["B"].parameters
        self.assertAlmostEqual(abs(math.hypot(x, y) - 5.0), result.residual)

    def test_empty_system_converges(self):
        result = ConstraintSolver().solve()
        self.assertTrue(result.success)
        self.assertEqual(result.residual, 0.0)
        self.assertEqual(result.entities, {})

    def test_no_free_parameters_fails(self):
        solver = ConstraintSolver()
        solver.add_entity(point("A", 0, 0, fixed=True))
        solver.add_entity(point("B", 1, 1, fixed=True))
        solver.add_constraint(Constraint("d", ConstraintType.DISTANCE, ["A", "B"], value=5))
        result = solver.solve()

        self.assertFalse(result.success)
        self.assertIs(result.state, SolverState.FAILED)
        self.assertTrue(any("linear system" in e for e in result.errors))
        self.assertEqual(solver.get_entity("B").parameters, [1.0, 1.0])
        self.assertAlmostEqual(result.residual, abs(math.sqrt(2) - 5))

    def test_overflowing_residual_fails_with_finite_state(self):
        """Finite coordinates whose separation overflows to infinity."""
        solver = ConstraintSolver()
        solver.add_entity(point("A", -1e308, 0, fixed=True))
        solver.add_entity(point("B", 1e308, 0))
        solver.add_constraint(Constraint("d", ConstraintType.DISTANCE, ["A", "B"], value=1))
        result = solver.solve()

        self.assertFalse(result.success)
        self.assertIs(result.state, SolverState.FAILED)
        self.assertTrue(any("non-finite" in e for e in result.errors))
        self.assertEqual(result.residual, math.inf)
        for state in result.entities.values():
            self.assertTrue(all(math.isfinite(v) for v in state.parameters))
        self.assertEqual(solver.get_entity("B").parameters, [1e308, 0.0])

    def test_rank_policy_can_fail(self):
        solver = ConstraintSolver(SolverConfig(max_rank_deficiency=0))
        solver.add_entity(point("A", 0, 0, fixed=True))
        solver.add_entity(point("P", 1, 1))
        solver.add_constraint(Constraint("h", ConstraintType.HORIZONTAL, ["P"]))
        solver.add_constraint(Constraint("d", ConstraintType.DISTANCE, ["A", "P"], value=3))
        result = solver.solve()

        self.assertFalse(result.success)
        self.assertIs(result.state, SolverState.FAILED)
        self.assertTrue(any("Rank-deficient system" in e for e in result.errors))

    def test_cancel_with_event(self):
        event = threading.Event()
        event.set()
        solver = _distance_sketch()
        result = solver.solve(cancel=event)

        self.assertIs(result.state, SolverState.CANCELLED)
        self.assertFalse(result.success)
        self.assertEqual(result.iterations, 0)
        self.assertEqual(solver.get_entity("B").parameters, [1.0, 1.0])

    def test_cancel_with_callable(self):
        calls = {"n": 0}

        def cancel():
            calls["n"] += 1
            return calls["n"] > 2

        result = _distance_sketch().solve(cancel=cancel)
        self.assertIs(result.state, SolverState.CANCELLED)
        self.assertEqual(result.iterations, 2)
        self.assertTrue(math.isfinite(result.residual))


class TestConfiguration(unittest.TestCase):

    def test_invalid_values_rejected(self):
        for kwargs in (
            {"max_iterations": 0},
            {"max_iterations": True},
            {"tolerance": -1.0},
            {"tolerance": math.inf},
            {"damping_factor": 0.0},
            {"damping_factor": 1.5},
            {"jacobian_mode": "secant"},
            {"max_rank_deficiency": -1},
        ):
            with self.subTest(**kwargs):
                with self.assertRaises(SolverConfigError):
                    SolverConfig(**kwargs)

    def test_setters_validate_and_chain(self):
        solver = ConstraintSolver()
        self.assertIs(solver.set_max_iterations(10).set_tolerance(1e-8), solver)
        self.assertEqual(solver.config.max_iterations, 10)
        self.assertEqual(solver.config.tolerance, 1e-8)
        with self.assertRaises(SolverConfigError):
            solver.set_damping_factor(2.0)
        self.assertEqual(solver.config.damping_factor, 0.5)

    def test_configure_replaces_config(self):
        solver = _distance_sketch()
        cfg = DEFAULT_CONFIG.with_jacobian_mode("central").with_max_rank_deficiency(0)
        self.assertIs(solver.configure(cfg), solver)
        self.assertEqual(solver.config.jacobian_mode, "central")
        self.assertEqual(solver.config.max_rank_deficiency, 0)
        self.assertEqual(DEFAULT_CONFIG.jacobian_mode, "forward")
        self.assertTrue(solver.solve().success)

    def test_modified_copies_validate(self):
        with self.assertRaises(SolverConfigError):
            DEFAULT_CONFIG.with_jacobian_mode("secant")
        with self.assertRaises(SolverConfigError):
            DEFAULT_CONFIG.with_max_rank_deficiency(-2)

    def test_per_call_override(self):
        solver = _distance_sketch()
        result = solver.solve(SolverConfig(max_iterations=1))
        self.assertIs(result.state, SolverState.EXHAUSTED)
        self.assertEqual(solver.config.max_iterations, 100)

    def test_full_step_is_faster(self):
        damped = _distance_sketch().solve()
        full = _distance_sketch().solve(SolverConfig(damping_factor=1.0))
        self.assertTrue(full.success)
        self.assertLess(full.iterations, damped.iterations)

    def test_jacobian_modes_agree(self):
        for mode in ("forward", "central", "analytic"):
            with self.subTest(mode=mode):
                solver = _distance_sketch()
                result = solver.solve(SolverConfig(jacobian_mode=mode))
                self.assertTrue(result.success)
                x, y = solver.get_entity("B").parameters
                self.assertAlmostEqual(math.hypot(x, y), 5.0, delta=1e-6)

    def test_config_dict_round_trip(self):
        cfg = SolverConfig(max_iterations=7, jacobian_mode="central")
        self.assertEqual(SolverConfig.from_dict(cfg.to_dict()), cfg)
        self.assertEqual(SolverConfig.from_dict({"tolerance": 1e-4, "extra": 1}).tolerance, 1e-4)


class TestLineConstraints(unittest.TestCase):
    """Solves against a fixed horizontal reference line."""

    def setUp(self):
        self.solver = ConstraintSolver()
        self.solver.add_entity(line("REF", 0, 0, 1, 0, fixed=True))

    def _free_line(self, *params):
        self.solver.add_entity(line("L", *params))

    def _direction(self, eid):
        x1, y1, x2, y2 = self.solver.get_entity(eid).parameters
        return (x2 - x1, y2 - y1)

    def test_angle(self):
        self._free_line(0, 0, 1, 1)
        self.solver.add_constraint(Constraint("a", ConstraintType.ANGLE, ["REF", "L"], value=60))
        result = self.solver.solve()
        self.assertTrue(result.success)
        self.assertAlmostEqual(
            math.degrees(angle_between((1, 0), self._direction("L"))), 60.0, places=3
        )

    def test_parallel(self):
        self._free_line(0, 1, 2, 2)
        self.solver.add_constraint(Constraint("p", ConstraintType.PARALLEL, ["REF", "L"]))
        result = self.solver.solve()
        self.assertTrue(result.success)
        dx, dy = self._direction("L")
        self.assertLess(abs(dy) / math.hypot(dx, dy), 1e-5)

    def test_perpendicular(self):
        self._free_line(0, 0, 1, 1)
        self.solver.add_constraint(Constraint("p", ConstraintType.PERPENDICULAR, ["REF", "L"]))
        result = self.solver.solve()
        self.assertTrue(result.success)
        dx, dy = self._direction("L")
        self.assertLess(abs(dx) / math.hypot(dx, dy), 1e-5)

    def test_vertical(self):
        self._free_line(0, 0, 2, 3)
        self.solver.add_constraint(Constraint("v", ConstraintType.VERTICAL, ["L"]))
        self.assertTrue(self.solver.solve().success)
        x1, _, x2, _ = self.solver.get_entity("L").parameters
        self.assertAlmostEqual(x1, x2, delta=1e-5)

    def test_residuals_match_report(self):
        self._free_line(0, 0, 2, 3)
        self.solver.add_constraint(Constraint("v", ConstraintType.VERTICAL, ["L"]))
        result = self.solver.solve(SolverConfig(max_iterations=2))
        np.testing.assert_allclose(
            self.solver.residuals(), [result.constraints["v"].residual]
        )


class TestResultReport(unittest.TestCase):

    def test_to_dict(self):
        result = _distance_sketch().solve()
        d = result.to_dict()
        self.assertEqual(d["state"], "converged")
        self.assertTrue(d["success"])
        self.assertEqual(set(d["entities"]), {"A", "B"})
        self.assertEqual(d["entities"]["A"]["parameters"], [0.0, 0.0])
        self.assertEqual(d["constraints"]["d"]["id"], "d")
        self.assertEqual(d["dof"]["classification"], "under-constrained")
        self.assertEqual(len(d["residualHistory"]), d["iterations"])

    def test_repr(self):
        self.assertEqual(
            repr(_distance_sketch()), "ConstraintSolver(entities=2, constraints=1, dof=2)"
        )


class TestLogging(unittest.TestCase):

    def test_set_debug_toggles_level(self):
        self.addCleanup(set_debug, False)
        set_debug(True)
        self.assertEqual(logger.level, logging.DEBUG)
        set_debug(False)
        self.assertEqual(logger.level, logging.INFO)

    def test_iterations_traced_at_debug(self):
        with self.assertLogs("sketchsolver", level="DEBUG") as logs:
            _distance_sketch().solve()
        self.assertTrue(any("iteration 1:" in line for line in logs.output))
        self.assertTrue(any("converged" in line for line in logs.output))
