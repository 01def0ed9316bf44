"""
Tests for the inexact Newton driver and the residual history file.
"""

import numpy as np
import pytest

from fsi_blocks.core.config import NewtonConfig
from fsi_blocks.solvers.linear import LinearSolveResult
from fsi_blocks.solvers.newton import NewtonProblem, NewtonSolver, NewtonStatus
from fsi_blocks.solvers.residual_logger import NewtonResidualLogger


class ScalarProblem(NewtonProblem):
    """Component-wise ``r(x) = f(x)`` with an exact Jacobian."""

    def __init__(self, f, df):
        self.f = f
        self.df = df
        self.evaluations = 0
        self._x = None

    def evaluate_residual(self, solution):
        self.evaluations += 1
        self._x = np.array(solution, dtype=float)
        return self.f(self._x)

    def solve_linear_step(self, residual, tolerance):
        step = residual / self.df(self._x)
        return LinearSolveResult(step, True, 1, 0.0)


class FailingLinearProblem(ScalarProblem):
    def solve_linear_step(self, residual, tolerance):
        return LinearSolveResult(np.zeros_like(residual), False, 7, 1.0)


def quadratic():
    return ScalarProblem(lambda x: x**2 - 4.0, lambda x: 2.0 * x)


def arctan():
    return ScalarProblem(np.arctan, lambda x: 1.0 / (1.0 + x**2))


class TestNewtonSolver:
    def test_quadratic_convergence(self):
        solver = NewtonSolver(NewtonConfig(abs_tol=1e-12, rel_tol=0.0, max_iter=20))
        result = solver.solve(quadratic(), np.array([3.0, -1.0]))
        assert result.status == NewtonStatus.CONVERGED
        assert result.converged
        np.testing.assert_allclose(result.solution, [2.0, -2.0])
        assert result.iterations == len(result.residual_history) - 1
        assert result.residual_history[0] == pytest.approx(result.initial_residual_norm)
        assert len(result.linear_iterations) == result.iterations

    def test_linear_problem_takes_one_iteration(self):
        problem = ScalarProblem(lambda x: 3.0 * x - 6.0, lambda x: 3.0 * np.ones_like(x))
        result = NewtonSolver(NewtonConfig(abs_tol=1e-12, rel_tol=1e-12)).solve(problem, np.zeros(4))
        assert result.iterations == 1
        np.testing.assert_allclose(result.solution, 2.0)

    def test_already_converged(self):
        problem = quadratic()
        result = NewtonSolver(NewtonConfig()).solve(problem, np.array([2.0]))
        assert result.iterations == 0
        assert result.converged
        assert problem.evaluations == 1

    def test_initial_guess_not_modified(self):
        x0 = np.array([3.0])
        NewtonSolver(NewtonConfig()).solve(quadratic(), x0)
        assert x0[0] == 3.0

    def test_max_iterations(self):
        solver = NewtonSolver(NewtonConfig(abs_tol=1e-14, rel_tol=0.0, max_iter=2))
        result = solver.solve(quadratic(), np.array([100.0]))
        assert result.status == NewtonStatus.MAX_ITERATIONS
        assert result.iterations == 2
        assert not result.converged

    def test_linear_failure(self):
        problem = FailingLinearProblem(lambda x: x - 1.0, lambda x: np.ones_like(x))
        result = NewtonSolver(NewtonConfig()).solve(problem, np.zeros(2))
        assert result.status == NewtonStatus.LINEAR_SOLVE_FAILED
        assert result.iterations == 0
        assert result.linear_iterations == (7,)
        np.testing.assert_allclose(result.solution, 0.0)

    def test_non_finite_residual(self):
        problem = ScalarProblem(lambda x: np.full_like(x, np.nan), lambda x: np.ones_like(x))
        result = NewtonSolver(NewtonConfig()).solve(problem, np.zeros(1))
        assert result.status == NewtonStatus.DIVERGED


class TestLineSearch:
    def test_full_steps_fail_from_far_away(self):
        solver = NewtonSolver(NewtonConfig(abs_tol=1e-10, rel_tol=0.0, max_iter=5))
        result = solver.solve(arctan(), np.array([10.0]))
        assert not result.converged

    def test_armijo_globalizes(self):
        config = NewtonConfig(abs_tol=1e-10, rel_tol=0.0, max_iter=50, line_search=True, ls_max_iter=30)
        result = NewtonSolver(config).solve(arctan(), np.array([10.0]))
        assert result.converged
        assert abs(result.solution[0]) < 1e-8
        history = np.array(result.residual_history)
        assert np.all(np.diff(history) < 0)

    def test_no_acceptable_step(self):
        config = NewtonConfig(abs_tol=1e-10, rel_tol=0.0, line_search=True, ls_max_iter=1)
        result = NewtonSolver(config).solve(arctan(), np.array([10.0]))
        assert result.status == NewtonStatus.DIVERGED
        np.testing.assert_allclose(result.solution, 10.0)


class TestResidualLogger:
    def test_file_rows(self, tmp_path):
        path = tmp_path / "out" / "residualsNewton"
        history = NewtonResidualLogger(str(path))
        history.initialize()
        solver = NewtonSolver(NewtonConfig(abs_tol=1e-12, rel_tol=0.0, max_iter=20), history)
        result = solver.solve(quadratic(), np.array([3.0]), time=0.5)
        history.close()

        lines = path.read_text().splitlines()
        comments = [line for line in lines if line.startswith("#")]
        rows = [line for line in lines if not line.startswith("#")]
        assert len(comments) == 2
        assert rows[0] == "time,iteration,residual_norm,linear_iterations"
        assert len(rows) == result.iterations + 2
        first = rows[1].split(",")
        assert float(first[0]) == pytest.approx(0.5)
        assert first[1] == "0"
        assert float(first[2]) == pytest.approx(5.0)
        assert rows[-1].split(",")[3] == "1"

    def test_disabled(self, tmp_path):
        history = NewtonResidualLogger(None)
        history.initialize()
        history.log_iteration(0.0, 0, 1.0, 0)
        history.close()
        assert history.handle is None

    def test_only_rank_zero_writes(self, tmp_path):
        class Rank1:
            def Get_rank(self):
                return 1

        path = tmp_path / "residuals"
        history = NewtonResidualLogger(str(path), comm=Rank1())
        history.initialize()
        history.close()
        assert not path.exists()
