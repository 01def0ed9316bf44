"""
Inexact Newton driver with optional Armijo back-tracking.

The driver only sees a residual/linear-step pair (``NewtonProblem``). The
iterate is never modified in place: every iteration builds a new vector and
the result carries the last accepted one.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Tuple

import numpy as np

from fsi_blocks.core.config import NewtonConfig
from fsi_blocks.solvers.linear import LinearSolveResult
from fsi_blocks.solvers.residual_logger import NewtonResidualLogger

logger = logging.getLogger(__name__)


class NewtonStatus(str, Enum):
    """Termination status of a Newton solve."""

    CONVERGED = "converged"
    MAX_ITERATIONS = "max_iterations"
    LINEAR_SOLVE_FAILED = "linear_solve_failed"
    DIVERGED = "diverged"


class NewtonProblem(ABC):
    """Residual and linear-step callbacks of a nonlinear problem."""

    @abstractmethod
    def evaluate_residual(self, solution: np.ndarray) -> np.ndarray:
        """Residual at ``solution``; also prepares the Jacobian used by the next linear step."""

    @abstractmethod
    def solve_linear_step(self, residual: np.ndarray, tolerance: float) -> LinearSolveResult:
        """Solve ``J step = residual`` to relative ``tolerance``."""


@dataclass(frozen=True, eq=False)
class NewtonResult:
    """Outcome of a Newton solve.

    Attributes
    ----------
    solution : np.ndarray
        Last accepted iterate.
    status : NewtonStatus
    iterations : int
        Number of accepted Newton updates.
    residual_norm : float
        Residual norm at ``solution``.
    initial_residual_norm : float
    residual_history : Tuple[float, ...]
        Residual norm after every accepted iterate, starting with the initial one.
    linear_iterations : Tuple[int, ...]
        Krylov iterations of every linear step.
    """

    solution: np.ndarray
    status: NewtonStatus
    iterations: int
    residual_norm: float
    initial_residual_norm: float
    residual_history: Tuple[float, ...]
    linear_iterations: Tuple[int, ...]

    @property
    def converged(self) -> bool:
        return self.status == NewtonStatus.CONVERGED


class NewtonSolver:
    """
    Newton iteration ``x <- x - alpha * step`` with ``J step = r``.

    Stops when ``||r|| <= abs_tol + rel_tol * ||r0||``. Every linear solve
    uses ``eta_max`` as relative tolerance. With ``line_search`` the step
    length is halved (``ls_reduction``) until
    ``||r(x - alpha step)|| <= (1 - ls_c1 * alpha) ||r(x)||``.

    Parameters
    ----------
    config : NewtonConfig
    residual_logger : NewtonResidualLogger, optional
        Receives every iteration.
    """

    def __init__(self, config: NewtonConfig, residual_logger: Optional[NewtonResidualLogger] = None):
        self.config = config
        self.residual_logger = residual_logger

    def solve(self, problem: NewtonProblem, initial: np.ndarray, time: float = 0.0) -> NewtonResult:
        cfg = self.config
        x = np.array(initial, dtype=float)
        r = problem.evaluate_residual(x)
        norm = float(np.linalg.norm(r))
        initial_norm = norm
        tolerance = cfg.abs_tol + cfg.rel_tol * initial_norm
        history: List[float] = [norm]
        linear_iterations: List[int] = []
        iteration = 0
        self._log(time, iteration, norm, 0)

        status = None
        while status is None:
            if not np.isfinite(norm):
                status = NewtonStatus.DIVERGED
                break
            if norm <= tolerance:
                status = NewtonStatus.CONVERGED
                break
            if iteration >= cfg.max_iter:
                status = NewtonStatus.MAX_ITERATIONS
                break

            step = problem.solve_linear_step(r, cfg.eta_max)
            linear_iterations.append(step.iterations)
            if not step.converged:
                logger.warning(
                    "Newton iteration %d: linear solve failed (%d iterations, |r|=%.3e)",
                    iteration + 1,
                    step.iterations,
                    step.residual_norm,
                )
                status = NewtonStatus.LINEAR_SOLVE_FAILED
                break

            if cfg.line_search:
                accepted = self._line_search(problem, x, step.solution, norm)
                if accepted is None:
                    status = NewtonStatus.DIVERGED
                    break
                x, r = accepted
            else:
                x = x - step.solution
                r = problem.evaluate_residual(x)
            norm = float(np.linalg.norm(r))
            iteration += 1
            history.append(norm)
            logger.debug("Newton iteration %d: |r| = %.6e", iteration, norm)
            self._log(time, iteration, norm, step.iterations)

        return NewtonResult(
            solution=x,
            status=status,
            iterations=iteration,
            residual_norm=norm,
            initial_residual_norm=initial_norm,
            residual_history=tuple(history),
            linear_iterations=tuple(linear_iterations),
        )

    def _line_search(self, problem: NewtonProblem, x: np.ndarray, step: np.ndarray, norm: float):
        """Armijo back-tracking; returns ``(x_new, r_new)`` or None when no step is accepted."""
        cfg = self.config
        alpha = 1.0
        for _ in range(cfg.ls_max_iter):
            trial = x - alpha * step
            r_trial = problem.evaluate_residual(trial)
            trial_norm = float(np.linalg.norm(r_trial))
            if np.isfinite(trial_norm) and trial_norm <= (1.0 - cfg.ls_c1 * alpha) * norm:
                if alpha < 1.0:
                    logger.debug("Armijo search accepted alpha = %.2e", alpha)
                return trial, r_trial
            alpha *= cfg.ls_reduction
        logger.warning("Armijo search failed after %d reductions", cfg.ls_max_iter)
        return None

    def _log(self, time: float, iteration: int, norm: float, linear_iterations: int) -> None:
        if self.residual_logger is not None:
            self.residual_logger.log_iteration(time, iteration, norm, linear_iterations)
