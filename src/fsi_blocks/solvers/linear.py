"""
Krylov backends for the Newton linear step.

Every backend solves ``A x = b`` for a replicated CSR operator and returns a
``LinearSolveResult``. Non-convergence is reported in the result, never
raised.
"""

import logging
import math
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

import numpy as np
import scipy.sparse as sp
from scipy.sparse.linalg import bicgstab, gmres, spsolve

from fsi_blocks.core.config import LinearSolverConfig, LinearSolverType
from fsi_blocks.solvers.preconditioner import BlockPreconditioner

logger = logging.getLogger(__name__)


@dataclass(frozen=True, eq=False)
class LinearSolveResult:
    """Outcome of one linear solve."""

    solution: np.ndarray
    converged: bool
    iterations: int
    residual_norm: float


class LinearSolver(ABC):
    """Base class of the linear solvers.

    Parameters
    ----------
    config : LinearSolverConfig
    """

    def __init__(self, config: LinearSolverConfig):
        self.config = config

    @abstractmethod
    def solve(
        self,
        operator: sp.spmatrix,
        rhs: np.ndarray,
        preconditioner: Optional[BlockPreconditioner] = None,
        rtol: Optional[float] = None,
    ) -> LinearSolveResult:
        ...

    @staticmethod
    def _result(operator, rhs, solution, converged: bool, iterations: int) -> LinearSolveResult:
        residual_norm = float(np.linalg.norm(rhs - operator @ solution))
        if not np.isfinite(residual_norm):
            converged = False
        return LinearSolveResult(
            solution=np.asarray(solution, dtype=float),
            converged=bool(converged),
            iterations=int(iterations),
            residual_norm=residual_norm,
        )


class ScipyKrylovSolver(LinearSolver):
    """GMRES or BiCGStab from ``scipy.sparse.linalg``."""

    def solve(self, operator, rhs, preconditioner=None, rtol=None) -> LinearSolveResult:
        rhs = np.asarray(rhs, dtype=float)
        rtol = self.config.rtol if rtol is None else rtol
        M = preconditioner.as_linear_operator() if preconditioner is not None else None
        iterations = 0

        def count(_):
            nonlocal iterations
            iterations += 1

        if self.config.type == LinearSolverType.GMRES:
            restart = min(self.config.restart, max(operator.shape[0], 1))
            solution, info = gmres(
                operator,
                rhs,
                rtol=rtol,
                atol=self.config.atol,
                restart=restart,
                maxiter=max(1, math.ceil(self.config.max_iter / restart)),
                M=M,
                callback=count,
                callback_type="pr_norm",
            )
        else:
            solution, info = bicgstab(
                operator,
                rhs,
                rtol=rtol,
                atol=self.config.atol,
                maxiter=self.config.max_iter,
                M=M,
                callback=count,
            )
        if info > 0:
            logger.warning(
                "%s did not converge in %d iterations", self.config.type.value, iterations
            )
        elif info < 0:
            logger.error("%s breakdown (info=%d)", self.config.type.value, info)
        return self._result(operator, rhs, solution, info == 0, iterations)


class DirectSolver(LinearSolver):
    """Sparse direct solve; the preconditioner is ignored."""

    def solve(self, operator, rhs, preconditioner=None, rtol=None) -> LinearSolveResult:
        rhs = np.asarray(rhs, dtype=float)
        if operator.shape[0] == 0:
            return self._result(operator, rhs, np.zeros(0), True, 0)
        solution = np.atleast_1d(spsolve(sp.csc_matrix(operator), rhs))
        return self._result(operator, rhs, solution, True, 1)


class _PythonPC:
    """PETSc ``python`` PC context wrapping a ``BlockPreconditioner``."""

    def __init__(self, preconditioner: BlockPreconditioner):
        self.preconditioner = preconditioner

    def apply(self, pc, x, y):
        from petsc4py import PETSc

        scatter, full = PETSc.Scatter.toAll(x)
        scatter.scatter(x, full, addv=PETSc.InsertMode.INSERT, mode=PETSc.ScatterMode.FORWARD)
        z = self.preconditioner.apply(full.getArray(readonly=True).copy())
        rstart, rend = y.getOwnershipRange()
        y.setArray(z[rstart:rend])
        scatter.destroy()
        full.destroy()


class PETScSolver(LinearSolver):
    """GMRES from PETSc (``petsc4py``) with the block preconditioner as a python PC.

    Parameters
    ----------
    config : LinearSolverConfig
    comm : mpi4py communicator, optional
        Defaults to ``PETSc.COMM_WORLD``.
    """

    def __init__(self, config: LinearSolverConfig, comm=None):
        super().__init__(config)
        self.comm = comm

    def _to_petsc(self, operator: sp.csr_matrix):
        from petsc4py import PETSc

        comm = self.comm if self.comm is not None else PETSc.COMM_WORLD
        n = operator.shape[0]
        A = PETSc.Mat().create(comm=comm)
        A.setType("aij")
        A.setSizes([n, n])
        A.setPreallocationNNZ(int(np.max(np.diff(operator.indptr), initial=1)))
        A.setUp()
        A.setOption(PETSc.Mat.Option.NEW_NONZERO_ALLOCATION_ERR, False)

        rstart, rend = A.getOwnershipRange()
        for row in range(rstart, rend):
            lo, hi = operator.indptr[row], operator.indptr[row + 1]
            A.setValues(
                row,
                operator.indices[lo:hi].astype(PETSc.IntType),
                operator.data[lo:hi].astype(PETSc.ScalarType),
                addv=PETSc.InsertMode.INSERT_VALUES,
            )
        A.assemble()
        return A

    def solve(self, operator, rhs, preconditioner=None, rtol=None) -> LinearSolveResult:
        from petsc4py import PETSc

        operator = sp.csr_matrix(operator, dtype=float)
        rhs = np.asarray(rhs, dtype=float)
        rtol = self.config.rtol if rtol is None else rtol

        A = self._to_petsc(operator)
        b = A.createVecLeft()
        x = A.createVecRight()
        rstart, rend = b.getOwnershipRange()
        b.setArray(rhs[rstart:rend])
        x.zeroEntries()

        ksp = PETSc.KSP().create(comm=A.getComm())
        ksp.setOperators(A)
        ksp.setType("gmres")
        ksp.setGMRESRestart(self.config.restart)
        ksp.setTolerances(rtol=rtol, atol=self.config.atol, max_it=self.config.max_iter)
        pc = ksp.getPC()
        if preconditioner is None:
            pc.setType("none")
        else:
            pc.setType("python")
            pc.setPythonContext(_PythonPC(preconditioner))
        ksp.setFromOptions()
        ksp.solve(b, x)

        reason = ksp.getConvergedReason()
        iterations = ksp.getIterationNumber()
        scatter, full = PETSc.Scatter.toAll(x)
        scatter.scatter(x, full, addv=PETSc.InsertMode.INSERT, mode=PETSc.ScatterMode.FORWARD)
        solution = full.getArray(readonly=True).copy()

        for obj in (scatter, full, ksp, x, b, A):
            obj.destroy()

        if reason <= 0:
            logger.warning("PETSc KSP did not converge (reason %d, %d iterations)", reason, iterations)
        return self._result(operator, rhs, solution, reason > 0, iterations)


_LINEAR_SOLVERS = {
    LinearSolverType.GMRES: ScipyKrylovSolver,
    LinearSolverType.BICGSTAB: ScipyKrylovSolver,
    LinearSolverType.DIRECT: DirectSolver,
    LinearSolverType.PETSC: PETScSolver,
}


def create_linear_solver(config: LinearSolverConfig, comm=None) -> LinearSolver:
    """Build the linear solver selected in ``config``."""
    cls = _LINEAR_SOLVERS[LinearSolverType(config.type)]
    if cls is PETScSolver:
        return cls(config, comm)
    return cls(config)
