"""
Residual and linear-step callbacks of the monolithic FSI Newton solve.
"""

import logging
from typing import Optional

import numpy as np

from fsi_blocks.core.errors import SingularBlockError
from fsi_blocks.core.maps import Block
from fsi_blocks.interface.coupling import CouplingBlocks
from fsi_blocks.solvers.assembler import MonolithicAssembler, MonolithicSystem
from fsi_blocks.solvers.fields import FluidSolver, HarmonicExtensionSolver, StructureSolver
from fsi_blocks.solvers.linear import LinearSolver, LinearSolveResult
from fsi_blocks.solvers.newton import NewtonProblem
from fsi_blocks.solvers.preconditioner import BlockPreconditioner
from fsi_blocks.solvers.state import FSIState

logger = logging.getLogger(__name__)


class FSIResidual(NewtonProblem):
    """Monolithic FSI residual ``A(x) x - b(x)`` and its linear step.

    The Jacobian is approximated by the monolithic operator assembled at the
    last residual evaluation (shape derivatives of the fluid operator with
    respect to the mesh displacement are neglected).

    Parameters
    ----------
    state : FSIState
        Shared state; its per-step extrapolations must be up to date.
    fluid : FluidSolver
    structure : StructureSolver
        Operator built, boundary conditions applied.
    ale : HarmonicExtensionSolver
        Operator built, boundary conditions applied.
    coupling : CouplingBlocks
    assembler : MonolithicAssembler
    preconditioner : BlockPreconditioner
        Structure, geometry and coupling blocks already set.
    linear_solver : LinearSolver

    Notes
    -----
    ``evaluate_residual`` moves the fluid mesh of ``state``.
    """

    def __init__(
        self,
        state: FSIState,
        fluid: FluidSolver,
        structure: StructureSolver,
        ale: HarmonicExtensionSolver,
        coupling: CouplingBlocks,
        assembler: MonolithicAssembler,
        preconditioner: BlockPreconditioner,
        linear_solver: LinearSolver,
    ):
        self.state = state
        self.fluid = fluid
        self.structure = structure
        self.ale = ale
        self.coupling = coupling
        self.assembler = assembler
        self.preconditioner = preconditioner
        self.linear_solver = linear_solver
        self.last_system: Optional[MonolithicSystem] = None

    def evaluate_residual(self, solution: np.ndarray) -> np.ndarray:
        state = self.state
        if not state.step_ready:
            raise RuntimeError("FSIResidual: the time step has not been prepared")
        m = state.monolithic_map
        solution = np.asarray(solution, dtype=float)

        state.fluid_mesh.move(m.extract(solution, Block.MESH_DISPLACEMENT))

        self.fluid.update_system(
            state.fluid_mesh.coordinates,
            state.convective_velocity,
            state.fluid_rhs_history,
            state.time,
        )
        self.fluid.apply_boundary_conditions(time=state.time)

        self.structure.update_rhs(state.structure_rhs_history, state.time)
        self.structure.apply_rhs_boundary_conditions(time=state.time)

        self.last_system = self.assembler.assemble(
            fluid=self.fluid.get_blocks(),
            structure=self.structure.get_operator(),
            structure_rhs=self.structure.get_rhs(),
            mesh=self.ale.get_operator(),
            coupling=self.coupling,
            coupling_rhs=state.coupling_rhs,
            mesh_rhs=self.ale.get_rhs(),
        )
        return self.last_system.residual(solution)

    def solve_linear_step(self, residual: np.ndarray, tolerance: float) -> LinearSolveResult:
        if self.last_system is None:
            raise RuntimeError("FSIResidual: evaluate_residual() must run before a linear step")
        try:
            self.preconditioner.update_approximated_fluid_momentum(self.fluid.get_blocks())
            self.preconditioner.update_operator(self.last_system.operator)
        except SingularBlockError as exc:
            logger.warning("Preconditioner update failed: %s", exc)
            return LinearSolveResult(
                np.zeros_like(residual), False, 0, float(np.linalg.norm(residual))
            )
        result = self.linear_solver.solve(
            self.last_system.operator, residual, self.preconditioner, rtol=tolerance
        )
        logger.debug(
            "Linear step: converged=%s, %d iterations, |r|=%.3e",
            result.converged,
            result.iterations,
            result.residual_norm,
        )
        return result
