"""
Monolithic FSI solver.

Couples a fluid (Oseen linearisation on a moving mesh), a linear elastic
structure and a harmonic-extension mesh motion through interface Lagrange
multipliers, and advances the coupled system in time with one Newton solve
per step.

Example usage:
    from fsi_blocks.core import FSIConfig
    from fsi_blocks.solvers import MonolithicFSISolver

    solver = MonolithicFSISolver(FSIConfig.from_yaml("fsi.yaml"), fluid, structure, ale)
    solver.setup()
    results = solver.run()
"""

import logging
import time as _time
from dataclasses import dataclass
from typing import List, Optional

import numpy as np
import scipy.sparse as sp

from fsi_blocks.core.comm import leader_info, world_comm
from fsi_blocks.core.config import FSIConfig
from fsi_blocks.core.exporter import Exporter
from fsi_blocks.core.maps import Block, FieldMap, MonolithicMap
from fsi_blocks.core.mesh import MovingMesh
from fsi_blocks.core.time_advance import (
    BDFTimeAdvance,
    NewmarkTimeAdvance,
    TimeAdvance,
    create_time_advance,
)
from fsi_blocks.interface.coupling import CouplingBlocks, build_coupling_blocks
from fsi_blocks.interface.matcher import (
    InterfaceDofMaps,
    InterfaceLocalMap,
    build_interface_dof_maps,
    match_interface,
)
from fsi_blocks.interface.numbering import InterfaceNumbering, number_interface
from fsi_blocks.solvers.assembler import MonolithicAssembler
from fsi_blocks.solvers.fields import HarmonicExtensionSolver, OseenFluidSolver, StructureSolver
from fsi_blocks.solvers.linear import LinearSolver, create_linear_solver
from fsi_blocks.solvers.newton import NewtonResult, NewtonSolver
from fsi_blocks.solvers.preconditioner import BlockPreconditioner, create_preconditioner
from fsi_blocks.solvers.residual import FSIResidual
from fsi_blocks.solvers.residual_logger import NewtonResidualLogger
from fsi_blocks.solvers.state import FSIState

logger = logging.getLogger(__name__)


# =============================================================================
# Setup handles
# =============================================================================


@dataclass(frozen=True, eq=False)
class InterfaceSetup:
    """Result of the interface matching and numbering."""

    local_map: InterfaceLocalMap
    numbering: InterfaceNumbering
    dof_maps: InterfaceDofMaps


@dataclass(frozen=True)
class TimeAdvanceSetup:
    """Time advance schemes of the three fields."""

    fluid: BDFTimeAdvance
    structure: NewmarkTimeAdvance
    ale: TimeAdvance


@dataclass(frozen=True, eq=False)
class FieldOperators:
    """Step-independent field operators, boundary conditions applied."""

    structure: sp.csr_matrix
    mesh: sp.csr_matrix


@dataclass(frozen=True, eq=False)
class InitialCondition:
    """Initial values; missing entries are zero."""

    velocity: Optional[np.ndarray] = None
    pressure: Optional[np.ndarray] = None
    displacement: Optional[np.ndarray] = None
    structure_velocity: Optional[np.ndarray] = None
    structure_acceleration: Optional[np.ndarray] = None
    mesh_displacement: Optional[np.ndarray] = None


@dataclass(frozen=True, eq=False)
class StepResult:
    """Outcome of one time step."""

    time: float
    step: int
    newton: NewtonResult
    accepted: bool
    wall_time: float

    @property
    def converged(self) -> bool:
        return self.newton.converged


# =============================================================================
# Solver
# =============================================================================


class MonolithicFSISolver:
    """
    Monolithic fluid-structure-mesh solver.

    Parameters
    ----------
    config : FSIConfig
        Validated configuration.
    fluid : OseenFluidSolver
        Fluid solver (velocity map, pressure map, assembly callback, BCs).
    structure : StructureSolver
        Structure solver (stiffness, mass, BCs).
    ale : HarmonicExtensionSolver
        Mesh-motion solver; its interface marker must be the coupling marker.
    comm : mpi4py communicator, optional
        Defaults to ``MPI.COMM_WORLD``.
    exporter : Exporter, optional
        Receives the fields at ``t_zero`` and after every accepted step.

    Attributes
    ----------
    state : FSIState
        Aggregate state, available after ``setup``.
    """

    def __init__(
        self,
        config: FSIConfig,
        fluid: OseenFluidSolver,
        structure: StructureSolver,
        ale: HarmonicExtensionSolver,
        comm=None,
        exporter: Optional[Exporter] = None,
    ):
        self.config = config
        self.fluid = fluid
        self.structure = structure
        self.ale = ale
        self.comm = comm if comm is not None else world_comm()
        self.exporter = exporter

        self.state: Optional[FSIState] = None
        self.interface: Optional[InterfaceSetup] = None
        self.coupling: Optional[CouplingBlocks] = None
        self.preconditioner: Optional[BlockPreconditioner] = None
        self.linear_solver: Optional[LinearSolver] = None
        self.residual: Optional[FSIResidual] = None
        self.newton: Optional[NewtonSolver] = None
        self.residual_logger: Optional[NewtonResidualLogger] = None
        self._closed = False

    # -------------------------------------------------------------------------
    # Setup, in dependency order
    # -------------------------------------------------------------------------

    def setup_interface(self) -> InterfaceSetup:
        """Match the interface DOFs and number the multipliers."""
        cfg = self.config.interface
        local_map = match_interface(
            self.fluid.dofs,
            self.structure.dofs,
            cfg.flag,
            cfg.tolerance,
            structure_map=self.structure.map,
        )
        numbering = number_interface(local_map, self.fluid.map.components, self.comm)
        dof_maps = build_interface_dof_maps(local_map, self.fluid.map, self.structure.map, self.comm)
        leader_info(
            logger,
            self.comm,
            "Interface: %d points, %d multipliers",
            numbering.total_count,
            numbering.multiplier_map.size,
        )
        return InterfaceSetup(local_map, numbering, dof_maps)

    def setup_time_advance(self) -> TimeAdvanceSetup:
        t = self.config.time
        s = self.config.structure_time
        a = self.config.ale_time
        fluid_time = BDFTimeAdvance(t.bdf_order, t.dt)
        structure_time = NewmarkTimeAdvance(2, t.dt, beta=s.beta, gamma=s.gamma)
        ale_time = create_time_advance(a.method, a.order, t.dt, gamma=a.gamma)
        return TimeAdvanceSetup(fluid_time, structure_time, ale_time)

    def setup_field_operators(self, time_advance: TimeAdvanceSetup) -> FieldOperators:
        """Build the structure and mesh operators and set the fluid mass coefficient."""
        t0 = self.config.time.t_zero
        self.fluid.set_mass_coefficient(time_advance.fluid.first_derivative_coefficient)

        self.structure.set_mass_coefficient(time_advance.structure.second_derivative_coefficient)
        self.structure.build_operator()
        self.structure.apply_boundary_conditions(time=t0)

        self.ale.build_operator()
        self.ale.apply_boundary_conditions(time=t0)
        return FieldOperators(structure=self.structure.get_operator(), mesh=self.ale.get_operator())

    def setup_coupling(
        self,
        interface: InterfaceSetup,
        time_advance: TimeAdvanceSetup,
        operators: FieldOperators,
    ) -> CouplingBlocks:
        """Assemble the coupling blocks; the field operators must exist already."""
        expected = self.ale.interface_dofs
        actual = np.unique(self.ale.map.vector_dofs(interface.numbering.fluid_dofs))
        if not np.all(np.isin(actual, expected)):
            raise ValueError(
                "The mesh-motion solver must be built with the interface marker "
                f"{self.config.interface.flag} as interface_flag"
            )
        return build_coupling_blocks(
            interface.numbering,
            self.fluid.map,
            self.structure.map,
            self.ale.map,
            time_advance.structure.first_derivative_coefficient,
            self.comm,
            fluid_essential=self.fluid.essential_dofs,
            structure_essential=self.structure.essential_dofs,
            mesh_essential=self.ale.essential_dofs,
            dof_maps=interface.dof_maps,
        )

    def setup_monolithic_map(self, interface: InterfaceSetup) -> MonolithicMap:
        return MonolithicMap(
            velocity=self.fluid.map,
            pressure=self.fluid.pressure_map,
            displacement=self.structure.map,
            multiplier=interface.numbering.multiplier_map,
            mesh_displacement=self.ale.map,
        )

    def setup_preconditioner(
        self, monolithic_map: MonolithicMap, operators: FieldOperators, coupling: CouplingBlocks
    ) -> BlockPreconditioner:
        preconditioner = create_preconditioner(self.config.preconditioner)
        preconditioner.set_monolithic_map(monolithic_map)
        preconditioner.set_structure_block(operators.structure)
        preconditioner.set_geometry_block(operators.mesh)
        preconditioner.set_coupling_blocks(coupling)
        return preconditioner

    def setup(self, initial: Optional[InitialCondition] = None) -> FSIState:
        """Run every setup phase and seed the histories with ``initial``."""
        start = _time.perf_counter()
        initial = initial or InitialCondition()

        self.interface = self.setup_interface()
        time_advance = self.setup_time_advance()
        operators = self.setup_field_operators(time_advance)
        self.coupling = self.setup_coupling(self.interface, time_advance, operators)
        monolithic_map = self.setup_monolithic_map(self.interface)
        self.preconditioner = self.setup_preconditioner(monolithic_map, operators, self.coupling)
        self.linear_solver = create_linear_solver(self.config.linear_solver, self.comm)

        self.state = self._initial_state(monolithic_map, time_advance, initial)
        self.residual = FSIResidual(
            self.state,
            self.fluid,
            self.structure,
            self.ale,
            self.coupling,
            MonolithicAssembler(monolithic_map),
            self.preconditioner,
            self.linear_solver,
        )
        self.residual_logger = NewtonResidualLogger(
            self.config.output.residual_log_file, comm=self.comm
        )
        self.residual_logger.initialize()
        self.newton = NewtonSolver(self.config.newton, self.residual_logger)

        if self.exporter is not None:
            self._register_fields()
            self.exporter.post_process(self.state.time)

        leader_info(logger, self.comm, "Monolithic map: %r", monolithic_map)
        leader_info(logger, self.comm, "Setup completed in %.3f s", _time.perf_counter() - start)
        return self.state

    def _initial_state(
        self, monolithic_map: MonolithicMap, time_advance: TimeAdvanceSetup, initial: InitialCondition
    ) -> FSIState:
        def value(v, field_map: FieldMap) -> np.ndarray:
            if v is None:
                return np.zeros(field_map.size)
            v = np.asarray(v, dtype=float)
            if v.shape != (field_map.size,):
                raise ValueError(
                    f"Initial '{field_map.name}' must have shape ({field_map.size},), got {v.shape}"
                )
            return v

        velocity = value(initial.velocity, self.fluid.map)
        pressure = value(initial.pressure, self.fluid.pressure_map)
        displacement = value(initial.displacement, self.structure.map)
        mesh_displacement = value(initial.mesh_displacement, self.ale.map)

        time_advance.fluid.initialize(velocity)
        time_advance.structure.initialize(
            displacement,
            value(initial.structure_velocity, self.structure.map),
            value(initial.structure_acceleration, self.structure.map),
        )
        time_advance.ale.initialize(mesh_displacement)

        fluid_mesh = MovingMesh(self.fluid.dofs)
        fluid_mesh.move(mesh_displacement)

        solution = monolithic_map.concatenate(
            {
                Block.VELOCITY: velocity,
                Block.PRESSURE: pressure,
                Block.DISPLACEMENT: displacement,
                Block.MESH_DISPLACEMENT: mesh_displacement,
            }
        )
        return FSIState(
            monolithic_map=monolithic_map,
            fluid_mesh=fluid_mesh,
            fluid_time=time_advance.fluid,
            structure_time=time_advance.structure,
            ale_time=time_advance.ale,
            solution=solution,
            time=self.config.time.t_zero,
        )

    def _register_fields(self) -> None:
        state = self.state
        m = state.monolithic_map
        for name, block in (
            ("fluid_velocity", Block.VELOCITY),
            ("fluid_pressure", Block.PRESSURE),
            ("structure_displacement", Block.DISPLACEMENT),
            ("mesh_displacement", Block.MESH_DISPLACEMENT),
        ):
            self.exporter.add_field(name, m[block], lambda b=block: m.extract(state.solution, b))

    # -------------------------------------------------------------------------
    # Accessors
    # -------------------------------------------------------------------------

    @property
    def monolithic_map(self) -> MonolithicMap:
        self._require_setup()
        return self.state.monolithic_map

    @property
    def coupling_blocks(self) -> CouplingBlocks:
        self._require_setup()
        return self.coupling

    def _require_setup(self) -> None:
        if self.state is None:
            raise RuntimeError("MonolithicFSISolver.setup() must be called first")

    # -------------------------------------------------------------------------
    # Time stepping
    # -------------------------------------------------------------------------

    def update_system(self, time: float) -> None:
        """Compute the extrapolations and history terms of the step ending at ``time``."""
        self._require_setup()
        state = self.state
        state.time = time

        u_star = state.fluid_time.extrapolate()
        w_star = state.ale_time.extrapolate_first_derivative()
        state.velocity_extrapolation = u_star
        state.mesh_velocity = w_star
        state.convective_velocity = u_star - w_star
        state.fluid_rhs_history = state.fluid_time.rhs_contribution(1)

        state.structure_rhs_history = state.structure_time.rhs_contribution(2)
        state.coupling_rhs = -self.coupling.structure_to_interface(
            state.structure_time.rhs_contribution(1)
        )
        self.ale.update_rhs(time)

    def apply_boundary_conditions(self, solution: np.ndarray, time: float) -> np.ndarray:
        """Return ``solution`` with the essential values of every field imposed."""
        m = self.state.monolithic_map
        result = np.array(solution, dtype=float)
        for block, bcs in (
            (Block.VELOCITY, self.fluid.bcs),
            (Block.DISPLACEMENT, self.structure.bcs),
            (Block.MESH_DISPLACEMENT, self.ale.bcs),
        ):
            result = m.insert(result, block, bcs.impose_essential(m.extract(result, block), time))
        return result

    def solve_time_step(self, time: float) -> StepResult:
        """Advance from the last accepted step to ``time``."""
        self._require_setup()
        start = _time.perf_counter()
        state = self.state
        accepted_time, accepted_step = state.time, state.step
        step = accepted_step + 1
        state.step = step

        self.update_system(time)
        trial = self.apply_boundary_conditions(state.solution, time)
        newton = self.newton.solve(self.residual, trial, time)

        accepted = newton.converged or not self.config.output.stop_on_failure
        if accepted:
            if not newton.converged:
                logger.warning(
                    "Step %d (t=%.6g) accepted without convergence: %s, |r|=%.3e",
                    step,
                    time,
                    newton.status.value,
                    newton.residual_norm,
                )
            self._accept(newton.solution)
        else:
            m = state.monolithic_map
            state.fluid_mesh.move(m.extract(state.solution, Block.MESH_DISPLACEMENT))
            state.time, state.step = accepted_time, accepted_step
            logger.error(
                "Step %d (t=%.6g) failed: %s after %d Newton iterations, |r|=%.3e",
                step,
                time,
                newton.status.value,
                newton.iterations,
                newton.residual_norm,
            )

        wall_time = _time.perf_counter() - start
        leader_info(
            logger,
            self.comm,
            "Step %d t=%.6g: %s in %d iterations (|r|=%.3e, %.3f s)",
            step,
            time,
            newton.status.value,
            newton.iterations,
            newton.residual_norm,
            wall_time,
        )
        return StepResult(time, step, newton, accepted, wall_time)

    def _accept(self, solution: np.ndarray) -> None:
        state = self.state
        m = state.monolithic_map
        state.solution = np.array(solution, dtype=float)
        state.fluid_time.shift(m.extract(solution, Block.VELOCITY))
        state.structure_time.shift(m.extract(solution, Block.DISPLACEMENT))
        state.ale_time.shift(m.extract(solution, Block.MESH_DISPLACEMENT))
        state.fluid_mesh.move(m.extract(solution, Block.MESH_DISPLACEMENT))
        if self.exporter is not None:
            self.exporter.post_process(state.time)

    def run(self) -> List[StepResult]:
        """Advance from the last accepted step while ``t <= t_end + dt / 2``.

        Step ``k`` ends at ``t_zero + k * dt``. The exporter and the residual
        log are closed on return, so ``run`` can be called once per solver.

        Returns
        -------
        List[StepResult]
            One entry per attempted step. With ``stop_on_failure`` the loop
            ends at the first unconverged step.

        Raises
        ------
        RuntimeError
            If the solver has already been closed.
        """
        if self._closed:
            raise RuntimeError("MonolithicFSISolver has been closed; run() cannot be called again")
        if self.state is None:
            self.setup()
        cfg = self.config.time
        results: List[StepResult] = []
        start = _time.perf_counter()
        try:
            k = self.state.step + 1
            time = cfg.t_zero + k * cfg.dt
            while time <= cfg.t_end + cfg.dt / 2:
                result = self.solve_time_step(time)
                results.append(result)
                if not result.accepted:
                    break
                k += 1
                time = cfg.t_zero + k * cfg.dt
        finally:
            self.close()
        leader_info(
            logger,
            self.comm,
            "Simulation finished: %d steps in %.3f s",
            len(results),
            _time.perf_counter() - start,
        )
        return results

    def close(self) -> None:
        self._closed = True
        if self.residual_logger is not None:
            self.residual_logger.close()
        if self.exporter is not None:
            self.exporter.close()
