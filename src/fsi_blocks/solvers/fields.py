"""
Field solvers of the coupled problem.

Finite-element assembly happens outside this package. Each field solver
receives its matrices (or, for the fluid, an assembly callback evaluated on
the current mesh), combines them with the time advance coefficients,
applies its boundary conditions and exposes the resulting operator and
right-hand side.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Optional

import numpy as np
import scipy.sparse as sp

from fsi_blocks.core.bc import BoundaryConditionSet, EssentialCondition, zero_rows
from fsi_blocks.core.maps import FieldMap
from fsi_blocks.core.mesh import DofSet

logger = logging.getLogger(__name__)


def _as_csr(matrix, shape, name: str) -> sp.csr_matrix:
    matrix = sp.csr_matrix(matrix, dtype=float)
    if matrix.shape != shape:
        raise ValueError(f"{name} must have shape {shape}, got {matrix.shape}")
    return matrix


def _forcing_at(forcing, time: float, size: int) -> np.ndarray:
    if forcing is None:
        return np.zeros(size)
    values = forcing(time) if callable(forcing) else forcing
    values = np.asarray(values, dtype=float)
    if values.shape != (size,):
        raise ValueError(f"Forcing must have shape ({size},), got {values.shape}")
    return values


class FieldSolver(ABC):
    """Base class of the fluid, structure and mesh-motion solvers.

    Parameters
    ----------
    field_map : FieldMap
        DOF map of the primary unknown.
    dofs : DofSet
        Scalar DOF nodes (coordinates and boundary markers).
    bcs : BoundaryConditionSet, optional
        Boundary conditions of the primary unknown.
    """

    def __init__(self, field_map: FieldMap, dofs: DofSet, bcs: Optional[BoundaryConditionSet] = None):
        if len(dofs) != field_map.scalar_size:
            raise ValueError(
                f"Field '{field_map.name}' has {field_map.scalar_size} scalar DOFs "
                f"but the DOF set has {len(dofs)} nodes"
            )
        self.map = field_map
        self.dofs = dofs
        self.bcs = bcs if bcs is not None else BoundaryConditionSet()
        if not self.bcs.update_done:
            self.bcs.update(dofs, field_map)
        self._operator: Optional[sp.csr_matrix] = None
        self._rhs: Optional[np.ndarray] = None

    @property
    def essential_dofs(self) -> np.ndarray:
        return self.bcs.essential_dofs

    @abstractmethod
    def build_operator(self) -> None:
        ...

    def apply_boundary_conditions(self, bcs: Optional[BoundaryConditionSet] = None, time: float = 0.0) -> None:
        """Apply ``bcs`` (default: the solver's own) to the operator and rhs."""
        bcs = bcs if bcs is not None else self.bcs
        if self._operator is None:
            raise RuntimeError(f"{type(self).__name__}: build_operator() must run first")
        self._operator = bcs.apply(self._operator, time)
        if self._rhs is not None:
            self._rhs = bcs.apply(self._rhs, time)

    def apply_rhs_boundary_conditions(
        self, bcs: Optional[BoundaryConditionSet] = None, time: float = 0.0
    ) -> None:
        """Apply ``bcs`` to the right-hand side only (the operator is left alone)."""
        bcs = bcs if bcs is not None else self.bcs
        if self._rhs is None:
            raise RuntimeError(f"{type(self).__name__}: right-hand side not built")
        self._rhs = bcs.apply(self._rhs, time)

    def get_operator(self) -> sp.csr_matrix:
        if self._operator is None:
            raise RuntimeError(f"{type(self).__name__}: operator not built")
        return self._operator

    def get_rhs(self) -> np.ndarray:
        if self._rhs is None:
            raise RuntimeError(f"{type(self).__name__}: right-hand side not built")
        return self._rhs.copy()


# =============================================================================
# Structure
# =============================================================================


class StructureSolver(FieldSolver):
    """Linear elastodynamics: ``S = (c2 / dt^2) M + K``.

    The operator does not depend on the fluid mesh and is built once.

    Parameters
    ----------
    field_map : FieldMap
        Structure displacement map.
    dofs : DofSet
        Structure DOF nodes.
    stiffness, mass : sparse matrix
        Assembled stiffness ``K`` and mass ``M``.
    bcs : BoundaryConditionSet, optional
    forcing : np.ndarray or callable, optional
        Applied load, constant or ``forcing(t)``.
    """

    def __init__(
        self,
        field_map: FieldMap,
        dofs: DofSet,
        stiffness,
        mass,
        bcs: Optional[BoundaryConditionSet] = None,
        forcing=None,
    ):
        super().__init__(field_map, dofs, bcs)
        shape = (field_map.size, field_map.size)
        self.stiffness = _as_csr(stiffness, shape, "Structure stiffness")
        self.mass = _as_csr(mass, shape, "Structure mass")
        self.forcing = forcing
        self.mass_coefficient: Optional[float] = None

    def set_mass_coefficient(self, coefficient: float) -> None:
        """Set ``c2 / dt^2`` from the structure time advance."""
        self.mass_coefficient = float(coefficient)

    def build_operator(self) -> None:
        if self.mass_coefficient is None:
            raise RuntimeError("StructureSolver: set_mass_coefficient() must run first")
        self._operator = (self.mass_coefficient * self.mass + self.stiffness).tocsr()
        logger.debug("Structure operator built (nnz=%d)", self._operator.nnz)

    def update_rhs(self, rhs_history: np.ndarray, time: float) -> None:
        """Set ``M * rhs_history + f(t)``; boundary conditions are applied separately."""
        self._rhs = self.mass @ np.asarray(rhs_history, dtype=float) + _forcing_at(
            self.forcing, time, self.map.size
        )


# =============================================================================
# Mesh motion
# =============================================================================


class HarmonicExtensionSolver(FieldSolver):
    """Mesh motion by harmonic extension of the interface displacement.

    The vector operator is the scalar Laplacian repeated on every component.
    The interface is an essential boundary of this problem whose value is
    supplied by the structure-to-mesh coupling block: its rows are identity
    rows with a zero right-hand side, kept apart from the user conditions
    so that they are never written into a trial solution.

    Parameters
    ----------
    field_map : FieldMap
        Mesh displacement map.
    dofs : DofSet
        Fluid mesh DOF nodes.
    laplacian : sparse matrix
        Scalar Laplacian (``scalar_size x scalar_size``).
    bcs : BoundaryConditionSet, optional
        Conditions away from the interface (fixed or sliding walls).
    interface_flag : int, optional
        Interface marker.
    """

    def __init__(
        self,
        field_map: FieldMap,
        dofs: DofSet,
        laplacian,
        bcs: Optional[BoundaryConditionSet] = None,
        interface_flag: Optional[int] = None,
    ):
        super().__init__(field_map, dofs, bcs)
        n = field_map.scalar_size
        self.laplacian = _as_csr(laplacian, (n, n), "Mesh Laplacian")
        self.interface_bcs = BoundaryConditionSet()
        if interface_flag is not None:
            self.interface_bcs.add(EssentialCondition(interface_flag, 0.0))
        self.interface_bcs.update(dofs, field_map)

    @property
    def interface_dofs(self) -> np.ndarray:
        return self.interface_bcs.essential_dofs

    def build_operator(self) -> None:
        self._operator = sp.block_diag([self.laplacian] * self.map.components, format="csr")
        self._rhs = np.zeros(self.map.size)

    def apply_boundary_conditions(self, bcs: Optional[BoundaryConditionSet] = None, time: float = 0.0) -> None:
        super().apply_boundary_conditions(bcs, time)
        super().apply_boundary_conditions(self.interface_bcs, time)

    def update_rhs(self, time: float) -> None:
        """Zero right-hand side with the boundary values at ``time``."""
        self._rhs = np.zeros(self.map.size)
        self.apply_rhs_boundary_conditions(time=time)

    def apply_rhs_boundary_conditions(self, bcs: Optional[BoundaryConditionSet] = None, time: float = 0.0) -> None:
        super().apply_rhs_boundary_conditions(bcs, time)
        super().apply_rhs_boundary_conditions(self.interface_bcs, time)


# =============================================================================
# Fluid
# =============================================================================


@dataclass(frozen=True, eq=False)
class FluidMatrices:
    """Fluid matrices assembled on a given mesh configuration.

    Attributes
    ----------
    mass : sparse ``(n_u, n_u)``
    stiffness : sparse ``(n_u, n_u)``
        Viscous term.
    convection : sparse ``(n_u, n_u)``
        Convective term linearised around ``beta``.
    divergence : sparse ``(n_p, n_u)``
        ``B``; the pressure gradient is ``B^T``.
    forcing : np.ndarray ``(n_u,)``
    stabilization : sparse ``(n_p, n_p)``, optional
        Pressure-pressure block (zero for inf-sup stable pairs).
    """

    mass: sp.spmatrix
    stiffness: sp.spmatrix
    convection: sp.spmatrix
    divergence: sp.spmatrix
    forcing: np.ndarray
    stabilization: Optional[sp.spmatrix] = None


@dataclass(frozen=True, eq=False)
class FluidBlocks:
    """Fluid operator blocks with boundary conditions applied."""

    momentum: sp.csr_matrix
    gradient: sp.csr_matrix
    divergence: sp.csr_matrix
    stabilization: sp.csr_matrix
    rhs_velocity: np.ndarray
    rhs_pressure: np.ndarray


FluidAssembly = Callable[[np.ndarray, np.ndarray], FluidMatrices]


class FluidSolver(FieldSolver):
    """Base class of fluid solvers exposing the velocity-pressure blocks.

    Parameters
    ----------
    velocity_map, pressure_map : FieldMap
    dofs : DofSet
        Velocity DOF nodes.
    bcs : BoundaryConditionSet, optional
        Velocity boundary conditions.
    """

    def __init__(
        self,
        velocity_map: FieldMap,
        pressure_map: FieldMap,
        dofs: DofSet,
        bcs: Optional[BoundaryConditionSet] = None,
    ):
        super().__init__(velocity_map, dofs, bcs)
        self.pressure_map = pressure_map
        self._blocks: Optional[FluidBlocks] = None

    @abstractmethod
    def update_system(
        self, coordinates: np.ndarray, beta: np.ndarray, rhs_velocity: np.ndarray, time: float
    ) -> None:
        """Re-assemble the fluid blocks on the given mesh configuration."""

    def build_operator(self) -> None:
        blocks = self.get_blocks()
        self._operator = sp.bmat(
            [[blocks.momentum, blocks.gradient], [blocks.divergence, blocks.stabilization]],
            format="csr",
        )
        self._rhs = np.concatenate([blocks.rhs_velocity, blocks.rhs_pressure])

    def apply_boundary_conditions(self, bcs: Optional[BoundaryConditionSet] = None, time: float = 0.0) -> None:
        """Apply velocity conditions: momentum rows become identity, gradient rows vanish."""
        bcs = bcs if bcs is not None else self.bcs
        blocks = self.get_blocks()
        essential = bcs.essential_dofs
        self._blocks = FluidBlocks(
            momentum=bcs.apply(blocks.momentum, time),
            gradient=zero_rows(blocks.gradient, essential),
            divergence=blocks.divergence,
            stabilization=blocks.stabilization,
            rhs_velocity=bcs.apply(blocks.rhs_velocity, time),
            rhs_pressure=blocks.rhs_pressure,
        )
        self.build_operator()

    def get_blocks(self) -> FluidBlocks:
        if self._blocks is None:
            raise RuntimeError(f"{type(self).__name__}: update_system() must run first")
        return self._blocks


class OseenFluidSolver(FluidSolver):
    """Incompressible Navier-Stokes linearised around an extrapolated velocity.

    ``F = (alpha / dt) M + A + N(beta)`` and ``rhs_u = M * rhs_velocity + f``,
    with the matrices provided by an assembly callback evaluated on the
    current (moved) mesh coordinates.

    Parameters
    ----------
    velocity_map, pressure_map : FieldMap
    dofs : DofSet
    assemble : callable
        ``assemble(coordinates, beta) -> FluidMatrices``.
    bcs : BoundaryConditionSet, optional
    """

    def __init__(
        self,
        velocity_map: FieldMap,
        pressure_map: FieldMap,
        dofs: DofSet,
        assemble: FluidAssembly,
        bcs: Optional[BoundaryConditionSet] = None,
    ):
        super().__init__(velocity_map, pressure_map, dofs, bcs)
        self.assemble = assemble
        self.mass_coefficient: Optional[float] = None

    def set_mass_coefficient(self, coefficient: float) -> None:
        """Set ``alpha / dt`` from the fluid time advance."""
        self.mass_coefficient = float(coefficient)

    def update_system(
        self, coordinates: np.ndarray, beta: np.ndarray, rhs_velocity: np.ndarray, time: float
    ) -> None:
        if self.mass_coefficient is None:
            raise RuntimeError("OseenFluidSolver: set_mass_coefficient() must run first")
        n_u = self.map.size
        n_p = self.pressure_map.size
        matrices = self.assemble(coordinates, beta)
        mass = _as_csr(matrices.mass, (n_u, n_u), "Fluid mass")
        stiffness = _as_csr(matrices.stiffness, (n_u, n_u), "Fluid stiffness")
        convection = _as_csr(matrices.convection, (n_u, n_u), "Fluid convection")
        divergence = _as_csr(matrices.divergence, (n_p, n_u), "Fluid divergence")
        if matrices.stabilization is None:
            stabilization = sp.csr_matrix((n_p, n_p))
        else:
            stabilization = _as_csr(matrices.stabilization, (n_p, n_p), "Fluid stabilization")
        forcing = _forcing_at(matrices.forcing, time, n_u)

        self._blocks = FluidBlocks(
            momentum=(self.mass_coefficient * mass + stiffness + convection).tocsr(),
            gradient=divergence.T.tocsr(),
            divergence=divergence,
            stabilization=stabilization,
            rhs_velocity=mass @ np.asarray(rhs_velocity, dtype=float) + forcing,
            rhs_pressure=np.zeros(n_p),
        )
        self.build_operator()
