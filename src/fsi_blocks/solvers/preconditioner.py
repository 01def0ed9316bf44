"""
Block preconditioners of the monolithic FSI operator.

The structure and geometry blocks are factorised once per time step; the
fluid momentum approximation is refreshed at every Newton iteration
because it depends on the moved mesh and the convective velocity.

``FaCSIPreconditioner`` applies, in order,

1. the structure solve ``z_d = S^{-1} r_d``,
2. the geometry solve ``z_a = H^{-1} (r_a - C_da z_d)``,
3. the fluid solve with the interface velocity given by the continuity
   rows, ``u_G = r_l - C_dl z_d``, using a SIMPLE factorisation of the
   velocity-pressure block with Dirichlet rows at the interface,
4. the multipliers from the interface momentum rows,
   ``lambda = C_lf^T (r_u - F u - B^T p)``.
"""

import logging
from abc import ABC, abstractmethod
from typing import Optional

import numpy as np
import scipy.sparse as sp
from scipy.sparse.linalg import LinearOperator, spilu, splu

from fsi_blocks.core.bc import zero_rows
from fsi_blocks.core.config import FluidMomentumApproximation, PreconditionerConfig, PreconditionerType
from fsi_blocks.core.errors import PreconditionerConfigurationError, SingularBlockError
from fsi_blocks.core.maps import Block, MonolithicMap
from fsi_blocks.interface.coupling import CouplingBlocks
from fsi_blocks.solvers.fields import FluidBlocks

logger = logging.getLogger(__name__)


def _factorize(matrix: sp.spmatrix, name: str):
    """Sparse LU of a square block; empty blocks give ``None``."""
    if matrix.shape[0] == 0:
        return None
    try:
        return splu(sp.csc_matrix(matrix, dtype=float))
    except RuntimeError as exc:
        raise SingularBlockError(f"{name} block is singular: {exc}") from exc


def _solve(factor, rhs: np.ndarray) -> np.ndarray:
    if factor is None:
        return np.zeros(0)
    return factor.solve(np.asarray(rhs, dtype=float))


class BlockPreconditioner(ABC):
    """Preconditioner acting on monolithic vectors.

    Subclasses implement ``apply``. Blocks are supplied through the
    ``set_*`` and ``update_*`` methods; ``check_operator`` verifies that the
    preconditioner index space matches the monolithic operator.
    """

    def __init__(self):
        self.monolithic_map: Optional[MonolithicMap] = None
        self.structure_block: Optional[sp.csr_matrix] = None
        self.geometry_block: Optional[sp.csr_matrix] = None
        self.coupling: Optional[CouplingBlocks] = None
        self.fluid: Optional[FluidBlocks] = None

    def set_monolithic_map(self, monolithic_map: MonolithicMap) -> None:
        self.monolithic_map = monolithic_map

    def set_structure_block(self, structure: sp.spmatrix) -> None:
        self.structure_block = sp.csr_matrix(structure, dtype=float)

    def set_geometry_block(self, geometry: sp.spmatrix) -> None:
        self.geometry_block = sp.csr_matrix(geometry, dtype=float)

    def set_coupling_blocks(self, coupling: CouplingBlocks) -> None:
        self.coupling = coupling

    def update_approximated_fluid_momentum(self, fluid: FluidBlocks) -> None:
        """Refresh the fluid blocks (called at every Newton iteration)."""
        self.fluid = fluid

    def update_operator(self, operator: sp.spmatrix) -> None:
        """Receive the current monolithic operator."""
        self.check_operator(operator)

    def check_operator(self, operator: sp.spmatrix) -> None:
        """Check domain and range against the monolithic operator.

        Raises
        ------
        PreconditionerConfigurationError
            If the map is missing or any supplied block disagrees with it.
        """
        if self.monolithic_map is None:
            raise PreconditionerConfigurationError("Monolithic map not set on the preconditioner")
        m = self.monolithic_map
        n = m.size
        if operator.shape != (n, n):
            raise PreconditionerConfigurationError(
                f"Operator shape {operator.shape} does not match the preconditioner "
                f"index space ({n}, {n})"
            )
        U, P, D, L, A = (m.block_size(b) for b in Block)
        expected = []
        if self.structure_block is not None:
            expected.append(("structure", self.structure_block.shape, (D, D)))
        if self.geometry_block is not None:
            expected.append(("geometry", self.geometry_block.shape, (A, A)))
        if self.coupling is not None:
            c = self.coupling
            expected += [
                ("multiplier_to_fluid", c.multiplier_to_fluid.shape, (U, L)),
                ("multiplier_to_structure", c.multiplier_to_structure.shape, (D, L)),
                ("structure_to_multiplier", c.structure_to_multiplier.shape, (L, D)),
                ("fluid_to_multiplier", c.fluid_to_multiplier.shape, (L, U)),
                ("structure_to_mesh", c.structure_to_mesh.shape, (A, D)),
            ]
        if self.fluid is not None:
            f = self.fluid
            expected += [
                ("fluid momentum", f.momentum.shape, (U, U)),
                ("fluid gradient", f.gradient.shape, (U, P)),
                ("fluid divergence", f.divergence.shape, (P, U)),
            ]
        for name, actual, shape in expected:
            if actual != shape:
                raise PreconditionerConfigurationError(
                    f"{name} block has shape {actual}, monolithic map expects {shape}"
                )

    @abstractmethod
    def apply(self, residual: np.ndarray) -> np.ndarray:
        ...

    def as_linear_operator(self) -> LinearOperator:
        if self.monolithic_map is None:
            raise PreconditionerConfigurationError("Monolithic map not set on the preconditioner")
        n = self.monolithic_map.size
        return LinearOperator((n, n), matvec=self.apply, dtype=float)


class IdentityPreconditioner(BlockPreconditioner):
    """No preconditioning."""

    def apply(self, residual: np.ndarray) -> np.ndarray:
        return np.array(residual, dtype=float)


class ExactPreconditioner(BlockPreconditioner):
    """Sparse LU of the whole monolithic operator."""

    def __init__(self):
        super().__init__()
        self._factor = None

    def update_operator(self, operator: sp.spmatrix) -> None:
        super().update_operator(operator)
        self._factor = _factorize(operator, "Monolithic")

    def apply(self, residual: np.ndarray) -> np.ndarray:
        if self._factor is None and self.monolithic_map.size:
            raise RuntimeError("ExactPreconditioner: update_operator() must run first")
        return _solve(self._factor, residual)


class FaCSIPreconditioner(BlockPreconditioner):
    """Factorised structure, geometry and fluid-multiplier preconditioner.

    Parameters
    ----------
    fluid_momentum : FluidMomentumApproximation
        Approximate inverse of the fluid momentum block.
    ilu_drop_tol, ilu_fill_factor : float
        Parameters of the incomplete LU (``ILU`` only).
    """

    def __init__(
        self,
        fluid_momentum: FluidMomentumApproximation = FluidMomentumApproximation.ILU,
        ilu_drop_tol: float = 1.0e-4,
        ilu_fill_factor: float = 10.0,
    ):
        super().__init__()
        self.fluid_momentum = FluidMomentumApproximation(fluid_momentum)
        self.ilu_drop_tol = ilu_drop_tol
        self.ilu_fill_factor = ilu_fill_factor
        self._structure_factor = None
        self._geometry_factor = None
        self._interface_rows = np.empty(0, dtype=np.int64)
        self._momentum_solve = None
        self._inv_diagonal: Optional[np.ndarray] = None
        self._gradient_d: Optional[sp.csr_matrix] = None
        self._schur_factor = None
        self._ready = False

    def set_structure_block(self, structure: sp.spmatrix) -> None:
        super().set_structure_block(structure)
        self._structure_factor = _factorize(self.structure_block, "Structure")

    def set_geometry_block(self, geometry: sp.spmatrix) -> None:
        super().set_geometry_block(geometry)
        self._geometry_factor = _factorize(self.geometry_block, "Geometry")

    def set_coupling_blocks(self, coupling: CouplingBlocks) -> None:
        super().set_coupling_blocks(coupling)
        self._interface_rows = np.unique(coupling.fluid_to_multiplier.indices).astype(np.int64)

    def update_approximated_fluid_momentum(self, fluid: FluidBlocks) -> None:
        super().update_approximated_fluid_momentum(fluid)
        rows = self._interface_rows
        momentum_d = zero_rows(fluid.momentum, rows, diagonal=1.0)
        self._gradient_d = zero_rows(fluid.gradient, rows)

        diagonal = momentum_d.diagonal()
        if np.any(diagonal == 0):
            raise SingularBlockError("Fluid momentum block has a zero diagonal entry")
        self._inv_diagonal = 1.0 / diagonal
        self._momentum_solve = self._momentum_inverse(momentum_d)

        n_p = fluid.divergence.shape[0]
        if n_p:
            schur = fluid.stabilization - fluid.divergence @ sp.diags(self._inv_diagonal) @ self._gradient_d
            self._schur_factor = _factorize(schur, "Pressure Schur complement")
        else:
            self._schur_factor = None
        self._ready = True
        logger.debug(
            "FaCSI fluid approximation updated (%s, %d interface rows)",
            self.fluid_momentum.value,
            rows.size,
        )

    def _momentum_inverse(self, momentum: sp.csr_matrix):
        if momentum.shape[0] == 0:
            return lambda r: np.zeros(0)
        if self.fluid_momentum == FluidMomentumApproximation.JACOBI:
            inv = self._inv_diagonal
            return lambda r: inv * r
        csc = sp.csc_matrix(momentum)
        if self.fluid_momentum == FluidMomentumApproximation.LU:
            factor = _factorize(csc, "Fluid momentum")
        else:
            try:
                factor = spilu(csc, drop_tol=self.ilu_drop_tol, fill_factor=self.ilu_fill_factor)
            except RuntimeError as exc:
                raise SingularBlockError(
                    f"Incomplete LU of the fluid momentum failed: {exc}"
                ) from exc
        return factor.solve

    def update_operator(self, operator: sp.spmatrix) -> None:
        super().update_operator(operator)
        missing = [
            name
            for name, value in (
                ("structure", self.structure_block),
                ("geometry", self.geometry_block),
                ("coupling", self.coupling),
                ("fluid", self.fluid),
            )
            if value is None
        ]
        if missing:
            raise PreconditionerConfigurationError(
                f"FaCSI preconditioner is missing blocks: {', '.join(missing)}"
            )

    def apply(self, residual: np.ndarray) -> np.ndarray:
        if not self._ready:
            raise RuntimeError("FaCSIPreconditioner: fluid approximation not set")
        m = self.monolithic_map
        c = self.coupling
        f = self.fluid
        r = m.split(np.asarray(residual, dtype=float))

        z_d = _solve(self._structure_factor, r[Block.DISPLACEMENT])
        z_a = _solve(self._geometry_factor, r[Block.MESH_DISPLACEMENT] - c.structure_to_mesh @ z_d)

        # interface velocity from the continuity rows
        continuity = r[Block.MULTIPLIER] - c.structure_to_multiplier @ z_d
        rhs_u = np.array(r[Block.VELOCITY])
        if self._interface_rows.size:
            rhs_u[self._interface_rows] = (c.fluid_to_multiplier.T @ continuity)[self._interface_rows]

        u_star = self._momentum_solve(rhs_u)
        if self._schur_factor is not None:
            p = _solve(self._schur_factor, r[Block.PRESSURE] - f.divergence @ u_star)
            z_u = u_star - self._inv_diagonal * (self._gradient_d @ p)
        else:
            p = np.zeros(m.block_size(Block.PRESSURE))
            z_u = u_star

        interface_residual = r[Block.VELOCITY] - f.momentum @ z_u - f.gradient @ p
        z_l = c.multiplier_to_fluid.T @ interface_residual

        return m.concatenate(
            {
                Block.VELOCITY: z_u,
                Block.PRESSURE: p,
                Block.DISPLACEMENT: z_d,
                Block.MULTIPLIER: z_l,
                Block.MESH_DISPLACEMENT: z_a,
            }
        )


_PRECONDITIONERS = {
    PreconditionerType.NONE: lambda config: IdentityPreconditioner(),
    PreconditionerType.EXACT: lambda config: ExactPreconditioner(),
    PreconditionerType.FACSI: lambda config: FaCSIPreconditioner(
        config.fluid_momentum, config.ilu_drop_tol, config.ilu_fill_factor
    ),
}


def create_preconditioner(config: PreconditionerConfig) -> BlockPreconditioner:
    """Build the preconditioner selected in ``config``."""
    return _PRECONDITIONERS[PreconditionerType(config.type)](config)
