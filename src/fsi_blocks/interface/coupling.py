"""
Coupling operators between the interface multipliers and the fields.

With ``lambda`` the interface traction, the coupled equations read

- fluid momentum:     ``F u + B^T p + C_lf lambda = f_u``
- structure momentum: ``S d + C_ls lambda = f_s``
- velocity continuity: ``C_ul u + C_dl d = -T rhs1``
- mesh motion:        ``H d_f + C_da d = 0``

where ``C_lf`` injects ``+lambda`` and ``C_ls`` injects ``-lambda`` at the
paired DOFs, ``C_ul`` picks the fluid velocity, ``C_dl = -(c1 / dt) T``
picks the structure velocity through its Newmark derivative and ``C_da``
copies the structure displacement onto the interface rows of the mesh
problem. ``T`` is the pointwise structure-to-interface injection.
"""

import logging
from dataclasses import dataclass
from typing import Iterable, Optional

import numpy as np
import scipy.sparse as sp

from fsi_blocks.core.bc import zero_rows
from fsi_blocks.core.comm import allgather_triplets
from fsi_blocks.core.maps import FieldMap
from fsi_blocks.interface.matcher import InterfaceDofMaps
from fsi_blocks.interface.numbering import InterfaceNumbering

logger = logging.getLogger(__name__)


@dataclass(frozen=True, eq=False)
class CouplingBlocks:
    """Assembled coupling operators (replicated CSR).

    Attributes
    ----------
    multiplier_to_fluid : sp.csr_matrix
        ``(n_u, n_lambda)``, enters the fluid momentum rows.
    multiplier_to_structure : sp.csr_matrix
        ``(n_d, n_lambda)``, enters the structure momentum rows.
    structure_to_multiplier : sp.csr_matrix
        ``(n_lambda, n_d)``, structure velocity in the continuity rows.
    fluid_to_multiplier : sp.csr_matrix
        ``(n_lambda, n_u)``, fluid velocity in the continuity rows.
    structure_to_mesh : sp.csr_matrix
        ``(n_a, n_d)``, structure displacement in the mesh-motion rows.
    transmission : sp.csr_matrix
        ``(n_lambda, n_d)`` structure-to-interface injection.
    """

    multiplier_to_fluid: sp.csr_matrix
    multiplier_to_structure: sp.csr_matrix
    structure_to_multiplier: sp.csr_matrix
    fluid_to_multiplier: sp.csr_matrix
    structure_to_mesh: sp.csr_matrix
    transmission: sp.csr_matrix

    @classmethod
    def zeros(cls, n_velocity: int, n_displacement: int, n_multiplier: int, n_mesh: int):
        """Fully decoupled fields."""
        return cls(
            multiplier_to_fluid=sp.csr_matrix((n_velocity, n_multiplier)),
            multiplier_to_structure=sp.csr_matrix((n_displacement, n_multiplier)),
            structure_to_multiplier=sp.csr_matrix((n_multiplier, n_displacement)),
            fluid_to_multiplier=sp.csr_matrix((n_multiplier, n_velocity)),
            structure_to_mesh=sp.csr_matrix((n_mesh, n_displacement)),
            transmission=sp.csr_matrix((n_multiplier, n_displacement)),
        )

    def structure_to_interface(self, values: np.ndarray) -> np.ndarray:
        """Restrict a structure vector to the interface multiplier numbering."""
        return self.transmission @ np.asarray(values, dtype=float)

    def interface_to_structure(self, values: np.ndarray) -> np.ndarray:
        """Extend an interface vector to the structure (zero away from the interface)."""
        return self.transmission.T @ np.asarray(values, dtype=float)


def _assemble(comm, rows, cols, values, shape) -> sp.csr_matrix:
    rows, cols, values = allgather_triplets(comm, rows, cols, values)
    matrix = sp.coo_matrix((values, (rows, cols)), shape=shape).tocsr()
    matrix.sum_duplicates()
    return matrix


def build_coupling_blocks(
    numbering: InterfaceNumbering,
    fluid_map: FieldMap,
    structure_map: FieldMap,
    mesh_map: FieldMap,
    structure_velocity_coefficient: float,
    comm,
    fluid_essential: Optional[Iterable[int]] = None,
    structure_essential: Optional[Iterable[int]] = None,
    mesh_essential: Optional[Iterable[int]] = None,
    dof_maps: Optional[InterfaceDofMaps] = None,
) -> CouplingBlocks:
    """Assemble the coupling operators from the interface numbering.

    Parameters
    ----------
    numbering : InterfaceNumbering
        Global multiplier ids of the local interface pairs.
    fluid_map, structure_map, mesh_map : FieldMap
        Fluid velocity, structure displacement and mesh displacement maps.
        The mesh displacement shares the scalar numbering of the fluid
        velocity.
    structure_velocity_coefficient : float
        Factor ``c1 / dt`` of the new displacement in the structure velocity.
    comm : mpi4py-like communicator
    fluid_essential, structure_essential, mesh_essential : Iterable[int], optional
        Essential DOFs of each field. Coupling rows at these DOFs are zeroed
        so that constrained rows stay identity rows. Interface rows of the
        mesh problem are never zeroed, they carry the displacement transfer.
    dof_maps : InterfaceDofMaps, optional
        Vector interface DOFs from ``build_interface_dof_maps``. Built from
        ``numbering`` when omitted.

    Returns
    -------
    CouplingBlocks
    """
    dim = numbering.dim
    for fmap in (fluid_map, structure_map, mesh_map):
        if fmap.components != dim:
            raise ValueError(
                f"Field '{fmap.name}' has {fmap.components} components, interface has {dim}"
            )
    if mesh_map.scalar_size != fluid_map.scalar_size:
        raise ValueError(
            f"Mesh displacement ({mesh_map.scalar_size} nodes) and fluid velocity "
            f"({fluid_map.scalar_size} nodes) must share the same scalar DOFs"
        )

    n_u = fluid_map.size
    n_d = structure_map.size
    n_l = numbering.multiplier_map.size
    n_a = mesh_map.size

    lam = numbering.multiplier_vector_dofs()
    if dof_maps is None:
        fluid = fluid_map.vector_dofs(numbering.fluid_dofs)
        structure = structure_map.vector_dofs(numbering.structure_dofs)
    else:
        fluid, structure = dof_maps.fluid, dof_maps.structure
        if not (fluid.size == structure.size == lam.size):
            raise ValueError(
                f"Interface DOF maps have {fluid.size} fluid and {structure.size} structure "
                f"entries, numbering has {lam.size} multipliers on this rank"
            )
    mesh = mesh_map.vector_dofs(numbering.fluid_dofs)
    ones = np.ones(lam.size)

    multiplier_to_fluid = _assemble(comm, fluid, lam, ones, (n_u, n_l))
    multiplier_to_structure = _assemble(comm, structure, lam, -ones, (n_d, n_l))
    structure_to_multiplier = _assemble(
        comm, lam, structure, -structure_velocity_coefficient * ones, (n_l, n_d)
    )
    fluid_to_multiplier = _assemble(comm, lam, fluid, ones, (n_l, n_u))
    structure_to_mesh = _assemble(comm, mesh, structure, -ones, (n_a, n_d))
    transmission = _assemble(comm, lam, structure, ones, (n_l, n_d))

    if fluid_essential is not None:
        multiplier_to_fluid = zero_rows(multiplier_to_fluid, fluid_essential)
    if structure_essential is not None:
        multiplier_to_structure = zero_rows(multiplier_to_structure, structure_essential)
    if mesh_essential is not None:
        interface_rows = np.unique(structure_to_mesh.nonzero()[0])
        rows = np.setdiff1d(np.asarray(list(mesh_essential), dtype=np.int64), interface_rows)
        structure_to_mesh = zero_rows(structure_to_mesh, rows)

    logger.debug(
        "Coupling blocks assembled: %d multipliers, nnz(C_lf)=%d, nnz(C_da)=%d",
        n_l,
        multiplier_to_fluid.nnz,
        structure_to_mesh.nnz,
    )
    return CouplingBlocks(
        multiplier_to_fluid=multiplier_to_fluid,
        multiplier_to_structure=multiplier_to_structure,
        structure_to_multiplier=structure_to_multiplier,
        fluid_to_multiplier=fluid_to_multiplier,
        structure_to_mesh=structure_to_mesh,
        transmission=transmission,
    )
