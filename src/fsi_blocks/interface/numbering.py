"""
Global numbering of the interface Lagrange multipliers.

Every rank numbers the interface points of its local map consecutively,
starting at an offset given by the exclusive prefix sum of the per-rank
point counts. Multiplier unknowns are component-blocked: the id of point
``k`` in component ``c`` is ``k + c * N`` with ``N`` the total number of
interface points.
"""

import logging
from dataclasses import dataclass
from typing import Dict

import numpy as np

from fsi_blocks.core.comm import exclusive_offsets
from fsi_blocks.core.errors import NumberingConsistencyError
from fsi_blocks.core.maps import FieldMap
from fsi_blocks.interface.matcher import InterfaceLocalMap

logger = logging.getLogger(__name__)


@dataclass(frozen=True, eq=False)
class InterfaceNumbering:
    """Globally consistent ids of the interface points of one rank.

    Attributes
    ----------
    fluid_dofs, structure_dofs : np.ndarray
        Scalar DOF pairs, in traversal order.
    ids : np.ndarray
        Global point id of every pair.
    offset : int
        Id of the first local point.
    total_count : int
        Number of interface points over all ranks.
    dim : int
        Number of vector components.
    multiplier_map : FieldMap
        Index space of the multiplier block (size ``total_count * dim``).
    """

    fluid_dofs: np.ndarray
    structure_dofs: np.ndarray
    ids: np.ndarray
    offset: int
    total_count: int
    dim: int
    multiplier_map: FieldMap

    @property
    def local_count(self) -> int:
        return int(self.ids.size)

    def multiplier_dofs(self, component: int) -> np.ndarray:
        """Multiplier ids of the local points in one component."""
        return self.multiplier_map.component_dofs(self.ids, component)

    def multiplier_vector_dofs(self) -> np.ndarray:
        """Multiplier ids of the local points, component-blocked."""
        return self.multiplier_map.vector_dofs(self.ids)


def number_interface(local_map: InterfaceLocalMap, dim: int, comm) -> InterfaceNumbering:
    """Assign global multiplier ids to the local interface map.

    Parameters
    ----------
    local_map : InterfaceLocalMap
        Rank-local pairing (may be empty).
    dim : int
        Number of vector components.
    comm : mpi4py-like communicator

    Returns
    -------
    InterfaceNumbering

    Raises
    ------
    NumberingConsistencyError
        If an assigned id differs from the rank offset plus local counter.
    """
    if dim < 1:
        raise ValueError(f"dim must be positive, got {dim}")
    rank = comm.Get_rank()
    counts = [int(c) for c in comm.allgather(len(local_map))]
    offsets = exclusive_offsets(counts)
    offset = int(offsets[rank])
    total = int(sum(counts))

    numeration: Dict[int, int] = {}
    for counter, fluid_dof in enumerate(sorted(int(f) for f in local_map.fluid_dofs)):
        numeration[fluid_dof] = offset + counter

    ids = np.empty(len(local_map), dtype=np.int64)
    for local_index, (fluid_dof, _) in enumerate(local_map.items()):
        actual = numeration.get(fluid_dof, -1)
        expected = offset + local_index
        if actual != expected:
            raise NumberingConsistencyError(rank, local_index, expected, actual)
        ids[local_index] = actual

    owned = np.concatenate([ids + c * total for c in range(dim)])
    multiplier_map = FieldMap("lagrange_multiplier", total * dim, components=dim, owned=owned)
    logger.debug(
        "Rank %d: %d interface points, offset %d, %d in total", rank, len(local_map), offset, total
    )
    return InterfaceNumbering(
        fluid_dofs=local_map.fluid_dofs.copy(),
        structure_dofs=local_map.structure_dofs.copy(),
        ids=ids,
        offset=offset,
        total_count=total,
        dim=dim,
        multiplier_map=multiplier_map,
    )
