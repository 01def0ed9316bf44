"""
Geometric matching of fluid and structure interface DOFs.

Fluid and structure meshes are partitioned independently, so the interface
DOFs of the two fields are paired by position: each fluid interface node is
paired with the nearest structure interface node, which must lie within a
distance tolerance. The pairing is computed on every rank from the same
replicated interface coordinates and then restricted to the entries whose
structure DOF the rank owns.
"""

import logging
from dataclasses import dataclass
from typing import Iterator, Optional, Tuple

import numpy as np

from fsi_blocks.core.errors import InterfaceMatchError
from fsi_blocks.core.maps import FieldMap
from fsi_blocks.core.mesh import DofSet

logger = logging.getLogger(__name__)


@dataclass(frozen=True, eq=False)
class InterfaceLocalMap:
    """Rank-local pairing of fluid and structure interface scalar DOFs.

    Entries are sorted by fluid DOF id, which fixes the traversal order used
    by the global numbering on every rank.

    Attributes
    ----------
    fluid_dofs : np.ndarray
        Fluid scalar DOF ids, strictly increasing.
    structure_dofs : np.ndarray
        Paired structure scalar DOF ids.
    distances : np.ndarray
        Distance between the paired nodes.
    """

    fluid_dofs: np.ndarray
    structure_dofs: np.ndarray
    distances: np.ndarray

    def __post_init__(self):
        if not (self.fluid_dofs.shape == self.structure_dofs.shape == self.distances.shape):
            raise ValueError("Interface map arrays must have the same length")

    def __len__(self) -> int:
        return int(self.fluid_dofs.size)

    def items(self) -> Iterator[Tuple[int, int]]:
        """Iterate over ``(fluid_dof, structure_dof)`` pairs in traversal order."""
        for f, s in zip(self.fluid_dofs, self.structure_dofs):
            yield int(f), int(s)

    def as_dict(self):
        return dict(self.items())

    @classmethod
    def empty(cls) -> "InterfaceLocalMap":
        return cls(
            np.empty(0, dtype=np.int64), np.empty(0, dtype=np.int64), np.empty(0, dtype=float)
        )


def match_interface(
    fluid: DofSet,
    structure: DofSet,
    flag: int,
    tolerance: float,
    structure_map: Optional[FieldMap] = None,
) -> InterfaceLocalMap:
    """Pair fluid interface DOFs with structure interface DOFs.

    Parameters
    ----------
    fluid, structure : DofSet
        Scalar DOF nodes of the fluid velocity and structure displacement.
    flag : int
        Boundary marker of the interface on both sides.
    tolerance : float
        Largest admissible distance between paired nodes (0 requires
        coincident nodes).
    structure_map : FieldMap, optional
        Structure displacement map. When given, only entries whose structure
        DOF is owned by this rank are kept.

    Returns
    -------
    InterfaceLocalMap

    Raises
    ------
    InterfaceMatchError
        If a fluid node has no structure node within ``tolerance``, or if two
        fluid nodes are paired with the same structure node.
    ValueError
        If ``tolerance`` is negative or the two sides have different dimensions.
    """
    if tolerance < 0:
        raise ValueError(f"Interface tolerance must be non-negative: {tolerance}")

    fluid_ids = fluid.dofs_on(flag)
    structure_ids = structure.dofs_on(flag)
    if fluid_ids.size == 0:
        logger.debug("No fluid DOF on interface marker %d", flag)
        return InterfaceLocalMap.empty()
    if structure_ids.size == 0:
        raise InterfaceMatchError(
            f"Interface marker {flag} tags {fluid_ids.size} fluid DOFs but no structure DOF"
        )
    if fluid.dim != structure.dim:
        raise ValueError(
            f"Fluid ({fluid.dim}D) and structure ({structure.dim}D) dimensions differ"
        )

    from scipy.spatial import cKDTree

    fluid_xyz = fluid.coordinates_of(fluid_ids)
    structure_xyz = structure.coordinates_of(structure_ids)
    tree = cKDTree(structure_xyz)
    distances, nearest = tree.query(fluid_xyz, k=1)

    far = np.flatnonzero(distances > tolerance)
    if far.size:
        worst = far[np.argmax(distances[far])]
        raise InterfaceMatchError(
            f"{far.size} fluid interface DOF(s) have no structure DOF within tolerance "
            f"{tolerance:g} (e.g. fluid DOF {int(fluid_ids[worst])} at "
            f"{fluid_xyz[worst].tolist()}, nearest distance {distances[worst]:.3e})"
        )

    paired = structure_ids[nearest]
    unique, counts = np.unique(paired, return_counts=True)
    if np.any(counts > 1):
        shared = unique[counts > 1]
        raise InterfaceMatchError(
            f"Structure interface DOF(s) {shared.tolist()} are paired with several fluid DOFs"
        )

    keep = np.ones(fluid_ids.size, dtype=bool)
    if structure_map is not None:
        keep = np.array([structure_map.owns_scalar(int(s)) for s in paired], dtype=bool)

    # dofs_on returns sorted ids, so entries are already in traversal order
    local_map = InterfaceLocalMap(
        fluid_dofs=fluid_ids[keep].astype(np.int64),
        structure_dofs=paired[keep].astype(np.int64),
        distances=np.asarray(distances[keep], dtype=float),
    )
    logger.debug(
        "Matched %d interface DOFs (%d kept on this rank), max distance %.3e",
        fluid_ids.size,
        len(local_map),
        float(np.max(distances)),
    )
    return local_map


@dataclass(frozen=True, eq=False)
class InterfaceDofMaps:
    """Vector interface DOFs of the fluid and structure fields on this rank.

    Both arrays are component-blocked: all entries of component 0, then
    component 1, and so on, in the traversal order of the local map.
    """

    fluid: np.ndarray
    structure: np.ndarray


def build_interface_dof_maps(
    local_map: InterfaceLocalMap, fluid_map: FieldMap, structure_map: FieldMap, comm
) -> InterfaceDofMaps:
    """Replicate the local interface map over vector components.

    The fluid side is built on every rank before the structure side; a
    barrier separates the two.
    """
    if fluid_map.components != structure_map.components:
        raise ValueError(
            f"Fluid velocity has {fluid_map.components} components but structure "
            f"displacement has {structure_map.components}"
        )
    fluid_dofs = fluid_map.vector_dofs(local_map.fluid_dofs)
    comm.Barrier()
    structure_dofs = structure_map.vector_dofs(local_map.structure_dofs)
    return InterfaceDofMaps(fluid=fluid_dofs, structure=structure_dofs)
