"""
DOF tables and the moving fluid mesh.

Mesh file I/O, partitioning and finite-element space construction are done
outside this package. What the coupled solver needs from them is captured
here: the coordinates of the scalar DOF nodes of a field, their global ids,
and the boundary markers carried by the partitioned mesh.
"""

import logging
from typing import Dict, Iterable, Optional

import numpy as np

logger = logging.getLogger(__name__)


class DofSet:
    """Scalar DOF nodes of one field on one rank.

    Parameters
    ----------
    coordinates : array_like, shape (n_nodes, dim)
        Coordinates of the DOF nodes.
    markers : Dict[int, Iterable[int]], optional
        Boundary marker to the global ids of the DOF nodes it tags.
    global_ids : array_like, shape (n_nodes,), optional
        Global scalar DOF id of every row of ``coordinates``. Defaults to
        ``0 .. n_nodes - 1`` (serial numbering).

    Examples
    --------
    >>> dofs = DofSet([[0.0, 0.0], [1.0, 0.0]], markers={1: [1]})
    >>> dofs.dofs_on(1).tolist()
    [1]
    """

    def __init__(
        self,
        coordinates,
        markers: Optional[Dict[int, Iterable[int]]] = None,
        global_ids=None,
    ):
        coords = np.atleast_2d(np.asarray(coordinates, dtype=float))
        if coords.size == 0:
            coords = coords.reshape(0, coords.shape[-1] if coords.ndim == 2 else 0)
        self.coordinates = coords
        if global_ids is None:
            global_ids = np.arange(coords.shape[0], dtype=np.int64)
        self.global_ids = np.asarray(global_ids, dtype=np.int64)
        if self.global_ids.shape != (coords.shape[0],):
            raise ValueError("global_ids must provide one id per coordinate row")
        if np.unique(self.global_ids).size != self.global_ids.size:
            raise ValueError("Duplicate global DOF ids in DofSet")

        self._row_of = {int(gid): row for row, gid in enumerate(self.global_ids)}
        self.markers: Dict[int, np.ndarray] = {}
        for marker, ids in (markers or {}).items():
            ids = np.unique(np.asarray(list(ids), dtype=np.int64))
            unknown = [int(i) for i in ids if int(i) not in self._row_of]
            if unknown:
                raise ValueError(f"Marker {marker} references unknown DOFs {unknown}")
            self.markers[int(marker)] = ids

    @property
    def dim(self) -> int:
        return self.coordinates.shape[1]

    def __len__(self) -> int:
        return self.coordinates.shape[0]

    def dofs_on(self, marker: int) -> np.ndarray:
        """Sorted global ids tagged with ``marker`` (empty if the marker is absent)."""
        return self.markers.get(int(marker), np.empty(0, dtype=np.int64))

    def coordinates_of(self, global_ids: Iterable[int]) -> np.ndarray:
        """Coordinates of the given global ids, in the given order."""
        rows = [self._row_of[int(gid)] for gid in global_ids]
        return self.coordinates[rows].reshape(len(rows), self.dim)


class MovingMesh:
    """Fluid mesh whose nodes follow the ALE displacement.

    Parameters
    ----------
    dofs : DofSet
        Reference (undeformed) DOF nodes of the fluid mesh. Displacements are
        component-blocked vectors of length ``len(dofs) * dofs.dim``.

    Notes
    -----
    ``move`` overwrites the current geometry; callers must not assume the
    mesh is unchanged between two residual evaluations.
    """

    def __init__(self, dofs: DofSet):
        self.dofs = dofs
        self.reference_coordinates = dofs.coordinates.copy()
        self._displacement = np.zeros(self.reference_coordinates.size)

    @property
    def coordinates(self) -> np.ndarray:
        """Current node coordinates, shape (n_nodes, dim)."""
        n_nodes, dim = self.reference_coordinates.shape
        return self.reference_coordinates + self._displacement.reshape(dim, n_nodes).T

    @property
    def displacement(self) -> np.ndarray:
        return self._displacement.copy()

    def move(self, displacement: np.ndarray) -> None:
        """Place the mesh at ``reference + displacement``."""
        displacement = np.asarray(displacement, dtype=float)
        if displacement.shape != (self.reference_coordinates.size,):
            raise ValueError(
                f"Mesh displacement must have {self.reference_coordinates.size} entries, "
                f"got {displacement.shape}"
            )
        self._displacement = displacement.copy()
        logger.debug("Mesh moved, max |d| = %.4e", np.max(np.abs(displacement), initial=0.0))
