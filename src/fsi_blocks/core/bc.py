"""
Boundary conditions tagged by mesh markers.

Conditions are resolved against a field (``update``) before they are applied
to operators and vectors. Application never mutates its input: matrices and
vectors are returned as new objects.
"""

from abc import ABC, abstractmethod
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Union

import numpy as np
import scipy.sparse as sp

from fsi_blocks.core.maps import FieldMap
from fsi_blocks.core.mesh import DofSet

BCValue = Union[float, Callable[[float, np.ndarray], np.ndarray]]


def zero_rows(matrix: sp.spmatrix, rows: Iterable[int], diagonal: Optional[float] = None):
    """Return a CSR copy of ``matrix`` with ``rows`` cleared.

    Parameters
    ----------
    matrix : scipy.sparse matrix
    rows : Iterable[int]
        Row indices to clear.
    diagonal : float, optional
        Value placed on the diagonal of the cleared rows (square matrices only).

    Returns
    -------
    scipy.sparse.csr_matrix
    """
    A = sp.csr_matrix(matrix, dtype=float, copy=True)
    rows = np.unique(np.asarray(list(rows), dtype=np.int64))
    if rows.size == 0:
        return A
    entry_rows = np.repeat(np.arange(A.shape[0]), np.diff(A.indptr))
    A.data[np.isin(entry_rows, rows)] = 0.0
    if diagonal is not None:
        if A.shape[0] != A.shape[1]:
            raise ValueError("A diagonal value can only be set on a square matrix")
        A = A + sp.csr_matrix(
            (np.full(rows.size, float(diagonal)), (rows, rows)), shape=A.shape
        )
    A.eliminate_zeros()
    return A


class BoundaryCondition(ABC):
    """Condition imposed on the DOFs tagged by a boundary marker.

    Parameters
    ----------
    marker : int
        Boundary marker of the DOF nodes.
    value : float or callable
        Constant, or ``value(t, x)`` returning an array of shape
        ``(n_nodes,)`` or ``(n_nodes, n_components)`` for node coordinates
        ``x`` of shape ``(n_nodes, dim)``.
    components : Sequence[int], optional
        Components the condition acts on. Defaults to all components.
    """

    def __init__(self, marker: int, value: BCValue = 0.0, components: Optional[Sequence[int]] = None):
        self.marker = int(marker)
        self.value = value
        self.components = None if components is None else tuple(int(c) for c in components)
        self.dofs: np.ndarray = np.empty(0, dtype=np.int64)
        self._coords: np.ndarray = np.empty((0, 0))
        self._n_nodes = 0
        self._updated = False

    def update(self, dofs: DofSet, field_map: FieldMap) -> None:
        """Resolve the marker into global DOFs of ``field_map``."""
        components = self.components or tuple(range(field_map.components))
        for c in components:
            if not 0 <= c < field_map.components:
                raise ValueError(
                    f"Component {c} out of range for field '{field_map.name}' "
                    f"({field_map.components} components)"
                )
        nodes = dofs.dofs_on(self.marker)
        self._n_nodes = nodes.size
        self._coords = dofs.coordinates_of(nodes)
        self.dofs = (
            np.concatenate([field_map.component_dofs(nodes, c) for c in components])
            if nodes.size
            else np.empty(0, dtype=np.int64)
        )
        self._n_components = len(components)
        self._updated = True

    @property
    def updated(self) -> bool:
        return self._updated

    def values(self, time: float) -> np.ndarray:
        """Values aligned with ``self.dofs`` (component-blocked)."""
        if not self._updated:
            raise RuntimeError(f"Boundary condition on marker {self.marker} was not updated")
        if callable(self.value):
            raw = np.asarray(self.value(time, self._coords), dtype=float)
            if raw.ndim == 1:
                raw = np.tile(raw.reshape(-1, 1), (1, self._n_components))
            if raw.shape != (self._n_nodes, self._n_components):
                raise ValueError(
                    f"Boundary value on marker {self.marker} must have shape "
                    f"({self._n_nodes}, {self._n_components}), got {raw.shape}"
                )
            return raw.T.reshape(-1)
        return np.full(self.dofs.size, float(self.value))

    @abstractmethod
    def apply_matrix(self, matrix: sp.spmatrix) -> sp.csr_matrix:
        ...

    @abstractmethod
    def apply_vector(self, vector: np.ndarray, time: float, scale: float = 1.0) -> np.ndarray:
        ...


class EssentialCondition(BoundaryCondition):
    """Prescribed value (Dirichlet): operator rows become identity rows."""

    def apply_matrix(self, matrix: sp.spmatrix) -> sp.csr_matrix:
        return zero_rows(matrix, self.dofs, diagonal=1.0)

    def apply_vector(self, vector: np.ndarray, time: float, scale: float = 1.0) -> np.ndarray:
        result = np.array(vector, dtype=float)
        result[self.dofs] = scale * self.values(time)
        return result


class NaturalCondition(BoundaryCondition):
    """Nodal load (Neumann): added to the right-hand side only."""

    def apply_matrix(self, matrix: sp.spmatrix) -> sp.csr_matrix:
        return sp.csr_matrix(matrix, dtype=float, copy=True)

    def apply_vector(self, vector: np.ndarray, time: float, scale: float = 1.0) -> np.ndarray:
        result = np.array(vector, dtype=float)
        np.add.at(result, self.dofs, scale * self.values(time))
        return result


class MixedCondition(BoundaryCondition):
    """Robin condition ``alpha * u + g``: ``alpha`` on the diagonal, ``g`` on the rhs.

    Parameters
    ----------
    alpha : float
        Coefficient added to the diagonal of the tagged DOFs.
    """

    def __init__(
        self,
        marker: int,
        alpha: float,
        value: BCValue = 0.0,
        components: Optional[Sequence[int]] = None,
    ):
        super().__init__(marker, value, components)
        self.alpha = float(alpha)

    def apply_matrix(self, matrix: sp.spmatrix) -> sp.csr_matrix:
        A = sp.csr_matrix(matrix, dtype=float, copy=True)
        diag = sp.csr_matrix(
            (np.full(self.dofs.size, self.alpha), (self.dofs, self.dofs)), shape=A.shape
        )
        return (A + diag).tocsr()

    def apply_vector(self, vector: np.ndarray, time: float, scale: float = 1.0) -> np.ndarray:
        result = np.array(vector, dtype=float)
        np.add.at(result, self.dofs, scale * self.values(time))
        return result


class BoundaryConditionSet:
    """Ordered collection of boundary conditions for one field.

    Essential conditions are applied last so that their rows are identity
    rows whatever the other conditions added.

    Parameters
    ----------
    conditions : Iterable[BoundaryCondition], optional
    """

    def __init__(self, conditions: Optional[Iterable[BoundaryCondition]] = None):
        self.conditions: List[BoundaryCondition] = list(conditions or [])
        self._update_done = False

    def add(self, condition: BoundaryCondition) -> None:
        self.conditions.append(condition)
        self._update_done = False

    def __iter__(self):
        return iter(self.conditions)

    def __len__(self) -> int:
        return len(self.conditions)

    def update(self, dofs: DofSet, field_map: FieldMap) -> None:
        """Resolve every condition against the field."""
        for condition in self.conditions:
            condition.update(dofs, field_map)
        self._update_done = True

    @property
    def update_done(self) -> bool:
        return self._update_done

    def _ordered(self) -> List[BoundaryCondition]:
        if not self._update_done:
            raise RuntimeError("BoundaryConditionSet.update must be called before apply")
        essential = [c for c in self.conditions if isinstance(c, EssentialCondition)]
        others = [c for c in self.conditions if not isinstance(c, EssentialCondition)]
        return others + essential

    @property
    def essential_dofs(self) -> np.ndarray:
        """Sorted DOFs constrained by essential conditions."""
        dofs = [c.dofs for c in self.conditions if isinstance(c, EssentialCondition)]
        if not dofs:
            return np.empty(0, dtype=np.int64)
        return np.unique(np.concatenate(dofs))

    def essential_values(self, time: float) -> Dict[int, float]:
        """Prescribed value of every essential DOF.

        Raises
        ------
        ValueError
            If two essential conditions prescribe different values on one DOF.
        """
        fixed: Dict[int, float] = {}
        for condition in self._ordered():
            if not isinstance(condition, EssentialCondition):
                continue
            for dof, value in zip(condition.dofs, condition.values(time)):
                dof = int(dof)
                if dof in fixed and not np.isclose(fixed[dof], value):
                    raise ValueError(
                        f"Conflicting values for DOF {dof}: {fixed[dof]} vs {value}"
                    )
                fixed[dof] = float(value)
        return fixed

    def apply(self, target, time: float = 0.0, scale: float = 1.0):
        """Apply all conditions to a sparse operator or a vector.

        Parameters
        ----------
        target : scipy.sparse matrix or np.ndarray
        time : float
            Time at which boundary values are evaluated.
        scale : float
            Factor applied to boundary values (0 yields homogeneous rows).

        Returns
        -------
        scipy.sparse.csr_matrix or np.ndarray
            New object with the conditions applied.
        """
        if sp.issparse(target):
            result = sp.csr_matrix(target, dtype=float, copy=True)
            for condition in self._ordered():
                result = condition.apply_matrix(result)
            return result
        result = np.array(target, dtype=float)
        for condition in self._ordered():
            result = condition.apply_vector(result, time, scale)
        return result

    def impose_essential(self, vector: np.ndarray, time: float, scale: float = 1.0) -> np.ndarray:
        """Write essential values into a solution vector, leaving other entries alone."""
        result = np.array(vector, dtype=float)
        for dof, value in self.essential_values(time).items():
            result[dof] = scale * value
        return result
