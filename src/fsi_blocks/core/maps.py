"""
Field maps and the monolithic block map.

A ``FieldMap`` describes the global DOF numbering of one physical field.
Vector fields are numbered component-blocked: the DOF of scalar node ``i``
in component ``c`` is ``i + c * scalar_size``. ``MonolithicMap`` is the
ordered union of the five field blocks used by the coupled system.
"""

from dataclasses import dataclass, field
from enum import IntEnum
from typing import Dict, Iterable, Mapping, Optional

import numpy as np


class Block(IntEnum):
    """Fixed block order of the monolithic unknown."""

    VELOCITY = 0
    PRESSURE = 1
    DISPLACEMENT = 2
    MULTIPLIER = 3
    MESH_DISPLACEMENT = 4


@dataclass(frozen=True)
class FieldMap:
    """Global-to-local DOF numbering of one field.

    Parameters
    ----------
    name : str
        Field name (used in messages and by exporters).
    size : int
        Global number of DOFs, all components included.
    components : int
        Number of vector components (1 for scalar fields).
    owned : np.ndarray, optional
        Global DOF indices uniquely owned by this rank. ``None`` means the
        rank owns the whole field (serial run).
    """

    name: str
    size: int
    components: int = 1
    owned: Optional[np.ndarray] = field(default=None, compare=False)

    def __post_init__(self):
        if self.size < 0:
            raise ValueError(f"Field '{self.name}' cannot have negative size: {self.size}")
        if self.components < 1:
            raise ValueError(f"Field '{self.name}' needs at least one component")
        if self.size % self.components != 0:
            raise ValueError(
                f"Field '{self.name}' size {self.size} is not a multiple of "
                f"{self.components} components"
            )
        if self.owned is not None:
            owned = np.unique(np.asarray(self.owned, dtype=np.int64))
            if owned.size and (owned[0] < 0 or owned[-1] >= self.size):
                raise ValueError(f"Owned DOFs of field '{self.name}' are out of range")
            object.__setattr__(self, "owned", owned)

    @classmethod
    def from_ownership_range(
        cls, name: str, size: int, components: int, start: int, stop: int
    ) -> "FieldMap":
        """Build a map owning scalar nodes ``[start, stop)`` in every component."""
        scalar_size = size // components
        scalar = np.arange(start, stop, dtype=np.int64)
        owned = np.concatenate([scalar + c * scalar_size for c in range(components)])
        return cls(name, size, components, owned)

    @property
    def scalar_size(self) -> int:
        """Number of scalar nodes carrying the field."""
        return self.size // self.components

    @property
    def owned_indices(self) -> np.ndarray:
        """Global DOFs owned by this rank."""
        if self.owned is None:
            return np.arange(self.size, dtype=np.int64)
        return self.owned

    def component_dofs(self, scalar_dofs: Iterable[int], component: int) -> np.ndarray:
        """Global DOFs of ``scalar_dofs`` in one component."""
        if not 0 <= component < self.components:
            raise ValueError(f"Component {component} out of range for field '{self.name}'")
        return np.asarray(list(scalar_dofs), dtype=np.int64) + component * self.scalar_size

    def vector_dofs(self, scalar_dofs: Iterable[int]) -> np.ndarray:
        """Global DOFs of ``scalar_dofs`` in all components, component-blocked."""
        scalar = np.asarray(list(scalar_dofs), dtype=np.int64)
        return np.concatenate([scalar + c * self.scalar_size for c in range(self.components)])

    def owns_scalar(self, scalar_dof: int) -> bool:
        """Whether this rank owns the first component of ``scalar_dof``."""
        if self.owned is None:
            return 0 <= scalar_dof < self.scalar_size
        pos = np.searchsorted(self.owned, scalar_dof)
        return bool(pos < self.owned.size and self.owned[pos] == scalar_dof)


class MonolithicMap:
    """Ordered concatenation of the field maps of the coupled problem.

    Blocks are laid out as velocity, pressure, structure displacement,
    multiplier, mesh displacement. Empty blocks are allowed.

    Parameters
    ----------
    velocity, pressure, displacement, multiplier, mesh_displacement : FieldMap
        Field maps in block order.

    Attributes
    ----------
    fields : Dict[Block, FieldMap]
        Field map of every block.
    offsets : Dict[Block, int]
        First monolithic index of every block.
    size : int
        Total number of monolithic unknowns.
    """

    def __init__(
        self,
        velocity: FieldMap,
        pressure: FieldMap,
        displacement: FieldMap,
        multiplier: FieldMap,
        mesh_displacement: FieldMap,
    ):
        self.fields: Dict[Block, FieldMap] = {
            Block.VELOCITY: velocity,
            Block.PRESSURE: pressure,
            Block.DISPLACEMENT: displacement,
            Block.MULTIPLIER: multiplier,
            Block.MESH_DISPLACEMENT: mesh_displacement,
        }
        self.offsets: Dict[Block, int] = {}
        offset = 0
        for block in Block:
            self.offsets[block] = offset
            offset += self.fields[block].size
        self.size = offset

    def __getitem__(self, block: Block) -> FieldMap:
        return self.fields[block]

    def __len__(self) -> int:
        return self.size

    def block_size(self, block: Block) -> int:
        return self.fields[block].size

    def block_slice(self, block: Block) -> slice:
        start = self.offsets[block]
        return slice(start, start + self.fields[block].size)

    def zeros(self) -> np.ndarray:
        return np.zeros(self.size)

    def extract(self, vector: np.ndarray, block: Block) -> np.ndarray:
        """Copy of the entries of ``block`` in a monolithic vector."""
        self._check_vector(vector)
        return np.array(vector[self.block_slice(block)], dtype=float)

    def insert(self, vector: np.ndarray, block: Block, values: np.ndarray) -> np.ndarray:
        """Return a copy of ``vector`` with ``block`` replaced by ``values``."""
        self._check_vector(vector)
        values = np.asarray(values, dtype=float)
        if values.shape != (self.block_size(block),):
            raise ValueError(
                f"Block {block.name} expects {self.block_size(block)} values, got {values.shape}"
            )
        result = np.array(vector, dtype=float)
        result[self.block_slice(block)] = values
        return result

    def split(self, vector: np.ndarray) -> Dict[Block, np.ndarray]:
        return {block: self.extract(vector, block) for block in Block}

    def concatenate(self, parts: Mapping[Block, np.ndarray]) -> np.ndarray:
        """Build a monolithic vector from per-block values; missing blocks are zero."""
        result = self.zeros()
        for block, values in parts.items():
            values = np.asarray(values, dtype=float)
            if values.shape != (self.block_size(block),):
                raise ValueError(
                    f"Block {block.name} expects {self.block_size(block)} values, "
                    f"got {values.shape}"
                )
            result[self.block_slice(block)] = values
        return result

    def _check_vector(self, vector: np.ndarray) -> None:
        if np.shape(vector) != (self.size,):
            raise ValueError(
                f"Monolithic vector must have shape ({self.size},), got {np.shape(vector)}"
            )

    def __repr__(self) -> str:
        sizes = ", ".join(f"{b.name.lower()}={self.block_size(b)}" for b in Block)
        return f"<MonolithicMap size={self.size} ({sizes})>"
