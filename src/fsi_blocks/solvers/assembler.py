"""
Composition of the monolithic block operator and right-hand side.
"""

import logging
from dataclasses import dataclass
from typing import Dict, Mapping, Optional, Tuple

import numpy as np
import scipy.sparse as sp

from fsi_blocks.core.maps import Block, MonolithicMap
from fsi_blocks.interface.coupling import CouplingBlocks
from fsi_blocks.solvers.fields import FluidBlocks

logger = logging.getLogger(__name__)

BlockKey = Tuple[Block, Block]


@dataclass(frozen=True, eq=False)
class MonolithicSystem:
    """Assembled operator and right-hand side over a ``MonolithicMap``."""

    operator: sp.csr_matrix
    rhs: np.ndarray
    monolithic_map: MonolithicMap

    def residual(self, solution: np.ndarray) -> np.ndarray:
        """``A x - b``."""
        return self.operator @ np.asarray(solution, dtype=float) - self.rhs


class MonolithicAssembler:
    """Compose field and coupling blocks over the monolithic index space.

    Block ``(row, col)`` is placed at the offsets of the two blocks in the
    map. Blocks of size zero and missing blocks are allowed.

    Parameters
    ----------
    monolithic_map : MonolithicMap
    """

    def __init__(self, monolithic_map: MonolithicMap):
        self.map = monolithic_map

    def compose(self, blocks: Mapping[BlockKey, Optional[sp.spmatrix]]) -> sp.csr_matrix:
        """Place sparse blocks into one CSR operator.

        Raises
        ------
        ValueError
            If a block shape does not match the sizes of its row and column blocks.
        """
        rows, cols, vals = [], [], []
        for (row_block, col_block), block in blocks.items():
            if block is None:
                continue
            expected = (self.map.block_size(row_block), self.map.block_size(col_block))
            if block.shape != expected:
                raise ValueError(
                    f"Block ({row_block.name}, {col_block.name}) has shape {block.shape}, "
                    f"expected {expected}"
                )
            coo = sp.coo_matrix(block)
            rows.append(coo.row.astype(np.int64) + self.map.offsets[row_block])
            cols.append(coo.col.astype(np.int64) + self.map.offsets[col_block])
            vals.append(coo.data.astype(float))
        size = self.map.size
        if not rows:
            return sp.csr_matrix((size, size))
        matrix = sp.coo_matrix(
            (np.concatenate(vals), (np.concatenate(rows), np.concatenate(cols))), shape=(size, size)
        ).tocsr()
        matrix.sum_duplicates()
        return matrix

    def assemble_operator(
        self,
        fluid: FluidBlocks,
        structure: sp.spmatrix,
        mesh: sp.spmatrix,
        coupling: CouplingBlocks,
    ) -> sp.csr_matrix:
        """Monolithic operator in block order (u, p, d, lambda, d_f)."""
        U, P, D, L, A = (
            Block.VELOCITY,
            Block.PRESSURE,
            Block.DISPLACEMENT,
            Block.MULTIPLIER,
            Block.MESH_DISPLACEMENT,
        )
        blocks: Dict[BlockKey, sp.spmatrix] = {
            (U, U): fluid.momentum,
            (U, P): fluid.gradient,
            (U, L): coupling.multiplier_to_fluid,
            (P, U): fluid.divergence,
            (P, P): fluid.stabilization,
            (D, D): structure,
            (D, L): coupling.multiplier_to_structure,
            (L, U): coupling.fluid_to_multiplier,
            (L, D): coupling.structure_to_multiplier,
            (A, D): coupling.structure_to_mesh,
            (A, A): mesh,
        }
        operator = self.compose(blocks)
        logger.debug("Monolithic operator assembled: %d x %d, nnz=%d", *operator.shape, operator.nnz)
        return operator

    def assemble_rhs(
        self,
        fluid: FluidBlocks,
        structure_rhs: np.ndarray,
        coupling_rhs: np.ndarray,
        mesh_rhs: Optional[np.ndarray] = None,
    ) -> np.ndarray:
        """Monolithic right-hand side; a missing mesh rhs is zero."""
        parts = {
            Block.VELOCITY: fluid.rhs_velocity,
            Block.PRESSURE: fluid.rhs_pressure,
            Block.DISPLACEMENT: structure_rhs,
            Block.MULTIPLIER: coupling_rhs,
        }
        if mesh_rhs is not None:
            parts[Block.MESH_DISPLACEMENT] = mesh_rhs
        return self.map.concatenate(parts)

    def assemble(
        self,
        fluid: FluidBlocks,
        structure: sp.spmatrix,
        structure_rhs: np.ndarray,
        mesh: sp.spmatrix,
        coupling: CouplingBlocks,
        coupling_rhs: np.ndarray,
        mesh_rhs: Optional[np.ndarray] = None,
    ) -> MonolithicSystem:
        return MonolithicSystem(
            operator=self.assemble_operator(fluid, structure, mesh, coupling),
            rhs=self.assemble_rhs(fluid, structure_rhs, coupling_rhs, mesh_rhs),
            monolithic_map=self.map,
        )
