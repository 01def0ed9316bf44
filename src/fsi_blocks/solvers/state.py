"""
Aggregate state of a monolithic FSI run.

The solver owns one ``FSIState`` for the whole simulation and passes it to
the components that read or update it. Vectors stored here are replaced,
never modified in place.
"""

from dataclasses import dataclass
from typing import Optional

import numpy as np

from fsi_blocks.core.maps import MonolithicMap
from fsi_blocks.core.mesh import MovingMesh
from fsi_blocks.core.time_advance import BDFTimeAdvance, NewmarkTimeAdvance, TimeAdvance


@dataclass
class FSIState:
    """Solution, histories and per-step extrapolations.

    Attributes
    ----------
    monolithic_map : MonolithicMap
    fluid_mesh : MovingMesh
        Fluid mesh, moved by every residual evaluation.
    fluid_time : BDFTimeAdvance
        History of the fluid velocity.
    structure_time : NewmarkTimeAdvance
        History of the structure displacement (order 2).
    ale_time : TimeAdvance
        History of the mesh displacement.
    solution : np.ndarray
        Current monolithic solution.
    time : float
        Time level of the step being solved (or last accepted).
    velocity_extrapolation : np.ndarray
        ``u*`` for the current step.
    mesh_velocity : np.ndarray
        ``w*`` for the current step.
    convective_velocity : np.ndarray
        ``beta* = u* - w*``.
    fluid_rhs_history : np.ndarray
        BDF history term of the fluid velocity.
    structure_rhs_history : np.ndarray
        Newmark history term of the structure acceleration (``rhs2``).
    coupling_rhs : np.ndarray
        Right-hand side of the velocity continuity rows.
    """

    monolithic_map: MonolithicMap
    fluid_mesh: MovingMesh
    fluid_time: BDFTimeAdvance
    structure_time: NewmarkTimeAdvance
    ale_time: TimeAdvance
    solution: np.ndarray
    time: float = 0.0
    step: int = 0
    velocity_extrapolation: Optional[np.ndarray] = None
    mesh_velocity: Optional[np.ndarray] = None
    convective_velocity: Optional[np.ndarray] = None
    fluid_rhs_history: Optional[np.ndarray] = None
    structure_rhs_history: Optional[np.ndarray] = None
    coupling_rhs: Optional[np.ndarray] = None

    def __post_init__(self):
        if np.shape(self.solution) != (self.monolithic_map.size,):
            raise ValueError(
                f"Solution must have shape ({self.monolithic_map.size},), "
                f"got {np.shape(self.solution)}"
            )

    @property
    def step_ready(self) -> bool:
        """Whether the per-step extrapolations have been computed."""
        return all(
            v is not None
            for v in (
                self.convective_velocity,
                self.fluid_rhs_history,
                self.structure_rhs_history,
                self.coupling_rhs,
            )
        )
