"""
Shared fixtures: a communicator double and a small coupled problem.

The toy problem is two-dimensional. The fluid has four velocity nodes on
``y = 0`` at ``x = 0, 1, 2, 3`` and two pressure DOFs acting on the
x-velocity of the first two nodes. The structure has three nodes at
``x = 2, 3, 4``; its first two nodes coincide with the last two fluid
nodes and form the interface (marker 7). The structure is clamped at
``x = 4`` (marker 3); the fluid y-velocity and the mesh displacement are
fixed at ``x = 0`` (marker 1).
"""

from typing import Any, Dict, List, Optional

import numpy as np
import pytest
import scipy.sparse as sp

from fsi_blocks.core.bc import BoundaryConditionSet, EssentialCondition
from fsi_blocks.core.config import FSIConfig
from fsi_blocks.core.maps import FieldMap
from fsi_blocks.core.mesh import DofSet
from fsi_blocks.solvers.fields import (
    FluidMatrices,
    HarmonicExtensionSolver,
    OseenFluidSolver,
    StructureSolver,
)

INTERFACE = 7
INLET = 1
CLAMP = 3


class FakeComm:
    """Single-process stand-in for an mpi4py communicator.

    Parameters
    ----------
    rank, size : int
        Emulated rank and communicator size.
    remote : list of dict, optional
        For every ``allgather`` call, in order, the values contributed by the
        other ranks (``{rank: value}``).
    """

    def __init__(self, rank: int = 0, size: int = 1, remote: Optional[List[Dict[int, Any]]] = None):
        self.rank = rank
        self.size = size
        self.remote = list(remote or [])
        self.barriers = 0

    def Get_rank(self) -> int:
        return self.rank

    def Get_size(self) -> int:
        return self.size

    def allgather(self, value):
        if self.size == 1:
            return [value]
        peers = self.remote.pop(0)
        return [value if r == self.rank else peers[r] for r in range(self.size)]

    def bcast(self, value, root: int = 0):
        return value

    def Barrier(self) -> None:
        self.barriers += 1


def laplacian(n: int) -> sp.csr_matrix:
    return sp.diags([-np.ones(n - 1), 2.0 * np.ones(n), -np.ones(n - 1)], [-1, 0, 1], format="csr")


def fluid_dofs() -> DofSet:
    coords = [[0.0, 0.0], [1.0, 0.0], [2.0, 0.0], [3.0, 0.0]]
    return DofSet(coords, markers={INTERFACE: [2, 3], INLET: [0]})


def structure_dofs(shift: float = 0.0) -> DofSet:
    coords = np.array([[2.0, 0.0], [3.0, 0.0], [4.0, 0.0]]) + shift
    return DofSet(coords, markers={INTERFACE: [0, 1], CLAMP: [2]})


def fluid_assembly(mesh_dependent: bool = False, forcing: float = 0.5):
    """Assembly callback of the toy fluid."""
    stiffness = sp.block_diag([laplacian(4), laplacian(4)], format="csr")
    divergence = sp.csr_matrix(([1.0, 1.0], ([0, 1], [0, 1])), shape=(2, 8))

    def assemble(coordinates, beta):
        scale = np.ptp(coordinates[:, 0]) / 3.0 if mesh_dependent else 1.0
        return FluidMatrices(
            mass=sp.identity(8, format="csr"),
            stiffness=scale * stiffness,
            convection=sp.diags(0.1 * np.asarray(beta)),
            divergence=divergence,
            forcing=forcing * np.ones(8),
        )

    return assemble


def make_fields(
    mesh_dependent: bool = False,
    structure_forcing: float = 1.0,
    structure_shift: float = 0.0,
    ale_interface: Optional[int] = INTERFACE,
):
    """Fluid, structure and mesh-motion solvers of the toy problem."""
    fdofs = fluid_dofs()
    sdofs = structure_dofs(structure_shift)
    velocity_map = FieldMap("fluid_velocity", 8, components=2)
    pressure_map = FieldMap("fluid_pressure", 2)
    structure_map = FieldMap("structure_displacement", 6, components=2)
    mesh_map = FieldMap("mesh_displacement", 8, components=2)

    fluid = OseenFluidSolver(
        velocity_map,
        pressure_map,
        fdofs,
        fluid_assembly(mesh_dependent),
        bcs=BoundaryConditionSet([EssentialCondition(INLET, 0.0, components=[1])]),
    )
    structure = StructureSolver(
        structure_map,
        sdofs,
        stiffness=sp.block_diag([laplacian(3), laplacian(3)], format="csr"),
        mass=sp.identity(6, format="csr"),
        bcs=BoundaryConditionSet([EssentialCondition(CLAMP, 0.0)]),
        forcing=structure_forcing * np.ones(6),
    )
    ale = HarmonicExtensionSolver(
        mesh_map,
        fdofs,
        laplacian(4),
        bcs=BoundaryConditionSet([EssentialCondition(INLET, 0.0)]),
        interface_flag=ale_interface,
    )
    return fluid, structure, ale


def make_config(**overrides) -> FSIConfig:
    data = {
        "time": {"dt": 0.1, "t_zero": 0.0, "t_end": 0.3, "bdf_order": 2},
        "interface": {"flag": INTERFACE, "tolerance": 1.0e-8},
        "newton": {"abs_tol": 1.0e-9, "rel_tol": 1.0e-9, "eta_max": 1.0e-10, "max_iter": 20},
        "linear_solver": {"type": "gmres", "max_iter": 200, "restart": 50},
        "preconditioner": {"type": "facsi", "fluid_momentum": "lu"},
    }
    for section, values in overrides.items():
        data.setdefault(section, {}).update(values)
    return FSIConfig.from_dict(data)


@pytest.fixture
def comm():
    return FakeComm()


@pytest.fixture
def toy_fields():
    return make_fields()
