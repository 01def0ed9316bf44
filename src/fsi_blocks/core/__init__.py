"""
Core module for fsi-blocks.

Provides field maps, DOF tables, boundary conditions, time advance,
exporters, communicator helpers and configuration.
"""

from .bc import (
    BoundaryCondition,
    BoundaryConditionSet,
    EssentialCondition,
    MixedCondition,
    NaturalCondition,
    zero_rows,
)
from .config import (
    FluidMomentumApproximation,
    FSIConfig,
    LinearSolverType,
    PreconditionerType,
)
from .errors import (
    FSIError,
    InterfaceMatchError,
    NumberingConsistencyError,
    PreconditionerConfigurationError,
    SingularBlockError,
)
from .exporter import Exporter, InMemoryExporter
from .maps import Block, FieldMap, MonolithicMap
from .mesh import DofSet, MovingMesh
from .time_advance import (
    BDFTimeAdvance,
    NewmarkTimeAdvance,
    TimeAdvance,
    TimeAdvanceMethod,
    create_time_advance,
)

__all__ = [
    "BoundaryCondition",
    "BoundaryConditionSet",
    "EssentialCondition",
    "MixedCondition",
    "NaturalCondition",
    "zero_rows",
    "FluidMomentumApproximation",
    "FSIConfig",
    "LinearSolverType",
    "PreconditionerType",
    "FSIError",
    "InterfaceMatchError",
    "NumberingConsistencyError",
    "PreconditionerConfigurationError",
    "SingularBlockError",
    "Exporter",
    "InMemoryExporter",
    "Block",
    "FieldMap",
    "MonolithicMap",
    "DofSet",
    "MovingMesh",
    "BDFTimeAdvance",
    "NewmarkTimeAdvance",
    "TimeAdvance",
    "TimeAdvanceMethod",
    "create_time_advance",
]
