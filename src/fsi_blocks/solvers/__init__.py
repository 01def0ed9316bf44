from .assembler import MonolithicAssembler, MonolithicSystem
from .fields import (
    FieldSolver,
    FluidBlocks,
    FluidMatrices,
    FluidSolver,
    HarmonicExtensionSolver,
    OseenFluidSolver,
    StructureSolver,
)
from .fsi import (
    FieldOperators,
    InitialCondition,
    InterfaceSetup,
    MonolithicFSISolver,
    StepResult,
    TimeAdvanceSetup,
)
from .linear import (
    DirectSolver,
    LinearSolver,
    LinearSolveResult,
    PETScSolver,
    ScipyKrylovSolver,
    create_linear_solver,
)
from .newton import NewtonProblem, NewtonResult, NewtonSolver, NewtonStatus
from .preconditioner import (
    BlockPreconditioner,
    ExactPreconditioner,
    FaCSIPreconditioner,
    IdentityPreconditioner,
    create_preconditioner,
)
from .residual import FSIResidual
from .residual_logger import NewtonResidualLogger
from .state import FSIState
