"""
Error taxonomy for the monolithic FSI solver.

Construction-time failures (interface topology, numbering, preconditioner
layout) are raised as exceptions. Numerical non-convergence is reported
through status values by the solvers and never raised from here.
"""


class FSIError(RuntimeError):
    """Base class for fatal FSI setup errors."""


class InterfaceMatchError(FSIError):
    """No structure interface DOF lies within tolerance of a fluid interface DOF,
    or two fluid DOFs claim the same structure DOF."""


class NumberingConsistencyError(FSIError):
    """The global interface id of an entry differs from ``offset + local counter``.

    Parameters
    ----------
    rank : int
        Rank on which the violation was detected.
    local_index : int
        Position of the entry in the rank-local traversal.
    expected : int
        Expected global id (rank offset plus local counter).
    actual : int
        Global id actually assigned.
    """

    def __init__(self, rank: int, local_index: int, expected: int, actual: int):
        self.rank = rank
        self.local_index = local_index
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Interface numbering is not consistent on rank {rank}: entry {local_index} "
            f"has id {actual}, expected {expected}"
        )


class PreconditionerConfigurationError(FSIError):
    """The preconditioner index space does not match the monolithic operator."""


class SingularBlockError(PreconditionerConfigurationError):
    """A preconditioner block could not be factorised (singular or zero diagonal)."""
