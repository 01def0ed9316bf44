"""
fsi-blocks: monolithic fluid-structure interaction with interface Lagrange
multipliers and block preconditioning.
"""

from fsi_blocks.core import FSIConfig
from fsi_blocks.solvers import MonolithicFSISolver

__version__ = "0.1.0"

__all__ = ["FSIConfig", "MonolithicFSISolver", "__version__"]
