"""
Interface module for fsi-blocks.

Matching of fluid and structure interface DOFs, global numbering of the
Lagrange multipliers and assembly of the coupling operators.
"""

from .coupling import CouplingBlocks, build_coupling_blocks
from .matcher import InterfaceDofMaps, InterfaceLocalMap, build_interface_dof_maps, match_interface
from .numbering import InterfaceNumbering, number_interface

__all__ = [
    "CouplingBlocks",
    "build_coupling_blocks",
    "InterfaceDofMaps",
    "InterfaceLocalMap",
    "build_interface_dof_maps",
    "match_interface",
    "InterfaceNumbering",
    "number_interface",
]
