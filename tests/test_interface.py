"""
Tests for interface matching and the global multiplier numbering.
"""

import numpy as np
import pytest
from numpy.testing import assert_allclose, assert_array_equal

from conftest import INTERFACE, FakeComm, fluid_dofs, structure_dofs
from fsi_blocks.core.errors import InterfaceMatchError, NumberingConsistencyError
from fsi_blocks.core.maps import FieldMap
from fsi_blocks.core.mesh import DofSet
from fsi_blocks.interface.matcher import (
    InterfaceLocalMap,
    build_interface_dof_maps,
    match_interface,
)
from fsi_blocks.interface.numbering import number_interface


def line(n, marker, shift=0.0):
    coords = [[float(i) + shift, 0.0] for i in range(n)]
    return DofSet(coords, markers={marker: range(n)})


class TestMatchInterface:
    def test_toy_interface(self):
        local_map = match_interface(fluid_dofs(), structure_dofs(), INTERFACE, 1e-8)
        assert local_map.as_dict() == {2: 0, 3: 1}
        assert_allclose(local_map.distances, 0.0)

    def test_within_tolerance(self):
        local_map = match_interface(fluid_dofs(), structure_dofs(1e-6), INTERFACE, 1e-5)
        assert len(local_map) == 2
        assert np.all(local_map.distances <= 1e-5)

    def test_zero_tolerance_requires_coincident_nodes(self):
        assert len(match_interface(fluid_dofs(), structure_dofs(), INTERFACE, 0.0)) == 2
        with pytest.raises(InterfaceMatchError, match="within tolerance"):
            match_interface(fluid_dofs(), structure_dofs(1e-6), INTERFACE, 0.0)

    def test_pairing_is_injective(self):
        fluid = DofSet([[0.0, 0.0], [0.1, 0.0]], markers={1: [0, 1]})
        structure = DofSet([[0.05, 0.0], [5.0, 0.0]], markers={1: [0, 1]})
        with pytest.raises(InterfaceMatchError, match="several fluid DOFs"):
            match_interface(fluid, structure, 1, 1.0)

    def test_missing_structure_side(self):
        structure = DofSet([[2.0, 0.0]])
        with pytest.raises(InterfaceMatchError):
            match_interface(fluid_dofs(), structure, INTERFACE, 1e-8)

    def test_no_fluid_interface_dofs(self):
        local_map = match_interface(fluid_dofs(), structure_dofs(), 99, 1e-8)
        assert len(local_map) == 0

    def test_invalid_arguments(self):
        with pytest.raises(ValueError):
            match_interface(fluid_dofs(), structure_dofs(), INTERFACE, -1.0)
        structure_3d = DofSet([[2.0, 0.0, 0.0]], markers={INTERFACE: [0]})
        with pytest.raises(ValueError):
            match_interface(fluid_dofs(), structure_3d, INTERFACE, 1e-8)

    def test_ownership_filter(self):
        structure_map = FieldMap.from_ownership_range("d", 6, 2, 0, 1)
        local_map = match_interface(
            fluid_dofs(), structure_dofs(), INTERFACE, 1e-8, structure_map=structure_map
        )
        assert local_map.as_dict() == {2: 0}

    def test_entries_sorted_by_fluid_dof(self):
        fluid = DofSet([[3.0, 0.0], [1.0, 0.0], [2.0, 0.0]], markers={1: [0, 1, 2]})
        structure = line(4, 1)
        local_map = match_interface(fluid, structure, 1, 1e-8)
        assert_array_equal(local_map.fluid_dofs, [0, 1, 2])
        assert_array_equal(local_map.structure_dofs, [3, 1, 2])


class TestInterfaceDofMaps:
    def test_vector_dofs(self, comm):
        local_map = match_interface(fluid_dofs(), structure_dofs(), INTERFACE, 1e-8)
        maps = build_interface_dof_maps(
            local_map, FieldMap("u", 8, 2), FieldMap("d", 6, 2), comm
        )
        assert_array_equal(maps.fluid, [2, 3, 6, 7])
        assert_array_equal(maps.structure, [0, 1, 3, 4])
        assert comm.barriers == 1

    def test_component_mismatch(self, comm):
        with pytest.raises(ValueError):
            build_interface_dof_maps(
                InterfaceLocalMap.empty(), FieldMap("u", 8, 2), FieldMap("d", 9, 3), comm
            )


class TestNumbering:
    def test_serial_numbering(self, comm):
        local_map = match_interface(fluid_dofs(), structure_dofs(), INTERFACE, 1e-8)
        numbering = number_interface(local_map, 2, comm)
        assert_array_equal(numbering.ids, [0, 1])
        assert numbering.offset == 0
        assert numbering.total_count == 2
        assert numbering.multiplier_map.size == 4
        assert_array_equal(numbering.multiplier_dofs(1), [2, 3])
        assert_array_equal(numbering.multiplier_vector_dofs(), [0, 1, 2, 3])

    def test_two_ranks_form_a_bijection(self):
        fluid = line(4, 5)
        structure = line(4, 5)
        ids = {}
        multipliers = []
        for rank, (start, stop) in enumerate([(0, 2), (2, 4)]):
            structure_map = FieldMap.from_ownership_range("d", 8, 2, start, stop)
            local_map = match_interface(fluid, structure, 5, 1e-8, structure_map=structure_map)
            comm = FakeComm(rank=rank, size=2, remote=[{1 - rank: 2}])
            numbering = number_interface(local_map, 2, comm)
            assert numbering.offset == 2 * rank
            assert numbering.total_count == 4
            assert numbering.multiplier_map.size == 8
            ids.update(dict(zip(local_map.fluid_dofs.tolist(), numbering.ids.tolist())))
            multipliers.append(numbering.multiplier_vector_dofs())
            assert_array_equal(numbering.multiplier_map.owned_indices, np.sort(multipliers[-1]))

        assert ids == {0: 0, 1: 1, 2: 2, 3: 3}
        assert_array_equal(np.sort(np.concatenate(multipliers)), np.arange(8))

    def test_rank_without_interface(self):
        comm = FakeComm(rank=1, size=2, remote=[{0: 3}])
        numbering = number_interface(InterfaceLocalMap.empty(), 3, comm)
        assert numbering.local_count == 0
        assert numbering.offset == 3
        assert numbering.multiplier_map.size == 9
        assert numbering.multiplier_vector_dofs().size == 0

    def test_inconsistent_traversal_order(self, comm):
        local_map = InterfaceLocalMap(
            fluid_dofs=np.array([3, 2]),
            structure_dofs=np.array([1, 0]),
            distances=np.zeros(2),
        )
        with pytest.raises(NumberingConsistencyError) as info:
            number_interface(local_map, 2, comm)
        assert info.value.rank == 0
        assert info.value.local_index == 0
        assert info.value.expected == 0
        assert info.value.actual == 1

    def test_invalid_dim(self, comm):
        with pytest.raises(ValueError):
            number_interface(InterfaceLocalMap.empty(), 0, comm)
