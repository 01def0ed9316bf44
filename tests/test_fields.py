"""
Tests for the field solvers and the exporters.
"""

import numpy as np
import pytest
import scipy.sparse as sp
from numpy.testing import assert_allclose

from conftest import INTERFACE, fluid_assembly, fluid_dofs, laplacian, make_fields
from fsi_blocks.core.bc import BoundaryConditionSet, MixedCondition
from fsi_blocks.core.exporter import InMemoryExporter
from fsi_blocks.core.maps import FieldMap
from fsi_blocks.solvers.fields import HarmonicExtensionSolver, OseenFluidSolver, StructureSolver


class TestStructureSolver:
    def test_operator_and_rhs(self, toy_fields):
        _, structure, _ = toy_fields
        structure.set_mass_coefficient(400.0)
        structure.build_operator()
        structure.apply_boundary_conditions()
        S = structure.get_operator().toarray()
        assert S[0, 0] == pytest.approx(402.0)
        assert_allclose(S[2], np.eye(6)[2])
        assert_allclose(S[5], np.eye(6)[5])

        structure.update_rhs(np.full(6, 2.0), time=0.0)
        structure.apply_rhs_boundary_conditions()
        assert_allclose(structure.get_rhs(), [3.0, 3.0, 0.0, 3.0, 3.0, 0.0])

    def test_time_dependent_forcing(self):
        dofs = fluid_dofs()
        solver = StructureSolver(
            FieldMap("d", 4), dofs, laplacian(4), sp.identity(4), forcing=lambda t: t * np.ones(4)
        )
        solver.update_rhs(np.zeros(4), time=2.0)
        assert_allclose(solver.get_rhs(), 2.0)

    def test_operator_requires_coefficient(self, toy_fields):
        _, structure, _ = toy_fields
        with pytest.raises(RuntimeError):
            structure.build_operator()

    def test_size_mismatch(self):
        with pytest.raises(ValueError):
            StructureSolver(FieldMap("d", 6, 2), fluid_dofs(), sp.identity(6), sp.identity(6))
        with pytest.raises(ValueError):
            StructureSolver(FieldMap("d", 8, 2), fluid_dofs(), sp.identity(6), sp.identity(8))

    def test_mixed_condition_added_once(self):
        dofs = fluid_dofs()
        bcs = BoundaryConditionSet([MixedCondition(INTERFACE, alpha=10.0)])
        solver = StructureSolver(FieldMap("d", 4), dofs, laplacian(4), sp.identity(4), bcs=bcs)
        solver.set_mass_coefficient(1.0)
        solver.build_operator()
        solver.apply_boundary_conditions()
        for _ in range(2):
            solver.update_rhs(np.zeros(4), 0.0)
            solver.apply_rhs_boundary_conditions()
        assert solver.get_operator()[2, 2] == pytest.approx(13.0)


class TestHarmonicExtension:
    def test_interface_rows(self, toy_fields):
        _, _, ale = toy_fields
        ale.build_operator()
        ale.apply_boundary_conditions()
        H = ale.get_operator().toarray()
        for row in (0, 2, 3, 4, 6, 7):
            assert_allclose(H[row], np.eye(8)[row])
        assert_allclose(H[1, :4], [-1.0, 2.0, -1.0, 0.0])
        assert_allclose(ale.interface_dofs, [2, 3, 6, 7])

    def test_interface_values_not_in_user_conditions(self, toy_fields):
        _, _, ale = toy_fields
        assert_allclose(ale.essential_dofs, [0, 4])
        ale.build_operator()
        ale.update_rhs(0.0)
        assert_allclose(ale.get_rhs(), 0.0)


class TestFluidSolver:
    def test_blocks(self, toy_fields):
        fluid, _, _ = toy_fields
        fluid.set_mass_coefficient(15.0)
        beta = np.arange(8.0)
        fluid.update_system(fluid.dofs.coordinates, beta, np.ones(8), time=0.0)
        blocks = fluid.get_blocks()
        assert blocks.momentum[0, 0] == pytest.approx(15.0 + 2.0)
        assert blocks.momentum[3, 3] == pytest.approx(15.0 + 2.0 + 0.3)
        assert_allclose(blocks.gradient.toarray(), blocks.divergence.toarray().T)
        assert_allclose(blocks.rhs_velocity, 1.5)
        assert blocks.stabilization.shape == (2, 2)
        assert fluid.get_operator().shape == (10, 10)

    def test_boundary_conditions(self, toy_fields):
        fluid, _, _ = toy_fields
        fluid.set_mass_coefficient(15.0)
        fluid.update_system(fluid.dofs.coordinates, np.zeros(8), np.ones(8), time=0.0)
        fluid.apply_boundary_conditions()
        blocks = fluid.get_blocks()
        assert_allclose(blocks.momentum.toarray()[4], np.eye(8)[4])
        assert blocks.rhs_velocity[4] == 0.0
        assert blocks.gradient[4].nnz == 0
        assert_allclose(fluid.get_rhs()[:8], blocks.rhs_velocity)

    def test_mesh_dependent_assembly(self):
        fluid, _, _ = make_fields(mesh_dependent=True)
        fluid.set_mass_coefficient(0.0)
        coords = fluid.dofs.coordinates * 2.0
        fluid.update_system(coords, np.zeros(8), np.zeros(8), time=0.0)
        assert fluid.get_blocks().momentum[0, 0] == pytest.approx(4.0)

    def test_bad_assembly_shape(self):
        def assemble(coordinates, beta):
            matrices = fluid_assembly()(coordinates, beta)
            return type(matrices)(
                mass=sp.identity(7),
                stiffness=matrices.stiffness,
                convection=matrices.convection,
                divergence=matrices.divergence,
                forcing=matrices.forcing,
            )

        fluid = OseenFluidSolver(FieldMap("u", 8, 2), FieldMap("p", 2), fluid_dofs(), assemble)
        fluid.set_mass_coefficient(1.0)
        with pytest.raises(ValueError, match="Fluid mass"):
            fluid.update_system(fluid.dofs.coordinates, np.zeros(8), np.zeros(8), 0.0)

    def test_blocks_before_update(self, toy_fields):
        fluid, _, _ = toy_fields
        with pytest.raises(RuntimeError):
            fluid.get_blocks()


class TestInMemoryExporter:
    def test_snapshots(self):
        exporter = InMemoryExporter()
        values = {"x": np.zeros(3)}
        exporter.add_field("x", FieldMap("x", 3), lambda: values["x"])
        exporter.post_process(0.0)
        values["x"] = np.ones(3)
        exporter.post_process(0.5)
        assert exporter.times == [0.0, 0.5]
        assert_allclose(exporter.snapshots["x"][0], 0.0)
        assert_allclose(exporter.latest("x"), 1.0)

    def test_errors(self):
        exporter = InMemoryExporter()
        exporter.add_field("x", FieldMap("x", 3), lambda: np.zeros(2))
        with pytest.raises(KeyError):
            exporter.add_field("x", FieldMap("x", 3), lambda: np.zeros(3))
        with pytest.raises(ValueError):
            exporter.post_process(0.0)
        with pytest.raises(KeyError):
            exporter.latest("x")
        exporter.close()
        with pytest.raises(RuntimeError):
            exporter.post_process(0.0)

    def test_harmonic_solver_size_check(self):
        with pytest.raises(ValueError):
            HarmonicExtensionSolver(FieldMap("a", 8, 2), fluid_dofs(), laplacian(3))
