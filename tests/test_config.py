"""
Tests for the solver configuration.
"""

import pytest
import yaml

from fsi_blocks.core.config import (
    FluidMomentumApproximation,
    FSIConfig,
    LinearSolverConfig,
    LinearSolverType,
    NewtonConfig,
    PreconditionerType,
    TimeConfig,
)
from fsi_blocks.core.time_advance import TimeAdvanceMethod


class TestDefaults:
    def test_default_sections(self):
        config = FSIConfig()
        assert config.structure_time.method == TimeAdvanceMethod.NEWMARK
        assert config.linear_solver.type == LinearSolverType.GMRES
        assert config.preconditioner.type == PreconditionerType.FACSI
        assert config.output.stop_on_failure is True
        assert config.output.residual_log_file is None

    def test_str(self):
        text = str(FSIConfig())
        assert "Monolithic FSI Configuration" in text
        assert "facsi" in text


class TestFromDict:
    def test_strings_become_enums(self):
        config = FSIConfig.from_dict(
            {
                "linear_solver": {"type": "BiCGStab"},
                "preconditioner": {"type": "exact", "fluid_momentum": "jacobi"},
                "ale_time": {"method": "bdf", "order": 2},
            }
        )
        assert config.linear_solver.type == LinearSolverType.BICGSTAB
        assert config.preconditioner.fluid_momentum == FluidMomentumApproximation.JACOBI
        assert config.ale_time.method == TimeAdvanceMethod.BDF

    def test_missing_sections_use_defaults(self):
        config = FSIConfig.from_dict({"time": {"dt": 0.01, "t_end": 0.1}})
        assert config.time.dt == 0.01
        assert config.newton.max_iter == 10

    def test_unknown_section(self):
        with pytest.raises(ValueError, match="Unknown configuration sections"):
            FSIConfig.from_dict({"solver": {}})

    def test_unknown_key(self):
        with pytest.raises(ValueError, match="newton"):
            FSIConfig.from_dict({"newton": {"tolerance": 1.0}})

    def test_invalid_enum_lists_choices(self):
        with pytest.raises(ValueError, match="gmres"):
            FSIConfig.from_dict({"linear_solver": {"type": "cg"}})


class TestValidation:
    def test_time(self):
        with pytest.raises(ValueError):
            TimeConfig(dt=0.0)
        with pytest.raises(ValueError):
            TimeConfig(t_zero=1.0, t_end=0.5)
        with pytest.raises(ValueError):
            TimeConfig(bdf_order=4)

    def test_structure_needs_newmark(self):
        with pytest.raises(ValueError):
            FSIConfig.from_dict({"structure_time": {"method": "bdf"}})

    def test_ale_newmark_order(self):
        with pytest.raises(ValueError):
            FSIConfig.from_dict({"ale_time": {"method": "newmark", "order": 2}})

    def test_newton(self):
        with pytest.raises(ValueError):
            NewtonConfig(abs_tol=0.0, rel_tol=0.0)
        with pytest.raises(ValueError):
            NewtonConfig(max_iter=0)
        with pytest.raises(ValueError):
            NewtonConfig(ls_reduction=1.0)

    def test_linear_solver(self):
        with pytest.raises(ValueError):
            LinearSolverConfig(rtol=-1.0)
        with pytest.raises(ValueError):
            LinearSolverConfig(restart=0)

    def test_negative_interface_tolerance(self):
        with pytest.raises(ValueError):
            FSIConfig.from_dict({"interface": {"tolerance": -1.0}})


class TestYaml:
    def test_round_trip(self, tmp_path):
        config = FSIConfig.from_dict(
            {
                "time": {"dt": 0.005, "t_end": 0.05, "bdf_order": 3},
                "interface": {"flag": 20},
                "newton": {"line_search": True},
                "output": {"residual_log_file": "residualsNewton"},
            }
        )
        path = tmp_path / "fsi.yaml"
        config.save_yaml(path)

        data = yaml.safe_load(path.read_text())
        assert data["linear_solver"]["type"] == "gmres"
        assert list(data)[0] == "time"

        loaded = FSIConfig.from_yaml(path)
        assert loaded == config

    def test_empty_file(self, tmp_path):
        path = tmp_path / "empty.yaml"
        path.write_text("")
        assert FSIConfig.from_yaml(path) == FSIConfig()

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            FSIConfig.from_yaml(tmp_path / "missing.yaml")
