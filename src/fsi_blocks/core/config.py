"""
Configuration of the monolithic FSI solver.

The configuration is a set of dataclasses validated at construction time.
It can be built in Python, from a dictionary, or from a YAML file:

    time:
      dt: 0.001
      t_zero: 0.0
      t_end: 0.1
      bdf_order: 2
    structure_time:
      method: newmark
      beta: 0.25
      gamma: 0.5
    ale_time:
      method: newmark
      gamma: 1.0
    interface:
      flag: 1
      tolerance: 1.0e-8
    newton:
      abs_tol: 1.0e-8
      rel_tol: 1.0e-8
      eta_max: 1.0e-6
      max_iter: 10
    linear_solver:
      type: gmres
      max_iter: 500
    preconditioner:
      type: facsi
      fluid_momentum: ilu
    output:
      residual_log_file: residualsNewton
      stop_on_failure: true
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional, Type, Union

import yaml

from fsi_blocks.core.time_advance import TimeAdvanceMethod

logger = logging.getLogger(__name__)


class LinearSolverType(str, Enum):
    """
    Krylov backends for the Newton linear step.

    Attributes
    ----------
    GMRES : str
        Restarted GMRES (scipy).
    BICGSTAB : str
        BiCGStab (scipy).
    PETSC : str
        PETSc KSP GMRES through petsc4py.
    DIRECT : str
        Sparse direct solve; the preconditioner is not used.
    """

    GMRES = "gmres"
    BICGSTAB = "bicgstab"
    PETSC = "petsc"
    DIRECT = "direct"


class PreconditionerType(str, Enum):
    """
    Monolithic preconditioners.

    Attributes
    ----------
    NONE : str
        Identity.
    EXACT : str
        Sparse LU of the whole monolithic operator.
    FACSI : str
        Factorised structure, geometry, fluid-multiplier preconditioner.
    """

    NONE = "none"
    EXACT = "exact"
    FACSI = "facsi"


class FluidMomentumApproximation(str, Enum):
    """Approximate inverse of the fluid momentum block inside FaCSI."""

    ILU = "ilu"
    LU = "lu"
    JACOBI = "jacobi"


def _parse_enum(enum_cls: Type[Enum], value, name: str):
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(str(value).lower())
    except ValueError:
        valid = [m.value for m in enum_cls]
        raise ValueError(f"Invalid {name}: '{value}'. Must be one of {valid}.")


def _require_positive(**values) -> None:
    for name, value in values.items():
        if value <= 0:
            raise ValueError(f"{name} must be positive, got {value}")


def _require_non_negative(**values) -> None:
    for name, value in values.items():
        if value < 0:
            raise ValueError(f"{name} must be non-negative, got {value}")


@dataclass
class TimeConfig:
    """Time interval and fluid BDF order."""

    dt: float = 0.001
    t_zero: float = 0.0
    t_end: float = 0.001
    bdf_order: int = 2

    def __post_init__(self):
        _require_positive(dt=self.dt)
        if self.t_end < self.t_zero:
            raise ValueError(f"t_end ({self.t_end}) must not precede t_zero ({self.t_zero})")
        if self.bdf_order not in (1, 2, 3):
            raise ValueError(f"bdf_order must be 1, 2 or 3, got {self.bdf_order}")
        if self.dt > self.t_end - self.t_zero > 0:
            logger.warning(
                "Time step %.3g is larger than the simulated interval %.3g",
                self.dt,
                self.t_end - self.t_zero,
            )


@dataclass
class StructureTimeConfig:
    """Time advance of the structure displacement (second order in time)."""

    method: TimeAdvanceMethod = TimeAdvanceMethod.NEWMARK
    beta: float = 0.25
    gamma: float = 0.5

    def __post_init__(self):
        self.method = _parse_enum(TimeAdvanceMethod, self.method, "structure_time.method")
        if self.method != TimeAdvanceMethod.NEWMARK:
            raise ValueError("The structure displacement requires the 'newmark' method")
        _require_positive(beta=self.beta, gamma=self.gamma)


@dataclass
class AleTimeConfig:
    """Time advance of the mesh displacement (first order in time)."""

    method: TimeAdvanceMethod = TimeAdvanceMethod.NEWMARK
    order: int = 1
    gamma: float = 1.0

    def __post_init__(self):
        self.method = _parse_enum(TimeAdvanceMethod, self.method, "ale_time.method")
        if self.method == TimeAdvanceMethod.NEWMARK and self.order != 1:
            raise ValueError("Newmark mesh displacement advance must have order 1")
        if self.method == TimeAdvanceMethod.BDF and self.order not in (1, 2, 3):
            raise ValueError(f"BDF order must be 1, 2 or 3, got {self.order}")
        _require_positive(gamma=self.gamma)


@dataclass
class InterfaceConfig:
    """Interface marker and matching tolerance."""

    flag: int = 1
    tolerance: float = 1.0e-8

    def __post_init__(self):
        _require_non_negative(tolerance=self.tolerance)


@dataclass
class NewtonConfig:
    """Newton iteration parameters.

    The iteration stops when ``||r|| <= abs_tol + rel_tol * ||r0||``.
    ``eta_max`` is the relative tolerance of every linear solve.
    """

    abs_tol: float = 1.0e-8
    rel_tol: float = 1.0e-8
    eta_max: float = 1.0e-6
    max_iter: int = 10
    line_search: bool = False
    ls_max_iter: int = 10
    ls_reduction: float = 0.5
    ls_c1: float = 1.0e-4

    def __post_init__(self):
        _require_non_negative(abs_tol=self.abs_tol, rel_tol=self.rel_tol)
        if self.abs_tol == 0 and self.rel_tol == 0:
            raise ValueError("At least one of abs_tol and rel_tol must be positive")
        _require_positive(eta_max=self.eta_max, max_iter=self.max_iter)
        if self.line_search:
            _require_positive(ls_max_iter=self.ls_max_iter, ls_c1=self.ls_c1)
        if not 0 < self.ls_reduction < 1:
            raise ValueError(f"ls_reduction must be in (0, 1), got {self.ls_reduction}")


@dataclass
class LinearSolverConfig:
    """Krylov solver of the Newton step."""

    type: LinearSolverType = LinearSolverType.GMRES
    rtol: float = 1.0e-6
    atol: float = 0.0
    max_iter: int = 500
    restart: int = 50

    def __post_init__(self):
        self.type = _parse_enum(LinearSolverType, self.type, "linear_solver.type")
        _require_positive(rtol=self.rtol, max_iter=self.max_iter, restart=self.restart)
        _require_non_negative(atol=self.atol)


@dataclass
class PreconditionerConfig:
    """Monolithic preconditioner."""

    type: PreconditionerType = PreconditionerType.FACSI
    fluid_momentum: FluidMomentumApproximation = FluidMomentumApproximation.ILU
    ilu_drop_tol: float = 1.0e-4
    ilu_fill_factor: float = 10.0

    def __post_init__(self):
        self.type = _parse_enum(PreconditionerType, self.type, "preconditioner.type")
        self.fluid_momentum = _parse_enum(
            FluidMomentumApproximation, self.fluid_momentum, "preconditioner.fluid_momentum"
        )
        _require_positive(ilu_drop_tol=self.ilu_drop_tol, ilu_fill_factor=self.ilu_fill_factor)


@dataclass
class OutputConfig:
    """Residual history file and failure policy."""

    residual_log_file: Optional[str] = None
    stop_on_failure: bool = True


@dataclass
class FSIConfig:
    """Complete configuration of a monolithic FSI run."""

    time: TimeConfig = field(default_factory=TimeConfig)
    structure_time: StructureTimeConfig = field(default_factory=StructureTimeConfig)
    ale_time: AleTimeConfig = field(default_factory=AleTimeConfig)
    interface: InterfaceConfig = field(default_factory=InterfaceConfig)
    newton: NewtonConfig = field(default_factory=NewtonConfig)
    linear_solver: LinearSolverConfig = field(default_factory=LinearSolverConfig)
    preconditioner: PreconditionerConfig = field(default_factory=PreconditionerConfig)
    output: OutputConfig = field(default_factory=OutputConfig)

    _SECTIONS = {
        "time": TimeConfig,
        "structure_time": StructureTimeConfig,
        "ale_time": AleTimeConfig,
        "interface": InterfaceConfig,
        "newton": NewtonConfig,
        "linear_solver": LinearSolverConfig,
        "preconditioner": PreconditionerConfig,
        "output": OutputConfig,
    }

    @classmethod
    def from_yaml(cls, yaml_path: Union[str, Path]) -> "FSIConfig":
        """Load configuration from YAML file.

        Parameters
        ----------
        yaml_path : str or Path
            Path to the YAML configuration file.

        Returns
        -------
        FSIConfig
            Validated configuration object.

        Raises
        ------
        FileNotFoundError
            If the YAML file does not exist.
        ValueError
            If the configuration is invalid.
        """
        yaml_path = Path(yaml_path)
        if not yaml_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {yaml_path}")

        with open(yaml_path, "r") as f:
            data = yaml.safe_load(f)

        return cls.from_dict(data or {})

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FSIConfig":
        """Create configuration from dictionary.

        Unknown sections or keys raise ``ValueError``; missing ones take
        their defaults.
        """
        unknown = set(data) - set(cls._SECTIONS)
        if unknown:
            raise ValueError(f"Unknown configuration sections: {sorted(unknown)}")
        sections = {}
        for name, section_cls in cls._SECTIONS.items():
            section_data = data.get(name) or {}
            try:
                sections[name] = section_cls(**section_data)
            except TypeError as exc:
                raise ValueError(f"Invalid keys in section '{name}': {exc}") from exc
        return cls(**sections)

    def to_dict(self) -> Dict[str, Any]:
        """Convert configuration to dictionary for serialization."""
        result: Dict[str, Any] = {}
        for name in self._SECTIONS:
            section = getattr(self, name)
            result[name] = {
                key: (value.value if isinstance(value, Enum) else value)
                for key, value in vars(section).items()
            }
        return result

    def save_yaml(self, yaml_path: Union[str, Path]) -> None:
        """Save configuration to YAML file.

        Parameters
        ----------
        yaml_path : str or Path
            Path to the output YAML file.
        """
        with open(yaml_path, "w") as f:
            yaml.dump(self.to_dict(), f, default_flow_style=False, sort_keys=False)

    def __str__(self) -> str:
        """Human-readable string representation."""
        lines = [
            "Monolithic FSI Configuration",
            "=" * 40,
            f"Time: {self.time.t_zero} -> {self.time.t_end}s (dt={self.time.dt}s, "
            f"BDF{self.time.bdf_order})",
            f"Structure: {self.structure_time.method.value} "
            f"(beta={self.structure_time.beta}, gamma={self.structure_time.gamma})",
            f"ALE: {self.ale_time.method.value} order {self.ale_time.order}",
            f"Interface: flag={self.interface.flag}, tol={self.interface.tolerance}",
            f"Newton: abs={self.newton.abs_tol}, rel={self.newton.rel_tol}, "
            f"max_iter={self.newton.max_iter}, line_search={self.newton.line_search}",
            f"Linear solver: {self.linear_solver.type.value}",
            f"Preconditioner: {self.preconditioner.type.value} "
            f"({self.preconditioner.fluid_momentum.value})",
        ]
        return "\n".join(lines)
