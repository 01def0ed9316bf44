"""
Time advance schemes and their solution histories.

``BDFTimeAdvance`` serves first-order-in-time fields (fluid velocity),
``NewmarkTimeAdvance`` serves the structure displacement (order 2) and the
ALE displacement (order 1). Both expose the same quantities to the coupled
solver:

- ``extrapolate()``: predicted value at the new time level,
- ``rhs_contribution(derivative)``: history part of a discrete derivative,
- ``first_derivative_coefficient`` / ``second_derivative_coefficient``:
  factor multiplying the new solution in that derivative,
- ``shift(solution)``: accept a time step.

A discrete derivative at the new level is therefore
``coefficient * u_new - rhs_contribution(derivative)``.
"""

import logging
from abc import ABC, abstractmethod
from enum import Enum
from typing import List, Optional, Tuple

import numpy as np

logger = logging.getLogger(__name__)


class TimeAdvanceMethod(str, Enum):
    """Available time advance schemes."""

    BDF = "bdf"
    NEWMARK = "newmark"


# BDF coefficients: alpha * u^{n+1} - sum_i beta_i u^{n-i} ~ dt * du/dt
_BDF_ALPHA = {1: 1.0, 2: 3.0 / 2.0, 3: 11.0 / 6.0}
_BDF_BETA = {
    1: (1.0,),
    2: (2.0, -1.0 / 2.0),
    3: (3.0, -3.0 / 2.0, 1.0 / 3.0),
}
# Extrapolation u^{n+1} ~ sum_i gamma_i u^{n-i}
_BDF_EXTRAPOLATION = {
    1: (1.0,),
    2: (2.0, -1.0),
    3: (3.0, -3.0, 1.0),
}


class TimeAdvance(ABC):
    """Common state of a time advance scheme.

    Parameters
    ----------
    order : int
        Scheme order.
    dt : float
        Time step size.
    """

    def __init__(self, order: int, dt: float):
        if dt <= 0:
            raise ValueError(f"Time step must be positive: {dt}")
        self.order = int(order)
        self.dt = float(dt)
        self._history: List[np.ndarray] = []

    @property
    def initialized(self) -> bool:
        return bool(self._history)

    @property
    def history(self) -> Tuple[np.ndarray, ...]:
        """Stored snapshots, newest first."""
        self._check_initialized()
        return tuple(h.copy() for h in self._history)

    @property
    def solution(self) -> np.ndarray:
        """Newest accepted solution."""
        self._check_initialized()
        return self._history[0].copy()

    def _check_initialized(self) -> None:
        if not self._history:
            raise RuntimeError(f"{type(self).__name__} used before initialize()")

    def first_derivative(self, solution: np.ndarray) -> np.ndarray:
        """Discrete first derivative at the new time level."""
        return self.first_derivative_coefficient * np.asarray(solution) - self.rhs_contribution(1)

    @property
    @abstractmethod
    def first_derivative_coefficient(self) -> float:
        ...

    @property
    def second_derivative_coefficient(self) -> float:
        raise ValueError(f"{type(self).__name__} of order {self.order} has no second derivative")

    @abstractmethod
    def initialize(self, initial: np.ndarray, *derivatives: np.ndarray) -> None:
        ...

    @abstractmethod
    def shift(self, solution: np.ndarray) -> None:
        ...

    @abstractmethod
    def extrapolate(self) -> np.ndarray:
        ...

    @abstractmethod
    def extrapolate_first_derivative(self) -> np.ndarray:
        ...

    @abstractmethod
    def rhs_contribution(self, derivative: int = 1) -> np.ndarray:
        ...


class BDFTimeAdvance(TimeAdvance):
    """Backward differentiation formula of order 1 to 3.

    The history holds ``order + 1`` snapshots: the newest ``order`` build the
    extrapolation and the derivative right-hand side, the extra one gives the
    derivative at the newest level used by ``extrapolate_first_derivative``.
    """

    def __init__(self, order: int, dt: float):
        if order not in _BDF_ALPHA:
            raise ValueError(f"BDF order must be 1, 2 or 3, got {order}")
        super().__init__(order, dt)

    @property
    def alpha(self) -> float:
        return _BDF_ALPHA[self.order]

    @property
    def beta(self) -> Tuple[float, ...]:
        return _BDF_BETA[self.order]

    @property
    def first_derivative_coefficient(self) -> float:
        return self.alpha / self.dt

    def initialize(self, initial: np.ndarray, *derivatives: np.ndarray) -> None:
        """Seed the history with ``order + 1`` copies of the initial condition.

        The formula uses the newest ``order`` snapshots; the extra copy is the
        older level needed by ``extrapolate_first_derivative``.
        """
        if derivatives:
            raise ValueError("BDF history is seeded from the initial value only")
        initial = np.array(initial, dtype=float)
        self._history = [initial.copy() for _ in range(self.order + 1)]
        logger.debug("BDF%d history seeded (%d entries)", self.order, initial.size)

    def shift(self, solution: np.ndarray) -> None:
        self._check_initialized()
        solution = np.array(solution, dtype=float)
        if solution.shape != self._history[0].shape:
            raise ValueError(
                f"Snapshot shape {solution.shape} does not match history {self._history[0].shape}"
            )
        self._history = [solution] + self._history[:-1]

    def extrapolate(self) -> np.ndarray:
        self._check_initialized()
        coefficients = _BDF_EXTRAPOLATION[self.order]
        return sum(c * u for c, u in zip(coefficients, self._history))

    def rhs_contribution(self, derivative: int = 1) -> np.ndarray:
        if derivative != 1:
            raise ValueError("BDF only provides first derivative contributions")
        self._check_initialized()
        return sum(b * u for b, u in zip(self.beta, self._history)) / self.dt

    def extrapolate_first_derivative(self) -> np.ndarray:
        """Derivative at the newest level, from the stored snapshots."""
        self._check_initialized()
        older = sum(b * u for b, u in zip(self.beta, self._history[1:]))
        return (self.alpha * self._history[0] - older) / self.dt


class NewmarkTimeAdvance(TimeAdvance):
    """Newmark scheme.

    Order 2 (second-order ODE) stores displacement, velocity and
    acceleration and uses ``beta`` and ``gamma``. Order 1 is the theta
    method on a first-order ODE and stores value and first derivative,
    using ``gamma`` only.

    Parameters
    ----------
    order : int
        1 or 2.
    dt : float
        Time step size.
    beta : float
        Newmark beta (order 2).
    gamma : float
        Newmark gamma.
    """

    def __init__(self, order: int, dt: float, beta: float = 0.25, gamma: float = 0.5):
        if order not in (1, 2):
            raise ValueError(f"Newmark order must be 1 or 2, got {order}")
        if gamma <= 0:
            raise ValueError(f"Newmark gamma must be positive: {gamma}")
        if order == 2 and beta <= 0:
            raise ValueError(f"Newmark beta must be positive: {beta}")
        super().__init__(order, dt)
        self.beta = float(beta)
        self.gamma = float(gamma)

    @property
    def c1(self) -> float:
        return self.gamma / self.beta if self.order == 2 else 1.0 / self.gamma

    @property
    def c2(self) -> float:
        if self.order != 2:
            raise ValueError("Newmark of order 1 has no second derivative")
        return 1.0 / self.beta

    @property
    def first_derivative_coefficient(self) -> float:
        return self.c1 / self.dt

    @property
    def second_derivative_coefficient(self) -> float:
        return self.c2 / self.dt**2

    @property
    def velocity(self) -> np.ndarray:
        self._check_initialized()
        return self._history[1].copy()

    @property
    def acceleration(self) -> np.ndarray:
        self._check_initialized()
        if self.order != 2:
            raise ValueError("Newmark of order 1 does not store an acceleration")
        return self._history[2].copy()

    def initialize(self, initial: np.ndarray, *derivatives: np.ndarray) -> None:
        """Seed value and derivatives; missing derivatives start at zero."""
        initial = np.array(initial, dtype=float)
        if len(derivatives) > self.order:
            raise ValueError(f"Newmark order {self.order} takes at most {self.order} derivatives")
        history = [initial]
        for k in range(self.order):
            if k < len(derivatives):
                d = np.array(derivatives[k], dtype=float)
                if d.shape != initial.shape:
                    raise ValueError("Initial derivative shape does not match initial value")
            else:
                d = np.zeros_like(initial)
            history.append(d)
        self._history = history
        logger.debug("Newmark%d history seeded (%d entries)", self.order, initial.size)

    def rhs_contribution(self, derivative: int = 1) -> np.ndarray:
        self._check_initialized()
        dt = self.dt
        if self.order == 1:
            if derivative != 1:
                raise ValueError("Newmark of order 1 only provides first derivative contributions")
            u, v = self._history
            return u / (self.gamma * dt) + (1.0 - self.gamma) / self.gamma * v
        u, v, a = self._history
        rhs2 = (u + dt * v + dt**2 * (0.5 - self.beta) * a) / (self.beta * dt**2)
        if derivative == 2:
            return rhs2
        if derivative == 1:
            return self.gamma * dt * rhs2 - v - dt * (1.0 - self.gamma) * a
        raise ValueError(f"Derivative order must be 1 or 2, got {derivative}")

    def shift(self, solution: np.ndarray) -> None:
        self._check_initialized()
        solution = np.array(solution, dtype=float)
        if solution.shape != self._history[0].shape:
            raise ValueError(
                f"Snapshot shape {solution.shape} does not match history {self._history[0].shape}"
            )
        velocity = self.first_derivative(solution)
        if self.order == 1:
            self._history = [solution, velocity]
        else:
            acceleration = self.second_derivative_coefficient * solution - self.rhs_contribution(2)
            self._history = [solution, velocity, acceleration]

    def extrapolate(self) -> np.ndarray:
        self._check_initialized()
        dt = self.dt
        if self.order == 1:
            u, v = self._history
            return u + dt * v
        u, v, a = self._history
        return u + dt * v + 0.5 * dt**2 * a

    def extrapolate_first_derivative(self) -> np.ndarray:
        self._check_initialized()
        if self.order == 1:
            return self._history[1].copy()
        return self._history[1] + self.dt * self._history[2]


_TIME_ADVANCE = {
    TimeAdvanceMethod.BDF: BDFTimeAdvance,
    TimeAdvanceMethod.NEWMARK: NewmarkTimeAdvance,
}


def create_time_advance(
    method, order: int, dt: float, beta: Optional[float] = None, gamma: Optional[float] = None
) -> TimeAdvance:
    """Build a time advance scheme from its method name.

    Parameters
    ----------
    method : TimeAdvanceMethod or str
    order : int
    dt : float
    beta, gamma : float, optional
        Newmark parameters; ignored by BDF.
    """
    method = TimeAdvanceMethod(method)
    cls = _TIME_ADVANCE[method]
    if cls is NewmarkTimeAdvance:
        kwargs = {}
        if beta is not None:
            kwargs["beta"] = beta
        if gamma is not None:
            kwargs["gamma"] = gamma
        return cls(order, dt, **kwargs)
    return cls(order, dt)
