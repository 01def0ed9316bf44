"""
Tests for the BDF and Newmark time advance schemes.
"""

import numpy as np
import pytest
from numpy.testing import assert_allclose

from fsi_blocks.core.time_advance import (
    BDFTimeAdvance,
    NewmarkTimeAdvance,
    TimeAdvanceMethod,
    create_time_advance,
)

DT = 0.1


@pytest.fixture
def direction():
    return np.array([1.0, -2.0, 0.5])


class TestBDF:
    def test_history_seeded_with_initial_value(self, direction):
        bdf = BDFTimeAdvance(2, DT)
        bdf.initialize(direction)
        assert len(bdf.history) == 3
        for snapshot in bdf.history:
            assert_allclose(snapshot, direction)

    def test_extra_snapshot_only_enters_the_derivative(self, direction):
        bdf = BDFTimeAdvance(1, DT)
        bdf.initialize(direction)
        bdf.shift(2.0 * direction)
        assert len(bdf.history) == 2
        assert_allclose(bdf.extrapolate(), 2.0 * direction)
        assert_allclose(bdf.rhs_contribution(), 2.0 * direction / DT)
        assert_allclose(bdf.extrapolate_first_derivative(), direction / DT)

    def test_constant_history_is_steady(self, direction):
        for order in (1, 2, 3):
            bdf = BDFTimeAdvance(order, DT)
            bdf.initialize(direction)
            assert_allclose(bdf.extrapolate(), direction)
            assert_allclose(bdf.first_derivative(direction), 0.0, atol=1e-12)
            assert_allclose(bdf.extrapolate_first_derivative(), 0.0, atol=1e-12)

    def test_order2_is_exact_on_linear_data(self, direction):
        bdf = BDFTimeAdvance(2, DT)
        bdf.initialize(0.0 * direction)
        bdf.shift(1.0 * direction)
        bdf.shift(2.0 * direction)
        assert_allclose(bdf.extrapolate(), 3.0 * direction)
        assert_allclose(bdf.rhs_contribution(), 3.5 * direction / DT)
        assert_allclose(bdf.first_derivative(3.0 * direction), direction / DT)
        assert_allclose(bdf.extrapolate_first_derivative(), direction / DT)

    def test_order3_is_exact_on_quadratic_data(self, direction):
        bdf = BDFTimeAdvance(3, DT)
        bdf.initialize(0.0 * direction)
        for k in (1, 2, 3):
            bdf.shift(k**2 * direction)
        assert_allclose(bdf.extrapolate(), 16.0 * direction)
        # d/dk k^2 at k = 4
        assert_allclose(bdf.first_derivative(16.0 * direction), 8.0 * direction / DT)

    def test_coefficients(self):
        assert BDFTimeAdvance(1, DT).alpha == 1.0
        assert BDFTimeAdvance(2, DT).alpha == pytest.approx(1.5)
        assert BDFTimeAdvance(3, DT).beta == pytest.approx((3.0, -1.5, 1.0 / 3.0))
        assert BDFTimeAdvance(2, DT).first_derivative_coefficient == pytest.approx(15.0)

    def test_invalid_use(self, direction):
        with pytest.raises(ValueError):
            BDFTimeAdvance(4, DT)
        with pytest.raises(ValueError):
            BDFTimeAdvance(1, 0.0)
        bdf = BDFTimeAdvance(1, DT)
        with pytest.raises(RuntimeError):
            bdf.extrapolate()
        bdf.initialize(direction)
        with pytest.raises(ValueError):
            bdf.shift(np.zeros(2))
        with pytest.raises(ValueError):
            bdf.rhs_contribution(2)
        with pytest.raises(ValueError):
            bdf.second_derivative_coefficient


class TestNewmarkOrder2:
    def test_missing_derivatives_start_at_zero(self, direction):
        nm = NewmarkTimeAdvance(2, DT)
        nm.initialize(direction)
        assert_allclose(nm.velocity, 0.0)
        assert_allclose(nm.acceleration, 0.0)

    @pytest.mark.parametrize("beta,gamma", [(0.25, 0.5), (0.3025, 0.6)])
    def test_constant_acceleration_is_exact(self, direction, beta, gamma):
        acceleration = direction
        nm = NewmarkTimeAdvance(2, DT, beta=beta, gamma=gamma)
        nm.initialize(np.zeros(3), np.zeros(3), acceleration)
        for k in (1, 2, 3):
            t = k * DT
            assert_allclose(nm.extrapolate(), 0.5 * acceleration * t**2)
            nm.shift(0.5 * acceleration * t**2)
            assert_allclose(nm.velocity, acceleration * t, atol=1e-12)
            assert_allclose(nm.acceleration, acceleration, atol=1e-10)

    def test_derivative_coefficients(self):
        nm = NewmarkTimeAdvance(2, DT, beta=0.25, gamma=0.5)
        assert nm.c1 == pytest.approx(2.0)
        assert nm.c2 == pytest.approx(4.0)
        assert nm.first_derivative_coefficient == pytest.approx(20.0)
        assert nm.second_derivative_coefficient == pytest.approx(400.0)

    def test_velocity_matches_first_derivative(self, direction):
        nm = NewmarkTimeAdvance(2, DT)
        nm.initialize(direction, 2.0 * direction, -direction)
        new = 1.5 * direction
        expected = nm.first_derivative(new)
        nm.shift(new)
        assert_allclose(nm.velocity, expected)

    def test_extrapolate_first_derivative(self, direction):
        nm = NewmarkTimeAdvance(2, DT)
        nm.initialize(np.zeros(3), direction, 2.0 * direction)
        assert_allclose(nm.extrapolate_first_derivative(), direction + DT * 2.0 * direction)

    def test_invalid_parameters(self, direction):
        with pytest.raises(ValueError):
            NewmarkTimeAdvance(3, DT)
        with pytest.raises(ValueError):
            NewmarkTimeAdvance(2, DT, beta=0.0)
        nm = NewmarkTimeAdvance(2, DT)
        with pytest.raises(ValueError):
            nm.initialize(direction, direction, direction, direction)
        nm.initialize(direction)
        with pytest.raises(ValueError):
            nm.rhs_contribution(3)


class TestNewmarkOrder1:
    def test_backward_euler_velocity(self, direction):
        nm = NewmarkTimeAdvance(1, DT, gamma=1.0)
        nm.initialize(np.zeros(3))
        nm.shift(DT * direction)
        assert_allclose(nm.velocity, direction)
        assert_allclose(nm.extrapolate_first_derivative(), direction)
        assert_allclose(nm.extrapolate(), 2.0 * DT * direction)

    def test_rhs_contribution(self, direction):
        nm = NewmarkTimeAdvance(1, DT, gamma=0.5)
        nm.initialize(direction, direction)
        assert_allclose(nm.rhs_contribution(1), direction / (0.5 * DT) + direction)

    def test_no_second_derivative(self, direction):
        nm = NewmarkTimeAdvance(1, DT)
        nm.initialize(direction)
        with pytest.raises(ValueError):
            nm.acceleration
        with pytest.raises(ValueError):
            nm.rhs_contribution(2)
        with pytest.raises(ValueError):
            nm.c2


class TestFactory:
    def test_create(self):
        assert isinstance(create_time_advance("bdf", 2, DT), BDFTimeAdvance)
        nm = create_time_advance(TimeAdvanceMethod.NEWMARK, 1, DT, gamma=1.0)
        assert isinstance(nm, NewmarkTimeAdvance)
        assert nm.gamma == 1.0

    def test_unknown_method(self):
        with pytest.raises(ValueError):
            create_time_advance("runge_kutta", 2, DT)
