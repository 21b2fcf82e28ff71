"""Tests for D'Agostini iterative unfolding."""

import numpy as np
import pytest

from xsecforge.core.exceptions import ConfigurationError, ConvergenceWarning
from xsecforge.solvers import DAgostiniConfig, StoppingCriterion, Unfolder
from xsecforge.solvers.dagostini import bayes_unfolding_matrix, figure_of_merit


def _run(problem, config, signal=None):
    p = problem
    return Unfolder(config).unfold(
        p["signal"] if signal is None else signal, p["covariance"], p["smearing"], p["prior"]
    )


class TestConfig:

    def test_fixed_constructor(self):
        config = DAgostiniConfig.fixed(7)
        assert config.criterion is StoppingCriterion.FIXED_ITERATIONS
        assert config.iteration_cap == 7

    def test_converging_constructor(self):
        config = DAgostiniConfig.converging(0.01, max_iterations=50)
        assert config.criterion is StoppingCriterion.FIGURE_OF_MERIT
        assert config.iteration_cap == 50

    def test_criterion_from_string(self):
        assert DAgostiniConfig(criterion="fm", figure_of_merit=0.1).criterion is StoppingCriterion.FIGURE_OF_MERIT

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"criterion": "iter", "n_iterations": -1},
            {"criterion": "fm"},
            {"criterion": "fm", "figure_of_merit": 0.0},
            {"criterion": "sometimes"},
            {"max_iterations": 0},
            {"max_seconds": 0.0},
        ],
    )
    def test_invalid(self, kwargs):
        with pytest.raises(ConfigurationError):
            DAgostiniConfig(**kwargs)


class TestFigureOfMerit:

    def test_skips_empty_previous_bins(self):
        assert figure_of_merit(np.array([100.0, 0.0]), np.array([110.0, 5.0])) == pytest.approx(0.5)

    def test_zero_for_fixed_point(self):
        u = np.array([3.0, 4.0, 5.0])
        assert figure_of_merit(u, u.copy()) == 0.0


class TestIterations:

    def test_zero_iterations_returns_prior(self, tridiagonal_problem):
        result = _run(tridiagonal_problem, DAgostiniConfig.fixed(0))
        assert result.ok
        assert not result.degraded
        assert result.iterations == 0
        np.testing.assert_array_equal(result.unfolded_signal, tridiagonal_problem["prior"])
        np.testing.assert_array_equal(result.cov_matrix, np.zeros((3, 3)))
        np.testing.assert_array_equal(result.add_smear_matrix, -np.eye(3))

    def test_converges_monotonically_towards_truth(self, tridiagonal_problem):
        truth = tridiagonal_problem["truth"]
        distances = [np.linalg.norm(tridiagonal_problem["prior"] - truth)]
        for n in range(1, 11):
            result = _run(tridiagonal_problem, DAgostiniConfig.fixed(n))
            assert result.iterations == n
            distances.append(np.linalg.norm(result.unfolded_signal - truth))
        assert all(b < a for a, b in zip(distances, distances[1:]))
        assert distances[-1] < 1e-2

    def test_figure_of_merit_stops_early(self, tridiagonal_problem):
        result = _run(tridiagonal_problem, DAgostiniConfig.converging(1e-6, max_iterations=500))
        assert result.ok
        assert not result.degraded
        assert result.details["converged"] is True
        assert result.iterations < 500
        history = result.details["figure_of_merit_history"]
        assert len(history) == result.iterations
        assert history[-1] < 1e-6
        np.testing.assert_allclose(result.unfolded_signal, tridiagonal_problem["truth"], rtol=1e-3)

    def test_iteration_cap_degrades(self, tridiagonal_problem):
        with pytest.warns(ConvergenceWarning, match="iteration cap"):
            result = _run(tridiagonal_problem, DAgostiniConfig.converging(1e-12, max_iterations=2))
        assert result.ok
        assert result.degraded
        assert result.iterations == 2
        assert result.details["converged"] is False
        assert np.all(np.isfinite(result.unfolded_signal))

    def test_wall_clock_cap_degrades(self, tridiagonal_problem):
        with pytest.warns(ConvergenceWarning, match="wall-clock"):
            result = _run(tridiagonal_problem, DAgostiniConfig.fixed(50, max_seconds=1e-9))
        assert result.degraded
        assert 1 <= result.iterations < 50

    def test_unfolding_matrix_reproduces_result(self, tridiagonal_problem):
        result = _run(tridiagonal_problem, DAgostiniConfig.fixed(4))
        np.testing.assert_allclose(
            result.unfolding_matrix @ tridiagonal_problem["signal"], result.unfolded_signal, rtol=1e-12
        )
        np.testing.assert_allclose(
            result.add_smear_matrix,
            result.unfolding_matrix @ tridiagonal_problem["smearing"] - np.eye(3),
            atol=1e-12,
        )


class TestErrorPropagation:

    def test_jacobian_matches_finite_differences(self, tridiagonal_problem):
        config = DAgostiniConfig.fixed(4)
        signal = tridiagonal_problem["signal"]
        result = _run(tridiagonal_problem, config)
        jacobian = result.details["error_propagation_matrix"]

        h = 1e-3
        numeric = np.zeros_like(jacobian)
        for r in range(signal.size):
            step = np.zeros_like(signal)
            step[r] = h
            up = _run(tridiagonal_problem, config, signal + step).unfolded_signal
            down = _run(tridiagonal_problem, config, signal - step).unfolded_signal
            numeric[:, r] = (up - down) / (2 * h)

        np.testing.assert_allclose(jacobian, numeric, rtol=1e-5, atol=1e-8)

    def test_covariance_is_propagated(self, tridiagonal_problem):
        result = _run(tridiagonal_problem, DAgostiniConfig.fixed(3))
        jacobian = result.details["error_propagation_matrix"]
        expected = jacobian @ tridiagonal_problem["covariance"] @ jacobian.T
        np.testing.assert_allclose(result.cov_matrix, expected, rtol=1e-10)
        np.testing.assert_array_equal(result.cov_matrix, result.cov_matrix.T)

    def test_first_iteration_jacobian_is_bayes_matrix(self, tridiagonal_problem):
        p = tridiagonal_problem
        result = _run(p, DAgostiniConfig.fixed(1))
        efficiency = p["smearing"].sum(axis=0)
        expected = bayes_unfolding_matrix(p["smearing"], p["prior"], efficiency)
        np.testing.assert_allclose(result.details["error_propagation_matrix"], expected)


class TestDegenerateInputs:

    def test_zero_efficiency_bin_keeps_prior(self):
        smearing = np.array([
            [0.8, 0.0, 0.1],
            [0.1, 0.0, 0.7],
        ])
        prior = np.array([100.0, 42.0, 80.0])
        signal = smearing @ np.array([110.0, 0.0, 70.0])
        result = Unfolder(DAgostiniConfig.fixed(5)).unfold(signal, np.diag(signal), smearing, prior)
        assert result.ok
        assert result.unfolded_signal[1] == 42.0
        assert np.all(np.isfinite(result.cov_matrix))
        np.testing.assert_array_equal(result.unfolding_matrix[1], 0.0)

    def test_negative_data_does_not_fail(self, tridiagonal_problem):
        signal = tridiagonal_problem["signal"].copy()
        signal[0] = -5.0
        result = _run(tridiagonal_problem, DAgostiniConfig.fixed(3), signal)
        assert result.ok
        assert np.all(np.isfinite(result.unfolded_signal))

    def test_inputs_not_modified(self, tridiagonal_problem):
        before = {k: v.copy() for k, v in tridiagonal_problem.items()}
        _run(tridiagonal_problem, DAgostiniConfig.fixed(4))
        for key, value in before.items():
            np.testing.assert_array_equal(tridiagonal_problem[key], value)
