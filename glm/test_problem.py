import itertools
import logging

import numpy as np
import pytest

from functions.objective import ObjectiveKind
from glm.models import Coefficients, LinearRegressionModel, LogisticRegressionModel
from glm.normalization import NO_NORMALIZATION
from glm.problem import EPSILON, OptimizationProblem, VarianceComputationType
from optimizers.states_tracker import OptimizationStatesTracker

DIMENSIONS = 5


class StubObjective:

    def __init__(self, kind, diagonal=None, matrix=None):
        self.kind = kind
        self._diagonal, self._matrix = diagonal, matrix
        self.calls = []

    def hessian_diagonal(self, data, coefficients, normalization=NO_NORMALIZATION):
        self.calls.append("diagonal")
        return np.array(self._diagonal, dtype=np.float64)

    def hessian_matrix(self, data, coefficients, normalization=NO_NORMALIZATION):
        self.calls.append("matrix")
        return np.array(self._matrix, dtype=np.float64)


class StubOptimizer:
    normalization = NO_NORMALIZATION

    def __init__(self, result, track_state=True):
        self.result = result
        self.is_tracking_state = track_state
        self.state_tracker = None
        self.received = None

    def optimize(self, objective, initial_coefficients, data):
        self.received = initial_coefficients
        if self.is_tracking_state:
            self.state_tracker = OptimizationStatesTracker()
            self.state_tracker.append(3, self.result, 0.5, 1e-7)
        return self.result, 0.5


def problem(kind, variance_type, diagonal=(1.0, 0.0, 2.0), matrix=None):
    return OptimizationProblem(StubOptimizer(np.zeros(3)), StubObjective(kind, diagonal, matrix),
                               LogisticRegressionModel, variance_type)


@pytest.mark.parametrize("variance_type, kind",
                         list(itertools.product(VarianceComputationType, ObjectiveKind)))
def test_routing_table_is_exhaustive(variance_type, kind):
    result = problem(kind, variance_type, matrix=np.eye(3)).compute_variances([], np.zeros(3))
    should_compute = ((variance_type == VarianceComputationType.SIMPLE and kind != ObjectiveKind.FIRST_ORDER)
                      or (variance_type == VarianceComputationType.FULL and kind == ObjectiveKind.FULL_SECOND_ORDER))
    assert (result is not None) == should_compute


@pytest.mark.parametrize("kind", [ObjectiveKind.DIAGONAL_SECOND_ORDER, ObjectiveKind.FULL_SECOND_ORDER])
def test_simple_variances_clamp_zero_curvature(kind):
    p = problem(kind, VarianceComputationType.SIMPLE)
    variances = p.compute_variances([], np.zeros(3))
    np.testing.assert_allclose(variances, [1.0, 1.0 / EPSILON, 0.5])
    assert p.objective_function.calls == ["diagonal"]


def test_full_variances_of_identity_hessian():
    p = problem(ObjectiveKind.FULL_SECOND_ORDER, VarianceComputationType.FULL, matrix=np.eye(DIMENSIONS))
    np.testing.assert_allclose(p.compute_variances([], np.zeros(DIMENSIONS)), np.ones(DIMENSIONS))
    assert p.objective_function.calls == ["matrix"]


def test_full_variances_invert_the_whole_matrix():
    hessian = np.array([[4.0, 1.0], [1.0, 3.0]])
    p = problem(ObjectiveKind.FULL_SECOND_ORDER, VarianceComputationType.FULL, matrix=hessian)
    np.testing.assert_allclose(p.compute_variances([], np.zeros(2)), np.diag(np.linalg.inv(hessian)))
    np.testing.assert_allclose(p.covariance, np.linalg.inv(hessian))


def test_singular_hessian_gives_no_variances(caplog):
    p = problem(ObjectiveKind.FULL_SECOND_ORDER, VarianceComputationType.FULL, matrix=np.zeros((3, 3)))
    with caplog.at_level(logging.WARNING, logger="glm.problem"):
        assert p.compute_variances([], np.zeros(3)) is None
    assert "not invertible" in caplog.text
    assert p.covariance is None


def test_no_variances_means_no_curvature_query():
    p = problem(ObjectiveKind.FULL_SECOND_ORDER, VarianceComputationType.NONE)
    assert p.compute_variances([], np.zeros(3)) is None
    assert p.objective_function.calls == []


@pytest.mark.parametrize("track_state", [True, False])
def test_run_wraps_optimizer_result(track_state, caplog):
    means = np.array([0.5, -1.0, 2.0])
    optimizer = StubOptimizer(means, track_state)
    p = OptimizationProblem(optimizer, StubObjective(ObjectiveKind.FULL_SECOND_ORDER, (2.0, 4.0, 1.0)),
                            LinearRegressionModel, VarianceComputationType.SIMPLE)
    initial = LinearRegressionModel(Coefficients.zeros(3))
    with caplog.at_level(logging.DEBUG, logger="glm.problem"):
        model = p.run([], initial)
    assert isinstance(model, LinearRegressionModel)
    assert model.coefficients.means is means
    np.testing.assert_allclose(model.coefficients.variances, [0.5, 0.25, 1.0])
    np.testing.assert_array_equal(optimizer.received, initial.coefficients.means)
    assert ("after 3 iterations" in caplog.text) == track_state
    assert ("Last tracked coefficients" in caplog.text) == track_state
    assert p.covariance is None
