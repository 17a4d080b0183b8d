import numpy as np
import pytest

from functions.objective import GLMObjective, ObjectiveKind
from functions.pointwise_loss import LogisticLossFunction, SquaredLossFunction
from glm.normalization import NO_NORMALIZATION
from optimizers.convergence_flag import CvgFlags
from optimizers.lbfgs import LBFGS
from optimizers.tron import TRON


class Quadratic:
    """0.5 x.A x - b.x, ignores data"""
    kind = ObjectiveKind.FULL_SECOND_ORDER

    def __init__(self, a, b):
        self.a, self.b = np.asarray(a, dtype=np.float64), np.asarray(b, dtype=np.float64)

    def value_and_gradient(self, data, x, normalization=NO_NORMALIZATION):
        return 0.5 * x @ self.a @ x - self.b @ x, self.a @ x - self.b

    def hessian_vector(self, data, x, v, normalization=NO_NORMALIZATION):
        return self.a @ v


QUADRATIC = Quadratic([[10.0, 2.0, 0.0], [2.0, 1.0, 0.5], [0.0, 0.5, 3.0]], [1.0, -2.0, 0.5])


@pytest.mark.parametrize("optimizer", [LBFGS(tolerance=1e-10),
                                       LBFGS(tolerance=1e-10, line_search="nonmonotone_armijo"),
                                       LBFGS(tolerance=1e-10, powell_damping=True, m=2),
                                       TRON(tolerance=1e-10)],
                         ids=["lbfgs-wolfe", "lbfgs-armijo", "lbfgs-damped", "tron"])
def test_quadratic_minimum(optimizer):
    x, value = optimizer.optimize(QUADRATIC, np.zeros(3), None)
    expected = np.linalg.solve(QUADRATIC.a, QUADRATIC.b)
    np.testing.assert_allclose(x, expected, rtol=1e-5, atol=1e-6)
    assert value == pytest.approx(-0.5 * QUADRATIC.b @ expected, rel=1e-8)
    tracker = optimizer.state_tracker
    assert tracker.converged
    states = tracker.tracked_states
    assert states[0].iteration == 0 and states[-1].iteration == len(states) - 1
    assert states[-1].value < states[0].value


def test_start_at_minimum():
    start = np.linalg.solve(QUADRATIC.a, QUADRATIC.b)
    optimizer = LBFGS()
    x, _ = optimizer.optimize(Quadratic(QUADRATIC.a, QUADRATIC.a @ start), start, None)
    np.testing.assert_allclose(x, start)


def test_max_iterations_and_no_tracking():
    optimizer = LBFGS(tolerance=1e-14, max_iterations=2, track_state=False)
    optimizer.optimize(QUADRATIC, np.zeros(3), None)
    assert not optimizer.is_tracking_state and optimizer.state_tracker is None

    tracked = LBFGS(tolerance=1e-14, max_iterations=2)
    tracked.optimize(QUADRATIC, np.array([5.0, 5.0, 5.0]), None)
    assert tracked.state_tracker.convergence_reason in (CvgFlags.max_iter___, CvgFlags.grad_tol___,
                                                        CvgFlags.loss_tol___)
    assert tracked.state_tracker.last_state.iteration <= 2


def test_invalid_settings():
    with pytest.raises(ValueError):
        LBFGS(tolerance=0.0)
    with pytest.raises(ValueError):
        LBFGS(max_iterations=0)
    with pytest.raises(ValueError):
        LBFGS(line_search="backtracking")
    with pytest.raises(TypeError):
        LBFGS(memory=3)


def test_tron_needs_hessian_vector_products():
    class FirstOrder(Quadratic):
        kind = ObjectiveKind.FIRST_ORDER

    with pytest.raises(TypeError):
        TRON().optimize(FirstOrder(QUADRATIC.a, QUADRATIC.b), np.zeros(3), None)


def test_lbfgs_and_tron_agree_on_logistic_regression(logistic_data):
    data = logistic_data(n=300)
    objective = GLMObjective(LogisticLossFunction())
    x_lbfgs, f_lbfgs = LBFGS(tolerance=1e-10, max_iterations=200).optimize(objective, np.zeros(3), data)
    x_tron, f_tron = TRON(tolerance=1e-10, max_iterations=50).optimize(objective, np.zeros(3), data)
    assert f_tron == pytest.approx(f_lbfgs, rel=1e-8)
    np.testing.assert_allclose(x_tron, x_lbfgs, rtol=1e-4, atol=1e-5)
    _, gradient = objective.value_and_gradient(data, x_tron)
    assert np.linalg.norm(gradient) < 1e-4


def test_least_squares_matches_normal_equations(regression_data):
    data = regression_data(n=80)
    x = np.stack([p.features for p in data])
    y = np.array([p.label for p in data])
    expected = np.linalg.lstsq(x, y, rcond=None)[0]
    for optimizer in (LBFGS(tolerance=1e-12, max_iterations=200), TRON(tolerance=1e-12)):
        coefficients, _ = optimizer.optimize(GLMObjective(SquaredLossFunction()), np.zeros(3), data)
        np.testing.assert_allclose(coefficients, expected, rtol=1e-5, atol=1e-6)
