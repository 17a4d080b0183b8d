"""
Optimization problem: one optimizer, one objective, one model constructor,
plus the coefficient variances computed at the optimum.

Variances are read off the Hessian of the objective at the fitted
coefficients, in the optimizer's normalized space:

  - SIMPLE: 1 / H_jj, with H_jj clamped from below at EPSILON
  - FULL:   diag(H^-1), None when H cannot be inverted

Which Hessian call serves which request depends on what the objective can
provide (see :class:`functions.objective.ObjectiveKind`).
"""
from __future__ import annotations

import logging
from enum import Enum
from typing import Callable, Optional

import numpy as np
import tensorflow as tf

from functions.objective import ObjectiveKind
from glm.models import Coefficients, GeneralizedLinearModel

log = logging.getLogger(__name__)

EPSILON = 1e-15


class VarianceComputationType(Enum):
    NONE = "none"
    SIMPLE = "simple"
    FULL = "full"


def _no_variances(problem, data, coefficients):
    return None


def _simple_from_diagonal(problem, data, coefficients):
    diagonal = problem.objective_function.hessian_diagonal(data, coefficients, problem.optimizer.normalization)
    return 1.0 / np.maximum(diagonal, EPSILON)


def _full_from_matrix(problem, data, coefficients):
    hessian = problem.objective_function.hessian_matrix(data, coefficients, problem.optimizer.normalization)
    try:
        inverse = tf.linalg.inv(tf.constant(hessian, dtype=tf.float64))
    except tf.errors.InvalidArgumentError as e:
        log.warning("Hessian is not invertible, no variances: %s", e.message)
        return None
    problem.covariance = np.array(inverse.numpy(), dtype=np.float64)
    return np.diag(problem.covariance).copy()


# (requested type, objective capability) -> variance computation
_VARIANCE_ROUTES = {
    (VarianceComputationType.NONE, ObjectiveKind.FIRST_ORDER): _no_variances,
    (VarianceComputationType.NONE, ObjectiveKind.DIAGONAL_SECOND_ORDER): _no_variances,
    (VarianceComputationType.NONE, ObjectiveKind.FULL_SECOND_ORDER): _no_variances,
    (VarianceComputationType.SIMPLE, ObjectiveKind.FIRST_ORDER): _no_variances,
    (VarianceComputationType.SIMPLE, ObjectiveKind.DIAGONAL_SECOND_ORDER): _simple_from_diagonal,
    (VarianceComputationType.SIMPLE, ObjectiveKind.FULL_SECOND_ORDER): _simple_from_diagonal,
    (VarianceComputationType.FULL, ObjectiveKind.FIRST_ORDER): _no_variances,
    (VarianceComputationType.FULL, ObjectiveKind.DIAGONAL_SECOND_ORDER): _no_variances,
    (VarianceComputationType.FULL, ObjectiveKind.FULL_SECOND_ORDER): _full_from_matrix,
}


class OptimizationProblem:

    def __init__(self, optimizer, objective_function, glm_constructor: Callable[[Coefficients], GeneralizedLinearModel],
                 variance_computation_type: VarianceComputationType = VarianceComputationType.NONE):
        self.optimizer = optimizer
        self.objective_function = objective_function
        self.glm_constructor = glm_constructor
        self.variance_computation_type = variance_computation_type
        # inverse Hessian from the last FULL variance computation
        self.covariance: Optional[np.ndarray] = None

    def __repr__(self):
        return (f"OptimizationProblem(optimizer={type(self.optimizer).__name__}, "
                f"objective={self.objective_function!r}, variances={self.variance_computation_type.name})")

    def compute_variances(self, data, coefficients: np.ndarray) -> Optional[np.ndarray]:
        self.covariance = None
        route = _VARIANCE_ROUTES[(self.variance_computation_type, self.objective_function.kind)]
        return route(self, data, coefficients)

    def run(self, data, initial_model: GeneralizedLinearModel) -> GeneralizedLinearModel:
        """
        Fit from ``initial_model`` and wrap the result with ``glm_constructor``.

        Coefficients and variances are returned in the optimizer's
        normalized space; mapping back is the caller's business.
        """
        means, value = self.optimizer.optimize(self.objective_function, initial_model.coefficients.means, data)
        tracker = self.optimizer.state_tracker
        if self.optimizer.is_tracking_state and tracker is not None and tracker.last_state is not None:
            last = tracker.last_state
            log.info("Optimization stopped (%s) after %d iterations: value=%.6e |g|=%.3e",
                     tracker.convergence_reason.name, last.iteration, last.value, last.gradient_norm)
            log.debug("Last tracked coefficients: %s", last.coefficients)
        else:
            log.info("Optimization finished: value=%.6e", value)
        variances = self.compute_variances(data, means)
        return self.glm_constructor(Coefficients(means, variances))
