from __future__ import annotations

from typing import Optional, Tuple

import numpy as np
import tensorflow as tf

from optimizers.convergence_flag import CvgFlags
from optimizers.helpers import _norm, to_numpy, to_tensor
from optimizers.states_tracker import OptimizationStatesTracker
from glm.normalization import NO_NORMALIZATION, NormalizationContext


class Optimizer:
    """
    Base class of the optimizers driving an ObjectiveFunction.

    The optimizer owns the NormalizationContext: every data pass it triggers
    runs in the normalized space, and the returned coefficients live there too.
    Iterates are kept as tf tensors of dtype ``opt_dtype()``; the objective is
    called with numpy arrays.
    """
    name = "optimizer"

    def __init__(self, tolerance: float = 1e-6, max_iterations: int = 100,
                 normalization: NormalizationContext = NO_NORMALIZATION,
                 track_state: bool = True, verbose: bool = False):
        if tolerance <= 0:
            raise ValueError(f"tolerance must be > 0, got {tolerance}")
        if max_iterations < 1:
            raise ValueError(f"max_iterations must be >= 1, got {max_iterations}")
        self.tolerance = float(tolerance)
        self.max_iterations = int(max_iterations)
        self._normalization = normalization
        self._track_state = track_state
        self._tracker: Optional[OptimizationStatesTracker] = None
        self.verbose = verbose

    @property
    def normalization(self) -> NormalizationContext:
        return self._normalization

    @property
    def is_tracking_state(self) -> bool:
        return self._track_state

    @property
    def state_tracker(self) -> Optional[OptimizationStatesTracker]:
        return self._tracker

    def check_objective(self, objective):
        pass

    def optimize(self, objective, initial_coefficients, data) -> Tuple[np.ndarray, float]:
        """Minimize ``objective`` over ``data`` from ``initial_coefficients``; returns (coefficients, value)."""
        self.check_objective(objective)
        x0 = np.asarray(initial_coefficients, dtype=np.float64)
        self._normalization.validate(x0.shape[0])
        self._tracker = OptimizationStatesTracker() if self._track_state else None

        def loss_and_grad(x: tf.Tensor):
            f, g = objective.value_and_gradient(data, to_numpy(x), self._normalization)
            return f, to_tensor(g)

        x, f, reason = self._minimize(objective, data, to_tensor(x0), loss_and_grad)
        if self._tracker is not None:
            self._tracker.convergence_reason = reason
        if self.verbose:
            print(f"[{self.name}] stop: {reason.name} f={f:.6e}")
        return to_numpy(x), float(f)

    def _minimize(self, objective, data, x: tf.Tensor, loss_and_grad) -> Tuple[tf.Tensor, float, CvgFlags]:
        raise NotImplementedError

    def _record(self, iteration: int, x: tf.Tensor, f: float, g_norm: float):
        if self._tracker is not None:
            self._tracker.append(iteration, to_numpy(x), f, g_norm)

    def _check_convergence(self, iteration: int, f_prev: float, f: float, g_norm: float, g0_norm: float) -> CvgFlags:
        if g_norm <= self.tolerance * g0_norm:
            return CvgFlags.grad_tol___
        if abs(f_prev - f) <= self.tolerance * max(abs(f_prev), 1e-300):
            return CvgFlags.loss_tol___
        if iteration >= self.max_iterations:
            return CvgFlags.max_iter___
        return CvgFlags.in_progress

    @staticmethod
    def _gradient_norm(g: tf.Tensor) -> float:
        return float(_norm(g).numpy())
