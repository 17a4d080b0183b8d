"""
Mergeable accumulators for GLM objective evaluation under normalization.

Binding and accumulation are two separate phases:

    unbound = ValueAndGradientAggregator(LogisticLossFunction(), dim)
    bound = unbound.bind(coefficients, normalization)   # derives the O(dim) state once
    for datum in shard:
        bound.add(datum)
    merged = bound.combine(other_shard)                  # associative, commutative
    merged.value, merged.vector(normalization)

Binding folds the normalization into the coefficients

    effective_coefficients = coef * factors
    margin_shift = -effective_coefficients . shifts

so each example's margin is computed on the raw features. Accumulation keeps
two sums per pass: ``vector_sum = sum_i p_i x_i`` and
``vector_shift_prefactor_sum = sum_i p_i``, where p_i is the per-example
prefactor (w l' for the gradient, w l'' (v . x'_i) for a Hessian-vector
product). Because x'_i = (x_i - shift) * factors,

    sum_i p_i x'_i = (vector_sum - shift * vector_shift_prefactor_sum) * factors

which is what :meth:`vector` returns.
"""
from __future__ import annotations

import numpy as np
import scipy.sparse as sp

from functions.pointwise_loss import PointwiseLossFunction, TwiceDiffPointwiseLossFunction
from glm.data import LabeledPoint, axpy, dot, features_size, to_dense
from glm.errors import DimensionMismatch, IncompatibleAggregator
from glm.normalization import NormalizationContext


def _effective(v: np.ndarray, normalization: NormalizationContext):
    """(v * factors, -(v * factors) . shifts)"""
    effective = v * normalization.factors if normalization.factors is not None else v
    shift = -float(np.dot(effective, normalization.shifts)) if normalization.shifts is not None else 0.0
    return effective, shift


def _check_vector(v, dim: int, what: str) -> np.ndarray:
    v = np.asarray(v, dtype=np.float64)
    if v.ndim != 1 or v.shape[0] != dim:
        raise DimensionMismatch(f"Size mismatch. {what} size: {v.shape}, dimension: {dim}")
    return v


# ---------------------------------------
# Unbound aggregators: loss function + dimension, nothing derived yet
# ---------------------------------------

class _UnboundAggregator:
    requires_second_derivative = False

    def __init__(self, loss_function: PointwiseLossFunction, dim: int):
        if self.requires_second_derivative and not isinstance(loss_function, TwiceDiffPointwiseLossFunction):
            raise TypeError(f"{type(self).__name__} requires a twice differentiable loss, got {loss_function!r}")
        if dim <= 0:
            raise ValueError(f"Aggregator dimension must be positive, got {dim}")
        self.loss_function = loss_function
        self.dim = int(dim)

    def _bind_coefficients(self, coefficients, normalization: NormalizationContext):
        coefficients = _check_vector(coefficients, self.dim, "Coefficients")
        normalization.validate(self.dim)
        return _effective(coefficients, normalization)


class ValueAndGradientAggregator(_UnboundAggregator):

    def bind(self, coefficients, normalization: NormalizationContext) -> "BoundValueAndGradientAggregator":
        effective, margin_shift = self._bind_coefficients(coefficients, normalization)
        return BoundValueAndGradientAggregator(self.loss_function, self.dim, effective, margin_shift)


class HessianVectorAggregator(_UnboundAggregator):
    requires_second_derivative = True

    def bind(self, coefficients, direction, normalization: NormalizationContext) -> "BoundHessianVectorAggregator":
        effective, margin_shift = self._bind_coefficients(coefficients, normalization)
        direction = _check_vector(direction, self.dim, "Direction")
        effective_direction, direction_shift = _effective(direction, normalization)
        return BoundHessianVectorAggregator(self.loss_function, self.dim, effective, margin_shift,
                                            effective_direction, direction_shift)


class HessianDiagonalAggregator(_UnboundAggregator):
    requires_second_derivative = True

    def bind(self, coefficients, normalization: NormalizationContext) -> "BoundHessianDiagonalAggregator":
        effective, margin_shift = self._bind_coefficients(coefficients, normalization)
        return BoundHessianDiagonalAggregator(self.loss_function, self.dim, effective, margin_shift)


class HessianMatrixAggregator(_UnboundAggregator):
    requires_second_derivative = True

    def bind(self, coefficients, normalization: NormalizationContext) -> "BoundHessianMatrixAggregator":
        effective, margin_shift = self._bind_coefficients(coefficients, normalization)
        return BoundHessianMatrixAggregator(self.loss_function, self.dim, effective, margin_shift)


# ---------------------------------------
# Bound aggregators
# ---------------------------------------

class BoundAggregator:
    """
    Per-shard accumulator bound to one coefficient vector and one normalization.

    The derived state (``effective_coefficients``, ``margin_shift``) is fixed at
    construction and read-only; only the running sums change under :meth:`add`
    and :meth:`merge`.
    """

    def __init__(self, loss_function, dim: int, effective_coefficients: np.ndarray, margin_shift: float):
        self.loss_function = loss_function
        self.dim = dim
        effective_coefficients = np.array(effective_coefficients, dtype=np.float64)
        effective_coefficients.setflags(write=False)
        self._effective_coefficients = effective_coefficients
        self._margin_shift = float(margin_shift)

        self.count = 0
        self.value_sum = 0.0
        self.vector_sum = np.zeros(dim)
        self.vector_shift_prefactor_sum = 0.0

    @property
    def effective_coefficients(self) -> np.ndarray:
        return self._effective_coefficients

    @property
    def margin_shift(self) -> float:
        return self._margin_shift

    # ---- per-kind hooks ----

    def _binding(self) -> tuple:
        return self.loss_function, self.dim, self._effective_coefficients, self._margin_shift

    def _accumulate(self, datum: LabeledPoint, margin: float):
        raise NotImplementedError

    def _merge_extra(self, other: "BoundAggregator"):
        pass

    def _same_binding(self, other: "BoundAggregator") -> bool:
        for mine, theirs in zip(self._binding()[2:], other._binding()[2:]):
            if isinstance(mine, np.ndarray):
                if mine is not theirs and not np.array_equal(mine, theirs):
                    return False
            elif mine != theirs:
                return False
        return True

    # ---- monoid ----

    def empty(self) -> "BoundAggregator":
        """Zero-count aggregator sharing this binding."""
        return type(self)(*self._binding())

    def add(self, datum: LabeledPoint) -> "BoundAggregator":
        size = features_size(datum.features)
        if size != self.dim:
            raise DimensionMismatch(f"Size mismatch. Coefficient size: {self.dim}, features size: {size}")
        margin = datum.compute_margin(self._effective_coefficients) + self._margin_shift
        self.count += 1
        self._accumulate(datum, margin)
        return self

    def merge(self, other: "BoundAggregator") -> "BoundAggregator":
        """Fold ``other`` into this aggregator. A zero-count ``other`` changes nothing."""
        if type(other) is not type(self):
            raise IncompatibleAggregator(f"Class mismatch. this.class={type(self).__name__}, "
                                         f"that.class={type(other).__name__}")
        if other.dim != self.dim:
            raise IncompatibleAggregator(f"Dimension mismatch. this.dim={self.dim}, that.dim={other.dim}")
        if not self._same_binding(other):
            raise IncompatibleAggregator("Binding mismatch. Aggregators were bound to different coefficients, "
                                         "directions or normalizations")
        if other.count != 0:
            self.count += other.count
            self.value_sum += other.value_sum
            self.vector_shift_prefactor_sum += other.vector_shift_prefactor_sum
            self.vector_sum += other.vector_sum
            self._merge_extra(other)
        return self

    def combine(self, other: "BoundAggregator") -> "BoundAggregator":
        """Merged copy of ``self`` and ``other``; neither operand is modified."""
        return self.empty().merge(self).merge(other)

    # ---- results ----

    @property
    def value(self) -> float:
        return self.value_sum

    def vector(self, normalization: NormalizationContext) -> np.ndarray:
        """Accumulated vector mapped back through ``normalization``."""
        out = self.vector_sum
        if normalization.shifts is not None:
            out = out - normalization.shifts * self.vector_shift_prefactor_sum
        if normalization.factors is not None:
            out = out * normalization.factors
        return np.array(out, dtype=np.float64)


class BoundValueAndGradientAggregator(BoundAggregator):

    def _accumulate(self, datum, margin):
        loss, dz_loss = self.loss_function.loss_and_dz_loss(margin, datum.label)
        prefactor = datum.weight * dz_loss
        self.value_sum += datum.weight * loss
        self.vector_shift_prefactor_sum += prefactor
        axpy(prefactor, datum.features, self.vector_sum)


class BoundHessianVectorAggregator(BoundAggregator):
    """Accumulates H v for one direction v; ``value`` is unused."""

    def __init__(self, loss_function, dim, effective_coefficients, margin_shift,
                 effective_direction: np.ndarray, direction_shift: float):
        super().__init__(loss_function, dim, effective_coefficients, margin_shift)
        effective_direction = np.array(effective_direction, dtype=np.float64)
        effective_direction.setflags(write=False)
        self._effective_direction = effective_direction
        self._direction_shift = float(direction_shift)

    def _binding(self):
        return super()._binding() + (self._effective_direction, self._direction_shift)

    def _accumulate(self, datum, margin):
        # v . x' for this example, without forming x'
        projection = dot(datum.features, self._effective_direction) + self._direction_shift
        prefactor = datum.weight * self.loss_function.dzz_loss(margin, datum.label) * projection
        self.vector_shift_prefactor_sum += prefactor
        axpy(prefactor, datum.features, self.vector_sum)


class BoundHessianDiagonalAggregator(BoundAggregator):
    """
    diag(H)_j = factor_j^2 * (sum w l'' x_j^2 - 2 shift_j sum w l'' x_j + shift_j^2 sum w l'')

    ``vector_sum`` holds sum w l'' x, ``vector_shift_prefactor_sum`` holds sum w l''.
    """

    def __init__(self, loss_function, dim, effective_coefficients, margin_shift):
        super().__init__(loss_function, dim, effective_coefficients, margin_shift)
        self.squared_sum = np.zeros(dim)

    def _accumulate(self, datum, margin):
        prefactor = datum.weight * self.loss_function.dzz_loss(margin, datum.label)
        x = datum.features
        self.vector_shift_prefactor_sum += prefactor
        axpy(prefactor, x, self.vector_sum)
        axpy(prefactor, x.power(2) if sp.issparse(x) else x * x, self.squared_sum)

    def _merge_extra(self, other):
        self.squared_sum += other.squared_sum

    def vector(self, normalization: NormalizationContext) -> np.ndarray:
        out = self.squared_sum
        shifts = normalization.shifts
        if shifts is not None:
            out = out - 2.0 * shifts * self.vector_sum + shifts * shifts * self.vector_shift_prefactor_sum
        if normalization.factors is not None:
            out = out * normalization.factors ** 2
        return np.array(out, dtype=np.float64)


class BoundHessianMatrixAggregator(BoundAggregator):
    """
    H = D (A - b s^T - s b^T + c s s^T) D with A = sum w l'' x x^T, b = sum w l'' x,
    c = sum w l'', s = shifts and D = diag(factors).
    """

    def __init__(self, loss_function, dim, effective_coefficients, margin_shift):
        super().__init__(loss_function, dim, effective_coefficients, margin_shift)
        self.matrix_sum = np.zeros((dim, dim))

    def _accumulate(self, datum, margin):
        prefactor = datum.weight * self.loss_function.dzz_loss(margin, datum.label)
        x = to_dense(datum.features)
        self.vector_shift_prefactor_sum += prefactor
        self.vector_sum += prefactor * x
        self.matrix_sum += prefactor * np.outer(x, x)

    def _merge_extra(self, other):
        self.matrix_sum += other.matrix_sum

    def matrix(self, normalization: NormalizationContext) -> np.ndarray:
        out = self.matrix_sum
        shifts = normalization.shifts
        if shifts is not None:
            cross = np.outer(self.vector_sum, shifts)
            out = out - cross - cross.T + self.vector_shift_prefactor_sum * np.outer(shifts, shifts)
        if normalization.factors is not None:
            out = out * np.outer(normalization.factors, normalization.factors)
        return np.array(out, dtype=np.float64)

    def vector(self, normalization: NormalizationContext) -> np.ndarray:
        return np.diag(self.matrix(normalization)).copy()
