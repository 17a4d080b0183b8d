from __future__ import annotations

import logging
from enum import Enum
from typing import Iterable, Tuple, Union

import dask.bag as db
import numpy as np

from functions.aggregators import (HessianDiagonalAggregator, HessianMatrixAggregator, HessianVectorAggregator,
                                   ValueAndGradientAggregator)
from functions.pointwise_loss import PointwiseLossFunction, SmoothedHingeLossFunction, TwiceDiffPointwiseLossFunction
from functions.reduction import aggregate_distributed, aggregate_local
from glm.data import LabeledPoint
from glm.normalization import NO_NORMALIZATION, NormalizationContext

log = logging.getLogger(__name__)

Data = Union[Iterable[LabeledPoint], db.Bag]


class ObjectiveKind(Enum):
    """Differentiability capability an objective provides, fixed per objective class."""
    FIRST_ORDER = "first_order"
    DIAGONAL_SECOND_ORDER = "diagonal_second_order"
    FULL_SECOND_ORDER = "full_second_order"


class ObjectiveFunction:
    """
    Sum of weighted pointwise losses over a dataset.

    ``data`` is either a re-iterable local collection of :class:`LabeledPoint`
    or a partitioned ``dask.bag.Bag``; the same aggregators run on both.
    """
    kind = ObjectiveKind.FIRST_ORDER

    def __init__(self, loss_function: PointwiseLossFunction, tree_aggregate_depth: int = 1, num_shards: int = 1):
        if tree_aggregate_depth < 1:
            raise ValueError(f"tree_aggregate_depth must be >= 1, got {tree_aggregate_depth}")
        self.loss_function = loss_function
        self.tree_aggregate_depth = tree_aggregate_depth
        self.num_shards = num_shards

    def __repr__(self):
        return f"{type(self).__name__}({self.loss_function!r}, depth={self.tree_aggregate_depth})"

    def domain_dimension(self, data: Data) -> int:
        if isinstance(data, db.Bag):
            first = data.take(1, npartitions=-1)
        else:
            first = next(iter(data), None)
            first = () if first is None else (first,)
        if not first:
            raise ValueError("Cannot infer the domain dimension of an empty dataset")
        return first[0].size

    def _aggregate(self, data: Data, bound):
        if isinstance(data, db.Bag):
            return aggregate_distributed(data, bound, depth=self.tree_aggregate_depth)
        return aggregate_local(data, bound, num_shards=self.num_shards, depth=self.tree_aggregate_depth)

    def value_and_gradient(self, data: Data, coefficients: np.ndarray,
                           normalization: NormalizationContext = NO_NORMALIZATION) -> Tuple[float, np.ndarray]:
        unbound = ValueAndGradientAggregator(self.loss_function, len(coefficients))
        result = self._aggregate(data, unbound.bind(coefficients, normalization))
        return result.value, result.vector(normalization)

    def value(self, data: Data, coefficients: np.ndarray,
              normalization: NormalizationContext = NO_NORMALIZATION) -> float:
        return self.value_and_gradient(data, coefficients, normalization)[0]


class GLMObjective(ObjectiveFunction):
    """Objective over a twice differentiable pointwise loss: gradient, Hv, diag(H) and H."""
    kind = ObjectiveKind.FULL_SECOND_ORDER

    def __init__(self, loss_function: TwiceDiffPointwiseLossFunction, tree_aggregate_depth: int = 1,
                 num_shards: int = 1):
        if not isinstance(loss_function, TwiceDiffPointwiseLossFunction):
            raise TypeError(f"GLMObjective requires a twice differentiable loss, got {loss_function!r}")
        super().__init__(loss_function, tree_aggregate_depth, num_shards)

    def hessian_vector(self, data: Data, coefficients: np.ndarray, direction: np.ndarray,
                       normalization: NormalizationContext = NO_NORMALIZATION) -> np.ndarray:
        unbound = HessianVectorAggregator(self.loss_function, len(coefficients))
        result = self._aggregate(data, unbound.bind(coefficients, direction, normalization))
        return result.vector(normalization)

    def hessian_diagonal(self, data: Data, coefficients: np.ndarray,
                         normalization: NormalizationContext = NO_NORMALIZATION) -> np.ndarray:
        unbound = HessianDiagonalAggregator(self.loss_function, len(coefficients))
        result = self._aggregate(data, unbound.bind(coefficients, normalization))
        return result.vector(normalization)

    def hessian_matrix(self, data: Data, coefficients: np.ndarray,
                       normalization: NormalizationContext = NO_NORMALIZATION) -> np.ndarray:
        dim = len(coefficients)
        log.debug("hessian_matrix: materializing a %d x %d matrix", dim, dim)
        unbound = HessianMatrixAggregator(self.loss_function, dim)
        result = self._aggregate(data, unbound.bind(coefficients, normalization))
        return result.matrix(normalization)


class SmoothedHingeObjective(ObjectiveFunction):
    """Linear SVM objective; the smoothed hinge is only once differentiable."""
    kind = ObjectiveKind.FIRST_ORDER

    def __init__(self, tree_aggregate_depth: int = 1, num_shards: int = 1):
        super().__init__(SmoothedHingeLossFunction(), tree_aggregate_depth, num_shards)
