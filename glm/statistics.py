from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Optional, Union

import dask.bag as db
import numpy as np

from functions.reduction import accumulator_monoid, fold, tree_aggregate
from glm.data import LabeledPoint, features_size, to_dense
from glm.errors import DimensionMismatch


class _SummaryAccumulator:
    """Mergeable column summary of feature vectors (count, sums, extrema, nnz)."""

    def __init__(self, dim: Optional[int] = None):
        self.dim = dim
        self.count = 0
        self.total = self.total_sq = self.abs_sum = self.nnz = None
        self.minimum = self.maximum = None

    def empty(self) -> "_SummaryAccumulator":
        return _SummaryAccumulator(self.dim)

    def _allocate(self, dim: int):
        self.dim = dim
        self.total, self.total_sq, self.abs_sum = np.zeros(dim), np.zeros(dim), np.zeros(dim)
        self.nnz = np.zeros(dim, dtype=np.int64)
        self.minimum, self.maximum = np.full(dim, np.inf), np.full(dim, -np.inf)

    def add(self, datum: LabeledPoint) -> "_SummaryAccumulator":
        size = features_size(datum.features)
        if self.total is None:
            if self.dim is not None and self.dim != size:
                raise DimensionMismatch(f"Size mismatch. Expected dimension {self.dim}, features size: {size}")
            self._allocate(size)
        elif size != self.dim:
            raise DimensionMismatch(f"Size mismatch. Expected dimension {self.dim}, features size: {size}")

        # implicit zeros of sparse rows take part in min/max
        x = to_dense(datum.features)
        self.count += 1
        self.total += x
        self.total_sq += x * x
        self.abs_sum += np.abs(x)
        self.nnz += (x != 0)
        np.minimum(self.minimum, x, out=self.minimum)
        np.maximum(self.maximum, x, out=self.maximum)
        return self

    def combine(self, other: "_SummaryAccumulator") -> "_SummaryAccumulator":
        if other.count == 0:
            return self._copy()
        if self.count == 0:
            return other._copy()
        if self.dim != other.dim:
            raise DimensionMismatch(f"Dimension mismatch. this.dim={self.dim}, that.dim={other.dim}")
        merged = _SummaryAccumulator(self.dim)
        merged.count = self.count + other.count
        merged.total, merged.total_sq = self.total + other.total, self.total_sq + other.total_sq
        merged.abs_sum, merged.nnz = self.abs_sum + other.abs_sum, self.nnz + other.nnz
        merged.minimum, merged.maximum = np.minimum(self.minimum, other.minimum), np.maximum(self.maximum, other.maximum)
        return merged

    def _copy(self) -> "_SummaryAccumulator":
        c = _SummaryAccumulator(self.dim)
        c.count = self.count
        if self.total is not None:
            c.total, c.total_sq, c.abs_sum = self.total.copy(), self.total_sq.copy(), self.abs_sum.copy()
            c.nnz, c.minimum, c.maximum = self.nnz.copy(), self.minimum.copy(), self.maximum.copy()
        return c


@dataclass(frozen=True, eq=False)
class FeatureDataStatistics:
    """Per-feature summary used to build normalization contexts."""
    count: int
    mean: np.ndarray
    variance: np.ndarray
    num_nonzeros: np.ndarray
    max: np.ndarray
    min: np.ndarray
    norm_l1: np.ndarray
    norm_l2: np.ndarray
    mean_abs: np.ndarray
    intercept_index: Optional[int] = None

    @property
    def size(self) -> int:
        return int(self.mean.shape[0])

    @property
    def std(self) -> np.ndarray:
        return np.sqrt(self.variance)

    @property
    def max_magnitude(self) -> np.ndarray:
        return np.maximum(np.abs(self.max), np.abs(self.min))

    @classmethod
    def compute(cls, data: Union[Iterable[LabeledPoint], db.Bag], intercept_index: Optional[int] = None,
                dim: Optional[int] = None, depth: int = 1) -> "FeatureDataStatistics":
        """Summarize a local iterable or a dask bag of labeled points."""
        zero = _SummaryAccumulator(dim)
        if isinstance(data, db.Bag):
            summary = tree_aggregate(data, accumulator_monoid(zero), _add, depth=depth)
        else:
            summary = fold(data, _add, zero)
        if summary.count == 0:
            raise ValueError("Cannot compute feature statistics of an empty dataset")
        return cls.from_summary(summary, intercept_index)

    @classmethod
    def from_summary(cls, s: _SummaryAccumulator, intercept_index: Optional[int]) -> "FeatureDataStatistics":
        n = s.count
        mean = s.total / n
        # unbiased variance, clipped against cancellation
        if n > 1:
            variance = np.maximum((s.total_sq - n * mean * mean) / (n - 1), 0.0)
        else:
            variance = np.zeros_like(mean)
        if intercept_index is not None and not 0 <= intercept_index < s.dim:
            raise DimensionMismatch(f"Intercept index {intercept_index} out of range for dimension {s.dim}")
        return cls(count=n, mean=mean, variance=variance, num_nonzeros=s.nnz.astype(np.float64),
                   max=s.maximum, min=s.minimum, norm_l1=s.abs_sum, norm_l2=np.sqrt(s.total_sq),
                   mean_abs=s.abs_sum / n, intercept_index=intercept_index)


def _add(acc, datum):
    return acc.add(datum)
