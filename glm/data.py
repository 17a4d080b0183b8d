from __future__ import annotations

from dataclasses import dataclass
from typing import Union

import numpy as np
import scipy.sparse as sp

Features = Union[np.ndarray, sp.csr_matrix]


# ---------------------------------------
# Feature vectors: dense 1-D arrays or sparse 1 x dim rows
# ---------------------------------------

def as_features(x) -> Features:
    if sp.issparse(x):
        row = sp.csr_matrix(x, dtype=np.float64)
        if row.shape[0] != 1:
            raise ValueError(f"Sparse features must be a single row, got shape {row.shape}")
        row.sum_duplicates()
        return row
    dense = np.asarray(x, dtype=np.float64)
    if dense.ndim != 1:
        raise ValueError(f"Dense features must be 1-D, got shape {dense.shape}")
    return dense


def features_size(x: Features) -> int:
    return int(x.shape[-1])


def dot(x: Features, v: np.ndarray) -> float:
    if sp.issparse(x):
        return float(np.dot(x.data, v[x.indices]))
    return float(np.dot(x, v))


def axpy(a: float, x: Features, y: np.ndarray):
    """y += a * x, in place"""
    if sp.issparse(x):
        y[x.indices] += a * x.data
    else:
        y += a * x


def to_dense(x: Features) -> np.ndarray:
    if sp.issparse(x):
        return np.asarray(x.toarray()).ravel()
    return x


@dataclass(frozen=True, eq=False)
class LabeledPoint:
    label: float
    features: Features
    offset: float = 0.0
    weight: float = 1.0

    def __post_init__(self):
        object.__setattr__(self, "features", as_features(self.features))
        object.__setattr__(self, "label", float(self.label))
        object.__setattr__(self, "offset", float(self.offset))
        object.__setattr__(self, "weight", float(self.weight))

    @property
    def size(self) -> int:
        return features_size(self.features)

    def compute_margin(self, coefficients: np.ndarray) -> float:
        return dot(self.features, coefficients) + self.offset
