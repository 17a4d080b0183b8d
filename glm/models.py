from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Optional

import numpy as np

from glm.data import Features, as_features, dot, features_size
from glm.errors import DimensionMismatch


@dataclass(frozen=True, eq=False)
class Coefficients:
    means: np.ndarray
    variances: Optional[np.ndarray] = None

    def __post_init__(self):
        object.__setattr__(self, "means", np.asarray(self.means, dtype=np.float64))
        if self.variances is not None:
            variances = np.asarray(self.variances, dtype=np.float64)
            if variances.shape != self.means.shape:
                raise DimensionMismatch(f"Means size {self.means.shape} != variances size {variances.shape}")
            object.__setattr__(self, "variances", variances)

    @property
    def size(self) -> int:
        return int(self.means.shape[0])

    @classmethod
    def zeros(cls, dim: int) -> "Coefficients":
        return cls(np.zeros(dim))


class GeneralizedLinearModel:
    """Linear predictor plus an inverse link; the constructor is the coefficients -> model factory."""

    def __init__(self, coefficients: Coefficients):
        self.coefficients = coefficients

    def __repr__(self):
        return f"{type(self).__name__}(means={self.coefficients.means})"

    def compute_margin(self, features: Features, offset: float = 0.0) -> float:
        features = as_features(features)
        if features_size(features) != self.coefficients.size:
            raise DimensionMismatch(f"Size mismatch. Coefficient size: {self.coefficients.size}, "
                                    f"features size: {features_size(features)}")
        return dot(features, self.coefficients.means) + offset

    def compute_mean(self, features: Features, offset: float = 0.0) -> float:
        raise NotImplementedError

    def update_coefficients(self, coefficients: Coefficients) -> "GeneralizedLinearModel":
        return type(self)(coefficients)


class BinaryClassifier(GeneralizedLinearModel):
    positive_label, negative_label = 1.0, 0.0

    def predict_class(self, features: Features, threshold: float = 0.5, offset: float = 0.0) -> float:
        return self.positive_label if self.compute_mean(features, offset) > threshold else self.negative_label


class LogisticRegressionModel(BinaryClassifier):

    def compute_mean(self, features, offset=0.0):
        z = self.compute_margin(features, offset)
        if z >= 0:
            return 1.0 / (1.0 + math.exp(-z))
        e = math.exp(z)
        return e / (1.0 + e)


class SmoothedHingeLossLinearSVMModel(BinaryClassifier):

    def compute_mean(self, features, offset=0.0):
        return self.compute_margin(features, offset)

    def predict_class(self, features, threshold=0.0, offset=0.0):
        return super().predict_class(features, threshold, offset)


class LinearRegressionModel(GeneralizedLinearModel):

    def compute_mean(self, features, offset=0.0):
        return self.compute_margin(features, offset)


class PoissonRegressionModel(GeneralizedLinearModel):

    def compute_mean(self, features, offset=0.0):
        return math.exp(self.compute_margin(features, offset))
