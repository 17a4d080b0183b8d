"""
Per-feature affine normalization.

A normalization context describes the transform

    x'_j = (x_j - shift_j) * factor_j

applied conceptually to every feature vector before fitting. Nothing in the
training path materializes x'. The aggregators fold the transform into the
coefficients instead:

    coef . x' = (coef * factor) . x - (coef * factor) . shift

so one O(dim) rewrite of the coefficients per pass replaces an O(n * dim)
rewrite of the data. The intercept column is never transformed: when an
intercept index is declared its factor must be 1 and its shift 0.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Tuple

import numpy as np

from glm.data import Features, to_dense
from glm.errors import DimensionMismatch, InvalidNormalization
from glm.statistics import FeatureDataStatistics


class NormalizationType(Enum):
    NONE = "none"
    SCALE_WITH_STANDARD_DEVIATION = "scale_with_standard_deviation"
    SCALE_WITH_MAX_MAGNITUDE = "scale_with_max_magnitude"
    STANDARDIZATION = "standardization"


def _frozen(v) -> np.ndarray:
    a = np.array(v, dtype=np.float64)
    if a.ndim != 1:
        raise DimensionMismatch(f"Normalization vectors must be 1-D, got shape {a.shape}")
    a.setflags(write=False)
    return a


@dataclass(frozen=True, eq=False)
class NormalizationContext:
    factors: Optional[np.ndarray] = None
    shifts_and_intercept: Optional[Tuple[np.ndarray, int]] = None

    def __post_init__(self):
        if self.factors is not None:
            object.__setattr__(self, "factors", _frozen(self.factors))
        if self.shifts_and_intercept is not None:
            shifts, intercept = self.shifts_and_intercept
            if intercept is None:
                raise InvalidNormalization("Shift without intercept is illegal")
            shifts = _frozen(shifts)
            intercept = int(intercept)
            if not 0 <= intercept < shifts.shape[0]:
                raise DimensionMismatch(f"Intercept index {intercept} out of range for size {shifts.shape[0]}")
            object.__setattr__(self, "shifts_and_intercept", (shifts, intercept))
            if self.factors is not None and self.factors.shape[0] != shifts.shape[0]:
                raise DimensionMismatch(
                    f"Size mismatch. Factors vector size: {self.factors.shape[0]} != shifts size: {shifts.shape[0]}")
        self._check_intercept()

    def _check_intercept(self):
        if self.shifts_and_intercept is None:
            return
        shifts, intercept = self.shifts_and_intercept
        if self.factors is not None and self.factors[intercept] != 1.0:
            raise InvalidNormalization(
                f"The intercept should not be transformed. Intercept scaling factor: {self.factors[intercept]}")
        if shifts[intercept] != 0.0:
            raise InvalidNormalization(f"The intercept should not be transformed. Intercept shift: {shifts[intercept]}")

    # ---------------------------------------
    # Accessors
    # ---------------------------------------

    @property
    def shifts(self) -> Optional[np.ndarray]:
        return None if self.shifts_and_intercept is None else self.shifts_and_intercept[0]

    @property
    def intercept_index(self) -> Optional[int]:
        return None if self.shifts_and_intercept is None else self.shifts_and_intercept[1]

    @property
    def is_identity(self) -> bool:
        return self.factors is None and self.shifts_and_intercept is None

    @property
    def size(self) -> Optional[int]:
        if self.factors is not None:
            return int(self.factors.shape[0])
        if self.shifts is not None:
            return int(self.shifts.shape[0])
        return None

    def validate(self, dim: int):
        """Fail unless every present vector has length ``dim`` and the intercept is untouched."""
        if self.factors is not None and self.factors.shape[0] != dim:
            raise DimensionMismatch(f"Size mismatch. Factors vector size: {self.factors.shape[0]} != {dim}.")
        if self.shifts is not None and self.shifts.shape[0] != dim:
            raise DimensionMismatch(f"Size mismatch. Shifts vector size: {self.shifts.shape[0]} != {dim}.")
        self._check_intercept()

    # ---------------------------------------
    # Transforms
    # ---------------------------------------

    def transform_vector(self, x: Features) -> np.ndarray:
        """Materialize x' = (x - shift) * factor. Intended for diagnostics and tests."""
        out = np.array(to_dense(x), dtype=np.float64)
        if self.size is not None and out.shape[0] != self.size:
            raise DimensionMismatch(f"Vector size {out.shape[0]} != normalization size {self.size}")
        if self.shifts is not None:
            out -= self.shifts
        if self.factors is not None:
            out *= self.factors
        return out

    def model_to_original_space(self, means: np.ndarray) -> np.ndarray:
        """Map coefficients fitted on x' to coefficients acting on raw x (same margins)."""
        means = np.array(means, dtype=np.float64)
        self.validate(means.shape[0])
        if self.factors is not None:
            means = means * self.factors
        if self.shifts_and_intercept is not None:
            shifts, intercept = self.shifts_and_intercept
            means[intercept] -= np.dot(means, shifts)
        return means

    def model_to_transformed_space(self, means: np.ndarray) -> np.ndarray:
        """Inverse of :meth:`model_to_original_space`."""
        means = np.array(means, dtype=np.float64)
        self.validate(means.shape[0])
        if self.shifts_and_intercept is not None:
            shifts, intercept = self.shifts_and_intercept
            means[intercept] += np.dot(means, shifts)
        if self.factors is not None:
            means = means / self.factors
        return means

    def jacobian(self, size: int) -> np.ndarray:
        """J such that model_to_original_space(w') = J w'."""
        self.validate(size)
        factors = np.ones(size) if self.factors is None else self.factors
        jac = np.diag(factors)
        if self.shifts_and_intercept is not None:
            shifts, intercept = self.shifts_and_intercept
            jac[intercept] -= factors * shifts
        return jac

    def variances_to_original_space(self, variances: Optional[np.ndarray],
                                    covariance: Optional[np.ndarray] = None) -> Optional[np.ndarray]:
        """
        diag(J C Jᵀ), with C the covariance of the normalized coefficients.

        Without ``covariance`` the normalized coefficients are taken as
        uncorrelated, C = diag(variances).
        """
        if variances is None or self.is_identity:
            return variances
        variances = np.asarray(variances, dtype=np.float64)
        jac = self.jacobian(variances.shape[0])
        if covariance is None:
            return (jac ** 2) @ variances
        covariance = np.asarray(covariance, dtype=np.float64)
        if covariance.shape != (variances.shape[0], variances.shape[0]):
            size = variances.shape[0]
            raise DimensionMismatch(f"Covariance shape {covariance.shape} != ({size}, {size})")
        return np.einsum("ij,jk,ik->i", jac, covariance, jac)

    # ---------------------------------------
    # Factory
    # ---------------------------------------

    @classmethod
    def build(cls, normalization_type: NormalizationType,
              statistics: FeatureDataStatistics) -> "NormalizationContext":
        intercept = statistics.intercept_index

        def protected_inverse(v):
            # features with no spread are left unscaled
            out = np.ones_like(v)
            np.divide(1.0, v, out=out, where=v > 0)
            if intercept is not None:
                out[intercept] = 1.0
            return out

        if normalization_type == NormalizationType.NONE:
            return NO_NORMALIZATION
        if normalization_type == NormalizationType.SCALE_WITH_STANDARD_DEVIATION:
            return cls(protected_inverse(statistics.std), None)
        if normalization_type == NormalizationType.SCALE_WITH_MAX_MAGNITUDE:
            return cls(protected_inverse(statistics.max_magnitude), None)
        if normalization_type == NormalizationType.STANDARDIZATION:
            if intercept is None:
                raise InvalidNormalization("Standardization requires an intercept column to absorb the shift")
            shifts = np.array(statistics.mean, dtype=np.float64)
            shifts[intercept] = 0.0
            return cls(protected_inverse(statistics.std), (shifts, intercept))
        raise ValueError(f"Unknown normalization type: {normalization_type}")


NO_NORMALIZATION = NormalizationContext()
