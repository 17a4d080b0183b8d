from __future__ import annotations

import math
from typing import Tuple

import numpy as np

# labels above this count as the positive class of a binary loss
POSITIVE_LABEL_THRESHOLD = 0.5


# ---------------------------------------
# Pointwise losses l(z, y) of the margin z and the label y
# ---------------------------------------

def _sigmoid(z: float) -> float:
    if z >= 0:
        return 1.0 / (1.0 + math.exp(-z))
    e = math.exp(z)
    return e / (1.0 + e)


class PointwiseLossFunction:
    """First order pointwise loss: value and derivative with respect to the margin."""

    def loss_and_dz_loss(self, margin: float, label: float) -> Tuple[float, float]:
        raise NotImplementedError

    def __repr__(self):
        return type(self).__name__


class TwiceDiffPointwiseLossFunction(PointwiseLossFunction):
    """Pointwise loss which also provides the second derivative with respect to the margin."""

    def dzz_loss(self, margin: float, label: float) -> float:
        raise NotImplementedError


class LogisticLossFunction(TwiceDiffPointwiseLossFunction):
    """Negative log-likelihood of a Bernoulli label in {0, 1}."""

    def loss_and_dz_loss(self, margin, label):
        if label > POSITIVE_LABEL_THRESHOLD:
            # log(1 + exp(-z)), d/dz = -1 / (1 + exp(z))
            return float(np.logaddexp(0.0, -margin)), -_sigmoid(-margin)
        return float(np.logaddexp(0.0, margin)), _sigmoid(margin)

    def dzz_loss(self, margin, label):
        s = _sigmoid(margin)
        return s * (1.0 - s)


class SquaredLossFunction(TwiceDiffPointwiseLossFunction):
    """0.5 * (z - y)^2"""

    def loss_and_dz_loss(self, margin, label):
        delta = margin - label
        return 0.5 * delta * delta, delta

    def dzz_loss(self, margin, label):
        return 1.0


class PoissonLossFunction(TwiceDiffPointwiseLossFunction):
    """Negative Poisson log-likelihood with log link, up to a label-only constant."""

    def loss_and_dz_loss(self, margin, label):
        prediction = float(np.exp(margin))
        return prediction - margin * label, prediction - label

    def dzz_loss(self, margin, label):
        return float(np.exp(margin))


class SmoothedHingeLossFunction(PointwiseLossFunction):
    """
    Rennie's smoothed hinge loss for labels in {0, 1} (mapped to {-1, +1}).

    With t = y * z:  0.5 - t for t <= 0,  0.5 * (1 - t)^2 for 0 < t < 1,  0 otherwise.
    Only once differentiable, so it has no second derivative.
    """

    def loss_and_dz_loss(self, margin, label):
        y = 1.0 if label > POSITIVE_LABEL_THRESHOLD else -1.0
        t = y * margin
        if t <= 0.0:
            return 0.5 - t, -y
        if t < 1.0:
            return 0.5 * (1.0 - t) ** 2, y * (t - 1.0)
        return 0.0, 0.0
