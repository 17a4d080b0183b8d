import sys

import utilities.tensorflow_config as tf_cfg

if "tensorflow" not in sys.modules:
    tf_cfg.configure(mode="eager", seed=1, use_gpu=False, log_level="3")

import dask
import numpy as np
import pytest

from glm.data import LabeledPoint

# bags are evaluated in-process; the default process pool only adds pickling time here
dask.config.set(scheduler="synchronous")


def _sigmoid(z):
    return 1.0 / (1.0 + np.exp(-z))


@pytest.fixture
def rng():
    return np.random.default_rng(7)


@pytest.fixture
def logistic_data(rng):
    """
    factory(n, w, separable, gap) -> list of LabeledPoint with the intercept in the last column.

    Raw features are deliberately badly scaled and off-center so that
    normalization has something to do.
    """
    def make(n=200, w=(1.5, -2.0, 0.5), separable=False, gap=0.2, weights=False, offsets=False):
        w = np.asarray(w, dtype=np.float64)
        dim = w.shape[0]
        mu = np.linspace(3.0, -2.0, dim - 1)
        sigma = np.geomspace(4.0, 0.25, dim - 1)
        points = []
        while len(points) < n:
            z_raw = rng.normal(size=dim - 1)
            x = np.append(mu + sigma * z_raw, 1.0)
            # margin on standardized coordinates keeps the labels balanced
            z = np.dot(w[:-1], z_raw) + w[-1]
            if separable:
                if abs(z) < gap:
                    continue
                y = float(z > 0)
            else:
                y = float(rng.random() < _sigmoid(z))
            points.append(LabeledPoint(y, x, offset=rng.normal(scale=0.1) if offsets else 0.0,
                                       weight=rng.uniform(0.5, 2.0) if weights else 1.0))
        return points
    return make


@pytest.fixture
def regression_data(rng):
    def make(n=100, w=(0.3, -0.2, 0.1), poisson=False):
        w = np.asarray(w, dtype=np.float64)
        points = []
        for _ in range(n):
            x = np.append(rng.normal(size=w.shape[0] - 1), 1.0)
            z = np.dot(w, x)
            y = float(rng.poisson(np.exp(z))) if poisson else z + rng.normal(scale=0.1)
            points.append(LabeledPoint(y, x))
        return points
    return make
