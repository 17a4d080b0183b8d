"""
Eager line searches along a descent direction d from x.

``loss_and_grad(x) -> (f, g)`` returns tf tensors. Controls run in plain
python: the cost of a search is dominated by the data passes behind
``loss_and_grad``, not by the few scalar tests done here.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import List

import tensorflow as tf

from optimizers.helpers import _dot


@dataclass
class LineSearchResult:
    alpha: float
    f: float
    g: tf.Tensor
    evals: int
    backtracks: int
    success: bool
    reason: str = ""


class LineSearchBase:

    def reset(self):
        pass

    def search(self, x, f, g, d, loss_and_grad, alpha0) -> LineSearchResult:
        raise NotImplementedError


class NonmonotoneArmijo(LineSearchBase):
    """Grippo-Lampariello-Lucidi backtracking: sufficient decrease against the max of the last `window` values."""

    def __init__(self, c1=1e-4, window=5, backtrack=0.5, max_evals=20):
        self.c1 = float(c1)
        self.window = int(window)
        self.backtrack = float(backtrack)
        self.max_evals = int(max_evals)
        self.f_hist: List[float] = []

    def reset(self):
        self.f_hist = []

    def search(self, x, f, g, d, loss_and_grad, alpha0) -> LineSearchResult:
        f0 = float(f)
        gTd = float(_dot(g, d).numpy())
        if gTd >= 0.0:
            return LineSearchResult(0.0, f0, g, 0, 0, False, "non-descent direction")
        self.f_hist.append(f0)
        f_ref = max(self.f_hist[-self.window:])
        alpha = float(alpha0)
        backtracks, evals = 0, 0
        while evals < self.max_evals:
            f_try, g_try = loss_and_grad(x + alpha * d)
            f_try = float(f_try)
            evals += 1
            if f_try <= f_ref + self.c1 * alpha * gTd:
                return LineSearchResult(alpha, f_try, g_try, evals, backtracks, True, "accepted")
            alpha *= self.backtrack
            backtracks += 1
        return LineSearchResult(0.0, f0, g, evals, backtracks, False, "eval_cap")


class StrongWolfe(LineSearchBase):
    """Bracketing search for the strong Wolfe conditions, zoom by bisection."""

    def __init__(self, c1=1e-4, c2=0.9, amax=1e3, max_evals=20):
        self.c1, self.c2, self.amax, self.max_evals = float(c1), float(c2), float(amax), int(max_evals)

    @staticmethod
    def _phi(x, d, a, loss_and_grad):
        f_try, g_try = loss_and_grad(x + a * d)
        return float(f_try), g_try

    def search(self, x, f, g, d, loss_and_grad, alpha0) -> LineSearchResult:
        f0, g0Td = float(f), float(_dot(g, d).numpy())
        if g0Td >= 0.0:
            return LineSearchResult(0.0, f0, g, 0, 0, False, "non-descent direction")
        a0, a1 = 0.0, min(self.amax, float(alpha0))
        f_a0 = f0
        f_a1, g_a1 = self._phi(x, d, a1, loss_and_grad)
        evals = 1
        while True:
            if (f_a1 > f0 + self.c1 * a1 * g0Td) or (evals > 1 and f_a1 >= f_a0):
                return self._zoom(x, g, d, a0, a1, f_a0, f0, g0Td, loss_and_grad, evals)
            g_a1Td = float(_dot(g_a1, d).numpy())
            if abs(g_a1Td) <= -self.c2 * g0Td:
                return LineSearchResult(a1, f_a1, g_a1, evals, 0, True, "accepted")
            if g_a1Td >= 0:
                return self._zoom(x, g, d, a1, a0, f_a1, f0, g0Td, loss_and_grad, evals)
            if a1 >= self.amax or evals >= self.max_evals:
                # still decreasing: the Armijo part holds, take the step
                return LineSearchResult(a1, f_a1, g_a1, evals, 0, True, "amax")
            a0, f_a0, a1 = a1, f_a1, min(self.amax, 2.0 * a1)
            f_a1, g_a1 = self._phi(x, d, a1, loss_and_grad)
            evals += 1

    def _zoom(self, x, g, d, alo, ahi, flo, f0, g0Td, loss_and_grad, evals):
        # alo always satisfies sufficient decrease; alo > 0 is a usable fallback
        backtracks = 0
        g_lo = None
        while evals < self.max_evals:
            aj = 0.5 * (alo + ahi)
            f_aj, g_aj = self._phi(x, d, aj, loss_and_grad)
            evals += 1
            backtracks += 1
            if (f_aj > f0 + self.c1 * aj * g0Td) or (f_aj >= flo):
                ahi = aj
            else:
                g_ajTd = float(_dot(g_aj, d).numpy())
                if abs(g_ajTd) <= -self.c2 * g0Td:
                    return LineSearchResult(aj, f_aj, g_aj, evals, backtracks, True, "zoom")
                if g_ajTd * (ahi - alo) >= 0:
                    ahi = alo
                alo, flo, g_lo = aj, f_aj, g_aj
        if alo > 0.0:
            if g_lo is None:
                flo, g_lo = self._phi(x, d, alo, loss_and_grad)
                evals += 1
            return LineSearchResult(alo, flo, g_lo, evals, backtracks, True, "eval_cap")
        return LineSearchResult(0.0, f0, g, evals, backtracks, False, "eval_cap")
