"""
Limited-memory BFGS in eager mode.

  - two line searches: nonmonotone Armijo (Grippo-Lampariello-Lucidi) and strong Wolfe
  - Barzilai-Borwein initial scaling of the inverse Hessian
  - optional Powell damping of the curvature pairs
  - on a failed line search the memory is dropped and a scaled steepest
    descent step is tried once before giving up
"""
from __future__ import annotations

from dataclasses import dataclass, asdict
from typing import List

import tensorflow as tf

from optimizers.convergence_flag import CvgFlags
from optimizers.helpers import _dot, _norm
from optimizers.line_searches import NonmonotoneArmijo, StrongWolfe
from optimizers.optimizer import Optimizer
from glm.normalization import NO_NORMALIZATION


@dataclass
class LBFGSConfig:
    m: int = 10
    line_search: str = 'strong_wolfe'
    armijo_c1: float = 1e-4
    wolfe_c2: float = 0.9
    armijo_window: int = 5
    backtrack_factor: float = 0.5
    max_evals_per_iter: int = 20
    powell_damping: bool = False
    pair_quality_min_cos: float = 1e-10
    init_scaling: str = 'bb'
    init_gamma: float = 1.0


class LBFGS(Optimizer):
    name = "LBFGS"

    def __init__(self, tolerance=1e-6, max_iterations=100, normalization=NO_NORMALIZATION, track_state=True,
                 verbose=False, **kwargs):
        super().__init__(tolerance, max_iterations, normalization, track_state, verbose)
        self.cfg = LBFGSConfig(**kwargs)
        if self.cfg.line_search == 'nonmonotone_armijo':
            self.ls = NonmonotoneArmijo(c1=self.cfg.armijo_c1, window=self.cfg.armijo_window,
                                        backtrack=self.cfg.backtrack_factor, max_evals=self.cfg.max_evals_per_iter)
        elif self.cfg.line_search == 'strong_wolfe':
            self.ls = StrongWolfe(c1=self.cfg.armijo_c1, c2=self.cfg.wolfe_c2, max_evals=self.cfg.max_evals_per_iter)
        else:
            raise ValueError("line_search must be 'nonmonotone_armijo' or 'strong_wolfe'")
        self.S: List[tf.Tensor] = []
        self.Y: List[tf.Tensor] = []

    def get_config(self):
        return dict(tolerance=self.tolerance, max_iterations=self.max_iterations, **asdict(self.cfg))

    def two_loop(self, g: tf.Tensor, gamma: float) -> tf.Tensor:
        S, Y = self.S, self.Y
        q = tf.identity(g)
        alphas, rhos = [], []
        for i in range(len(S) - 1, -1, -1):
            rhoi = 1.0 / float(_dot(Y[i], S[i]).numpy())
            ai = rhoi * float(_dot(S[i], q).numpy())
            alphas.append(ai)
            rhos.append(rhoi)
            q = q - ai * Y[i]
        r = gamma * q
        alphas, rhos = alphas[::-1], rhos[::-1]
        for i in range(len(S)):
            bi = rhos[i] * float(_dot(Y[i], r).numpy())
            r = r + S[i] * (alphas[i] - bi)
        return r

    def initial_gamma(self, g_norm: float) -> float:
        if len(self.S) == 0:
            # first step (or after a reset): unit length steepest descent trial
            return float(self.cfg.init_gamma) / max(1.0, g_norm)
        if self.cfg.init_scaling == 'bb':
            s, y = self.S[-1], self.Y[-1]
            yTy = float(_dot(y, y).numpy())
            if yTy <= 0: return float(self.cfg.init_gamma)
            return max(1e-12, min(1e12, float(_dot(s, y).numpy()) / yTy))
        return float(self.cfg.init_gamma)

    def powell_damp(self, s, y, gamma):
        sTy = float(_dot(s, y).numpy())
        sBs = float((1.0 / max(1e-12, gamma)) * _dot(s, s).numpy())
        if sTy >= 0.2 * sBs: return y
        theta = 0.8 * sBs / max(1e-12, (sBs - sTy))
        return theta * y + (1 - theta) * (1.0 / max(1e-12, gamma)) * s

    def _update_memory(self, s, y, gamma):
        s_norm, y_norm = float(_norm(s).numpy()), float(_norm(y).numpy())
        sTy = float(_dot(s, y).numpy())
        if not (s_norm > 0 and y_norm > 0 and sTy > self.cfg.pair_quality_min_cos * s_norm * y_norm):
            if not self.cfg.powell_damping:
                return False
        y_used = self.powell_damp(s, y, gamma) if self.cfg.powell_damping else y
        if float(_dot(s, y_used).numpy()) <= 0.0:
            return False
        self.S.append(tf.identity(s))
        self.Y.append(tf.identity(y_used))
        while len(self.S) > self.cfg.m:
            del self.S[0]
            del self.Y[0]
        return True

    def _minimize(self, objective, data, x, loss_and_grad):
        self.S.clear()
        self.Y.clear()
        self.ls.reset()
        f, g = loss_and_grad(x)
        g_norm = g0_norm = self._gradient_norm(g)
        self._record(0, x, f, g_norm)
        if g0_norm == 0.0:
            return x, f, CvgFlags.grad_tol___
        k, reason = 0, CvgFlags.in_progress
        while reason == CvgFlags.in_progress:
            gamma = self.initial_gamma(g_norm)
            d = -self.two_loop(g, gamma)
            ls_res = self.ls.search(x, f, g, d, loss_and_grad, 1.0)
            if not ls_res.success and self.S:
                if self.verbose: print(f"[{self.name}] line search failed ({ls_res.reason}), memory reset")
                self.S.clear()
                self.Y.clear()
                gamma = self.initial_gamma(g_norm)
                d = -gamma * g
                ls_res = self.ls.search(x, f, g, d, loss_and_grad, 1.0)
            if not ls_res.success:
                reason = CvgFlags.line_search
                break
            x_new = x + ls_res.alpha * d
            accepted_pair = self._update_memory(x_new - x, ls_res.g - g, gamma)
            f_prev, x, f, g = f, x_new, ls_res.f, ls_res.g
            g_norm = self._gradient_norm(g)
            k += 1
            self._record(k, x, f, g_norm)
            if self.verbose and (k % 10 == 0 or k < 5):
                print(f"[{self.name} iter {k:5d}] f={f:.6e} |g|={g_norm:.3e} alpha={ls_res.alpha:.2e} "
                      f"evals={ls_res.evals} m={len(self.S)} pair={'y' if accepted_pair else 'n'}")
            reason = self._check_convergence(k, f_prev, f, g_norm, g0_norm)
        return x, f, reason
