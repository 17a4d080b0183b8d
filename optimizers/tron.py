"""
Trust region Newton (Lin, Weng & Keerthi, 2008).

Each outer iteration approximately solves the trust region subproblem
    min_s  g.s + 0.5 s.H s   s.t. |s| <= delta
by truncated conjugate gradient, using only Hessian-vector products, so the
objective must provide ``hessian_vector``. The step is accepted when the
actual reduction is a sufficient fraction of the predicted one.
"""
from __future__ import annotations

import math
from dataclasses import dataclass, asdict

import tensorflow as tf

from functions.objective import ObjectiveKind
from optimizers.convergence_flag import CvgFlags
from optimizers.helpers import _dot, _norm, to_numpy, to_tensor
from optimizers.optimizer import Optimizer
from glm.normalization import NO_NORMALIZATION


@dataclass
class TRONConfig:
    # step acceptance and radius update thresholds on actual/predicted reduction
    eta0: float = 1e-4
    eta1: float = 0.25
    eta2: float = 0.75
    # radius shrink / expand factors
    sigma1: float = 0.25
    sigma2: float = 0.5
    sigma3: float = 4.0
    max_cg_iterations: int = 20
    cg_tolerance: float = 0.1
    max_rejections: int = 20


class TRON(Optimizer):
    name = "TRON"

    def __init__(self, tolerance=1e-6, max_iterations=100, normalization=NO_NORMALIZATION, track_state=True,
                 verbose=False, **kwargs):
        super().__init__(tolerance, max_iterations, normalization, track_state, verbose)
        self.cfg = TRONConfig(**kwargs)

    def get_config(self):
        return dict(tolerance=self.tolerance, max_iterations=self.max_iterations, **asdict(self.cfg))

    def check_objective(self, objective):
        if getattr(objective, "kind", None) is not ObjectiveKind.FULL_SECOND_ORDER:
            raise TypeError(f"TRON needs Hessian-vector products, {type(objective).__name__} has none")

    def _cg(self, hv, g, delta):
        """Steihaug truncated CG on H s = -g inside the ball of radius delta; returns (s, r, cg_iterations)."""
        s = tf.zeros_like(g)
        r = -g
        d = tf.identity(r)
        rTr = float(_dot(r, r).numpy())
        cg_tol = self.cfg.cg_tolerance * math.sqrt(rTr)
        for i in range(self.cfg.max_cg_iterations):
            if math.sqrt(rTr) <= cg_tol:
                return s, r, i
            Hd = hv(d)
            dHd = float(_dot(d, Hd).numpy())
            alpha = rTr / dHd if dHd > 0 else math.inf
            s_next = s + alpha * d if math.isfinite(alpha) else None
            if s_next is None or float(_norm(s_next).numpy()) > delta:
                # move to the boundary along d
                sTd, dTd, sTs = float(_dot(s, d).numpy()), float(_dot(d, d).numpy()), float(_dot(s, s).numpy())
                rad = math.sqrt(max(0.0, sTd * sTd + dTd * (delta * delta - sTs)))
                tau = (delta * delta - sTs) / (sTd + rad) if sTd >= 0 else (rad - sTd) / dTd
                s = s + tau * d
                r = r - tau * Hd
                return s, r, i + 1
            s = s_next
            r = r - alpha * Hd
            rTr_new = float(_dot(r, r).numpy())
            d = r + (rTr_new / rTr) * d
            rTr = rTr_new
        return s, r, self.cfg.max_cg_iterations

    def _minimize(self, objective, data, x, loss_and_grad):
        cfg = self.cfg

        def hv(v):
            return to_tensor(objective.hessian_vector(data, to_numpy(x), to_numpy(v), self._normalization))

        f, g = loss_and_grad(x)
        g_norm = g0_norm = self._gradient_norm(g)
        self._record(0, x, f, g_norm)
        if g0_norm == 0.0:
            return x, f, CvgFlags.grad_tol___
        delta = g0_norm
        k, rejections, reason = 0, 0, CvgFlags.in_progress
        while reason == CvgFlags.in_progress:
            s, r, cg_iter = self._cg(hv, g, delta)
            s_norm = float(_norm(s).numpy())
            x_new = x + s
            f_new, g_new = loss_and_grad(x_new)
            gs = float(_dot(g, s).numpy())
            # predicted reduction -(g.s + 0.5 s.H s), with H s = -g - r
            pred = -0.5 * (gs - float(_dot(s, r).numpy()))
            actual = f - f_new
            if k == 0:
                delta = min(delta, s_norm)
            if not math.isfinite(f_new):
                actual = -math.inf
                f_new = f + 1.0
            alpha = cfg.sigma3 if f_new - f - gs <= 0 else max(cfg.sigma1, -0.5 * (gs / (f_new - f - gs)))
            if actual < cfg.eta0 * pred:
                delta = min(max(alpha, cfg.sigma1) * s_norm, cfg.sigma2 * delta)
            elif actual < cfg.eta1 * pred:
                delta = max(cfg.sigma1 * delta, min(alpha * s_norm, cfg.sigma2 * delta))
            elif actual < cfg.eta2 * pred:
                delta = max(cfg.sigma1 * delta, min(alpha * s_norm, cfg.sigma3 * delta))
            else:
                delta = max(delta, min(alpha * s_norm, cfg.sigma3 * delta))

            if actual > cfg.eta0 * pred:
                f_prev, x, f, g = f, x_new, f_new, g_new
                g_norm = self._gradient_norm(g)
                k += 1
                rejections = 0
                self._record(k, x, f, g_norm)
                if self.verbose:
                    print(f"[{self.name} iter {k:5d}] f={f:.6e} |g|={g_norm:.3e} delta={delta:.3e} cg={cg_iter}")
                reason = self._check_convergence(k, f_prev, f, g_norm, g0_norm)
            else:
                rejections += 1
                if self.verbose:
                    print(f"[{self.name}] step rejected, actual={actual:.3e} pred={pred:.3e} delta={delta:.3e}")
                if rejections >= cfg.max_rejections or pred <= 0.0 or delta <= 1e-300:
                    reason = CvgFlags.tr_radius__
        return x, f, reason
