from __future__ import annotations

import time
from dataclasses import dataclass
from typing import List, Optional

import numpy as np

from optimizers.convergence_flag import CvgFlags, converged
from utilities.misc import to_csv


@dataclass(frozen=True, eq=False)
class OptimizerState:
    iteration: int
    coefficients: np.ndarray
    value: float
    gradient_norm: float
    elapsed_sec: float = 0.0


class OptimizationStatesTracker:
    """Per-iteration history of one optimize() call."""

    def __init__(self):
        self._states: List[OptimizerState] = []
        self._t0 = time.time()
        self.convergence_reason: CvgFlags = CvgFlags.in_progress

    def append(self, iteration: int, coefficients, value: float, gradient_norm: float):
        self._states.append(OptimizerState(iteration, np.array(coefficients, dtype=np.float64), float(value),
                                           float(gradient_norm), time.time() - self._t0))

    @property
    def tracked_states(self) -> List[OptimizerState]:
        return list(self._states)

    @property
    def last_state(self) -> Optional[OptimizerState]:
        return self._states[-1] if self._states else None

    @property
    def converged(self) -> bool:
        return self.convergence_reason in converged

    def to_csv(self, csv_path):
        to_csv(csv_path, "w", ["iteration", "elapsed_sec", "value", "gradient_norm"])
        for s in self._states:
            to_csv(csv_path, "a", [s.iteration, f"{s.elapsed_sec:.3f}", f"{s.value:.12e}", f"{s.gradient_norm:.6e}"])

    def __str__(self):
        lines = [f"{'iter':>6} {'elapsed':>10} {'value':>20} {'|g|':>12}"]
        lines += [f"{s.iteration:6d} {s.elapsed_sec:10.3f} {s.value:20.12e} {s.gradient_norm:12.4e}" for s in self._states]
        lines.append(f"convergence: {self.convergence_reason.name}")
        return "\n".join(lines)
