from enum import IntEnum


class CvgFlags(IntEnum):
    # names chosen with fixed length
    in_progress = 0
    loss_tol___ = 1
    grad_tol___ = 2
    max_iter___ = 3
    line_search = 4
    tr_radius__ = 5


converged = [CvgFlags.loss_tol___, CvgFlags.grad_tol___]
