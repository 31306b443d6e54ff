"""
Stopping Criteria for the cFIT Optimizers

Block coordinate descent is stopped by monitoring the objective rather than
projected gradients: every iteration solves each parameter block exactly, so
the objective sequence carries the convergence information.

Mathematical Background:
-----------------------
Relative change of the objective between consecutive iterations:

.. math::
    \\delta_t = \\frac{|f_t - f_{t-1}|}{\\max(\\frac{1}{2}(f_t + f_{t-1}), \\epsilon)}

where the floor :math:`\\epsilon` (machine epsilon) makes an exactly
reconstructed dataset (f = 0) count as converged instead of producing 0/0.

Relative change of the common factor matrix (reported, not used to stop):

.. math::
    \\Delta W_t = \\frac{\\|W_t - W_{t-1}\\|_F}{\\|W_{t-1}\\|_F}

Early stopping (sketched optimizer only): the run stops once the objective
has not improved on its best value for more than `patience` iterations.
"""

import numpy as np
from typing import Optional

# Floor for the denominator of the relative objective change
OBJ_FLOOR = np.finfo(np.float64).eps


def relative_objective_change(obj: float, obj_old: float) -> float:
    r"""
    Relative change between two objective values.

    Parameters
    ----------
    obj : float
        Objective at the current iteration
    obj_old : float
        Objective at the previous iteration

    Returns
    -------
    float
        |obj - obj_old| / max(mean(obj, obj_old), eps)
    """
    denom = max(0.5 * (obj + obj_old), OBJ_FLOOR)
    return abs(obj - obj_old) / denom


def relative_w_change(W: np.ndarray, W_old: np.ndarray) -> float:
    """Frobenius norm of W - W_old relative to W_old."""
    norm_old = np.linalg.norm(W_old, 'fro')
    if norm_old == 0:
        return np.inf if np.any(W != 0) else 0.0
    return float(np.linalg.norm(W - W_old, 'fro') / norm_old)


class EarlyStopping:
    """
    Track the best objective seen so far.

    ``update`` returns True once the objective failed to improve on the best
    value for more than `patience` consecutive iterations. A `patience` of
    None disables early stopping.
    """

    def __init__(self, patience: Optional[int]):
        if patience is not None and patience < 0:
            raise ValueError(f"early_stopping must be non-negative, got {patience}")
        self.patience = patience
        self.best = np.inf
        self.count = 0

    def update(self, obj: float) -> bool:
        if self.patience is None:
            return False
        if obj < self.best:
            self.best = obj
            self.count = 0
        else:
            self.count += 1
        return self.count > self.patience
