"""
Objective Function of the cFIT Model

.. math::
    f = \\sum_j \\|X_j - H_j W^T diag(\\lambda_j) - 1_{n_j} b_j^T\\|_F^2
        + \\gamma \\sum_l \\left(\\sum_j \\frac{n_j}{N} \\lambda_{jl} - 1\\right)^2

The normalization penalty (gamma) vanishes whenever the scalings satisfy the
identifiability constraint, which the solvers enforce by rescaling; it is
kept for scoring externally supplied parameters.
"""

import numpy as np
from concurrent.futures import Executor
from typing import Optional, Sequence

from cfit.solvers import solve_H
from cfit.utils.evaluation import compute_reconstruction_error


def objective_func(
    X_list: Sequence[np.ndarray],
    W: np.ndarray,
    lambda_list: Sequence[np.ndarray],
    b_list: Sequence[np.ndarray],
    H_list: Optional[Sequence[np.ndarray]] = None,
    subset: Optional[Sequence[np.ndarray]] = None,
    gamma: float = 0.0,
    executor: Optional[Executor] = None
) -> float:
    r"""
    Evaluate the joint reconstruction loss.

    Parameters
    ----------
    X_list : sequence of np.ndarray
        m expression matrices, shapes (n_j, p)
    W : np.ndarray
        Common factor matrix, shape (p, r)
    lambda_list, b_list : sequence of np.ndarray
        Per-gene scalings and shifts, length p each
    H_list : sequence of np.ndarray, optional
        Factor loadings. When None they are solved for the given W, lambda
        and b (without touching any caller state), which scores a parameter
        set on samples it was not fitted on.
    subset : sequence of np.ndarray, optional
        Per-dataset row indices restricting the evaluation
    gamma : float, optional
        Weight of the normalization penalty. Default: 0.
    executor : concurrent.futures.Executor, optional
        Pool for the H solves when H_list is None

    Returns
    -------
    float
        Objective value
    """
    if subset is not None:
        X_list = [X[idx] for X, idx in zip(X_list, subset)]
        if H_list is not None:
            H_list = [H[idx] for H, idx in zip(H_list, subset)]

    if H_list is None:
        H_list = [solve_H(X, W, lambd, b, executor=executor)
                  for X, lambd, b in zip(X_list, lambda_list, b_list)]

    obj = sum(
        compute_reconstruction_error(X, W, H, lambd, b, norm_type='squared')
        for X, H, lambd, b in zip(X_list, H_list, lambda_list, b_list)
    )

    if gamma != 0:
        n_vec = np.array([X.shape[0] for X in X_list], dtype=np.float64)
        weighted_mean = (n_vec / np.sum(n_vec)) @ np.vstack(lambda_list)
        obj += gamma * float(np.sum((weighted_mean - 1.0) ** 2))

    return float(obj)
