"""
Subproblem Solvers for cFIT Block Coordinate Descent

Each solver fixes every parameter block but one and solves the resulting
convex least-squares problem exactly.

Mathematical Background:
-----------------------
Joint objective over m datasets:

.. math::
    f = \\sum_j \\|X_j - H_j W^T diag(\\lambda_j) - 1_{n_j} b_j^T\\|_F^2

subject to W, H_j, lambda_j >= 0 and, for m > 1, the identifiability
constraint

.. math::
    \\sum_j \\frac{n_j}{N} \\lambda_{jl} = 1 \\quad \\text{for every gene } l

Blocks:

1. **W** (per gene l): NNLS of the stacked responses X_j[:, l] - b_jl on the
   stacked designs lambda_jl H_j.
2. **H_j** (per sample i): NNLS of X_j[i, :] - b_j on diag(lambda_j) W.
3. **lambda_j** (per gene): closed form max(0, <x, y>) / <x, x> with
   x = H_j W_l and y = X_j[:, l] - b_jl, followed by a per-gene rescale that
   restores the constraint. The rescale is compensated in W so that the
   products lambda_jl W_l, and hence the objective, are unchanged by it.
4. **b_j** (per gene): mean residual, optionally shrunk towards 0.

The per-gene and per-sample NNLS problems are independent and can be fanned
out to an executor (see :mod:`cfit.utils.nnls`).
"""

import numpy as np
from concurrent.futures import Executor
from typing import Iterator, List, Optional, Sequence, Tuple

from cfit.params import FactorParams, UpdateTarget
from cfit.utils.nnls import check_finite, nnls_rows


def w_subproblems(
    X_list: Sequence[np.ndarray],
    H_list: Sequence[np.ndarray],
    lambda_list: Sequence[np.ndarray],
    b_list: Sequence[np.ndarray]
) -> Iterator[Tuple[np.ndarray, np.ndarray]]:
    """Yield the (design, response) pair of the W subproblem for every gene."""
    n_list = [X.shape[0] for X in X_list]
    H_all = np.vstack(H_list)
    lambda_mat = np.vstack(lambda_list)  # m x p
    Y_all = np.vstack([X - b[np.newaxis, :] for X, b in zip(X_list, b_list)])

    for l in range(Y_all.shape[1]):
        lam_rows = np.repeat(lambda_mat[:, l], n_list)
        yield H_all * lam_rows[:, np.newaxis], Y_all[:, l]


def solve_W(
    X_list: Sequence[np.ndarray],
    H_list: Sequence[np.ndarray],
    lambda_list: Sequence[np.ndarray],
    b_list: Sequence[np.ndarray],
    executor: Optional[Executor] = None
) -> np.ndarray:
    r"""
    Solve for the non-negative common factor matrix W.

    .. math::
        \\min_{W \\geq 0} \\sum_j \\|X_j - H_j W^T diag(\\lambda_j) - 1 b_j^T\\|_F^2

    Parameters
    ----------
    X_list : sequence of np.ndarray
        m expression matrices, shapes (n_j, p)
    H_list : sequence of np.ndarray
        Factor loadings, shapes (n_j, r)
    lambda_list : sequence of np.ndarray
        Per-gene scalings, length p each
    b_list : sequence of np.ndarray
        Per-gene shifts, length p each
    executor : concurrent.futures.Executor, optional
        Pool for the per-gene fan-out; sequential when None

    Returns
    -------
    W : np.ndarray
        Common factor matrix of shape (p, r)
    """
    W = nnls_rows(w_subproblems(X_list, H_list, lambda_list, b_list), executor)
    return check_finite("W", W)


def solve_H(
    X: np.ndarray,
    W: np.ndarray,
    lambd: np.ndarray,
    b: np.ndarray,
    executor: Optional[Executor] = None
) -> np.ndarray:
    r"""
    Solve for the non-negative factor loadings of one dataset.

    Each row is an independent NNLS problem

    .. math::
        \\min_{h_i \\geq 0} \\|x_i - b - diag(\\lambda) W h_i\\|_2

    Parameters
    ----------
    X : np.ndarray
        Expression matrix of shape (n, p)
    W : np.ndarray
        Common factor matrix of shape (p, r)
    lambd : np.ndarray
        Per-gene scaling of shape (p,)
    b : np.ndarray
        Per-gene shift of shape (p,)
    executor : concurrent.futures.Executor, optional
        Pool for the per-sample fan-out; sequential when None

    Returns
    -------
    H : np.ndarray
        Factor loadings of shape (n, r)
    """
    A = W * lambd[:, np.newaxis]
    Y = X - b[np.newaxis, :]
    if Y.shape[0] == 0:
        return np.zeros((0, W.shape[1]))
    H = nnls_rows(((A, y) for y in Y), executor)
    return check_finite("H", H)


def solve_lambda(
    X: np.ndarray,
    W: np.ndarray,
    H: np.ndarray,
    b: np.ndarray
) -> np.ndarray:
    """
    Unconstrained non-negative per-gene scaling of one dataset.

    Genes whose fitted signal H W_l is identically zero carry no information
    on the scaling and keep lambda = 1.
    """
    fitted = H @ W.T
    Y = X - b[np.newaxis, :]
    xy = np.sum(fitted * Y, axis=0)
    xx = np.sum(fitted * fitted, axis=0)

    lambd = np.ones(W.shape[0])
    informative = xx > 0
    lambd[informative] = np.maximum(xy[informative], 0) / xx[informative]
    return lambd


def rescale_lambda_list(
    lambda_list: Sequence[np.ndarray],
    n_list: Sequence[int]
) -> Tuple[List[np.ndarray], np.ndarray]:
    r"""
    Rescale the scalings so that their sample-weighted mean is 1 per gene.

    .. math::
        s_l = \\frac{N}{\\sum_j n_j \\lambda_{jl}}, \\qquad
        \\lambda_{jl} \\leftarrow s_l \\lambda_{jl}

    A gene whose weighted sum is exactly 0 is left alone (s_l = 1).

    Returns
    -------
    lambda_list : list of np.ndarray
        Rescaled scalings
    scale : np.ndarray
        The per-gene factors s, shape (p,)
    """
    n_vec = np.asarray(n_list, dtype=np.float64)
    lambda_mat = np.vstack(lambda_list)
    weighted = n_vec @ lambda_mat

    scale = np.ones(lambda_mat.shape[1])
    nonzero = weighted != 0
    scale[nonzero] = np.sum(n_vec) / weighted[nonzero]

    return [lambd * scale for lambd in lambda_list], scale


def solve_lambda_list(
    X_list: Sequence[np.ndarray],
    W: np.ndarray,
    H_list: Sequence[np.ndarray],
    b_list: Sequence[np.ndarray]
) -> Tuple[List[np.ndarray], np.ndarray]:
    """
    Solve for the dataset-specific scalings under the identifiability constraint.

    With a single dataset the scaling is not identifiable and is fixed to 1.

    Returns
    -------
    lambda_list : list of np.ndarray
        m scaling vectors of length p
    scale : np.ndarray
        Per-gene rescaling factor that was applied (ones for m == 1)
    """
    p = W.shape[0]
    if len(X_list) == 1:
        return [np.ones(p)], np.ones(p)

    lambda_list = [solve_lambda(X, W, H, b) for X, H, b in zip(X_list, H_list, b_list)]
    return rescale_lambda_list(lambda_list, [X.shape[0] for X in X_list])


def solve_b(
    X: np.ndarray,
    W: np.ndarray,
    H: np.ndarray,
    lambd: np.ndarray,
    gamma: float = 0.0
) -> np.ndarray:
    r"""
    Solve for the per-gene shift of one dataset.

    .. math::
        b_l = \\frac{1}{1 + \\gamma} \\cdot \\frac{1}{n} \\sum_i (X - H W^T diag(\\lambda))_{il}

    Parameters
    ----------
    gamma : float, optional
        L2 shrinkage of b towards 0. Default: 0 (plain least squares).
    """
    residual = X - (H @ W.T) * lambd[np.newaxis, :]
    return np.mean(residual, axis=0) / (1.0 + gamma)


def compensate_W(W: np.ndarray, scale: np.ndarray) -> np.ndarray:
    """Divide row l of W by scale[l], undoing a lambda rescale in the model."""
    return W / scale[:, np.newaxis]


def solve_subproblem(
    target: UpdateTarget,
    X_list: Sequence[np.ndarray],
    params: FactorParams,
    executor: Optional[Executor] = None,
    b_gamma: float = 0.0
) -> FactorParams:
    """
    Update one parameter block exactly, holding the others fixed.

    Parameters
    ----------
    target : UpdateTarget
        Block to update. ``UpdateTarget.W`` re-solves b right after W.
    X_list : sequence of np.ndarray
        Expression matrices, shapes (n_j, p)
    params : FactorParams
        Current parameters (not modified)
    executor : concurrent.futures.Executor, optional
        Pool for the NNLS fan-out
    b_gamma : float, optional
        Shrinkage passed to :func:`solve_b`. Default: 0.

    Returns
    -------
    FactorParams
        New bundle; blocks other than the target are passed through.
    """
    W, H_list = params.W, params.H_list
    lambda_list, b_list = params.lambda_list, params.b_list

    if target is UpdateTarget.W:
        W = solve_W(X_list, H_list, lambda_list, b_list, executor=executor)
        b_list = [check_finite("b", solve_b(X, W, H, lambd, gamma=b_gamma))
                  for X, H, lambd in zip(X_list, H_list, lambda_list)]
        return params.replace(W=W, b_list=b_list)

    elif target is UpdateTarget.LAMBDA:
        lambda_list, scale = solve_lambda_list(X_list, W, H_list, b_list)
        for lambd in lambda_list:
            check_finite("lambda", lambd)
        return params.replace(W=compensate_W(W, scale), lambda_list=lambda_list)

    elif target is UpdateTarget.B:
        b_list = [check_finite("b", solve_b(X, W, H, lambd, gamma=b_gamma))
                  for X, H, lambd in zip(X_list, H_list, lambda_list)]
        return params.replace(b_list=b_list)

    elif target is UpdateTarget.H:
        H_list = [solve_H(X, W, lambd, b, executor=executor)
                  for X, lambd, b in zip(X_list, lambda_list, b_list)]
        return params.replace(H_list=H_list)

    raise ValueError(f"Unknown update target: {target!r}")
