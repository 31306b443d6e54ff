"""
Stochastic Proximal Point (SPP) Subproblem Solvers

The sketched optimizer solves every block on a small random subset of rows.
On its own such an update is noisy; SPP anchors it to the parameters of the
previous iteration by adding a proximal term whose weight grows linearly with
the iteration count t:

.. math::
    \\mu_t = \\mu_0 \\, t, \\qquad \\mu_0 = 0.005

For W, with the sketched loss averaged over the Ñ subsampled rows,

.. math::
    \\min_{W \\geq 0} \\frac{1}{Ñ} \\sum_j \\|S X_j - S H_j W^T diag(\\lambda_j) - 1 b_j^T\\|_F^2
    + \\frac{\\mu_t}{r} \\|W - W^{t-1}\\|_F^2

which per gene is an NNLS problem with r synthetic rows
sqrt(mu_t / r) * I appended to the design (target sqrt(mu_t / r) * W_old[l]).
For lambda and b the proximal term enters the closed forms as extra
numerator and denominator terms (mu_t * n_j for lambda, mu_t for b).

As t grows the updates become increasingly conservative, which lets the
iterates settle even though every iteration sees a different sketch.
"""

import numpy as np
from concurrent.futures import Executor
from typing import List, Optional, Sequence, Tuple

from cfit.params import FactorParams, UpdateTarget
from cfit.solvers import w_subproblems, compensate_W, rescale_lambda_list, solve_H
from cfit.utils.nnls import check_finite, nnls_rows

# Initial proximal penalty (penalty at iteration 1)
MU0 = 0.005


def step_size(iteration: int, mu: float = MU0) -> float:
    """Proximal penalty mu_t = mu * t for the (1-based) iteration t."""
    return mu * iteration


def solve_W_penalized(
    X_list: Sequence[np.ndarray],
    H_list: Sequence[np.ndarray],
    lambda_list: Sequence[np.ndarray],
    b_list: Sequence[np.ndarray],
    W_old: np.ndarray,
    iteration: int,
    mu: float = MU0,
    executor: Optional[Executor] = None
) -> np.ndarray:
    r"""
    Solve for W on a sketch with a proximal anchor to W_old.

    Parameters
    ----------
    X_list, H_list, lambda_list, b_list
        As in :func:`cfit.solvers.solve_W`, restricted to the sketch
    W_old : np.ndarray
        W from the previous iteration, shape (p, r)
    iteration : int
        Current iteration t (1-based), sets mu_t = mu * t
    mu : float, optional
        Initial penalty. Default: 0.005.
    executor : concurrent.futures.Executor, optional
        Pool for the per-gene fan-out

    Returns
    -------
    W : np.ndarray
        Common factor matrix of shape (p, r)
    """
    n = sum(X.shape[0] for X in X_list)
    r = W_old.shape[1]
    mu_t = step_size(iteration, mu)
    anchor = np.sqrt(mu_t / r)
    row_scale = np.sqrt(1.0 / n)
    prox_design = anchor * np.eye(r)

    problems = (
        (np.vstack([A * row_scale, prox_design]),
         np.concatenate([y * row_scale, anchor * W_old[l]]))
        for l, (A, y) in enumerate(w_subproblems(X_list, H_list, lambda_list, b_list))
    )
    W = nnls_rows(problems, executor)
    return check_finite("W", W)


def solve_lambda_list_penalized(
    X_list: Sequence[np.ndarray],
    W: np.ndarray,
    H_list: Sequence[np.ndarray],
    b_list: Sequence[np.ndarray],
    lambda_list_old: Sequence[np.ndarray],
    iteration: int,
    mu: float = MU0
) -> Tuple[List[np.ndarray], np.ndarray]:
    r"""
    Solve for the scalings on a sketch with a proximal anchor.

    Per dataset j and gene l, with x = H_j W_l and y = X_j[:, l] - b_jl:

    .. math::
        \\lambda_{jl} = \\max\\left(0, \\frac{<x, y> + \\mu_t n_j \\lambda^{old}_{jl}}
                                          {<x, x> + \\mu_t n_j}\\right)

    followed by the same per-gene rescale as the plain solver.

    Note
    ----
    A normal-equations variant coupling the datasets through an explicit
    penalty gamma * (sum_j n_j/N lambda_jl - 1)^2 is not provided; the
    rescale enforces the constraint instead.

    Returns
    -------
    lambda_list : list of np.ndarray
        m scaling vectors of length p
    scale : np.ndarray
        Per-gene rescaling factor that was applied
    """
    p = W.shape[0]
    if len(X_list) == 1:
        return [np.ones(p)], np.ones(p)

    mu_t = step_size(iteration, mu)
    lambda_list = []
    for X, H, b, lambd_old in zip(X_list, H_list, b_list, lambda_list_old):
        n_j = X.shape[0]
        fitted = H @ W.T
        Y = X - b[np.newaxis, :]
        xx = np.sum(fitted * fitted, axis=0) + mu_t * n_j
        xy = np.sum(fitted * Y, axis=0) + mu_t * n_j * lambd_old
        lambda_list.append(np.maximum(xy, 0) / xx)

    return rescale_lambda_list(lambda_list, [X.shape[0] for X in X_list])


def solve_b_penalized(
    X: np.ndarray,
    W: np.ndarray,
    H: np.ndarray,
    lambd: np.ndarray,
    b_old: np.ndarray,
    iteration: int,
    b_gamma: float = 0.1,
    mu: float = MU0
) -> np.ndarray:
    r"""
    Solve for the per-gene shift on a sketch with a proximal anchor.

    .. math::
        b_l = \\frac{\\bar{y}_l + \\mu_t b^{old}_l}{1 + \\gamma_b + \\mu_t}

    where y-bar is the mean residual after removing the factor term.
    """
    mu_t = step_size(iteration, mu)
    y_mean = np.mean(X - (H @ W.T) * lambd[np.newaxis, :], axis=0)
    return (y_mean + mu_t * b_old) / (1.0 + b_gamma + mu_t)


def solve_subproblem_penalized(
    target: UpdateTarget,
    X_list: Sequence[np.ndarray],
    params: FactorParams,
    params_last: FactorParams,
    iteration: int,
    mu: float = MU0,
    b_gamma: float = 0.1,
    executor: Optional[Executor] = None
) -> FactorParams:
    """
    SPP counterpart of :func:`cfit.solvers.solve_subproblem`.

    Parameters
    ----------
    target : UpdateTarget
        Block to update. W is followed by a penalized b update; H uses the
        plain (unpenalized) solver since loadings are sketch-specific.
    X_list : sequence of np.ndarray
        Sketched expression matrices
    params : FactorParams
        Current parameters
    params_last : FactorParams
        Parameters at the start of the iteration (proximal anchors)
    iteration : int
        Current iteration (1-based)
    mu, b_gamma : float
        Initial proximal penalty and shrinkage of b

    Returns
    -------
    FactorParams
        New bundle with the target block replaced
    """
    W, H_list = params.W, params.H_list
    lambda_list, b_list = params.lambda_list, params.b_list

    if target is UpdateTarget.W:
        W = solve_W_penalized(X_list, H_list, lambda_list, b_list,
                              W_old=params_last.W, iteration=iteration,
                              mu=mu, executor=executor)
        b_list = [
            check_finite("b", solve_b_penalized(X, W, H, lambd, b_old, iteration,
                                                b_gamma=b_gamma, mu=mu))
            for X, H, lambd, b_old in zip(X_list, H_list, lambda_list, params_last.b_list)
        ]
        return params.replace(W=W, b_list=b_list)

    elif target is UpdateTarget.LAMBDA:
        lambda_list, scale = solve_lambda_list_penalized(
            X_list, W, H_list, b_list,
            lambda_list_old=params_last.lambda_list, iteration=iteration, mu=mu
        )
        for lambd in lambda_list:
            check_finite("lambda", lambd)
        return params.replace(W=compensate_W(W, scale), lambda_list=lambda_list)

    elif target is UpdateTarget.B:
        b_list = [
            check_finite("b", solve_b_penalized(X, W, H, lambd, b_old, iteration,
                                                b_gamma=b_gamma, mu=mu))
            for X, H, lambd, b_old in zip(X_list, H_list, lambda_list, params_last.b_list)
        ]
        return params.replace(b_list=b_list)

    elif target is UpdateTarget.H:
        H_list = [solve_H(X, W, lambd, b, executor=executor)
                  for X, lambd, b in zip(X_list, lambda_list, b_list)]
        return params.replace(H_list=H_list)

    raise ValueError(f"Unknown update target: {target!r}")
