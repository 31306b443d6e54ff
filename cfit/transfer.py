"""
Transfer Learning with cFIT

Map a new (target) dataset onto a factor matrix W learned by integration.
W stays fixed; only the target's loadings H and its batch corrections
(lambda, b) are estimated:

.. math::
    \\min_{H, \\lambda \\geq 0, b} \\|X - H W^T diag(\\lambda) - 1 b^T\\|_F^2

With a single dataset the scaling has no identifiability constraint, so
lambda is solved without rescaling. Each iteration updates H first, then
lambda and b in a random order drawn from the seeded generator.
"""

import time
import warnings
import numpy as np
import pandas as pd
from concurrent.futures import Executor
from typing import Mapping, Optional, Sequence

from cfit.results import TransferResult
from cfit.solvers import solve_b, solve_H, solve_lambda
from cfit.utils.evaluation import compute_reconstruction_error
from cfit.utils.nnls import check_finite, executor_scope
from cfit.utils.stopping_criteria import relative_objective_change
from cfit.utils.validation import (
    MIN_GENES, InputMismatchError, check_positive_int
)


def _align_target(X_target, W, genes: Optional[Sequence]):
    """
    Restrict the target data and W to their shared genes.

    Returns the target matrix, a read-only copy of W, the shared genes and
    the target sample names.
    """
    if genes is None and isinstance(W, pd.DataFrame):
        genes = list(W.index)
    W_arr = np.array(W, dtype=np.float64)
    if W_arr.ndim != 2:
        raise InputMismatchError(f"W must be a 2D matrix, got shape {W_arr.shape}")
    if genes is not None and len(genes) != W_arr.shape[0]:
        raise InputMismatchError(
            f"got {len(genes)} gene names for W with {W_arr.shape[0]} rows"
        )

    if isinstance(X_target, pd.DataFrame):
        if genes is None:
            raise InputMismatchError(
                "gene identifiers missing for W; pass W as a DataFrame or give genes"
            )
        present = set(X_target.columns)
        keep = [l for l, g in enumerate(genes) if g in present]
        shared = [genes[l] for l in keep]
        if len(shared) == 0:
            raise InputMismatchError("target data and W share no common genes")
        X = X_target.loc[:, shared].to_numpy(dtype=np.float64)
        W_arr = W_arr[keep]
        sample_names = list(X_target.index)
    else:
        X = np.asarray(X_target, dtype=np.float64)
        if X.ndim != 2 or X.shape[1] != W_arr.shape[0]:
            raise InputMismatchError(
                f"target data of shape {X.shape} does not match W with "
                f"{W_arr.shape[0]} genes"
            )
        shared = genes
        sample_names = None

    if X.shape[0] == 0:
        raise InputMismatchError("target data has no samples")
    if not np.all(np.isfinite(X)):
        raise InputMismatchError("target data contains NaN or infinite values")
    if not np.all(np.isfinite(W_arr)) or np.any(W_arr < 0):
        raise InputMismatchError("W must be finite and non-negative")
    if X.shape[1] < MIN_GENES:
        warnings.warn(f"Too few genes ({X.shape[1]}), check the data source", UserWarning)

    # W is fixed during transfer
    W_arr.setflags(write=False)
    return X, W_arr, shared, sample_names


def cfit_transfer(
    X_target,
    W,
    genes: Optional[Sequence] = None,
    max_niter: int = 100,
    tol: float = 1e-5,
    init: Optional[Mapping[str, np.ndarray]] = None,
    update_scaling: bool = True,
    seed: int = 0,
    n_jobs: Optional[int] = 1,
    executor: Optional[Executor] = None,
    verbose: int = 0
) -> TransferResult:
    r"""
    Transfer the learned factors W onto a target dataset.

    Parameters
    ----------
    X_target : np.ndarray or pd.DataFrame
        Target expression matrix (samples x genes)

    W : np.ndarray or pd.DataFrame
        Common factor matrix (genes x r) from :func:`cfit.cfit_integrate`,
        e.g. ``res.to_frames()['W']``. Never modified.

    genes : sequence, optional
        Gene identifiers of the rows of W, when W is a plain array

    max_niter : int, optional
        Maximum number of iterations. Default: 100.

    tol : float, optional
        Tolerance on the relative change of the objective. Default: 1e-5.

    init : dict, optional
        Starting 'lambd' and/or 'b' (length p over the shared genes).
        Default: lambda = 1, b = 0.

    update_scaling : bool, optional
        Estimate lambda and b. When False they stay at their initial
        values and only H is solved. Default: True.

    seed : int, optional
        Seed for the update order. Default: 0.

    n_jobs, executor
        Parallel NNLS solves, see :func:`cfit.cfit_integrate`.

    verbose : int, optional
        Verbosity level (0, 1 or 2). Default: 0.

    Returns
    -------
    TransferResult
        Loadings, scaling, shift and convergence diagnostics for the target

    Examples
    --------
    >>> res = cfit_integrate([X1, X2], r=3)
    >>> tf = cfit_transfer(X_new, res.W)
    >>> tf.H.shape
    (n_new, 3)
    """
    max_niter = check_positive_int("max_niter", max_niter)
    X, W_fixed, genes, sample_names = _align_target(X_target, W, genes)
    p = X.shape[1]

    init = init or {}
    lambd = np.array(init.get('lambd', np.ones(p)), dtype=np.float64)
    b = np.array(init.get('b', np.zeros(p)), dtype=np.float64)
    if lambd.shape != (p,) or b.shape != (p,):
        raise ValueError(f"init lambd and b must have length {p}")
    if np.any(lambd < 0):
        raise ValueError("init lambd must be non-negative")

    rng = np.random.default_rng(seed)
    start_time = time.time()
    if verbose >= 1:
        print(f"Transfer {W_fixed.shape[1]} factors onto {X.shape[0]} samples "
              f"({p} shared genes)")

    with executor_scope(executor, n_jobs) as pool:
        H = solve_H(X, W_fixed, lambd, b, executor=pool)
        obj = compute_reconstruction_error(X, W_fixed, H, lambd, b, norm_type='squared')
        obj_history = [obj]
        convergence = False

        for iteration in range(1, max_niter + 1):
            obj_old = obj

            H = solve_H(X, W_fixed, lambd, b, executor=pool)
            if update_scaling:
                order = ['lambda', 'b'] if rng.random() < 0.5 else ['b', 'lambda']
                for target in order:
                    if target == 'lambda':
                        lambd = check_finite("lambda", solve_lambda(X, W_fixed, H, b))
                    else:
                        b = check_finite("b", solve_b(X, W_fixed, H, lambd))
            else:
                order = []

            obj = compute_reconstruction_error(X, W_fixed, H, lambd, b, norm_type='squared')
            obj_history.append(obj)
            delta = relative_objective_change(obj, obj_old)

            if verbose >= 2:
                print(f"iter {iteration}, update by: {'->'.join(['H'] + order)}, "
                      f"objective = {obj:.6f}, delta(obj) = {delta:.4e}")

            if delta < tol:
                if verbose >= 1:
                    print(f"Converged at iter {iteration}")
                convergence = True
                break

    time_elapsed = time.time() - start_time
    if verbose >= 1:
        print(f"Finished in {time_elapsed:.3f}s: convergence = {convergence} "
              f"at {iteration} iterations, objective = {obj:.6f}")

    return TransferResult(
        H=H,
        lambd=lambd,
        b=b,
        convergence=convergence,
        obj=obj,
        obj_history=obj_history,
        niter=iteration,
        time_elapsed=time_elapsed,
        genes=genes,
        sample_names=sample_names,
        params={
            'max_niter': max_niter, 'tol': tol, 'update_scaling': update_scaling,
            'seed': seed,
        },
    )
