"""
Data Integration with cFIT (full-batch)

This module implements CFITIntegrate: the common factor matrix W, the
per-dataset loadings H_j, and the per-gene batch corrections (lambda_j, b_j)
are estimated jointly on all samples.

Mathematical Background:
-----------------------
Given m datasets X_j (n_j samples x p genes) sharing the same genes, solve

.. math::
    \\min \\sum_j \\|X_j - H_j W^T diag(\\lambda_j) - 1_{n_j} b_j^T\\|_F^2

subject to W, H_j, lambda_j >= 0 and sum_j (n_j / N) lambda_jl = 1 per gene.

Algorithm:
----------
Block coordinate descent with exact block solves:

1. **Initialize** W, H, lambda, b (k-means based, see
   :mod:`cfit.initialization`), unless a full parameter set is supplied.

2. **Iterate**: update H first, then W (followed by b) and lambda in a
   random order drawn anew each iteration. Randomizing the order removes
   the bias a fixed sweep order puts on the fixed point reached.

3. **Stop** when the relative change of the objective falls below `tol`
   (converged) or after `max_niter` iterations (not converged).

4. **Repeat** `nrep` times with seeds seed, seed + 1, ... and keep the run
   with the lowest objective (protection against poor local optima).

Every block solve is exact, so the objective never increases from one
iteration to the next.

References:
-----------
Peng, M., Li, Y., Wamsley, B., Wei, Y., & Roeder, K. (2021).
Integration and transfer learning of single-cell transcriptomes via cFIT.
PNAS, 118(10), e2024383118.
"""

import time
import warnings
import numpy as np
from concurrent.futures import Executor
from typing import Dict, Optional, Sequence

from cfit.initialization import initialize_params
from cfit.objective import objective_func
from cfit.params import FactorParams, InitLike, UpdateTarget, parse_init
from cfit.results import IntegrationResult
from cfit.solvers import solve_subproblem
from cfit.utils.nnls import executor_scope
from cfit.utils.stopping_criteria import relative_objective_change, relative_w_change
from cfit.utils.validation import (
    NumericFailure, align_datasets, check_positive_int, check_rank
)

# W and lambda are updated after H in a random order each iteration
SHUFFLED_TARGETS = (UpdateTarget.W, UpdateTarget.LAMBDA)


def update_order(rng: np.random.Generator) -> list:
    """H first, then W and lambda in random order."""
    return [UpdateTarget.H] + [SHUFFLED_TARGETS[k] for k in rng.permutation(len(SHUFFLED_TARGETS))]


def cfit_integrate(
    X_list: Sequence,
    r: int = 15,
    max_niter: int = 100,
    tol: float = 1e-5,
    nrep: int = 1,
    init: InitLike = None,
    n_jobs: Optional[int] = 1,
    executor: Optional[Executor] = None,
    verbose: int = 0,
    seed: int = 0
) -> IntegrationResult:
    r"""
    Integrate multiple datasets with cFIT.

    Parameters
    ----------
    X_list : sequence of np.ndarray or pd.DataFrame
        m expression matrices of shape (n_j, p_j), samples in rows and genes
        in columns. DataFrames are aligned to their shared genes; arrays
        must share the same columns.

    r : int, optional
        Number of factors, roughly the number of identifiable cell types in
        the joint population. Default: 15.

    max_niter : int, optional
        Maximum number of iterations per repeat. Default: 100.

    tol : float, optional
        Tolerance on the relative change of the objective. Default: 1e-5.

    nrep : int, optional
        Number of repeated runs with different seeds; the run with the
        lowest objective is returned. Default: 1.

    init : FactorParams or dict, optional
        Starting parameters: either a full set (W, H_list, lambda_list,
        b_list), which skips initialization, or only W, from which the other
        blocks are derived. Default: None (k-means initialization).

    n_jobs : int, optional
        Worker processes for the per-gene / per-sample NNLS solves.
        Default: 1 (sequential).

    executor : concurrent.futures.Executor, optional
        Externally managed pool; takes precedence over `n_jobs`.

    verbose : int, optional
        Verbosity level. Default: 0.
        - 0: No output
        - 1: Start, convergence and summary messages
        - 2: Also one line per iteration

    seed : int, optional
        Seed of the first repeat; repeat k uses seed + k. Default: 0.

    Returns
    -------
    IntegrationResult
        Fitted parameters of the best repeat with convergence diagnostics.

    Raises
    ------
    InputMismatchError
        If the datasets cannot be aligned to a common gene set.
    NumericFailure
        If every repeat hit a non-finite solve.

    Examples
    --------
    >>> import numpy as np
    >>> from cfit import cfit_integrate
    >>> rng = np.random.default_rng(0)
    >>> X1 = rng.random((50, 30))
    >>> X2 = rng.random((40, 30)) * 2 + 1
    >>> res = cfit_integrate([X1, X2], r=3, max_niter=50)
    >>> res.W.shape, [H.shape for H in res.H_list]
    ((30, 3), [(50, 3), (40, 3)])
    """
    X_list, genes, sample_names = align_datasets(X_list)
    r = check_rank(r)
    max_niter = check_positive_int("max_niter", max_niter)
    nrep = check_positive_int("nrep", nrep)

    m = len(X_list)
    p = X_list[0].shape[1]
    n_list = [X.shape[0] for X in X_list]
    init_params, init_W = parse_init(init, p, r, n_list)

    if verbose >= 1:
        print(f"Integrate {m} datasets ({p} genes, {sum(n_list)} samples) with r={r}")

    start_time = time.time()
    best = None

    with executor_scope(executor, n_jobs) as pool:
        for rep in range(nrep):
            rep_seed = seed + rep
            rng = np.random.default_rng(rep_seed)
            try:
                run = _integrate_once(
                    X_list, r, max_niter, tol, init_params, init_W,
                    rng, pool, verbose, start_time
                )
            except NumericFailure as exc:
                warnings.warn(f"Repeat {rep + 1} (seed {rep_seed}) failed: {exc}",
                              RuntimeWarning)
                continue

            if best is None or run['obj'] < best['obj']:
                best = run
                best['seed'] = rep_seed

    if best is None:
        raise NumericFailure(f"all {nrep} repeats failed with non-finite solves")

    time_elapsed = time.time() - start_time
    if verbose >= 1:
        print(f"Finished in {time_elapsed:.3f}s. Best result with seed {best['seed']}: "
              f"convergence = {best['convergence']} at {best['niter']} iterations, "
              f"objective = {best['obj']:.6f}")

    params = best['params']
    return IntegrationResult(
        W=params.W,
        H_list=params.H_list,
        lambda_list=params.lambda_list,
        b_list=params.b_list,
        convergence=best['convergence'],
        obj=best['obj'],
        obj_history=best['obj_history'],
        deltaw=best['deltaw_history'][-1],
        deltaw_history=best['deltaw_history'],
        niter=best['niter'],
        time_elapsed=time_elapsed,
        elapsed_history=best['elapsed_history'],
        seed=best['seed'],
        genes=genes,
        sample_names=sample_names,
        params={'r': r, 'max_niter': max_niter, 'tol': tol, 'nrep': nrep, 'seed': seed},
    )


def _integrate_once(
    X_list,
    r: int,
    max_niter: int,
    tol: float,
    init_params: Optional[FactorParams],
    init_W: Optional[np.ndarray],
    rng: np.random.Generator,
    executor: Optional[Executor],
    verbose: int,
    start_time: float
) -> Dict:
    """Run one repeat of block coordinate descent; returns its history."""
    if init_params is not None:
        params = init_params
    else:
        params = initialize_params(X_list, r, W=init_W, rng=rng,
                                   executor=executor, verbose=verbose)

    obj = objective_func(X_list, params.W, params.lambda_list, params.b_list,
                         H_list=params.H_list)
    if verbose >= 1:
        print(f"Objective for initialization = {obj:.6f}")

    HIS = {
        'obj_history': [obj],
        'deltaw_history': [],
        'elapsed_history': [time.time() - start_time],
    }
    convergence = False

    # ========================================================================
    # Main Iterative Loop
    # ========================================================================
    for iteration in range(1, max_niter + 1):
        W_old = params.W
        obj_old = obj

        order = update_order(rng)
        if verbose >= 2:
            print(f"iter {iteration}, update by: "
                  f"{'->'.join(target.value for target in order)}")

        for target in order:
            params = solve_subproblem(target, X_list, params, executor=executor)

        obj = objective_func(X_list, params.W, params.lambda_list, params.b_list,
                             H_list=params.H_list)
        deltaw = relative_w_change(params.W, W_old)
        delta = relative_objective_change(obj, obj_old)

        HIS['obj_history'].append(obj)
        HIS['deltaw_history'].append(deltaw)
        HIS['elapsed_history'].append(time.time() - start_time)

        if verbose >= 2:
            print(f"iter {iteration}, objective = {obj:.6f}, delta_w = {deltaw:.4e}, "
                  f"delta(obj) = {delta:.4e}")

        if delta < tol:
            if verbose >= 1:
                print(f"Converged at iter {iteration}")
            convergence = True
            break

    HIS.update(params=params, obj=obj, niter=iteration, convergence=convergence)
    return HIS
