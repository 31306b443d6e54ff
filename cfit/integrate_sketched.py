"""
Data Integration with cFIT using Sketching and Stochastic Proximal Point

For very large collections the full-batch updates are too expensive. This
module implements CFITIntegrate_sketched, which solves every block on a
fresh random subset of samples and keeps the iterates stable with
stochastic proximal point (SPP) penalties.

Mathematical Background:
-----------------------
Sketched objective at iteration t, with S a row-sampling operator and Ñ the
number of sampled rows:

.. math::
    \\frac{1}{Ñ} \\sum_j \\|S X_j - S H_j W^T diag(\\lambda_j) - S 1 b_j^T\\|_F^2
    + \\mu_t \\cdot \\text{prox}(\\theta, \\theta^{t-1}), \\qquad \\mu_t = \\mu_0 t

Algorithm:
----------
1. **Evaluation subset**: fix the first rows of each dataset (about
   `n_obj_samples` in total) to score every iteration comparably.

2. **Initialize** on one sketch.

3. **Iterate**: draw a new sketch (uniform or weighted by `weight_list`),
   update H, then W (with b) and lambda in random order using the SPP
   solvers, and score on the evaluation subset.

4. **Stop** on any of:
   - relative objective change below `tol` (converged),
   - no new best objective for more than `early_stopping` iterations
     (converged),
   - more than `time_out` minutes since the call started (not converged),
   - `max_niter` iterations (not converged).

5. **Finalize**: solve H on all samples so that every sample gets loadings,
   and recompute the objective on the complete data.

The default sketch size targets about 10,000 rows in total, so the cost per
iteration does not grow with the size of the collection.
"""

import time
import warnings
import numpy as np
from concurrent.futures import Executor
from typing import Dict, List, Optional, Sequence

from cfit.initialization import initialize_params
from cfit.integrate import update_order
from cfit.objective import objective_func
from cfit.params import FactorParams, InitLike, UpdateTarget, parse_init
from cfit.results import IntegrationResult
from cfit.solvers import solve_subproblem
from cfit.solvers_penalized import MU0, solve_subproblem_penalized
from cfit.utils.nnls import executor_scope
from cfit.utils.sampling import subsample
from cfit.utils.stopping_criteria import (
    EarlyStopping, relative_objective_change, relative_w_change
)
from cfit.utils.validation import (
    NumericFailure, align_datasets, check_positive_int, check_rank, check_weight_list
)

# Target total number of sampled rows when subsample_prop is not given
DEFAULT_SKETCH_SIZE = 10_000


def evaluation_subset(X_list: Sequence[np.ndarray], n_obj_samples: int = 2000) -> List[np.ndarray]:
    """First rows of every dataset, about `n_obj_samples` rows in total."""
    n_total = sum(X.shape[0] for X in X_list)
    frac = min(n_obj_samples, n_total) / n_total
    return [X[:max(int(X.shape[0] * frac), 1)] for X in X_list]


def cfit_integrate_sketched(
    X_list: Sequence,
    r: int = 15,
    max_niter: int = 100,
    nrep: int = 1,
    init: InitLike = None,
    subsample_prop: Optional[float] = None,
    weight_list: Optional[Sequence] = None,
    min_samples: int = 20,
    tol: float = 1e-6,
    early_stopping: Optional[int] = 50,
    time_out: Optional[float] = 120,
    n_obj_samples: int = 2000,
    mu: float = MU0,
    b_gamma: float = 0.1,
    n_jobs: Optional[int] = 1,
    executor: Optional[Executor] = None,
    verbose: int = 0,
    seed: int = 0
) -> IntegrationResult:
    r"""
    Integrate multiple datasets with sketched cFIT and SPP updates.

    Parameters
    ----------
    X_list : sequence of np.ndarray or pd.DataFrame
        m expression matrices (samples x genes), aligned to shared genes.

    r : int, optional
        Number of factors. Default: 15.

    max_niter : int, optional
        Maximum number of iterations per repeat. Default: 100.

    nrep : int, optional
        Number of repeated runs; the best (lowest evaluation objective) is
        returned. Default: 1.

    init : FactorParams or dict, optional
        Full parameter set, or only W. Default: None.

    subsample_prop : float, optional
        Proportion of rows sampled per iteration, in (0, 1]. Smaller values
        are faster but less accurate. Default: min(10000 / N, 1).

    weight_list : sequence of np.ndarray, optional
        Per-dataset non-negative sampling weights (length n_j each), e.g.
        :func:`cfit.statistical_leverage_score` of each dataset.
        Default: None (uniform sampling).

    min_samples : int, optional
        Minimum rows sampled from each dataset. Default: 20.

    tol : float, optional
        Tolerance on the relative change of the objective. Default: 1e-6.

    early_stopping : int, optional
        Stop (as converged) once the objective has not improved for more
        than this many iterations. None disables it. Default: 50.

    time_out : float, optional
        Stop (as not converged) after this many minutes. None disables it.
        Default: 120.

    n_obj_samples : int, optional
        Approximate number of rows used to evaluate the objective during
        the iterations. Default: 2000.

    mu : float, optional
        Initial SPP penalty; the penalty at iteration t is mu * t.
        Default: 0.005.

    b_gamma : float, optional
        Shrinkage of the shifts towards 0. Default: 0.1. The shrinkage
        biases b and costs fit when shifts are large relative to the
        noise, notably on small data where sketching is not needed; use
        0 to match the full-batch fit.

    n_jobs, executor
        Parallel NNLS solves, see :func:`cfit.cfit_integrate`.

    verbose : int, optional
        Verbosity level (0, 1 or 2). Default: 0.

    seed : int, optional
        Seed of the first repeat; repeat k uses seed + k. Default: 0.

    Returns
    -------
    IntegrationResult
        `obj` is the objective on all samples; `obj_history` holds the
        evaluation-subset objectives per iteration.

    Raises
    ------
    WeightLengthMismatch
        If `weight_list` does not match the datasets.
    NumericFailure
        If every repeat hit a non-finite solve.
    """
    X_list, genes, sample_names = align_datasets(X_list)
    weight_list = check_weight_list(weight_list, X_list)
    r = check_rank(r)
    max_niter = check_positive_int("max_niter", max_niter)
    nrep = check_positive_int("nrep", nrep)

    m = len(X_list)
    p = X_list[0].shape[1]
    n_list = [X.shape[0] for X in X_list]
    n_total = sum(n_list)
    init_params, init_W = parse_init(init, p, r, n_list)

    if subsample_prop is None:
        subsample_prop = min(DEFAULT_SKETCH_SIZE / n_total, 1.0)
    elif not 0 < subsample_prop <= 1:
        raise ValueError(f"subsample_prop must be in (0, 1], got {subsample_prop}")

    X_list_obj = evaluation_subset(X_list, n_obj_samples)

    if verbose >= 1:
        print(f"Integrate {m} datasets ({p} genes, {n_total} samples) with r={r}")
        print(f"Use subsample proportion {subsample_prop:.4f}")
        print(f"Use {sum(X.shape[0] for X in X_list_obj)} samples to calculate "
              f"the objective function")

    start_time = time.time()
    best = None

    with executor_scope(executor, n_jobs) as pool:
        for rep in range(nrep):
            rep_seed = seed + rep
            rng = np.random.default_rng(rep_seed)
            try:
                run = _integrate_sketched_once(
                    X_list, X_list_obj, r, max_niter, init_params, init_W,
                    subsample_prop, weight_list, min_samples, tol, early_stopping,
                    time_out, mu, b_gamma, rng, pool, verbose, start_time
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

        params = best['params']
        if verbose >= 1:
            print("Calculate the objective using all samples")
        obj_full = objective_func(X_list, params.W, params.lambda_list, params.b_list,
                                  H_list=params.H_list)

    time_elapsed = time.time() - start_time
    if verbose >= 1:
        print(f"Finished in {time_elapsed:.3f}s. Best result with seed {best['seed']}: "
              f"convergence = {best['convergence']} at {best['niter']} iterations, "
              f"objective = {obj_full:.6f}")

    return IntegrationResult(
        W=params.W,
        H_list=params.H_list,
        lambda_list=params.lambda_list,
        b_list=params.b_list,
        convergence=best['convergence'],
        obj=obj_full,
        obj_history=best['obj_history'],
        deltaw=best['deltaw_history'][-1],
        deltaw_history=best['deltaw_history'],
        niter=best['niter'],
        time_elapsed=time_elapsed,
        elapsed_history=best['elapsed_history'],
        seed=best['seed'],
        genes=genes,
        sample_names=sample_names,
        params={
            'r': r, 'max_niter': max_niter, 'tol': tol, 'nrep': nrep, 'seed': seed,
            'subsample_prop': subsample_prop, 'weight_list': weight_list,
            'min_samples': min_samples, 'early_stopping': early_stopping,
            'time_out': time_out, 'mu': mu, 'b_gamma': b_gamma,
        },
    )


def _integrate_sketched_once(
    X_list,
    X_list_obj,
    r: int,
    max_niter: int,
    init_params: Optional[FactorParams],
    init_W: Optional[np.ndarray],
    subsample_prop: float,
    weight_list,
    min_samples: int,
    tol: float,
    early_stopping: Optional[int],
    time_out: Optional[float],
    mu: float,
    b_gamma: float,
    rng: np.random.Generator,
    executor: Optional[Executor],
    verbose: int,
    start_time: float
) -> Dict:
    """Run one sketched repeat; H of the returned params covers all samples."""
    if init_params is not None:
        params = init_params
    else:
        X_list_sub = subsample(X_list, subsample_prop, min_samples=min_samples,
                               weight_list=weight_list, rng=rng)
        params = initialize_params(X_list_sub, r, W=init_W, rng=rng,
                                   executor=executor, verbose=verbose)

    obj = objective_func(X_list_obj, params.W, params.lambda_list, params.b_list,
                         executor=executor)
    if verbose >= 1:
        print(f"Objective for initialization = {obj:.6f}")

    HIS = {
        'obj_history': [obj],
        'deltaw_history': [],
        'elapsed_history': [time.time() - start_time],
    }
    convergence = False
    stopper = EarlyStopping(early_stopping)

    # ========================================================================
    # Main Iterative Loop
    # ========================================================================
    for iteration in range(1, max_niter + 1):
        W_old = params.W
        obj_old = obj
        params_last = params

        X_list_sub = subsample(X_list, subsample_prop, min_samples=min_samples,
                               weight_list=weight_list, rng=rng)

        order = update_order(rng)
        if verbose >= 2:
            print(f"iter {iteration}, update by: "
                  f"{'->'.join(target.value for target in order)}")

        for target in order:
            params = solve_subproblem_penalized(
                target, X_list_sub, params, params_last, iteration,
                mu=mu, b_gamma=b_gamma, executor=executor
            )

        obj = objective_func(X_list_obj, params.W, params.lambda_list, params.b_list,
                             executor=executor)
        deltaw = relative_w_change(params.W, W_old)
        delta = relative_objective_change(obj, obj_old)
        elapsed = time.time() - start_time

        HIS['obj_history'].append(obj)
        HIS['deltaw_history'].append(deltaw)
        HIS['elapsed_history'].append(elapsed)

        if verbose >= 2:
            print(f"iter {iteration}, objective = {obj:.6f}, delta_w = {deltaw:.4e}, "
                  f"delta(obj) = {delta:.4e}")

        if delta < tol:
            if verbose >= 1:
                print(f"Converged at iter {iteration}")
            convergence = True
            break

        if stopper.update(obj):
            if verbose >= 1:
                print(f"Early stopping at iter {iteration}")
            convergence = True
            break

        if time_out is not None and elapsed > time_out * 60:
            if verbose >= 1:
                print(f"Time out at iter {iteration}")
            convergence = False
            break

    # ========================================================================
    # Loadings for every sample
    # ========================================================================
    if verbose >= 1:
        print("Estimate H for all samples")
    params = solve_subproblem(UpdateTarget.H, X_list, params, executor=executor)

    HIS.update(params=params, obj=obj, niter=iteration, convergence=convergence)
    return HIS
