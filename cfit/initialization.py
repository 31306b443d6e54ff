"""
Parameter Initialization for cFIT

Block coordinate descent on the cFIT objective is non-convex, so the starting
point matters. The data-driven initializer seeds the factor structure from a
clustering of all samples:

1. **Scale**: center and scale every dataset per gene (removes batch shifts
   and scalings before clustering), then concatenate the rows.
2. **Cluster**: k-means with r clusters on the concatenated, scaled rows.
3. **Loadings**: H_j is the binary cluster-membership indicator of the rows
   of dataset j (one cluster per factor).
4. **Factors**: W is estimated dataset by dataset by NNLS of the uncentered
   expression on the membership indicators, and the per-dataset estimates
   are accumulated with the cluster sizes as weights.
5. **Corrections**: lambda_j = 1, and b_j from one shift solve.

A purely random initializer is provided for ablations.
"""

import warnings
import numpy as np
from concurrent.futures import Executor
from typing import Optional, Sequence
from sklearn.cluster import KMeans

from cfit.params import FactorParams
from cfit.solvers import solve_b, solve_H, solve_W
from cfit.utils.validation import check_rank


def _scale_dataset(X: np.ndarray) -> np.ndarray:
    """Center and scale the columns of X; constant columns keep unit scale."""
    std = np.std(X, axis=0)
    std[std == 0] = 1.0
    return (X - np.mean(X, axis=0)) / std


def initialize_params(
    X_list: Sequence[np.ndarray],
    r: int,
    W: Optional[np.ndarray] = None,
    rng: Optional[np.random.Generator] = None,
    n_init: int = 10,
    executor: Optional[Executor] = None,
    verbose: int = 0
) -> FactorParams:
    r"""
    Initialize (W, H_list, lambda_list, b_list) from a k-means clustering.

    Parameters
    ----------
    X_list : sequence of np.ndarray
        m expression matrices of shape (n_j, p), possibly subsampled
    r : int
        Target rank (number of factors)
    W : np.ndarray, optional
        Common factor matrix of shape (p, r). When given, clustering is
        skipped and only H_list, lambda_list and b_list are derived.
    rng : np.random.Generator, optional
        Source of randomness for k-means
    n_init : int, optional
        Number of k-means restarts. Default: 10.
    executor : concurrent.futures.Executor, optional
        Pool for the NNLS fan-out
    verbose : int, optional
        Verbosity level. Default: 0.

    Returns
    -------
    FactorParams
        Initial parameters

    Notes
    -----
    If r exceeds the number of samples or genes, k-means runs with the
    largest feasible number of clusters (with a warning). Factors without
    any member sample start from the mean expression profile.
    """
    r = check_rank(r)
    if rng is None:
        rng = np.random.default_rng()

    m = len(X_list)
    p = X_list[0].shape[1]
    n_list = [X.shape[0] for X in X_list]
    ones = [np.ones(p) for _ in range(m)]
    zeros = [np.zeros(p) for _ in range(m)]

    if W is not None:
        W = np.asarray(W, dtype=np.float64)
        if W.shape != (p, r):
            raise ValueError(f"W shape must be ({p}, {r}), got {W.shape}")
        if verbose >= 1:
            print("Initialize H, b, lambda from the supplied W")
        H_list = [solve_H(X, W, lambd, b, executor=executor)
                  for X, lambd, b in zip(X_list, ones, zeros)]
    else:
        # ====================================================================
        # Step 1-2: Cluster the scaled, concatenated samples
        # ====================================================================
        X_scaled = np.vstack([_scale_dataset(X) for X in X_list])
        n_total = X_scaled.shape[0]

        n_clusters = min(r, n_total, p)
        if n_clusters < r:
            warnings.warn(
                f"Rank r={r} exceeds what the data support "
                f"({n_total} samples, {p} genes); clustering into {n_clusters} groups",
                UserWarning
            )

        if verbose >= 1:
            print(f"Initialize W, H, b, lambda: k-means with {n_clusters} clusters "
                  f"on {n_total} samples")

        km = KMeans(
            n_clusters=n_clusters,
            n_init=n_init,
            random_state=int(rng.integers(np.iinfo(np.int32).max))
        )
        labels = km.fit_predict(X_scaled)

        # ====================================================================
        # Step 3: Membership indicators as loadings
        # ====================================================================
        H_all = np.zeros((n_total, r))
        H_all[np.arange(n_total), labels] = 1.0
        H_list = np.split(H_all, np.cumsum(n_list)[:-1])

        # ====================================================================
        # Step 4: Accumulate per-dataset NNLS estimates of W
        # ====================================================================
        W_sum = np.zeros((p, r))
        counts = np.zeros(r)
        for X, H in zip(X_list, H_list):
            W_j = solve_W([X], [H], [np.ones(p)], [np.zeros(p)], executor=executor)
            counts_j = H.sum(axis=0)
            W_sum += W_j * counts_j[np.newaxis, :]
            counts += counts_j

        W = np.zeros((p, r))
        filled = counts > 0
        W[:, filled] = W_sum[:, filled] / counts[filled]
        if not np.all(filled):
            mean_profile = np.maximum(np.mean(np.vstack(X_list), axis=0), 0)
            W[:, ~filled] = mean_profile[:, np.newaxis]

    # ========================================================================
    # Step 5: Scalings at 1, shifts from one solve
    # ========================================================================
    b_list = [solve_b(X, W, H, lambd) for X, H, lambd in zip(X_list, H_list, ones)]

    return FactorParams(W=W, H_list=list(H_list), lambda_list=ones, b_list=b_list)


def initialize_params_random(
    X_list: Sequence[np.ndarray],
    r: int,
    rng: Optional[np.random.Generator] = None
) -> FactorParams:
    """
    Random non-negative initialization (lambda = 1, b = 0).

    W and H_j are drawn from U(0, 1) and W is scaled so that H W^T matches
    the average expression level of the data.
    """
    r = check_rank(r)
    if rng is None:
        rng = np.random.default_rng()

    p = X_list[0].shape[1]
    W = rng.uniform(0.0, 1.0, size=(p, r))
    H_list = [rng.uniform(0.0, 1.0, size=(X.shape[0], r)) for X in X_list]

    data_level = np.mean([np.mean(np.abs(X)) for X in X_list])
    model_level = np.mean([np.mean(H @ W.T) for H in H_list])
    if model_level > 0 and data_level > 0:
        W *= data_level / model_level

    return FactorParams(
        W=W,
        H_list=H_list,
        lambda_list=[np.ones(p) for _ in X_list],
        b_list=[np.zeros(p) for _ in X_list],
    )
