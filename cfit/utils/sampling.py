"""
Sketching Utilities: Subsampling and Statistical Leverage

The sketched optimizer never touches all samples inside its iteration loop.
Each iteration draws a fresh subset of rows from every dataset, either
uniformly or proportionally to user-supplied weights. A natural choice of
weights is the statistical leverage score of each row,

.. math::
    \\ell_i = \\sum_{k=1}^{K} U_{ik}^2

where U holds the top-K left singular vectors of the data matrix. Rows with
high leverage dominate the dominant subspace and are sampled more often.
"""

import numpy as np
from typing import List, Optional, Sequence, Tuple, Union
from sklearn.utils.extmath import randomized_svd

from cfit.utils.nnls import check_finite


def subsample_size(n: int, subsample_prop: float, min_samples: int = 20) -> int:
    """Rows drawn from a dataset of `n` rows: max(n*prop, min(n, min_samples))."""
    return int(round(max(n * subsample_prop, min(n, min_samples))))


def subsample(
    X_list: Sequence[np.ndarray],
    subsample_prop: float,
    min_samples: int = 20,
    weight_list: Optional[Sequence[np.ndarray]] = None,
    rng: Optional[np.random.Generator] = None,
    return_indices: bool = False
) -> Union[List[np.ndarray], Tuple[List[np.ndarray], List[np.ndarray]]]:
    r"""
    Subsample the rows of each dataset.

    Parameters
    ----------
    X_list : sequence of np.ndarray
        m matrices of shape (n_j, p)
    subsample_prop : float
        Proportion of rows to draw, in (0, 1]
    min_samples : int, optional
        Minimum number of rows drawn from each dataset. Default: 20.
        Never more than the dataset holds.
    weight_list : sequence of np.ndarray, optional
        Non-negative sampling weights per dataset (length n_j each).
        Uniform sampling when None.
    rng : np.random.Generator, optional
        Source of randomness. A fresh default generator when None.
    return_indices : bool, optional
        Also return the sampled row indices. Default: False.

    Returns
    -------
    X_sub : list of np.ndarray
        Subsampled matrices, rows in sampling order
    indices : list of np.ndarray
        Row indices per dataset (only if return_indices)

    Examples
    --------
    >>> X = np.random.rand(100, 5)
    >>> [x.shape[0] for x in subsample([X], 0.05, min_samples=20)]
    [20]
    >>> [x.shape[0] for x in subsample([X], 0.5, min_samples=20)]
    [50]
    """
    if not 0 < subsample_prop <= 1:
        raise ValueError(f"subsample_prop must be in (0, 1], got {subsample_prop}")
    if rng is None:
        rng = np.random.default_rng()

    X_sub = []
    indices = []
    for j, X in enumerate(X_list):
        n = X.shape[0]
        size = min(subsample_size(n, subsample_prop, min_samples), n)
        if weight_list is None:
            idx = rng.choice(n, size=size, replace=False)
        else:
            w = np.asarray(weight_list[j], dtype=np.float64)
            w = w / np.sum(w)
            # cannot draw more distinct rows than have positive weight
            size = min(size, int(np.count_nonzero(w)))
            idx = rng.choice(n, size=size, replace=False, p=w)
        X_sub.append(X[idx])
        indices.append(idx)

    if return_indices:
        return X_sub, indices
    return X_sub


def statistical_leverage_score(
    A: np.ndarray,
    k: Optional[int] = None,
    random_state: Optional[int] = 0
) -> np.ndarray:
    r"""
    Calculate the statistical leverage score of every row of `A`.

    Parameters
    ----------
    A : np.ndarray
        Data matrix of shape (n, p)
    k : int, optional
        Number of singular vectors used. All of them (thin SVD) when None,
        otherwise a truncated randomized SVD with k < p components.
    random_state : int, optional
        Seed for the randomized SVD. Default: 0.

    Returns
    -------
    np.ndarray
        Length-n vector of scores; they sum to the rank used.
    """
    A = np.asarray(A, dtype=np.float64)
    if k is None:
        U, _, _ = np.linalg.svd(A, full_matrices=False)
    else:
        if not 0 < k < A.shape[1]:
            raise ValueError(f"k must satisfy 0 < k < {A.shape[1]}, got {k}")
        U, _, _ = randomized_svd(A, n_components=k, random_state=random_state)

    check_finite("singular vectors", U)
    return np.sum(U ** 2, axis=1)
