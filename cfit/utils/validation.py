"""
Input Validation and Error Taxonomy

This module checks the inputs handed to the cFIT optimizers before any
numerical work starts, and defines the exceptions raised by the package.

Datasets are row-by-gene matrices. When they are given as
``pandas.DataFrame`` objects the columns are gene identifiers and the index
holds sample identifiers; the gene sets are intersected (keeping the order of
the first dataset) and every matrix is re-indexed to the shared genes. Plain
``numpy`` arrays carry no identifiers and must already agree on the number of
columns.
"""

import warnings
import numpy as np
import pandas as pd
from typing import List, Optional, Sequence, Tuple

# Fewer shared genes than max(MIN_GENES, m) triggers a warning
MIN_GENES = 10


class InputMismatchError(ValueError):
    """Datasets cannot be aligned to a common, finite gene set."""


class NumericFailure(ArithmeticError):
    """A linear-algebra solve produced non-finite output."""


class WeightLengthMismatch(ValueError):
    """Subsampling weights do not match the datasets they belong to."""


def align_datasets(
    X_list: Sequence,
) -> Tuple[List[np.ndarray], Optional[List], List[Optional[List]]]:
    r"""
    Align a collection of datasets to a common ordered gene set.

    Parameters
    ----------
    X_list : sequence of np.ndarray or pd.DataFrame
        m matrices of shape (n_j, p_j), rows are samples and columns genes.
        Either all DataFrames (gene identifiers in the columns) or all
        arrays with the same number of columns.

    Returns
    -------
    arrays : list of np.ndarray
        float64 matrices of shape (n_j, p) restricted to the shared genes
    genes : list or None
        Shared gene identifiers, None for unnamed array inputs
    sample_names : list
        Per-dataset list of sample identifiers (None for arrays)

    Raises
    ------
    InputMismatchError
        If identifiers are missing on some inputs, no genes are shared,
        shapes disagree, or the data contain NaN/inf.
    """
    if len(X_list) == 0:
        raise InputMismatchError("X_list must contain at least one dataset")

    m = len(X_list)
    is_frame = [isinstance(X, pd.DataFrame) for X in X_list]

    if any(is_frame) and not all(is_frame):
        raise InputMismatchError(
            "gene identifiers missing for some datasets; pass either all "
            "DataFrames or all arrays"
        )

    if all(is_frame):
        genes = list(X_list[0].columns)
        for X in X_list[1:]:
            present = set(X.columns)
            genes = [g for g in genes if g in present]

        if len(genes) == 0:
            raise InputMismatchError("datasets share no common genes")
        if len(genes) < max(MIN_GENES, m):
            warnings.warn(
                f"Too few genes ({len(genes)}), check the data source",
                UserWarning
            )

        arrays = [X.loc[:, genes].to_numpy(dtype=np.float64) for X in X_list]
        sample_names = [list(X.index) for X in X_list]
    else:
        arrays = [np.asarray(X, dtype=np.float64) for X in X_list]
        for j, X in enumerate(arrays):
            if X.ndim != 2:
                raise InputMismatchError(
                    f"dataset {j} must be a 2D matrix, got shape {X.shape}"
                )
        p = arrays[0].shape[1]
        if any(X.shape[1] != p for X in arrays):
            raise InputMismatchError(
                f"datasets disagree on the number of genes: "
                f"{[X.shape[1] for X in arrays]}"
            )
        if p == 0:
            raise InputMismatchError("datasets share no common genes")
        if p < max(MIN_GENES, m):
            warnings.warn(f"Too few genes ({p}), check the data source", UserWarning)
        genes = None
        sample_names = [None] * m

    for j, X in enumerate(arrays):
        if X.shape[0] == 0:
            raise InputMismatchError(f"dataset {j} has no samples")
        if not np.all(np.isfinite(X)):
            raise InputMismatchError(f"dataset {j} contains NaN or infinite values")

    return arrays, genes, sample_names


def check_weight_list(
    weight_list: Optional[Sequence],
    X_list: Sequence[np.ndarray]
) -> Optional[List[np.ndarray]]:
    """
    Validate per-dataset subsampling weights against the datasets.

    Returns the weights as float arrays, or None when no weights are given.
    """
    if weight_list is None:
        return None

    if len(weight_list) != len(X_list):
        raise WeightLengthMismatch(
            f"weight_list has {len(weight_list)} entries for {len(X_list)} datasets"
        )

    checked = []
    for j, (w, X) in enumerate(zip(weight_list, X_list)):
        w = np.asarray(w, dtype=np.float64).ravel()
        if w.shape[0] != X.shape[0]:
            raise WeightLengthMismatch(
                f"weights for dataset {j} have length {w.shape[0]}, "
                f"expected {X.shape[0]}"
            )
        if not np.all(np.isfinite(w)) or np.any(w < 0):
            raise WeightLengthMismatch(
                f"weights for dataset {j} must be finite and non-negative"
            )
        if np.sum(w) == 0:
            raise WeightLengthMismatch(f"weights for dataset {j} are all zero")
        checked.append(w)

    return checked


def check_rank(r) -> int:
    """Target rank must be a positive integer (as in nenmf)."""
    if r <= 0 or r != int(r):
        raise ValueError(f"Target rank r must be positive integer, got {r}")
    return int(r)


def check_positive_int(name: str, value) -> int:
    """Iteration counts and repeat counts must be positive integers."""
    if value <= 0 or value != int(value):
        raise ValueError(f"{name} must be a positive integer, got {value}")
    return int(value)
