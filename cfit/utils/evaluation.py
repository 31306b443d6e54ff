"""
Utility Functions for Evaluating cFIT Fits

Reconstruction under the cFIT model, reconstruction error, and the
batch-corrected expression handed to downstream tools.
"""

import numpy as np
from typing import List, Sequence


def reconstruct(
    W: np.ndarray,
    H: np.ndarray,
    lambd: np.ndarray,
    b: np.ndarray
) -> np.ndarray:
    r"""
    Model reconstruction of one dataset.

    .. math::
        \\hat{X} = (H W^T) \\, diag(\\lambda) + 1_n b^T

    Parameters
    ----------
    W : np.ndarray
        Common factor matrix, shape (p, r)
    H : np.ndarray
        Factor loadings, shape (n, r)
    lambd : np.ndarray
        Per-gene scaling, shape (p,)
    b : np.ndarray
        Per-gene shift, shape (p,)

    Returns
    -------
    np.ndarray
        Reconstructed matrix of shape (n, p)
    """
    return (H @ W.T) * lambd[np.newaxis, :] + b[np.newaxis, :]


def compute_reconstruction_error(
    X: np.ndarray,
    W: np.ndarray,
    H: np.ndarray,
    lambd: np.ndarray,
    b: np.ndarray,
    norm_type: str = 'frobenius'
) -> float:
    r"""
    Compute reconstruction error ||X - (HW^T)diag(lambda) - 1b^T||.

    Parameters
    ----------
    norm_type : str
        Type of norm: 'frobenius', 'squared' (squared Frobenius, the cFIT
        loss) or 'l1'

    Returns
    -------
    float
        Reconstruction error
    """
    residual = X - reconstruct(W, H, lambd, b)

    if norm_type == 'frobenius':
        return float(np.linalg.norm(residual, 'fro'))
    elif norm_type == 'squared':
        return float(np.sum(residual ** 2))
    elif norm_type == 'l1':
        return float(np.sum(np.abs(residual)))
    else:
        raise ValueError(f"Unknown norm type: {norm_type}")


def corrected_expression(
    W: np.ndarray,
    H_list: Sequence[np.ndarray]
) -> List[np.ndarray]:
    """Batch-corrected expression H_j W^T (scaling and shift removed)."""
    return [H @ W.T for H in H_list]


def matrix_similarity(M1: np.ndarray, M2: np.ndarray) -> float:
    r"""
    Compute average cosine similarity between matching column vectors.
    """
    if M1.shape[1] == 0 or M2.shape[1] == 0:
        return 0.0

    # Normalize columns
    M1_norm = M1 / (np.linalg.norm(M1, axis=0, keepdims=True) + 1e-10)
    M2_norm = M2 / (np.linalg.norm(M2, axis=0, keepdims=True) + 1e-10)

    similarities = np.diag(M1_norm.T @ M2_norm)

    return float(np.mean(similarities))
