"""
Synthetic cFIT data shared by the optimizer tests.
"""

import numpy as np
import pytest

from cfit.params import FactorParams
from cfit.solvers import rescale_lambda_list


def generate_test_data(n_samples=(50, 40), n_features=30, rank=3, noise=0.05, seed=42):
    """
    Generate datasets from the cFIT model with known parameters.

    W has one block of marker genes per factor on top of a low baseline, so
    the factors are well separated. Scalings are rescaled to satisfy the
    identifiability constraint.
    """
    rng = np.random.default_rng(seed)
    m = len(n_samples)

    W_true = 0.1 * rng.random((n_features, rank))
    block = n_features // rank
    for k in range(rank):
        W_true[k * block:(k + 1) * block, k] += 1.0 + rng.random(block)

    H_true = [np.abs(rng.standard_normal((n, rank))) * 0.8 + 0.5 for n in n_samples]
    lambda_true = [rng.uniform(0.5, 1.5, size=n_features) for _ in range(m)]
    lambda_true, _ = rescale_lambda_list(lambda_true, n_samples)
    b_true = [rng.normal(0.0, 0.5, size=n_features) for _ in range(m)]

    X_list = []
    for H, lambd, b in zip(H_true, lambda_true, b_true):
        X_clean = (H @ W_true.T) * lambd[np.newaxis, :] + b[np.newaxis, :]
        X_list.append(X_clean + noise * rng.standard_normal(X_clean.shape))

    truth = FactorParams(W=W_true, H_list=H_true, lambda_list=lambda_true, b_list=b_true)
    return X_list, truth


@pytest.fixture
def synthetic_data():
    return generate_test_data()


@pytest.fixture
def noise_free_data():
    return generate_test_data(noise=0.0)
