"""
cFIT: Common Factor Integration and Transfer

A Python package for integrating gene-expression datasets from multiple
sources (batches, technologies, studies) into a shared low-dimensional
representation, and for transferring that representation onto new datasets.

- **cfit_integrate** (CFITIntegrate): full-batch block coordinate descent
  Estimates common factors W, loadings H_j and per-gene batch corrections
  (lambda_j, b_j) jointly on all samples

- **cfit_integrate_sketched** (CFITIntegrate_sketched): sketched variant
  Solves every block on a random subset of samples with stochastic
  proximal point anchoring, for collections too large for full batches

- **cfit_transfer** (CFITTransfer): transfer learning
  Maps a new dataset onto a learned W, which stays fixed

Typical Usage
=============

1. Integration of two datasets (samples x genes):

    >>> import numpy as np
    >>> from cfit import cfit_integrate
    >>> rng = np.random.default_rng(0)
    >>> X1 = rng.random((100, 50))
    >>> X2 = rng.random((80, 50)) * 2 + 1
    >>> res = cfit_integrate([X1, X2], r=5, nrep=3, verbose=1)
    >>> corrected = res.corrected_expression()

2. Sketched integration with leverage-score sampling:

    >>> from cfit import cfit_integrate_sketched, statistical_leverage_score
    >>> weights = [statistical_leverage_score(X, k=5) for X in (X1, X2)]
    >>> res = cfit_integrate_sketched([X1, X2], r=5, subsample_prop=0.2,
    ...                               weight_list=weights)

3. Transfer onto a new dataset:

    >>> from cfit import cfit_transfer
    >>> tf = cfit_transfer(rng.random((30, 50)), res.W)
    >>> tf.H.shape
    (30, 5)

DataFrames (samples in the index, genes in the columns) are aligned to
their shared genes, and the results can be viewed as labelled frames via
``res.to_frames()``.

Mathematical Background
=======================

For m datasets X_j (n_j x p):

    min Σ_j ||X_j - H_j W^T diag(λ_j) - 1 b_j^T||_F^2

    subject to W, H_j, λ_j ≥ 0 and Σ_j (n_j / N) λ_jl = 1 for every gene l

Key References
===============

Peng, M., Li, Y., Wamsley, B., Wei, Y., & Roeder, K. (2021).
"Integration and transfer learning of single-cell transcriptomes via cFIT"
PNAS, 118(10), e2024383118.

License: MIT

"""

__version__ = "1.0.0"
__all__ = [
    # Optimizers
    'cfit_integrate',
    'cfit_integrate_sketched',
    'cfit_transfer',
    'CFITIntegrate',
    'CFITIntegrate_sketched',
    'CFITTransfer',
    # Model
    'FactorParams',
    'UpdateTarget',
    'IntegrationResult',
    'TransferResult',
    'initialize_params',
    'initialize_params_random',
    'objective_func',
    # Utilities
    'subsample',
    'statistical_leverage_score',
    'corrected_expression',
    'compute_reconstruction_error',
    'matrix_similarity',
    # Errors
    'InputMismatchError',
    'NumericFailure',
    'WeightLengthMismatch',
]

from .params import FactorParams, UpdateTarget
from .results import IntegrationResult, TransferResult
from .initialization import initialize_params, initialize_params_random
from .objective import objective_func
from .integrate import cfit_integrate
from .integrate_sketched import cfit_integrate_sketched
from .transfer import cfit_transfer
from .utils.sampling import subsample, statistical_leverage_score
from .utils.evaluation import (
    corrected_expression,
    compute_reconstruction_error,
    matrix_similarity,
)
from .utils.validation import InputMismatchError, NumericFailure, WeightLengthMismatch

# Names used by the R package
CFITIntegrate = cfit_integrate
CFITIntegrate_sketched = cfit_integrate_sketched
CFITTransfer = cfit_transfer
