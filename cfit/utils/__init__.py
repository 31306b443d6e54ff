"""
Utility modules for the cFIT optimizers.
"""

from .validation import (
    InputMismatchError,
    NumericFailure,
    WeightLengthMismatch,
    align_datasets,
    check_weight_list,
)
from .nnls import nnls_solve, nnls_rows, executor_scope
from .sampling import subsample, statistical_leverage_score
from .stopping_criteria import (
    EarlyStopping,
    relative_objective_change,
    relative_w_change,
)
from .evaluation import (
    reconstruct,
    compute_reconstruction_error,
    corrected_expression,
    matrix_similarity,
)

__all__ = [
    'InputMismatchError',
    'NumericFailure',
    'WeightLengthMismatch',
    'align_datasets',
    'check_weight_list',
    'nnls_solve',
    'nnls_rows',
    'executor_scope',
    'subsample',
    'statistical_leverage_score',
    'EarlyStopping',
    'relative_objective_change',
    'relative_w_change',
    'reconstruct',
    'compute_reconstruction_error',
    'corrected_expression',
    'matrix_similarity',
]
