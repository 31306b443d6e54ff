"""
Result Records Returned by the cFIT Optimizers
"""

import numpy as np
import pandas as pd
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from cfit.params import FactorParams
from cfit.utils.evaluation import corrected_expression


def _loadings_frame(H: np.ndarray, sample_names: Optional[List]) -> pd.DataFrame:
    columns = [f"factor_{k + 1}" for k in range(H.shape[1])]
    return pd.DataFrame(H, index=sample_names, columns=columns)


@dataclass
class IntegrationResult:
    r"""
    Output of :func:`cfit.cfit_integrate` and :func:`cfit.cfit_integrate_sketched`.

    Attributes
    ----------
    W : np.ndarray
        Estimated common factor matrix, shape (p, r)
    H_list : list of np.ndarray
        Estimated factor loadings, shapes (n_j, r)
    lambda_list : list of np.ndarray
        Estimated per-gene scalings, length p each
    b_list : list of np.ndarray
        Estimated per-gene shifts, length p each
    convergence : bool
        Whether the stopping rule was met (early stopping counts as
        converged; max_niter and time-out do not)
    obj : float
        Objective at the end of the selected repeat
    obj_history : list of float
        Objective per iteration, starting with the initialization
    deltaw : float
        Relative change of W in the last iteration
    deltaw_history : list of float
        Relative change of W per iteration
    niter : int
        Iterations run by the selected repeat
    time_elapsed : float
        Wall-clock time of the whole call in seconds
    elapsed_history : list of float
        Seconds since the start of the call, per iteration
    seed : int
        Seed of the selected repeat
    genes : list or None
        Gene identifiers (rows of W), when the inputs carried them
    sample_names : list
        Per-dataset sample identifiers (rows of H_j), or None entries
    params : dict
        Settings the optimizer was called with
    """
    W: np.ndarray
    H_list: List[np.ndarray]
    lambda_list: List[np.ndarray]
    b_list: List[np.ndarray]
    convergence: bool
    obj: float
    obj_history: List[float]
    deltaw: float
    deltaw_history: List[float]
    niter: int
    time_elapsed: float
    elapsed_history: List[float]
    seed: int
    genes: Optional[List] = None
    sample_names: List[Optional[List]] = field(default_factory=list)
    params: Dict[str, Any] = field(default_factory=dict)

    def params_bundle(self) -> FactorParams:
        """Fitted parameters as a bundle, e.g. to warm start another run."""
        return FactorParams(
            W=self.W,
            H_list=self.H_list,
            lambda_list=self.lambda_list,
            b_list=self.b_list,
        )

    def corrected_expression(self) -> List[np.ndarray]:
        """Batch-corrected expression H_j W^T per dataset."""
        return corrected_expression(self.W, self.H_list)

    def to_frames(self) -> Dict[str, Any]:
        """
        Labelled views of the fit.

        Returns
        -------
        dict
            'W': DataFrame indexed by gene; 'H_list': DataFrames indexed by
            sample; 'lambda' and 'b': DataFrames with one column per dataset.
        """
        columns = [f"factor_{k + 1}" for k in range(self.W.shape[1])]
        dataset_cols = [f"dataset_{j + 1}" for j in range(len(self.H_list))]
        names = self.sample_names or [None] * len(self.H_list)
        return {
            'W': pd.DataFrame(self.W, index=self.genes, columns=columns),
            'H_list': [_loadings_frame(H, s) for H, s in zip(self.H_list, names)],
            'lambda': pd.DataFrame(np.column_stack(self.lambda_list),
                                   index=self.genes, columns=dataset_cols),
            'b': pd.DataFrame(np.column_stack(self.b_list),
                              index=self.genes, columns=dataset_cols),
        }


@dataclass
class TransferResult:
    """
    Output of :func:`cfit.cfit_transfer`.

    Attributes mirror :class:`IntegrationResult` for the single target
    dataset; W itself is not part of the result since it is never changed.
    """
    H: np.ndarray
    lambd: np.ndarray
    b: np.ndarray
    convergence: bool
    obj: float
    obj_history: List[float]
    niter: int
    time_elapsed: float
    genes: Optional[List] = None
    sample_names: Optional[List] = None
    params: Dict[str, Any] = field(default_factory=dict)

    def to_frame(self) -> pd.DataFrame:
        """Factor loadings as a DataFrame indexed by sample."""
        return _loadings_frame(self.H, self.sample_names)
