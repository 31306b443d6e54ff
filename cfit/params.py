"""
Parameter Bundle for the cFIT Model

The model for dataset j, sample i and gene l is

.. math::
    X^j_{il} \\approx (H_j W^T)_{il} \\lambda_{jl} + b_{jl}

with four parameter blocks:

- W (p x r): common factor matrix, shared by all datasets, non-negative
- H_list: factor loadings H_j (n_j x r), non-negative
- lambda_list: per-gene scaling lambda_j (p,), non-negative
- b_list: per-gene shift b_j (p,)

The blocks travel together as an immutable :class:`FactorParams`. Every
subproblem solver receives a bundle and returns a new one with exactly one
block (W and b together for the W step) replaced.
"""

import numpy as np
import dataclasses
from dataclasses import dataclass
from enum import Enum
from typing import List, Mapping, Optional, Sequence, Tuple, Union


class UpdateTarget(Enum):
    """Parameter block updated by a subproblem solve."""
    W = 'W'
    H = 'H'
    LAMBDA = 'lambda'
    B = 'b'


@dataclass(frozen=True)
class FactorParams:
    """Snapshot of (W, H_list, lambda_list, b_list)."""
    W: np.ndarray
    H_list: List[np.ndarray]
    lambda_list: List[np.ndarray]
    b_list: List[np.ndarray]

    def __post_init__(self):
        m = len(self.H_list)
        if len(self.lambda_list) != m or len(self.b_list) != m:
            raise ValueError(
                f"H_list, lambda_list and b_list must have the same length, got "
                f"{m}, {len(self.lambda_list)} and {len(self.b_list)}"
            )
        # store every block as a float64 array
        object.__setattr__(self, 'W', np.asarray(self.W, dtype=np.float64))
        for name in ('H_list', 'lambda_list', 'b_list'):
            object.__setattr__(
                self, name, [np.asarray(a, dtype=np.float64) for a in getattr(self, name)]
            )

    @property
    def n_datasets(self) -> int:
        return len(self.H_list)

    @property
    def rank(self) -> int:
        return self.W.shape[1]

    def replace(self, **changes) -> 'FactorParams':
        """Return a new bundle with the given blocks replaced."""
        return dataclasses.replace(self, **changes)


InitLike = Union[FactorParams, Mapping[str, object], None]


def parse_init(
    init: InitLike,
    p: int,
    r: int,
    n_list: Sequence[int]
) -> Tuple[Optional[FactorParams], Optional[np.ndarray]]:
    r"""
    Interpret the `init` argument of the optimizers.

    Parameters
    ----------
    init : FactorParams, mapping or None
        Either a full parameter set (FactorParams, or a mapping with keys
        'W', 'H_list', 'lambda_list', 'b_list'), a mapping holding only 'W',
        or None.
    p, r : int
        Expected number of genes and rank
    n_list : sequence of int
        Expected number of rows per dataset

    Returns
    -------
    params : FactorParams or None
        The full bundle when one was supplied
    W : np.ndarray or None
        The starting W when only W was supplied
    """
    if init is None:
        return None, None

    if isinstance(init, FactorParams):
        params = init
    elif all(key in init for key in ('W', 'H_list', 'lambda_list', 'b_list')):
        params = FactorParams(
            W=init['W'],
            H_list=list(init['H_list']),
            lambda_list=list(init['lambda_list']),
            b_list=list(init['b_list']),
        )
    elif 'W' in init:
        W = np.asarray(init['W'], dtype=np.float64)
        if W.shape != (p, r):
            raise ValueError(f"init['W'] shape must be ({p}, {r}), got {W.shape}")
        return None, W
    else:
        raise ValueError(
            "init must hold W, or all of W, H_list, lambda_list and b_list"
        )

    # ========================================================================
    # Shape checks for a full bundle
    # ========================================================================
    if params.W.shape != (p, r):
        raise ValueError(f"init W shape must be ({p}, {r}), got {params.W.shape}")
    if params.n_datasets != len(n_list):
        raise ValueError(
            f"init holds {params.n_datasets} datasets, expected {len(n_list)}"
        )
    for j, n in enumerate(n_list):
        if params.H_list[j].shape != (n, r):
            raise ValueError(
                f"init H_list[{j}] shape must be ({n}, {r}), got {params.H_list[j].shape}"
            )
        if params.lambda_list[j].shape != (p,) or params.b_list[j].shape != (p,):
            raise ValueError(f"init lambda_list[{j}] and b_list[{j}] must have length {p}")

    return params, None
