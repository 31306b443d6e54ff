"""
Non-negative Least Squares Helpers

Every block update in cFIT (W per gene, H per sample) reduces to many small,
independent problems

.. math::
    \\min_{x \\geq 0} \\|A x - b\\|_2

which are solved exactly with the active-set method of Lawson and Hanson
(``scipy.optimize.nnls``). The problems of one block update share no state,
so they may be fanned out to a ``concurrent.futures`` executor; results are
always recombined in input order.
"""

import numpy as np
from contextlib import contextmanager
from concurrent.futures import Executor, ProcessPoolExecutor
from typing import Iterable, Iterator, Optional, Tuple
from scipy.optimize import nnls

from cfit.utils.validation import NumericFailure


def check_finite(name: str, array: np.ndarray) -> np.ndarray:
    """Raise NumericFailure if `array` holds NaN or infinite entries."""
    if not np.all(np.isfinite(array)):
        raise NumericFailure(f"non-finite values in {name}")
    return array


def nnls_solve(A: np.ndarray, b: np.ndarray) -> np.ndarray:
    r"""
    Solve a single non-negative least squares problem.

    Parameters
    ----------
    A : np.ndarray
        Design matrix of shape (n, k)
    b : np.ndarray
        Response vector of shape (n,)

    Returns
    -------
    x : np.ndarray
        Minimizer of ||Ax - b|| subject to x >= 0, shape (k,)

    Raises
    ------
    NumericFailure
        If the inputs or the solution are not finite, or the solver
        hits its iteration limit.
    """
    if not (np.all(np.isfinite(A)) and np.all(np.isfinite(b))):
        raise NumericFailure("non-finite input to NNLS")
    try:
        x, _ = nnls(A, b)
    except RuntimeError as exc:
        # raised by scipy when the active-set iteration limit is reached
        raise NumericFailure(f"NNLS failed: {exc}") from exc
    return check_finite("NNLS solution", x)


def _nnls_task(problem: Tuple[np.ndarray, np.ndarray]) -> np.ndarray:
    # module level so that process pools can pickle it
    A, b = problem
    return nnls_solve(A, b)


def nnls_rows(
    problems: Iterable[Tuple[np.ndarray, np.ndarray]],
    executor: Optional[Executor] = None,
    chunksize: int = 16
) -> np.ndarray:
    """
    Solve independent NNLS problems and stack the solutions row-wise.

    Parameters
    ----------
    problems : iterable of (A, b)
        One problem per output row
    executor : concurrent.futures.Executor, optional
        Pool used for the fan-out. Sequential when None.
    chunksize : int
        Passed to ``executor.map`` (used by process pools only)

    Returns
    -------
    np.ndarray
        Solutions in the order of `problems`, shape (n_problems, k)
    """
    if executor is None:
        solutions = list(map(_nnls_task, problems))
    else:
        solutions = list(executor.map(_nnls_task, problems, chunksize=chunksize))
    return np.vstack(solutions)


def make_executor(n_jobs: Optional[int]) -> Optional[Executor]:
    """Process pool with `n_jobs` workers, or None for sequential runs."""
    if n_jobs is None or n_jobs == 1:
        return None
    if n_jobs < 1:
        raise ValueError(f"n_jobs must be a positive integer, got {n_jobs}")
    return ProcessPoolExecutor(max_workers=n_jobs)


@contextmanager
def executor_scope(
    executor: Optional[Executor] = None,
    n_jobs: Optional[int] = 1
) -> Iterator[Optional[Executor]]:
    """
    Yield the executor to use for a whole optimizer call.

    A caller-supplied executor is passed through untouched; a pool created
    here from `n_jobs` is shut down on exit.
    """
    if executor is not None:
        yield executor
        return

    pool = make_executor(n_jobs)
    if pool is None:
        yield None
        return
    with pool:
        yield pool
