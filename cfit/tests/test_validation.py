import numpy as np
import pandas as pd
import pytest

from cfit.utils.validation import (
    InputMismatchError,
    WeightLengthMismatch,
    align_datasets,
    check_rank,
    check_weight_list,
)


def _frame(n, genes, seed=0):
    data = np.random.default_rng(seed).random((n, len(genes)))
    return pd.DataFrame(data, columns=genes, index=[f"s{i}" for i in range(n)])


def test_dataframes_intersect_in_first_order() -> None:
    genes1 = [f"g{l}" for l in range(15)]
    genes2 = genes1[::-1][:12] + ['other']
    df1, df2 = _frame(4, genes1), _frame(3, genes2, seed=1)

    arrays, genes, sample_names = align_datasets([df1, df2])

    assert genes == [g for g in genes1 if g in genes2]
    assert [X.shape for X in arrays] == [(4, 12), (3, 12)]
    np.testing.assert_array_equal(arrays[1], df2.loc[:, genes].to_numpy())
    assert sample_names[0] == list(df1.index)


def test_few_shared_genes_warn() -> None:
    df1 = _frame(4, ['a', 'b', 'c', 'd'])
    df2 = _frame(4, ['c', 'd', 'e'])
    with pytest.warns(UserWarning, match="Too few genes"):
        arrays, genes, _ = align_datasets([df1, df2])
    assert genes == ['c', 'd']


def test_no_shared_genes_raise() -> None:
    with pytest.raises(InputMismatchError):
        align_datasets([_frame(2, ['a']), _frame(2, ['b'])])


def test_arrays_pass_through() -> None:
    X = np.random.default_rng(0).random((5, 12))
    arrays, genes, sample_names = align_datasets([X, X[:3]])

    assert genes is None
    assert sample_names == [None, None]
    assert arrays[1].dtype == np.float64


@pytest.mark.parametrize("X_list", [
    [],
    [np.ones((3, 12)), np.ones((3, 11))],
    [np.ones((0, 12))],
    [np.full((3, 12), np.nan)],
    [np.ones(12)],
    [pd.DataFrame(np.ones((3, 12))), np.ones((3, 12))],
])
def test_bad_inputs_raise(X_list) -> None:
    with pytest.raises(InputMismatchError):
        align_datasets(X_list)


def test_weight_list_checks() -> None:
    X_list = [np.ones((4, 2)), np.ones((3, 2))]
    assert check_weight_list(None, X_list) is None

    weights = check_weight_list([[1, 2, 3, 4], np.ones(3)], X_list)
    assert weights[0].dtype == np.float64

    for bad in ([np.ones(4)], [np.ones(4), np.ones(4)],
                [np.ones(4), np.array([1.0, -1.0, 1.0])],
                [np.ones(4), np.array([1.0, np.inf, 1.0])],
                [np.zeros(4), np.ones(3)]):
        with pytest.raises(WeightLengthMismatch):
            check_weight_list(bad, X_list)


def test_check_rank() -> None:
    assert check_rank(3) == 3
    assert check_rank(3.0) == 3
    for bad in (0, -1, 1.5):
        with pytest.raises(ValueError):
            check_rank(bad)
