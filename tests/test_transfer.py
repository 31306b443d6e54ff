import numpy as np
import pandas as pd
import pytest

from cfit import CFITTransfer, cfit_transfer
from cfit.utils.validation import InputMismatchError

from conftest import generate_test_data


def test_transfer_is_deterministic_and_keeps_W(synthetic_data) -> None:
    X_list, truth = synthetic_data
    W = truth.W.copy()

    res1 = cfit_transfer(X_list[1], W, seed=11)
    res2 = cfit_transfer(X_list[1], W, seed=11)

    np.testing.assert_array_equal(W, truth.W)
    assert W.flags.writeable
    np.testing.assert_array_equal(res1.H, res2.H)
    np.testing.assert_array_equal(res1.lambd, res2.lambd)
    np.testing.assert_array_equal(res1.b, res2.b)
    assert res1.obj_history == res2.obj_history


def test_transfer_fits_target(synthetic_data) -> None:
    X_list, truth = synthetic_data
    res = cfit_transfer(X_list[0], truth.W, max_niter=200)

    assert res.convergence
    assert res.H.shape == (50, 3)
    assert np.all(res.H >= 0)
    assert np.all(res.lambd >= 0)
    history = np.asarray(res.obj_history)
    assert np.all(np.diff(history) <= 1e-8 * history[:-1])
    # noise level 0.05 on 50 x 30 entries
    assert res.obj < 50 * 30 * 0.05 ** 2 * 5


def test_transfer_from_truth_noise_free(noise_free_data) -> None:
    X_list, truth = noise_free_data
    res = cfit_transfer(X_list[1], truth.W,
                        init={'lambd': truth.lambda_list[1], 'b': truth.b_list[1]})

    assert res.convergence
    assert res.niter == 1
    np.testing.assert_allclose(res.H, truth.H_list[1], atol=1e-8)


def test_transfer_without_scaling_keeps_init(synthetic_data) -> None:
    X_list, truth = synthetic_data
    res = cfit_transfer(X_list[0], truth.W, update_scaling=False)

    np.testing.assert_array_equal(res.lambd, 1.0)
    np.testing.assert_array_equal(res.b, 0.0)


def test_transfer_aligns_genes() -> None:
    X_list, truth = generate_test_data(n_features=12, rank=2)
    genes = [f"gene{l}" for l in range(12)]
    W_df = pd.DataFrame(truth.W, index=genes)

    # target lacks gene0 and carries an unknown gene
    X_df = pd.DataFrame(X_list[0], columns=genes).drop(columns='gene0')
    X_df['unknown'] = 0.0
    X_df.index = [f"cell{i}" for i in range(len(X_df))]

    res = cfit_transfer(X_df, W_df)

    assert res.genes == genes[1:]
    assert res.lambd.shape == (11,)
    frame = res.to_frame()
    assert list(frame.index) == list(X_df.index)
    assert frame.shape == (50, 2)

    # plain W with separate gene names gives the same result
    res_arr = cfit_transfer(X_df, truth.W, genes=genes)
    np.testing.assert_allclose(res_arr.H, res.H)


def test_transfer_input_mismatch() -> None:
    W = np.random.rand(12, 2)
    with pytest.raises(InputMismatchError):
        cfit_transfer(np.random.rand(5, 11), W)
    with pytest.raises(InputMismatchError):
        cfit_transfer(pd.DataFrame(np.random.rand(5, 12)), W)
    with pytest.raises(InputMismatchError):
        cfit_transfer(pd.DataFrame(np.random.rand(5, 2), columns=['x', 'y']),
                      W, genes=[f"g{l}" for l in range(12)])


def test_r_alias() -> None:
    assert CFITTransfer is cfit_transfer
