import numpy as np
import pytest

from cfit.initialization import initialize_params, initialize_params_random
from cfit.objective import objective_func
from cfit.params import FactorParams, parse_init
from cfit.utils.evaluation import compute_reconstruction_error, reconstruct


def _bundle(p=6, r=2, n_list=(4, 3)):
    return FactorParams(
        W=np.ones((p, r)),
        H_list=[np.ones((n, r)) for n in n_list],
        lambda_list=[np.ones(p) for _ in n_list],
        b_list=[np.zeros(p) for _ in n_list],
    )


def test_bundle_is_frozen_and_replace_copies() -> None:
    params = _bundle()
    with pytest.raises(AttributeError):
        params.W = np.zeros((6, 2))

    new = params.replace(W=np.zeros((6, 2)))
    assert np.all(params.W == 1.0)
    assert np.all(new.W == 0.0)
    assert new.rank == 2 and new.n_datasets == 2


def test_bundle_length_mismatch() -> None:
    with pytest.raises(ValueError):
        FactorParams(W=np.ones((3, 1)), H_list=[np.ones((2, 1))],
                     lambda_list=[], b_list=[np.zeros(3)])


def test_parse_init_variants() -> None:
    params = _bundle()
    assert parse_init(None, 6, 2, [4, 3]) == (None, None)

    full, W = parse_init(params, 6, 2, [4, 3])
    assert full is params and W is None

    full, W = parse_init({'W': params.W, 'H_list': params.H_list,
                          'lambda_list': params.lambda_list, 'b_list': params.b_list},
                         6, 2, [4, 3])
    assert isinstance(full, FactorParams)

    full, W = parse_init({'W': params.W}, 6, 2, [4, 3])
    assert full is None and W.shape == (6, 2)


@pytest.mark.parametrize("args", [
    (6, 3, [4, 3]),
    (6, 2, [4, 4]),
    (6, 2, [4]),
])
def test_parse_init_shape_mismatch(args) -> None:
    with pytest.raises(ValueError):
        parse_init(_bundle(), *args)


def test_parse_init_missing_W() -> None:
    with pytest.raises(ValueError):
        parse_init({'H_list': []}, 6, 2, [4, 3])


def test_initialize_params_shapes() -> None:
    rng = np.random.default_rng(0)
    X_list = [rng.random((30, 12)), rng.random((20, 12)) + 1.0]
    params = initialize_params(X_list, 3, rng=np.random.default_rng(1))

    assert params.W.shape == (12, 3)
    assert [H.shape for H in params.H_list] == [(30, 3), (20, 3)]
    assert np.all(params.W >= 0)
    # loadings start as cluster-membership indicators
    for H in params.H_list:
        np.testing.assert_array_equal(H.sum(axis=1), 1.0)
    for lambd in params.lambda_list:
        np.testing.assert_array_equal(lambd, 1.0)


def test_initialize_params_is_seeded() -> None:
    X_list = [np.random.default_rng(0).random((25, 10))]
    a = initialize_params(X_list, 2, rng=np.random.default_rng(4))
    b = initialize_params(X_list, 2, rng=np.random.default_rng(4))
    np.testing.assert_array_equal(a.W, b.W)


def test_initialize_params_caps_clusters() -> None:
    X_list = [np.random.default_rng(0).random((3, 10))]
    with pytest.warns(UserWarning):
        params = initialize_params(X_list, 5, rng=np.random.default_rng(0))
    assert params.W.shape == (10, 5)
    assert np.all(np.isfinite(params.W))


def test_initialize_params_from_W() -> None:
    rng = np.random.default_rng(0)
    X_list = [rng.random((15, 8)), rng.random((10, 8))]
    W = rng.random((8, 2))
    params = initialize_params(X_list, 2, W=W)

    np.testing.assert_array_equal(params.W, W)
    assert all(np.all(H >= 0) for H in params.H_list)


def test_random_initialization() -> None:
    X_list = [np.full((10, 5), 2.0)]
    params = initialize_params_random(X_list, 2, rng=np.random.default_rng(0))

    assert np.all(params.W >= 0)
    fitted = params.H_list[0] @ params.W.T
    assert np.mean(fitted) == pytest.approx(2.0)


def test_objective_matches_reconstruction_error() -> None:
    rng = np.random.default_rng(0)
    X_list = [rng.random((6, 4)), rng.random((5, 4))]
    params = FactorParams(
        W=rng.random((4, 2)),
        H_list=[rng.random((6, 2)), rng.random((5, 2))],
        lambda_list=[np.ones(4), np.full(4, 2.0)],
        b_list=[np.zeros(4), np.ones(4)],
    )

    expected = sum(
        np.sum((X - reconstruct(params.W, H, lambd, b)) ** 2)
        for X, H, lambd, b in zip(X_list, params.H_list, params.lambda_list, params.b_list)
    )
    obj = objective_func(X_list, params.W, params.lambda_list, params.b_list,
                         H_list=params.H_list)
    assert obj == pytest.approx(expected)
    assert compute_reconstruction_error(
        X_list[0], params.W, params.H_list[0], params.lambda_list[0], params.b_list[0],
        norm_type='frobenius'
    ) ** 2 == pytest.approx(
        np.sum((X_list[0] - reconstruct(params.W, params.H_list[0],
                                        params.lambda_list[0], params.b_list[0])) ** 2)
    )

    # the normalization penalty only adds when scalings drift from mean 1
    penalized = objective_func(X_list, params.W, params.lambda_list, params.b_list,
                               H_list=params.H_list, gamma=1.0)
    assert penalized > obj

    # solving H internally can only lower the objective
    solved = objective_func(X_list, params.W, params.lambda_list, params.b_list)
    assert solved <= obj


def test_objective_on_row_subset() -> None:
    rng = np.random.default_rng(2)
    X_list = [rng.random((8, 5)), rng.random((6, 5))]
    W = rng.random((5, 2))
    H_list = [rng.random((8, 2)), rng.random((6, 2))]
    lambda_list = [np.ones(5), np.ones(5)]
    b_list = [np.zeros(5), np.full(5, 0.1)]
    subset = [np.array([0, 3, 5]), np.array([1, 2])]

    obj = objective_func(X_list, W, lambda_list, b_list, H_list=H_list, subset=subset)
    expected = objective_func([X[idx] for X, idx in zip(X_list, subset)], W,
                              lambda_list, b_list,
                              H_list=[H[idx] for H, idx in zip(H_list, subset)])
    assert obj == pytest.approx(expected)

    # with H solved internally only the selected rows are scored
    solved = objective_func(X_list, W, lambda_list, b_list, subset=subset)
    solved_expected = objective_func([X[idx] for X, idx in zip(X_list, subset)], W,
                                     lambda_list, b_list)
    assert np.isfinite(solved)
    assert solved == pytest.approx(solved_expected)
    assert solved <= obj
