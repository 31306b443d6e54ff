import numpy as np
import pytest

from cfit.objective import objective_func
from cfit.params import FactorParams, UpdateTarget
from cfit.solvers import (
    compensate_W,
    rescale_lambda_list,
    solve_b,
    solve_H,
    solve_lambda,
    solve_lambda_list,
    solve_subproblem,
    solve_W,
)
from cfit.solvers_penalized import (
    solve_b_penalized,
    solve_lambda_list_penalized,
    solve_subproblem_penalized,
    solve_W_penalized,
    step_size,
)


def _random_params(X_list, r=3, seed=0):
    rng = np.random.default_rng(seed)
    p = X_list[0].shape[1]
    return FactorParams(
        W=rng.random((p, r)),
        H_list=[rng.random((X.shape[0], r)) for X in X_list],
        lambda_list=[np.ones(p) for _ in X_list],
        b_list=[np.zeros(p) for _ in X_list],
    )


def _assert_blocks_equal(a, b, names):
    for name in names:
        va, vb = getattr(a, name), getattr(b, name)
        if isinstance(va, list):
            for x, y in zip(va, vb):
                np.testing.assert_array_equal(x, y)
        else:
            np.testing.assert_array_equal(va, vb)


@pytest.mark.parametrize("target", list(UpdateTarget))
def test_solvers_keep_non_negativity(synthetic_data, target) -> None:
    X_list, _ = synthetic_data
    params = solve_subproblem(target, X_list, _random_params(X_list))

    assert np.all(params.W >= 0)
    assert all(np.all(H >= 0) for H in params.H_list)
    assert all(np.all(lambd >= 0) for lambd in params.lambda_list)


@pytest.mark.parametrize("target, changed", [
    (UpdateTarget.H, ('H_list',)),
    (UpdateTarget.W, ('W', 'b_list')),
    (UpdateTarget.LAMBDA, ('W', 'lambda_list')),
    (UpdateTarget.B, ('b_list',)),
])
def test_dispatch_passes_other_blocks_through(synthetic_data, target, changed) -> None:
    X_list, _ = synthetic_data
    params = _random_params(X_list)
    new = solve_subproblem(target, X_list, params)

    untouched = [name for name in ('W', 'H_list', 'lambda_list', 'b_list')
                 if name not in changed]
    _assert_blocks_equal(new, params, untouched)
    # the input bundle itself is never modified
    assert new is not params


def test_each_block_update_does_not_increase_objective(synthetic_data) -> None:
    X_list, _ = synthetic_data
    params = _random_params(X_list)

    def obj(par):
        return objective_func(X_list, par.W, par.lambda_list, par.b_list, H_list=par.H_list)

    last = obj(params)
    for target in (UpdateTarget.H, UpdateTarget.W, UpdateTarget.LAMBDA,
                   UpdateTarget.B, UpdateTarget.H):
        params = solve_subproblem(target, X_list, params)
        current = obj(params)
        assert current <= last * (1 + 1e-10)
        last = current


def test_lambda_rescale_weighted_mean_is_one(synthetic_data) -> None:
    X_list, _ = synthetic_data
    params = _random_params(X_list)
    lambda_list, scale = solve_lambda_list(X_list, params.W, params.H_list, params.b_list)

    n_vec = np.array([X.shape[0] for X in X_list], dtype=float)
    weighted_mean = (n_vec / n_vec.sum()) @ np.vstack(lambda_list)
    np.testing.assert_allclose(weighted_mean, 1.0)
    assert scale.shape == (X_list[0].shape[1],)


def test_lambda_rescale_compensation_keeps_reconstruction() -> None:
    rng = np.random.default_rng(1)
    W = rng.random((8, 2))
    lambda_list = [rng.uniform(0.2, 3.0, size=8) for _ in range(3)]
    n_list = [10, 20, 5]

    rescaled, scale = rescale_lambda_list(lambda_list, n_list)
    W_comp = compensate_W(W, scale)

    for before, after in zip(lambda_list, rescaled):
        np.testing.assert_allclose(W * before[:, None], W_comp * after[:, None])


def test_single_dataset_lambda_is_one(synthetic_data) -> None:
    X_list, _ = synthetic_data
    params = _random_params(X_list[:1])
    lambda_list, scale = solve_lambda_list(X_list[:1], params.W, params.H_list, params.b_list)

    np.testing.assert_array_equal(lambda_list[0], 1.0)
    np.testing.assert_array_equal(scale, 1.0)


def test_solve_lambda_uninformative_gene_keeps_one() -> None:
    X = np.ones((5, 3))
    W = np.array([[1.0], [0.0], [2.0]])
    H = np.ones((5, 1))
    lambd = solve_lambda(X, W, H, np.zeros(3))

    assert lambd[1] == 1.0
    np.testing.assert_allclose(lambd[[0, 2]], [1.0, 0.5])


def test_exact_solves_recover_truth(noise_free_data) -> None:
    X_list, truth = noise_free_data

    H = solve_H(X_list[0], truth.W, truth.lambda_list[0], truth.b_list[0])
    np.testing.assert_allclose(H, truth.H_list[0], atol=1e-8)

    W = solve_W(X_list, truth.H_list, truth.lambda_list, truth.b_list)
    np.testing.assert_allclose(W, truth.W, atol=1e-8)

    b = solve_b(X_list[1], truth.W, truth.H_list[1], truth.lambda_list[1])
    np.testing.assert_allclose(b, truth.b_list[1], atol=1e-10)


def test_solve_b_shrinkage() -> None:
    X = np.full((4, 2), 2.2)
    W = np.zeros((2, 1))
    H = np.zeros((4, 1))
    b = solve_b(X, W, H, np.ones(2), gamma=0.1)
    np.testing.assert_allclose(b, 2.0)


def test_step_size_is_linear() -> None:
    assert step_size(1) == pytest.approx(0.005)
    assert step_size(4) == pytest.approx(0.02)
    assert step_size(3, mu=0.1) == pytest.approx(0.3)


def test_huge_penalty_pins_W(synthetic_data) -> None:
    X_list, _ = synthetic_data
    params = _random_params(X_list)
    W_old = np.random.default_rng(5).random(params.W.shape)

    W = solve_W_penalized(X_list, params.H_list, params.lambda_list, params.b_list,
                          W_old=W_old, iteration=1, mu=1e10)
    np.testing.assert_allclose(W, W_old, atol=1e-4)


def test_huge_penalty_pins_lambda_and_b(synthetic_data) -> None:
    X_list, _ = synthetic_data
    params = _random_params(X_list)
    p = params.W.shape[0]
    lambda_old = [np.ones(p), np.ones(p)]

    lambda_list, _ = solve_lambda_list_penalized(
        X_list, params.W, params.H_list, params.b_list, lambda_old, iteration=1, mu=1e10
    )
    for lambd in lambda_list:
        np.testing.assert_allclose(lambd, 1.0, atol=1e-6)

    b_old = np.linspace(-1, 1, p)
    b = solve_b_penalized(X_list[0], params.W, params.H_list[0], params.lambda_list[0],
                          b_old, iteration=1, b_gamma=0.0, mu=1e10)
    np.testing.assert_allclose(b, b_old, atol=1e-6)


def test_zero_penalty_matches_plain_W(synthetic_data) -> None:
    X_list, _ = synthetic_data
    params = _random_params(X_list)

    W_plain = solve_W(X_list, params.H_list, params.lambda_list, params.b_list)
    W_pen = solve_W_penalized(X_list, params.H_list, params.lambda_list, params.b_list,
                              W_old=np.zeros_like(params.W), iteration=1, mu=0.0)
    np.testing.assert_allclose(W_pen, W_plain, atol=1e-8)


def test_penalized_dispatch_keeps_non_negativity(synthetic_data) -> None:
    X_list, _ = synthetic_data
    params = _random_params(X_list)
    last = params
    for target in (UpdateTarget.H, UpdateTarget.W, UpdateTarget.LAMBDA, UpdateTarget.B):
        params = solve_subproblem_penalized(target, X_list, params, last, iteration=2)

    assert np.all(params.W >= 0)
    assert all(np.all(H >= 0) for H in params.H_list)
    assert all(np.all(lambd >= 0) for lambd in params.lambda_list)


def test_dispatch_rejects_unknown_target(synthetic_data) -> None:
    X_list, _ = synthetic_data
    with pytest.raises(ValueError):
        solve_subproblem('W', X_list, _random_params(X_list))
