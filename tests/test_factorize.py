import numpy as np
import pandas as pd
import pytest
import scipy.sparse as sp

from consensus_nmf.factorize import reconstruction_error, refit_usage, run_work_unit
from consensus_nmf.planner import WorkUnit, get_nmf_iter_params


@pytest.fixture
def nmf_kwargs():
    return get_nmf_iter_params([3], n_iter=1, beta_loss="frobenius")[1]


def test_same_unit_gives_same_solution(norm_counts, nmf_kwargs):
    unit = WorkUnit(n_components=3, iter=0, nmf_seed=123456, index=0)
    first = run_work_unit(norm_counts, unit, nmf_kwargs)
    second = run_work_unit(norm_counts, unit, nmf_kwargs)

    np.testing.assert_allclose(first.spectra.values, second.spectra.values)
    np.testing.assert_allclose(first.usages.values, second.usages.values)
    assert first.error == pytest.approx(second.error)


def test_solution_shapes_and_labels(norm_counts, nmf_kwargs):
    unit = WorkUnit(n_components=4, iter=2, nmf_seed=7, index=5)
    solution = run_work_unit(norm_counts, unit, nmf_kwargs)

    assert solution.spectra.shape == (4, 30)
    assert solution.usages.shape == (50, 4)
    assert list(solution.spectra.columns) == list(norm_counts.var_names)
    assert list(solution.usages.index) == list(norm_counts.obs_names)
    assert (solution.spectra.values >= 0).all()
    assert (solution.usages.values >= 0).all()
    assert solution.iter == 2
    assert solution.error >= 0


def test_unconverged_run_is_kept(norm_counts, nmf_kwargs):
    nmf_kwargs["max_iter"] = 1
    unit = WorkUnit(n_components=3, iter=0, nmf_seed=99, index=0)
    solution = run_work_unit(norm_counts, unit, nmf_kwargs)

    assert not solution.converged
    assert solution.n_iter == 1
    assert np.isfinite(solution.error)
    assert solution.spectra.shape == (3, 30)


def test_reconstruction_error_sparse_matches_dense():
    rng = np.random.default_rng(4)
    X = rng.poisson(1.0, size=(20, 15)).astype(float)
    W = rng.uniform(size=(20, 3))
    H = rng.uniform(size=(3, 15))
    expected = ((X - W.dot(H)) ** 2).sum()

    assert reconstruction_error(X, W, H) == pytest.approx(expected)
    assert reconstruction_error(sp.csr_matrix(X), W, H) == pytest.approx(expected)


def test_refit_usage_recovers_exact_usages(nmf_kwargs):
    rng = np.random.default_rng(5)
    H = rng.uniform(0.1, 1.0, size=(3, 12))
    W = rng.uniform(0.1, 1.0, size=(40, 3))
    nmf_kwargs["max_iter"] = 2000
    nmf_kwargs["tol"] = 1e-8

    rf = refit_usage(W.dot(H), pd.DataFrame(H), nmf_kwargs)
    np.testing.assert_allclose(rf, W, atol=1e-3)
