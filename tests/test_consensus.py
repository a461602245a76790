import numpy as np
import pandas as pd
import pytest

from consensus_nmf.combine import CombinedRankOutput
from consensus_nmf.consensus import build_consensus, local_density
from consensus_nmf.errors import EmptyClusterError
from consensus_nmf.kselection import k_selection_table, score_rank
from consensus_nmf.planner import get_nmf_iter_params

from conftest import block_spectra

K = 3
N_REPLICATES = 5
OUTLIER = 4


def replicate_spectra(corrupt_scale=1000.0, n_replicates=N_REPLICATES, outlier=OUTLIER):
    """Noisy copies of block spectra; replicate ``outlier`` is mixed and rescaled"""
    rng = np.random.default_rng(2)
    true = block_spectra(k=K)
    rows, labels = [], []
    for r in range(n_replicates):
        for t in range(K):
            if r == outlier:
                row = (true[t] + 0.5 * true[(t + 1) % K]) * corrupt_scale
            else:
                row = true[t] + rng.uniform(0, 0.02, size=true.shape[1])
            rows.append(row)
            labels.append("iter%d_topic%d" % (r, t + 1))
    return pd.DataFrame(
        rows, index=labels, columns=["gene_%d" % j for j in range(true.shape[1])]
    )


def clean_median(merged):
    """Median of the unit-length clean spectra per topic, rescaled to sum to 1"""
    expected = []
    for t in range(K):
        rows = merged.loc[
            ["iter%d_topic%d" % (r, t + 1) for r in range(N_REPLICATES) if r != OUTLIER]
        ].values
        rows = rows / np.linalg.norm(rows, axis=1, keepdims=True)
        med = np.median(rows, axis=0)
        expected.append(med / med.sum())
    return np.array(expected)


@pytest.fixture
def nmf_kwargs():
    return get_nmf_iter_params([K], n_iter=1, beta_loss="frobenius")[1]


def test_outlier_replicate_is_discarded(norm_counts, nmf_kwargs):
    merged = replicate_spectra()
    solution = build_consensus(
        merged, norm_counts, K, nmf_kwargs, density_threshold=0.8
    )

    assert solution.n_discarded == K
    assert solution.n_retained == K * (N_REPLICATES - 1)
    discarded = set(solution.density_filter.index[~solution.density_filter])
    assert discarded == {"iter%d_topic%d" % (OUTLIER, t + 1) for t in range(K)}

    # consensus programs are re-ordered by usage; match them to the expected topics
    expected = clean_median(merged)
    for row in expected:
        match = np.argmax(solution.spectra.values.dot(row))
        np.testing.assert_allclose(solution.spectra.values[match], row, rtol=1e-6)
    assert solution.stats.loc["n_discarded", "stats"] == K


def test_outlier_magnitude_does_not_change_consensus(norm_counts, nmf_kwargs):
    small = build_consensus(
        replicate_spectra(corrupt_scale=1.0), norm_counts, K, nmf_kwargs, density_threshold=0.8
    )
    huge = build_consensus(
        replicate_spectra(corrupt_scale=1e6), norm_counts, K, nmf_kwargs, density_threshold=0.8
    )
    np.testing.assert_allclose(small.spectra.values, huge.spectra.values)


def test_consensus_outputs(norm_counts, nmf_kwargs):
    solution = build_consensus(
        replicate_spectra(), norm_counts, K, nmf_kwargs, density_threshold=0.8
    )
    assert solution.spectra.shape == (K, 30)
    assert solution.usages.shape == (50, K)
    assert list(solution.usages.columns) == [1, 2, 3]
    assert (solution.usages.values >= 0).all()
    np.testing.assert_allclose(solution.spectra.sum(axis=1), 1.0)
    # programs ordered by decreasing total normalized usage
    totals = solution.usages.div(solution.usages.sum(axis=1), axis=0).sum()
    assert list(totals.values) == sorted(totals.values, reverse=True)
    assert solution.spectra_score is None
    assert solution.stats.loc["stability", "stats"] > 0.99


def test_overly_aggressive_threshold_empties_cluster(norm_counts, nmf_kwargs):
    with pytest.raises(EmptyClusterError, match="cluster"):
        build_consensus(
            replicate_spectra(), norm_counts, K, nmf_kwargs, density_threshold=0.1
        )


@pytest.mark.parametrize("threshold", [0.0, -0.2, 1.5])
def test_threshold_out_of_range(norm_counts, nmf_kwargs, threshold):
    with pytest.raises(ValueError):
        build_consensus(
            replicate_spectra(), norm_counts, K, nmf_kwargs, density_threshold=threshold
        )


def test_local_density_flags_isolated_row():
    spectra = pd.DataFrame(
        [[1.0, 0.0], [0.99, 0.01], [0.98, 0.02], [0.0, 1.0]], index=list("abcd")
    )
    l2 = spectra.div(np.linalg.norm(spectra.values, axis=1), axis=0)
    density = local_density(l2, n_neighbors=1)
    assert density.idxmax() == "d"
    assert density["a"] < 0.05


def test_score_rank_reports_both_errors(norm_counts, nmf_kwargs):
    merged = replicate_spectra(n_replicates=4, outlier=None)
    errors = pd.DataFrame(
        {"error": [1.0, 2.0, 3.0, 4.0], "n_iter": [10.0] * 4, "converged": [1.0, 1.0, 0.0, 1.0]}
    )
    combined = CombinedRankOutput(n_components=K, spectra=merged, usages=None, errors=errors)
    record = score_rank(combined, norm_counts, nmf_kwargs)

    assert record["k"] == K
    assert record["stability"] > 0.99
    assert record["replicate_error"] == pytest.approx(2.5)
    assert record["n_unconverged"] == 1
    assert record["prediction_error"] >= 0

    table = k_selection_table([record])
    assert list(table.columns[:3]) == ["k", "stability", "silhouette"]
