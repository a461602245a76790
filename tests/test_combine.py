import numpy as np
import pandas as pd
import pytest

from consensus_nmf.combine import combine_replicates
from consensus_nmf.errors import FormatMismatchError, IncompleteRankError
from consensus_nmf.factorize import FactorSolution


def fake_solution(k, it, n_cells=6, n_genes=8):
    topics = np.arange(1, k + 1)
    spectra = pd.DataFrame(
        np.full((k, n_genes), float(it)),
        index=topics,
        columns=["gene_%d" % j for j in range(n_genes)],
    )
    usages = pd.DataFrame(
        np.full((n_cells, k), float(it)),
        index=["cell_%d" % i for i in range(n_cells)],
        columns=topics,
    )
    return FactorSolution(
        n_components=k,
        iter=it,
        spectra=spectra,
        usages=usages,
        error=10.0 + it,
        n_iter=50,
        converged=it != 1,
    )


def test_combine_orders_replicates():
    solutions = [fake_solution(5, it) for it in (2, 0, 1)]
    combined = combine_replicates(solutions, k=5, n_replicates=3)

    assert combined.spectra.shape == (15, 8)
    assert combined.usages.shape == (6, 15)
    assert combined.errors.shape[0] == 3
    assert combined.errors["error"].tolist() == [10.0, 11.0, 12.0]
    assert combined.errors["converged"].tolist() == [1.0, 0.0, 1.0]
    assert list(combined.spectra.index[:6]) == [
        "iter0_topic1",
        "iter0_topic2",
        "iter0_topic3",
        "iter0_topic4",
        "iter0_topic5",
        "iter1_topic1",
    ]
    # replicate r's rows hold value r
    np.testing.assert_array_equal(
        combined.spectra.iloc[:, 0].values, np.repeat([0.0, 1.0, 2.0], 5)
    )
    assert list(combined.usages.columns) == list(combined.spectra.index)


def test_combine_missing_replicate():
    solutions = [fake_solution(5, 0), fake_solution(5, 2)]
    with pytest.raises(IncompleteRankError, match="replicate"):
        combine_replicates(solutions, k=5, n_replicates=3)


def test_combine_rejects_other_rank():
    with pytest.raises(ValueError):
        combine_replicates([fake_solution(4, 0)], k=5, n_replicates=1)


def test_combine_rejects_replicates_on_other_genes():
    solutions = [fake_solution(3, 0), fake_solution(3, 1, n_genes=5)]
    with pytest.raises(FormatMismatchError, match="replicate 1"):
        combine_replicates(solutions, k=3, n_replicates=2)


def test_combine_rejects_replicates_on_other_cells():
    solutions = [fake_solution(3, 0), fake_solution(3, 1, n_cells=4)]
    with pytest.raises(FormatMismatchError):
        combine_replicates(solutions, k=3, n_replicates=2)
