import os

os.environ.setdefault("MPLBACKEND", "Agg")
os.environ.setdefault("MPLCONFIGDIR", "/tmp/mpl-test")

import numpy as np
import pandas as pd
import pytest
import scanpy as sc


def program_counts(n_cells=50, n_genes=30, k=3, seed=0):
    """Poisson counts drawn from k gene programs with cell-specific usages"""
    rng = np.random.default_rng(seed)
    usage = rng.dirichlet(np.full(k, 0.5), size=n_cells)
    spectra = rng.gamma(0.5, 20.0, size=(k, n_genes))
    counts = rng.poisson(usage.dot(spectra) * 5 + 1)
    return pd.DataFrame(
        counts,
        index=["cell_%d" % i for i in range(n_cells)],
        columns=["gene_%d" % j for j in range(n_genes)],
    )


def block_spectra(k=3, n_genes=30, baseline=0.05):
    true = np.full((k, n_genes), baseline)
    block = n_genes // k
    for t in range(k):
        true[t, t * block : (t + 1) * block] = 1.0
    return true


@pytest.fixture
def counts_df():
    return program_counts()


@pytest.fixture
def counts_file(tmp_path, counts_df):
    path = tmp_path / "counts.txt"
    counts_df.to_csv(path, sep="\t")
    return str(path)


@pytest.fixture
def norm_counts():
    rng = np.random.default_rng(1)
    true = block_spectra()
    usage = rng.dirichlet(np.ones(3), size=50)
    X = usage.dot(true) + rng.uniform(0, 0.01, size=(50, 30))
    return sc.AnnData(
        X=X.astype(np.float64),
        obs=pd.DataFrame(index=["cell_%d" % i for i in range(50)]),
        var=pd.DataFrame(index=["gene_%d" % j for j in range(30)]),
    )
