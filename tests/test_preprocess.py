import numpy as np
import pandas as pd
import pytest
import scipy.sparse as sp
import scanpy as sc

from scipy.io import mmwrite

from consensus_nmf.errors import FormatMismatchError
from consensus_nmf.preprocess import (
    compute_tpm,
    get_norm_counts,
    load_counts,
    subset_adata,
    tpm_gene_stats,
)


def write_triplet(directory, counts_df, barcodes=None):
    """10x-style genes x cells matrix with barcode and feature tables"""
    directory.mkdir(exist_ok=True)
    mmwrite(str(directory / "matrix.mtx"), sp.coo_matrix(counts_df.values.T))
    if barcodes is None:
        barcodes = list(counts_df.index)
    (directory / "barcodes.tsv").write_text("\n".join(barcodes) + "\n")
    (directory / "features.tsv").write_text(
        "".join("{}\tsymbol_{}\n".format(g, g) for g in counts_df.columns)
    )
    return str(directory)


def load_counts_from_df(counts_df, densify=False):
    X = counts_df.values.astype(np.float64)
    return sc.AnnData(
        X=X if densify else sp.csr_matrix(X),
        obs=pd.DataFrame(index=counts_df.index),
        var=pd.DataFrame(index=counts_df.columns),
    )


def test_load_triplet_directory(tmp_path, counts_df):
    adata = load_counts(write_triplet(tmp_path / "10x", counts_df))

    assert adata.shape == (50, 30)
    assert list(adata.obs_names) == list(counts_df.index)
    assert list(adata.var_names) == list(counts_df.columns)
    assert sp.issparse(adata.X)
    np.testing.assert_allclose(adata.X.toarray(), counts_df.values)


def test_load_mtx_file_finds_neighbors(tmp_path, counts_df):
    directory = write_triplet(tmp_path / "10x", counts_df)
    adata = load_counts(directory + "/matrix.mtx", densify=True)
    assert not sp.issparse(adata.X)
    assert adata.shape == (50, 30)


def test_triplet_barcode_mismatch(tmp_path, counts_df):
    directory = write_triplet(
        tmp_path / "10x", counts_df, barcodes=list(counts_df.index[:-1])
    )
    with pytest.raises(FormatMismatchError, match="49 barcodes"):
        load_counts(directory)


def test_negative_counts_rejected(tmp_path, counts_df):
    counts_df.iloc[3, 4] = -2
    path = tmp_path / "negative.txt"
    counts_df.to_csv(path, sep="\t")
    with pytest.raises(FormatMismatchError, match="negative"):
        load_counts(str(path))


@pytest.mark.filterwarnings("ignore::UserWarning")
def test_duplicated_cells_rejected(tmp_path, counts_df):
    counts_df.index = ["cell_0"] + list(counts_df.index[1:-1]) + ["cell_0"]
    path = tmp_path / "dups.txt"
    counts_df.to_csv(path, sep="\t")
    with pytest.raises(FormatMismatchError, match="duplicated cell"):
        load_counts(str(path))


def test_tpm_rows_sum_to_a_million(counts_df):
    adata = load_counts_from_df(counts_df)
    tpm = compute_tpm(adata)
    np.testing.assert_allclose(np.asarray(tpm.X.sum(axis=1)).reshape(-1), 1e6, rtol=1e-5)
    assert "raw_counts" in tpm.layers

    stats = tpm_gene_stats(tpm)
    assert list(stats.columns) == ["__mean", "__std"]
    assert list(stats.index) == list(counts_df.columns)


def test_norm_counts_unit_variance(counts_df):
    adata = load_counts_from_df(counts_df, densify=True)
    tpm = compute_tpm(adata)
    norm_counts, genes = get_norm_counts(adata, tpm, num_highvar_genes=10)

    assert len(genes) == 10
    assert norm_counts.shape == (50, 10)
    assert list(norm_counts.var_names) == genes
    assert norm_counts.X.dtype == np.float64
    np.testing.assert_allclose(norm_counts.X.std(axis=0, ddof=1), 1.0)


def test_norm_counts_with_gene_list(counts_df):
    adata = load_counts_from_df(counts_df)
    tpm = compute_tpm(adata)
    norm_counts, genes = get_norm_counts(
        adata, tpm, high_variance_genes_filter=["gene_2", "gene_5", "gene_7"]
    )
    assert genes == ["gene_2", "gene_5", "gene_7"]
    assert sp.issparse(norm_counts.X)
    assert norm_counts.shape == (50, 3)


def test_norm_counts_missing_gene(counts_df):
    adata = load_counts_from_df(counts_df)
    tpm = compute_tpm(adata)
    with pytest.raises(FormatMismatchError, match="not_a_gene"):
        get_norm_counts(adata, tpm, high_variance_genes_filter=["gene_1", "not_a_gene"])


def test_subset_union_of_columns(counts_df):
    adata = load_counts_from_df(counts_df)
    adata.obs["a"] = [1] * 10 + [0] * 40
    adata.obs["b"] = [0] * 45 + [1] * 5
    subset = subset_adata(adata, ["a", "b"])
    assert subset.n_obs == 15
    assert "adata_subset_combined" not in subset.obs
