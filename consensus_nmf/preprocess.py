# -*- coding: utf-8 -*-
"""
loading, validation and normalization of count matrices for cNMF

@author: C Heiser
"""
import os
import logging
import numpy as np
import pandas as pd
import scipy.sparse as sp
import scanpy as sc

from scipy.io import mmread

from .errors import FormatMismatchError
from .utils import load_df_from_npz


logger = logging.getLogger(__name__)

_MATRIX_NAMES = ("matrix.mtx.gz", "matrix.mtx")
_BARCODE_NAMES = ("barcodes.tsv.gz", "barcodes.tsv")
_FEATURE_NAMES = ("features.tsv.gz", "features.tsv", "genes.tsv.gz", "genes.tsv")


def _find_file(directory, candidates):
    for fname in candidates:
        path = os.path.join(directory, fname)
        if os.path.isfile(path):
            return path
    raise FormatMismatchError(
        "None of {} found in {}".format(", ".join(candidates), directory)
    )


def _read_ids(path, column=0):
    ids = pd.read_csv(path, sep="\t", header=None, dtype=str)
    if column >= ids.shape[1]:
        raise FormatMismatchError(
            "{} has {} column(s); cannot use column {} as identifiers".format(
                path, ids.shape[1], column
            )
        )
    return ids.iloc[:, column].values


def validate_counts(adata):
    """
    Check the invariants of an expression matrix: unique cell and gene identifiers,
    and only finite, non-negative entries.

    Raises
    ------
    FormatMismatchError
        if any invariant is violated
    """
    if adata.obs_names.has_duplicates:
        raise FormatMismatchError(
            "{} duplicated cell identifiers".format(adata.obs_names.duplicated().sum())
        )
    if adata.var_names.has_duplicates:
        raise FormatMismatchError(
            "{} duplicated gene identifiers".format(adata.var_names.duplicated().sum())
        )
    values = adata.X.data if sp.issparse(adata.X) else np.asarray(adata.X)
    if not np.isfinite(values).all():
        raise FormatMismatchError("Counts matrix contains NaN or infinite values")
    if (values < 0).any():
        raise FormatMismatchError("Counts matrix contains negative values")


def load_mtx_triplet(
    matrix_path, barcodes_path, features_path, genes_by_cells=True, gene_column=0
):
    """
    Read a sparse count matrix in Matrix Market format with its barcode and
    feature lists.

    Parameters
    ----------

    matrix_path : str
        Path to ``.mtx`` (optionally gzipped) file

    barcodes_path : str
        One cell identifier per line

    features_path : str
        Tab-separated feature table; ``gene_column`` is used as gene identifier

    genes_by_cells : bool, optional (default=True)
        The matrix is stored genes x cells (10x convention) and is transposed

    Returns
    -------

    anndata.AnnData, shape (cells, genes)
    """
    mat = sp.csr_matrix(mmread(matrix_path))
    if genes_by_cells:
        mat = mat.T.tocsr()
    barcodes = _read_ids(barcodes_path)
    features = _read_ids(features_path, column=gene_column)

    if mat.shape != (len(barcodes), len(features)):
        raise FormatMismatchError(
            "Matrix of shape {} does not match {} barcodes and {} features".format(
                mat.shape, len(barcodes), len(features)
            )
        )

    adata = sc.AnnData(
        X=mat.astype(np.float32),
        obs=pd.DataFrame(index=pd.Index(barcodes, dtype=str)),
        var=pd.DataFrame(index=pd.Index(features, dtype=str)),
    )
    validate_counts(adata)
    return adata


def _df_to_adata(df, densify):
    if densify:
        X = df.values
    else:
        X = sp.csr_matrix(df.values)
    return sc.AnnData(
        X=X, obs=pd.DataFrame(index=df.index), var=pd.DataFrame(index=df.columns),
    )


def load_counts(counts_fn, densify=False):
    """
    Load a (cell x gene) counts matrix from .h5ad, df.npz, tab delimited text, a
    Matrix Market file or a 10x-style directory holding matrix, barcodes and
    features files.
    """
    if os.path.isdir(counts_fn):
        input_counts = load_mtx_triplet(
            _find_file(counts_fn, _MATRIX_NAMES),
            _find_file(counts_fn, _BARCODE_NAMES),
            _find_file(counts_fn, _FEATURE_NAMES),
        )
    elif counts_fn.endswith(".mtx") or counts_fn.endswith(".mtx.gz"):
        mtx_dir = os.path.dirname(counts_fn)
        input_counts = load_mtx_triplet(
            counts_fn,
            _find_file(mtx_dir, _BARCODE_NAMES),
            _find_file(mtx_dir, _FEATURE_NAMES),
        )
    elif counts_fn.endswith(".h5ad"):
        input_counts = sc.read(counts_fn)
    else:
        ## Load txt or compressed dataframe and convert to scanpy object
        if counts_fn.endswith(".npz"):
            input_counts = load_df_from_npz(counts_fn)
        else:
            input_counts = pd.read_csv(counts_fn, sep="\t", index_col=0)
        input_counts = _df_to_adata(input_counts, densify)

    if sp.issparse(input_counts.X) & densify:
        input_counts.X = np.array(input_counts.X.todense())

    validate_counts(input_counts)
    return input_counts


def compute_tpm(input_counts):
    """
    Default TPM normalization
    """
    tpm = input_counts.copy()
    tpm.layers["raw_counts"] = tpm.X.copy()
    sc.pp.normalize_total(tpm, target_sum=1e6)
    return tpm


def tpm_gene_stats(tpm):
    """Per-gene mean and (population) standard deviation of TPM values"""
    if sp.issparse(tpm.X):
        gene_tpm_mean = np.array(tpm.X.mean(axis=0)).reshape(-1)
        gene_tpm_stddev = np.clip(var_sparse_matrix(tpm.X), 0, None) ** 0.5
    else:
        gene_tpm_mean = np.array(tpm.X.mean(axis=0)).reshape(-1)
        gene_tpm_stddev = np.array(tpm.X.std(axis=0, ddof=0)).reshape(-1)

    return pd.DataFrame(
        [gene_tpm_mean, gene_tpm_stddev], index=["__mean", "__std"], columns=tpm.var.index
    ).T


def subset_adata(adata, subset):
    logger.info("Subsetting AnnData on %s", subset)
    # initialize .obs column for choosing cells
    adata.obs["adata_subset_combined"] = 0
    # create label as union of given subset args
    for col in subset:
        adata.obs.loc[adata.obs[col] == 1, "adata_subset_combined"] = 1
    adata = adata[adata.obs["adata_subset_combined"] == 1, :].copy()
    adata.obs.drop(columns="adata_subset_combined", inplace=True)
    logger.info("Now %d cells and %d genes", adata.n_obs, adata.n_vars)
    return adata


def var_sparse_matrix(X):
    mean = np.array(X.mean(axis=0)).reshape(-1)
    Xcopy = X.copy()
    Xcopy.data **= 2
    var = np.array(Xcopy.mean(axis=0)).reshape(-1) - (mean ** 2)
    return var


def _fano_selection(
    gene_mean, gene_var, expected_fano_threshold, minimal_mean, numgenes
):
    gene_fano = gene_var / gene_mean

    # Find parameters for expected fano line
    top_genes = gene_mean.sort_values(ascending=False)[:20].index
    A = (np.sqrt(gene_var) / gene_mean)[top_genes].min()

    w_mean_low, w_mean_high = gene_mean.quantile([0.10, 0.90])
    w_fano_low, w_fano_high = gene_fano.quantile([0.10, 0.90])
    winsor_box = (
        (gene_fano > w_fano_low)
        & (gene_fano < w_fano_high)
        & (gene_mean > w_mean_low)
        & (gene_mean < w_mean_high)
    )
    fano_median = gene_fano[winsor_box].median()
    B = np.sqrt(fano_median)

    gene_expected_fano = (A ** 2) * gene_mean + (B ** 2)
    fano_ratio = gene_fano / gene_expected_fano

    # Identify high var genes
    if numgenes is not None:
        highvargenes = fano_ratio.sort_values(ascending=False).index[:numgenes]
        high_var_genes_ind = fano_ratio.index.isin(highvargenes)
        T = None

    else:
        if not expected_fano_threshold:
            T = 1.0 + gene_fano[winsor_box].std()
        else:
            T = expected_fano_threshold

        high_var_genes_ind = ((fano_ratio > T) & (gene_mean > minimal_mean)).values

    gene_counts_stats = pd.DataFrame(
        {
            "mean": gene_mean,
            "var": gene_var,
            "fano": gene_fano,
            "expected_fano": gene_expected_fano,
            "high_var": high_var_genes_ind,
            "fano_ratio": fano_ratio,
        }
    )
    gene_fano_parameters = {
        "A": A,
        "B": B,
        "T": T,
        "minimal_mean": minimal_mean,
    }
    return (gene_counts_stats, gene_fano_parameters)


def get_highvar_genes_sparse(
    expression, expected_fano_threshold=None, minimal_mean=0.01, numgenes=None
):
    gene_mean = np.array(expression.mean(axis=0)).astype(float).reshape(-1)
    gene_var = pd.Series(var_sparse_matrix(expression))
    return _fano_selection(
        pd.Series(gene_mean),
        gene_var,
        expected_fano_threshold,
        minimal_mean,
        numgenes,
    )


def get_highvar_genes(
    input_counts, expected_fano_threshold=None, minimal_mean=0.01, numgenes=None
):
    gene_counts_mean = pd.Series(input_counts.mean(axis=0).astype(float))
    gene_counts_var = pd.Series(input_counts.var(ddof=0, axis=0).astype(float))
    return _fano_selection(
        gene_counts_mean,
        gene_counts_var,
        expected_fano_threshold,
        minimal_mean,
        numgenes,
    )


def get_norm_counts(
    counts, tpm, high_variance_genes_filter=None, num_highvar_genes=None
):
    """
    Parameters
    ----------

    counts : anndata.AnnData
        Scanpy AnnData object (cells x genes) containing raw counts. Filtered such that
        no genes or cells with 0 counts

    tpm : anndata.AnnData
        Scanpy AnnData object (cells x genes) containing tpm normalized data matching
        counts

    high_variance_genes_filter : list, optional (default=None)
        A pre-specified list of genes considered to be high-variance.
        Only these genes will be used during factorization of the counts matrix.
        Must match the .var index of counts and tpm.
        If set to None, high-variance genes will be automatically computed.

    num_highvar_genes : int, optional (default=None)
        Instead of providing an array of high-variance genes, identify this many most
        overdispersed genes for filtering

    Returns
    -------

    norm_counts : anndata.AnnData, shape (cells, num_highvar_genes)
        A counts matrix containing only the high variance genes and with columns
        (genes) normalized to unit variance

    high_variance_genes_filter : list
        The genes used
    """
    if high_variance_genes_filter is None:
        ## Get list of high-var genes if one wasn't provided
        if sp.issparse(tpm.X):
            (gene_counts_stats, gene_fano_params) = get_highvar_genes_sparse(
                tpm.X, numgenes=num_highvar_genes
            )
        else:
            (gene_counts_stats, gene_fano_params) = get_highvar_genes(
                np.array(tpm.X), numgenes=num_highvar_genes
            )

        high_variance_genes_filter = list(
            tpm.var.index[gene_counts_stats.high_var.values]
        )
    else:
        missing = [g for g in high_variance_genes_filter if g not in tpm.var_names]
        if len(missing) > 0:
            raise FormatMismatchError(
                "{} requested genes are not in the counts matrix, e.g. {}".format(
                    len(missing), ", ".join(missing[:5])
                )
            )

    ## Subset out high-variance genes
    logger.info("Selecting %d highly variable genes", len(high_variance_genes_filter))
    norm_counts = counts[:, high_variance_genes_filter]
    norm_counts = norm_counts[tpm.obs_names, :].copy()
    if norm_counts.X.dtype != np.float64:
        norm_counts.X = norm_counts.X.astype(np.float64)

    ## Scale genes to unit variance
    if sp.issparse(norm_counts.X):
        sc.pp.scale(norm_counts, zero_center=False)
        if np.isnan(norm_counts.X.data).sum() > 0:
            logger.warning("NaNs in normalized counts matrix")
    else:
        norm_counts.X = norm_counts.X / norm_counts.X.std(axis=0, ddof=1)
        if np.isnan(norm_counts.X).sum().sum() > 0:
            logger.warning("NaNs in normalized counts matrix")

    ## Check for any cells that have 0 counts of the overdispersed genes
    zerocells = np.asarray(norm_counts.X.sum(axis=1)).reshape(-1) == 0
    if zerocells.sum() > 0:
        logger.warning(
            "%d cells have zero counts of overdispersed genes - ignoring these cells for factorization.",
            zerocells.sum(),
        )
        sc.pp.filter_cells(norm_counts, min_counts=1)

    return norm_counts, high_variance_genes_filter
