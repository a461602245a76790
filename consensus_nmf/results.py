# -*- coding: utf-8 -*-
"""
merging consensus outputs back into an AnnData object

@author: C Heiser
"""
import os
import numpy as np
import pandas as pd


def dt_label(dt):
    """Density threshold as it appears in output file names, e.g. 0.5 -> '0_5', 1 -> '1_0'"""
    return str(float(dt)).replace(".", "_")


def consensus_file(output_dir, name, artifact, k, dt, suffix="txt"):
    """
    Path of a consensus output,
    ``<output_dir>/<name>/<name>.<artifact>.k_<k>.dt_<dt>.<suffix>``
    """
    return os.path.join(
        output_dir,
        name,
        "{}.{}.k_{}.dt_{}.{}".format(name, artifact, int(k), dt_label(dt), suffix),
    )


def cnmf_markers(adata, spectra_score_file, n_genes=30, key="cnmf"):
    """
    read in gene spectra score output from cNMF and save top gene loadings
    for each usage as dataframe in adata.uns

    Parameters:
        adata (AnnData.AnnData): AnnData object
        spectra_score_file (str): '<name>.gene_spectra_score.k_<k>.dt_<dt>.txt' file
            from cNMF containing gene loadings
        n_genes (int): number of top genes to list for each usage (rows of df)
        key (str): prefix of adata.uns keys to save

    Returns:
        AnnData.AnnData: adata is edited in place to include gene spectra scores
        (adata.varm["cnmf_spectra"]) and list of top genes by spectra score
        (adata.uns["cnmf_markers"])
    """
    # load Z-scored GEPs which reflect gene enrichment, save to adata.varm
    spectra = pd.read_csv(spectra_score_file, sep="\t", index_col=0).T
    spectra.index = spectra.index.astype(str)
    adata.varm["{}_spectra".format(key)] = spectra.reindex(adata.var_names).fillna(0).values
    # obtain top n_genes for each GEP in sorted order and combine them into df
    top_genes = []
    for gep in spectra.columns:
        top_genes.append(
            list(spectra.sort_values(by=gep, ascending=False).index[:n_genes])
        )
    # save output to adata.uns
    adata.uns["{}_markers".format(key)] = pd.DataFrame(
        top_genes, index=spectra.columns.astype(str)
    ).T


def load_results(adata, output_dir, name, k, dt, key="cnmf", **kwargs):
    """
    Load results of cNMF.
    Given adata object and corresponding cNMF output (output_dir, name, k, dt to
    identify), read in relevant results and save to adata object inplace.

    Parameters:
        adata (AnnData.AnnData): AnnData object
        output_dir (str): path to directory containing cNMF outputs
        name (str): name of cNMF run
        k (int): value used for consensus factorization
        dt (float): local density threshold used for consensus clustering
        key (str): prefix of adata keys to save
        **kwargs: keyword args to pass to cnmf_markers()

    Returns:
        AnnData.AnnData: adata is edited in place to include overdispersed genes
            (adata.var["cnmf_overdispersed"]), usages (adata.obs["usage_#"],
            adata.obsm["cnmf_usages"]), gene spectra scores (adata.varm["cnmf_spectra"]),
            and list of top genes by spectra score (adata.uns["cnmf_markers"]).
    """
    # read in cell usages
    usage = pd.read_csv(
        consensus_file(output_dir, name, "usages", k, dt, suffix="consensus.txt"),
        sep="\t",
        index_col=0,
    )
    usage.columns = ["usage_" + str(col) for col in usage.columns]
    # normalize usages to total for each cell
    usage_norm = usage.div(usage.sum(axis=1), axis=0)
    usage_norm.index = usage_norm.index.astype(str)
    # add usages to .obs for visualization, replacing missing values with zeros
    adata.obs = adata.obs.drop(columns=usage_norm.columns, errors="ignore")
    adata.obs = pd.merge(
        left=adata.obs, right=usage_norm, how="left", left_index=True, right_index=True
    )
    adata.obs[usage_norm.columns] = adata.obs[usage_norm.columns].fillna(value=0)
    # add usages as array in .obsm for dimension reduction
    adata.obsm["{}_usages".format(key)] = adata.obs.loc[:, usage_norm.columns].values

    # read in overdispersed genes determined by cNMF and add as metadata to adata.var
    overdispersed = np.genfromtxt(
        os.path.join(output_dir, name, "{}.overdispersed_genes.txt".format(name)),
        dtype=str,
    )
    adata.var["{}_overdispersed".format(key)] = adata.var_names.isin(
        np.atleast_1d(overdispersed)
    ).astype(int)

    # read top gene loadings for each GEP usage and save to adata.uns['cnmf_markers']
    cnmf_markers(
        adata,
        consensus_file(output_dir, name, "gene_spectra_score", k, dt),
        key=key,
        **kwargs
    )
    return adata
