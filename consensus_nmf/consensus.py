# -*- coding: utf-8 -*-
"""
consensus factors from clustered NMF replicates, with local density filtering

@author: C Heiser
"""
import logging
import numpy as np
import pandas as pd
import scipy.sparse as sp

from collections import namedtuple
from scipy.spatial.distance import squareform
from sklearn.cluster import KMeans
from sklearn.metrics import silhouette_score
from sklearn.preprocessing import normalize

from .errors import EmptyClusterError
from .factorize import reconstruction_error, refit_spectra, refit_usage
from .preprocess import tpm_gene_stats
from .utils import fast_euclidean, fast_ols_all_cols


logger = logging.getLogger(__name__)


class ConsensusSolution(
    namedtuple(
        "ConsensusSolution",
        [
            "n_components",
            "density_threshold",
            "spectra",
            "usages",
            "spectra_score",
            "spectra_tpm",
            "stats",
            "l2_spectra",
            "local_density",
            "cluster_labels",
            "density_filter",
        ],
    )
):
    __slots__ = ()

    @property
    def n_retained(self):
        return int(self.density_filter.sum())

    @property
    def n_discarded(self):
        return int((~self.density_filter).sum())


def l2_normalize(spectra):
    """Rescale each spectrum (row) to unit length"""
    return pd.DataFrame(
        normalize(spectra.values, norm="l2"), index=spectra.index, columns=spectra.columns
    )


def local_density(l2_spectra, n_neighbors):
    """
    Mean euclidean distance from each spectrum to its ``n_neighbors`` nearest
    other spectra. Higher values are sparser, more outlying spectra.
    """
    n_neighbors = int(min(max(n_neighbors, 1), l2_spectra.shape[0] - 1))
    topics_dist = squareform(fast_euclidean(l2_spectra.values))
    # partition based on the first n neighbors (self is among them, at distance 0)
    partitioning_order = np.argpartition(topics_dist, n_neighbors, axis=1)[
        :, : n_neighbors + 1
    ]
    distance_to_nearest_neighbors = topics_dist[
        np.arange(topics_dist.shape[0])[:, None], partitioning_order
    ]
    return pd.Series(
        distance_to_nearest_neighbors.sum(1) / n_neighbors,
        index=l2_spectra.index,
        name="local_density",
    )


def cluster_spectra(l2_spectra, k, random_state=1):
    """
    K-means clustering of the replicate spectra. Clusters are numbered 1..k in order
    of their first member in ``l2_spectra``.
    """
    kmeans_model = KMeans(n_clusters=k, n_init=10, random_state=random_state)
    kmeans_model.fit(l2_spectra.values)
    first_seen = pd.unique(kmeans_model.labels_)
    if len(first_seen) < k:
        raise EmptyClusterError(
            "k-means found only {} distinct clusters of replicate spectra for k={}".format(
                len(first_seen), k
            )
        )
    relabel = {old: new for new, old in enumerate(first_seen, start=1)}
    return pd.Series(
        [relabel[l] for l in kmeans_model.labels_], index=l2_spectra.index, name="cluster"
    )


def filter_by_density(density, labels, density_threshold):
    """
    Keep the ``floor(density_threshold * n)`` densest members of each cluster of
    ``n`` spectra.

    Raises
    ------
    EmptyClusterError
        if a cluster would lose all of its members
    """
    density_filter = pd.Series(False, index=density.index, name="density_filter")
    for cl, members in density.groupby(labels):
        n_keep = int(np.floor(density_threshold * len(members) + 1e-8))
        if n_keep == 0:
            raise EmptyClusterError(
                "Local density threshold {} discards all {} spectra of cluster {}; "
                "raise the threshold or choose another k".format(
                    density_threshold, len(members), cl
                )
            )
        kept = members.sort_values(kind="mergesort").index[:n_keep]
        density_filter[kept] = True
    return density_filter


def cosine_stability(l2_spectra, labels):
    """
    Mean cosine similarity between each (unit length) spectrum and the centroid of
    its cluster
    """
    centroids = l2_spectra.groupby(labels).mean()
    centroids = pd.DataFrame(normalize(centroids.values), index=centroids.index)
    sims = (l2_spectra.values * centroids.loc[labels.values].values).sum(axis=1)
    return float(sims.mean())


def silhouette(l2_spectra, labels):
    n_labels = labels.nunique()
    if n_labels < 2 or n_labels >= len(labels):
        return np.nan
    return float(silhouette_score(l2_spectra.values, labels.values, metric="euclidean"))


def gene_spectra_score(usages, tpm, tpm_stats=None):
    """
    Gene scores for each program: OLS regression of per-gene z-scored TPM on the
    usages (programs x genes)
    """
    if tpm_stats is None:
        tpm_stats = tpm_gene_stats(tpm)
    std = tpm_stats["__std"].values.copy()
    std[std == 0] = 1
    if sp.issparse(tpm.X):
        norm_tpm = (np.array(tpm.X.todense()) - tpm_stats["__mean"].values) / std
    else:
        norm_tpm = (np.asarray(tpm.X) - tpm_stats["__mean"].values) / std
    if norm_tpm.dtype != np.float64:
        norm_tpm = norm_tpm.astype(np.float64)

    usage_coef = fast_ols_all_cols(usages.values, norm_tpm)
    return pd.DataFrame(usage_coef, index=usages.columns, columns=tpm.var.index)


def gene_spectra_tpm(usages, tpm, nmf_kwargs):
    """
    Spectra in TPM units for all genes, by running the last step of NMF with usages
    (normalized to sum to 1 per cell) fixed and TPM as the input matrix
    """
    norm_usages = usages.div(usages.sum(axis=1), axis=0).fillna(0)
    spectra_tpm = refit_spectra(tpm.X, norm_usages, nmf_kwargs)
    return pd.DataFrame(spectra_tpm, index=usages.columns, columns=tpm.var.index)


def build_consensus(
    merged_spectra,
    norm_counts,
    k,
    nmf_kwargs,
    density_threshold=0.5,
    local_neighborhood_size=0.30,
    tpm=None,
    tpm_stats=None,
    random_state=1,
    skip_density=False,
):
    """
    Build consensus spectra and usages from the combined replicates of one rank.

    Parameters
    ----------
    merged_spectra : pandas.DataFrame, (replicates * k) x genes
        Combined replicate spectra

    norm_counts : anndata.AnnData
        Normalized matrix that was factorized; usages are refit against it

    k : int
        Number of components

    nmf_kwargs : dict
        Arguments for ``non_negative_factorization`` used in the refits

    density_threshold : float, optional (default=0.5)
        Fraction of each cluster's spectra kept, from densest to sparsest. Must be
        in (0, 1].

    local_neighborhood_size : float, optional (default=0.30)
        Fraction of the number of replicates used as nearest neighbors when
        computing local density

    tpm : anndata.AnnData, optional
        TPM matrix; if given, ``spectra_score`` and ``spectra_tpm`` are computed

    tpm_stats : pandas.DataFrame, optional
        Per-gene ``__mean`` and ``__std`` of ``tpm``

    random_state : int, optional (default=1)
        Seed for k-means

    skip_density : bool, optional (default=False)
        Keep every spectrum (no outlier filtering)

    Returns
    -------
    ConsensusSolution
    """
    if not skip_density and not 0 < density_threshold <= 1:
        raise ValueError(
            "density_threshold must be in (0, 1], got {}".format(density_threshold)
        )
    n_neighbors = max(1, int(local_neighborhood_size * merged_spectra.shape[0] / k))

    l2_spectra = l2_normalize(merged_spectra)
    cluster_labels = cluster_spectra(l2_spectra, k, random_state=random_state)

    if skip_density:
        density = None
        density_filter = pd.Series(True, index=l2_spectra.index, name="density_filter")
    else:
        density = local_density(l2_spectra, n_neighbors)
        density_filter = filter_by_density(density, cluster_labels, density_threshold)
    logger.info(
        "k=%d: kept %d/%d replicate spectra after density filtering",
        k,
        density_filter.sum(),
        len(density_filter),
    )

    kept_spectra = l2_spectra.loc[density_filter, :]
    kept_labels = cluster_labels[density_filter]

    # Find median usage for each gene across cluster
    median_spectra = kept_spectra.groupby(kept_labels).median()

    # Normalize median spectra to probability distributions.
    median_spectra = (median_spectra.T / median_spectra.sum(1)).T

    # Refit usages against the factorized matrix with spectra fixed
    rf_usages = refit_usage(norm_counts.X, median_spectra, nmf_kwargs)
    rf_usages = pd.DataFrame(
        rf_usages, index=norm_counts.obs.index, columns=median_spectra.index
    )
    prediction_error = reconstruction_error(
        norm_counts.X, rf_usages.values, median_spectra.values
    )

    # Re-order programs by total contribution
    norm_usages = rf_usages.div(rf_usages.sum(axis=1), axis=0)
    reorder = norm_usages.sum(axis=0).sort_values(ascending=False, kind="mergesort").index
    relabel = {old: new for new, old in enumerate(reorder, start=1)}
    rf_usages = rf_usages.loc[:, reorder]
    rf_usages.columns = np.arange(1, k + 1)
    median_spectra = median_spectra.loc[reorder, :]
    median_spectra.index = rf_usages.columns
    cluster_labels = cluster_labels.map(relabel)
    kept_labels = kept_labels.map(relabel)

    consensus_stats = pd.DataFrame(
        [
            k,
            density_threshold,
            cosine_stability(kept_spectra, kept_labels),
            silhouette(kept_spectra, kept_labels),
            prediction_error,
            density_filter.sum(),
            (~density_filter).sum(),
        ],
        index=[
            "k",
            "local_density_threshold",
            "stability",
            "silhouette",
            "prediction_error",
            "n_retained",
            "n_discarded",
        ],
        columns=["stats"],
    ).astype(float)

    spectra_score = None
    spectra_tpm = None
    if tpm is not None:
        # ignore cells not present in norm_counts
        if tpm.n_obs != norm_counts.n_obs:
            tpm = tpm[norm_counts.obs_names, :].copy()
        spectra_score = gene_spectra_score(rf_usages, tpm, tpm_stats)
        spectra_tpm = gene_spectra_tpm(rf_usages, tpm, nmf_kwargs)

    return ConsensusSolution(
        n_components=k,
        density_threshold=density_threshold,
        spectra=median_spectra,
        usages=rf_usages,
        spectra_score=spectra_score,
        spectra_tpm=spectra_tpm,
        stats=consensus_stats,
        l2_spectra=l2_spectra,
        local_density=density,
        cluster_labels=cluster_labels,
        density_filter=density_filter,
    )
