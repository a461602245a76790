# -*- coding: utf-8 -*-
"""
stability and error statistics for choosing the number of components

@author: C Heiser
"""
import logging
import pandas as pd

from .consensus import build_consensus


logger = logging.getLogger(__name__)

K_SELECTION_COLUMNS = [
    "k",
    "stability",
    "silhouette",
    "prediction_error",
    "replicate_error",
    "n_unconverged",
]


def score_rank(combined, norm_counts, nmf_kwargs, random_state=1):
    """
    Stability and error of one rank, from a provisional consensus built on all
    replicate spectra (no density filtering).

    Parameters
    ----------
    combined : CombinedRankOutput
        ``errors`` must hold the replicates' reconstruction errors

    norm_counts : anndata.AnnData
        Normalized matrix that was factorized

    nmf_kwargs : dict
        Arguments for ``non_negative_factorization``

    Returns
    -------
    pandas.Series with ``K_SELECTION_COLUMNS``
    """
    k = combined.n_components
    provisional = build_consensus(
        combined.spectra,
        norm_counts,
        k,
        nmf_kwargs,
        density_threshold=1.0,
        random_state=random_state,
        skip_density=True,
    )
    stats = provisional.stats["stats"]
    record = pd.Series(
        [
            k,
            stats["stability"],
            stats["silhouette"],
            stats["prediction_error"],
            combined.errors["error"].mean(),
            (combined.errors["converged"] == 0).sum(),
        ],
        index=K_SELECTION_COLUMNS,
    )
    logger.info(
        "k=%d: stability %.4f, prediction error %.4g", k, record.stability, record.prediction_error
    )
    return record


def k_selection_table(records):
    """Stack ``score_rank`` records into one table sorted by k"""
    stats = pd.DataFrame(list(records), columns=K_SELECTION_COLUMNS)
    stats = stats.sort_values("k").reset_index(drop=True)
    stats["k"] = stats["k"].astype(int)
    return stats
