# -*- coding: utf-8 -*-
"""
single NMF replicates and fixed-factor refits

@author: C Heiser
"""
import logging
import warnings
import numpy as np
import pandas as pd
import scipy.sparse as sp

from collections import namedtuple
from sklearn.decomposition import non_negative_factorization
from sklearn.exceptions import ConvergenceWarning


logger = logging.getLogger(__name__)

FactorSolution = namedtuple(
    "FactorSolution",
    ["n_components", "iter", "spectra", "usages", "error", "n_iter", "converged"],
)


def nmf(X, nmf_kwargs):
    """
    Parameters
    ----------
    X : numpy.ndarray or scipy.sparse matrix
        Normalized counts to be factorized.

    nmf_kwargs : dict,
        Arguments to be passed to ``non_negative_factorization``

    Returns
    -------
    (spectra, usages, n_iter)
    """
    with warnings.catch_warnings():
        # hitting max_iter is reported through n_iter instead
        warnings.simplefilter("ignore", category=ConvergenceWarning)
        (usages, spectra, n_iter) = non_negative_factorization(X, **nmf_kwargs)

    return (spectra, usages, n_iter)


def reconstruction_error(X, usages, spectra):
    """
    Squared Frobenius norm of ``X - usages.dot(spectra)``, without densifying a
    sparse ``X``
    """
    usages = np.asarray(usages)
    spectra = np.asarray(spectra)
    if sp.issparse(X):
        norm_X = X.multiply(X).sum()
    else:
        X = np.asarray(X)
        norm_X = (X ** 2).sum()
    cross = (np.asarray(X.dot(spectra.T)) * usages).sum()
    gram = (usages.T.dot(usages) * spectra.dot(spectra.T)).sum()
    return float(max(norm_X - 2 * cross + gram, 0.0))


def run_work_unit(norm_counts, unit, nmf_kwargs):
    """
    Factorize ``norm_counts`` for one ``WorkUnit``.

    The initialization is seeded from ``unit.nmf_seed``, so running the same unit
    twice gives the same solution. A run that stops at ``max_iter`` is kept and
    flagged with ``converged=False``.

    Parameters
    ----------
    norm_counts : anndata.AnnData
        Normalized (cells x genes) matrix

    unit : WorkUnit

    nmf_kwargs : dict
        Arguments for ``non_negative_factorization`` from the run plan

    Returns
    -------
    FactorSolution
    """
    _nmf_kwargs = dict(nmf_kwargs)
    _nmf_kwargs["random_state"] = int(unit.nmf_seed)
    _nmf_kwargs["n_components"] = int(unit.n_components)

    (spectra, usages, n_iter) = nmf(norm_counts.X, _nmf_kwargs)
    error = reconstruction_error(norm_counts.X, usages, spectra)
    converged = n_iter < _nmf_kwargs.get("max_iter", 200)
    if not converged:
        logger.warning(
            "k=%d, iter=%d stopped at max_iter=%d without converging (error %.4g)",
            unit.n_components,
            unit.iter,
            n_iter,
            error,
        )

    topics = np.arange(1, unit.n_components + 1)
    spectra = pd.DataFrame(spectra, index=topics, columns=norm_counts.var.index)
    usages = pd.DataFrame(usages, index=norm_counts.obs.index, columns=topics)
    return FactorSolution(
        n_components=unit.n_components,
        iter=unit.iter,
        spectra=spectra,
        usages=usages,
        error=error,
        n_iter=int(n_iter),
        converged=bool(converged),
    )


def refit_usage(X, spectra, nmf_kwargs):
    """
    Takes an input data matrix and a fixed spectra and uses NNLS to find the optimal
    usage matrix. If ``spectra`` is a DataFrame, the returned columns match its index.

    Parameters
    ----------
    X : numpy.ndarray or scipy.sparse matrix, cells X genes
        Non-negative expression data to fit spectra to

    spectra : pandas.DataFrame or numpy.ndarray, programs X genes
        Non-negative spectra of expression programs

    nmf_kwargs : dict
        Arguments for ``non_negative_factorization``
    """
    if not np.issubdtype(X.dtype, np.floating):
        X = X.astype(np.float64)
    H = spectra.values if isinstance(spectra, pd.DataFrame) else np.asarray(spectra)
    refit_nmf_kwargs = dict(nmf_kwargs)
    refit_nmf_kwargs.update(
        dict(n_components=H.shape[0], H=H.astype(X.dtype), update_H=False)
    )

    _, rf_usages, _ = nmf(X, refit_nmf_kwargs)
    return rf_usages


def refit_spectra(X, usage, nmf_kwargs):
    """
    Takes an input data matrix and a fixed usage matrix and uses NNLS to find the
    optimal spectra matrix (programs X genes).
    """
    U = usage.values if isinstance(usage, pd.DataFrame) else np.asarray(usage)
    return refit_usage(X.T, U.T, nmf_kwargs).T
