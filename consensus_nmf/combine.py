# -*- coding: utf-8 -*-
"""
merging NMF replicates of a single rank

@author: C Heiser
"""
import pandas as pd

from collections import namedtuple

from .errors import FormatMismatchError, IncompleteRankError


CombinedRankOutput = namedtuple(
    "CombinedRankOutput", ["n_components", "spectra", "usages", "errors"]
)


def replicate_labels(it, k):
    return ["iter%d_topic%d" % (it, t + 1) for t in range(k)]


def combine_replicates(solutions, k, n_replicates):
    """
    Concatenate the ``FactorSolution``s of one rank in ascending replicate order.

    Parameters
    ----------
    solutions : iterable of FactorSolution
        Replicates of rank ``k``, in any order

    k : int
        Number of components

    n_replicates : int
        Replicates expected for this rank (0..n_replicates-1)

    Returns
    -------
    CombinedRankOutput
        ``spectra`` is (n_replicates * k) x genes, ``usages`` is
        cells x (n_replicates * k), ``errors`` has one row per replicate

    Raises
    ------
    IncompleteRankError
        if any replicate is missing

    FormatMismatchError
        if the replicates do not share the same genes and cells
    """
    by_iter = {}
    for s in solutions:
        if s.n_components != k:
            raise ValueError(
                "Got a solution with k={} while combining k={}".format(s.n_components, k)
            )
        if not 0 <= s.iter < n_replicates:
            raise ValueError(
                "Replicate {} is outside of 0..{}".format(s.iter, n_replicates - 1)
            )
        by_iter[s.iter] = s

    # replicates of an earlier plan may have other genes or cells
    first = by_iter[min(by_iter)] if len(by_iter) > 0 else None
    for r, s in sorted(by_iter.items()):
        if not s.spectra.columns.equals(first.spectra.columns) or not s.usages.index.equals(
            first.usages.index
        ):
            raise FormatMismatchError(
                "k={}: replicate {} was factorized on different genes or cells than "
                "replicate {}; rerun factorize after prepare".format(k, r, first.iter)
            )

    missing = [r for r in range(n_replicates) if r not in by_iter]
    if len(missing) > 0:
        raise IncompleteRankError(
            "k={}: {}/{} replicates found; missing replicate(s) {}".format(
                k, len(by_iter), n_replicates, ", ".join(str(r) for r in missing)
            )
        )

    combined_spectra = []
    combined_usages = []
    errors = []
    for r in range(n_replicates):
        s = by_iter[r]
        labels = replicate_labels(r, k)
        spectra = s.spectra.copy()
        spectra.index = labels
        usages = s.usages.copy()
        usages.columns = labels
        combined_spectra.append(spectra)
        combined_usages.append(usages)
        errors.append([s.error, s.n_iter, int(s.converged)])

    errors = pd.DataFrame(
        errors,
        index=pd.Index(range(n_replicates), name="iter"),
        columns=["error", "n_iter", "converged"],
    ).astype(float)

    return CombinedRankOutput(
        n_components=k,
        spectra=pd.concat(combined_spectra, axis=0),
        usages=pd.concat(combined_usages, axis=1),
        errors=errors,
    )
