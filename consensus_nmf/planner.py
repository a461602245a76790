# -*- coding: utf-8 -*-
"""
planning of NMF replicates and their partitioning across workers

@author: C Heiser
"""
import itertools
import numpy as np
import pandas as pd

from collections import namedtuple

from .errors import InvalidRankError


WorkUnit = namedtuple("WorkUnit", ["n_components", "iter", "nmf_seed", "index"])


def worker_filter(iterable, worker_index, total_workers):
    """
    Yield the items of ``iterable`` owned by ``worker_index``: item ``i`` goes to
    worker ``i % total_workers``.
    """
    if total_workers < 1:
        raise ValueError("total_workers must be at least 1, got {}".format(total_workers))
    if not 0 <= worker_index < total_workers:
        raise ValueError(
            "worker_index must be in [0, {}), got {}".format(total_workers, worker_index)
        )
    return (
        p for i, p in enumerate(iterable) if (i - worker_index) % total_workers == 0
    )


def check_ranks(ks, n_cells=None, n_genes=None):
    """
    Raise ``InvalidRankError`` for any k <= 1 or k >= min(n_cells, n_genes).
    """
    upper = None
    if n_cells is not None and n_genes is not None:
        upper = min(n_cells, n_genes)
    for k in ks:
        if k <= 1:
            raise InvalidRankError("k={} is invalid; k must be greater than 1".format(k))
        if upper is not None and k >= upper:
            raise InvalidRankError(
                "k={} is invalid for a {} x {} matrix; k must be less than {}".format(
                    k, n_cells, n_genes, upper
                )
            )


def replicate_seed(random_state_seed, k, replicate):
    """
    Seed for one replicate, a function of the master seed, ``k`` and the replicate
    index only.
    """
    entropy = [int(k), int(replicate)]
    if random_state_seed is not None:
        entropy = [int(random_state_seed)] + entropy
    return int(np.random.SeedSequence(entropy).generate_state(1)[0])


def get_nmf_iter_params(
    ks,
    n_iter=100,
    random_state_seed=None,
    beta_loss="kullback-leibler",
    max_iter=400,
    tol=1e-4,
    n_cells=None,
    n_genes=None,
):
    """
    Create a DataFrame with parameters for NMF iterations.

    Parameters
    ----------
    ks : integer, or list-like.
        Number of topics (components) for factorization.
        Several values can be specified at the same time, which will be run independently.

    n_iter : integer, optional (default=100)
        Number of iterations for factorization. If several ``k`` are specified, this many
        iterations will be run for each value of ``k``.

    random_state_seed : int or None, optional (default=None)
        Master seed; each replicate's seed is derived from it together with its
        ``k`` and replicate index.

    beta_loss : str, optional (default="kullback-leibler")
        Loss function passed to ``non_negative_factorization``

    max_iter : int, optional (default=400)
        Iteration cap for a single factorization

    tol : float, optional (default=1e-4)
        Tolerance of the stopping condition

    n_cells, n_genes : int, optional
        Shape of the matrix to be factorized, used to validate ``ks``

    Returns
    -------
    replicate_params : pandas.DataFrame
        One row per (k, replicate), sorted by k then replicate

    _nmf_kwargs : dict
        Arguments for ``non_negative_factorization``
    """
    if isinstance(ks, (int, np.integer)):
        ks = [ks]

    # Remove any repeated k values, and order.
    k_list = sorted(set(int(k) for k in ks))
    check_ranks(k_list, n_cells=n_cells, n_genes=n_genes)

    if n_iter < 1:
        raise ValueError("n_iter must be at least 1, got {}".format(n_iter))

    replicate_params = []
    for k, r in itertools.product(k_list, range(n_iter)):
        replicate_params.append([k, r, replicate_seed(random_state_seed, k, r)])
    replicate_params = pd.DataFrame(
        replicate_params, columns=["n_components", "iter", "nmf_seed"]
    ).astype(np.int64)

    _nmf_kwargs = dict(
        alpha_W=0.0,
        alpha_H="same",
        l1_ratio=0.0,
        beta_loss=beta_loss,
        solver="mu",
        tol=float(tol),
        max_iter=int(max_iter),
        init="random",
    )

    ## Coordinate descent is faster than multiplicative update but only works for frobenius
    if beta_loss == "frobenius":
        _nmf_kwargs["solver"] = "cd"

    return (replicate_params, _nmf_kwargs)


def work_units(replicate_params):
    """
    ``replicate_params`` as a list of ``WorkUnit`` records in plan order
    """
    return [
        WorkUnit(
            n_components=int(p["n_components"]),
            iter=int(p["iter"]),
            nmf_seed=int(p["nmf_seed"]),
            index=i,
        )
        for i, (_, p) in enumerate(replicate_params.iterrows())
    ]
