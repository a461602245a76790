# -*- coding: utf-8 -*-
"""
package initialization

@author: C Heiser
"""
from .cnmf import (
    cNMF,
    prepare,
    factorize,
    combine,
    consensus,
    k_selection,
)
from .combine import CombinedRankOutput, combine_replicates
from .consensus import ConsensusSolution, build_consensus
from .errors import (
    ConsensusNMFError,
    EmptyClusterError,
    FormatMismatchError,
    IncompleteRankError,
    InvalidRankError,
)
from .factorize import FactorSolution, run_work_unit
from .kselection import score_rank
from .planner import WorkUnit, get_nmf_iter_params, work_units, worker_filter
from .preprocess import load_counts, load_mtx_triplet
from .results import load_results

__all__ = [
    "cNMF",
    "load_results",
    "prepare",
    "factorize",
    "combine",
    "consensus",
    "k_selection",
    "CombinedRankOutput",
    "combine_replicates",
    "ConsensusSolution",
    "build_consensus",
    "ConsensusNMFError",
    "EmptyClusterError",
    "FormatMismatchError",
    "IncompleteRankError",
    "InvalidRankError",
    "FactorSolution",
    "run_work_unit",
    "score_rank",
    "WorkUnit",
    "get_nmf_iter_params",
    "work_units",
    "worker_filter",
    "load_counts",
    "load_mtx_triplet",
]

from ._version import __version__
