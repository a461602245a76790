# -*- coding: utf-8 -*-
"""
consensus non-negative matrix factorization (cNMF) adapted from (Kotliar, et al. 2019)
entire pipeline run with factorization workers in parallel processes

@author: C Heiser
2020
"""
import os
import sys
import logging

from joblib import Parallel, delayed

from .cnmf import (
    add_consensus_arguments,
    add_prepare_arguments,
    add_run_arguments,
    cNMF,
    run_command,
)
from ._version import __version__


logger = logging.getLogger(__name__)


def _joblib_backend():
    # override with e.g. CNMF_JOBLIB_BACKEND=threading
    return os.environ.get("CNMF_JOBLIB_BACKEND", "loky")


def factorize_worker(output_dir, name, worker_i, total_workers, skip_completed_runs):
    cnmf_obj = cNMF(output_dir=output_dir, name=name)
    cnmf_obj.factorize(
        worker_i=worker_i,
        total_workers=total_workers,
        skip_completed_runs=skip_completed_runs,
    )
    return worker_i


def parallel(args):
    argdict = vars(args)
    cnmf_obj = cNMF(output_dir=argdict["output_dir"], name=argdict["name"])

    logger.info("Preparing directories and preprocessing")
    cnmf_obj.prepare(
        argdict["counts"],
        components=argdict["components"],
        n_iter=argdict["n_iter"],
        densify=argdict["densify"],
        tpm_fn=argdict["tpm"],
        seed=argdict["seed"],
        beta_loss=argdict["beta_loss"],
        num_highvar_genes=argdict["numgenes"],
        genes_file=argdict["genes_file"],
        max_iter=argdict["max_nmf_iter"],
        tol=argdict["tol"],
        subset=argdict["subset"],
        layer=argdict["layer"],
    )

    n_jobs = argdict["n_jobs"]
    logger.info("Running iterative NMF across %d workers", n_jobs)
    Parallel(n_jobs=n_jobs, backend=_joblib_backend())(
        delayed(factorize_worker)(
            cnmf_obj.output_dir,
            cnmf_obj.name,
            i,
            n_jobs,
            argdict["skip_completed_runs"],
        )
        for i in range(n_jobs)
    )

    logger.info("Combining NMF replicates")
    cnmf_obj.combine()

    logger.info("Plotting K selection parameters")
    stats = cnmf_obj.k_selection_plot()
    logger.info("K selection stats:\n%s", stats.to_string(index=False))

    if argdict["consensus_k"]:
        for k in argdict["consensus_k"]:
            logger.info("Building consensus factors for k=%d", k)
            cnmf_obj.consensus(
                k,
                density_threshold=argdict["local_density_threshold"],
                local_neighborhood_size=argdict["local_neighborhood_size"],
                show_clustering=argdict["show_clustering"],
            )
    else:
        logger.info(
            "Inspect %s and run 'cnmf consensus -k <K>' for the chosen k",
            cnmf_obj.paths["k_selection_plot"],
        )

    if argdict["cleanup"]:
        cnmf_obj.cleanup()


def main(argv=None):
    import argparse

    parser = argparse.ArgumentParser(prog="cnmf_p")
    parser.add_argument(
        "-V", "--version", action="version", version=__version__,
    )
    add_prepare_arguments(parser)
    add_run_arguments(parser)
    parser.add_argument(
        "-j",
        "--n-jobs",
        "--total-workers",
        dest="n_jobs",
        type=int,
        help="Total number of workers to distribute jobs to",
        default=1,
    )
    parser.add_argument(
        "--skip-completed-runs",
        help="Skip replicates whose outputs already exist from a previous run",
        action="store_true",
    )
    parser.add_argument(
        "--consensus-k",
        type=int,
        nargs="+",
        help="Values of k to build consensus factors for once k selection is done",
        default=None,
    )
    add_consensus_arguments(parser)
    parser.add_argument(
        "--cleanup",
        help="Remove per-replicate and intermediate files to clean workspace",
        action="store_true",
    )
    parser.set_defaults(func=parallel)

    args = parser.parse_args(argv)
    return run_command(args, parser)


if __name__ == "__main__":
    sys.exit(main())
