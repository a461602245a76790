# -*- coding: utf-8 -*-
"""
consensus non-negative matrix factorization (cNMF) adapted from (Kotliar, et al. 2019)

@author: C Heiser
2020
"""
import os
import sys
import glob
import datetime
import logging
import uuid
import yaml
import numpy as np
import pandas as pd
import scanpy as sc

from .combine import combine_replicates, CombinedRankOutput
from .consensus import build_consensus
from .errors import (
    ConsensusNMFError,
    FormatMismatchError,
    IncompleteRankError,
    InvalidRankError,
)
from .factorize import FactorSolution, run_work_unit
from .kselection import k_selection_table, score_rank
from .log import setup_logger
from .planner import check_ranks, get_nmf_iter_params, work_units, worker_filter
from .plotting import plot_clustergram, plot_k_selection
from .preprocess import (
    _df_to_adata,
    compute_tpm,
    get_norm_counts,
    load_counts,
    subset_adata,
    tpm_gene_stats,
)
from .results import dt_label, load_results
from .utils import (
    check_dir_exists,
    load_df_from_npz,
    save_df_to_npz,
    save_df_to_text,
)
from ._version import __version__


logger = logging.getLogger(__name__)


def save_adata(adata, filename):
    tmp = "{}.{}.tmp.h5ad".format(filename, os.getpid())
    adata.write(tmp, compression="gzip")
    os.replace(tmp, filename)


def save_text_lines(lines, filename):
    tmp = "{}.{}.tmp".format(filename, os.getpid())
    with open(tmp, "w") as F:
        F.write("\n".join(lines))
    os.replace(tmp, filename)


class cNMF:
    def __init__(self, output_dir=".", name=None):
        """
        Parameters
        ----------

        output_dir : path, optional (default=".")
            Output directory for analysis files.

        name : string, optional (default=None)
            A name for this analysis. Will be prefixed to all output files.
            If set to None, will be automatically generated from date (and random string).
        """

        self.output_dir = output_dir
        if name is None:
            now = datetime.datetime.now()
            rand_hash = uuid.uuid4().hex[:6]
            name = "%s_%s" % (now.strftime("%Y_%m_%d"), rand_hash)
        self.name = name
        self.paths = None

    @property
    def run_dir(self):
        return os.path.join(self.output_dir, self.name)

    def _initialize_dirs(self):
        if self.paths is None:
            # Check that output directory exists, create it if needed.
            check_dir_exists(self.output_dir)
            check_dir_exists(self.run_dir)
            check_dir_exists(os.path.join(self.run_dir, "cnmf_tmp"))

            def tmp_path(suffix):
                return os.path.join(self.run_dir, "cnmf_tmp", self.name + suffix)

            def out_path(suffix):
                return os.path.join(self.run_dir, self.name + suffix)

            self.paths = {
                "normalized_counts": tmp_path(".norm_counts.h5ad"),
                "nmf_replicate_parameters": tmp_path(".nmf_params.df.npz"),
                "nmf_run_parameters": tmp_path(".nmf_idvrun_params.yaml"),
                "nmf_genes_list": out_path(".overdispersed_genes.txt"),
                "tpm": tmp_path(".tpm.h5ad"),
                "tpm_stats": tmp_path(".tpm_stats.df.npz"),
                "iter_spectra": tmp_path(".spectra.k_%d.iter_%d.df.npz"),
                "iter_usages": tmp_path(".usages.k_%d.iter_%d.df.npz"),
                "iter_stats": tmp_path(".stats.k_%d.iter_%d.df.npz"),
                "merged_spectra": tmp_path(".spectra.k_%d.merged.df.npz"),
                "merged_spectra__txt": out_path(".spectra.k_%d.merged.txt"),
                "merged_usages": tmp_path(".usages.k_%d.merged.df.npz"),
                "merged_usages__txt": out_path(".usages.k_%d.merged.txt"),
                "merged_errors": tmp_path(".errors.k_%d.merged.df.npz"),
                "consensus_spectra": tmp_path(".spectra.k_%d.dt_%s.consensus.df.npz"),
                "consensus_spectra__txt": out_path(".spectra.k_%d.dt_%s.consensus.txt"),
                "consensus_usages": tmp_path(".usages.k_%d.dt_%s.consensus.df.npz"),
                "consensus_usages__txt": out_path(".usages.k_%d.dt_%s.consensus.txt"),
                "consensus_stats": tmp_path(".stats.k_%d.dt_%s.df.npz"),
                "clustering_plot": out_path(".clustering.k_%d.dt_%s.png"),
                "gene_spectra_score": tmp_path(".gene_spectra_score.k_%d.dt_%s.df.npz"),
                "gene_spectra_score__txt": out_path(".gene_spectra_score.k_%d.dt_%s.txt"),
                "gene_spectra_tpm": tmp_path(".gene_spectra_tpm.k_%d.dt_%s.df.npz"),
                "gene_spectra_tpm__txt": out_path(".gene_spectra_tpm.k_%d.dt_%s.txt"),
                "k_selection_plot": out_path(".k_selection.png"),
                "k_selection_stats": out_path(".k_selection_stats.df.npz"),
                "k_selection_stats__txt": out_path(".k_selection_stats.txt"),
            }

    def prepare(
        self,
        counts_fn,
        components,
        n_iter=100,
        densify=False,
        tpm_fn=None,
        seed=None,
        beta_loss="frobenius",
        num_highvar_genes=2000,
        genes_file=None,
        max_iter=400,
        tol=1e-4,
        subset=None,
        layer=None,
    ):
        """
        Load input counts, reduce to high-variance genes, and variance normalize genes.
        Subsequently prepare file for distributing jobs over workers.

        Parameters
        ----------
        counts_fn : str
            Path to input counts matrix (.h5ad, df.npz, tab delimited text, .mtx or
            a directory with matrix.mtx, barcodes.tsv and features.tsv)

        components : list or numpy array
            Values of K to run NMF for

        n_iter : integer, optional (default=100)
            Number of factorization replicates for each value of K

        densify : boolean, optional (default=False)
            Convert sparse data to dense

        tpm_fn : str or None, optional (default=None)
            If provided, load tpm data from file. Otherwise will compute it from the counts file

        seed : int or None, optional (default=None)
            Master seed from which every replicate's seed is derived

        beta_loss : str, optional (default='frobenius')

        num_highvar_genes : int or None, optional (default=2000)
            If provided and genes_file is None, will compute this many highvar genes to use for factorization

        genes_file : str or None, optional (default=None)
            If provided will load high-variance genes from a list of these genes

        max_iter : int, optional (default=400)
            Iteration cap for each factorization

        tol : float, optional (default=1e-4)
            Tolerance of the NMF stopping condition

        subset : list of str, optional (default=None)
            ``.obs`` columns flagging the cells to keep

        layer : str, optional (default=None)
            Key from ``.layers`` to use instead of ``.X``
        """
        self._initialize_dirs()
        if isinstance(components, (int, np.integer)):
            components = [components]
        check_ranks(components)
        self.clear_run_outputs()

        logger.info("Reading in counts from %s", counts_fn)
        input_counts = load_counts(counts_fn, densify=densify)
        logger.info("%d cells and %d genes", input_counts.n_obs, input_counts.n_vars)

        # use desired layer if not .X
        if layer is not None:
            if layer not in input_counts.layers:
                raise FormatMismatchError("Layer '{}' not found in {}".format(layer, counts_fn))
            logger.info("Using layer '%s' for cNMF", layer)
            input_counts.X = input_counts.layers[layer].copy()

        if tpm_fn is None:
            tpm = compute_tpm(input_counts)
        elif tpm_fn.endswith(".h5ad"):
            tpm = sc.read(tpm_fn)
        else:
            if tpm_fn.endswith(".npz"):
                tpm = load_df_from_npz(tpm_fn)
            else:
                tpm = pd.read_csv(tpm_fn, sep="\t", index_col=0)
            tpm = _df_to_adata(tpm, densify)

        if not tpm.obs_names.isin(input_counts.obs_names).all() or not tpm.var_names.isin(
            input_counts.var_names
        ).all():
            raise FormatMismatchError(
                "Cells and genes of the TPM matrix must all be present in the counts matrix"
            )

        if subset:
            tpm = subset_adata(tpm, subset=subset)

        n_null = tpm.n_vars - np.asarray(tpm.X.sum(axis=0)).astype(bool).sum()
        if n_null > 0:
            sc.pp.filter_genes(tpm, min_counts=1)
            logger.info(
                "Removing %d genes with zero counts; final shape %s", n_null, tpm.shape
            )
        save_adata(tpm, self.paths["tpm"])
        save_df_to_npz(tpm_gene_stats(tpm), self.paths["tpm_stats"])

        if genes_file is not None:
            with open(genes_file) as F:
                highvargenes = F.read().rstrip().split("\n")
        else:
            highvargenes = None

        norm_counts, highvargenes = get_norm_counts(
            input_counts,
            tpm,
            num_highvar_genes=num_highvar_genes,
            high_variance_genes_filter=highvargenes,
        )
        ## Save a \n-delimited list of the high-variance genes used for factorization
        save_text_lines(highvargenes, self.paths["nmf_genes_list"])
        self.save_norm_counts(norm_counts)

        (replicate_params, run_params) = get_nmf_iter_params(
            ks=components,
            n_iter=n_iter,
            random_state_seed=seed,
            beta_loss=beta_loss,
            max_iter=max_iter,
            tol=tol,
            n_cells=norm_counts.n_obs,
            n_genes=norm_counts.n_vars,
        )
        self.save_nmf_iter_params(replicate_params, run_params)
        logger.info(
            "Planned %d factorizations: k = %s, %d replicates each",
            len(replicate_params),
            ", ".join(str(k) for k in sorted(set(replicate_params.n_components))),
            n_iter,
        )

    def save_norm_counts(self, norm_counts):
        self._initialize_dirs()
        save_adata(norm_counts, self.paths["normalized_counts"])

    def load_norm_counts(self):
        self._initialize_dirs()
        return sc.read(self.paths["normalized_counts"])

    def save_nmf_iter_params(self, replicate_params, run_params):
        self._initialize_dirs()
        save_df_to_npz(replicate_params, self.paths["nmf_replicate_parameters"])
        tmp = "{}.{}.tmp".format(self.paths["nmf_run_parameters"], os.getpid())
        with open(tmp, "w") as F:
            yaml.dump(run_params, F)
        os.replace(tmp, self.paths["nmf_run_parameters"])

    def load_nmf_iter_params(self):
        """
        Returns
        -------
        (replicate_params, nmf_kwargs) as written by ``prepare``
        """
        self._initialize_dirs()
        run_params = load_df_from_npz(self.paths["nmf_replicate_parameters"])
        run_params = run_params.astype(np.int64)
        with open(self.paths["nmf_run_parameters"]) as F:
            _nmf_kwargs = yaml.load(F, Loader=yaml.FullLoader)
        return (run_params, _nmf_kwargs)

    def _replicate_paths(self, k, it):
        return [
            self.paths["iter_spectra"] % (k, it),
            self.paths["iter_usages"] % (k, it),
            self.paths["iter_stats"] % (k, it),
        ]

    def is_complete(self, k, it):
        """True if every output of replicate ``it`` of rank ``k`` has been written"""
        self._initialize_dirs()
        return all(os.path.isfile(f) for f in self._replicate_paths(k, it))

    def save_factor_solution(self, solution):
        k, it = solution.n_components, solution.iter
        stats = pd.DataFrame(
            [[solution.error, solution.n_iter, int(solution.converged)]],
            index=[it],
            columns=["error", "n_iter", "converged"],
        ).astype(float)
        save_df_to_npz(solution.spectra, self.paths["iter_spectra"] % (k, it))
        save_df_to_npz(solution.usages, self.paths["iter_usages"] % (k, it))
        # written last: its presence marks the replicate as complete
        save_df_to_npz(stats, self.paths["iter_stats"] % (k, it))

    def load_factor_solution(self, k, it):
        if not self.is_complete(k, it):
            raise IncompleteRankError(
                "Replicate {} of k={} has not been factorized".format(it, k)
            )
        stats = load_df_from_npz(self.paths["iter_stats"] % (k, it)).iloc[0]
        return FactorSolution(
            n_components=k,
            iter=it,
            spectra=load_df_from_npz(self.paths["iter_spectra"] % (k, it)),
            usages=load_df_from_npz(self.paths["iter_usages"] % (k, it)),
            error=float(stats["error"]),
            n_iter=int(stats["n_iter"]),
            converged=bool(stats["converged"]),
        )

    def factorize(self, worker_i=0, total_workers=1, skip_completed_runs=False):
        """
        Iteratively run NMF with prespecified parameters.

        Use the `worker_i` and `total_workers` parameters for parallelization: worker
        ``worker_i`` runs every replicate whose position in the plan modulo
        ``total_workers`` equals ``worker_i``.

        Generic kwargs for NMF are loaded from self.paths['nmf_run_parameters'];
        ``random_state`` and ``n_components`` are set from the replicate plan in
        self.paths['nmf_replicate_parameters'].

        Parameters
        ----------
        worker_i : int, optional (default=0)
            Index of this worker (0-based)

        total_workers : int, optional (default=1)
            Number of workers the plan is split across

        skip_completed_runs : bool, optional (default=False)
            Don't rerun replicates whose outputs already exist
        """
        self._initialize_dirs()
        (run_params, _nmf_kwargs) = self.load_nmf_iter_params()
        norm_counts = self.load_norm_counts()

        jobs_for_this_worker = list(
            worker_filter(work_units(run_params), worker_i, total_workers)
        )
        if len(jobs_for_this_worker) == 0:
            logger.warning("[Worker %d]. No tasks assigned.", worker_i)

        for unit in jobs_for_this_worker:
            if skip_completed_runs and self.is_complete(unit.n_components, unit.iter):
                logger.info(
                    "[Worker %d]. Skipping completed task %d.", worker_i, unit.index
                )
                continue
            logger.info("[Worker %d]. Starting task %d.", worker_i, unit.index)
            solution = run_work_unit(norm_counts, unit, _nmf_kwargs)
            self.save_factor_solution(solution)

    def combine_nmf(self, k):
        """
        Merge every replicate of rank ``k`` and save the combined spectra, usages
        and replicate errors.

        Raises
        ------
        IncompleteRankError
            if any replicate of ``k`` is missing
        """
        self._initialize_dirs()
        (run_params, _) = self.load_nmf_iter_params()
        run_params_subset = run_params[run_params.n_components == k].sort_values("iter")
        if len(run_params_subset) == 0:
            raise InvalidRankError("k={} was not part of the prepared run".format(k))
        logger.info("Combining factorizations for k=%d.", k)

        missing = [
            it for it in run_params_subset["iter"] if not self.is_complete(k, it)
        ]
        if len(missing) > 0:
            raise IncompleteRankError(
                "k={}: {}/{} replicates missing (e.g. replicate {}); run factorize "
                "for every worker first".format(
                    k, len(missing), len(run_params_subset), missing[0]
                )
            )

        combined = combine_replicates(
            (self.load_factor_solution(k, it) for it in run_params_subset["iter"]),
            k,
            len(run_params_subset),
        )

        save_df_to_npz(combined.spectra, self.paths["merged_spectra"] % k)
        save_df_to_npz(combined.usages, self.paths["merged_usages"] % k)
        save_df_to_npz(combined.errors, self.paths["merged_errors"] % k)
        save_df_to_text(combined.spectra, self.paths["merged_spectra__txt"] % k)
        save_df_to_text(combined.usages, self.paths["merged_usages__txt"] % k)
        return combined

    def combine(self, components=None):
        (run_params, _) = self.load_nmf_iter_params()

        if isinstance(components, (int, np.integer)):
            ks = [components]
        elif components is None:
            ks = sorted(set(run_params.n_components))
        else:
            ks = components

        return [self.combine_nmf(k) for k in ks]

    def load_combined(self, k, usages=False):
        """
        Combined output of rank ``k``; usages are only read if ``usages=True``

        Raises
        ------
        IncompleteRankError
            if ``k`` has not been combined
        """
        self._initialize_dirs()
        if not (
            os.path.isfile(self.paths["merged_spectra"] % k)
            and os.path.isfile(self.paths["merged_errors"] % k)
        ):
            raise IncompleteRankError(
                "k={} has not been combined; run combine first".format(k)
            )
        return CombinedRankOutput(
            n_components=k,
            spectra=load_df_from_npz(self.paths["merged_spectra"] % k),
            usages=load_df_from_npz(self.paths["merged_usages"] % k) if usages else None,
            errors=load_df_from_npz(self.paths["merged_errors"] % k),
        )

    def k_selection_plot(self, close_fig=True):
        """
        Score stability and error for every planned k, save the table and plot it.
        The choice of k is left to the user.
        """
        self._initialize_dirs()
        (run_params, _nmf_kwargs) = self.load_nmf_iter_params()
        norm_counts = self.load_norm_counts()

        stats = k_selection_table(
            score_rank(self.load_combined(k), norm_counts, _nmf_kwargs)
            for k in sorted(set(run_params.n_components))
        )

        save_df_to_npz(stats, self.paths["k_selection_stats"])
        save_df_to_text(stats.set_index("k"), self.paths["k_selection_stats__txt"])
        plot_k_selection(stats, self.paths["k_selection_plot"], close_fig=close_fig)
        return stats

    def consensus(
        self,
        k,
        density_threshold=0.5,
        local_neighborhood_size=0.30,
        show_clustering=False,
        close_clustergram_fig=True,
    ):
        """
        Build and save the consensus solution of rank ``k``.

        Parameters
        ----------
        k : int
            Number of components; must have been combined

        density_threshold : float, optional (default=0.5)
            Fraction of each cluster's replicate spectra to keep, densest first

        local_neighborhood_size : float, optional (default=0.30)
            Fraction of the number of replicates used as nearest neighbors for
            local density

        show_clustering : bool, optional (default=False)
            Save a clustergram figure summarizing the spectra clustering

        Returns
        -------
        ConsensusSolution
        """
        self._initialize_dirs()
        combined = self.load_combined(k)
        (_, _nmf_kwargs) = self.load_nmf_iter_params()
        norm_counts = self.load_norm_counts()
        tpm = sc.read(self.paths["tpm"])
        tpm_stats = load_df_from_npz(self.paths["tpm_stats"])

        solution = build_consensus(
            combined.spectra,
            norm_counts,
            k,
            _nmf_kwargs,
            density_threshold=density_threshold,
            local_neighborhood_size=local_neighborhood_size,
            tpm=tpm,
            tpm_stats=tpm_stats,
        )
        dt = dt_label(density_threshold)

        save_df_to_npz(solution.spectra, self.paths["consensus_spectra"] % (k, dt))
        save_df_to_npz(solution.usages, self.paths["consensus_usages"] % (k, dt))
        save_df_to_npz(solution.stats, self.paths["consensus_stats"] % (k, dt))
        save_df_to_npz(solution.spectra_score, self.paths["gene_spectra_score"] % (k, dt))
        save_df_to_npz(solution.spectra_tpm, self.paths["gene_spectra_tpm"] % (k, dt))
        save_df_to_text(solution.spectra, self.paths["consensus_spectra__txt"] % (k, dt))
        save_df_to_text(solution.usages, self.paths["consensus_usages__txt"] % (k, dt))
        save_df_to_text(
            solution.spectra_score, self.paths["gene_spectra_score__txt"] % (k, dt)
        )
        save_df_to_text(
            solution.spectra_tpm, self.paths["gene_spectra_tpm__txt"] % (k, dt)
        )

        if show_clustering:
            plot_clustergram(
                solution,
                self.paths["clustering_plot"] % (k, dt),
                close_fig=close_clustergram_fig,
            )
        return solution

    def cleanup(self):
        """Remove per-replicate and intermediate consensus files from cnmf_tmp"""
        tmp_dir = os.path.join(self.run_dir, "cnmf_tmp")
        files = (
            glob.glob(os.path.join(tmp_dir, "*.iter_*.df.npz"))
            + glob.glob(os.path.join(tmp_dir, "*.consensus.df.npz"))
            + glob.glob(os.path.join(tmp_dir, "*.gene_spectra_*"))
            + glob.glob(os.path.join(tmp_dir, "*.stats.k_*.dt_*"))
        )
        for file in files:
            os.remove(file)
        logger.info("Removed %d intermediate files from %s", len(files), tmp_dir)

    def clear_run_outputs(self):
        """
        Remove replicate, merged, k selection and consensus outputs of a previous
        plan, so a new ``prepare`` never combines replicates it did not plan.
        """
        tmp_dir = os.path.join(self.run_dir, "cnmf_tmp")
        patterns = [
            os.path.join(tmp_dir, self.name + ".*.iter_*.df.npz"),
            os.path.join(tmp_dir, self.name + ".*.merged.df.npz"),
            os.path.join(tmp_dir, self.name + ".*.k_*.dt_*"),
            os.path.join(self.run_dir, self.name + ".*.merged.txt"),
            os.path.join(self.run_dir, self.name + ".*.k_*.dt_*"),
            os.path.join(self.run_dir, self.name + ".k_selection*"),
            os.path.join(self.run_dir, self.name + "_k*_dt*.h5ad"),
        ]
        files = [f for pattern in patterns for f in glob.glob(pattern)]
        for file in files:
            os.remove(file)
        if len(files) > 0:
            logger.info(
                "Removed %d outputs of a previous run from %s", len(files), self.run_dir
            )


def prepare(args):
    argdict = vars(args)

    cnmf_obj = cNMF(output_dir=argdict["output_dir"], name=argdict["name"])
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


def factorize(args):
    argdict = vars(args)

    cnmf_obj = cNMF(output_dir=argdict["output_dir"], name=argdict["name"])
    cnmf_obj.factorize(
        worker_i=argdict["worker_index"],
        total_workers=argdict["n_jobs"],
        skip_completed_runs=argdict["skip_completed_runs"],
    )


def combine(args):
    argdict = vars(args)

    cnmf_obj = cNMF(output_dir=argdict["output_dir"], name=argdict["name"])
    cnmf_obj.combine(components=argdict["components"])


def consensus(args):
    argdict = vars(args)

    cnmf_obj = cNMF(output_dir=argdict["output_dir"], name=argdict["name"])
    (run_params, _) = cnmf_obj.load_nmf_iter_params()

    if argdict["components"] is None:
        ks = sorted(set(run_params.n_components))
    else:
        ks = argdict["components"]

    for k in ks:
        cnmf_obj.consensus(
            k,
            density_threshold=argdict["local_density_threshold"],
            local_neighborhood_size=argdict["local_neighborhood_size"],
            show_clustering=argdict["show_clustering"],
        )
        tpm = sc.read(cnmf_obj.paths["tpm"])
        if "raw_counts" in tpm.layers:
            tpm.X = tpm.layers["raw_counts"].copy()
        load_results(
            tpm,
            output_dir=cnmf_obj.output_dir,
            name=cnmf_obj.name,
            k=k,
            dt=argdict["local_density_threshold"],
            key="cnmf",
        )
        save_adata(
            tpm,
            os.path.join(
                cnmf_obj.run_dir,
                cnmf_obj.name
                + "_k{}_dt{}.h5ad".format(
                    str(k), dt_label(argdict["local_density_threshold"])
                ),
            ),
        )

    if argdict["cleanup"]:
        cnmf_obj.cleanup()


def k_selection(args):
    argdict = vars(args)

    cnmf_obj = cNMF(output_dir=argdict["output_dir"], name=argdict["name"])
    cnmf_obj.k_selection_plot()


def add_run_arguments(parser):
    parser.add_argument(
        "--name",
        type=str,
        help="Name for analysis. All output will be placed in [output-dir]/[name]/...",
        nargs="?",
        default="cNMF",
    )
    parser.add_argument(
        "--output-dir",
        type=str,
        help="Output directory. All output will be placed in [output-dir]/[name]/...",
        nargs="?",
        default=".",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging verbosity",
        default="INFO",
    )


def add_prepare_arguments(parser):
    parser.add_argument(
        "counts",
        type=str,
        help="Input (cell x gene) counts matrix as .h5ad, df.npz, tab delimited text file, .mtx file or 10x-style directory",
    )
    parser.add_argument(
        "-k",
        "--components",
        type=int,
        help='Number of components (k) for matrix factorization. Several can be specified with "-k 8 9 10"',
        nargs="+",
        default=[7, 8, 9, 10, 11, 12, 13, 14, 15, 16, 17, 18],
    )
    parser.add_argument(
        "-n",
        "--n-iter",
        type=int,
        help="Number of factorization replicates",
        default=50,
    )
    parser.add_argument(
        "--subset",
        help="AnnData.obs column name to subset on before performing NMF. Cells to keep should be True or 1",
        nargs="*",
    )
    parser.add_argument(
        "-l",
        "--layer",
        type=str,
        default=None,
        help="Key from .layers to use. Default '.X'.",
    )
    parser.add_argument(
        "--seed", type=int, help="Seed for pseudorandom number generation", default=18,
    )
    parser.add_argument(
        "--genes-file",
        type=str,
        help="File containing a list of genes to include, one gene per line. Must match column labels of counts matrix.",
        default=None,
    )
    parser.add_argument(
        "--numgenes",
        type=int,
        help="Number of high variance genes to use for matrix factorization.",
        default=2000,
    )
    parser.add_argument(
        "--tpm",
        type=str,
        help="Pre-computed (cell x gene) TPM values as .h5ad, df.npz or tab separated txt file. If not provided TPM will be calculated automatically",
        default=None,
    )
    parser.add_argument(
        "--beta-loss",
        type=str,
        choices=["frobenius", "kullback-leibler", "itakura-saito"],
        help="Loss function for NMF.",
        default="frobenius",
    )
    parser.add_argument(
        "--max-nmf-iter",
        type=int,
        help="Maximum number of iterations for a single factorization",
        default=400,
    )
    parser.add_argument(
        "--tol",
        type=float,
        help="Tolerance of the stopping condition for a single factorization",
        default=1e-4,
    )
    parser.add_argument(
        "--densify",
        dest="densify",
        help="Treat the input data as non-sparse",
        action="store_true",
        default=False,
    )


def add_consensus_arguments(parser):
    parser.add_argument(
        "--local-density-threshold",
        type=float,
        help="Fraction of each cluster's replicate spectra kept by local density filtering. Must be >0 and <=1",
        default=0.5,
    )
    parser.add_argument(
        "--local-neighborhood-size",
        type=float,
        help="Fraction of the number of replicates to use as nearest neighbors for local density filtering",
        default=0.30,
    )
    parser.add_argument(
        "--show-clustering",
        dest="show_clustering",
        help="Produce a clustergram figure summarizing the spectra clustering",
        action="store_true",
    )


def run_command(args, parser):
    """
    Set up logging for the run in ``args`` and call its stage. Returns the exit
    status: 0 on success, 1 if the stage failed.
    """
    if getattr(args, "func", None) is None:
        parser.print_help()
        return 1

    setup_logger(
        out_dir=os.path.join(args.output_dir, args.name),
        name=args.name,
        level=args.log_level,
    )
    try:
        args.func(args)
    except ConsensusNMFError as e:
        logger.error("%s failed: %s: %s", args.func.__name__, type(e).__name__, e)
        return 1
    return 0


def main(argv=None):
    import argparse

    parser = argparse.ArgumentParser(prog="cnmf")
    parser.add_argument(
        "-V", "--version", action="version", version=__version__,
    )
    subparsers = parser.add_subparsers()

    prepare_parser = subparsers.add_parser(
        "prepare", help="Prep scRNA-seq data for cNMF analysis.",
    )
    add_prepare_arguments(prepare_parser)
    add_run_arguments(prepare_parser)
    prepare_parser.set_defaults(func=prepare)

    factorize_parser = subparsers.add_parser(
        "factorize", help="Run NMF iteratively to generate factors for consensus.",
    )
    add_run_arguments(factorize_parser)
    factorize_parser.add_argument(
        "-j",
        "--n-jobs",
        "--total-workers",
        dest="n_jobs",
        type=int,
        help="Total number of workers to distribute jobs to",
        default=1,
    )
    factorize_parser.add_argument(
        "--worker-index",
        type=int,
        help="Index of current worker (the first worker should have index 0)",
        default=0,
    )
    factorize_parser.add_argument(
        "--skip-completed-runs",
        help="Skip replicates whose outputs already exist, e.g. to resume a stopped worker",
        action="store_true",
    )
    factorize_parser.set_defaults(func=factorize)

    combine_parser = subparsers.add_parser(
        "combine", help="Combine factors from NMF iterations for each k.",
    )
    add_run_arguments(combine_parser)
    combine_parser.add_argument(
        "-k",
        "--components",
        type=int,
        help="Values of k to combine. Default: every k that was prepared",
        nargs="+",
        default=None,
    )
    combine_parser.set_defaults(func=combine)

    k_selection_parser = subparsers.add_parser(
        "k_selection_plot",
        help="Plot stats across k values to choose optimal k for consensus.",
    )
    add_run_arguments(k_selection_parser)
    k_selection_parser.set_defaults(func=k_selection)

    consensus_parser = subparsers.add_parser(
        "consensus", help="Calculate consensus factors from NMF iterations.",
    )
    add_run_arguments(consensus_parser)
    consensus_parser.add_argument(
        "-k",
        "--components",
        type=int,
        help="Values of k to build a consensus for. Default: every k that was prepared",
        nargs="+",
        default=None,
    )
    add_consensus_arguments(consensus_parser)
    consensus_parser.add_argument(
        "--cleanup",
        help="Remove per-replicate and intermediate files after saving results",
        action="store_true",
    )
    consensus_parser.set_defaults(func=consensus)

    args = parser.parse_args(argv)
    return run_command(args, parser)


if __name__ == "__main__":
    sys.exit(main())
