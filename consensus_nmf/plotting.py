# -*- coding: utf-8 -*-
"""
diagnostic figures for k selection and consensus clustering

@author: C Heiser
"""
import numpy as np
import matplotlib.pyplot as plt

from fastcluster import linkage
from matplotlib import gridspec
from scipy.cluster.hierarchy import leaves_list
from scipy.spatial.distance import squareform

from .utils import fast_euclidean


def plot_k_selection(stats, filename, close_fig=True):
    """
    Borrowed from Alexandrov Et Al. 2013 Deciphering Mutational Signatures
    publication in Cell Reports
    """
    fig = plt.figure(figsize=(6, 4))
    ax1 = fig.add_subplot(111)
    ax2 = ax1.twinx()

    ax1.plot(stats.k, stats.stability, "o-", color="b")
    ax1.set_ylabel("Stability", color="b", fontsize=15)
    for tl in ax1.get_yticklabels():
        tl.set_color("b")

    ax2.plot(stats.k, stats.prediction_error, "o-", color="r")
    ax2.set_ylabel("Error", color="r", fontsize=15)
    for tl in ax2.get_yticklabels():
        tl.set_color("r")

    ax1.set_xlabel("Number of Components", fontsize=15)
    ax1.grid(True)
    plt.tight_layout()
    fig.savefig(filename, dpi=250)
    if close_fig:
        plt.close(fig)
    return fig


def _cluster_order(topics_dist, labels):
    spectra_order = []
    for cl in sorted(set(labels)):

        cl_filter = labels == cl

        if cl_filter.sum() > 1:
            cl_dist = squareform(topics_dist[cl_filter, :][:, cl_filter], checks=False)
            cl_dist[cl_dist < 0] = 0  # Rarely get floating point arithmetic issues
            cl_link = linkage(cl_dist, "average")
            cl_leaves_order = leaves_list(cl_link)

            spectra_order += list(np.where(cl_filter)[0][cl_leaves_order])
        else:
            ## Corner case where a component only has one element
            spectra_order += list(np.where(cl_filter)[0])
    return spectra_order


def plot_clustergram(solution, filename, close_fig=True):
    """
    Distance heatmap of the retained replicate spectra ordered by consensus cluster,
    with a histogram of local density marking the discarded spectra.

    Parameters
    ----------
    solution : ConsensusSolution
        Output of ``build_consensus`` with density filtering applied
    """
    kept = solution.density_filter.values
    l2_spectra = solution.l2_spectra.loc[kept, :]
    labels = solution.cluster_labels.values[kept]
    topics_dist = squareform(fast_euclidean(l2_spectra.values))
    spectra_order = _cluster_order(topics_dist, labels)

    width_ratios = [0.5, 9, 0.5, 4, 1]
    height_ratios = [0.5, 9]
    fig = plt.figure(figsize=(sum(width_ratios), sum(height_ratios)))
    gs = gridspec.GridSpec(
        len(height_ratios),
        len(width_ratios),
        fig,
        0.01,
        0.01,
        0.98,
        0.98,
        height_ratios=height_ratios,
        width_ratios=width_ratios,
        wspace=0,
        hspace=0,
    )
    axis_kwargs = dict(
        xscale="linear",
        yscale="linear",
        xticks=[],
        yticks=[],
        xlabel="",
        ylabel="",
        frameon=True,
    )

    dist_ax = fig.add_subplot(gs[1, 1], **axis_kwargs)
    D = topics_dist[spectra_order, :][:, spectra_order]
    dist_ax.imshow(
        D, interpolation="none", cmap="viridis", aspect="auto", rasterized=True
    )

    left_ax = fig.add_subplot(gs[1, 0], **axis_kwargs)
    left_ax.imshow(
        labels[spectra_order].reshape(-1, 1),
        interpolation="none",
        cmap="Spectral",
        aspect="auto",
        rasterized=True,
    )

    top_ax = fig.add_subplot(gs[0, 1], **axis_kwargs)
    top_ax.imshow(
        labels[spectra_order].reshape(1, -1),
        interpolation="none",
        cmap="Spectral",
        aspect="auto",
        rasterized=True,
    )

    hist_gs = gridspec.GridSpecFromSubplotSpec(
        3, 1, subplot_spec=gs[1, 3], wspace=0, hspace=0
    )
    hist_ax = fig.add_subplot(
        hist_gs[0, 0],
        xscale="linear",
        yscale="linear",
        xlabel="",
        ylabel="",
        frameon=True,
        title="Local density histogram",
    )
    density = solution.local_density.values
    bins = np.linspace(0, max(density.max(), 1e-6), 50)
    hist_ax.hist(
        [density[kept], density[~kept]],
        bins=bins,
        stacked=True,
        color=["tab:blue", "tab:gray"],
        label=["kept", "removed"],
    )
    hist_ax.yaxis.tick_right()
    hist_ax.legend(loc="upper right", frameon=False)
    hist_ax.set_xlabel(
        "Mean distance to k nearest neighbors\n\n%d/%d (%.0f%%) spectra were removed\nbefore building consensus"
        % ((~kept).sum(), len(kept), 100 * (~kept).mean())
    )

    fig.savefig(filename, dpi=250)
    if close_fig:
        plt.close(fig)
    return fig
