# -*- coding: utf-8 -*-
"""
file helpers shared by the cNMF stages

@author: C Heiser
"""
import os
import errno
import warnings
import numpy as np
import pandas as pd

from scipy.spatial.distance import squareform


def _atomic_path(filename):
    return "{}.{}.tmp".format(filename, os.getpid())


def save_df_to_npz(obj, filename):
    """
    Write ``obj`` to ``filename`` as compressed arrays. The file is written under a
    temporary name and moved into place, so a partially written file never carries
    the final name.
    """
    tmp = _atomic_path(filename)
    with warnings.catch_warnings():
        warnings.filterwarnings("ignore")
        with open(tmp, "wb") as fh:
            np.savez_compressed(
                fh,
                data=obj.values,
                index=obj.index.values,
                columns=obj.columns.values,
            )
    os.replace(tmp, filename)


def save_df_to_text(obj, filename):
    tmp = _atomic_path(filename)
    obj.to_csv(tmp, sep="\t")
    os.replace(tmp, filename)


def load_df_from_npz(filename):
    with warnings.catch_warnings():
        warnings.filterwarnings("ignore")
        with np.load(filename, allow_pickle=True) as f:
            obj = pd.DataFrame(**f)
    return obj


def check_dir_exists(path):
    """
    Checks if directory already exists or not and creates it if it doesn't
    """
    try:
        os.makedirs(path)
    except OSError as exception:
        if exception.errno != errno.EEXIST:
            raise


def fast_euclidean(mat):
    D = mat.dot(mat.T)
    squared_norms = np.diag(D).copy()
    D *= -2.0
    D += squared_norms.reshape((-1, 1))
    D += squared_norms.reshape((1, -1))
    D[D < 0] = 0
    D = np.sqrt(D)
    np.fill_diagonal(D, 0)
    return squareform(D, checks=False)


def fast_ols_all_cols(X, Y):
    pinv = np.linalg.pinv(X)
    beta = np.dot(pinv, Y)
    return beta
