from __future__ import annotations
from typing import Callable
import numpy as np


def split_point_halves(x: np.ndarray, y: np.ndarray, n_splits: int):
    """
    Yield (x, y) halves of the point set. For each split angle the points are
    rotated about their centroid and divided at the median of the rotated x.
    Split angles are k * (pi/2) / n_splits for k = 1..n_splits.
    """
    x = np.asarray(x, dtype=float)
    y = np.asarray(y, dtype=float)
    cx, cy = x.mean(), y.mean()
    for k in range(1, n_splits + 1):
        theta = (np.pi / 2.0) / n_splits * k
        xr = (x - cx) * np.cos(theta) - (y - cy) * np.sin(theta)
        median = np.median(xr)
        lower = xr < median
        yield x[lower], y[lower]
        yield x[~lower], y[~lower]


def split_halves_sd(x, y, n_splits: int, fit: Callable[[np.ndarray, np.ndarray], np.ndarray],
                    n_params: int) -> np.ndarray:
    """
    Sample SD (ddof=1) of each parameter across the 2 * n_splits half fits.
    `fit` maps half-set points to a parameter vector (NaN for a failed fit).
    """
    if n_splits < 1:
        return np.full(n_params, np.nan)
    values = np.array([fit(hx, hy) for hx, hy in split_point_halves(x, y, n_splits)], dtype=float)
    finite = np.isfinite(values)
    counts = finite.sum(axis=0)
    sd = np.full(n_params, np.nan)
    for j in np.flatnonzero(counts >= 2):
        sd[j] = np.std(values[finite[:, j], j], ddof=1)
    return sd
