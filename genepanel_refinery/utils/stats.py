"""Statistical utilities for GenePanel-Refinery.

Summaries of score distributions and distances between them.
"""

from __future__ import annotations

from typing import Dict, Iterable, Sequence, Union

import numpy as np
from scipy.stats import ks_2samp

ArrayLike = Union[Iterable[float], np.ndarray]


def _to_clean_array(values: ArrayLike) -> np.ndarray:
    """Convert input to a float array with non-finite values removed."""
    arr = np.asarray(list(values), dtype=float)
    if arr.size == 0:
        return arr
    return arr[np.isfinite(arr)]


def compute_percentiles(values: ArrayLike, percentiles: Sequence[float]) -> np.ndarray:
    """Compute percentile values ignoring NaNs.

    Parameters
    ----------
    values : ArrayLike
        Input values.
    percentiles : Sequence[float]
        Percentiles to compute (0-100).

    Returns
    -------
    np.ndarray
        Computed percentile values. Returns NaN array if input is empty.
    """
    arr = _to_clean_array(values)
    if arr.size == 0:
        return np.full(len(percentiles), np.nan)
    return np.percentile(arr, percentiles)


def summarize_scores(values: ArrayLike) -> Dict[str, float]:
    """Mean, spread and quartiles of a score distribution.

    Returns NaN entries (and n=0) for an empty input.
    """
    arr = _to_clean_array(values)
    q25, q50, q75 = compute_percentiles(arr, [25, 50, 75])
    if arr.size == 0:
        return {"n": 0, "mean": np.nan, "std": np.nan, "min": np.nan,
                "q25": q25, "median": q50, "q75": q75, "max": np.nan}
    return {
        "n": int(arr.size),
        "mean": float(arr.mean()),
        "std": float(arr.std(ddof=1)) if arr.size > 1 else 0.0,
        "min": float(arr.min()),
        "q25": float(q25),
        "median": float(q50),
        "q75": float(q75),
        "max": float(arr.max()),
    }


def ks_distance(a: ArrayLike, b: ArrayLike) -> float:
    """Compute the two-sample Kolmogorov-Smirnov statistic.

    Used to measure how much a score distribution still moves between two
    panel sizes.

    Returns
    -------
    float
        KS statistic (0 to 1). Returns NaN if either sample has <2 values.
    """
    arr_a = _to_clean_array(a)
    arr_b = _to_clean_array(b)
    if arr_a.size < 2 or arr_b.size < 2:
        return float("nan")
    return float(ks_2samp(arr_a, arr_b, alternative="two-sided").statistic)
