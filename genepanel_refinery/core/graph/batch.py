"""Batch handling for neighbour search.

Both strategies are symmetric over batches: relabelling batches never
changes the resulting graph.
"""

from typing import List

import numpy as np


def recenter_by_batch(matrix: np.ndarray, batch_codes: np.ndarray) -> np.ndarray:
    """Remove per-batch gene means, keeping the global gene means.

    Parameters
    ----------
    matrix : np.ndarray
        Expression matrix (n_cells, n_genes)
    batch_codes : np.ndarray
        Integer batch code per cell

    Returns
    -------
    np.ndarray
        New matrix where every batch has the global mean for every gene
    """
    corrected = np.array(matrix, dtype=np.float64)
    global_mean = corrected.mean(axis=0)
    for code in np.unique(batch_codes):
        mask = batch_codes == code
        corrected[mask] += global_mean - corrected[mask].mean(axis=0)
    return corrected


def batch_groups(batch_codes: np.ndarray) -> List[np.ndarray]:
    """Cell indices of every batch, in batch code order."""
    return [np.flatnonzero(batch_codes == code) for code in np.unique(batch_codes)]
