"""Score primitives shared by selection, evaluation and redundancy.

Gene score
----------
Every gene is predicted, per cell, as the mean of its expression over the
cell's k neighbours. The Pearson correlation between predicted and observed
values is optionally divided by the same correlation under the reference
graph and clipped to [0, 1].

Cell score
----------
Jaccard index J between a cell's neighbour set and its reference neighbour
set, corrected for the overlap expected between two random k-sets drawn from
the same pool of ``pool`` cells::

    e  = k^2 / pool
    J0 = e / (2k - e)
    score = (J - J0) / (1 - J0)

so a random graph scores 0 on average, an identical graph scores 1 and the
minimum is -J0 / (1 - J0).
"""

from dataclasses import dataclass
from typing import Optional

import numpy as np

from ..graph.builder import KNNGraph

CONSTANT_RTOL = 1e-12


def predict_expression(graph: KNNGraph, values: np.ndarray) -> np.ndarray:
    """Mean expression over each cell's neighbours, shape of `values`."""
    return np.asarray(graph.to_sparse() @ values)


def _is_constant(values: np.ndarray) -> np.ndarray:
    spread = np.ptp(values, axis=0)
    scale = np.maximum(np.abs(values).max(axis=0), 1.0)
    return spread <= CONSTANT_RTOL * scale


def prediction_correlation(observed: np.ndarray, predicted: np.ndarray) -> np.ndarray:
    """Column-wise Pearson correlation between observed and predicted values.

    Constant observed columns are predicted exactly and get 1.0. Columns with
    a constant prediction but varying observation get 0.0.
    """
    obs_const = _is_constant(observed)
    pred_const = _is_constant(predicted)

    obs_c = observed - observed.mean(axis=0)
    pred_c = predicted - predicted.mean(axis=0)
    num = (obs_c * pred_c).sum(axis=0)
    den = np.sqrt((obs_c ** 2).sum(axis=0) * (pred_c ** 2).sum(axis=0))

    corr = np.zeros(observed.shape[1], dtype=np.float64)
    valid = ~obs_const & ~pred_const & (den > 0)
    corr[valid] = num[valid] / den[valid]
    corr[obs_const] = 1.0
    return np.clip(corr, -1.0, 1.0)


def gene_prediction_scores(
    graph: KNNGraph,
    values: np.ndarray,
    reference_correlation: Optional[np.ndarray] = None,
) -> np.ndarray:
    """Per-gene prediction score in [0, 1].

    Parameters
    ----------
    graph : KNNGraph
        Graph built on the candidate gene subset
    values : np.ndarray
        Observed expression of the scored genes (n_cells, n_scored)
    reference_correlation : np.ndarray, optional
        Prediction correlation of each scored gene under the reference graph.
        Positive entries normalize the score.

    Returns
    -------
    np.ndarray
        Score per scored gene
    """
    corr = prediction_correlation(values, predict_expression(graph, values))
    if reference_correlation is not None:
        ref = np.asarray(reference_correlation, dtype=np.float64)
        positive = ref > 0
        corr = corr.copy()
        corr[positive] = corr[positive] / ref[positive]
    return np.clip(corr, 0.0, 1.0)


def expected_jaccard(n_neighbors: int, pool_sizes: np.ndarray) -> np.ndarray:
    """Jaccard index expected between two random k-sets from each pool."""
    pool = np.asarray(pool_sizes, dtype=np.float64)
    expected_overlap = n_neighbors ** 2 / pool
    return expected_overlap / (2 * n_neighbors - expected_overlap)


def neighbor_overlap(graph: KNNGraph, reference: KNNGraph) -> np.ndarray:
    """Number of shared neighbours per cell between two graphs."""
    a = graph.to_sparse()
    b = reference.to_sparse()
    a.data[:] = 1.0
    b.data[:] = 1.0
    return np.asarray(a.multiply(b).sum(axis=1)).ravel().astype(np.int64)


def neighborhood_preservation_scores(graph: KNNGraph, reference: KNNGraph) -> np.ndarray:
    """Chance-corrected Jaccard overlap per cell (see module docstring)."""
    if graph.n_neighbors != reference.n_neighbors:
        raise ValueError(
            f"Graphs differ in k: {graph.n_neighbors} vs {reference.n_neighbors}"
        )
    if graph.n_cells != reference.n_cells:
        raise ValueError(f"Graphs differ in cells: {graph.n_cells} vs {reference.n_cells}")

    k = graph.n_neighbors
    overlap = neighbor_overlap(graph, reference)
    jaccard = overlap / (2 * k - overlap)
    baseline = expected_jaccard(k, reference.pool_sizes)

    scores = np.ones(graph.n_cells, dtype=np.float64)
    # When k equals the pool size every graph picks the same neighbours
    informative = baseline < 1.0
    scores[informative] = (jaccard[informative] - baseline[informative]) / (
        1.0 - baseline[informative]
    )
    return scores


@dataclass
class ScoringContext:
    """Pre-computed scoring state shared across parallel workers.

    This avoids recomputing the reference correlations for each candidate.
    """

    values: np.ndarray
    reference_correlation: Optional[np.ndarray] = None

    def gene_scores(self, graph: KNNGraph) -> np.ndarray:
        return gene_prediction_scores(graph, self.values, self.reference_correlation)

    def objective(self, graph: KNNGraph) -> float:
        """Mean gene score over the scored genes."""
        return float(self.gene_scores(graph).mean())
