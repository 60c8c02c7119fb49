"""Scoring engine for gene subsets.

Scores a kNN graph built on a candidate gene subset against the reference
graph built on the scored genes ("full transcriptome" within the scope).
"""

from typing import Optional, Sequence
import logging

import numpy as np
import pandas as pd

from ..dataset import ExpressionData
from ..graph import GraphBuilder, GraphConfig, KNNGraph
from .config import ScoringConfig
from .metrics import (
    ScoringContext,
    gene_prediction_scores,
    neighborhood_preservation_scores,
    prediction_correlation,
    predict_expression,
)


class ScoringEngine:
    """Computes gene (prediction) scores and cell (neighbourhood) scores.

    The reference graph and the reference prediction correlations are built
    lazily on first use and reused for the lifetime of the engine.

    Parameters
    ----------
    data : ExpressionData
        Expression data (read-only)
    builder : GraphBuilder, optional
        Graph builder. If None, one is created with default GraphConfig.
    config : ScoringConfig, optional
        Scoring configuration. If None, uses defaults.
    logger : logging.Logger, optional
        Logger instance. If None, uses the module logger.

    Example
    -------
    >>> engine = ScoringEngine(data, GraphBuilder(data, GraphConfig(n_neighbors=10)))
    >>> graph = engine.builder.build(["GeneA", "GeneB"])
    >>> engine.gene_scores(graph).mean()
    """

    def __init__(
        self,
        data: ExpressionData,
        builder: Optional[GraphBuilder] = None,
        config: Optional[ScoringConfig] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.data = data
        self.config = config or ScoringConfig()
        self.logger = logger or logging.getLogger(__name__)
        self.builder = builder or GraphBuilder(data, GraphConfig(), self.logger)

        if self.config.genes_all is not None:
            self.scope_idx = data.gene_indices(self.config.genes_all)
        else:
            self.scope_idx = np.arange(data.n_genes)
        self.scope_genes = data.genes[self.scope_idx]
        self._values = data.matrix[:, self.scope_idx]

        self._reference_graph: Optional[KNNGraph] = None
        self._reference_correlation: Optional[np.ndarray] = None

    @property
    def reference_graph(self) -> KNNGraph:
        """kNN graph on every scored gene."""
        if self._reference_graph is None:
            self.logger.info(
                "Building reference graph on %d genes (k=%d)",
                len(self.scope_idx),
                self.builder.n_neighbors,
            )
            self._reference_graph = self.builder.build_from_indices(self.scope_idx)
        return self._reference_graph

    @property
    def reference_correlation(self) -> np.ndarray:
        """Prediction correlation of every scored gene under the reference graph."""
        if self._reference_correlation is None:
            values = self.scope_values
            predicted = predict_expression(self.reference_graph, values)
            self._reference_correlation = prediction_correlation(values, predicted)
            n_poor = int((self._reference_correlation <= 0).sum())
            if n_poor:
                self.logger.warning(
                    "%d genes are not predictable from the reference graph "
                    "(correlation <= 0); their scores are not normalized",
                    n_poor,
                )
        return self._reference_correlation

    @property
    def scope_values(self) -> np.ndarray:
        return self._values

    def context(self) -> ScoringContext:
        """Plain-array scoring state for worker processes."""
        return ScoringContext(
            values=self.scope_values,
            reference_correlation=(
                self.reference_correlation if self.config.normalize else None
            ),
        )

    def _gene_score_array(self, graph: KNNGraph) -> np.ndarray:
        reference = self.reference_correlation if self.config.normalize else None
        return gene_prediction_scores(graph, self.scope_values, reference)

    def gene_scores(self, graph: KNNGraph) -> pd.Series:
        """Prediction score in [0, 1] for every scored gene."""
        scores = self._gene_score_array(graph)
        return pd.Series(scores, index=self.scope_genes.copy(), name="gene_score")

    def cell_scores(self, graph: KNNGraph) -> pd.Series:
        """Neighbourhood preservation score for every cell."""
        scores = neighborhood_preservation_scores(graph, self.reference_graph)
        return pd.Series(scores, index=self.data.cells.copy(), name="cell_score")

    def objective(self, graph: KNNGraph) -> float:
        """Mean gene score, the greedy selection objective."""
        return float(self._gene_score_array(graph).mean())

    def score_genes(self, genes: Sequence[str]) -> pd.Series:
        """Build the graph on `genes` and return gene scores."""
        return self.gene_scores(self.builder.build(genes))

    def score_cells(self, genes: Sequence[str]) -> pd.Series:
        """Build the graph on `genes` and return cell scores."""
        return self.cell_scores(self.builder.build(genes))
