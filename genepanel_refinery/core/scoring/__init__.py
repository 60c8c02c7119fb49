"""Gene and cell scoring for gene subsets.

Gene scores measure how well each gene's expression is reconstructed from
neighbours defined by a gene subset; cell scores measure how well each
cell's neighbourhood in the reference graph is preserved.

Example Usage
-------------
>>> from genepanel_refinery.core.scoring import ScoringEngine, ScoringConfig
>>> engine = ScoringEngine(data, builder, ScoringConfig(normalize=True))
>>> gene_scores = engine.score_genes(["GeneA", "GeneB"])
>>> cell_scores = engine.score_cells(["GeneA", "GeneB"])
"""

from .config import ScoringConfig
from .engine import ScoringEngine
from .metrics import (
    ScoringContext,
    expected_jaccard,
    gene_prediction_scores,
    neighbor_overlap,
    neighborhood_preservation_scores,
    predict_expression,
    prediction_correlation,
)

__all__ = [
    "ScoringConfig",
    "ScoringEngine",
    "ScoringContext",
    "expected_jaccard",
    "gene_prediction_scores",
    "neighbor_overlap",
    "neighborhood_preservation_scores",
    "predict_expression",
    "prediction_correlation",
]
