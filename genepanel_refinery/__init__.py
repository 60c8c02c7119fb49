"""GenePanel-Refinery: Gene panel design for targeted spatial transcriptomics.

This package provides tools for:
- Greedy selection of gene panels that preserve the cell-cell kNN graph
- Evaluation of a panel across panel sizes (cell, gene and celltype scores)
- Celltype mapping from kNN majority vote
- Per-gene redundancy estimation within a panel

Example usage:
    >>> from genepanel_refinery import ExpressionData, gene_search, evaluate_library
    >>>
    >>> data = ExpressionData.from_anndata(adata, celltype_key="celltype")
    >>> result = gene_search(data, n_genes_total=50)
    >>> stats = evaluate_library(data, result.genes, n_genes_step=10)
"""

__version__ = "0.1.0"

from .core.config import PanelDesignConfig
from .core.dataset import ExpressionData
from .core.errors import (
    EmptyGeneSubset,
    InsufficientCells,
    InsufficientGenes,
    InvalidNeighborCount,
    MissingLabels,
    PanelDesignError,
    UnknownGene,
)
from .core.evaluation import (
    CelltypeMapper,
    LibraryEvaluator,
    RedundancyEstimator,
    evaluate_library,
    estimate_redundancy,
)
from .core.search import GeneSearchEngine, gene_search

__all__ = [
    "__version__",
    "PanelDesignConfig",
    "ExpressionData",
    "GeneSearchEngine",
    "gene_search",
    "LibraryEvaluator",
    "evaluate_library",
    "CelltypeMapper",
    "RedundancyEstimator",
    "estimate_redundancy",
    "PanelDesignError",
    "InsufficientCells",
    "InsufficientGenes",
    "EmptyGeneSubset",
    "UnknownGene",
    "MissingLabels",
    "InvalidNeighborCount",
]
