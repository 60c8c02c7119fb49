"""Evaluation of gene panels.

- library: cell/gene/celltype scores of a panel across panel sizes
- mapping: celltype mapping by kNN majority vote with confusion matrices
- redundancy: per-gene, per-celltype leave-one-out accuracy deltas

Example Usage
-------------
>>> from genepanel_refinery.core.evaluation import LibraryEvaluator, RedundancyEstimator
>>> stats = LibraryEvaluator(data, config).evaluate(panel, n_genes_step=10)
>>> redundancy = RedundancyEstimator(data, config).estimate(panel)
>>> redundancy.matrix
"""

from .library import (
    CheckpointContext,
    LibraryEvaluation,
    LibraryEvaluator,
    evaluate_library,
    resolve_checkpoints,
)
from .mapping import CelltypeMapper, MappingResult, majority_vote, map_celltypes, vote_counts
from .redundancy import (
    REDUNDANCY_COLUMNS,
    RedundancyContext,
    RedundancyEstimator,
    RedundancyResult,
    estimate_redundancy,
)

__all__ = [
    # Library evaluation
    "LibraryEvaluator",
    "LibraryEvaluation",
    "CheckpointContext",
    "evaluate_library",
    "resolve_checkpoints",
    # Mapping
    "CelltypeMapper",
    "MappingResult",
    "map_celltypes",
    "majority_vote",
    "vote_counts",
    # Redundancy
    "RedundancyEstimator",
    "RedundancyResult",
    "RedundancyContext",
    "REDUNDANCY_COLUMNS",
    "estimate_redundancy",
]
