"""kNN graph construction on gene subsets.

Provides exact (tie-deterministic) and sklearn-backed nearest neighbour
search with optional batch-aware handling.

Example Usage
-------------
>>> from genepanel_refinery.core.graph import GraphBuilder, GraphConfig
>>> builder = GraphBuilder(data, GraphConfig(n_neighbors=10, batch_strategy="within"))
>>> graph = builder.build(["GeneA", "GeneB"])
"""

from .config import BATCH_STRATEGIES, GRAPH_METHODS, GraphConfig
from .batch import batch_groups, recenter_by_batch
from .builder import (
    GraphBuilder,
    GraphContext,
    KNNGraph,
    build_knn_graph,
    validate_batch_sizes,
    validate_neighbor_count,
)

__all__ = [
    # Config
    "GraphConfig",
    "BATCH_STRATEGIES",
    "GRAPH_METHODS",
    # Batch handling
    "batch_groups",
    "recenter_by_batch",
    # Builder
    "GraphBuilder",
    "GraphContext",
    "KNNGraph",
    "build_knn_graph",
    "validate_batch_sizes",
    "validate_neighbor_count",
]
