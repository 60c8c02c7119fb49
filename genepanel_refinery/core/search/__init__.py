"""Greedy gene panel search.

Selects genes one at a time so that the kNN graph built on the panel best
reconstructs the expression of every scored gene.

Example Usage
-------------
>>> from genepanel_refinery.core.search import GeneSearchEngine
>>> from genepanel_refinery.core.config import PanelDesignConfig
>>> engine = GeneSearchEngine(data, PanelDesignConfig())
>>> result = engine.search(n_genes_total=50, genes_base=["Sox2", "Pax6"])
>>> result.panel.head()
"""

from .engine import (
    PANEL_COLUMNS,
    GeneSearchEngine,
    GeneSearchResult,
    SearchStatus,
    gene_search,
)
from .parallel import CandidateContext, score_candidates

__all__ = [
    # Engine
    "GeneSearchEngine",
    "GeneSearchResult",
    "SearchStatus",
    "PANEL_COLUMNS",
    "gene_search",
    # Parallel
    "CandidateContext",
    "score_candidates",
]
