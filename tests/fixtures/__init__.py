"""Test fixtures for GenePanel-Refinery.

Provides mock data generators and test utilities.
"""

from .mock_adata import (
    create_expression_frames,
    create_labels,
    create_mock_adata,
    create_tied_matrix,
    gene_names,
)

__all__ = [
    "create_expression_frames",
    "create_labels",
    "create_mock_adata",
    "create_tied_matrix",
    "gene_names",
]
