"""Utility functions for GenePanel-Refinery.

Provides statistical helpers for score tables.
"""

from .stats import compute_percentiles, ks_distance, summarize_scores

__all__ = [
    "compute_percentiles",
    "ks_distance",
    "summarize_scores",
]
