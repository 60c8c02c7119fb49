"""Configuration for kNN graph construction."""

from dataclasses import dataclass
from typing import Any, Dict

BATCH_STRATEGIES = ("within", "recenter")
GRAPH_METHODS = ("exact", "sklearn")


@dataclass
class GraphConfig:
    """Configuration for the kNN graph builder.

    Attributes
    ----------
    n_neighbors : int
        Number of neighbours per cell (k)
    batch_strategy : str
        How batch labels are handled: "within" searches neighbours among
        cells of the same batch only; "recenter" centres every gene per batch
        before a single global search
    method : str
        "exact" (block-wise distances, ties broken by cell id) or
        "sklearn" (NearestNeighbors; tie order not guaranteed)
    chunk_size : int
        Rows per distance block for the exact method
    """

    n_neighbors: int = 5
    batch_strategy: str = "within"
    method: str = "exact"
    chunk_size: int = 1024

    def __post_init__(self) -> None:
        if self.batch_strategy not in BATCH_STRATEGIES:
            raise ValueError(
                f"Unknown batch strategy '{self.batch_strategy}'. "
                f"Expected one of {BATCH_STRATEGIES}"
            )
        if self.method not in GRAPH_METHODS:
            raise ValueError(
                f"Unknown graph method '{self.method}'. Expected one of {GRAPH_METHODS}"
            )
        if self.chunk_size < 1:
            raise ValueError(f"chunk_size must be positive, got {self.chunk_size}")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "GraphConfig":
        """Create GraphConfig from dictionary."""
        return cls(
            n_neighbors=data.get("n_neighbors", 5),
            batch_strategy=data.get("batch_strategy", "within"),
            method=data.get("method", "exact"),
            chunk_size=data.get("chunk_size", 1024),
        )
