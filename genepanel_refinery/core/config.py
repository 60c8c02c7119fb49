"""Master configuration for panel design.

Groups the per-component configurations and loads them from YAML.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from .graph.config import GraphConfig
from .scoring.config import ScoringConfig

JOBLIB_BACKENDS = ("loky", "threading", "multiprocessing")


@dataclass
class SearchConfig:
    """Configuration for the greedy gene search.

    Attributes
    ----------
    n_genes_total : int, optional
        Target panel size, including the base genes
    genes_base : List[str]
        Pre-selected genes placed first in the panel, in order
    n_jobs : int
        Workers scoring candidates in parallel (1 = serial, -1 = all cores)
    batch_size : int
        Candidates per parallel task
    backend : str
        joblib backend for the worker pool
    tie_tolerance : float
        Candidates within this distance of the best objective are tied;
        the smallest gene identifier wins
    """

    n_genes_total: Optional[int] = None
    genes_base: List[str] = field(default_factory=list)
    n_jobs: int = 1
    batch_size: int = 8
    backend: str = "loky"
    tie_tolerance: float = 1e-10

    def __post_init__(self) -> None:
        if self.backend not in JOBLIB_BACKENDS:
            raise ValueError(
                f"Unknown joblib backend '{self.backend}'. Expected one of {JOBLIB_BACKENDS}"
            )
        if self.batch_size < 1:
            raise ValueError(f"batch_size must be positive, got {self.batch_size}")
        if self.n_jobs == 0:
            raise ValueError("n_jobs must be non-zero")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SearchConfig":
        """Create SearchConfig from dictionary."""
        return cls(
            n_genes_total=data.get("n_genes_total"),
            genes_base=list(data.get("genes_base") or []),
            n_jobs=data.get("n_jobs", 1),
            batch_size=data.get("batch_size", 8),
            backend=data.get("backend", "loky"),
            tie_tolerance=data.get("tie_tolerance", 1e-10),
        )


@dataclass
class EvaluationConfig:
    """Configuration for library evaluation and redundancy estimation.

    Attributes
    ----------
    n_genes_step : int
        Checkpoint increment for series evaluation
    genes_to_assess : List[str], optional
        Panel genes assessed for redundancy. None assesses the whole panel.
    n_jobs : int
        Parallel workers for checkpoints / assessed genes
    backend : str
        joblib backend for the worker pool
    """

    n_genes_step: int = 10
    genes_to_assess: Optional[List[str]] = None
    n_jobs: int = 1
    backend: str = "loky"

    def __post_init__(self) -> None:
        if self.n_genes_step < 1:
            raise ValueError(f"n_genes_step must be positive, got {self.n_genes_step}")
        if self.backend not in JOBLIB_BACKENDS:
            raise ValueError(
                f"Unknown joblib backend '{self.backend}'. Expected one of {JOBLIB_BACKENDS}"
            )

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EvaluationConfig":
        """Create EvaluationConfig from dictionary."""
        genes = data.get("genes_to_assess")
        return cls(
            n_genes_step=data.get("n_genes_step", 10),
            genes_to_assess=list(genes) if genes is not None else None,
            n_jobs=data.get("n_jobs", 1),
            backend=data.get("backend", "loky"),
        )


@dataclass
class DataConfig:
    """Cell metadata schema for loading expression data.

    Attributes
    ----------
    celltype_key : str
        Metadata column with celltype labels
    batch_key : str, optional
        Metadata column with batch labels; None disables batch correction
    layer : str, optional
        AnnData layer with log-normalized expression (None = X)
    """

    celltype_key: str = "celltype"
    batch_key: Optional[str] = None
    layer: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DataConfig":
        """Create DataConfig from dictionary."""
        return cls(
            celltype_key=data.get("celltype_key", "celltype"),
            batch_key=data.get("batch_key"),
            layer=data.get("layer"),
        )


@dataclass
class PanelDesignConfig:
    """Master configuration for gene panel design.

    Attributes
    ----------
    data : DataConfig
        Metadata schema
    graph : GraphConfig
        kNN graph configuration
    scoring : ScoringConfig
        Gene/cell scoring configuration
    search : SearchConfig
        Greedy search configuration
    evaluation : EvaluationConfig
        Library evaluation and redundancy configuration
    """

    data: DataConfig = field(default_factory=DataConfig)
    graph: GraphConfig = field(default_factory=GraphConfig)
    scoring: ScoringConfig = field(default_factory=ScoringConfig)
    search: SearchConfig = field(default_factory=SearchConfig)
    evaluation: EvaluationConfig = field(default_factory=EvaluationConfig)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PanelDesignConfig":
        """Create PanelDesignConfig from a (possibly nested) dictionary."""
        if "panel_design" in data:
            data = data["panel_design"] or {}
        return cls(
            data=DataConfig.from_dict(data.get("data") or {}),
            graph=GraphConfig.from_dict(data.get("graph") or {}),
            scoring=ScoringConfig.from_dict(data.get("scoring") or {}),
            search=SearchConfig.from_dict(data.get("search") or {}),
            evaluation=EvaluationConfig.from_dict(data.get("evaluation") or {}),
        )

    @classmethod
    def from_yaml(cls, path: Path) -> "PanelDesignConfig":
        """Load configuration from YAML file."""
        with open(path) as f:
            data = yaml.safe_load(f) or {}
        return cls.from_dict(data)

    @classmethod
    def default(cls) -> "PanelDesignConfig":
        """Create default configuration."""
        return cls()

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "data": {
                "celltype_key": self.data.celltype_key,
                "batch_key": self.data.batch_key,
                "layer": self.data.layer,
            },
            "graph": {
                "n_neighbors": self.graph.n_neighbors,
                "batch_strategy": self.graph.batch_strategy,
                "method": self.graph.method,
                "chunk_size": self.graph.chunk_size,
            },
            "scoring": {
                "normalize": self.scoring.normalize,
                "genes_all": self.scoring.genes_all,
            },
            "search": {
                "n_genes_total": self.search.n_genes_total,
                "genes_base": list(self.search.genes_base),
                "n_jobs": self.search.n_jobs,
                "batch_size": self.search.batch_size,
                "backend": self.search.backend,
                "tie_tolerance": self.search.tie_tolerance,
            },
            "evaluation": {
                "n_genes_step": self.evaluation.n_genes_step,
                "genes_to_assess": self.evaluation.genes_to_assess,
                "n_jobs": self.evaluation.n_jobs,
                "backend": self.evaluation.backend,
            },
        }
