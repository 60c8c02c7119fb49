"""Configuration for gene and cell scoring."""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional


@dataclass
class ScoringConfig:
    """Configuration for the scoring engine.

    Attributes
    ----------
    normalize : bool
        Divide each gene's prediction correlation by its correlation under
        the reference (full transcriptome) graph
    genes_all : List[str], optional
        Genes scored and used to build the reference graph. None means every
        gene in the expression matrix. Also bounds the greedy candidate pool.
    """

    normalize: bool = True
    genes_all: Optional[List[str]] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ScoringConfig":
        """Create ScoringConfig from dictionary."""
        genes_all = data.get("genes_all")
        return cls(
            normalize=data.get("normalize", True),
            genes_all=list(genes_all) if genes_all is not None else None,
        )
