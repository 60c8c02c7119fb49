"""Celltype mapping by kNN majority vote.

Each cell is assigned the celltype most common among its k neighbours.
Ties go to the celltype that sorts first, so mapping is deterministic.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence
import logging

import numpy as np
import pandas as pd

from ..config import PanelDesignConfig
from ..dataset import ExpressionData
from ..graph import GraphBuilder, KNNGraph


@dataclass
class MappingResult:
    """Result from celltype mapping.

    Attributes
    ----------
    predicted : pd.Series
        Predicted celltype per cell
    confusion : pd.DataFrame
        Cell counts, true celltype (rows) x predicted celltype (columns);
        every celltype appears on both axes
    accuracy : pd.Series
        Fraction of cells of each celltype mapped to their own celltype
    celltypes : List[str]
        Celltypes in category order
    """

    predicted: pd.Series = field(default_factory=pd.Series)
    confusion: pd.DataFrame = field(default_factory=pd.DataFrame)
    accuracy: pd.Series = field(default_factory=pd.Series)
    celltypes: List[str] = field(default_factory=list)

    @property
    def overall_accuracy(self) -> float:
        """Fraction of all cells mapped correctly."""
        total = self.confusion.to_numpy().sum()
        return float(np.trace(self.confusion.to_numpy()) / total) if total else float("nan")

    def mapping_table(self) -> pd.DataFrame:
        """Long table: celltype, mapped_celltype, n_cells, frac."""
        long = self.confusion.stack().rename("n_cells").reset_index()
        long.columns = ["celltype", "mapped_celltype", "n_cells"]
        totals = long.groupby("celltype")["n_cells"].transform("sum")
        long["frac"] = (long["n_cells"] / totals.replace(0, np.nan)).fillna(0.0)
        return long

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "n_celltypes": len(self.celltypes),
            "overall_accuracy": self.overall_accuracy,
            "accuracy": {k: float(v) for k, v in self.accuracy.items()},
        }


def vote_counts(graph: KNNGraph, codes: np.ndarray, n_types: int) -> np.ndarray:
    """Neighbour celltype counts per cell, shape (n_cells, n_types)."""
    neighbor_codes = codes[graph.indices]
    counts = np.zeros((graph.n_cells, n_types), dtype=np.int64)
    rows = np.repeat(np.arange(graph.n_cells), graph.n_neighbors)
    np.add.at(counts, (rows, neighbor_codes.ravel()), 1)
    return counts


def majority_vote(graph: KNNGraph, codes: np.ndarray, n_types: int) -> np.ndarray:
    """Predicted celltype code per cell; argmax keeps the first of tied codes."""
    return vote_counts(graph, codes, n_types).argmax(axis=1)


def map_celltypes(
    graph: KNNGraph,
    codes: np.ndarray,
    celltypes: Sequence[str],
    cells: Optional[pd.Index] = None,
) -> MappingResult:
    """Map every cell to a celltype by neighbour majority vote.

    Parameters
    ----------
    graph : KNNGraph
        Graph built on the gene subset under evaluation
    codes : np.ndarray
        True celltype code per cell (no missing labels)
    celltypes : Sequence[str]
        Celltype names in code order
    cells : pd.Index, optional
        Cell identifiers for the predicted Series

    Returns
    -------
    MappingResult
    """
    n_types = len(celltypes)
    predicted = majority_vote(graph, codes, n_types)

    confusion = np.zeros((n_types, n_types), dtype=np.int64)
    np.add.at(confusion, (codes, predicted), 1)

    sizes = confusion.sum(axis=1)
    accuracy = np.divide(
        np.diag(confusion),
        sizes,
        out=np.full(n_types, np.nan),
        where=sizes > 0,
    )

    labels = list(celltypes)
    index = pd.Index(labels, name="celltype")
    return MappingResult(
        predicted=pd.Series(
            pd.Categorical.from_codes(predicted, categories=labels),
            index=cells,
            name="mapped_celltype",
        ),
        confusion=pd.DataFrame(
            confusion,
            index=index,
            columns=pd.Index(labels, name="mapped_celltype"),
        ),
        accuracy=pd.Series(accuracy, index=index, name="frac_correctly_mapped"),
        celltypes=labels,
    )


class CelltypeMapper:
    """Maps cells to celltypes from kNN graphs built on gene subsets.

    Parameters
    ----------
    data : ExpressionData
        Expression data with celltype labels
    config : PanelDesignConfig, optional
        Panel design configuration. If None, uses defaults.
    builder : GraphBuilder, optional
        Graph builder to reuse. If None, one is created from config.graph.
    logger : logging.Logger, optional
        Logger instance. If None, uses the module logger.

    Raises
    ------
    MissingLabels
        If celltype labels are absent or incomplete
    """

    def __init__(
        self,
        data: ExpressionData,
        config: Optional[PanelDesignConfig] = None,
        builder: Optional[GraphBuilder] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.data = data
        self.config = config or PanelDesignConfig()
        self.logger = logger or logging.getLogger(__name__)
        self.codes = data.celltype_codes()
        self.celltypes = data.celltypes
        self.builder = builder or GraphBuilder(data, self.config.graph, self.logger)

    def map_graph(self, graph: KNNGraph) -> MappingResult:
        """Map cells using an already built graph."""
        return map_celltypes(graph, self.codes, self.celltypes, self.data.cells)

    def map(self, genes: Sequence[str]) -> MappingResult:
        """Build the graph on `genes` and map cells."""
        result = self.map_graph(self.builder.build(genes))
        self.logger.info(
            "Mapped %d cells on %d genes: overall accuracy %.3f",
            self.data.n_cells,
            len(genes),
            result.overall_accuracy,
        )
        return result
