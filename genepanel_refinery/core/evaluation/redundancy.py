"""Per-gene redundancy within a panel.

For each assessed gene the panel is mapped with and without that gene; the
drop in per-celltype mapping accuracy is the gene's contribution to that
celltype. Positive delta means the gene is needed for the celltype, values
near zero mean the rest of the panel carries the same information.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence
import logging
import time

import numpy as np
import pandas as pd
from joblib import Parallel, delayed

from ..config import PanelDesignConfig
from ..dataset import ExpressionData
from ..errors import EmptyGeneSubset, UnknownGene
from ..graph import GraphBuilder, GraphContext
from .mapping import map_celltypes

REDUNDANCY_COLUMNS = ["gene", "celltype", "frac_with", "frac_without", "delta"]


@dataclass
class RedundancyResult:
    """Result from redundancy estimation.

    Attributes
    ----------
    table : pd.DataFrame
        One row per (gene, celltype) with columns gene, celltype,
        frac_with, frac_without and delta = frac_with - frac_without
    panel : List[str]
        Panel the genes were removed from
    baseline : pd.Series
        Per-celltype accuracy of the full panel
    """

    table: pd.DataFrame = field(default_factory=lambda: pd.DataFrame(columns=REDUNDANCY_COLUMNS))
    panel: List[str] = field(default_factory=list)
    baseline: pd.Series = field(default_factory=pd.Series)

    @property
    def matrix(self) -> pd.DataFrame:
        """Wide gene x celltype delta matrix, genes in assessment order."""
        wide = self.table.pivot(index="gene", columns="celltype", values="delta")
        genes = list(dict.fromkeys(self.table["gene"]))
        return wide.loc[genes, list(self.baseline.index)]

    def most_redundant(self, n: int = 10) -> pd.Series:
        """Genes whose removal costs the least, by maximum delta over celltypes."""
        return self.matrix.max(axis=1).sort_values(kind="stable").head(n)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "n_panel_genes": len(self.panel),
            "n_assessed_genes": int(self.table["gene"].nunique()),
            "n_celltypes": len(self.baseline),
            "baseline_accuracy": {k: float(v) for k, v in self.baseline.items()},
        }


@dataclass
class RedundancyContext:
    """Minimal state for leave-one-out mapping in worker processes."""

    graph: GraphContext
    codes: np.ndarray
    celltypes: List[str]

    def accuracy(self, gene_idx: np.ndarray) -> np.ndarray:
        """Per-celltype mapping accuracy on a gene subset."""
        graph = self.graph.build(gene_idx)
        return map_celltypes(graph, self.codes, self.celltypes).accuracy.to_numpy()

    def accuracy_without(self, panel_idx: np.ndarray, position: int) -> np.ndarray:
        return self.accuracy(np.delete(panel_idx, position))


class RedundancyEstimator:
    """Leave-one-out redundancy of panel genes per celltype.

    Parameters
    ----------
    data : ExpressionData
        Expression data with celltype labels
    config : PanelDesignConfig, optional
        Panel design configuration. If None, uses defaults.
    logger : logging.Logger, optional
        Logger instance. If None, uses the module logger.

    Example
    -------
    >>> estimator = RedundancyEstimator(data, PanelDesignConfig())
    >>> result = estimator.estimate(panel_genes)
    >>> result.matrix.loc["GeneA"]
    """

    def __init__(
        self,
        data: ExpressionData,
        config: Optional[PanelDesignConfig] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.data = data
        self.config = config or PanelDesignConfig()
        self.logger = logger or logging.getLogger(__name__)
        self.codes = data.celltype_codes()
        self.builder = GraphBuilder(data, self.config.graph, self.logger)

    def _resolve_assessed(self, panel: List[str], genes_to_assess: Sequence[str]) -> List[int]:
        """Positions of the assessed genes within the panel."""
        if len(genes_to_assess) == 0:
            raise EmptyGeneSubset("No genes to assess; pass panel genes or None for all")
        positions = {gene: i for i, gene in enumerate(panel)}
        missing = [g for g in genes_to_assess if g not in positions]
        if missing:
            raise UnknownGene(f"Genes to assess are not in the panel: {missing}")
        return [positions[g] for g in dict.fromkeys(genes_to_assess)]

    def estimate(
        self,
        panel: Sequence[str],
        genes_to_assess: Optional[Sequence[str]] = None,
    ) -> RedundancyResult:
        """Estimate per-celltype redundancy of panel genes.

        Parameters
        ----------
        panel : Sequence[str]
            Finalized panel
        genes_to_assess : Sequence[str], optional
            Panel genes to remove one at a time. Uses config, then the whole
            panel, if None.

        Returns
        -------
        RedundancyResult

        Raises
        ------
        EmptyGeneSubset
            If the panel has fewer than two genes or genes_to_assess is empty
        UnknownGene
            If a panel gene is not in the data or an assessed gene is not
            in the panel
        """
        panel = list(panel)
        panel_idx = self.data.gene_indices(panel)
        if len(panel_idx) < 2:
            raise EmptyGeneSubset(
                "Redundancy needs at least two panel genes; removing the only "
                "gene leaves an empty subset"
            )
        if genes_to_assess is None:
            genes_to_assess = self.config.evaluation.genes_to_assess
        if genes_to_assess is None:
            genes_to_assess = panel
        positions = self._resolve_assessed(panel, genes_to_assess)

        start_time = time.time()
        self.logger.info(
            "Estimating redundancy of %d genes in a %d-gene panel",
            len(positions), len(panel),
        )

        context = RedundancyContext(self.builder.context, self.codes, self.data.celltypes)
        baseline = context.accuracy(panel_idx)

        cfg = self.config.evaluation
        if cfg.n_jobs == 1:
            without = [context.accuracy_without(panel_idx, p) for p in positions]
        else:
            without = Parallel(n_jobs=cfg.n_jobs, backend=cfg.backend)(
                delayed(context.accuracy_without)(panel_idx, p) for p in positions
            )

        celltypes = self.data.celltypes
        frames = []
        for position, frac_without in zip(positions, without):
            frames.append(pd.DataFrame({
                "gene": panel[position],
                "celltype": celltypes,
                "frac_with": baseline,
                "frac_without": frac_without,
                "delta": baseline - frac_without,
            }))

        result = RedundancyResult(
            table=pd.concat(frames, ignore_index=True),
            panel=panel,
            baseline=pd.Series(
                baseline, index=pd.Index(celltypes, name="celltype"), name="frac_correctly_mapped"
            ),
        )
        self.logger.info("Redundancy estimation complete in %.2f sec", time.time() - start_time)
        return result


def estimate_redundancy(
    data: ExpressionData,
    panel: Sequence[str],
    genes_to_assess: Optional[Sequence[str]] = None,
    config: Optional[PanelDesignConfig] = None,
    logger: Optional[logging.Logger] = None,
) -> RedundancyResult:
    """Convenience wrapper around RedundancyEstimator.estimate."""
    estimator = RedundancyEstimator(data, config, logger)
    return estimator.estimate(panel, genes_to_assess=genes_to_assess)
