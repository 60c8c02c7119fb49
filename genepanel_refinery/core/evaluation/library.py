"""Series evaluation of a gene panel.

Scores the first N genes of a panel at a series of panel sizes so that
convergence of cell scores, gene scores and celltype mapping can be
inspected as the panel grows.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple
import logging
import time

import numpy as np
import pandas as pd
from joblib import Parallel, delayed

from ...utils.stats import ks_distance, summarize_scores
from ..config import PanelDesignConfig
from ..dataset import ExpressionData
from ..graph import GraphBuilder, GraphContext, KNNGraph
from ..scoring import ScoringContext, ScoringEngine, neighborhood_preservation_scores
from .mapping import map_celltypes


@dataclass
class LibraryEvaluation:
    """Score tables of a panel evaluated at several panel sizes.

    Attributes
    ----------
    genes : List[str]
        Panel genes in selection order
    checkpoints : List[int]
        Evaluated panel sizes
    cell_score_stat : pd.DataFrame
        Columns: n_genes, cell, celltype, cell_score
    gene_score_stat : pd.DataFrame
        Columns: n_genes, gene, gene_score
    celltype_stat : pd.DataFrame
        Columns: n_genes, celltype, frac_correctly_mapped
        (empty without celltype labels)
    """

    genes: List[str] = field(default_factory=list)
    checkpoints: List[int] = field(default_factory=list)
    cell_score_stat: pd.DataFrame = field(default_factory=pd.DataFrame)
    gene_score_stat: pd.DataFrame = field(default_factory=pd.DataFrame)
    celltype_stat: pd.DataFrame = field(default_factory=pd.DataFrame)

    def _scores_at(self, table: pd.DataFrame, column: str, n: int) -> pd.Series:
        return table.loc[table["n_genes"] == n, column]

    def summary(self) -> pd.DataFrame:
        """Per-checkpoint aggregate scores, indexed by n_genes."""
        records = []
        for n in self.checkpoints:
            cell = summarize_scores(self._scores_at(self.cell_score_stat, "cell_score", n))
            gene = summarize_scores(self._scores_at(self.gene_score_stat, "gene_score", n))
            record = {
                "n_genes": n,
                "mean_cell_score": cell["mean"],
                "cell_score_q25": cell["q25"],
                "median_cell_score": cell["median"],
                "cell_score_q75": cell["q75"],
                "mean_gene_score": gene["mean"],
                "median_gene_score": gene["median"],
            }
            if not self.celltype_stat.empty:
                acc = self._scores_at(self.celltype_stat, "frac_correctly_mapped", n)
                record["mean_celltype_accuracy"] = float(acc.mean())
            records.append(record)
        return pd.DataFrame.from_records(records).set_index("n_genes")

    def convergence(self) -> pd.DataFrame:
        """KS distance of cell and gene score distributions between consecutive checkpoints.

        Small distances mean that adding more genes no longer changes the
        score distributions.
        """
        records = []
        for prev, n in zip(self.checkpoints[:-1], self.checkpoints[1:]):
            records.append({
                "n_genes": n,
                "previous_n_genes": prev,
                "cell_score_ks": ks_distance(
                    self._scores_at(self.cell_score_stat, "cell_score", prev),
                    self._scores_at(self.cell_score_stat, "cell_score", n),
                ),
                "gene_score_ks": ks_distance(
                    self._scores_at(self.gene_score_stat, "gene_score", prev),
                    self._scores_at(self.gene_score_stat, "gene_score", n),
                ),
            })
        columns = ["n_genes", "previous_n_genes", "cell_score_ks", "gene_score_ks"]
        return pd.DataFrame.from_records(records, columns=columns)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "n_genes": len(self.genes),
            "checkpoints": list(self.checkpoints),
            "has_celltype_stat": not self.celltype_stat.empty,
        }


@dataclass
class CheckpointContext:
    """Minimal state for evaluating checkpoints in worker processes."""

    graph: GraphContext
    scoring: ScoringContext
    reference: KNNGraph
    codes: Optional[np.ndarray] = None
    celltypes: List[str] = field(default_factory=list)

    def evaluate(
        self, gene_idx: np.ndarray
    ) -> Tuple[np.ndarray, np.ndarray, Optional[np.ndarray]]:
        """Gene scores, cell scores and celltype accuracy on one gene subset."""
        graph = self.graph.build(gene_idx)
        gene_scores = self.scoring.gene_scores(graph)
        cell_scores = neighborhood_preservation_scores(graph, self.reference)
        accuracy = None
        if self.codes is not None:
            accuracy = map_celltypes(graph, self.codes, self.celltypes).accuracy.to_numpy()
        return gene_scores, cell_scores, accuracy


def resolve_checkpoints(
    n_genes: int,
    n_genes_step: Optional[int] = None,
    checkpoints: Optional[Sequence[int]] = None,
) -> List[int]:
    """Panel sizes to evaluate.

    Explicit checkpoints are validated, de-duplicated and sorted. Otherwise
    sizes step, 2*step, ... are used and the full panel size is always
    included.
    """
    if checkpoints is not None:
        sizes = sorted({int(c) for c in checkpoints})
        if not sizes:
            raise ValueError("No checkpoints given")
        bad = [c for c in sizes if c < 1 or c > n_genes]
        if bad:
            raise ValueError(f"Checkpoints must lie in [1, {n_genes}], got {bad}")
        return sizes

    if n_genes_step is None or n_genes_step < 1:
        raise ValueError(f"n_genes_step must be a positive integer, got {n_genes_step}")
    sizes = list(range(n_genes_step, n_genes + 1, n_genes_step))
    if not sizes or sizes[-1] != n_genes:
        sizes.append(n_genes)
    return sizes


class LibraryEvaluator:
    """Evaluates a gene panel across panel sizes.

    Parameters
    ----------
    data : ExpressionData
        Expression data (read-only)
    config : PanelDesignConfig, optional
        Panel design configuration. If None, uses defaults.
    logger : logging.Logger, optional
        Logger instance. If None, uses the module logger.

    Example
    -------
    >>> evaluator = LibraryEvaluator(data, PanelDesignConfig())
    >>> stats = evaluator.evaluate(panel_genes, n_genes_step=5)
    >>> stats.summary()["mean_gene_score"]
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
        self.builder = GraphBuilder(data, self.config.graph, self.logger)
        self.scoring = ScoringEngine(data, self.builder, self.config.scoring, self.logger)

    def _context(self) -> CheckpointContext:
        codes = None
        if self.data.celltype is not None:
            codes = self.data.celltype_codes()
        else:
            self.logger.info("No celltype labels; celltype_stat will be empty")
        return CheckpointContext(
            graph=self.builder.context,
            scoring=self.scoring.context(),
            reference=self.scoring.reference_graph,
            codes=codes,
            celltypes=self.data.celltypes,
        )

    def evaluate(
        self,
        genes: Sequence[str],
        n_genes_step: Optional[int] = None,
        checkpoints: Optional[Sequence[int]] = None,
    ) -> LibraryEvaluation:
        """Evaluate the panel at every checkpoint.

        Parameters
        ----------
        genes : Sequence[str]
            Panel genes in selection order
        n_genes_step : int, optional
            Checkpoint increment. Uses config if None.
        checkpoints : Sequence[int], optional
            Explicit panel sizes; overrides n_genes_step

        Returns
        -------
        LibraryEvaluation

        Raises
        ------
        EmptyGeneSubset, UnknownGene, MissingLabels, ValueError
        """
        gene_idx = self.data.gene_indices(genes)
        if n_genes_step is None:
            n_genes_step = self.config.evaluation.n_genes_step
        sizes = resolve_checkpoints(len(gene_idx), n_genes_step, checkpoints)

        start_time = time.time()
        self.logger.info(
            "Evaluating %d-gene panel at %d checkpoints: %s",
            len(gene_idx), len(sizes), sizes,
        )

        context = self._context()
        cfg = self.config.evaluation
        if cfg.n_jobs == 1:
            results = [context.evaluate(gene_idx[:n]) for n in sizes]
        else:
            results = Parallel(n_jobs=cfg.n_jobs, backend=cfg.backend)(
                delayed(context.evaluate)(gene_idx[:n]) for n in sizes
            )

        evaluation = self._assemble(list(genes), sizes, results)
        self.logger.info(
            "Library evaluation complete in %.2f sec", time.time() - start_time
        )
        return evaluation

    def _assemble(
        self,
        genes: List[str],
        sizes: List[int],
        results: List[Tuple[np.ndarray, np.ndarray, Optional[np.ndarray]]],
    ) -> LibraryEvaluation:
        """Stack per-checkpoint arrays into long tables."""
        cell_labels = (
            np.asarray(self.data.celltype.astype(object))
            if self.data.celltype is not None
            else np.full(self.data.n_cells, None, dtype=object)
        )
        cell_frames, gene_frames, type_frames = [], [], []
        for n, (gene_scores, cell_scores, accuracy) in zip(sizes, results):
            cell_frames.append(pd.DataFrame({
                "n_genes": n,
                "cell": self.data.cells,
                "celltype": cell_labels,
                "cell_score": cell_scores,
            }))
            gene_frames.append(pd.DataFrame({
                "n_genes": n,
                "gene": self.scoring.scope_genes,
                "gene_score": gene_scores,
            }))
            if accuracy is not None:
                type_frames.append(pd.DataFrame({
                    "n_genes": n,
                    "celltype": self.data.celltypes,
                    "frac_correctly_mapped": accuracy,
                }))

        return LibraryEvaluation(
            genes=genes,
            checkpoints=sizes,
            cell_score_stat=pd.concat(cell_frames, ignore_index=True),
            gene_score_stat=pd.concat(gene_frames, ignore_index=True),
            celltype_stat=(
                pd.concat(type_frames, ignore_index=True)
                if type_frames
                else pd.DataFrame(columns=["n_genes", "celltype", "frac_correctly_mapped"])
            ),
        )


def evaluate_library(
    data: ExpressionData,
    genes: Sequence[str],
    n_genes_step: Optional[int] = None,
    checkpoints: Optional[Sequence[int]] = None,
    config: Optional[PanelDesignConfig] = None,
    logger: Optional[logging.Logger] = None,
) -> LibraryEvaluation:
    """Convenience wrapper around LibraryEvaluator.evaluate."""
    evaluator = LibraryEvaluator(data, config, logger)
    return evaluator.evaluate(genes, n_genes_step=n_genes_step, checkpoints=checkpoints)
