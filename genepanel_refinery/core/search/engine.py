"""Greedy gene search.

Grows a gene panel one gene at a time. At every step each remaining
candidate is appended to the current panel, the kNN graph is rebuilt and the
mean gene prediction score is computed; the best candidate is kept.

State machine: initializing -> selecting -> converged | exhausted | cancelled
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence
import logging
import time

import numpy as np
import pandas as pd

from ..config import PanelDesignConfig
from ..dataset import ExpressionData
from ..errors import InsufficientGenes
from ..graph import GraphBuilder
from ..scoring import ScoringEngine
from .parallel import CandidateContext, score_candidates


class SearchStatus(str, Enum):
    """States of the greedy search."""

    INITIALIZING = "initializing"
    SELECTING = "selecting"
    CONVERGED = "converged"
    EXHAUSTED = "exhausted"
    CANCELLED = "cancelled"


PANEL_COLUMNS = ["rank", "gene", "score", "gain", "is_base"]


@dataclass
class GeneSearchResult:
    """Result from a greedy gene search.

    Attributes
    ----------
    panel : pd.DataFrame
        One row per panel gene in selection order with columns
        rank, gene, score (objective after adding the gene),
        gain (score minus previous score) and is_base
    status : SearchStatus
        Final state of the search
    n_genes_total : int
        Requested panel size
    n_candidates_scored : int
        Number of candidate graphs built and scored
    elapsed_seconds : float
        Wall-clock time of the search
    """

    panel: pd.DataFrame = field(default_factory=lambda: pd.DataFrame(columns=PANEL_COLUMNS))
    status: SearchStatus = SearchStatus.INITIALIZING
    n_genes_total: int = 0
    n_candidates_scored: int = 0
    elapsed_seconds: float = 0.0

    @property
    def genes(self) -> List[str]:
        """Panel genes in selection order."""
        return self.panel["gene"].tolist()

    @property
    def scores(self) -> pd.Series:
        """Objective after each gene, indexed by gene."""
        return pd.Series(
            self.panel["score"].to_numpy(), index=self.panel["gene"].to_numpy(), name="score"
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "status": self.status.value,
            "n_genes_total": self.n_genes_total,
            "n_genes_selected": len(self.panel),
            "n_candidates_scored": self.n_candidates_scored,
            "elapsed_seconds": round(self.elapsed_seconds, 3),
            "final_score": float(self.panel["score"].iloc[-1]) if len(self.panel) else None,
            "genes": self.genes,
        }


class GeneSearchEngine:
    """Greedy selection of genes preserving the kNN graph.

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
    >>> engine = GeneSearchEngine(data, PanelDesignConfig())
    >>> result = engine.search(n_genes_total=20, genes_base=["GeneA"])
    >>> result.genes[:2]
    ['GeneA', 'GeneQ']
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

    def _validate_request(self, n_genes_total: Any, genes_base: List[str]) -> np.ndarray:
        """Check the requested size and resolve base genes to indices."""
        if isinstance(n_genes_total, bool) or not isinstance(n_genes_total, (int, np.integer)):
            raise ValueError(f"n_genes_total must be an integer, got {n_genes_total!r}")
        if n_genes_total < 1:
            raise ValueError(f"n_genes_total must be >= 1, got {n_genes_total}")
        if n_genes_total > self.data.n_genes:
            raise InsufficientGenes(
                f"Requested {n_genes_total} genes but the expression matrix "
                f"holds only {self.data.n_genes}"
            )
        if not genes_base:
            return np.empty(0, dtype=np.int64)

        base_idx = self.data.gene_indices(genes_base)
        if len(base_idx) > n_genes_total:
            raise ValueError(
                f"genes_base has {len(base_idx)} genes, more than n_genes_total={n_genes_total}"
            )
        return base_idx

    def _select_best(self, candidates: np.ndarray, scores: np.ndarray) -> int:
        """Position of the winning candidate; ties go to the smallest gene id."""
        best = scores.max()
        tied = np.flatnonzero(scores >= best - self.config.search.tie_tolerance)
        names = self.data.genes
        return int(min(tied, key=lambda i: names[candidates[i]]))

    def _record(
        self,
        records: List[Dict[str, Any]],
        gene_idx: int,
        score: float,
        previous: float,
        is_base: bool,
    ) -> None:
        records.append({
            "rank": len(records) + 1,
            "gene": self.data.genes[gene_idx],
            "score": score,
            "gain": score - previous,
            "is_base": is_base,
        })

    def search(
        self,
        n_genes_total: Optional[int] = None,
        genes_base: Optional[Sequence[str]] = None,
        cancel_event: Optional[Any] = None,
    ) -> GeneSearchResult:
        """Run the greedy search.

        Parameters
        ----------
        n_genes_total : int, optional
            Target panel size including base genes. Uses config if None.
        genes_base : Sequence[str], optional
            Genes always placed first, in order. Uses config if None.
        cancel_event : threading.Event, optional
            When set, the search stops at the next step boundary (or the next
            candidate when running serially) and returns the panel so far.

        Returns
        -------
        GeneSearchResult
            Ordered panel with per-step objective values

        Raises
        ------
        InsufficientGenes
            If n_genes_total exceeds the number of genes
        UnknownGene, ValueError
            If genes_base is invalid
        """
        cfg = self.config.search
        if n_genes_total is None:
            n_genes_total = cfg.n_genes_total
        if n_genes_total is None:
            raise ValueError("n_genes_total must be given or set in the search config")
        genes_base = list(genes_base if genes_base is not None else cfg.genes_base)

        start_time = time.time()
        result = GeneSearchResult(n_genes_total=int(n_genes_total))
        base_idx = self._validate_request(n_genes_total, genes_base)

        self.logger.info(
            "Gene search: target=%d genes, base=%d genes, k=%d, n_jobs=%d",
            n_genes_total,
            len(base_idx),
            self.builder.n_neighbors,
            cfg.n_jobs,
        )

        def cancelled() -> bool:
            return cancel_event is not None and cancel_event.is_set()

        # Candidate arena: scored genes minus base genes, removed by position
        arena = np.asarray(self.scoring.scope_idx, dtype=np.int64)
        active = ~np.isin(arena, base_idx)

        records: List[Dict[str, Any]] = []
        previous = 0.0
        for i, gene_idx in enumerate(base_idx):
            score = self.scoring.objective(self.builder.build_from_indices(base_idx[: i + 1]))
            self._record(records, int(gene_idx), score, previous, is_base=True)
            previous = score

        context = CandidateContext(self.builder.context, self.scoring.context())
        panel_idx = [int(g) for g in base_idx]
        result.status = SearchStatus.SELECTING

        while len(panel_idx) < n_genes_total:
            if cancelled():
                result.status = SearchStatus.CANCELLED
                break

            positions = np.flatnonzero(active)
            if positions.size == 0:
                result.status = SearchStatus.EXHAUSTED
                break

            candidates = arena[positions]
            scores = score_candidates(
                context,
                np.asarray(panel_idx, dtype=np.int64),
                candidates,
                n_jobs=cfg.n_jobs,
                batch_size=cfg.batch_size,
                backend=cfg.backend,
                should_stop=cancelled,
            )
            if scores is None:
                result.status = SearchStatus.CANCELLED
                break
            result.n_candidates_scored += len(candidates)

            pick = self._select_best(candidates, scores)
            active[positions[pick]] = False
            panel_idx.append(int(candidates[pick]))
            self._record(records, int(candidates[pick]), float(scores[pick]), previous, is_base=False)
            previous = float(scores[pick])

            self.logger.info(
                "Step %d/%d: selected %s (score=%.4f, gain=%+.4f, %d candidates)",
                len(panel_idx),
                n_genes_total,
                records[-1]["gene"],
                records[-1]["score"],
                records[-1]["gain"],
                len(candidates),
            )

        if result.status == SearchStatus.SELECTING:
            result.status = SearchStatus.CONVERGED
        elif result.status == SearchStatus.EXHAUSTED:
            self.logger.warning(
                "Candidate pool exhausted after %d of %d genes", len(panel_idx), n_genes_total
            )
        elif result.status == SearchStatus.CANCELLED:
            self.logger.warning(
                "Search cancelled after %d of %d genes", len(panel_idx), n_genes_total
            )

        result.panel = pd.DataFrame.from_records(records, columns=PANEL_COLUMNS)
        result.elapsed_seconds = time.time() - start_time
        self.logger.info(
            "Gene search %s: %d genes in %.2f sec",
            result.status.value,
            len(result.panel),
            result.elapsed_seconds,
        )
        return result


def gene_search(
    data: ExpressionData,
    n_genes_total: int,
    genes_base: Optional[Sequence[str]] = None,
    config: Optional[PanelDesignConfig] = None,
    logger: Optional[logging.Logger] = None,
) -> GeneSearchResult:
    """Convenience wrapper around GeneSearchEngine.search."""
    engine = GeneSearchEngine(data, config, logger)
    return engine.search(n_genes_total=n_genes_total, genes_base=genes_base)
