"""Unit tests for the greedy gene search."""

import threading

import pytest
import numpy as np
import pandas as pd

from genepanel_refinery.core.config import PanelDesignConfig, SearchConfig
from genepanel_refinery.core.errors import InsufficientCells, InsufficientGenes, UnknownGene
from genepanel_refinery.core.evaluation import CelltypeMapper
from genepanel_refinery.core.graph import GraphConfig
from genepanel_refinery.core.scoring import ScoringConfig
from genepanel_refinery.core.search import (
    PANEL_COLUMNS,
    CandidateContext,
    GeneSearchEngine,
    SearchStatus,
    gene_search,
    score_candidates,
)


class _CancelAfter:
    """Event that reports set after a number of checks."""

    def __init__(self, n_checks: int):
        self.remaining = n_checks

    def is_set(self) -> bool:
        self.remaining -= 1
        return self.remaining < 0


class TestSearchConfig:
    """Tests for SearchConfig dataclass."""

    def test_default_values(self):
        config = SearchConfig()
        assert config.n_genes_total is None
        assert config.genes_base == []
        assert config.n_jobs == 1
        assert config.backend == "loky"

    def test_invalid_backend(self):
        with pytest.raises(ValueError, match="backend"):
            SearchConfig(backend="dask")

    def test_zero_jobs(self):
        with pytest.raises(ValueError):
            SearchConfig(n_jobs=0)


class TestGeneSearch:
    """Tests for GeneSearchEngine.search."""

    def test_reference_scenario(self, expression_data, k10_config):
        """100 cells, 30 genes, 3 celltypes, k=10, five genes."""
        result = gene_search(expression_data, n_genes_total=5, config=k10_config)

        assert result.status == SearchStatus.CONVERGED
        assert list(result.panel.columns) == PANEL_COLUMNS
        assert len(result.genes) == 5
        assert len(set(result.genes)) == 5
        assert set(result.genes) <= set(expression_data.genes)
        assert (result.panel["score"] >= 0).all()
        assert list(result.panel["rank"]) == [1, 2, 3, 4, 5]

        mapping = CelltypeMapper(expression_data, k10_config).map(result.genes)
        assert mapping.confusion.shape == (3, 3)
        counts = pd.Series(np.asarray(expression_data.celltype)).value_counts()
        for celltype, row_sum in mapping.confusion.sum(axis=1).items():
            assert row_sum == counts[celltype]

    def test_insufficient_genes(self, expression_data, k10_config):
        engine = GeneSearchEngine(expression_data, k10_config)
        with pytest.raises(InsufficientGenes):
            engine.search(n_genes_total=31)

    @pytest.mark.parametrize("n", [0, -1])
    def test_invalid_size(self, small_data, n):
        with pytest.raises(ValueError):
            GeneSearchEngine(small_data).search(n_genes_total=n)

    def test_missing_size(self, small_data):
        with pytest.raises(ValueError, match="n_genes_total"):
            GeneSearchEngine(small_data).search()

    def test_first_gene_is_best_single_gene(self, small_data):
        engine = GeneSearchEngine(small_data)
        result = engine.search(n_genes_total=1)
        singles = {
            gene: engine.scoring.objective(engine.builder.build([gene]))
            for gene in small_data.genes
        }
        best = max(singles.values())
        expected = min(g for g, s in singles.items() if s >= best - 1e-10)
        assert result.genes == [expected]
        assert result.panel["score"].iloc[0] == pytest.approx(best)

    def test_gain_is_score_difference(self, small_data):
        result = gene_search(small_data, n_genes_total=4)
        scores = result.panel["score"].to_numpy()
        gains = result.panel["gain"].to_numpy()
        assert gains[0] == pytest.approx(scores[0])
        np.testing.assert_allclose(gains[1:], np.diff(scores))

    def test_deterministic(self, small_data):
        a = gene_search(small_data, n_genes_total=4)
        b = gene_search(small_data, n_genes_total=4)
        assert a.genes == b.genes
        np.testing.assert_array_equal(a.panel["score"], b.panel["score"])

    def test_base_genes_first(self, small_data):
        base = ["Gene_07", "Gene_02"]
        result = gene_search(small_data, n_genes_total=4, genes_base=base)
        assert result.genes[:2] == base
        assert list(result.panel["is_base"]) == [True, True, False, False]
        assert len(set(result.genes)) == 4

    def test_base_genes_fill_panel(self, small_data):
        result = gene_search(small_data, n_genes_total=2, genes_base=["Gene_07", "Gene_02"])
        assert result.genes == ["Gene_07", "Gene_02"]
        assert result.status == SearchStatus.CONVERGED
        assert result.n_candidates_scored == 0

    def test_base_gene_unknown(self, small_data):
        with pytest.raises(UnknownGene):
            gene_search(small_data, n_genes_total=3, genes_base=["Nope"])

    def test_base_larger_than_panel(self, small_data):
        with pytest.raises(ValueError, match="genes_base"):
            gene_search(small_data, n_genes_total=1, genes_base=["Gene_00", "Gene_01"])

    def test_base_genes_from_config(self, small_data):
        config = PanelDesignConfig(search=SearchConfig(n_genes_total=3, genes_base=["Gene_05"]))
        result = GeneSearchEngine(small_data, config).search()
        assert result.genes[0] == "Gene_05"
        assert len(result.genes) == 3

    def test_exhausted_pool(self, small_data):
        config = PanelDesignConfig(scoring=ScoringConfig(genes_all=["Gene_00", "Gene_01", "Gene_02"]))
        result = GeneSearchEngine(small_data, config).search(n_genes_total=5)
        assert result.status == SearchStatus.EXHAUSTED
        assert sorted(result.genes) == ["Gene_00", "Gene_01", "Gene_02"]

    def test_tie_break_smallest_gene_id(self, small_data):
        config = PanelDesignConfig(search=SearchConfig(tie_tolerance=10.0))
        result = GeneSearchEngine(small_data, config).search(n_genes_total=3)
        assert result.genes == ["Gene_00", "Gene_01", "Gene_02"]

    def test_to_dict(self, small_data):
        result = gene_search(small_data, n_genes_total=2)
        summary = result.to_dict()
        assert summary["status"] == "converged"
        assert summary["n_genes_selected"] == 2
        assert summary["genes"] == result.genes
        assert summary["n_candidates_scored"] == 12 + 11

    def test_scores_indexed_by_gene(self, small_data):
        result = gene_search(small_data, n_genes_total=3)
        scores = result.scores
        assert list(scores.index) == result.genes
        np.testing.assert_allclose(scores.to_numpy(), result.panel["score"].to_numpy())
        assert result.to_dict()["final_score"] == pytest.approx(scores.iloc[-1])


class TestCancellation:
    """Tests for external cancellation."""

    def test_cancel_before_start(self, small_data):
        event = threading.Event()
        event.set()
        result = GeneSearchEngine(small_data).search(n_genes_total=4, cancel_event=event)
        assert result.status == SearchStatus.CANCELLED
        assert result.genes == []

    def test_cancel_keeps_base_genes(self, small_data):
        event = threading.Event()
        event.set()
        result = GeneSearchEngine(small_data).search(
            n_genes_total=4, genes_base=["Gene_03"], cancel_event=event
        )
        assert result.status == SearchStatus.CANCELLED
        assert result.genes == ["Gene_03"]

    def test_cancel_mid_step_returns_completed_steps(self, small_data):
        full = gene_search(small_data, n_genes_total=3)
        # One check per step plus one per candidate; stop during step two
        cancel = _CancelAfter(1 + 12 + 1 + 3)
        result = GeneSearchEngine(small_data).search(n_genes_total=3, cancel_event=cancel)
        assert result.status == SearchStatus.CANCELLED
        assert result.genes == full.genes[:1]


class TestParallelScoring:
    """Tests for parallel candidate scoring."""

    def test_parallel_matches_serial(self, small_data):
        engine = GeneSearchEngine(small_data)
        context = CandidateContext(engine.builder.context, engine.scoring.context())
        panel = np.array([0], dtype=np.int64)
        candidates = np.arange(1, 12)
        serial = score_candidates(context, panel, candidates, n_jobs=1)
        parallel = score_candidates(
            context, panel, candidates, n_jobs=2, batch_size=3, backend="threading"
        )
        np.testing.assert_array_equal(serial, parallel)

    def test_parallel_search_same_panel(self, small_data):
        serial = gene_search(small_data, n_genes_total=3)
        config = PanelDesignConfig(search=SearchConfig(n_jobs=2, batch_size=4, backend="threading"))
        parallel = gene_search(small_data, n_genes_total=3, config=config)
        assert parallel.genes == serial.genes

    def test_serial_cancellation_returns_none(self, small_data):
        engine = GeneSearchEngine(small_data)
        context = CandidateContext(engine.builder.context, engine.scoring.context())
        scores = score_candidates(
            context, np.array([0]), np.arange(1, 5), should_stop=lambda: True
        )
        assert scores is None


class TestBatchAwareSearch:
    """Tests for greedy search on multi-batch data."""

    @pytest.fixture
    def within_config(self) -> PanelDesignConfig:
        return PanelDesignConfig(graph=GraphConfig(n_neighbors=5, batch_strategy="within"))

    def test_panel_score_uses_within_batch_graphs(self, batch_data, within_config):
        engine = GeneSearchEngine(batch_data, within_config)
        result = engine.search(n_genes_total=4)
        assert result.status == SearchStatus.CONVERGED
        assert len(result.genes) == 4
        assert np.all(engine.scoring.reference_graph.pool_sizes == 39)

        graph = engine.builder.build(result.genes)
        codes = batch_data.batch_codes()
        assert np.all(codes[graph.indices] == codes[:, None])
        assert result.scores.iloc[-1] == pytest.approx(engine.scoring.objective(graph))

    def test_loky_pool_matches_serial(self, batch_data, within_config):
        serial = gene_search(batch_data, n_genes_total=4, config=within_config)
        config = PanelDesignConfig(
            graph=GraphConfig(n_neighbors=5, batch_strategy="within"),
            search=SearchConfig(n_jobs=2, batch_size=4),
        )
        assert config.search.backend == "loky"
        parallel = gene_search(batch_data, n_genes_total=4, config=config)
        assert parallel.genes == serial.genes
        np.testing.assert_allclose(parallel.scores.to_numpy(), serial.scores.to_numpy())

    def test_batch_smaller_than_k_plus_one(self, batch_data):
        # 40 cells per batch, so k=40 leaves no room for within-batch search
        config = PanelDesignConfig(graph=GraphConfig(n_neighbors=40, batch_strategy="within"))
        with pytest.raises(InsufficientCells, match="Smallest batch"):
            gene_search(batch_data, n_genes_total=2, config=config)
