"""Unit tests for the expression data container."""

import pytest
import numpy as np
import pandas as pd

from genepanel_refinery.core.dataset import ExpressionData
from genepanel_refinery.core.errors import (
    EmptyGeneSubset,
    MissingLabels,
    PanelDesignError,
    UnknownGene,
)


class TestFromAnndata:
    """Tests for ExpressionData.from_anndata."""

    def test_shapes_and_ids(self, mock_adata):
        data = ExpressionData.from_anndata(mock_adata)
        assert data.n_cells == 100
        assert data.n_genes == 30
        assert data.matrix.dtype == np.float64
        assert list(data.genes[:2]) == ["Gene_00", "Gene_01"]
        assert data.cells[0] == "cell_000"

    def test_celltype_categories_sorted(self, mock_adata):
        data = ExpressionData.from_anndata(mock_adata)
        assert data.celltypes == ["Type_A", "Type_B", "Type_C"]
        assert len(data.celltype_codes()) == 100

    def test_missing_celltype_column_is_ignored(self, mock_adata):
        data = ExpressionData.from_anndata(mock_adata, celltype_key="not_there")
        assert data.celltype is None
        assert data.celltypes == []

    def test_missing_batch_column_raises(self, mock_adata):
        with pytest.raises(KeyError):
            ExpressionData.from_anndata(mock_adata, batch_key="batch")

    def test_missing_layer_raises(self, mock_adata):
        with pytest.raises(KeyError):
            ExpressionData.from_anndata(mock_adata, layer="counts")

    def test_layer_is_used(self, mock_adata):
        mock_adata.layers["scaled"] = mock_adata.X * 2
        data = ExpressionData.from_anndata(mock_adata, layer="scaled")
        np.testing.assert_allclose(data.matrix, np.asarray(mock_adata.X, dtype=float) * 2)

    def test_sparse_input(self, mock_adata):
        from scipy import sparse

        mock_adata.X = sparse.csr_matrix(mock_adata.X)
        data = ExpressionData.from_anndata(mock_adata)
        assert isinstance(data.matrix, np.ndarray)
        assert data.matrix.shape == (100, 30)

    def test_batch_labels(self, batch_adata):
        data = ExpressionData.from_anndata(batch_adata, batch_key="batch")
        assert data.has_batch
        assert set(data.batch_codes()) == {0, 1}


class TestFromFrames:
    """Tests for ExpressionData.from_frames (genes x cells input)."""

    def test_orientation(self, expression_frames):
        expression, metadata = expression_frames
        data = ExpressionData.from_frames(expression, metadata)
        assert data.n_cells == expression.shape[1]
        assert data.n_genes == expression.shape[0]
        np.testing.assert_allclose(data.matrix, expression.to_numpy().T)

    def test_metadata_aligned_by_cell_id(self, expression_frames):
        expression, metadata = expression_frames
        shuffled = metadata.iloc[::-1]
        data = ExpressionData.from_frames(expression, shuffled)
        expected = metadata.loc[data.cells, "celltype"].tolist()
        assert list(data.celltype.astype(str)) == expected

    def test_metadata_missing_cells_raises(self, expression_frames):
        expression, metadata = expression_frames
        with pytest.raises(KeyError):
            ExpressionData.from_frames(expression, metadata.iloc[5:])

    def test_batch_without_metadata_raises(self, expression_frames):
        expression, _ = expression_frames
        with pytest.raises(KeyError):
            ExpressionData.from_frames(expression, batch_key="batch")


class TestValidation:
    """Tests for boundary validation."""

    def _make(self, matrix, genes=None, cells=None, **kwargs):
        n_cells, n_genes = matrix.shape
        return ExpressionData(
            matrix=matrix,
            genes=pd.Index(genes or [f"G{i}" for i in range(n_genes)]),
            cells=pd.Index(cells or [f"c{i}" for i in range(n_cells)]),
            **kwargs,
        )

    def test_duplicate_genes_rejected(self):
        with pytest.raises(ValueError, match="unique"):
            self._make(np.zeros((3, 2)), genes=["A", "A"])

    def test_duplicate_cells_rejected(self):
        with pytest.raises(ValueError, match="unique"):
            self._make(np.zeros((2, 2)), cells=["x", "x"])

    def test_non_finite_rejected(self):
        matrix = np.zeros((3, 2))
        matrix[0, 0] = np.nan
        with pytest.raises(ValueError, match="NaN"):
            self._make(matrix)

    def test_shape_mismatch_rejected(self):
        with pytest.raises(ValueError):
            self._make(np.zeros((3, 2)), genes=["A", "B", "C"])

    def test_label_length_rejected(self):
        with pytest.raises(ValueError):
            self._make(np.zeros((3, 2)), celltype=pd.Categorical(["a", "b"]))

    def test_matrix_is_read_only_copy(self):
        matrix = np.zeros((3, 2))
        data = self._make(matrix)
        assert matrix.flags.writeable
        with pytest.raises(ValueError):
            data.matrix[0, 0] = 1.0


class TestGeneIndices:
    """Tests for gene subset resolution."""

    def test_preserves_order(self, expression_data):
        idx = expression_data.gene_indices(["Gene_05", "Gene_01"])
        assert list(idx) == [5, 1]

    def test_empty_subset(self, expression_data):
        with pytest.raises(EmptyGeneSubset):
            expression_data.gene_indices([])

    def test_unknown_gene(self, expression_data):
        with pytest.raises(UnknownGene, match="NotAGene"):
            expression_data.gene_indices(["Gene_01", "NotAGene"])

    def test_duplicate_gene(self, expression_data):
        with pytest.raises(ValueError, match="duplicates"):
            expression_data.gene_indices(["Gene_01", "Gene_01"])

    def test_errors_share_base_class(self):
        assert issubclass(UnknownGene, PanelDesignError)
        assert issubclass(PanelDesignError, ValueError)


class TestLabels:
    """Tests for celltype codes and cell ordering."""

    def test_missing_labels(self, unlabeled_data):
        with pytest.raises(MissingLabels):
            unlabeled_data.celltype_codes()

    def test_partial_labels(self):
        data = ExpressionData(
            matrix=np.zeros((3, 1)),
            genes=pd.Index(["G"]),
            cells=pd.Index(["a", "b", "c"]),
            celltype=pd.Categorical(["T1", None, "T1"]),
        )
        with pytest.raises(MissingLabels, match="1 cells"):
            data.celltype_codes()

    def test_cell_order_ranks_sorted_ids(self):
        data = ExpressionData(
            matrix=np.zeros((3, 1)),
            genes=pd.Index(["G"]),
            cells=pd.Index(["c", "a", "b"]),
        )
        assert list(data.cell_order()) == [2, 0, 1]

    def test_summary(self, batch_data):
        summary = batch_data.summary()
        assert summary == {"n_cells": 80, "n_genes": 12, "n_celltypes": 2, "n_batches": 2}
