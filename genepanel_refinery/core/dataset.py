"""Validated expression data container.

Wraps the expression matrix and the cell metadata schema used by every
panel design component. Metadata columns are resolved once, at construction,
into typed fields; downstream code never looks columns up by name.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional, Sequence

import numpy as np
import pandas as pd
from scipy import sparse

from .errors import EmptyGeneSubset, MissingLabels, UnknownGene


def _as_categorical(values: pd.Series, name: str) -> pd.Categorical:
    """Convert a metadata column into a categorical with sorted categories."""
    labels = values.astype("object").where(values.notna(), None)
    present = sorted({str(v) for v in labels if v is not None})
    codes = [str(v) if v is not None else None for v in labels]
    return pd.Categorical(codes, categories=present)


@dataclass(frozen=True, eq=False)
class ExpressionData:
    """Expression matrix with its cell metadata schema.

    Attributes
    ----------
    matrix : np.ndarray
        Dense log-expression values, shape (n_cells, n_genes)
    genes : pd.Index
        Unique gene identifiers (matrix columns)
    cells : pd.Index
        Unique cell identifiers (matrix rows)
    celltype : pd.Categorical, optional
        Celltype label per cell; missing labels are NaN
    batch : pd.Categorical, optional
        Batch/sample label per cell; None disables batch correction
    """

    matrix: np.ndarray
    genes: pd.Index
    cells: pd.Index
    celltype: Optional[pd.Categorical] = None
    batch: Optional[pd.Categorical] = None

    def __post_init__(self) -> None:
        matrix = np.array(self.matrix, dtype=np.float64)
        if matrix.ndim != 2:
            raise ValueError(f"Expression matrix must be 2D, got shape {matrix.shape}")
        if matrix.shape != (len(self.cells), len(self.genes)):
            raise ValueError(
                f"Matrix shape {matrix.shape} does not match "
                f"{len(self.cells)} cells x {len(self.genes)} genes"
            )
        if not self.genes.is_unique:
            dupes = self.genes[self.genes.duplicated()].unique().tolist()
            raise ValueError(f"Gene identifiers must be unique; duplicated: {dupes[:5]}")
        if not self.cells.is_unique:
            dupes = self.cells[self.cells.duplicated()].unique().tolist()
            raise ValueError(f"Cell identifiers must be unique; duplicated: {dupes[:5]}")
        if not np.all(np.isfinite(matrix)):
            raise ValueError("Expression matrix contains NaN/inf values")
        for name in ("celltype", "batch"):
            values = getattr(self, name)
            if values is not None and len(values) != len(self.cells):
                raise ValueError(
                    f"{name} has {len(values)} labels for {len(self.cells)} cells"
                )
        if self.batch is not None and pd.isna(np.asarray(self.batch, dtype=object)).any():
            raise ValueError("Batch labels must be present for every cell")
        matrix.setflags(write=False)
        object.__setattr__(self, "matrix", matrix)

    # ------------------------------------------------------------------
    # Constructors
    # ------------------------------------------------------------------

    @classmethod
    def from_anndata(
        cls,
        adata: Any,  # AnnData
        celltype_key: Optional[str] = "celltype",
        batch_key: Optional[str] = None,
        layer: Optional[str] = None,
    ) -> "ExpressionData":
        """Build from an AnnData object (cells x genes).

        Parameters
        ----------
        adata : AnnData
            Input AnnData object with log-normalized expression
        celltype_key : str, optional
            Column in adata.obs with celltype labels. Ignored if absent.
        batch_key : str, optional
            Column in adata.obs with batch labels. Must exist if given.
        layer : str, optional
            Layer to use instead of adata.X

        Returns
        -------
        ExpressionData
        """
        if layer is not None:
            if layer not in adata.layers:
                raise KeyError(f"Layer '{layer}' not found in AnnData.layers")
            base = adata.layers[layer]
        else:
            base = adata.X
        matrix = base.toarray() if sparse.issparse(base) else np.asarray(base)

        return cls(
            matrix=matrix,
            genes=pd.Index(adata.var_names.astype(str)),
            cells=pd.Index(adata.obs_names.astype(str)),
            **_resolve_metadata(adata.obs, celltype_key, batch_key),
        )

    @classmethod
    def from_frames(
        cls,
        expression: pd.DataFrame,
        metadata: Optional[pd.DataFrame] = None,
        celltype_key: Optional[str] = "celltype",
        batch_key: Optional[str] = None,
    ) -> "ExpressionData":
        """Build from a genes x cells expression frame and a cell metadata frame.

        Metadata rows are matched to expression columns by cell identifier.
        """
        genes = pd.Index(expression.index.astype(str))
        cells = pd.Index(expression.columns.astype(str))
        matrix = expression.to_numpy(dtype=np.float64).T

        fields = {"celltype": None, "batch": None}
        if metadata is not None:
            meta = metadata.copy()
            meta.index = meta.index.astype(str)
            missing = cells.difference(meta.index)
            if len(missing) > 0:
                raise KeyError(
                    f"Metadata is missing {len(missing)} cells, e.g. {missing[:5].tolist()}"
                )
            fields = _resolve_metadata(meta.loc[cells], celltype_key, batch_key)
        elif batch_key is not None:
            raise KeyError(f"Batch column '{batch_key}' requested without metadata")

        return cls(matrix=matrix, genes=genes, cells=cells, **fields)

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def n_cells(self) -> int:
        return self.matrix.shape[0]

    @property
    def n_genes(self) -> int:
        return self.matrix.shape[1]

    @property
    def has_batch(self) -> bool:
        return self.batch is not None and len(self.batch.categories) > 1

    @property
    def celltypes(self) -> list:
        """Sorted celltype categories (empty if no labels)."""
        if self.celltype is None:
            return []
        return list(self.celltype.categories)

    def gene_indices(self, genes: Sequence[str]) -> np.ndarray:
        """Resolve an ordered gene subset to column indices.

        Raises
        ------
        EmptyGeneSubset
            If no genes are given
        UnknownGene
            If a gene is not in the expression matrix
        ValueError
            If a gene appears twice
        """
        genes = [str(g) for g in genes]
        if not genes:
            raise EmptyGeneSubset("Gene subset is empty")
        unknown = [g for g in genes if g not in self.genes]
        if unknown:
            raise UnknownGene(
                f"{len(unknown)} genes not present in expression matrix: {unknown[:5]}"
            )
        if len(set(genes)) != len(genes):
            seen, dupes = set(), []
            for g in genes:
                if g in seen:
                    dupes.append(g)
                seen.add(g)
            raise ValueError(f"Gene subset contains duplicates: {dupes[:5]}")
        return self.genes.get_indexer(genes)

    def celltype_codes(self) -> np.ndarray:
        """Integer celltype code per cell.

        Raises
        ------
        MissingLabels
            If celltype labels are absent or any cell lacks one
        """
        if self.celltype is None:
            raise MissingLabels("No celltype labels were supplied")
        codes = np.asarray(self.celltype.codes)
        n_missing = int((codes < 0).sum())
        if n_missing:
            raise MissingLabels(f"{n_missing} cells lack a celltype label")
        return codes.astype(np.int64)

    def batch_codes(self) -> Optional[np.ndarray]:
        """Integer batch code per cell, or None without batch labels."""
        if self.batch is None:
            return None
        return np.asarray(self.batch.codes).astype(np.int64)

    def cell_order(self) -> np.ndarray:
        """Rank of each cell identifier in sorted identifier order."""
        order = np.argsort(self.cells.to_numpy(dtype=str), kind="stable")
        rank = np.empty(self.n_cells, dtype=np.int64)
        rank[order] = np.arange(self.n_cells)
        return rank

    def summary(self) -> dict:
        """Short description used in log records."""
        return {
            "n_cells": self.n_cells,
            "n_genes": self.n_genes,
            "n_celltypes": len(self.celltypes),
            "n_batches": 0 if self.batch is None else len(self.batch.categories),
        }


def _resolve_metadata(
    obs: pd.DataFrame,
    celltype_key: Optional[str],
    batch_key: Optional[str],
) -> dict:
    """Resolve named metadata columns into typed schema fields."""
    celltype = None
    if celltype_key is not None and celltype_key in obs.columns:
        celltype = _as_categorical(obs[celltype_key], celltype_key)

    batch = None
    if batch_key is not None:
        if batch_key not in obs.columns:
            raise KeyError(f"Batch column '{batch_key}' not found in cell metadata")
        batch = _as_categorical(obs[batch_key], batch_key)

    return {"celltype": celltype, "batch": batch}
