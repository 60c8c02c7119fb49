"""Table I/O for GenePanel-Refinery.

Loads expression data (AnnData .h5ad or genes x cells CSV), cell metadata
and gene lists, and writes result tables.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Optional, Union

import pandas as pd

from ..core.config import DataConfig
from ..core.dataset import ExpressionData

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]

H5AD_SUFFIXES = (".h5ad",)
GENE_COLUMN = "gene"


def ensure_output_dir(path: PathLike) -> Path:
    """Create the directory at path if it does not exist and return it."""
    directory = Path(path)
    directory.mkdir(parents=True, exist_ok=True)
    return directory


def write_dataframe(df: pd.DataFrame, path: PathLike, *, index: bool = False) -> Path:
    """Write DataFrame to path ensuring the parent directory exists.

    Parameters
    ----------
    df : pd.DataFrame
        DataFrame to write.
    path : PathLike
        Output path.
    index : bool
        Whether to write row index (default: False).

    Returns
    -------
    Path
        The output path.
    """
    output_path = Path(path)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    df.to_csv(output_path, index=index)
    return output_path


def _require_file(path: PathLike, what: str) -> Path:
    csv_path = Path(path)
    if not csv_path.exists():
        raise FileNotFoundError(f"{what} not found: {csv_path}")
    return csv_path


def load_expression_csv(path: PathLike) -> pd.DataFrame:
    """Read a genes x cells expression table.

    The first column holds gene identifiers; the header row holds cell
    identifiers.

    Raises
    ------
    FileNotFoundError
        If the file does not exist.
    ValueError
        If the table is empty.
    """
    csv_path = _require_file(path, "Expression table")
    df = pd.read_csv(csv_path, index_col=0)
    if df.empty:
        raise ValueError(f"Expression table {csv_path} is empty")
    df.index = df.index.astype(str)
    df.columns = df.columns.astype(str)
    return df


def load_cell_metadata(path: PathLike) -> pd.DataFrame:
    """Read a cell metadata table indexed by its first column (cell id)."""
    csv_path = _require_file(path, "Cell metadata table")
    df = pd.read_csv(csv_path, index_col=0)
    if df.empty:
        raise ValueError(f"Cell metadata table {csv_path} is empty")
    df.index = df.index.astype(str)
    return df


def load_gene_list(path: PathLike) -> List[str]:
    """Read an ordered gene list.

    Accepts a CSV with a ``gene`` column (e.g. a saved panel, sorted by
    ``rank`` when present) or a plain text file with one gene per line.
    """
    list_path = _require_file(path, "Gene list")
    if list_path.suffix.lower() == ".csv":
        df = pd.read_csv(list_path)
        if GENE_COLUMN not in df.columns:
            raise ValueError(f"Gene list {list_path} has no '{GENE_COLUMN}' column")
        if "rank" in df.columns:
            df = df.sort_values("rank", kind="stable")
        return df[GENE_COLUMN].astype(str).tolist()

    with list_path.open("r", encoding="utf-8") as handle:
        genes = [line.strip() for line in handle]
    return [g for g in genes if g and not g.startswith("#")]


def load_expression_data(
    input_path: PathLike,
    metadata_path: Optional[PathLike] = None,
    data_config: Optional[DataConfig] = None,
) -> ExpressionData:
    """Load expression data from .h5ad or CSV.

    Parameters
    ----------
    input_path : PathLike
        AnnData file (cells x genes, metadata in .obs) or genes x cells CSV
    metadata_path : PathLike, optional
        Cell metadata CSV; used with CSV input only
    data_config : DataConfig, optional
        Metadata schema (celltype/batch columns, AnnData layer)

    Returns
    -------
    ExpressionData
    """
    cfg = data_config or DataConfig()
    path = _require_file(input_path, "Input data")

    if path.suffix.lower() in H5AD_SUFFIXES:
        import scanpy as sc

        if metadata_path is not None:
            logger.warning("Ignoring metadata file %s for AnnData input", metadata_path)
        adata = sc.read_h5ad(path)
        logger.info("Loaded %d cells x %d genes from %s", adata.n_obs, adata.n_vars, path)
        return ExpressionData.from_anndata(
            adata,
            celltype_key=cfg.celltype_key,
            batch_key=cfg.batch_key,
            layer=cfg.layer,
        )

    expression = load_expression_csv(path)
    metadata = load_cell_metadata(metadata_path) if metadata_path is not None else None
    logger.info(
        "Loaded %d genes x %d cells from %s", expression.shape[0], expression.shape[1], path
    )
    return ExpressionData.from_frames(
        expression,
        metadata,
        celltype_key=cfg.celltype_key,
        batch_key=cfg.batch_key,
    )
