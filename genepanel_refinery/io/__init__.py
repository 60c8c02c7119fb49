"""I/O utilities for GenePanel-Refinery.

Provides logging, table I/O, and data loading utilities.
"""

from .logging import get_logger, get_timestamped_log_path, log_json, log_yaml
from .tables import (
    ensure_output_dir,
    load_cell_metadata,
    load_expression_csv,
    load_expression_data,
    load_gene_list,
    write_dataframe,
)

__all__ = [
    # Logging
    "get_logger",
    "get_timestamped_log_path",
    "log_json",
    "log_yaml",
    # Tables
    "ensure_output_dir",
    "load_cell_metadata",
    "load_expression_csv",
    "load_expression_data",
    "load_gene_list",
    "write_dataframe",
]
