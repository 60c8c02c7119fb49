"""Command-line interface for GenePanel-Refinery.

Example Usage
-------------
    # From command line:
    genepanel-refinery --help
    genepanel-refinery search --input atlas.h5ad --out panel/ --n-genes-total 50
    genepanel-refinery evaluate --input atlas.h5ad --panel panel/gene_panel.csv --out eval/
    genepanel-refinery map --input atlas.h5ad --panel panel/gene_panel.csv --out map/
"""

from .main import cli, main

__all__ = [
    "cli",
    "main",
]
