"""Core computational modules for GenePanel-Refinery.

This package contains the main analysis engines:
- dataset: Validated expression matrix and cell metadata
- graph: kNN graph construction with batch handling
- scoring: Gene prediction scores and cell neighbourhood scores
- search: Greedy gene panel selection
- evaluation: Series evaluation, celltype mapping, redundancy
"""
