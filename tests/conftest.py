"""Pytest configuration and shared fixtures for GenePanel-Refinery tests."""

import sys
from pathlib import Path

import pytest
import numpy as np
import pandas as pd

# Add package to path
PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from genepanel_refinery.core.config import (
    EvaluationConfig,
    PanelDesignConfig,
    SearchConfig,
)
from genepanel_refinery.core.dataset import ExpressionData
from genepanel_refinery.core.graph import GraphConfig

# Import mock data generators
from tests.fixtures import (
    create_expression_frames,
    create_labels,
    create_mock_adata,
)


# ============================================================================
# AnnData Fixtures
# ============================================================================


@pytest.fixture
def mock_adata():
    """Mock AnnData with 100 cells, 30 genes and 3 celltypes."""
    return create_mock_adata(n_cells=100, n_genes=30, n_celltypes=3)


@pytest.fixture
def batch_adata():
    """Mock AnnData with two batches of 40 cells."""
    return create_mock_adata(n_cells=80, n_genes=12, n_celltypes=2, n_batches=2)


# ============================================================================
# ExpressionData Fixtures
# ============================================================================


@pytest.fixture
def expression_data(mock_adata) -> ExpressionData:
    """ExpressionData for the 100 cell / 30 gene / 3 celltype dataset."""
    return ExpressionData.from_anndata(mock_adata, celltype_key="celltype")


@pytest.fixture
def small_data() -> ExpressionData:
    """Small dataset (60 cells, 12 genes) for quick search tests."""
    adata = create_mock_adata(n_cells=60, n_genes=12, n_celltypes=3, seed=7)
    return ExpressionData.from_anndata(adata)


@pytest.fixture
def constant_gene_data() -> ExpressionData:
    """Dataset whose last gene (Gene_11) is constant."""
    adata = create_mock_adata(n_cells=60, n_genes=12, n_celltypes=3, constant_gene=True)
    return ExpressionData.from_anndata(adata)


@pytest.fixture
def batch_data(batch_adata) -> ExpressionData:
    """Two-batch dataset."""
    return ExpressionData.from_anndata(batch_adata, batch_key="batch")


@pytest.fixture
def unlabeled_data() -> ExpressionData:
    """Dataset without celltype labels."""
    adata = create_mock_adata(n_cells=40, n_genes=8, n_celltypes=2)
    return ExpressionData.from_anndata(adata, celltype_key=None)


@pytest.fixture
def random_data() -> ExpressionData:
    """Unstructured random dataset with labels."""
    np.random.seed(0)
    n_cells, n_genes = 50, 6
    return ExpressionData(
        matrix=np.random.normal(size=(n_cells, n_genes)),
        genes=pd.Index([f"G{i}" for i in range(n_genes)]),
        cells=pd.Index([f"c{i:02d}" for i in range(n_cells)]),
        celltype=create_labels(n_cells),
    )


@pytest.fixture
def expression_frames():
    """(genes x cells expression, cell metadata) DataFrames."""
    return create_expression_frames(n_cells=60, n_genes=12, n_celltypes=3)


# ============================================================================
# Configuration Fixtures
# ============================================================================


@pytest.fixture
def k10_config() -> PanelDesignConfig:
    """Configuration with k=10, serial execution."""
    return PanelDesignConfig(graph=GraphConfig(n_neighbors=10))


@pytest.fixture
def fast_config() -> PanelDesignConfig:
    """Configuration with k=5 and a small evaluation step."""
    return PanelDesignConfig(
        graph=GraphConfig(n_neighbors=5),
        search=SearchConfig(n_jobs=1),
        evaluation=EvaluationConfig(n_genes_step=2),
    )


@pytest.fixture
def sample_config_yaml(tmp_path) -> Path:
    """Panel design configuration file."""
    import yaml

    config = {
        "panel_design": {
            "data": {"celltype_key": "celltype"},
            "graph": {"n_neighbors": 6, "batch_strategy": "recenter"},
            "scoring": {"normalize": False},
            "search": {"n_genes_total": 4, "genes_base": ["Gene_03"], "n_jobs": 1},
            "evaluation": {"n_genes_step": 2},
        },
    }

    path = tmp_path / "panel_design.yaml"
    with open(path, "w") as f:
        yaml.dump(config, f)

    return path


@pytest.fixture
def tmp_output_dir(tmp_path: Path) -> Path:
    """Create a temporary output directory for tests."""
    output_dir = tmp_path / "output"
    output_dir.mkdir(parents=True, exist_ok=True)
    return output_dir
