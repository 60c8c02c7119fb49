"""Unit tests for the command-line interface."""

import pytest
import pandas as pd
import yaml
from click.testing import CliRunner

from genepanel_refinery.cli.main import cli


@pytest.fixture
def csv_inputs(expression_frames, tmp_path):
    """Expression and metadata CSV files."""
    expression, metadata = expression_frames
    expr_path = tmp_path / "expr.csv"
    meta_path = tmp_path / "meta.csv"
    expression.to_csv(expr_path)
    metadata.to_csv(meta_path)
    return expr_path, meta_path


@pytest.fixture
def panel_file(tmp_path):
    path = tmp_path / "panel.txt"
    path.write_text("Gene_00\nGene_01\nGene_02\nGene_03\n")
    return path


def _invoke(args):
    runner = CliRunner()
    return runner.invoke(cli, args, obj={}, catch_exceptions=False)


class TestCli:
    """Tests for CLI commands."""

    def test_help(self):
        result = _invoke(["--help"])
        assert result.exit_code == 0
        for command in ("search", "evaluate", "redundancy", "map"):
            assert command in result.output

    def test_search(self, csv_inputs, tmp_path):
        expr, meta = csv_inputs
        out = tmp_path / "search"
        result = _invoke([
            "search", "-i", str(expr), "-m", str(meta), "-o", str(out),
            "--n-genes-total", "3", "--genes-base", "Gene_05", "-k", "5",
        ])
        assert result.exit_code == 0, result.output
        panel = pd.read_csv(out / "gene_panel.csv")
        assert panel["gene"].iloc[0] == "Gene_05"
        assert len(panel) == 3
        assert len((out / "search_steps.jsonl").read_text().splitlines()) == 3
        record = yaml.safe_load_all((out / "search_run.yaml").read_text())
        record = next(d for d in record if d)
        assert record["result"]["status"] == "converged"
        assert record["config"]["graph"]["n_neighbors"] == 5
        assert list((out / "logs").glob("gene_search_*.log"))

    def test_search_with_config(self, csv_inputs, sample_config_yaml, tmp_path):
        expr, meta = csv_inputs
        out = tmp_path / "search"
        result = _invoke([
            "search", "-i", str(expr), "-m", str(meta), "-o", str(out),
            "-c", str(sample_config_yaml),
        ])
        assert result.exit_code == 0, result.output
        panel = pd.read_csv(out / "gene_panel.csv")
        assert panel["gene"].tolist()[0] == "Gene_03"
        assert len(panel) == 4

    def test_search_too_many_genes(self, csv_inputs, tmp_path):
        expr, meta = csv_inputs
        result = _invoke([
            "search", "-i", str(expr), "-m", str(meta), "-o", str(tmp_path / "s"),
            "--n-genes-total", "13",
        ])
        assert result.exit_code != 0
        assert "InsufficientGenes" in result.output

    def test_evaluate(self, csv_inputs, panel_file, tmp_path):
        expr, meta = csv_inputs
        out = tmp_path / "eval"
        result = _invoke([
            "evaluate", "-i", str(expr), "-m", str(meta), "-o", str(out),
            "-p", str(panel_file), "--n-genes-step", "2",
        ])
        assert result.exit_code == 0, result.output
        for name in ("cell_score_stat.csv", "gene_score_stat.csv", "celltype_stat.csv",
                     "library_summary.csv", "convergence.csv"):
            assert (out / name).exists(), name
        summary = pd.read_csv(out / "library_summary.csv")
        assert summary["n_genes"].tolist() == [2, 4]

    def test_evaluate_bad_checkpoint(self, csv_inputs, panel_file, tmp_path):
        expr, meta = csv_inputs
        result = _invoke([
            "evaluate", "-i", str(expr), "-m", str(meta), "-o", str(tmp_path / "e"),
            "-p", str(panel_file), "--checkpoints", "2,9",
        ])
        assert result.exit_code != 0
        assert "Checkpoints" in result.output

    def test_redundancy(self, csv_inputs, panel_file, tmp_path):
        expr, meta = csv_inputs
        out = tmp_path / "red"
        result = _invoke([
            "redundancy", "-i", str(expr), "-m", str(meta), "-o", str(out),
            "-p", str(panel_file), "--genes-to-assess", "Gene_00,Gene_02",
        ])
        assert result.exit_code == 0, result.output
        table = pd.read_csv(out / "redundancy.csv")
        assert len(table) == 2 * 3
        matrix = pd.read_csv(out / "redundancy_matrix.csv", index_col=0)
        assert matrix.index.tolist() == ["Gene_00", "Gene_02"]

    def test_map(self, csv_inputs, panel_file, tmp_path):
        expr, meta = csv_inputs
        out = tmp_path / "map"
        result = _invoke([
            "map", "-i", str(expr), "-m", str(meta), "-o", str(out), "-p", str(panel_file),
        ])
        assert result.exit_code == 0, result.output
        confusion = pd.read_csv(out / "confusion_matrix.csv", index_col=0)
        assert confusion.to_numpy().sum() == 60
        assert (out / "mapped_celltypes.csv").exists()
        assert "Overall mapping accuracy" in result.output

    def test_map_without_metadata(self, csv_inputs, panel_file, tmp_path):
        expr, _ = csv_inputs
        result = _invoke([
            "map", "-i", str(expr), "-o", str(tmp_path / "m"), "-p", str(panel_file),
        ])
        assert result.exit_code != 0
        assert "MissingLabels" in result.output

    def test_h5ad_input(self, mock_adata, panel_file, tmp_path):
        path = tmp_path / "data.h5ad"
        mock_adata.write_h5ad(path)
        result = _invoke([
            "map", "-i", str(path), "-o", str(tmp_path / "m"), "-p", str(panel_file), "-k", "10",
        ])
        assert result.exit_code == 0, result.output
