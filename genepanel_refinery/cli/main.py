"""Command-line interface for GenePanel-Refinery.

Provides CLI commands for gene panel search, evaluation, celltype mapping
and redundancy estimation.
"""

import functools
import logging
from pathlib import Path
from typing import Any, Callable, List, Optional

import click

from .. import __version__
from ..core.config import PanelDesignConfig


def setup_logging(verbose: bool = False, debug: bool = False) -> logging.Logger:
    """Setup logging for CLI commands."""
    level = logging.DEBUG if debug else (logging.INFO if verbose else logging.WARNING)
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(levelname)s - %(message)s",
        datefmt="%H:%M:%S",
    )
    logging.getLogger("genepanel_refinery").setLevel(level)
    return logging.getLogger("genepanel_refinery")


def _split_genes(value: Optional[str]) -> Optional[List[str]]:
    """Parse a comma-separated gene list."""
    if value is None:
        return None
    return [g.strip() for g in value.split(",") if g.strip()]


def _split_ints(value: Optional[str]) -> Optional[List[int]]:
    if value is None:
        return None
    try:
        return [int(v) for v in value.split(",") if v.strip()]
    except ValueError as e:
        raise click.BadParameter(f"Expected comma-separated integers, got '{value}'") from e


def data_options(func: Callable) -> Callable:
    """Options shared by every command that loads expression data."""
    options = [
        click.option("--input", "-i", "input_path", required=True, type=click.Path(exists=True),
                     help="Input AnnData file (.h5ad) or genes x cells CSV"),
        click.option("--metadata", "-m", "metadata_path", type=click.Path(exists=True),
                     help="Cell metadata CSV (first column = cell id) for CSV input"),
        click.option("--out", "-o", "output_path", required=True, type=click.Path(),
                     help="Output directory"),
        click.option("--config", "-c", type=click.Path(exists=True),
                     help="Panel design configuration file (YAML)"),
        click.option("--celltype-key", help="Metadata column with celltype labels"),
        click.option("--batch-key", help="Metadata column with batch labels"),
        click.option("--n-neighbors", "-k", type=int, help="Number of nearest neighbours"),
        click.option("--n-jobs", "-j", type=int, help="Parallel workers (-1 = all cores)"),
    ]
    for option in reversed(options):
        func = option(func)
    return func


def handle_panel_errors(func: Callable) -> Callable:
    """Report invalid input as CLI errors instead of tracebacks.

    PanelDesignError subclasses ValueError, so the whole error taxonomy is
    covered.
    """

    @functools.wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        try:
            return func(*args, **kwargs)
        except (ValueError, KeyError, FileNotFoundError) as e:
            raise click.ClickException(f"{type(e).__name__}: {e}") from e

    return wrapper


def load_config(
    config: Optional[str],
    celltype_key: Optional[str] = None,
    batch_key: Optional[str] = None,
    n_neighbors: Optional[int] = None,
    n_jobs: Optional[int] = None,
) -> PanelDesignConfig:
    """Load YAML config (or defaults) and apply command-line overrides."""
    raw = PanelDesignConfig.from_yaml(Path(config)).to_dict() if config else {}
    raw.setdefault("data", {})
    raw.setdefault("graph", {})
    raw.setdefault("search", {})
    raw.setdefault("evaluation", {})
    if celltype_key is not None:
        raw["data"]["celltype_key"] = celltype_key
    if batch_key is not None:
        raw["data"]["batch_key"] = batch_key
    if n_neighbors is not None:
        raw["graph"]["n_neighbors"] = n_neighbors
    if n_jobs is not None:
        raw["search"]["n_jobs"] = n_jobs
        raw["evaluation"]["n_jobs"] = n_jobs
    try:
        return PanelDesignConfig.from_dict(raw)
    except (ValueError, TypeError) as e:
        raise click.BadParameter(str(e)) from e


def _load_inputs(
    input_path: str,
    metadata_path: Optional[str],
    cfg: PanelDesignConfig,
    logger: logging.Logger,
):
    from genepanel_refinery.io import load_expression_data

    logger.info(f"Loading expression data: {input_path}")
    data = load_expression_data(input_path, metadata_path, cfg.data)
    logger.info(f"Loaded {data.n_cells} cells, {data.n_genes} genes")
    return data


@click.group()
@click.version_option(version=__version__, prog_name="genepanel-refinery")
@click.option("-v", "--verbose", is_flag=True, help="Enable verbose output")
@click.option("--debug", is_flag=True, help="Enable debug output")
@click.pass_context
def cli(ctx: click.Context, verbose: bool, debug: bool) -> None:
    """GenePanel-Refinery: Gene panel design for targeted spatial transcriptomics.

    Selects gene panels that preserve the cell-cell kNN graph of the full
    transcriptome, and evaluates existing panels.

    Examples:

        # Select a 50-gene panel
        genepanel-refinery search --input atlas.h5ad --out panel/ --n-genes-total 50

        # Evaluate the panel every 10 genes
        genepanel-refinery evaluate --input atlas.h5ad --panel panel/gene_panel.csv --out eval/

        # Per-gene redundancy
        genepanel-refinery redundancy --input atlas.h5ad --panel panel/gene_panel.csv --out red/
    """
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["debug"] = debug
    ctx.obj["logger"] = setup_logging(verbose, debug)


@cli.command()
@data_options
@click.option("--n-genes-total", "-n", type=int, help="Target panel size (including base genes)")
@click.option("--genes-base", help="Comma-separated genes placed first in the panel")
@click.pass_context
@handle_panel_errors
def search(
    ctx: click.Context,
    input_path: str,
    metadata_path: Optional[str],
    output_path: str,
    config: Optional[str],
    celltype_key: Optional[str],
    batch_key: Optional[str],
    n_neighbors: Optional[int],
    n_jobs: Optional[int],
    n_genes_total: Optional[int],
    genes_base: Optional[str],
) -> None:
    """Greedy gene panel search.

    Writes gene_panel.csv (rank, gene, score, gain, is_base), a JSON line per
    selected gene and a YAML run record.
    """
    logger = ctx.obj["logger"]

    from genepanel_refinery.core.search import GeneSearchEngine
    from genepanel_refinery.io import ensure_output_dir, get_logger, log_json, log_yaml, write_dataframe

    out_dir = ensure_output_dir(output_path)
    cfg = load_config(config, celltype_key, batch_key, n_neighbors, n_jobs)
    data = _load_inputs(input_path, metadata_path, cfg, logger)

    run_logger, log_path = get_logger(
        "genepanel_refinery.run", out_dir / "logs" / "gene_search.log",
    )
    logger.info(f"Search log: {log_path}")

    engine = GeneSearchEngine(data, cfg, run_logger)
    result = engine.search(
        n_genes_total=n_genes_total,
        genes_base=_split_genes(genes_base),
    )

    panel_path = write_dataframe(result.panel, out_dir / "gene_panel.csv")
    steps_path = out_dir / "search_steps.jsonl"
    steps_path.unlink(missing_ok=True)
    for record in result.panel.to_dict(orient="records"):
        log_json(steps_path, record)
    log_yaml(
        out_dir / "search_run.yaml",
        {"config": cfg.to_dict(), "data": data.summary(), "result": result.to_dict()},
    )

    click.echo(f"Gene search {result.status.value}: {len(result.panel)} genes")
    click.echo(f"Panel saved to: {panel_path}")


@cli.command()
@data_options
@click.option("--panel", "-p", "panel_path", required=True, type=click.Path(exists=True),
              help="Panel file (CSV with 'gene' column or one gene per line)")
@click.option("--n-genes-step", type=int, help="Checkpoint increment")
@click.option("--checkpoints", help="Comma-separated panel sizes (overrides --n-genes-step)")
@click.pass_context
@handle_panel_errors
def evaluate(
    ctx: click.Context,
    input_path: str,
    metadata_path: Optional[str],
    output_path: str,
    config: Optional[str],
    celltype_key: Optional[str],
    batch_key: Optional[str],
    n_neighbors: Optional[int],
    n_jobs: Optional[int],
    panel_path: str,
    n_genes_step: Optional[int],
    checkpoints: Optional[str],
) -> None:
    """Evaluate a panel across panel sizes.

    Writes cell_score_stat.csv, gene_score_stat.csv, celltype_stat.csv
    (with celltype labels), library_summary.csv and convergence.csv.
    """
    logger = ctx.obj["logger"]

    from genepanel_refinery.core.evaluation import LibraryEvaluator
    from genepanel_refinery.io import ensure_output_dir, load_gene_list, log_yaml, write_dataframe

    out_dir = ensure_output_dir(output_path)
    cfg = load_config(config, celltype_key, batch_key, n_neighbors, n_jobs)
    data = _load_inputs(input_path, metadata_path, cfg, logger)
    genes = load_gene_list(panel_path)

    evaluator = LibraryEvaluator(data, cfg, logger)
    stats = evaluator.evaluate(
        genes, n_genes_step=n_genes_step, checkpoints=_split_ints(checkpoints)
    )

    write_dataframe(stats.cell_score_stat, out_dir / "cell_score_stat.csv")
    write_dataframe(stats.gene_score_stat, out_dir / "gene_score_stat.csv")
    if not stats.celltype_stat.empty:
        write_dataframe(stats.celltype_stat, out_dir / "celltype_stat.csv")
    summary = stats.summary()
    write_dataframe(summary, out_dir / "library_summary.csv", index=True)
    write_dataframe(stats.convergence(), out_dir / "convergence.csv")
    log_yaml(out_dir / "evaluate_run.yaml", {"config": cfg.to_dict(), "result": stats.to_dict()})

    click.echo(f"Evaluated {len(genes)} genes at checkpoints {stats.checkpoints}")
    click.echo(summary.to_string(float_format=lambda v: f"{v:.3f}"))


@cli.command()
@data_options
@click.option("--panel", "-p", "panel_path", required=True, type=click.Path(exists=True),
              help="Panel file (CSV with 'gene' column or one gene per line)")
@click.option("--genes-to-assess", help="Comma-separated panel genes to assess (default: all)")
@click.pass_context
@handle_panel_errors
def redundancy(
    ctx: click.Context,
    input_path: str,
    metadata_path: Optional[str],
    output_path: str,
    config: Optional[str],
    celltype_key: Optional[str],
    batch_key: Optional[str],
    n_neighbors: Optional[int],
    n_jobs: Optional[int],
    panel_path: str,
    genes_to_assess: Optional[str],
) -> None:
    """Leave-one-out redundancy of panel genes per celltype.

    Writes redundancy.csv (long) and redundancy_matrix.csv (gene x celltype).
    """
    logger = ctx.obj["logger"]

    from genepanel_refinery.core.evaluation import RedundancyEstimator
    from genepanel_refinery.io import ensure_output_dir, load_gene_list, log_yaml, write_dataframe

    out_dir = ensure_output_dir(output_path)
    cfg = load_config(config, celltype_key, batch_key, n_neighbors, n_jobs)
    data = _load_inputs(input_path, metadata_path, cfg, logger)
    panel = load_gene_list(panel_path)

    estimator = RedundancyEstimator(data, cfg, logger)
    result = estimator.estimate(panel, genes_to_assess=_split_genes(genes_to_assess))

    write_dataframe(result.table, out_dir / "redundancy.csv")
    write_dataframe(result.matrix, out_dir / "redundancy_matrix.csv", index=True)
    log_yaml(out_dir / "redundancy_run.yaml", {"config": cfg.to_dict(), "result": result.to_dict()})

    click.echo(f"Assessed {result.table['gene'].nunique()} genes over {len(result.baseline)} celltypes")
    click.echo(f"Output saved to: {out_dir}")


@cli.command("map")
@data_options
@click.option("--panel", "-p", "panel_path", required=True, type=click.Path(exists=True),
              help="Panel file (CSV with 'gene' column or one gene per line)")
@click.pass_context
@handle_panel_errors
def map_cells(
    ctx: click.Context,
    input_path: str,
    metadata_path: Optional[str],
    output_path: str,
    config: Optional[str],
    celltype_key: Optional[str],
    batch_key: Optional[str],
    n_neighbors: Optional[int],
    n_jobs: Optional[int],
    panel_path: str,
) -> None:
    """Map cells to celltypes by kNN majority vote on the panel genes.

    Writes confusion_matrix.csv, celltype_accuracy.csv, mapping_table.csv and
    mapped_celltypes.csv.
    """
    logger = ctx.obj["logger"]

    from genepanel_refinery.core.evaluation import CelltypeMapper
    from genepanel_refinery.io import ensure_output_dir, load_gene_list, write_dataframe

    out_dir = ensure_output_dir(output_path)
    cfg = load_config(config, celltype_key, batch_key, n_neighbors, n_jobs)
    data = _load_inputs(input_path, metadata_path, cfg, logger)
    panel = load_gene_list(panel_path)

    mapper = CelltypeMapper(data, cfg, logger=logger)
    result = mapper.map(panel)

    write_dataframe(result.confusion, out_dir / "confusion_matrix.csv", index=True)
    write_dataframe(result.accuracy.to_frame(), out_dir / "celltype_accuracy.csv", index=True)
    write_dataframe(result.mapping_table(), out_dir / "mapping_table.csv")
    write_dataframe(
        result.predicted.rename_axis("cell").to_frame(), out_dir / "mapped_celltypes.csv", index=True
    )

    click.echo(f"Overall mapping accuracy: {result.overall_accuracy:.3f}")
    click.echo(f"Output saved to: {out_dir}")


def main() -> None:
    """Main entry point for CLI."""
    cli(obj={})


if __name__ == "__main__":
    main()
