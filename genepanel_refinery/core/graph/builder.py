"""kNN graph construction on gene subsets.

Builds the cell-cell nearest neighbour graph used by every scoring,
selection and mapping step. Distances are Euclidean over the expression
values restricted to a gene subset, optionally batch-adjusted.
"""

from dataclasses import dataclass, field
from typing import Optional, Sequence, Tuple
import logging

import numpy as np
from scipy import sparse
from scipy.spatial.distance import cdist

from ..dataset import ExpressionData
from ..errors import EmptyGeneSubset, InsufficientCells, InvalidNeighborCount
from .batch import batch_groups, recenter_by_batch
from .config import GraphConfig

logger = logging.getLogger(__name__)


@dataclass
class KNNGraph:
    """Nearest neighbour graph over all cells.

    Attributes
    ----------
    indices : np.ndarray
        Neighbour cell indices, shape (n_cells, k), nearest first
    distances : np.ndarray
        Distances matching `indices`
    pool_sizes : np.ndarray
        Number of cells each cell could have picked neighbours from
    n_neighbors : int
        k
    genes : Tuple[str, ...]
        Gene subset the graph was built on (empty if built from indices)
    batch_strategy : str, optional
        Batch strategy used, None without batch labels
    """

    indices: np.ndarray
    distances: np.ndarray
    pool_sizes: np.ndarray
    n_neighbors: int
    genes: Tuple[str, ...] = field(default_factory=tuple)
    batch_strategy: Optional[str] = None

    @property
    def n_cells(self) -> int:
        return self.indices.shape[0]

    def to_sparse(self) -> sparse.csr_matrix:
        """Row-stochastic adjacency matrix (each neighbour weighs 1/k)."""
        n, k = self.indices.shape
        data = np.full(n * k, 1.0 / k)
        indptr = np.arange(0, n * k + 1, k)
        return sparse.csr_matrix((data, self.indices.ravel(), indptr), shape=(n, n))


def validate_neighbor_count(n_neighbors: int, n_cells: int) -> None:
    """Check that k is a positive integer and at most n_cells - 1.

    Raises
    ------
    InvalidNeighborCount
        If k is not an integer >= 1
    InsufficientCells
        If fewer than k+1 cells are available
    """
    if isinstance(n_neighbors, bool) or not isinstance(n_neighbors, (int, np.integer)):
        raise InvalidNeighborCount(f"n_neighbors must be an integer, got {n_neighbors!r}")
    if n_neighbors < 1:
        raise InvalidNeighborCount(f"n_neighbors must be >= 1, got {n_neighbors}")
    if n_cells < n_neighbors + 1:
        raise InsufficientCells(
            f"{n_cells} cells available; at least {n_neighbors + 1} required for k={n_neighbors}"
        )


def validate_batch_sizes(batch_codes: np.ndarray, n_neighbors: int) -> None:
    """Check that every batch holds at least k+1 cells.

    Raises
    ------
    InsufficientCells
        If the smallest batch is too small for within-batch search
    """
    smallest = min(len(g) for g in batch_groups(batch_codes))
    if smallest < n_neighbors + 1:
        raise InsufficientCells(
            f"Smallest batch has {smallest} cells; at least {n_neighbors + 1} "
            f"required for within-batch search with k={n_neighbors}"
        )


def _exact_group_neighbors(
    values: np.ndarray,
    members: np.ndarray,
    n_neighbors: int,
    tie_rank: np.ndarray,
    chunk_size: int,
) -> Tuple[np.ndarray, np.ndarray]:
    """Exact neighbours of every member among the other members."""
    group_values = values[members]
    member_rank = tie_rank[members]
    n_members = len(members)

    indices = np.empty((n_members, n_neighbors), dtype=np.int64)
    distances = np.empty((n_members, n_neighbors), dtype=np.float64)

    for start in range(0, n_members, chunk_size):
        stop = min(start + chunk_size, n_members)
        dist = cdist(group_values[start:stop], group_values, metric="euclidean")
        rows = np.arange(stop - start)
        dist[rows, rows + start] = np.inf

        # Shortlist every column within the k-th smallest distance (ties kept)
        kth = np.partition(dist, n_neighbors - 1, axis=1)[:, n_neighbors - 1:n_neighbors]
        width = int((dist <= kth).sum(axis=1).max())
        shortlist = np.argpartition(dist, width - 1, axis=1)[:, :width]
        short_dist = np.take_along_axis(dist, shortlist, axis=1)

        # Sort by distance, then by cell id rank
        order = np.lexsort((member_rank[shortlist], short_dist), axis=-1)[:, :n_neighbors]
        order = np.take_along_axis(shortlist, order, axis=1)

        indices[start:stop] = members[order]
        distances[start:stop] = np.take_along_axis(dist, order, axis=1)

    return indices, distances


def _sklearn_group_neighbors(
    values: np.ndarray,
    members: np.ndarray,
    n_neighbors: int,
) -> Tuple[np.ndarray, np.ndarray]:
    """Neighbours via sklearn; order among equidistant cells is not guaranteed."""
    from sklearn.neighbors import NearestNeighbors

    nn = NearestNeighbors(n_neighbors=n_neighbors, metric="euclidean")
    nn.fit(values[members])
    # Querying without X excludes each point from its own neighbours
    distances, local = nn.kneighbors()
    return members[local], distances


def build_knn_graph(
    matrix: np.ndarray,
    gene_idx: Sequence[int],
    n_neighbors: int,
    batch_codes: Optional[np.ndarray] = None,
    batch_strategy: str = "within",
    method: str = "exact",
    tie_rank: Optional[np.ndarray] = None,
    chunk_size: int = 1024,
) -> KNNGraph:
    """Build a kNN graph on a subset of matrix columns.

    Parameters
    ----------
    matrix : np.ndarray
        Expression matrix (n_cells, n_genes). Already recentred if the
        "recenter" batch strategy is in use.
    gene_idx : Sequence[int]
        Column indices of the gene subset
    n_neighbors : int
        Number of neighbours per cell
    batch_codes : np.ndarray, optional
        Integer batch code per cell. With the "within" strategy neighbours
        are searched inside each batch only.
    batch_strategy : str
        "within" or "recenter"
    method : str
        "exact" or "sklearn"
    tie_rank : np.ndarray, optional
        Tie-break rank per cell (defaults to row order)
    chunk_size : int
        Rows per distance block for the exact method

    Returns
    -------
    KNNGraph
        Graph with exactly k neighbours per cell and no self-loops

    Raises
    ------
    EmptyGeneSubset, InvalidNeighborCount, InsufficientCells
    """
    gene_idx = np.asarray(gene_idx, dtype=np.int64)
    if gene_idx.size == 0:
        raise EmptyGeneSubset("Cannot build a graph on an empty gene subset")

    n_cells = matrix.shape[0]
    validate_neighbor_count(n_neighbors, n_cells)
    if tie_rank is None:
        tie_rank = np.arange(n_cells)

    if batch_codes is not None and batch_strategy == "within":
        validate_batch_sizes(batch_codes, n_neighbors)
        groups = batch_groups(batch_codes)
    else:
        groups = [np.arange(n_cells)]

    values = matrix[:, gene_idx]
    indices = np.empty((n_cells, n_neighbors), dtype=np.int64)
    distances = np.empty((n_cells, n_neighbors), dtype=np.float64)
    pool_sizes = np.empty(n_cells, dtype=np.int64)

    for members in groups:
        if method == "sklearn":
            idx, dist = _sklearn_group_neighbors(values, members, n_neighbors)
        else:
            idx, dist = _exact_group_neighbors(
                values, members, n_neighbors, tie_rank, chunk_size
            )
        indices[members] = idx
        distances[members] = dist
        pool_sizes[members] = len(members) - 1

    return KNNGraph(
        indices=indices,
        distances=distances,
        pool_sizes=pool_sizes,
        n_neighbors=int(n_neighbors),
        batch_strategy=batch_strategy if batch_codes is not None else None,
    )


@dataclass
class GraphContext:
    """Plain-array state needed to build graphs in worker processes.

    This contains only numpy arrays to avoid serializing ExpressionData.
    """

    matrix: np.ndarray
    n_neighbors: int
    tie_rank: np.ndarray
    batch_codes: Optional[np.ndarray] = None
    batch_strategy: str = "within"
    method: str = "exact"
    chunk_size: int = 1024

    def build(self, gene_idx: Sequence[int]) -> KNNGraph:
        return build_knn_graph(
            self.matrix,
            gene_idx,
            self.n_neighbors,
            batch_codes=self.batch_codes,
            batch_strategy=self.batch_strategy,
            method=self.method,
            tie_rank=self.tie_rank,
            chunk_size=self.chunk_size,
        )


class GraphBuilder:
    """Builds kNN graphs for gene subsets of one dataset.

    Parameters
    ----------
    data : ExpressionData
        Expression data (read-only)
    config : GraphConfig, optional
        Graph configuration. If None, uses defaults.
    logger : logging.Logger, optional
        Logger instance. If None, uses the module logger.

    Example
    -------
    >>> builder = GraphBuilder(data, GraphConfig(n_neighbors=10))
    >>> graph = builder.build(["GeneA", "GeneB", "GeneC"])
    >>> graph.indices.shape
    (100, 10)
    """

    def __init__(
        self,
        data: ExpressionData,
        config: Optional[GraphConfig] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.data = data
        self.config = config or GraphConfig()
        self.logger = logger or logging.getLogger(__name__)

        validate_neighbor_count(self.config.n_neighbors, data.n_cells)

        batch_codes = data.batch_codes() if data.has_batch else None
        matrix = data.matrix
        if batch_codes is not None:
            self.logger.info(
                "Batch-aware graphs: %d batches, strategy=%s",
                len(data.batch.categories),
                self.config.batch_strategy,
            )
            if self.config.batch_strategy == "within":
                validate_batch_sizes(batch_codes, self.config.n_neighbors)
            elif self.config.batch_strategy == "recenter":
                matrix = recenter_by_batch(matrix, batch_codes)

        self.context = GraphContext(
            matrix=matrix,
            n_neighbors=self.config.n_neighbors,
            tie_rank=data.cell_order(),
            batch_codes=batch_codes,
            batch_strategy=self.config.batch_strategy,
            method=self.config.method,
            chunk_size=self.config.chunk_size,
        )

    @property
    def n_neighbors(self) -> int:
        return self.config.n_neighbors

    def build(self, genes: Sequence[str]) -> KNNGraph:
        """Build the kNN graph on an ordered gene subset.

        Raises
        ------
        EmptyGeneSubset, UnknownGene, InsufficientCells
        """
        gene_idx = self.data.gene_indices(genes)
        graph = self.context.build(gene_idx)
        graph.genes = tuple(self.data.genes[gene_idx])
        self.logger.debug("Built kNN graph on %d genes (k=%d)", len(gene_idx), graph.n_neighbors)
        return graph

    def build_from_indices(self, gene_idx: Sequence[int]) -> KNNGraph:
        """Build the kNN graph on column indices of the expression matrix."""
        graph = self.context.build(gene_idx)
        graph.genes = tuple(self.data.genes[np.asarray(gene_idx, dtype=np.int64)])
        return graph
