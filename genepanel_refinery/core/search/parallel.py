"""Parallel candidate scoring for the greedy gene search.

Each candidate's graph build and objective are independent given the
current panel, so candidates are dispatched to a joblib worker pool in
batches and the results are joined in candidate order.
"""

from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence
import logging

import numpy as np
from joblib import Parallel, delayed

from ..graph import GraphContext
from ..scoring import ScoringContext

logger = logging.getLogger(__name__)


@dataclass
class CandidateContext:
    """Minimal state for scoring candidates in worker processes.

    This contains only numpy arrays to avoid serializing the engines.
    """

    graph: GraphContext
    scoring: ScoringContext

    def score(self, panel_idx: np.ndarray, candidate: int) -> float:
        """Objective of the panel extended by one candidate gene."""
        gene_idx = np.append(panel_idx, candidate).astype(np.int64)
        return self.scoring.objective(self.graph.build(gene_idx))


def _score_candidate_batch(
    context: CandidateContext,
    panel_idx: np.ndarray,
    candidates: Sequence[int],
) -> List[float]:
    """Score one batch of candidates. Called in worker processes."""
    return [context.score(panel_idx, int(c)) for c in candidates]


def score_candidates(
    context: CandidateContext,
    panel_idx: np.ndarray,
    candidates: np.ndarray,
    n_jobs: int = 1,
    batch_size: int = 8,
    backend: str = "loky",
    should_stop: Optional[Callable[[], bool]] = None,
) -> Optional[np.ndarray]:
    """Score every candidate against the current panel.

    Parameters
    ----------
    context : CandidateContext
        Graph and scoring state
    panel_idx : np.ndarray
        Column indices of the current panel
    candidates : np.ndarray
        Column indices of the candidate genes
    n_jobs : int
        Parallel workers; 1 runs serially
    batch_size : int
        Candidates per parallel task
    backend : str
        joblib backend
    should_stop : Callable[[], bool], optional
        Cancellation check, polled between candidates when running serially

    Returns
    -------
    np.ndarray or None
        Objective per candidate in candidate order, or None if cancelled
    """
    if n_jobs == 1:
        scores = np.empty(len(candidates), dtype=np.float64)
        for i, candidate in enumerate(candidates):
            if should_stop is not None and should_stop():
                return None
            scores[i] = context.score(panel_idx, int(candidate))
        return scores

    batches = [
        candidates[i:i + batch_size]
        for i in range(0, len(candidates), batch_size)
    ]
    logger.debug(
        "Scoring %d candidates in %d batches (n_jobs=%d, backend=%s)",
        len(candidates), len(batches), n_jobs, backend,
    )
    results = Parallel(n_jobs=n_jobs, backend=backend)(
        delayed(_score_candidate_batch)(context, panel_idx, batch)
        for batch in batches
    )
    return np.asarray([s for batch in results for s in batch], dtype=np.float64)
