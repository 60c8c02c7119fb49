"""Error taxonomy for panel design.

All errors are raised eagerly at component entry and never recovered
silently: a failure indicates a data contract violation.
"""


class PanelDesignError(ValueError):
    """Base class for panel design errors."""

    pass


class InsufficientCells(PanelDesignError):
    """Raised when fewer than k+1 cells are available for a neighbour search."""

    pass


class InsufficientGenes(PanelDesignError):
    """Raised when the requested panel size exceeds the available genes."""

    pass


class EmptyGeneSubset(PanelDesignError):
    """Raised when a graph is requested on an empty gene subset."""

    pass


class UnknownGene(PanelDesignError):
    """Raised when a gene identifier is not present in the expression matrix."""

    pass


class MissingLabels(PanelDesignError):
    """Raised when celltype labels are absent or incomplete."""

    pass


class InvalidNeighborCount(PanelDesignError):
    """Raised when the neighbour count is not a positive integer."""

    pass
