"""Exception taxonomy for the retrieval engine."""

from __future__ import annotations


class RetrievalEngineError(Exception):
    """Base class for every error raised by the retrieval engine."""


class ValidationError(RetrievalEngineError, ValueError):
    """Blank or otherwise unusable input where a value is required."""


class DimensionMismatchError(RetrievalEngineError):
    """Two vectors of different length were compared.

    Always a configuration error: the embedder and the index disagree on the
    embedding dimension.
    """

    def __init__(self, left: int, right: int):
        super().__init__(f"Vector dimensions differ: {left} != {right}")
        self.left = left
        self.right = right


class ProviderError(RetrievalEngineError):
    """The external embedding provider failed (network, quota, bad payload)."""


class IndexBuildError(RetrievalEngineError):
    """Base class for evidence index build-state errors."""


class BuildInProgressError(IndexBuildError):
    """The index was read while a build was still running."""


class BuildFailedError(IndexBuildError):
    """The build produced inconsistent output and was rolled back."""
