"""
Exception taxonomy for repodocs.

Every error carries the process exit code the CLI reports for it, so the
command layer can map failures without inspecting their type.
"""
from __future__ import annotations

from pathlib import Path
from typing import Sequence


class RepodocsError(Exception):
    """Base class for all repodocs failures."""

    exit_code: int = 1


class FetchError(RepodocsError):
    """Cloning the remote repository failed."""

    exit_code = 3


class InvalidUrlError(FetchError):
    exit_code = 10


class NetworkFailureError(FetchError):
    exit_code = 11


class DestinationConflictError(FetchError):
    exit_code = 12


class AggregationError(RepodocsError):
    """The aggregated artifact could not be produced."""

    exit_code = 13


class RegistryError(RepodocsError):
    """The cache registry rejected an operation."""

    exit_code = 4


class NotFoundError(RegistryError):
    exit_code = 20


class PartialCleanupError(RegistryError):
    """Some on-disk resources could not be deleted."""

    exit_code = 21

    def __init__(self, message: str, failed_paths: Sequence[Path] = ()) -> None:
        super().__init__(message)
        self.failed_paths = list(failed_paths)


class CorruptRegistryError(RegistryError):
    """The registry and the filesystem disagree, or the registry is unreadable."""

    exit_code = 22


class AmbiguousRepositoryError(RegistryError):
    exit_code = 23

    def __init__(self, name: str, candidates: Sequence[str]) -> None:
        super().__init__(
            f"'{name}' matches several cached repositories: {', '.join(candidates)}"
        )
        self.candidates = list(candidates)


class RegistryLockError(RegistryError):
    exit_code = 24


__all__ = [
    "AggregationError",
    "AmbiguousRepositoryError",
    "CorruptRegistryError",
    "DestinationConflictError",
    "FetchError",
    "InvalidUrlError",
    "NetworkFailureError",
    "NotFoundError",
    "PartialCleanupError",
    "RegistryError",
    "RegistryLockError",
    "RepodocsError",
]
