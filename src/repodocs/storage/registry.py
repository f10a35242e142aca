"""
On-disk registry of cached repositories.

The registry is a single JSON document under the storage root. Every mutation
re-reads the file while holding an advisory lock and replaces it atomically,
so concurrent invocations never observe or produce a torn file.
"""

from __future__ import annotations

import contextlib
import json
import shutil
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Dict, Iterator, List, Optional

from filelock import FileLock, Timeout
from pydantic import BaseModel, ValidationError

from ..errors import (
    AmbiguousRepositoryError,
    CorruptRegistryError,
    NotFoundError,
    PartialCleanupError,
    RegistryError,
    RegistryLockError,
)
from ..logger import get_logger
from ..settings import settings
from .atomic import atomic_write_text

log = get_logger(__name__)

REGISTRY_FORMAT_VERSION = 1


class CacheEntry(BaseModel):
    """Entry describing a cached repository and its derived artifact."""

    identifier: str
    source_url: str
    storage_path: Path
    fetched_at: datetime
    depth: int
    artifact_path: Optional[Path] = None
    persisted: bool = True
    revision: Optional[str] = None
    file_count: int = 0
    skipped_count: int = 0

    @property
    def name(self) -> str:
        return self.identifier.rsplit("/", 1)[-1]

    @property
    def root_path(self) -> Path:
        """Per-repository directory holding both the clone and the artifact."""
        return self.storage_path.parent

    def missing_paths(self) -> List[Path]:
        missing = []
        if not self.storage_path.exists():
            missing.append(self.storage_path)
        if self.persisted and (self.artifact_path is None or not self.artifact_path.exists()):
            missing.append(self.artifact_path or self.root_path)
        return missing


@dataclass
class RegistryIssue:
    """A disagreement between the registry and the filesystem."""

    kind: str
    path: Path
    identifier: Optional[str] = None

    def describe(self) -> str:
        if self.kind == "missing_resource":
            return f"{self.identifier}: registered path is missing: {self.path}"
        if self.kind == "stale_staging":
            return f"leftover of an interrupted run: {self.path}"
        return f"unregistered directory in cache: {self.path}"


@dataclass
class Removal:
    """Outcome of :meth:`RepositoryRegistry.remove`."""

    entry: CacheEntry
    already_missing: List[Path] = field(default_factory=list)


class RepositoryRegistry:
    """JSON-backed registry with file locking and atomic replacement."""

    def __init__(
        self,
        registry_path: Optional[Path] = None,
        lock_timeout: Optional[float] = None,
    ) -> None:
        self.registry_path = registry_path or settings.registry_path
        self.lock_timeout = settings.lock_timeout if lock_timeout is None else lock_timeout
        self._lock: Optional[FileLock] = None

    @property
    def lock_path(self) -> Path:
        return self.registry_path.with_name(self.registry_path.name + ".lock")

    @contextlib.contextmanager
    def locked(self) -> Iterator["RepositoryRegistry"]:
        """Hold the registry lock; re-entrant within one registry instance."""
        if self._lock is None:
            self.registry_path.parent.mkdir(parents=True, exist_ok=True)
            self._lock = FileLock(str(self.lock_path), timeout=self.lock_timeout)
        try:
            with self._lock:
                yield self
        except Timeout as exc:
            raise RegistryLockError(
                f"Timed out after {self.lock_timeout}s waiting for {self.lock_path}; "
                "another repodocs process may be running."
            ) from exc

    def _read(self) -> Dict[str, CacheEntry]:
        """Load all entries, creating an empty registry on first access."""
        if not self.registry_path.exists():
            with self.locked():
                if not self.registry_path.exists():
                    self._write({})
                    log.info("registry_initialized", path=str(self.registry_path))
                    return {}

        try:
            data = json.loads(self.registry_path.read_text(encoding="utf-8"))
            if data.get("version") != REGISTRY_FORMAT_VERSION:
                raise ValueError(f"unsupported registry version {data.get('version')!r}")
            entries = {
                identifier: CacheEntry.model_validate(payload)
                for identifier, payload in data["entries"].items()
            }
        except (OSError, ValueError, KeyError, TypeError, AttributeError, ValidationError) as exc:
            raise CorruptRegistryError(
                f"Registry file {self.registry_path} is unreadable: {exc}"
            ) from exc
        log.debug("registry_loaded", count=len(entries))
        return entries

    def _write(self, entries: Dict[str, CacheEntry]) -> None:
        payload = {
            "version": REGISTRY_FORMAT_VERSION,
            "entries": {
                identifier: entries[identifier].model_dump(mode="json")
                for identifier in sorted(entries)
            },
        }
        try:
            atomic_write_text(self.registry_path, json.dumps(payload, indent=2) + "\n")
        except OSError as exc:
            raise RegistryError(f"Could not write registry {self.registry_path}: {exc}") from exc
        log.debug("registry_persisted", count=len(entries))

    def register(self, entry: CacheEntry) -> None:
        """Add or replace ``entry``; its resources must already be on disk."""
        missing = entry.missing_paths()
        if missing:
            raise RegistryError(
                f"Refusing to register {entry.identifier}: missing "
                + ", ".join(str(path) for path in missing)
            )
        with self.locked():
            entries = self._read()
            replaced = entry.identifier in entries
            entries[entry.identifier] = entry
            self._write(entries)
        log.info("repository_registered", identifier=entry.identifier, replaced=replaced)

    def lookup(self, identifier: str) -> Optional[CacheEntry]:
        return self._read().get(identifier)

    def list(self) -> List[CacheEntry]:
        entries = self._read()
        return [entries[identifier] for identifier in sorted(entries)]

    def resolve(self, name: str) -> CacheEntry:
        """Find an entry by full identifier or by unambiguous repository name."""
        entries = self._read()
        if name in entries:
            return entries[name]
        matches = sorted(identifier for identifier, entry in entries.items() if entry.name == name)
        if not matches:
            raise NotFoundError(f"No cached repository named '{name}'.")
        if len(matches) > 1:
            raise AmbiguousRepositoryError(name, matches)
        return entries[matches[0]]

    def remove(self, identifier: str) -> Removal:
        """
        Delete the entry for ``identifier`` together with its resources.

        The entry is dropped from the registry only once every resource is
        gone; otherwise :class:`PartialCleanupError` is raised and the entry
        stays so the removal can be retried. Paths that were already gone
        are returned in :attr:`Removal.already_missing`.
        """
        with self.locked():
            entries = self._read()
            entry = entries.get(identifier)
            if entry is None:
                raise NotFoundError(f"No cached repository named '{identifier}'.")

            missing = entry.missing_paths()
            if missing:
                log.warning(
                    "registry_entry_incomplete",
                    identifier=identifier,
                    missing=[str(path) for path in missing],
                )

            failed = self._delete_resources(entry)
            if failed:
                raise PartialCleanupError(
                    f"Could not delete all files of {identifier}: "
                    + ", ".join(str(path) for path in failed)
                    + ". The registry entry was kept; re-run the removal.",
                    failed_paths=failed,
                )

            del entries[identifier]
            self._write(entries)
        log.info("repository_removed", identifier=identifier)
        return Removal(entry=entry, already_missing=missing)

    @staticmethod
    def _delete_resources(entry: CacheEntry) -> List[Path]:
        failed: List[Path] = []

        if entry.artifact_path is not None and entry.artifact_path.exists():
            try:
                entry.artifact_path.unlink()
            except OSError as exc:
                log.error("artifact_delete_failed", path=str(entry.artifact_path), error=str(exc))
                failed.append(entry.artifact_path)

        if entry.storage_path.exists():
            try:
                shutil.rmtree(entry.storage_path)
            except OSError as exc:
                log.error("storage_delete_failed", path=str(exc.filename or entry.storage_path), error=str(exc))
                failed.append(entry.storage_path)

        root = entry.root_path
        if not failed and root.exists():
            try:
                root.rmdir()
            except OSError as exc:
                log.error("repository_dir_delete_failed", path=str(root), error=str(exc))
                failed.append(root)
        return failed

    def verify(
        self,
        repos_root: Optional[Path] = None,
        staging_root: Optional[Path] = None,
    ) -> List[RegistryIssue]:
        """Report entries without files, cached directories without entries, and staging leftovers."""
        repos_root = repos_root or self.registry_path.parent / "repos"
        staging_root = staging_root or self.registry_path.parent / ".staging"
        entries = self.list()
        issues: List[RegistryIssue] = []
        referenced = set()
        for entry in entries:
            referenced.add(entry.root_path.resolve())
            for path in entry.missing_paths():
                issues.append(
                    RegistryIssue(kind="missing_resource", path=path, identifier=entry.identifier)
                )
        if repos_root.is_dir():
            for child in sorted(repos_root.iterdir()):
                if child.resolve() not in referenced:
                    issues.append(RegistryIssue(kind="unregistered_directory", path=child))
        if staging_root.is_dir():
            for child in sorted(staging_root.iterdir()):
                issues.append(RegistryIssue(kind="stale_staging", path=child))
        for issue in issues:
            log.warning("registry_issue", kind=issue.kind, path=str(issue.path), identifier=issue.identifier)
        return issues
