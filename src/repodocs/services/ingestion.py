"""
Repository ingestion workflow orchestration.

One run moves through fetch, crawl and aggregate, then either persists the
result into the cache or discards it. The service owns the run's working
directory: it is the only place a clone directory gets deleted.
"""
from __future__ import annotations

import enum
import os
import shutil
import tempfile
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, List, Optional

from ..errors import (
    AggregationError,
    CorruptRegistryError,
    PartialCleanupError,
    RegistryError,
    RepodocsError,
)
from ..ingestion import (
    AggregationResult,
    ContentAggregator,
    FetchResult,
    MarkdownCrawler,
    MarkdownFileRef,
    SkippedFile,
    SourceFetcher,
    identifier_slug,
    repository_identifier,
)
from ..logger import get_logger
from ..settings import AppSettings, settings as default_settings
from ..storage import CacheEntry, Removal, RepositoryRegistry
from ..storage.atomic import fsync_directory

log = get_logger(__name__)

SOURCE_DIRNAME = "source"


class RunState(str, enum.Enum):
    IDLE = "idle"
    FETCHING = "fetching"
    CRAWLING = "crawling"
    AGGREGATING = "aggregating"
    PERSISTING = "persisting"
    DISCARDING = "discarding"
    DONE = "done"
    FAILED = "failed"


@dataclass
class IngestionCallbacks:
    stage: Optional[Callable[[RunState], None]] = None
    file: Optional[Callable[[MarkdownFileRef], None]] = None


@dataclass
class RunResult:
    identifier: str
    url: str
    depth: int
    persisted: bool
    state: RunState = RunState.IDLE
    refs: List[MarkdownFileRef] = field(default_factory=list)
    skipped: List[SkippedFile] = field(default_factory=list)
    entry: Optional[CacheEntry] = None
    exported_to: Optional[Path] = None
    error: Optional[RepodocsError] = None

    @property
    def included_count(self) -> int:
        return len(self.refs) - len(self.skipped)


class IngestionService:
    """High-level service that chains fetching, crawling, aggregation and caching."""

    def __init__(
        self,
        fetcher: Optional[SourceFetcher] = None,
        crawler: Optional[MarkdownCrawler] = None,
        aggregator: Optional[ContentAggregator] = None,
        registry: Optional[RepositoryRegistry] = None,
        config: Optional[AppSettings] = None,
    ) -> None:
        self.config = config or default_settings
        self.fetcher = fetcher or SourceFetcher(
            git_executable=self.config.git_executable,
            shallow=self.config.shallow_clone,
            timeout=self.config.clone_timeout,
        )
        self.crawler = crawler or MarkdownCrawler(
            exclude_dirs=self.config.exclude_dirs,
            extensions=self.config.markdown_extensions,
        )
        self.aggregator = aggregator or ContentAggregator()
        self.registry = registry or RepositoryRegistry(
            registry_path=self.config.registry_path,
            lock_timeout=self.config.lock_timeout,
        )
        self.state = RunState.IDLE

    def repository_dir(self, identifier: str) -> Path:
        return self.config.repos_root / identifier_slug(identifier)

    def _transition(self, state: RunState, result: RunResult, callbacks: IngestionCallbacks) -> None:
        self.state = state
        result.state = state
        log.debug("run_state", identifier=result.identifier, state=state.value)
        if callbacks.stage:
            callbacks.stage(state)

    def run(
        self,
        url: str,
        depth: Optional[int] = None,
        persist: bool = False,
        export_to: Optional[Path] = None,
        callbacks: Optional[IngestionCallbacks] = None,
    ) -> RunResult:
        """Execute one ingestion run for ``url``."""
        cb = callbacks or IngestionCallbacks()
        max_depth = self.config.default_depth if depth is None else depth
        if max_depth < 0:
            raise ValueError("depth must be >= 0")

        identifier = repository_identifier(url)
        result = RunResult(identifier=identifier, url=url, depth=max_depth, persisted=persist)
        self.state = RunState.IDLE
        if persist:
            self._check_destination(identifier)

        workdir = self._make_workdir(identifier, persist)
        log.info("run_started", identifier=identifier, depth=max_depth, persist=persist)
        try:
            self._transition(RunState.FETCHING, result, cb)
            fetched = self.fetcher.fetch(url, workdir / SOURCE_DIRNAME)

            self._transition(RunState.CRAWLING, result, cb)
            for ref in self.crawler.crawl(fetched.path, max_depth):
                result.refs.append(ref)
                if cb.file:
                    cb.file(ref)

            self._transition(RunState.AGGREGATING, result, cb)
            aggregation = self.aggregator.aggregate(
                fetched.path,
                result.refs,
                identifier,
                workdir / self.config.artifact_name,
            )
            result.skipped = list(aggregation.skipped)

            if export_to is not None:
                result.exported_to = self._export(aggregation, export_to)

            if persist:
                self._transition(RunState.PERSISTING, result, cb)
                result.entry = self._persist(workdir, fetched, aggregation, max_depth)
            else:
                self._transition(RunState.DISCARDING, result, cb)
                self._discard(workdir)
        except RepodocsError as exc:
            result.error = exc
            self._transition(RunState.FAILED, result, cb)
            self._cleanup_after_failure(workdir)
            log.error("run_failed", identifier=identifier, error_class=type(exc).__name__, error=str(exc))
            raise
        except BaseException:
            self._transition(RunState.FAILED, result, cb)
            self._cleanup_after_failure(workdir)
            raise

        self._transition(RunState.DONE, result, cb)
        log.info(
            "run_completed",
            identifier=identifier,
            files=result.included_count,
            skipped=len(result.skipped),
            persisted=persist,
        )
        return result

    def remove(self, name: str) -> Removal:
        """Remove a cached repository by identifier or repository name."""
        entry = self.registry.resolve(name)
        return self.registry.remove(entry.identifier)

    def _check_destination(self, identifier: str) -> None:
        target = self.repository_dir(identifier)
        if target.exists() and self.registry.lookup(identifier) is None:
            raise CorruptRegistryError(
                f"{target} exists but is not registered for {identifier}. "
                "Inspect it with 'repodocs verify' and remove it manually."
            )

    def _make_workdir(self, identifier: str, persist: bool) -> Path:
        prefix = f"{identifier_slug(identifier)}-"
        parent = self.config.staging_root if persist else self.config.temp_dir
        if not persist:
            prefix = f"repodocs-{prefix}"
        try:
            if parent is not None:
                parent.mkdir(parents=True, exist_ok=True)
            return Path(tempfile.mkdtemp(prefix=prefix, dir=parent))
        except OSError as exc:
            raise RepodocsError(
                f"Could not create a working directory under {parent or tempfile.gettempdir()}: {exc}"
            ) from exc

    @staticmethod
    def _export(aggregation: AggregationResult, export_to: Path) -> Path:
        target = export_to
        if target.is_dir():
            target = target / aggregation.artifact_path.name
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            shutil.copyfile(aggregation.artifact_path, target)
        except OSError as exc:
            raise AggregationError(f"Could not write the aggregated docs to {target}: {exc}") from exc
        log.info("artifact_exported", path=str(target))
        return target

    def _persist(
        self,
        workdir: Path,
        fetched: FetchResult,
        aggregation: AggregationResult,
        depth: int,
    ) -> CacheEntry:
        """Move the staged run into the cache and register it."""
        identifier = fetched.metadata.identifier
        target = self.repository_dir(identifier)

        with self.registry.locked():
            previous = self.registry.lookup(identifier)
            if target.exists() and previous is None:
                raise CorruptRegistryError(
                    f"{target} appeared while fetching {identifier} and is not registered."
                )

            displaced: Optional[Path] = None
            moved = False
            try:
                target.parent.mkdir(parents=True, exist_ok=True)
                if target.exists():
                    aside = self.config.staging_root / f"{target.name}.old.{uuid.uuid4().hex}"
                    os.replace(target, aside)
                    displaced = aside
                os.replace(workdir, target)
                moved = True
                fsync_directory(target.parent)

                entry = CacheEntry(
                    identifier=identifier,
                    source_url=fetched.metadata.url,
                    storage_path=target / SOURCE_DIRNAME,
                    artifact_path=target / aggregation.artifact_path.name,
                    fetched_at=fetched.metadata.fetched_at,
                    depth=depth,
                    persisted=True,
                    revision=fetched.metadata.revision,
                    file_count=len(aggregation.included),
                    skipped_count=len(aggregation.skipped),
                )
                self.registry.register(entry)
            except OSError as exc:
                self._roll_back(target, displaced, moved)
                raise RegistryError(
                    f"Could not move {identifier} into the cache at {target}: {exc}"
                ) from exc
            except BaseException:
                self._roll_back(target, displaced, moved)
                raise

        if displaced is not None:
            try:
                shutil.rmtree(displaced)
            except OSError as exc:
                log.error("previous_copy_delete_failed", path=str(displaced), error=str(exc))
        log.info("repository_persisted", identifier=identifier, path=str(target))
        return entry

    @staticmethod
    def _roll_back(target: Path, displaced: Optional[Path], moved: bool) -> None:
        """Put the previous cached copy back after a failed commit."""
        if moved:
            shutil.rmtree(target, ignore_errors=True)
        if displaced is None:
            return
        try:
            os.replace(displaced, target)
        except OSError as exc:
            log.error(
                "previous_copy_restore_failed",
                path=str(displaced),
                target=str(target),
                error=str(exc),
            )

    @staticmethod
    def _discard(workdir: Path) -> None:
        try:
            shutil.rmtree(workdir)
        except OSError as exc:
            raise PartialCleanupError(
                f"Could not delete temporary clone {workdir}: {exc}", failed_paths=[workdir]
            ) from exc
        log.info("run_discarded", path=str(workdir))

    @staticmethod
    def _cleanup_after_failure(workdir: Path) -> None:
        if not workdir.exists():
            return
        try:
            shutil.rmtree(workdir)
        except OSError as exc:
            log.error("workdir_cleanup_failed", path=str(workdir), error=str(exc))
