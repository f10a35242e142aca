from __future__ import annotations

import shutil
from datetime import datetime, timezone
from pathlib import Path

import pytest

from repodocs.ingestion import FetchMetadata, FetchResult, repository_identifier
from repodocs.settings import AppSettings


class LocalFetcher:
    """Stands in for git by copying a prepared tree."""

    def __init__(self, source: Path) -> None:
        self.source = source
        self.calls: list[tuple[str, Path]] = []

    def fetch(self, url: str, destination: Path) -> FetchResult:
        self.calls.append((url, destination))
        shutil.copytree(self.source, destination, symlinks=True)
        return FetchResult(
            path=destination,
            metadata=FetchMetadata(
                url=url,
                identifier=repository_identifier(url),
                fetched_at=datetime(2026, 1, 2, 3, 4, 5, tzinfo=timezone.utc),
                revision="0123abcd",
            ),
        )


class FailingFetcher:
    def __init__(self, error: Exception) -> None:
        self.error = error
        self.calls: list[tuple[str, Path]] = []

    def fetch(self, url: str, destination: Path) -> FetchResult:
        self.calls.append((url, destination))
        destination.mkdir(parents=True)
        (destination / "partial").write_text("half a clone")
        raise self.error


@pytest.fixture
def docs_repo(tmp_path: Path) -> Path:
    """Repository with markdown at depths 0, 1 and 2 plus excluded directories."""
    root = tmp_path / "remote"
    (root / "docs" / "sub").mkdir(parents=True)
    (root / "README.md").write_text("# Demo\n\nTop level readme.\n")
    (root / "docs" / "a.md").write_text("Guide A\n")
    (root / "docs" / "sub" / "b.md").write_text("Deep B\n")
    (root / "src").mkdir()
    (root / "src" / "main.py").write_text("print('hi')\n")
    (root / "node_modules" / "pkg").mkdir(parents=True)
    (root / "node_modules" / "pkg" / "README.md").write_text("vendored\n")
    (root / ".github").mkdir()
    (root / ".github" / "CONTRIBUTING.md").write_text("hidden\n")
    return root


@pytest.fixture
def app_settings(tmp_path: Path) -> AppSettings:
    return AppSettings(
        storage_root=tmp_path / "store",
        temp_dir=tmp_path / "scratch",
        default_depth=2,
        lock_timeout=1.0,
    )


@pytest.fixture
def local_fetcher(docs_repo: Path) -> LocalFetcher:
    return LocalFetcher(docs_repo)


@pytest.fixture
def failing_fetcher():
    return FailingFetcher
