"""
Source fetching through the ``git`` command line client.

The fetcher only decides *whether* a clone worked from git's exit status;
it never probes the remote itself. Failures are classified from git's stderr
and any partially cloned directory is removed before the error propagates.
"""
from __future__ import annotations

import os
import shutil
import subprocess
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional, Sequence

from ..errors import (
    DestinationConflictError,
    FetchError,
    InvalidUrlError,
    NetworkFailureError,
)
from ..logger import get_logger
from ..settings import settings
from .identifiers import repository_identifier

log = get_logger(__name__)

_MISSING_REPOSITORY_MARKERS: Sequence[str] = (
    "repository not found",
    "does not appear to be a git repository",
    "does not exist",
    "not a git repository",
)


@dataclass
class FetchMetadata:
    url: str
    identifier: str
    fetched_at: datetime
    revision: Optional[str] = None
    shallow: bool = True


@dataclass
class FetchResult:
    path: Path
    metadata: FetchMetadata


def classify_clone_failure(url: str, stderr: str) -> FetchError:
    """Map git's diagnostic output onto the fetch error taxonomy."""
    detail = " ".join(line.strip() for line in stderr.strip().splitlines() if line.strip())
    lowered = detail.lower()
    if any(marker in lowered for marker in _MISSING_REPOSITORY_MARKERS):
        return InvalidUrlError(f"No repository found at {url}: {detail}")
    return NetworkFailureError(
        f"Could not fetch {url}: {detail or 'git exited without diagnostics'}. "
        "Check the network connection and credentials, then re-run."
    )


class SourceFetcher:
    """Clone remote repositories into local working directories."""

    def __init__(
        self,
        git_executable: Optional[str] = None,
        shallow: Optional[bool] = None,
        timeout: Optional[float] = None,
    ) -> None:
        self.git_executable = git_executable or settings.git_executable
        self.shallow = settings.shallow_clone if shallow is None else shallow
        self.timeout = timeout if timeout is not None else settings.clone_timeout

    def _clone_command(self, url: str, destination: Path) -> List[str]:
        command = [self.git_executable, "clone", "--quiet"]
        if self.shallow:
            command.extend(["--depth", "1"])
        command.extend(["--", url, str(destination)])
        return command

    @staticmethod
    def _git_env() -> dict:
        env = dict(os.environ)
        env["GIT_TERMINAL_PROMPT"] = "0"
        return env

    def fetch(self, url: str, destination: Path) -> FetchResult:
        """
        Clone ``url`` into ``destination``.

        ``destination`` must be absent or an empty directory. On any failure
        the destination is returned to the state it was in before the call.
        """
        identifier = repository_identifier(url)

        existed = destination.exists()
        if existed and (not destination.is_dir() or any(destination.iterdir())):
            raise DestinationConflictError(
                f"Destination {destination} already exists and is not empty."
            )
        destination.parent.mkdir(parents=True, exist_ok=True)

        command = self._clone_command(url, destination)
        log.info("clone_started", url=url, destination=str(destination), shallow=self.shallow)
        try:
            completed = subprocess.run(
                command,
                capture_output=True,
                text=True,
                timeout=self.timeout,
                env=self._git_env(),
                check=False,
            )
        except FileNotFoundError as exc:
            self._discard_partial(destination, existed)
            raise FetchError(
                f"git executable '{self.git_executable}' was not found; install git or "
                "set REPODOCS_GIT_EXECUTABLE."
            ) from exc
        except subprocess.TimeoutExpired as exc:
            self._discard_partial(destination, existed)
            raise NetworkFailureError(
                f"Cloning {url} timed out after {self.timeout} seconds."
            ) from exc

        if completed.returncode != 0:
            self._discard_partial(destination, existed)
            error = classify_clone_failure(url, completed.stderr or "")
            log.error(
                "clone_failed",
                url=url,
                returncode=completed.returncode,
                error_class=type(error).__name__,
            )
            raise error

        metadata = FetchMetadata(
            url=url,
            identifier=identifier,
            fetched_at=datetime.now(timezone.utc),
            revision=self._read_revision(destination),
            shallow=self.shallow,
        )
        log.info("clone_completed", identifier=identifier, revision=metadata.revision)
        return FetchResult(path=destination, metadata=metadata)

    def _read_revision(self, repo_path: Path) -> Optional[str]:
        try:
            completed = subprocess.run(
                [self.git_executable, "-C", str(repo_path), "rev-parse", "HEAD"],
                capture_output=True,
                text=True,
                env=self._git_env(),
                check=False,
            )
        except OSError as exc:
            log.warning("revision_lookup_failed", path=str(repo_path), error=str(exc))
            return None
        if completed.returncode != 0:
            log.warning("revision_lookup_failed", path=str(repo_path), stderr=completed.stderr.strip())
            return None
        return completed.stdout.strip() or None

    @staticmethod
    def _discard_partial(destination: Path, existed: bool) -> None:
        """Remove whatever an aborted clone left behind."""
        if not destination.exists():
            if existed:
                destination.mkdir(parents=True, exist_ok=True)
            return
        shutil.rmtree(destination)
        if existed:
            destination.mkdir(parents=True, exist_ok=True)
        log.info("partial_clone_removed", destination=str(destination))
