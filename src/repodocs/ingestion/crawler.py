"""
Bounded-depth markdown discovery.

The crawl is breadth-first over an explicit worklist, so files come out one
depth level at a time and, within a level, in path order. Symbolic links are
never followed.
"""
from __future__ import annotations

import fnmatch
import os
from collections import deque
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import Deque, Iterable, Iterator, List, Optional, Sequence, Tuple

from ..logger import get_logger
from ..settings import settings

log = get_logger(__name__)


@dataclass(frozen=True)
class MarkdownFileRef:
    """A markdown file found during a crawl."""

    path: PurePosixPath
    depth: int


class MarkdownCrawler:
    """Collect markdown files below a repository root."""

    def __init__(
        self,
        exclude_dirs: Optional[Iterable[str]] = None,
        extensions: Optional[Iterable[str]] = None,
    ) -> None:
        patterns = settings.exclude_dirs if exclude_dirs is None else exclude_dirs
        self.exclude_patterns: Tuple[str, ...] = tuple(
            dict.fromkeys(p.strip() for p in patterns if p.strip())
        )
        suffixes = settings.markdown_extensions if extensions is None else extensions
        self.extensions = frozenset(
            s.lower() if s.startswith(".") else f".{s.lower()}" for s in suffixes
        )

    def is_excluded(self, name: str) -> bool:
        return any(fnmatch.fnmatch(name, pattern) for pattern in self.exclude_patterns)

    def is_markdown(self, name: str) -> bool:
        return PurePosixPath(name).suffix.lower() in self.extensions

    def crawl(self, root: Path, max_depth: int) -> Iterator[MarkdownFileRef]:
        """
        Yield markdown files under ``root`` whose depth is at most ``max_depth``.

        Files directly inside ``root`` have depth 0. Each call walks the tree
        from scratch.
        """
        if max_depth < 0:
            raise ValueError("max_depth must be >= 0")
        if not root.is_dir():
            raise NotADirectoryError(f"Crawl root is not a directory: {root}")
        return self._walk(root, max_depth)

    def _walk(self, root: Path, max_depth: int) -> Iterator[MarkdownFileRef]:
        worklist: Deque[Tuple[PurePosixPath, int]] = deque([(PurePosixPath(), 0)])
        found = 0
        while worklist:
            relative, depth = worklist.popleft()
            files, subdirs = self._scan(root / relative)
            for name in files:
                found += 1
                yield MarkdownFileRef(path=relative / name, depth=depth)
            if depth + 1 > max_depth:
                continue
            for name in subdirs:
                worklist.append((relative / name, depth + 1))
        log.debug("crawl_finished", root=str(root), max_depth=max_depth, files=found)

    def _scan(self, directory: Path) -> Tuple[List[str], List[str]]:
        """Return sorted markdown file names and traversable subdirectory names."""
        files: List[str] = []
        subdirs: List[str] = []
        try:
            with os.scandir(directory) as entries:
                for entry in entries:
                    if entry.is_symlink():
                        log.debug("symlink_skipped", path=entry.path)
                        continue
                    if entry.is_dir(follow_symlinks=False):
                        if self.is_excluded(entry.name):
                            log.debug("directory_excluded", path=entry.path)
                            continue
                        subdirs.append(entry.name)
                    elif entry.is_file(follow_symlinks=False) and self.is_markdown(entry.name):
                        files.append(entry.name)
        except OSError as exc:
            log.warning("directory_unreadable", path=str(directory), error=str(exc))
            return [], []
        return sorted(files), sorted(subdirs)


def crawl(
    root: Path,
    max_depth: int,
    exclude_dirs: Optional[Sequence[str]] = None,
    extensions: Optional[Sequence[str]] = None,
) -> Iterator[MarkdownFileRef]:
    """Convenience wrapper around :class:`MarkdownCrawler`."""
    return MarkdownCrawler(exclude_dirs=exclude_dirs, extensions=extensions).crawl(root, max_depth)
