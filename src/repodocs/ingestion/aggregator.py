"""
Markdown aggregation.

Concatenates crawled files into one artifact. A file that cannot be read is
skipped and reported; only failing to write the artifact aborts the run.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, List

from ..errors import AggregationError
from ..logger import get_logger
from ..storage.atomic import atomic_write
from .crawler import MarkdownFileRef

log = get_logger(__name__)

HEADER_TEMPLATE = "<!-- repodocs: {identifier} | path: {path} | depth: {depth} | order: {order} -->\n"


@dataclass(frozen=True)
class SkippedFile:
    ref: MarkdownFileRef
    reason: str


@dataclass
class AggregationResult:
    artifact_path: Path
    identifier: str
    included: List[MarkdownFileRef] = field(default_factory=list)
    skipped: List[SkippedFile] = field(default_factory=list)


def render_header(identifier: str, ref: MarkdownFileRef, order: int) -> str:
    return HEADER_TEMPLATE.format(
        identifier=identifier, path=ref.path.as_posix(), depth=ref.depth, order=order
    )


def _read_markdown(path: Path) -> str:
    return path.read_bytes().decode("utf-8")


def _describe(exc: Exception) -> str:
    if isinstance(exc, UnicodeDecodeError):
        return f"not valid UTF-8 (byte {exc.start})"
    if isinstance(exc, OSError) and exc.strerror:
        return exc.strerror
    return str(exc) or type(exc).__name__


class ContentAggregator:
    """Build the aggregated documentation artifact for one repository."""

    def aggregate(
        self,
        root: Path,
        refs: Iterable[MarkdownFileRef],
        identifier: str,
        destination: Path,
    ) -> AggregationResult:
        result = AggregationResult(artifact_path=destination, identifier=identifier)
        try:
            with atomic_write(destination) as handle:
                for ref in refs:
                    try:
                        content = _read_markdown(root / ref.path)
                    except (OSError, UnicodeDecodeError) as exc:
                        reason = _describe(exc)
                        result.skipped.append(SkippedFile(ref=ref, reason=reason))
                        log.warning("markdown_skipped", path=ref.path.as_posix(), reason=reason)
                        continue
                    if result.included:
                        handle.write("\n")
                    result.included.append(ref)
                    handle.write(render_header(identifier, ref, len(result.included)))
                    handle.write(content)
                    if content and not content.endswith("\n"):
                        handle.write("\n")
        except OSError as exc:
            raise AggregationError(
                f"Could not write aggregated artifact {destination}: {_describe(exc)}"
            ) from exc

        log.info(
            "aggregation_completed",
            identifier=identifier,
            included=len(result.included),
            skipped=len(result.skipped),
        )
        return result
