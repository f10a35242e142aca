"""
Repository URL parsing.

A repository is keyed by the last two path segments of its URL
(``owner/name``), which also determines its directory inside the cache.
"""
from __future__ import annotations

import re
from typing import List
from urllib.parse import urlparse

from ..errors import InvalidUrlError

SUPPORTED_SCHEMES = frozenset({"http", "https", "ssh", "git", "file"})

_SCP_LIKE = re.compile(r"^(?P<user>[\w.-]+)@(?P<host>[\w.-]+):(?P<path>[^/].*)$")
_SEGMENT = re.compile(r"^[A-Za-z0-9._-]+$")
_SLUG_SEPARATOR = "__"
_UNDERSCORE_ESCAPE = "%5F"


def _path_segments(path: str) -> List[str]:
    segments = [segment for segment in path.split("/") if segment]
    if segments and segments[-1].endswith(".git"):
        segments[-1] = segments[-1][: -len(".git")]
        if not segments[-1]:
            segments.pop()
    return segments


def repository_identifier(url: str) -> str:
    """
    Derive the registry key for ``url``.

    Raises
    ------
    InvalidUrlError
        If the URL is malformed, uses an unsupported scheme, or has no
        usable repository path.
    """
    candidate = (url or "").strip()
    if not candidate:
        raise InvalidUrlError("Repository URL is empty.")

    scp = _SCP_LIKE.match(candidate)
    if scp and "://" not in candidate:
        segments = _path_segments(scp.group("path"))
    else:
        parsed = urlparse(candidate)
        scheme = parsed.scheme.lower()
        if scheme not in SUPPORTED_SCHEMES:
            raise InvalidUrlError(
                f"Unsupported repository URL '{url}'. "
                f"Expected one of: {', '.join(sorted(SUPPORTED_SCHEMES))}, or user@host:path."
            )
        if scheme != "file" and not parsed.netloc:
            raise InvalidUrlError(f"Repository URL '{url}' has no host.")
        if parsed.query or parsed.fragment:
            raise InvalidUrlError(f"Repository URL '{url}' must not carry a query or fragment.")
        segments = _path_segments(parsed.path)

    if not segments:
        raise InvalidUrlError(f"Repository URL '{url}' does not name a repository.")

    tail = segments[-2:]
    for segment in tail:
        if segment in {".", ".."} or not _SEGMENT.match(segment):
            raise InvalidUrlError(
                f"Repository URL '{url}' contains an invalid path segment '{segment}'."
            )
    return "/".join(tail)


def identifier_slug(identifier: str) -> str:
    """
    Directory name used for ``identifier`` inside the cache.

    Underscores inside a segment are percent-escaped so the separator only
    ever comes from the slash: ``a__b/c`` and ``a/b__c`` get distinct slugs.
    """
    return _SLUG_SEPARATOR.join(
        segment.replace("_", _UNDERSCORE_ESCAPE) for segment in identifier.split("/")
    )


def repository_name(identifier: str) -> str:
    return identifier.rsplit("/", 1)[-1]
