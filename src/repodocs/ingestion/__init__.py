"""
Repository ingestion package.

Fetching remote repositories, discovering their markdown files, and
aggregating them into a single documentation artifact.
"""
from .aggregator import AggregationResult, ContentAggregator, SkippedFile
from .crawler import MarkdownCrawler, MarkdownFileRef, crawl
from .fetcher import FetchMetadata, FetchResult, SourceFetcher
from .identifiers import identifier_slug, repository_identifier

__all__ = [
    "AggregationResult",
    "ContentAggregator",
    "FetchMetadata",
    "FetchResult",
    "MarkdownCrawler",
    "MarkdownFileRef",
    "SkippedFile",
    "SourceFetcher",
    "crawl",
    "identifier_slug",
    "repository_identifier",
]
