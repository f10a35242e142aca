"""
Logger configuration for repodocs.

structlog is bridged into the standard logging module so the CLI can keep
stdout clean for command output, or send diagnostics to the console or a file.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional, Union

import structlog
from structlog.stdlib import BoundLogger, ProcessorFormatter
from structlog.typing import Processor

_PRE_CHAIN: tuple[Processor, ...] = (
    structlog.stdlib.add_log_level,
    structlog.stdlib.add_logger_name,
    structlog.stdlib.PositionalArgumentsFormatter(),
    structlog.processors.StackInfoRenderer(),
    structlog.processors.format_exc_info,
    structlog.processors.TimeStamper(fmt="iso"),
)


def _configure_structlog(min_level: int) -> None:
    structlog.configure(
        processors=_PRE_CHAIN + (ProcessorFormatter.wrap_for_formatter,),
        wrapper_class=structlog.make_filtering_bound_logger(min_level),
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=False,
    )


def _build_formatter(renderer: Processor) -> ProcessorFormatter:
    return ProcessorFormatter(processor=renderer, foreign_pre_chain=_PRE_CHAIN)


def resolve_level(level: Union[int, str]) -> int:
    """Accept either a logging constant or a level name such as ``"debug"``."""
    if isinstance(level, int):
        return level
    resolved = logging.getLevelName(level.upper())
    return resolved if isinstance(resolved, int) else logging.INFO


def _install(handler: logging.Handler, level: Union[int, str]) -> None:
    numeric = resolve_level(level)
    _configure_structlog(numeric)
    if not isinstance(handler, logging.NullHandler):
        handler.setFormatter(_build_formatter(structlog.dev.ConsoleRenderer(colors=False)))
    logging.basicConfig(level=numeric, handlers=[handler], force=True)


def configure_logging(level: Union[int, str] = logging.INFO, enable_console: bool = True) -> None:
    """
    Configure global logging.

    With ``enable_console`` false nothing is emitted, which keeps stderr free
    for command output; ``--verbose`` turns the stderr handler on.
    """
    _install(logging.StreamHandler() if enable_console else logging.NullHandler(), level)
    logging.captureWarnings(True)


def get_logger(name: Optional[str] = None) -> BoundLogger:
    """Retrieve a structlog logger with the provided name."""
    return structlog.get_logger(name)


def redirect_logging_to_file(path: Path, level: Union[int, str] = logging.INFO) -> None:
    """Send diagnostics to ``path`` instead of the console."""
    path.parent.mkdir(parents=True, exist_ok=True)
    _install(logging.FileHandler(path, mode="w", encoding="utf-8"), level)
