"""
Command line interface for repodocs.
"""

from __future__ import annotations

from fnmatch import fnmatch
from pathlib import Path
from typing import NoReturn, Optional, Sequence

import typer
from rich.console import Console
from rich.progress import Progress, SpinnerColumn, TextColumn, TimeElapsedColumn

from .errors import CorruptRegistryError, RepodocsError
from .logger import configure_logging, get_logger, redirect_logging_to_file
from .services import IngestionCallbacks, IngestionService, RunState
from .settings import settings
from .version import __version__

app = typer.Typer(
    name="repodocs",
    help="Fetch a repository, collect its markdown documentation, and cache it.",
    no_args_is_help=True,
)
configure_logging(level=settings.log_level, enable_console=False)
log = get_logger(__name__)
console = Console(stderr=True)

_STAGE_LABELS = {
    RunState.FETCHING: "Cloning repository",
    RunState.CRAWLING: "Collecting markdown files",
    RunState.AGGREGATING: "Aggregating documentation",
    RunState.PERSISTING: "Saving to cache",
    RunState.DISCARDING: "Removing temporary files",
    RunState.DONE: "Done",
    RunState.FAILED: "Failed",
}


def build_service() -> IngestionService:
    return IngestionService(config=settings)


def _fail(exc: RepodocsError) -> NoReturn:
    typer.echo(f"[ERROR] {exc}", err=True)
    raise typer.Exit(code=exc.exit_code)


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"repodocs {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    verbose: bool = typer.Option(
        False, "--verbose", "-v", help="Print diagnostic logs to stderr."
    ),
    log_file: Optional[Path] = typer.Option(
        None, "--log", help="Write diagnostic logs to this file."
    ),
    version: bool = typer.Option(
        False,
        "--version",
        callback=_version_callback,
        is_eager=True,
        help="Show the version and exit.",
    ),
) -> None:
    """Fetch a repository, collect its markdown documentation, and cache it."""
    if log_file is not None:
        redirect_logging_to_file(log_file.resolve(), level=settings.log_level)
    elif verbose:
        configure_logging(level="DEBUG", enable_console=True)


@app.command()
def run(
    url: str = typer.Argument(..., help="URL of the repository to fetch."),
    persist: bool = typer.Option(
        False, "--persist", help="Keep the clone and the aggregated docs in the cache."
    ),
    depth: Optional[int] = typer.Option(
        None,
        "--depth",
        "-d",
        min=0,
        help=f"Maximum directory depth to search for markdown (default {settings.default_depth}).",
    ),
    output: Optional[Path] = typer.Option(
        None, "--output", "-o", help="Also copy the aggregated docs to this path."
    ),
) -> None:
    """Fetch a repository and aggregate its markdown documentation."""
    service = build_service()

    with Progress(
        SpinnerColumn(),
        TextColumn("{task.description}"),
        TimeElapsedColumn(),
        console=console,
        transient=True,
    ) as progress:
        task = progress.add_task("Starting", total=None)

        def on_stage(state: RunState) -> None:
            progress.update(task, description=_STAGE_LABELS.get(state, state.value))

        def on_file(ref) -> None:
            progress.update(task, description=f"Collecting {ref.path.as_posix()}")

        try:
            result = service.run(
                url,
                depth=depth,
                persist=persist,
                export_to=output,
                callbacks=IngestionCallbacks(stage=on_stage, file=on_file),
            )
        except RepodocsError as exc:
            progress.stop()
            _fail(exc)

    for skipped in result.skipped:
        typer.echo(
            f"[WARN] skipped {skipped.ref.path.as_posix()}: {skipped.reason}", err=True
        )

    typer.echo(
        f"{result.identifier}: {result.included_count} markdown file(s) "
        f"at depth <= {result.depth}, {len(result.skipped)} skipped"
    )
    if result.entry is not None:
        typer.echo(f"Cached at {result.entry.root_path}")
        typer.echo(f"Docs: {result.entry.artifact_path}")
    else:
        typer.echo("Not persisted; temporary files removed.")
    if result.exported_to is not None:
        typer.echo(f"Docs written to {result.exported_to}")


@app.command("list")
def list_repos() -> None:
    """List cached repositories."""
    service = build_service()
    try:
        entries = service.registry.list()
        issues = service.registry.verify(
            service.config.repos_root, service.config.staging_root
        )
    except RepodocsError as exc:
        _fail(exc)

    if not entries:
        typer.echo("No cached repositories.")
    width = max((len(entry.identifier) for entry in entries), default=0)
    for entry in entries:
        typer.echo(
            f"{entry.identifier:<{width}}  {entry.source_url}  "
            f"persisted={'yes' if entry.persisted else 'no'}  "
            f"fetched={entry.fetched_at.isoformat(timespec='seconds')}"
        )

    if issues:
        for issue in issues:
            typer.echo(f"[CORRUPT] {issue.describe()}", err=True)
        raise typer.Exit(code=CorruptRegistryError.exit_code)


@app.command("rm")
def remove(
    repo_name: str = typer.Argument(..., help="Identifier (owner/name) or repository name."),
) -> None:
    """Remove a cached repository and its files."""
    service = build_service()
    try:
        removal = service.remove(repo_name)
    except RepodocsError as exc:
        _fail(exc)
    typer.echo(f"Removed {removal.entry.identifier}")
    if removal.already_missing:
        typer.echo(
            f"[CORRUPT] {removal.entry.identifier}: files were already missing: "
            + ", ".join(str(path) for path in removal.already_missing),
            err=True,
        )


def _render_directory_tree(root: Path, ignore: Sequence[str], max_depth: int = 2) -> str:
    def should_skip(path: Path) -> bool:
        return path.is_symlink() or any(fnmatch(path.name, pattern) for pattern in ignore)

    lines: list[str] = [str(root.resolve())]

    def walk(path: Path, prefix: str, depth: int) -> None:
        if depth > max_depth:
            return
        try:
            entries = sorted(
                (child for child in path.iterdir() if not should_skip(child)),
                key=lambda p: (not p.is_dir(), p.name.lower()),
            )
        except PermissionError:
            lines.append(f"{prefix}└── <permission denied>")
            return

        total = len(entries)
        for idx, entry in enumerate(entries):
            connector = "└── " if idx == total - 1 else "├── "
            suffix = "/" if entry.is_dir() else ""
            lines.append(f"{prefix}{connector}{entry.name}{suffix}")
            if entry.is_dir():
                extension = "    " if idx == total - 1 else "│   "
                walk(entry, prefix + extension, depth + 1)

    walk(root, "", 0)
    return "\n".join(lines)


@app.command()
def show(
    repo_name: str = typer.Argument(..., help="Identifier (owner/name) or repository name."),
    tree: bool = typer.Option(False, "--tree", help="Show the directory tree instead of the docs."),
    depth: int = typer.Option(2, "--depth", "-d", min=0, help="Tree depth for --tree."),
) -> None:
    """Print the aggregated docs (or directory tree) of a cached repository."""
    service = build_service()
    try:
        entry = service.registry.resolve(repo_name)
        missing = entry.missing_paths()
        if missing:
            raise CorruptRegistryError(
                f"{entry.identifier} is registered but missing: "
                + ", ".join(str(path) for path in missing)
            )
    except RepodocsError as exc:
        _fail(exc)

    if tree:
        typer.echo(_render_directory_tree(entry.storage_path, [".git"], max_depth=depth))
        return
    try:
        text = entry.artifact_path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        _fail(CorruptRegistryError(f"Could not read {entry.artifact_path}: {exc}"))
    typer.echo(text, nl=False)


@app.command()
def verify() -> None:
    """Check that the registry and the cache directory agree."""
    service = build_service()
    try:
        issues = service.registry.verify(
            service.config.repos_root, service.config.staging_root
        )
    except RepodocsError as exc:
        _fail(exc)
    if not issues:
        typer.echo("Registry is consistent.")
        return
    for issue in issues:
        typer.echo(f"[CORRUPT] {issue.describe()}", err=True)
    raise typer.Exit(code=CorruptRegistryError.exit_code)


@app.command()
def workspace() -> None:
    """Show where cached repositories and the registry live."""
    typer.echo(f"Storage root: {settings.storage_root}")
    typer.echo(f"Registry: {settings.registry_path}")
    typer.echo(f"Default depth: {settings.default_depth}")
    typer.echo(f"Excluded directories: {', '.join(settings.exclude_dirs)}")


if __name__ == "__main__":  # pragma: no cover
    app()
