import contextlib
from datetime import datetime, timezone
from pathlib import Path

import pytest
from filelock import FileLock

import repodocs.storage.registry as registry_module
from repodocs.errors import (
    AmbiguousRepositoryError,
    CorruptRegistryError,
    NotFoundError,
    PartialCleanupError,
    RegistryError,
    RegistryLockError,
)
from repodocs.storage import CacheEntry, RepositoryRegistry


def make_entry(repos_root: Path, identifier: str, create: bool = True) -> CacheEntry:
    root = repos_root / identifier.replace("/", "__")
    if create:
        (root / "source").mkdir(parents=True)
        (root / "source" / "README.md").write_text("readme")
        (root / "DOCS.md").write_text("docs")
    return CacheEntry(
        identifier=identifier,
        source_url=f"https://example.com/{identifier}",
        storage_path=root / "source",
        artifact_path=root / "DOCS.md",
        fetched_at=datetime(2026, 1, 2, tzinfo=timezone.utc),
        depth=2,
        file_count=1,
    )


@pytest.fixture
def registry(tmp_path: Path) -> RepositoryRegistry:
    return RepositoryRegistry(registry_path=tmp_path / "store" / "registry.json", lock_timeout=0.2)


@pytest.fixture
def repos_root(tmp_path: Path) -> Path:
    return tmp_path / "store" / "repos"


def test_registry_created_empty_on_first_access(registry: RepositoryRegistry) -> None:
    assert not registry.registry_path.exists()
    assert registry.list() == []
    assert registry.registry_path.exists()


def test_register_lookup_and_sorted_list(registry: RepositoryRegistry, repos_root: Path) -> None:
    registry.register(make_entry(repos_root, "zeta/tool"))
    registry.register(make_entry(repos_root, "alpha/lib"))

    assert [entry.identifier for entry in registry.list()] == ["alpha/lib", "zeta/tool"]
    found = registry.lookup("alpha/lib")
    assert found is not None
    assert found.storage_path == repos_root / "alpha__lib" / "source"
    assert registry.lookup("missing/repo") is None


def test_registry_survives_reload(registry: RepositoryRegistry, repos_root: Path) -> None:
    registry.register(make_entry(repos_root, "org/repo"))
    reloaded = RepositoryRegistry(registry_path=registry.registry_path)
    entry = reloaded.lookup("org/repo")
    assert entry is not None
    assert entry.fetched_at == datetime(2026, 1, 2, tzinfo=timezone.utc)


def test_register_refuses_missing_resources(registry: RepositoryRegistry, repos_root: Path) -> None:
    with pytest.raises(RegistryError):
        registry.register(make_entry(repos_root, "org/repo", create=False))
    assert registry.list() == []


def test_remove_unknown_leaves_registry_untouched(registry: RepositoryRegistry) -> None:
    registry.list()
    before = registry.registry_path.read_bytes()

    with pytest.raises(NotFoundError):
        registry.remove("ghost-repo")

    assert registry.registry_path.read_bytes() == before


def test_remove_deletes_entry_and_resources(registry: RepositoryRegistry, repos_root: Path) -> None:
    entry = make_entry(repos_root, "org/repo")
    registry.register(entry)

    removed = registry.remove("org/repo")

    assert removed.entry.identifier == "org/repo"
    assert removed.already_missing == []
    assert registry.list() == []
    assert not entry.root_path.exists()


def test_partial_cleanup_keeps_entry(
    registry: RepositoryRegistry, repos_root: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    entry = make_entry(repos_root, "org/repo")
    registry.register(entry)

    def refuse(path, *args, **kwargs):
        raise PermissionError(13, "Permission denied", str(path))

    monkeypatch.setattr(registry_module.shutil, "rmtree", refuse)

    with pytest.raises(PartialCleanupError) as excinfo:
        registry.remove("org/repo")

    assert entry.storage_path in excinfo.value.failed_paths
    assert registry.lookup("org/repo") is not None

    monkeypatch.undo()
    registry.remove("org/repo")
    assert registry.list() == []
    assert not entry.root_path.exists()


def test_remove_entry_whose_files_are_already_gone(
    registry: RepositoryRegistry, repos_root: Path
) -> None:
    entry = make_entry(repos_root, "org/repo")
    registry.register(entry)
    (entry.root_path / "DOCS.md").unlink()

    removed = registry.remove("org/repo")

    assert removed.already_missing == [entry.artifact_path]
    assert registry.list() == []
    assert not entry.root_path.exists()


def test_resolve_by_identifier_and_name(registry: RepositoryRegistry, repos_root: Path) -> None:
    registry.register(make_entry(repos_root, "org/repo"))
    registry.register(make_entry(repos_root, "org/other"))
    registry.register(make_entry(repos_root, "fork/other"))

    assert registry.resolve("org/repo").identifier == "org/repo"
    assert registry.resolve("repo").identifier == "org/repo"
    with pytest.raises(AmbiguousRepositoryError) as excinfo:
        registry.resolve("other")
    assert excinfo.value.candidates == ["fork/other", "org/other"]
    with pytest.raises(NotFoundError):
        registry.resolve("ghost-repo")


def test_unparseable_registry_is_reported(registry: RepositoryRegistry) -> None:
    registry.registry_path.parent.mkdir(parents=True)
    registry.registry_path.write_text("{ not json")
    with pytest.raises(CorruptRegistryError):
        registry.list()


def test_schema_mismatch_is_reported(registry: RepositoryRegistry) -> None:
    registry.registry_path.parent.mkdir(parents=True)
    registry.registry_path.write_text('{"version": 1, "entries": {"org/repo": {"identifier": "org/repo"}}}')
    with pytest.raises(CorruptRegistryError):
        registry.list()


def test_verify_reports_missing_files_and_orphans(
    registry: RepositoryRegistry, repos_root: Path
) -> None:
    entry = make_entry(repos_root, "org/repo")
    registry.register(entry)
    (entry.root_path / "DOCS.md").unlink()
    (repos_root / "stray__dir").mkdir()

    issues = registry.verify(repos_root)

    assert [(issue.kind, issue.path.name) for issue in issues] == [
        ("missing_resource", "DOCS.md"),
        ("unregistered_directory", "stray__dir"),
    ]
    assert "org/repo" in issues[0].describe()


def test_verify_clean_registry(registry: RepositoryRegistry, repos_root: Path) -> None:
    registry.register(make_entry(repos_root, "org/repo"))
    assert registry.verify(repos_root) == []


def test_lock_timeout_is_reported(registry: RepositoryRegistry, repos_root: Path) -> None:
    entry = make_entry(repos_root, "org/repo")
    registry.registry_path.parent.mkdir(parents=True, exist_ok=True)
    holder = FileLock(str(registry.lock_path))
    with holder:
        with pytest.raises(RegistryLockError):
            registry.register(entry)


def test_writes_leave_no_temporary_files(registry: RepositoryRegistry, repos_root: Path) -> None:
    registry.register(make_entry(repos_root, "org/repo"))
    registry.remove("org/repo")
    leftovers = [p.name for p in registry.registry_path.parent.iterdir() if ".tmp." in p.name]
    assert leftovers == []


def test_verify_reports_staging_leftovers(registry: RepositoryRegistry, repos_root: Path) -> None:
    staging = registry.registry_path.parent / ".staging"
    (staging / "org__repo.old.0f1e").mkdir(parents=True)

    issues = registry.verify(repos_root, staging)

    assert [(issue.kind, issue.path.name) for issue in issues] == [
        ("stale_staging", "org__repo.old.0f1e"),
    ]
    assert "interrupted run" in issues[0].describe()


def test_first_read_picks_up_registry_created_meanwhile(
    registry: RepositoryRegistry, repos_root: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    entry = make_entry(repos_root, "org/repo")
    other = RepositoryRegistry(registry_path=registry.registry_path)
    real_locked = registry.locked

    @contextlib.contextmanager
    def locked_after_other_process():
        with real_locked():
            other._write({entry.identifier: entry})
            yield registry

    monkeypatch.setattr(registry, "locked", locked_after_other_process)

    assert [found.identifier for found in registry.list()] == ["org/repo"]


def test_unwritable_registry_is_a_registry_error(
    registry: RepositoryRegistry, repos_root: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    def refuse(path, text):
        raise PermissionError(13, "Permission denied", str(path))

    monkeypatch.setattr(registry_module, "atomic_write_text", refuse)

    with pytest.raises(RegistryError, match="Could not write registry"):
        registry.register(make_entry(repos_root, "org/repo"))
