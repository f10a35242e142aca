"""
Centralized application settings.

Values come from ``REPODOCS_*`` environment variables, optionally seeded by a
TOML file (``repodocs.toml`` or the path in ``REPODOCS_CONFIG_PATH``).
"""
from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Annotated, Any, Dict, List, Optional

try:  # Python 3.11+
    import tomllib  # type: ignore[attr-defined]
except ModuleNotFoundError:  # pragma: no cover - fallback for older interpreters
    import tomli as tomllib  # type: ignore[attr-defined]

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

DEFAULT_DEPTH = 2

DEFAULT_EXCLUDE_DIRS: List[str] = [
    ".*",
    "node_modules",
    "vendor",
    "bower_components",
    "__pycache__",
    "venv",
    "env",
    "site-packages",
    "target",
    "build",
    "dist",
]

DEFAULT_MARKDOWN_EXTENSIONS: List[str] = [".md", ".markdown"]


class AppSettings(BaseSettings):
    """Project-wide settings loaded from env or a TOML file."""

    model_config = SettingsConfigDict(
        env_prefix="REPODOCS_",
        env_nested_delimiter="__",
        extra="ignore",
    )

    storage_root: Path = Path.home() / ".repodocs"
    registry_filename: str = "registry.json"
    artifact_name: str = "DOCS.md"
    default_depth: int = Field(default=DEFAULT_DEPTH, ge=0)
    exclude_dirs: Annotated[List[str], NoDecode] = Field(
        default_factory=lambda: list(DEFAULT_EXCLUDE_DIRS)
    )
    markdown_extensions: Annotated[List[str], NoDecode] = Field(
        default_factory=lambda: list(DEFAULT_MARKDOWN_EXTENSIONS)
    )
    git_executable: str = "git"
    shallow_clone: bool = True
    clone_timeout: Optional[float] = None
    temp_dir: Optional[Path] = None
    lock_timeout: float = 10.0
    log_level: str = "INFO"

    @field_validator("exclude_dirs", "markdown_extensions", mode="before")
    @classmethod
    def _split_list(cls, value: Any) -> Any:
        if isinstance(value, str):
            stripped = value.strip()
            if stripped.startswith("["):
                return json.loads(stripped)
            return [item.strip() for item in stripped.split(",") if item.strip()]
        return value

    @field_validator("markdown_extensions")
    @classmethod
    def _normalise_extensions(cls, value: List[str]) -> List[str]:
        normalised = []
        for ext in value:
            ext = ext.strip().lower()
            if not ext:
                continue
            normalised.append(ext if ext.startswith(".") else f".{ext}")
        return normalised

    @field_validator("storage_root", "temp_dir")
    @classmethod
    def _expand_user(cls, value: Optional[Path]) -> Optional[Path]:
        return value.expanduser() if value is not None else None

    @property
    def registry_path(self) -> Path:
        return self.storage_root / self.registry_filename

    @property
    def repos_root(self) -> Path:
        return self.storage_root / "repos"

    @property
    def staging_root(self) -> Path:
        return self.storage_root / ".staging"


_CONFIG_ENV_VAR = "REPODOCS_CONFIG_PATH"
_DEFAULT_CONFIG_FILE = Path("repodocs.toml")


def _load_toml_config() -> Dict[str, Any]:
    """Load configuration from the primary TOML file on disk."""
    candidates: List[Path] = []
    config_override = os.getenv(_CONFIG_ENV_VAR)
    if config_override:
        candidates.append(Path(config_override))
    candidates.append(_DEFAULT_CONFIG_FILE)

    for candidate in candidates:
        if candidate.is_file():
            with candidate.open("rb") as handle:
                return tomllib.load(handle)
    return {}


def _blank_to_none(value: Any) -> Any:
    if isinstance(value, str) and value.strip() == "":
        return None
    return value


def _flatten_config(raw: Dict[str, Any]) -> Dict[str, Any]:
    """Translate grouped TOML sections into AppSettings keyword arguments."""
    data: Dict[str, Any] = {}

    storage = raw.get("storage", {})
    if "root" in storage:
        data["storage_root"] = storage["root"]
    if "artifact_name" in storage:
        data["artifact_name"] = storage["artifact_name"]
    if "temp_dir" in storage:
        data["temp_dir"] = _blank_to_none(storage["temp_dir"])

    crawl = raw.get("crawl", {})
    if "depth" in crawl:
        data["default_depth"] = int(crawl["depth"])
    if "exclude" in crawl:
        data["exclude_dirs"] = crawl["exclude"]
    if "extensions" in crawl:
        data["markdown_extensions"] = crawl["extensions"]

    fetch = raw.get("fetch", {})
    if "git" in fetch:
        data["git_executable"] = fetch["git"]
    if "shallow" in fetch:
        data["shallow_clone"] = bool(fetch["shallow"])
    if "timeout" in fetch:
        data["clone_timeout"] = _blank_to_none(fetch["timeout"])

    registry = raw.get("registry", {})
    if "filename" in registry:
        data["registry_filename"] = registry["filename"]
    if "lock_timeout" in registry:
        data["lock_timeout"] = float(registry["lock_timeout"])

    logging_section = raw.get("logging", {})
    if "level" in logging_section:
        data["log_level"] = str(logging_section["level"]).upper()

    return data


def load_settings() -> AppSettings:
    """Build settings; environment variables win over the TOML file."""
    flattened = _flatten_config(_load_toml_config())
    env_keys = {
        name
        for name in AppSettings.model_fields
        if f"REPODOCS_{name.upper()}" in os.environ
    }
    for key in env_keys:
        flattened.pop(key, None)
    return AppSettings(**flattened)


settings = load_settings()
