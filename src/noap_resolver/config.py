"""Resolver configuration.

The library never decides where things live: the app injects a
``ResolverConfig`` (paths, flags, host templates). ``from_toml`` is a
convenience for apps that keep it under ``[tool.noap]``.
"""

import tempfile
import tomllib
from pathlib import Path

from pydantic import BaseModel
from pydantic import ConfigDict
from pydantic import Field

DEFAULT_HOSTS = {
    "github": "https://github.com/{owner}/{package}.git",
    "bitbucket": "https://bitbucket.org/{owner}/{package}.git",
    "gitlab": "https://gitlab.com/{owner}/{package}.git",
}


def _default_home() -> Path:
    return Path.home() / ".noap"


class StorageConfig(BaseModel):
    """On-disk locations used by the cache and the registry client."""

    model_config = ConfigDict(extra="forbid")

    packages: Path = Field(default_factory=lambda: _default_home() / "packages")
    registry: Path = Field(default_factory=lambda: _default_home() / "registry")


class ResolverConfig(BaseModel):
    """
    Configuration for repository, cache and manager.

    Example:
        >>> config = ResolverConfig(
        ...     cwd=Path.cwd(),
        ...     storage=StorageConfig(packages=Path("/var/cache/noap")),
        ...     repo=Path("/noaps"),
        ...     interactive=False,
        ... )
    """

    model_config = ConfigDict(extra="forbid")

    cwd: Path = Field(default_factory=Path.cwd)
    tmp: Path = Field(default_factory=lambda: Path(tempfile.gettempdir()) / "noap")
    storage: StorageConfig = Field(default_factory=StorageConfig)
    repo: Path = Path("/noaps")

    force: bool = False
    offline: bool = False
    interactive: bool = False
    force_latest: bool = False

    # Shorthand expansion: owner/package -> URL
    hosts: dict[str, str] = Field(default_factory=lambda: dict(DEFAULT_HOSTS))
    host: str | None = None

    # Registry fallback
    registry: dict[str, str] = Field(default_factory=dict)
    registry_url: str | None = None

    save_prefix: str = "~"
    fail_fast_timeout: float = 20.0
    shell_concurrency: int = 5
    request_timeout: float = 30.0
    lock_wait: float = 0.25
    lock_retries: int = 25

    @classmethod
    def from_toml(cls, path: Path) -> "ResolverConfig":
        """
        Load configuration from the ``[tool.noap]`` table of a TOML file.

        Relative paths in the file are resolved against the file's directory.

        Raises:
            FileNotFoundError: If the file doesn't exist
            tomllib.TOMLDecodeError: If invalid TOML
            pydantic.ValidationError: If unknown or invalid keys are present
        """
        with open(path, "rb") as f:
            data = tomllib.load(f)

        section = data.get("tool", {}).get("noap", {})
        config = cls.model_validate(section)

        base = Path(path).resolve().parent
        if "cwd" not in section:
            config.cwd = base
        config.cwd = _anchor(config.cwd, base)
        config.tmp = _anchor(config.tmp, base)
        config.repo = _anchor(config.repo, base)
        config.storage.packages = _anchor(config.storage.packages, base)
        config.storage.registry = _anchor(config.storage.registry, base)
        return config


def _anchor(path: Path, base: Path) -> Path:
    path = path.expanduser()
    return path if path.is_absolute() else base / path
