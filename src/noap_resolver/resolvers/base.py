"""Resolver contract shared by every source type.

A resolver materializes one endpoint into a fresh temporary directory:

1. create the temp dir
2. ``_resolve()`` - source specific (copy, download, clone...)
3. read the embedded ``package.json`` (or synthesize ``{"name": <guessed>}``)
4. apply metadata driven post-processing (ignore pruning)
5. write the ``.package.json`` sidecar and return the directory

A resolver instance serves one resolve cycle at a time; re-entrant calls to
``resolve``/``has_new`` fail with ``WorkingError``.
"""

import asyncio
import logging
import os
import re
import shutil
import tempfile
from dataclasses import dataclass
from dataclasses import field
from pathlib import Path

from ..config import ResolverConfig
from ..endpoint import WILDCARD
from ..endpoint import Endpoint
from ..exceptions import NotImplementedResolveError
from ..exceptions import WorkingError
from ..logger import Logger
from ..runtime import RuntimeCache
from ..schema import DECLARED_FILE
from ..schema import SIDECAR_FILE
from ..schema import PackageMeta
from ..sh import Shell
from ..utils import _is_ignored
from ..utils import is_junk
from ..utils import remove

logger = logging.getLogger(__name__)

_LOCAL_SOURCE = re.compile(r"^(?:file:[/\\]{2}|[A-Za-z]:)?\.?\.?[/\\]")
_METADATA_FILE = re.compile(r"^\.?package\.json$")
_UNSAFE_CHARS = re.compile(r"[^\w.-]")


@dataclass
class ResolverContext:
    """Everything a resolver needs besides its endpoint."""

    config: ResolverConfig
    logger: Logger = field(default_factory=Logger)
    runtime: RuntimeCache = field(default_factory=RuntimeCache)
    shell: Shell | None = None

    def __post_init__(self):
        if self.shell is None:
            self.shell = Shell(self.config.shell_concurrency)


class Resolver:
    """Base resolver. Concrete resolvers implement ``_resolve`` (and usually ``_has_new``)."""

    targetable = True

    def __init__(self, endpoint: Endpoint, context: ResolverContext):
        self._source = endpoint.source
        self._target = endpoint.target or WILDCARD
        self._name = endpoint.name or os.path.basename(self._source.rstrip("/\\"))
        self._guessed_name = not endpoint.name

        self._context = context
        self._config = context.config
        self._logger = context.logger

        self._temp_dir: Path | None = None
        self._pkg_meta: PackageMeta | None = None
        self._working = False

    @property
    def source(self) -> str:
        return self._source

    @property
    def name(self) -> str:
        return self._name

    @property
    def target(self) -> str:
        return self._target

    @property
    def temp_dir(self) -> Path | None:
        return self._temp_dir

    @property
    def pkg_meta(self) -> PackageMeta | None:
        return self._pkg_meta

    def identity(self) -> dict:
        return {"name": self._name, "source": self._source, "target": self._target}

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self._source}#{self._target})"

    @classmethod
    def is_targetable(cls) -> bool:
        return cls.targetable

    @classmethod
    async def versions(cls, source: str, context: ResolverContext) -> list[str]:
        """List the semver versions a source offers (none by default)."""
        return []

    def is_cacheable(self) -> bool:
        """
        Whether resolved results may be stored in and served from the cache.

        Local sources (relative, absolute, ``file://`` or drive paths) are never
        cached, nor are moving targets resolved to a branch.
        """
        if self._source and _LOCAL_SOURCE.match(self._source):
            return False

        return self._pkg_meta is None or self._pkg_meta.resolution_type != "branch"

    async def resolve(self) -> Path:
        """
        Materialize the endpoint into a new temporary directory.

        Returns:
            Path to the temp dir holding the package and its sidecar metadata

        Raises:
            WorkingError: If this resolver is already resolving or validating
        """
        if self._working:
            raise WorkingError(context={"resolver": self.identity()})

        self._working = True
        try:
            await self._create_temp_dir()
            await self._resolve()
            meta = await self._read_json()
            meta = await self._apply_pkg_meta(meta)
            await self._save_pkg_meta(meta)
            return self._temp_dir
        except BaseException:
            if self._temp_dir is not None:
                await asyncio.to_thread(remove, self._temp_dir)
            self._temp_dir = None
            raise
        finally:
            self._working = False

    async def has_new(self, canonical_dir: Path, pkg_meta: PackageMeta | None = None) -> bool:
        """
        Check whether the source has content newer than a cached entry.

        Args:
            canonical_dir: Directory of the cached entry
            pkg_meta: Its metadata; read from the sidecar when not given

        Returns:
            True if the cached entry is stale (or unreadable)
        """
        if self._working:
            raise WorkingError(context={"resolver": self.identity()})

        self._working = True
        try:
            if pkg_meta is None:
                meta_file = Path(canonical_dir) / SIDECAR_FILE
                try:
                    pkg_meta = await asyncio.to_thread(PackageMeta.read, canonical_dir)
                except (OSError, ValueError) as e:
                    self._logger.debug(
                        "read-json", f"Failed to read {meta_file}", {"filename": str(meta_file), "error": str(e)}
                    )
                    return True

            return await self._has_new(Path(canonical_dir), pkg_meta)
        finally:
            self._working = False

    # Overridable hooks

    async def _resolve(self) -> None:
        raise NotImplementedResolveError(context={"resolver": self.identity()})

    async def _has_new(self, canonical_dir: Path, pkg_meta: PackageMeta) -> bool:
        return True

    async def _create_temp_dir(self) -> Path:
        tmp_root = Path(self._config.tmp)
        await asyncio.to_thread(tmp_root.mkdir, parents=True, exist_ok=True)
        safe_name = _UNSAFE_CHARS.sub("_", self._name)
        prefix = f"{safe_name}-{os.getpid()}-"
        self._temp_dir = Path(await asyncio.to_thread(tempfile.mkdtemp, prefix=prefix, dir=tmp_root))
        return self._temp_dir

    async def _clean_temp_dir(self) -> Path:
        """Empty the temp dir, keeping the directory itself."""

        def _clean(directory: Path) -> None:
            shutil.rmtree(directory, ignore_errors=True)
            directory.mkdir(parents=True, exist_ok=True)

        await asyncio.to_thread(_clean, self._temp_dir)
        return self._temp_dir

    async def _read_json(self, directory: Path | None = None) -> PackageMeta:
        meta = await asyncio.to_thread(PackageMeta.read_declared, directory or self._temp_dir)
        if meta is None:
            return PackageMeta(name=self._name)
        if not meta.name:
            meta.name = self._name
        return meta

    async def _apply_pkg_meta(self, meta: PackageMeta) -> PackageMeta:
        # A guessed name gives way to the name the package declares
        if meta.name != self._name and self._guessed_name:
            self._name = meta.name

        if meta.ignore:
            await asyncio.to_thread(_prune_ignored, self._temp_dir, meta.ignore)

        return meta

    async def _save_pkg_meta(self, meta: PackageMeta) -> PackageMeta:
        meta.source = self._source
        meta.target = self._target
        if not meta.release:
            meta.release = meta.version or self._target

        await asyncio.to_thread(meta.write, self._temp_dir)
        self._pkg_meta = meta
        return meta


def rename_single_file(directory: Path) -> str | None:
    """
    Apply the single-file convention to a materialized package.

    When the directory holds exactly one entry (OS junk aside), it is a file
    and it is not a metadata file, it is renamed to ``index<ext>``.

    Returns:
        The new file name (to be recorded as ``main``), or None if nothing was renamed
    """
    entries = [entry for entry in Path(directory).iterdir() if not is_junk(entry.name)]
    if len(entries) != 1:
        return None

    entry = entries[0]
    if not entry.is_file() or _METADATA_FILE.match(entry.name):
        return None

    single = "index" + os.path.splitext(entry.name)[1]
    entry.rename(entry.with_name(single))
    return single


def _prune_ignored(directory: Path, patterns: list[str]) -> None:
    for current, dirs, files in os.walk(directory, topdown=True):
        base = Path(current).relative_to(directory)
        for name in list(dirs):
            if _is_ignored((base / name).as_posix(), name, patterns):
                shutil.rmtree(Path(current) / name, ignore_errors=True)
                dirs.remove(name)
        for name in files:
            if name in (SIDECAR_FILE, DECLARED_FILE) and base == Path("."):
                continue
            if _is_ignored((base / name).as_posix(), name, patterns):
                (Path(current) / name).unlink(missing_ok=True)
