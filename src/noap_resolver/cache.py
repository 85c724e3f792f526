"""On-disk package cache.

Layout::

    <packages>/<md5(source)>/<encoded release>/...files... + .package.json

The release is the package version, else its target (``_wildcard`` for
``*``). Each cache root keeps an in-memory index of ``source id -> releases``
(semvers first, highest first), shared by every ``Cache`` on the same root
through the ``RuntimeCache`` and invalidated whenever the disk disagrees.

Stores for the same (source, release) pair are serialized with a file lock so
several processes can populate one cache; different pairs never contend.
"""

from __future__ import annotations

import asyncio
import functools
import logging
import os
from pathlib import Path

from filelock import FileLock

from . import semver
from .config import ResolverConfig
from .endpoint import WILDCARD
from .runtime import LRUCache
from .runtime import RuntimeCache
from .schema import PackageMeta
from .utils import decode_release
from .utils import encode_release
from .utils import is_junk
from .utils import md5
from .utils import move_dir
from .utils import remove

logger = logging.getLogger(__name__)

WILDCARD_RELEASE = "_wildcard"


class Cache:
    """Async facade over the package cache; blocking disk work runs in worker threads."""

    def __init__(self, config: ResolverConfig, runtime: RuntimeCache | None = None):
        self._config = config
        self._runtime = runtime or RuntimeCache()
        self._dir = Path(config.storage.packages)
        self._lock_dir = self._dir.with_name(self._dir.name + ".locks")

        self._dir.mkdir(parents=True, exist_ok=True)
        self._lock_dir.mkdir(parents=True, exist_ok=True)

    @property
    def dir(self) -> Path:
        return self._dir

    @property
    def _index(self) -> LRUCache:
        return self._runtime.versions_index(str(self._dir))

    async def retrieve(self, source: str, target: str = WILDCARD) -> tuple[Path, PackageMeta] | None:
        """
        Find the cached entry that best serves a target.

        Ranges pick the highest satisfying version, ``*`` falls back to the
        ``_wildcard`` entry and anything else must match a release exactly.
        Entries with an unreadable sidecar are deleted and the lookup retried.

        Returns:
            ``(canonical_dir, pkg_meta)``, or None on a miss
        """
        source_id = md5(source)
        target = target or WILDCARD
        discarded: set[str] = set()

        while True:
            versions = await self._get_versions(source_id)
            release = _pick_release(versions, target)
            if release is None:
                return None

            canonical_dir = self._dir / source_id / encode_release(release)
            try:
                pkg_meta = await asyncio.to_thread(PackageMeta.read, canonical_dir)
            except (OSError, ValueError) as e:
                if release in discarded:
                    raise
                discarded.add(release)

                logger.warning(f"Removing unreadable cache entry {canonical_dir}: {e}")
                self._index.delete(source_id)
                await asyncio.to_thread(remove, canonical_dir)
                continue

            return canonical_dir, pkg_meta

    async def store(self, canonical_dir: Path, pkg_meta: PackageMeta | None = None) -> Path:
        """
        Move a resolved package into the cache.

        Storing an already cached (source, release) pair is a no-op. The source
        directory is always removed, whatever the outcome.

        Returns:
            The entry's directory in the cache
        """
        if pkg_meta is None:
            pkg_meta = await asyncio.to_thread(PackageMeta.read, canonical_dir)

        source_id = md5(pkg_meta.source)
        release = _release(pkg_meta)
        encoded = encode_release(release)
        dst = self._dir / source_id / encoded
        lock_file = self._lock_dir / f"{source_id}-{encoded}.lock"

        try:
            await asyncio.to_thread(self._store, Path(canonical_dir), dst, lock_file)
        finally:
            await asyncio.to_thread(remove, canonical_dir)

        versions = self._index.get(source_id)
        if versions is not None and release not in versions:
            versions.append(release)
            semver.sort_versions(versions)

        return dst

    def _store(self, canonical_dir: Path, dst: Path, lock_file: Path) -> None:
        if dst.exists():
            return

        lock = FileLock(str(lock_file))
        lock.acquire(timeout=self._config.lock_wait * self._config.lock_retries, poll_interval=self._config.lock_wait)
        try:
            # Another process may have stored it while we waited
            if dst.exists():
                return

            try:
                move_dir(canonical_dir, dst)
            except OSError:
                if not dst.exists():
                    raise
                logger.debug(f"{dst} appeared while storing, keeping it")
        finally:
            lock.release()
            lock_file.unlink(missing_ok=True)

    async def eliminate(self, pkg_meta: PackageMeta) -> None:
        """
        Delete one cached release; the source folder goes too when it was the last one.

        The disk is re-listed before removing the source folder so an entry
        stored meanwhile by another process survives.
        """
        source_id = md5(pkg_meta.source)
        release = _release(pkg_meta)
        dst = self._dir / source_id / encode_release(release)

        await asyncio.to_thread(remove, dst)

        index = self._index
        versions = index.get(source_id) or []
        if release in versions:
            versions.remove(release)

        if not versions:
            index.delete(source_id)
            if not await self._get_versions(source_id):
                index.delete(source_id)
                await asyncio.to_thread(remove, dst.parent)

    async def clear(self) -> None:
        """Delete every cached package."""

        def _clear() -> None:
            remove(self._dir)
            self._dir.mkdir(parents=True, exist_ok=True)

        await asyncio.to_thread(_clear)
        self._index.reset()

    def reset(self) -> None:
        """Drop the in-memory index of this cache root."""
        self._index.reset()

    async def versions(self, source: str) -> list[str]:
        """Cached semver versions of a source, highest first."""
        versions = await self._get_versions(md5(source))
        return [version for version in versions if semver.valid(version)]

    async def list(self) -> list[dict]:
        """
        Every cached entry, sorted by name, then version, then target.

        Stray files are deleted, and so are entries with an unreadable sidecar.

        Returns:
            List of ``{"canonical_dir": Path, "pkg_meta": PackageMeta}``
        """
        entries, invalid = await asyncio.to_thread(self._list)
        for source_id in invalid:
            self._index.delete(source_id)
        return sorted(entries, key=functools.cmp_to_key(_compare_entries))

    def _list(self) -> tuple[list[dict], set[str]]:
        entries = []
        invalid = set()

        for source_dir in sorted(self._dir.iterdir()):
            if not source_dir.is_dir():
                logger.debug(f"Removing stray file {source_dir}")
                remove(source_dir)
                continue

            for entry in sorted(source_dir.iterdir()):
                if not entry.is_dir():
                    remove(entry)
                    continue
                try:
                    pkg_meta = PackageMeta.read(entry)
                except (OSError, ValueError) as e:
                    logger.warning(f"Removing unreadable cache entry {entry}: {e}")
                    invalid.add(source_dir.name)
                    remove(entry)
                    continue
                entries.append({"canonical_dir": entry, "pkg_meta": pkg_meta})

        return entries, invalid

    async def _get_versions(self, source_id: str) -> list[str]:
        index = self._index
        versions = index.get(source_id)
        if versions is None:
            versions = await asyncio.to_thread(self._read_versions, source_id)
            index.set(source_id, versions)
        return versions

    def _read_versions(self, source_id: str) -> list[str]:
        source_dir = self._dir / source_id
        try:
            names = os.listdir(source_dir)
        except FileNotFoundError:
            return []
        except NotADirectoryError:
            remove(source_dir)
            return []

        versions = []
        for name in names:
            if is_junk(name):
                continue
            if not (source_dir / name).is_dir():
                logger.debug(f"Removing stray file {source_dir / name}")
                remove(source_dir / name)
                continue
            versions.append(decode_release(name))
        return semver.sort_versions(versions)


def _release(pkg_meta: PackageMeta) -> str:
    if pkg_meta.version:
        return pkg_meta.version
    target = pkg_meta.target or WILDCARD
    return WILDCARD_RELEASE if target == WILDCARD else target


def _pick_release(versions: list[str], target: str) -> str | None:
    if semver.valid_range(target):
        suitable = semver.max_satisfying(versions, target)
        if suitable:
            return suitable

    if target == WILDCARD:
        return WILDCARD_RELEASE if WILDCARD_RELEASE in versions else None

    return target if target in versions else None


def _compare_entries(first: dict, second: dict) -> int:
    meta1 = first["pkg_meta"]
    meta2 = second["pkg_meta"]

    name1 = meta1.name or ""
    name2 = meta2.name or ""
    if name1 != name2:
        return -1 if name1 < name2 else 1

    if meta1.version and meta2.version:
        return semver.compare(meta1.version, meta2.version)
    if meta1.version:
        return -1
    if meta2.version:
        return 1

    target1 = meta1.target or ""
    target2 = meta2.target or ""
    return (target1 > target2) - (target1 < target2)
