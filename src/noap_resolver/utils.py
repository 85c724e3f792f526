"""Filesystem helpers shared by resolvers, the cache and the installer.

All functions here are blocking; async callers push them to a worker thread
with ``asyncio.to_thread``.
"""

import errno
import fnmatch
import hashlib
import logging
import os
import shutil
import zipfile
from pathlib import Path
from urllib.parse import quote
from urllib.parse import unquote

logger = logging.getLogger(__name__)

ARCHIVE_SUFFIXES = (".zip", ".tar", ".tar.gz", ".tgz", ".tar.bz2", ".tbz2", ".tar.xz", ".txz")

_JUNK = {
    ".DS_Store",
    ".AppleDouble",
    ".LSOverride",
    ".Spotlight-V100",
    ".Trashes",
    "Thumbs.db",
    "ehthumbs.db",
    "Desktop.ini",
    "desktop.ini",
    "npm-debug.log",
    "Icon\r",
}


def md5(text: str) -> str:
    """Hex md5 digest of a string (cache source ids)."""
    return hashlib.md5(text.encode("utf-8")).hexdigest()


def encode_release(release: str) -> str:
    """Encode a release label into a safe directory name (``/`` and ``\\`` included)."""
    return quote(release, safe="-_.!~*'()")


def decode_release(name: str) -> str:
    return unquote(name)


def is_junk(name: str) -> bool:
    """Check whether a file name is OS clutter (``.DS_Store``, ``Thumbs.db``, ``._*``...)."""
    return name in _JUNK or name.startswith("._")


def _is_ignored(rel: str, name: str, patterns: list[str]) -> bool:
    for raw in patterns:
        pattern = raw.strip().lstrip("/").rstrip("/")
        if not pattern or pattern.startswith("#"):
            continue
        if fnmatch.fnmatch(rel, pattern) or fnmatch.fnmatch(name, pattern):
            return True
        # "dir/**" and "dir" both cover everything below dir
        prefix = pattern[:-3] if pattern.endswith("/**") else pattern
        if rel.startswith(prefix + "/"):
            return True
    return False


def copy_dir(src: Path, dst: Path, ignore: list[str] | None = None) -> None:
    """
    Copy a directory tree, skipping entries matching ``ignore`` glob patterns.

    Patterns are matched against the path relative to ``src`` (POSIX separators)
    and against the entry name, so ``*.md``, ``docs`` and ``test/**`` all work.

    Args:
        src: Source directory
        dst: Destination directory (created if missing, may already exist)
        ignore: Glob patterns to leave out
    """
    src = Path(src)
    patterns = list(ignore or [])

    def _ignore(directory: str, names: list[str]) -> set[str]:
        if not patterns:
            return set()
        base = Path(directory).relative_to(src)
        skipped = set()
        for name in names:
            rel = (base / name).as_posix()
            if _is_ignored(rel, name, patterns):
                skipped.add(name)
        return skipped

    shutil.copytree(src, dst, ignore=_ignore, dirs_exist_ok=True, symlinks=True)


def copy_file(src: Path, dst: Path) -> None:
    Path(dst).parent.mkdir(parents=True, exist_ok=True)
    shutil.copy2(src, dst)


def move_dir(src: Path, dst: Path) -> None:
    """Move a directory, falling back to copy + delete across devices (EXDEV)."""
    Path(dst).parent.mkdir(parents=True, exist_ok=True)
    try:
        os.rename(src, dst)
    except OSError as e:
        if e.errno != errno.EXDEV:
            raise
        logger.debug(f"Cross-device move, copying {src} to {dst}")
        shutil.copytree(src, dst, symlinks=True)
        shutil.rmtree(src, ignore_errors=True)


def remove(path: Path) -> None:
    """Remove a file or directory tree; missing paths are fine."""
    path = Path(path)
    if path.is_dir() and not path.is_symlink():
        shutil.rmtree(path, ignore_errors=True)
    else:
        try:
            path.unlink()
        except FileNotFoundError:
            pass


def can_extract(file: Path | str) -> bool:
    return str(file).lower().endswith(ARCHIVE_SUFFIXES)


def extract(archive: Path, dst: Path) -> None:
    """
    Extract an archive into ``dst`` and delete the archive.

    When the archive holds a single top-level directory (typical of release
    tarballs), its contents are moved up into ``dst``.

    Raises:
        shutil.ReadError: If the archive cannot be read
    """
    archive = Path(archive)
    dst = Path(dst)
    staging = dst / f".extract-{archive.name}"

    if archive.name.lower().endswith(".zip"):
        _unzip(archive, staging)
    else:
        shutil.unpack_archive(str(archive), str(staging), filter="data")
    archive.unlink(missing_ok=True)

    entries = [entry for entry in staging.iterdir() if not is_junk(entry.name)]
    root = entries[0] if len(entries) == 1 and entries[0].is_dir() else staging

    for entry in root.iterdir():
        target = dst / entry.name
        if target.exists():
            remove(target)
        shutil.move(str(entry), str(target))

    shutil.rmtree(staging, ignore_errors=True)


def _unzip(archive: Path, dst: Path) -> None:
    # The zip unpacker of shutil takes no extraction filter, so members are checked here
    dst.mkdir(parents=True, exist_ok=True)
    root = dst.resolve()
    try:
        with zipfile.ZipFile(archive) as zf:
            for member in zf.infolist():
                if not (root / member.filename).resolve().is_relative_to(root):
                    raise shutil.ReadError(f"{archive.name}: {member.filename} points outside the archive")
            zf.extractall(root)
    except zipfile.BadZipFile as e:
        raise shutil.ReadError(f"{archive.name} is not a zip file") from e
