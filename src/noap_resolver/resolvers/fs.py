"""Filesystem resolver: local folders, files and archives."""

import asyncio
import os
from pathlib import Path

from ..endpoint import WILDCARD
from ..exceptions import NoResolveTargetError
from ..schema import PackageMeta
from ..utils import ARCHIVE_SUFFIXES
from ..utils import can_extract
from ..utils import copy_dir
from ..utils import copy_file
from ..utils import extract
from .base import Resolver
from .base import ResolverContext
from .base import rename_single_file


class FsResolver(Resolver):
    """
    Copies a local folder (honouring its ``ignore`` list) or file.

    Archives are extracted after copying. A folder that ends up with a single
    file gets it renamed to ``index<ext>`` and recorded as ``main``.
    """

    targetable = False

    def __init__(self, endpoint, context: ResolverContext):
        super().__init__(endpoint, context)

        if self._target != WILDCARD:
            raise NoResolveTargetError(
                "File system sources can't resolve targets", context={"resolver": self.identity()}
            )

        self._source = os.path.abspath(os.path.join(self._config.cwd, os.path.expanduser(self._source)))

        if self._guessed_name:
            self._name = _strip_extension(os.path.basename(self._source.rstrip("/\\")))

        self._single_file: str | None = None

    async def _resolve(self) -> None:
        file = await self._copy()
        if file is not None and can_extract(file):
            self._logger.action("extract", file.name, {"archive": str(file), "to": str(self._temp_dir)})
            await asyncio.to_thread(extract, file, self._temp_dir)
        self._single_file = await asyncio.to_thread(rename_single_file, self._temp_dir)

    async def _copy(self) -> Path | None:
        """Copy the source into the temp dir; returns the copied file when the source is a file."""
        source = Path(self._source)
        self._logger.action("copy", self._source, {"src": self._source, "dst": str(self._temp_dir)})

        if await asyncio.to_thread(source.is_dir):
            declared = await self._read_json(source)
            await asyncio.to_thread(copy_dir, source, self._temp_dir, declared.ignore)
            return None

        dst = self._temp_dir / source.name
        await asyncio.to_thread(copy_file, source, dst)
        return dst

    async def _save_pkg_meta(self, meta: PackageMeta) -> PackageMeta:
        if self._single_file:
            meta.main = self._single_file
        return await super()._save_pkg_meta(meta)


def _strip_extension(name: str) -> str:
    for suffix in ARCHIVE_SUFFIXES:
        if name.lower().endswith(suffix):
            return name[: -len(suffix)]
    return os.path.splitext(name)[0] or name
