"""Plain URL resolver plus the HTTP helpers shared with the GitHub resolver."""

import asyncio
import logging
import os
from pathlib import Path
from urllib.parse import urlparse

import requests
from requests.structures import CaseInsensitiveDict

from ..endpoint import WILDCARD
from ..exceptions import NoResolveTargetError
from ..schema import PackageMeta
from ..utils import ARCHIVE_SUFFIXES
from ..utils import can_extract
from ..utils import extract
from .base import Resolver
from .base import ResolverContext
from .base import rename_single_file

logger = logging.getLogger(__name__)

USER_AGENT = "noap-resolver"
CACHE_HEADERS = ("ETag", "Last-Modified")

_MIME_EXTENSIONS = {
    "application/zip": ".zip",
    "application/x-zip-compressed": ".zip",
    "application/x-tar": ".tar",
    "application/x-gzip": ".tar.gz",
    "application/gzip": ".tar.gz",
    "application/x-tgz": ".tar.gz",
    "application/x-bzip2": ".tar.bz2",
}


def download(url: str, dst: Path, timeout: float) -> CaseInsensitiveDict:
    """
    Stream ``url`` into ``dst``.

    Returns:
        Response headers

    Raises:
        requests.RequestException: On connection errors and non-2xx statuses
    """
    logger.debug(f"GET {url}")
    with requests.get(url, stream=True, timeout=timeout, headers={"User-Agent": USER_AGENT}) as response:
        response.raise_for_status()
        with open(dst, "wb") as f:
            for chunk in response.iter_content(chunk_size=64 * 1024):
                if chunk:
                    f.write(chunk)
        return response.headers


def head(url: str, timeout: float) -> CaseInsensitiveDict:
    """HEAD request following redirects; returns the response headers."""
    logger.debug(f"HEAD {url}")
    response = requests.head(url, timeout=timeout, allow_redirects=True, headers={"User-Agent": USER_AGENT})
    response.raise_for_status()
    return response.headers


def cache_headers(headers) -> dict:
    return {key: headers[key] for key in CACHE_HEADERS if headers.get(key)}


def _file_name(url: str) -> str:
    return os.path.basename(urlparse(url).path.rstrip("/")) or "index"


def _guess_name(url: str) -> str:
    parsed = urlparse(url)
    file_name = os.path.basename(parsed.path.rstrip("/"))
    if not file_name:
        return parsed.hostname or url

    for suffix in ARCHIVE_SUFFIXES:
        if file_name.lower().endswith(suffix):
            return file_name[: -len(suffix)]
    return os.path.splitext(file_name)[0] or file_name


class UrlResolver(Resolver):
    """
    Downloads a single file or archive over http(s).

    Archives are extracted; a lone file is renamed to ``index<ext>``. The
    ``ETag``/``Last-Modified`` headers are kept in ``_cacheHeaders`` and drive
    ``has_new``.
    """

    targetable = False

    def __init__(self, endpoint, context: ResolverContext):
        super().__init__(endpoint, context)

        if self._target != WILDCARD:
            raise NoResolveTargetError("URL sources can't resolve targets", context={"resolver": self.identity()})

        if self._guessed_name:
            self._name = _guess_name(self._source)

        self._headers: dict = {}
        self._single_file: str | None = None

    async def _resolve(self) -> None:
        file = self._temp_dir / _file_name(self._source)

        self._logger.action("download", self._source, {"url": self._source, "to": str(file)})
        headers = await asyncio.to_thread(download, self._source, file, self._config.request_timeout)
        self._headers = cache_headers(headers)

        mime_type = headers.get("Content-Type", "").split(";")[0].strip().lower()
        if not can_extract(file) and mime_type in _MIME_EXTENSIONS:
            renamed = file.with_name(file.name + _MIME_EXTENSIONS[mime_type])
            file.rename(renamed)
            file = renamed

        if can_extract(file):
            self._logger.action("extract", file.name, {"archive": str(file), "to": str(self._temp_dir)})
            await asyncio.to_thread(extract, file, self._temp_dir)

        self._single_file = await asyncio.to_thread(rename_single_file, self._temp_dir)

    async def _has_new(self, canonical_dir: Path, pkg_meta: PackageMeta) -> bool:
        old = pkg_meta.cache_headers
        if not old:
            return True

        try:
            headers = await asyncio.to_thread(head, self._source, self._config.request_timeout)
        except requests.RequestException as e:
            self._logger.debug("error", f"Failed to check {self._source} for updates: {e}", {"url": self._source})
            return True

        return cache_headers(headers) != old

    async def _save_pkg_meta(self, meta: PackageMeta) -> PackageMeta:
        if self._single_file:
            meta.main = self._single_file

        if self._headers:
            meta.cache_headers = dict(self._headers)
            etag = self._headers.get("ETag", "").strip('"')
            if etag:
                meta.release = f"e-tag:{etag[:10]}"

        return await super()._save_pkg_meta(meta)
