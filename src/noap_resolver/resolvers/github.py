"""GitHub resolver: tag tarballs over HTTPS, everything else through git."""

import asyncio
import re
import shutil
import tarfile
from urllib.parse import quote

import requests

from ..exceptions import NoResolverError
from ..utils import extract
from .base import ResolverContext
from .git import GitRemoteResolver
from .url import download

_GITHUB = re.compile(r"(?:@|://)github\.com[:/]([^/\s]+?)/([^/\s]+?)(?:\.git)?/?$", re.IGNORECASE)


def get_org_repo_pair(url: str) -> dict | None:
    """
    Extract ``{"org", "repo"}`` from any GitHub URL form.

    Examples:
        >>> get_org_repo_pair("git@github.com:twbs/bootstrap.git")
        {'org': 'twbs', 'repo': 'bootstrap'}
        >>> get_org_repo_pair("https://example.com/twbs/bootstrap.git") is None
        True
    """
    matches = _GITHUB.search(url)
    if not matches:
        return None
    return {"org": matches.group(1), "repo": matches.group(2)}


class GitHubResolver(GitRemoteResolver):
    """
    Git remote hosted on GitHub.

    Tags are fetched as ``archive/<tag>.tar.gz`` tarballs, which is much faster
    than cloning. A failed download falls back to a regular clone.
    """

    def __init__(self, endpoint, context: ResolverContext):
        super().__init__(endpoint, context)

        pair = get_org_repo_pair(self._source)
        if not pair:
            raise NoResolverError(f"Invalid GitHub URL: {self._source}", context={"resolver": self.identity()})

        self._org = pair["org"]
        self._repo = pair["repo"]

    async def _checkout(self, resolution: dict) -> None:
        tag = resolution.get("tag") if resolution["type"] in ("version", "tag") else None
        if not tag:
            await super()._checkout(resolution)
            return

        url = f"https://github.com/{self._org}/{self._repo}/archive/{quote(tag, safe='')}.tar.gz"
        file = self._temp_dir / "archive.tar.gz"

        self._logger.action("download", url, {"url": url, "to": str(file)})
        try:
            await asyncio.to_thread(download, url, file, self._config.request_timeout)
            self._logger.action("extract", file.name, {"archive": str(file), "to": str(self._temp_dir)})
            await asyncio.to_thread(extract, file, self._temp_dir)
        except (requests.RequestException, OSError, shutil.ReadError, tarfile.TarError) as e:
            self._logger.warn(
                "error",
                f"Download of {url} failed, trying with git: {e}",
                {"url": url, "error": str(e)},
            )
            await self._clean_temp_dir()
            await super()._checkout(resolution)
