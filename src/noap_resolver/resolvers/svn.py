"""Subversion resolver (``svn+http://``, ``svn+https://``, ``svn+ssh://``, ``svn+file://``)."""

import logging
import re

from ..exceptions import CommandError
from ..exceptions import ErrorCode
from ..exceptions import ToolMissingError
from ..sh import which
from .base import ResolverContext
from .refs import Refs
from .refs import RefsResolver

logger = logging.getLogger(__name__)

# "     42 alice             Oct 10 12:00 v1.0.0/"
_LIST_ENTRY = re.compile(r"^\s*(\d+)\s+\S+\s+(?:\d+\s+)?\w{3}\s+\d{1,2}\s+[\d:]+\s+(.+)/$")
_REVISION = re.compile(r"^r(\d+)$")


def normalize_source(source: str) -> str:
    """Strip the ``svn+`` prefix from transports svn itself does not know (http, https, file)."""
    return re.sub(r"^svn\+(https?|file)://", r"\1://", source)


def parse_list(output: str) -> dict[str, str]:
    """Parse ``svn list --verbose`` output into ``directory -> last changed revision``."""
    entries = {}
    for line in output.splitlines():
        matches = _LIST_ENTRY.match(line)
        if matches and matches.group(2) != ".":
            entries[matches.group(2)] = matches.group(1)
    return entries


class SvnResolver(RefsResolver):
    """
    Subversion repositories following the ``trunk``/``branches``/``tags`` layout.

    Commits are revisions; a target of ``r<N>`` pins a revision.
    """

    def __init__(self, endpoint, context: ResolverContext):
        super().__init__(endpoint, context)

        if not which("svn"):
            raise ToolMissingError(
                "svn is not installed or not in the PATH", context={"resolver": self.identity()}, code=ErrorCode.NO_SVN
            )

    @property
    def remote(self) -> str:
        return normalize_source(self._source).rstrip("/")

    @classmethod
    async def _fetch_refs(cls, source: str, context: ResolverContext) -> Refs:
        remote = normalize_source(source).rstrip("/")
        refs = Refs(
            tags=await cls._list(f"{remote}/tags", context),
            branches=await cls._list(f"{remote}/branches", context),
        )

        try:
            stdout, _ = await context.shell.execute(
                "svn", ["info", "--show-item", "last-changed-revision", f"{remote}/trunk"]
            )
        except CommandError:
            logger.debug(f"No trunk in {remote}")
        else:
            refs.branches["trunk"] = stdout.strip()
            refs.head = "trunk"

        return refs

    @staticmethod
    async def _list(url: str, context: ResolverContext) -> dict[str, str]:
        try:
            stdout, _ = await context.shell.execute("svn", ["list", "--verbose", url])
        except CommandError:
            # The layout directory doesn't exist
            return {}
        return parse_list(stdout)

    async def _expand_commit(self, target: str, refs: Refs) -> str | None:
        revision = _REVISION.match(target)
        return revision.group(1) if revision else None

    async def _checkout(self, resolution: dict) -> None:
        if resolution.get("tag"):
            path = f"tags/{resolution['tag']}"
        elif resolution.get("branch") and resolution["branch"] != "trunk":
            path = f"branches/{resolution['branch']}"
        else:
            path = "trunk"

        self._logger.action(
            "export", f"{path}@{resolution['commit']}", {"resolution": resolution, "to": str(self._temp_dir)}
        )
        await self._context.shell.execute(
            "svn",
            ["export", "--force", "-r", resolution["commit"], f"{self.remote}/{path}", "."],
            cwd=self._temp_dir,
        )
