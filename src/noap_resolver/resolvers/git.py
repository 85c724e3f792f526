"""Git resolvers: local (fs) and remote variants sharing the ref logic."""

import asyncio
import logging
import os
from pathlib import Path

from ..exceptions import CommandError
from ..exceptions import ErrorCode
from ..exceptions import ToolMissingError
from ..sh import which
from ..utils import remove
from .base import ResolverContext
from .refs import Refs
from .refs import RefsResolver
from .refs import is_commit
from .refs import parse_git_refs

logger = logging.getLogger(__name__)


class GitResolver(RefsResolver):
    """Base for git sources; the ``.git`` folder never ends up in the materialized package."""

    def __init__(self, endpoint, context: ResolverContext):
        super().__init__(endpoint, context)

        if self._guessed_name and self._name.endswith(".git"):
            self._name = self._name[: -len(".git")]

        if not which("git"):
            raise ToolMissingError(
                "git is not installed or not in the PATH", context={"resolver": self.identity()}, code=ErrorCode.NO_GIT
            )

    async def _resolve(self) -> None:
        await super()._resolve()
        await asyncio.to_thread(remove, self._temp_dir / ".git")


class GitRemoteResolver(GitResolver):
    """Git repositories reachable through a URL (https, ssh, git://...)."""

    @classmethod
    async def _fetch_refs(cls, source: str, context: ResolverContext) -> Refs:
        stdout, _ = await context.shell.execute("git", ["ls-remote", source])
        return parse_git_refs(stdout)

    async def _checkout(self, resolution: dict) -> None:
        ref = resolution.get("tag") or resolution.get("branch")
        shell = self._context.shell

        self._logger.action(
            "checkout", ref or resolution["commit"], {"resolution": resolution, "to": str(self._temp_dir)}
        )

        if ref:
            await shell.execute(
                "git", ["clone", self._source, "-b", ref, "--progress", ".", "--depth", "1"], cwd=self._temp_dir
            )
        else:
            await shell.execute("git", ["clone", self._source, "--progress", "."], cwd=self._temp_dir)
            await shell.execute("git", ["checkout", resolution["commit"]], cwd=self._temp_dir)


class GitFsResolver(GitResolver):
    """
    Git repositories on the local filesystem.

    The source repository is never touched: the resolution is checked out in a
    disposable clone inside the temp dir.
    """

    def __init__(self, endpoint, context: ResolverContext):
        super().__init__(endpoint, context)
        self._source = os.path.abspath(os.path.join(self._config.cwd, os.path.expanduser(self._source)))

    @classmethod
    async def _fetch_refs(cls, source: str, context: ResolverContext) -> Refs:
        try:
            stdout, _ = await context.shell.execute("git", ["show-ref", "--tags", "--heads", "-d"], cwd=Path(source))
        except CommandError as e:
            # show-ref exits with 1 when the repository has no refs yet
            if e.exit_code != 1:
                raise
            stdout = ""

        refs = parse_git_refs(stdout)

        try:
            head, _ = await context.shell.execute("git", ["symbolic-ref", "--short", "-q", "HEAD"], cwd=Path(source))
            refs.head = head.strip() or None
        except CommandError:
            logger.debug(f"Detached HEAD in {source}")

        return refs

    async def _expand_commit(self, target: str, refs: Refs) -> str | None:
        if not is_commit(target):
            return None

        try:
            stdout, _ = await self._context.shell.execute(
                "git", ["rev-parse", "--verify", "--quiet", f"{target}^{{commit}}"], cwd=Path(self._source)
            )
        except CommandError:
            return None

        commit = stdout.strip()
        # A tag or branch that merely looks like hex is not a commit
        if commit.startswith(target):
            return commit
        return None

    async def _checkout(self, resolution: dict) -> None:
        shell = self._context.shell
        self._logger.action(
            "checkout",
            resolution.get("tag") or resolution.get("branch") or resolution["commit"],
            {"resolution": resolution, "to": str(self._temp_dir)},
        )

        await shell.execute("git", ["clone", "--no-checkout", "--progress", self._source, "."], cwd=self._temp_dir)
        await shell.execute("git", ["checkout", "-f", resolution["commit"]], cwd=self._temp_dir)
