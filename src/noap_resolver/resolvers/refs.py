"""Ref tables and target selection shared by the VCS resolvers (git, svn).

A target is resolved against a source's refs with this precedence:

1. a commit id (full, or an abbreviation of a known commit)
2. an exact tag or branch name
3. a semver range, matched against the tags that parse as versions

Tags that are valid versions always resolve to a ``version`` resolution, so
``#1.0.0`` and ``#~1.0.0`` produce the same kind of metadata.
"""

import re
from dataclasses import dataclass
from dataclasses import field
from pathlib import Path

from .. import semver
from ..endpoint import WILDCARD
from ..exceptions import InvalidTargetError
from ..exceptions import NotImplementedResolveError
from ..logger import Logger
from ..schema import PackageMeta
from .base import Resolver
from .base import ResolverContext

COMMIT = re.compile(r"^[a-f0-9]{4,40}$")
FULL_COMMIT = re.compile(r"^[a-f0-9]{40}$")

_DEFAULT_BRANCHES = ("master", "main", "trunk")


def is_commit(target: str) -> bool:
    """
    Whether ``target`` may be a commit id, possibly abbreviated.

    Short all-digit targets such as ``1234`` read as versions, not commit prefixes.
    """
    if not COMMIT.match(target):
        return False
    return len(target) >= 7 or not target.isdigit()


@dataclass
class Refs:
    """Tags and branches of a source, each mapped to its commit id."""

    tags: dict[str, str] = field(default_factory=dict)
    branches: dict[str, str] = field(default_factory=dict)
    head: str | None = None

    def versions(self) -> list[dict]:
        """
        Tags that parse as semver, highest first.

        Returns:
            List of ``{"version", "tag", "commit"}``; the first tag wins when two
            tags name the same version (``v1.0.0`` and ``1.0.0``)
        """
        found: dict[str, dict] = {}
        for tag, commit in self.tags.items():
            version = semver.clean(tag)
            if version and version not in found:
                found[version] = {"version": version, "tag": tag, "commit": commit}

        return [found[version] for version in semver.sort_versions(list(found))]

    def default_branch(self) -> str | None:
        if "master" in self.branches:
            return "master"
        if self.head and self.head in self.branches:
            return self.head
        for branch in _DEFAULT_BRANCHES:
            if branch in self.branches:
                return branch
        return None

    def expand_commit(self, target: str) -> str | None:
        """Expand ``target`` to a full commit id if it is one (or abbreviates a known one)."""
        if FULL_COMMIT.match(target):
            return target
        if not is_commit(target):
            return None

        known = {commit for commit in [*self.tags.values(), *self.branches.values()] if commit.startswith(target)}
        return known.pop() if len(known) == 1 else None


def parse_git_refs(output: str) -> Refs:
    """
    Parse ``git ls-remote`` / ``git show-ref -d`` output.

    Peeled entries (``refs/tags/v1.0.0^{}``) take precedence so annotated tags
    map to the commit they point at rather than the tag object.
    """
    refs = Refs()
    peeled: dict[str, str] = {}
    head_commit = None

    for line in output.splitlines():
        parts = line.split()
        if len(parts) < 2:
            continue
        commit, ref = parts[0], parts[1]

        if ref == "HEAD":
            head_commit = commit
        elif ref.startswith("refs/tags/"):
            tag = ref[len("refs/tags/") :]
            if tag.endswith("^{}"):
                peeled[tag[:-3]] = commit
            else:
                refs.tags.setdefault(tag, commit)
        elif ref.startswith("refs/heads/"):
            refs.branches[ref[len("refs/heads/") :]] = commit

    refs.tags.update(peeled)

    if head_commit:
        on_head = [branch for branch, commit in refs.branches.items() if commit == head_commit]
        refs.head = next((branch for branch in _DEFAULT_BRANCHES if branch in on_head), None) or (
            on_head[0] if on_head else None
        )

    return refs


def find_resolution(refs: Refs, target: str | None, commit: str | None = None, source: str = "") -> dict:
    """
    Select the ref a target points at.

    Args:
        refs: Refs of the source
        target: Commit, tag, branch or semver range (``*`` when empty)
        commit: Full commit id when ``target`` already proved to be a commit
        source: Source, for error messages

    Returns:
        Resolution dict: ``{"type": "commit"|"version"|"tag"|"branch", "tag"|"branch", "commit"}``

    Raises:
        InvalidTargetError: If nothing matches
    """
    target = target or WILDCARD
    if commit:
        return {"type": "commit", "commit": commit}

    if target in refs.tags:
        kind = "version" if semver.valid(target) else "tag"
        return {"type": kind, "tag": target, "commit": refs.tags[target]}

    if target in refs.branches:
        return {"type": "branch", "branch": target, "commit": refs.branches[target]}

    if semver.valid_range(target):
        return _find_version(refs, target, source)

    raise InvalidTargetError(
        f"Tag/branch {target} does not exist",
        context={
            "details": _describe(refs, source),
            "tags": list(refs.tags),
            "branches": list(refs.branches),
        },
    )


def _find_version(refs: Refs, target: str, source: str) -> dict:
    versions = refs.versions()
    stable = [entry for entry in versions if not semver.parse(entry["version"]).prerelease]
    prerelease = [entry for entry in versions if semver.parse(entry["version"]).prerelease]

    for entry in stable:
        if semver.satisfies(entry["version"], target):
            return {"type": "version", "tag": entry["tag"], "commit": entry["commit"]}

    if target == WILDCARD:
        branch = refs.default_branch()
        if branch:
            return {"type": "branch", "branch": branch, "commit": refs.branches[branch]}
        if prerelease:
            entry = prerelease[0]
            return {"type": "version", "tag": entry["tag"], "commit": entry["commit"]}
    else:
        for entry in prerelease:
            if semver.satisfies(entry["version"], target):
                return {"type": "version", "tag": entry["tag"], "commit": entry["commit"]}

    available = ", ".join(entry["version"] for entry in versions)
    raise InvalidTargetError(
        f"No tag found that was able to satisfy {target}",
        context={
            "details": f"Available versions: {available}" if versions else f"No versions found in {source}",
            "versions": [entry["version"] for entry in versions],
        },
    )


def _describe(refs: Refs, source: str) -> str:
    lines = []
    if refs.tags:
        lines.append(f"Available tags: {', '.join(refs.tags)}")
    if refs.branches:
        lines.append(f"Available branches: {', '.join(refs.branches)}")
    return "\n".join(lines) or f"No tags or branches found in {source}"


def resolution_changed(old: dict, new: dict) -> bool:
    """Whether a freshly found resolution differs from the one a cached entry was built from."""
    if old.get("type") != new.get("type"):
        return True
    if new["type"] == "version" and semver.clean(new.get("tag")) != semver.clean(old.get("tag")):
        return True
    return new.get("commit") != old.get("commit")


def apply_resolution(meta: PackageMeta, resolution: dict, logger: Logger) -> PackageMeta:
    """
    Record a resolution on package metadata.

    ``_release`` becomes the version for version resolutions, the tag name for
    tags, ``<branch>#<short commit>`` for branches and the short commit otherwise.
    """
    meta.resolution = dict(resolution)

    if resolution["type"] == "version":
        version = semver.clean(resolution["tag"])
        if meta.version and semver.clean(meta.version) != version:
            logger.warn(
                "mismatch",
                f"Version declared in the json ({meta.version}) is different than the resolved one ({version})",
                {"resolution": resolution, "pkg_meta": meta.to_dict()},
            )
        meta.version = version
        meta.release = version
    else:
        # The declared version says nothing about an arbitrary ref
        meta.version = None
        short = resolution["commit"][:10]
        if resolution.get("tag"):
            meta.release = resolution["tag"]
        elif resolution.get("branch"):
            meta.release = f"{resolution['branch']}#{short}"
        else:
            meta.release = short

    return meta


class RefsResolver(Resolver):
    """
    Base for resolvers whose sources expose tags and branches (git, svn).

    Subclasses provide ``_fetch_refs`` and ``_checkout``; target selection,
    ``has_new`` and the ``_release``/``_resolution`` bookkeeping live here.
    """

    def __init__(self, endpoint, context: ResolverContext):
        super().__init__(endpoint, context)
        self._resolution: dict | None = None

    @property
    def resolution(self) -> dict | None:
        return self._resolution

    @classmethod
    async def refs(cls, source: str, context: ResolverContext) -> Refs:
        """Refs of a source, memoized in the runtime cache for the whole run."""
        refs = context.runtime.refs.get(source)
        if refs is None:
            refs = await cls._fetch_refs(source, context)
            context.runtime.refs[source] = refs
        return refs

    @classmethod
    async def versions(cls, source: str, context: ResolverContext) -> list[str]:
        refs = await cls.refs(source, context)
        return [entry["version"] for entry in refs.versions()]

    @classmethod
    async def _fetch_refs(cls, source: str, context: ResolverContext) -> Refs:
        raise NotImplementedResolveError()

    @classmethod
    def clear_runtime_cache(cls, context: ResolverContext) -> None:
        context.runtime.refs.clear()

    async def _find_resolution(self, target: str | None = None) -> dict:
        target = target or self._target
        refs = await self.refs(self._source, self._context)
        commit = await self._expand_commit(target, refs)
        return find_resolution(refs, target, commit=commit, source=self._source)

    async def _expand_commit(self, target: str, refs: Refs) -> str | None:
        return refs.expand_commit(target)

    async def _resolve(self) -> None:
        self._resolution = await self._find_resolution()
        await self._checkout(self._resolution)

    async def _checkout(self, resolution: dict) -> None:
        raise NotImplementedResolveError(context={"resolver": self.identity()})

    async def _has_new(self, canonical_dir: Path, pkg_meta: PackageMeta) -> bool:
        old = pkg_meta.resolution
        if not old:
            return True

        # Commits never move
        if old.get("type") == "commit":
            return False

        new = await self._find_resolution(pkg_meta.target or self._target)
        return resolution_changed(old, new)

    async def _save_pkg_meta(self, meta: PackageMeta) -> PackageMeta:
        apply_resolution(meta, self._resolution, self._logger)
        return await super()._save_pkg_meta(meta)
