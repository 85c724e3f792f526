"""Dispatch from a source string to the resolver type that handles it."""

import asyncio
import logging
import os
import re

from .endpoint import Endpoint
from .exceptions import NoResolverError
from .exceptions import PackageNotFoundError
from .protocols import RegistryProtocol
from .resolvers import FsResolver
from .resolvers import GitFsResolver
from .resolvers import GitHubResolver
from .resolvers import GitRemoteResolver
from .resolvers import Resolver
from .resolvers import ResolverContext
from .resolvers import SvnResolver
from .resolvers import UrlResolver
from .resolvers.github import get_org_repo_pair

logger = logging.getLogger(__name__)

_GIT_URL = re.compile(r"^git(\+(ssh|https?))?://", re.IGNORECASE)
_GIT_SUFFIX = re.compile(r"\.git/?$", re.IGNORECASE)
_GIT_SSH = re.compile(r"^git@", re.IGNORECASE)
_SVN_URL = re.compile(r"^svn(\+(ssh|https?|file))?://", re.IGNORECASE)
_HTTP_URL = re.compile(r"^https?://", re.IGNORECASE)
_RELATIVE = re.compile(r"^\.\.?[/\\]")
_PLACEHOLDER = re.compile(r"\{\{?\s*(\w+)\s*\}?\}")


class ResolverFactory:
    """
    Picks and builds the resolver for an endpoint.

    Dispatch order:

    1. git URLs (``git://``, ``git+ssh|http|https://``, ``*.git``, ``git@host:``), GitHub ones first
    2. svn URLs (``svn://``, ``svn+...://``)
    3. plain ``http(s)://`` URLs
    4. local paths: a git checkout, an svn working copy, or any existing file/folder
    5. ``owner/package`` shorthands, expanded with the host templates
    6. the registry
    """

    def __init__(self, context: ResolverContext, registry: RegistryProtocol | None = None):
        self._context = context
        self._config = context.config
        self._registry = registry

    async def create(self, endpoint: Endpoint, context: ResolverContext | None = None) -> Resolver:
        """
        Build the resolver for an endpoint.

        Endpoints found through the registry are flagged with ``registry`` and,
        when unnamed, take the registry name.

        Args:
            endpoint: Endpoint to resolve
            context: Context handed to the resolver (defaults to the factory's)

        Raises:
            NoResolverError: If no resolver type matches the source
            PackageNotFoundError: If the registry does not know the source
            ResolutionError: Whatever the resolver constructor raises (e.g. target rejection)
        """
        resolver_class, source, from_registry = await self.get_constructor(endpoint.source)

        if from_registry:
            endpoint.registry = True
            if not endpoint.name:
                endpoint.name = endpoint.source

        resolved = Endpoint(source=source, name=endpoint.name, target=endpoint.target)
        return resolver_class(resolved, context or self._context)

    async def get_constructor(self, source: str) -> tuple[type[Resolver], str, bool]:
        """
        Find the resolver type for a source.

        Returns:
            ``(resolver_class, normalized_source, from_registry)``
        """
        if _GIT_URL.match(source) or _GIT_SUFFIX.search(source) or _GIT_SSH.match(source):
            source = re.sub(r"^git\+", "", source)
            if get_org_repo_pair(source):
                return GitHubResolver, source, False
            return GitRemoteResolver, source, False

        if _SVN_URL.match(source):
            return SvnResolver, source, False

        if _HTTP_URL.match(source):
            return UrlResolver, source, False

        found = await asyncio.to_thread(self._probe_path, source)
        if found:
            return found[0], found[1], False

        expanded = self._expand_shorthand(source)
        if expanded:
            logger.debug(f"Expanded shorthand {source} to {expanded}")
            return await self.get_constructor(expanded)

        if self._registry is not None:
            url = await self._registry.lookup(source)
            if not url:
                raise PackageNotFoundError(f"Package {source} not found", context={"source": source})

            resolver_class, resolved, _ = await self.get_constructor(url)
            return resolver_class, resolved, True

        raise NoResolverError(f"Could not find appropriate resolver for {source}", context={"source": source})

    def clear_runtime_cache(self) -> None:
        """Forget memoized refs and registry lookups."""
        self._context.runtime.refs.clear()
        if self._registry is not None:
            self._registry.clear_cache()

    def _probe_path(self, source: str) -> tuple[type[Resolver], str] | None:
        absolute = os.path.abspath(os.path.join(self._config.cwd, os.path.expanduser(source)))

        is_path = (
            _RELATIVE.match(source)
            or source.startswith("~/")
            or os.path.normpath(source).rstrip("/\\") == absolute.rstrip("/\\")
        )
        if not is_path:
            return None

        if os.path.isdir(os.path.join(absolute, ".git")):
            return GitFsResolver, absolute
        if os.path.isdir(os.path.join(absolute, ".svn")):
            return SvnResolver, absolute
        if os.path.exists(absolute):
            return FsResolver, absolute
        return None

    def _expand_shorthand(self, source: str) -> str | None:
        short = source.startswith("@")

        # ssh locators and URLs with credentials are not shorthands
        if not short and re.search(r"[:@]", source):
            return None

        parts = source.split("/")
        if len(parts) != 2:
            return None

        host = None
        separator = parts[0].find(":")
        if separator > 0 and short:
            host = parts[0][1:separator]
            parts[0] = parts[0][separator + 1 :]

        if not parts[0] or not parts[1]:
            return None

        hosts = self._config.hosts
        if host:
            template = hosts.get(host)
        elif self._config.host:
            template = hosts.get(self._config.host, self._config.host)
        else:
            template = next(iter(hosts.values()), None)

        if not template:
            return None

        values = {"shorthand": source, "owner": parts[0], "package": parts[1]}
        return _PLACEHOLDER.sub(lambda m: values.get(m.group(1), m.group(0)), template)
