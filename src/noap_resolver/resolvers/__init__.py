"""Resolver implementations, one per kind of source."""

from .base import Resolver
from .base import ResolverContext
from .fs import FsResolver
from .git import GitFsResolver
from .git import GitRemoteResolver
from .git import GitResolver
from .github import GitHubResolver
from .refs import Refs
from .refs import RefsResolver
from .svn import SvnResolver
from .url import UrlResolver

__all__ = [
    "Resolver",
    "ResolverContext",
    "RefsResolver",
    "Refs",
    "FsResolver",
    "UrlResolver",
    "GitResolver",
    "GitFsResolver",
    "GitRemoteResolver",
    "GitHubResolver",
    "SvnResolver",
]
