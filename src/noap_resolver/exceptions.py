"""Resolution-specific exceptions.

Every error carries a stable ``code`` so callers can branch on the kind of
failure without parsing messages, plus a ``context`` dict with the structured
data (endpoint, resolver, cached entry, conflict picks) gathered on the way up.
"""

from enum import StrEnum


class ErrorCode(StrEnum):
    """Stable error codes surfaced by the resolution engine."""

    WORKING = "EWORKING"
    NO_RESOLVE_TARGET = "ENORESTARGET"
    NO_RESOLVER = "ENORESOLVER"
    NOT_FOUND = "ENOTFOUND"
    NO_CACHE = "ENOCACHE"
    CONFLICT = "ECONFLICT"
    COMMAND = "ECMDERR"
    NO_GIT = "ENOGIT"
    NO_SVN = "ENOSVN"
    NOT_INSTALLED = "ENOTINS"
    NOT_IMPLEMENTED = "ENOTIMPL"
    FETCH = "EFETCH"


class ResolutionError(Exception):
    """Base exception for resolution operations."""

    code: ErrorCode = ErrorCode.FETCH

    def __init__(self, message: str, context: dict | None = None, code: ErrorCode | None = None):
        """Initialize with message and optional context.

        Args:
            message: Human-readable error message
            context: Optional dict with additional context (endpoint, resolver, etc.)
            code: Override for the class-level error code
        """
        super().__init__(message)
        self.message = message
        self.context = context or {}
        if code is not None:
            self.code = code


class WorkingError(ResolutionError):
    """A resolver or manager instance is already busy."""

    code = ErrorCode.WORKING

    def __init__(self, message: str = "Already working", context: dict | None = None):
        super().__init__(message, context)


class NotImplementedResolveError(ResolutionError):
    """A concrete resolver did not provide materialization logic."""

    code = ErrorCode.NOT_IMPLEMENTED

    def __init__(self, message: str = "Not implemented", context: dict | None = None):
        super().__init__(message, context)


class NoResolveTargetError(ResolutionError):
    """The target cannot be addressed by the resolver."""

    code = ErrorCode.NO_RESOLVE_TARGET


class InvalidTargetError(NoResolveTargetError):
    """A VCS source has no tag, branch, commit or version matching the target."""


class NoResolverError(ResolutionError):
    """No resolver type matched the source."""

    code = ErrorCode.NO_RESOLVER


class PackageNotFoundError(ResolutionError):
    """Registry lookup found nothing for the source."""

    code = ErrorCode.NOT_FOUND


class NoCacheError(ResolutionError):
    """Offline mode requested but nothing is cached."""

    code = ErrorCode.NO_CACHE


class ConflictError(ResolutionError):
    """No suitable version could be elected for a package."""

    code = ErrorCode.CONFLICT

    def __init__(self, message: str, name: str, picks: list[dict], context: dict | None = None):
        super().__init__(message, {"name": name, "picks": picks, **(context or {})})
        self.name = name
        self.picks = picks


class CommandError(ResolutionError):
    """An external command exited with a non-zero status."""

    code = ErrorCode.COMMAND

    def __init__(self, message: str, details: str = "", exit_code: int | None = None):
        super().__init__(message, {"details": details, "exit_code": exit_code})
        self.details = details
        self.exit_code = exit_code


class ToolMissingError(ResolutionError):
    """A required command-line tool (git, svn) is not on PATH."""


class NotInstalledError(ResolutionError):
    """A package expected in the install destination is missing."""

    code = ErrorCode.NOT_INSTALLED


class FetchError(ResolutionError):
    """Unexpected failure while fetching an endpoint."""

    code = ErrorCode.FETCH
