"""noap-resolver - Package endpoint resolution.

Turns ``[name=]source[#target]`` endpoints into materialized package folders:
resolver dispatch (git, GitHub, svn, URL, filesystem, registry), an on-disk
cache shared across processes, and a manager electing one package per name.

Library mechanism only: apps inject policy (configuration, registry,
prompts, install collaborators).
"""

from .cache import Cache
from .config import ResolverConfig
from .config import StorageConfig
from .election import Election
from .election import are_compatible
from .election import elect
from .endpoint import Endpoint
from .endpoint import compose
from .endpoint import decompose
from .endpoint import to_data
from .exceptions import CommandError
from .exceptions import ConflictError
from .exceptions import ErrorCode
from .exceptions import FetchError
from .exceptions import InvalidTargetError
from .exceptions import NoCacheError
from .exceptions import NoResolverError
from .exceptions import NoResolveTargetError
from .exceptions import NotInstalledError
from .exceptions import PackageNotFoundError
from .exceptions import ResolutionError
from .exceptions import ToolMissingError
from .exceptions import WorkingError
from .factory import ResolverFactory
from .logger import LogEvent
from .logger import Logger
from .manager import Manager
from .manager import read_installed
from .protocols import BinLinkerProtocol
from .protocols import FileCopierProtocol
from .protocols import PrompterProtocol
from .protocols import RegistryProtocol
from .protocols import ScriptRunnerProtocol
from .registry import Registry
from .repository import FetchResult
from .repository import Repository
from .runtime import RuntimeCache
from .schema import PackageMeta

__all__ = [
    # Configuration
    "ResolverConfig",
    "StorageConfig",
    # Endpoints and metadata
    "Endpoint",
    "decompose",
    "compose",
    "to_data",
    "PackageMeta",
    # Resolution
    "ResolverFactory",
    "Repository",
    "FetchResult",
    "Cache",
    "Registry",
    "RuntimeCache",
    # Election
    "Manager",
    "Election",
    "elect",
    "are_compatible",
    "read_installed",
    # Logging
    "Logger",
    "LogEvent",
    # Collaborators
    "RegistryProtocol",
    "PrompterProtocol",
    "ScriptRunnerProtocol",
    "BinLinkerProtocol",
    "FileCopierProtocol",
    # Exceptions
    "ErrorCode",
    "ResolutionError",
    "WorkingError",
    "NoResolveTargetError",
    "InvalidTargetError",
    "NoResolverError",
    "PackageNotFoundError",
    "NoCacheError",
    "ConflictError",
    "CommandError",
    "ToolMissingError",
    "NotInstalledError",
    "FetchError",
]

__version__ = "0.1.0"
