"""Protocols for collaborators of the resolution engine.

The engine only needs these interfaces; apps provide the implementations
(an HTTP registry, a terminal prompt, a lifecycle script runner...).
"""

from pathlib import Path
from typing import Protocol
from typing import runtime_checkable


@runtime_checkable
class RegistryProtocol(Protocol):
    """Name -> source URL lookup used as the last resolver-dispatch fallback."""

    async def lookup(self, name: str) -> str | None:
        """Look up a package name.

        Args:
            name: Registry name of the package

        Returns:
            Source URL if the registry knows the name, None otherwise
        """
        ...

    def clear_cache(self, name: str | None = None) -> None:
        """Drop cached lookups for one name (or all when None)."""
        ...

    def reset_cache(self) -> None:
        """Drop in-memory lookup state."""
        ...


class PrompterProtocol(Protocol):
    """Asks a human to pick one of several conflicting candidates."""

    async def prompt(self, message: str, picks: list[dict]) -> str:
        """Show the candidates and return the raw single-line answer.

        Args:
            message: Question to display
            picks: Serialized candidates, numbered from 1 in display order

        Returns:
            Raw answer, e.g. ``"2"`` or ``"2!"`` (``!`` = always remember)
        """
        ...


class ScriptRunnerProtocol(Protocol):
    """Runs lifecycle scripts around installation."""

    async def preinstall(self, packages: dict, installed: dict) -> None: ...

    async def postinstall(self, packages: dict, installed: dict) -> None: ...


class BinLinkerProtocol(Protocol):
    """Links executables declared by installed packages."""

    async def link(self, name: str, package_dir: Path) -> None: ...


class FileCopierProtocol(Protocol):
    """Copies a materialized package into its install destination."""

    async def copy_dir(self, src: Path, dst: Path) -> None:
        """Copy ``src`` to ``dst``; ``dst`` does not exist yet.

        Raises:
            Exception: If copying fails
        """
        ...
