"""Throttled execution of external commands (git, svn, tar...).

Spawning many VCS processes at once does not speed anything up and hurts on
slow or private networks, so every command goes through a ``Shell`` whose
semaphore caps concurrent processes. This is the only throttled layer of the
engine: fetches above it fan out freely.
"""

import asyncio
import logging
import os
import shutil
import sys
from collections.abc import Sequence
from pathlib import Path

from .exceptions import CommandError

logger = logging.getLogger(__name__)

_IS_WINDOWS = sys.platform == "win32"
_WIN_BATCH_EXTENSIONS = (".bat", ".cmd")


class Shell:
    """Runs commands with bounded concurrency, buffering their output."""

    def __init__(self, concurrency: int = 5):
        self.concurrency = concurrency
        self._semaphore = asyncio.Semaphore(concurrency)
        self._which_cache: dict[str, str] = {}

    async def execute(
        self,
        command: str,
        args: Sequence[str] = (),
        cwd: Path | None = None,
        env: dict[str, str] | None = None,
    ) -> tuple[str, str]:
        """
        Execute a command and return its ``(stdout, stderr)``.

        Args:
            command: Executable name or path
            args: Arguments passed verbatim (no shell interpretation)
            cwd: Working directory
            env: Extra environment variables merged over ``os.environ``

        Raises:
            CommandError: If the command cannot be spawned or exits non-zero
        """
        async with self._semaphore:
            return await self._execute(command, list(args), cwd, env)

    async def _execute(
        self, command: str, args: list[str], cwd: Path | None, env: dict[str, str] | None
    ) -> tuple[str, str]:
        full_command = " ".join([command, *args])
        executable = self._windows_command(command) if _IS_WINDOWS else command
        logger.debug(f"Executing: {full_command}" + (f" (cwd={cwd})" if cwd else ""))

        try:
            proc = await asyncio.create_subprocess_exec(
                executable,
                *args,
                cwd=str(cwd) if cwd else None,
                env={**os.environ, **(env or {})},
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise CommandError(f'Failed to execute "{full_command}": {e}', details=str(e)) from e

        stdout, stderr = await proc.communicate()
        out = stdout.decode("utf-8", errors="replace")
        err = stderr.decode("utf-8", errors="replace")

        if proc.returncode:
            raise CommandError(
                f'Failed to execute "{full_command}", exit code of #{proc.returncode}',
                details=err,
                exit_code=proc.returncode,
            )

        return out, err

    def _windows_command(self, command: str) -> str:
        # .bat/.cmd shims are only found through their full path
        if command in self._which_cache:
            return self._which_cache[command]

        full = shutil.which(command)
        resolved = full if full and Path(full).suffix.lower() in _WIN_BATCH_EXTENSIONS else command
        self._which_cache[command] = resolved
        return resolved


def which(command: str) -> bool:
    """Check whether a command is available on PATH."""
    return shutil.which(command) is not None
