"""Subprocess execution behind a small protocol, so builders can be tested without real tools."""

import logging
import os
import shutil
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

from hostdb.exceptions import ToolMissing

logger = logging.getLogger(__name__)


@dataclass
class CommandResult:
    """Result of one command; ``returncode`` is negative when killed by a signal."""

    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def success(self) -> bool:
        return self.returncode == 0


class CommandExecutor(Protocol):
    """Runs an argument list and reports how it ended."""

    def execute(
        self,
        args: list[str],
        *,
        cwd: Path | None = None,
        env: dict[str, str] | None = None,
        timeout: int | None = None,
    ) -> CommandResult: ...


class LocalExecutor:
    """Runs commands on this host with output streamed to the console.

    Arguments are always passed as a list, never through a shell.
    """

    def execute(
        self,
        args: list[str],
        *,
        cwd: Path | None = None,
        env: dict[str, str] | None = None,
        timeout: int | None = None,
    ) -> CommandResult:
        logger.debug(f"Running: {' '.join(args)}")
        merged_env = {**os.environ, **env} if env else None
        r = subprocess.run(
            args, cwd=cwd, env=merged_env, timeout=timeout, check=False
        )
        return CommandResult(returncode=r.returncode)


def require_commands(*commands: str) -> None:
    """Check that external tools are on PATH.

    Raises:
        ToolMissing: For the first command not found
    """
    for command in commands:
        if shutil.which(command) is None:
            raise ToolMissing(command)
