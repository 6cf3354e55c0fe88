"""Build command execution.

Commands are shell strings from the deployment file, run one at a time
in their resolved working directory.
"""

import asyncio
import logging
import subprocess
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

from gitsync.core.exceptions import BuildError

logger = logging.getLogger(__name__)

# Keep captured output bounded in memory and in API responses
MAX_OUTPUT_CHARS = 8000


@dataclass(frozen=True)
class CommandOutcome:
    """Result of one finished build command."""

    command: str
    cwd: str
    exit_code: int
    stdout: str = ""
    stderr: str = ""
    duration_seconds: float = 0.0


class CommandRunner(Protocol):
    """Build collaborator."""

    async def run(self, command: str, cwd: Path) -> CommandOutcome:
        """Run ``command``; raise BuildError when it fails."""
        ...


def _tail(text: str) -> str:
    if len(text) <= MAX_OUTPUT_CHARS:
        return text
    return text[-MAX_OUTPUT_CHARS:]


class ShellCommandRunner:
    """Runs build commands through the system shell."""

    def __init__(self, timeout_seconds: int | None = 1800):
        self.timeout_seconds = timeout_seconds or None

    def _run_sync(self, command: str, cwd: Path) -> CommandOutcome:
        if not cwd.is_dir():
            raise BuildError(f"Working directory does not exist: {cwd}", command=command)

        started = time.perf_counter()
        try:
            result = subprocess.run(
                command,
                shell=True,
                cwd=cwd,
                capture_output=True,
                text=True,
                timeout=self.timeout_seconds,
            )
        except subprocess.TimeoutExpired as e:
            raise BuildError(f"Build command timed out after {e.timeout}s", command=command) from e
        except OSError as e:
            raise BuildError(f"Build command could not be started: {e}", command=command) from e

        outcome = CommandOutcome(
            command=command,
            cwd=str(cwd),
            exit_code=result.returncode,
            stdout=_tail(result.stdout),
            stderr=_tail(result.stderr),
            duration_seconds=round(time.perf_counter() - started, 3),
        )
        if result.returncode != 0:
            detail = (result.stderr or result.stdout).strip().splitlines()
            last_line = detail[-1] if detail else ""
            raise BuildError(
                f"exited with {result.returncode}{': ' + last_line if last_line else ''}",
                command=command,
                exit_code=result.returncode,
            )
        return outcome

    async def run(self, command: str, cwd: Path) -> CommandOutcome:
        logger.info("Running build command", extra={"command": command, "cwd": str(cwd)})
        return await asyncio.to_thread(self._run_sync, command, cwd)
