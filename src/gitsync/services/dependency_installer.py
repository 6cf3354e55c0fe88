"""Dependency installation with npm, bun, yarn or pip.

A missing manifest (``package.json`` / ``requirements.txt``) is a skip,
not a failure.
"""

import asyncio
import logging
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

from gitsync.core.exceptions import InstallError
from gitsync.schemas.deployment_config import DependencySpec

logger = logging.getLogger(__name__)

NODE_MANIFEST = "package.json"
PIP_MANIFEST = "requirements.txt"

NODE_COMMANDS: dict[str, list[str]] = {
    "npm": ["npm", "install"],
    "bun": ["bun", "install"],
    "yarn": ["yarn", "install"],
}


@dataclass(frozen=True)
class InstallOutcome:
    """Result of one dependency installation."""

    manager: str
    skipped: bool = False
    reason: str | None = None
    stdout: str = ""
    stderr: str = ""
    venv_path: str | None = None


class Installer(Protocol):
    """Dependency-install collaborator."""

    async def install(self, path: str, spec: DependencySpec) -> InstallOutcome:
        """Install dependencies in ``path``. Raises InstallError on failure."""
        ...


class DependencyInstaller:
    """Runs the configured package manager inside the repository directory."""

    def __init__(self, timeout_seconds: int | None = 1800):
        self.timeout_seconds = timeout_seconds or None

    def _run_sync(self, command: list[str], cwd: Path) -> subprocess.CompletedProcess:
        try:
            result = subprocess.run(
                command,
                cwd=cwd,
                capture_output=True,
                text=True,
                timeout=self.timeout_seconds,
            )
        except subprocess.TimeoutExpired as e:
            raise InstallError(f"{command[0]} timed out after {e.timeout}s") from e
        except OSError as e:
            raise InstallError(f"{command[0]} could not be started: {e}") from e

        if result.returncode != 0:
            detail = (result.stderr or result.stdout).strip()
            raise InstallError(f"{' '.join(command)} exited with {result.returncode}: {detail}")
        return result

    async def _run(self, command: list[str], cwd: Path) -> subprocess.CompletedProcess:
        return await asyncio.to_thread(self._run_sync, command, cwd)

    async def install(self, path: str, spec: DependencySpec) -> InstallOutcome:
        repo_path = Path(path)
        if spec.type == "none":
            return InstallOutcome(manager="none", skipped=True, reason="type: none")

        logger.info(
            "Installing dependencies",
            extra={"manager": spec.type, "path": str(repo_path)},
        )
        if spec.type in NODE_COMMANDS:
            return await self._install_node(repo_path, spec.type)
        if spec.type == "pip":
            return await self._install_pip(repo_path, spec.venv)
        raise InstallError(f"Unknown dependency type: {spec.type}")

    async def _install_node(self, repo_path: Path, manager: str) -> InstallOutcome:
        if not (repo_path / NODE_MANIFEST).is_file():
            logger.info(
                "No package.json found, skipping install",
                extra={"manager": manager, "path": str(repo_path)},
            )
            return InstallOutcome(manager=manager, skipped=True, reason=f"no {NODE_MANIFEST}")

        result = await self._run(NODE_COMMANDS[manager], repo_path)
        logger.info("Dependency install completed", extra={"manager": manager})
        return InstallOutcome(manager=manager, stdout=result.stdout, stderr=result.stderr)

    async def _install_pip(self, repo_path: Path, venv: str | None) -> InstallOutcome:
        if not (repo_path / PIP_MANIFEST).is_file():
            logger.info(
                "No requirements.txt found, skipping pip install",
                extra={"path": str(repo_path)},
            )
            return InstallOutcome(manager="pip", skipped=True, reason=f"no {PIP_MANIFEST}")

        pip = "pip"
        venv_path: Path | None = None
        if venv:
            if venv == "auto":
                venv_path = repo_path / ".venv"
                if not venv_path.exists():
                    logger.info("Creating virtual environment", extra={"path": str(venv_path)})
                    await self._run(["python3", "-m", "venv", ".venv"], repo_path)
            else:
                venv_path = Path(venv).expanduser()
            pip = self._venv_pip(venv_path)

        result = await self._run([pip, "install", "-r", PIP_MANIFEST], repo_path)
        logger.info("pip install completed", extra={"venv": str(venv_path) if venv_path else None})
        return InstallOutcome(
            manager="pip",
            stdout=result.stdout,
            stderr=result.stderr,
            venv_path=str(venv_path) if venv_path else None,
        )

    @staticmethod
    def _venv_pip(venv_path: Path) -> str:
        posix = venv_path / "bin" / "pip"
        if posix.exists():
            return str(posix)
        return str(venv_path / "Scripts" / "pip")
