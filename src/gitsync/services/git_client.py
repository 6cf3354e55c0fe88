"""Git working-copy operations used by the deployment pipeline.

Wraps the ``git`` CLI. Commands run through ``subprocess.run`` in a worker
thread so a slow remote never blocks the event loop.
"""

import asyncio
import logging
import subprocess
from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol

from gitsync.core.exceptions import CloneError, GitError, PullError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PullOutcome:
    """Result of fetching and fast-forwarding the tracked branch."""

    changed: bool
    files: list[str] = field(default_factory=list)
    before: str | None = None
    after: str | None = None
    summary: str = ""


@dataclass(frozen=True)
class UpdateStatus:
    """How far the local branch is from its upstream."""

    behind: int
    ahead: int
    current_branch: str | None = None

    @property
    def has_updates(self) -> bool:
        return self.behind > 0


class VersionControl(Protocol):
    """Version-control collaborator used by the executor and the poller."""

    async def ensure_cloned(self, path: str, url: str, branch: str) -> bool:
        """Clone ``url`` into ``path`` unless it is already a working copy.

        Returns True when a fresh clone was made.
        """
        ...

    async def pull(self, path: str, branch: str) -> PullOutcome:
        """Fetch and fast-forward ``branch``, checking it out first if needed."""
        ...

    async def check_for_updates(self, path: str, branch: str) -> UpdateStatus:
        """Fetch and count commits between HEAD and ``origin/<branch>``."""
        ...


class GitClient:
    """
    Git CLI wrapper.

    Operations:
    - Clone a repository when the working copy is missing
    - Pull the tracked branch and report changed files
    - Compare the local branch with its upstream
    """

    def __init__(self, timeout_seconds: int | None = 300, remote: str = "origin"):
        """
        Initialize the client.

        Args:
            timeout_seconds: Per-command limit (None or 0 for no limit)
            remote: Remote name used for fetch/pull
        """
        self.timeout_seconds = timeout_seconds or None
        self.remote = remote

    def _run_sync(self, args: list[str], cwd: Path | None) -> subprocess.CompletedProcess:
        try:
            result = subprocess.run(
                ["git", *args],
                cwd=cwd,
                capture_output=True,
                text=True,
                timeout=self.timeout_seconds,
            )
        except subprocess.TimeoutExpired as e:
            raise GitError(f"git {args[0]} timed out after {e.timeout}s") from e
        except OSError as e:
            raise GitError(f"git {args[0]} could not be started: {e}") from e

        if result.returncode != 0:
            detail = (result.stderr or result.stdout).strip()
            raise GitError(f"git {' '.join(args)} failed: {detail}")
        return result

    async def _git(self, *args: str, cwd: Path | None = None) -> str:
        result = await asyncio.to_thread(self._run_sync, list(args), cwd)
        return result.stdout.strip()

    @staticmethod
    def is_working_copy(path: str | Path) -> bool:
        return (Path(path) / ".git").exists()

    async def ensure_cloned(self, path: str, url: str, branch: str) -> bool:
        repo_path = Path(path)
        if self.is_working_copy(repo_path):
            logger.debug("Repository already present", extra={"path": str(repo_path)})
            return False

        logger.info(
            "Cloning repository",
            extra={"url": url, "branch": branch, "path": str(repo_path)},
        )
        try:
            repo_path.parent.mkdir(parents=True, exist_ok=True)
            await self._git("clone", "--branch", branch, url, str(repo_path))
        except (GitError, OSError) as e:
            raise CloneError(f"Clone failed: {e}") from e

        logger.info("Repository cloned successfully", extra={"path": str(repo_path)})
        return True

    async def pull(self, path: str, branch: str) -> PullOutcome:
        repo_path = Path(path)
        try:
            await self._git("fetch", self.remote, branch, cwd=repo_path)

            current = await self._git("rev-parse", "--abbrev-ref", "HEAD", cwd=repo_path)
            if current != branch:
                logger.warning(
                    "Checked-out branch differs, switching",
                    extra={"current_branch": current, "branch": branch, "path": str(repo_path)},
                )
                await self._git("checkout", branch, cwd=repo_path)

            before = await self._git("rev-parse", "HEAD", cwd=repo_path)
            await self._git("pull", "--ff-only", self.remote, branch, cwd=repo_path)
            after = await self._git("rev-parse", "HEAD", cwd=repo_path)

            if before == after:
                logger.info("Already up to date", extra={"path": str(repo_path)})
                return PullOutcome(changed=False, before=before, after=after)

            names = await self._git("diff", "--name-only", before, after, cwd=repo_path)
            summary = await self._git("diff", "--shortstat", before, after, cwd=repo_path)
        except GitError as e:
            raise PullError(str(e)) from e

        files = [line for line in names.splitlines() if line.strip()]
        logger.info(
            "Pulled changes",
            extra={"path": str(repo_path), "files": len(files), "summary": summary},
        )
        return PullOutcome(changed=True, files=files, before=before, after=after, summary=summary)

    async def check_for_updates(self, path: str, branch: str) -> UpdateStatus:
        repo_path = Path(path)
        await self._git("fetch", self.remote, branch, cwd=repo_path)
        current = await self._git("rev-parse", "--abbrev-ref", "HEAD", cwd=repo_path)
        counts = await self._git(
            "rev-list",
            "--left-right",
            "--count",
            f"HEAD...{self.remote}/{branch}",
            cwd=repo_path,
        )
        try:
            ahead_raw, behind_raw = counts.split()
            ahead, behind = int(ahead_raw), int(behind_raw)
        except ValueError as e:
            raise GitError(f"Unexpected rev-list output: {counts!r}") from e
        return UpdateStatus(behind=behind, ahead=ahead, current_branch=current)

