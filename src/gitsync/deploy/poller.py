"""Timer-driven upstream polling.

One loop checks every configured repository in turn and submits a
``poll`` trigger for each one that is behind its upstream branch. The
next tick is scheduled only after the current scan completes.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Sequence

from gitsync.deploy.scheduler import DeploymentScheduler
from gitsync.observability.metrics import METRICS
from gitsync.schemas.deployment_config import RepositoryConfig
from gitsync.schemas.trigger import DeploymentTrigger, TriggerSource
from gitsync.services.git_client import VersionControl

logger = logging.getLogger(__name__)


class PollScheduler:
    """Periodic update checks feeding the deployment scheduler."""

    def __init__(
        self,
        repos: Sequence[RepositoryConfig],
        git: VersionControl,
        scheduler: DeploymentScheduler,
        interval_seconds: float = 60.0,
    ):
        self.repos = tuple(repos)
        self.git = git
        self.scheduler = scheduler
        self.interval_seconds = interval_seconds
        self._stop = asyncio.Event()
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        self._task = asyncio.create_task(self._loop(), name="gitsync-poller")
        logger.info(
            "Polling started",
            extra={"interval_seconds": self.interval_seconds, "repos": len(self.repos)},
        )

    async def stop(self) -> None:
        """Prevent further ticks; a scan in progress finishes its current repository."""
        self._stop.set()
        if self._task is None:
            return
        await self._task
        self._task = None
        logger.info("Polling stopped")

    async def _loop(self) -> None:
        while not self._stop.is_set():
            await self.tick()
            with contextlib.suppress(asyncio.TimeoutError):
                await asyncio.wait_for(self._stop.wait(), timeout=self.interval_seconds)

    async def tick(self) -> None:
        """Check each repository sequentially."""
        for repo in self.repos:
            if self._stop.is_set():
                return
            try:
                await self.check(repo)
            except Exception:
                METRICS.poll_checks_total.labels(outcome="error").inc()
                logger.exception(
                    "Update check failed", extra={"repo": repo.name, "branch": repo.branch}
                )

    async def check(self, repo: RepositoryConfig) -> bool:
        """Submit a poll trigger when ``repo`` is behind upstream."""
        status = await self.git.check_for_updates(repo.path, repo.branch)
        if not status.has_updates:
            METRICS.poll_checks_total.labels(outcome="up_to_date").inc()
            return False

        METRICS.poll_checks_total.labels(outcome="behind").inc()
        logger.info(
            "Upstream changes detected",
            extra={"repo": repo.name, "branch": repo.branch, "behind": status.behind},
        )
        trigger = DeploymentTrigger(
            provider=TriggerSource.POLL,
            branch=repo.branch,
            repository=repo.name,
            pusher="poller",
            commits=status.behind,
        )
        await self.scheduler.submit(repo, trigger)
        return True
