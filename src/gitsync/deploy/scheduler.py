"""Per-repository deployment scheduling.

At most one pipeline runs per configured repository, identified by its
``(name, branch)`` pair. A trigger arriving while that pipeline is
running waits in a depth-1 slot; a newer trigger replaces a waiting one
(latest wins). The running pipeline is never interrupted.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from typing import Protocol

from gitsync.core.logging import correlation_id_ctx
from gitsync.observability.metrics import METRICS, record_trigger
from gitsync.schemas.deployment_config import RepositoryConfig
from gitsync.schemas.pipeline import PipelineState
from gitsync.schemas.trigger import DeploymentTrigger

logger = logging.getLogger(__name__)

RepoKey = tuple[str, str]

CompletionHook = Callable[[PipelineState], None | Awaitable[None]]


class PipelineRunner(Protocol):
    async def run(self, repo: RepositoryConfig, trigger: DeploymentTrigger) -> PipelineState: ...


class SubmitOutcome(str, Enum):
    STARTED = "started"
    QUEUED = "queued"
    SUPERSEDED = "superseded"
    REJECTED = "rejected"


def repo_key(repo: RepositoryConfig) -> RepoKey:
    return (repo.name, repo.branch)


@dataclass(frozen=True)
class _Job:
    repo: RepositoryConfig
    trigger: DeploymentTrigger
    # Correlation id of the request that submitted the trigger.
    correlation_id: str | None = None


@dataclass
class _RepoLock:
    """Held for the lifetime of one repository's pipeline run loop."""

    task: asyncio.Task
    running: DeploymentTrigger
    queued: _Job | None = None


class DeploymentScheduler:
    """Serializes pipelines per repository and fans results out to completion hooks."""

    def __init__(self, executor: PipelineRunner, hooks: list[CompletionHook] | None = None):
        self.executor = executor
        self._hooks: list[CompletionHook] = list(hooks or [])
        self._locks: dict[RepoKey, _RepoLock] = {}
        self._mutex = asyncio.Lock()
        self._closed = False
        self._idle = asyncio.Event()
        self._idle.set()

    async def submit(self, repo: RepositoryConfig, trigger: DeploymentTrigger) -> SubmitOutcome:
        """
        Request a deployment. Returns immediately; completion is reported
        through the hooks.
        """
        job = _Job(repo, trigger, correlation_id_ctx.get())
        async with self._mutex:
            if self._closed:
                logger.warning(
                    "Scheduler closed, dropping trigger",
                    extra={"repo": repo.name, "provider": trigger.provider.value},
                )
                record_trigger(source=trigger.provider.value, outcome="rejected")
                return SubmitOutcome.REJECTED

            key = repo_key(repo)
            lock = self._locks.get(key)
            if lock is None:
                task = asyncio.create_task(
                    self._run_loop(key, job), name=f"deploy:{repo.name}@{repo.branch}"
                )
                self._locks[key] = _RepoLock(task=task, running=trigger)
                self._idle.clear()
                record_trigger(source=trigger.provider.value, outcome="started")
                return SubmitOutcome.STARTED

            outcome = SubmitOutcome.QUEUED
            if lock.queued is not None:
                outcome = SubmitOutcome.SUPERSEDED
                METRICS.queued_superseded_total.inc()
                logger.info(
                    "Replacing queued trigger with newer one",
                    extra={
                        "repo": repo.name,
                        "branch": repo.branch,
                        "replaced_trigger": lock.queued.trigger.trigger_id,
                        "trigger": trigger.trigger_id,
                    },
                )
            else:
                logger.info(
                    "Deployment in progress, trigger queued",
                    extra={
                        "repo": repo.name,
                        "branch": repo.branch,
                        "running_trigger": lock.running.trigger_id,
                        "trigger": trigger.trigger_id,
                    },
                )
            lock.queued = job
            record_trigger(source=trigger.provider.value, outcome=outcome.value)
            return outcome

    async def _run_loop(self, key: RepoKey, job: _Job) -> None:
        current: _Job | None = job
        try:
            while current is not None:
                state = await self._run_one(current)
                await self._notify(state)
                current = await self._next(key)
        finally:
            async with self._mutex:
                lock = self._locks.get(key)
                if lock is not None and lock.task is asyncio.current_task():
                    del self._locks[key]
                if not self._locks:
                    self._idle.set()

    async def _next(self, key: RepoKey) -> _Job | None:
        """Hand the lock to the queued trigger, or release it when nothing is waiting."""
        async with self._mutex:
            lock = self._locks[key]
            queued, lock.queued = lock.queued, None
            if queued is None or self._closed:
                del self._locks[key]
                if not self._locks:
                    self._idle.set()
                return None
            lock.running = queued.trigger
            return queued

    async def _run_one(self, job: _Job) -> PipelineState:
        repo, trigger = job.repo, job.trigger
        token = correlation_id_ctx.set(job.correlation_id)
        try:
            return await self.executor.run(repo, trigger)
        except Exception as e:
            logger.exception("Pipeline runner raised", extra={"repo": repo.name})
            state = PipelineState(
                repo=repo.name,
                branch=repo.branch,
                path=repo.path,
                trigger=trigger,
                success=False,
                error=f"Unexpected error: {e}",
            )
            return state.finish()
        finally:
            correlation_id_ctx.reset(token)

    async def _notify(self, state: PipelineState) -> None:
        for hook in self._hooks:
            try:
                result = hook(state)
                if asyncio.iscoroutine(result):
                    await result
            except Exception:
                logger.exception("Completion hook failed", extra={"repo": state.repo})

    def is_running(self, name: str, branch: str) -> bool:
        return (name, branch) in self._locks

    def snapshot(self) -> dict[RepoKey, dict[str, str | None]]:
        """Running and queued trigger ids per ``(name, branch)``."""
        return {
            key: {
                "running": lock.running.trigger_id,
                "running_provider": lock.running.provider.value,
                "queued": lock.queued.trigger.trigger_id if lock.queued else None,
            }
            for key, lock in self._locks.items()
        }

    async def wait_idle(self) -> None:
        """Wait until no pipeline is running or queued."""
        await self._idle.wait()

    async def shutdown(self, grace_seconds: float = 30.0) -> None:
        """Drop queued triggers, wait for running pipelines, then cancel stragglers."""
        async with self._mutex:
            self._closed = True
            dropped = [key for key, lock in self._locks.items() if lock.queued]
            for key in dropped:
                self._locks[key].queued = None
            tasks = [lock.task for lock in self._locks.values()]

        if dropped:
            logger.info(
                "Dropped queued triggers on shutdown",
                extra={"repos": [f"{name}@{branch}" for name, branch in dropped]},
            )
        if not tasks:
            return

        _, pending = await asyncio.wait(tasks, timeout=grace_seconds)
        for task in pending:
            logger.warning("Cancelling running deployment", extra={"task": task.get_name()})
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
