"""Deployment pipeline executor.

Runs the ordered steps for one repository:

    ensure_repo -> pull -> (skip if unchanged) -> install_dependencies
    -> stop_scripts -> build -> register_scripts -> restart_scripts

Clone, pull, install and build failures end the pipeline with
``success=False``. Stop, register and restart failures are recorded per
script and leave ``success`` untouched.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Awaitable, Callable

from gitsync.core.exceptions import BuildError, GitSyncError, LifecycleError
from gitsync.core.logging import pipeline_context
from gitsync.observability.metrics import METRICS, record_step
from gitsync.observability.tracing import start_span
from gitsync.schemas.deployment_config import (
    DeploymentConfig,
    ProcessManagerConfig,
    RepositoryConfig,
)
from gitsync.schemas.pipeline import (
    BuildPayload,
    CommandResult,
    EnsureRepoPayload,
    InstallPayload,
    PipelineState,
    PullPayload,
    ScriptBatchPayload,
    ScriptResult,
    StepKind,
    StepResult,
)
from gitsync.schemas.trigger import DeploymentTrigger
from gitsync.services.build_runner import CommandRunner
from gitsync.services.dependency_installer import Installer
from gitsync.services.git_client import VersionControl
from gitsync.services.process_manager import ProcessManager

logger = logging.getLogger(__name__)

ProcessManagerFactory = Callable[[ProcessManagerConfig], ProcessManager]


class PipelineExecutor:
    """Executes the deployment state machine for one repository at a time.

    The executor holds no per-run state; every ``run`` call builds its own
    ``PipelineState``. Serialization per repository is the scheduler's job.
    """

    def __init__(
        self,
        config: DeploymentConfig,
        git: VersionControl,
        installer: Installer,
        builder: CommandRunner,
        process_manager_factory: ProcessManagerFactory,
    ):
        self.config = config
        self.git = git
        self.installer = installer
        self.builder = builder
        self.process_manager_factory = process_manager_factory

    async def run(self, repo: RepositoryConfig, trigger: DeploymentTrigger) -> PipelineState:
        """Run the pipeline and return its terminal state. Never raises."""
        with pipeline_context(repo.name, trigger.trigger_id):
            return await self._run(repo, trigger)

    async def _run(self, repo: RepositoryConfig, trigger: DeploymentTrigger) -> PipelineState:
        state = PipelineState(repo=repo.name, branch=repo.branch, path=repo.path, trigger=trigger)
        METRICS.pipelines_running.inc()

        logger.info(
            "Deployment started",
            extra={
                "branch": repo.branch,
                "path": repo.path,
                "url": repo.repo_url,
                "provider": trigger.provider.value,
                "pusher": trigger.pusher,
            },
        )
        try:
            with start_span(
                "pipeline",
                attributes={
                    "gitsync.repo": repo.name,
                    "gitsync.branch": repo.branch,
                    "gitsync.trigger": trigger.provider.value,
                },
            ):
                await self._execute(repo, state)
        except Exception as e:
            logger.exception("Unexpected pipeline error")
            state.success = False
            state.error = state.error or f"Unexpected error: {e}"
        finally:
            state.finish()
            METRICS.pipelines_running.dec()
        return state

    async def _execute(self, repo: RepositoryConfig, state: PipelineState) -> None:
        url = repo.repo_url
        if url:
            ensured = await self._step(
                state, StepKind.ENSURE_REPO, lambda: self._ensure_repo(repo, url)
            )
            if not ensured.success:
                return
            state.cloned = isinstance(ensured.payload, EnsureRepoPayload) and ensured.payload.cloned

        pulled = await self._step(state, StepKind.PULL, lambda: self._pull(repo))
        if not pulled.success:
            return

        changed = isinstance(pulled.payload, PullPayload) and pulled.payload.changed
        if not changed and not state.cloned:
            state.skipped = True
            logger.info("No changes detected, skipping remaining steps")
            return

        if repo.dependencies.type != "none":
            installed = await self._step(
                state, StepKind.INSTALL_DEPENDENCIES, lambda: self._install(repo)
            )
            if not installed.success:
                return

        process_manager = self.config.resolve_process_manager(repo)

        if repo.build and repo.restart_scripts:
            await self._step(
                state,
                StepKind.STOP_SCRIPTS,
                lambda: self._stop_scripts(repo, process_manager),
            )

        if repo.build:
            built = await self._step(state, StepKind.BUILD, lambda: self._build(repo))
            if not built.success:
                return

        if state.cloned and repo.register_scripts:
            await self._step(
                state,
                StepKind.REGISTER_SCRIPTS,
                lambda: self._register_scripts(repo, process_manager),
            )

        if repo.restart_scripts:
            await self._step(
                state,
                StepKind.RESTART_SCRIPTS,
                lambda: self._restart_scripts(repo, process_manager),
            )

    async def _step(
        self,
        state: PipelineState,
        kind: StepKind,
        action: Callable[[], Awaitable[StepResult]],
    ) -> StepResult:
        started = time.perf_counter()
        with start_span(f"pipeline.{kind.value}", attributes={"gitsync.repo": state.repo}):
            try:
                result = await action()
            except GitSyncError as e:
                result = StepResult(step=kind, success=False, error=str(e))
            except Exception as e:
                logger.exception("Step raised unexpectedly", extra={"step": kind.value})
                result = StepResult(step=kind, success=False, error=f"Unexpected error: {e}")

        result.duration_seconds = round(time.perf_counter() - started, 3)
        record_step(
            step=kind.value, success=result.success, duration_seconds=result.duration_seconds
        )
        if not result.success:
            log = logger.error if kind.is_fatal else logger.warning
            log("Step failed", extra={"step": kind.value, "error": result.error})
        return state.record(result)

    async def _ensure_repo(self, repo: RepositoryConfig, url: str) -> StepResult:
        try:
            cloned = await self.git.ensure_cloned(repo.path, url, repo.branch)
        except GitSyncError as e:
            return StepResult(
                step=StepKind.ENSURE_REPO,
                success=False,
                error=f"Failed to ensure repo: {e}",
                payload=EnsureRepoPayload(url=url),
            )
        if cloned:
            logger.info("Fresh clone, running full setup")
        return StepResult(
            step=StepKind.ENSURE_REPO,
            success=True,
            payload=EnsureRepoPayload(cloned=cloned, url=url),
        )

    async def _pull(self, repo: RepositoryConfig) -> StepResult:
        try:
            outcome = await self.git.pull(repo.path, repo.branch)
        except GitSyncError as e:
            return StepResult(step=StepKind.PULL, success=False, error=f"Git pull failed: {e}")
        return StepResult(
            step=StepKind.PULL,
            success=True,
            payload=PullPayload(
                changed=outcome.changed,
                files=list(outcome.files),
                before=outcome.before,
                after=outcome.after,
                summary=outcome.summary,
            ),
        )

    async def _install(self, repo: RepositoryConfig) -> StepResult:
        try:
            outcome = await self.installer.install(repo.path, repo.dependencies)
        except GitSyncError as e:
            return StepResult(
                step=StepKind.INSTALL_DEPENDENCIES,
                success=False,
                error=f"Dependency installation failed: {e}",
                payload=InstallPayload(manager=repo.dependencies.type),
            )
        return StepResult(
            step=StepKind.INSTALL_DEPENDENCIES,
            success=True,
            payload=InstallPayload(
                manager=outcome.manager,
                skipped=outcome.skipped,
                reason=outcome.reason,
                stdout=outcome.stdout,
                stderr=outcome.stderr,
            ),
        )

    async def _build(self, repo: RepositoryConfig) -> StepResult:
        payload = BuildPayload()
        for command in repo.build:
            cwd = repo.resolve_build_dir(command)
            try:
                outcome = await self.builder.run(command.command, cwd)
            except BuildError as e:
                payload.commands.append(
                    CommandResult(
                        command=command.command,
                        cwd=str(cwd),
                        success=False,
                        exit_code=e.exit_code,
                        error=str(e),
                    )
                )
                return StepResult(
                    step=StepKind.BUILD,
                    success=False,
                    error=f"Build command failed: {command.command}: {e}",
                    payload=payload,
                )
            payload.commands.append(
                CommandResult(
                    command=outcome.command,
                    cwd=outcome.cwd,
                    success=True,
                    exit_code=outcome.exit_code,
                    stdout=outcome.stdout,
                    stderr=outcome.stderr,
                    duration_seconds=outcome.duration_seconds,
                )
            )
        return StepResult(step=StepKind.BUILD, success=True, payload=payload)

    async def _stop_scripts(
        self, repo: RepositoryConfig, process_manager: ProcessManagerConfig
    ) -> StepResult:
        async with self.process_manager_factory(process_manager) as client:
            return await self._script_batch(
                StepKind.STOP_SCRIPTS, repo.restart_scripts, client.stop_script
            )

    async def _register_scripts(
        self, repo: RepositoryConfig, process_manager: ProcessManagerConfig
    ) -> StepResult:
        async with self.process_manager_factory(process_manager) as client:
            results: list[ScriptResult] = []
            for script in repo.register_scripts:
                results.append(await self._script_call(script.name, client.add_script(script)))
            return self._batch_result(StepKind.REGISTER_SCRIPTS, results)

    async def _restart_scripts(
        self, repo: RepositoryConfig, process_manager: ProcessManagerConfig
    ) -> StepResult:
        async with self.process_manager_factory(process_manager) as client:
            return await self._script_batch(
                StepKind.RESTART_SCRIPTS, repo.restart_scripts, client.restart_script
            )

    async def _script_batch(
        self,
        kind: StepKind,
        names: tuple[str, ...],
        call: Callable[[str], Awaitable[str]],
    ) -> StepResult:
        results = [await self._script_call(name, call(name)) for name in names]
        return self._batch_result(kind, results)

    @staticmethod
    async def _script_call(name: str, call: Awaitable[str]) -> ScriptResult:
        try:
            message = await call
        except LifecycleError as e:
            return ScriptResult(script=name, success=False, error=str(e))
        except Exception as e:
            logger.warning(
                "Process manager call failed", extra={"script": name, "error": str(e)}
            )
            return ScriptResult(script=name, success=False, error=str(e))
        return ScriptResult(script=name, success=True, message=message)

    @staticmethod
    def _batch_result(kind: StepKind, results: list[ScriptResult]) -> StepResult:
        payload = ScriptBatchPayload(kind=kind.value, results=results)
        failed = payload.failed
        error = None
        if failed:
            names = ", ".join(r.script for r in failed)
            error = f"{len(failed)} of {len(results)} scripts failed: {names}"
        return StepResult(step=kind, success=not failed, error=error, payload=payload)
