"""Unit tests for the deployment pipeline state machine."""

from collections.abc import Callable
from pathlib import Path

import pytest
from fakes import FakeBuilder, FakeGit, FakeInstaller, FakeProcessManagerFactory
from gitsync.deploy.executor import PipelineExecutor
from gitsync.schemas.deployment_config import RepositoryConfig
from gitsync.schemas.pipeline import (
    BuildPayload,
    PullPayload,
    ScriptBatchPayload,
    StepKind,
)
from gitsync.schemas.trigger import DeploymentTrigger

RepoFactory = Callable[..., RepositoryConfig]
ExecutorFactory = Callable[..., PipelineExecutor]


class TestSkipPath:
    """No upstream change and no fresh clone ends the pipeline after pull."""

    @pytest.mark.asyncio
    async def test_unchanged_repository_is_skipped(
        self,
        make_repo: RepoFactory,
        make_executor: ExecutorFactory,
        manual_trigger: DeploymentTrigger,
    ) -> None:
        repo = make_repo(
            dependencies={"type": "npm"},
            build=["npm run build"],
            restart_scripts=["app"],
        )
        installer = FakeInstaller()
        builder = FakeBuilder()
        pm = FakeProcessManagerFactory()
        executor = make_executor(
            [repo],
            git=FakeGit(changed=False),
            installer=installer,
            builder=builder,
            process_managers=pm,
        )

        state = await executor.run(repo, manual_trigger)

        assert state.success is True
        assert state.skipped is True
        assert state.status == "skipped"
        assert state.step_names == ["pull"]
        assert installer.calls == []
        assert builder.calls == []
        assert pm.calls == []
        assert state.finished_at is not None

    @pytest.mark.asyncio
    async def test_existing_checkout_with_url_is_skipped(
        self,
        make_repo: RepoFactory,
        make_executor: ExecutorFactory,
        manual_trigger: DeploymentTrigger,
    ) -> None:
        repo = make_repo(repo_url="https://example.com/x.git", dependencies={"type": "npm"})
        executor = make_executor([repo], git=FakeGit(cloned=False, changed=False))

        state = await executor.run(repo, manual_trigger)

        assert state.skipped is True
        assert state.step_names == ["ensure_repo", "pull"]


class TestFreshClone:
    @pytest.mark.asyncio
    async def test_fresh_clone_runs_full_setup(
        self,
        make_repo: RepoFactory,
        make_executor: ExecutorFactory,
        manual_trigger: DeploymentTrigger,
    ) -> None:
        """Clone, pull, install, register, restart: five steps in order."""
        repo = make_repo(
            repo_url="https://example.com/x.git",
            dependencies={"type": "npm"},
            register_scripts=[{"name": "app", "path": "dist/index.js"}],
            restart_scripts=["app"],
        )
        git = FakeGit(cloned=True, changed=False)
        pm = FakeProcessManagerFactory()
        executor = make_executor([repo], git=git, process_managers=pm)

        state = await executor.run(repo, manual_trigger)

        assert state.success is True
        assert state.skipped is False
        assert state.cloned is True
        assert state.step_names == [
            "ensure_repo",
            "pull",
            "install_dependencies",
            "register_scripts",
            "restart_scripts",
        ]
        assert pm.calls == [("add", "app"), ("restart", "app")]
        assert [call[0] for call in git.calls] == ["ensure_cloned", "pull"]

    @pytest.mark.asyncio
    async def test_clone_failure_is_fatal(
        self,
        make_repo: RepoFactory,
        make_executor: ExecutorFactory,
        manual_trigger: DeploymentTrigger,
    ) -> None:
        repo = make_repo(repo_url="https://example.com/x.git", restart_scripts=["app"])
        git = FakeGit(fail="ensure_cloned")
        executor = make_executor([repo], git=git)

        state = await executor.run(repo, manual_trigger)

        assert state.success is False
        assert state.step_names == ["ensure_repo"]
        assert state.error.startswith("Failed to ensure repo:")
        assert git.calls == [("ensure_cloned", repo.path)]


class TestFatalSteps:
    @pytest.mark.asyncio
    async def test_pull_failure_is_fatal(
        self,
        make_repo: RepoFactory,
        make_executor: ExecutorFactory,
        manual_trigger: DeploymentTrigger,
    ) -> None:
        repo = make_repo(dependencies={"type": "npm"}, restart_scripts=["app"])
        pm = FakeProcessManagerFactory()
        executor = make_executor([repo], git=FakeGit(fail="pull"), process_managers=pm)

        state = await executor.run(repo, manual_trigger)

        assert state.success is False
        assert state.error.startswith("Git pull failed:")
        assert state.step_names == ["pull"]
        assert pm.calls == []

    @pytest.mark.asyncio
    async def test_install_failure_is_fatal(
        self,
        make_repo: RepoFactory,
        make_executor: ExecutorFactory,
        manual_trigger: DeploymentTrigger,
    ) -> None:
        repo = make_repo(dependencies={"type": "npm"}, build=["npm run build"])
        builder = FakeBuilder()
        executor = make_executor([repo], installer=FakeInstaller(fail=True), builder=builder)

        state = await executor.run(repo, manual_trigger)

        assert state.success is False
        assert state.error.startswith("Dependency installation failed:")
        assert state.step_names == ["pull", "install_dependencies"]
        assert builder.calls == []

    @pytest.mark.asyncio
    async def test_second_build_command_failure(
        self,
        make_repo: RepoFactory,
        make_executor: ExecutorFactory,
        manual_trigger: DeploymentTrigger,
    ) -> None:
        """First command succeeds, second fails: no register or restart."""
        repo = make_repo(
            repo_url="https://example.com/x.git",
            build=["npm run build", "npm run migrate", "npm run seed"],
            register_scripts=[{"name": "app"}],
            restart_scripts=["app"],
        )
        builder = FakeBuilder(failing={"npm run migrate"})
        pm = FakeProcessManagerFactory()
        executor = make_executor(
            [repo], git=FakeGit(cloned=True), builder=builder, process_managers=pm
        )

        state = await executor.run(repo, manual_trigger)

        assert state.success is False
        assert "npm run migrate" in state.error
        assert state.error.startswith("Build command failed:")
        assert state.step_names == ["ensure_repo", "pull", "stop_scripts", "build"]
        assert [c[0] for c in builder.calls] == ["npm run build", "npm run migrate"]
        assert pm.calls == [("stop", "app")]

        build = state.step_result_payload(BuildPayload)
        assert [(c.command, c.success) for c in build.commands] == [
            ("npm run build", True),
            ("npm run migrate", False),
        ]
        assert build.commands[1].exit_code == 2


class TestLifecycleSteps:
    @pytest.mark.asyncio
    async def test_restart_failures_do_not_flip_success(
        self,
        make_repo: RepoFactory,
        make_executor: ExecutorFactory,
        manual_trigger: DeploymentTrigger,
    ) -> None:
        repo = make_repo(build=["make"], restart_scripts=["a", "b"])
        pm = FakeProcessManagerFactory(failing={"a"})
        executor = make_executor([repo], process_managers=pm)

        state = await executor.run(repo, manual_trigger)

        assert state.success is True
        assert state.error is None
        assert state.step_names == ["pull", "stop_scripts", "build", "restart_scripts"]
        assert pm.calls == [("stop", "a"), ("stop", "b"), ("restart", "a"), ("restart", "b")]

        restart = state.steps[-1]
        assert restart.step == StepKind.RESTART_SCRIPTS
        assert restart.success is False
        assert restart.error == "1 of 2 scripts failed: a"
        assert isinstance(restart.payload, ScriptBatchPayload)
        assert [r.success for r in restart.payload.results] == [False, True]

    @pytest.mark.asyncio
    async def test_stop_scripts_need_build_commands(
        self,
        make_repo: RepoFactory,
        make_executor: ExecutorFactory,
        manual_trigger: DeploymentTrigger,
    ) -> None:
        repo = make_repo(restart_scripts=["app"])
        pm = FakeProcessManagerFactory()
        executor = make_executor([repo], process_managers=pm)

        state = await executor.run(repo, manual_trigger)

        assert state.step_names == ["pull", "restart_scripts"]
        assert pm.calls == [("restart", "app")]

    @pytest.mark.asyncio
    async def test_register_only_after_fresh_clone(
        self,
        make_repo: RepoFactory,
        make_executor: ExecutorFactory,
        manual_trigger: DeploymentTrigger,
    ) -> None:
        repo = make_repo(
            repo_url="https://example.com/x.git",
            register_scripts=[{"name": "app"}],
            restart_scripts=["app"],
        )
        pm = FakeProcessManagerFactory()
        executor = make_executor([repo], git=FakeGit(cloned=False), process_managers=pm)

        state = await executor.run(repo, manual_trigger)

        assert "register_scripts" not in state.step_names
        assert pm.calls == [("restart", "app")]

    @pytest.mark.asyncio
    async def test_repository_process_manager_override(
        self,
        make_repo: RepoFactory,
        make_executor: ExecutorFactory,
        manual_trigger: DeploymentTrigger,
    ) -> None:
        repo = make_repo(restart_scripts=["app"], task_server={"url": "http://other:3000"})
        pm = FakeProcessManagerFactory()
        executor = make_executor([repo], process_managers=pm)

        await executor.run(repo, manual_trigger)

        assert [c.url for c in pm.configs] == ["http://other:3000"]


class TestBuildStep:
    @pytest.mark.asyncio
    async def test_commands_run_in_resolved_directories(
        self,
        make_repo: RepoFactory,
        make_executor: ExecutorFactory,
        manual_trigger: DeploymentTrigger,
        tmp_path: Path,
    ) -> None:
        repo = make_repo(build=["make", {"command": "npm run build", "cwd": "web"}])
        builder = FakeBuilder()
        executor = make_executor([repo], builder=builder)

        state = await executor.run(repo, manual_trigger)

        assert state.success is True
        assert builder.calls == [
            ("make", tmp_path / "my-app"),
            ("npm run build", tmp_path / "my-app" / "web"),
        ]

    @pytest.mark.asyncio
    async def test_no_dependency_type_skips_install(
        self,
        make_repo: RepoFactory,
        make_executor: ExecutorFactory,
        manual_trigger: DeploymentTrigger,
    ) -> None:
        installer = FakeInstaller()
        repo = make_repo()
        executor = make_executor([repo], installer=installer)

        state = await executor.run(repo, manual_trigger)

        assert state.step_names == ["pull"]
        assert state.skipped is False
        assert installer.calls == []
        pull = state.step_result_payload(PullPayload)
        assert pull.files == ["src/index.js"]
