"""Test configuration and fixtures."""

from collections.abc import Callable, Generator
from pathlib import Path
from typing import Any

import pytest
from fakes import FakeBuilder, FakeGit, FakeInstaller, FakeProcessManagerFactory, RecordingRunner
from fastapi.testclient import TestClient
from gitsync.config import get_settings
from gitsync.deploy.executor import PipelineExecutor
from gitsync.main import create_app
from gitsync.schemas.deployment_config import DeploymentConfig, RepositoryConfig
from gitsync.schemas.trigger import DeploymentTrigger, TriggerSource


@pytest.fixture
def make_repo(tmp_path: Path) -> Callable[..., RepositoryConfig]:
    """Build a RepositoryConfig rooted under tmp_path."""

    def _make(name: str = "my-app", **fields: Any) -> RepositoryConfig:
        fields.setdefault("path", str(tmp_path / name))
        return RepositoryConfig(name=name, **fields)

    return _make


@pytest.fixture
def make_executor() -> Callable[..., PipelineExecutor]:
    def _make(
        repos: list[RepositoryConfig],
        git: FakeGit | None = None,
        installer: FakeInstaller | None = None,
        builder: FakeBuilder | None = None,
        process_managers: FakeProcessManagerFactory | None = None,
        **config: Any,
    ) -> PipelineExecutor:
        return PipelineExecutor(
            config=DeploymentConfig(repos=tuple(repos), **config),
            git=git or FakeGit(),
            installer=installer or FakeInstaller(),
            builder=builder or FakeBuilder(),
            process_manager_factory=process_managers or FakeProcessManagerFactory(),
        )

    return _make


@pytest.fixture
def manual_trigger() -> DeploymentTrigger:
    return DeploymentTrigger(
        provider=TriggerSource.MANUAL, branch="main", repository="my-app", pusher="tester"
    )


@pytest.fixture
def deployment_config(tmp_path: Path) -> DeploymentConfig:
    """Two repositories, webhook mode, no secret."""
    return DeploymentConfig.model_validate(
        {
            "triggerMode": "webhook",
            "webhook": {"port": 4000, "secret": ""},
            "repos": [
                {"name": "my-app", "path": str(tmp_path / "my-app"), "branch": "main"},
                {"name": "docs", "path": str(tmp_path / "docs"), "branch": "gh-pages"},
            ],
        }
    )


@pytest.fixture
def runner() -> RecordingRunner:
    return RecordingRunner()


@pytest.fixture
def app_factory(
    monkeypatch: pytest.MonkeyPatch,
    runner: RecordingRunner,
) -> Generator[Callable[..., Any], None, None]:
    """Create apps with the recording runner and no startup deployments."""
    monkeypatch.setenv("STARTUP_DEPLOY", "false")
    monkeypatch.setenv("TRACING_ENABLED", "false")
    monkeypatch.setenv("LOG_FORMAT", "text")
    get_settings.cache_clear()

    def _create(config: DeploymentConfig, **overrides: Any):
        overrides.setdefault("executor", runner)
        overrides.setdefault("process_manager_factory", FakeProcessManagerFactory())
        overrides.setdefault("git", FakeGit())
        return create_app(config=config, **overrides)

    yield _create
    get_settings.cache_clear()


@pytest.fixture
def client(
    app_factory: Callable[..., Any],
    deployment_config: DeploymentConfig,
) -> Generator[TestClient, None, None]:
    """Create test client for API tests."""
    app = app_factory(deployment_config)
    with TestClient(app) as c:
        yield c


@pytest.fixture
def github_push_payload() -> dict[str, Any]:
    """Minimal GitHub push delivery for the ``my-app`` repository."""
    return {
        "ref": "refs/heads/main",
        "before": "0" * 40,
        "after": "b" * 40,
        "repository": {"name": "my-app", "full_name": "acme/my-app"},
        "pusher": {"name": "octocat", "email": "octocat@example.com"},
        "commits": [{"id": "b" * 40, "message": "Fix bug"}],
        "head_commit": {"id": "b" * 40},
    }
