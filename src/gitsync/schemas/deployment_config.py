"""Schemas for the YAML deployment file.

Every model is frozen: the deployment file is read once at startup and
shared read-only by all components. Keys are accepted in snake_case or
camelCase (``repoUrl``, ``restartScripts``, ``taskServer`` ...).
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Literal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

DependencyType = Literal["npm", "bun", "yarn", "pip", "none"]
TriggerMode = Literal["webhook", "polling", "both"]


class _FrozenModel(BaseModel):
    model_config = ConfigDict(
        frozen=True,
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


def expand_path(value: str) -> str:
    """Expand a leading ``~`` to the user's home directory."""
    return str(Path(value).expanduser()) if value else value


class ProcessManagerConfig(_FrozenModel):
    """Endpoint of the external process manager."""

    url: str = "http://localhost:3000"
    api_key: str = ""

    @field_validator("api_key", mode="before")
    @classmethod
    def _blank_key(cls, value: Any) -> Any:
        return "" if value is None else value

    @field_validator("url")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")


class WebhookConfig(_FrozenModel):
    port: int = 4000
    secret: str = ""

    @field_validator("secret", mode="before")
    @classmethod
    def _blank_secret(cls, value: Any) -> Any:
        return "" if value is None else value


class PollingConfig(_FrozenModel):
    interval_seconds: float = Field(
        default=60.0,
        gt=0,
        validation_alias=AliasChoices("interval_seconds", "intervalSeconds", "interval"),
    )


class DependencySpec(_FrozenModel):
    type: DependencyType = "none"
    venv: str | None = Field(
        default=None,
        description="'auto' to create .venv in the repository, or a virtualenv path",
    )


class BuildCommand(_FrozenModel):
    command: str
    cwd: str | None = Field(
        default=None,
        description="Working directory, relative to the repository root or absolute",
    )

    @model_validator(mode="before")
    @classmethod
    def _from_string(cls, data: Any) -> Any:
        if isinstance(data, str):
            return {"command": data}
        return data

    @field_validator("command")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("build command must not be empty")
        return value


class RegisterScript(_FrozenModel):
    """Body of the process manager's add-script call."""

    name: str
    path: str | None = None
    command: str | None = None
    type: str | None = None
    schedule: str | None = None
    args: list[str] | str | None = None
    env: dict[str, str] | None = None

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(exclude_none=True)


class RepositoryConfig(_FrozenModel):
    """One deployable repository."""

    name: str
    path: str
    repo_url: str | None = None
    branch: str = "main"
    dependencies: DependencySpec = Field(default_factory=DependencySpec)
    build: tuple[BuildCommand, ...] = ()
    restart_scripts: tuple[str, ...] = ()
    register_scripts: tuple[RegisterScript, ...] = ()
    task_server: ProcessManagerConfig | None = Field(
        default=None,
        validation_alias=AliasChoices(
            "task_server", "taskServer", "process_manager", "processManager"
        ),
    )

    @field_validator("path")
    @classmethod
    def _expand(cls, value: str) -> str:
        return expand_path(value)

    @field_validator("build", mode="before")
    @classmethod
    def _build_as_list(cls, value: Any) -> Any:
        if value is None:
            return ()
        if isinstance(value, str):
            return (value,)
        return value

    @field_validator("restart_scripts", "register_scripts", mode="before")
    @classmethod
    def _none_as_empty(cls, value: Any) -> Any:
        return () if value is None else value

    def resolve_build_dir(self, command: BuildCommand) -> Path:
        """Working directory for ``command``: repo root, or a relative/absolute subdirectory."""
        root = Path(self.path)
        if not command.cwd:
            return root
        cwd = Path(expand_path(command.cwd))
        return cwd if cwd.is_absolute() else root / cwd


class DeploymentConfig(_FrozenModel):
    """The whole deployment file."""

    repos: tuple[RepositoryConfig, ...]
    trigger_mode: TriggerMode = "webhook"
    webhook: WebhookConfig = Field(default_factory=WebhookConfig)
    polling: PollingConfig = Field(default_factory=PollingConfig)
    task_server: ProcessManagerConfig = Field(
        default_factory=ProcessManagerConfig,
        validation_alias=AliasChoices(
            "task_server", "taskServer", "process_manager", "processManager"
        ),
    )

    @model_validator(mode="after")
    def _unique_name_branch(self) -> DeploymentConfig:
        seen: set[tuple[str, str]] = set()
        for repo in self.repos:
            key = (repo.name, repo.branch)
            if key in seen:
                raise ValueError(
                    f"duplicate repository entry for name '{repo.name}' and branch '{repo.branch}'"
                )
            seen.add(key)
        return self

    @property
    def webhook_enabled(self) -> bool:
        return self.trigger_mode in ("webhook", "both")

    @property
    def polling_enabled(self) -> bool:
        return self.trigger_mode in ("polling", "both")

    def get_repo(self, name: str, branch: str | None = None) -> RepositoryConfig | None:
        for repo in self.repos:
            if repo.name == name and (branch is None or repo.branch == branch):
                return repo
        return None

    def resolve_process_manager(self, repo: RepositoryConfig) -> ProcessManagerConfig:
        """Per-repository process manager override, falling back to the global one."""
        return repo.task_server or self.task_server
