"""Pipeline state and step results.

A ``StepResult`` is a tagged union: its ``payload`` carries a ``kind``
discriminator matching the step that produced it.
"""

from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum
from typing import Annotated, Literal, TypeVar

from pydantic import BaseModel, Field

from gitsync.schemas.trigger import DeploymentTrigger


class StepKind(str, Enum):
    """Pipeline steps in execution order."""

    ENSURE_REPO = "ensure_repo"
    PULL = "pull"
    INSTALL_DEPENDENCIES = "install_dependencies"
    STOP_SCRIPTS = "stop_scripts"
    BUILD = "build"
    REGISTER_SCRIPTS = "register_scripts"
    RESTART_SCRIPTS = "restart_scripts"

    @property
    def is_fatal(self) -> bool:
        """Whether a failure of this step aborts the pipeline."""
        return self in FATAL_STEPS


FATAL_STEPS = frozenset(
    {
        StepKind.ENSURE_REPO,
        StepKind.PULL,
        StepKind.INSTALL_DEPENDENCIES,
        StepKind.BUILD,
    }
)


class EnsureRepoPayload(BaseModel):
    kind: Literal["ensure_repo"] = "ensure_repo"
    cloned: bool = False
    url: str | None = None


class PullPayload(BaseModel):
    kind: Literal["pull"] = "pull"
    changed: bool = False
    files: list[str] = Field(default_factory=list)
    before: str | None = None
    after: str | None = None
    summary: str = ""


class InstallPayload(BaseModel):
    kind: Literal["install_dependencies"] = "install_dependencies"
    manager: str
    skipped: bool = False
    reason: str | None = None
    stdout: str = ""
    stderr: str = ""


class CommandResult(BaseModel):
    command: str
    cwd: str
    success: bool
    exit_code: int | None = None
    stdout: str = ""
    stderr: str = ""
    error: str | None = None
    duration_seconds: float = 0.0


class BuildPayload(BaseModel):
    kind: Literal["build"] = "build"
    commands: list[CommandResult] = Field(default_factory=list)


class ScriptResult(BaseModel):
    script: str
    success: bool
    message: str | None = None
    error: str | None = None


class ScriptBatchPayload(BaseModel):
    kind: Literal["stop_scripts", "register_scripts", "restart_scripts"]
    results: list[ScriptResult] = Field(default_factory=list)

    @property
    def failed(self) -> list[ScriptResult]:
        return [r for r in self.results if not r.success]


StepPayload = Annotated[
    EnsureRepoPayload | PullPayload | InstallPayload | BuildPayload | ScriptBatchPayload,
    Field(discriminator="kind"),
]


PayloadT = TypeVar("PayloadT", bound=BaseModel)


class StepResult(BaseModel):
    """Outcome of one executed pipeline step."""

    step: StepKind
    success: bool
    error: str | None = None
    payload: StepPayload | None = None
    duration_seconds: float = 0.0


class PipelineState(BaseModel):
    """One deployment run, from start to its terminal state."""

    repo: str
    branch: str
    path: str
    trigger: DeploymentTrigger
    steps: list[StepResult] = Field(default_factory=list)
    success: bool = True
    skipped: bool = False
    error: str | None = None
    cloned: bool = False
    started_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    finished_at: datetime | None = None
    duration_seconds: float = 0.0

    def record(self, result: StepResult) -> StepResult:
        """Append a step result; a fatal failure flips ``success``."""
        self.steps.append(result)
        if not result.success and result.step.is_fatal:
            self.success = False
            if self.error is None:
                self.error = result.error
        return result

    def step_result_payload(self, payload_type: type[PayloadT]) -> PayloadT | None:
        """First recorded payload of the given type, if any."""
        for result in self.steps:
            if isinstance(result.payload, payload_type):
                return result.payload
        return None

    @property
    def step_names(self) -> list[str]:
        return [s.step.value for s in self.steps]

    @property
    def status(self) -> Literal["success", "skipped", "failed"]:
        if not self.success:
            return "failed"
        return "skipped" if self.skipped else "success"

    def finish(self) -> PipelineState:
        self.finished_at = datetime.now(UTC)
        self.duration_seconds = round((self.finished_at - self.started_at).total_seconds(), 3)
        return self
