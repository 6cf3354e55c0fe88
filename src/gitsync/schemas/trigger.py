"""Canonical deployment trigger - provider-agnostic representation.

Webhook pushes, poll observations, startup runs and manual requests are
all normalized into a ``DeploymentTrigger`` before dispatch.
"""

from datetime import UTC, datetime
from enum import Enum
from typing import Literal
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field


class TriggerSource(str, Enum):
    """Where a deployment request came from."""

    GITHUB = "github"
    GITLAB = "gitlab"
    GITEA = "gitea"
    POLL = "poll"
    STARTUP = "startup"
    MANUAL = "manual"


class DeploymentTrigger(BaseModel):
    """A normalized request to deploy one repository branch."""

    model_config = ConfigDict(frozen=True)

    trigger_id: str = Field(default_factory=lambda: uuid4().hex)
    provider: TriggerSource
    branch: str | None = None
    repository: str | None = Field(
        default=None,
        description="Short repository name as reported by the provider",
    )
    full_name: str | None = Field(
        default=None,
        description="Fully-qualified repository name, e.g. org/repo",
    )
    pusher: str | None = None
    commits: int = 0
    head_commit: str | None = None
    received_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @property
    def display_name(self) -> str:
        return self.full_name or self.repository or "unknown"


class WebhookResponse(BaseModel):
    """Standard webhook response."""

    status: Literal["accepted", "queued", "ignored"]
    message: str
    repo: str | None = None
    branch: str | None = None
    correlation_id: str | None = None
