"""Request dependencies shared by the routers."""

from dataclasses import dataclass

from fastapi import Request

from gitsync.config import Settings
from gitsync.deploy.poller import PollScheduler
from gitsync.deploy.reporter import DeploymentReporter
from gitsync.deploy.scheduler import DeploymentScheduler
from gitsync.schemas.deployment_config import DeploymentConfig


@dataclass
class AppContext:
    """Components built once by the application factory."""

    settings: Settings
    config: DeploymentConfig
    scheduler: DeploymentScheduler
    reporter: DeploymentReporter
    poller: PollScheduler | None = None


def get_context(request: Request) -> AppContext:
    return request.app.state.context
