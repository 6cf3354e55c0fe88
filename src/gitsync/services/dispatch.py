"""Repository dispatch - map a canonical trigger to its repository entry."""

import logging
from collections.abc import Iterable

from gitsync.schemas.deployment_config import RepositoryConfig
from gitsync.schemas.trigger import DeploymentTrigger

logger = logging.getLogger(__name__)


def match_repository(
    trigger: DeploymentTrigger,
    repos: Iterable[RepositoryConfig],
) -> RepositoryConfig | None:
    """
    Find the repository entry a trigger targets.

    A match needs exact branch equality and the configured name equal to
    either the provider's short repository name or its full name. Duplicate
    (name, branch) entries are rejected at load time, so the first match is
    the only one.
    """
    names = {n for n in (trigger.repository, trigger.full_name) if n}
    if not names or not trigger.branch:
        return None

    for repo in repos:
        if repo.branch != trigger.branch:
            continue
        if repo.name in names:
            return repo

    logger.info(
        "No matching repository configuration",
        extra={"repository": trigger.display_name, "branch": trigger.branch},
    )
    return None
