"""Manual deployment trigger and in-memory deployment history."""

import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query, status

from gitsync.api.deps import AppContext, get_context
from gitsync.deploy.reporter import summarize
from gitsync.deploy.scheduler import SubmitOutcome, repo_key
from gitsync.schemas.trigger import DeploymentTrigger, TriggerSource, WebhookResponse

logger = logging.getLogger(__name__)

router = APIRouter(tags=["deployments"])


@router.post("/deploy/{repo_name}", response_model=WebhookResponse)
async def trigger_deployment(
    repo_name: str,
    branch: str | None = Query(default=None),
    context: AppContext = Depends(get_context),
) -> WebhookResponse:
    """Deploy a configured repository now, regardless of upstream state."""
    repo = context.config.get_repo(repo_name, branch)
    if repo is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Repository '{repo_name}' is not configured",
        )

    trigger = DeploymentTrigger(
        provider=TriggerSource.MANUAL,
        branch=repo.branch,
        repository=repo.name,
        pusher="api",
    )
    logger.info("Manual deployment requested", extra={"repo": repo.name, "branch": repo.branch})
    outcome = await context.scheduler.submit(repo, trigger)

    if outcome == SubmitOutcome.REJECTED:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Service is shutting down",
        )
    return WebhookResponse(
        status="accepted" if outcome == SubmitOutcome.STARTED else "queued",
        message=f"Deployment {outcome.value}",
        repo=repo.name,
        branch=repo.branch,
    )


@router.get("/deployments")
async def list_deployments(
    repo: str | None = Query(default=None),
    context: AppContext = Depends(get_context),
) -> dict[str, Any]:
    """Finished deployments, most recent first."""
    results = [summarize(state) for state in context.reporter.recent(repo)]
    return {"deployments": results, "count": len(results)}


@router.get("/deployments/status")
async def deployment_status(context: AppContext = Depends(get_context)) -> dict[str, Any]:
    """Per-repository view: running/queued triggers and the last result."""
    active = context.scheduler.snapshot()
    repos = []
    for repo in context.config.repos:
        last = context.reporter.last(repo.name)
        entry = active.get(repo_key(repo))
        repos.append(
            {
                "name": repo.name,
                "branch": repo.branch,
                "running": entry is not None,
                "running_trigger": entry["running"] if entry else None,
                "queued_trigger": entry["queued"] if entry else None,
                "last_status": last.status if last else None,
                "last_finished_at": last.finished_at.isoformat()
                if last and last.finished_at
                else None,
            }
        )
    return {
        "trigger_mode": context.config.trigger_mode,
        "polling": context.poller.running if context.poller else False,
        "repos": repos,
    }
