"""Webhook ingress.

Receives push deliveries, verifies them, normalizes them into
``DeploymentTrigger`` values and hands matching ones to the deployment
scheduler. The handler never waits for the pipeline.
"""

import json
import logging

from fastapi import APIRouter, Depends, HTTPException, Request, status
from starlette.datastructures import Headers

from gitsync.api.deps import AppContext, get_context
from gitsync.core.exceptions import PayloadError, VerificationError
from gitsync.core.logging import correlation_id_ctx
from gitsync.core.security import verify
from gitsync.deploy.scheduler import SubmitOutcome
from gitsync.observability.metrics import record_trigger
from gitsync.schemas.trigger import TriggerSource, WebhookResponse
from gitsync.services.dispatch import match_repository
from gitsync.services.trigger_normalizer import NORMALIZERS, detect_provider, parse_trigger

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhook", tags=["webhooks"])


def _signature_header(provider: TriggerSource, headers: Headers) -> str | None:
    if provider == TriggerSource.GITLAB:
        return headers.get("x-gitlab-token")
    value = headers.get("x-hub-signature-256")
    if value is None and provider == TriggerSource.GITEA:
        value = headers.get("x-gitea-signature")
    return value


def _event_type(provider: TriggerSource, headers: Headers) -> str | None:
    if provider == TriggerSource.GITEA:
        return headers.get("x-gitea-event") or headers.get("x-github-event")
    if provider == TriggerSource.GITLAB:
        return headers.get("x-gitlab-event")
    return headers.get("x-github-event")


async def handle_delivery(
    request: Request,
    provider: TriggerSource,
    context: AppContext,
) -> WebhookResponse:
    """
    Verify, parse, match and submit one delivery.

    Returns:
        - ignored: not a push, or no repository configured for it
        - accepted: pipeline started
        - queued: a pipeline for the repository is already running

    Raises:
        VerificationError: signature or token mismatch (401)
        PayloadError: body is not JSON (400)
    """
    raw_body = await request.body()
    headers = request.headers

    correlation_id = correlation_id_ctx.get()

    event_type = _event_type(provider, headers)
    logger.info(
        "Received webhook",
        extra={"provider": provider.value, "event_type": event_type},
    )

    signature = _signature_header(provider, headers)
    if not verify(provider, raw_body, signature, context.config.webhook.secret):
        record_trigger(source=provider.value, outcome="unauthorized")
        logger.warning("Webhook verification failed", extra={"provider": provider.value})
        raise VerificationError("Invalid signature")

    try:
        payload = json.loads(raw_body)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        record_trigger(source=provider.value, outcome="invalid")
        logger.warning("Invalid JSON payload", extra={"error": str(e)})
        raise PayloadError("Invalid JSON payload") from e

    trigger = parse_trigger(provider, payload, event_type)
    if trigger is None:
        record_trigger(source=provider.value, outcome="ignored")
        return WebhookResponse(
            status="ignored",
            message=f"Event '{event_type or 'unknown'}' is not a push",
            correlation_id=correlation_id,
        )

    repo = match_repository(trigger, context.config.repos)
    if repo is None:
        record_trigger(source=provider.value, outcome="unmatched")
        return WebhookResponse(
            status="ignored",
            message=f"No repository configured for {trigger.display_name}@{trigger.branch}",
            branch=trigger.branch,
            correlation_id=correlation_id,
        )

    outcome = await context.scheduler.submit(repo, trigger)
    if outcome == SubmitOutcome.REJECTED:
        return WebhookResponse(
            status="ignored",
            message="Service is shutting down",
            repo=repo.name,
            branch=repo.branch,
            correlation_id=correlation_id,
        )
    if outcome == SubmitOutcome.STARTED:
        return WebhookResponse(
            status="accepted",
            message="Deployment started",
            repo=repo.name,
            branch=repo.branch,
            correlation_id=correlation_id,
        )
    return WebhookResponse(
        status="queued",
        message="Deployment in progress, trigger queued",
        repo=repo.name,
        branch=repo.branch,
        correlation_id=correlation_id,
    )


@router.post("", response_model=WebhookResponse)
async def generic_webhook(
    request: Request,
    context: AppContext = Depends(get_context),
) -> WebhookResponse:
    """Provider detected from headers; unrecognised deliveries are treated as GitHub-shaped."""
    provider = detect_provider(request.headers) or TriggerSource.GITHUB
    return await handle_delivery(request, provider, context)


@router.post("/{provider}", response_model=WebhookResponse)
async def provider_webhook(
    provider: str,
    request: Request,
    context: AppContext = Depends(get_context),
) -> WebhookResponse:
    try:
        source = TriggerSource(provider.lower())
    except ValueError:
        source = None
    if source not in NORMALIZERS:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Unknown webhook provider '{provider}'",
        )
    return await handle_delivery(request, source, context)
