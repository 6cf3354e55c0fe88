"""Trigger normalization service.

Transforms provider-specific push payloads into the canonical
DeploymentTrigger format. Missing or oddly-typed fields resolve to
None/0; normalization never raises on a decoded JSON body.
"""

import logging
from collections.abc import Mapping
from typing import Any, Protocol

from gitsync.schemas.trigger import DeploymentTrigger, TriggerSource

logger = logging.getLogger(__name__)

BRANCH_REF_PREFIX = "refs/heads/"


def branch_from_ref(ref: Any) -> str:
    """Strip ``refs/heads/`` from a ref. Other refs (tags, ...) are returned as-is."""
    if not isinstance(ref, str):
        return ""
    if ref.startswith(BRANCH_REF_PREFIX):
        return ref[len(BRANCH_REF_PREFIX) :]
    return ref


def _dig(payload: Any, *keys: str) -> Any:
    current = payload
    for key in keys:
        if not isinstance(current, Mapping):
            return None
        current = current.get(key)
    return current


def _text(value: Any) -> str | None:
    if value is None or isinstance(value, (dict, list)):
        return None
    text = str(value).strip()
    return text or None


def _count(value: Any) -> int:
    if isinstance(value, bool):
        return 0
    if isinstance(value, int):
        return max(value, 0)
    if isinstance(value, list):
        return len(value)
    return 0


class TriggerNormalizer(Protocol):
    """Protocol for push payload normalizers."""

    source: TriggerSource

    def is_push(self, payload: Mapping[str, Any], event_type: str | None) -> bool:
        """Return True when the payload describes a push."""
        ...

    def normalize(self, payload: Mapping[str, Any]) -> DeploymentTrigger:
        """Build the canonical trigger from a push payload."""
        ...


class GitHubTriggerNormalizer:
    """Normalizer for GitHub ``push`` deliveries."""

    source = TriggerSource.GITHUB

    def is_push(self, payload: Mapping[str, Any], event_type: str | None) -> bool:
        return event_type == "push" or bool(payload.get("ref"))

    def normalize(self, payload: Mapping[str, Any]) -> DeploymentTrigger:
        return DeploymentTrigger(
            provider=self.source,
            branch=branch_from_ref(payload.get("ref")),
            repository=_text(_dig(payload, "repository", "name")),
            full_name=_text(_dig(payload, "repository", "full_name")),
            pusher=_text(_dig(payload, "pusher", "name")),
            commits=_count(payload.get("commits")),
            head_commit=_text(_dig(payload, "head_commit", "id")) or _text(payload.get("after")),
        )


class GitLabTriggerNormalizer:
    """Normalizer for GitLab push hooks (``object_kind: push``)."""

    source = TriggerSource.GITLAB

    def is_push(self, payload: Mapping[str, Any], event_type: str | None) -> bool:
        return payload.get("object_kind") == "push" or bool(payload.get("ref"))

    def normalize(self, payload: Mapping[str, Any]) -> DeploymentTrigger:
        commits = _count(payload.get("total_commits_count")) or _count(payload.get("commits"))
        return DeploymentTrigger(
            provider=self.source,
            branch=branch_from_ref(payload.get("ref")),
            repository=_text(_dig(payload, "project", "name"))
            or _text(_dig(payload, "repository", "name")),
            full_name=_text(_dig(payload, "project", "path_with_namespace")),
            pusher=_text(payload.get("user_name")) or _text(payload.get("user_username")),
            commits=commits,
            head_commit=_text(payload.get("checkout_sha")) or _text(payload.get("after")),
        )


class GiteaTriggerNormalizer:
    """Normalizer for Gitea ``push`` deliveries."""

    source = TriggerSource.GITEA

    def is_push(self, payload: Mapping[str, Any], event_type: str | None) -> bool:
        return event_type == "push" or bool(payload.get("ref"))

    def normalize(self, payload: Mapping[str, Any]) -> DeploymentTrigger:
        return DeploymentTrigger(
            provider=self.source,
            branch=branch_from_ref(payload.get("ref")),
            repository=_text(_dig(payload, "repository", "name")),
            full_name=_text(_dig(payload, "repository", "full_name")),
            pusher=_text(_dig(payload, "pusher", "login"))
            or _text(_dig(payload, "pusher", "username")),
            commits=_count(payload.get("commits")),
            head_commit=_text(payload.get("after")),
        )


NORMALIZERS: dict[TriggerSource, TriggerNormalizer] = {
    TriggerSource.GITHUB: GitHubTriggerNormalizer(),
    TriggerSource.GITLAB: GitLabTriggerNormalizer(),
    TriggerSource.GITEA: GiteaTriggerNormalizer(),
}


def parse_trigger(
    provider: TriggerSource | str,
    payload: Any,
    event_type: str | None = None,
) -> DeploymentTrigger | None:
    """
    Normalize a decoded webhook body.

    Args:
        provider: Webhook provider
        payload: Decoded JSON body
        event_type: Provider event header (``X-GitHub-Event`` etc.), if any

    Returns:
        DeploymentTrigger, or None when the delivery is not a push
    """
    normalizer = NORMALIZERS[TriggerSource(provider)]
    if not isinstance(payload, Mapping):
        return None
    if not normalizer.is_push(payload, event_type):
        logger.debug(
            "Ignoring non-push delivery",
            extra={"provider": normalizer.source.value, "event_type": event_type},
        )
        return None

    trigger = normalizer.normalize(payload)
    logger.info(
        "Normalized push trigger",
        extra={
            "provider": trigger.provider.value,
            "repository": trigger.display_name,
            "branch": trigger.branch,
            "pusher": trigger.pusher,
            "commits": trigger.commits,
        },
    )
    return trigger


def detect_provider(headers: Mapping[str, str]) -> TriggerSource | None:
    """Guess the webhook provider from delivery headers (case-insensitive)."""
    lowered = {k.lower(): v for k, v in headers.items()}
    # Gitea also sends X-GitHub-Event for compatibility, so it is checked first.
    if "x-gitea-event" in lowered:
        return TriggerSource.GITEA
    if "x-gitlab-token" in lowered or "x-gitlab-event" in lowered:
        return TriggerSource.GITLAB
    if "x-github-event" in lowered:
        return TriggerSource.GITHUB
    return None
