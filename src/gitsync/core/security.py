"""Webhook authenticity checks.

GitHub and Gitea sign deliveries with HMAC-SHA256 over the raw body
(``X-Hub-Signature-256: sha256=<hex>``). Gitea also sends the bare hex
digest as ``X-Gitea-Signature``. GitLab echoes a shared token in
``X-Gitlab-Token``.
Reference: https://docs.github.com/en/webhooks/using-webhooks/validating-webhook-deliveries
"""

import hashlib
import hmac
import logging

from gitsync.schemas.trigger import TriggerSource

logger = logging.getLogger(__name__)

SIGNATURE_PREFIX = "sha256="

HMAC_PROVIDERS = frozenset({TriggerSource.GITHUB, TriggerSource.GITEA})
TOKEN_PROVIDERS = frozenset({TriggerSource.GITLAB})


def compute_signature(payload: bytes, secret: str) -> str:
    """Return the ``sha256=``-prefixed HMAC-SHA256 hex digest of ``payload``."""
    digest = hmac.new(
        key=secret.encode("utf-8"),
        msg=payload,
        digestmod=hashlib.sha256,
    ).hexdigest()
    return f"{SIGNATURE_PREFIX}{digest}"


def verify_hmac_signature(payload: bytes, signature_header: str | None, secret: str) -> bool:
    """
    Verify an HMAC-SHA256 webhook signature.

    Args:
        payload: Raw request body bytes
        signature_header: Header value, ``sha256=<hex>`` or bare hex
        secret: Configured webhook secret

    Returns:
        True if the signature matches. Any comparison failure yields False.
    """
    if not secret:
        return True
    if not signature_header:
        return False

    supplied = signature_header.strip()
    if not supplied.startswith(SIGNATURE_PREFIX):
        supplied = f"{SIGNATURE_PREFIX}{supplied}"

    expected = compute_signature(payload, secret)
    try:
        return hmac.compare_digest(supplied.encode("ascii"), expected.encode("ascii"))
    except Exception:
        return False


def verify_token(token: str | None, secret: str) -> bool:
    """Verify a plain shared-token header (GitLab style)."""
    if not secret:
        return True
    if token is None:
        return False
    try:
        return hmac.compare_digest(token.encode("utf-8"), secret.encode("utf-8"))
    except Exception:
        return False


def verify(
    provider: TriggerSource | str,
    payload: bytes,
    header_value: str | None,
    secret: str | None,
) -> bool:
    """
    Check a webhook delivery for ``provider``.

    No configured secret means verification is switched off and every
    delivery passes. Pure function of its inputs.
    """
    if not secret:
        return True

    provider = TriggerSource(provider)
    if provider in TOKEN_PROVIDERS:
        return verify_token(header_value, secret)
    if provider in HMAC_PROVIDERS:
        return verify_hmac_signature(payload, header_value, secret)

    logger.warning("No webhook verification rule for provider", extra={"provider": provider.value})
    return False
