"""Result reporting for finished pipelines.

Logs every step outcome and the terminal status, feeds the pipeline
metrics and keeps a bounded in-memory history for ``GET /deployments``.
History is lost on restart.
"""

from __future__ import annotations

import logging
from collections import deque
from typing import Any

from gitsync.observability.metrics import record_pipeline
from gitsync.schemas.pipeline import PipelineState, PullPayload, StepResult

logger = logging.getLogger(__name__)


def summarize(state: PipelineState) -> dict[str, Any]:
    """Render a pipeline state as a JSON-friendly summary."""
    pull = state.step_result_payload(PullPayload)
    return {
        "repo": state.repo,
        "branch": state.branch,
        "status": state.status,
        "success": state.success,
        "skipped": state.skipped,
        "cloned": state.cloned,
        "error": state.error,
        "trigger": {
            "id": state.trigger.trigger_id,
            "provider": state.trigger.provider.value,
            "pusher": state.trigger.pusher,
            "head_commit": state.trigger.head_commit,
        },
        "files_changed": len(pull.files) if pull else 0,
        "steps": [_summarize_step(step) for step in state.steps],
        "started_at": state.started_at.isoformat(),
        "finished_at": state.finished_at.isoformat() if state.finished_at else None,
        "duration_seconds": state.duration_seconds,
    }


def _summarize_step(step: StepResult) -> dict[str, Any]:
    return {
        "step": step.step.value,
        "success": step.success,
        "error": step.error,
        "duration_seconds": step.duration_seconds,
        "payload": step.payload.model_dump() if step.payload else None,
    }


class DeploymentReporter:
    """Consumes terminal pipeline states."""

    def __init__(self, history_limit: int = 50):
        self._history: deque[PipelineState] = deque(maxlen=max(1, history_limit))

    def report(self, state: PipelineState) -> None:
        for step in state.steps:
            level = logging.INFO if step.success else logging.WARNING
            logger.log(
                level,
                "Step %s %s",
                step.step.value,
                "succeeded" if step.success else "failed",
                extra={
                    "repo": state.repo,
                    "step": step.step.value,
                    "error": step.error,
                    "duration_seconds": step.duration_seconds,
                },
            )

        summary_extra = {
            "repo": state.repo,
            "branch": state.branch,
            "status": state.status,
            "duration_seconds": state.duration_seconds,
            "steps": state.step_names,
            "provider": state.trigger.provider.value,
        }
        if not state.success:
            logger.error(
                "Deployment failed: %s",
                state.error,
                extra=summary_extra,
            )
        elif state.skipped:
            logger.info("Deployment skipped: no changes", extra=summary_extra)
        else:
            pull = state.step_result_payload(PullPayload)
            logger.info(
                "Deployment complete",
                extra={
                    **summary_extra,
                    "files_changed": len(pull.files) if pull else 0,
                    "fresh_clone": state.cloned,
                },
            )

        record_pipeline(outcome=state.status, duration_seconds=state.duration_seconds)
        self._history.appendleft(state)

    def recent(self, repo: str | None = None) -> list[PipelineState]:
        """Most recent first, optionally filtered by repository name."""
        return [s for s in self._history if repo is None or s.repo == repo]

    def last(self, repo: str) -> PipelineState | None:
        for state in self._history:
            if state.repo == repo:
                return state
        return None
