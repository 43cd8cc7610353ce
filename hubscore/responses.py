"""Questionnaire response lifecycle: draft -> in_progress -> completed."""
from __future__ import annotations

import logging
from collections.abc import Mapping
from datetime import UTC, datetime

from hubscore.gate import is_passed
from hubscore.schemas import QuestionnaireTemplate, ResponseState
from hubscore.scorer import score_response

log = logging.getLogger(__name__)


class ResponseLockedError(ValueError):
    """A completed response cannot be modified; start a new one instead."""


class IncompleteResponseError(ValueError):
    """A response cannot be completed while questions are unanswered."""


def start_response(now: datetime | None = None) -> ResponseState:
    return ResponseState(started_at=now or datetime.now(UTC))


def save_answers(
    state: ResponseState, answers: Mapping[str, int], current_step: int | None = None,
) -> ResponseState:
    """Merge auto-saved answers into a response, returning the new state."""
    if state.status == "completed":
        raise ResponseLockedError("Response is completed; start a new response to re-attempt")
    # Re-validate so out-of-scale values are rejected on every save.
    return ResponseState.model_validate({
        **state.model_dump(),
        "answers": {**state.answers, **answers},
        "current_step": current_step or state.current_step,
        "status": "in_progress",
    })


def complete_response(
    state: ResponseState, template: QuestionnaireTemplate, now: datetime | None = None,
) -> tuple[ResponseState, bool]:
    """Produce the terminal score and lock the response.

    Returns the completed state and whether it passed the template threshold.
    """
    if state.status == "completed":
        raise ResponseLockedError("Response is already completed")
    result = score_response(template, state.answers)
    if not result.is_complete:
        missing = result.question_count - result.answered
        raise IncompleteResponseError(f"{missing} question(s) still unanswered")
    passed = is_passed(result.weighted_score, template.pass_threshold)
    log.info("Response completed for template %r: score=%s passed=%s",
             template.id, result.weighted_score, passed)
    completed = state.model_copy(update={
        "status": "completed",
        "completed_at": now or datetime.now(UTC),
        "total_score": result.weighted_score,
    })
    return completed, passed


def elapsed_hours(state: ResponseState) -> float | None:
    """Hours between start and completion, rounded as badges consume it."""
    if state.started_at is None or state.completed_at is None:
        return None
    return round((state.completed_at - state.started_at).total_seconds() / 3600)
