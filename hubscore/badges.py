"""Badge condition matching.

A badge condition is a sparse mapping of optional predicates.  It is compiled
into a tuple of typed :class:`Predicate` values and evaluated conjunctively
through a dispatch table keyed by predicate kind.  Keys outside the table are
a configuration error, and a condition with no predicates never matches.

Everything in this module is pure: persisting awards happens in
:mod:`hubscore.services` behind the ``(company, badge)`` unique constraint.
"""
from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from hubscore.rules import STAGE_ORDER, ConfigurationError
from hubscore.schemas import BadgeDefinition, EventContext

log = logging.getLogger(__name__)

# Completions further apart than this break a questionnaire streak.
STREAK_WINDOW_DAYS = 30
STREAK_LOOKBACK = 10


@dataclass(frozen=True)
class Predicate:
    kind: str
    value: Any


# ---------------------------------------------------------------------------
# Comparators: (ctx, value, metric) -> bool
# ---------------------------------------------------------------------------


def _number(ctx: EventContext, attr: str, metric: str | None) -> float | None:
    """Read a numeric context value, preferring the named metric when present."""
    if metric is not None and metric in ctx.metrics:
        return ctx.metrics[metric]
    return getattr(ctx, attr)


def _at_least(attr: str) -> Callable[[EventContext, Any, str | None], bool]:
    def compare(ctx: EventContext, value: Any, metric: str | None) -> bool:
        actual = _number(ctx, attr, metric)
        return actual is not None and actual >= value
    return compare


def _flag(attr: str) -> Callable[[EventContext, Any, str | None], bool]:
    def compare(ctx: EventContext, value: Any, metric: str | None) -> bool:
        actual = getattr(ctx, attr)
        return actual is not None and actual == value
    return compare


def _stage(ctx: EventContext, value: Any, metric: str | None) -> bool:
    return ctx.company_stage == value


def _all_stages(ctx: EventContext, value: Any, metric: str | None) -> bool:
    return set(ctx.stages_completed).issuperset(STAGE_ORDER) == value


def _no_revisions(ctx: EventContext, value: Any, metric: str | None) -> bool:
    if ctx.revision_count is None:
        return False
    return (ctx.revision_count == 0) == value


def _completion_time(ctx: EventContext, value: Any, metric: str | None) -> bool:
    # A ceiling: faster completion qualifies.
    actual = _number(ctx, "elapsed_hours", metric)
    return actual is not None and actual <= value


def _metric(ctx: EventContext, value: Any, metric: str | None) -> bool:
    return ctx.metric == value


_COMPARATORS: dict[str, Callable[[EventContext, Any, str | None], bool]] = {
    "stage": _stage,
    "score_min": _at_least("score"),
    "all_stages": _all_stages,
    "canvas_approved": _flag("canvas_approved"),
    "no_revisions": _no_revisions,
    "completion_time_hours": _completion_time,
    "consecutive_questionnaires": _at_least("consecutive_questionnaires"),
    "metric": _metric,
    "interviews": _at_least("interviews"),
    "mvp_validated": _flag("mvp_validated"),
    "growth_months": _at_least("growth_months"),
}

PREDICATE_KINDS: tuple[str, ...] = tuple(_COMPARATORS)

_BOOL_KINDS = {"all_stages", "canvas_approved", "no_revisions", "mvp_validated"}
_STR_KINDS = {"stage", "metric"}


def _check_value(kind: str, value: Any) -> None:
    if kind in _BOOL_KINDS:
        ok = isinstance(value, bool)
    elif kind in _STR_KINDS:
        ok = isinstance(value, str) and bool(value.strip())
    else:
        ok = isinstance(value, (int, float)) and not isinstance(value, bool) and value >= 0
    if not ok:
        raise ConfigurationError(f"Badge condition '{kind}' has an invalid value: {value!r}")


def compile_condition(raw: Mapping[str, Any]) -> tuple[Predicate, ...]:
    """Compile a sparse condition mapping into predicates in dispatch order.

    ``None`` values count as absent.  Raises ConfigurationError for unknown
    keys or values of the wrong type.
    """
    unknown = sorted(set(raw) - set(_COMPARATORS))
    if unknown:
        raise ConfigurationError(f"Unknown badge condition keys: {', '.join(unknown)}")
    predicates = []
    for kind in PREDICATE_KINDS:
        value = raw.get(kind)
        if value is None:
            continue
        _check_value(kind, value)
        predicates.append(Predicate(kind, value))
    return tuple(predicates)


def matches(condition: Mapping[str, Any] | tuple[Predicate, ...], ctx: EventContext) -> bool:
    predicates = condition if isinstance(condition, tuple) else compile_condition(condition)
    if not predicates:
        return False
    metric = next((p.value for p in predicates if p.kind == "metric"), None)
    return all(_COMPARATORS[p.kind](ctx, p.value, metric) for p in predicates)


# ---------------------------------------------------------------------------
# Badge selection
# ---------------------------------------------------------------------------


def badge_listens_to(badge: BadgeDefinition, event_type: str) -> bool:
    return not badge.trigger_events or event_type in badge.trigger_events


def select_awardable(badges: Iterable[BadgeDefinition], ctx: EventContext) -> list[str]:
    """Ids of active badges whose condition matches the event, in catalog order."""
    selected = []
    for badge in badges:
        if not badge.is_active or not badge_listens_to(badge, ctx.event_type):
            continue
        if matches(badge.conditions, ctx):
            selected.append(badge.id)
    return selected


# ---------------------------------------------------------------------------
# Cumulative company state
# ---------------------------------------------------------------------------


@dataclass
class CompanyState:
    stage: str | None = None
    stages_completed: list[str] = field(default_factory=list)
    questionnaire_completions: list[datetime] = field(default_factory=list)
    completed_response_ids: set[str] = field(default_factory=set)


def count_consecutive_questionnaires(
    completions: Iterable[datetime],
    window_days: int = STREAK_WINDOW_DAYS,
    lookback: int = STREAK_LOOKBACK,
) -> int:
    """Length of the latest run of completions no more than *window_days* apart."""
    recent = sorted(completions, reverse=True)[:lookback]
    if not recent:
        return 0
    streak = 1
    for previous, current in zip(recent, recent[1:]):
        if (previous - current).total_seconds() / 86400 > window_days:
            break
        streak += 1
    return streak


def build_event_context(
    event_type: str, event_data: Mapping[str, Any], state: CompanyState,
) -> EventContext:
    """Combine an event payload with the company's cumulative state.

    Values in the payload win; the state fills whatever the payload left out.
    """
    ctx = EventContext.model_validate({**event_data, "event_type": event_type})
    updates: dict[str, Any] = {
        "stages_completed": sorted(set(ctx.stages_completed) | set(state.stages_completed)),
    }
    if ctx.company_stage is None:
        updates["company_stage"] = state.stage
    if ctx.consecutive_questionnaires is None and state.questionnaire_completions:
        updates["consecutive_questionnaires"] = count_consecutive_questionnaires(
            state.questionnaire_completions,
        )
    return ctx.model_copy(update=updates)
