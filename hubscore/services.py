"""Shared business logic for the HubScore API and MCP server."""
from __future__ import annotations

import json
import logging
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from hubscore import rules
from hubscore.action_plan import (
    DEFAULT_CONFIG,
    ActionPlanConfig,
    deliverable_gaps,
    dimension_gaps,
    find_gaps,
    generate_action_plan,
)
from hubscore.badges import CompanyState, build_event_context, select_awardable
from hubscore.gate import (
    build_requirements,
    deliverables_approved,
    evaluate_gate,
    is_passed,
    resolve_weighted_score,
    select_gate_rule,
)
from hubscore.models import Badge, BadgeEvent, CompanyBadge
from hubscore.schemas import (
    BadgeDefinition,
    EventContext,
    GateCheckRequest,
    GateResult,
    MentorEvaluation,
    ProgramDefinition,
    ProgramGateRequest,
    ProgramGateResult,
    QuestionnaireTemplate,
    ScoreRequest,
    ScoreResult,
)
from hubscore.scorer import score_response
from hubscore.utils import load_json_column

log = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Scoring
# ---------------------------------------------------------------------------


def score_template(
    template: QuestionnaireTemplate,
    answers: dict[str, int],
    config: ActionPlanConfig = DEFAULT_CONFIG,
    reference_date=None,
) -> ScoreResult:
    """Score answers against a loaded template and derive gaps and the action plan."""
    result = score_response(template, answers)
    gaps = find_gaps(template, result.block_scores)
    plan = generate_action_plan(gaps, template, answers, config, reference_date)
    if not result.is_complete:
        log.debug("Partial score for template %r: %.0f%% answered",
                  template.id, result.completion_rate * 100)
    return ScoreResult(
        block_scores=result.block_scores,
        weighted_score=result.weighted_score,
        completion_rate=result.completion_rate,
        is_complete=result.is_complete,
        unscored_blocks=result.unscored_blocks,
        gaps=gaps,
        action_plan=plan,
        is_passed=is_passed(result.weighted_score, template.pass_threshold),
    )


def run_scoring(request: ScoreRequest, config: ActionPlanConfig = DEFAULT_CONFIG) -> ScoreResult:
    template = rules.build_template(request.template_blocks, request.pass_threshold)
    return score_template(template, request.answers, config, request.reference_date)


# ---------------------------------------------------------------------------
# Gates
# ---------------------------------------------------------------------------


def run_gate_check(request: GateCheckRequest) -> GateResult:
    rule = rules.validate_gate_rule(request.gate_rule)
    evaluation = MentorEvaluation(
        weighted_score=request.weighted_score, dimension_scores=request.dimension_scores,
    )
    return evaluate_gate(evaluation, rule, request.deliverables_approved)


def run_program_gate(
    program: ProgramDefinition,
    request: ProgramGateRequest,
    config: ActionPlanConfig = DEFAULT_CONFIG,
) -> ProgramGateResult:
    """Gate a company against a configured program, with checklist and remediation plan."""
    rule_type, rule = select_gate_rule(program)
    evaluation = MentorEvaluation(
        weighted_score=request.weighted_score, dimension_scores=request.dimension_scores,
    )
    statuses = request.deliverable_statuses
    result = evaluate_gate(evaluation, rule, deliverables_approved(program, statuses))
    gaps = dimension_gaps(evaluation.dimension_scores, rule.dimension_mins)
    if rule.gate_required:
        gaps = deliverable_gaps(program, statuses) + gaps
    return ProgramGateResult(
        eligible=result.eligible,
        failed_clauses=result.failed_clauses,
        program_key=program.key,
        rule_type=rule_type,
        weighted_score=resolve_weighted_score(evaluation),
        requirements=build_requirements(evaluation, rule, program, statuses),
        action_plan=generate_action_plan(gaps, config=config, reference_date=request.reference_date),
    )


# ---------------------------------------------------------------------------
# Badges
# ---------------------------------------------------------------------------


def badge_definition(row: Badge) -> BadgeDefinition:
    return rules.load_badge({
        "id": row.id, "badge_key": row.badge_key, "label": row.label,
        "description": row.description, "icon": row.icon, "badge_type": row.badge_type,
        "conditions": load_json_column(row.conditions_json, {}),
        "trigger_events": load_json_column(row.trigger_events_json, []),
        "is_active": row.is_active,
    })


def list_badges(session: Session, active_only: bool = False) -> list[BadgeDefinition]:
    query = select(Badge).order_by(Badge.created_at, Badge.id)
    if active_only:
        query = query.where(Badge.is_active.is_(True))
    return [badge_definition(b) for b in session.execute(query).scalars().all()]


def earned_badge_ids(session: Session, company_id: str) -> set[str]:
    return set(session.execute(
        select(CompanyBadge.badge_id).where(CompanyBadge.company_id == company_id)
    ).scalars().all())


def award_badge(
    session: Session, company_id: str, badge_id: str, event_type: str,
    metadata: dict[str, Any] | None = None,
) -> bool:
    """Record one award. Returns False if the company already holds the badge."""
    session.add(CompanyBadge(
        company_id=company_id, badge_id=badge_id, earned_by_event=event_type,
        metadata_json=json.dumps(metadata or {}, default=str),
    ))
    try:
        session.commit()
    except IntegrityError:
        # Lost a race with a concurrent award of the same badge.
        session.rollback()
        log.debug("Badge %s already held by company %s", badge_id, company_id)
        return False
    log.info("Awarded badge %s to company %s on %s", badge_id, company_id, event_type)
    return True


def award_badges(
    session: Session,
    company_id: str,
    ctx: EventContext,
    badges: list[BadgeDefinition] | None = None,
    metadata: dict[str, Any] | None = None,
    response_id: str | None = None,
) -> list[str]:
    """Award every matching badge the company does not hold yet.

    Safe to re-run for a retried or duplicated event: badges already earned
    are skipped, and the returned list only contains new awards.
    """
    if badges is None:
        badges = list_badges(session, active_only=True)
    earned = earned_badge_ids(session, company_id)
    awarded: list[str] = []
    for badge_id in select_awardable(badges, ctx):
        if badge_id in earned:
            continue
        if award_badge(session, company_id, badge_id, ctx.event_type, metadata):
            awarded.append(badge_id)

    session.add(BadgeEvent(
        company_id=company_id,
        event_type=ctx.event_type,
        response_id=response_id,
        event_data_json=ctx.model_dump_json(exclude_defaults=True),
        badges_awarded_json=json.dumps(awarded),
    ))
    session.commit()
    return awarded


def company_badges(session: Session, company_id: str) -> list[dict]:
    rows = session.execute(
        select(CompanyBadge).where(CompanyBadge.company_id == company_id)
        .order_by(CompanyBadge.earned_at, CompanyBadge.id)
    ).scalars().all()
    return [
        {
            "badge_id": cb.badge_id,
            "badge_key": cb.badge.badge_key if cb.badge else cb.badge_id,
            "label": cb.badge.label if cb.badge else "",
            "icon": cb.badge.icon if cb.badge else "",
            "badge_type": cb.badge.badge_type if cb.badge else "",
            "earned_at": cb.earned_at.isoformat() if cb.earned_at else "",
            "earned_by_event": cb.earned_by_event,
        }
        for cb in rows
    ]


# ---------------------------------------------------------------------------
# Company events
# ---------------------------------------------------------------------------


QUESTIONNAIRE_COMPLETED = "questionnaire_completed"


class MissingResponseIdError(ValueError):
    """A questionnaire completion event must name the response it completes."""


def company_state(session: Session, company_id: str) -> CompanyState:
    """Rebuild a company's cumulative state from its recorded events.

    Each completed response counts once toward the questionnaire streak, at
    the time of its first recorded event.
    """
    events = session.execute(
        select(BadgeEvent).where(BadgeEvent.company_id == company_id)
        .order_by(BadgeEvent.triggered_at, BadgeEvent.id)
    ).scalars().all()
    state = CompanyState()
    stages: set[str] = set()
    for ev in events:
        data = load_json_column(ev.event_data_json, {})
        if data.get("company_stage"):
            state.stage = data["company_stage"]
        stages.update(data.get("stages_completed") or [])
        if (ev.event_type == QUESTIONNAIRE_COMPLETED and ev.response_id
                and ev.response_id not in state.completed_response_ids
                and ev.triggered_at is not None):
            state.completed_response_ids.add(ev.response_id)
            state.questionnaire_completions.append(ev.triggered_at)
    state.stages_completed = sorted(stages)
    return state


def event_response_id(ctx: EventContext, metadata: dict[str, Any] | None = None) -> str | None:
    value = ctx.response_id or (metadata or {}).get("response_id")
    return str(value) if value else None


def process_event(
    session: Session,
    company_id: str,
    ctx: EventContext,
    metadata: dict[str, Any] | None = None,
    now: datetime | None = None,
) -> list[str]:
    """Fill an event from the company's history, then award matching badges.

    A questionnaire completion needs a ``response_id`` (on the event or in the
    metadata); redelivering it does not extend the streak.
    """
    response_id = event_response_id(ctx, metadata)
    state = company_state(session, company_id)
    if ctx.event_type == QUESTIONNAIRE_COMPLETED:
        if response_id is None:
            raise MissingResponseIdError("questionnaire_completed events require a response_id")
        if response_id in state.completed_response_ids:
            log.debug("Completion of response %s for company %s already recorded", response_id, company_id)
        else:
            # Stored timestamps are naive UTC.
            state.completed_response_ids.add(response_id)
            state.questionnaire_completions.append(now or datetime.now(UTC).replace(tzinfo=None))
    full_ctx = build_event_context(
        ctx.event_type, ctx.model_dump(exclude_none=True, exclude={"event_type"}), state,
    )
    return award_badges(session, company_id, full_ctx, metadata=metadata, response_id=response_id)
