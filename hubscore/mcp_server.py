from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import date

from mcp.server.fastmcp import FastMCP
from pydantic import ValidationError

from hubscore import rules, services
from hubscore.db import init_db, session_scope
from hubscore.rules import ConfigurationError
from hubscore.schemas import EventContext, GateCheckRequest, ProgramGateRequest, ScoreRequest

log = logging.getLogger(__name__)

PROGRAMS = rules.default_programs()


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def hubscore_lifespan(server: FastMCP) -> AsyncIterator[None]:
    init_db()
    yield


mcp = FastMCP(
    "HubScore",
    instructions=(
        "HubScore scores incubator self-assessment questionnaires, checks program "
        "gates against mentor evaluations and awards badges for company events. "
        "Read hubscore://overview for programs and dimensions, then use "
        "score_questionnaire(), check_gate(), list_badges() and process_event()."
    ),
    lifespan=hubscore_lifespan,
    json_response=True,
)


def _error(exc: Exception) -> dict:
    return {"error": str(exc)}


# ---------------------------------------------------------------------------
# Resource
# ---------------------------------------------------------------------------


@mcp.resource("hubscore://overview")
def hubscore_overview() -> str:
    """Programs, evaluation dimensions and answer scale used by HubScore."""
    return json.dumps({
        "system": "HubScore: progression scoring and gamification for incubator programs",
        "answer_scale": {"0": "no", "1": "partial", "2": "yes"},
        "stages": list(rules.STAGE_ORDER),
        "dimension_weights": rules.DIMENSION_WEIGHTS,
        "programs": {key: p.model_dump() for key, p in PROGRAMS.items()},
        "workflow": [
            "1. score_questionnaire(blocks, pass_threshold, answers) for a score, gaps and action plan.",
            "2. check_gate(program_key, ...) to see whether a company may advance.",
            "3. process_event(company_id, event_type, ...) after a milestone to award badges.",
        ],
    }, indent=2, ensure_ascii=False)


# ---------------------------------------------------------------------------
# Tools: Scoring & Gates
# ---------------------------------------------------------------------------


@mcp.tool()
def score_questionnaire(
    blocks: list[dict], pass_threshold: float, answers: dict[str, int],
    reference_date: str | None = None,
) -> dict:
    """Score questionnaire answers against a template.

    Args:
        blocks: Template blocks, each {"name", "weight", "questions": [{"id", "text"}]}.
                Weights must sum to 1.
        pass_threshold: Fraction of 100 needed to pass, e.g. 0.7.
        answers: Question id to 0 (no), 1 (partial) or 2 (yes). Partial answers
                 give a preview score.
        reference_date: ISO date used to compute action item due dates.
    """
    try:
        request = ScoreRequest(
            template_blocks=blocks, pass_threshold=pass_threshold, answers=answers,
            reference_date=date.fromisoformat(reference_date) if reference_date else None,
        )
        return services.run_scoring(request).model_dump(mode="json")
    except (ConfigurationError, ValidationError, ValueError) as exc:
        return _error(exc)


@mcp.tool()
def check_gate(
    program_key: str | None = None,
    weighted_score: float | None = None,
    dimension_scores: dict[str, float] | None = None,
    deliverable_statuses: dict[str, str] | None = None,
    gate_rule: dict | None = None,
    deliverables_approved: bool = False,
) -> dict:
    """Check a mentor evaluation (0-10 scale) against a program gate.

    Args:
        program_key: hotel_de_projetos, pre_residencia or residencia. Uses the
                     program's rule and returns a requirement checklist.
        weighted_score: Overall evaluation score. Derived from the dimensions if omitted.
        dimension_scores: Per-dimension scores, e.g. {"mercado": 7.2}.
        deliverable_statuses: With program_key, deliverable key to
                              approved / in_review / in_progress / todo.
        gate_rule: Without program_key, an explicit rule
                   {"weighted_score_min", "dimension_mins", "gate_required"}.
        deliverables_approved: Without program_key, whether the required
                               deliverables are approved.
    """
    try:
        if program_key:
            program = PROGRAMS.get(program_key)
            if program is None:
                return {"error": f"Program '{program_key}' not found"}
            return services.run_program_gate(program, ProgramGateRequest(
                weighted_score=weighted_score,
                dimension_scores=dimension_scores or {},
                deliverable_statuses=deliverable_statuses or {},
            )).model_dump(mode="json")
        if gate_rule is None:
            return {"error": "Provide either program_key or gate_rule"}
        return services.run_gate_check(GateCheckRequest(
            weighted_score=weighted_score,
            dimension_scores=dimension_scores or {},
            gate_rule=gate_rule,
            deliverables_approved=deliverables_approved,
        )).model_dump(mode="json")
    except (ConfigurationError, ValidationError) as exc:
        return _error(exc)


# ---------------------------------------------------------------------------
# Tools: Badges
# ---------------------------------------------------------------------------


@mcp.tool()
def list_badges(active_only: bool = True, company_id: str | None = None) -> list[dict]:
    """List the badge catalog, or the badges a company has earned if company_id is given."""
    with session_scope() as session:
        if company_id:
            return services.company_badges(session, company_id)
        return [b.model_dump() for b in services.list_badges(session, active_only=active_only)]


@mcp.tool()
def process_event(
    company_id: str, event_type: str, event_data: dict | None = None, response_id: str | None = None,
) -> dict:
    """Record a company event and award any badges it newly earns.

    Args:
        company_id: Company identifier.
        event_type: e.g. questionnaire_completed, stage_advanced,
                    deliverable_approved, milestone_reached, metric_target_reached.
        event_data: Event details such as {"score": 92}, {"company_stage": "pre_residencia"},
                    {"interviews": 25} or {"metric": "financial_target"}.
        response_id: Completed questionnaire response; required for
                     questionnaire_completed, and a repeated id does not extend the streak.
    """
    if not event_type.strip():
        return {"error": "event_type is required"}
    try:
        data = {**(event_data or {}), "event_type": event_type}
        if response_id:
            data["response_id"] = response_id
        ctx = EventContext.model_validate(data)
    except ValidationError as exc:
        return _error(exc)
    try:
        with session_scope() as session:
            awarded = services.process_event(session, company_id, ctx)
    except services.MissingResponseIdError as exc:
        return {"error": str(exc)}
    log.debug("Event %s for company %s awarded %s", event_type, company_id, awarded)
    return {"company_id": company_id, "event_type": event_type, "awarded_badge_ids": awarded}


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def main():
    """Run the HubScore MCP server over stdio."""
    mcp.run()


if __name__ == "__main__":
    main()
