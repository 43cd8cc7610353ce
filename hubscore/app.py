from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Generator

from fastapi import Depends, FastAPI, HTTPException
from sqlalchemy.orm import Session

from hubscore import rules, services
from hubscore.action_plan import ActionPlanConfig
from hubscore.badges import select_awardable
from hubscore.db import get_session, init_db
from hubscore.rules import ConfigurationError
from hubscore.schemas import (
    BadgeDefinition,
    BadgeEvaluationRequest,
    BadgeEvaluationResult,
    CompanyBadgeOut,
    CompanyEventRequest,
    GateCheckRequest,
    GateResult,
    ProgramDefinition,
    ProgramGateRequest,
    ProgramGateResult,
    ScoreRequest,
    ScoreResult,
)

log = logging.getLogger(__name__)

# Validated at import; a corrupt catalog fails startup.
PROGRAMS: dict[str, ProgramDefinition] = rules.default_programs()
CONFIG = ActionPlanConfig.from_env()


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    yield


app = FastAPI(
    title="HubScore",
    version="0.1.0",
    description=(
        "Progression scoring and gamification engine for incubator programs. "
        "Scores self-assessment questionnaires, evaluates stage gates against "
        "mentor evaluations, builds remediation action plans and awards badges. "
        "All endpoints return JSON. No authentication required."
    ),
    lifespan=lifespan,
    openapi_tags=[
        {"name": "Scoring", "description": "Questionnaire scores, gaps and action plans."},
        {"name": "Gates", "description": "Program-advancement and maintenance gates."},
        {"name": "Badges", "description": "Badge catalog, condition evaluation and awards."},
        {"name": "Admin", "description": "Service health."},
    ],
)


# ---------------------------------------------------------------------------
# Dependencies & Helpers
# ---------------------------------------------------------------------------


def db_session() -> Generator[Session, None, None]:
    session = get_session()
    try:
        yield session
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def _get_program_or_404(program_key: str) -> ProgramDefinition:
    program = PROGRAMS.get(program_key)
    if program is None:
        raise HTTPException(404, f"Program '{program_key}' not found")
    return program


# ---------------------------------------------------------------------------
# Routes: Scoring
# ---------------------------------------------------------------------------


@app.post("/api/score", response_model=ScoreResult,
          tags=["Scoring"], summary="Score questionnaire answers (partial answers give a preview)")
async def score(body: ScoreRequest):
    try:
        return services.run_scoring(body, CONFIG)
    except ConfigurationError as exc:
        raise HTTPException(422, str(exc)) from exc


# ---------------------------------------------------------------------------
# Routes: Gates
# ---------------------------------------------------------------------------


@app.post("/api/gate-check", response_model=GateResult,
          tags=["Gates"], summary="Check a mentor evaluation against an explicit gate rule")
async def gate_check(body: GateCheckRequest):
    try:
        return services.run_gate_check(body)
    except ConfigurationError as exc:
        raise HTTPException(422, str(exc)) from exc


@app.get("/api/programs", response_model=list[ProgramDefinition],
         tags=["Gates"], summary="List configured programs and their gate rules")
async def list_programs():
    return list(PROGRAMS.values())


@app.post("/api/programs/{program_key}/gate-check", response_model=ProgramGateResult,
          tags=["Gates"], summary="Gate a company against a program, with requirement checklist")
async def program_gate_check(program_key: str, body: ProgramGateRequest):
    return services.run_program_gate(_get_program_or_404(program_key), body, CONFIG)


# ---------------------------------------------------------------------------
# Routes: Badges
# ---------------------------------------------------------------------------


@app.get("/api/badges", response_model=list[BadgeDefinition],
         tags=["Badges"], summary="List the badge catalog")
async def list_badges(active_only: bool = False, session: Session = Depends(db_session)):
    try:
        return services.list_badges(session, active_only=active_only)
    except ConfigurationError as exc:
        raise HTTPException(500, f"Badge catalog is corrupt: {exc}") from exc


@app.post("/api/badges/evaluate", response_model=BadgeEvaluationResult,
          tags=["Badges"], summary="Evaluate badge conditions against an event (no awards recorded)")
async def evaluate_badges(body: BadgeEvaluationRequest):
    try:
        badges = rules.load_badges(body.active_badges)
    except ConfigurationError as exc:
        raise HTTPException(422, str(exc)) from exc
    return {"awarded_badge_ids": select_awardable(badges, body.event_context)}


@app.post("/api/companies/{company_id}/events", response_model=BadgeEvaluationResult,
          tags=["Badges"], summary="Process a company event and award newly earned badges")
async def process_event(company_id: str, body: CompanyEventRequest, session: Session = Depends(db_session)):
    if not body.event_context.event_type:
        raise HTTPException(400, "event_context.event_type is required")
    try:
        awarded = services.process_event(session, company_id, body.event_context, metadata=body.metadata)
    except services.MissingResponseIdError as exc:
        raise HTTPException(400, str(exc)) from exc
    except ConfigurationError as exc:
        raise HTTPException(500, f"Badge catalog is corrupt: {exc}") from exc
    return {"awarded_badge_ids": awarded}


@app.get("/api/companies/{company_id}/badges", response_model=list[CompanyBadgeOut],
         tags=["Badges"], summary="List badges earned by a company")
async def list_company_badges(company_id: str, session: Session = Depends(db_session)):
    return services.company_badges(session, company_id)


# ---------------------------------------------------------------------------
# Routes: Admin
# ---------------------------------------------------------------------------


@app.get("/api/health", tags=["Admin"], summary="Liveness check")
async def health():
    return {"ok": True, "programs": len(PROGRAMS)}


# ---------------------------------------------------------------------------
# Startup
# ---------------------------------------------------------------------------


def main():
    import uvicorn
    uvicorn.run("hubscore.app:app", host="127.0.0.1", port=8001, reload=True)


if __name__ == "__main__":
    main()
