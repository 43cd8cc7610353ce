"""Pydantic request/response schemas and rule definitions for the HubScore engine."""
from __future__ import annotations

from datetime import date, datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

# 0 = no, 1 = partial, 2 = yes
Answer = Literal[0, 1, 2]

ResponseStatus = Literal["draft", "in_progress", "completed"]
Priority = Literal["high", "medium", "low"]
ActionCategory = Literal["question", "deliverable", "mentorship"]
GapSource = Literal["questionnaire", "dimension", "deliverable"]
ClauseName = Literal["weightedScore", "dimensionMin", "deliverableGate"]
RequirementStatus = Literal["met", "at_risk", "not_met", "pending", "not_evaluated"]
BadgeType = Literal["stage_progression", "achievement", "milestone"]


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True)


# ---------------------------------------------------------------------------
# Questionnaire templates
# ---------------------------------------------------------------------------


class Question(_Frozen):
    id: str
    text: str = ""
    type: str = "scale"


class Block(_Frozen):
    name: str
    weight: float
    questions: list[Question]

    @field_validator("weight")
    @classmethod
    def weight_in_range(cls, v: float) -> float:
        if not 0 < v <= 1:
            raise ValueError("block weight must be in (0, 1]")
        return v


class QuestionnaireTemplate(_Frozen):
    id: str = ""
    program_key: str = ""
    version: str = "1"
    title: str = ""
    blocks: list[Block]
    pass_threshold: float
    max_score_per_question: int = 2

    @field_validator("pass_threshold")
    @classmethod
    def threshold_in_range(cls, v: float) -> float:
        if not 0 < v <= 1:
            raise ValueError("pass_threshold must be in (0, 1]")
        return v

    @field_validator("max_score_per_question")
    @classmethod
    def max_score_positive(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("max_score_per_question must be positive")
        return v

    @property
    def question_count(self) -> int:
        return sum(len(b.questions) for b in self.blocks)


class ResponseState(BaseModel):
    answers: dict[str, Answer] = {}
    current_step: int = Field(1, ge=1)
    status: ResponseStatus = "draft"
    started_at: datetime | None = None
    completed_at: datetime | None = None
    total_score: float | None = None


# ---------------------------------------------------------------------------
# Programs and gates
# ---------------------------------------------------------------------------


class GateRule(_Frozen):
    weighted_score_min: float = Field(ge=0, le=10)
    dimension_mins: dict[str, float] = {}
    gate_required: bool = False


class DeliverableRequirement(_Frozen):
    key: str
    label: str = ""
    approval_required: bool = True


class ProgramDefinition(_Frozen):
    key: str
    label: str = ""
    next_program: str | None = None
    questionnaire_items_target: int = 0
    required_deliverables: list[DeliverableRequirement] = []
    passage_to_next: GateRule | None = None
    maintenance_thresholds: GateRule | None = None


class MentorEvaluation(BaseModel):
    weighted_score: float | None = Field(None, ge=0, le=10)
    dimension_scores: dict[str, float] = {}


class ClauseFailure(BaseModel):
    clause: ClauseName
    dimension: str | None = None
    actual: float | bool | None = None
    required: float | bool | None = None


class GateResult(BaseModel):
    eligible: bool
    failed_clauses: list[ClauseFailure] = []


class Requirement(BaseModel):
    type: Literal["score", "dimension", "deliverable"]
    label: str
    status: RequirementStatus
    current: float | None = None
    required: float | None = None
    difference: float = 0.0
    key: str | None = None


# ---------------------------------------------------------------------------
# Gaps and action plans
# ---------------------------------------------------------------------------


class Gap(BaseModel):
    block: str
    score: float
    weight: float
    source: GapSource = "questionnaire"


class ActionPlanItem(BaseModel):
    priority: Priority
    category: ActionCategory
    item_reference: str
    action_description: str
    estimated_effort_hours: int | None = None
    due_date: date | None = None


# ---------------------------------------------------------------------------
# Badges
# ---------------------------------------------------------------------------


class BadgeDefinition(_Frozen):
    id: str
    badge_key: str
    label: str = ""
    description: str = ""
    icon: str = ""
    badge_type: BadgeType = "achievement"
    conditions: dict[str, Any] = {}
    # Empty means the badge is evaluated for every event type.
    trigger_events: list[str] = []
    is_active: bool = True


class EventContext(BaseModel):
    event_type: str = ""
    company_stage: str | None = None
    score: float | None = None
    stages_completed: list[str] = []
    canvas_approved: bool | None = None
    mvp_validated: bool | None = None
    revision_count: int | None = None
    elapsed_hours: float | None = None
    consecutive_questionnaires: int | None = None
    interviews: int | None = None
    growth_months: int | None = None
    metric: str | None = None
    metrics: dict[str, float] = {}
    # Identifies the completed questionnaire response behind a completion event.
    response_id: str | None = None


# ---------------------------------------------------------------------------
# Request / response shapes
# ---------------------------------------------------------------------------


class ScoreRequest(BaseModel):
    template_blocks: list[Block]
    pass_threshold: float
    answers: dict[str, Answer] = {}
    reference_date: date | None = None


class ScoreResult(BaseModel):
    block_scores: dict[str, float]
    weighted_score: float | None
    completion_rate: float
    is_complete: bool
    unscored_blocks: list[str] = []
    gaps: list[Gap] = []
    action_plan: list[ActionPlanItem] = []
    is_passed: bool


class GateCheckRequest(BaseModel):
    weighted_score: float | None = Field(None, ge=0, le=10)
    dimension_scores: dict[str, float] = {}
    gate_rule: GateRule
    deliverables_approved: bool = False


class ProgramGateRequest(BaseModel):
    weighted_score: float | None = Field(None, ge=0, le=10)
    dimension_scores: dict[str, float] = {}
    # {deliverable_key: approved | in_review | in_progress | todo}
    deliverable_statuses: dict[str, str] = {}
    reference_date: date | None = None


class ProgramGateResult(GateResult):
    program_key: str
    rule_type: Literal["passage_to_next", "maintenance_thresholds"]
    weighted_score: float | None = None
    requirements: list[Requirement] = []
    action_plan: list[ActionPlanItem] = []


class BadgeEvaluationRequest(BaseModel):
    active_badges: list[BadgeDefinition]
    event_context: EventContext


class BadgeEvaluationResult(BaseModel):
    awarded_badge_ids: list[str]


class CompanyEventRequest(BaseModel):
    event_context: EventContext
    metadata: dict[str, Any] = {}


class CompanyBadgeOut(BaseModel):
    badge_id: str
    badge_key: str
    label: str
    icon: str
    badge_type: str
    earned_at: str
    earned_by_event: str
