"""Gates: the questionnaire pass check and program advancement over mentor evaluations.

The questionnaire gate compares a 0-100 score with a 0-1 pass threshold.  The
program gate works on the 0-10 mentor scale.

A program gate has three clauses, all inclusive and checked independently:

- the weighted evaluation score reaches ``weighted_score_min``;
- every dimension listed in ``dimension_mins`` reaches its minimum (a dimension
  missing from the evaluation fails its clause);
- when ``gate_required`` is set, every required deliverable is approved.

Failing a gate is an ordinary outcome reported as ``eligible=False`` plus the
list of failed clauses, so the company can see exactly what to fix.
"""
from __future__ import annotations

import math
from collections.abc import Mapping

from hubscore.rules import DIMENSION_WEIGHTS, DIMENSIONS
from hubscore.schemas import (
    ClauseFailure,
    GateResult,
    GateRule,
    MentorEvaluation,
    ProgramDefinition,
    Requirement,
)
from hubscore.utils import round2

DELIVERABLE_APPROVED = "approved"

# How far below a minimum still counts as "at risk" rather than "not met".
SCORE_AT_RISK_MARGIN = 0.3
DIMENSION_AT_RISK_MARGIN = 0.2

_DELIVERABLE_STATUS = {
    DELIVERABLE_APPROVED: "met",
    "in_review": "pending",
    "in_progress": "at_risk",
}


def meets(value: float | None, minimum: float) -> bool:
    """Inclusive threshold comparison; a missing value never meets."""
    return value is not None and value >= minimum


def is_passed(score: float | None, pass_threshold: float) -> bool:
    """Questionnaire gate: a 0-100 score against a 0-1 pass threshold."""
    # 0.7 * 100 == 70.00000000000001
    return meets(score, round(pass_threshold * 100, 6))


def evaluation_weighted_score(
    dimension_scores: Mapping[str, float], weights: Mapping[str, float] = DIMENSION_WEIGHTS,
) -> float | None:
    """Weighted mean of the evaluated dimensions, or ``None`` if none were scored."""
    scored = [(dimension_scores[d], w) for d, w in weights.items() if d in dimension_scores]
    if not scored:
        return None
    return round2(math.fsum(s * w for s, w in scored) / math.fsum(w for _, w in scored))


def resolve_weighted_score(evaluation: MentorEvaluation) -> float | None:
    if evaluation.weighted_score is not None:
        return evaluation.weighted_score
    return evaluation_weighted_score(evaluation.dimension_scores)


def evaluate_gate(
    evaluation: MentorEvaluation, rule: GateRule, deliverables_approved: bool,
) -> GateResult:
    failed: list[ClauseFailure] = []

    score = resolve_weighted_score(evaluation)
    if not meets(score, rule.weighted_score_min):
        failed.append(ClauseFailure(
            clause="weightedScore", actual=score, required=rule.weighted_score_min,
        ))

    for dim, minimum in rule.dimension_mins.items():
        actual = evaluation.dimension_scores.get(dim)
        if not meets(actual, minimum):
            failed.append(ClauseFailure(
                clause="dimensionMin", dimension=dim, actual=actual, required=minimum,
            ))

    if rule.gate_required and not deliverables_approved:
        failed.append(ClauseFailure(clause="deliverableGate", actual=False, required=True))

    return GateResult(eligible=not failed, failed_clauses=failed)


def select_gate_rule(program: ProgramDefinition) -> tuple[str, GateRule]:
    """Pick the rule that applies to a program: advancement if it has a successor."""
    if program.next_program:
        return "passage_to_next", program.passage_to_next  # type: ignore[return-value]
    return "maintenance_thresholds", program.maintenance_thresholds  # type: ignore[return-value]


def deliverables_approved(program: ProgramDefinition, statuses: Mapping[str, str]) -> bool:
    return all(
        statuses.get(d.key) == DELIVERABLE_APPROVED
        for d in program.required_deliverables if d.approval_required
    )


# ---------------------------------------------------------------------------
# Requirement checklist
# ---------------------------------------------------------------------------


def _threshold_status(current: float | None, required: float, margin: float) -> str:
    if current is None:
        return "not_evaluated"
    if current >= required:
        return "met"
    # Rounded so 7.0 vs 6.8 is "at risk" at a 0.2 margin despite float error.
    return "at_risk" if round(required - current, 6) <= margin else "not_met"


def _dimension_order(dimension_mins: Mapping[str, float]) -> list[str]:
    known = [d for d in DIMENSIONS if d in dimension_mins]
    return known + sorted(d for d in dimension_mins if d not in DIMENSIONS)


def build_requirements(
    evaluation: MentorEvaluation,
    rule: GateRule,
    program: ProgramDefinition,
    statuses: Mapping[str, str],
) -> list[Requirement]:
    """List every gate requirement with how far the company is from meeting it."""
    reqs: list[Requirement] = []

    score = resolve_weighted_score(evaluation)
    reqs.append(Requirement(
        type="score",
        label=f"Weighted score ≥ {rule.weighted_score_min:.1f}",
        status=_threshold_status(score, rule.weighted_score_min, SCORE_AT_RISK_MARGIN),
        current=score,
        required=rule.weighted_score_min,
        difference=round2(max(0.0, rule.weighted_score_min - (score or 0.0))),
    ))

    for dim in _dimension_order(rule.dimension_mins):
        minimum = rule.dimension_mins[dim]
        current = evaluation.dimension_scores.get(dim)
        reqs.append(Requirement(
            type="dimension",
            key=dim,
            label=f"{dim} ≥ {minimum:.1f}",
            status=_threshold_status(current, minimum, DIMENSION_AT_RISK_MARGIN),
            current=current,
            required=minimum,
            difference=round2(max(0.0, minimum - (current or 0.0))),
        ))

    for deliverable in program.required_deliverables:
        if not deliverable.approval_required:
            continue
        status = statuses.get(deliverable.key)
        reqs.append(Requirement(
            type="deliverable",
            key=deliverable.key,
            label=deliverable.label or deliverable.key,
            status=_DELIVERABLE_STATUS.get(status, "not_met") if status else "not_evaluated",
        ))
    return reqs
