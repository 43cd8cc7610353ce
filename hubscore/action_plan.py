"""Gap analysis and remediation action plans.

Any block scoring below 100 is a gap, so passing companies still get
improvement suggestions.  Gaps are ordered by descending weight, then
ascending score.  Plans are deterministic: identical inputs give identically
ordered items.
"""
from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import date, timedelta

from hubscore.gate import DELIVERABLE_APPROVED
from hubscore.rules import DIMENSION_WEIGHTS
from hubscore.schemas import ActionPlanItem, Block, Gap, ProgramDefinition, QuestionnaireTemplate

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class ActionPlanConfig:
    # Blocks at or above this weight always produce high-priority actions.
    dominant_weight: float = 0.25
    high_score_below: float = 50.0
    medium_score_below: float = 80.0
    max_items_per_block: int = 5
    effort_hours_absent: int = 8
    effort_hours_partial: int = 4
    due_in_days: dict[str, int] = field(
        default_factory=lambda: {"high": 14, "medium": 30, "low": 60},
    )

    @classmethod
    def from_env(cls) -> ActionPlanConfig:
        return cls(
            dominant_weight=float(os.environ.get("HUBSCORE_DOMINANT_WEIGHT", cls.dominant_weight)),
            max_items_per_block=int(
                os.environ.get("HUBSCORE_MAX_ACTIONS_PER_BLOCK", cls.max_items_per_block)
            ),
        )


DEFAULT_CONFIG = ActionPlanConfig()


# ---------------------------------------------------------------------------
# Gaps
# ---------------------------------------------------------------------------


def sort_gaps(gaps: list[Gap]) -> list[Gap]:
    """Descending weight, then ascending score; input order breaks remaining ties."""
    return sorted(gaps, key=lambda g: (-g.weight, g.score))


def find_gaps(template: QuestionnaireTemplate, block_scores: Mapping[str, float]) -> list[Gap]:
    """Every scored block short of 100; unscored blocks are not gaps yet."""
    gaps = [
        Gap(block=b.name, score=block_scores[b.name], weight=b.weight)
        for b in template.blocks
        if b.name in block_scores and block_scores[b.name] < 100
    ]
    return sort_gaps(gaps)


def dimension_gaps(
    dimension_scores: Mapping[str, float],
    dimension_mins: Mapping[str, float],
    weights: Mapping[str, float] = DIMENSION_WEIGHTS,
) -> list[Gap]:
    """Dimensions below their gate minimum, scored on 0-100 for prioritisation."""
    gaps = []
    for dim, minimum in dimension_mins.items():
        actual = dimension_scores.get(dim)
        if actual is not None and actual >= minimum:
            continue
        gaps.append(Gap(
            block=dim, score=round((actual or 0.0) * 10, 2),
            weight=weights.get(dim, 0.0), source="dimension",
        ))
    return sort_gaps(gaps)


def deliverable_gaps(program: ProgramDefinition, statuses: Mapping[str, str]) -> list[Gap]:
    # Weight 1.0 sorts these ahead of every other gap.
    return [
        Gap(block=d.key, score=0.0, weight=1.0, source="deliverable")
        for d in program.required_deliverables
        if d.approval_required and statuses.get(d.key) != DELIVERABLE_APPROVED
    ]


# ---------------------------------------------------------------------------
# Action items
# ---------------------------------------------------------------------------


def priority_for(score: float, weight: float, config: ActionPlanConfig = DEFAULT_CONFIG) -> str:
    if weight >= config.dominant_weight or score < config.high_score_below:
        return "high"
    if score < config.medium_score_below:
        return "medium"
    return "low"


def _due_date(priority: str, reference_date: date | None, config: ActionPlanConfig) -> date | None:
    if reference_date is None or priority not in config.due_in_days:
        return None
    return reference_date + timedelta(days=config.due_in_days[priority])


def question_actions(
    gap: Gap,
    block: Block,
    answers: Mapping[str, int],
    max_score: int = 2,
    config: ActionPlanConfig = DEFAULT_CONFIG,
    reference_date: date | None = None,
) -> list[ActionPlanItem]:
    """One item per answered question below the maximum, weakest answers first."""
    weak = sorted(
        (answers[q.id], idx, q)
        for idx, q in enumerate(block.questions)
        if q.id in answers and answers[q.id] < max_score
    )
    priority = priority_for(gap.score, gap.weight, config)
    return [
        ActionPlanItem(
            priority=priority,
            category="question",
            item_reference=q.id,
            action_description=f"Improve: {q.text or q.id}",
            estimated_effort_hours=config.effort_hours_absent if value == 0 else config.effort_hours_partial,
            due_date=_due_date(priority, reference_date, config),
        )
        for value, _, q in weak[:config.max_items_per_block]
    ]


def _single_action(gap: Gap, config: ActionPlanConfig, reference_date: date | None) -> ActionPlanItem:
    if gap.source == "deliverable":
        priority, category = "high", "deliverable"
        description = f"Submit deliverable '{gap.block}' and get it approved"
    else:
        priority, category = priority_for(gap.score, gap.weight, config), "mentorship"
        description = f"Schedule mentorship to raise the '{gap.block}' evaluation ({gap.score / 10:.1f}/10)"
    return ActionPlanItem(
        priority=priority,
        category=category,
        item_reference=gap.block,
        action_description=description,
        due_date=_due_date(priority, reference_date, config),
    )


def generate_action_plan(
    gaps: list[Gap],
    template: QuestionnaireTemplate | None = None,
    answers: Mapping[str, int] | None = None,
    config: ActionPlanConfig = DEFAULT_CONFIG,
    reference_date: date | None = None,
) -> list[ActionPlanItem]:
    """Map ordered gaps to action items.

    Questionnaire gaps need the template and answers to expand into
    per-question items; dimension and deliverable gaps become a single item.
    """
    blocks = {b.name: b for b in template.blocks} if template else {}
    max_score = template.max_score_per_question if template else 2
    plan: list[ActionPlanItem] = []
    for gap in sort_gaps(gaps):
        if gap.source == "questionnaire":
            block = blocks.get(gap.block)
            if block is None:
                log.warning("Gap for unknown block %r skipped", gap.block)
                continue
            plan.extend(question_actions(
                gap, block, answers or {}, max_score, config, reference_date,
            ))
        else:
            plan.append(_single_action(gap, config, reference_date))
    return plan
