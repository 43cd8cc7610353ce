"""Questionnaire scoring: tri-state answers to block scores and a weighted total.

Architecture
------------
Each answer is on a 0/1/2 scale (no / partial / yes) and is normalized to a
contribution of ``value / max_score_per_question``.

- **Block score**: mean contribution of the block's *answered* questions,
  times 100.  A block with no answers has no score (``None``), which is not
  the same as scoring zero.
- **Weighted score**: block scores weighted by block weight.  While a
  response is partial the weights of scored blocks are re-normalized to sum to
  one.  A final score requires every question answered (see
  :mod:`hubscore.responses`).

Everything here is a pure function of ``(template, answers)``.
"""
from __future__ import annotations

import logging
import math
from collections.abc import Mapping
from dataclasses import dataclass, field

from hubscore.schemas import Block, QuestionnaireTemplate
from hubscore.utils import round2

log = logging.getLogger(__name__)

MAX_SCORE_PER_QUESTION = 2


def normalize(value: int, max_score: int = MAX_SCORE_PER_QUESTION) -> float:
    """Map a raw answer to its contribution in [0, 1]."""
    return value / max_score


def score_block(
    block: Block, answers: Mapping[str, int], max_score: int = MAX_SCORE_PER_QUESTION,
) -> float | None:
    """Score one block over its answered questions, or ``None`` if none are answered."""
    answered = [answers[q.id] for q in block.questions if q.id in answers]
    if not answered:
        return None
    total = math.fsum(normalize(a, max_score) for a in answered)
    return round2(100 * total / len(answered))


@dataclass
class ResponseScore:
    """Scores derived from one response; recomputed on every request."""
    block_scores: dict[str, float]
    weighted_score: float | None
    completion_rate: float
    answered: int
    question_count: int
    unscored_blocks: list[str] = field(default_factory=list)

    @property
    def is_complete(self) -> bool:
        # Exact counts, not the rounded rate.
        return self.question_count > 0 and self.answered == self.question_count


def weighted_score(template: QuestionnaireTemplate, block_scores: Mapping[str, float]) -> float | None:
    """Weighted mean of the scored blocks; weights re-normalized over those blocks."""
    scored = [(block_scores[b.name], b.weight) for b in template.blocks if b.name in block_scores]
    if not scored:
        return None
    weight_total = math.fsum(w for _, w in scored)
    return round2(math.fsum(s * w for s, w in scored) / weight_total)


def answered_count(template: QuestionnaireTemplate, answers: Mapping[str, int]) -> int:
    return sum(1 for b in template.blocks for q in b.questions if q.id in answers)


def completion_rate(template: QuestionnaireTemplate, answers: Mapping[str, int]) -> float:
    """Answered share of the template, rounded for display."""
    total = template.question_count
    if total == 0:
        return 0.0
    return round(answered_count(template, answers) / total, 4)


def score_response(template: QuestionnaireTemplate, answers: Mapping[str, int]) -> ResponseScore:
    """Score a (possibly partial) response against a loaded template."""
    known = {q.id for b in template.blocks for q in b.questions}
    stray = sorted(set(answers) - known)
    if stray:
        log.debug("Ignoring %d answers not in template %r: %s", len(stray), template.id, stray[:5])

    block_scores: dict[str, float] = {}
    unscored: list[str] = []
    for block in template.blocks:
        score = score_block(block, answers, template.max_score_per_question)
        if score is None:
            unscored.append(block.name)
        else:
            block_scores[block.name] = score

    return ResponseScore(
        block_scores=block_scores,
        weighted_score=weighted_score(template, block_scores),
        completion_rate=completion_rate(template, answers),
        answered=answered_count(template, answers),
        question_count=template.question_count,
        unscored_blocks=unscored,
    )

