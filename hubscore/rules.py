"""Rule configuration: program, questionnaire and badge definitions.

Everything the engine scores against is loaded through this module.  Loading
validates the definition as a whole (weights summing to one, known gate
dimensions, recognised badge condition keys) and raises
:class:`ConfigurationError` for corrupt rules before any scoring happens.
The default catalogs below are plain data and go through the same loaders as
user-supplied rules.
"""
from __future__ import annotations

import logging
import math
from collections.abc import Iterable, Mapping
from typing import Any

from pydantic import BaseModel, ValidationError

from hubscore.schemas import (
    BadgeDefinition,
    Block,
    GateRule,
    ProgramDefinition,
    QuestionnaireTemplate,
)

log = logging.getLogger(__name__)

WEIGHT_TOLERANCE = 1e-9


class ConfigurationError(Exception):
    """A rule definition is corrupt and cannot be scored against."""


# ---------------------------------------------------------------------------
# Catalogs
# ---------------------------------------------------------------------------

STAGE_ORDER: tuple[str, ...] = ("hotel_de_projetos", "pre_residencia", "residencia")

# Mentor evaluation dimensions and their weight in the 0-10 weighted score.
DIMENSION_WEIGHTS: dict[str, float] = {
    "mercado": 0.28,
    "perfil_empreendedor": 0.21,
    "tecnologia_qualidade": 0.14,
    "gestao": 0.16,
    "financeiro": 0.16,
}
DIMENSIONS: tuple[str, ...] = tuple(DIMENSION_WEIGHTS)

DEFAULT_PROGRAMS: list[dict[str, Any]] = [
    {
        "key": "hotel_de_projetos",
        "label": "Hotel de Projetos",
        "next_program": "pre_residencia",
        "questionnaire_items_target": 68,
        "required_deliverables": [
            {"key": "canvas", "label": "Business Model Canvas", "approval_required": True},
        ],
        "passage_to_next": {
            "weighted_score_min": 7.0,
            "dimension_mins": {
                "mercado": 7.0, "perfil_empreendedor": 6.5, "tecnologia_qualidade": 6.5,
                "gestao": 6.0, "financeiro": 6.0,
            },
            "gate_required": True,
        },
    },
    {
        "key": "pre_residencia",
        "label": "Pré-Residência",
        "next_program": "residencia",
        "questionnaire_items_target": 75,
        "required_deliverables": [
            {"key": "mvp_validado", "label": "MVP Evidenciado/Validado", "approval_required": True},
        ],
        "passage_to_next": {
            "weighted_score_min": 7.5,
            "dimension_mins": {
                "mercado": 7.5, "perfil_empreendedor": 7.0, "tecnologia_qualidade": 7.0,
                "gestao": 6.8, "financeiro": 6.8,
            },
            "gate_required": True,
        },
    },
    {
        "key": "residencia",
        "label": "Residência",
        "next_program": None,
        "questionnaire_items_target": 32,
        "required_deliverables": [
            {"key": "produto_validado", "label": "Produto/Serviço Validado", "approval_required": True},
            {"key": "indicadores_tracao", "label": "Indicadores de Tração", "approval_required": False},
        ],
        "maintenance_thresholds": {
            "weighted_score_min": 8.0,
            "dimension_mins": {
                "mercado": 8.0, "perfil_empreendedor": 7.5, "tecnologia_qualidade": 7.5,
                "gestao": 7.2, "financeiro": 7.2,
            },
            "gate_required": True,
        },
    },
]

DEFAULT_BADGES: list[dict[str, Any]] = [
    # Stage progression
    {"id": "hotel_aprovado", "badge_key": "hotel_aprovado", "label": "Hotel de Projetos Aprovado",
     "description": "Completou com sucesso a etapa Hotel de Projetos", "icon": "🏨",
     "badge_type": "stage_progression", "trigger_events": ["stage_advanced"],
     "conditions": {"stage": "pre_residencia", "score_min": 70}},
    {"id": "pre_residencia_aprovado", "badge_key": "pre_residencia_aprovado", "label": "Pré-Residência Aprovado",
     "description": "Completou com sucesso a etapa Pré-Residência", "icon": "🚀",
     "badge_type": "stage_progression", "trigger_events": ["stage_advanced"],
     "conditions": {"stage": "residencia", "score_min": 75}},
    {"id": "graduado_programa", "badge_key": "graduado_programa", "label": "Graduado do Programa",
     "description": "Completou todas as etapas do programa", "icon": "👑",
     "badge_type": "stage_progression", "trigger_events": ["stage_advanced"],
     "conditions": {"all_stages": True}},
    # Performance
    {"id": "score_excepcional", "badge_key": "score_excepcional", "label": "Score Excepcional",
     "description": "Atingiu score ≥ 90% em questionário", "icon": "🎯",
     "badge_type": "achievement", "trigger_events": ["questionnaire_completed", "score_excepcional"],
     "conditions": {"score_min": 90}},
    {"id": "mestre_canvas", "badge_key": "mestre_canvas", "label": "Mestre do Canvas",
     "description": "Canvas aprovado sem revisões", "icon": "📊",
     "badge_type": "achievement", "trigger_events": ["deliverable_approved"],
     "conditions": {"canvas_approved": True, "no_revisions": True}},
    {"id": "resposta_rapida", "badge_key": "resposta_rapida", "label": "Resposta Rápida",
     "description": "Completou questionário em menos de 24 horas", "icon": "⚡",
     "badge_type": "achievement", "trigger_events": ["questionnaire_completed"],
     "conditions": {"completion_time_hours": 24}},
    {"id": "streak_master", "badge_key": "streak_master", "label": "Streak Master",
     "description": "Completou 3 questionários consecutivos", "icon": "🔥",
     "badge_type": "achievement", "trigger_events": ["questionnaire_completed"],
     "conditions": {"consecutive_questionnaires": 3}},
    # Milestones
    {"id": "meta_financeira", "badge_key": "meta_financeira", "label": "Meta Financeira Atingida",
     "description": "Atingiu meta financeira estabelecida", "icon": "💰",
     "badge_type": "milestone", "trigger_events": ["metric_target_reached"],
     "conditions": {"metric": "financial_target"}},
    {"id": "validacao_usuarios", "badge_key": "validacao_usuarios", "label": "Validação com Usuários",
     "description": "Realizou ≥ 20 entrevistas com usuários", "icon": "👥",
     "badge_type": "milestone", "trigger_events": ["milestone_reached"],
     "conditions": {"interviews": 20}},
    {"id": "mvp_validado", "badge_key": "mvp_validado", "label": "MVP Validado",
     "description": "MVP testado com sucesso", "icon": "🛠️",
     "badge_type": "milestone", "trigger_events": ["milestone_reached"],
     "conditions": {"mvp_validated": True}},
    {"id": "crescimento_sustentavel", "badge_key": "crescimento_sustentavel", "label": "Crescimento Sustentável",
     "description": "Crescimento mensal consistente por 3 meses", "icon": "📈",
     "badge_type": "milestone", "trigger_events": ["metric_target_reached"],
     "conditions": {"metric": "consistent_growth", "growth_months": 3}},
]


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _validate(model: type[BaseModel], data: Any, label: str):
    if isinstance(data, model):
        return data
    try:
        return model.model_validate(data)
    except ValidationError as exc:
        log.warning("Rejected %s definition: %s", label, exc)
        raise ConfigurationError(f"Invalid {label}: {exc}") from exc


def _duplicates(values: Iterable[str]) -> list[str]:
    seen: set[str] = set()
    dupes: list[str] = []
    for v in values:
        if v in seen and v not in dupes:
            dupes.append(v)
        seen.add(v)
    return dupes


# ---------------------------------------------------------------------------
# Questionnaire templates
# ---------------------------------------------------------------------------


def validate_blocks(blocks: list[Block]) -> None:
    """Check a block list as a whole. Raises ConfigurationError."""
    if not blocks:
        raise ConfigurationError("Template has no blocks")
    empty = [b.name for b in blocks if not b.questions]
    if empty:
        raise ConfigurationError(f"Blocks without questions: {', '.join(empty)}")
    dupes = _duplicates(b.name for b in blocks)
    if dupes:
        raise ConfigurationError(f"Duplicate block names: {', '.join(dupes)}")
    dupes = _duplicates(q.id for b in blocks for q in b.questions)
    if dupes:
        raise ConfigurationError(f"Duplicate question ids: {', '.join(dupes)}")
    total = math.fsum(b.weight for b in blocks)
    if not math.isclose(total, 1.0, rel_tol=0.0, abs_tol=WEIGHT_TOLERANCE):
        raise ConfigurationError(f"Block weights sum to {total}, expected 1.0")


def load_template(data: Mapping[str, Any] | QuestionnaireTemplate) -> QuestionnaireTemplate:
    template = _validate(QuestionnaireTemplate, data, "questionnaire template")
    validate_blocks(template.blocks)
    return template


def build_template(blocks: list[Block], pass_threshold: float, **extra: Any) -> QuestionnaireTemplate:
    """Assemble and validate a template from a request's blocks and threshold."""
    return load_template({"blocks": blocks, "pass_threshold": pass_threshold, **extra})


# ---------------------------------------------------------------------------
# Programs
# ---------------------------------------------------------------------------


def validate_gate_rule(rule: GateRule, dimensions: Iterable[str] = DIMENSIONS) -> GateRule:
    unknown = sorted(set(rule.dimension_mins) - set(dimensions))
    if unknown:
        raise ConfigurationError(f"Gate rule references unknown dimensions: {', '.join(unknown)}")
    return rule


def load_gate_rule(data: Mapping[str, Any] | GateRule) -> GateRule:
    return validate_gate_rule(_validate(GateRule, data, "gate rule"))


def load_program(data: Mapping[str, Any] | ProgramDefinition) -> ProgramDefinition:
    program = _validate(ProgramDefinition, data, "program")
    if program.passage_to_next and program.maintenance_thresholds:
        raise ConfigurationError(
            f"Program '{program.key}' defines both passage_to_next and maintenance_thresholds"
        )
    if program.next_program and program.passage_to_next is None:
        raise ConfigurationError(f"Program '{program.key}' has a successor but no passage_to_next rule")
    if not program.next_program and program.maintenance_thresholds is None:
        raise ConfigurationError(f"Terminal program '{program.key}' has no maintenance_thresholds rule")
    for rule in (program.passage_to_next, program.maintenance_thresholds):
        if rule is not None:
            validate_gate_rule(rule)
    return program


def load_programs(items: Iterable[Mapping[str, Any] | ProgramDefinition]) -> dict[str, ProgramDefinition]:
    programs: dict[str, ProgramDefinition] = {}
    for item in items:
        program = load_program(item)
        if program.key in programs:
            raise ConfigurationError(f"Duplicate program key: {program.key}")
        programs[program.key] = program
    for program in programs.values():
        if program.next_program and program.next_program not in programs:
            raise ConfigurationError(
                f"Program '{program.key}' points to unknown successor '{program.next_program}'"
            )
    return programs


# ---------------------------------------------------------------------------
# Badges
# ---------------------------------------------------------------------------


def load_badge(data: Mapping[str, Any] | BadgeDefinition) -> BadgeDefinition:
    from hubscore.badges import compile_condition

    badge = _validate(BadgeDefinition, data, "badge")
    compile_condition(badge.conditions)
    return badge


def load_badges(items: Iterable[Mapping[str, Any] | BadgeDefinition]) -> list[BadgeDefinition]:
    badges = [load_badge(item) for item in items]
    dupes = _duplicates(b.id for b in badges)
    if dupes:
        raise ConfigurationError(f"Duplicate badge ids: {', '.join(dupes)}")
    return badges


def default_programs() -> dict[str, ProgramDefinition]:
    return load_programs(DEFAULT_PROGRAMS)


def default_badges() -> list[BadgeDefinition]:
    return load_badges(DEFAULT_BADGES)
