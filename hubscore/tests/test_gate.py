"""Tests for program gates and the requirement checklist."""
from __future__ import annotations

import pytest

from hubscore.gate import (
    build_requirements,
    deliverables_approved,
    evaluate_gate,
    evaluation_weighted_score,
    select_gate_rule,
)
from hubscore.rules import default_programs
from hubscore.schemas import GateRule, MentorEvaluation


@pytest.fixture()
def rule():
    return GateRule(weighted_score_min=7.0, dimension_mins={"mercado": 7.0}, gate_required=True)


@pytest.fixture(scope="module")
def programs():
    return default_programs()


class TestEvaluateGate:
    def test_failing_dimension(self, rule):
        evaluation = MentorEvaluation(weighted_score=7.2, dimension_scores={"mercado": 6.5})
        result = evaluate_gate(evaluation, rule, deliverables_approved=True)
        assert not result.eligible
        assert len(result.failed_clauses) == 1
        clause = result.failed_clauses[0]
        assert clause.clause == "dimensionMin"
        assert clause.dimension == "mercado"
        assert clause.actual == 6.5
        assert clause.required == 7.0

    def test_boundary_is_inclusive(self, rule):
        evaluation = MentorEvaluation(weighted_score=7.0, dimension_scores={"mercado": 7.0})
        result = evaluate_gate(evaluation, rule, deliverables_approved=True)
        assert result.eligible
        assert result.failed_clauses == []

    def test_missing_dimension_fails(self, rule):
        evaluation = MentorEvaluation(weighted_score=9.0)
        result = evaluate_gate(evaluation, rule, deliverables_approved=True)
        assert [(c.clause, c.dimension, c.actual) for c in result.failed_clauses] == [
            ("dimensionMin", "mercado", None),
        ]

    def test_deliverables_required(self, rule):
        evaluation = MentorEvaluation(weighted_score=8.0, dimension_scores={"mercado": 8.0})
        result = evaluate_gate(evaluation, rule, deliverables_approved=False)
        assert [c.clause for c in result.failed_clauses] == ["deliverableGate"]

    def test_deliverables_ignored_when_not_required(self):
        rule = GateRule(weighted_score_min=5.0)
        result = evaluate_gate(MentorEvaluation(weighted_score=5.0), rule, deliverables_approved=False)
        assert result.eligible

    def test_all_clauses_reported(self, rule):
        evaluation = MentorEvaluation(weighted_score=3.0, dimension_scores={"mercado": 2.0})
        result = evaluate_gate(evaluation, rule, deliverables_approved=False)
        assert [c.clause for c in result.failed_clauses] == [
            "weightedScore", "dimensionMin", "deliverableGate",
        ]

    def test_weighted_score_derived_from_dimensions(self):
        rule = GateRule(weighted_score_min=7.0)
        evaluation = MentorEvaluation(dimension_scores={"mercado": 8.0, "gestao": 6.0})
        # (8 * .28 + 6 * .16) / .44
        assert evaluation_weighted_score(evaluation.dimension_scores) == 7.27
        assert evaluate_gate(evaluation, rule, deliverables_approved=False).eligible

    def test_no_score_at_all_fails(self):
        result = evaluate_gate(MentorEvaluation(), GateRule(weighted_score_min=1.0), True)
        assert result.failed_clauses[0].clause == "weightedScore"
        assert result.failed_clauses[0].actual is None


class TestProgramRules:
    def test_advancing_program_uses_passage_rule(self, programs):
        rule_type, rule = select_gate_rule(programs["hotel_de_projetos"])
        assert rule_type == "passage_to_next"
        assert rule.weighted_score_min == 7.0

    def test_terminal_program_uses_maintenance_rule(self, programs):
        rule_type, rule = select_gate_rule(programs["residencia"])
        assert rule_type == "maintenance_thresholds"
        assert rule.weighted_score_min == 8.0

    def test_deliverables_approved(self, programs):
        hotel = programs["hotel_de_projetos"]
        assert deliverables_approved(hotel, {"canvas": "approved"})
        assert not deliverables_approved(hotel, {"canvas": "in_review"})
        assert not deliverables_approved(hotel, {})

    def test_optional_deliverables_not_needed(self, programs):
        assert deliverables_approved(programs["residencia"], {"produto_validado": "approved"})


class TestBuildRequirements:
    def test_checklist(self, programs):
        program = programs["hotel_de_projetos"]
        _, rule = select_gate_rule(program)
        evaluation = MentorEvaluation(weighted_score=6.8, dimension_scores={
            "mercado": 7.0, "perfil_empreendedor": 6.4, "gestao": 5.0, "financeiro": 6.0,
        })
        reqs = build_requirements(evaluation, rule, program, {"canvas": "in_review"})

        assert [(r.type, r.key, r.status) for r in reqs] == [
            ("score", None, "at_risk"),
            ("dimension", "mercado", "met"),
            ("dimension", "perfil_empreendedor", "at_risk"),
            ("dimension", "tecnologia_qualidade", "not_evaluated"),
            ("dimension", "gestao", "not_met"),
            ("dimension", "financeiro", "met"),
            ("deliverable", "canvas", "pending"),
        ]
        assert reqs[0].difference == 0.2
        assert reqs[4].difference == 1.0
        assert reqs[1].difference == 0.0

    def test_deliverable_statuses(self, programs):
        program = programs["pre_residencia"]
        _, rule = select_gate_rule(program)
        evaluation = MentorEvaluation(weighted_score=9.0)
        for status, expected in [("approved", "met"), ("in_progress", "at_risk"), ("todo", "not_met")]:
            reqs = build_requirements(evaluation, rule, program, {"mvp_validado": status})
            assert reqs[-1].status == expected
        assert build_requirements(evaluation, rule, program, {})[-1].status == "not_evaluated"
