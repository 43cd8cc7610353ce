"""Tests for persisted badge awards, company events and database setup."""
from __future__ import annotations

import json
from unittest.mock import patch

import pytest
from sqlalchemy import create_engine, func, select
from sqlalchemy.orm import Session, sessionmaker

from hubscore import services
from hubscore.db import seed_default_badges
from hubscore.models import Badge, BadgeEvent, Base, CompanyBadge
from hubscore.rules import default_programs
from hubscore.schemas import EventContext, ProgramGateRequest

# ---------------------------------------------------------------------------
# Fixtures: in-memory SQLite database
# ---------------------------------------------------------------------------


@pytest.fixture()
def engine():
    eng = create_engine("sqlite:///:memory:", connect_args={"check_same_thread": False})
    Base.metadata.create_all(eng)
    return eng


@pytest.fixture()
def session_factory(engine):
    factory = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    seed_default_badges(factory)
    return factory


@pytest.fixture()
def session(session_factory):
    sess = session_factory()
    try:
        yield sess
    finally:
        sess.close()


def _count(session: Session, model) -> int:
    return session.execute(select(func.count()).select_from(model)).scalar_one()


EXCEPTIONAL = EventContext(event_type="questionnaire_completed", score=95)


class TestSeed:
    def test_seeded_once(self, session, session_factory):
        assert _count(session, Badge) == 11
        assert seed_default_badges(session_factory) == 0
        assert _count(session, Badge) == 11

    def test_list_badges(self, session):
        badges = services.list_badges(session)
        assert len(badges) == 11
        assert badges[0].conditions

    def test_list_active_only(self, session):
        session.get(Badge, "mvp_validado").is_active = False
        session.commit()
        ids = [b.id for b in services.list_badges(session, active_only=True)]
        assert "mvp_validado" not in ids
        assert len(ids) == 10


class TestAwardBadges:
    def test_award(self, session):
        awarded = services.award_badges(session, "c1", EXCEPTIONAL, metadata={"response_id": "r1"})
        assert awarded == ["score_excepcional"]
        row = session.execute(select(CompanyBadge)).scalars().one()
        assert row.company_id == "c1"
        assert row.earned_by_event == "questionnaire_completed"
        assert json.loads(row.metadata_json) == {"response_id": "r1"}

    def test_resubmitted_event_awards_nothing(self, session):
        services.award_badges(session, "c1", EXCEPTIONAL)
        assert services.award_badges(session, "c1", EXCEPTIONAL) == []
        assert _count(session, CompanyBadge) == 1
        assert _count(session, BadgeEvent) == 2

    def test_concurrent_award_conflict(self, session):
        services.award_badges(session, "c1", EXCEPTIONAL)
        # Simulate a second writer that read the earned set before the first commit.
        with patch.object(services, "earned_badge_ids", return_value=set()):
            assert services.award_badges(session, "c1", EXCEPTIONAL) == []
        assert _count(session, CompanyBadge) == 1

    def test_award_badge_conflict_returns_false(self, session):
        assert services.award_badge(session, "c1", "score_excepcional", "questionnaire_completed")
        assert not services.award_badge(session, "c1", "score_excepcional", "questionnaire_completed")

    def test_companies_are_independent(self, session):
        assert services.award_badges(session, "c1", EXCEPTIONAL) == ["score_excepcional"]
        assert services.award_badges(session, "c2", EXCEPTIONAL) == ["score_excepcional"]

    def test_event_recorded(self, session):
        services.award_badges(session, "c1", EXCEPTIONAL)
        event = session.execute(select(BadgeEvent)).scalars().one()
        assert event.event_type == "questionnaire_completed"
        assert json.loads(event.badges_awarded_json) == ["score_excepcional"]
        assert json.loads(event.event_data_json)["score"] == 95

    def test_company_badges(self, session):
        services.award_badges(session, "c1", EXCEPTIONAL)
        badges = services.company_badges(session, "c1")
        assert len(badges) == 1
        assert badges[0]["badge_key"] == "score_excepcional"
        assert badges[0]["label"] == "Score Excepcional"
        assert services.company_badges(session, "other") == []


class TestProcessEvent:
    def test_questionnaire_streak(self, session):
        for response_id, expected in [("r1", []), ("r2", []), ("r3", ["streak_master"])]:
            ctx = EventContext(event_type="questionnaire_completed", score=50, response_id=response_id)
            assert services.process_event(session, "c1", ctx) == expected

    def test_redelivered_completion_not_counted(self, session):
        retry = EventContext(event_type="questionnaire_completed", score=50, response_id="r1")
        for _ in range(3):
            assert services.process_event(session, "c1", retry) == []
        second = EventContext(event_type="questionnaire_completed", score=50, response_id="r2")
        assert services.process_event(session, "c1", second) == []
        assert services.process_event(session, "c1", second) == []
        third = EventContext(event_type="questionnaire_completed", score=50, response_id="r3")
        assert services.process_event(session, "c1", third) == ["streak_master"]

    def test_response_id_from_metadata(self, session):
        ctx = EventContext(event_type="questionnaire_completed", score=50)
        services.process_event(session, "c1", ctx, metadata={"response_id": "r1"})
        event = session.execute(select(BadgeEvent)).scalars().one()
        assert event.response_id == "r1"

    def test_completion_without_response_id(self, session):
        ctx = EventContext(event_type="questionnaire_completed", score=95)
        with pytest.raises(services.MissingResponseIdError):
            services.process_event(session, "c1", ctx)
        assert _count(session, BadgeEvent) == 0
        assert _count(session, CompanyBadge) == 0

    def test_state_counts_each_response_once(self, session):
        ctx = EventContext(event_type="questionnaire_completed", score=50)
        for response_id in ["r1", "r1", "r2", None]:
            services.award_badges(session, "c1", ctx, response_id=response_id)
        state = services.company_state(session, "c1")
        assert state.completed_response_ids == {"r1", "r2"}
        assert len(state.questionnaire_completions) == 2

    def test_stage_history_accumulates(self, session):
        first = EventContext(
            event_type="stage_advanced", company_stage="pre_residencia",
            stages_completed=["hotel_de_projetos"], score=80,
        )
        assert services.process_event(session, "c1", first) == ["hotel_aprovado"]
        second = EventContext(event_type="stage_advanced", stages_completed=["pre_residencia", "residencia"])
        assert services.process_event(session, "c1", second) == ["graduado_programa"]

        state = services.company_state(session, "c1")
        assert state.stage == "pre_residencia"
        assert state.stages_completed == ["hotel_de_projetos", "pre_residencia", "residencia"]


class TestProgramGate:
    def test_failing_company_gets_plan(self):
        program = default_programs()["hotel_de_projetos"]
        result = services.run_program_gate(program, ProgramGateRequest(
            weighted_score=7.2,
            dimension_scores={
                "mercado": 6.5, "perfil_empreendedor": 7.0, "tecnologia_qualidade": 7.0,
                "gestao": 6.0, "financeiro": 6.0,
            },
            deliverable_statuses={"canvas": "approved"},
        ))
        assert not result.eligible
        assert result.rule_type == "passage_to_next"
        assert [(c.clause, c.dimension) for c in result.failed_clauses] == [("dimensionMin", "mercado")]
        assert [i.item_reference for i in result.action_plan] == ["mercado"]

    def test_missing_deliverable_first(self):
        program = default_programs()["hotel_de_projetos"]
        result = services.run_program_gate(program, ProgramGateRequest(weighted_score=9.0, dimension_scores={
            "mercado": 9.0, "perfil_empreendedor": 9.0, "tecnologia_qualidade": 9.0,
            "gestao": 9.0, "financeiro": 6.0,
        }))
        assert [c.clause for c in result.failed_clauses] == ["deliverableGate"]
        assert [(i.category, i.item_reference) for i in result.action_plan] == [("deliverable", "canvas")]


class TestInitDb:
    def test_init_and_session_scope(self, tmp_path):
        import hubscore.db as db_mod

        orig = (db_mod._engine, db_mod._SessionLocal, db_mod._current_db_path)
        try:
            db_mod.init_db(tmp_path / "test.db")
            assert db_mod.current_db_path() == tmp_path / "test.db"
            with db_mod.session_scope() as sess:
                assert _count(sess, Badge) == 11
            with pytest.raises(ValueError):
                with db_mod.session_scope() as sess:
                    sess.add(CompanyBadge(company_id="c1", badge_id="mvp_validado"))
                    sess.flush()
                    raise ValueError("boom")
            with db_mod.session_scope() as sess:
                assert _count(sess, CompanyBadge) == 0
        finally:
            if db_mod._engine is not None:
                db_mod._engine.dispose()
            db_mod._engine, db_mod._SessionLocal, db_mod._current_db_path = orig

    def test_db_path_from_env(self, monkeypatch, tmp_path):
        from hubscore.db import default_db_path

        monkeypatch.setenv("HUBSCORE_DB_PATH", str(tmp_path / "env.db"))
        assert default_db_path() == tmp_path / "env.db"


class TestJsonColumns:
    def test_bad_event_data_is_ignored_on_replay(self, session):
        session.add(BadgeEvent(company_id="c1", event_type="stage_advanced", event_data_json="{not json"))
        session.add(BadgeEvent(company_id="c1", event_type="stage_advanced", event_data_json=""))
        session.commit()
        state = services.company_state(session, "c1")
        assert state.stage is None
        assert state.stages_completed == []
