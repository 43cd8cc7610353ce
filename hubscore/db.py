from __future__ import annotations

import json
import logging
import os
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Generator

from sqlalchemy import Engine, create_engine, event, select
from sqlalchemy.orm import Session, sessionmaker

from hubscore.models import Badge, Base
from hubscore.rules import default_badges

log = logging.getLogger(__name__)

DATA_DIR = Path(__file__).parent / "data"

_lock = threading.Lock()
_engine: Engine | None = None
_SessionLocal: sessionmaker[Session] | None = None
_current_db_path: Path | None = None


def default_db_path() -> Path:
    """``HUBSCORE_DB_PATH`` if set, else ``hubscore/data/hubscore.db``."""
    return Path(os.environ.get("HUBSCORE_DB_PATH") or DATA_DIR / "hubscore.db")


def make_engine(db_path: Path) -> Engine:
    engine = create_engine(f"sqlite:///{db_path}", connect_args={"check_same_thread": False})

    @event.listens_for(engine, "connect")
    def _sqlite_foreign_keys(dbapi_conn, _record):
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    return engine


def init_db(db_path: str | Path | None = None) -> None:
    """Open (or create) the database, create tables and seed the badge catalog."""
    global _engine, _SessionLocal, _current_db_path
    path = Path(db_path) if db_path is not None else default_db_path()
    path.parent.mkdir(parents=True, exist_ok=True)
    engine = make_engine(path)
    Base.metadata.create_all(engine)
    factory = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    seeded = seed_default_badges(factory)
    if seeded:
        log.info("Seeded %d default badges into %s", seeded, path)

    with _lock:
        previous = _engine
        _engine, _SessionLocal, _current_db_path = engine, factory, path
    if previous is not None:
        previous.dispose()


def get_session() -> Session:
    with _lock:
        factory = _SessionLocal
    if factory is None:
        raise RuntimeError("init_db() has not been called")
    return factory()


@contextmanager
def session_scope() -> Generator[Session, None, None]:
    """Session for the MCP server and scripts; rolled back if the block raises.

    Services commit their own work, so nothing is committed here.
    """
    session = get_session()
    try:
        yield session
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def current_db_path() -> Path | None:
    return _current_db_path


def seed_default_badges(factory: sessionmaker[Session]) -> int:
    """Insert the default badge catalog if the badges table is empty."""
    with factory() as session:
        if session.execute(select(Badge.id).limit(1)).first() is not None:
            return 0
        badges = default_badges()
        session.add_all(
            Badge(
                id=b.id, badge_key=b.badge_key, label=b.label, description=b.description,
                icon=b.icon, badge_type=b.badge_type,
                conditions_json=json.dumps(b.conditions, ensure_ascii=False),
                trigger_events_json=json.dumps(b.trigger_events),
                is_active=b.is_active,
            )
            for b in badges
        )
        session.commit()
        return len(badges)
