"""
Engine and sessions for the formula engine store.

Environment (read once at import, .env honoured):
  DATABASE_URL  where formulas, poules and brackets live (default: ./piste.db)
  SQL_ECHO      log every statement the engine runs

Generation relies on the store to serialize concurrent writers, so one engine
is shared by the whole process and every request gets its own Session.
"""

import os
from pathlib import Path
from typing import Generator

from dotenv import load_dotenv
from sqlalchemy.engine import Engine
from sqlmodel import Session, SQLModel, create_engine

load_dotenv()

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./piste.db")
SQL_ECHO = os.getenv("SQL_ECHO", "false").lower() in ("true", "1", "yes")


def _connect_args(url: str) -> dict:
    # FastAPI runs sync endpoints in a thread pool; SQLite pins connections to their thread otherwise
    return {"check_same_thread": False} if url.startswith("sqlite") else {}


def _ensure_sqlite_directory(url: str) -> None:
    if not url.startswith("sqlite") or ":memory:" in url:
        return
    Path(url.replace("sqlite:///", "", 1)).parent.mkdir(parents=True, exist_ok=True)


_ensure_sqlite_directory(DATABASE_URL)

engine: Engine = create_engine(DATABASE_URL, echo=SQL_ECHO, connect_args=_connect_args(DATABASE_URL))


def get_session() -> Generator[Session, None, None]:
    """FastAPI dependency: one Session per request, closed when the response is sent."""
    with Session(engine) as session:
        yield session


def import_models() -> None:
    """Import every table model so SQLModel.metadata knows the full schema
    (create_all, alembic autogenerate and the test fixtures all need it)."""
    from piste.models.bracket import DirectEliminationBracket  # noqa: F401
    from piste.models.competition import Competition  # noqa: F401
    from piste.models.formula_preset import FormulaPreset  # noqa: F401
    from piste.models.phase import BracketConfiguration, Phase  # noqa: F401
    from piste.models.poule import Poule, PouleAssignment  # noqa: F401
    from piste.models.registration import Registration  # noqa: F401
    from piste.models.tournament import Tournament  # noqa: F401


def init_db() -> None:
    """Create missing tables at startup; schema changes go through alembic."""
    import_models()
    SQLModel.metadata.create_all(engine)
