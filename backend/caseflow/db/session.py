"""Engine / session factory construction and schema bootstrap."""

import logging

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from caseflow.config import DATABASE_URL, DB_ECHO, STATEMENT_TIMEOUT_MS
from caseflow.db.models import Base
from caseflow.dedup.text import trigram_similarity

logger = logging.getLogger(__name__)


def _register_sqlite_functions(dbapi_conn, connection_record):
    # pg_trgm's similarity() so the search engine issues the same SQL on SQLite
    dbapi_conn.create_function("similarity", 2, trigram_similarity, deterministic=True)
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def resolve_url(url: str) -> str:
    """Point bare PostgreSQL URLs at psycopg 3, the driver the ``postgres`` extra installs."""
    for prefix in ("postgresql://", "postgres://"):
        if url.startswith(prefix):
            return "postgresql+psycopg://" + url[len(prefix):]
    return url


def make_engine(url: str | None = None, echo: bool | None = None) -> Engine:
    """Create an engine for ``url`` (defaults to ``DATABASE_URL``)."""
    url = resolve_url(url or DATABASE_URL)
    echo = DB_ECHO if echo is None else echo

    if url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        if url in ("sqlite://", "sqlite:///:memory:"):
            # One shared connection, otherwise every checkout sees an empty database
            kwargs["poolclass"] = StaticPool
        engine = create_engine(url, echo=echo, **kwargs)
        event.listen(engine, "connect", _register_sqlite_functions)
    else:
        engine = create_engine(
            url,
            echo=echo,
            pool_pre_ping=True,
            connect_args={"options": f"-c statement_timeout={STATEMENT_TIMEOUT_MS}"},
        )
    logger.debug(f"Database engine created for dialect '{engine.dialect.name}'")
    return engine


def make_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(bind=engine, expire_on_commit=False)


def init_db(engine: Engine):
    """Create missing tables (and the pg_trgm extension on PostgreSQL)."""
    if engine.dialect.name == "postgresql":
        with engine.begin() as conn:
            conn.execute(text("CREATE EXTENSION IF NOT EXISTS pg_trgm"))
    Base.metadata.create_all(engine)
    logger.info(f"Database schema ready ({engine.dialect.name})")
