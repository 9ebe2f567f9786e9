import logging

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker
from sqlalchemy.pool import NullPool

from .config import Settings

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    pass


def _quote_ident(ident: str) -> str:
    # Safe-ish quoting for Postgres identifiers (schema/table)
    return '"' + ident.replace('"', '""') + '"'


def _build_engine(settings: Settings) -> Engine:
    url = settings.database_url
    kwargs: dict = {"pool_pre_ping": True}

    if url.startswith("sqlite"):
        kwargs["connect_args"] = {"check_same_thread": False}
    elif settings.db_null_pool:
        kwargs["poolclass"] = NullPool
    else:
        kwargs["pool_size"] = settings.db_pool_size
        kwargs["max_overflow"] = settings.db_max_overflow

    return create_engine(url, **kwargs)


class Database:
    """
    One engine (and its connection pool) plus the session factory bound to it.

    Created once by the app factory; request handlers get sessions through
    the get_db dependency.
    """

    def __init__(self, settings: Settings):
        self.engine = _build_engine(settings)
        self.schema = settings.db_schema if self.engine.dialect.name == "postgresql" else None
        self.SessionLocal = sessionmaker(bind=self.engine, autoflush=False, expire_on_commit=False)

        if self.schema:
            event.listen(self.engine, "connect", self._set_search_path)
        if self.engine.dialect.name == "sqlite":
            event.listen(self.engine, "connect", _enable_sqlite_fks)

    def _set_search_path(self, dbapi_conn, _):
        # Ensures every new connection uses the schema
        cur = dbapi_conn.cursor()
        cur.execute(f"SET search_path TO {_quote_ident(self.schema)}")
        cur.close()

    def init_schema(self) -> None:
        """
        Create the schema (Postgres) and all tables.
        Prefer deploy-time migrations in production; this is for local/dev and tests.
        """
        with self.engine.begin() as conn:
            if self.schema:
                conn.execute(text(f"CREATE SCHEMA IF NOT EXISTS {_quote_ident(self.schema)}"))
        Base.metadata.create_all(bind=self.engine)

    def session(self) -> Session:
        return self.SessionLocal()

    def ping(self) -> bool:
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            return True
        except SQLAlchemyError:
            logger.exception("Database ping failed")
            return False

    def dispose(self) -> None:
        self.engine.dispose()


def _enable_sqlite_fks(dbapi_conn, _):
    cur = dbapi_conn.cursor()
    cur.execute("PRAGMA foreign_keys=ON")
    cur.close()

