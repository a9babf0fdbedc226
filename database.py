from typing import Any, Iterator, Optional

from sqlalchemy import MetaData, String, create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.ext.compiler import compiles
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker
from sqlalchemy.sql.functions import GenericFunction

from config import get_settings

# Alembic batch migrations on SQLite need every constraint to carry a name.
NAMING_CONVENTION = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}


class casefold(GenericFunction):
    """Unicode case folding, usable as ``func.casefold(column)``."""

    type = String()
    inherit_cache = True


@compiles(casefold)
def _compile_casefold(element, compiler, **kw):
    return f"lower({compiler.process(element.clauses, **kw)})"


@compiles(casefold, "sqlite")
def _compile_casefold_sqlite(element, compiler, **kw):
    # SQLite's own lower() only folds ASCII
    return f"casefold({compiler.process(element.clauses, **kw)})"


def _casefold(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    return value.casefold()


def _is_in_memory(database_url: str) -> bool:
    return database_url in ("sqlite://", "sqlite:///:memory:")


def build_engine(database_url: str, **engine_kwargs: Any) -> Engine:
    if not database_url.startswith("sqlite"):
        return create_engine(database_url, pool_pre_ping=True, **engine_kwargs)

    eng = create_engine(
        database_url, connect_args={"check_same_thread": False}, **engine_kwargs
    )
    use_wal = not _is_in_memory(database_url)

    @event.listens_for(eng, "connect")
    def _enable_sqlite_pragmas(dbapi_conn, _record):
        dbapi_conn.create_function("casefold", 1, _casefold, deterministic=True)
        cursor = dbapi_conn.cursor()
        if use_wal:
            cursor.execute("PRAGMA journal_mode=WAL;")
        # SET NULL / CASCADE on category deletion rely on this
        cursor.execute("PRAGMA foreign_keys=ON;")
        cursor.close()

    return eng


engine = build_engine(get_settings().database_url)
SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


class Base(DeclarativeBase):
    metadata = MetaData(naming_convention=NAMING_CONVENTION)


def get_db() -> Iterator[Session]:
    """Request-scoped session; FastAPI closes it after the response."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
