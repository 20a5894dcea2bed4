import logging

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, sessionmaker
from sqlalchemy.pool import StaticPool

from config import get_settings

logger = logging.getLogger(__name__)


def _is_memory_sqlite(database_url: str) -> bool:
    return database_url.rstrip("/").endswith((":memory:", "sqlite:", "pysqlite:"))


def create_db_engine(database_url: str) -> Engine:
    if not database_url.startswith("sqlite"):
        return create_engine(database_url, pool_pre_ping=True)

    options: dict[str, object] = {"connect_args": {"check_same_thread": False}}
    if _is_memory_sqlite(database_url):
        # one shared connection, otherwise every checkout sees an empty database
        options["poolclass"] = StaticPool
    eng = create_engine(database_url, **options)
    event.listen(eng, "connect", _enable_sqlite_pragmas)
    return eng


def _enable_sqlite_pragmas(dbapi_conn, _record):
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA journal_mode=WAL;")
    cursor.execute("PRAGMA foreign_keys=ON;")
    cursor.close()


def check_connection(eng: Engine) -> None:
    with eng.connect() as conn:
        conn.execute(text("SELECT 1"))
    logger.info(f"database_ready: dialect={eng.dialect.name}")


def make_sessionmaker(eng: Engine) -> sessionmaker:
    return sessionmaker(bind=eng, autoflush=False, expire_on_commit=False)


engine = create_db_engine(get_settings().database_url)
SessionLocal = make_sessionmaker(engine)


class Base(DeclarativeBase):
    pass
