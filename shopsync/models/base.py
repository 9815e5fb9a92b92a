"""
Engine, session factory and declarative base for the ShopSync tables
"""
import os

from sqlalchemy import create_engine, inspect, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import NullPool

from shopsync.config import get_settings
from shopsync.utils.logger import log

SQLITE_PREFIX = "sqlite:///"


def resolve_database_url(url: str) -> str:
    """Pin a relative SQLite file to the directory the process started in"""
    if url.startswith(SQLITE_PREFIX) and not url.startswith(SQLITE_PREFIX + "/"):
        return SQLITE_PREFIX + os.path.abspath(url[len(SQLITE_PREFIX):])
    return url


def build_engine(url: str) -> Engine:
    url = resolve_database_url(url)
    if url.startswith("sqlite"):
        # Scheduler jobs and request handlers open their own connections
        return create_engine(
            url,
            connect_args={"check_same_thread": False, "timeout": 60},
            poolclass=NullPool,
            pool_pre_ping=True,
        )
    return create_engine(url, pool_pre_ping=True, pool_size=3, max_overflow=5, pool_recycle=300)


engine = build_engine(get_settings().database_url)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()


def get_db():
    """FastAPI dependency: one session per request"""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.expire_all()
        db.close()


def add_missing_columns(bind: Engine) -> list:
    """ALTER existing tables to add model columns they lack. Returns "table.column" names."""
    inspector = inspect(bind)
    added = []
    with bind.begin() as conn:
        for table in Base.metadata.sorted_tables:
            if not inspector.has_table(table.name):
                continue
            present = {column["name"] for column in inspector.get_columns(table.name)}
            for column in table.columns:
                if column.name in present:
                    continue
                column_type = column.type.compile(dialect=bind.dialect)
                conn.execute(text(f"ALTER TABLE {table.name} ADD COLUMN {column.name} {column_type}"))
                added.append(f"{table.name}.{column.name}")
    if added:
        log.info(f"Added columns: {', '.join(added)}")
    return added


def init_db(bind=None):
    """Create missing tables, then missing columns"""
    import shopsync.models  # noqa: F401  registers every table on Base.metadata

    bind = bind or engine
    Base.metadata.create_all(bind=bind)
    add_missing_columns(bind)
