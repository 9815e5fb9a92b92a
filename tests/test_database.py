"""
Tests for database setup: URL resolution and column back-filling on old tables.
"""
import os

from sqlalchemy import create_engine, inspect, text
from sqlalchemy.pool import StaticPool

from shopsync.models.base import add_missing_columns, init_db, resolve_database_url


class TestDatabaseUrl:

    def test_relative_sqlite_path_becomes_absolute(self):
        assert resolve_database_url("sqlite:///./shopsync.db") == "sqlite:///" + os.path.abspath("./shopsync.db")

    def test_absolute_and_server_urls_unchanged(self):
        assert resolve_database_url("sqlite:////var/lib/shopsync.db") == "sqlite:////var/lib/shopsync.db"
        assert resolve_database_url("postgresql://u:p@db/shopsync") == "postgresql://u:p@db/shopsync"


class TestColumnBackfill:

    def _engine(self):
        return create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)

    def test_old_table_gains_model_columns(self):
        engine = self._engine()
        with engine.begin() as conn:
            conn.execute(text("CREATE TABLE customers (id INTEGER PRIMARY KEY, name VARCHAR NOT NULL)"))
            conn.execute(text("INSERT INTO customers (id, name) VALUES (1, 'Ada')"))

        init_db(bind=engine)

        columns = {c["name"] for c in inspect(engine).get_columns("customers")}
        assert {"email", "phone", "tier", "created_at"} <= columns
        with engine.connect() as conn:
            assert conn.execute(text("SELECT name FROM customers WHERE id = 1")).scalar() == "Ada"

    def test_current_schema_needs_nothing(self, engine):
        assert add_missing_columns(engine) == []
