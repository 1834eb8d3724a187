"""Tests for migrations DSN-to-URL conversion and the schema file."""

from __future__ import annotations

import os
import sys
from pathlib import Path
from unittest.mock import patch

import pytest

# Make migrations.env_helpers importable without alembic context
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from migrations.env_helpers import _get_database_url, _libpq_dsn_to_url  # noqa: E402

SCHEMA_SQL = Path(__file__).resolve().parents[1] / "migrations" / "sql" / "001_relay_schema.sql"


class TestLibpqDsnToUrl:
    def test_cloudsql_socket(self):
        dsn = "dbname=relay user=relay-sa password=s3cret host=/cloudsql/proj:us-central1:inst"
        assert _libpq_dsn_to_url(dsn) == (
            "postgresql+psycopg2://relay-sa:s3cret@/relay"
            "?host=%2Fcloudsql%2Fproj%3Aus-central1%3Ainst"
        )

    def test_tcp_host_default_port(self):
        dsn = "dbname=db user=u password=p host=myhost"
        assert _libpq_dsn_to_url(dsn) == "postgresql+psycopg2://u:p@myhost:5432/db"

    def test_quoted_password_with_spaces(self):
        dsn = "dbname=db user=u password='p@ss w0rd' host=h port=5433"
        result = _libpq_dsn_to_url(dsn)
        assert "p%40ss+w0rd" in result
        assert result.endswith("@h:5433/db")

    def test_db_password_env_fallback(self, monkeypatch):
        monkeypatch.setenv("DB_PASSWORD", "from-env")
        assert "from-env" in _libpq_dsn_to_url("dbname=db user=u host=h")


class TestGetDatabaseUrl:
    @pytest.mark.parametrize(
        "url,expected",
        [
            ("postgresql+psycopg2://u:p@h/db", "postgresql+psycopg2://u:p@h/db"),
            ("postgresql://u:p@h/db", "postgresql+psycopg2://u:p@h/db"),
            ("postgres://u:p@h/db", "postgresql+psycopg2://u:p@h/db"),
        ],
    )
    def test_url_forms(self, url, expected):
        with patch.dict(os.environ, {"DATABASE_URL": url}):
            assert _get_database_url() == expected

    def test_missing(self, monkeypatch):
        monkeypatch.delenv("DATABASE_URL", raising=False)
        with pytest.raises(RuntimeError):
            _get_database_url()


class TestSchemaFile:
    def test_core_tables_present(self):
        sql = SCHEMA_SQL.read_text(encoding="utf-8")
        for table in (
            "users",
            "messages",
            "presence",
            "pending_tasks",
            "user_context",
            "relay_config",
            "inbound_receipts",
        ):
            assert f"CREATE TABLE IF NOT EXISTS {table} (" in sql

    def test_identity_unique_and_messages_immutable(self):
        sql = SCHEMA_SQL.read_text(encoding="utf-8")
        assert "CREATE UNIQUE INDEX IF NOT EXISTS ux_users_channel_identity" in sql
        assert "BEFORE UPDATE ON messages" in sql
