"""Tests for the database layer (psycopg2 mocked; no real DB needed)."""

import os
from unittest.mock import MagicMock, patch

import pytest

from instaflow.infra.db import for_update, get_conn, txn

DEFAULTS = {"application_name": "instaflow", "connect_timeout": 5}


class TestGetConn:
    def test_raises_without_database_url(self):
        with patch.dict(os.environ, {}, clear=True):
            with pytest.raises(RuntimeError, match="DATABASE_URL"):
                get_conn()

    def test_db_password_fallback_dsn_without_password(self):
        env = {"DATABASE_URL": "dbname=db user=u host=h port=5432", "DB_PASSWORD": "from-env"}
        with patch.dict(os.environ, env, clear=True), \
             patch("instaflow.infra.db.psycopg2.connect", return_value=MagicMock()) as mock_connect:
            get_conn()
            mock_connect.assert_called_once_with(
                "dbname=db user=u host=h port=5432", password="from-env", **DEFAULTS
            )

    def test_db_password_not_used_when_dsn_has_password(self):
        env = {"DATABASE_URL": "dbname=db user=u password=from-dsn host=h", "DB_PASSWORD": "from-env"}
        with patch.dict(os.environ, env, clear=True), \
             patch("instaflow.infra.db.psycopg2.connect", return_value=MagicMock()) as mock_connect:
            get_conn()
            mock_connect.assert_called_once_with("dbname=db user=u password=from-dsn host=h", **DEFAULTS)

    def test_db_password_fallback_url_without_password(self):
        env = {"DATABASE_URL": "postgres://u@h/db", "DB_PASSWORD": "from-env"}
        with patch.dict(os.environ, env, clear=True), \
             patch("instaflow.infra.db.psycopg2.connect", return_value=MagicMock()) as mock_connect:
            get_conn()
            mock_connect.assert_called_once_with("postgres://u@h/db", password="from-env", **DEFAULTS)

    def test_db_password_not_used_when_url_has_password(self):
        env = {"DATABASE_URL": "postgres://u:p@h/db", "DB_PASSWORD": "from-env"}
        with patch.dict(os.environ, env, clear=True), \
             patch("instaflow.infra.db.psycopg2.connect", return_value=MagicMock()) as mock_connect:
            get_conn()
            mock_connect.assert_called_once_with("postgres://u:p@h/db", **DEFAULTS)

    def test_statement_timeout_option(self):
        env = {"DATABASE_URL": "postgres://u:p@h/db", "DB_STATEMENT_TIMEOUT_MS": "2000"}
        with patch.dict(os.environ, env, clear=True), \
             patch("instaflow.infra.db.psycopg2.connect", return_value=MagicMock()) as mock_connect:
            get_conn()
            assert mock_connect.call_args.kwargs["options"] == "-c statement_timeout=2000"


class TestTxn:
    def test_commits_on_success(self):
        conn = MagicMock()

        with txn(conn) as cur:
            cur.execute("SELECT 1")

        conn.commit.assert_called_once()
        conn.rollback.assert_not_called()
        conn.close.assert_not_called()

    def test_rolls_back_and_reraises(self):
        conn = MagicMock()

        with pytest.raises(ValueError):
            with txn(conn):
                raise ValueError("boom")

        conn.rollback.assert_called_once()
        conn.commit.assert_not_called()

    def test_owned_connection_is_closed(self):
        conn = MagicMock()
        with patch("instaflow.infra.db.get_conn", return_value=conn):
            with txn():
                pass

        conn.close.assert_called_once()


class TestForUpdate:
    def test_appends_lock_clause(self):
        cur = MagicMock()

        for_update(cur, "SELECT id FROM conversations WHERE id = %s;", ("c1",), mode="skip_locked")

        cur.execute.assert_called_once_with(
            "SELECT id FROM conversations WHERE id = %s FOR UPDATE SKIP LOCKED", ("c1",)
        )

    def test_default_blocks(self):
        cur = MagicMock()

        for_update(cur, "SELECT 1")

        cur.execute.assert_called_once_with("SELECT 1 FOR UPDATE", None)

    def test_unknown_mode(self):
        with pytest.raises(ValueError):
            for_update(MagicMock(), "SELECT 1", mode="eventually")
