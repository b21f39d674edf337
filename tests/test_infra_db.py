"""Tests for database layer (no real DB needed)."""

import os
from decimal import Decimal
from unittest.mock import MagicMock, patch

import pytest

from devisly.infra.db import as_json, fetchall_dict, fetchone_dict, get_conn, txn
from devisly.infra.settings import ConfigurationError


class TestGetConn:
    def test_missing_database_url(self):
        with patch.dict(os.environ, {}, clear=True):
            with pytest.raises(ConfigurationError, match="DATABASE_URL"):
                get_conn()

    def test_uses_database_url(self):
        env = {"DATABASE_URL": "postgres://u:p@h/db"}
        with patch.dict(os.environ, env, clear=True), \
             patch("devisly.infra.db.psycopg2.connect", return_value=MagicMock()) as mock_connect:
            get_conn()
            mock_connect.assert_called_once_with("postgres://u:p@h/db")

    def test_explicit_dsn_wins(self):
        env = {"DATABASE_URL": "postgres://u:p@h/db"}
        with patch.dict(os.environ, env, clear=True), \
             patch("devisly.infra.db.psycopg2.connect", return_value=MagicMock()) as mock_connect:
            get_conn("dbname=other")
            mock_connect.assert_called_once_with("dbname=other")


class TestTxn:
    """Commit/rollback/close behaviour of txn()."""

    def test_commits_and_closes_owned_connection(self):
        conn = MagicMock()
        with patch("devisly.infra.db.get_conn", return_value=conn):
            with txn() as cur:
                cur.execute("SELECT 1")

        conn.commit.assert_called_once()
        conn.rollback.assert_not_called()
        conn.close.assert_called_once()

    def test_rolls_back_on_error(self):
        conn = MagicMock()
        with patch("devisly.infra.db.get_conn", return_value=conn):
            with pytest.raises(ValueError):
                with txn():
                    raise ValueError("boom")

        conn.rollback.assert_called_once()
        conn.commit.assert_not_called()
        conn.close.assert_called_once()

    def test_borrowed_connection_left_open(self):
        conn = MagicMock()

        with txn(conn):
            pass

        conn.commit.assert_called_once()
        conn.close.assert_not_called()


class TestDictHelpers:
    def _cursor(self, rows):
        cur = MagicMock()
        cur.description = [("id",), ("name",)]
        cur.fetchone.return_value = rows[0] if rows else None
        cur.fetchall.return_value = rows
        return cur

    def test_fetchone_dict(self):
        cur = self._cursor([(3, "Jean Dupont")])

        row = fetchone_dict(cur, "SELECT id, name FROM clients WHERE id = %s", (3,))

        assert row == {"id": 3, "name": "Jean Dupont"}
        cur.execute.assert_called_once_with("SELECT id, name FROM clients WHERE id = %s", (3,))

    def test_fetchone_dict_none(self):
        assert fetchone_dict(self._cursor([]), "SELECT 1") is None

    def test_fetchall_dict(self):
        cur = self._cursor([(1, "A"), (2, "B")])
        assert fetchall_dict(cur, "SELECT id, name FROM clients") == [
            {"id": 1, "name": "A"},
            {"id": 2, "name": "B"},
        ]


def test_as_json_stringifies_unknown_types():
    wrapped = as_json({"total": Decimal("163.80"), "name": "Rénovation"})
    assert wrapped.dumps(wrapped.adapted) == '{"total": "163.80", "name": "Rénovation"}'
