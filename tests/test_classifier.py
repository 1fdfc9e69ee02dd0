"""Tests for read/write statement classification."""

from __future__ import annotations

import pytest

from sqlgate.errors import ClassificationError, EmptyStatement, MultiStatementNotSupported
from sqlgate.policy.classifier import Classification, classify, split_statements, strip_comments


class TestClassification:
    """Decision table for single statements."""

    @pytest.mark.parametrize(
        "sql",
        [
            "SELECT * FROM users",
            "select id, name from products",
            "SELECT updated_at, created_at FROM orders",
            "SHOW TABLES",
            "DESCRIBE users",
            "DESC users",
            "EXPLAIN SELECT * FROM users",
            "WITH cte AS (SELECT * FROM t) SELECT * FROM cte",
            "  SELECT 1  ",
        ],
    )
    def test_read_statements(self, sql: str) -> None:
        result = classify(sql)
        assert result.classification == Classification.read
        assert not result.requires_approval

    @pytest.mark.parametrize(
        "sql",
        [
            "INSERT INTO users (name) VALUES ('test')",
            "UPDATE users SET name = 'new' WHERE id = 1",
            "DELETE FROM users WHERE id = 1",
            "DROP TABLE users",
            "CREATE TABLE new_table (id INT)",
            "ALTER TABLE users ADD COLUMN email TEXT",
            "TRUNCATE TABLE users",
            "GRANT SELECT ON users TO role",
            "BEGIN",
            "START TRANSACTION",
            "SET search_path TO public",
            "VACUUM",
            "CALL my_procedure()",
            "ATTACH DATABASE 'other.db' AS other",
        ],
    )
    def test_write_statements(self, sql: str) -> None:
        result = classify(sql)
        assert result.classification == Classification.write
        assert result.requires_approval

    def test_select_into_is_write(self) -> None:
        assert classify("SELECT * INTO backup FROM users").classification == Classification.write

    def test_select_into_is_case_insensitive_and_multiline(self) -> None:
        sql = "select *\nfrom users\ninto backup"
        assert classify(sql).classification == Classification.write

    def test_with_wrapping_a_write_is_write(self) -> None:
        sql = "WITH stale AS (SELECT id FROM t WHERE old) DELETE FROM t WHERE id IN stale"
        assert classify(sql).classification == Classification.write

    def test_create_table_as_select_is_write(self) -> None:
        sql = "CREATE TABLE copy AS SELECT * FROM users"
        assert classify(sql).classification == Classification.write

    @pytest.mark.parametrize("sql", ["PRAGMA table_info(users)", "VALUES (1)", "FOO BAR"])
    def test_unrecognized_statements_fail_closed(self, sql: str) -> None:
        assert classify(sql).classification == Classification.write


class TestNormalization:
    def test_comments_are_removed_before_classification(self) -> None:
        sql = "/* harmless */ -- note\nSELECT 1"
        result = classify(sql)
        assert result.normalized == "SELECT 1"
        assert result.classification == Classification.read

    def test_comment_cannot_hide_a_write(self) -> None:
        result = classify("/* SELECT */ DELETE FROM t")
        assert result.classification == Classification.write

    def test_trailing_semicolon_is_allowed(self) -> None:
        assert classify("SELECT 1;").normalized == "SELECT 1"

    def test_strip_comments(self) -> None:
        assert strip_comments("SELECT 1 -- trailing") == "SELECT 1"
        assert strip_comments("/* a\nb */ SELECT 2") == "SELECT 2"

    def test_split_statements_drops_empty_segments(self) -> None:
        assert split_statements("SELECT 1;; ;SELECT 2;") == ["SELECT 1", "SELECT 2"]


class TestRejections:
    @pytest.mark.parametrize("sql", ["", "   ", "-- only a comment", "/* nothing */", ";;"])
    def test_empty_statement(self, sql: str) -> None:
        with pytest.raises(EmptyStatement) as exc_info:
            classify(sql)
        assert str(exc_info.value) == "query cannot be empty"

    def test_multiple_statements(self) -> None:
        with pytest.raises(MultiStatementNotSupported) as exc_info:
            classify("SELECT 1; DELETE FROM t")
        assert str(exc_info.value) == "only single-statement SQL is supported"

    def test_rejections_share_a_base_class(self) -> None:
        with pytest.raises(ClassificationError):
            classify("SELECT 1; SELECT 2")
