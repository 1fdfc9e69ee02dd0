"""Read/write classification for agent-submitted SQL.

Keyword heuristics only; this is not a SQL parser. Ambiguous input is
over-classified as ``write`` so it is routed to a human for approval.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import Final

from sqlgate.errors import EmptyStatement, MultiStatementNotSupported

_BLOCK_COMMENT: Final[re.Pattern[str]] = re.compile(r"/\*.*?\*/", re.DOTALL)
_LINE_COMMENT: Final[re.Pattern[str]] = re.compile(r"--.*$", re.MULTILINE)

_READ_PREFIXES: Final[tuple[str, ...]] = ("SELECT", "SHOW", "DESCRIBE", "DESC", "EXPLAIN")

# Keywords that mark a statement as mutating (or session-altering).
_WRITE_KEYWORDS: Final[tuple[str, ...]] = (
    "INSERT",
    "UPDATE",
    "DELETE",
    "UPSERT",
    "MERGE",
    "REPLACE",
    "CREATE",
    "ALTER",
    "DROP",
    "TRUNCATE",
    "GRANT",
    "REVOKE",
    "COMMIT",
    "ROLLBACK",
    "BEGIN",
    r"START\s+TRANSACTION",
    "LOCK",
    "UNLOCK",
    "SET",
    "USE",
    "ANALYZE",
    "OPTIMIZE",
    "REINDEX",
    "VACUUM",
    "CALL",
    "EXEC",
    "EXECUTE",
    "PREPARE",
    "DEALLOCATE",
    "COPY",
    "ATTACH",
    "DETACH",
)

_WRITE_PATTERN: Final[re.Pattern[str]] = re.compile(
    r"\b(" + "|".join(_WRITE_KEYWORDS) + r")\b",
    re.IGNORECASE,
)
_READ_PATTERN: Final[re.Pattern[str]] = re.compile(
    r"^(" + "|".join(_READ_PREFIXES) + r")\b",
    re.IGNORECASE,
)
_SELECT_INTO_PATTERN: Final[re.Pattern[str]] = re.compile(
    r"^SELECT\b.*\bINTO\b",
    re.IGNORECASE | re.DOTALL,
)
_WITH_PATTERN: Final[re.Pattern[str]] = re.compile(r"^WITH\b", re.IGNORECASE)


class Classification(str, Enum):
    read = "read"
    write = "write"


@dataclass(frozen=True)
class ClassifiedStatement:
    """A single comment-free statement and its read/write label."""

    normalized: str
    classification: Classification

    @property
    def requires_approval(self) -> bool:
        return self.classification == Classification.write


def strip_comments(sql: str) -> str:
    """Remove ``/* ... */`` and ``-- ...`` comments and trim the result."""
    without_blocks = _BLOCK_COMMENT.sub(" ", sql)
    return _LINE_COMMENT.sub(" ", without_blocks).strip()


def split_statements(sql: str) -> list[str]:
    """Split on ``;`` and drop empty segments (so a trailing ``;`` is harmless)."""
    return [part.strip() for part in sql.split(";") if part.strip()]


def _classify_statement(statement: str) -> Classification:
    if _SELECT_INTO_PATTERN.search(statement):
        return Classification.write

    if _READ_PATTERN.search(statement):
        return Classification.read

    if _WITH_PATTERN.search(statement):
        return Classification.write if _WRITE_PATTERN.search(statement) else Classification.read

    if _WRITE_PATTERN.search(statement):
        return Classification.write

    # Fail closed: an unrecognized leading keyword is never treated as a read.
    return Classification.write


def classify(raw_sql: str) -> ClassifiedStatement:
    """Normalize ``raw_sql`` and classify it as ``read`` or ``write``.

    Raises:
        EmptyStatement: Nothing but whitespace/comments was supplied.
        MultiStatementNotSupported: More than one non-empty ``;``-separated
            statement remains once comments are removed.
    """
    normalized = strip_comments(raw_sql)
    if not normalized:
        raise EmptyStatement()

    statements = split_statements(normalized)
    if not statements:
        raise EmptyStatement()
    if len(statements) != 1:
        raise MultiStatementNotSupported(len(statements))

    statement = statements[0]
    return ClassifiedStatement(normalized=statement, classification=_classify_statement(statement))
