"""Heuristics deciding whether a foreign-key target is a code/lookup table.

Three signals are combined into a score: table size against the vocabulary
row threshold, naming patterns (schema, table and referenced column), and a
cheap structural check on the table's columns.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, List, Pattern

if TYPE_CHECKING:
    from tre_core.connectors.base import BaseDialect

logger = logging.getLogger(__name__)

CODE_TABLE_MAX_ROWS = 250

_CODE_SCHEMA_PATTERNS = [
    re.compile(r"^(code|codes|lookup|lookups|reference|ref|master|dim|dimension)s?$", re.IGNORECASE),
    re.compile(r"^(metadata|meta|catalog|dict|dictionary)$", re.IGNORECASE),
    re.compile(r"^(enum|enums|vocab|vocabulary|domain)s?$", re.IGNORECASE),
    re.compile(r"^(static|config|configuration|settings)$", re.IGNORECASE),
]

_STRONG_TABLE_PATTERNS = [
    re.compile(r"^(lookup|reference|code|master|enum)s?$", re.IGNORECASE),
    re.compile(r"^(ref_|lk_|lookup_|code_|dim_|master_)", re.IGNORECASE),
    re.compile(r"(status|type|category|kind|class)e?s$", re.IGNORECASE),
    re.compile(r"^(list_|tbl_|table_)?(status|type|category)s?$", re.IGNORECASE),
    re.compile(r"status", re.IGNORECASE),
    re.compile(r"_types?$", re.IGNORECASE),
]

_STRONG_COLUMN_PATTERNS = [
    re.compile(r"_(id|code|type|status|category|kind|class)$", re.IGNORECASE),
    re.compile(r"^(status|type|category|kind|class)_", re.IGNORECASE),
    re.compile(r"_(key|cd|tp|stat)$", re.IGNORECASE),
]

_MODERATE_TABLE_PATTERNS = [
    re.compile(r"(countries|states|currencies|languages|roles|permissions|priorities)$", re.IGNORECASE),
    re.compile(r"_(enum|lookup|list|dict)$", re.IGNORECASE),
    re.compile(r"^(system_|sys_|app_)?(config|setting|option)s?$", re.IGNORECASE),
]

_KEY_COLUMN_RE = re.compile(r"^(id|code|key|value)$", re.IGNORECASE)
_LABEL_COLUMN_RE = re.compile(r"^(name|label|desc|description|title)$", re.IGNORECASE)


def _matches(patterns: List[Pattern[str]], text: str) -> bool:
    return any(p.search(text) for p in patterns)


def is_code_schema(schema: str) -> bool:
    return _matches(_CODE_SCHEMA_PATTERNS, schema or "")


@dataclass
class SemanticScore:
    schema_boost: int = 0
    strong_table: int = 0
    strong_column: int = 0
    moderate_table: int = 0

    @property
    def total(self) -> int:
        return self.schema_boost + self.strong_table + self.strong_column + self.moderate_table

    @property
    def passed(self) -> bool:
        return (
            self.total >= 3
            or (self.schema_boost > 0 and self.total >= 1)
            or self.strong_table >= 3
            or (self.strong_column >= 2 and self.moderate_table >= 1)
        )


def score_semantics(schema: str, table: str, reference_column: str) -> SemanticScore:
    """Name-only scoring; never touches the database."""
    return SemanticScore(
        schema_boost=2 if is_code_schema(schema) else 0,
        strong_table=3 if _matches(_STRONG_TABLE_PATTERNS, table) else 0,
        strong_column=2 if _matches(_STRONG_COLUMN_PATTERNS, reference_column) else 0,
        moderate_table=1 if _matches(_MODERATE_TABLE_PATTERNS, table) else 0,
    )


def is_code_table_by_structure(dialect: "BaseDialect", conn: Any, schema: str, table: str) -> bool:
    """Few columns, with at least one key-like and one label-like name."""
    columns = dialect.table_columns(conn, schema, table)
    if not columns or len(columns) > 8:
        return False
    names = [c.name for c in columns]
    has_key = any(_KEY_COLUMN_RE.match(n) for n in names)
    has_label = any(_LABEL_COLUMN_RE.match(n) for n in names)
    return has_key and has_label and len(columns) <= 6


def is_candidate_code_table(
    dialect: "BaseDialect",
    conn: Any,
    schema: str,
    table: str,
    reference_column: str,
    vocab_row_threshold: int = 5000,
) -> bool:
    size_check = not dialect.table_exceeds_threshold(conn, schema, table, vocab_row_threshold)
    semantics = score_semantics(schema, table, reference_column)
    semantic_check = semantics.passed
    structure_check = (
        is_code_table_by_structure(dialect, conn, schema, table)
        if size_check or semantic_check
        else False
    )

    score = 0
    if size_check:
        score += 3
    if semantic_check:
        score += 4
    if structure_check:
        score += 2

    in_code_schema = is_code_schema(schema)
    if in_code_schema and semantic_check:
        if not dialect.table_exceeds_threshold(conn, schema, table, vocab_row_threshold * 2):
            score += 1

    decision = score >= 6 or (score >= 4 and semantic_check) or (in_code_schema and score >= 2)
    logger.debug(
        "code table check %s.%s(%s): size=%s semantic=%s(%d) structure=%s score=%d -> %s",
        schema, table, reference_column, size_check, semantic_check,
        semantics.total, structure_check, score, decision,
    )
    return decision


def is_code_table(dialect: "BaseDialect", conn: Any, schema: str, table: str, pk_column: str) -> bool:
    """True when ``pk_column`` is the table's primary key and the table is small."""
    if not dialect.table_has_primary_key(conn, schema, table, pk_column):
        return False
    return not dialect.table_exceeds_threshold(conn, schema, table, CODE_TABLE_MAX_ROWS - 1)
