"""Vocabulary harvesting: foreign-key lookup tables, enum types and CHECK lists."""

from __future__ import annotations

import logging
import re
from typing import TYPE_CHECKING, Any, Dict, Iterable, List, Optional, Sequence, Tuple

from tre_core.classifier import is_candidate_code_table
from tre_core.model import ColumnMeta, ForeignKeyEdge, ValueType, VocabOrigin, relation_key

if TYPE_CHECKING:
    from tre_core.connectors.base import BaseDialect

logger = logging.getLogger(__name__)

DESCRIPTION_LIKE_RE = re.compile(r"(desc|description|detail|note|comment)", re.IGNORECASE)
_QUOTED_VALUE_RE = re.compile(r"'((?:[^']|'')*)'")

FkIndex = Dict[Tuple[str, str, str], ForeignKeyEdge]


def build_fk_index(edges: Iterable[ForeignKeyEdge]) -> FkIndex:
    """Map lower-cased ``(schema, table, column)`` to the edge leaving it."""
    return {edge.key: edge for edge in edges}


def standardize_sample(columns: Sequence[str], rows: Iterable[Sequence[Any]]) -> List[Dict[str, Any]]:
    """Rename sampled columns to ``code``/``label``/``description``.

    The first column is the code and the second the label. Of any further
    columns only the first description-like one is kept.
    """
    columns = list(columns)
    desc_index: Optional[int] = None
    for i in range(2, len(columns)):
        if DESCRIPTION_LIKE_RE.search(columns[i]):
            desc_index = i
            break

    sample: List[Dict[str, Any]] = []
    for row in rows:
        record: Dict[str, Any] = {"code": row[0]}
        if len(columns) >= 2:
            record["label"] = row[1]
        if desc_index is not None:
            record["description"] = row[desc_index]
        sample.append(record)
    return sample


def choose_vocab_columns(
    dialect: "BaseDialect", conn: Any, schema: str, table: str, code_column: str
) -> Tuple[Optional[str], Optional[str]]:
    """Return ``(label_column, description_column)`` for a lookup table.

    A description-like pick from ``pick_label_column`` is demoted to the
    description slot when another text column can serve as the label.
    """
    label = dialect.pick_label_column(conn, schema, table)
    if label is None:
        return None, None

    text_columns = [
        c.name
        for c in dialect.table_columns(conn, schema, table)
        if c.name.lower() != code_column.lower()
        and dialect.map_native_type(c.data_type) == ValueType.STRING
    ]
    others = [name for name in text_columns if name.lower() != label.lower()]

    if DESCRIPTION_LIKE_RE.search(label):
        plain = [name for name in others if not DESCRIPTION_LIKE_RE.search(name)]
        if plain:
            return plain[0], label
        return label, None

    described = [name for name in others if DESCRIPTION_LIKE_RE.search(name)]
    return label, described[0] if described else None


def attach_vocab(
    dialect: "BaseDialect",
    conn: Any,
    cols: List[ColumnMeta],
    edges: Iterable[ForeignKeyEdge],
    max_vocab: int = 200,
    vocab_row_threshold: int = 5000,
) -> List[ColumnMeta]:
    """Attach a sampled vocabulary to every column whose FK target is a code table."""
    index = build_fk_index(edges)
    for col in cols:
        if col.source_table is None or col.base_column is None:
            continue
        edge = index.get(((col.source_schema or "").lower(), col.source_table.lower(), col.base_column.lower()))
        if edge is None:
            continue

        col.vocabulary_relation = relation_key(edge.ref_schema, edge.ref_table)
        col.code_column = edge.ref_column

        if not is_candidate_code_table(
            dialect, conn, edge.ref_schema, edge.ref_table, edge.ref_column,
            vocab_row_threshold=vocab_row_threshold,
        ):
            col.vocab_skipped = True
            continue

        label, description = choose_vocab_columns(dialect, conn, edge.ref_schema, edge.ref_table, edge.ref_column)
        col.label_column = label
        sample = dialect.sample_vocab(
            conn, edge.ref_schema, edge.ref_table, edge.ref_column, label, max_vocab,
            description_column=description,
        )
        if sample:
            col.vocab_sample = sample
            col.vocab_origin = VocabOrigin.FOREIGN_KEY
        else:
            logger.debug("empty vocabulary sample from %s for %s", col.vocabulary_relation, col.column_name)
    return cols


def _unquote(value: str) -> str:
    return value.replace("''", "'")


def parse_in_list_values(values: str) -> List[str]:
    """Values of an ``IN (...)`` list; quoted strings win over bare tokens."""
    quoted = [_unquote(v) for v in _QUOTED_VALUE_RE.findall(values)]
    if quoted:
        return quoted
    bare = [v.strip() for v in values.split(",")]
    return [v for v in bare if v]


def _column_pattern(column: str) -> str:
    return r'(?<![\w$])[\["`]?' + re.escape(column) + r'[\]"`]?(?![\w$])'


def parse_check_constraint_values(definition: str, column: str) -> List[str]:
    """Allowed values for ``column`` from a CHECK constraint definition.

    Handles ``col IN (...)``, ``col = ANY (ARRAY[...])`` and chains of
    ``col = 'x' OR col = 'y'``. Returns an empty list when nothing matches.
    """
    # PostgreSQL renders varchar comparisons as ``((col)::text = ANY (...))``.
    col = _column_pattern(column) + r"\)?(?:::[a-z ]+?)?"
    in_list = re.search(
        col + r"\s*(?:=\s*ANY\s*\(\s*\(?\s*ARRAY\s*\[|IN\s*\()([^)\]]+)[)\]]",
        definition,
        re.IGNORECASE,
    )
    if in_list:
        return parse_in_list_values(in_list.group(1))

    values: List[str] = []
    for match in re.finditer(col + r"\s*=\s*'((?:[^']|'')*)'", definition, re.IGNORECASE):
        value = _unquote(match.group(1))
        if value not in values:
            values.append(value)
    return values


def parse_enum_literal(type_text: str) -> List[str]:
    """Members of an inline ``enum('a','b')``/``ENUM('a', 'b')``/``set(...)`` type."""
    match = re.match(r"^\s*(?:enum|set)\s*\((.*)\)\s*$", type_text or "", re.IGNORECASE | re.DOTALL)
    if match is None:
        return []
    return [_unquote(v) for v in _QUOTED_VALUE_RE.findall(match.group(1))]


def values_to_sample(values: Iterable[Any]) -> List[Dict[str, Any]]:
    return [{"code": value} for value in values]
