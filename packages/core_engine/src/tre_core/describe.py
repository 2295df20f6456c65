"""Describe a SQL query as a list of ``Variable`` records.

The pipeline materializes the query as a temporary view, asks the engine for
its output columns, maps each column back to a base table, harvests
vocabularies (foreign-key lookup tables, enums, CHECK lists, implicit code
tables) and finally converts everything into ``Variable``/``Vocabulary``
records ready for the metadata store.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Set, Tuple, Union

from tre_core.connectors.base import BaseDialect, ConnectionConfig, Relation, resolve_dialect
from tre_core.model import (
    ColumnInfo,
    ColumnMeta,
    KeyRole,
    ValueType,
    Variable,
    Vocabulary,
    VocabularyItem,
    VocabOrigin,
)
from tre_core.sqltext import extract_projection_names, projection_sources
from tre_core.vocabulary import attach_vocab

logger = logging.getLogger(__name__)

_VOCAB_SUFFIXES = {
    VocabOrigin.FOREIGN_KEY: ("vocabulary", "Vocabulary for {column}"),
    VocabOrigin.CODE_TABLE: ("codes", "Code table values from {relation}"),
    VocabOrigin.ENUM: ("enum", "Enum values for {column}"),
    VocabOrigin.CHECK_CONSTRAINT: ("allowed", "Allowed values for {column}"),
}


@dataclass
class DescribeOptions:
    """Limits applied while sampling vocabularies."""

    max_vocab: int = 200
    vocab_row_threshold: int = 5000

    @classmethod
    def from_config(cls, config: ConnectionConfig) -> "DescribeOptions":
        return cls(max_vocab=config.max_vocab, vocab_row_threshold=config.vocab_row_threshold)


# ---------------------------------------------------------------------------
# Column mapping
# ---------------------------------------------------------------------------

def _initial_meta(info: ColumnInfo) -> ColumnMeta:
    meta = ColumnMeta(column_name=info.name, data_type=info.data_type)
    if info.source_table:
        meta.source_schema = info.source_schema or None
        meta.source_table = info.source_table
        meta.base_column = info.source_column or info.name
    return meta


def filter_to_projection(columns: List[ColumnInfo], sql: str) -> List[ColumnInfo]:
    """Keep only the columns named in the final SELECT list, if it could be read."""
    projected = {name.lower() for name in extract_projection_names(sql)}
    if not projected:
        return columns
    return [c for c in columns if c.name.lower() in projected]


def _relations_by_column(descs: Sequence[Dict[str, Any]]) -> Dict[str, List[Tuple[str, str]]]:
    found: Dict[str, List[Tuple[str, str]]] = {}
    for row in descs:
        relation = (row.get("schema") or "", row["table"])
        bucket = found.setdefault(str(row["column"]).lower(), [])
        if relation not in bucket:
            bucket.append(relation)
    return found


def _lookup_description(
    descs: Sequence[Dict[str, Any]], schema: str, table: str, column: str
) -> Optional[str]:
    for row in descs:
        if (
            (row.get("schema") or "").lower() == schema.lower()
            and str(row["table"]).lower() == table.lower()
            and str(row["column"]).lower() == column.lower()
        ):
            return row.get("description")
    return None


def _assign(col: ColumnMeta, relation: Tuple[str, str], column: str, descs: Sequence[Dict[str, Any]]) -> None:
    schema, table = relation
    col.source_schema = schema or None
    col.source_table = table
    col.base_column = column
    col.description = _lookup_description(descs, schema, table, column)


def map_direct_relations(cols: List[ColumnMeta], descs: Sequence[Dict[str, Any]]) -> List[ColumnMeta]:
    """Assign a base table to columns whose name occurs in exactly one referenced relation."""
    by_column = _relations_by_column(descs)
    for col in cols:
        if col.source_table is not None:
            if col.description is None:
                col.description = _lookup_description(
                    descs, col.source_schema or "", col.source_table, col.base_column or col.column_name
                )
            continue
        candidates = by_column.get(col.column_name.lower(), [])
        if len(candidates) == 1:
            _assign(col, candidates[0], col.column_name, descs)
    return cols


def same_name_fallback(cols: List[ColumnMeta], descs: Sequence[Dict[str, Any]], sql: str) -> List[ColumnMeta]:
    """Map still-unmapped aliased columns through the column they rename.

    ``SELECT o.status AS order_status`` is matched on ``status``. Columns
    found in more than one relation stay unmapped.
    """
    sources = projection_sources(sql)
    by_column = _relations_by_column(descs)
    for col in cols:
        if col.source_table is not None:
            continue
        underlying = sources.get(col.column_name.lower())
        if underlying is None:
            continue
        candidates = by_column.get(underlying.lower(), [])
        if len(candidates) == 1:
            _assign(col, candidates[0], underlying, descs)
        elif len(candidates) > 1:
            logger.debug("column %s is ambiguous across %d relations", col.column_name, len(candidates))
    return cols


def dedupe_by_projection(cols: Sequence[ColumnMeta]) -> List[ColumnMeta]:
    """One row per lower-cased column name: the highest ``score()``, first seen on ties."""
    best: Dict[str, ColumnMeta] = {}
    order: List[str] = []
    for col in cols:
        key = col.column_name.lower()
        if key not in best:
            best[key] = col
            order.append(key)
        elif col.score() > best[key].score():
            best[key] = col
    return [best[key] for key in order]


def _merged_relations(found: Sequence[Relation], cols: Sequence[ColumnMeta]) -> List[Relation]:
    relations = list(found)
    seen: Set[Tuple[str, str]] = {((s or "").lower(), t.lower()) for s, t in relations}
    for col in cols:
        if col.source_table is None:
            continue
        key = ((col.source_schema or "").lower(), col.source_table.lower())
        if key not in seen:
            seen.add(key)
            relations.append((col.source_schema, col.source_table))
    return relations


def describe_query_columns(
    dialect: BaseDialect, conn: Any, sql: str, options: Optional[DescribeOptions] = None
) -> List[ColumnMeta]:
    """Run the full describe pipeline and return one ``ColumnMeta`` per output column."""
    options = options or DescribeOptions()
    handle = dialect.make_temp_view(conn, sql)
    try:
        columns = filter_to_projection(dialect.describe_output(conn, handle), sql)
        cols = [_initial_meta(c) for c in columns]

        relations = _merged_relations(dialect.referenced_relations(conn, handle, sql), cols)
        logger.debug("%s: query references %s", dialect.display_name, relations)
        descs = dialect.load_column_descriptions(conn, relations)

        map_direct_relations(cols, descs)
        same_name_fallback(cols, descs, sql)

        edges = dialect.load_foreign_key_edges(conn, relations)
        attach_vocab(dialect, conn, cols, edges, options.max_vocab, options.vocab_row_threshold)

        cols = dedupe_by_projection(cols)
        return dialect.postprocess_vocab(conn, cols, options.max_vocab)
    finally:
        dialect.drop_temp_view(conn, handle)


# ---------------------------------------------------------------------------
# Variable conversion
# ---------------------------------------------------------------------------

def _as_int(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.strip():
        try:
            return int(value.strip())
        except ValueError:
            return None
    return None


def _text_or_none(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value)
    return text or None


def items_from_sample(sample: Sequence[Dict[str, Any]]) -> List[VocabularyItem]:
    """Turn a standardized sample into vocabulary items.

    Code-only samples number their items 1..n. Otherwise the integer code is
    the item value (1..n when a code is not an integer or values repeat) and
    the label becomes the item ``code``.
    """
    if not sample:
        return []

    if all(set(row) <= {"code"} for row in sample):
        return [VocabularyItem(value=i, code=str(row.get("code"))) for i, row in enumerate(sample, start=1)]

    values = [_as_int(row.get("code")) for row in sample]
    if any(v is None for v in values) or len(set(values)) != len(values):
        values = list(range(1, len(sample) + 1))

    items = []
    for value, row in zip(values, sample):
        label = row.get("label")
        items.append(VocabularyItem(
            value=int(value),
            code=str(label if label is not None else row.get("code")),
            description=_text_or_none(row.get("description")),
        ))
    return items


def build_vocabulary(col: ColumnMeta) -> Optional[Vocabulary]:
    if not col.vocab_sample:
        return None
    suffix, template = _VOCAB_SUFFIXES[col.vocab_origin or VocabOrigin.FOREIGN_KEY]
    return Vocabulary(
        name=f"{col.column_name}_{suffix}",
        description=template.format(column=col.column_name, relation=col.vocabulary_relation),
        items=items_from_sample(col.vocab_sample),
    )


def columns_to_variables(cols: Sequence[ColumnMeta], domain_id: int, dialect: BaseDialect) -> List[Variable]:
    variables = []
    for col in cols:
        vocabulary = build_vocabulary(col)
        value_type = ValueType.CATEGORY if vocabulary else dialect.map_native_type(col.data_type)
        if value_type in (ValueType.CATEGORY, ValueType.MULTIRESPONSE) and vocabulary is None:
            logger.warning("%s is %s but no vocabulary could be attached", col.column_name, value_type.label)
        variables.append(Variable(
            domain_id=domain_id,
            name=col.column_name,
            value_type=value_type,
            keyrole=KeyRole.NONE,
            description=col.description,
            vocabulary=vocabulary,
        ))
    return variables


def describe_query_variables(
    dialect: Union[BaseDialect, str],
    conn: Any,
    sql: str,
    domain_id: int,
    options: Optional[DescribeOptions] = None,
) -> List[Variable]:
    """Describe ``sql`` on ``conn`` and return one ``Variable`` per projected column."""
    if isinstance(dialect, str):
        dialect = resolve_dialect(dialect)
    cols = describe_query_columns(dialect, conn, sql, options)
    variables = columns_to_variables(cols, domain_id, dialect)
    logger.info("%s: described %d variables", dialect.display_name, len(variables))
    return variables


def describe_sql(
    conn: Any, sql: str, domain_id: int, dialect_name: str, options: Optional[DescribeOptions] = None
) -> List[Variable]:
    return describe_query_variables(resolve_dialect(dialect_name), conn, sql, domain_id, options)
