"""Base dialect interface and registry for source database dialects.

A dialect knows how to describe a query's output on one engine, how to
read the engine's catalogs (comments, foreign keys, enums, CHECK
constraints) and how to sample lookup tables. Every catalog read goes
through ``_probe`` so a failing probe degrades to an empty result instead of
aborting the describe call.
"""

from __future__ import annotations

import logging
import re
import uuid
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, FrozenSet, Iterator, List, Optional, Sequence, Tuple, TypeVar

from tre_core.classifier import is_code_table
from tre_core.model import ColumnInfo, ColumnMeta, ForeignKeyEdge, ValueType, VocabOrigin, relation_key
from tre_core.sqltext import scan_relations
from tre_core.vocabulary import (
    choose_vocab_columns,
    parse_check_constraint_values,
    standardize_sample,
    values_to_sample,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

Relation = Tuple[Optional[str], str]


class UnsupportedDialectError(ValueError):
    """Raised for a dialect name outside the supported set."""


@dataclass
class ConnectionConfig:
    """Connection settings for a source database."""

    dialect: str
    host: str = ""
    port: int = 0
    database: str = ""
    schema: str = ""
    user: str = ""
    password: str = ""
    path: str = ""
    connection_string: str = ""
    max_vocab: int = 200
    vocab_row_threshold: int = 5000
    extra: Dict[str, Any] = field(default_factory=dict)


def normalize_type_name(raw: str) -> str:
    """Lower-case a native type and drop precision/length and MySQL modifiers."""
    text = (raw or "").strip().lower()
    text = re.sub(r"\([^)]*\)", " ", text)
    text = re.sub(r"\b(unsigned|signed|zerofill)\b", " ", text)
    return re.sub(r"\s+", " ", text).strip()


def _attach_sample(col: ColumnMeta, sample: List[Dict[str, Any]], origin: VocabOrigin) -> None:
    col.vocab_sample = sample
    col.vocab_origin = origin
    col.vocab_skipped = False


class BaseDialect(ABC):
    """Abstract base class for all source database dialects."""

    name: str = ""
    display_name: str = ""
    required_package: str = ""
    default_port: int = 0
    quote_open: str = '"'
    quote_close: str = '"'

    integer_types: FrozenSet[str] = frozenset()
    float_types: FrozenSet[str] = frozenset()
    date_types: FrozenSet[str] = frozenset({"date"})
    datetime_types: FrozenSet[str] = frozenset()
    time_types: FrozenSet[str] = frozenset({"time"})
    category_prefixes: Tuple[str, ...] = ()

    # ------------------------------------------------------------------
    # Connection
    # ------------------------------------------------------------------

    @abstractmethod
    def connect(self, config: ConnectionConfig) -> Any:
        """Open a DB-API connection for ``config``."""

    def test_connection(self, config: ConnectionConfig) -> Tuple[bool, str]:
        try:
            conn = self.connect(config)
            conn.close()
            return True, "Connection successful"
        except ImportError:
            return False, f"{self.required_package} not installed. Run: pip install {self.required_package}"
        except Exception as e:
            return False, f"Connection failed: {e}"

    def check_driver(self) -> Tuple[bool, str]:
        """Check if the required Python driver package is installed."""
        if not self.required_package:
            return True, "No driver required"
        try:
            __import__(self.required_package)
            return True, f"{self.required_package} is installed"
        except ImportError:
            return False, f"Missing driver: pip install {self.required_package}"

    # ------------------------------------------------------------------
    # Query helpers
    # ------------------------------------------------------------------

    def _query(self, conn: Any, sql: str, params: Sequence[Any] = ()) -> Tuple[List[str], List[Tuple[Any, ...]]]:
        cur = conn.cursor()
        try:
            if params:
                cur.execute(sql, tuple(params))
            else:
                cur.execute(sql)
            if cur.description is None:
                return [], []
            columns = [d[0] for d in cur.description]
            return columns, [tuple(row) for row in cur.fetchall()]
        finally:
            cur.close()

    def _rows(self, conn: Any, sql: str, params: Sequence[Any] = ()) -> List[Tuple[Any, ...]]:
        return self._query(conn, sql, params)[1]

    def _execute(self, conn: Any, sql: str) -> None:
        self._query(conn, sql)

    @contextmanager
    def _probe_scope(self, conn: Any) -> Iterator[None]:
        yield

    def _probe(self, conn: Any, what: str, default: T, func: Callable[..., T], *args: Any) -> T:
        try:
            with self._probe_scope(conn):
                return func(*args)
        except Exception as exc:
            logger.warning("%s: %s probe failed: %s", self.display_name, what, exc)
            return default

    def _temp_name(self) -> str:
        return f"_tmp_meta_view_{uuid.uuid4().hex[:12]}"

    # ------------------------------------------------------------------
    # Query description
    # ------------------------------------------------------------------

    @abstractmethod
    def make_temp_view(self, conn: Any, sql: str) -> str:
        """Materialize ``sql`` as a uniquely named view and return its handle."""

    def drop_temp_view(self, conn: Any, handle: str) -> None:
        self._probe(conn, f"drop of {handle}", None, self._drop_temp_view, conn, handle)

    def _drop_temp_view(self, conn: Any, handle: str) -> None:
        pass

    @abstractmethod
    def describe_output(self, conn: Any, handle: str) -> List[ColumnInfo]:
        """Output columns of the view in projection order."""

    def referenced_relations(self, conn: Any, handle: str, sql: str) -> List[Relation]:
        return scan_relations(sql)

    def load_column_descriptions(self, conn: Any, relations: Sequence[Relation]) -> List[Dict[str, Any]]:
        """Rows ``{schema, table, column, description}`` for every column of ``relations``."""
        if not relations:
            return []
        return self._probe(conn, "column descriptions", [], self._column_descriptions, conn, list(relations))

    def _column_descriptions(self, conn: Any, relations: List[Relation]) -> List[Dict[str, Any]]:
        rows: List[Dict[str, Any]] = []
        for schema, table in relations:
            for col in self._table_columns(conn, schema or "", table):
                rows.append({"schema": schema or "", "table": table, "column": col.name, "description": None})
        return rows

    def load_foreign_key_edges(self, conn: Any, relations: Sequence[Relation]) -> List[ForeignKeyEdge]:
        if not relations:
            return []
        return self._probe(conn, "foreign keys", [], self._foreign_key_edges, conn, list(relations))

    def _foreign_key_edges(self, conn: Any, relations: List[Relation]) -> List[ForeignKeyEdge]:
        return []

    # ------------------------------------------------------------------
    # Table inspection
    # ------------------------------------------------------------------

    def quote_identifier(self, name: str) -> str:
        escaped = name.replace(self.quote_close, self.quote_close * 2)
        return f"{self.quote_open}{escaped}{self.quote_close}"

    def qualify(self, schema: Optional[str], table: str) -> str:
        if not schema:
            return self.quote_identifier(table)
        return f"{self.quote_identifier(schema)}.{self.quote_identifier(table)}"

    def _limit_sql(
        self,
        select_list: str,
        from_clause: str,
        order_by: str,
        limit: int,
        where: str = "",
        distinct: bool = False,
    ) -> str:
        keyword = "SELECT DISTINCT" if distinct else "SELECT"
        sql = f"{keyword} {select_list} FROM {from_clause}"
        if where:
            sql += f" WHERE {where}"
        if order_by:
            sql += f" ORDER BY {order_by}"
        return f"{sql} LIMIT {int(limit)}"

    def table_exceeds_threshold(self, conn: Any, schema: str, table: str, threshold: int) -> bool:
        """True when ``table`` holds more than ``threshold`` rows, or cannot be counted."""
        return self._probe(conn, f"row count of {relation_key(schema, table)}", True,
                           self._exceeds_threshold, conn, schema, table, threshold)

    def _exceeds_threshold(self, conn: Any, schema: str, table: str, threshold: int) -> bool:
        inner = self._limit_sql("1 AS x", self.qualify(schema, table), "", threshold + 1)
        rows = self._rows(conn, f"SELECT COUNT(*) FROM ({inner}) AS _tre_probe")
        return int(rows[0][0]) > threshold

    def table_columns(self, conn: Any, schema: str, table: str) -> List[ColumnInfo]:
        return self._probe(conn, f"columns of {relation_key(schema, table)}", [],
                           self._table_columns, conn, schema, table)

    def _table_columns(self, conn: Any, schema: str, table: str) -> List[ColumnInfo]:
        return []

    def table_exists(self, conn: Any, schema: str, table: str) -> bool:
        return bool(self.table_columns(conn, schema, table))

    def table_has_primary_key(self, conn: Any, schema: str, table: str, column: str) -> bool:
        keys = self._probe(conn, f"primary key of {relation_key(schema, table)}", [],
                           self._primary_key_columns, conn, schema, table)
        return column.lower() in {k.lower() for k in keys}

    def _primary_key_columns(self, conn: Any, schema: str, table: str) -> List[str]:
        return []

    def pick_label_column(self, conn: Any, schema: str, table: str) -> Optional[str]:
        """A text column named like a label, else the first text column."""
        text_columns = [
            c.name for c in self.table_columns(conn, schema, table)
            if self.map_native_type(c.data_type) == ValueType.STRING
        ]
        for name in text_columns:
            if name.lower() in ("label", "name", "title", "desc", "description"):
                return name
        return text_columns[0] if text_columns else None

    def sample_vocab(
        self,
        conn: Any,
        schema: str,
        table: str,
        code_column: str,
        label_column: Optional[str],
        max_rows: int,
        description_column: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        """Up to ``max_rows`` rows of ``code``/``label``/``description`` ordered by code."""
        return self._probe(conn, f"vocabulary sample of {relation_key(schema, table)}", [],
                           self._sample_vocab, conn, schema, table, code_column,
                           label_column, max_rows, description_column)

    def _sample_vocab(
        self,
        conn: Any,
        schema: str,
        table: str,
        code_column: str,
        label_column: Optional[str],
        max_rows: int,
        description_column: Optional[str],
    ) -> List[Dict[str, Any]]:
        selected = [code_column]
        if label_column:
            selected.append(label_column)
            if description_column and description_column != label_column:
                selected.append(description_column)
        select_list = ", ".join(self.quote_identifier(c) for c in selected)
        code = self.quote_identifier(code_column)
        sql = self._limit_sql(select_list, self.qualify(schema, table), code, max_rows,
                              where=f"{code} IS NOT NULL", distinct=True)
        columns, rows = self._query(conn, sql)
        return standardize_sample(columns or selected, rows)

    # ------------------------------------------------------------------
    # Enum and CHECK harvesting
    # ------------------------------------------------------------------

    def enum_values(self, conn: Any, col: ColumnMeta) -> List[str]:
        """Members of the column's native enum type, in declaration order."""
        return []

    def check_constraint_definitions(self, conn: Any, schema: str, table: str) -> List[str]:
        return self._probe(conn, f"check constraints of {relation_key(schema, table)}", [],
                           self._check_constraints, conn, schema, table)

    def _check_constraints(self, conn: Any, schema: str, table: str) -> List[str]:
        return []

    def postprocess_vocab(self, conn: Any, cols: List[ColumnMeta], max_vocab: int = 200) -> List[ColumnMeta]:
        """Fill vocabularies from enums, CHECK lists and implicit code tables.

        Columns that already carry a sample are left untouched, so running
        this twice changes nothing.
        """
        for col in cols:
            if col.vocab_sample:
                continue

            values = self.enum_values(conn, col)
            if values:
                _attach_sample(col, values_to_sample(values[:max_vocab]), VocabOrigin.ENUM)
                continue

            value_type = self.map_native_type(col.data_type)
            if value_type == ValueType.STRING and col.source_table and col.base_column:
                allowed = self._check_values(conn, col)
                if allowed:
                    _attach_sample(col, values_to_sample(allowed[:max_vocab]), VocabOrigin.CHECK_CONSTRAINT)
                    continue

            if value_type == ValueType.INTEGER and col.vocabulary_relation is None:
                self._attach_code_table(conn, col, max_vocab)
        return cols

    def _check_values(self, conn: Any, col: ColumnMeta) -> List[str]:
        for definition in self.check_constraint_definitions(conn, col.source_schema or "", col.source_table or ""):
            values = parse_check_constraint_values(definition, col.base_column or col.column_name)
            if values:
                return values
        return []

    def _attach_code_table(self, conn: Any, col: ColumnMeta, max_vocab: int) -> None:
        table = col.base_column or col.column_name
        schema = col.source_schema or ""
        if not self.table_exists(conn, schema, table):
            return
        if not is_code_table(self, conn, schema, table, table):
            return
        label, description = choose_vocab_columns(self, conn, schema, table, table)
        if label is None:
            return
        sample = self.sample_vocab(conn, schema, table, table, label, max_vocab, description_column=description)
        if sample:
            col.vocabulary_relation = relation_key(schema, table)
            col.code_column = table
            col.label_column = label
            _attach_sample(col, sample, VocabOrigin.CODE_TABLE)

    # ------------------------------------------------------------------
    # Types
    # ------------------------------------------------------------------

    def map_native_type(self, raw: str) -> ValueType:
        lowered = (raw or "").strip().lower()
        if self.category_prefixes and lowered.startswith(self.category_prefixes):
            return ValueType.CATEGORY
        base = normalize_type_name(raw)
        if base in self.integer_types:
            return ValueType.INTEGER
        if base in self.float_types:
            return ValueType.FLOAT
        if base in self.datetime_types:
            return ValueType.DATETIME
        if base in self.date_types:
            return ValueType.DATE
        if base in self.time_types:
            return ValueType.TIME
        return ValueType.STRING


# ---------------------------------------------------------------------------
# Dialect registry
# ---------------------------------------------------------------------------

_REGISTRY: Dict[str, BaseDialect] = {}


def _register(dialect: BaseDialect) -> None:
    _REGISTRY[dialect.name] = dialect


def get_dialect(name: str) -> Optional[BaseDialect]:
    """Get a dialect by registry name, case-insensitively."""
    return _REGISTRY.get((name or "").lower())


def resolve_dialect(name: str) -> BaseDialect:
    """Like ``get_dialect`` but raises ``UnsupportedDialectError`` for unknown names."""
    dialect = get_dialect(name)
    if dialect is None:
        supported = ", ".join(sorted(_REGISTRY))
        raise UnsupportedDialectError(f"Unsupported database dialect: {name}. Supported: {supported}")
    return dialect


def list_dialects() -> List[Dict[str, Any]]:
    """List all registered dialects."""
    result = []
    for name, dialect in sorted(_REGISTRY.items()):
        ok, msg = dialect.check_driver()
        result.append({
            "type": name,
            "name": dialect.display_name,
            "driver": dialect.required_package or "none",
            "installed": ok,
            "status": msg,
        })
    return result


def register_all() -> None:
    """Register all built-in dialects."""
    from tre_core.connectors.duckdb import DuckDBDialect
    from tre_core.connectors.mysql import MySQLDialect
    from tre_core.connectors.postgres import PostgresDialect
    from tre_core.connectors.sqlite import SQLiteDialect
    from tre_core.connectors.sqlserver import SQLServerDialect

    for cls in [
        PostgresDialect,
        MySQLDialect,
        SQLServerDialect,
        SQLiteDialect,
        DuckDBDialect,
    ]:
        _register(cls())


register_all()
