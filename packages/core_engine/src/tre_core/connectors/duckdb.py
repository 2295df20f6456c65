"""DuckDB dialect using the duckdb_* catalog table functions."""

from __future__ import annotations

import logging
import re
from typing import Any, Dict, List, Sequence, Tuple

from tre_core.connectors.base import BaseDialect, ConnectionConfig, Relation
from tre_core.model import ColumnInfo, ColumnMeta, ForeignKeyEdge, ValueType
from tre_core.sqltext import strip_identifier_quotes
from tre_core.vocabulary import parse_enum_literal

logger = logging.getLogger(__name__)

# Distinct-value scans over enum columns are skipped above this many rows.
ENUM_SCAN_MAX_ROWS = 500_000

_FK_TEXT_RE = re.compile(
    r'FOREIGN\s+KEY\s*\(([^)]*)\)\s*REFERENCES\s+((?:"[^"]+"|\w+)(?:\.(?:"[^"]+"|\w+))?)\s*\(([^)]*)\)',
    re.IGNORECASE,
)

_SCHEMA_FILTER = "table_name = ? AND (schema_name = ? OR (? = '' AND schema_name = current_schema()))"


def _split_names(text: str) -> List[str]:
    return [strip_identifier_quotes(p.strip()) for p in text.split(",") if p.strip()]


class DuckDBDialect(BaseDialect):
    name = "duckdb"
    display_name = "DuckDB"
    required_package = "duckdb"
    category_prefixes = ("enum",)

    integer_types = frozenset({
        "integer", "int", "int1", "int2", "int4", "int8", "bigint", "smallint", "tinyint",
        "hugeint", "uhugeint", "ubigint", "uinteger", "usmallint", "utinyint", "long", "short",
    })
    float_types = frozenset({"float", "float4", "float8", "double", "real", "decimal", "numeric"})
    datetime_types = frozenset({
        "timestamp", "timestamptz", "datetime", "timestamp with time zone",
        "timestamp_s", "timestamp_ms", "timestamp_ns",
    })
    time_types = frozenset({"time", "timetz", "time with time zone"})

    def connect(self, config: ConnectionConfig) -> Any:
        import duckdb

        return duckdb.connect(
            config.path or config.database or ":memory:",
            read_only=bool(config.extra.get("read_only", False)),
        )

    def _query(self, conn: Any, sql: str, params: Sequence[Any] = ()) -> Tuple[List[str], List[Tuple[Any, ...]]]:
        # DuckDB cursors are separate connections and cannot see temp views.
        result = conn.execute(sql, list(params)) if params else conn.execute(sql)
        if result.description is None:
            return [], []
        columns = [d[0] for d in result.description]
        return columns, [tuple(row) for row in result.fetchall()]

    def _records(self, conn: Any, sql: str, params: Sequence[Any] = ()) -> List[Dict[str, Any]]:
        columns, rows = self._query(conn, sql, params)
        return [dict(zip(columns, row)) for row in rows]

    def make_temp_view(self, conn: Any, sql: str) -> str:
        name = self._temp_name()
        self._execute(conn, f"CREATE TEMP VIEW {self.quote_identifier(name)} AS {sql.strip().rstrip(';')}")
        return name

    def _drop_temp_view(self, conn: Any, handle: str) -> None:
        self._execute(conn, f"DROP VIEW IF EXISTS {self.quote_identifier(handle)}")

    def describe_output(self, conn: Any, handle: str) -> List[ColumnInfo]:
        columns: List[ColumnInfo] = []
        for rec in self._records(conn, f"DESCRIBE {self.quote_identifier(handle)}"):
            lowered = {k.lower(): v for k, v in rec.items()}
            name = lowered.get("column_name", lowered.get("name"))
            data_type = lowered.get("column_type", lowered.get("type"))
            if name is None or data_type is None:
                raise ValueError(f"Unexpected DESCRIBE output columns: {sorted(rec)}")
            columns.append(ColumnInfo(name=name, data_type=str(data_type),
                                      nullable=str(lowered.get("null", "YES")).upper() == "YES"))
        return columns

    def _column_descriptions(self, conn: Any, relations: List[Relation]) -> List[Dict[str, Any]]:
        rows: List[Dict[str, Any]] = []
        for schema, table in relations:
            schema = schema or ""
            for rec in self._records(
                conn,
                "SELECT schema_name, table_name, column_name, comment FROM duckdb_columns() "
                f"WHERE {_SCHEMA_FILTER} ORDER BY column_index",
                (table, schema, schema),
            ):
                rows.append({
                    "schema": rec["schema_name"] or "",
                    "table": rec["table_name"],
                    "column": rec["column_name"],
                    "description": rec["comment"] or None,
                })
        return rows

    def _foreign_key_edges(self, conn: Any, relations: List[Relation]) -> List[ForeignKeyEdge]:
        edges: List[ForeignKeyEdge] = []
        for schema, table in relations:
            schema = schema or ""
            for rec in self._records(
                conn,
                f"SELECT * FROM duckdb_constraints() WHERE constraint_type = 'FOREIGN KEY' AND {_SCHEMA_FILTER}",
                (table, schema, schema),
            ):
                edges.extend(self._edges_from_constraint(rec))
        return edges

    def _edges_from_constraint(self, rec: Dict[str, Any]) -> List[ForeignKeyEdge]:
        src_schema = rec.get("schema_name") or ""
        src_table = rec["table_name"]
        src_columns = list(rec.get("constraint_column_names") or [])
        ref_table = rec.get("referenced_table")
        ref_columns = list(rec.get("referenced_column_names") or [])
        ref_schema = src_schema

        if not ref_table or not ref_columns:
            match = _FK_TEXT_RE.search(rec.get("constraint_text") or "")
            if match is None:
                return []
            src_columns = _split_names(match.group(1))
            target = [strip_identifier_quotes(p) for p in re.findall(r'"[^"]+"|\w+', match.group(2))]
            if len(target) == 2:
                ref_schema = target[0]
            ref_table = target[-1]
            ref_columns = _split_names(match.group(3))

        if len(src_columns) != len(ref_columns):
            logger.warning("DuckDB: mismatched foreign key on %s.%s", src_schema, src_table)
            return []
        return [
            ForeignKeyEdge(src_schema, src_table, src, ref_schema, ref_table, ref)
            for src, ref in zip(src_columns, ref_columns)
        ]

    def _table_columns(self, conn: Any, schema: str, table: str) -> List[ColumnInfo]:
        return [
            ColumnInfo(name=rec["column_name"], data_type=rec["data_type"], nullable=bool(rec["is_nullable"]),
                       source_table=table, source_schema=rec["schema_name"])
            for rec in self._records(
                conn,
                "SELECT schema_name, column_name, data_type, is_nullable FROM duckdb_columns() "
                f"WHERE {_SCHEMA_FILTER} ORDER BY column_index",
                (table, schema, schema),
            )
        ]

    def _primary_key_columns(self, conn: Any, schema: str, table: str) -> List[str]:
        keys: List[str] = []
        for rec in self._records(
            conn,
            "SELECT constraint_column_names FROM duckdb_constraints() "
            f"WHERE constraint_type = 'PRIMARY KEY' AND {_SCHEMA_FILTER}",
            (table, schema, schema),
        ):
            keys.extend(rec["constraint_column_names"] or [])
        return keys

    def _check_constraints(self, conn: Any, schema: str, table: str) -> List[str]:
        return [
            rec["constraint_text"]
            for rec in self._records(
                conn,
                "SELECT constraint_text FROM duckdb_constraints() "
                f"WHERE constraint_type = 'CHECK' AND {_SCHEMA_FILTER}",
                (table, schema, schema),
            )
            if rec["constraint_text"]
        ]

    def enum_values(self, conn: Any, col: ColumnMeta) -> List[str]:
        if self.map_native_type(col.data_type) != ValueType.CATEGORY:
            return self._probe(conn, f"enum type {col.data_type}", [], self._named_enum_values, conn, col.data_type)
        values = parse_enum_literal(col.data_type)
        if values:
            return values
        return self._probe(conn, f"distinct values of {col.column_name}", [], self._scan_enum_values, conn, col)

    def _named_enum_values(self, conn: Any, type_name: str) -> List[str]:
        rows = self._rows(
            conn,
            "SELECT 1 FROM duckdb_types() WHERE type_name = ? AND logical_type = 'ENUM' LIMIT 1",
            (type_name,),
        )
        if not rows:
            return []
        rows = self._rows(conn, f"SELECT unnest(enum_range(NULL::{self.quote_identifier(type_name)}))")
        return [str(r[0]) for r in rows]

    def _scan_enum_values(self, conn: Any, col: ColumnMeta) -> List[str]:
        if not col.source_table or not col.base_column:
            return []
        schema = col.source_schema or ""
        if self.table_exceeds_threshold(conn, schema, col.source_table, ENUM_SCAN_MAX_ROWS):
            return []
        column = self.quote_identifier(col.base_column)
        rows = self._rows(
            conn,
            f"SELECT DISTINCT {column} FROM {self.qualify(schema, col.source_table)} "
            f"WHERE {column} IS NOT NULL ORDER BY 1",
        )
        return [str(r[0]) for r in rows]
