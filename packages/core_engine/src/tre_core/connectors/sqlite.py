"""SQLite dialect using PRAGMA introspection."""

from __future__ import annotations

import re
from typing import Any, List, Optional

from tre_core.connectors.base import BaseDialect, ConnectionConfig, Relation
from tre_core.model import ColumnInfo, ForeignKeyEdge, ValueType


class SQLiteDialect(BaseDialect):
    name = "sqlite"
    display_name = "SQLite"
    required_package = "sqlite3"

    def connect(self, config: ConnectionConfig) -> Any:
        import sqlite3

        return sqlite3.connect(config.path or config.database or ":memory:")

    def _pragma(self, schema: Optional[str], pragma: str, table: str) -> str:
        prefix = f"{self.quote_identifier(schema)}." if schema else ""
        return f"PRAGMA {prefix}{pragma}({self.quote_identifier(table)})"

    def make_temp_view(self, conn: Any, sql: str) -> str:
        name = self._temp_name()
        self._execute(conn, f"CREATE TEMP VIEW {self.quote_identifier(name)} AS {sql.strip().rstrip(';')}")
        return name

    def _drop_temp_view(self, conn: Any, handle: str) -> None:
        self._execute(conn, f"DROP VIEW IF EXISTS temp.{self.quote_identifier(handle)}")

    def describe_output(self, conn: Any, handle: str) -> List[ColumnInfo]:
        return [
            ColumnInfo(name=row[1], data_type=row[2] or "", nullable=row[3] == 0)
            for row in self._rows(conn, self._pragma("temp", "table_info", handle))
        ]

    def _table_columns(self, conn: Any, schema: str, table: str) -> List[ColumnInfo]:
        return [
            ColumnInfo(name=row[1], data_type=row[2] or "", nullable=row[3] == 0,
                       source_table=table, source_schema=schema or None)
            for row in self._rows(conn, self._pragma(schema, "table_info", table))
        ]

    def _primary_key_columns(self, conn: Any, schema: str, table: str) -> List[str]:
        rows = self._rows(conn, self._pragma(schema, "table_info", table))
        return [row[1] for row in sorted(rows, key=lambda r: r[5]) if row[5] > 0]

    def _foreign_key_edges(self, conn: Any, relations: List[Relation]) -> List[ForeignKeyEdge]:
        edges: List[ForeignKeyEdge] = []
        for schema, table in relations:
            # id, seq, table, from, to, on_update, on_delete, match
            for row in self._rows(conn, self._pragma(schema, "foreign_key_list", table)):
                ref_table, src_column, ref_column = row[2], row[3], row[4]
                if ref_column is None:
                    keys = self._primary_key_columns(conn, schema or "", ref_table)
                    if len(keys) != 1:
                        continue
                    ref_column = keys[0]
                edges.append(ForeignKeyEdge(
                    schema=schema or "",
                    table=table,
                    column=src_column,
                    ref_schema=schema or "",
                    ref_table=ref_table,
                    ref_column=ref_column,
                ))
        return edges

    def _check_constraints(self, conn: Any, schema: str, table: str) -> List[str]:
        master = f"{self.quote_identifier(schema)}.sqlite_master" if schema else "sqlite_master"
        rows = self._rows(conn, f"SELECT sql FROM {master} WHERE type = 'table' AND name = ?", (table,))
        definitions: List[str] = []
        for (ddl,) in rows:
            if ddl:
                definitions.extend(_check_clauses(ddl))
        return definitions

    def map_native_type(self, raw: str) -> ValueType:
        # Declared types follow SQLite's affinity rules.
        text = (raw or "").lower()
        if "int" in text:
            return ValueType.INTEGER
        if re.search(r"real|floa|doub", text):
            return ValueType.FLOAT
        if re.search(r"datetime|timestamp", text):
            return ValueType.DATETIME
        if text.strip() == "date":
            return ValueType.DATE
        if text.strip() == "time":
            return ValueType.TIME
        return ValueType.STRING


def _check_clauses(ddl: str) -> List[str]:
    """Bodies of every ``CHECK (...)`` clause in a CREATE TABLE statement."""
    clauses: List[str] = []
    for match in re.finditer(r"\bcheck\s*\(", ddl, re.IGNORECASE):
        depth = 1
        i = match.end()
        while i < len(ddl) and depth > 0:
            if ddl[i] == "(":
                depth += 1
            elif ddl[i] == ")":
                depth -= 1
            i += 1
        clauses.append(ddl[match.end():i - 1])
    return clauses
