"""MySQL / MariaDB dialect using information_schema."""

from __future__ import annotations

from typing import Any, Dict, List

from tre_core.connectors.base import BaseDialect, ConnectionConfig, Relation
from tre_core.model import ColumnInfo, ColumnMeta, ForeignKeyEdge
from tre_core.vocabulary import parse_enum_literal

_SCHEMA_MATCH = "TABLE_SCHEMA = COALESCE(NULLIF(%s, ''), DATABASE())"


class MySQLDialect(BaseDialect):
    name = "mysql"
    display_name = "MySQL / MariaDB"
    required_package = "mysql.connector"
    default_port = 3306
    quote_open = "`"
    quote_close = "`"
    category_prefixes = ("enum", "set(")

    integer_types = frozenset({"int", "integer", "tinyint", "smallint", "mediumint", "bigint", "bit", "year"})
    float_types = frozenset({"float", "double", "double precision", "real", "decimal", "numeric", "dec", "fixed"})
    datetime_types = frozenset({"datetime", "timestamp"})

    def connect(self, config: ConnectionConfig) -> Any:
        import mysql.connector

        return mysql.connector.connect(
            host=config.host,
            port=config.port or self.default_port,
            database=config.database,
            user=config.user,
            password=config.password,
        )

    def make_temp_view(self, conn: Any, sql: str) -> str:
        # MySQL has no temporary views; an empty session-scoped table keeps the output column types.
        name = self._temp_name()
        self._execute(
            conn,
            f"CREATE TEMPORARY TABLE {self.quote_identifier(name)} AS "
            f"SELECT * FROM ({sql.strip().rstrip(';')}) AS _meta_query LIMIT 0",
        )
        return name

    def _drop_temp_view(self, conn: Any, handle: str) -> None:
        self._execute(conn, f"DROP TEMPORARY TABLE IF EXISTS {self.quote_identifier(handle)}")

    def describe_output(self, conn: Any, handle: str) -> List[ColumnInfo]:
        # Temporary tables are not listed in information_schema.COLUMNS.
        rows = self._rows(conn, f"SHOW COLUMNS FROM {self.quote_identifier(handle)}")
        return [ColumnInfo(name=_text(r[0]), data_type=_text(r[1]), nullable=r[2] == "YES") for r in rows]

    def _column_descriptions(self, conn: Any, relations: List[Relation]) -> List[Dict[str, Any]]:
        rows: List[Dict[str, Any]] = []
        for schema, table in relations:
            for row in self._rows(
                conn,
                f"""
                SELECT TABLE_SCHEMA, TABLE_NAME, COLUMN_NAME, COLUMN_COMMENT
                FROM information_schema.COLUMNS
                WHERE TABLE_NAME = %s AND {_SCHEMA_MATCH}
                ORDER BY ORDINAL_POSITION
                """,
                (table, schema or ""),
            ):
                rows.append({"schema": row[0], "table": row[1], "column": row[2], "description": row[3] or None})
        return rows

    def _foreign_key_edges(self, conn: Any, relations: List[Relation]) -> List[ForeignKeyEdge]:
        edges: List[ForeignKeyEdge] = []
        for schema, table in relations:
            for row in self._rows(
                conn,
                f"""
                SELECT TABLE_SCHEMA, TABLE_NAME, COLUMN_NAME,
                       REFERENCED_TABLE_SCHEMA, REFERENCED_TABLE_NAME, REFERENCED_COLUMN_NAME
                FROM information_schema.KEY_COLUMN_USAGE
                WHERE REFERENCED_TABLE_NAME IS NOT NULL
                  AND TABLE_NAME = %s AND {_SCHEMA_MATCH}
                """,
                (table, schema or ""),
            ):
                edges.append(ForeignKeyEdge(*row))
        return edges

    def _table_columns(self, conn: Any, schema: str, table: str) -> List[ColumnInfo]:
        rows = self._rows(
            conn,
            f"""
            SELECT TABLE_SCHEMA, COLUMN_NAME, COLUMN_TYPE, IS_NULLABLE
            FROM information_schema.COLUMNS
            WHERE TABLE_NAME = %s AND {_SCHEMA_MATCH}
            ORDER BY ORDINAL_POSITION
            """,
            (table, schema),
        )
        return [
            ColumnInfo(name=r[1], data_type=_text(r[2]), nullable=r[3] == "YES",
                       source_table=table, source_schema=r[0])
            for r in rows
        ]

    def _primary_key_columns(self, conn: Any, schema: str, table: str) -> List[str]:
        rows = self._rows(
            conn,
            f"""
            SELECT COLUMN_NAME
            FROM information_schema.KEY_COLUMN_USAGE
            WHERE CONSTRAINT_NAME = 'PRIMARY' AND TABLE_NAME = %s AND {_SCHEMA_MATCH}
            ORDER BY ORDINAL_POSITION
            """,
            (table, schema),
        )
        return [r[0] for r in rows]

    def _check_constraints(self, conn: Any, schema: str, table: str) -> List[str]:
        # CHECK_CONSTRAINTS exists from MySQL 8.0.16 / MariaDB 10.2.
        rows = self._rows(
            conn,
            """
            SELECT cc.CHECK_CLAUSE
            FROM information_schema.TABLE_CONSTRAINTS tc
            JOIN information_schema.CHECK_CONSTRAINTS cc
              ON cc.CONSTRAINT_SCHEMA = tc.CONSTRAINT_SCHEMA AND cc.CONSTRAINT_NAME = tc.CONSTRAINT_NAME
            WHERE tc.CONSTRAINT_TYPE = 'CHECK'
              AND tc.TABLE_NAME = %s AND tc.TABLE_SCHEMA = COALESCE(NULLIF(%s, ''), DATABASE())
            """,
            (table, schema),
        )
        return [_text(r[0]) for r in rows if r[0]]

    def enum_values(self, conn: Any, col: ColumnMeta) -> List[str]:
        return parse_enum_literal(col.data_type)


def _text(value: Any) -> str:
    # information_schema columns come back as bytes on some server/driver combinations.
    if isinstance(value, (bytes, bytearray)):
        return value.decode("utf-8")
    return str(value)
