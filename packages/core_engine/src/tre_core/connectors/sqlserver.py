"""SQL Server dialect (also Azure SQL) over pyodbc."""

from __future__ import annotations

import datetime
import decimal
from typing import Any, Dict, List, Tuple

from tre_core.connectors.base import BaseDialect, ConnectionConfig, Relation
from tre_core.model import ColumnInfo, ForeignKeyEdge

_SCHEMA_MATCH = "s.name = COALESCE(NULLIF(?, ''), SCHEMA_NAME())"
_WANTED_SCHEMA = "s.name = COALESCE(NULLIF(w.schema_name, ''), SCHEMA_NAME())"

# pyodbc reports Python types in cursor.description.
_PYTHON_TYPE_NAMES = [
    (bool, "bit"),
    (int, "int"),
    (float, "float"),
    (decimal.Decimal, "decimal"),
    (datetime.datetime, "datetime2"),
    (datetime.date, "date"),
    (datetime.time, "time"),
    (bytes, "varbinary"),
    (bytearray, "varbinary"),
    (str, "nvarchar"),
]


def _type_name_for(type_code: Any) -> str:
    for py_type, sql_name in _PYTHON_TYPE_NAMES:
        if type_code is py_type:
            return sql_name
    return "nvarchar"


def _wanted_relations(relations: List[Relation]) -> Tuple[str, List[str]]:
    """A VALUES table ``w(schema_name, table_name)`` and its parameters."""
    params: List[str] = []
    for schema, table in relations:
        params.extend([schema or "", table])
    values = ", ".join("(?, ?)" for _ in relations)
    return f"(VALUES {values}) AS w(schema_name, table_name)", params


class SQLServerDialect(BaseDialect):
    name = "mssql"
    display_name = "SQL Server"
    required_package = "pyodbc"
    default_port = 1433
    quote_open = "["
    quote_close = "]"

    integer_types = frozenset({"int", "integer", "smallint", "bigint", "tinyint", "bit"})
    float_types = frozenset({"float", "real", "decimal", "numeric", "money", "smallmoney"})
    datetime_types = frozenset({"datetime", "datetime2", "datetimeoffset", "smalldatetime"})

    def _build_conn_string(self, config: ConnectionConfig) -> str:
        if config.connection_string:
            return config.connection_string

        server = config.host or "localhost"
        port = config.port or self.default_port
        if port:
            server = f"{server},{port}"

        driver = config.extra.get("odbc_driver", "ODBC Driver 18 for SQL Server")
        encrypt = str(config.extra.get("encrypt", "yes"))
        trust = str(config.extra.get("trust_server_certificate", "yes"))

        parts = [
            f"DRIVER={{{driver}}}",
            f"SERVER={server}",
            f"DATABASE={config.database or 'master'}",
            f"Encrypt={encrypt}",
            f"TrustServerCertificate={trust}",
            "Connection Timeout=10",
        ]
        if config.user:
            parts.extend([f"UID={config.user}", f"PWD={config.password or ''}"])
        else:
            parts.append("Trusted_Connection=yes")
        return ";".join(parts)

    def connect(self, config: ConnectionConfig) -> Any:
        import pyodbc

        return pyodbc.connect(self._build_conn_string(config), autocommit=True)

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
        sql = f"{keyword} TOP ({int(limit)}) {select_list} FROM {from_clause}"
        if where:
            sql += f" WHERE {where}"
        if order_by:
            sql += f" ORDER BY {order_by}"
        return sql

    def make_temp_view(self, conn: Any, sql: str) -> str:
        # The result set is described from the statement text; no view is created.
        return sql.strip().rstrip(";")

    def describe_output(self, conn: Any, handle: str) -> List[ColumnInfo]:
        columns = self._probe(conn, "first result set description", None, self._describe_first_result_set, conn, handle)
        if columns:
            return columns
        return self._describe_top_zero(conn, handle)

    def _describe_first_result_set(self, conn: Any, sql: str) -> List[ColumnInfo]:
        rows = self._rows(
            conn,
            """
            SELECT name, system_type_name, is_nullable, source_table, source_schema, source_column
            FROM sys.dm_exec_describe_first_result_set(?, NULL, 1)
            WHERE is_hidden = 0
            ORDER BY column_ordinal
            """,
            (sql,),
        )
        return [
            ColumnInfo(name=r[0], data_type=r[1] or "", nullable=bool(r[2]),
                       source_table=r[3], source_schema=r[4], source_column=r[5])
            for r in rows
            if r[0]
        ]

    def _describe_top_zero(self, conn: Any, sql: str) -> List[ColumnInfo]:
        cur = conn.cursor()
        try:
            cur.execute(f"SELECT TOP 0 * FROM ({sql}) AS _meta_query")
            return [
                ColumnInfo(name=d[0], data_type=_type_name_for(d[1]), nullable=bool(d[6]))
                for d in cur.description or []
            ]
        finally:
            cur.close()

    def _column_descriptions(self, conn: Any, relations: List[Relation]) -> List[Dict[str, Any]]:
        wanted, params = _wanted_relations(relations)
        rows = self._rows(
            conn,
            f"""
            SELECT DISTINCT s.name, o.name, c.name, CAST(ep.value AS nvarchar(4000)), c.column_id
            FROM {wanted}
            JOIN sys.objects o ON o.name = w.table_name AND o.type IN ('U', 'V')
            JOIN sys.schemas s
              ON s.schema_id = o.schema_id AND {_WANTED_SCHEMA}
            JOIN sys.columns c ON c.object_id = o.object_id
            LEFT JOIN sys.extended_properties ep
              ON ep.class = 1 AND ep.major_id = c.object_id
             AND ep.minor_id = c.column_id AND ep.name = 'MS_Description'
            ORDER BY s.name, o.name, c.column_id
            """,
            params,
        )
        return [{"schema": r[0], "table": r[1], "column": r[2], "description": r[3]} for r in rows]

    def _foreign_key_edges(self, conn: Any, relations: List[Relation]) -> List[ForeignKeyEdge]:
        wanted, params = _wanted_relations(relations)
        rows = self._rows(
            conn,
            f"""
            SELECT DISTINCT s.name, t.name, pc.name, rs.name, rt.name, rc.name
            FROM {wanted}
            JOIN sys.tables t ON t.name = w.table_name
            JOIN sys.schemas s
              ON s.schema_id = t.schema_id AND {_WANTED_SCHEMA}
            JOIN sys.foreign_key_columns fkc ON fkc.parent_object_id = t.object_id
            JOIN sys.columns pc
              ON pc.object_id = fkc.parent_object_id AND pc.column_id = fkc.parent_column_id
            JOIN sys.tables rt ON rt.object_id = fkc.referenced_object_id
            JOIN sys.schemas rs ON rs.schema_id = rt.schema_id
            JOIN sys.columns rc
              ON rc.object_id = fkc.referenced_object_id AND rc.column_id = fkc.referenced_column_id
            """,
            params,
        )
        return [ForeignKeyEdge(*row) for row in rows]

    def _table_columns(self, conn: Any, schema: str, table: str) -> List[ColumnInfo]:
        rows = self._rows(
            conn,
            """
            SELECT TABLE_SCHEMA, COLUMN_NAME, DATA_TYPE, IS_NULLABLE
            FROM INFORMATION_SCHEMA.COLUMNS
            WHERE TABLE_NAME = ? AND TABLE_SCHEMA = COALESCE(NULLIF(?, ''), SCHEMA_NAME())
            ORDER BY ORDINAL_POSITION
            """,
            (table, schema),
        )
        return [
            ColumnInfo(name=r[1], data_type=r[2], nullable=r[3] == "YES", source_table=table, source_schema=r[0])
            for r in rows
        ]

    def _primary_key_columns(self, conn: Any, schema: str, table: str) -> List[str]:
        rows = self._rows(
            conn,
            """
            SELECT kcu.COLUMN_NAME
            FROM INFORMATION_SCHEMA.TABLE_CONSTRAINTS tc
            JOIN INFORMATION_SCHEMA.KEY_COLUMN_USAGE kcu
              ON tc.CONSTRAINT_NAME = kcu.CONSTRAINT_NAME AND tc.TABLE_SCHEMA = kcu.TABLE_SCHEMA
            WHERE tc.CONSTRAINT_TYPE = 'PRIMARY KEY'
              AND tc.TABLE_NAME = ? AND tc.TABLE_SCHEMA = COALESCE(NULLIF(?, ''), SCHEMA_NAME())
            ORDER BY kcu.ORDINAL_POSITION
            """,
            (table, schema),
        )
        return [r[0] for r in rows]

    def _check_constraints(self, conn: Any, schema: str, table: str) -> List[str]:
        rows = self._rows(
            conn,
            f"""
            SELECT cc.definition
            FROM sys.check_constraints cc
            JOIN sys.tables t ON t.object_id = cc.parent_object_id
            JOIN sys.schemas s ON s.schema_id = t.schema_id
            WHERE t.name = ? AND {_SCHEMA_MATCH}
            """,
            (table, schema),
        )
        return [r[0] for r in rows if r[0]]
