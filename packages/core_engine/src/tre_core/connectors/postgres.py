"""PostgreSQL dialect: information_schema plus pg_catalog for comments, enums and CHECKs."""

from __future__ import annotations

from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Tuple

from tre_core.connectors.base import BaseDialect, ConnectionConfig, Relation, normalize_type_name
from tre_core.model import ColumnInfo, ColumnMeta, ForeignKeyEdge, ValueType

# Bare table names resolve through the session search_path.
_SCHEMA_MATCH = "(%(col)s = %%s OR (%%s = '' AND %(col)s = ANY (current_schemas(false))))"

# Relations are passed as two parallel text arrays.
_WANTED_CTE = (
    "WITH wanted AS (SELECT DISTINCT * FROM unnest(%s::text[], %s::text[]) AS w(schema_name, table_name))"
)
_WANTED_SCHEMA = (
    "(n.nspname = w.schema_name OR (w.schema_name = '' AND n.nspname = ANY (current_schemas(false))))"
)

_BUILTIN_TEXT_TYPES = frozenset({
    "text", "character varying", "varchar", "character", "char", "bpchar", "name", "citext",
    "uuid", "json", "jsonb", "xml", "bytea", "boolean", "bool", "inet", "cidr", "macaddr",
    "interval", "tsvector", "tsquery", "bit", "bit varying", "point", "line", "polygon",
})


def _schema_match(column: str) -> str:
    return _SCHEMA_MATCH % {"col": column}


def _wanted_params(relations: List[Relation]) -> Tuple[List[str], List[str]]:
    return [schema or "" for schema, _ in relations], [table for _, table in relations]


class PostgresDialect(BaseDialect):
    name = "postgresql"
    display_name = "PostgreSQL"
    required_package = "psycopg2"
    default_port = 5432

    integer_types = frozenset({
        "int", "integer", "smallint", "bigint", "int2", "int4", "int8",
        "serial", "bigserial", "smallserial", "serial4", "serial8", "oid",
    })
    float_types = frozenset({"float4", "float8", "real", "double precision", "numeric", "decimal", "money"})
    datetime_types = frozenset({
        "timestamp", "timestamptz", "timestamp without time zone", "timestamp with time zone",
    })
    time_types = frozenset({"time", "timetz", "time without time zone", "time with time zone"})

    def connect(self, config: ConnectionConfig) -> Any:
        import psycopg2

        if config.connection_string:
            return psycopg2.connect(config.connection_string)
        return psycopg2.connect(
            host=config.host,
            port=config.port or self.default_port,
            dbname=config.database,
            user=config.user,
            password=config.password,
        )

    @contextmanager
    def _probe_scope(self, conn: Any) -> Iterator[None]:
        # A failed statement aborts the whole transaction unless it ran under a savepoint.
        if getattr(conn, "autocommit", True):
            yield
            return
        cur = conn.cursor()
        try:
            cur.execute("SAVEPOINT tre_probe")
            try:
                yield
            except Exception:
                cur.execute("ROLLBACK TO SAVEPOINT tre_probe")
                raise
            cur.execute("RELEASE SAVEPOINT tre_probe")
        finally:
            cur.close()

    def make_temp_view(self, conn: Any, sql: str) -> str:
        name = self._temp_name()
        self._execute(conn, f"CREATE TEMP VIEW {self.quote_identifier(name)} AS {sql.strip().rstrip(';')}")
        return name

    def _drop_temp_view(self, conn: Any, handle: str) -> None:
        self._execute(conn, f"DROP VIEW IF EXISTS {self.quote_identifier(handle)}")

    def describe_output(self, conn: Any, handle: str) -> List[ColumnInfo]:
        rows = self._rows(
            conn,
            """
            SELECT column_name, data_type, udt_name, is_nullable
            FROM information_schema.columns
            WHERE table_name = %s AND table_schema = pg_my_temp_schema()::regnamespace::text
            ORDER BY ordinal_position
            """,
            (handle,),
        )
        return [
            ColumnInfo(name=name, data_type=udt if data_type in ("USER-DEFINED", "ARRAY") else data_type,
                       nullable=nullable == "YES")
            for name, data_type, udt, nullable in rows
        ]

    def _column_descriptions(self, conn: Any, relations: List[Relation]) -> List[Dict[str, Any]]:
        rows = self._rows(
            conn,
            f"""
            {_WANTED_CTE}
            SELECT n.nspname, cls.relname, a.attname, col_description(cls.oid, a.attnum)
            FROM wanted w
            JOIN pg_catalog.pg_class cls ON cls.relname = w.table_name
            JOIN pg_catalog.pg_namespace n ON n.oid = cls.relnamespace
            JOIN pg_catalog.pg_attribute a
              ON a.attrelid = cls.oid AND a.attnum > 0 AND NOT a.attisdropped
            WHERE cls.relkind IN ('r', 'v', 'm', 'p', 'f') AND {_WANTED_SCHEMA}
            ORDER BY n.nspname, cls.relname, a.attnum
            """,
            _wanted_params(relations),
        )
        return [{"schema": r[0], "table": r[1], "column": r[2], "description": r[3]} for r in rows]

    def _foreign_key_edges(self, conn: Any, relations: List[Relation]) -> List[ForeignKeyEdge]:
        # conkey and confkey are parallel arrays; unnesting them together pairs composite key columns.
        rows = self._rows(
            conn,
            f"""
            {_WANTED_CTE}
            SELECT n.nspname, cls.relname, la.attname, rn.nspname, rcls.relname, ra.attname
            FROM wanted w
            JOIN pg_catalog.pg_class cls ON cls.relname = w.table_name
            JOIN pg_catalog.pg_namespace n ON n.oid = cls.relnamespace
            JOIN pg_catalog.pg_constraint con ON con.conrelid = cls.oid AND con.contype = 'f'
            CROSS JOIN LATERAL unnest(con.conkey, con.confkey) WITH ORDINALITY AS k(local_attnum, ref_attnum, ord)
            JOIN pg_catalog.pg_attribute la ON la.attrelid = con.conrelid AND la.attnum = k.local_attnum
            JOIN pg_catalog.pg_class rcls ON rcls.oid = con.confrelid
            JOIN pg_catalog.pg_namespace rn ON rn.oid = rcls.relnamespace
            JOIN pg_catalog.pg_attribute ra ON ra.attrelid = con.confrelid AND ra.attnum = k.ref_attnum
            WHERE {_WANTED_SCHEMA}
            ORDER BY n.nspname, cls.relname, con.conname, k.ord
            """,
            _wanted_params(relations),
        )
        return [ForeignKeyEdge(*row) for row in rows]

    def _table_columns(self, conn: Any, schema: str, table: str) -> List[ColumnInfo]:
        rows = self._rows(
            conn,
            f"""
            SELECT table_schema, column_name, data_type, udt_name, is_nullable
            FROM information_schema.columns
            WHERE table_name = %s AND {_schema_match("table_schema")}
            ORDER BY ordinal_position
            """,
            (table, schema, schema),
        )
        return [
            ColumnInfo(name=name, data_type=udt if data_type in ("USER-DEFINED", "ARRAY") else data_type,
                       nullable=nullable == "YES", source_table=table, source_schema=table_schema)
            for table_schema, name, data_type, udt, nullable in rows
        ]

    def _primary_key_columns(self, conn: Any, schema: str, table: str) -> List[str]:
        rows = self._rows(
            conn,
            f"""
            SELECT kcu.column_name
            FROM information_schema.table_constraints tc
            JOIN information_schema.key_column_usage kcu
              ON tc.constraint_name = kcu.constraint_name AND tc.table_schema = kcu.table_schema
            WHERE tc.constraint_type = 'PRIMARY KEY'
              AND tc.table_name = %s AND {_schema_match("tc.table_schema")}
            ORDER BY kcu.ordinal_position
            """,
            (table, schema, schema),
        )
        return [r[0] for r in rows]

    def _check_constraints(self, conn: Any, schema: str, table: str) -> List[str]:
        rows = self._rows(
            conn,
            f"""
            SELECT pg_get_constraintdef(con.oid)
            FROM pg_catalog.pg_constraint con
            JOIN pg_catalog.pg_class cls ON con.conrelid = cls.oid
            JOIN pg_catalog.pg_namespace n ON n.oid = cls.relnamespace
            WHERE con.contype = 'c' AND cls.relname = %s AND {_schema_match("n.nspname")}
            """,
            (table, schema, schema),
        )
        return [r[0] for r in rows if r[0]]

    def enum_values(self, conn: Any, col: ColumnMeta) -> List[str]:
        type_name = (col.data_type or "").strip()
        base = normalize_type_name(type_name)
        if not type_name or base in _BUILTIN_TEXT_TYPES or self.map_native_type(type_name) != ValueType.STRING:
            return []
        return self._probe(conn, f"enum type {type_name}", [], self._enum_labels, conn, type_name)

    def _enum_labels(self, conn: Any, type_name: str) -> List[str]:
        rows = self._rows(
            conn,
            """
            SELECT e.enumlabel
            FROM pg_catalog.pg_type t
            JOIN pg_catalog.pg_enum e ON e.enumtypid = t.oid
            WHERE t.typname = %s AND t.typtype = 'e'
            ORDER BY e.enumsortorder
            """,
            (type_name,),
        )
        return [r[0] for r in rows]
