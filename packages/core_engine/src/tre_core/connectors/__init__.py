"""Source database dialects.

Each dialect implements the same interface (``BaseDialect``): materialize a
query as a temporary view, describe its output, read catalog metadata and
sample lookup tables. Dialects are looked up by name through the registry.
"""

from tre_core.connectors.base import (
    BaseDialect,
    ConnectionConfig,
    UnsupportedDialectError,
    get_dialect,
    list_dialects,
    resolve_dialect,
)
from tre_core.connectors.duckdb import DuckDBDialect
from tre_core.connectors.mysql import MySQLDialect
from tre_core.connectors.postgres import PostgresDialect
from tre_core.connectors.sqlite import SQLiteDialect
from tre_core.connectors.sqlserver import SQLServerDialect

__all__ = [
    "BaseDialect",
    "ConnectionConfig",
    "DuckDBDialect",
    "get_dialect",
    "list_dialects",
    "MySQLDialect",
    "PostgresDialect",
    "resolve_dialect",
    "SQLiteDialect",
    "SQLServerDialect",
    "UnsupportedDialectError",
]
