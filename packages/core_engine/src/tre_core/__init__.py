from tre_core.connectors.base import (
    BaseDialect,
    ConnectionConfig,
    UnsupportedDialectError,
    get_dialect,
    list_dialects,
    resolve_dialect,
)
from tre_core.describe import (
    DescribeOptions,
    columns_to_variables,
    describe_query_columns,
    describe_query_variables,
    describe_sql,
)
from tre_core.doctor import diagnostics_as_json, format_diagnostics, run_diagnostics
from tre_core.loader import ConfigError, load_connection_config, load_yaml_config
from tre_core.model import (
    ColumnInfo,
    ColumnMeta,
    ForeignKeyEdge,
    KeyRole,
    ValueType,
    Variable,
    Vocabulary,
    VocabularyItem,
    VocabOrigin,
)
from tre_core.schema import config_issues
from tre_core.store import VocabularyStore, assign_vocabulary_ids, update_vocabulary_ids

__all__ = [
    "assign_vocabulary_ids",
    "BaseDialect",
    "ColumnInfo",
    "ColumnMeta",
    "columns_to_variables",
    "config_issues",
    "ConfigError",
    "ConnectionConfig",
    "describe_query_columns",
    "describe_query_variables",
    "describe_sql",
    "DescribeOptions",
    "diagnostics_as_json",
    "ForeignKeyEdge",
    "format_diagnostics",
    "get_dialect",
    "KeyRole",
    "list_dialects",
    "load_connection_config",
    "load_yaml_config",
    "resolve_dialect",
    "run_diagnostics",
    "UnsupportedDialectError",
    "update_vocabulary_ids",
    "ValueType",
    "Variable",
    "Vocabulary",
    "VocabularyItem",
    "VocabularyStore",
    "VocabOrigin",
]
