"""JSON Schema for connection config files and validation into ``Issue`` records."""

from typing import Any, Dict, List

from jsonschema import Draft202012Validator

from tre_core.issues import Issue

SUPPORTED_DIALECTS = ["postgresql", "mysql", "mssql", "sqlite", "duckdb"]

CONNECTION_SCHEMA: Dict[str, Any] = {
    "$schema": "https://json-schema.org/draft/2020-12/schema",
    "title": "TRE source database connection",
    "type": "object",
    "required": ["dialect"],
    "additionalProperties": False,
    "properties": {
        "dialect": {
            "type": "string",
            "pattern": "(?i)^(" + "|".join(SUPPORTED_DIALECTS) + ")$",
        },
        "host": {"type": "string"},
        "port": {"type": "integer", "minimum": 1, "maximum": 65535},
        "database": {"type": "string"},
        "schema": {"type": "string"},
        "user": {"type": "string"},
        "password": {"type": "string"},
        "path": {"type": "string"},
        "connection_string": {"type": "string"},
        "options": {"type": "object"},
        "describe": {
            "type": "object",
            "additionalProperties": False,
            "properties": {
                "max_vocab": {"type": "integer", "minimum": 1},
                "vocab_row_threshold": {"type": "integer", "minimum": 1},
            },
        },
    },
}


def _to_json_path(parts: List[Any]) -> str:
    if not parts:
        return "/"
    return "/" + "/".join(str(part) for part in parts)


def config_issues(data: Dict[str, Any], schema: Dict[str, Any] = CONNECTION_SCHEMA) -> List[Issue]:
    validator = Draft202012Validator(schema)
    issues: List[Issue] = []

    for error in sorted(validator.iter_errors(data), key=lambda e: [str(p) for p in e.absolute_path]):
        code = "UNSUPPORTED_DIALECT" if list(error.absolute_path) == ["dialect"] else "CONFIG_VALIDATION_FAILED"
        issues.append(
            Issue(
                severity="error",
                code=code,
                message=error.message,
                path=_to_json_path(list(error.absolute_path)),
            )
        )

    return issues
