import logging
import os
import re
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

import yaml

from tre_core.connectors.base import ConnectionConfig
from tre_core.issues import Issue, has_errors, to_lines
from tre_core.schema import config_issues

logger = logging.getLogger(__name__)

_ENV_REF_RE = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)\}")

ENV_OVERRIDES = {
    "TRE_DB_USER": "user",
    "TRE_DB_PASSWORD": "password",
}

# Integer settings that may arrive as strings from ${VAR} references.
INTEGER_FIELDS = (("port",), ("describe", "max_vocab"), ("describe", "vocab_row_threshold"))
_DIGITS_RE = re.compile(r"[0-9]+")


class ConfigError(ValueError):
    """Raised when a connection config file fails validation."""

    def __init__(self, message: str, issues: Optional[List[Issue]] = None) -> None:
        self.issues = list(issues or [])
        if self.issues:
            message = "\n".join([message] + to_lines(self.issues))
        super().__init__(message)


def load_yaml_config(path: str) -> Dict[str, Any]:
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    with config_path.open("r", encoding="utf-8") as handle:
        data = yaml.safe_load(handle)

    if data is None:
        return {}

    if not isinstance(data, dict):
        raise ValueError("Config YAML must parse to an object/map at root.")

    return data


def expand_env(value: Any, environ: Optional[Mapping[str, str]] = None) -> Any:
    """Replace ``${NAME}`` references in every string; unset names are left as written."""
    env = os.environ if environ is None else environ
    if isinstance(value, str):
        return _ENV_REF_RE.sub(lambda m: env.get(m.group(1), m.group(0)), value)
    if isinstance(value, dict):
        return {k: expand_env(v, env) for k, v in value.items()}
    if isinstance(value, list):
        return [expand_env(v, env) for v in value]
    return value


def coerce_integers(data: Dict[str, Any]) -> Dict[str, Any]:
    """Turn all-digit strings in ``INTEGER_FIELDS`` into ints, in place."""
    for path in INTEGER_FIELDS:
        parent: Any = data
        for key in path[:-1]:
            parent = parent.get(key) if isinstance(parent, dict) else None
        if not isinstance(parent, dict):
            continue
        value = parent.get(path[-1])
        if isinstance(value, str) and _DIGITS_RE.fullmatch(value.strip()):
            parent[path[-1]] = int(value)
    return data


def config_from_dict(data: Dict[str, Any], environ: Optional[Mapping[str, str]] = None) -> ConnectionConfig:
    env = os.environ if environ is None else environ
    data = coerce_integers(expand_env(data, env))

    issues = config_issues(data)
    if has_errors(issues):
        raise ConfigError("Invalid connection config", issues)

    for variable, key in ENV_OVERRIDES.items():
        if env.get(variable):
            logger.debug("%s overrides %s from the config file", variable, key)
            data[key] = env[variable]

    describe = data.get("describe") or {}
    return ConnectionConfig(
        dialect=data["dialect"].lower(),
        host=data.get("host", ""),
        port=int(data.get("port") or 0),
        database=data.get("database", ""),
        schema=data.get("schema", ""),
        user=data.get("user", ""),
        password=data.get("password", ""),
        path=data.get("path", ""),
        connection_string=data.get("connection_string", ""),
        max_vocab=describe.get("max_vocab", 200),
        vocab_row_threshold=describe.get("vocab_row_threshold", 5000),
        extra=dict(data.get("options") or {}),
    )


def load_connection_config(path: str) -> ConnectionConfig:
    """Read, expand and validate a YAML connection config."""
    data = load_yaml_config(path)
    config = config_from_dict(data)
    local_file = config.dialect in ("sqlite", "duckdb") and config.path not in ("", ":memory:")
    if local_file and not Path(config.path).is_absolute():
        # Relative database files resolve against the config file's directory.
        config.path = str(Path(path).resolve().parent / config.path)
    return config
