"""Environment diagnostics for ``tre doctor``.

Three groups of checks run in order: core imports, one driver check per
registered dialect, then the optional connection config (parse, validate,
driver for the configured dialect).
"""

import importlib
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from tre_core.connectors.base import list_dialects
from tre_core.issues import to_lines
from tre_core.loader import ConfigError, load_connection_config

CORE_MODULES = ("yaml", "jsonschema", "tre_core")

_ICONS = {"ok": "✓", "warn": "!", "error": "✗"}


@dataclass
class DiagnosticResult:
    name: str
    status: str  # ok | warn | error
    message: str = ""

    def to_dict(self) -> Dict[str, str]:
        return asdict(self)


def _import_check(module: str) -> DiagnosticResult:
    label = f"import {module}"
    try:
        importlib.import_module(module)
    except ImportError as exc:
        return DiagnosticResult(label, "error", str(exc))
    return DiagnosticResult(label, "ok")


def _driver_checks() -> List[DiagnosticResult]:
    # Drivers are optional; only the configured dialect needs one.
    return [
        DiagnosticResult(f"driver:{d['type']}", "ok" if d["installed"] else "warn", d["status"])
        for d in list_dialects()
    ]


def _config_checks(config_path: str) -> List[DiagnosticResult]:
    try:
        config = load_connection_config(config_path)
    except FileNotFoundError as exc:
        return [DiagnosticResult("config", "error", str(exc))]
    except yaml.YAMLError as exc:
        return [DiagnosticResult("config", "error", f"Invalid YAML: {exc}")]
    except ConfigError as exc:
        return [DiagnosticResult("config", "error", line) for line in to_lines(exc.issues)]
    except ValueError as exc:
        return [DiagnosticResult("config", "error", str(exc))]

    checks = [DiagnosticResult("config", "ok", f"{Path(config_path)} ({config.dialect})")]
    missing = [d for d in list_dialects() if d["type"] == config.dialect and not d["installed"]]
    checks.extend(DiagnosticResult("config_driver", "error", d["status"]) for d in missing)
    return checks


def run_diagnostics(config_path: Optional[str] = None) -> List[DiagnosticResult]:
    """Run every check; the config group only when ``config_path`` is given."""
    checks = [_import_check(module) for module in CORE_MODULES]
    checks.extend(_driver_checks())
    if config_path:
        checks.extend(_config_checks(config_path))
    return checks


def _tally(results: List[DiagnosticResult]) -> Dict[str, int]:
    tally = {"ok": 0, "warn": 0, "error": 0}
    for result in results:
        if result.status in tally:
            tally[result.status] += 1
    return tally


def _overall(tally: Dict[str, int]) -> str:
    if tally["error"]:
        return "UNHEALTHY"
    if tally["warn"]:
        return "OK (with warnings)"
    return "HEALTHY"


def format_diagnostics(results: List[DiagnosticResult]) -> str:
    tally = _tally(results)
    body = []
    for result in results:
        line = f"  [{_ICONS.get(result.status, '?')}] {result.name}"
        body.append(f"{line}: {result.message}" if result.message else line)
    return "\n".join(
        ["TRE Curation Doctor", "=" * 40]
        + body
        + [
            "",
            f"Summary: {tally['ok']} ok, {tally['warn']} warnings, {tally['error']} errors",
            f"Status: {_overall(tally)}",
        ]
    )


def diagnostics_as_json(results: List[DiagnosticResult]) -> Dict[str, Any]:
    tally = _tally(results)
    return {
        "checks": [result.to_dict() for result in results],
        "summary": tally,
        "healthy": tally["error"] == 0,
    }
