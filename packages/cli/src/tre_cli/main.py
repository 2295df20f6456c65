import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from tre_core import (
    ConfigError,
    ConnectionConfig,
    DescribeOptions,
    UnsupportedDialectError,
    describe_query_variables,
    diagnostics_as_json,
    format_diagnostics,
    list_dialects,
    load_connection_config,
    resolve_dialect,
    run_diagnostics,
)
from tre_core.issues import Issue, has_errors, issues_as_dicts, to_lines
from tre_core.loader import coerce_integers, expand_env, load_yaml_config
from tre_core.schema import config_issues
from tre_core.sqltext import extract_cte_names, extract_projection_names, scan_relations

logger = logging.getLogger("tre_cli")

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_USAGE = 2


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )


def _read_sql(args: argparse.Namespace) -> str:
    if getattr(args, "query", None):
        return args.query
    path = Path(args.sql)
    if not path.exists():
        raise FileNotFoundError(f"SQL file not found: {args.sql}")
    return path.read_text(encoding="utf-8")


def _load_config(path: str) -> Optional[ConnectionConfig]:
    try:
        return load_connection_config(path)
    except ConfigError as exc:
        print(f"Invalid config: {path}", file=sys.stderr)
        for line in to_lines(exc.issues):
            print(f"  {line}", file=sys.stderr)
    except (FileNotFoundError, ValueError, yaml.YAMLError) as exc:
        print(str(exc), file=sys.stderr)
    return None


def _emit(payload: Any, fmt: str, out: Optional[str]) -> None:
    if fmt == "yaml":
        text = yaml.safe_dump(payload, sort_keys=False, allow_unicode=True)
    else:
        text = json.dumps(payload, indent=2, default=str) + "\n"
    if out:
        Path(out).write_text(text, encoding="utf-8")
        print(f"Wrote {out}")
    else:
        sys.stdout.write(text)


def _describe_options(args: argparse.Namespace, config: ConnectionConfig) -> DescribeOptions:
    options = DescribeOptions.from_config(config)
    if getattr(args, "max_vocab", None) is not None:
        options.max_vocab = args.max_vocab
    if getattr(args, "vocab_row_threshold", None) is not None:
        options.vocab_row_threshold = args.vocab_row_threshold
    return options


def cmd_describe(args: argparse.Namespace) -> int:
    config = _load_config(args.config)
    if config is None:
        return EXIT_USAGE
    try:
        sql = _read_sql(args)
        dialect = resolve_dialect(config.dialect)
    except (FileNotFoundError, UnsupportedDialectError) as exc:
        print(str(exc), file=sys.stderr)
        return EXIT_USAGE

    ok, msg = dialect.check_driver()
    if not ok:
        print(f"Driver check failed: {msg}", file=sys.stderr)
        return EXIT_FAILURE

    options = _describe_options(args, config)
    try:
        conn = dialect.connect(config)
    except Exception as exc:
        print(f"Connection failed: {exc}", file=sys.stderr)
        return EXIT_FAILURE
    try:
        variables = describe_query_variables(dialect, conn, sql, args.domain_id, options)
    except Exception as exc:
        logger.debug("describe failed", exc_info=True)
        print(f"Describe failed: {exc}", file=sys.stderr)
        return EXIT_FAILURE
    finally:
        conn.close()

    _emit([v.to_dict() for v in variables], args.format, args.out)
    return EXIT_OK


def cmd_parse(args: argparse.Namespace) -> int:
    try:
        sql = _read_sql(args)
    except FileNotFoundError as exc:
        print(str(exc), file=sys.stderr)
        return EXIT_USAGE

    payload: Dict[str, Any] = {
        "projection": extract_projection_names(sql),
        "ctes": sorted(extract_cte_names(sql)),
        "relations": [
            {"schema": schema, "table": table} for schema, table in scan_relations(sql)
        ],
    }
    print(json.dumps(payload, indent=2))
    return EXIT_OK


def cmd_dialects(args: argparse.Namespace) -> int:
    dialects = list_dialects()
    if getattr(args, "output_json", False):
        print(json.dumps(dialects, indent=2))
    else:
        print("Supported source dialects:\n")
        for d in dialects:
            status = "installed" if d["installed"] else "NOT INSTALLED"
            print(f"  {d['type']:12s}  {d['name']:20s}  driver: {d['driver']:18s}  [{status}]")
        print("\nUsage: tre describe --config conn.yaml --sql query.sql --domain-id 1")
    return EXIT_OK


def _print_issues(issues: List[Issue]) -> None:
    if not issues:
        print("No issues found.")
        return
    for line in to_lines(issues):
        print(line)


def cmd_validate(args: argparse.Namespace) -> int:
    try:
        data = load_yaml_config(args.config)
    except (FileNotFoundError, ValueError, yaml.YAMLError) as exc:
        print(str(exc), file=sys.stderr)
        return EXIT_USAGE

    issues = config_issues(coerce_integers(expand_env(data)))
    if getattr(args, "output_json", False):
        print(json.dumps({"valid": not has_errors(issues), "issues": issues_as_dicts(issues)}, indent=2))
    else:
        _print_issues(issues)
    return EXIT_FAILURE if has_errors(issues) else EXIT_OK


def cmd_test_connection(args: argparse.Namespace) -> int:
    config = _load_config(args.config)
    if config is None:
        return EXIT_USAGE
    try:
        dialect = resolve_dialect(config.dialect)
    except UnsupportedDialectError as exc:
        print(str(exc), file=sys.stderr)
        return EXIT_USAGE

    ok, msg = dialect.test_connection(config)
    print(f"{dialect.display_name}: {msg}", file=sys.stdout if ok else sys.stderr)
    return EXIT_OK if ok else EXIT_FAILURE


def cmd_doctor(args: argparse.Namespace) -> int:
    results = run_diagnostics(getattr(args, "config", None))

    if getattr(args, "output_json", False):
        print(json.dumps(diagnostics_as_json(results), indent=2))
    else:
        print(format_diagnostics(results))

    error_count = sum(1 for r in results if r.status == "error")
    return EXIT_FAILURE if error_count > 0 else EXIT_OK


def _add_sql_source(parser: argparse.ArgumentParser) -> None:
    source = parser.add_mutually_exclusive_group(required=True)
    source.add_argument("--sql", help="Path to a file holding one SELECT statement")
    source.add_argument("--query", help="SELECT statement given inline")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="tre", description="TRE curation: describe SQL queries as variables")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    describe_parser = sub.add_parser("describe", help="Describe a query's output columns as variables")
    describe_parser.add_argument("--config", required=True, help="Path to connection config YAML")
    _add_sql_source(describe_parser)
    describe_parser.add_argument("--domain-id", type=int, default=1, help="Domain id stamped on every variable")
    describe_parser.add_argument("--format", choices=["json", "yaml"], default="json", help="Output format")
    describe_parser.add_argument("--out", help="Write output to a file instead of stdout")
    describe_parser.add_argument("--max-vocab", type=int, help="Maximum vocabulary items sampled per column")
    describe_parser.add_argument(
        "--vocab-row-threshold",
        type=int,
        help="Lookup tables with more rows than this are not sampled",
    )
    describe_parser.set_defaults(func=cmd_describe)

    parse_parser = sub.add_parser("parse", help="Show projections, CTEs and relations found in a query")
    _add_sql_source(parse_parser)
    parse_parser.set_defaults(func=cmd_parse)

    dialects_parser = sub.add_parser("dialects", help="List supported dialects and driver status")
    dialects_parser.add_argument("--output-json", action="store_true", help="Output as JSON")
    dialects_parser.set_defaults(func=cmd_dialects)

    validate_parser = sub.add_parser("validate", help="Validate a connection config file without connecting")
    validate_parser.add_argument("--config", required=True, help="Path to connection config YAML")
    validate_parser.add_argument("--output-json", action="store_true", help="Output as JSON")
    validate_parser.set_defaults(func=cmd_validate)

    test_parser = sub.add_parser("test-connection", help="Open and close a connection from a config file")
    test_parser.add_argument("--config", required=True, help="Path to connection config YAML")
    test_parser.set_defaults(func=cmd_test_connection)

    doctor_parser = sub.add_parser("doctor", help="Check dependencies, drivers and an optional config")
    doctor_parser.add_argument("--config", help="Path to connection config YAML")
    doctor_parser.add_argument("--output-json", action="store_true", help="Output as JSON")
    doctor_parser.set_defaults(func=cmd_doctor)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    _configure_logging(args.verbose)
    return args.func(args)


if __name__ == "__main__":
    raise SystemExit(main())
