"""Tests for connection config loading, env expansion and schema validation."""

import os
import sys
import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

import yaml

ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT / "packages" / "core_engine" / "src"))
sys.path.insert(0, str(ROOT / "packages" / "cli" / "src"))

from tre_core.describe import DescribeOptions
from tre_core.issues import Issue, has_errors, issues_as_dicts, to_lines
from tre_core.loader import (
    ConfigError,
    coerce_integers,
    config_from_dict,
    expand_env,
    load_connection_config,
    load_yaml_config,
)
from tre_core.schema import config_issues


class ConfigFileTestCase(unittest.TestCase):

    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.root = Path(self._tmp.name)

    def tearDown(self):
        self._tmp.cleanup()

    def write(self, name, payload):
        path = self.root / name
        if isinstance(payload, str):
            path.write_text(payload, encoding="utf-8")
        else:
            path.write_text(yaml.safe_dump(payload), encoding="utf-8")
        return str(path)


class TestLoadConnectionConfig(ConfigFileTestCase):

    def test_postgres_config(self):
        path = self.write("pg.yaml", {
            "dialect": "PostgreSQL",
            "host": "db.internal",
            "port": 5433,
            "database": "clinical",
            "user": "reader",
            "password": "pw",
            "describe": {"max_vocab": 50, "vocab_row_threshold": 1000},
        })
        with patch.dict(os.environ, {}, clear=True):
            config = load_connection_config(path)
        self.assertEqual(config.dialect, "postgresql")
        self.assertEqual(config.host, "db.internal")
        self.assertEqual(config.port, 5433)
        self.assertEqual(config.database, "clinical")
        self.assertEqual(config.max_vocab, 50)

        options = DescribeOptions.from_config(config)
        self.assertEqual((options.max_vocab, options.vocab_row_threshold), (50, 1000))

    def test_defaults(self):
        path = self.write("lite.yaml", {"dialect": "sqlite", "path": ":memory:"})
        with patch.dict(os.environ, {}, clear=True):
            config = load_connection_config(path)
        self.assertEqual(config.path, ":memory:")
        self.assertEqual((config.max_vocab, config.vocab_row_threshold), (200, 5000))
        self.assertEqual(config.extra, {})

    def test_relative_sqlite_path_resolves_next_to_config(self):
        path = self.write("lite.yaml", {"dialect": "sqlite", "path": "data/study.db"})
        with patch.dict(os.environ, {}, clear=True):
            config = load_connection_config(path)
        self.assertEqual(Path(config.path), self.root.resolve() / "data" / "study.db")

    def test_env_references_expanded(self):
        path = self.write("pg.yaml", "dialect: postgresql\nhost: ${PG_HOST}\npassword: ${PG_PASSWORD}\n")
        with patch.dict(os.environ, {"PG_HOST": "warehouse", "PG_PASSWORD": "s3cret"}, clear=True):
            config = load_connection_config(path)
        self.assertEqual(config.host, "warehouse")
        self.assertEqual(config.password, "s3cret")

    def test_env_overrides(self):
        path = self.write("pg.yaml", {"dialect": "postgresql", "user": "file_user", "password": "file_pw"})
        with patch.dict(os.environ, {"TRE_DB_USER": "env_user", "TRE_DB_PASSWORD": "env_pw"}, clear=True):
            config = load_connection_config(path)
        self.assertEqual((config.user, config.password), ("env_user", "env_pw"))

    def test_integer_fields_from_env(self):
        path = self.write(
            "pg.yaml",
            "dialect: postgresql\nhost: h\nport: ${PGPORT}\ndescribe:\n  max_vocab: ${MAX_VOCAB}\n",
        )
        with patch.dict(os.environ, {"PGPORT": "5433", "MAX_VOCAB": " 40 "}, clear=True):
            config = load_connection_config(path)
        self.assertEqual(config.port, 5433)
        self.assertEqual(config.max_vocab, 40)

    def test_non_numeric_port_from_env_still_rejected(self):
        with self.assertRaises(ConfigError) as ctx:
            config_from_dict({"dialect": "postgresql", "port": "${PGPORT}"}, environ={"PGPORT": "fifty"})
        self.assertEqual([i.path for i in ctx.exception.issues], ["/port"])

    def test_options_become_extra(self):
        config = config_from_dict(
            {"dialect": "mssql", "host": "db", "options": {"odbc_driver": "ODBC Driver 17 for SQL Server"}},
            environ={},
        )
        self.assertEqual(config.extra["odbc_driver"], "ODBC Driver 17 for SQL Server")

    def test_missing_file(self):
        with self.assertRaises(FileNotFoundError):
            load_connection_config(str(self.root / "missing.yaml"))

    def test_root_must_be_mapping(self):
        path = self.write("list.yaml", "- a\n- b\n")
        with self.assertRaises(ValueError):
            load_yaml_config(path)

    def test_empty_file_is_empty_mapping(self):
        path = self.write("empty.yaml", "")
        self.assertEqual(load_yaml_config(path), {})


class TestConfigValidation(unittest.TestCase):

    def test_unsupported_dialect(self):
        with self.assertRaises(ConfigError) as ctx:
            config_from_dict({"dialect": "oracle"}, environ={})
        self.assertEqual([i.code for i in ctx.exception.issues], ["UNSUPPORTED_DIALECT"])
        self.assertEqual(ctx.exception.issues[0].path, "/dialect")
        self.assertIsInstance(ctx.exception, ValueError)
        self.assertIn("UNSUPPORTED_DIALECT", str(ctx.exception))

    def test_missing_dialect_and_bad_port(self):
        issues = config_issues({"host": "db", "port": "5432"})
        self.assertTrue(has_errors(issues))
        self.assertEqual({i.path for i in issues}, {"/", "/port"})

    def test_unknown_key_rejected(self):
        issues = config_issues({"dialect": "sqlite", "warehouse": "WH"})
        self.assertEqual(len(issues), 1)
        self.assertEqual(issues[0].code, "CONFIG_VALIDATION_FAILED")

    def test_describe_limits_must_be_positive(self):
        issues = config_issues({"dialect": "duckdb", "describe": {"max_vocab": 0}})
        self.assertEqual([i.path for i in issues], ["/describe/max_vocab"])

    def test_valid_config_has_no_issues(self):
        self.assertEqual(config_issues({"dialect": "MSSQL", "host": "db", "port": 1433}), [])


class TestEnvExpansion(unittest.TestCase):

    def test_nested_values(self):
        data = {"a": "${X}", "b": ["${Y}-suffix", 3], "c": {"d": "plain"}}
        self.assertEqual(
            expand_env(data, {"X": "1", "Y": "two"}),
            {"a": "1", "b": ["two-suffix", 3], "c": {"d": "plain"}},
        )

    def test_unset_reference_left_as_written(self):
        self.assertEqual(expand_env("${NOT_SET_ANYWHERE}", {}), "${NOT_SET_ANYWHERE}")

    def test_coerce_integers_only_touches_digit_strings(self):
        data = {"port": "1433", "host": "10", "describe": {"vocab_row_threshold": "12", "max_vocab": "many"}}
        self.assertEqual(
            coerce_integers(data),
            {"port": 1433, "host": "10", "describe": {"vocab_row_threshold": 12, "max_vocab": "many"}},
        )


class TestIssues(unittest.TestCase):

    def test_lines_and_dicts(self):
        issues = [Issue("error", "CONFIG_VALIDATION_FAILED", "bad port", "/port"), Issue("warn", "W", "hm")]
        self.assertEqual(to_lines(issues)[0], "[ERROR] CONFIG_VALIDATION_FAILED /port: bad port")
        self.assertEqual(issues_as_dicts(issues)[1], {"severity": "warn", "code": "W", "message": "hm", "path": "/"})
        self.assertTrue(has_errors(issues))
        self.assertFalse(has_errors(issues[1:]))


if __name__ == "__main__":
    unittest.main()
