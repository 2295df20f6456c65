"""End-to-end describe scenarios against an in-memory SQLite database.

Covers:
  - Foreign-key lookup table vocabulary (code and description columns)
  - Projection filtering and SELECT *
  - Aliased columns mapped through their source column
  - Ambiguous columns left unmapped
  - CHECK constraint vocabularies
  - Implicit code tables (integer column named after a small table)
  - Probe failures degrading instead of aborting
  - Temporary view cleanup and idempotence
"""

import sqlite3
import sys
import unittest
from pathlib import Path
from unittest.mock import patch

ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT / "packages" / "core_engine" / "src"))
sys.path.insert(0, str(ROOT / "packages" / "cli" / "src"))

from tre_core import (
    DescribeOptions,
    KeyRole,
    UnsupportedDialectError,
    ValueType,
    describe_query_columns,
    describe_query_variables,
    describe_sql,
    get_dialect,
)
from tre_core.model import VocabOrigin

SCHEMA_SQL = """
CREATE TABLE status_codes (
    id INTEGER PRIMARY KEY,
    code TEXT NOT NULL,
    description TEXT
);
INSERT INTO status_codes VALUES
    (1, 'NEW', 'Newly created'),
    (2, 'PAID', 'Payment received'),
    (3, 'SHIP', 'Shipped'),
    (4, 'DONE', 'Delivered');

CREATE TABLE orders (
    id INTEGER PRIMARY KEY,
    status INTEGER REFERENCES status_codes(id),
    priority TEXT CHECK (priority IN ('low', 'high')),
    amount REAL,
    created_at DATETIME
);
INSERT INTO orders VALUES (1, 1, 'low', 9.5, '2024-01-01 10:00:00');
INSERT INTO orders VALUES (2, 4, 'high', 20.0, '2024-01-02 11:30:00');

CREATE TABLE region (
    region INTEGER PRIMARY KEY,
    name TEXT
);
INSERT INTO region VALUES (1, 'North'), (2, 'South'), (3, 'East');

CREATE TABLE sites (
    id INTEGER PRIMARY KEY,
    region INTEGER,
    name TEXT
);

CREATE TABLE ghost_refs (
    id INTEGER PRIMARY KEY,
    ghost_id INTEGER REFERENCES ghost(id)
);

CREATE TABLE ghost_labels (
    id INTEGER PRIMARY KEY,
    ghost_code TEXT REFERENCES ghost(id) CHECK (ghost_code IN ('a', 'b'))
);
"""


class SQLiteDescribeTestCase(unittest.TestCase):

    def setUp(self):
        self.conn = sqlite3.connect(":memory:")
        self.conn.executescript(SCHEMA_SQL)
        self.dialect = get_dialect("sqlite")

    def tearDown(self):
        self.conn.close()

    def _describe(self, sql, **kwargs):
        return describe_query_variables(self.dialect, self.conn, sql, 7, **kwargs)

    def _by_name(self, variables):
        return {v.name: v for v in variables}


class TestForeignKeyVocabulary(SQLiteDescribeTestCase):

    def test_orders_with_status_lookup(self):
        variables = self._describe("SELECT id, status FROM orders")
        self.assertEqual([v.name for v in variables], ["id", "status"])

        by_name = self._by_name(variables)
        self.assertEqual(by_name["id"].value_type, ValueType.INTEGER)
        self.assertIsNone(by_name["id"].vocabulary)

        status = by_name["status"]
        self.assertEqual(status.value_type, ValueType.CATEGORY)
        self.assertEqual(status.domain_id, 7)
        self.assertEqual(status.keyrole, KeyRole.NONE)
        self.assertEqual(status.vocabulary.name, "status_vocabulary")
        self.assertEqual(
            [(i.value, i.code, i.description) for i in status.vocabulary.items],
            [
                (1, "NEW", "Newly created"),
                (2, "PAID", "Payment received"),
                (3, "SHIP", "Shipped"),
                (4, "DONE", "Delivered"),
            ],
        )

    def test_column_metadata_rows(self):
        cols = describe_query_columns(self.dialect, self.conn, "SELECT id, status FROM orders")
        status = cols[1]
        self.assertEqual(status.source_relation, "orders")
        self.assertEqual(status.vocabulary_relation, "status_codes")
        self.assertEqual(status.code_column, "id")
        self.assertEqual(status.label_column, "code")
        self.assertEqual(status.vocab_origin, VocabOrigin.FOREIGN_KEY)
        self.assertFalse(status.vocab_skipped)

    def test_max_vocab_limits_sample(self):
        variables = self._describe("SELECT status FROM orders", options=DescribeOptions(max_vocab=2))
        self.assertEqual([i.code for i in variables[0].vocabulary.items], ["NEW", "PAID"])

    def test_row_threshold_does_not_block_named_lookup(self):
        options = DescribeOptions(vocab_row_threshold=2)
        variables = self._describe("SELECT status FROM orders", options=options)
        self.assertEqual(variables[0].value_type, ValueType.CATEGORY)

    def test_alias_is_mapped_through_source_column(self):
        variables = self._describe("SELECT o.id AS order_id, o.status AS order_status FROM orders o")
        by_name = self._by_name(variables)
        self.assertEqual(set(by_name), {"order_id", "order_status"})
        self.assertEqual(by_name["order_status"].value_type, ValueType.CATEGORY)
        self.assertEqual(by_name["order_status"].vocabulary.name, "order_status_vocabulary")
        self.assertEqual(len(by_name["order_status"].vocabulary.items), 4)

    def test_to_dict_shape(self):
        payload = self._describe("SELECT status FROM orders")[0].to_dict()
        self.assertEqual(payload["value_type_id"], 7)
        self.assertEqual(payload["value_type"], "category")
        self.assertEqual(payload["vocabulary"]["items"][0]["code"], "NEW")
        self.assertIsNone(payload["variable_id"])


class TestProjection(SQLiteDescribeTestCase):

    def test_select_star_returns_all_columns(self):
        variables = self._describe("SELECT * FROM orders")
        self.assertEqual([v.name for v in variables], ["id", "status", "priority", "amount", "created_at"])
        by_name = self._by_name(variables)
        self.assertEqual(by_name["amount"].value_type, ValueType.FLOAT)
        self.assertEqual(by_name["created_at"].value_type, ValueType.DATETIME)

    def test_names_are_subset_of_projection(self):
        variables = self._describe("SELECT amount, id FROM orders WHERE amount > 1")
        self.assertEqual([v.name for v in variables], ["amount", "id"])

    def test_ambiguous_column_stays_unmapped(self):
        sql = "SELECT s.name AS site_name FROM sites s JOIN region r ON r.region = s.region"
        cols = describe_query_columns(self.dialect, self.conn, sql)
        self.assertEqual(len(cols), 1)
        self.assertIsNone(cols[0].source_table)
        variables = self._describe(sql)
        self.assertEqual(variables[0].value_type, ValueType.STRING)

    def test_cte_query(self):
        sql = "WITH recent AS (SELECT * FROM orders WHERE id > 1) SELECT id, amount FROM recent"
        variables = self._describe(sql)
        self.assertEqual([v.name for v in variables], ["id", "amount"])


class TestPostprocessVocabularies(SQLiteDescribeTestCase):

    def test_check_constraint_vocabulary(self):
        variables = self._describe("SELECT id, priority FROM orders")
        priority = self._by_name(variables)["priority"]
        self.assertEqual(priority.value_type, ValueType.CATEGORY)
        self.assertEqual(priority.vocabulary.name, "priority_allowed")
        self.assertEqual([(i.value, i.code) for i in priority.vocabulary.items], [(1, "low"), (2, "high")])

    def test_implicit_code_table(self):
        variables = self._describe("SELECT id, region FROM sites")
        by_name = self._by_name(variables)
        self.assertEqual(by_name["id"].value_type, ValueType.INTEGER)
        region = by_name["region"]
        self.assertEqual(region.value_type, ValueType.CATEGORY)
        self.assertEqual(region.vocabulary.name, "region_codes")
        self.assertEqual(
            [(i.value, i.code) for i in region.vocabulary.items],
            [(1, "North"), (2, "South"), (3, "East")],
        )


class TestDegradedProbes(SQLiteDescribeTestCase):

    def test_missing_lookup_table_is_skipped_with_warning(self):
        with self.assertLogs("tre_core.connectors.base", level="WARNING"):
            cols = describe_query_columns(self.dialect, self.conn, "SELECT id, ghost_id FROM ghost_refs")
        ghost = cols[1]
        self.assertTrue(ghost.vocab_skipped)
        self.assertIsNone(ghost.vocab_sample)

        variables = self._describe("SELECT id, ghost_id FROM ghost_refs")
        self.assertEqual(self._by_name(variables)["ghost_id"].value_type, ValueType.INTEGER)

    def test_later_vocabulary_clears_skip_flag(self):
        with self.assertLogs("tre_core.connectors.base", level="WARNING"):
            cols = describe_query_columns(self.dialect, self.conn, "SELECT id, ghost_code FROM ghost_labels")
        ghost = cols[1]
        self.assertEqual(ghost.vocab_origin, VocabOrigin.CHECK_CONSTRAINT)
        self.assertEqual(ghost.vocab_sample, [{"code": "a"}, {"code": "b"}])
        self.assertFalse(ghost.vocab_skipped)


class TestLifecycle(SQLiteDescribeTestCase):

    def _temp_views(self):
        return self.conn.execute("SELECT name FROM sqlite_temp_master WHERE type = 'view'").fetchall()

    def test_temp_view_dropped(self):
        self._describe("SELECT id, status FROM orders")
        self.assertEqual(self._temp_views(), [])

    def test_temp_view_dropped_when_describe_fails(self):
        with patch.object(self.dialect, "describe_output", side_effect=RuntimeError("boom")):
            with self.assertRaises(RuntimeError):
                self._describe("SELECT id FROM orders")
        self.assertEqual(self._temp_views(), [])

    def test_idempotent(self):
        sql = "SELECT id, status, priority FROM orders"

        def summary(variables):
            return [
                (v.name, v.value_type, [i.code for i in v.vocabulary.items] if v.vocabulary else None)
                for v in variables
            ]

        self.assertEqual(summary(self._describe(sql)), summary(self._describe(sql)))

    def test_describe_sql_by_dialect_name(self):
        variables = describe_sql(self.conn, "SELECT id FROM orders", 3, "SQLITE")
        self.assertEqual(variables[0].domain_id, 3)

    def test_unknown_dialect_name(self):
        with self.assertRaises(UnsupportedDialectError):
            describe_sql(self.conn, "SELECT id FROM orders", 3, "oracle")


if __name__ == "__main__":
    unittest.main()
