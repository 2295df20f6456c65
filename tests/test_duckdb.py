"""End-to-end describe scenarios against an in-memory DuckDB database."""

import importlib.util
import sys
import unittest
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT / "packages" / "core_engine" / "src"))
sys.path.insert(0, str(ROOT / "packages" / "cli" / "src"))

from tre_core import ValueType, describe_query_variables, get_dialect

HAS_DUCKDB = importlib.util.find_spec("duckdb") is not None

SETUP_STATEMENTS = [
    "CREATE TABLE status_codes (id INTEGER PRIMARY KEY, code VARCHAR, description VARCHAR)",
    "INSERT INTO status_codes VALUES (1, 'NEW', 'Newly created'), (2, 'PAID', 'Payment received'), "
    "(3, 'SHIP', 'Shipped'), (4, 'DONE', 'Delivered')",
    "CREATE TABLE orders ("
    " id INTEGER PRIMARY KEY,"
    " status INTEGER REFERENCES status_codes(id),"
    " mood ENUM('sad', 'ok', 'happy'),"
    " priority VARCHAR CHECK (priority IN ('low', 'high')),"
    " amount DOUBLE)",
    "INSERT INTO orders VALUES (1, 1, 'ok', 'low', 9.5), (2, 4, 'happy', 'high', 20.0)",
    "COMMENT ON COLUMN orders.id IS 'Order identifier'",
]


@unittest.skipUnless(HAS_DUCKDB, "duckdb not installed")
class TestDuckDBDescribe(unittest.TestCase):

    def setUp(self):
        import duckdb

        self.conn = duckdb.connect(":memory:")
        for statement in SETUP_STATEMENTS:
            self.conn.execute(statement)
        self.dialect = get_dialect("duckdb")

    def tearDown(self):
        self.conn.close()

    def _by_name(self, sql):
        return {v.name: v for v in describe_query_variables(self.dialect, self.conn, sql, 1)}

    def test_foreign_key_vocabulary_and_comment(self):
        by_name = self._by_name("SELECT id, status, amount FROM orders")
        self.assertEqual(by_name["id"].value_type, ValueType.INTEGER)
        self.assertEqual(by_name["id"].description, "Order identifier")
        self.assertEqual(by_name["amount"].value_type, ValueType.FLOAT)

        status = by_name["status"]
        self.assertEqual(status.value_type, ValueType.CATEGORY)
        self.assertEqual(
            [(i.value, i.code, i.description) for i in status.vocabulary.items],
            [
                (1, "NEW", "Newly created"),
                (2, "PAID", "Payment received"),
                (3, "SHIP", "Shipped"),
                (4, "DONE", "Delivered"),
            ],
        )

    def test_enum_column(self):
        mood = self._by_name("SELECT id, mood FROM orders")["mood"]
        self.assertEqual(mood.value_type, ValueType.CATEGORY)
        self.assertEqual(mood.vocabulary.name, "mood_enum")
        self.assertEqual([i.code for i in mood.vocabulary.items], ["sad", "ok", "happy"])

    def test_check_constraint_column(self):
        priority = self._by_name("SELECT priority FROM orders")["priority"]
        self.assertEqual(priority.value_type, ValueType.CATEGORY)
        self.assertEqual(priority.vocabulary.name, "priority_allowed")
        self.assertEqual([i.code for i in priority.vocabulary.items], ["low", "high"])

    def test_temp_view_dropped(self):
        self._by_name("SELECT id FROM orders")
        rows = self.conn.execute(
            "SELECT count(*) FROM duckdb_views() WHERE starts_with(view_name, '_tmp_meta_view_')"
        ).fetchall()
        self.assertEqual(rows[0][0], 0)


if __name__ == "__main__":
    unittest.main()
