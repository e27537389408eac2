import tempfile
import unittest
from pathlib import Path
from unittest import mock

from sqlalchemy import Numeric
from sqlalchemy.dialects import postgresql
from sqlalchemy.exc import OperationalError
from sqlalchemy.schema import CreateTable

from expense_tracker.database import SQLiteAdapter, create_sqlite_engine
from expense_tracker.schema import (
    apply_schema,
    expense_columns,
    expenses,
    migrate_expense_columns,
    subcategories,
)

LEGACY_EXPENSES = """
    CREATE TABLE expenses (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        amount REAL NOT NULL,
        category TEXT NOT NULL,
        subcategory TEXT NOT NULL,
        owner TEXT NOT NULL,
        description TEXT,
        date TEXT NOT NULL
    )
"""


class SchemaTests(unittest.TestCase):
    def setUp(self) -> None:
        self.tmpdir = tempfile.TemporaryDirectory()
        engine = create_sqlite_engine(Path(self.tmpdir.name) / "expenses.db")
        self.adapter = SQLiteAdapter(engine)

    def tearDown(self) -> None:
        self.adapter.close()
        self.tmpdir.cleanup()

    def _index_names(self) -> set[str]:
        rows = self.adapter.query("SELECT name FROM sqlite_master WHERE type = 'index'")
        return {row["name"] for row in rows}

    def test_second_run_is_a_no_op(self) -> None:
        apply_schema(self.adapter)
        columns_before = expense_columns(self.adapter)
        indexes_before = self._index_names()

        migrated = apply_schema(self.adapter)

        self.assertEqual(migrated, [])
        self.assertEqual(expense_columns(self.adapter), columns_before)
        self.assertEqual(self._index_names(), indexes_before)
        self.assertEqual(len(columns_before), len(set(columns_before)))

    def test_fresh_schema_has_all_tables_and_indexes(self) -> None:
        apply_schema(self.adapter)

        tables = {
            row["name"]
            for row in self.adapter.query("SELECT name FROM sqlite_master WHERE type = 'table'")
        }
        self.assertTrue({"expenses", "categories", "subcategories"} <= tables)
        self.assertTrue(
            {
                "idx_date",
                "idx_category",
                "idx_subcategory",
                "idx_owner",
                "idx_category_id",
                "idx_subcategory_id",
                "idx_subcategories_category_id",
            }
            <= self._index_names()
        )

    def test_migrates_legacy_expense_table(self) -> None:
        self.adapter.execute(LEGACY_EXPENSES)
        self.adapter.execute(
            "INSERT INTO expenses (amount, category, subcategory, owner, date) "
            "VALUES (?, ?, ?, ?, ?)",
            [20, "Casa", "Servicios", "Maryam", "2024-01-15"],
        )

        migrated = apply_schema(self.adapter)

        self.assertEqual(migrated, ["currency", "category_id", "subcategory_id"])
        row = self.adapter.get("SELECT * FROM expenses")
        self.assertEqual(row["currency"], "PEN")
        self.assertIsNone(row["category_id"])
        self.assertIsNone(row["subcategory_id"])
        self.assertIn("idx_category_id", self._index_names())
        self.assertEqual(apply_schema(self.adapter), [])

    def test_migration_check_failure_leaves_table_alone(self) -> None:
        self.adapter.execute(LEGACY_EXPENSES)
        failure = OperationalError("PRAGMA table_info", {}, Exception("database is locked"))

        with mock.patch("expense_tracker.schema.expense_columns", side_effect=failure):
            with self.assertLogs("expense_tracker.schema", level="WARNING") as logs:
                migrated = migrate_expense_columns(self.adapter)

        self.assertEqual(migrated, [])
        self.assertIn("Migration check failed", logs.output[0])
        self.assertNotIn("currency", expense_columns(self.adapter))

    def test_failed_column_is_skipped_and_its_index_too(self) -> None:
        self.adapter.execute(LEGACY_EXPENSES)
        execute = self.adapter.execute

        def refuse_subcategory_id(sql, params=None):
            if "subcategory_id" in sql:
                raise OperationalError(sql, {}, Exception("disk full"))
            return execute(sql, params)

        with mock.patch.object(self.adapter, "execute", side_effect=refuse_subcategory_id):
            with self.assertLogs("expense_tracker.schema", level="WARNING"):
                migrated = apply_schema(self.adapter)

        self.assertEqual(migrated, ["currency", "category_id"])
        self.assertIn("idx_category_id", self._index_names())
        self.assertNotIn("idx_subcategory_id", self._index_names())


class ExpenseTableTests(unittest.TestCase):
    def test_amount_is_unbounded_numeric(self) -> None:
        self.assertIsInstance(expenses.c.amount.type, Numeric)
        self.assertIsNone(expenses.c.amount.type.precision)
        self.assertIsNone(expenses.c.amount.type.scale)

    def test_postgres_ddl(self) -> None:
        ddl = str(CreateTable(expenses).compile(dialect=postgresql.dialect()))

        self.assertIn("id SERIAL NOT NULL", ddl)
        self.assertIn("amount NUMERIC NOT NULL", ddl)
        self.assertIn("currency VARCHAR(10) DEFAULT 'PEN' NOT NULL", ddl)
        self.assertIn("REFERENCES categories (id) ON DELETE RESTRICT", ddl)
        self.assertIn("REFERENCES subcategories (id) ON DELETE RESTRICT", ddl)

    def test_subcategories_cascade_with_their_category(self) -> None:
        (foreign_key,) = subcategories.c.category_id.foreign_keys

        self.assertEqual(foreign_key.target_fullname, "categories.id")
        self.assertEqual(foreign_key.ondelete, "CASCADE")


if __name__ == "__main__":
    unittest.main()
