from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from sqlalchemy import (
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    MetaData,
    Numeric,
    String,
    Table,
    Text,
    UniqueConstraint,
    func,
    inspect,
)
from sqlalchemy.exc import SQLAlchemyError

if TYPE_CHECKING:
    from expense_tracker.database import DatabaseAdapter

logger = logging.getLogger(__name__)

metadata = MetaData()

categories = Table(
    "categories",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(255), nullable=False, unique=True),
    Column("icon", String(50)),
    Column("display_order", Integer, nullable=False, server_default="0"),
    Column("created_at", DateTime, nullable=False, server_default=func.now()),
    sqlite_autoincrement=True,
)

subcategories = Table(
    "subcategories",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column(
        "category_id",
        Integer,
        ForeignKey("categories.id", ondelete="CASCADE"),
        nullable=False,
    ),
    Column("name", String(255), nullable=False),
    Column("display_order", Integer, nullable=False, server_default="0"),
    Column("created_at", DateTime, nullable=False, server_default=func.now()),
    UniqueConstraint("category_id", "name", name="uq_subcategories_category_name"),
    Index("idx_subcategories_category_id", "category_id"),
    sqlite_autoincrement=True,
)

expenses = Table(
    "expenses",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("amount", Numeric, nullable=False),
    Column("currency", String(10), nullable=False, server_default="PEN"),
    Column("category", String(255), nullable=False),
    Column("category_id", Integer, ForeignKey("categories.id", ondelete="RESTRICT")),
    Column("subcategory", String(255), nullable=False),
    Column("subcategory_id", Integer, ForeignKey("subcategories.id", ondelete="RESTRICT")),
    Column("owner", String(255), nullable=False),
    Column("description", Text),
    Column("date", String(10), nullable=False),
    Index("idx_date", "date"),
    Index("idx_category", "category"),
    Index("idx_subcategory", "subcategory"),
    Index("idx_owner", "owner"),
    Index("idx_category_id", "category_id"),
    Index("idx_subcategory_id", "subcategory_id"),
    sqlite_autoincrement=True,
)

# Columns added to ``expenses`` after the first release, in the order they appeared.
EXPENSE_MIGRATIONS = [
    ("currency", "VARCHAR(10) NOT NULL DEFAULT 'PEN'"),
    ("category_id", "INTEGER REFERENCES categories(id) ON DELETE RESTRICT"),
    ("subcategory_id", "INTEGER REFERENCES subcategories(id) ON DELETE RESTRICT"),
]


def expense_columns(adapter: "DatabaseAdapter") -> list[str]:
    return [column["name"] for column in inspect(adapter.engine).get_columns("expenses")]


def migrate_expense_columns(adapter: "DatabaseAdapter") -> list[str]:
    """Add any expense column missing from an older table.

    Errors are logged and swallowed; the table keeps its previous shape.
    """
    migrated: list[str] = []
    try:
        existing = set(expense_columns(adapter))
    except SQLAlchemyError as exc:
        logger.warning("Migration check failed: %s", exc)
        return migrated

    for column, definition in EXPENSE_MIGRATIONS:
        if column in existing:
            continue
        try:
            logger.info("Migrating: adding %s column to expenses...", column)
            adapter.execute(f"ALTER TABLE expenses ADD COLUMN {column} {definition}")
        except SQLAlchemyError as exc:
            logger.warning("Migration of column %s failed: %s", column, exc)
            continue
        logger.info("Migration completed: %s column added", column)
        migrated.append(column)
    return migrated


def apply_schema(adapter: "DatabaseAdapter") -> list[str]:
    """Create tables, migrate older expense tables and build indexes.

    Safe to run on every start. Returns the names of migrated columns.
    """
    metadata.create_all(adapter.engine, checkfirst=True)

    migrated = migrate_expense_columns(adapter)

    # create_all skips the indexes of a table that already existed.
    # A failed migration leaves its column out; skip that column's index.
    columns = set(expense_columns(adapter))
    for index in expenses.indexes:
        if all(column.name in columns for column in index.columns):
            index.create(adapter.engine, checkfirst=True)

    logger.info("%s schema initialized", adapter.dialect)
    return migrated
