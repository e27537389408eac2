"""
Database adapter for the expense tracker.

SQL is written once with ``?`` positional markers. SQLite runs it as-is;
PostgreSQL gets it rewritten into numbered bind parameters first. Both
backends sit on SQLAlchemy engines and expose the same four calls:
``query``, ``execute``, ``get`` and ``run``.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from decimal import Decimal
from pathlib import Path
from typing import Any, Sequence

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from expense_tracker.config import Settings
from expense_tracker.schema import apply_schema
from expense_tracker.seed import seed_default_categories

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RunResult:
    inserted_id: int | None = None


def rewrite_placeholders(
    sql: str, params: Sequence[Any] | None = None
) -> tuple[str, dict[str, Any]]:
    """Turn ``?`` markers into ``:p1``, ``:p2``, ... bind parameters.

    Markers inside single- or double-quoted literals are left untouched.
    Returns the rewritten SQL and the parameters keyed by bind name.
    """
    values = list(params or [])
    pieces: list[str] = []
    bound: dict[str, Any] = {}
    quote: str | None = None
    for char in sql:
        if quote:
            if char == quote:
                quote = None
        elif char in ("'", '"'):
            quote = char
        elif char == "?":
            index = len(bound) + 1
            if index > len(values):
                raise ValueError(
                    f"SQL has more placeholders than the {len(values)} parameters given."
                )
            name = f"p{index}"
            bound[name] = values[index - 1]
            pieces.append(f":{name}")
            continue
        pieces.append(char)
    if len(bound) != len(values):
        raise ValueError(
            f"SQL has {len(bound)} placeholders but {len(values)} parameters were given."
        )
    return "".join(pieces), bound


def is_insert(sql: str) -> bool:
    return sql.lstrip().upper().startswith("INSERT")


def with_returning_id(sql: str) -> str:
    if not is_insert(sql) or "RETURNING" in sql.upper():
        return sql
    return sql.rstrip().rstrip(";") + " RETURNING id"


class DatabaseAdapter(ABC):
    """Uniform query interface over one relational engine."""

    dialect: str = ""

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    @abstractmethod
    def query(self, sql: str, params: Sequence[Any] | None = None) -> list[dict[str, Any]]:
        """Run a statement and return every row as a dict."""

    @abstractmethod
    def execute(self, sql: str, params: Sequence[Any] | None = None) -> None:
        """Run a statement and discard any result."""

    @abstractmethod
    def run(self, sql: str, params: Sequence[Any] | None = None) -> RunResult:
        """Run a write, reporting the new row id for inserts."""

    def get(self, sql: str, params: Sequence[Any] | None = None) -> dict[str, Any] | None:
        rows = self.query(sql, params)
        return rows[0] if rows else None

    def close(self) -> None:
        self.engine.dispose()


def _coerce_sqlite_param(value: Any) -> Any:
    # sqlite3 has no adapter for Decimal.
    if isinstance(value, Decimal):
        return float(value)
    return value


class SQLiteAdapter(DatabaseAdapter):
    dialect = "sqlite"

    def _params(self, params: Sequence[Any] | None) -> tuple[Any, ...]:
        return tuple(_coerce_sqlite_param(value) for value in params or ())

    def query(self, sql: str, params: Sequence[Any] | None = None) -> list[dict[str, Any]]:
        with self.engine.begin() as conn:
            result = conn.exec_driver_sql(sql, self._params(params))
            if not result.returns_rows:
                return []
            return [dict(row) for row in result.mappings().all()]

    def execute(self, sql: str, params: Sequence[Any] | None = None) -> None:
        with self.engine.begin() as conn:
            conn.exec_driver_sql(sql, self._params(params))

    def run(self, sql: str, params: Sequence[Any] | None = None) -> RunResult:
        with self.engine.begin() as conn:
            result = conn.exec_driver_sql(sql, self._params(params))
            if is_insert(sql):
                return RunResult(inserted_id=result.lastrowid)
        return RunResult()


class PostgresAdapter(DatabaseAdapter):
    dialect = "postgresql"

    def query(self, sql: str, params: Sequence[Any] | None = None) -> list[dict[str, Any]]:
        statement, bound = rewrite_placeholders(sql, params)
        with self.engine.begin() as conn:
            result = conn.execute(text(statement), bound)
            if not result.returns_rows:
                return []
            return [dict(row) for row in result.mappings().all()]

    def execute(self, sql: str, params: Sequence[Any] | None = None) -> None:
        statement, bound = rewrite_placeholders(sql, params)
        with self.engine.begin() as conn:
            conn.execute(text(statement), bound)

    def run(self, sql: str, params: Sequence[Any] | None = None) -> RunResult:
        if not is_insert(sql):
            self.execute(sql, params)
            return RunResult()
        row = self.get(with_returning_id(sql), params)
        return RunResult(inserted_id=row["id"] if row else None)


def create_sqlite_engine(path: Path) -> Engine:
    engine = create_engine(
        f"sqlite:///{path}",
        connect_args={"check_same_thread": False},
    )

    @event.listens_for(engine, "connect")
    def _enable_foreign_keys(dbapi_connection, connection_record) -> None:
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    return engine


def connect_sqlite(path: Path) -> SQLiteAdapter:
    logger.info("Connecting to SQLite...")
    path.parent.mkdir(parents=True, exist_ok=True)
    adapter = SQLiteAdapter(create_sqlite_engine(path))
    try:
        apply_schema(adapter)
    except SQLAlchemyError:
        adapter.close()
        raise
    logger.info("Connected to SQLite: %s", path)
    return adapter


def connect_postgres(url: str) -> PostgresAdapter:
    logger.info("Connecting to PostgreSQL...")
    adapter = PostgresAdapter(create_engine(url, pool_pre_ping=True))
    try:
        apply_schema(adapter)
    except SQLAlchemyError:
        adapter.close()
        raise
    logger.info("Connected to PostgreSQL")
    try:
        seed_default_categories(adapter)
    except SQLAlchemyError as exc:
        logger.warning("Could not seed default categories: %s", exc)
    return adapter


class Database:
    """Owns the adapter for one process.

    The backend is chosen on the first ``connect()`` (or first access to
    ``adapter``) and kept until ``close()``.
    """

    def __init__(self, settings: Settings) -> None:
        self.settings = settings
        self._adapter: DatabaseAdapter | None = None

    @classmethod
    def from_env(cls) -> "Database":
        return cls(Settings.from_env())

    @property
    def adapter(self) -> DatabaseAdapter:
        return self.connect()

    @property
    def connected(self) -> bool:
        return self._adapter is not None

    def connect(self) -> DatabaseAdapter:
        if self._adapter is not None:
            return self._adapter

        if self.settings.postgres_url:
            try:
                self._adapter = connect_postgres(self.settings.postgres_url)
                return self._adapter
            except SQLAlchemyError as exc:
                logger.error("Failed to connect to PostgreSQL: %s", exc)
                if not self.settings.fallback_to_sqlite:
                    raise
                logger.warning("Falling back to SQLite...")

        self._adapter = connect_sqlite(self.settings.sqlite_path)
        return self._adapter

    def close(self) -> None:
        if self._adapter is None:
            return
        self._adapter.close()
        self._adapter = None
