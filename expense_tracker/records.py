from __future__ import annotations

from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Any, Mapping

from sqlalchemy.exc import IntegrityError

from expense_tracker.database import DatabaseAdapter


class ValidationError(ValueError):
    """Raised when a write carries a missing or malformed field."""


class RecordNotFound(LookupError):
    """Raised when the target row of an update or delete does not exist."""


class RecordInUse(RuntimeError):
    """Raised when a category or subcategory still has expenses."""


class DuplicateRecord(RuntimeError):
    """Raised when a write would break a uniqueness rule."""


class Currency:
    values = ("PEN", "USD")

    @classmethod
    def validate(cls, value: Any) -> str:
        if value not in cls.values:
            raise ValidationError("Invalid currency. Must be PEN or USD.")
        return value


def coerce_decimal(value: Decimal | float | int | str) -> Decimal:
    return value if isinstance(value, Decimal) else Decimal(str(value))


def coerce_amount(value: Any) -> Decimal:
    if isinstance(value, bool) or value is None:
        raise ValidationError("Amount must be a number.")
    try:
        amount = coerce_decimal(value)
    except InvalidOperation as exc:
        raise ValidationError("Amount must be a number.") from exc
    if not amount.is_finite():
        raise ValidationError("Amount must be a number.")
    if amount <= 0:
        raise ValidationError("Amount must be greater than zero.")
    return amount


def coerce_date(value: Any) -> str:
    if isinstance(value, date):
        return value.isoformat()
    if not isinstance(value, str):
        raise ValidationError("Date must be an ISO date (YYYY-MM-DD).")
    try:
        return date.fromisoformat(value.strip()).isoformat()
    except ValueError as exc:
        raise ValidationError("Date must be an ISO date (YYYY-MM-DD).") from exc


def coerce_int(value: Any, field: str) -> int:
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be an integer.")
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"{field} must be an integer.") from exc


def optional_int(value: Any, field: str) -> int | None:
    if value is None or value == "":
        return None
    return coerce_int(value, field)


def required_text(value: Any, field: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{field} is required.")
    return value.strip()


def optional_text(value: Any) -> str | None:
    if value is None:
        return None
    cleaned = str(value).strip()
    return cleaned or None


def _count(row: Mapping[str, Any] | None) -> int:
    if not row:
        return 0
    return int(row["count"] or 0)


EXPENSE_REQUIRED = ("amount", "currency", "category", "subcategory", "owner", "date")


def clean_expense_fields(fields: Mapping[str, Any], *, partial: bool) -> dict[str, Any]:
    """Validate expense fields and map them to column values.

    With ``partial`` only the supplied fields are returned; otherwise every
    required field must be present and non-empty.
    """
    if not partial:
        missing = [
            name
            for name in EXPENSE_REQUIRED
            if fields.get(name) is None or fields.get(name) == ""
        ]
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}.")

    values: dict[str, Any] = {}
    if "amount" in fields:
        values["amount"] = coerce_amount(fields["amount"])
    if "currency" in fields:
        values["currency"] = Currency.validate(fields["currency"])
    if "category" in fields:
        values["category"] = required_text(fields["category"], "category")
    if "category_id" in fields:
        values["category_id"] = optional_int(fields["category_id"], "category_id")
    if "subcategory" in fields:
        values["subcategory"] = required_text(fields["subcategory"], "subcategory")
    if "subcategory_id" in fields:
        values["subcategory_id"] = optional_int(fields["subcategory_id"], "subcategory_id")
    if "owner" in fields:
        values["owner"] = required_text(fields["owner"], "owner")
    if "description" in fields:
        values["description"] = optional_text(fields["description"])
    if "date" in fields:
        values["date"] = coerce_date(fields["date"])
    return values


def _expense_row(row: dict[str, Any]) -> dict[str, Any]:
    row["amount"] = coerce_decimal(row["amount"])
    return row


class ExpenseStore:
    def __init__(self, adapter: DatabaseAdapter) -> None:
        self.adapter = adapter

    def list(
        self,
        category: str | None = None,
        subcategory: str | None = None,
        owner: str | None = None,
        category_id: int | None = None,
        subcategory_id: int | None = None,
    ) -> list[dict[str, Any]]:
        filters = {
            "category": category,
            "subcategory": subcategory,
            "owner": owner,
            "category_id": category_id,
            "subcategory_id": subcategory_id,
        }
        sql = "SELECT * FROM expenses WHERE 1=1"
        params: list[Any] = []
        for column, value in filters.items():
            if value is None or value == "":
                continue
            sql += f" AND {column} = ?"
            params.append(value)
        sql += " ORDER BY date DESC, id DESC"
        return [_expense_row(row) for row in self.adapter.query(sql, params)]

    def list_between(self, start: date, end: date) -> list[dict[str, Any]]:
        rows = self.adapter.query(
            "SELECT * FROM expenses WHERE date >= ? AND date <= ?",
            [start.isoformat(), end.isoformat()],
        )
        return [_expense_row(row) for row in rows]

    def get(self, expense_id: int) -> dict[str, Any]:
        row = self.adapter.get("SELECT * FROM expenses WHERE id = ?", [expense_id])
        if not row:
            raise RecordNotFound("Expense not found.")
        return _expense_row(row)

    def create(self, fields: Mapping[str, Any]) -> dict[str, Any]:
        values = clean_expense_fields(fields, partial=False)
        columns = ", ".join(values)
        markers = ", ".join("?" for _ in values)
        try:
            row = self.adapter.get(
                f"INSERT INTO expenses ({columns}) VALUES ({markers}) RETURNING *",
                list(values.values()),
            )
        except IntegrityError as exc:
            raise ValidationError("Unknown category_id or subcategory_id.") from exc
        return _expense_row(row)

    def update(self, expense_id: int, fields: Mapping[str, Any]) -> dict[str, Any]:
        values = clean_expense_fields(fields, partial=True)
        if not values:
            raise ValidationError("No fields to update.")
        assignments = ", ".join(f"{column} = ?" for column in values)
        try:
            row = self.adapter.get(
                f"UPDATE expenses SET {assignments} WHERE id = ? RETURNING *",
                [*values.values(), expense_id],
            )
        except IntegrityError as exc:
            raise ValidationError("Unknown category_id or subcategory_id.") from exc
        if not row:
            raise RecordNotFound("Expense not found.")
        return _expense_row(row)

    def delete(self, expense_id: int) -> None:
        row = self.adapter.get("DELETE FROM expenses WHERE id = ? RETURNING id", [expense_id])
        if not row:
            raise RecordNotFound("Expense not found.")


class CategoryStore:
    def __init__(self, adapter: DatabaseAdapter) -> None:
        self.adapter = adapter

    def _clean(self, fields: Mapping[str, Any], *, partial: bool) -> dict[str, Any]:
        values: dict[str, Any] = {}
        if "name" in fields or not partial:
            values["name"] = required_text(fields.get("name"), "name")
        if "icon" in fields:
            values["icon"] = optional_text(fields["icon"])
        if "display_order" in fields:
            display_order = fields["display_order"]
            values["display_order"] = (
                0 if display_order is None else coerce_int(display_order, "display_order")
            )
        return values

    def list(self) -> list[dict[str, Any]]:
        return self.adapter.query("SELECT * FROM categories ORDER BY display_order, name")

    def get(self, category_id: int) -> dict[str, Any]:
        row = self.adapter.get("SELECT * FROM categories WHERE id = ?", [category_id])
        if not row:
            raise RecordNotFound("Category not found.")
        return row

    def create(self, fields: Mapping[str, Any]) -> dict[str, Any]:
        values = self._clean(fields, partial=False)
        values.setdefault("display_order", 0)
        columns = ", ".join(values)
        markers = ", ".join("?" for _ in values)
        try:
            return self.adapter.get(
                f"INSERT INTO categories ({columns}) VALUES ({markers}) RETURNING *",
                list(values.values()),
            )
        except IntegrityError as exc:
            raise DuplicateRecord("Category already exists.") from exc

    def update(self, category_id: int, fields: Mapping[str, Any]) -> dict[str, Any]:
        values = self._clean(fields, partial=True)
        if not values:
            raise ValidationError("No fields to update.")
        assignments = ", ".join(f"{column} = ?" for column in values)
        try:
            row = self.adapter.get(
                f"UPDATE categories SET {assignments} WHERE id = ? RETURNING *",
                [*values.values(), category_id],
            )
        except IntegrityError as exc:
            raise DuplicateRecord("Category already exists.") from exc
        if not row:
            raise RecordNotFound("Category not found.")
        return row

    def expense_count(self, category: Mapping[str, Any]) -> int:
        return _count(
            self.adapter.get(
                "SELECT COUNT(*) AS count FROM expenses WHERE category_id = ? OR category = ?",
                [category["id"], category["name"]],
            )
        )

    def delete(self, category_id: int) -> None:
        category = self.get(category_id)
        if self.expense_count(category) > 0:
            raise RecordInUse("Cannot delete category with existing expenses.")
        try:
            self.adapter.execute("DELETE FROM categories WHERE id = ?", [category_id])
        except IntegrityError as exc:
            # An expense still points at one of the cascaded subcategories.
            raise RecordInUse("Cannot delete category with existing expenses.") from exc


SUBCATEGORY_SELECT = (
    "SELECT s.*, c.name AS category_name "
    "FROM subcategories s "
    "LEFT JOIN categories c ON s.category_id = c.id"
)


class SubcategoryStore:
    def __init__(self, adapter: DatabaseAdapter) -> None:
        self.adapter = adapter

    def _clean(self, fields: Mapping[str, Any], *, partial: bool) -> dict[str, Any]:
        values: dict[str, Any] = {}
        if "category_id" in fields or not partial:
            if fields.get("category_id") in (None, ""):
                raise ValidationError("category_id is required.")
            values["category_id"] = coerce_int(fields["category_id"], "category_id")
        if "name" in fields or not partial:
            values["name"] = required_text(fields.get("name"), "name")
        if "display_order" in fields:
            display_order = fields["display_order"]
            values["display_order"] = (
                0 if display_order is None else coerce_int(display_order, "display_order")
            )
        return values

    def _parent(self, category_id: int) -> dict[str, Any]:
        parent = self.adapter.get("SELECT id, name FROM categories WHERE id = ?", [category_id])
        if not parent:
            raise RecordNotFound("Category not found.")
        return parent

    def list(self, category_id: int | None = None) -> list[dict[str, Any]]:
        sql = SUBCATEGORY_SELECT
        params: list[Any] = []
        if category_id is not None:
            sql += " WHERE s.category_id = ?"
            params.append(category_id)
        sql += " ORDER BY s.display_order, s.name"
        return self.adapter.query(sql, params)

    def get(self, subcategory_id: int) -> dict[str, Any]:
        row = self.adapter.get(f"{SUBCATEGORY_SELECT} WHERE s.id = ?", [subcategory_id])
        if not row:
            raise RecordNotFound("Subcategory not found.")
        return row

    def create(self, fields: Mapping[str, Any]) -> dict[str, Any]:
        values = self._clean(fields, partial=False)
        values.setdefault("display_order", 0)
        parent = self._parent(values["category_id"])
        columns = ", ".join(values)
        markers = ", ".join("?" for _ in values)
        try:
            row = self.adapter.get(
                f"INSERT INTO subcategories ({columns}) VALUES ({markers}) RETURNING *",
                list(values.values()),
            )
        except IntegrityError as exc:
            raise DuplicateRecord("Subcategory already exists in this category.") from exc
        row["category_name"] = parent["name"]
        return row

    def update(self, subcategory_id: int, fields: Mapping[str, Any]) -> dict[str, Any]:
        values = self._clean(fields, partial=True)
        if not values:
            raise ValidationError("No fields to update.")
        if "category_id" in values:
            self._parent(values["category_id"])
        assignments = ", ".join(f"{column} = ?" for column in values)
        try:
            row = self.adapter.get(
                f"UPDATE subcategories SET {assignments} WHERE id = ? RETURNING *",
                [*values.values(), subcategory_id],
            )
        except IntegrityError as exc:
            raise DuplicateRecord("Subcategory already exists in this category.") from exc
        if not row:
            raise RecordNotFound("Subcategory not found.")
        row["category_name"] = self._parent(row["category_id"])["name"]
        return row

    def expense_count(self, subcategory: Mapping[str, Any]) -> int:
        return _count(
            self.adapter.get(
                "SELECT COUNT(*) AS count FROM expenses "
                "WHERE subcategory_id = ? OR (subcategory = ? AND category = ?)",
                [subcategory["id"], subcategory["name"], subcategory["category_name"]],
            )
        )

    def delete(self, subcategory_id: int) -> None:
        subcategory = self.get(subcategory_id)
        if self.expense_count(subcategory) > 0:
            raise RecordInUse("Cannot delete subcategory with existing expenses.")
        self.adapter.execute("DELETE FROM subcategories WHERE id = ?", [subcategory_id])
