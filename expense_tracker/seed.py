from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import TYPE_CHECKING

from sqlalchemy.exc import SQLAlchemyError

if TYPE_CHECKING:
    from expense_tracker.database import DatabaseAdapter

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CatalogCategory:
    name: str
    icon: str
    subcategories: tuple[str, ...]


DEFAULT_CATALOG: tuple[CatalogCategory, ...] = (
    CatalogCategory(
        name="Casa",
        icon="🏠",
        subcategories=(
            "Alquiler Depa",
            "Mantenimiento",
            "Servicios",
            "Arreglos / Mejoras",
            "Supermercado",
            "Rappi",
            "Trabajadora del Hogar",
            "Otros",
            "Subtotal",
        ),
    ),
    CatalogCategory(
        name="Auto",
        icon="🚗",
        subcategories=(
            "Gasolina",
            "Parking",
            "Mantenimiento",
            "Seguro",
            "Impuestos",
            "Limpieza",
            "Otros",
            "Subtotal",
        ),
    ),
    CatalogCategory(
        name="Arya",
        icon="👶",
        subcategories=(
            "Educación",
            "Nanita",
            "Aseo Personal",
            "Ropa",
            "Salud",
            "Juguetes",
            "Cumpleaños",
            "Otros",
            "Subtotal",
        ),
    ),
    CatalogCategory(
        name="Familia",
        icon="👨‍👩‍👧",
        subcategories=(
            "Viajes",
            "Salidas",
            "Citas",
            "Salud",
            "Cumple Álvaro",
            "Cumple Maryam",
            "Otros",
            "Subtotal",
        ),
    ),
    CatalogCategory(
        name="Inversiones",
        icon="💰",
        subcategories=(
            "Ahorros",
            "Crédito Hipotecario",
            "Seguros",
            "Otros",
            "Subtotal",
        ),
    ),
    CatalogCategory(
        name="Alvaro",
        icon="👨",
        subcategories=(
            "Papás",
            "Muñecos",
            "Tenis",
            "Ropa",
            "Belleza",
            "Trabajo",
            "Dulces",
            "Otros",
            "Subtotal",
        ),
    ),
    CatalogCategory(
        name="Maryam",
        icon="👩",
        subcategories=(
            "Taxis",
            "Comida",
            "Belleza",
            "Ropa",
            "Teléfono",
            "Netflix",
            "Coquitas",
            "Otros",
            "Subtotal",
        ),
    ),
)


@dataclass(frozen=True)
class SeedResult:
    categories_created: int
    subcategories_created: int


def seed_default_categories(
    adapter: "DatabaseAdapter",
    catalog: tuple[CatalogCategory, ...] = DEFAULT_CATALOG,
) -> SeedResult:
    """Insert the catalog, skipping categories and subcategories already present."""
    categories_created = 0
    subcategories_created = 0
    for category_order, entry in enumerate(catalog):
        existing = adapter.get("SELECT id FROM categories WHERE name = ?", [entry.name])
        if existing:
            category_id = existing["id"]
        else:
            result = adapter.run(
                "INSERT INTO categories (name, icon, display_order) VALUES (?, ?, ?)",
                [entry.name, entry.icon, category_order],
            )
            category_id = result.inserted_id
            categories_created += 1
            logger.info("Created category: %s", entry.name)

        for subcategory_order, name in enumerate(entry.subcategories):
            existing_sub = adapter.get(
                "SELECT id FROM subcategories WHERE category_id = ? AND name = ?",
                [category_id, name],
            )
            if existing_sub:
                continue
            adapter.run(
                "INSERT INTO subcategories (category_id, name, display_order) VALUES (?, ?, ?)",
                [category_id, name, subcategory_order],
            )
            subcategories_created += 1
            logger.debug("Created subcategory: %s / %s", entry.name, name)

    return SeedResult(
        categories_created=categories_created,
        subcategories_created=subcategories_created,
    )


def main() -> int:
    from expense_tracker.database import Database

    logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO").upper())
    database = Database.from_env()
    try:
        result = seed_default_categories(database.connect())
    except SQLAlchemyError as exc:
        logger.error("Seed failed: %s", exc)
        return 1
    finally:
        database.close()
    logger.info(
        "Seed completed: %d categories and %d subcategories created",
        result.categories_created,
        result.subcategories_created,
    )
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
