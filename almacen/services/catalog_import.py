"""
Import Excel / CSV du catalogue (materiales, categorías).

Les en-têtes sont résolus UNE fois par fichier via une table d'alias
déclarative (insensible à la casse et aux accents). Toute ligne inexploitable
est rapportée dans ImportReport.unmatched, jamais ignorée en silence.
"""

from __future__ import annotations

import unicodedata
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any, BinaryIO, Iterable, Mapping

import pandas as pd
from sqlalchemy import select
from sqlalchemy.orm import Session

from almacen.app.core.logging import get_logger
from almacen.app.db.models.models_v1 import Category, Material

logger = get_logger("services.catalog_import")

MATERIAL_HEADER_ALIASES: Mapping[str, tuple[str, ...]] = {
    "description": ("descripcion", "material", "nombre", "item", "description"),
    "category": ("categoria", "rubro", "familia", "category"),
    "unit": ("unidad", "und", "um", "unidad de medida", "unit"),
    "max_stock": ("stock maximo", "stock max", "maximo", "max stock"),
}
MATERIAL_REQUIRED = ("description",)

CATEGORY_HEADER_ALIASES: Mapping[str, tuple[str, ...]] = {
    "name": ("nombre", "categoria", "name"),
    "description": ("descripcion", "detalle", "description"),
}
CATEGORY_REQUIRED = ("name",)

DEFAULT_UNIT = "UND"


class ImportFormatError(ValueError):
    pass


@dataclass(frozen=True)
class UnmatchedRow:
    row_number: int
    reason: str
    raw: dict[str, Any] = field(default_factory=dict)


@dataclass
class ImportReport:
    created: int = 0
    duplicates: int = 0
    unmatched: list[UnmatchedRow] = field(default_factory=list)


def normalize_header(header: Any) -> str:
    text = unicodedata.normalize("NFKD", str(header))
    text = "".join(ch for ch in text if not unicodedata.combining(ch))
    text = text.replace("_", " ").replace("-", " ").strip().lower()
    return " ".join(text.split())


def resolve_headers(
    columns: Iterable[Any],
    aliases: Mapping[str, tuple[str, ...]],
    required: Iterable[str] = (),
) -> dict[str, str]:
    """
    Associe chaque champ canonique à la première colonne reconnue.
    Lève ImportFormatError si un champ obligatoire n'a aucune colonne.
    """
    lookup = {alias: canonical for canonical, names in aliases.items() for alias in names}
    resolved: dict[str, str] = {}
    for column in columns:
        canonical = lookup.get(normalize_header(column))
        if canonical and canonical not in resolved:
            resolved[canonical] = column

    missing = [name for name in required if name not in resolved]
    if missing:
        raise ImportFormatError(f"Missing required column(s): {', '.join(missing)}")
    return resolved


def read_table(file: BinaryIO, filename: str) -> list[dict[str, Any]]:
    """Première feuille (ou CSV) en liste de dicts ; cellules vides -> None."""
    if filename.lower().endswith(".csv"):
        df = pd.read_csv(file, dtype=str)
    else:
        df = pd.read_excel(file, dtype=str)
    df = df.dropna(how="all")
    df = df.astype(object).where(pd.notna(df), None)
    return df.to_dict(orient="records")


def _cell(row: Mapping[str, Any], columns: Mapping[str, str], name: str) -> str | None:
    column = columns.get(name)
    if column is None:
        return None
    value = row.get(column)
    if value is None:
        return None
    text = str(value).strip()
    return text or None


@dataclass(frozen=True)
class MaterialRow:
    description: str
    category: str | None
    unit: str
    max_stock: Decimal | None


def parse_material_rows(rows: list[Mapping[str, Any]]) -> tuple[list[MaterialRow], list[UnmatchedRow]]:
    if not rows:
        return [], []
    columns = resolve_headers(rows[0].keys(), MATERIAL_HEADER_ALIASES, MATERIAL_REQUIRED)

    parsed: list[MaterialRow] = []
    unmatched: list[UnmatchedRow] = []
    for index, row in enumerate(rows):
        row_number = index + 2  # ligne 1 = en-têtes
        description = _cell(row, columns, "description")
        if not description:
            unmatched.append(UnmatchedRow(row_number, "missing description", dict(row)))
            continue

        raw_max = _cell(row, columns, "max_stock")
        max_stock = None
        if raw_max is not None:
            try:
                max_stock = Decimal(raw_max.replace(",", "."))
            except InvalidOperation:
                unmatched.append(UnmatchedRow(row_number, f"invalid max stock {raw_max!r}", dict(row)))
                continue
            if max_stock < 0:
                unmatched.append(UnmatchedRow(row_number, "negative max stock", dict(row)))
                continue

        category = _cell(row, columns, "category")
        parsed.append(
            MaterialRow(
                description=description.upper(),
                category=category.upper() if category else None,
                unit=(_cell(row, columns, "unit") or DEFAULT_UNIT).upper(),
                max_stock=max_stock,
            )
        )
    return parsed, unmatched


def _category_ids(db: Session) -> dict[str, int]:
    return {c.name.upper(): int(c.id) for c in db.execute(select(Category)).scalars()}


def import_materials(db: Session, rows: list[Mapping[str, Any]]) -> ImportReport:
    """Crée les matériels absents ; les catégories inconnues sont créées au passage."""
    parsed, unmatched = parse_material_rows(rows)
    report = ImportReport(unmatched=unmatched)

    categories = _category_ids(db)
    existing = {
        (m.category_id, m.description.upper())
        for m in db.execute(select(Material)).scalars()
    }

    for row in parsed:
        category_id = None
        if row.category:
            category_id = categories.get(row.category)
            if category_id is None:
                cat = Category(name=row.category)
                db.add(cat)
                db.flush()
                category_id = categories[row.category] = int(cat.id)

        key = (category_id, row.description)
        if key in existing:
            report.duplicates += 1
            continue

        db.add(Material(category_id=category_id, description=row.description, unit=row.unit, max_stock=row.max_stock))
        existing.add(key)
        report.created += 1

    db.flush()
    logger.info(
        "Material import: %d created, %d duplicates, %d unmatched",
        report.created,
        report.duplicates,
        len(report.unmatched),
    )
    return report


def import_categories(db: Session, rows: list[Mapping[str, Any]]) -> ImportReport:
    report = ImportReport()
    if not rows:
        return report
    columns = resolve_headers(rows[0].keys(), CATEGORY_HEADER_ALIASES, CATEGORY_REQUIRED)
    existing = set(_category_ids(db))

    for index, row in enumerate(rows):
        name = _cell(row, columns, "name")
        if not name:
            report.unmatched.append(UnmatchedRow(index + 2, "missing name", dict(row)))
            continue
        name = name.upper()
        if name in existing:
            report.duplicates += 1
            continue
        db.add(Category(name=name, description=_cell(row, columns, "description")))
        existing.add(name)
        report.created += 1

    db.flush()
    logger.info(
        "Category import: %d created, %d duplicates, %d unmatched",
        report.created,
        report.duplicates,
        len(report.unmatched),
    )
    return report
