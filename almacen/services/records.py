"""
Enregistrements en lecture seule consommés par les statistiques.

Ce sont des vues figées (frozen dataclasses) des lignes SQL : aucun calcul
ne les modifie, chaque agrégation produit ses propres objets.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, time, timezone

from almacen.app.db.models.core_types import ItemKind, LineStatus, MovementKind

ItemKey = tuple[ItemKind, int]
CorrectionKey = tuple[int, ItemKey]


@dataclass(frozen=True)
class ItemRef:
    """Article référencé : exactement un type (matériel, équipement, EPP)."""

    kind: ItemKind
    id: int
    name: str = "-"

    @property
    def key(self) -> ItemKey:
        return (self.kind, self.id)


@dataclass(frozen=True)
class MovementRecord:
    id: int
    site_id: int
    kind: MovementKind
    quantity: float
    item: ItemRef | None
    reference_document: str
    created_at: datetime


@dataclass(frozen=True)
class RequisitionLine:
    id: int
    item: ItemRef | None
    qty_requested: float
    qty_fulfilled: float | None
    qty_petty_cash: float
    status: LineStatus
    description: str = ""
    fulfilled_at: datetime | None = None


@dataclass(frozen=True)
class RequisitionRecord:
    id: int
    site_id: int
    requester: str | None
    requested_on: date
    lines: tuple[RequisitionLine, ...] = field(default_factory=tuple)
    specialty: str | None = None


@dataclass(frozen=True)
class InventorySnapshot:
    site_id: int
    item: ItemRef
    qty_on_hand: float
    last_entry_at: datetime | None = None
    max_stock: float | None = None


def as_utc(value: datetime | date) -> datetime:
    """
    Normalise un horodatage en datetime UTC.
    - date -> minuit UTC du jour
    - datetime naïf -> considéré comme UTC (SQLite ne garde pas le fuseau)
    """
    if not isinstance(value, datetime):
        return datetime.combine(value, time.min, tzinfo=timezone.utc)
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def num(value) -> float:
    """Lecture numérique tolérante : None / valeur invalide -> 0."""
    if value is None:
        return 0.0
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0
