"""
Accès données pour les statistiques : implémentation SQLAlchemy du
WarehouseGateway.

Les requêtes sont bloquantes ; chacune tourne dans un thread (asyncio.to_thread)
avec SA PROPRE session, pour que les 4 lectures d'une ingestion avancent en
parallèle sans partager d'état.
"""

from __future__ import annotations

import asyncio
import threading
import time
from dataclasses import dataclass
from typing import Callable

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from almacen.app.core.config import get_settings
from almacen.app.core.logging import get_logger
from almacen.app.db.models.core_types import ItemKind
from almacen.app.db.models.models_v1 import (
    Equipment,
    Inventory,
    Material,
    Ppe,
    Requisition,
    StockMovement,
)
from almacen.services.notifications import InventoryChangeNotifier
from almacen.services.procurement import zero_quantity_corrections
from almacen.services.records import (
    CorrectionKey,
    InventorySnapshot,
    ItemKey,
    ItemRef,
    MovementRecord,
    RequisitionLine,
    RequisitionRecord,
    num,
)

logger = get_logger("services.gateway")


@dataclass(frozen=True)
class CatalogEntry:
    name: str
    max_stock: float | None = None


class CatalogCache:
    """
    Catalogue (matériels, équipements, EPP) mémorisé avec une durée de vie.

    - get(db) recharge si vide ou expiré
    - get(db, force_refresh=True) recharge toujours
    - invalidate() vide le cache (ex: après un import de matériels)
    """

    def __init__(self, ttl_seconds: float | None = None, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = get_settings().catalog_ttl_seconds if ttl_seconds is None else ttl_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: dict[ItemKey, CatalogEntry] | None = None
        self._loaded_at = 0.0

    def get(self, db: Session, *, force_refresh: bool = False) -> dict[ItemKey, CatalogEntry]:
        with self._lock:
            expired = self._clock() - self._loaded_at >= self.ttl_seconds
            if force_refresh or self._entries is None or expired:
                self._entries = self._load(db)
                self._loaded_at = self._clock()
                logger.debug("Catalog cache loaded (%d items)", len(self._entries))
            return self._entries

    def invalidate(self) -> None:
        with self._lock:
            self._entries = None

    @staticmethod
    def _load(db: Session) -> dict[ItemKey, CatalogEntry]:
        entries: dict[ItemKey, CatalogEntry] = {}
        for m in db.execute(select(Material)).scalars():
            max_stock = None if m.max_stock is None else float(m.max_stock)
            entries[(ItemKind.material, int(m.id))] = CatalogEntry(m.description, max_stock)
        for e in db.execute(select(Equipment)).scalars():
            entries[(ItemKind.equipment, int(e.id))] = CatalogEntry(e.name)
        for p in db.execute(select(Ppe)).scalars():
            entries[(ItemKind.ppe, int(p.id))] = CatalogEntry(p.description)
        return entries


def _item_ref(
    catalog: dict[ItemKey, CatalogEntry],
    kind: ItemKind | None,
    item_id: int | None,
    fallback: str | None = None,
) -> ItemRef | None:
    if kind is None or item_id is None:
        return None
    entry = catalog.get((kind, int(item_id)))
    name = entry.name if entry else (fallback or "-")
    return ItemRef(kind=kind, id=int(item_id), name=name)


class SqlWarehouseGateway:
    def __init__(
        self,
        session_factory: Callable[[], Session],
        *,
        catalog: CatalogCache | None = None,
        notifier: InventoryChangeNotifier | None = None,
    ):
        self.session_factory = session_factory
        self.catalog = catalog or CatalogCache()
        self.notifier = notifier or InventoryChangeNotifier()

    # ---------- async API ----------
    async def fetch_movements(self, site_id: int) -> list[MovementRecord]:
        return await asyncio.to_thread(self.movements, site_id)

    async def fetch_requisitions(self, site_id: int) -> list[RequisitionRecord]:
        return await asyncio.to_thread(self.requisitions, site_id)

    async def fetch_inventory_snapshot(self, site_id: int) -> list[InventorySnapshot]:
        return await asyncio.to_thread(self.inventory_snapshot, site_id)

    async def fetch_zero_quantity_corrections(self) -> list[CorrectionKey]:
        return await asyncio.to_thread(self.corrections)

    def subscribe_to_inventory_changes(self, site_id: int, on_change: Callable[[], None]) -> Callable[[], None]:
        return self.notifier.subscribe(site_id, on_change)

    # ---------- blocking queries ----------
    def movements(self, site_id: int) -> list[MovementRecord]:
        with self.session_factory() as db:
            catalog = self.catalog.get(db)
            rows = (
                db.execute(
                    select(StockMovement)
                    .where(StockMovement.site_id == site_id)
                    .order_by(StockMovement.created_at, StockMovement.id)
                )
                .scalars()
                .all()
            )
            return [
                MovementRecord(
                    id=int(mv.id),
                    site_id=int(mv.site_id),
                    kind=mv.kind,
                    quantity=num(mv.quantity),
                    item=_item_ref(catalog, mv.item_kind, mv.item_id),
                    reference_document=mv.reference_document or "",
                    created_at=mv.created_at,
                )
                for mv in rows
            ]

    def requisitions(self, site_id: int) -> list[RequisitionRecord]:
        with self.session_factory() as db:
            catalog = self.catalog.get(db)
            rows = (
                db.execute(
                    select(Requisition)
                    .options(selectinload(Requisition.lines))
                    .where(Requisition.site_id == site_id)
                    .order_by(Requisition.requested_on.desc(), Requisition.id.desc())
                )
                .scalars()
                .all()
            )
            return [
                RequisitionRecord(
                    id=int(req.id),
                    site_id=int(req.site_id),
                    requester=req.requester,
                    specialty=req.specialty,
                    requested_on=req.requested_on,
                    lines=tuple(
                        RequisitionLine(
                            id=int(line.id),
                            item=_item_ref(catalog, line.item_kind, line.item_id, line.description),
                            qty_requested=num(line.qty_requested),
                            qty_fulfilled=None if line.qty_fulfilled is None else num(line.qty_fulfilled),
                            qty_petty_cash=num(line.qty_petty_cash),
                            status=line.status,
                            description=line.description or "",
                            fulfilled_at=line.fulfilled_at,
                        )
                        for line in req.lines
                    ),
                )
                for req in rows
            ]

    def inventory_snapshot(self, site_id: int) -> list[InventorySnapshot]:
        with self.session_factory() as db:
            catalog = self.catalog.get(db)
            rows = db.execute(select(Inventory).where(Inventory.site_id == site_id).order_by(Inventory.id)).scalars().all()
            snapshots = []
            for inv in rows:
                entry = catalog.get((inv.item_kind, int(inv.item_id)))
                snapshots.append(
                    InventorySnapshot(
                        site_id=int(inv.site_id),
                        item=_item_ref(catalog, inv.item_kind, inv.item_id),
                        qty_on_hand=num(inv.qty_on_hand),
                        last_entry_at=inv.last_entry_at,
                        max_stock=entry.max_stock if entry else None,
                    )
                )
            return snapshots

    def corrections(self) -> list[CorrectionKey]:
        with self.session_factory() as db:
            return zero_quantity_corrections(db)
