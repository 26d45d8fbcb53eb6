from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Iterable

from sqlalchemy import select, func
from sqlalchemy.orm import Session

from almacen.app.core.logging import get_logger
from almacen.app.db.base import utcnow
from almacen.app.db.models.models_v1 import (
    Equipment,
    Inventory,
    Material,
    Ppe,
    Requisition,
    RequisitionLine,
    Site,
    StockMovement,
)
from almacen.app.db.models.core_types import ItemKind, LineStatus, MovementKind
from almacen.services.analytics import is_petty_cash

logger = get_logger("services.inventory")

_CATALOG_MODELS = {
    ItemKind.material: Material,
    ItemKind.equipment: Equipment,
    ItemKind.ppe: Ppe,
}


class InsufficientStockError(ValueError):
    def __init__(self, available: Decimal, requested: Decimal):
        super().__init__(f"Insufficient stock (available={available}, requested={requested})")
        self.available = available
        self.requested = requested


def _as_decimal(value) -> Decimal:
    return value if isinstance(value, Decimal) else Decimal(str(value))


def line_status_for(qty_fulfilled, qty_requested) -> LineStatus:
    """
    Statut logistique d'une ligne d'après les quantités :
        atendida <= 0          -> Pendiente
        atendida < solicitada  -> Parcial
        sinon                  -> Atendido
    """
    fulfilled = _as_decimal(qty_fulfilled or 0)
    if fulfilled <= 0:
        return LineStatus.pending
    if fulfilled < _as_decimal(qty_requested):
        return LineStatus.partial
    return LineStatus.fulfilled


def require_item(db: Session, item_kind: ItemKind, item_id: int) -> None:
    model = _CATALOG_MODELS[item_kind]
    if db.get(model, item_id) is None:
        raise ValueError(f"Unknown {item_kind.value} id={item_id}")


def _get_or_create_inventory(db: Session, site_id: int, item_kind: ItemKind, item_id: int) -> Inventory:
    inv = (
        db.execute(
            select(Inventory)
            .where(Inventory.site_id == site_id)
            .where(Inventory.item_kind == item_kind)
            .where(Inventory.item_id == item_id)
            .with_for_update()
        )
        .scalar_one_or_none()
    )
    if inv:
        return inv

    inv = Inventory(
        site_id=site_id,
        item_kind=item_kind,
        item_id=item_id,
        qty_on_hand=Decimal("0"),
    )
    db.add(inv)
    db.flush()
    return inv


def find_movement(db: Session, idempotency_key: str) -> StockMovement | None:
    return db.execute(
        select(StockMovement).where(StockMovement.idempotency_key == idempotency_key)
    ).scalar_one_or_none()


def register_entry(
    db: Session,
    *,
    site_id: int,
    item_kind: ItemKind,
    item_id: int,
    quantity,
    idempotency_key: str,
    reference_document: str | None = None,
    requisition_line_id: int | None = None,
    now: datetime | None = None,
) -> StockMovement:
    """
    ENTRADA d'almacén (rejouable via idempotency_key).

    - stock de l'obra += quantité, date de dernier ingreso mise à jour
    - si rattachée à une ligne de requerimiento : atendida += quantité,
      caja chica += quantité si le document l'indique, statut recalculé
    Ne commit pas : c'est l'appelant qui valide la transaction.
    """
    qty = _as_decimal(quantity)
    if qty <= 0:
        raise ValueError("quantity must be > 0")

    existing = find_movement(db, idempotency_key)
    if existing:
        return existing

    require_item(db, item_kind, item_id)
    now = now or utcnow()

    line: RequisitionLine | None = None
    if requisition_line_id is not None:
        line = (
            db.execute(select(RequisitionLine).where(RequisitionLine.id == requisition_line_id).with_for_update())
            .scalar_one_or_none()
        )
        if line is None:
            raise ValueError(f"Unknown requisition line id={requisition_line_id}")
        if line.requisition.site_id != site_id:
            raise ValueError("Requisition line belongs to another site")
        if line.item_kind != item_kind or line.item_id != item_id:
            raise ValueError("Requisition line references another item")
        if line.status == LineStatus.cancelled:
            raise ValueError("Requisition line is cancelled")

    inv = _get_or_create_inventory(db, site_id, item_kind, item_id)
    inv.qty_on_hand = _as_decimal(inv.qty_on_hand) + qty
    inv.last_entry_at = now

    if line is not None:
        line.qty_fulfilled = _as_decimal(line.qty_fulfilled or 0) + qty
        if is_petty_cash(reference_document):
            line.qty_petty_cash = _as_decimal(line.qty_petty_cash or 0) + qty
        line.status = line_status_for(line.qty_fulfilled, line.qty_requested)
        line.fulfilled_at = now

    mv = StockMovement(
        site_id=site_id,
        kind=MovementKind.entry,
        item_kind=item_kind,
        item_id=item_id,
        quantity=qty,
        reference_document=reference_document,
        requisition_id=line.requisition_id if line is not None else None,
        requisition_line_id=requisition_line_id,
        idempotency_key=idempotency_key,
        created_at=now,
    )
    db.add(mv)
    db.flush()
    logger.info("ENTRADA site=%s %s#%s qty=%s ref=%s", site_id, item_kind.value, item_id, qty, reference_document)
    return mv


def register_exit(
    db: Session,
    *,
    site_id: int,
    item_kind: ItemKind,
    item_id: int,
    quantity,
    idempotency_key: str,
    destination: str | None = None,
    now: datetime | None = None,
) -> StockMovement:
    """SALIDA d'almacén : refusée si le stock de l'obra ne couvre pas la quantité."""
    qty = _as_decimal(quantity)
    if qty <= 0:
        raise ValueError("quantity must be > 0")

    existing = find_movement(db, idempotency_key)
    if existing:
        return existing

    require_item(db, item_kind, item_id)

    inv = _get_or_create_inventory(db, site_id, item_kind, item_id)
    available = _as_decimal(inv.qty_on_hand)
    if available < qty:
        raise InsufficientStockError(available, qty)

    inv.qty_on_hand = available - qty

    mv = StockMovement(
        site_id=site_id,
        kind=MovementKind.exit,
        item_kind=item_kind,
        item_id=item_id,
        quantity=qty,
        destination=destination,
        idempotency_key=idempotency_key,
        created_at=now or utcnow(),
    )
    db.add(mv)
    db.flush()
    logger.info("SALIDA site=%s %s#%s qty=%s dest=%s", site_id, item_kind.value, item_id, qty, destination)
    return mv


def next_item_number(db: Session, site_id: int) -> int:
    """Correlativo suivant des requerimientos de l'obra (site verrouillé par l'appelant)."""
    current = db.execute(
        select(func.coalesce(func.max(Requisition.item_number), 0)).where(Requisition.site_id == site_id)
    ).scalar_one()
    return int(current) + 1


def create_requisition(
    db: Session,
    *,
    site_id: int,
    requested_on: date,
    lines: Iterable[dict],
    requester: str | None = None,
    block: str | None = None,
    specialty: str | None = None,
) -> Requisition:
    """
    Crée un requerimiento + ses lignes (Pendiente, atendida = 0).

    Le verrou sur l'obra sérialise l'attribution du correlativo.
    """
    site = db.execute(select(Site).where(Site.id == site_id).with_for_update()).scalar_one_or_none()
    if site is None:
        raise ValueError(f"Unknown site id={site_id}")

    line_rows = list(lines)
    if not line_rows:
        raise ValueError("A requisition needs at least one line")

    req = Requisition(
        site_id=site_id,
        item_number=next_item_number(db, site_id),
        requester=requester,
        requested_on=requested_on,
        block=block,
        specialty=specialty,
    )
    for row in line_rows:
        kind = row.get("item_kind")
        item_id = row.get("item_id")
        if (kind is None) != (item_id is None):
            raise ValueError("item_kind and item_id must be given together")
        if kind is not None:
            require_item(db, kind, item_id)
        req.lines.append(
            RequisitionLine(
                item_kind=kind,
                item_id=item_id,
                description=row.get("description") or "",
                unit=row.get("unit"),
                qty_requested=_as_decimal(row["qty_requested"]),
                qty_fulfilled=Decimal("0"),
                qty_petty_cash=Decimal("0"),
                status=LineStatus.pending,
            )
        )

    db.add(req)
    db.flush()
    logger.info("Requisition #%s created for site %s (%d lines)", req.item_number, site_id, len(req.lines))
    return req
