from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from almacen.app.api.deps import get_db
from almacen.app.db.models.models_v1 import (
    PurchaseOrder,
    PurchaseOrderLine,
    Requisition,
    Site,
)
from almacen.app.db.models.core_types import ItemKind

router = APIRouter(prefix="/purchase-orders")


class POLineCreate(BaseModel):
    item_kind: ItemKind
    item_id: int
    requisition_id: int | None = None
    # 0 autorisé : la ligne du requerimiento est alors rejetée
    quantity: float = Field(ge=0)
    unit_price: float = Field(default=0, ge=0)


class POCreate(BaseModel):
    po_number: str = Field(min_length=1, max_length=64)
    site_id: int
    supplier: str | None = Field(default=None, max_length=255)
    lines: list[POLineCreate] = Field(default_factory=list)


def _serialize(po: PurchaseOrder) -> dict:
    return {
        "id": po.id,
        "po_number": po.po_number,
        "site_id": po.site_id,
        "supplier": po.supplier,
        "created_at": po.created_at,
        "lines": [
            {
                "id": l.id,
                "item_kind": l.item_kind,
                "item_id": l.item_id,
                "requisition_id": l.requisition_id,
                "quantity": float(l.quantity),
                "unit_price": float(l.unit_price),
            }
            for l in po.lines
        ],
    }


@router.get("")
def list_pos(site_id: int | None = None, db: Session = Depends(get_db)):
    stmt = select(PurchaseOrder).options(selectinload(PurchaseOrder.lines)).order_by(PurchaseOrder.id.desc())
    if site_id is not None:
        stmt = stmt.where(PurchaseOrder.site_id == site_id)
    rows = db.execute(stmt).scalars().all()
    return [_serialize(po) for po in rows]


@router.post("")
def create_po(payload: POCreate, db: Session = Depends(get_db)):
    if not db.get(Site, payload.site_id):
        raise HTTPException(status_code=404, detail="Site not found")

    exists = db.execute(select(PurchaseOrder).where(PurchaseOrder.po_number == payload.po_number)).scalar_one_or_none()
    if exists:
        raise HTTPException(status_code=409, detail="PO number already exists")

    po = PurchaseOrder(po_number=payload.po_number, site_id=payload.site_id, supplier=payload.supplier)
    for line in payload.lines:
        if line.requisition_id is not None:
            req = db.get(Requisition, line.requisition_id)
            if not req or req.site_id != payload.site_id:
                raise HTTPException(status_code=400, detail=f"Invalid requisition_id={line.requisition_id}")
        po.lines.append(
            PurchaseOrderLine(
                item_kind=line.item_kind,
                item_id=line.item_id,
                requisition_id=line.requisition_id,
                quantity=line.quantity,
                unit_price=line.unit_price,
            )
        )

    db.add(po)
    db.commit()
    db.refresh(po)
    return _serialize(po)
