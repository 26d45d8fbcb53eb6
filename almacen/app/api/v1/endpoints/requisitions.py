from __future__ import annotations

from datetime import date

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from almacen.app.api.deps import get_db
from almacen.app.db.models.models_v1 import Requisition
from almacen.app.db.models.core_types import ItemKind
from almacen.services.inventory import create_requisition

router = APIRouter(prefix="/requisitions")


class RequisitionLineCreate(BaseModel):
    item_kind: ItemKind | None = None
    item_id: int | None = None
    description: str = Field(default="", max_length=255)
    unit: str | None = Field(default=None, max_length=32)
    qty_requested: float = Field(gt=0)


class RequisitionCreate(BaseModel):
    site_id: int
    requested_on: date
    requester: str | None = Field(default=None, max_length=200)
    block: str | None = Field(default=None, max_length=64)
    specialty: str | None = Field(default=None, max_length=120)
    lines: list[RequisitionLineCreate] = Field(min_length=1)


def _serialize(req: Requisition) -> dict:
    return {
        "id": req.id,
        "site_id": req.site_id,
        "item_number": req.item_number,
        "requester": req.requester,
        "requested_on": req.requested_on,
        "block": req.block,
        "specialty": req.specialty,
        "lines": [
            {
                "id": line.id,
                "item_kind": line.item_kind,
                "item_id": line.item_id,
                "description": line.description,
                "unit": line.unit,
                "qty_requested": float(line.qty_requested),
                "qty_fulfilled": float(line.qty_fulfilled) if line.qty_fulfilled is not None else None,
                "qty_petty_cash": float(line.qty_petty_cash),
                "status": line.status,
                "fulfilled_at": line.fulfilled_at,
            }
            for line in req.lines
        ],
    }


@router.get("")
def list_requisitions(site_id: int, db: Session = Depends(get_db)):
    rows = (
        db.execute(
            select(Requisition)
            .options(selectinload(Requisition.lines))
            .where(Requisition.site_id == site_id)
            .order_by(Requisition.item_number.desc())
        )
        .scalars()
        .all()
    )
    return [_serialize(r) for r in rows]


@router.post("")
def post_requisition(payload: RequisitionCreate, db: Session = Depends(get_db)):
    try:
        req = create_requisition(
            db,
            site_id=payload.site_id,
            requested_on=payload.requested_on,
            requester=payload.requester,
            block=payload.block,
            specialty=payload.specialty,
            lines=[line.model_dump() for line in payload.lines],
        )
    except ValueError as exc:
        db.rollback()
        raise HTTPException(status_code=400, detail=str(exc))

    db.commit()
    db.refresh(req)
    return _serialize(req)
