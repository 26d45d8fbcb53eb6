from __future__ import annotations

from fastapi import APIRouter, Depends, Header, HTTPException, Query
from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.orm import Session

from almacen.app.api.deps import get_db
from almacen.app.db.models.models_v1 import StockMovement
from almacen.app.db.models.core_types import ItemKind
from almacen.app.schemas.stock_level import MovementRead
from almacen.services.inventory import register_entry, register_exit

router = APIRouter(prefix="/stock-movements")


# ---------- Schemas ----------
class EntryCreate(BaseModel):
    site_id: int
    item_kind: ItemKind
    item_id: int
    quantity: float = Field(gt=0)
    reference_document: str | None = Field(default=None, max_length=64)  # "OC-123", "CC 45", guía...
    requisition_line_id: int | None = None


class ExitCreate(BaseModel):
    site_id: int
    item_kind: ItemKind
    item_id: int
    quantity: float = Field(gt=0)
    destination: str | None = Field(default=None, max_length=200)


# ---------- Helpers ----------
def _require_idempotency_key(idempotency_key: str | None) -> str:
    if not idempotency_key or not idempotency_key.strip():
        raise HTTPException(status_code=400, detail="Missing Idempotency-Key header")
    return idempotency_key.strip()


# ---------- Endpoints ----------
@router.get("", response_model=list[MovementRead])
def list_movements(
    site_id: int,
    limit: int = Query(default=100, ge=1, le=1000),
    db: Session = Depends(get_db),
):
    return (
        db.execute(
            select(StockMovement)
            .where(StockMovement.site_id == site_id)
            .order_by(StockMovement.created_at.desc(), StockMovement.id.desc())
            .limit(limit)
        )
        .scalars()
        .all()
    )


@router.post("/entry")
def post_entry(
    payload: EntryCreate,
    db: Session = Depends(get_db),
    idempotency_key: str | None = Header(default=None, alias="Idempotency-Key"),
):
    idem = _require_idempotency_key(idempotency_key)

    try:
        mv = register_entry(
            db,
            site_id=payload.site_id,
            item_kind=payload.item_kind,
            item_id=payload.item_id,
            quantity=payload.quantity,
            reference_document=payload.reference_document,
            requisition_line_id=payload.requisition_line_id,
            idempotency_key=idem,
        )
    except ValueError as exc:
        db.rollback()
        raise HTTPException(status_code=400, detail=str(exc))

    db.commit()
    return {"id": int(mv.id), "idempotency_key": mv.idempotency_key}


@router.post("/exit")
def post_exit(
    payload: ExitCreate,
    db: Session = Depends(get_db),
    idempotency_key: str | None = Header(default=None, alias="Idempotency-Key"),
):
    idem = _require_idempotency_key(idempotency_key)

    try:
        mv = register_exit(
            db,
            site_id=payload.site_id,
            item_kind=payload.item_kind,
            item_id=payload.item_id,
            quantity=payload.quantity,
            destination=payload.destination,
            idempotency_key=idem,
        )
    except ValueError as exc:
        # InsufficientStockError inclus
        db.rollback()
        raise HTTPException(status_code=400, detail=str(exc))

    db.commit()
    return {"id": int(mv.id), "idempotency_key": mv.idempotency_key}
