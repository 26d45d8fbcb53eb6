from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy import select
from sqlalchemy.orm import Session

from almacen.app.api.deps import get_db
from almacen.app.db.models.models_v1 import Inventory
from almacen.app.db.models.core_types import ItemKind
from almacen.app.schemas.stock_level import InventoryRead

router = APIRouter(prefix="/stock")


@router.get(
    "",
    response_model=list[InventoryRead],
)
def get_stock(
    site_id: int | None = None,
    item_kind: ItemKind | None = None,
    item_id: int | None = None,
    db: Session = Depends(get_db),
):
    """
    Inventario (READ ONLY)
    - modifié uniquement par les ENTRADAS / SALIDAS
    - exposition sécurisée via schema Pydantic
    """

    stmt = select(Inventory).order_by(Inventory.site_id, Inventory.item_kind, Inventory.item_id)

    if site_id is not None:
        stmt = stmt.where(Inventory.site_id == site_id)

    if item_kind is not None:
        stmt = stmt.where(Inventory.item_kind == item_kind)

    if item_id is not None:
        stmt = stmt.where(Inventory.item_id == item_id)

    return db.execute(stmt).scalars().all()
