from datetime import datetime

from pydantic import BaseModel

from almacen.app.db.models.core_types import ItemKind, MovementKind


class InventoryRead(BaseModel):
    id: int
    site_id: int
    item_kind: ItemKind
    item_id: int

    qty_on_hand: float
    last_entry_at: datetime | None  # READ ONLY : mis à jour par les ENTRADAS

    class Config:
        from_attributes = True


class MovementRead(BaseModel):
    id: int
    site_id: int
    kind: MovementKind
    item_kind: ItemKind | None
    item_id: int | None
    quantity: float
    reference_document: str | None
    destination: str | None
    requisition_id: int | None
    created_at: datetime

    class Config:
        from_attributes = True
