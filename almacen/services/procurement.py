"""
Procurement service.

Ce module lit les flux d'achat (órdenes de compra) mais ne contient AUCUNE
logique de calcul de stock.

Toute la logique stock est centralisée dans :
    almacen.services.inventory
"""

from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.orm import Session

from almacen.app.db.models.models_v1 import PurchaseOrderLine
from almacen.services.records import CorrectionKey


def zero_quantity_corrections(db: Session) -> list[CorrectionKey]:
    """
    Paires (requisition_id, (item_kind, item_id)) des lignes d'OC saisies à 0.

    Règle métier :
        une ligne d'OC à quantité 0 = demande rejetée en aval ;
        la ligne de requerimiento correspondante ne compte plus nulle part.
    """
    rows = db.execute(
        select(
            PurchaseOrderLine.requisition_id,
            PurchaseOrderLine.item_kind,
            PurchaseOrderLine.item_id,
        )
        .where(PurchaseOrderLine.quantity == 0)
        .where(PurchaseOrderLine.requisition_id.is_not(None))
        .distinct()
    ).all()
    return [(int(req_id), (kind, int(item_id))) for req_id, kind, item_id in rows]
