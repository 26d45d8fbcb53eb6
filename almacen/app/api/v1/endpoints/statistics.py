from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException

from almacen.app.api.deps import get_dashboards
from almacen.app.db.base import utcnow
from almacen.app.db.models.core_types import PeriodWindow
from almacen.app.schemas.statistics import DashboardRead
from almacen.services.dashboard import DashboardRegistry, compute_dashboard
from almacen.services.ingestion import IngestionError

router = APIRouter(prefix="/statistics")


@router.get("", response_model=DashboardRead)
async def get_statistics(
    site_id: int,
    period: PeriodWindow = PeriodWindow.last_30,
    refresh: bool = False,
    registry: DashboardRegistry = Depends(get_dashboards),
):
    """
    Tableau de bord de l'obra.
    - données rechargées seulement si refresh=true ou après un changement d'inventaire
    - changer de période ne relance PAS l'ingestion
    """
    try:
        dataset = await registry.dataset(site_id, force_refresh=refresh)
    except IngestionError as exc:
        raise HTTPException(status_code=503, detail=f"Could not load site data: {exc.reason}")

    stats = compute_dashboard(dataset, period, utcnow())
    return DashboardRead.model_validate(stats)
