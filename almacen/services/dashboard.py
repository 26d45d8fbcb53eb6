from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from almacen.app.db.models.core_types import PeriodWindow
from almacen.services import analytics
from almacen.services.filters import cutoff
from almacen.services.ingestion import (
    DashboardLoader,
    SiteDataset,
    WarehouseGateway,
)


@dataclass(frozen=True)
class DashboardStats:
    site_id: int
    period: PeriodWindow
    generated_at: datetime
    entry_totals: analytics.EntryTotals
    stock_risk: list[analytics.StockRisk]
    unmet_demand: list[analytics.UnmetDemand]
    weekly_flow: list[analytics.WeekFlow]
    top_consumed: list[analytics.ConsumedItem]
    pending_aging: analytics.PendingAging
    purchase_origin: list[analytics.OriginShare]
    fulfillment: analytics.FulfillmentEfficiency
    fulfillment_time: analytics.FulfillmentTime
    top_requesters: list[analytics.RequesterTotal]
    specialty_totals: list[analytics.SpecialtyTotal]
    excess_inventory: list[analytics.ExcessItem]
    slow_moving: list[analytics.SlowMovingItem]


def compute_dashboard(dataset: SiteDataset, period: PeriodWindow | str, now: datetime) -> DashboardStats:
    """
    Recalcule toutes les statistiques pour une période.
    Appelé après chaque ingestion ET à chaque changement de période (pas de I/O).
    """
    period = PeriodWindow(period)
    since = cutoff(period, now)
    exclusion = dataset.exclusion

    totals = analytics.entry_totals(dataset.movements, since)

    return DashboardStats(
        site_id=dataset.site_id,
        period=period,
        generated_at=now,
        entry_totals=totals,
        stock_risk=analytics.stock_risk_ranking(dataset.movements, dataset.inventory, now),
        unmet_demand=analytics.unmet_demand_ranking(dataset.requisitions, dataset.inventory, exclusion, now),
        weekly_flow=analytics.weekly_flow(dataset.movements, since),
        top_consumed=analytics.top_consumed_items(dataset.movements, since),
        pending_aging=analytics.pending_aging(dataset.requisitions, exclusion, now),
        purchase_origin=analytics.purchase_origin_split(totals),
        fulfillment=analytics.fulfillment_efficiency(dataset.requisitions, exclusion, since),
        fulfillment_time=analytics.fulfillment_time(dataset.requisitions, exclusion, since),
        top_requesters=analytics.top_requesters(dataset.requisitions, exclusion, since),
        specialty_totals=analytics.specialty_totals(dataset.requisitions, exclusion, since),
        excess_inventory=analytics.excess_inventory(dataset.inventory),
        slow_moving=analytics.slow_moving_items(dataset.requisitions, dataset.inventory, exclusion, now),
    )


class DashboardRegistry:
    """
    Un DashboardLoader par obra, abonné aux changements d'inventaire.
    Le dernier jeu de données chargé est réutilisé tant qu'aucun changement
    n'a relancé l'ingestion.
    """

    def __init__(self, gateway: WarehouseGateway):
        self.gateway = gateway
        self._loaders: dict[int, DashboardLoader] = {}

    def loader(self, site_id: int) -> DashboardLoader:
        loader = self._loaders.get(site_id)
        if loader is None:
            loader = self._loaders[site_id] = DashboardLoader(self.gateway, site_id)
            loader.watch()
        return loader

    async def dataset(self, site_id: int, *, force_refresh: bool = False) -> SiteDataset:
        loader = self.loader(site_id)
        await loader.wait_idle()
        if loader.dataset is not None and not (force_refresh or loader.stale):
            return loader.dataset

        dataset = await loader.refresh()
        if dataset is None:
            # un chargement plus récent a pris la main : on suit le dernier
            dataset = await loader.follow_latest()
        return dataset

    def invalidate(self) -> None:
        """Marque toutes les obras comme périmées (catalogue modifié)."""
        for loader in self._loaders.values():
            loader.stale = True

    def close(self) -> None:
        for loader in self._loaders.values():
            loader.close()
        self._loaders.clear()
