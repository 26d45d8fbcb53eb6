"""
Chargement des données brutes d'une obra pour le tableau de bord.

Règles :
- les 4 lectures partent en parallèle ; la première erreur annule les autres
  et fait échouer TOUT le chargement (IngestionError), rien de partiel
- un chargement plus récent remplace toujours un plus ancien encore en vol :
  les résultats périmés sont ignorés, jamais appliqués
"""

from __future__ import annotations

import asyncio
import enum
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Protocol

from almacen.app.core.logging import get_logger
from almacen.app.db.base import utcnow
from almacen.services.filters import ExclusionFilter
from almacen.services.records import (
    CorrectionKey,
    InventorySnapshot,
    MovementRecord,
    RequisitionRecord,
)

logger = get_logger("services.ingestion")

Unsubscribe = Callable[[], None]


class WarehouseGateway(Protocol):
    async def fetch_movements(self, site_id: int) -> list[MovementRecord]: ...

    async def fetch_requisitions(self, site_id: int) -> list[RequisitionRecord]: ...

    async def fetch_inventory_snapshot(self, site_id: int) -> list[InventorySnapshot]: ...

    async def fetch_zero_quantity_corrections(self) -> list[CorrectionKey]: ...

    def subscribe_to_inventory_changes(self, site_id: int, on_change: Callable[[], None]) -> Unsubscribe: ...


class IngestionError(Exception):
    def __init__(self, site_id: int, reason: str):
        super().__init__(f"Failed to load data for site {site_id}: {reason}")
        self.site_id = site_id
        self.reason = reason


@dataclass(frozen=True)
class SiteDataset:
    site_id: int
    movements: tuple[MovementRecord, ...]
    requisitions: tuple[RequisitionRecord, ...]
    inventory: tuple[InventorySnapshot, ...]
    corrections: frozenset[CorrectionKey]
    loaded_at: datetime = field(default_factory=utcnow)

    @property
    def exclusion(self) -> ExclusionFilter:
        return ExclusionFilter(self.corrections)


async def load_site_data(gateway: WarehouseGateway, site_id: int) -> SiteDataset:
    logger.debug("Loading site %s", site_id)
    tasks = [
        asyncio.ensure_future(gateway.fetch_movements(site_id)),
        asyncio.ensure_future(gateway.fetch_requisitions(site_id)),
        asyncio.ensure_future(gateway.fetch_inventory_snapshot(site_id)),
        asyncio.ensure_future(gateway.fetch_zero_quantity_corrections()),
    ]
    try:
        movements, requisitions, inventory, corrections = await asyncio.gather(*tasks)
    except Exception as exc:
        for task in tasks:
            task.cancel()
        logger.exception("Ingestion failed for site %s", site_id)
        raise IngestionError(site_id, str(exc) or type(exc).__name__) from exc

    dataset = SiteDataset(
        site_id=site_id,
        movements=tuple(movements or ()),
        requisitions=tuple(requisitions or ()),
        inventory=tuple(inventory or ()),
        corrections=frozenset(corrections or ()),
    )
    logger.info(
        "Loaded site %s: %d movements, %d requisitions, %d inventory rows, %d corrections",
        site_id,
        len(dataset.movements),
        len(dataset.requisitions),
        len(dataset.inventory),
        len(dataset.corrections),
    )
    return dataset


class LoadState(str, enum.Enum):
    idle = "idle"
    loading = "loading"
    ready = "ready"
    failed = "failed"


class DashboardLoader:
    """
    Détient le dernier jeu de données valide d'une obra.

    Chaque refresh() prend un numéro de génération ; seul le plus récent peut
    publier son résultat (succès ou échec). Les anciens sont ignorés.
    """

    def __init__(self, gateway: WarehouseGateway, site_id: int):
        self.gateway = gateway
        self.site_id = site_id
        self.state = LoadState.idle
        self.dataset: SiteDataset | None = None
        self.error: IngestionError | None = None
        self.stale = False
        self._generation = 0
        self._latest: asyncio.Task | None = None
        self._pending: set[asyncio.Task] = set()
        self._unsubscribe: Unsubscribe | None = None

    async def refresh(self) -> SiteDataset | None:
        """Recharge ; retourne None si un chargement plus récent a pris la main."""
        self._generation += 1
        self.stale = False
        self.state = LoadState.loading
        task = asyncio.ensure_future(self._load(self._generation))
        self._latest = task
        return await task

    async def follow_latest(self) -> SiteDataset:
        """
        Attend le résultat du chargement le plus récent.

        Si celui-ci est lui-même remplacé en cours de route, on suit le
        suivant, jusqu'à ce qu'une génération publie (ou échoue).
        """
        while True:
            task = self._latest
            if task is None:
                raise IngestionError(self.site_id, "no load in flight")
            try:
                dataset = await asyncio.shield(task)
            except IngestionError:
                if task is not self._latest:
                    continue
                raise
            if dataset is not None:
                return dataset

    async def _load(self, generation: int) -> SiteDataset | None:
        try:
            dataset = await load_site_data(self.gateway, self.site_id)
        except IngestionError as exc:
            if generation != self._generation:
                logger.debug("Discarding stale failed load (generation %d)", generation)
                return None
            self.state = LoadState.failed
            self.dataset = None
            self.error = exc
            raise

        if generation != self._generation:
            logger.debug("Discarding stale load (generation %d < %d)", generation, self._generation)
            return None

        self.state = LoadState.ready
        self.dataset = dataset
        self.error = None
        return dataset

    def watch(self) -> None:
        """
        S'abonne aux changements d'inventaire : chaque notification relance
        un refresh complet sur la boucle courante.
        """
        if self._unsubscribe is not None:
            return
        loop = asyncio.get_running_loop()

        def on_change() -> None:
            self.stale = True
            loop.call_soon_threadsafe(self._schedule_refresh)

        self._unsubscribe = self.gateway.subscribe_to_inventory_changes(self.site_id, on_change)

    def close(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        for task in self._pending:
            task.cancel()

    async def wait_idle(self) -> None:
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    def _schedule_refresh(self) -> None:
        task = asyncio.ensure_future(self.refresh())
        self._pending.add(task)
        task.add_done_callback(self._on_refresh_done)

    def _on_refresh_done(self, task: asyncio.Task) -> None:
        self._pending.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None and not isinstance(exc, IngestionError):
            logger.error("Background refresh crashed for site %s", self.site_id, exc_info=exc)
