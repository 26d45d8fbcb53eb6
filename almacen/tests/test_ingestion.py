import asyncio
from datetime import date, datetime, timedelta, timezone

import pytest

from almacen.app.db.models.core_types import ItemKind, LineStatus, MovementKind, PeriodWindow
from almacen.services.dashboard import DashboardRegistry, compute_dashboard
from almacen.services.ingestion import (
    DashboardLoader,
    IngestionError,
    LoadState,
    SiteDataset,
    load_site_data,
)
from almacen.services.records import (
    InventorySnapshot,
    ItemRef,
    MovementRecord,
    RequisitionLine,
    RequisitionRecord,
)

NOW = datetime(2026, 3, 15, 12, 0, tzinfo=timezone.utc)
CEMENT = ItemRef(ItemKind.material, 1, "CEMENTO")


class FakeGateway:
    """
    Gateway en mémoire.
    - gates[n] : la n-ième lecture des mouvements attend cet Event
    - fail_with : exception levée par fetch_requisitions
    - movement_error : exception levée par fetch_movements une fois sa gate passée
    """

    def __init__(self, fail_with=None):
        self.fail_with = fail_with
        self.movement_error = None
        self.gates: dict[int, asyncio.Event] = {}
        self.movement_calls = 0
        self.inventory_cancelled = False
        self.block_inventory = False
        self.subscribers = []

    async def fetch_movements(self, site_id):
        self.movement_calls += 1
        call = self.movement_calls
        gate = self.gates.get(call)
        if gate is not None:
            await gate.wait()
        if self.movement_error is not None:
            raise self.movement_error
        return [
            MovementRecord(
                id=call,
                site_id=site_id,
                kind=MovementKind.entry,
                quantity=10,
                item=CEMENT,
                reference_document="OC-1",
                created_at=NOW - timedelta(days=1),
            )
        ]

    async def fetch_requisitions(self, site_id):
        await asyncio.sleep(0)
        if self.fail_with is not None:
            raise self.fail_with
        return [
            RequisitionRecord(
                id=5,
                site_id=site_id,
                requester="ANA",
                requested_on=date(2026, 3, 10),
                lines=(RequisitionLine(1, CEMENT, 5, 2, 0, LineStatus.partial),),
            )
        ]

    async def fetch_inventory_snapshot(self, site_id):
        if self.block_inventory:
            try:
                await asyncio.Event().wait()
            except asyncio.CancelledError:
                self.inventory_cancelled = True
                raise
        return [InventorySnapshot(site_id=site_id, item=CEMENT, qty_on_hand=4)]

    async def fetch_zero_quantity_corrections(self):
        return []

    def subscribe_to_inventory_changes(self, site_id, on_change):
        entry = (site_id, on_change)
        self.subscribers.append(entry)
        return lambda: self.subscribers.remove(entry)

    def fire(self, site_id):
        for sid, callback in list(self.subscribers):
            if sid == site_id:
                callback()


def test_load_site_data_collects_all_sources():
    gateway = FakeGateway()
    dataset = asyncio.run(load_site_data(gateway, 3))

    assert dataset.site_id == 3
    assert len(dataset.movements) == 1
    assert len(dataset.requisitions) == 1
    assert dataset.inventory[0].qty_on_hand == 4
    assert dataset.corrections == frozenset()


def test_any_failure_fails_whole_load_and_cancels_the_rest():
    """
    GIVEN la lecture des requerimientos échoue pendant que l'inventaire est en cours
    THEN IngestionError (pas de résultat partiel) et la lecture d'inventaire est annulée
    """
    gateway = FakeGateway(fail_with=RuntimeError("db down"))
    gateway.block_inventory = True

    async def scenario():
        with pytest.raises(IngestionError) as info:
            await load_site_data(gateway, 3)
        await asyncio.sleep(0)
        return info.value

    error = asyncio.run(scenario())
    assert error.site_id == 3
    assert error.reason == "db down"
    assert isinstance(error.__cause__, RuntimeError)
    assert gateway.inventory_cancelled is True


def test_loader_failure_state():
    gateway = FakeGateway(fail_with=RuntimeError("timeout"))
    loader = DashboardLoader(gateway, 1)

    with pytest.raises(IngestionError):
        asyncio.run(loader.refresh())

    assert loader.state == LoadState.failed
    assert loader.dataset is None
    assert loader.error.reason == "timeout"


def test_newer_load_supersedes_older_in_flight_load():
    """
    GIVEN un 1er chargement bloqué, puis un 2e qui aboutit
    WHEN le 1er se termine enfin
    THEN son résultat est ignoré : le jeu publié reste celui du 2e
    """
    gateway = FakeGateway()
    loader = DashboardLoader(gateway, 1)

    async def scenario():
        gate = gateway.gates[1] = asyncio.Event()
        first = asyncio.ensure_future(loader.refresh())
        await asyncio.sleep(0)

        second = await loader.refresh()
        gate.set()
        stale = await first
        return stale, second

    stale, second = asyncio.run(scenario())
    assert stale is None
    assert second is not None
    assert loader.dataset is second
    assert loader.dataset.movements[0].id == 2
    assert loader.state == LoadState.ready


def test_stale_failure_does_not_replace_newer_dataset():
    gateway = FakeGateway()
    loader = DashboardLoader(gateway, 1)

    async def scenario():
        gate = gateway.gates[1] = asyncio.Event()
        first = asyncio.ensure_future(loader.refresh())
        await asyncio.sleep(0)
        second = await loader.refresh()

        gateway.movement_error = RuntimeError("late failure")
        gate.set()
        return await first, second

    stale, second = asyncio.run(scenario())
    assert stale is None
    assert loader.dataset is second
    assert loader.error is None


def test_change_notification_triggers_refresh():
    gateway = FakeGateway()
    loader = DashboardLoader(gateway, 7)

    async def scenario():
        loader.watch()
        gateway.fire(7)
        gateway.fire(8)  # autre obra : ignorée
        await asyncio.sleep(0)
        await loader.wait_idle()
        loader.close()

    asyncio.run(scenario())
    assert gateway.movement_calls == 1
    assert loader.state == LoadState.ready
    assert gateway.subscribers == []


def test_registry_reuses_dataset_until_change_or_forced_refresh():
    gateway = FakeGateway()
    registry = DashboardRegistry(gateway)

    async def scenario():
        first = await registry.dataset(1)
        again = await registry.dataset(1)
        assert again is first
        assert gateway.movement_calls == 1

        await registry.dataset(1, force_refresh=True)
        assert gateway.movement_calls == 2

        gateway.fire(1)
        after_change = await registry.dataset(1)
        # relu depuis le gateway (par la notification ou par cet appel)
        assert after_change.movements[0].id >= 3
        registry.close()

    asyncio.run(scenario())


def test_registry_raises_ingestion_error():
    registry = DashboardRegistry(FakeGateway(fail_with=RuntimeError("boom")))

    async def scenario():
        try:
            with pytest.raises(IngestionError):
                await registry.dataset(1)
        finally:
            registry.close()

    asyncio.run(scenario())



def test_registry_superseded_cold_call_gets_the_newer_dataset():
    """
    GIVEN aucune donnée encore chargée, un 1er appel (génération 1) qui aboutit
          vite et un 2e (génération 2) encore bloqué
    THEN le 1er appel attend la génération 2 au lieu d'échouer :
         les deux reçoivent le même jeu de données
    """
    gateway = FakeGateway()
    registry = DashboardRegistry(gateway)

    async def scenario():
        gate = gateway.gates[2] = asyncio.Event()
        first = asyncio.ensure_future(registry.dataset(1))
        await asyncio.sleep(0)
        second = asyncio.ensure_future(registry.dataset(1, force_refresh=True))
        for _ in range(5):
            await asyncio.sleep(0)
        assert not first.done()

        gate.set()
        try:
            return await first, await second
        finally:
            registry.close()

    first, second = asyncio.run(scenario())
    assert first.movements[0].id == 2
    assert second.movements[0].id == 2


def test_registry_superseded_warm_call_never_returns_the_older_dataset():
    """
    GIVEN un jeu déjà publié (lecture 1), puis deux rafraîchissements
          forcés qui se chevauchent : le 1er aboutit, le 2e est bloqué
    THEN le 1er appel ne renvoie ni le jeu publié ni le sien, périmé :
         il attend le plus récent (lecture 3)
    """
    gateway = FakeGateway()
    registry = DashboardRegistry(gateway)

    async def scenario():
        primed = await registry.dataset(1)
        assert primed.movements[0].id == 1

        gate = gateway.gates[3] = asyncio.Event()
        first = asyncio.ensure_future(registry.dataset(1, force_refresh=True))
        second = asyncio.ensure_future(registry.dataset(1, force_refresh=True))
        for _ in range(5):
            await asyncio.sleep(0)
        assert not first.done()

        gate.set()
        try:
            return await first, await second
        finally:
            registry.close()

    first, second = asyncio.run(scenario())
    assert first.movements[0].id == 3
    assert second.movements[0].id == 3


def test_registry_invalidate_forces_next_read():
    gateway = FakeGateway()
    registry = DashboardRegistry(gateway)

    async def scenario():
        first = await registry.dataset(1)
        registry.invalidate()
        again = await registry.dataset(1)
        registry.close()
        return first, again

    first, again = asyncio.run(scenario())
    assert again is not first
    assert again.movements[0].id == 2

def test_compute_dashboard_switches_period_without_reloading():
    dataset = SiteDataset(
        site_id=1,
        movements=(
            MovementRecord(1, 1, MovementKind.entry, 40, CEMENT, "CC-1", NOW - timedelta(days=2)),
            MovementRecord(2, 1, MovementKind.entry, 60, CEMENT, "OC-9", NOW - timedelta(days=50)),
        ),
        requisitions=(),
        inventory=(InventorySnapshot(site_id=1, item=CEMENT, qty_on_hand=4),),
        corrections=frozenset(),
    )

    last_week = compute_dashboard(dataset, "7", NOW)
    everything = compute_dashboard(dataset, PeriodWindow.all, NOW)

    assert last_week.period == PeriodWindow.last_7
    assert last_week.entry_totals.total == 40
    assert [(s.category.value, s.value) for s in last_week.purchase_origin] == [("petty_cash", 100)]
    assert everything.entry_totals.total == 100
    assert len(everything.weekly_flow) == 2
    # stock 4 jamais demandé : immobile
    assert everything.slow_moving[0].item == CEMENT
