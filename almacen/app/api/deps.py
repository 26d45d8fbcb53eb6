from __future__ import annotations

from functools import lru_cache
from typing import Generator

from fastapi import Depends, Request

from almacen.app.db.session import SessionLocal
from almacen.services.dashboard import DashboardRegistry
from almacen.services.gateway import SqlWarehouseGateway
from almacen.services.notifications import InventoryChangeNotifier


def get_db() -> Generator:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@lru_cache
def get_gateway() -> SqlWarehouseGateway:
    notifier = InventoryChangeNotifier()
    notifier.install(SessionLocal)
    return SqlWarehouseGateway(SessionLocal, notifier=notifier)


def get_dashboards(request: Request, gateway: SqlWarehouseGateway = Depends(get_gateway)) -> DashboardRegistry:
    registry = getattr(request.app.state, "dashboards", None)
    if registry is None or registry.gateway is not gateway:
        registry = request.app.state.dashboards = DashboardRegistry(gateway)
    return registry
