"""
Notifications de changement d'inventaire, par obra.

Branché sur les événements de Session SQLAlchemy :
- after_flush  : on note les obras touchées (mouvements, inventaire, requerimientos)
- after_commit : on notifie les abonnés de ces obras
- after_rollback : on oublie (rien n'a été écrit)
"""

from __future__ import annotations

import threading
from collections import defaultdict
from typing import Callable

from sqlalchemy import event

from almacen.app.core.logging import get_logger
from almacen.app.db.models.models_v1 import Inventory, Requisition, StockMovement

logger = get_logger("services.notifications")

_WATCHED_MODELS = (StockMovement, Inventory, Requisition)
_SESSION_KEY = "almacen_changed_sites"


class InventoryChangeNotifier:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._subscribers: dict[int, list[Callable[[], None]]] = defaultdict(list)

    def subscribe(self, site_id: int, on_change: Callable[[], None]) -> Callable[[], None]:
        with self._lock:
            self._subscribers[site_id].append(on_change)

        def unsubscribe() -> None:
            with self._lock:
                callbacks = self._subscribers.get(site_id, [])
                if on_change in callbacks:
                    callbacks.remove(on_change)

        return unsubscribe

    def notify(self, site_id: int) -> None:
        with self._lock:
            callbacks = list(self._subscribers.get(site_id, ()))
        for callback in callbacks:
            try:
                callback()
            except Exception:
                # un abonné défaillant ne doit pas bloquer les autres ni le commit
                logger.exception("Change subscriber failed for site %s", site_id)

    # ---------- SQLAlchemy wiring ----------
    def install(self, session_factory) -> None:
        event.listen(session_factory, "after_flush", self._collect)
        event.listen(session_factory, "after_commit", self._dispatch)
        event.listen(session_factory, "after_rollback", self._discard)

    def uninstall(self, session_factory) -> None:
        event.remove(session_factory, "after_flush", self._collect)
        event.remove(session_factory, "after_commit", self._dispatch)
        event.remove(session_factory, "after_rollback", self._discard)

    def _collect(self, session, flush_context) -> None:
        sites = session.info.setdefault(_SESSION_KEY, set())
        for obj in (*session.new, *session.dirty, *session.deleted):
            if isinstance(obj, _WATCHED_MODELS) and obj.site_id is not None:
                sites.add(int(obj.site_id))

    def _dispatch(self, session) -> None:
        sites = session.info.pop(_SESSION_KEY, set())
        for site_id in sorted(sites):
            self.notify(site_id)

    def _discard(self, session) -> None:
        session.info.pop(_SESSION_KEY, None)
