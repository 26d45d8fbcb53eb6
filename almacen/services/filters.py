"""
Filtres appliqués AVANT toute agrégation.

- ExclusionFilter : lignes de requerimiento à ignorer partout (qualité des données)
- cutoff / in_window : fenêtre de période choisie par l'appelant
"""

from __future__ import annotations

from datetime import date, datetime, timedelta
from typing import Iterable, Iterator

from almacen.app.db.models.core_types import LineStatus, PeriodWindow
from almacen.services.records import (
    CorrectionKey,
    RequisitionLine,
    RequisitionRecord,
    as_utc,
    num,
)

_WINDOW_DAYS = {
    PeriodWindow.last_7: 7,
    PeriodWindow.last_30: 30,
    PeriodWindow.last_90: 90,
}


class ExclusionFilter:
    """
    Prédicat pur lié à un jeu de corrections (chargé une fois par ingestion).

    Une ligne est exclue si :
      (a) (requisition_id, item) figure dans les corrections à quantité 0, ou
      (b) elle est Cancelado sans aucune quantité atendida.
    Les deux règles restent indépendantes (OU), aucune n'est dérivée de l'autre.
    """

    def __init__(self, corrections: Iterable[CorrectionKey] = ()):
        self._corrections = frozenset(corrections)

    @property
    def corrections(self) -> frozenset[CorrectionKey]:
        return self._corrections

    def is_valid(self, line: RequisitionLine, requisition_id: int) -> bool:
        if line.item is not None and (requisition_id, line.item.key) in self._corrections:
            return False
        if line.status == LineStatus.cancelled and num(line.qty_fulfilled) <= 0:
            return False
        return True

    def valid_lines(
        self, requisitions: Iterable[RequisitionRecord]
    ) -> Iterator[tuple[RequisitionRecord, RequisitionLine]]:
        for req in requisitions:
            for line in req.lines:
                if self.is_valid(line, req.id):
                    yield req, line


def cutoff(window: PeriodWindow | str | int, now: datetime) -> datetime | None:
    """
    Instant de coupure pour une fenêtre ("7", "30", "90" jours ou "all").
    Retourne None pour "all" (aucune coupure).
    """
    if isinstance(window, PeriodWindow):
        period = window
    else:
        try:
            period = PeriodWindow(str(window).strip().lower())
        except ValueError:
            raise ValueError(f"Unknown period window: {window!r}") from None

    if period == PeriodWindow.all:
        return None
    return as_utc(now) - timedelta(days=_WINDOW_DAYS[period])


def in_window(timestamp: datetime | date | None, limit: datetime | None) -> bool:
    if limit is None:
        return True
    if timestamp is None:
        return False
    return as_utc(timestamp) >= limit


def age_in_days(since: datetime | date, now: datetime) -> int:
    """Âge en jours entiers (division entière, jamais négatif)."""
    delta = as_utc(now) - as_utc(since)
    return max(0, delta // timedelta(days=1))
