"""
Statistiques dérivées du tableau de bord de l'almacén.

Chaque fonction est un pli pur sur des enregistrements déjà chargés :
- aucune I/O, aucun accès à l'horloge (``now`` est toujours passé)
- entrée vide -> résultat vide / zéro, jamais d'exception
- indépendantes entre elles : ordre d'appel libre

Conventions numériques :
- pourcentages arrondis à l'entier le plus proche (demi vers le haut)
- jours comptés en division entière
- stock sans consommation -> UNBOUNDED_STOCK_DAYS (affiché "unbounded")
"""

from __future__ import annotations

import enum
import math
from collections import defaultdict
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Iterable

from almacen.app.db.models.core_types import LineStatus, MovementKind, OPEN_LINE_STATUSES
from almacen.services.filters import ExclusionFilter, age_in_days, in_window
from almacen.services.records import (
    InventorySnapshot,
    ItemKey,
    ItemRef,
    MovementRecord,
    RequisitionRecord,
    as_utc,
    num,
)

# Valeur sentinelle "stock infini" quand la consommation récente est nulle
UNBOUNDED_STOCK_DAYS = 999
UNBOUNDED_LABEL = "unbounded"

# Fenêtre fixe de consommation pour la vitesse de sortie (indépendante de la période choisie)
BURN_WINDOW_DAYS = 30
CRITICAL_STOCK_DAYS = 7
LOW_STOCK_DAYS = 14

CRITICAL_PENDING_DAYS = 14
HIGH_PENDING_DAYS = 7

SLOW_MOVING_DAYS = 60
DEFAULT_MAX_STOCK = 100.0

TOP_CONSUMED_LIMIT = 10
STOCK_RISK_LIMIT = 10
UNMET_DEMAND_LIMIT = 8
TOP_REQUESTERS_LIMIT = 6
INVENTORY_HEALTH_LIMIT = 5

UNKNOWN_REQUESTER = "Desconocido"
UNKNOWN_SPECIALTY = "Sin Especialidad"
UNKNOWN_ITEM = "-"

PETTY_CASH_MARKERS = ("CC", "CAJA")
PURCHASE_ORDER_MARKERS = ("OC", "O/C", "ORDEN")

_MONTH_ABBR = ("Ene", "Feb", "Mar", "Abr", "May", "Jun", "Jul", "Ago", "Sep", "Oct", "Nov", "Dic")


class RiskLevel(str, enum.Enum):
    critical = "critical"
    low = "low"
    ok = "ok"


class OriginCategory(str, enum.Enum):
    petty_cash = "petty_cash"
    purchase_order = "purchase_order"
    other = "other"


# ---------- VALUE OBJECTS ----------
@dataclass(frozen=True)
class EntryTotals:
    total: float = 0.0
    petty_cash: float = 0.0
    purchase_order: float = 0.0


@dataclass(frozen=True)
class StockRisk:
    item: ItemRef
    qty_on_hand: float
    daily_burn: float
    days_remaining: int
    level: RiskLevel

    @property
    def days_label(self) -> str:
        if self.days_remaining >= UNBOUNDED_STOCK_DAYS:
            return UNBOUNDED_LABEL
        return str(self.days_remaining)


@dataclass(frozen=True)
class UnmetDemand:
    item: ItemRef
    shortfall: float
    requisition_count: int
    max_wait_days: int
    qty_on_hand: float


@dataclass(frozen=True)
class WeekFlow:
    key: str
    label: str
    inbound: float
    outbound: float


@dataclass(frozen=True)
class ConsumedItem:
    name: str
    inbound: float
    outbound: float


@dataclass(frozen=True)
class PendingAging:
    critical: int = 0
    high: int = 0
    normal: int = 0
    avg_days: float = 0.0

    @property
    def total(self) -> int:
        return self.critical + self.high + self.normal


@dataclass(frozen=True)
class OriginShare:
    category: OriginCategory
    value: int


@dataclass(frozen=True)
class FulfillmentEfficiency:
    approved: float = 0.0
    fulfilled: float = 0.0
    petty_cash: float = 0.0
    fulfillment_pct: int = 0
    petty_cash_pct: int = 0


@dataclass(frozen=True)
class FulfillmentTime:
    avg_days: float = 0.0
    lines: int = 0


@dataclass(frozen=True)
class RequesterTotal:
    name: str
    quantity: float


@dataclass(frozen=True)
class SpecialtyTotal:
    name: str
    quantity: float


@dataclass(frozen=True)
class ExcessItem:
    item: ItemRef
    qty_on_hand: float
    max_stock: float
    excess: float


@dataclass(frozen=True)
class SlowMovingItem:
    item: ItemRef
    qty_on_hand: float
    last_requested_on: date | None


# ---------- HELPERS ----------
def percent(part: float, whole: float) -> int:
    """part/whole en % entier (demi vers le haut) ; 0 si whole <= 0."""
    if whole <= 0:
        return 0
    return int(math.floor(part / whole * 100 + 0.5))


def is_petty_cash(reference_document: str | None) -> bool:
    ref = (reference_document or "").upper()
    return any(marker in ref for marker in PETTY_CASH_MARKERS)


def is_purchase_order(reference_document: str | None) -> bool:
    ref = (reference_document or "").upper()
    return any(marker in ref for marker in PURCHASE_ORDER_MARKERS)


def days_of_stock(on_hand: float, daily_burn: float) -> int:
    if daily_burn <= 0:
        return UNBOUNDED_STOCK_DAYS
    return min(int(on_hand // daily_burn), UNBOUNDED_STOCK_DAYS)


def risk_level(days: int) -> RiskLevel:
    if days <= CRITICAL_STOCK_DAYS:
        return RiskLevel.critical
    if days <= LOW_STOCK_DAYS:
        return RiskLevel.low
    return RiskLevel.ok


def _qty(value) -> float:
    return max(0.0, num(value))


def _item_name(item: ItemRef | None) -> str:
    if item is None:
        return UNKNOWN_ITEM
    return item.name or UNKNOWN_ITEM


def _window(movements: Iterable[MovementRecord], since: datetime | None) -> Iterable[MovementRecord]:
    return (m for m in movements if in_window(m.created_at, since))


def _mean_days(ages: list[int]) -> float:
    if not ages:
        return 0.0
    return round(sum(ages) / len(ages), 1)


# ---------- REDUCERS ----------
def entry_totals(movements: Iterable[MovementRecord], since: datetime | None) -> EntryTotals:
    """
    Total des ENTRADAS de la période, ventilé par origine du document :
    caja chica ("CC" / "CAJA") prioritaire, puis orden de compra.
    """
    total = petty = po = 0.0
    for m in _window(movements, since):
        if m.kind != MovementKind.entry:
            continue
        qty = _qty(m.quantity)
        total += qty
        if is_petty_cash(m.reference_document):
            petty += qty
        elif is_purchase_order(m.reference_document):
            po += qty
    return EntryTotals(total=total, petty_cash=petty, purchase_order=po)


def stock_risk_ranking(
    movements: Iterable[MovementRecord],
    inventory: Iterable[InventorySnapshot],
    now: datetime,
    *,
    limit: int = STOCK_RISK_LIMIT,
) -> list[StockRisk]:
    """
    Jours de stock restants par article.

    Règle métier :
        burn = SUM(SALIDAS des 30 derniers jours) / 30
        jours = floor(stock / burn)   (UNBOUNDED_STOCK_DAYS si burn == 0)
        <= 7 jours critique, <= 14 bas, sinon ok (absent du classement)
    """
    since = as_utc(now) - timedelta(days=BURN_WINDOW_DAYS)
    outbound: dict[ItemKey, float] = defaultdict(float)
    for m in _window(movements, since):
        if m.kind == MovementKind.exit and m.item is not None:
            outbound[m.item.key] += _qty(m.quantity)

    ranked: list[StockRisk] = []
    for snap in inventory:
        on_hand = _qty(snap.qty_on_hand)
        burn = outbound.get(snap.item.key, 0.0) / BURN_WINDOW_DAYS
        days = days_of_stock(on_hand, burn)
        level = risk_level(days)
        if level == RiskLevel.ok:
            continue

        ranked.append(
            StockRisk(
                item=snap.item,
                qty_on_hand=on_hand,
                daily_burn=burn,
                days_remaining=days,
                level=level,
            )
        )

    ranked.sort(key=lambda r: r.days_remaining)
    return ranked[:limit]


def unmet_demand_ranking(
    requisitions: Iterable[RequisitionRecord],
    inventory: Iterable[InventorySnapshot],
    exclusion: ExclusionFilter,
    now: datetime,
    *,
    limit: int = UNMET_DEMAND_LIMIT,
) -> list[UnmetDemand]:
    """
    Demande non servie que le stock actuel ne couvre pas.
    Une ligne compte si manque > 0 et stock < manque ; tri par attente max.
    """
    on_hand = {snap.item.key: _qty(snap.qty_on_hand) for snap in inventory}

    shortfall: dict[ItemKey, float] = defaultdict(float)
    requisition_ids: dict[ItemKey, set[int]] = defaultdict(set)
    max_wait: dict[ItemKey, int] = {}
    items: dict[ItemKey, ItemRef] = {}

    for req, line in exclusion.valid_lines(requisitions):
        if line.status not in OPEN_LINE_STATUSES or line.item is None:
            continue
        key = line.item.key
        missing = max(0.0, num(line.qty_requested) - num(line.qty_fulfilled))
        stock = on_hand.get(key, 0.0)
        if missing <= 0 or stock >= missing:
            continue

        wait = age_in_days(req.requested_on, now)
        items.setdefault(key, line.item)
        shortfall[key] += missing
        requisition_ids[key].add(req.id)
        max_wait[key] = max(max_wait.get(key, 0), wait)

    ranked = [
        UnmetDemand(
            item=items[key],
            shortfall=shortfall[key],
            requisition_count=len(requisition_ids[key]),
            max_wait_days=max_wait[key],
            qty_on_hand=on_hand.get(key, 0.0),
        )
        for key in items
    ]
    ranked.sort(key=lambda d: d.max_wait_days, reverse=True)
    return ranked[:limit]


def weekly_flow(movements: Iterable[MovementRecord], since: datetime | None) -> list[WeekFlow]:
    """Entrées / sorties par semaine ISO, triées par clé "AAAA-Wss"."""
    inbound: dict[str, float] = defaultdict(float)
    outbound: dict[str, float] = defaultdict(float)
    labels: dict[str, str] = {}

    for m in _window(movements, since):
        ts = as_utc(m.created_at)
        iso_year, iso_week, iso_day = ts.isocalendar()
        key = f"{iso_year}-W{iso_week:02d}"
        if key not in labels:
            monday = ts.date() - timedelta(days=iso_day - 1)
            labels[key] = f"S{iso_week:02d} {_MONTH_ABBR[monday.month - 1]}"

        qty = _qty(m.quantity)
        if m.kind == MovementKind.entry:
            inbound[key] += qty
        elif m.kind == MovementKind.exit:
            outbound[key] += qty

    return [
        WeekFlow(key=key, label=labels[key], inbound=inbound.get(key, 0.0), outbound=outbound.get(key, 0.0))
        for key in sorted(labels)
    ]


def top_consumed_items(
    movements: Iterable[MovementRecord],
    since: datetime | None,
    *,
    limit: int = TOP_CONSUMED_LIMIT,
) -> list[ConsumedItem]:
    inbound: dict[str, float] = defaultdict(float)
    outbound: dict[str, float] = defaultdict(float)

    for m in _window(movements, since):
        name = _item_name(m.item)
        if m.kind == MovementKind.entry:
            inbound[name] += _qty(m.quantity)
        elif m.kind == MovementKind.exit:
            outbound[name] += _qty(m.quantity)

    consumed = [
        ConsumedItem(name=name, inbound=inbound.get(name, 0.0), outbound=out)
        for name, out in outbound.items()
        if out > 0
    ]
    consumed.sort(key=lambda c: c.outbound, reverse=True)
    return consumed[:limit]


def pending_aging(
    requisitions: Iterable[RequisitionRecord],
    exclusion: ExclusionFilter,
    now: datetime,
) -> PendingAging:
    critical = high = normal = 0
    ages: list[int] = []
    for req, line in exclusion.valid_lines(requisitions):
        if line.status not in OPEN_LINE_STATUSES:
            continue
        age = age_in_days(req.requested_on, now)
        ages.append(age)
        if age > CRITICAL_PENDING_DAYS:
            critical += 1
        elif age > HIGH_PENDING_DAYS:
            high += 1
        else:
            normal += 1
    return PendingAging(critical=critical, high=high, normal=normal, avg_days=_mean_days(ages))


def purchase_origin_split(totals: EntryTotals) -> list[OriginShare]:
    """
    Répartition (%) des entrées : caja chica / orden de compra / autre.
    "other" n'apparaît que si le reste est positif ; les catégories à 0 sont omises.
    """
    if totals.total <= 0:
        return []

    shares = [
        OriginShare(OriginCategory.petty_cash, percent(totals.petty_cash, totals.total)),
        OriginShare(OriginCategory.purchase_order, percent(totals.purchase_order, totals.total)),
    ]
    remainder = totals.total - totals.petty_cash - totals.purchase_order
    if remainder > 0:
        shares.append(OriginShare(OriginCategory.other, percent(remainder, totals.total)))

    return [s for s in shares if s.value > 0]


def fulfillment_efficiency(
    requisitions: Iterable[RequisitionRecord],
    exclusion: ExclusionFilter,
    since: datetime | None,
) -> FulfillmentEfficiency:
    approved = fulfilled = petty = 0.0
    for req, line in exclusion.valid_lines(r for r in requisitions if in_window(r.requested_on, since)):
        approved += _qty(line.qty_requested)
        fulfilled += _qty(line.qty_fulfilled)
        petty += _qty(line.qty_petty_cash)

    return FulfillmentEfficiency(
        approved=approved,
        fulfilled=fulfilled,
        petty_cash=petty,
        fulfillment_pct=percent(fulfilled, approved),
        petty_cash_pct=percent(petty, fulfilled),
    )


def top_requesters(
    requisitions: Iterable[RequisitionRecord],
    exclusion: ExclusionFilter,
    since: datetime | None,
    *,
    limit: int = TOP_REQUESTERS_LIMIT,
) -> list[RequesterTotal]:
    totals: dict[str, float] = defaultdict(float)
    for req, line in exclusion.valid_lines(r for r in requisitions if in_window(r.requested_on, since)):
        name = (req.requester or "").strip() or UNKNOWN_REQUESTER
        totals[name] += _qty(line.qty_requested)

    ranked = [RequesterTotal(name=name, quantity=qty) for name, qty in totals.items()]
    ranked.sort(key=lambda r: r.quantity, reverse=True)
    return ranked[:limit]


def fulfillment_time(
    requisitions: Iterable[RequisitionRecord],
    exclusion: ExclusionFilter,
    since: datetime | None,
) -> FulfillmentTime:
    """
    Délai moyen (jours) entre la demande et la date d'atención.
    Ne comptent que les lignes servies (Atendido ou quantité servie > 0) qui ont une date d'atención.
    """
    ages: list[int] = []
    for req, line in exclusion.valid_lines(r for r in requisitions if in_window(r.requested_on, since)):
        if line.fulfilled_at is None:
            continue
        if line.status != LineStatus.fulfilled and _qty(line.qty_fulfilled) <= 0:
            continue
        ages.append(age_in_days(req.requested_on, line.fulfilled_at))
    return FulfillmentTime(avg_days=_mean_days(ages), lines=len(ages))


def specialty_totals(
    requisitions: Iterable[RequisitionRecord],
    exclusion: ExclusionFilter,
    since: datetime | None,
) -> list[SpecialtyTotal]:
    """Quantités servies par especialidad de la période, de la plus forte à la plus faible."""
    totals: dict[str, float] = defaultdict(float)
    for req, line in exclusion.valid_lines(r for r in requisitions if in_window(r.requested_on, since)):
        name = (req.specialty or "").strip() or UNKNOWN_SPECIALTY
        totals[name] += _qty(line.qty_fulfilled)

    ranked = [SpecialtyTotal(name=name, quantity=qty) for name, qty in totals.items()]
    ranked.sort(key=lambda s: s.quantity, reverse=True)
    return ranked


# ---------- INVENTORY HEALTH ----------
def excess_inventory(
    inventory: Iterable[InventorySnapshot],
    *,
    limit: int = INVENTORY_HEALTH_LIMIT,
) -> list[ExcessItem]:
    excess: list[ExcessItem] = []
    for snap in inventory:
        on_hand = _qty(snap.qty_on_hand)
        max_stock = DEFAULT_MAX_STOCK if snap.max_stock is None else _qty(snap.max_stock)
        if on_hand > max_stock:
            excess.append(ExcessItem(item=snap.item, qty_on_hand=on_hand, max_stock=max_stock, excess=on_hand - max_stock))
    excess.sort(key=lambda e: e.excess, reverse=True)
    return excess[:limit]


def slow_moving_items(
    requisitions: Iterable[RequisitionRecord],
    inventory: Iterable[InventorySnapshot],
    exclusion: ExclusionFilter,
    now: datetime,
    *,
    limit: int = INVENTORY_HEALTH_LIMIT,
) -> list[SlowMovingItem]:
    """Stock présent sans demande depuis SLOW_MOVING_DAYS (ou jamais demandé)."""
    last_request: dict[ItemKey, date] = {}
    for req, line in exclusion.valid_lines(requisitions):
        if line.item is None:
            continue
        key = line.item.key
        if key not in last_request or req.requested_on > last_request[key]:
            last_request[key] = req.requested_on

    threshold = as_utc(now) - timedelta(days=SLOW_MOVING_DAYS)
    slow: list[SlowMovingItem] = []
    for snap in inventory:
        on_hand = _qty(snap.qty_on_hand)
        if on_hand <= 0:
            continue
        last = last_request.get(snap.item.key)
        if last is None or as_utc(last) < threshold:
            slow.append(SlowMovingItem(item=snap.item, qty_on_hand=on_hand, last_requested_on=last))

    # jamais demandés d'abord, puis les plus anciens
    slow.sort(key=lambda s: (s.last_requested_on is not None, s.last_requested_on or date.min))
    return slow[:limit]
