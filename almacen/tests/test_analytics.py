from datetime import date, datetime, timedelta, timezone

from almacen.app.db.models.core_types import ItemKind, LineStatus, MovementKind
from almacen.services import analytics
from almacen.services.analytics import (
    EntryTotals,
    FulfillmentEfficiency,
    FulfillmentTime,
    OriginCategory,
    OriginShare,
    PendingAging,
    RiskLevel,
)
from almacen.services.filters import ExclusionFilter, cutoff
from almacen.services.records import (
    InventorySnapshot,
    ItemRef,
    MovementRecord,
    RequisitionLine,
    RequisitionRecord,
)

# dimanche 15 mars 2026 (semaine ISO 11)
NOW = datetime(2026, 3, 15, 12, 0, tzinfo=timezone.utc)
NO_EXCLUSION = ExclusionFilter()


def _item(i, kind=ItemKind.material):
    return ItemRef(kind, i, f"ITEM {i}")


def _mv(kind, qty, item=None, ref="", at=NOW, mv_id=0):
    return MovementRecord(
        id=mv_id,
        site_id=1,
        kind=kind,
        quantity=qty,
        item=item,
        reference_document=ref,
        created_at=at,
    )


def _snap(item, on_hand, max_stock=None):
    return InventorySnapshot(site_id=1, item=item, qty_on_hand=on_hand, max_stock=max_stock)


def _line(line_id, item, requested, fulfilled=0, status=LineStatus.pending, petty=0, fulfilled_at=None):
    return RequisitionLine(
        id=line_id,
        item=item,
        qty_requested=requested,
        qty_fulfilled=fulfilled,
        qty_petty_cash=petty,
        status=status,
        fulfilled_at=fulfilled_at,
    )


def _req(req_id, requested_on, *lines, requester="ANA", specialty=None):
    return RequisitionRecord(
        id=req_id,
        site_id=1,
        requester=requester,
        requested_on=requested_on,
        lines=lines,
        specialty=specialty,
    )


# ---------- empty inputs ----------
def test_every_reducer_accepts_empty_inputs():
    assert analytics.entry_totals([], None) == EntryTotals()
    assert analytics.stock_risk_ranking([], [], NOW) == []
    assert analytics.unmet_demand_ranking([], [], NO_EXCLUSION, NOW) == []
    assert analytics.weekly_flow([], None) == []
    assert analytics.top_consumed_items([], None) == []
    assert analytics.pending_aging([], NO_EXCLUSION, NOW) == PendingAging()
    assert analytics.purchase_origin_split(EntryTotals()) == []
    assert analytics.fulfillment_efficiency([], NO_EXCLUSION, None) == FulfillmentEfficiency()
    assert analytics.fulfillment_time([], NO_EXCLUSION, None) == FulfillmentTime()
    assert analytics.top_requesters([], NO_EXCLUSION, None) == []
    assert analytics.specialty_totals([], NO_EXCLUSION, None) == []
    assert analytics.excess_inventory([]) == []
    assert analytics.slow_moving_items([], [], NO_EXCLUSION, NOW) == []


# ---------- helpers ----------
def test_percent_rounds_half_up_and_handles_zero():
    assert analytics.percent(1, 8) == 13
    assert analytics.percent(1, 3) == 33
    assert analytics.percent(5, 0) == 0


def test_document_markers():
    assert analytics.is_petty_cash("cc-0045") is True
    assert analytics.is_petty_cash("Caja chica 12") is True
    assert analytics.is_purchase_order("O/C 778") is True
    assert analytics.is_purchase_order("OC-12") is True
    assert analytics.is_purchase_order(None) is False


# ---------- entry totals / origin split ----------
def test_entry_totals_split_by_document_within_window():
    """
    GIVEN 3 ENTRADAS (CC 40, OC 55, guía 5) + 1 ENTRADA hors fenêtre + 1 SALIDA
    THEN total 100, caja chica 40, OC 55
    """
    movements = [
        _mv(MovementKind.entry, 40, ref="CC-01"),
        _mv(MovementKind.entry, 55, ref="OC-12"),
        _mv(MovementKind.entry, 5, ref="GUIA 7"),
        _mv(MovementKind.entry, 500, ref="OC-1", at=NOW - timedelta(days=45)),
        _mv(MovementKind.exit, 30),
    ]
    totals = analytics.entry_totals(movements, cutoff("30", NOW))
    assert totals == EntryTotals(total=100, petty_cash=40, purchase_order=55)


def test_petty_cash_wins_over_purchase_order_marker():
    totals = analytics.entry_totals([_mv(MovementKind.entry, 10, ref="CC OC-5")], None)
    assert totals.petty_cash == 10
    assert totals.purchase_order == 0


def test_origin_split_with_other_remainder():
    shares = analytics.purchase_origin_split(EntryTotals(total=100, petty_cash=40, purchase_order=55))
    assert shares == [
        OriginShare(OriginCategory.petty_cash, 40),
        OriginShare(OriginCategory.purchase_order, 55),
        OriginShare(OriginCategory.other, 5),
    ]


def test_origin_split_omits_other_when_fully_covered():
    shares = analytics.purchase_origin_split(EntryTotals(total=100, petty_cash=40, purchase_order=60))
    assert [s.category for s in shares] == [OriginCategory.petty_cash, OriginCategory.purchase_order]


def test_origin_split_omits_zero_categories():
    shares = analytics.purchase_origin_split(EntryTotals(total=20, petty_cash=0, purchase_order=20))
    assert shares == [OriginShare(OriginCategory.purchase_order, 100)]


# ---------- stock risk ----------
def test_no_consumption_means_unbounded_and_absent():
    """
    GIVEN stock 100 et aucune SALIDA sur 30 jours
    THEN jours = sentinelle 999, niveau ok, donc absent du classement
    """
    cement = _item(1)
    assert analytics.days_of_stock(100, 0) == analytics.UNBOUNDED_STOCK_DAYS
    assert analytics.risk_level(analytics.UNBOUNDED_STOCK_DAYS) == RiskLevel.ok
    assert analytics.stock_risk_ranking([], [_snap(cement, 100)], NOW) == []


def test_stock_risk_low_level():
    """
    GIVEN stock 70 et 210 sortis sur les 30 derniers jours
    THEN burn 7/jour, 10 jours restants, niveau bas
    """
    cement = _item(1)
    movements = [
        _mv(MovementKind.exit, 70, item=cement, at=NOW - timedelta(days=d))
        for d in (1, 5, 20)
    ]
    # SALIDA trop ancienne : hors fenêtre de consommation
    movements.append(_mv(MovementKind.exit, 900, item=cement, at=NOW - timedelta(days=31)))

    [risk] = analytics.stock_risk_ranking(movements, [_snap(cement, 70)], NOW)
    assert risk.daily_burn == 7
    assert risk.days_remaining == 10
    assert risk.level == RiskLevel.low
    assert risk.days_label == "10"


def test_stock_risk_critical_and_sorted_ascending():
    a, b = _item(1), _item(2)
    movements = [
        _mv(MovementKind.exit, 30, item=a, at=NOW - timedelta(days=2)),
        _mv(MovementKind.exit, 30, item=b, at=NOW - timedelta(days=2)),
    ]
    ranked = analytics.stock_risk_ranking(movements, [_snap(a, 12), _snap(b, 3)], NOW)
    assert [r.item for r in ranked] == [b, a]
    assert [r.level for r in ranked] == [RiskLevel.critical, RiskLevel.low]


def test_stock_risk_is_capped_at_ten():
    items = [_item(i) for i in range(1, 16)]
    movements = [_mv(MovementKind.exit, 30, item=it, at=NOW - timedelta(days=1)) for it in items]
    # burn = 1/jour -> jours restants = stock
    inventory = [_snap(it, it.id) for it in items]

    ranked = analytics.stock_risk_ranking(movements, inventory, NOW)
    assert len(ranked) == 10
    assert [r.days_remaining for r in ranked] == list(range(1, 11))


# ---------- unmet demand ----------
def test_unmet_demand_counts_shortfall_not_covered_by_stock():
    """
    GIVEN CEMENTO : 2 lignes ouvertes (manque 8 + 4) dans 2 requerimientos, stock 3
          ACERO   : manque 3, stock 10 (couvert)
    THEN seul CEMENTO ressort : manque 12, 2 requerimientos, attente max 20 jours
    """
    cement, steel = _item(1), _item(2)
    reqs = [
        _req(1, date(2026, 2, 23), _line(1, cement, 10, 2, LineStatus.partial)),
        _req(2, date(2026, 3, 10), _line(2, cement, 4), _line(3, steel, 3)),
        _req(3, date(2026, 1, 1), _line(4, cement, 50, 50, LineStatus.fulfilled)),
    ]
    ranked = analytics.unmet_demand_ranking(reqs, [_snap(cement, 3), _snap(steel, 10)], NO_EXCLUSION, NOW)

    assert len(ranked) == 1
    demand = ranked[0]
    assert demand.item == cement
    assert demand.shortfall == 12
    assert demand.requisition_count == 2
    assert demand.max_wait_days == 20
    assert demand.qty_on_hand == 3


def test_unmet_demand_respects_exclusion_and_cap():
    items = [_item(i) for i in range(1, 13)]
    reqs = [_req(i, (NOW - timedelta(days=i)).date(), _line(i, it, 5)) for i, it in enumerate(items, start=1)]
    excluded = ExclusionFilter({(12, items[11].key)})

    ranked = analytics.unmet_demand_ranking(reqs, [], excluded, NOW)
    assert len(ranked) == 8
    assert [d.max_wait_days for d in ranked] == [11, 10, 9, 8, 7, 6, 5, 4]


# ---------- weekly flow ----------
def test_weekly_flow_buckets_by_iso_week():
    """
    GIVEN 2 mouvements la même semaine ISO et 1 la semaine précédente
    THEN 2 seaux, triés, le même seau additionne les quantités
    """
    movements = [
        _mv(MovementKind.entry, 10, at=datetime(2026, 3, 10, tzinfo=timezone.utc)),
        _mv(MovementKind.entry, 5, at=datetime(2026, 3, 12, tzinfo=timezone.utc)),
        _mv(MovementKind.exit, 4, at=datetime(2026, 3, 12, tzinfo=timezone.utc)),
        _mv(MovementKind.exit, 7, at=datetime(2026, 3, 3, tzinfo=timezone.utc)),
    ]
    flow = analytics.weekly_flow(movements, None)

    assert [w.key for w in flow] == ["2026-W10", "2026-W11"]
    assert [w.label for w in flow] == ["S10 Mar", "S11 Mar"]
    assert (flow[0].inbound, flow[0].outbound) == (0, 7)
    assert (flow[1].inbound, flow[1].outbound) == (15, 4)


def test_weekly_flow_label_uses_monday_month():
    # dimanche 1er mars : le lundi de sa semaine est le 23 février
    flow = analytics.weekly_flow([_mv(MovementKind.entry, 1, at=datetime(2026, 3, 1, tzinfo=timezone.utc))], None)
    assert flow[0].label == "S09 Feb"


# ---------- consumed items ----------
def test_top_consumed_items_sorted_and_capped():
    movements = [_mv(MovementKind.exit, i, item=_item(i)) for i in range(1, 16)]
    movements.append(_mv(MovementKind.entry, 100, item=_item(15)))

    top = analytics.top_consumed_items(movements, None)
    assert len(top) == 10
    assert top[0].name == "ITEM 15"
    assert top[0].inbound == 100
    assert [c.outbound for c in top] == sorted((c.outbound for c in top), reverse=True)


def test_top_consumed_groups_unknown_items():
    top = analytics.top_consumed_items([_mv(MovementKind.exit, 2), _mv(MovementKind.exit, 3)], None)
    assert [(c.name, c.outbound) for c in top] == [("-", 5)]


# ---------- pending aging ----------
def test_pending_aging_buckets():
    """
    Règle métier : > 14 jours critique, > 7 jours élevé, sinon normal.
    Les lignes servies ou exclues ne comptent pas.
    """
    item = _item(1)
    reqs = [
        _req(1, date(2026, 2, 20), _line(1, item, 5)),  # 23 jours
        _req(2, date(2026, 3, 1), _line(2, item, 5, 1, LineStatus.partial)),  # 14 jours
        _req(3, date(2026, 3, 8), _line(3, item, 5)),  # 7 jours
        _req(4, date(2026, 3, 1), _line(4, item, 5, 5, LineStatus.fulfilled)),
        _req(5, date(2026, 1, 1), _line(5, item, 5, 0, LineStatus.cancelled)),
    ]
    aging = analytics.pending_aging(reqs, NO_EXCLUSION, NOW)
    # âges 23, 14 et 7 jours
    assert aging == PendingAging(critical=1, high=1, normal=1, avg_days=14.7)
    assert aging.total == 3


# ---------- fulfillment efficiency ----------
def test_fulfillment_efficiency_zero_requested():
    req = _req(1, date(2026, 3, 10), _line(1, _item(1), 10, 0, LineStatus.cancelled))
    eff = analytics.fulfillment_efficiency([req], NO_EXCLUSION, None)
    assert eff.approved == 0
    assert eff.fulfillment_pct == 0
    assert eff.petty_cash_pct == 0


def test_fulfillment_efficiency_end_to_end_with_exclusions():
    """
    GIVEN 3 lignes :
    - Pendiente 10/0 exclue par correction (OC à 0)
    - Parcial 5/2 valide
    - Cancelado 0 exclue par la règle de repli
    THEN seule la ligne Parcial compte : aprobado 5, atendido 2, 40 %
    """
    cement, steel, helmet = _item(1), _item(2), _item(3, ItemKind.ppe)
    req = _req(
        10,
        date(2026, 3, 10),
        _line(1, cement, 10, 0, LineStatus.pending),
        _line(2, steel, 5, 2, LineStatus.partial, petty=1),
        _line(3, helmet, 8, 0, LineStatus.cancelled),
    )
    exclusion = ExclusionFilter({(10, cement.key)})

    eff = analytics.fulfillment_efficiency([req], exclusion, cutoff("30", NOW))
    assert eff.approved == 5
    assert eff.fulfilled == 2
    assert eff.fulfillment_pct == 40
    assert eff.petty_cash_pct == 50


def test_fulfillment_efficiency_uses_requested_on_window():
    old = _req(1, date(2025, 1, 1), _line(1, _item(1), 100, 100, LineStatus.fulfilled))
    recent = _req(2, date(2026, 3, 14), _line(2, _item(1), 10, 5, LineStatus.partial))

    eff = analytics.fulfillment_efficiency([old, recent], NO_EXCLUSION, cutoff("7", NOW))
    assert (eff.approved, eff.fulfilled, eff.fulfillment_pct) == (10, 5, 50)


# ---------- fulfillment time ----------
def test_fulfillment_time_averages_served_lines_in_window():
    """
    GIVEN des lignes servies 4 et 2 jours après la demande
    THEN moyenne 3 jours ; ne comptent pas :
    - une ligne Atendido sans date d'atención
    - une ligne Pendiente sans quantité servie (même datée)
    - une ligne exclue par correction
    - une demande hors période
    """
    cement, steel = _item(1), _item(2)
    reqs = [
        _req(
            1,
            date(2026, 3, 1),
            _line(1, cement, 5, 5, LineStatus.fulfilled, fulfilled_at=datetime(2026, 3, 5, 10, 0)),
            _line(2, steel, 5, 5, LineStatus.fulfilled),
        ),
        _req(
            2,
            date(2026, 3, 10),
            _line(3, cement, 5, 2, LineStatus.partial, fulfilled_at=datetime(2026, 3, 12, tzinfo=timezone.utc)),
            _line(4, steel, 5, 0, LineStatus.pending, fulfilled_at=datetime(2026, 3, 11, tzinfo=timezone.utc)),
        ),
        _req(3, date(2026, 3, 1), _line(5, cement, 5, 5, LineStatus.fulfilled, fulfilled_at=NOW)),
        _req(4, date(2025, 1, 1), _line(6, cement, 5, 5, LineStatus.fulfilled, fulfilled_at=NOW)),
    ]
    exclusion = ExclusionFilter({(3, cement.key)})

    result = analytics.fulfillment_time(reqs, exclusion, cutoff("30", NOW))
    assert result == FulfillmentTime(avg_days=3.0, lines=2)


# ---------- specialties ----------
def test_specialty_totals_sum_served_quantity_with_default_label():
    cement = _item(1)
    reqs = [
        _req(1, date(2026, 3, 10), _line(1, cement, 8, 5, LineStatus.partial), specialty="ESTRUCTURAS"),
        _req(2, date(2026, 3, 11), _line(2, cement, 3, 3, LineStatus.fulfilled), specialty="ESTRUCTURAS"),
        _req(3, date(2026, 3, 12), _line(3, cement, 4, 4, LineStatus.fulfilled), specialty="INSTALACIONES"),
        _req(4, date(2026, 3, 12), _line(4, cement, 10, 10, LineStatus.fulfilled)),
        _req(5, date(2026, 3, 13), _line(5, cement, 9, 9, LineStatus.fulfilled), specialty="INSTALACIONES"),
        _req(6, date(2025, 1, 1), _line(6, cement, 50, 50, LineStatus.fulfilled), specialty="ACABADOS"),
    ]
    exclusion = ExclusionFilter({(5, cement.key)})

    totals = analytics.specialty_totals(reqs, exclusion, cutoff("30", NOW))
    assert [(s.name, s.quantity) for s in totals] == [
        (analytics.UNKNOWN_SPECIALTY, 10),
        ("ESTRUCTURAS", 8),
        ("INSTALACIONES", 4),
    ]


# ---------- requesters ----------
def test_top_requesters_capped_with_unknown_name():
    reqs = [
        _req(i, date(2026, 3, 10), _line(i, _item(1), i), requester=f"PERSONA {i}")
        for i in range(1, 10)
    ]
    reqs.append(_req(99, date(2026, 3, 10), _line(99, _item(1), 50), requester="  "))

    top = analytics.top_requesters(reqs, NO_EXCLUSION, None)
    assert len(top) == 6
    assert top[0].name == analytics.UNKNOWN_REQUESTER
    assert top[0].quantity == 50
    assert [r.quantity for r in top[1:]] == [9, 8, 7, 6, 5]


# ---------- inventory health ----------
def test_excess_inventory_uses_default_max_stock():
    a, b, c = _item(1), _item(2), _item(3)
    excess = analytics.excess_inventory([_snap(a, 150), _snap(b, 80, max_stock=50), _snap(c, 40, max_stock=50)])
    assert [(e.item, e.excess) for e in excess] == [(a, 50), (b, 30)]
    assert excess[0].max_stock == analytics.DEFAULT_MAX_STOCK


def test_slow_moving_items_never_requested_first():
    never, stale, active, empty = _item(1), _item(2), _item(3), _item(4)
    reqs = [
        _req(1, date(2025, 12, 1), _line(1, stale, 5, 5, LineStatus.fulfilled)),
        _req(2, date(2026, 3, 5), _line(2, active, 5, 5, LineStatus.fulfilled)),
    ]
    inventory = [_snap(stale, 10), _snap(active, 10), _snap(never, 3), _snap(empty, 0)]

    slow = analytics.slow_moving_items(reqs, inventory, NO_EXCLUSION, NOW)
    assert [s.item for s in slow] == [never, stale]
    assert slow[0].last_requested_on is None
    assert slow[1].last_requested_on == date(2025, 12, 1)
