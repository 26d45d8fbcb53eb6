from datetime import date, datetime

from pydantic import BaseModel

from almacen.app.db.models.core_types import ItemKind, PeriodWindow
from almacen.services.analytics import OriginCategory, RiskLevel


class _ReadModel(BaseModel):
    class Config:
        from_attributes = True


class ItemRead(_ReadModel):
    kind: ItemKind
    id: int
    name: str


class EntryTotalsRead(_ReadModel):
    total: float
    petty_cash: float
    purchase_order: float


class StockRiskRead(_ReadModel):
    item: ItemRead
    qty_on_hand: float
    daily_burn: float
    days_remaining: int
    days_label: str  # "unbounded" pour la sentinelle, jamais un nombre de jours
    level: RiskLevel


class UnmetDemandRead(_ReadModel):
    item: ItemRead
    shortfall: float
    requisition_count: int
    max_wait_days: int
    qty_on_hand: float


class WeekFlowRead(_ReadModel):
    key: str
    label: str
    inbound: float
    outbound: float


class ConsumedItemRead(_ReadModel):
    name: str
    inbound: float
    outbound: float


class PendingAgingRead(_ReadModel):
    critical: int
    high: int
    normal: int
    total: int
    avg_days: float


class OriginShareRead(_ReadModel):
    category: OriginCategory
    value: int


class FulfillmentRead(_ReadModel):
    approved: float
    fulfilled: float
    petty_cash: float
    fulfillment_pct: int
    petty_cash_pct: int


class FulfillmentTimeRead(_ReadModel):
    avg_days: float
    lines: int


class RequesterTotalRead(_ReadModel):
    name: str
    quantity: float


class SpecialtyTotalRead(_ReadModel):
    name: str
    quantity: float


class ExcessItemRead(_ReadModel):
    item: ItemRead
    qty_on_hand: float
    max_stock: float
    excess: float


class SlowMovingItemRead(_ReadModel):
    item: ItemRead
    qty_on_hand: float
    last_requested_on: date | None


class DashboardRead(_ReadModel):
    site_id: int
    period: PeriodWindow
    generated_at: datetime
    entry_totals: EntryTotalsRead
    stock_risk: list[StockRiskRead]
    unmet_demand: list[UnmetDemandRead]
    weekly_flow: list[WeekFlowRead]
    top_consumed: list[ConsumedItemRead]
    pending_aging: PendingAgingRead
    purchase_origin: list[OriginShareRead]
    fulfillment: FulfillmentRead
    fulfillment_time: FulfillmentTimeRead
    top_requesters: list[RequesterTotalRead]
    specialty_totals: list[SpecialtyTotalRead]
    excess_inventory: list[ExcessItemRead]
    slow_moving: list[SlowMovingItemRead]
