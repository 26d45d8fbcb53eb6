from __future__ import annotations

from datetime import datetime, date
from decimal import Decimal

from sqlalchemy import (
    String,
    Integer,
    BigInteger,
    DateTime,
    Date,
    Boolean,
    ForeignKey,
    Numeric,
    Text,
    Enum,
    UniqueConstraint,
    Index,
    CheckConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from almacen.app.db.base import Base, BigIntPK, utcnow
from almacen.app.db.models.core_types import (
    ItemKind,
    MovementKind,
    LineStatus,
)

# (item_kind, item_id) : variante étiquetée, les deux colonnes sont posées ensemble ou pas du tout
_ITEM_PAIR_SQL = (
    "(item_kind IS NULL AND item_id IS NULL) OR (item_kind IS NOT NULL AND item_id IS NOT NULL)"
)


# ---------- MASTER DATA ----------
class Site(Base):
    __tablename__ = "obras"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    name: Mapped[str] = mapped_column(String(200), unique=True, nullable=False)
    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)


class Category(Base):
    __tablename__ = "categorias"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    name: Mapped[str] = mapped_column(String(120), unique=True, nullable=False)
    description: Mapped[str | None] = mapped_column(Text)


class Material(Base):
    __tablename__ = "materiales"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    category_id: Mapped[int | None] = mapped_column(ForeignKey("categorias.id", ondelete="SET NULL"))
    description: Mapped[str] = mapped_column(String(255), nullable=False)
    unit: Mapped[str] = mapped_column(String(32), default="UND", nullable=False)
    max_stock: Mapped[Decimal | None] = mapped_column(Numeric(14, 2))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)

    category: Mapped[Category | None] = relationship()

    __table_args__ = (
        UniqueConstraint("category_id", "description", name="uq_material_category_description"),
        CheckConstraint("max_stock IS NULL OR max_stock >= 0", name="ck_material_max_stock_nonneg"),
    )


class Equipment(Base):
    __tablename__ = "equipos"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    code: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    unit: Mapped[str] = mapped_column(String(32), default="UND", nullable=False)


class Ppe(Base):
    __tablename__ = "epps"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    code: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    description: Mapped[str] = mapped_column(String(255), nullable=False)
    unit: Mapped[str] = mapped_column(String(32), default="UND", nullable=False)
    ppe_type: Mapped[str] = mapped_column(String(32), default="Personal", nullable=False)


class Requester(Base):
    __tablename__ = "solicitantes"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    name: Mapped[str] = mapped_column(String(200), unique=True, nullable=False)


# ---------- REQUISITIONS ----------
class Requisition(Base):
    __tablename__ = "requerimientos"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    site_id: Mapped[int] = mapped_column(ForeignKey("obras.id", ondelete="RESTRICT"), nullable=False)
    item_number: Mapped[int] = mapped_column(Integer, nullable=False)
    block: Mapped[str | None] = mapped_column(String(64))
    specialty: Mapped[str | None] = mapped_column(String(120))
    requester: Mapped[str | None] = mapped_column(String(200))
    requested_on: Mapped[date] = mapped_column(Date, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)

    site: Mapped[Site] = relationship()
    lines: Mapped[list["RequisitionLine"]] = relationship(back_populates="requisition", cascade="all, delete-orphan")

    __table_args__ = (
        UniqueConstraint("site_id", "item_number", name="uq_requisition_site_item_number"),
        Index("ix_requisitions_site_requested_on", "site_id", "requested_on"),
    )


class RequisitionLine(Base):
    __tablename__ = "detalles_requerimiento"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    requisition_id: Mapped[int] = mapped_column(
        ForeignKey("requerimientos.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    item_kind: Mapped[ItemKind | None] = mapped_column(Enum(ItemKind, name="item_kind"))
    item_id: Mapped[int | None] = mapped_column(BigInteger)
    description: Mapped[str] = mapped_column(String(255), default="", nullable=False)
    unit: Mapped[str | None] = mapped_column(String(32))

    qty_requested: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    qty_fulfilled: Mapped[Decimal | None] = mapped_column(Numeric(14, 2))
    qty_petty_cash: Mapped[Decimal] = mapped_column(Numeric(14, 2), default=0, nullable=False)
    status: Mapped[LineStatus] = mapped_column(
        Enum(LineStatus, name="line_status"),
        default=LineStatus.pending,
        nullable=False,
    )
    fulfilled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    notes: Mapped[str | None] = mapped_column(Text)

    requisition: Mapped[Requisition] = relationship(back_populates="lines")

    __table_args__ = (
        CheckConstraint(_ITEM_PAIR_SQL, name="ck_req_line_item_pair"),
        CheckConstraint("qty_requested > 0", name="ck_req_line_qty_requested_pos"),
        CheckConstraint("qty_fulfilled IS NULL OR qty_fulfilled >= 0", name="ck_req_line_qty_fulfilled_nonneg"),
        CheckConstraint("qty_petty_cash >= 0", name="ck_req_line_qty_petty_cash_nonneg"),
    )


# ---------- PROCUREMENT ----------
class PurchaseOrder(Base):
    __tablename__ = "ordenes_compra"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    po_number: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    site_id: Mapped[int] = mapped_column(ForeignKey("obras.id", ondelete="RESTRICT"), nullable=False)
    supplier: Mapped[str | None] = mapped_column(String(255))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)

    site: Mapped[Site] = relationship()
    lines: Mapped[list["PurchaseOrderLine"]] = relationship(back_populates="po", cascade="all, delete-orphan")


class PurchaseOrderLine(Base):
    __tablename__ = "detalles_orden_compra"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    po_id: Mapped[int] = mapped_column(ForeignKey("ordenes_compra.id", ondelete="CASCADE"), nullable=False)
    requisition_id: Mapped[int | None] = mapped_column(ForeignKey("requerimientos.id", ondelete="SET NULL"), index=True)
    item_kind: Mapped[ItemKind] = mapped_column(Enum(ItemKind, name="item_kind"), nullable=False)
    item_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    # 0 = ligne rejetée en aval : la demande d'origine ne doit plus compter
    quantity: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(Numeric(14, 2), default=0, nullable=False)

    po: Mapped[PurchaseOrder] = relationship(back_populates="lines")

    __table_args__ = (
        CheckConstraint("quantity >= 0", name="ck_po_line_qty_nonneg"),
        CheckConstraint("unit_price >= 0", name="ck_po_line_unit_price_nonneg"),
    )


# ---------- INVENTORY ----------
class StockMovement(Base):
    __tablename__ = "movimientos_almacen"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    site_id: Mapped[int] = mapped_column(ForeignKey("obras.id", ondelete="RESTRICT"), nullable=False)

    kind: Mapped[MovementKind] = mapped_column(Enum(MovementKind, name="movement_kind"), nullable=False)
    item_kind: Mapped[ItemKind | None] = mapped_column(Enum(ItemKind, name="item_kind"))
    item_id: Mapped[int | None] = mapped_column(BigInteger)
    quantity: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)

    reference_document: Mapped[str | None] = mapped_column(String(128))
    destination: Mapped[str | None] = mapped_column(String(255))
    requisition_id: Mapped[int | None] = mapped_column(ForeignKey("requerimientos.id", ondelete="SET NULL"))
    requisition_line_id: Mapped[int | None] = mapped_column(
        ForeignKey("detalles_requerimiento.id", ondelete="SET NULL")
    )

    idempotency_key: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)

    __table_args__ = (
        CheckConstraint(_ITEM_PAIR_SQL, name="ck_movement_item_pair"),
        CheckConstraint("quantity > 0", name="ck_movement_qty_pos"),
        Index("ix_movements_site_time", "site_id", "created_at"),
    )


class Inventory(Base):
    __tablename__ = "inventario_obra"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    site_id: Mapped[int] = mapped_column(ForeignKey("obras.id", ondelete="RESTRICT"), nullable=False)
    item_kind: Mapped[ItemKind] = mapped_column(Enum(ItemKind, name="item_kind"), nullable=False)
    item_id: Mapped[int] = mapped_column(BigInteger, nullable=False)

    qty_on_hand: Mapped[Decimal] = mapped_column(Numeric(14, 2), default=0, nullable=False)
    last_entry_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        onupdate=utcnow,
        nullable=False,
    )

    __table_args__ = (
        UniqueConstraint("site_id", "item_kind", "item_id", name="uq_inventory_site_item"),
        CheckConstraint("qty_on_hand >= 0", name="ck_inventory_on_hand_nonneg"),
    )
