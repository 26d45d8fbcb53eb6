"""initial almacen schema

Revision ID: 3f2a9c1d7b04
Revises:
Create Date: 2026-10-12
"""

from __future__ import annotations

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "3f2a9c1d7b04"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

# valeurs = noms des membres Python (stockage SQLAlchemy par défaut)
ITEM_KIND = postgresql.ENUM("material", "equipment", "ppe", name="item_kind", create_type=False)
MOVEMENT_KIND = postgresql.ENUM("entry", "exit", name="movement_kind", create_type=False)
LINE_STATUS = postgresql.ENUM("pending", "partial", "fulfilled", "cancelled", name="line_status", create_type=False)

ITEM_PAIR_SQL = "(item_kind IS NULL AND item_id IS NULL) OR (item_kind IS NOT NULL AND item_id IS NOT NULL)"


def upgrade() -> None:
    bind = op.get_bind()
    for enum_type in (ITEM_KIND, MOVEMENT_KIND, LINE_STATUS):
        enum_type.create(bind, checkfirst=True)

    op.create_table(
        "obras",
        sa.Column("id", sa.BigInteger(), primary_key=True),
        sa.Column("name", sa.String(200), nullable=False, unique=True),
        sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.true()),
    )
    op.create_table(
        "categorias",
        sa.Column("id", sa.BigInteger(), primary_key=True),
        sa.Column("name", sa.String(120), nullable=False, unique=True),
        sa.Column("description", sa.Text()),
    )
    op.create_table(
        "materiales",
        sa.Column("id", sa.BigInteger(), primary_key=True),
        sa.Column("category_id", sa.BigInteger(), sa.ForeignKey("categorias.id", ondelete="SET NULL")),
        sa.Column("description", sa.String(255), nullable=False),
        sa.Column("unit", sa.String(32), nullable=False, server_default="UND"),
        sa.Column("max_stock", sa.Numeric(14, 2)),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("category_id", "description", name="uq_material_category_description"),
        sa.CheckConstraint("max_stock IS NULL OR max_stock >= 0", name="ck_material_max_stock_nonneg"),
    )
    op.create_table(
        "equipos",
        sa.Column("id", sa.BigInteger(), primary_key=True),
        sa.Column("code", sa.String(64), nullable=False, unique=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("unit", sa.String(32), nullable=False, server_default="UND"),
    )
    op.create_table(
        "epps",
        sa.Column("id", sa.BigInteger(), primary_key=True),
        sa.Column("code", sa.String(64), nullable=False, unique=True),
        sa.Column("description", sa.String(255), nullable=False),
        sa.Column("unit", sa.String(32), nullable=False, server_default="UND"),
        sa.Column("ppe_type", sa.String(32), nullable=False, server_default="Personal"),
    )
    op.create_table(
        "solicitantes",
        sa.Column("id", sa.BigInteger(), primary_key=True),
        sa.Column("name", sa.String(200), nullable=False, unique=True),
    )

    op.create_table(
        "requerimientos",
        sa.Column("id", sa.BigInteger(), primary_key=True),
        sa.Column("site_id", sa.BigInteger(), sa.ForeignKey("obras.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("item_number", sa.Integer(), nullable=False),
        sa.Column("block", sa.String(64)),
        sa.Column("specialty", sa.String(120)),
        sa.Column("requester", sa.String(200)),
        sa.Column("requested_on", sa.Date(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("site_id", "item_number", name="uq_requisition_site_item_number"),
    )
    op.create_index("ix_requisitions_site_requested_on", "requerimientos", ["site_id", "requested_on"])

    op.create_table(
        "detalles_requerimiento",
        sa.Column("id", sa.BigInteger(), primary_key=True),
        sa.Column(
            "requisition_id",
            sa.BigInteger(),
            sa.ForeignKey("requerimientos.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("item_kind", ITEM_KIND),
        sa.Column("item_id", sa.BigInteger()),
        sa.Column("description", sa.String(255), nullable=False, server_default=""),
        sa.Column("unit", sa.String(32)),
        sa.Column("qty_requested", sa.Numeric(14, 2), nullable=False),
        sa.Column("qty_fulfilled", sa.Numeric(14, 2)),
        sa.Column("qty_petty_cash", sa.Numeric(14, 2), nullable=False, server_default="0"),
        sa.Column("status", LINE_STATUS, nullable=False, server_default="pending"),
        sa.Column("fulfilled_at", sa.DateTime(timezone=True)),
        sa.Column("notes", sa.Text()),
        sa.CheckConstraint(ITEM_PAIR_SQL, name="ck_req_line_item_pair"),
        sa.CheckConstraint("qty_requested > 0", name="ck_req_line_qty_requested_pos"),
        sa.CheckConstraint("qty_fulfilled IS NULL OR qty_fulfilled >= 0", name="ck_req_line_qty_fulfilled_nonneg"),
        sa.CheckConstraint("qty_petty_cash >= 0", name="ck_req_line_qty_petty_cash_nonneg"),
    )
    op.create_index("ix_detalles_requerimiento_requisition_id", "detalles_requerimiento", ["requisition_id"])

    op.create_table(
        "ordenes_compra",
        sa.Column("id", sa.BigInteger(), primary_key=True),
        sa.Column("po_number", sa.String(64), nullable=False, unique=True),
        sa.Column("site_id", sa.BigInteger(), sa.ForeignKey("obras.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("supplier", sa.String(255)),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_table(
        "detalles_orden_compra",
        sa.Column("id", sa.BigInteger(), primary_key=True),
        sa.Column("po_id", sa.BigInteger(), sa.ForeignKey("ordenes_compra.id", ondelete="CASCADE"), nullable=False),
        sa.Column("requisition_id", sa.BigInteger(), sa.ForeignKey("requerimientos.id", ondelete="SET NULL")),
        sa.Column("item_kind", ITEM_KIND, nullable=False),
        sa.Column("item_id", sa.BigInteger(), nullable=False),
        sa.Column("quantity", sa.Numeric(14, 2), nullable=False),
        sa.Column("unit_price", sa.Numeric(14, 2), nullable=False, server_default="0"),
        sa.CheckConstraint("quantity >= 0", name="ck_po_line_qty_nonneg"),
        sa.CheckConstraint("unit_price >= 0", name="ck_po_line_unit_price_nonneg"),
    )
    op.create_index("ix_detalles_orden_compra_requisition_id", "detalles_orden_compra", ["requisition_id"])

    op.create_table(
        "movimientos_almacen",
        sa.Column("id", sa.BigInteger(), primary_key=True),
        sa.Column("site_id", sa.BigInteger(), sa.ForeignKey("obras.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("kind", MOVEMENT_KIND, nullable=False),
        sa.Column("item_kind", ITEM_KIND),
        sa.Column("item_id", sa.BigInteger()),
        sa.Column("quantity", sa.Numeric(14, 2), nullable=False),
        sa.Column("reference_document", sa.String(128)),
        sa.Column("destination", sa.String(255)),
        sa.Column("requisition_id", sa.BigInteger(), sa.ForeignKey("requerimientos.id", ondelete="SET NULL")),
        sa.Column(
            "requisition_line_id",
            sa.BigInteger(),
            sa.ForeignKey("detalles_requerimiento.id", ondelete="SET NULL"),
        ),
        sa.Column("idempotency_key", sa.String(64), nullable=False, unique=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint(ITEM_PAIR_SQL, name="ck_movement_item_pair"),
        sa.CheckConstraint("quantity > 0", name="ck_movement_qty_pos"),
    )
    op.create_index("ix_movements_site_time", "movimientos_almacen", ["site_id", "created_at"])

    op.create_table(
        "inventario_obra",
        sa.Column("id", sa.BigInteger(), primary_key=True),
        sa.Column("site_id", sa.BigInteger(), sa.ForeignKey("obras.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("item_kind", ITEM_KIND, nullable=False),
        sa.Column("item_id", sa.BigInteger(), nullable=False),
        sa.Column("qty_on_hand", sa.Numeric(14, 2), nullable=False, server_default="0"),
        sa.Column("last_entry_at", sa.DateTime(timezone=True)),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("site_id", "item_kind", "item_id", name="uq_inventory_site_item"),
        sa.CheckConstraint("qty_on_hand >= 0", name="ck_inventory_on_hand_nonneg"),
    )


def downgrade() -> None:
    op.drop_table("inventario_obra")
    op.drop_index("ix_movements_site_time", table_name="movimientos_almacen")
    op.drop_table("movimientos_almacen")
    op.drop_index("ix_detalles_orden_compra_requisition_id", table_name="detalles_orden_compra")
    op.drop_table("detalles_orden_compra")
    op.drop_table("ordenes_compra")
    op.drop_index("ix_detalles_requerimiento_requisition_id", table_name="detalles_requerimiento")
    op.drop_table("detalles_requerimiento")
    op.drop_index("ix_requisitions_site_requested_on", table_name="requerimientos")
    op.drop_table("requerimientos")
    op.drop_table("solicitantes")
    op.drop_table("epps")
    op.drop_table("equipos")
    op.drop_table("materiales")
    op.drop_table("categorias")
    op.drop_table("obras")

    bind = op.get_bind()
    for enum_type in (LINE_STATUS, MOVEMENT_KIND, ITEM_KIND):
        enum_type.drop(bind, checkfirst=True)
