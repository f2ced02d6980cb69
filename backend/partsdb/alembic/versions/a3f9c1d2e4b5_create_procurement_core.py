"""Create procurement core tables.

Revision ID: a3f9c1d2e4b5
Revises:
Create Date: 2026-10-18 09:00:00.000000
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect


# revision identifiers, used by Alembic.
revision = "a3f9c1d2e4b5"
down_revision = None
branch_labels = None
depends_on = None


def _table_exists(table_name: str) -> bool:
    bind = op.get_bind()
    insp = inspect(bind)
    return bool(insp.has_table(table_name))


def _now_default():
    return sa.text("CURRENT_TIMESTAMP")


def upgrade() -> None:
    if not _table_exists("audit_events"):
        op.create_table(
            "audit_events",
            sa.Column("id", sa.String(length=36), primary_key=True),
            sa.Column("entity_type", sa.String(length=64), nullable=False),
            sa.Column("entity_id", sa.String(length=64), nullable=False),
            sa.Column("action", sa.String(length=64), nullable=False),
            sa.Column("actor_id", sa.String(length=64), nullable=True),
            sa.Column("occurred_at", sa.DateTime(timezone=True), nullable=False, server_default=_now_default()),
            sa.Column("before", sa.JSON(), nullable=True),
            sa.Column("after", sa.JSON(), nullable=True),
            sa.Column("correlation_id", sa.String(length=64), nullable=True),
            sa.Column("metadata", sa.JSON(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=_now_default()),
        )
        op.create_index("ix_audit_events_entity", "audit_events", ["entity_type", "entity_id"])
        op.create_index("ix_audit_events_action", "audit_events", ["action"])
        op.create_index("ix_audit_events_actor_id", "audit_events", ["actor_id"])
        op.create_index("ix_audit_events_occurred_at", "audit_events", ["occurred_at"])
        op.create_index("ix_audit_events_correlation_id", "audit_events", ["correlation_id"])

    if not _table_exists("stock_locations"):
        op.create_table(
            "stock_locations",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("code", sa.String(length=32), nullable=False),
            sa.Column("name", sa.String(length=128), nullable=False),
            sa.Column("location_type", sa.String(length=32), nullable=False),
            sa.Column("assigned_technician_id", sa.String(length=64), nullable=True),
            sa.Column("is_staging", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("notes", sa.Text(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=_now_default()),
            sa.UniqueConstraint("code", name="uq_stock_location_code"),
            sa.UniqueConstraint("assigned_technician_id", name="uq_stock_location_technician"),
        )
        op.create_index("ix_stock_locations_type", "stock_locations", ["location_type", "is_active"])

    if not _table_exists("parts"):
        op.create_table(
            "parts",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("part_number", sa.String(length=64), nullable=False),
            sa.Column("name", sa.String(length=255), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("category", sa.String(length=16), nullable=False, server_default="part"),
            sa.Column("uom", sa.String(length=16), nullable=False, server_default="EA"),
            sa.Column("unit_cost", sa.Numeric(12, 2), nullable=False, server_default="0"),
            sa.Column("is_serialized", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=_now_default()),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=_now_default()),
            sa.UniqueConstraint("part_number", name="uq_part_number"),
        )
        op.create_index("ix_parts_category", "parts", ["category", "is_active"])

    if not _table_exists("vendors"):
        op.create_table(
            "vendors",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("code", sa.String(length=32), nullable=False),
            sa.Column("name", sa.String(length=255), nullable=False),
            sa.Column("contact_email", sa.String(length=255), nullable=True),
            sa.Column("phone", sa.String(length=64), nullable=True),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=_now_default()),
            sa.UniqueConstraint("code", name="uq_vendor_code"),
        )

    if not _table_exists("purchase_orders"):
        op.create_table(
            "purchase_orders",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("po_number", sa.String(length=32), nullable=False),
            sa.Column("vendor_id", sa.Integer(), sa.ForeignKey("vendors.id", ondelete="RESTRICT"), nullable=False),
            sa.Column("order_date", sa.Date(), nullable=False),
            sa.Column("expected_delivery_date", sa.Date(), nullable=True),
            sa.Column("source", sa.String(length=16), nullable=False, server_default="LOCAL_VENDOR"),
            sa.Column("status", sa.String(length=16), nullable=False, server_default="draft"),
            sa.Column("tax_rate", sa.Numeric(6, 4), nullable=False, server_default="0"),
            sa.Column("subtotal", sa.Numeric(12, 2), nullable=False, server_default="0"),
            sa.Column("tax_amount", sa.Numeric(12, 2), nullable=False, server_default="0"),
            sa.Column("shipping_amount", sa.Numeric(12, 2), nullable=False, server_default="0"),
            sa.Column("total", sa.Numeric(12, 2), nullable=False, server_default="0"),
            sa.Column("notes", sa.Text(), nullable=True),
            sa.Column("created_by_id", sa.String(length=64), nullable=True),
            sa.Column("approved_by_id", sa.String(length=64), nullable=True),
            sa.Column("approved_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("received_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=_now_default()),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=_now_default()),
            sa.UniqueConstraint("po_number", name="uq_purchase_order_number"),
        )
        op.create_index("ix_purchase_orders_status", "purchase_orders", ["status"])
        op.create_index("ix_purchase_orders_vendor_id", "purchase_orders", ["vendor_id"])

    if not _table_exists("parts_requests"):
        op.create_table(
            "parts_requests",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("ticket_id", sa.String(length=64), nullable=False),
            sa.Column("requester_id", sa.String(length=64), nullable=False),
            sa.Column("assigned_technician_id", sa.String(length=64), nullable=True),
            sa.Column("urgency", sa.String(length=16), nullable=False, server_default="medium"),
            sa.Column("status", sa.String(length=16), nullable=False, server_default="open"),
            sa.Column(
                "purchase_order_id",
                sa.Integer(),
                sa.ForeignKey("purchase_orders.id", ondelete="SET NULL"),
                nullable=True,
            ),
            sa.Column("notes", sa.Text(), nullable=True),
            sa.Column("requested_at", sa.DateTime(timezone=True), nullable=False, server_default=_now_default()),
            sa.Column("ordered_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("received_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        )
        op.create_index("ix_parts_requests_status", "parts_requests", ["status", "requested_at"])
        op.create_index("ix_parts_requests_ticket", "parts_requests", ["ticket_id"])
        op.create_index("ix_parts_requests_assigned_technician_id", "parts_requests", ["assigned_technician_id"])

    if not _table_exists("parts_request_lines"):
        op.create_table(
            "parts_request_lines",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column(
                "parts_request_id",
                sa.Integer(),
                sa.ForeignKey("parts_requests.id", ondelete="CASCADE"),
                nullable=False,
            ),
            sa.Column("part_id", sa.Integer(), sa.ForeignKey("parts.id", ondelete="RESTRICT"), nullable=False),
            sa.Column("quantity_requested", sa.Integer(), nullable=False),
            sa.Column("note", sa.Text(), nullable=True),
            sa.CheckConstraint("quantity_requested > 0", name="ck_parts_request_line_quantity_positive"),
        )
        op.create_index("ix_parts_request_lines_parts_request_id", "parts_request_lines", ["parts_request_id"])

    if not _table_exists("purchase_order_lines"):
        op.create_table(
            "purchase_order_lines",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column(
                "purchase_order_id",
                sa.Integer(),
                sa.ForeignKey("purchase_orders.id", ondelete="CASCADE"),
                nullable=False,
            ),
            sa.Column("part_id", sa.Integer(), sa.ForeignKey("parts.id", ondelete="RESTRICT"), nullable=False),
            sa.Column("description", sa.String(length=255), nullable=True),
            sa.Column("quantity_ordered", sa.Integer(), nullable=False),
            sa.Column("quantity_received", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("quantity_damaged", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("unit_price", sa.Numeric(12, 2), nullable=False, server_default="0"),
            sa.Column("line_total", sa.Numeric(12, 2), nullable=False, server_default="0"),
            sa.Column("ticket_id", sa.String(length=64), nullable=True),
            sa.Column(
                "parts_request_id",
                sa.Integer(),
                sa.ForeignKey("parts_requests.id", ondelete="SET NULL"),
                nullable=True,
            ),
            sa.Column(
                "parts_request_line_id",
                sa.Integer(),
                sa.ForeignKey("parts_request_lines.id", ondelete="SET NULL"),
                nullable=True,
            ),
            sa.CheckConstraint("quantity_ordered > 0", name="ck_po_line_quantity_positive"),
            sa.CheckConstraint(
                "quantity_received >= 0 AND quantity_received <= quantity_ordered",
                name="ck_po_line_received_within_ordered",
            ),
        )
        op.create_index("ix_purchase_order_lines_po", "purchase_order_lines", ["purchase_order_id"])
        op.create_index("ix_purchase_order_lines_request", "purchase_order_lines", ["parts_request_id"])
        op.create_index("ix_purchase_order_lines_ticket_id", "purchase_order_lines", ["ticket_id"])

    if not _table_exists("serialized_units"):
        op.create_table(
            "serialized_units",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("part_id", sa.Integer(), sa.ForeignKey("parts.id", ondelete="RESTRICT"), nullable=False),
            sa.Column("serial_number", sa.String(length=128), nullable=False),
            sa.Column("status", sa.String(length=16), nullable=False, server_default="in_stock"),
            sa.Column(
                "current_location_id",
                sa.Integer(),
                sa.ForeignKey("stock_locations.id", ondelete="SET NULL"),
                nullable=True,
            ),
            sa.Column("vendor_id", sa.Integer(), sa.ForeignKey("vendors.id", ondelete="SET NULL"), nullable=True),
            sa.Column(
                "purchase_order_id",
                sa.Integer(),
                sa.ForeignKey("purchase_orders.id", ondelete="SET NULL"),
                nullable=True,
            ),
            sa.Column(
                "purchase_order_line_id",
                sa.Integer(),
                sa.ForeignKey("purchase_order_lines.id", ondelete="SET NULL"),
                nullable=True,
            ),
            sa.Column("ticket_id", sa.String(length=64), nullable=True),
            sa.Column("received_date", sa.Date(), nullable=True),
            sa.Column("unit_cost", sa.Numeric(12, 2), nullable=True),
            sa.Column("warranty_start_date", sa.Date(), nullable=True),
            sa.Column("warranty_end_date", sa.Date(), nullable=True),
            sa.Column("installed_on_equipment_id", sa.String(length=64), nullable=True),
            sa.Column("installed_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("notes", sa.Text(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=_now_default()),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=_now_default()),
            sa.UniqueConstraint("part_id", "serial_number", name="uq_serialized_unit_serial"),
        )
        op.create_index("ix_serialized_units_status", "serialized_units", ["status"])
        op.create_index("ix_serialized_units_warranty_end", "serialized_units", ["warranty_end_date"])
        op.create_index("ix_serialized_units_current_location_id", "serialized_units", ["current_location_id"])
        op.create_index("ix_serialized_units_ticket_id", "serialized_units", ["ticket_id"])

    if not _table_exists("inventory_movements"):
        op.create_table(
            "inventory_movements",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("part_id", sa.Integer(), sa.ForeignKey("parts.id", ondelete="RESTRICT"), nullable=False),
            sa.Column("quantity", sa.Integer(), nullable=False),
            sa.Column("movement_type", sa.String(length=16), nullable=False),
            sa.Column(
                "from_location_id",
                sa.Integer(),
                sa.ForeignKey("stock_locations.id", ondelete="RESTRICT"),
                nullable=True,
            ),
            sa.Column(
                "to_location_id",
                sa.Integer(),
                sa.ForeignKey("stock_locations.id", ondelete="RESTRICT"),
                nullable=True,
            ),
            sa.Column(
                "serialized_unit_id",
                sa.Integer(),
                sa.ForeignKey("serialized_units.id", ondelete="SET NULL"),
                nullable=True,
            ),
            sa.Column(
                "purchase_order_line_id",
                sa.Integer(),
                sa.ForeignKey("purchase_order_lines.id", ondelete="SET NULL"),
                nullable=True,
            ),
            sa.Column("ticket_id", sa.String(length=64), nullable=True),
            sa.Column("notes", sa.Text(), nullable=True),
            sa.Column("actor_id", sa.String(length=64), nullable=True),
            sa.Column("occurred_at", sa.DateTime(timezone=True), nullable=False, server_default=_now_default()),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=_now_default()),
            sa.CheckConstraint("quantity > 0", name="ck_inventory_movement_quantity_positive"),
        )
        op.create_index("ix_inventory_movements_part", "inventory_movements", ["part_id", "occurred_at"])
        op.create_index("ix_inventory_movements_ticket", "inventory_movements", ["ticket_id"])
        op.create_index("ix_inventory_movements_movement_type", "inventory_movements", ["movement_type"])
        op.create_index("ix_inventory_movements_from_location_id", "inventory_movements", ["from_location_id"])
        op.create_index("ix_inventory_movements_to_location_id", "inventory_movements", ["to_location_id"])

    if not _table_exists("stock_balances"):
        op.create_table(
            "stock_balances",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("part_id", sa.Integer(), sa.ForeignKey("parts.id", ondelete="CASCADE"), nullable=False),
            sa.Column(
                "location_id",
                sa.Integer(),
                sa.ForeignKey("stock_locations.id", ondelete="CASCADE"),
                nullable=False,
            ),
            sa.Column("quantity", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=_now_default()),
            sa.UniqueConstraint("part_id", "location_id", name="uq_stock_balance_part_location"),
            sa.CheckConstraint("quantity >= 0", name="ck_stock_balance_non_negative"),
        )

    if not _table_exists("staged_part_items"):
        op.create_table(
            "staged_part_items",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("ticket_id", sa.String(length=64), nullable=False),
            sa.Column("part_id", sa.Integer(), sa.ForeignKey("parts.id", ondelete="RESTRICT"), nullable=False),
            sa.Column("quantity", sa.Integer(), nullable=False),
            sa.Column(
                "staging_location_id",
                sa.Integer(),
                sa.ForeignKey("stock_locations.id", ondelete="RESTRICT"),
                nullable=False,
            ),
            sa.Column(
                "purchase_order_line_id",
                sa.Integer(),
                sa.ForeignKey("purchase_order_lines.id", ondelete="SET NULL"),
                nullable=True,
            ),
            sa.Column(
                "parts_request_id",
                sa.Integer(),
                sa.ForeignKey("parts_requests.id", ondelete="SET NULL"),
                nullable=True,
            ),
            sa.Column(
                "serialized_unit_id",
                sa.Integer(),
                sa.ForeignKey("serialized_units.id", ondelete="SET NULL"),
                nullable=True,
            ),
            sa.Column("assigned_technician_id", sa.String(length=64), nullable=True),
            sa.Column("picked_up", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("picked_up_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("picked_up_by_id", sa.String(length=64), nullable=True),
            sa.Column(
                "picked_up_to_location_id",
                sa.Integer(),
                sa.ForeignKey("stock_locations.id", ondelete="SET NULL"),
                nullable=True,
            ),
            sa.Column("released", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("released_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("staged_at", sa.DateTime(timezone=True), nullable=False, server_default=_now_default()),
            sa.CheckConstraint("quantity > 0", name="ck_staged_part_item_quantity_positive"),
        )
        op.create_index(
            "ix_staged_part_items_ticket",
            "staged_part_items",
            ["ticket_id", "picked_up", "released"],
        )
        op.create_index("ix_staged_part_items_technician", "staged_part_items", ["assigned_technician_id"])


def downgrade() -> None:
    for table_name in (
        "staged_part_items",
        "stock_balances",
        "inventory_movements",
        "serialized_units",
        "purchase_order_lines",
        "parts_request_lines",
        "parts_requests",
        "purchase_orders",
        "vendors",
        "parts",
        "stock_locations",
        "audit_events",
    ):
        if _table_exists(table_name):
            op.drop_table(table_name)
