"""initial schema: master data, orders, inventory, fulfilment, invoices

Revision ID: 3f1a9c2b7d10
Revises:
Create Date: 2026-10-19
"""

from __future__ import annotations

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "3f1a9c2b7d10"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

QTY = sa.Numeric(14, 3)
MONEY = sa.Numeric(14, 2)

role = sa.Enum("admin", "admin_viewer", "user", "user_viewer", "fulfilment", name="role")
inquiry_result = sa.Enum("pending", "ordered", "lost", name="inquiry_result")
sales_order_stage = sa.Enum("pending", "open", "invoice", "closed", "cancelled", name="sales_order_stage")
purchase_order_stage = sa.Enum("pending", "open", "fulfilment", "closed", "cancelled", name="purchase_order_stage")


def _pk() -> sa.Column:
    return sa.Column("id", sa.BigInteger(), primary_key=True)


def _audit() -> list[sa.Column]:
    return [
        sa.Column("created_by_id", sa.BigInteger(), sa.ForeignKey("users.id", ondelete="SET NULL")),
        sa.Column("updated_by_id", sa.BigInteger(), sa.ForeignKey("users.id", ondelete="SET NULL")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    ]


def upgrade() -> None:
    # --- AUTH / MASTER DATA
    op.create_table(
        "users",
        _pk(),
        sa.Column("name", sa.String(200), nullable=False, unique=True),
        sa.Column("role", role, nullable=False),
        sa.Column("active", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    for table, length in (("units", 64), ("currencies", 16), ("payment_terms", 255), ("customers", 255)):
        op.create_table(table, _pk(), sa.Column("name", sa.String(length), nullable=False, unique=True))
    op.create_table(
        "gst_rates",
        _pk(),
        sa.Column("rate", sa.Numeric(5, 2), nullable=False, unique=True),
        sa.CheckConstraint("rate >= 0", name="ck_gst_rate_nonneg"),
    )
    op.create_table(
        "customer_sites",
        _pk(),
        sa.Column("customer_id", sa.BigInteger(), sa.ForeignKey("customers.id", ondelete="CASCADE"), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.UniqueConstraint("customer_id", "name", name="uq_customer_site_name"),
    )
    op.create_table(
        "suppliers",
        _pk(),
        sa.Column("name", sa.String(255), nullable=False, unique=True),
        sa.Column("payment_term_id", sa.BigInteger(), sa.ForeignKey("payment_terms.id", ondelete="SET NULL")),
    )
    op.create_table(
        "inquiries",
        _pk(),
        sa.Column("customer_id", sa.BigInteger(), sa.ForeignKey("customers.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("result", inquiry_result, nullable=False),
        sa.Column("updated_by_id", sa.BigInteger(), sa.ForeignKey("users.id", ondelete="SET NULL")),
    )
    op.create_table(
        "attachments",
        _pk(),
        sa.Column("original_filename", sa.String(255), nullable=False),
        sa.Column("new_filename", sa.String(255), nullable=False),
        sa.Column("url", sa.String(1024), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )

    # --- SALES
    op.create_table(
        "sales_orders",
        _pk(),
        sa.Column("id2", sa.String(32), nullable=False, unique=True),
        sa.Column("counter", sa.Integer(), nullable=False, unique=True),
        sa.Column("date", sa.Date(), nullable=False, index=True),
        sa.Column("customer_id", sa.BigInteger(), sa.ForeignKey("customers.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("site_id", sa.BigInteger(), sa.ForeignKey("customer_sites.id", ondelete="SET NULL")),
        sa.Column("pr_number_and_name", sa.String(255)),
        sa.Column("reference_id", sa.String(128)),
        sa.Column("currency_id", sa.BigInteger(), sa.ForeignKey("currencies.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("representative_user_id", sa.BigInteger(), sa.ForeignKey("users.id", ondelete="SET NULL")),
        sa.Column("stage", sales_order_stage, nullable=False),
        sa.Column("approved", sa.Boolean(), nullable=False),
        sa.Column("total_amount", MONEY, nullable=False),
        *_audit(),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_table(
        "sales_order_items",
        _pk(),
        sa.Column("counter", sa.Integer(), nullable=False, unique=True),
        sa.Column(
            "sales_order_id", sa.BigInteger(), sa.ForeignKey("sales_orders.id", ondelete="CASCADE"),
            nullable=False, index=True,
        ),
        sa.Column("inquiry_id", sa.BigInteger(), sa.ForeignKey("inquiries.id", ondelete="SET NULL")),
        sa.Column("item_id", sa.String(64), nullable=False, index=True),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("size", sa.String(255)),
        sa.Column("unit_id", sa.BigInteger(), sa.ForeignKey("units.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("quantity", QTY, nullable=False),
        sa.Column("price", MONEY, nullable=False),
        sa.CheckConstraint("quantity > 0", name="ck_so_item_qty_pos"),
        sa.CheckConstraint("price >= 0", name="ck_so_item_price_nonneg"),
    )
    op.create_table(
        "sales_order_expenses",
        _pk(),
        sa.Column(
            "sales_order_id", sa.BigInteger(), sa.ForeignKey("sales_orders.id", ondelete="CASCADE"), nullable=False
        ),
        sa.Column("description", sa.String(255), nullable=False),
        sa.Column("price", MONEY, nullable=False),
    )

    # --- PROCUREMENT
    op.create_table(
        "purchase_orders",
        _pk(),
        sa.Column("id2", sa.String(32), nullable=False, unique=True),
        sa.Column("counter", sa.Integer(), nullable=False, unique=True),
        sa.Column("date", sa.Date(), nullable=False, index=True),
        sa.Column("supplier_id", sa.BigInteger(), sa.ForeignKey("suppliers.id", ondelete="RESTRICT"), nullable=False),
        sa.Column(
            "payment_term_id", sa.BigInteger(), sa.ForeignKey("payment_terms.id", ondelete="RESTRICT"), nullable=False
        ),
        sa.Column("currency_id", sa.BigInteger(), sa.ForeignKey("currencies.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("sales_order_id", sa.BigInteger(), sa.ForeignKey("sales_orders.id", ondelete="SET NULL")),
        sa.Column("reference_id", sa.String(128)),
        sa.Column("representative_user_id", sa.BigInteger(), sa.ForeignKey("users.id", ondelete="SET NULL")),
        sa.Column("stage", purchase_order_stage, nullable=False),
        sa.Column("approved", sa.Boolean(), nullable=False),
        sa.Column("total_amount", MONEY, nullable=False),
        *_audit(),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_table(
        "purchase_order_items",
        _pk(),
        sa.Column(
            "purchase_order_id", sa.BigInteger(), sa.ForeignKey("purchase_orders.id", ondelete="CASCADE"),
            nullable=False, index=True,
        ),
        sa.Column(
            "sales_order_item_id", sa.BigInteger(), sa.ForeignKey("sales_order_items.id", ondelete="SET NULL"),
            index=True,
        ),
        sa.Column("inquiry_id", sa.BigInteger(), sa.ForeignKey("inquiries.id", ondelete="SET NULL")),
        sa.Column("item_id", sa.String(64), nullable=False),
        sa.Column("sap_code", sa.String(64)),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("size", sa.String(255)),
        sa.Column("unit_id", sa.BigInteger(), sa.ForeignKey("units.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("quantity", QTY, nullable=False),
        sa.Column("price", MONEY, nullable=False),
        sa.Column("gst_rate_id", sa.BigInteger(), sa.ForeignKey("gst_rates.id", ondelete="SET NULL")),
        sa.Column("hsn_code", sa.String(8)),
        sa.Column("estimated_delivery_date", sa.Date()),
        sa.CheckConstraint("quantity > 0", name="ck_po_item_qty_pos"),
        sa.CheckConstraint("price >= 0", name="ck_po_item_price_nonneg"),
    )

    # --- INVENTORY / FULFILMENT
    # les CHECK de inventory_items arrivent dans la révision suivante
    op.create_table(
        "inventory_items",
        _pk(),
        sa.Column(
            "purchase_order_item_id", sa.BigInteger(), sa.ForeignKey("purchase_order_items.id", ondelete="RESTRICT"),
            nullable=False, unique=True,
        ),
        sa.Column("quantity", QTY, nullable=False, server_default="0"),
        sa.Column("quantity_gone", QTY, nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_table(
        "fulfilment_logs",
        _pk(),
        sa.Column("gate_entry_number", sa.String(64), nullable=False),
        sa.Column("gate_entry_date", sa.Date()),
        sa.Column("supplier_id", sa.BigInteger(), sa.ForeignKey("suppliers.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("invoice_id", sa.String(128), nullable=False),
        sa.Column("invoice_date", sa.Date()),
        sa.Column("location", sa.String(255), nullable=False),
        sa.Column("remarks", sa.Text()),
        *_audit(),
    )
    op.create_table(
        "fulfilment_log_items",
        _pk(),
        sa.Column(
            "fulfilment_log_id", sa.BigInteger(), sa.ForeignKey("fulfilment_logs.id", ondelete="RESTRICT"),
            nullable=False, index=True,
        ),
        sa.Column(
            "inventory_item_id", sa.BigInteger(), sa.ForeignKey("inventory_items.id", ondelete="RESTRICT"),
            nullable=False, index=True,
        ),
        sa.Column("quantity", QTY, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_table(
        "purchase_order_expenses",
        _pk(),
        sa.Column(
            "purchase_order_id", sa.BigInteger(), sa.ForeignKey("purchase_orders.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("fulfilment_log_id", sa.BigInteger(), sa.ForeignKey("fulfilment_logs.id", ondelete="SET NULL")),
        sa.Column("description", sa.String(255), nullable=False),
        sa.Column("price", MONEY, nullable=False),
        sa.Column("gst_rate_id", sa.BigInteger(), sa.ForeignKey("gst_rates.id", ondelete="SET NULL")),
        sa.Column("show_in_fulfilment", sa.Boolean(), nullable=False),
        sa.CheckConstraint("price >= 0", name="ck_po_expense_price_nonneg"),
    )

    # --- INVOICING
    op.create_table(
        "invoices",
        _pk(),
        sa.Column("id2", sa.String(32), unique=True),
        sa.Column("counter", sa.Integer(), unique=True),
        sa.Column("draft", sa.Boolean(), nullable=False),
        sa.Column("date", sa.Date(), nullable=False, index=True),
        sa.Column("customer_id", sa.BigInteger(), sa.ForeignKey("customers.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("currency_id", sa.BigInteger(), sa.ForeignKey("currencies.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("conversion_rate", sa.Numeric(14, 4), nullable=False),
        sa.Column("remarks", sa.Text()),
        sa.Column("total", MONEY, nullable=False),
        *_audit(),
        sa.CheckConstraint("conversion_rate > 0", name="ck_invoice_conversion_rate_pos"),
        sa.CheckConstraint("draft OR id2 IS NOT NULL", name="ck_invoice_final_has_id2"),
    )
    op.create_table(
        "invoice_items",
        _pk(),
        sa.Column("invoice_id", sa.BigInteger(), sa.ForeignKey("invoices.id", ondelete="CASCADE"), nullable=False),
        sa.Column(
            "sales_order_item_id", sa.BigInteger(), sa.ForeignKey("sales_order_items.id", ondelete="RESTRICT"),
            nullable=False, index=True,
        ),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("quantity", QTY, nullable=False),
        sa.CheckConstraint("quantity > 0", name="ck_invoice_item_qty_pos"),
    )
    op.create_index("ix_invoice_items_invoice_soi", "invoice_items", ["invoice_id", "sales_order_item_id"])


def downgrade() -> None:
    op.drop_index("ix_invoice_items_invoice_soi", table_name="invoice_items")
    for table in (
        "invoice_items",
        "invoices",
        "purchase_order_expenses",
        "fulfilment_log_items",
        "fulfilment_logs",
        "inventory_items",
        "purchase_order_items",
        "purchase_orders",
        "sales_order_expenses",
        "sales_order_items",
        "sales_orders",
        "attachments",
        "inquiries",
        "suppliers",
        "customer_sites",
        "gst_rates",
        "customers",
        "payment_terms",
        "currencies",
        "units",
        "users",
    ):
        op.drop_table(table)
    for enum in (purchase_order_stage, sales_order_stage, inquiry_result, role):
        enum.drop(op.get_bind(), checkfirst=True)
