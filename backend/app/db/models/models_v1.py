from __future__ import annotations

from datetime import datetime, date, timezone
from decimal import Decimal

from sqlalchemy import (
    String,
    Integer,
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

from backend.app.db.base import Base, BigIntPK
from backend.app.db.models.core_types import (
    Role,
    SalesOrderStage,
    PurchaseOrderStage,
    InquiryResult,
)

QTY = Numeric(14, 3)
MONEY = Numeric(14, 2)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------- AUTH ----------
class User(Base):
    __tablename__ = "users"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    name: Mapped[str] = mapped_column(String(200), unique=True, nullable=False)
    role: Mapped[Role] = mapped_column(Enum(Role, name="role"), nullable=False)
    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)


# ---------- MASTER DATA ----------
class Unit(Base):
    __tablename__ = "units"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    name: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)


class GstRate(Base):
    __tablename__ = "gst_rates"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    rate: Mapped[Decimal] = mapped_column(Numeric(5, 2), unique=True, nullable=False)

    __table_args__ = (CheckConstraint("rate >= 0", name="ck_gst_rate_nonneg"),)


class Currency(Base):
    __tablename__ = "currencies"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    name: Mapped[str] = mapped_column(String(16), unique=True, nullable=False)


class PaymentTerm(Base):
    __tablename__ = "payment_terms"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    name: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)


class Customer(Base):
    __tablename__ = "customers"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    name: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)

    sites: Mapped[list["CustomerSite"]] = relationship(back_populates="customer", cascade="all, delete-orphan")


class CustomerSite(Base):
    __tablename__ = "customer_sites"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    customer_id: Mapped[int] = mapped_column(ForeignKey("customers.id", ondelete="CASCADE"), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)

    customer: Mapped[Customer] = relationship(back_populates="sites")
    __table_args__ = (UniqueConstraint("customer_id", "name", name="uq_customer_site_name"),)


class Supplier(Base):
    __tablename__ = "suppliers"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    name: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    payment_term_id: Mapped[int | None] = mapped_column(ForeignKey("payment_terms.id", ondelete="SET NULL"))

    payment_term: Mapped[PaymentTerm | None] = relationship()


class Inquiry(Base):
    __tablename__ = "inquiries"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    customer_id: Mapped[int] = mapped_column(ForeignKey("customers.id", ondelete="RESTRICT"), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    result: Mapped[InquiryResult] = mapped_column(
        Enum(InquiryResult, name="inquiry_result"),
        default=InquiryResult.pending,
        nullable=False,
    )
    updated_by_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"))


class Attachment(Base):
    __tablename__ = "attachments"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    original_filename: Mapped[str] = mapped_column(String(255), nullable=False)
    new_filename: Mapped[str] = mapped_column(String(255), nullable=False)
    url: Mapped[str] = mapped_column(String(1024), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)


# ---------- SALES ----------
class SalesOrder(Base):
    __tablename__ = "sales_orders"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    id2: Mapped[str] = mapped_column(String(32), unique=True, nullable=False)
    counter: Mapped[int] = mapped_column(Integer, unique=True, nullable=False)
    date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    customer_id: Mapped[int] = mapped_column(ForeignKey("customers.id", ondelete="RESTRICT"), nullable=False)
    site_id: Mapped[int | None] = mapped_column(ForeignKey("customer_sites.id", ondelete="SET NULL"))
    pr_number_and_name: Mapped[str | None] = mapped_column(String(255))
    reference_id: Mapped[str | None] = mapped_column(String(128))
    currency_id: Mapped[int] = mapped_column(ForeignKey("currencies.id", ondelete="RESTRICT"), nullable=False)
    representative_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"))
    stage: Mapped[SalesOrderStage] = mapped_column(
        Enum(SalesOrderStage, name="sales_order_stage"),
        default=SalesOrderStage.pending,
        nullable=False,
    )
    approved: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    total_amount: Mapped[Decimal] = mapped_column(MONEY, default=Decimal("0"), nullable=False)

    created_by_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"))
    updated_by_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        onupdate=utcnow,
        nullable=False,
    )

    customer: Mapped[Customer] = relationship()
    items: Mapped[list["SalesOrderItem"]] = relationship(
        back_populates="sales_order",
        cascade="all, delete-orphan",
        order_by="SalesOrderItem.id",
    )
    expenses: Mapped[list["SalesOrderExpense"]] = relationship(
        back_populates="sales_order",
        cascade="all, delete-orphan",
    )
    purchase_orders: Mapped[list["PurchaseOrder"]] = relationship(back_populates="sales_order")


class SalesOrderItem(Base):
    __tablename__ = "sales_order_items"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    counter: Mapped[int] = mapped_column(Integer, unique=True, nullable=False)
    sales_order_id: Mapped[int] = mapped_column(
        ForeignKey("sales_orders.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    inquiry_id: Mapped[int | None] = mapped_column(ForeignKey("inquiries.id", ondelete="SET NULL"))
    item_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    size: Mapped[str | None] = mapped_column(String(255))
    unit_id: Mapped[int] = mapped_column(ForeignKey("units.id", ondelete="RESTRICT"), nullable=False)
    quantity: Mapped[Decimal] = mapped_column(QTY, nullable=False)
    price: Mapped[Decimal] = mapped_column(MONEY, nullable=False)

    sales_order: Mapped[SalesOrder] = relationship(back_populates="items")
    unit: Mapped[Unit] = relationship()
    purchase_order_items: Mapped[list["PurchaseOrderItem"]] = relationship(
        back_populates="sales_order_item",
        order_by="PurchaseOrderItem.id",
    )
    invoice_items: Mapped[list["InvoiceItem"]] = relationship(back_populates="sales_order_item")

    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_so_item_qty_pos"),
        CheckConstraint("price >= 0", name="ck_so_item_price_nonneg"),
    )


class SalesOrderExpense(Base):
    __tablename__ = "sales_order_expenses"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    sales_order_id: Mapped[int] = mapped_column(ForeignKey("sales_orders.id", ondelete="CASCADE"), nullable=False)
    description: Mapped[str] = mapped_column(String(255), nullable=False)
    price: Mapped[Decimal] = mapped_column(MONEY, nullable=False)

    sales_order: Mapped[SalesOrder] = relationship(back_populates="expenses")


# ---------- PROCUREMENT ----------
class PurchaseOrder(Base):
    __tablename__ = "purchase_orders"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    id2: Mapped[str] = mapped_column(String(32), unique=True, nullable=False)
    counter: Mapped[int] = mapped_column(Integer, unique=True, nullable=False)
    date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    supplier_id: Mapped[int] = mapped_column(ForeignKey("suppliers.id", ondelete="RESTRICT"), nullable=False)
    payment_term_id: Mapped[int] = mapped_column(ForeignKey("payment_terms.id", ondelete="RESTRICT"), nullable=False)
    currency_id: Mapped[int] = mapped_column(ForeignKey("currencies.id", ondelete="RESTRICT"), nullable=False)
    sales_order_id: Mapped[int | None] = mapped_column(ForeignKey("sales_orders.id", ondelete="SET NULL"))
    reference_id: Mapped[str | None] = mapped_column(String(128))
    representative_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"))
    stage: Mapped[PurchaseOrderStage] = mapped_column(
        Enum(PurchaseOrderStage, name="purchase_order_stage"),
        default=PurchaseOrderStage.open,
        nullable=False,
    )
    approved: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    total_amount: Mapped[Decimal] = mapped_column(MONEY, default=Decimal("0"), nullable=False)

    created_by_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"))
    updated_by_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        onupdate=utcnow,
        nullable=False,
    )

    supplier: Mapped[Supplier] = relationship()
    sales_order: Mapped[SalesOrder | None] = relationship(back_populates="purchase_orders")
    items: Mapped[list["PurchaseOrderItem"]] = relationship(
        back_populates="purchase_order",
        cascade="all, delete-orphan",
        order_by="PurchaseOrderItem.id",
    )
    expenses: Mapped[list["PurchaseOrderExpense"]] = relationship(
        back_populates="purchase_order",
        cascade="all, delete-orphan",
    )


class PurchaseOrderItem(Base):
    __tablename__ = "purchase_order_items"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    purchase_order_id: Mapped[int] = mapped_column(
        ForeignKey("purchase_orders.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    sales_order_item_id: Mapped[int | None] = mapped_column(
        ForeignKey("sales_order_items.id", ondelete="SET NULL"),
        index=True,
    )
    inquiry_id: Mapped[int | None] = mapped_column(ForeignKey("inquiries.id", ondelete="SET NULL"))
    item_id: Mapped[str] = mapped_column(String(64), nullable=False)
    sap_code: Mapped[str | None] = mapped_column(String(64))
    description: Mapped[str] = mapped_column(Text, nullable=False)
    size: Mapped[str | None] = mapped_column(String(255))
    unit_id: Mapped[int] = mapped_column(ForeignKey("units.id", ondelete="RESTRICT"), nullable=False)
    quantity: Mapped[Decimal] = mapped_column(QTY, nullable=False)
    price: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    gst_rate_id: Mapped[int | None] = mapped_column(ForeignKey("gst_rates.id", ondelete="SET NULL"))
    hsn_code: Mapped[str | None] = mapped_column(String(8))
    estimated_delivery_date: Mapped[date | None] = mapped_column(Date)

    purchase_order: Mapped[PurchaseOrder] = relationship(back_populates="items")
    sales_order_item: Mapped[SalesOrderItem | None] = relationship(back_populates="purchase_order_items")
    gst_rate: Mapped[GstRate | None] = relationship()
    inventory_item: Mapped["InventoryItem | None"] = relationship(back_populates="purchase_order_item")

    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_po_item_qty_pos"),
        CheckConstraint("price >= 0", name="ck_po_item_price_nonneg"),
    )


class PurchaseOrderExpense(Base):
    __tablename__ = "purchase_order_expenses"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    purchase_order_id: Mapped[int] = mapped_column(
        ForeignKey("purchase_orders.id", ondelete="CASCADE"),
        nullable=False,
    )
    fulfilment_log_id: Mapped[int | None] = mapped_column(ForeignKey("fulfilment_logs.id", ondelete="SET NULL"))
    description: Mapped[str] = mapped_column(String(255), nullable=False)
    price: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    gst_rate_id: Mapped[int | None] = mapped_column(ForeignKey("gst_rates.id", ondelete="SET NULL"))
    show_in_fulfilment: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    purchase_order: Mapped[PurchaseOrder] = relationship(back_populates="expenses")
    fulfilment_log: Mapped["FulfilmentLog | None"] = relationship(back_populates="expenses")

    __table_args__ = (CheckConstraint("price >= 0", name="ck_po_expense_price_nonneg"),)


# ---------- INVENTORY ----------
class InventoryItem(Base):
    __tablename__ = "inventory_items"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    purchase_order_item_id: Mapped[int] = mapped_column(
        ForeignKey("purchase_order_items.id", ondelete="RESTRICT"),
        unique=True,
        nullable=False,
    )
    quantity: Mapped[Decimal] = mapped_column(QTY, default=Decimal("0"), nullable=False)
    quantity_gone: Mapped[Decimal] = mapped_column(QTY, default=Decimal("0"), nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        onupdate=utcnow,
        nullable=False,
    )

    purchase_order_item: Mapped[PurchaseOrderItem] = relationship(back_populates="inventory_item")
    fulfilment_items: Mapped[list["FulfilmentLogItem"]] = relationship(back_populates="inventory_item")

    __table_args__ = (
        CheckConstraint("quantity >= 0", name="ck_inventory_qty_nonneg"),
        CheckConstraint("quantity_gone >= 0", name="ck_inventory_gone_nonneg"),
        CheckConstraint("quantity_gone <= quantity", name="ck_inventory_gone_le_qty"),
    )


class FulfilmentLog(Base):
    __tablename__ = "fulfilment_logs"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    gate_entry_number: Mapped[str] = mapped_column(String(64), default="", nullable=False)
    gate_entry_date: Mapped[date | None] = mapped_column(Date)
    supplier_id: Mapped[int] = mapped_column(ForeignKey("suppliers.id", ondelete="RESTRICT"), nullable=False)
    invoice_id: Mapped[str] = mapped_column(String(128), nullable=False)
    invoice_date: Mapped[date | None] = mapped_column(Date)
    location: Mapped[str] = mapped_column(String(255), default="", nullable=False)
    remarks: Mapped[str | None] = mapped_column(Text)

    created_by_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"))
    updated_by_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)

    supplier: Mapped[Supplier] = relationship()
    items: Mapped[list["FulfilmentLogItem"]] = relationship(
        back_populates="fulfilment_log",
        order_by="FulfilmentLogItem.id",
    )
    expenses: Mapped[list[PurchaseOrderExpense]] = relationship(back_populates="fulfilment_log")


class FulfilmentLogItem(Base):
    __tablename__ = "fulfilment_log_items"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    fulfilment_log_id: Mapped[int] = mapped_column(
        ForeignKey("fulfilment_logs.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    inventory_item_id: Mapped[int] = mapped_column(
        ForeignKey("inventory_items.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    quantity: Mapped[Decimal] = mapped_column(QTY, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)

    fulfilment_log: Mapped[FulfilmentLog] = relationship(back_populates="items")
    inventory_item: Mapped[InventoryItem] = relationship(back_populates="fulfilment_items")


# ---------- INVOICING ----------
class Invoice(Base):
    __tablename__ = "invoices"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    # id2/counter restent NULL tant que la facture est un brouillon
    id2: Mapped[str | None] = mapped_column(String(32), unique=True)
    counter: Mapped[int | None] = mapped_column(Integer, unique=True)
    draft: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    customer_id: Mapped[int] = mapped_column(ForeignKey("customers.id", ondelete="RESTRICT"), nullable=False)
    currency_id: Mapped[int] = mapped_column(ForeignKey("currencies.id", ondelete="RESTRICT"), nullable=False)
    conversion_rate: Mapped[Decimal] = mapped_column(Numeric(14, 4), nullable=False)
    remarks: Mapped[str | None] = mapped_column(Text)
    total: Mapped[Decimal] = mapped_column(MONEY, default=Decimal("0"), nullable=False)

    created_by_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"))
    updated_by_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)

    items: Mapped[list["InvoiceItem"]] = relationship(
        back_populates="invoice",
        cascade="all, delete-orphan",
        order_by="InvoiceItem.id",
    )

    __table_args__ = (
        CheckConstraint("conversion_rate > 0", name="ck_invoice_conversion_rate_pos"),
        CheckConstraint("draft OR id2 IS NOT NULL", name="ck_invoice_final_has_id2"),
    )


class InvoiceItem(Base):
    __tablename__ = "invoice_items"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    invoice_id: Mapped[int] = mapped_column(ForeignKey("invoices.id", ondelete="CASCADE"), nullable=False)
    sales_order_item_id: Mapped[int] = mapped_column(
        ForeignKey("sales_order_items.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    description: Mapped[str] = mapped_column(Text, default="", nullable=False)
    quantity: Mapped[Decimal] = mapped_column(QTY, nullable=False)

    invoice: Mapped[Invoice] = relationship(back_populates="items")
    sales_order_item: Mapped[SalesOrderItem] = relationship(back_populates="invoice_items")

    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_invoice_item_qty_pos"),
        Index("ix_invoice_items_invoice_soi", "invoice_id", "sales_order_item_id"),
    )
