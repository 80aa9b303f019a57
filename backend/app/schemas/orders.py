from datetime import date
from decimal import Decimal

from pydantic import BaseModel, Field

from backend.app.db.models.core_types import PurchaseOrderStage, SalesOrderStage


# ---------- Sales ----------
class SalesOrderLineCreate(BaseModel):
    inquiry_id: int | None = None
    item_id: str | None = Field(default=None, max_length=64)
    description: str = Field(min_length=1)
    size: str | None = None
    unit_id: int
    price: Decimal = Field(ge=0)
    quantity: Decimal = Field(gt=0)


class SalesOrderExpenseCreate(BaseModel):
    description: str = Field(min_length=1, max_length=255)
    price: Decimal = Field(ge=0)


class SalesOrderCreate(BaseModel):
    date: date
    customer_id: int
    currency_id: int
    representative_user_id: int | None = None
    reference_id: str | None = Field(default=None, max_length=128)
    site_id: int | None = None
    pr_number_and_name: str | None = Field(default=None, max_length=255)
    line_items: list[SalesOrderLineCreate] = Field(min_length=1)
    expenses: list[SalesOrderExpenseCreate] = Field(default_factory=list)


class SalesOrderItemRead(BaseModel):
    id: int
    item_id: str
    description: str
    quantity: Decimal
    price: Decimal

    class Config:
        from_attributes = True


class SalesOrderRead(BaseModel):
    id: int
    id2: str
    date: date
    customer_id: int
    stage: SalesOrderStage
    approved: bool
    total_amount: Decimal
    items: list[SalesOrderItemRead] = Field(default_factory=list)

    class Config:
        from_attributes = True


class SalesOrderPage(BaseModel):
    total: int
    items: list[SalesOrderRead]


class SalesOrderLineUpdate(BaseModel):
    id: int
    description: str = Field(min_length=1)
    size: str | None = None
    unit_id: int
    price: Decimal = Field(ge=0)
    quantity: Decimal = Field(gt=0)


class SalesOrderExpenseUpdate(BaseModel):
    id: int | None = None  # None : nouveau frais
    description: str = Field(min_length=1, max_length=255)
    price: Decimal = Field(ge=0)


class SalesOrderUpdate(BaseModel):
    date: date
    representative_user_id: int | None = None
    reference_id: str | None = Field(default=None, max_length=128)
    line_items: list[SalesOrderLineUpdate] = Field(min_length=1)
    expenses: list[SalesOrderExpenseUpdate] = Field(default_factory=list)


class SalesOrderStageChange(BaseModel):
    stage: SalesOrderStage


class UninvoicedLineRead(BaseModel):
    sales_order_id: int
    sales_order_id2: str
    sales_order_item_id: int
    item_id: str
    quantity: Decimal
    invoiced: Decimal
    remaining: Decimal
    available: Decimal


# ---------- Purchase ----------
class PurchaseOrderLineCreate(BaseModel):
    sales_order_item_id: int
    inquiry_id: int | None = None
    item_id: str | None = Field(default=None, max_length=64)
    sap_code: str | None = Field(default=None, max_length=64)
    description: str = Field(min_length=1)
    size: str | None = None
    unit_id: int
    price: Decimal = Field(ge=0)
    quantity: Decimal = Field(gt=0)
    gst_rate_id: int | None = None
    hsn_code: str | None = Field(default=None, max_length=8)
    estimated_delivery_date: date | None = None


class PurchaseOrderFromSalesOrder(BaseModel):
    date: date
    supplier_id: int
    currency_id: int
    sales_order_id: int
    representative_user_id: int | None = None
    reference_id: str | None = Field(default=None, max_length=128)
    line_items: list[PurchaseOrderLineCreate] = Field(min_length=1)


class PurchaseOrderItemRead(BaseModel):
    id: int
    item_id: str
    description: str
    quantity: Decimal
    price: Decimal
    hsn_code: str | None
    gst_rate_id: int | None
    sales_order_item_id: int | None

    class Config:
        from_attributes = True


class PurchaseOrderRead(BaseModel):
    id: int
    id2: str
    date: date
    supplier_id: int
    sales_order_id: int | None
    stage: PurchaseOrderStage
    approved: bool
    total_amount: Decimal
    items: list[PurchaseOrderItemRead] = Field(default_factory=list)

    class Config:
        from_attributes = True


class PurchaseOrderPage(BaseModel):
    total: int
    items: list[PurchaseOrderRead]


class PurchaseOrderLineUpdate(BaseModel):
    id: int
    sap_code: str | None = Field(default=None, max_length=64)
    description: str = Field(min_length=1)
    size: str | None = None
    unit_id: int
    price: Decimal = Field(ge=0)
    quantity: Decimal = Field(gt=0)
    gst_rate_id: int | None = None
    hsn_code: str | None = Field(default=None, max_length=8)
    estimated_delivery_date: date | None = None


class PurchaseOrderExpenseUpdate(BaseModel):
    id: int | None = None
    description: str = Field(min_length=1, max_length=255)
    price: Decimal = Field(ge=0)
    gst_rate_id: int | None = None
    show_in_fulfilment: bool = False


class PurchaseOrderUpdate(BaseModel):
    date: date
    representative_user_id: int | None = None
    reference_id: str | None = Field(default=None, max_length=128)
    payment_term_id: int
    line_items: list[PurchaseOrderLineUpdate] = Field(min_length=1)
    # frais absents de la liste : supprimés
    expenses: list[PurchaseOrderExpenseUpdate] = Field(default_factory=list)


class PurchaseOrderStageChange(BaseModel):
    stage: PurchaseOrderStage


class UnfulfilledLineRead(BaseModel):
    purchase_order_id: int
    purchase_order_id2: str
    purchase_order_item_id: int
    item_id: str
    quantity: Decimal
    received: Decimal
