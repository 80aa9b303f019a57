from datetime import date
from decimal import Decimal

from pydantic import BaseModel, Field

from backend.app.db.models.core_types import LineOutcome


class ReceiptLineCreate(BaseModel):
    purchase_order_item_id: int
    quantity: Decimal
    hsn_code: str | None = Field(default=None, max_length=8)
    gst_rate_id: int | None = None


class ReceiptExpense(BaseModel):
    id: int | None = None
    description: str = Field(min_length=1, max_length=255)
    price: Decimal = Field(ge=0)
    gst_rate_id: int | None = None
    is_new: bool = False


class GateEntry(BaseModel):
    gate_entry_number: str = Field(max_length=64)
    gate_entry_date: date | None = None
    supplier_id: int
    invoice_id: str = Field(min_length=1, max_length=128)
    invoice_date: date | None = None
    location: str = Field(default="", max_length=255)
    remarks: str | None = None


class FulfilmentCreate(GateEntry):
    purchase_order_id: int
    items: list[ReceiptLineCreate] = Field(default_factory=list)
    expenses: list[ReceiptExpense] = Field(default_factory=list)


class PurchaseOrderReceipt(BaseModel):
    purchase_order_id: int
    items: list[ReceiptLineCreate] = Field(default_factory=list)
    expenses: list[ReceiptExpense] = Field(default_factory=list)


class MultiOrderFulfilmentCreate(GateEntry):
    orders: list[PurchaseOrderReceipt] = Field(default_factory=list)


class LineResultRead(BaseModel):
    purchase_order_item_id: int
    outcome: LineOutcome
    quantity: Decimal
    fulfilment_log_item_id: int | None = None


class FulfilmentResultRead(BaseModel):
    fulfilment_log_id: int
    lines: list[LineResultRead]


class FulfilmentLogItemRead(BaseModel):
    id: int
    inventory_item_id: int
    quantity: Decimal

    class Config:
        from_attributes = True


class FulfilmentLogRead(BaseModel):
    id: int
    gate_entry_number: str
    gate_entry_date: date | None
    supplier_id: int
    invoice_id: str
    invoice_date: date | None
    location: str
    remarks: str | None
    items: list[FulfilmentLogItemRead] = Field(default_factory=list)

    class Config:
        from_attributes = True
