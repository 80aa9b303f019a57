from datetime import date
from decimal import Decimal

from pydantic import BaseModel, Field


class InvoiceLineCreate(BaseModel):
    sales_order_item_id: int
    quantity: Decimal = Field(gt=0)
    description: str = ""


class InvoiceCreate(BaseModel):
    date: date
    customer_id: int
    currency_id: int
    conversion_rate: Decimal = Field(gt=0)
    remarks: str | None = None
    draft: bool = False
    items: list[InvoiceLineCreate] = Field(min_length=1)


class InvoiceItemRead(BaseModel):
    id: int
    sales_order_item_id: int
    description: str
    quantity: Decimal

    class Config:
        from_attributes = True


class InvoiceRead(BaseModel):
    id: int
    id2: str | None
    draft: bool
    date: date
    customer_id: int
    currency_id: int
    conversion_rate: Decimal
    total: Decimal
    items: list[InvoiceItemRead] = Field(default_factory=list)

    class Config:
        from_attributes = True

