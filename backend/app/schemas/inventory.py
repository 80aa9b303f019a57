from decimal import Decimal

from pydantic import BaseModel


class InventoryItemRead(BaseModel):
    id: int
    purchase_order_item_id: int

    quantity: Decimal
    quantity_gone: Decimal  # READ ONLY : écrit uniquement par l'allocation factures

    class Config:
        from_attributes = True


class InventoryPage(BaseModel):
    total: int
    items: list[InventoryItemRead]
