from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable

from sqlalchemy import select, func, or_
from sqlalchemy.orm import Session, selectinload

from backend.app.db.models.models_v1 import (
    InventoryItem,
    PurchaseOrder,
    PurchaseOrderItem,
)
from backend.app.db.models.core_types import LineOutcome
from backend.services.errors import FulfilmentItemConsumedError

QTY_STEP = Decimal("0.001")
MONEY_STEP = Decimal("0.01")
ZERO = Decimal("0")


def q3(value) -> Decimal:
    """Arrondi 3 décimales : absorbe la dérive des quantités."""
    return Decimal(str(value)).quantize(QTY_STEP, rounding=ROUND_HALF_UP)


def money(value) -> Decimal:
    return Decimal(str(value)).quantize(MONEY_STEP, rounding=ROUND_HALF_UP)


def available_quantity(item: InventoryItem | None) -> Decimal:
    if item is None:
        return ZERO
    return q3(item.quantity - item.quantity_gone)


@dataclass
class ReceiptOutcome:
    outcome: LineOutcome
    inventory_item: InventoryItem | None
    new_quantity: Decimal


def receive(db: Session, po_item: PurchaseOrderItem, delta) -> ReceiptOutcome:
    """
    Applique un delta de réception sur le solde de la ligne de PO.

    Règles :
    - delta nul -> ignoré
    - total < 0 ou < déjà consommé -> ignoré (UNDER_FLOOR)
    - total > quantité commandée -> ignoré (OVER_CAP)
    - sinon : crée l'InventoryItem au premier passage, incrémente ensuite

    Un refus ne lève PAS d'exception : c'est un cas métier attendu.
    """
    delta = q3(delta)
    inv = po_item.inventory_item
    current = inv.quantity if inv is not None else ZERO
    consumed = inv.quantity_gone if inv is not None else ZERO
    total = q3(current + delta)

    if delta == ZERO:
        return ReceiptOutcome(LineOutcome.skipped_zero, inv, current)
    if total < ZERO or total < consumed:
        return ReceiptOutcome(LineOutcome.skipped_under_floor, inv, current)
    if total > po_item.quantity:
        return ReceiptOutcome(LineOutcome.skipped_over_cap, inv, current)

    if inv is None:
        inv = InventoryItem(quantity=total, quantity_gone=ZERO)
        po_item.inventory_item = inv
        db.add(inv)
    else:
        inv.quantity = total
    db.flush()
    return ReceiptOutcome(LineOutcome.applied, inv, total)


def consume(item: InventoryItem, quantity) -> Decimal:
    """Marque `quantity` comme partie (quantity_gone)."""
    quantity = q3(quantity)
    new_gone = q3(item.quantity_gone + quantity)
    if new_gone > item.quantity:
        raise ValueError(f"Consumption exceeds received quantity on inventory item {item.id}")
    item.quantity_gone = new_gone
    return quantity


def reverse_receipt(item: InventoryItem, quantity) -> None:
    """Annule une réception : refusé si la marchandise est déjà facturée."""
    remaining = q3(item.quantity - q3(quantity))
    if remaining < item.quantity_gone:
        raise FulfilmentItemConsumedError(
            f"Cannot remove {quantity} from inventory item {item.id}: "
            f"{item.quantity_gone} already consumed by invoices"
        )
    item.quantity = remaining


def lock_inventory_items(db: Session, inventory_item_ids: Iterable[int]) -> dict[int, InventoryItem]:
    """
    Relit les soldes avec FOR UPDATE (ignoré par SQLite).
    Ordre trié pour limiter les deadlocks entre transactions.
    """
    ids = sorted({int(i) for i in inventory_item_ids if i is not None})
    if not ids:
        return {}
    rows = (
        db.execute(
            select(InventoryItem)
            .where(InventoryItem.id.in_(ids))
            .order_by(InventoryItem.id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        .scalars()
        .all()
    )
    return {int(r.id): r for r in rows}


def list_inventory(
    db: Session,
    *,
    search: str | None = None,
    page: int = 1,
    limit: int = 10,
) -> tuple[int, list[InventoryItem]]:
    stmt = (
        select(InventoryItem)
        .join(PurchaseOrderItem, PurchaseOrderItem.id == InventoryItem.purchase_order_item_id)
        .join(PurchaseOrder, PurchaseOrder.id == PurchaseOrderItem.purchase_order_id)
    )
    if search:
        pattern = f"%{search}%"
        stmt = stmt.where(
            or_(
                PurchaseOrderItem.item_id.ilike(pattern),
                PurchaseOrderItem.description.ilike(pattern),
                PurchaseOrder.id2.ilike(pattern),
            )
        )

    total = db.execute(select(func.count()).select_from(stmt.subquery())).scalar_one()
    rows = (
        db.execute(
            stmt.options(selectinload(InventoryItem.purchase_order_item))
            .order_by(InventoryItem.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        )
        .scalars()
        .all()
    )
    return int(total), list(rows)
