"""
Machine à états des commandes.

Le stage est DÉRIVÉ de la couverture des lignes :
- PO : réception (InventoryItem.quantity vs quantité commandée)
- SO : achat (lignes de PO liées) puis facturation (InvoiceItem)

Les fonctions derive_* sont pures (aucune écriture) et idempotentes.
Cancelled n'est jamais recalculé : seul un humain le pose / l'enlève.

change_*_stage = override admin SANS garde-fou : on ne bloque rien,
on trace juste l'écart avec le stage dérivé.
"""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import Sequence

from sqlalchemy.orm import Session

from backend.app.db.models.models_v1 import (
    PurchaseOrder,
    PurchaseOrderItem,
    SalesOrder,
    SalesOrderItem,
)
from backend.app.db.models.core_types import PurchaseOrderStage, SalesOrderStage
from backend.services.errors import NotFoundError
from backend.services.inventory import q3, ZERO

logger = logging.getLogger(__name__)


def invoiced_quantity(item: SalesOrderItem) -> Decimal:
    """Quantité facturée (brouillons exclus)."""
    return q3(sum((ii.quantity for ii in item.invoice_items if not ii.invoice.draft), ZERO))


def derive_purchase_order_stage(
    current: PurchaseOrderStage,
    items: Sequence[PurchaseOrderItem],
) -> PurchaseOrderStage:
    if current == PurchaseOrderStage.cancelled or not items:
        return current

    received_any = False
    all_received = True
    for item in items:
        inv = item.inventory_item
        if inv is None:
            all_received = False
            continue
        received_any = True
        if inv.quantity < item.quantity:
            all_received = False

    if all_received:
        return PurchaseOrderStage.closed
    if received_any:
        return PurchaseOrderStage.fulfilment
    return current


def derive_sales_order_stage(
    current: SalesOrderStage,
    items: Sequence[SalesOrderItem],
) -> SalesOrderStage:
    if current == SalesOrderStage.cancelled or not items:
        return current

    invoiced = [invoiced_quantity(item) for item in items]

    if all(done >= item.quantity for done, item in zip(invoiced, items)):
        return SalesOrderStage.closed
    if any(done > ZERO for done in invoiced):
        return SalesOrderStage.invoice
    if all(item.purchase_order_items for item in items):
        return SalesOrderStage.open
    return current


def refresh_purchase_order_stage(db: Session, po: PurchaseOrder) -> PurchaseOrderStage:
    db.flush()
    for item in po.items:
        db.expire(item, ["inventory_item"])
    db.expire(po, ["items"])

    stage = derive_purchase_order_stage(po.stage, po.items)
    if stage != po.stage:
        logger.info("Purchase order %s stage %s -> %s", po.id2, po.stage.value, stage.value)
        po.stage = stage
    return stage


def refresh_sales_order_stage(db: Session, so: SalesOrder) -> SalesOrderStage:
    db.flush()
    for item in so.items:
        db.expire(item, ["invoice_items", "purchase_order_items"])
    db.expire(so, ["items"])

    stage = derive_sales_order_stage(so.stage, so.items)
    if stage != so.stage:
        logger.info("Sales order %s stage %s -> %s", so.id2, so.stage.value, stage.value)
        so.stage = stage
    return stage


def change_purchase_order_stage(
    db: Session,
    purchase_order_id: int,
    stage: PurchaseOrderStage,
    *,
    updated_by_id: int | None = None,
) -> PurchaseOrder:
    po = db.get(PurchaseOrder, purchase_order_id)
    if not po:
        raise NotFoundError("Purchase order", purchase_order_id)

    derived = derive_purchase_order_stage(PurchaseOrderStage.open, po.items)
    if stage != PurchaseOrderStage.cancelled and derived != stage:
        logger.warning(
            "Manual stage override on purchase order %s: %s (derived %s)",
            po.id2, stage.value, derived.value,
        )
    po.stage = stage
    po.updated_by_id = updated_by_id
    return po


def change_sales_order_stage(
    db: Session,
    sales_order_id: int,
    stage: SalesOrderStage,
    *,
    updated_by_id: int | None = None,
) -> SalesOrder:
    so = db.get(SalesOrder, sales_order_id)
    if not so:
        raise NotFoundError("Sales order", sales_order_id)

    derived = derive_sales_order_stage(SalesOrderStage.pending, so.items)
    if stage != SalesOrderStage.cancelled and derived != stage:
        logger.warning(
            "Manual stage override on sales order %s: %s (derived %s)",
            so.id2, stage.value, derived.value,
        )
    so.stage = stage
    so.updated_by_id = updated_by_id
    return so
