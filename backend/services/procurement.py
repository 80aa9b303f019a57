"""
Procurement service.

Création des PO à partir d'une SO : chaque ligne de PO est rattachée
à une ligne de la SO (fan-out possible : plusieurs lignes de PO pour
une même ligne de SO).

Toute la logique stock reste dans :
    backend.services.inventory
"""

from __future__ import annotations

import logging
from typing import Iterable

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session, selectinload

from backend.app.db.models.models_v1 import (
    PaymentTerm,
    PurchaseOrder,
    PurchaseOrderExpense,
    PurchaseOrderItem,
    SalesOrder,
    Supplier,
)
from backend.app.db.models.core_types import PurchaseOrderStage
from backend.app.schemas.orders import PurchaseOrderFromSalesOrder, PurchaseOrderUpdate
from backend.services.errors import ConsistencyError, MissingPaymentTermError, NotFoundError
from backend.services.inventory import ZERO, lock_inventory_items, q3
from backend.services.sales import order_total
from backend.services.sequence import PURCHASE_ORDER_PREFIX, DocumentNumberIssuer
from backend.services.stages import refresh_purchase_order_stage, refresh_sales_order_stage
from backend.services.uow import transaction

logger = logging.getLogger(__name__)

UNFULFILLED_STAGES = {
    PurchaseOrderStage.open,
    PurchaseOrderStage.fulfilment,
}


def create_purchase_orders_from_sales_order(
    db: Session,
    payloads: list[PurchaseOrderFromSalesOrder],
    *,
    actor_id: int | None = None,
) -> list[PurchaseOrder]:
    created: list[PurchaseOrder] = []
    with transaction(db):
        issuer = DocumentNumberIssuer(db)
        for payload in payloads:
            so = db.get(SalesOrder, payload.sales_order_id)
            if not so:
                raise NotFoundError("Sales order", payload.sales_order_id)

            supplier = db.get(Supplier, payload.supplier_id)
            if not supplier:
                raise NotFoundError("Supplier", payload.supplier_id)
            if supplier.payment_term_id is None:
                raise MissingPaymentTermError(f"Supplier {supplier.name} does not have a payment term")

            so_items = {int(i.id): i for i in so.items}
            for li in payload.line_items:
                if li.sales_order_item_id not in so_items:
                    raise NotFoundError(f"Sales order item (sales order {so.id2})", li.sales_order_item_id)

            po = PurchaseOrder(
                id2=issuer.next_code(PurchaseOrder, PURCHASE_ORDER_PREFIX, payload.date),
                counter=issuer.next_counter(PurchaseOrder),
                date=payload.date,
                stage=PurchaseOrderStage.open,
                supplier_id=supplier.id,
                payment_term_id=supplier.payment_term_id,
                currency_id=payload.currency_id,
                representative_user_id=payload.representative_user_id or actor_id,
                reference_id=payload.reference_id,
                sales_order_id=so.id,
                total_amount=order_total(payload.line_items),
                created_by_id=actor_id,
                updated_by_id=actor_id,
            )
            po.items = [
                PurchaseOrderItem(
                    sales_order_item_id=li.sales_order_item_id,
                    inquiry_id=li.inquiry_id,
                    item_id=li.item_id or so_items[li.sales_order_item_id].item_id,
                    sap_code=li.sap_code,
                    description=li.description,
                    size=li.size,
                    unit_id=li.unit_id,
                    price=li.price,
                    quantity=q3(li.quantity),
                    gst_rate_id=li.gst_rate_id,
                    hsn_code=li.hsn_code,
                    estimated_delivery_date=li.estimated_delivery_date,
                )
                for li in payload.line_items
            ]
            db.add(po)
            db.flush()

            refresh_sales_order_stage(db, so)
            created.append(po)

    for po in created:
        logger.info("Purchase order %s created from sales order %s", po.id2, po.sales_order_id)
    return created


def get_purchase_order(db: Session, purchase_order_id: int) -> PurchaseOrder:
    po = db.get(PurchaseOrder, purchase_order_id)
    if not po:
        raise NotFoundError("Purchase order", purchase_order_id)
    return po


def update_purchase_order(
    db: Session,
    purchase_order_id: int,
    payload: PurchaseOrderUpdate,
    *,
    actor_id: int | None = None,
) -> PurchaseOrder:
    """
    Modifie en-tête, lignes et frais du PO.

    - quantité d'une ligne >= quantité déjà reçue (InventoryItem.quantity)
    - frais absents de payload.expenses : supprimés (sauf ceux d'une réception)
    - le numéro PO ne change pas, même si la date change de mois
    """
    with transaction(db):
        po = get_purchase_order(db, purchase_order_id)
        if db.get(PaymentTerm, payload.payment_term_id) is None:
            raise NotFoundError("Payment term", payload.payment_term_id)

        items = {int(i.id): i for i in po.items}
        # relecture des soldes reçus (FOR UPDATE)
        lock_inventory_items(db, [i.inventory_item.id for i in po.items if i.inventory_item is not None])
        for li in payload.line_items:
            item = items.get(li.id)
            if item is None:
                raise NotFoundError(f"Purchase order item (purchase order {po.id2})", li.id)
            quantity = q3(li.quantity)
            floor = item.inventory_item.quantity if item.inventory_item is not None else ZERO
            if quantity < floor:
                raise ConsistencyError(
                    f"Purchase order item {item.id}: quantity {quantity} is below received quantity {floor}"
                )
            item.sap_code = li.sap_code
            item.description = li.description
            item.size = li.size
            item.unit_id = li.unit_id
            item.price = li.price
            item.quantity = quantity
            item.gst_rate_id = li.gst_rate_id
            item.hsn_code = li.hsn_code
            item.estimated_delivery_date = li.estimated_delivery_date

        kept = {ex.id for ex in payload.expenses if ex.id is not None}
        expenses = {int(e.id): e for e in po.expenses}
        unknown = kept - expenses.keys()
        if unknown:
            raise NotFoundError("Purchase order expense", min(unknown))
        for expense_id, expense in expenses.items():
            if expense_id not in kept and expense.fulfilment_log_id is None:
                po.expenses.remove(expense)
        for ex in payload.expenses:
            if ex.id is None:
                po.expenses.append(
                    PurchaseOrderExpense(
                        description=ex.description,
                        price=ex.price,
                        gst_rate_id=ex.gst_rate_id,
                        show_in_fulfilment=ex.show_in_fulfilment,
                    )
                )
                continue
            expense = expenses[ex.id]
            expense.description = ex.description
            expense.price = ex.price
            expense.gst_rate_id = ex.gst_rate_id
            expense.show_in_fulfilment = ex.show_in_fulfilment

        po.date = payload.date
        po.representative_user_id = payload.representative_user_id or po.representative_user_id
        po.reference_id = payload.reference_id
        po.payment_term_id = payload.payment_term_id
        po.total_amount = order_total(po.items)
        po.updated_by_id = actor_id
        # quantité ramenée au reçu : le PO passe Closed
        refresh_purchase_order_stage(db, po)

    logger.info("Purchase order %s updated (%d lines)", po.id2, len(payload.line_items))
    return po


def list_purchase_orders(
    db: Session,
    *,
    search: str | None = None,
    stage: PurchaseOrderStage | None = None,
    approved: bool | None = None,
    currency_id: int | None = None,
    supplier_id: int | None = None,
    page: int = 1,
    limit: int = 10,
) -> tuple[int, list[PurchaseOrder]]:
    stmt = select(PurchaseOrder).join(Supplier, Supplier.id == PurchaseOrder.supplier_id)
    if search:
        pattern = f"%{search}%"
        stmt = stmt.where(
            or_(
                PurchaseOrder.id2.ilike(pattern),
                PurchaseOrder.reference_id.ilike(pattern),
                Supplier.name.ilike(pattern),
            )
        )
    if stage is not None:
        stmt = stmt.where(PurchaseOrder.stage == stage)
    if approved is not None:
        stmt = stmt.where(PurchaseOrder.approved == approved)
    if currency_id is not None:
        stmt = stmt.where(PurchaseOrder.currency_id == currency_id)
    if supplier_id is not None:
        stmt = stmt.where(PurchaseOrder.supplier_id == supplier_id)

    total = db.execute(select(func.count()).select_from(stmt.subquery())).scalar_one()
    rows = (
        db.execute(
            stmt.options(selectinload(PurchaseOrder.items))
            .order_by(PurchaseOrder.date.desc(), PurchaseOrder.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        )
        .scalars()
        .all()
    )
    return int(total), list(rows)


def approve_purchase_order(db: Session, purchase_order_id: int, *, actor_id: int | None = None) -> PurchaseOrder:
    with transaction(db):
        po = get_purchase_order(db, purchase_order_id)
        po.approved = True
        po.updated_by_id = actor_id
    return po


def list_unfulfilled_purchase_orders(db: Session, supplier_id: int, *, limit: int = 500) -> list[PurchaseOrder]:
    return list(
        db.execute(
            select(PurchaseOrder)
            .where(PurchaseOrder.supplier_id == supplier_id)
            .where(PurchaseOrder.stage.in_(UNFULFILLED_STAGES))
            .order_by(PurchaseOrder.date.desc())
            .limit(limit)
        )
        .scalars()
        .all()
    )


def list_unfulfilled_line_items(db: Session, purchase_order_ids: Iterable[int]) -> list[dict]:
    ids = sorted({int(i) for i in purchase_order_ids})
    if not ids:
        return []

    rows = (
        db.execute(
            select(PurchaseOrderItem)
            .where(PurchaseOrderItem.purchase_order_id.in_(ids))
            .options(
                selectinload(PurchaseOrderItem.purchase_order),
                selectinload(PurchaseOrderItem.inventory_item),
            )
            .order_by(PurchaseOrderItem.id)
        )
        .scalars()
        .all()
    )

    out = []
    for poi in rows:
        received = poi.inventory_item.quantity if poi.inventory_item is not None else ZERO
        if received >= poi.quantity:
            continue
        out.append(
            {
                "purchase_order_id": poi.purchase_order_id,
                "purchase_order_id2": poi.purchase_order.id2,
                "purchase_order_item_id": poi.id,
                "item_id": poi.item_id,
                "quantity": poi.quantity,
                "received": received,
            }
        )
    return out
