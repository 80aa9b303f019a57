"""
Commandes client (SO).

Création : numéro SO, code article auto ("0000" + compteur), total,
frais, et les demandes (inquiries) liées passent en "ORDERED".
"""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import Iterable

from sqlalchemy import func, or_, select, update
from sqlalchemy.orm import Session, selectinload

from backend.app.db.models.models_v1 import (
    Customer,
    CustomerSite,
    Inquiry,
    SalesOrder,
    SalesOrderExpense,
    SalesOrderItem,
)
from backend.app.db.models.core_types import InquiryResult, SalesOrderStage
from backend.app.schemas.orders import SalesOrderCreate, SalesOrderUpdate
from backend.services.errors import ConsistencyError, NotFoundError
from backend.services.inventory import ZERO, available_quantity, money, q3
from backend.services.sequence import SALES_ORDER_PREFIX, DocumentNumberIssuer, auto_item_id
from backend.services.stages import invoiced_quantity, refresh_sales_order_stage
from backend.services.uow import transaction

logger = logging.getLogger(__name__)

UNINVOICED_STAGES = {
    SalesOrderStage.pending,
    SalesOrderStage.open,
    SalesOrderStage.invoice,
}


def order_total(lines: Iterable) -> Decimal:
    return money(sum((l.price * l.quantity for l in lines), ZERO))


def build_sales_order_item(issuer: DocumentNumberIssuer, **fields) -> SalesOrderItem:
    counter = issuer.next_counter(SalesOrderItem)
    if not fields.get("item_id"):
        fields["item_id"] = auto_item_id(counter)
    fields["quantity"] = q3(fields["quantity"])
    return SalesOrderItem(counter=counter, **fields)


def create_sales_order(
    db: Session,
    payload: SalesOrderCreate,
    *,
    actor_id: int | None = None,
) -> SalesOrder:
    with transaction(db):
        issuer = DocumentNumberIssuer(db)
        so = SalesOrder(
            id2=issuer.next_code(SalesOrder, SALES_ORDER_PREFIX, payload.date),
            counter=issuer.next_counter(SalesOrder),
            date=payload.date,
            customer_id=payload.customer_id,
            currency_id=payload.currency_id,
            representative_user_id=payload.representative_user_id or actor_id,
            reference_id=payload.reference_id,
            site_id=payload.site_id,
            pr_number_and_name=payload.pr_number_and_name,
            stage=SalesOrderStage.pending,
            total_amount=order_total(payload.line_items),
            created_by_id=actor_id,
            updated_by_id=actor_id,
        )
        so.items = [
            build_sales_order_item(
                issuer,
                inquiry_id=li.inquiry_id,
                item_id=li.item_id,
                description=li.description,
                size=li.size,
                unit_id=li.unit_id,
                price=li.price,
                quantity=li.quantity,
            )
            for li in payload.line_items
        ]
        so.expenses = [SalesOrderExpense(description=e.description, price=e.price) for e in payload.expenses]
        db.add(so)

        inquiry_ids = [li.inquiry_id for li in payload.line_items if li.inquiry_id]
        if inquiry_ids:
            db.execute(
                update(Inquiry)
                .where(Inquiry.id.in_(inquiry_ids))
                .values(result=InquiryResult.ordered, updated_by_id=actor_id)
            )
        db.flush()

    logger.info("Sales order %s created (%d lines)", so.id2, len(payload.line_items))
    return so


def get_sales_order(db: Session, sales_order_id: int) -> SalesOrder:
    so = db.get(SalesOrder, sales_order_id)
    if not so:
        raise NotFoundError("Sales order", sales_order_id)
    return so


def update_sales_order(
    db: Session,
    sales_order_id: int,
    payload: SalesOrderUpdate,
    *,
    actor_id: int | None = None,
) -> SalesOrder:
    """
    Modifie en-tête, lignes et frais ; le numéro SO reste celui d'origine.
    Une ligne ne descend jamais sous sa quantité déjà facturée.
    """
    with transaction(db):
        so = get_sales_order(db, sales_order_id)
        items = {int(i.id): i for i in so.items}
        for li in payload.line_items:
            item = items.get(li.id)
            if item is None:
                raise NotFoundError(f"Sales order item (sales order {so.id2})", li.id)
            quantity = q3(li.quantity)
            invoiced = invoiced_quantity(item)
            if quantity < invoiced:
                raise ConsistencyError(
                    f"Sales order item {item.id}: quantity {quantity} is below invoiced quantity {invoiced}"
                )
            item.description = li.description
            item.size = li.size
            item.unit_id = li.unit_id
            item.price = li.price
            item.quantity = quantity

        expenses = {int(e.id): e for e in so.expenses}
        for ex in payload.expenses:
            if ex.id is None:
                so.expenses.append(SalesOrderExpense(description=ex.description, price=ex.price))
                continue
            expense = expenses.get(ex.id)
            if expense is None:
                raise NotFoundError("Sales order expense", ex.id)
            expense.description = ex.description
            expense.price = ex.price

        so.date = payload.date
        so.representative_user_id = payload.representative_user_id or so.representative_user_id
        so.reference_id = payload.reference_id
        so.total_amount = order_total(so.items)
        so.updated_by_id = actor_id
        # quantité modifiée : Closed / Invoice peuvent changer
        refresh_sales_order_stage(db, so)

    logger.info("Sales order %s updated (%d lines)", so.id2, len(payload.line_items))
    return so


def list_sales_orders(
    db: Session,
    *,
    search: str | None = None,
    stage: SalesOrderStage | None = None,
    approved: bool | None = None,
    currency_id: int | None = None,
    page: int = 1,
    limit: int = 10,
) -> tuple[int, list[SalesOrder]]:
    stmt = (
        select(SalesOrder)
        .join(Customer, Customer.id == SalesOrder.customer_id)
        .outerjoin(CustomerSite, CustomerSite.id == SalesOrder.site_id)
    )
    if search:
        pattern = f"%{search}%"
        stmt = stmt.where(
            or_(
                SalesOrder.id2.ilike(pattern),
                SalesOrder.pr_number_and_name.ilike(pattern),
                SalesOrder.reference_id.ilike(pattern),
                Customer.name.ilike(pattern),
                CustomerSite.name.ilike(pattern),
            )
        )
    if stage is not None:
        stmt = stmt.where(SalesOrder.stage == stage)
    if approved is not None:
        stmt = stmt.where(SalesOrder.approved == approved)
    if currency_id is not None:
        stmt = stmt.where(SalesOrder.currency_id == currency_id)

    total = db.execute(select(func.count()).select_from(stmt.subquery())).scalar_one()
    rows = (
        db.execute(
            stmt.options(selectinload(SalesOrder.items))
            .order_by(SalesOrder.date.desc(), SalesOrder.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        )
        .scalars()
        .all()
    )
    return int(total), list(rows)


def approve_sales_order(db: Session, sales_order_id: int, *, actor_id: int | None = None) -> SalesOrder:
    with transaction(db):
        so = get_sales_order(db, sales_order_id)
        so.approved = True
        so.updated_by_id = actor_id
    return so


def list_uninvoiced_sales_orders(db: Session, customer_id: int, *, limit: int = 500) -> list[SalesOrder]:
    return list(
        db.execute(
            select(SalesOrder)
            .where(SalesOrder.customer_id == customer_id)
            .where(SalesOrder.stage.in_(UNINVOICED_STAGES))
            .order_by(SalesOrder.date.desc())
            .limit(limit)
        )
        .scalars()
        .all()
    )


def list_uninvoiced_line_items(db: Session, sales_order_ids: Iterable[int]) -> list[dict]:
    ids = sorted({int(i) for i in sales_order_ids})
    if not ids:
        return []

    rows = (
        db.execute(
            select(SalesOrderItem)
            .where(SalesOrderItem.sales_order_id.in_(ids))
            .options(
                selectinload(SalesOrderItem.sales_order),
                selectinload(SalesOrderItem.invoice_items),
                selectinload(SalesOrderItem.purchase_order_items),
            )
            .order_by(SalesOrderItem.id)
        )
        .scalars()
        .all()
    )

    out = []
    for soi in rows:
        invoiced = invoiced_quantity(soi)
        if invoiced >= soi.quantity:
            continue
        available = q3(sum((available_quantity(p.inventory_item) for p in soi.purchase_order_items), ZERO))
        out.append(
            {
                "sales_order_id": soi.sales_order_id,
                "sales_order_id2": soi.sales_order.id2,
                "sales_order_item_id": soi.id,
                "item_id": soi.item_id,
                "quantity": soi.quantity,
                "invoiced": invoiced,
                "remaining": q3(soi.quantity - invoiced),
                "available": available,
            }
        )
    return out
