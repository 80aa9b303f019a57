"""
Facturation + allocation du stock.

Pour chaque ligne facturée, on consomme le stock des lignes de PO liées
à la ligne de SO, DANS L'ORDRE où elles sont liées (premier lié,
premier consommé ; pas de FIFO par date de réception) :

    available = quantity - quantity_gone   (3 décimales)
    available == 0        -> ligne suivante
    available < remaining -> on prend tout, on continue
    sinon                 -> on prend remaining, stop

S'il reste du "remaining" à la fin -> InsufficientInventoryError,
et le unit of work annule TOUTE consommation déjà faite.

Brouillon (draft) : pas d'allocation, pas de id2, pas de stage.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from backend.app.db.models.models_v1 import (
    Invoice,
    InvoiceItem,
    SalesOrderItem,
)
from backend.app.db.models.core_types import LineOutcome
from backend.app.schemas.invoice import InvoiceCreate
from backend.services.errors import (
    ConsistencyError,
    InsufficientInventoryError,
    NotFoundError,
    OverInvoiceError,
)
from backend.services.inventory import (
    ZERO,
    available_quantity,
    consume,
    lock_inventory_items,
    money,
    q3,
)
from backend.services.sequence import INVOICE_PREFIX, DocumentNumberIssuer
from backend.services.stages import invoiced_quantity, refresh_sales_order_stage
from backend.services.uow import transaction

logger = logging.getLogger(__name__)


@dataclass
class AllocationLine:
    purchase_order_item_id: int
    inventory_item_id: int | None
    outcome: LineOutcome
    quantity: Decimal = ZERO


@dataclass
class AllocationResult:
    sales_order_item_id: int
    requested: Decimal
    lines: list[AllocationLine] = field(default_factory=list)

    @property
    def allocated(self) -> Decimal:
        return q3(sum((l.quantity for l in self.lines), ZERO))


def allocate_inventory(db: Session, soi: SalesOrderItem, quantity) -> AllocationResult:
    """
    Consomme `quantity` sur le stock lié à la ligne de SO.
    Ne commit rien : à appeler dans une transaction.
    """
    remaining = q3(quantity)
    result = AllocationResult(sales_order_item_id=int(soi.id), requested=remaining)

    po_items = list(soi.purchase_order_items)
    locked = lock_inventory_items(
        db, [p.inventory_item.id for p in po_items if p.inventory_item is not None]
    )

    for po_item in po_items:
        if remaining == ZERO:
            break

        inv = locked.get(int(po_item.inventory_item.id)) if po_item.inventory_item is not None else None
        available = available_quantity(inv)
        if available == ZERO:
            result.lines.append(
                AllocationLine(
                    purchase_order_item_id=int(po_item.id),
                    inventory_item_id=int(inv.id) if inv is not None else None,
                    outcome=LineOutcome.skipped_no_inventory,
                )
            )
            continue

        take = available if available < remaining else remaining
        consume(inv, take)
        remaining = q3(remaining - take)
        result.lines.append(
            AllocationLine(
                purchase_order_item_id=int(po_item.id),
                inventory_item_id=int(inv.id),
                outcome=LineOutcome.applied,
                quantity=take,
            )
        )

    if remaining > ZERO:
        raise InsufficientInventoryError(int(soi.id), remaining)

    db.flush()
    return result


def _get_sales_order_item(db: Session, sales_order_item_id: int) -> SalesOrderItem:
    soi = db.get(SalesOrderItem, sales_order_item_id)
    if not soi:
        raise NotFoundError("Sales order item", sales_order_item_id)
    return soi


def _allocate_line(
    db: Session,
    soi: SalesOrderItem,
    quantity,
    pending: dict[int, Decimal],
) -> AllocationResult:
    if not soi.purchase_order_items:
        raise ConsistencyError(f"No purchase order item for sales order item {soi.id}")

    # pending : quantités déjà prises par les lignes précédentes de la même facture
    already = q3(invoiced_quantity(soi) + pending.get(int(soi.id), ZERO))
    if q3(already + q3(quantity)) > soi.quantity:
        raise OverInvoiceError(
            f"Sales order item {soi.id}: invoicing {quantity} would exceed ordered "
            f"quantity {soi.quantity} (already invoiced {already})"
        )
    result = allocate_inventory(db, soi, quantity)
    pending[int(soi.id)] = q3(pending.get(int(soi.id), ZERO) + result.allocated)
    return result


def _issue_invoice_number(db: Session, invoice: Invoice, issuer: DocumentNumberIssuer | None = None) -> None:
    issuer = issuer or DocumentNumberIssuer(db)
    invoice.id2 = issuer.next_code(Invoice, INVOICE_PREFIX, invoice.date)
    invoice.counter = issuer.next_counter(Invoice)


def _refresh_touched_sales_orders(db: Session, sois: list[SalesOrderItem]) -> None:
    seen: set[int] = set()
    for soi in sois:
        if soi.sales_order_id in seen:
            continue
        seen.add(soi.sales_order_id)
        refresh_sales_order_stage(db, soi.sales_order)


# ---------- Entry points ----------
def create_invoice(
    db: Session,
    payload: InvoiceCreate,
    *,
    actor_id: int | None = None,
) -> Invoice:
    """
    Crée une facture (une ou plusieurs SO du même client).
    Finale : allocation et numéro IN. Brouillon : aucun effet sur le stock.
    """
    with transaction(db):
        sois: list[SalesOrderItem] = []
        pending: dict[int, Decimal] = {}
        total = ZERO
        for line in payload.items:
            soi = _get_sales_order_item(db, line.sales_order_item_id)
            if soi.sales_order.customer_id != payload.customer_id:
                raise ConsistencyError(
                    f"Sales order item {soi.id} does not belong to customer {payload.customer_id}"
                )
            if not payload.draft:
                _allocate_line(db, soi, line.quantity, pending)
            sois.append(soi)
            total += soi.price * q3(line.quantity)

        invoice = Invoice(
            draft=payload.draft,
            date=payload.date,
            customer_id=payload.customer_id,
            currency_id=payload.currency_id,
            conversion_rate=payload.conversion_rate,
            remarks=payload.remarks,
            total=money(total),
            created_by_id=actor_id,
            updated_by_id=actor_id,
            items=[
                InvoiceItem(
                    sales_order_item_id=line.sales_order_item_id,
                    description=line.description,
                    quantity=q3(line.quantity),
                )
                for line in payload.items
            ],
        )
        if not payload.draft:
            _issue_invoice_number(db, invoice)
        db.add(invoice)
        db.flush()

        if not payload.draft:
            _refresh_touched_sales_orders(db, sois)

        invoice_id = int(invoice.id)

    logger.info(
        "Invoice %s created (%s, %d lines, total=%s)",
        invoice.id2 or invoice_id, "draft" if payload.draft else "final", len(payload.items), invoice.total,
    )
    return invoice


def finalize_draft_invoice(db: Session, invoice_id: int, *, actor_id: int | None = None) -> Invoice:
    """Passe un brouillon en facture finale (allocation puis numérotation)."""
    with transaction(db):
        invoice = db.get(Invoice, invoice_id)
        if not invoice:
            raise NotFoundError("Invoice", invoice_id)
        if not invoice.draft:
            raise ConsistencyError(f"Invoice {invoice.id2} is already final")

        sois: list[SalesOrderItem] = []
        pending: dict[int, Decimal] = {}
        for item in invoice.items:
            soi = item.sales_order_item
            # l'item du brouillon n'est pas compté (draft) : on vérifie le reste
            _allocate_line(db, soi, item.quantity, pending)
            sois.append(soi)

        invoice.draft = False
        invoice.updated_by_id = actor_id
        _issue_invoice_number(db, invoice)
        db.flush()
        _refresh_touched_sales_orders(db, sois)

    logger.info("Draft invoice %s finalized as %s", invoice_id, invoice.id2)
    return invoice


def delete_draft_invoice(db: Session, invoice_id: int) -> None:
    with transaction(db):
        invoice = db.get(Invoice, invoice_id)
        if not invoice:
            raise NotFoundError("Invoice", invoice_id)
        if not invoice.draft:
            raise ConsistencyError("Only draft invoices can be deleted")
        db.delete(invoice)

    logger.info("Draft invoice %s deleted", invoice_id)


def get_invoice(db: Session, invoice_id: int) -> Invoice:
    invoice = db.get(Invoice, invoice_id)
    if not invoice:
        raise NotFoundError("Invoice", invoice_id)
    return invoice


def list_invoices(
    db: Session,
    *,
    customer_id: int | None = None,
    draft: bool | None = None,
    limit: int = 100,
) -> list[Invoice]:
    stmt = select(Invoice).options(selectinload(Invoice.items)).order_by(Invoice.id.desc()).limit(limit)
    if customer_id is not None:
        stmt = stmt.where(Invoice.customer_id == customer_id)
    if draft is not None:
        stmt = stmt.where(Invoice.draft == draft)
    return list(db.execute(stmt).scalars().all())

