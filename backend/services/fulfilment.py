"""
Fulfilment (réception marchandise fournisseur).

Une entrée de gate = un FulfilmentLog. Chaque ligne reçue :
    - corrige hsn_code / gst_rate sur la ligne de PO si besoin
    - passe par le ledger (backend.services.inventory.receive)
    - crée un FulfilmentLogItem si le ledger l'accepte

Les lignes refusées (dépassement, zéro...) sont IGNORÉES, pas en erreur,
mais chaque résultat est tagué (LineOutcome) et renvoyé.

Tout se fait dans une seule transaction ; si au final aucune ligne
n'est appliquée, on lève EmptyFulfilmentError -> rollback complet.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Iterable

from sqlalchemy import select, func, or_
from sqlalchemy.orm import Session, selectinload

from backend.app.db.models.models_v1 import (
    FulfilmentLog,
    FulfilmentLogItem,
    PurchaseOrder,
    PurchaseOrderExpense,
)
from backend.app.db.models.core_types import LineOutcome
from backend.app.schemas.fulfilment import (
    FulfilmentCreate,
    GateEntry,
    MultiOrderFulfilmentCreate,
    ReceiptExpense,
    ReceiptLineCreate,
)
from backend.services.errors import (
    ConsistencyError,
    EmptyFulfilmentError,
    NotFoundError,
    ValidationError,
)
from backend.services.inventory import (
    ZERO,
    lock_inventory_items,
    q3,
    receive,
    reverse_receipt,
)
from backend.services.stages import refresh_purchase_order_stage
from backend.services.uow import transaction

logger = logging.getLogger(__name__)


@dataclass
class LineResult:
    purchase_order_item_id: int
    outcome: LineOutcome
    quantity: Decimal
    fulfilment_log_item_id: int | None = None


@dataclass
class FulfilmentResult:
    fulfilment_log_id: int
    lines: list[LineResult] = field(default_factory=list)

    @property
    def applied(self) -> list[LineResult]:
        return [l for l in self.lines if l.outcome == LineOutcome.applied]


# ---------- Helpers ----------
def _require_nonzero_lines(lines: Iterable[ReceiptLineCreate]) -> None:
    if not any(q3(l.quantity) != ZERO for l in lines):
        raise ValidationError("No items to add")


def _get_purchase_order(db: Session, purchase_order_id: int) -> PurchaseOrder:
    po = db.get(PurchaseOrder, purchase_order_id)
    if not po:
        raise NotFoundError("Purchase order", purchase_order_id)
    return po


def _check_supplier(po: PurchaseOrder, header: GateEntry) -> None:
    # une entrée de gate = un seul fournisseur
    if po.supplier_id != header.supplier_id:
        raise ConsistencyError(
            f"Purchase order {po.id2} belongs to supplier {po.supplier_id}, not {header.supplier_id}"
        )


def _create_log(db: Session, header: GateEntry, actor_id: int | None) -> FulfilmentLog:
    log = FulfilmentLog(
        gate_entry_number=header.gate_entry_number,
        gate_entry_date=header.gate_entry_date,
        supplier_id=header.supplier_id,
        invoice_id=header.invoice_id,
        invoice_date=header.invoice_date,
        location=header.location,
        remarks=header.remarks,
        created_by_id=actor_id,
        updated_by_id=actor_id,
    )
    db.add(log)
    db.flush()
    return log


def _apply_expenses(
    db: Session,
    po: PurchaseOrder,
    log: FulfilmentLog,
    expenses: Iterable[ReceiptExpense],
    *,
    allow_updates: bool = True,
) -> None:
    for ex in expenses:
        if ex.is_new or not allow_updates:
            db.add(
                PurchaseOrderExpense(
                    purchase_order_id=po.id,
                    fulfilment_log_id=log.id,
                    description=ex.description,
                    price=ex.price,
                    gst_rate_id=ex.gst_rate_id,
                    show_in_fulfilment=True,
                )
            )
            continue

        existing = db.get(PurchaseOrderExpense, ex.id) if ex.id is not None else None
        if not existing or existing.purchase_order_id != po.id:
            raise NotFoundError("Purchase order expense", ex.id)
        existing.description = ex.description
        existing.price = ex.price
        existing.gst_rate_id = ex.gst_rate_id


def _apply_lines(
    db: Session,
    po: PurchaseOrder,
    log: FulfilmentLog,
    lines: Iterable[ReceiptLineCreate],
) -> list[LineResult]:
    items_by_id = {int(i.id): i for i in po.items}

    # relecture des soldes existants (FOR UPDATE)
    lock_inventory_items(db, [i.inventory_item.id for i in po.items if i.inventory_item is not None])

    results: list[LineResult] = []
    for line in lines:
        po_item = items_by_id.get(line.purchase_order_item_id)
        if po_item is None:
            raise NotFoundError(f"Purchase order item (purchase order {po.id})", line.purchase_order_item_id)

        # champ absent de la requête : valeur du PO conservée
        for name in ("hsn_code", "gst_rate_id"):
            if name in line.model_fields_set and getattr(po_item, name) != getattr(line, name):
                setattr(po_item, name, getattr(line, name))

        receipt = receive(db, po_item, line.quantity)
        result = LineResult(
            purchase_order_item_id=int(po_item.id),
            outcome=receipt.outcome,
            quantity=q3(line.quantity),
        )

        if receipt.outcome == LineOutcome.applied:
            log_item = FulfilmentLogItem(
                fulfilment_log_id=log.id,
                inventory_item_id=receipt.inventory_item.id,
                quantity=q3(line.quantity),
            )
            db.add(log_item)
            db.flush()
            result.fulfilment_log_item_id = int(log_item.id)
        else:
            logger.warning(
                "Receipt line skipped: PO %s item %s qty=%s (%s, received=%s, ordered=%s)",
                po.id2, po_item.id, line.quantity, receipt.outcome.value,
                receipt.new_quantity, po_item.quantity,
            )
        results.append(result)

    return results


# ---------- Entry points ----------
def record_fulfilment(
    db: Session,
    payload: FulfilmentCreate,
    *,
    actor_id: int | None = None,
) -> FulfilmentResult:
    """Réception d'UNE entrée de gate sur UN PO."""
    _require_nonzero_lines(payload.items)

    with transaction(db):
        po = _get_purchase_order(db, payload.purchase_order_id)
        _check_supplier(po, payload)
        log = _create_log(db, payload, actor_id)
        _apply_expenses(db, po, log, payload.expenses)
        lines = _apply_lines(db, po, log, payload.items)
        refresh_purchase_order_stage(db, po)

        result = FulfilmentResult(fulfilment_log_id=int(log.id), lines=lines)
        if not result.applied:
            raise EmptyFulfilmentError("No items")

    logger.info(
        "Fulfilment log %s recorded on PO %s: %d/%d lines applied",
        result.fulfilment_log_id, payload.purchase_order_id, len(result.applied), len(result.lines),
    )
    return result


def record_fulfilment_for_purchase_orders(
    db: Session,
    payload: MultiOrderFulfilmentCreate,
    *,
    actor_id: int | None = None,
) -> FulfilmentResult:
    """
    Une entrée de gate couvrant plusieurs PO du même fournisseur.
    Un seul log ; stage recalculé pour chaque PO touché.
    """
    if not payload.orders:
        raise ValidationError("No purchase order fulfilments to add")
    _require_nonzero_lines(line for order in payload.orders for line in order.items)

    with transaction(db):
        log = _create_log(db, payload, actor_id)
        lines: list[LineResult] = []
        for order in payload.orders:
            po = _get_purchase_order(db, order.purchase_order_id)
            _check_supplier(po, payload)
            # sur ce flux, les frais sont toujours nouveaux
            _apply_expenses(db, po, log, order.expenses, allow_updates=False)
            lines.extend(_apply_lines(db, po, log, order.items))
            refresh_purchase_order_stage(db, po)

        result = FulfilmentResult(fulfilment_log_id=int(log.id), lines=lines)
        if not result.applied:
            raise EmptyFulfilmentError("No items")

    logger.info(
        "Fulfilment log %s recorded on %d POs: %d/%d lines applied",
        result.fulfilment_log_id, len(payload.orders), len(result.applied), len(result.lines),
    )
    return result


def delete_fulfilment_item(db: Session, fulfilment_log_item_id: int) -> None:
    """Supprime une ligne reçue et retire son delta du stock."""
    with transaction(db):
        log_item = db.get(FulfilmentLogItem, fulfilment_log_item_id)
        if not log_item:
            raise NotFoundError("Fulfilment log item", fulfilment_log_item_id)

        inv = lock_inventory_items(db, [log_item.inventory_item_id])[int(log_item.inventory_item_id)]
        reverse_receipt(inv, log_item.quantity)
        po = inv.purchase_order_item.purchase_order
        db.delete(log_item)
        refresh_purchase_order_stage(db, po)

    logger.info("Fulfilment log item %s deleted", fulfilment_log_item_id)


def delete_fulfilment_log(db: Session, fulfilment_log_id: int) -> None:
    with transaction(db):
        log = db.get(FulfilmentLog, fulfilment_log_id)
        if not log:
            raise NotFoundError("Fulfilment log", fulfilment_log_id)
        if log.items:
            raise ConsistencyError("Cannot delete fulfilment log with items")
        db.delete(log)

    logger.info("Fulfilment log %s deleted", fulfilment_log_id)


def get_fulfilment_log(db: Session, fulfilment_log_id: int) -> FulfilmentLog:
    log = db.get(FulfilmentLog, fulfilment_log_id)
    if not log:
        raise NotFoundError("Fulfilment log", fulfilment_log_id)
    return log


def list_fulfilment_logs(
    db: Session,
    *,
    search: str | None = None,
    page: int = 1,
    limit: int = 10,
) -> tuple[int, list[FulfilmentLog]]:
    stmt = select(FulfilmentLog)
    if search:
        pattern = f"%{search}%"
        stmt = stmt.where(
            or_(
                FulfilmentLog.gate_entry_number.ilike(pattern),
                FulfilmentLog.invoice_id.ilike(pattern),
                FulfilmentLog.location.ilike(pattern),
            )
        )

    total = db.execute(select(func.count()).select_from(stmt.subquery())).scalar_one()
    rows = (
        db.execute(
            stmt.options(selectinload(FulfilmentLog.items))
            .order_by(FulfilmentLog.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        )
        .scalars()
        .all()
    )
    return int(total), list(rows)
