from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from backend.app.api.deps import MUTATE_ROLES, READ_ROLES, Actor, get_db, require_roles
from backend.app.schemas.invoice import InvoiceCreate, InvoiceRead
from backend.services import invoicing

router = APIRouter(prefix="/invoices")


@router.post("", response_model=InvoiceRead, status_code=201)
def create_invoice(
    payload: InvoiceCreate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_roles(*MUTATE_ROLES)),
):
    """
    Facture finale : consomme le stock (409 si insuffisant, rien n'est écrit).
    Brouillon : aucun effet sur le stock.
    """
    return invoicing.create_invoice(db, payload, actor_id=actor.user_id)


@router.get("", response_model=list[InvoiceRead])
def list_invoices(
    customer_id: int | None = None,
    draft: bool | None = None,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_roles(*READ_ROLES)),
):
    return invoicing.list_invoices(db, customer_id=customer_id, draft=draft)


@router.get("/{invoice_id}", response_model=InvoiceRead)
def get_invoice(
    invoice_id: int,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_roles(*READ_ROLES)),
):
    return invoicing.get_invoice(db, invoice_id)


@router.post("/{invoice_id}/finalize", response_model=InvoiceRead)
def finalize_invoice(
    invoice_id: int,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_roles(*MUTATE_ROLES)),
):
    return invoicing.finalize_draft_invoice(db, invoice_id, actor_id=actor.user_id)


@router.delete("/{invoice_id}", status_code=204)
def delete_draft_invoice(
    invoice_id: int,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_roles(*MUTATE_ROLES)),
):
    invoicing.delete_draft_invoice(db, invoice_id)
