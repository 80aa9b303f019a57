from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.orm import Session

from backend.app.api.deps import MUTATE_ROLES, READ_ROLES, Actor, get_db, require_roles
from backend.app.db.models.models_v1 import PaymentTerm, Supplier
from backend.services.uow import transaction

router = APIRouter(prefix="/suppliers")


class SupplierCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    payment_term_id: int | None = None


@router.get("")
def list_suppliers(
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_roles(*READ_ROLES)),
):
    rows = db.execute(select(Supplier).order_by(Supplier.name)).scalars().all()
    return [
        {
            "id": s.id,
            "name": s.name,
            "payment_term_id": s.payment_term_id,
        }
        for s in rows
    ]


@router.post("", status_code=201)
def create_supplier(
    payload: SupplierCreate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_roles(*MUTATE_ROLES)),
):
    exists = db.execute(select(Supplier).where(Supplier.name == payload.name)).scalar_one_or_none()
    if exists:
        raise HTTPException(status_code=409, detail="Supplier already exists")

    # sans payment term, le fournisseur ne pourra pas recevoir de PO
    if payload.payment_term_id is not None and not db.get(PaymentTerm, payload.payment_term_id):
        raise HTTPException(status_code=400, detail="Invalid payment_term_id")

    with transaction(db):
        s = Supplier(name=payload.name, payment_term_id=payload.payment_term_id)
        db.add(s)
        db.flush()
        supplier_id = int(s.id)
    return {"id": supplier_id, "name": payload.name}
