from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from backend.app.api.deps import MUTATE_ROLES, READ_ROLES, Actor, get_db, require_roles
from backend.app.db.models.core_types import PurchaseOrderStage, Role
from backend.app.schemas.orders import (
    PurchaseOrderFromSalesOrder,
    PurchaseOrderPage,
    PurchaseOrderRead,
    PurchaseOrderStageChange,
    PurchaseOrderUpdate,
    UnfulfilledLineRead,
)
from backend.services import procurement
from backend.services.stages import change_purchase_order_stage
from backend.services.uow import transaction

router = APIRouter(prefix="/purchase-orders")


@router.post("", response_model=list[PurchaseOrderRead], status_code=201)
def create_from_sales_order(
    payload: list[PurchaseOrderFromSalesOrder],
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_roles(*MUTATE_ROLES)),
):
    """
    Crée un ou plusieurs PO pour une SO.
    - fournisseur sans payment term -> 409
    - ligne de PO qui ne pointe pas vers la SO -> 404
    """
    return procurement.create_purchase_orders_from_sales_order(db, payload, actor_id=actor.user_id)


@router.get("", response_model=PurchaseOrderPage)
def list_purchase_orders(
    search: str | None = None,
    stage: PurchaseOrderStage | None = None,
    approved: bool | None = None,
    currency_id: int | None = None,
    supplier_id: int | None = None,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=100),
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_roles(*READ_ROLES)),
):
    total, rows = procurement.list_purchase_orders(
        db,
        search=search,
        stage=stage,
        approved=approved,
        currency_id=currency_id,
        supplier_id=supplier_id,
        page=page,
        limit=limit,
    )
    return {"total": total, "items": [PurchaseOrderRead.model_validate(r) for r in rows]}


@router.get("/unfulfilled", response_model=list[PurchaseOrderRead])
def list_unfulfilled(
    supplier_id: int,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_roles(*READ_ROLES)),
):
    return procurement.list_unfulfilled_purchase_orders(db, supplier_id)


@router.get("/unfulfilled-items", response_model=list[UnfulfilledLineRead])
def list_unfulfilled_items(
    purchase_order_ids: list[int] = Query(default_factory=list),
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_roles(*READ_ROLES)),
):
    return procurement.list_unfulfilled_line_items(db, purchase_order_ids)


@router.get("/{purchase_order_id}", response_model=PurchaseOrderRead)
def get_purchase_order(
    purchase_order_id: int,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_roles(*READ_ROLES)),
):
    return procurement.get_purchase_order(db, purchase_order_id)


@router.put("/{purchase_order_id}", response_model=PurchaseOrderRead)
def update_purchase_order(
    purchase_order_id: int,
    payload: PurchaseOrderUpdate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_roles(*MUTATE_ROLES)),
):
    """
    - quantité sous le reçu -> 409
    - payment term inconnu -> 404
    """
    return procurement.update_purchase_order(db, purchase_order_id, payload, actor_id=actor.user_id)


@router.post("/{purchase_order_id}/approve", response_model=PurchaseOrderRead)
def approve_purchase_order(
    purchase_order_id: int,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_roles(*MUTATE_ROLES)),
):
    return procurement.approve_purchase_order(db, purchase_order_id, actor_id=actor.user_id)


@router.put("/{purchase_order_id}/stage", response_model=PurchaseOrderRead)
def change_stage(
    purchase_order_id: int,
    payload: PurchaseOrderStageChange,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_roles(Role.admin)),
):
    with transaction(db):
        po = change_purchase_order_stage(db, purchase_order_id, payload.stage, updated_by_id=actor.user_id)
    return po
