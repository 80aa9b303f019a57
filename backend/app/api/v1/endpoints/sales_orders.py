from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from backend.app.api.deps import MUTATE_ROLES, READ_ROLES, Actor, get_db, require_roles
from backend.app.db.models.core_types import Role, SalesOrderStage
from backend.app.schemas.orders import (
    SalesOrderCreate,
    SalesOrderPage,
    SalesOrderRead,
    SalesOrderStageChange,
    SalesOrderUpdate,
    UninvoicedLineRead,
)
from backend.services import sales
from backend.services.stages import change_sales_order_stage
from backend.services.uow import transaction

router = APIRouter(prefix="/sales-orders")


@router.post("", response_model=SalesOrderRead, status_code=201)
def create_sales_order(
    payload: SalesOrderCreate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_roles(*MUTATE_ROLES)),
):
    return sales.create_sales_order(db, payload, actor_id=actor.user_id)


@router.get("", response_model=SalesOrderPage)
def list_sales_orders(
    search: str | None = None,
    stage: SalesOrderStage | None = None,
    approved: bool | None = None,
    currency_id: int | None = None,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=100),
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_roles(*READ_ROLES)),
):
    total, rows = sales.list_sales_orders(
        db, search=search, stage=stage, approved=approved, currency_id=currency_id, page=page, limit=limit
    )
    return {"total": total, "items": [SalesOrderRead.model_validate(r) for r in rows]}


@router.get("/uninvoiced", response_model=list[SalesOrderRead])
def list_uninvoiced(
    customer_id: int,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_roles(*READ_ROLES)),
):
    return sales.list_uninvoiced_sales_orders(db, customer_id)


@router.get("/uninvoiced-items", response_model=list[UninvoicedLineRead])
def list_uninvoiced_items(
    sales_order_ids: list[int] = Query(default_factory=list),
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_roles(*READ_ROLES)),
):
    return sales.list_uninvoiced_line_items(db, sales_order_ids)


@router.get("/{sales_order_id}", response_model=SalesOrderRead)
def get_sales_order(
    sales_order_id: int,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_roles(*READ_ROLES)),
):
    return sales.get_sales_order(db, sales_order_id)


@router.put("/{sales_order_id}", response_model=SalesOrderRead)
def update_sales_order(
    sales_order_id: int,
    payload: SalesOrderUpdate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_roles(*MUTATE_ROLES)),
):
    """Quantité sous le facturé -> 409."""
    return sales.update_sales_order(db, sales_order_id, payload, actor_id=actor.user_id)


@router.post("/{sales_order_id}/approve", response_model=SalesOrderRead)
def approve_sales_order(
    sales_order_id: int,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_roles(*MUTATE_ROLES)),
):
    return sales.approve_sales_order(db, sales_order_id, actor_id=actor.user_id)


@router.put("/{sales_order_id}/stage", response_model=SalesOrderRead)
def change_stage(
    sales_order_id: int,
    payload: SalesOrderStageChange,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_roles(Role.admin)),
):
    with transaction(db):
        so = change_sales_order_stage(db, sales_order_id, payload.stage, updated_by_id=actor.user_id)
    return so
