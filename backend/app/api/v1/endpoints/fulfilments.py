from __future__ import annotations

from dataclasses import asdict

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from backend.app.api.deps import FULFILMENT_ROLES, READ_ROLES, Actor, get_db, require_roles
from backend.app.schemas.fulfilment import (
    FulfilmentCreate,
    FulfilmentLogRead,
    FulfilmentResultRead,
    MultiOrderFulfilmentCreate,
)
from backend.services import fulfilment

router = APIRouter(prefix="/fulfilments")


@router.post("", response_model=FulfilmentResultRead, status_code=201)
def create_fulfilment(
    payload: FulfilmentCreate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_roles(*FULFILMENT_ROLES)),
):
    """
    Réception sur un PO.
    Les lignes refusées par le ledger restent dans la réponse (outcome != APPLIED).
    """
    result = fulfilment.record_fulfilment(db, payload, actor_id=actor.user_id)
    return asdict(result)


@router.post("/multi", response_model=FulfilmentResultRead, status_code=201)
def create_multi_order_fulfilment(
    payload: MultiOrderFulfilmentCreate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_roles(*FULFILMENT_ROLES)),
):
    result = fulfilment.record_fulfilment_for_purchase_orders(db, payload, actor_id=actor.user_id)
    return asdict(result)


@router.get("")
def list_fulfilment_logs(
    search: str | None = None,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=100),
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_roles(*READ_ROLES)),
):
    total, rows = fulfilment.list_fulfilment_logs(db, search=search, page=page, limit=limit)
    return {
        "total": total,
        "items": [FulfilmentLogRead.model_validate(r) for r in rows],
    }


@router.get("/{fulfilment_log_id}", response_model=FulfilmentLogRead)
def get_fulfilment_log(
    fulfilment_log_id: int,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_roles(*READ_ROLES)),
):
    return fulfilment.get_fulfilment_log(db, fulfilment_log_id)


@router.delete("/items/{fulfilment_log_item_id}", status_code=204)
def delete_fulfilment_item(
    fulfilment_log_item_id: int,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_roles(*FULFILMENT_ROLES)),
):
    fulfilment.delete_fulfilment_item(db, fulfilment_log_item_id)


@router.delete("/{fulfilment_log_id}", status_code=204)
def delete_fulfilment_log(
    fulfilment_log_id: int,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_roles(*FULFILMENT_ROLES)),
):
    fulfilment.delete_fulfilment_log(db, fulfilment_log_id)
