from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from backend.app.api.deps import READ_ROLES, Actor, get_db, require_roles
from backend.app.schemas.inventory import InventoryPage
from backend.services.inventory import list_inventory

router = APIRouter(prefix="/inventory")


@router.get("", response_model=InventoryPage)
def get_inventory(
    search: str | None = None,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=100),
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_roles(*READ_ROLES)),
):
    """
    Inventaire (READ ONLY)
    - quantity : reçu (Fulfilment Recorder)
    - quantity_gone : consommé (factures), jamais modifiable ici
    """
    total, rows = list_inventory(db, search=search, page=page, limit=limit)
    return {"total": total, "items": rows}
