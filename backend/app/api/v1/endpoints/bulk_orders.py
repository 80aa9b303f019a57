from __future__ import annotations

from dataclasses import asdict

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.orm import Session

from backend.app.api.deps import MUTATE_ROLES, Actor, get_db, get_storage, require_roles
from backend.services.bulk_import import import_bulk_orders
from backend.services.storage import ObjectStorage

router = APIRouter(prefix="/bulk-orders")


class BulkImportRequest(BaseModel):
    attachment_id: int
    timezone_offset: int = 0


@router.post("/import")
def import_orders(
    payload: BulkImportRequest,
    db: Session = Depends(get_db),
    storage: ObjectStorage = Depends(get_storage),
    actor: Actor = Depends(require_roles(*MUTATE_ROLES)),
):
    """
    Import Excel (tout ou rien).
    - {"message": "Done"} si tout est créé
    - {"error_file": url} sinon : classeur annoté, rien n'est créé
    """
    result = import_bulk_orders(
        db,
        storage,
        payload.attachment_id,
        timezone_offset=payload.timezone_offset,
        actor_id=actor.user_id,
    )
    return {k: v for k, v in asdict(result).items() if v is not None}
