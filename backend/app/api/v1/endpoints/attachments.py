from __future__ import annotations

from fastapi import APIRouter, Body, Depends
from sqlalchemy.orm import Session

from backend.app.api.deps import FULFILMENT_ROLES, Actor, get_db, get_storage, require_roles
from backend.app.db.models.models_v1 import Attachment
from backend.services.errors import ValidationError
from backend.services.storage import ObjectStorage
from backend.services.uow import transaction

router = APIRouter(prefix="/attachments")


@router.post("", status_code=201)
def upload_attachment(
    filename: str,
    data: bytes = Body(default=b"", media_type="application/octet-stream"),
    db: Session = Depends(get_db),
    storage: ObjectStorage = Depends(get_storage),
    actor: Actor = Depends(require_roles(*FULFILMENT_ROLES)),
):
    """
    Upload brut (Content-Type: application/octet-stream), pas de multipart.
    Renvoie l'id à passer à /bulk-orders/import.
    """
    if not data:
        raise ValidationError("Empty file")

    url = storage.add_file(filename, data)
    with transaction(db):
        attachment = Attachment(original_filename=filename, new_filename=url.rsplit("/", 1)[-1], url=url)
        db.add(attachment)
        db.flush()
        attachment_id = int(attachment.id)
    return {"id": attachment_id, "url": url}
