from __future__ import annotations

from dataclasses import dataclass
from typing import Generator

from fastapi import Depends, Header, HTTPException

from backend.app.db.models.core_types import Role
from backend.app.db.session import SessionLocal
from backend.services.storage import LocalObjectStorage, ObjectStorage

MUTATE_ROLES = (Role.admin, Role.user)
FULFILMENT_ROLES = (Role.admin, Role.user, Role.fulfilment)
READ_ROLES = (Role.admin, Role.admin_viewer, Role.user, Role.user_viewer, Role.fulfilment)


@dataclass(frozen=True)
class Actor:
    user_id: int | None
    role: Role


def get_db() -> Generator:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_storage() -> ObjectStorage:
    return LocalObjectStorage()


def get_actor(
    x_user_id: int | None = Header(default=None),
    x_user_role: str | None = Header(default=None),
) -> Actor:
    # pas d'auth : l'identité arrive par en-têtes (X-User-Id / X-User-Role)
    if not x_user_role:
        raise HTTPException(status_code=401, detail="Missing X-User-Role header")
    try:
        role = Role(x_user_role.upper())
    except ValueError:
        raise HTTPException(status_code=401, detail=f"Unknown role {x_user_role}") from None
    return Actor(user_id=x_user_id, role=role)


def require_roles(*roles: Role):
    def checker(actor: Actor = Depends(get_actor)) -> Actor:
        if actor.role not in roles:
            raise HTTPException(status_code=403, detail="Forbidden")
        return actor

    return checker
