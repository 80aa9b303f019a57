"""
Unit of work.

Chaque opération du moteur s'exécute dans UNE transaction :
- commit si tout passe
- rollback sur n'importe quelle exception (rien de partiel)
- les échecs de sérialisation deviennent TransactionConflictError

Pas de retry automatique : c'est à l'appelant de rejouer.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy.exc import DBAPIError
from sqlalchemy.orm import Session

from backend.services.errors import TransactionConflictError

logger = logging.getLogger(__name__)

# 40001 serialization_failure, 40P01 deadlock_detected
SERIALIZATION_SQLSTATES = {"40001", "40P01"}


def is_serialization_failure(exc: DBAPIError) -> bool:
    orig = exc.orig
    sqlstate = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    if sqlstate in SERIALIZATION_SQLSTATES:
        return True
    # SQLite sérialise par verrou de fichier
    return "database is locked" in str(orig).lower()


@contextmanager
def transaction(db: Session) -> Iterator[Session]:
    try:
        yield db
        db.commit()
    except DBAPIError as exc:
        db.rollback()
        if is_serialization_failure(exc):
            logger.warning("Transaction aborted by serialization conflict: %s", exc.orig)
            raise TransactionConflictError("Transaction conflict, please retry") from exc
        raise
    except Exception:
        db.rollback()
        raise
