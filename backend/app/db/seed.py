from __future__ import annotations

from decimal import Decimal
from sqlalchemy import select
from sqlalchemy.orm import Session

from backend.app.db.session import SessionLocal
from backend.app.db.models.models_v1 import Currency, GstRate, PaymentTerm, Unit, User
from backend.app.db.models.core_types import Role

UNITS = ("NOS", "KG", "MTR", "SET", "LTR")
GST_RATES = (Decimal("0"), Decimal("5"), Decimal("12"), Decimal("18"), Decimal("28"))
CURRENCIES = ("INR", "USD", "EUR")
PAYMENT_TERMS = ("100% advance", "30 days credit")


def _ensure(db: Session, model, column, value, **fields) -> bool:
    if db.scalar(select(model).where(column == value)):
        return False
    db.add(model(**fields))
    return True


def seed_reference_data(db: Session) -> int:
    """Données de référence idempotentes. Renvoie le nombre de lignes créées."""
    created = 0

    # Admin user (identité passée par X-User-Id, pas de mot de passe)
    created += _ensure(db, User, User.name, "ADMIN", name="ADMIN", role=Role.admin, active=True)

    for name in UNITS:
        created += _ensure(db, Unit, Unit.name, name, name=name)
    for rate in GST_RATES:
        created += _ensure(db, GstRate, GstRate.rate, rate, rate=rate)
    for name in CURRENCIES:
        created += _ensure(db, Currency, Currency.name, name, name=name)
    for name in PAYMENT_TERMS:
        created += _ensure(db, PaymentTerm, PaymentTerm.name, name, name=name)

    db.commit()
    return created


def run_seed():
    db = SessionLocal()
    try:
        created = seed_reference_data(db)
        print(f"SEED OK: {created} rows created (user=ADMIN, units, gst rates, currencies, payment terms)")
    finally:
        db.close()


if __name__ == "__main__":
    run_seed()
