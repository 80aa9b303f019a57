"""
Numérotation séquentielle des documents (SO / PO / IN).

Format : <PREFIX><YYMM><NNNNNN>, NNNNNN repart à 000001 chaque mois.

Règle :
    dernier document du même mois (ORDER BY counter DESC)
    -> suffixe + 1, sinon 000001

Lecture puis incrément : ce n'est PAS atomique. La sécurité vient
uniquement de l'isolation SERIALIZABLE de la transaction qui insère
(voir backend.services.uow). L'issuer doit donc être utilisé dans
cette même transaction.

Dans un lot (import bulk), les numéros déjà distribués mais pas encore
commités sont gardés en cache par l'issuer : on ne re-requête pas.
"""

from __future__ import annotations

import calendar
from dataclasses import dataclass
from datetime import date

from sqlalchemy import select, func
from sqlalchemy.orm import Session

SEQUENCE_WIDTH = 6
PERIOD_KEY_WIDTH = 4

SALES_ORDER_PREFIX = "SO"
PURCHASE_ORDER_PREFIX = "PO"
INVOICE_PREFIX = "IN"


@dataclass(frozen=True)
class Period:
    key: str
    start: date
    end: date


def period_for(on: date) -> Period:
    last_day = calendar.monthrange(on.year, on.month)[1]
    return Period(
        key=f"{on.year % 100:02d}{on.month:02d}",
        start=on.replace(day=1),
        end=on.replace(day=last_day),
    )


def format_code(prefix: str, period: Period, number: int) -> str:
    return f"{prefix}{period.key}{number:0{SEQUENCE_WIDTH}d}"


def auto_item_id(counter: int) -> str:
    # code article par défaut quand la ligne n'en fournit pas
    return f"0000{counter:0{SEQUENCE_WIDTH}d}"


def parse_sequence_number(code: str | None, prefix: str) -> int:
    if not code:
        return 0
    tail = code[len(prefix) + PERIOD_KEY_WIDTH:]
    return int(tail) if tail.isdigit() else 0


class DocumentNumberIssuer:
    """
    Distribue codes publics (id2) et compteurs internes (counter)
    pour une transaction.
    """

    def __init__(self, db: Session) -> None:
        self.db = db
        self._last_numbers: dict[tuple[str, str, str], int] = {}
        self._last_counters: dict[str, int] = {}

    def next_counter(self, model) -> int:
        name = model.__tablename__
        if name not in self._last_counters:
            current = self.db.execute(select(func.max(model.counter))).scalar_one_or_none()
            self._last_counters[name] = int(current or 0)
        self._last_counters[name] += 1
        return self._last_counters[name]

    def _last_number(self, model, prefix: str, period: Period) -> int:
        # id2 saisis à la main (import bulk) : seuls les codes conformes comptent
        codes = self.db.execute(
            select(model.id2)
            .where(model.date >= period.start)
            .where(model.date <= period.end)
            .where(model.id2.like(f"{prefix}{period.key}%"))
            .order_by(model.counter.desc())
        ).scalars()
        return next((n for n in (parse_sequence_number(c, prefix) for c in codes) if n), 0)

    def _cached_number(self, model, prefix: str, period: Period) -> tuple[tuple[str, str, str], int]:
        cache_key = (model.__tablename__, prefix, period.key)
        if cache_key not in self._last_numbers:
            self._last_numbers[cache_key] = self._last_number(model, prefix, period)
        return cache_key, self._last_numbers[cache_key]

    def next_code(self, model, prefix: str, on: date) -> str:
        period = period_for(on)
        cache_key, last = self._cached_number(model, prefix, period)
        self._last_numbers[cache_key] = last + 1
        return format_code(prefix, period, last + 1)

    def observe(self, model, prefix: str, on: date, code: str) -> str:
        """
        Enregistre un code fourni par l'appelant : les codes suivants
        du même mois partent au-dessus.
        """
        period = period_for(on)
        if code.startswith(f"{prefix}{period.key}"):
            cache_key, last = self._cached_number(model, prefix, period)
            self._last_numbers[cache_key] = max(last, parse_sequence_number(code, prefix))
        return code
