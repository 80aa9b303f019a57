from datetime import date

from backend.app.db.models.models_v1 import SalesOrder
from backend.services.sequence import (
    SALES_ORDER_PREFIX,
    DocumentNumberIssuer,
    auto_item_id,
    format_code,
    parse_sequence_number,
    period_for,
)


def test_period_covers_whole_month():
    p = period_for(date(2024, 2, 17))
    assert p.key == "2402"
    assert p.start == date(2024, 2, 1)
    assert p.end == date(2024, 2, 29)


def test_format_and_parse_code():
    code = format_code("SO", period_for(date(2026, 3, 10)), 42)
    assert code == "SO2603000042"
    assert parse_sequence_number(code, "SO") == 42
    assert parse_sequence_number(None, "SO") == 0
    assert parse_sequence_number("SO2603", "SO") == 0


def test_auto_item_id():
    assert auto_item_id(1) == "0000000001"
    assert auto_item_id(123456) == "0000123456"


def test_sales_order_codes_follow_each_other_and_reset_each_month(make_sales_order):
    first = make_sales_order(1, on=date(2026, 3, 2))
    second = make_sales_order(1, on=date(2026, 3, 28))
    april = make_sales_order(1, on=date(2026, 4, 1))

    assert first.id2 == "SO2603000001"
    assert second.id2 == "SO2603000002"
    assert april.id2 == "SO2604000001"
    # le compteur interne, lui, ne repart jamais
    assert (first.counter, second.counter, april.counter) == (1, 2, 3)


def test_sales_order_item_ids_are_generated_from_item_counter(make_sales_order):
    so = make_sales_order(2, 3)
    assert [i.item_id for i in so.items] == ["0000000001", "0000000002"]

    so2 = make_sales_order(1)
    assert so2.items[0].item_id == "0000000003"


def test_issuer_keeps_uncommitted_numbers_in_cache(db_session, make_sales_order):
    make_sales_order(1, on=date(2026, 3, 5))

    issuer = DocumentNumberIssuer(db_session)
    on = date(2026, 3, 20)
    assert issuer.next_code(SalesOrder, SALES_ORDER_PREFIX, on) == "SO2603000002"
    assert issuer.next_code(SalesOrder, SALES_ORDER_PREFIX, on) == "SO2603000003"
    assert issuer.next_code(SalesOrder, SALES_ORDER_PREFIX, date(2026, 5, 1)) == "SO2605000001"
    assert issuer.next_counter(SalesOrder) == 2
    assert issuer.next_counter(SalesOrder) == 3
    db_session.rollback()


def test_issuer_continues_above_codes_given_by_caller(db_session, ref):
    issuer = DocumentNumberIssuer(db_session)
    on = date(2026, 3, 10)
    assert issuer.next_code(SalesOrder, SALES_ORDER_PREFIX, on) == "SO2603000001"
    assert issuer.observe(SalesOrder, SALES_ORDER_PREFIX, on, "SO2603000002") == "SO2603000002"
    assert issuer.next_code(SalesOrder, SALES_ORDER_PREFIX, on) == "SO2603000003"

    # code d'un autre mois ou hors format : sans effet
    issuer.observe(SalesOrder, SALES_ORDER_PREFIX, on, "SO2604000009")
    issuer.observe(SalesOrder, SALES_ORDER_PREFIX, on, "LEGACY-7")
    assert issuer.next_code(SalesOrder, SALES_ORDER_PREFIX, on) == "SO2603000004"


def test_given_code_seen_before_any_issue_still_counts(db_session, ref):
    issuer = DocumentNumberIssuer(db_session)
    on = date(2026, 3, 10)
    issuer.observe(SalesOrder, SALES_ORDER_PREFIX, on, "SO2603000005")
    assert issuer.next_code(SalesOrder, SALES_ORDER_PREFIX, on) == "SO2603000006"


def test_non_conforming_code_with_highest_counter_is_skipped(db_session, make_sales_order):
    make_sales_order(1, on=date(2026, 3, 2))
    legacy = make_sales_order(1, on=date(2026, 3, 3))
    legacy.id2 = "LEGACY-7"
    db_session.commit()

    assert make_sales_order(1, on=date(2026, 3, 4)).id2 == "SO2603000002"
