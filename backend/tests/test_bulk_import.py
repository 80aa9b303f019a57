from datetime import datetime
from decimal import Decimal
from io import BytesIO

import pytest
from openpyxl import Workbook, load_workbook
from sqlalchemy import func, select

from backend.app.db.models.models_v1 import (
    Attachment,
    FulfilmentLog,
    InventoryItem,
    PurchaseOrder,
    SalesOrder,
)
from backend.app.db.models.core_types import PurchaseOrderStage, SalesOrderStage
from backend.services.bulk_import import (
    HEADER_MAPPING,
    Lookups,
    RowRejected,
    import_bulk_orders,
    parse_row,
)

HEADERS = [
    "ORDER ID", "DATE", "CUSTOMER NAME", "SITE REF", "CURRENCY", "ITEM ID", "SALES DESCRIPTION", "UNIT",
    "QTY", "PRICE", "PO DATE", "SUPPLIER NAME", "PAYMENT TERMS", "PURCHASE DESCRIPTION", "PURCHASE UNIT",
    "PURCHASE QTY", "PURCHASE PRICE", "GST RATE", "HSN CODE", "QUANTITY IN INVENTORY",
]


def sales_row(**overrides):
    row = {
        "DATE": datetime(2026, 3, 10),
        "CUSTOMER NAME": "ACME",
        "CURRENCY": "INR",
        "SALES DESCRIPTION": "Flange",
        "UNIT": "NOS",
        "QTY": 4,
        "PRICE": 100,
    }
    row.update(overrides)
    return row


def purchase_row(**overrides):
    row = sales_row(
        **{
            "PO DATE": datetime(2026, 3, 11),
            "SUPPLIER NAME": "Steelco",
            "PAYMENT TERMS": "30 days credit",
            "PURCHASE DESCRIPTION": "Flange",
            "PURCHASE UNIT": "NOS",
            "PURCHASE QTY": 4,
            "PURCHASE PRICE": 60,
            "GST RATE": 18,
            "HSN CODE": "7307",
        }
    )
    row.update(overrides)
    return row


def _workbook(rows) -> bytes:
    wb = Workbook()
    ws = wb.active
    ws.append(HEADERS)
    for row in rows:
        ws.append([row.get(h) for h in HEADERS])
    out = BytesIO()
    wb.save(out)
    return out.getvalue()


@pytest.fixture
def run_import(db_session, ref, storage):
    def _run(rows):
        url = storage.add_file("orders.xlsx", _workbook(rows))
        attachment = Attachment(original_filename="orders.xlsx", new_filename="orders.xlsx", url=url)
        db_session.add(attachment)
        db_session.commit()
        return import_bulk_orders(db_session, storage, attachment.id, actor_id=ref.admin_id)

    return _run


def _count(db, model) -> int:
    return db.scalar(select(func.count()).select_from(model))


def test_import_creates_orders_and_prefilled_inventory(db_session, storage, run_import):
    result = run_import(
        [
            purchase_row(**{"ITEM ID": "FL-1", "QUANTITY IN INVENTORY": 4}),
            purchase_row(**{"SALES DESCRIPTION": "Bolt", "QTY": 10, "PURCHASE QTY": 10, "QUANTITY IN INVENTORY": 10}),
        ]
    )

    assert result.message == "Done"
    assert result.error_file is None

    so = db_session.scalar(select(SalesOrder))
    assert so.id2 == "SO2603000001"
    assert so.stage == SalesOrderStage.open
    assert so.total_amount == Decimal("1400.00")
    assert [i.item_id for i in so.items] == ["FL-1", "0000000002"]

    po = db_session.scalar(select(PurchaseOrder))
    assert po.id2 == "PO2603000001"
    assert po.stage == PurchaseOrderStage.fulfilment
    assert [i.sales_order_item_id for i in po.items] == [i.id for i in so.items]
    assert [i.inventory_item.quantity for i in po.items] == [Decimal("4"), Decimal("10")]

    logs = db_session.execute(select(FulfilmentLog)).scalars().all()
    assert len(logs) == 2
    assert all(l.invoice_id.startswith("BULK-") for l in logs)

    # la pièce jointe source est consommée
    assert _count(db_session, Attachment) == 0
    assert list(storage.root.iterdir()) == []


def test_rows_are_grouped_by_order_key(db_session, run_import):
    result = run_import(
        [
            sales_row(),
            sales_row(**{"SALES DESCRIPTION": "Bolt"}),
            sales_row(**{"DATE": datetime(2026, 3, 12)}),
            sales_row(**{"ORDER ID": "LEGACY-7"}),
        ]
    )

    assert result.message == "Done"
    orders = db_session.execute(select(SalesOrder).order_by(SalesOrder.id)).scalars().all()
    assert [o.id2 for o in orders] == ["SO2603000001", "SO2603000002", "LEGACY-7"]
    assert [len(o.items) for o in orders] == [2, 1, 1]
    assert all(o.stage == SalesOrderStage.pending for o in orders)


def test_given_order_id_is_not_issued_again(db_session, run_import):
    result = run_import(
        [
            sales_row(),
            sales_row(**{"ORDER ID": "SO2603000002", "DATE": datetime(2026, 3, 11)}),
            sales_row(**{"DATE": datetime(2026, 3, 12)}),
        ]
    )

    assert result.message == "Done"
    codes = db_session.execute(select(SalesOrder.id2).order_by(SalesOrder.id)).scalars().all()
    assert codes == ["SO2603000001", "SO2603000002", "SO2603000003"]


def test_purchase_order_stays_open_when_a_line_is_not_prefilled(db_session, run_import):
    run_import(
        [
            purchase_row(**{"QUANTITY IN INVENTORY": 4}),
            purchase_row(**{"SALES DESCRIPTION": "Bolt"}),
        ]
    )

    po = db_session.scalar(select(PurchaseOrder))
    assert po.stage == PurchaseOrderStage.open
    assert _count(db_session, InventoryItem) == 1


def test_declared_inventory_is_capped_to_ordered_quantity(db_session, run_import):
    run_import([purchase_row(**{"QUANTITY IN INVENTORY": 9})])

    po = db_session.scalar(select(PurchaseOrder))
    assert po.items[0].inventory_item.quantity == Decimal("4")
    assert po.stage == PurchaseOrderStage.open


def test_null_marker_is_treated_as_empty(db_session, run_import):
    result = run_import([sales_row(**{"ORDER ID": "NULL", "SITE REF": "NULL"})])

    assert result.message == "Done"
    so = db_session.scalar(select(SalesOrder))
    assert so.id2 == "SO2603000001"
    assert so.site_id is None


def test_invalid_row_returns_annotated_file_and_creates_nothing(db_session, storage, run_import):
    result = run_import(
        [
            sales_row(),
            sales_row(**{"CUSTOMER NAME": "Nobody"}),
            purchase_row(**{"HSN CODE": "123456789"}),
        ]
    )

    assert result.message is None
    assert result.error_file
    assert _count(db_session, SalesOrder) == 0

    # seul le fichier d'erreur reste en pièce jointe
    attachment = db_session.scalar(select(Attachment))
    assert attachment.url == result.error_file
    assert attachment.original_filename.startswith("Error-Import-Bulk Order-")

    ws = load_workbook(BytesIO(storage.get_file(result.error_file))).active
    error_col = len(HEADERS) + 1
    assert ws.cell(row=1, column=error_col).value == "Error"
    assert ws.cell(row=2, column=error_col).value is None
    assert ws.cell(row=3, column=error_col).value == "Invalid CUSTOMER NAME"
    assert ws.cell(row=4, column=error_col).value == "HSN CODE must be at most 8 characters"


def test_failure_during_creation_rolls_back_everything(db_session, run_import):
    assert run_import([sales_row(**{"ORDER ID": "DUP-1"})]).message == "Done"

    result = run_import(
        [
            sales_row(**{"ORDER ID": "NEW-1"}),
            sales_row(**{"ORDER ID": "DUP-1"}),
        ]
    )

    assert result.error_file
    assert [o.id2 for o in db_session.execute(select(SalesOrder)).scalars()] == ["DUP-1"]


def test_missing_attachment(db_session, storage):
    assert import_bulk_orders(db_session, storage, 12345).message == "No attachment"


@pytest.mark.parametrize(
    "make_row, overrides, message",
    [
        (sales_row, {"DATE": None}, "DATE is required"),
        (sales_row, {"DATE": "not a date"}, "Invalid DATE"),
        (sales_row, {"UNIT": "BARREL"}, "Invalid UNIT"),
        (sales_row, {"QTY": "ten"}, "Invalid QUANTITY"),
        (sales_row, {"SITE REF": "Plant 9"}, "Invalid SITE REF"),
        (sales_row, {"CURRENCY": "XYZ"}, "Invalid Currency"),
        (sales_row, {"PO DATE": "2026-03-11", "SUPPLIER NAME": None}, "SUPPLIER NAME is required"),
        (purchase_row, {"PAYMENT TERMS": "Net 90"}, "Invalid PAYMENT TERMS"),
        (purchase_row, {"GST RATE": 7}, "Invalid GST RATE"),
        (purchase_row, {"PURCHASE QTY": None}, "PURCHASE QTY is required"),
    ],
)
def test_row_validation_messages(db_session, ref, make_row, overrides, message):
    raw = {HEADER_MAPPING[k]: v for k, v in make_row(**overrides).items() if v is not None}
    with pytest.raises(RowRejected, match=message):
        parse_row(2, raw, Lookups.load(db_session))


def test_row_parsing_applies_timezone_offset(db_session, ref):
    raw = {HEADER_MAPPING[k]: v for k, v in sales_row(DATE=datetime(2026, 3, 31, 22, 0)).items()}
    row = parse_row(2, raw, Lookups.load(db_session), timezone_offset=150, actor_id=ref.admin_id)

    assert row.date.isoformat() == "2026-04-01"
    assert row.representative_user_id == ref.admin_id
    assert row.has_purchase is False
