from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import select

from backend.app.db.models.models_v1 import Inquiry, PurchaseOrder, SalesOrder
from backend.app.db.models.core_types import (
    InquiryResult,
    PurchaseOrderStage,
    SalesOrderStage,
)
from backend.app.schemas.invoice import InvoiceCreate, InvoiceLineCreate
from backend.app.schemas.orders import (
    PurchaseOrderExpenseUpdate,
    PurchaseOrderFromSalesOrder,
    PurchaseOrderLineCreate,
    PurchaseOrderLineUpdate,
    PurchaseOrderUpdate,
    SalesOrderCreate,
    SalesOrderExpenseCreate,
    SalesOrderExpenseUpdate,
    SalesOrderLineCreate,
    SalesOrderLineUpdate,
    SalesOrderUpdate,
)
from backend.services.errors import ConsistencyError, MissingPaymentTermError, NotFoundError
from backend.services.invoicing import create_invoice
from backend.services.procurement import (
    approve_purchase_order,
    create_purchase_orders_from_sales_order,
    list_purchase_orders,
    list_unfulfilled_line_items,
    list_unfulfilled_purchase_orders,
    update_purchase_order,
)
from backend.services.sales import (
    approve_sales_order,
    create_sales_order,
    list_uninvoiced_line_items,
    list_sales_orders,
    list_uninvoiced_sales_orders,
    update_sales_order,
)


def test_create_sales_order_totals_expenses_and_inquiries(db_session, ref):
    inquiry = Inquiry(customer_id=ref.customer_id, description="Need 10 valves")
    db_session.add(inquiry)
    db_session.commit()

    payload = SalesOrderCreate(
        date=date(2026, 3, 1),
        customer_id=ref.customer_id,
        currency_id=ref.currency_id,
        site_id=ref.site_id,
        line_items=[
            SalesOrderLineCreate(
                inquiry_id=inquiry.id, item_id="VALVE-1", description="Valve", unit_id=ref.unit_id,
                price=Decimal("12.50"), quantity=Decimal("10"),
            ),
            SalesOrderLineCreate(description="Gasket", unit_id=ref.unit_id, price=Decimal("0.333"), quantity=3),
        ],
        expenses=[SalesOrderExpenseCreate(description="Packing", price=Decimal("40"))],
    )
    so = create_sales_order(db_session, payload, actor_id=ref.admin_id)

    assert so.stage == SalesOrderStage.pending
    assert so.total_amount == Decimal("126.00")
    assert [i.item_id for i in so.items] == ["VALVE-1", "0000000002"]
    assert so.expenses[0].description == "Packing"
    assert so.representative_user_id == ref.admin_id
    assert db_session.get(Inquiry, inquiry.id).result == InquiryResult.ordered


def test_purchase_order_requires_supplier_payment_term(db_session, ref, make_sales_order, make_purchase_order):
    so = make_sales_order(2)
    with pytest.raises(MissingPaymentTermError):
        make_purchase_order(so, [(so.items[0], 2)], supplier_id=ref.supplier_without_terms_id)
    assert db_session.scalar(select(PurchaseOrder)) is None


def test_purchase_order_lines_must_belong_to_the_sales_order(db_session, ref, make_sales_order):
    so = make_sales_order(2)
    other = make_sales_order(2)
    payload = PurchaseOrderFromSalesOrder(
        date=date(2026, 3, 10),
        supplier_id=ref.supplier_id,
        currency_id=ref.currency_id,
        sales_order_id=so.id,
        line_items=[
            PurchaseOrderLineCreate(
                sales_order_item_id=other.items[0].id, description="x", unit_id=ref.unit_id,
                price=Decimal("1"), quantity=1,
            )
        ],
    )
    with pytest.raises(NotFoundError):
        create_purchase_orders_from_sales_order(db_session, [payload])


def test_purchase_order_creation_opens_sales_order(db_session, ref, make_sales_order, make_purchase_order):
    so = make_sales_order(2, 3)

    po = make_purchase_order(so, [(so.items[0], 2)])
    assert po.id2 == "PO2603000001"
    assert po.stage == PurchaseOrderStage.open
    assert po.payment_term_id == ref.payment_term_id
    assert po.items[0].item_id == so.items[0].item_id
    assert db_session.get(SalesOrder, so.id).stage == SalesOrderStage.pending

    make_purchase_order(so, [(so.items[1], 3)])
    assert db_session.get(SalesOrder, so.id).stage == SalesOrderStage.open


def test_approve_orders(db_session, ref, make_sales_order, make_purchase_order):
    so = make_sales_order(1)
    po = make_purchase_order(so, [(so.items[0], 1)])

    assert approve_sales_order(db_session, so.id, actor_id=ref.admin_id).approved is True
    assert approve_purchase_order(db_session, po.id, actor_id=ref.admin_id).approved is True
    with pytest.raises(NotFoundError):
        approve_sales_order(db_session, 404)


def test_uninvoiced_listing_reports_remaining_and_available(
    db_session, ref, make_sales_order, make_purchase_order, receive
):
    so = make_sales_order(8, 2)
    make_sales_order(1, customer_id=ref.other_customer_id)
    po = make_purchase_order(so, [(so.items[0], 8), (so.items[1], 2)])
    receive(po, [(po.items[0], 5)])

    orders = list_uninvoiced_sales_orders(db_session, ref.customer_id)
    assert [o.id for o in orders] == [so.id]

    lines = list_uninvoiced_line_items(db_session, [so.id])
    assert [(l["remaining"], l["available"]) for l in lines] == [
        (Decimal("8"), Decimal("5")),
        (Decimal("2"), Decimal("0")),
    ]


def test_unfulfilled_listing(db_session, ref, make_sales_order, make_purchase_order, receive):
    so = make_sales_order(4, 4)
    po = make_purchase_order(so, [(so.items[0], 4), (so.items[1], 4)])
    receive(po, [(po.items[0], 4), (po.items[1], 1)])

    assert [p.id for p in list_unfulfilled_purchase_orders(db_session, ref.supplier_id)] == [po.id]
    lines = list_unfulfilled_line_items(db_session, [po.id])
    assert [(l["purchase_order_item_id"], l["received"]) for l in lines] == [(po.items[1].id, Decimal("1"))]

    receive(po, [(po.items[1], 3)], invoice_id="SUP-INV-2")
    assert list_unfulfilled_purchase_orders(db_session, ref.supplier_id) == []


def _so_update(so, quantities, *, on=date(2026, 3, 10), price=None, expenses=()):
    return SalesOrderUpdate(
        date=on,
        line_items=[
            SalesOrderLineUpdate(
                id=item.id, description=item.description, unit_id=item.unit_id,
                price=Decimal(price) if price else item.price, quantity=qty,
            )
            for item, qty in zip(so.items, quantities)
        ],
        expenses=list(expenses),
    )


def _po_update(po, quantities, ref, *, payment_term_id=None, expenses=()):
    return PurchaseOrderUpdate(
        date=po.date,
        payment_term_id=payment_term_id or ref.payment_term_id,
        line_items=[
            PurchaseOrderLineUpdate(
                id=item.id, description=item.description, unit_id=item.unit_id, price=item.price,
                quantity=qty, gst_rate_id=item.gst_rate_id, hsn_code=item.hsn_code,
            )
            for item, qty in zip(po.items, quantities)
        ],
        expenses=list(expenses),
    )


def test_update_sales_order_recomputes_total_and_keeps_number(db_session, ref, make_sales_order):
    so = make_sales_order(2, 3)

    payload = _so_update(
        so, [4, 3], on=date(2026, 4, 2), price="50",
        expenses=[SalesOrderExpenseUpdate(description="Freight", price=Decimal("25"))],
    )
    so = update_sales_order(db_session, so.id, payload, actor_id=ref.admin_id)

    assert so.id2 == "SO2603000001"
    assert so.date == date(2026, 4, 2)
    assert so.total_amount == Decimal("350.00")
    assert so.representative_user_id == ref.admin_id
    assert [e.description for e in so.expenses] == ["Freight"]

    renamed = SalesOrderExpenseUpdate(id=so.expenses[0].id, description="Freight (road)", price=Decimal("30"))
    so = update_sales_order(db_session, so.id, _so_update(so, [4, 3], expenses=[renamed]))
    assert [(e.description, e.price) for e in so.expenses] == [("Freight (road)", Decimal("30"))]


def test_sales_order_line_cannot_drop_below_invoiced(
    db_session, ref, make_sales_order, make_purchase_order, receive
):
    so = make_sales_order(5)
    po = make_purchase_order(so, [(so.items[0], 5)])
    receive(po, [(po.items[0], 5)])
    create_invoice(
        db_session,
        InvoiceCreate(
            date=date(2026, 3, 15),
            customer_id=ref.customer_id,
            currency_id=ref.currency_id,
            conversion_rate=Decimal("1"),
            items=[InvoiceLineCreate(sales_order_item_id=so.items[0].id, quantity=3)],
        ),
        actor_id=ref.admin_id,
    )

    with pytest.raises(ConsistencyError, match="below invoiced"):
        update_sales_order(db_session, so.id, _so_update(so, [2]))
    db_session.expire_all()
    assert so.items[0].quantity == Decimal("5")

    so = update_sales_order(db_session, so.id, _so_update(so, [3]))
    assert so.stage == SalesOrderStage.closed


def test_update_sales_order_rejects_foreign_line(db_session, ref, make_sales_order):
    so = make_sales_order(1)
    other = make_sales_order(1)
    with pytest.raises(NotFoundError):
        update_sales_order(db_session, so.id, _so_update(other, [1]))


def test_purchase_order_line_cannot_drop_below_received(
    db_session, ref, make_sales_order, make_purchase_order, receive
):
    so = make_sales_order(10)
    po = make_purchase_order(so, [(so.items[0], 10)])
    receive(po, [(po.items[0], 6)])

    with pytest.raises(ConsistencyError, match="below received"):
        update_purchase_order(db_session, po.id, _po_update(po, [5], ref))
    db_session.expire_all()
    assert po.items[0].quantity == Decimal("10")
    assert po.stage == PurchaseOrderStage.fulfilment

    po = update_purchase_order(db_session, po.id, _po_update(po, [6], ref), actor_id=ref.admin_id)
    assert po.stage == PurchaseOrderStage.closed
    assert po.total_amount == Decimal("360.00")


def test_purchase_order_update_drops_unlisted_expenses(db_session, ref, make_sales_order, make_purchase_order):
    so = make_sales_order(2)
    po = make_purchase_order(so, [(so.items[0], 2)])

    po = update_purchase_order(
        db_session,
        po.id,
        _po_update(
            po, [2], ref,
            expenses=[
                PurchaseOrderExpenseUpdate(description="Freight", price=Decimal("10")),
                PurchaseOrderExpenseUpdate(description="Loading", price=Decimal("5"), show_in_fulfilment=True),
            ],
        ),
    )
    loading = next(e for e in po.expenses if e.description == "Loading")

    kept = PurchaseOrderExpenseUpdate(id=loading.id, description="Loading", price=Decimal("7"))
    po = update_purchase_order(db_session, po.id, _po_update(po, [2], ref, expenses=[kept]))
    assert [(e.description, e.price, e.show_in_fulfilment) for e in po.expenses] == [
        ("Loading", Decimal("7"), False)
    ]

    with pytest.raises(NotFoundError):
        missing = PurchaseOrderExpenseUpdate(id=9999, description="Ghost", price=Decimal("1"))
        update_purchase_order(db_session, po.id, _po_update(po, [2], ref, expenses=[missing]))
    with pytest.raises(NotFoundError):
        update_purchase_order(db_session, po.id, _po_update(po, [2], ref, payment_term_id=9999))


def test_list_sales_orders_search_stage_and_pages(db_session, ref, make_sales_order, make_purchase_order):
    first = make_sales_order(1)
    second = make_sales_order(1)
    third = make_sales_order(1)
    globex = make_sales_order(1, customer_id=ref.other_customer_id)
    make_purchase_order(second, [(second.items[0], 1)])

    total, rows = list_sales_orders(db_session, search="glob")
    assert (total, [r.id for r in rows]) == (1, [globex.id])

    total, rows = list_sales_orders(db_session, stage=SalesOrderStage.open)
    assert (total, [r.id for r in rows]) == (1, [second.id])

    total, rows = list_sales_orders(db_session, page=2, limit=2)
    assert total == 4
    assert [r.id for r in rows] == [second.id, first.id]

    total, rows = list_sales_orders(db_session, search=third.id2)
    assert [r.id for r in rows] == [third.id]


def test_list_purchase_orders_by_supplier_and_stage(
    db_session, ref, make_sales_order, make_purchase_order, receive
):
    so = make_sales_order(3, 3)
    open_po = make_purchase_order(so, [(so.items[0], 3)])
    received_po = make_purchase_order(so, [(so.items[1], 3)])
    receive(received_po, [(received_po.items[0], 1)])

    total, rows = list_purchase_orders(db_session, supplier_id=ref.supplier_id)
    assert (total, [r.id for r in rows]) == (2, [received_po.id, open_po.id])

    total, rows = list_purchase_orders(db_session, stage=PurchaseOrderStage.fulfilment)
    assert [r.id for r in rows] == [received_po.id]

    total, rows = list_purchase_orders(db_session, search="steel")
    assert total == 2
    assert list_purchase_orders(db_session, supplier_id=ref.supplier_without_terms_id) == (0, [])
