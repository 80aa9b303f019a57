from dataclasses import dataclass
from datetime import date
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, select
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from backend.app.api.deps import get_db, get_storage
from backend.app.db.base import Base
from backend.app.db.models.models_v1 import (
    Currency,
    Customer,
    CustomerSite,
    GstRate,
    PaymentTerm,
    Supplier,
    Unit,
    User,
)
from backend.app.db.seed import seed_reference_data
from backend.app.schemas.fulfilment import FulfilmentCreate, ReceiptLineCreate
from backend.app.schemas.orders import (
    PurchaseOrderFromSalesOrder,
    PurchaseOrderLineCreate,
    SalesOrderCreate,
    SalesOrderLineCreate,
)
from backend.services.fulfilment import record_fulfilment
from backend.services.procurement import create_purchase_orders_from_sales_order
from backend.services.sales import create_sales_order
from backend.services.storage import LocalObjectStorage

ORDER_DATE = date(2026, 3, 10)


@pytest.fixture(scope="function")
def engine():
    """
    Base SQLite en mémoire, recréée pour chaque test.
    StaticPool : une seule connexion, donc la même base pour toutes les sessions.
    """
    eng = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=eng)
    yield eng
    eng.dispose()


@pytest.fixture(scope="function")
def db_session(engine) -> Session:
    session = sessionmaker(bind=engine, autoflush=False)()
    try:
        yield session
    finally:
        session.close()


@dataclass
class Ref:
    admin_id: int
    unit_id: int
    gst_rate_id: int
    currency_id: int
    payment_term_id: int
    customer_id: int
    site_id: int
    other_customer_id: int
    supplier_id: int
    supplier_without_terms_id: int


@pytest.fixture
def ref(db_session) -> Ref:
    """Référentiel minimal : seed + un client avec site + deux fournisseurs."""
    seed_reference_data(db_session)

    def one(model, column, value):
        return db_session.scalar(select(model).where(column == value))

    payment_term = one(PaymentTerm, PaymentTerm.name, "30 days credit")
    customer = Customer(name="ACME", sites=[CustomerSite(name="Plant 1")])
    other = Customer(name="Globex")
    supplier = Supplier(name="Steelco", payment_term_id=payment_term.id)
    no_terms = Supplier(name="Cashonly")
    db_session.add_all([customer, other, supplier, no_terms])
    db_session.commit()

    return Ref(
        admin_id=one(User, User.name, "ADMIN").id,
        unit_id=one(Unit, Unit.name, "NOS").id,
        gst_rate_id=one(GstRate, GstRate.rate, Decimal("18")).id,
        currency_id=one(Currency, Currency.name, "INR").id,
        payment_term_id=payment_term.id,
        customer_id=customer.id,
        site_id=customer.sites[0].id,
        other_customer_id=other.id,
        supplier_id=supplier.id,
        supplier_without_terms_id=no_terms.id,
    )


@pytest.fixture
def make_sales_order(db_session, ref):
    def _make(*quantities, on: date = ORDER_DATE, price: str = "100", customer_id: int | None = None):
        payload = SalesOrderCreate(
            date=on,
            customer_id=customer_id or ref.customer_id,
            currency_id=ref.currency_id,
            line_items=[
                SalesOrderLineCreate(description=f"Item {i}", unit_id=ref.unit_id, price=Decimal(price), quantity=q)
                for i, q in enumerate(quantities, start=1)
            ],
        )
        return create_sales_order(db_session, payload, actor_id=ref.admin_id)

    return _make


@pytest.fixture
def make_purchase_order(db_session, ref):
    """lines : [(sales_order_item, quantité commandée), ...]"""

    def _make(so, lines, *, on: date = ORDER_DATE, supplier_id: int | None = None):
        payload = PurchaseOrderFromSalesOrder(
            date=on,
            supplier_id=supplier_id or ref.supplier_id,
            currency_id=ref.currency_id,
            sales_order_id=so.id,
            line_items=[
                PurchaseOrderLineCreate(
                    sales_order_item_id=soi.id,
                    description=soi.description,
                    unit_id=ref.unit_id,
                    price=Decimal("60"),
                    quantity=qty,
                    gst_rate_id=ref.gst_rate_id,
                    hsn_code="7308",
                )
                for soi, qty in lines
            ],
        )
        return create_purchase_orders_from_sales_order(db_session, [payload], actor_id=ref.admin_id)[0]

    return _make


@pytest.fixture
def receive(db_session, ref):
    """lines : [(purchase_order_item, quantité reçue), ...]"""

    def _receive(po, lines, *, invoice_id: str = "SUP-INV-1"):
        payload = FulfilmentCreate(
            purchase_order_id=po.id,
            gate_entry_number="GE-1",
            supplier_id=po.supplier_id,
            invoice_id=invoice_id,
            items=[
                ReceiptLineCreate(
                    purchase_order_item_id=poi.id,
                    quantity=qty,
                    hsn_code=poi.hsn_code,
                    gst_rate_id=poi.gst_rate_id,
                )
                for poi, qty in lines
            ],
        )
        return record_fulfilment(db_session, payload, actor_id=ref.admin_id)

    return _receive


@pytest.fixture
def storage(tmp_path) -> LocalObjectStorage:
    return LocalObjectStorage(tmp_path / "storage")


@pytest.fixture
def client(engine, storage):
    from backend.app.main import app

    TestingSession = sessionmaker(bind=engine, autoflush=False)

    def override_get_db():
        db = TestingSession()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_storage] = lambda: storage
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()
