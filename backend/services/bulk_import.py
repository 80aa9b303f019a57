"""
Import bulk des commandes (fichier Excel).

Une ligne du classeur = une ligne de SO, éventuellement doublée d'une
ligne de PO (si PO DATE est renseignée) et d'un stock déjà reçu
(QUANTITY IN INVENTORY).

Deux phases :
    1. validation de TOUTES les lignes ; la première erreur de chaque
       ligne est écrite dans une colonne "Error" ajoutée à la fin
    2. si aucune erreur : création de tout dans UNE transaction

En cas d'erreur (validation ou transaction) : rien n'est créé, le
classeur annoté est renvoyé comme fichier d'erreur.
"""

from __future__ import annotations

import logging
import time
import uuid
from collections import defaultdict
from dataclasses import dataclass
from datetime import date, datetime, time as dtime, timedelta
from decimal import Decimal, InvalidOperation
from io import BytesIO
from zipfile import BadZipFile

from openpyxl import load_workbook
from openpyxl.styles import Border, Font, PatternFill, Side
from openpyxl.utils.datetime import from_excel
from openpyxl.utils.exceptions import InvalidFileException
from openpyxl.workbook import Workbook
from openpyxl.worksheet.worksheet import Worksheet
from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from backend.app.db.models.models_v1 import (
    Attachment,
    Currency,
    Customer,
    FulfilmentLog,
    FulfilmentLogItem,
    GstRate,
    InventoryItem,
    PaymentTerm,
    PurchaseOrder,
    PurchaseOrderItem,
    SalesOrder,
    SalesOrderItem,
    Supplier,
    Unit,
    User,
)
from backend.app.db.models.core_types import PurchaseOrderStage, SalesOrderStage
from backend.services.errors import ValidationError
from backend.services.inventory import ZERO, money, q3
from backend.services.sales import build_sales_order_item, order_total
from backend.services.sequence import (
    PURCHASE_ORDER_PREFIX,
    SALES_ORDER_PREFIX,
    DocumentNumberIssuer,
)
from backend.services.stages import refresh_sales_order_stage
from backend.services.storage import ObjectStorage
from backend.services.uow import transaction

logger = logging.getLogger(__name__)

HEADER_MAPPING = {
    "ORDER ID": "id2",
    "CUSTOMER REFERENCE ID": "reference_id",
    "DATE": "date",
    "REPRESENTATIVE USER": "representative_user",
    "CURRENCY": "currency",
    "CUSTOMER NAME": "customer",
    "PR NUMBER & NAME": "pr_number_and_name",
    "SITE REF": "site",
    "ITEM ID": "item_id",
    "SALES DESCRIPTION": "description",
    "SIZE/SPECIFICATION": "size",
    "UNIT": "unit",
    "QTY": "quantity",
    "PRICE": "price",
    "PURCHASE ORDER ID": "po_id2",
    "PO DATE": "po_date",
    "PO REPRESENTATIVE USER": "po_representative_user",
    "SUPPLIER REFERENCE ID": "po_reference_id",
    "SUPPLIER NAME": "supplier",
    "PAYMENT TERMS": "payment_terms",
    "SAP CODE": "sap_code",
    "PURCHASE DESCRIPTION": "purchase_description",
    "PURCHASE SIZE/SPECIFICATION": "purchase_size",
    "PURCHASE UNIT": "purchase_unit",
    "PURCHASE QTY": "purchase_quantity",
    "PURCHASE PRICE": "purchase_price",
    "GST RATE": "gst_rate",
    "HSN CODE": "hsn_code",
    "QUANTITY IN INVENTORY": "quantity_in_inventory",
}
NULL_MARKER = "NULL"
ERROR_HEADER = "Error"
HSN_CODE_MAX_LENGTH = 8


@dataclass
class BulkImportResult:
    message: str | None = None
    error_file: str | None = None


class RowRejected(ValueError):
    """Première erreur d'une ligne ; le message va dans la colonne Error."""


@dataclass
class ImportRow:
    row_number: int
    date: date
    customer_id: int
    currency_id: int
    description: str
    unit_id: int
    quantity: Decimal
    price: Decimal
    representative_user_id: int | None
    id2: str | None = None
    reference_id: str | None = None
    pr_number_and_name: str | None = None
    site_id: int | None = None
    item_id: str | None = None
    size: str | None = None
    quantity_in_inventory: Decimal | None = None

    # achat (seulement si PO DATE)
    po_date: date | None = None
    po_id2: str | None = None
    po_reference_id: str | None = None
    po_representative_user_id: int | None = None
    supplier_id: int | None = None
    payment_term_id: int | None = None
    sap_code: str | None = None
    purchase_description: str | None = None
    purchase_size: str | None = None
    purchase_unit_id: int | None = None
    purchase_quantity: Decimal | None = None
    purchase_price: Decimal | None = None
    gst_rate_id: int | None = None
    hsn_code: str | None = None

    @property
    def has_purchase(self) -> bool:
        return bool(self.supplier_id and self.payment_term_id and self.po_date)


@dataclass
class Lookups:
    """Référentiels indexés par nom, chargés une fois par import."""

    users: dict[str, int]
    customers: dict[str, Customer]
    units: dict[str, int]
    currencies: dict[str, int]
    suppliers: dict[str, int]
    payment_terms: dict[str, int]
    gst_rates: dict[Decimal, int]

    @classmethod
    def load(cls, db: Session) -> "Lookups":
        def by_name(model) -> dict[str, int]:
            return {r.name: int(r.id) for r in db.execute(select(model)).scalars()}

        customers = db.execute(select(Customer).options(selectinload(Customer.sites))).scalars().all()
        return cls(
            users=by_name(User),
            customers={c.name: c for c in customers},
            units=by_name(Unit),
            currencies=by_name(Currency),
            suppliers=by_name(Supplier),
            payment_terms=by_name(PaymentTerm),
            gst_rates={Decimal(g.rate): int(g.id) for g in db.execute(select(GstRate)).scalars()},
        )


# ---------- Lecture des cellules ----------
def _missing(value) -> bool:
    return value is None or value == "" or value == 0


def _text(value) -> str | None:
    if value is None or value == "":
        return None
    if isinstance(value, float) and value.is_integer():
        # Excel renvoie 123.0 pour un code saisi 123
        return str(int(value))
    return str(value).strip()


def _decimal(value, message: str) -> Decimal:
    try:
        parsed = Decimal(str(value).strip())
    except InvalidOperation:
        raise RowRejected(message) from None
    if not parsed.is_finite():
        raise RowRejected(message)
    return parsed


def _date(value, offset_minutes: int, message: str) -> date:
    try:
        if isinstance(value, datetime):
            moment = value
        elif isinstance(value, date):
            moment = datetime.combine(value, dtime())
        elif isinstance(value, (int, float)):
            moment = from_excel(value)
        else:
            text = str(value).strip()
            try:
                moment = datetime.fromisoformat(text)
            except ValueError:
                moment = datetime.strptime(text, "%d/%m/%Y")
    except (ValueError, TypeError, OverflowError):
        raise RowRejected(message) from None
    return (moment + timedelta(minutes=offset_minutes)).date()


def _lookup(table: dict, value, message: str):
    found = table.get(_text(value))
    if found is None:
        raise RowRejected(message)
    return found


def _require(raw: dict, field: str, message: str) -> None:
    if _missing(raw.get(field)):
        raise RowRejected(message)


def read_header(sheet: Worksheet) -> dict[int, str]:
    header: dict[int, str] = {}
    for cell in sheet[1]:
        if cell.value is None:
            continue
        field = HEADER_MAPPING.get(str(cell.value).strip())
        if field:
            header[cell.column] = field
    return header


def read_row(cells, header: dict[int, str]) -> dict | None:
    """Valeurs mappées d'une ligne ; None si aucune colonne connue n'est remplie."""
    raw: dict = {}
    for cell in cells:
        field = header.get(cell.column)
        if field is None or cell.value is None or cell.value == "":
            continue
        raw[field] = None if cell.value == NULL_MARKER else cell.value
    return raw or None


# ---------- Validation ----------
def parse_row(
    row_number: int,
    raw: dict,
    lookups: Lookups,
    *,
    timezone_offset: int = 0,
    actor_id: int | None = None,
) -> ImportRow:
    _require(raw, "date", "DATE is required")
    _require(raw, "customer", "CUSTOMER NAME is required")
    _require(raw, "description", "SALES DESCRIPTION is required")
    _require(raw, "currency", "Currency is required")
    _require(raw, "unit", "UNIT is required")
    _require(raw, "quantity", "QUANTITY is required")
    _require(raw, "price", "PRICE is required")

    on = _date(raw["date"], timezone_offset, "Invalid DATE")

    representative_user_id = actor_id
    if not _missing(raw.get("representative_user")):
        representative_user_id = _lookup(lookups.users, raw["representative_user"], "Invalid REPRESENTATIVE USER")

    customer = _lookup(lookups.customers, raw["customer"], "Invalid CUSTOMER NAME")

    site_id = None
    if not _missing(raw.get("site")):
        site_name = _text(raw["site"])
        site = next((s for s in customer.sites if s.name == site_name), None)
        if site is None:
            raise RowRejected("Invalid SITE REF")
        site_id = int(site.id)

    unit_id = _lookup(lookups.units, raw["unit"], "Invalid UNIT")

    quantity = _decimal(raw["quantity"], "Invalid QUANTITY")
    if quantity <= ZERO:
        raise RowRejected("Invalid QUANTITY")
    price = _decimal(raw["price"], "Invalid PRICE")
    if price < ZERO:
        raise RowRejected("Invalid PRICE")

    currency_id = _lookup(lookups.currencies, raw["currency"], "Invalid Currency")

    quantity_in_inventory = None
    if not _missing(raw.get("quantity_in_inventory")):
        quantity_in_inventory = _decimal(raw["quantity_in_inventory"], "Invalid QUANTITY IN INVENTORY")
        if quantity_in_inventory < ZERO:
            raise RowRejected("Invalid QUANTITY IN INVENTORY")

    row = ImportRow(
        row_number=row_number,
        date=on,
        customer_id=int(customer.id),
        currency_id=currency_id,
        description=_text(raw["description"]),
        unit_id=unit_id,
        quantity=q3(quantity),
        price=money(price),
        representative_user_id=representative_user_id,
        id2=_text(raw.get("id2")),
        reference_id=_text(raw.get("reference_id")),
        pr_number_and_name=_text(raw.get("pr_number_and_name")),
        site_id=site_id,
        item_id=_text(raw.get("item_id")),
        size=_text(raw.get("size")),
        quantity_in_inventory=quantity_in_inventory,
    )

    if not _missing(raw.get("po_date")):
        _parse_purchase(row, raw, lookups, timezone_offset=timezone_offset, actor_id=actor_id)
    return row


def _parse_purchase(
    row: ImportRow,
    raw: dict,
    lookups: Lookups,
    *,
    timezone_offset: int,
    actor_id: int | None,
) -> None:
    row.po_date = _date(raw["po_date"], timezone_offset, "Invalid PO DATE")

    _require(raw, "supplier", "SUPPLIER NAME is required")
    _require(raw, "payment_terms", "PAYMENT TERMS is required")
    _require(raw, "purchase_description", "PURCHASE DESCRIPTION is required")
    _require(raw, "purchase_unit", "PURCHASE UNIT is required")
    _require(raw, "purchase_quantity", "PURCHASE QTY is required")
    _require(raw, "purchase_price", "PURCHASE PRICE is required")
    _require(raw, "gst_rate", "GST RATE is required")

    row.po_representative_user_id = actor_id
    if not _missing(raw.get("po_representative_user")):
        row.po_representative_user_id = _lookup(
            lookups.users, raw["po_representative_user"], "Invalid PO REPRESENTATIVE USER"
        )

    row.po_id2 = _text(raw.get("po_id2"))
    row.po_reference_id = _text(raw.get("po_reference_id"))
    row.supplier_id = _lookup(lookups.suppliers, raw["supplier"], "Invalid SUPPLIER NAME")
    row.payment_term_id = _lookup(lookups.payment_terms, raw["payment_terms"], "Invalid PAYMENT TERMS")
    row.purchase_description = _text(raw["purchase_description"])
    row.sap_code = _text(raw.get("sap_code"))
    row.purchase_size = _text(raw.get("purchase_size"))
    row.purchase_unit_id = _lookup(lookups.units, raw["purchase_unit"], "Invalid PURCHASE UNIT")

    purchase_quantity = _decimal(raw["purchase_quantity"], "Invalid PURCHASE QTY")
    if purchase_quantity <= ZERO:
        raise RowRejected("Invalid PURCHASE QTY")
    row.purchase_quantity = q3(purchase_quantity)

    purchase_price = _decimal(raw["purchase_price"], "Invalid PURCHASE PRICE")
    if purchase_price < ZERO:
        raise RowRejected("Invalid PURCHASE PRICE")
    row.purchase_price = money(purchase_price)

    gst_rate = _decimal(raw["gst_rate"], "Invalid GST RATE")
    row.gst_rate_id = lookups.gst_rates.get(gst_rate)
    if row.gst_rate_id is None:
        raise RowRejected("Invalid GST RATE")

    row.hsn_code = _text(raw.get("hsn_code"))
    if row.hsn_code and len(row.hsn_code) > HSN_CODE_MAX_LENGTH:
        raise RowRejected(f"HSN CODE must be at most {HSN_CODE_MAX_LENGTH} characters")


def parse_sheet(
    sheet: Worksheet,
    lookups: Lookups,
    *,
    timezone_offset: int = 0,
    actor_id: int | None = None,
) -> tuple[list[ImportRow], int]:
    """
    Valide toutes les lignes. Renvoie (lignes valides, nb de lignes rejetées) ;
    chaque rejet est annoté dans la colonne d'erreur.
    """
    header = read_header(sheet)
    error_column = sheet.max_column + 1

    rows: list[ImportRow] = []
    rejected = 0
    for cells in sheet.iter_rows(min_row=2):
        raw = read_row(cells, header)
        if raw is None:
            continue
        row_number = cells[0].row
        try:
            rows.append(
                parse_row(row_number, raw, lookups, timezone_offset=timezone_offset, actor_id=actor_id)
            )
        except RowRejected as exc:
            rejected += 1
            sheet.cell(row=row_number, column=error_column, value=str(exc))

    if rejected:
        _mark_error_header(sheet, error_column)
    return rows, rejected


def _mark_error_header(sheet: Worksheet, column: int) -> None:
    thin = Side(style="thin")
    cell = sheet.cell(row=1, column=column, value=ERROR_HEADER)
    cell.font = Font(bold=True)
    cell.fill = PatternFill(start_color="FFFF0000", end_color="FFFF0000", fill_type="solid")
    cell.border = Border(top=thin, bottom=thin, left=thin, right=thin)


# ---------- Création ----------
def _group(rows: list[ImportRow], key) -> list[list[ImportRow]]:
    groups: dict[tuple, list[ImportRow]] = defaultdict(list)
    for row in rows:
        groups[key(row)].append(row)
    return list(groups.values())


def _sales_key(row: ImportRow) -> tuple:
    return (
        row.id2 or "",
        row.reference_id or "",
        row.customer_id,
        row.pr_number_and_name or "",
        row.site_id or 0,
        row.date,
    )


def _purchase_key(row: ImportRow) -> tuple:
    return (
        row.po_id2 or "",
        row.supplier_id,
        row.po_reference_id or "",
        row.payment_term_id,
        row.po_date,
    )


def _prefill_inventory(
    db: Session,
    po: PurchaseOrder,
    po_item: PurchaseOrderItem,
    quantity: Decimal,
    actor_id: int | None,
) -> None:
    # pas de vraie réception : log synthétique, n° de facture fictif
    log = FulfilmentLog(
        gate_entry_number="",
        location="",
        invoice_id=f"BULK-{uuid.uuid4().hex}",
        supplier_id=po.supplier_id,
        created_by_id=actor_id,
        updated_by_id=actor_id,
    )
    inv = InventoryItem(quantity=quantity, quantity_gone=ZERO)
    po_item.inventory_item = inv
    db.add_all([log, inv])
    db.flush()
    db.add(FulfilmentLogItem(fulfilment_log_id=log.id, inventory_item_id=inv.id, quantity=quantity))


def _document_code(issuer: DocumentNumberIssuer, model, prefix: str, on: date, given: str | None) -> str:
    if given:
        return issuer.observe(model, prefix, on, given)
    return issuer.next_code(model, prefix, on)


def _create_purchase_order(
    db: Session,
    issuer: DocumentNumberIssuer,
    so: SalesOrder,
    rows: list[ImportRow],
    items_by_row: dict[int, SalesOrderItem],
    actor_id: int | None,
) -> PurchaseOrder:
    head = rows[0]
    po = PurchaseOrder(
        id2=_document_code(issuer, PurchaseOrder, PURCHASE_ORDER_PREFIX, head.po_date, head.po_id2),
        counter=issuer.next_counter(PurchaseOrder),
        date=head.po_date,
        stage=PurchaseOrderStage.open,
        supplier_id=head.supplier_id,
        payment_term_id=head.payment_term_id,
        currency_id=so.currency_id,
        sales_order_id=so.id,
        reference_id=head.po_reference_id,
        representative_user_id=head.po_representative_user_id,
        total_amount=money(sum((r.purchase_price * r.purchase_quantity for r in rows), ZERO)),
        created_by_id=actor_id,
        updated_by_id=actor_id,
    )
    lines: list[tuple[ImportRow, PurchaseOrderItem]] = []
    for row in rows:
        soi = items_by_row[row.row_number]
        po_item = PurchaseOrderItem(
            sales_order_item_id=soi.id,
            item_id=soi.item_id,
            sap_code=row.sap_code,
            description=row.purchase_description,
            size=row.purchase_size,
            unit_id=row.purchase_unit_id,
            quantity=row.purchase_quantity,
            price=row.purchase_price,
            gst_rate_id=row.gst_rate_id,
            hsn_code=row.hsn_code,
        )
        po.items.append(po_item)
        lines.append((row, po_item))
    db.add(po)
    db.flush()

    all_filled = True
    for row, po_item in lines:
        if not row.quantity_in_inventory:
            all_filled = False
            continue
        if po_item.quantity < row.quantity_in_inventory:
            all_filled = False
        _prefill_inventory(db, po, po_item, q3(min(row.quantity_in_inventory, po_item.quantity)), actor_id)

    if all_filled:
        po.stage = PurchaseOrderStage.fulfilment
    db.flush()
    return po


def _create_sales_order(
    db: Session,
    issuer: DocumentNumberIssuer,
    rows: list[ImportRow],
    actor_id: int | None,
) -> SalesOrder:
    head = rows[0]
    so = SalesOrder(
        id2=_document_code(issuer, SalesOrder, SALES_ORDER_PREFIX, head.date, head.id2),
        counter=issuer.next_counter(SalesOrder),
        date=head.date,
        customer_id=head.customer_id,
        site_id=head.site_id,
        pr_number_and_name=head.pr_number_and_name,
        reference_id=head.reference_id,
        currency_id=head.currency_id,
        representative_user_id=head.representative_user_id,
        stage=SalesOrderStage.pending,
        total_amount=order_total(rows),
        created_by_id=actor_id,
        updated_by_id=actor_id,
    )
    items_by_row: dict[int, SalesOrderItem] = {}
    for row in rows:
        soi = build_sales_order_item(
            issuer,
            item_id=row.item_id,
            description=row.description,
            size=row.size,
            unit_id=row.unit_id,
            quantity=row.quantity,
            price=row.price,
        )
        so.items.append(soi)
        items_by_row[row.row_number] = soi
    db.add(so)
    db.flush()

    for po_rows in _group([r for r in rows if r.has_purchase], _purchase_key):
        _create_purchase_order(db, issuer, so, po_rows, items_by_row, actor_id)

    refresh_sales_order_stage(db, so)
    return so


def create_orders(db: Session, rows: list[ImportRow], *, actor_id: int | None = None) -> list[SalesOrder]:
    """Tout ou rien : une seule transaction pour l'ensemble du fichier."""
    with transaction(db):
        issuer = DocumentNumberIssuer(db)
        return [_create_sales_order(db, issuer, group, actor_id) for group in _group(rows, _sales_key)]


# ---------- Entry point ----------
def _error_result(db: Session, storage: ObjectStorage, book: Workbook) -> BulkImportResult:
    filename = f"Error-Import-Bulk Order-{int(time.time() * 1000)}.xlsx"
    output = BytesIO()
    book.save(output)
    url = storage.add_file(filename, output.getvalue())

    with transaction(db):
        db.add(Attachment(original_filename=filename, new_filename=filename, url=url))

    return BulkImportResult(error_file=url)


def _take_attachment(db: Session, storage: ObjectStorage, attachment_id: int) -> bytes | None:
    # la pièce jointe est consommée : supprimée avant traitement, quoi qu'il arrive
    with transaction(db):
        attachment = db.get(Attachment, attachment_id)
        if not attachment:
            return None
        url = attachment.url
        db.delete(attachment)

    data = storage.get_file(url)
    storage.delete_file(url)
    return data


def import_bulk_orders(
    db: Session,
    storage: ObjectStorage,
    attachment_id: int,
    *,
    timezone_offset: int = 0,
    actor_id: int | None = None,
) -> BulkImportResult:
    data = _take_attachment(db, storage, attachment_id)
    if data is None:
        return BulkImportResult(message="No attachment")

    try:
        book = load_workbook(BytesIO(data))
    except (InvalidFileException, BadZipFile, KeyError) as exc:
        raise ValidationError("Invalid excel file") from exc

    sheet = next((ws for ws in book.worksheets if ws.sheet_state != "hidden"), None)
    if sheet is None:
        return BulkImportResult(message="No sheet in excel file")

    lookups = Lookups.load(db)
    rows, rejected = parse_sheet(sheet, lookups, timezone_offset=timezone_offset, actor_id=actor_id)
    if rejected:
        logger.warning("Bulk import %s rejected: %d invalid rows", attachment_id, rejected)
        return _error_result(db, storage, book)

    try:
        orders = create_orders(db, rows, actor_id=actor_id)
    except Exception:
        logger.exception("Bulk import %s failed, nothing was created", attachment_id)
        return _error_result(db, storage, book)

    logger.info("Bulk import %s done: %d rows, %d sales orders", attachment_id, len(rows), len(orders))
    return BulkImportResult(message="Done")
