import enum


class Role(str, enum.Enum):
    admin = "ADMIN"
    admin_viewer = "ADMINVIEWER"
    user = "USER"
    user_viewer = "USERVIEWER"
    fulfilment = "FULFILMENT"


class SalesOrderStage(str, enum.Enum):
    pending = "Pending"
    open = "Open"
    invoice = "Invoice"
    closed = "Closed"
    cancelled = "Cancelled"


class PurchaseOrderStage(str, enum.Enum):
    pending = "Pending"
    open = "Open"
    fulfilment = "Fulfilment"
    closed = "Closed"
    cancelled = "Cancelled"


class InquiryResult(str, enum.Enum):
    pending = "PENDING"
    ordered = "ORDERED"
    lost = "LOST"


class LineOutcome(str, enum.Enum):
    applied = "APPLIED"
    skipped_over_cap = "SKIPPED_OVER_CAP"
    skipped_under_floor = "SKIPPED_UNDER_FLOOR"
    skipped_zero = "SKIPPED_ZERO"
    skipped_no_inventory = "SKIPPED_NO_INVENTORY"
