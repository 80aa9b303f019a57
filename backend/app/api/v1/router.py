from fastapi import APIRouter

from backend.app.api.v1.endpoints.health import router as health_router
from backend.app.api.v1.endpoints.sales_orders import router as sales_orders_router
from backend.app.api.v1.endpoints.purchase_orders import router as purchase_orders_router
from backend.app.api.v1.endpoints.suppliers import router as suppliers_router
from backend.app.api.v1.endpoints.fulfilments import router as fulfilments_router
from backend.app.api.v1.endpoints.inventory import router as inventory_router
from backend.app.api.v1.endpoints.invoices import router as invoices_router
from backend.app.api.v1.endpoints.attachments import router as attachments_router
from backend.app.api.v1.endpoints.bulk_orders import router as bulk_orders_router

router = APIRouter()
router.include_router(health_router, tags=["health"])
router.include_router(sales_orders_router, tags=["sales_orders"])
router.include_router(purchase_orders_router, tags=["purchase_orders"])
router.include_router(suppliers_router, tags=["suppliers"])
router.include_router(fulfilments_router, tags=["fulfilments"])
router.include_router(inventory_router, tags=["inventory"])
router.include_router(invoices_router, tags=["invoices"])
router.include_router(attachments_router, tags=["attachments"])
router.include_router(bulk_orders_router, tags=["bulk_orders"])
