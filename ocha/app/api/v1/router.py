from fastapi import APIRouter

from ocha.app.api.v1.endpoints.health import router as health_router
from ocha.app.api.v1.endpoints.products import router as products_router
from ocha.app.api.v1.endpoints.suppliers import router as suppliers_router
from ocha.app.api.v1.endpoints.categories import router as categories_router
from ocha.app.api.v1.endpoints.locations import router as locations_router
from ocha.app.api.v1.endpoints.purchase_requests import router as purchase_requests_router
from ocha.app.api.v1.endpoints.purchase_orders import router as purchase_orders_router
from ocha.app.api.v1.endpoints.inventory import router as inventory_router
from ocha.app.api.v1.endpoints.processing import router as processing_router
from ocha.app.api.v1.endpoints.transportation import router as transportation_router
from ocha.app.api.v1.endpoints.reconcile import router as reconcile_router
from ocha.app.api.v1.endpoints.analytics import router as analytics_router
from ocha.app.api.v1.endpoints.notifications import router as notifications_router

router = APIRouter()
router.include_router(health_router, tags=["health"])
router.include_router(products_router, tags=["products"])
router.include_router(suppliers_router, tags=["suppliers"])
router.include_router(categories_router, tags=["categories"])
router.include_router(locations_router, tags=["locations"])
router.include_router(purchase_requests_router, tags=["purchase_requests"])
router.include_router(purchase_orders_router, tags=["purchase_orders"])
router.include_router(inventory_router, tags=["inventory"])
router.include_router(processing_router, tags=["processing"])
router.include_router(transportation_router, tags=["transportation"])
router.include_router(reconcile_router, tags=["reconcile"])
router.include_router(analytics_router, tags=["analytics"])
router.include_router(notifications_router, tags=["notifications"])
