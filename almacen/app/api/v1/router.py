from fastapi import APIRouter

from almacen.app.api.v1.endpoints.sites import router as sites_router
from almacen.app.api.v1.endpoints.categories import router as categories_router
from almacen.app.api.v1.endpoints.materials import router as materials_router
from almacen.app.api.v1.endpoints.requesters import router as requesters_router
from almacen.app.api.v1.endpoints.requisitions import router as requisitions_router
from almacen.app.api.v1.endpoints.purchase_orders import router as purchase_orders_router
from almacen.app.api.v1.endpoints.stock import router as stock_router
from almacen.app.api.v1.endpoints.stock_movements import router as stock_movements_router
from almacen.app.api.v1.endpoints.statistics import router as statistics_router

router = APIRouter()
router.include_router(sites_router, tags=["sites"])
router.include_router(categories_router, tags=["categories"])
router.include_router(materials_router, tags=["materials"])
router.include_router(requesters_router, tags=["requesters"])
router.include_router(requisitions_router, tags=["requisitions"])
router.include_router(purchase_orders_router, tags=["purchase_orders"])
router.include_router(stock_router, tags=["stock"])
router.include_router(stock_movements_router, tags=["stock_movements"])
router.include_router(statistics_router, tags=["statistics"])
