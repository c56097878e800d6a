# shop/routers/__init__.py

from .orders_router import router as orders_router
from .payments_router import router as payments_router
from .coupons_router import router as coupons_router
from .auto_coupons_router import router as auto_coupons_router

__all__ = [
    "orders_router",
    "payments_router",
    "coupons_router",
    "auto_coupons_router",
]
