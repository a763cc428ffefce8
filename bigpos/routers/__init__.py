"""
Routers for the BIG POS commerce backend
"""

from .auth import router as auth_router
from .store import router as store_router
from .loans import router as loans_router
from .gas import router as gas_router
from .nfc import router as nfc_router
from .retailer import router as retailer_router
from .wholesaler import router as wholesaler_router
from .admin import router as admin_router
from .webhooks import router as webhooks_router

__all__ = [
    "auth_router",
    "store_router",
    "loans_router",
    "gas_router",
    "nfc_router",
    "retailer_router",
    "wholesaler_router",
    "admin_router",
    "webhooks_router",
]
