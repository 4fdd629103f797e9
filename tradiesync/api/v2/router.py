from fastapi import APIRouter
from tradiesync.api.v2 import (
    integrations,
    payment_settings,
)

api_router = APIRouter()

api_router.include_router(integrations.router, prefix="/integrations", tags=["integrations"])
api_router.include_router(payment_settings.router, prefix="/payment-settings", tags=["payment-settings"])
