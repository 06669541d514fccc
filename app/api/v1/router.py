from fastapi import APIRouter
from app.api.v1.endpoints import catalog, invoices, subscriptions

api_router = APIRouter()
# Static paths first so they are not captured by /{subscription_id}
api_router.include_router(catalog.router, prefix="/subscriptions", tags=["catalog"])
api_router.include_router(invoices.router, prefix="/subscriptions", tags=["invoices"])
api_router.include_router(subscriptions.router, prefix="/subscriptions", tags=["subscriptions"])
