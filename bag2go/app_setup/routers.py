"""
Registre central des routers (API v1, admin, health).
- API v1: bookings (checkout), orders (historique), payments (webhook Stripe)
- Admin: fulfillment (liste, relance, sweep)
- Health: health_router
"""
from fastapi import FastAPI
from bag2go.fulfillment import views as fulfillment_views
from bag2go.orders import views as orders_views
from bag2go.payments import views as payments_views
from bag2go.health.router import router as health_router

def register_routers(app: FastAPI) -> None:
    # API v1
    app.include_router(fulfillment_views.router)
    app.include_router(orders_views.router)
    app.include_router(payments_views.router)
    # Admin
    app.include_router(fulfillment_views.admin_router)
    # Health & monitoring
    app.include_router(health_router)
