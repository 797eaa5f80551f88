"""
Registre central des routers.
- API v1: cart-session, payment-intent / payments / upsell, webhooks, shopify, analytics, config, admin
- Health: health_router
"""
from fastapi import FastAPI
from checkout.sessions import views as sessions_views
from checkout.payments import views as payments_views
from checkout.webhooks import views as webhooks_views
from checkout.shopify import views as shopify_views
from checkout.accounts import views as accounts_views
from checkout.stats import views as stats_views
from checkout.analytics import views as analytics_views
from checkout.health.router import router as health_router

def register_routers(app: FastAPI) -> None:
    # API v1
    app.include_router(sessions_views.router)
    app.include_router(payments_views.router)
    app.include_router(webhooks_views.router)
    app.include_router(shopify_views.router)
    app.include_router(analytics_views.router)
    # Admin
    app.include_router(accounts_views.router)
    app.include_router(stats_views.router)
    # Health & monitoring
    app.include_router(health_router)
