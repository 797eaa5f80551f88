"""
Factory d'application pour les entrypoints (checkout.app, checkout.asgi).
"""
from fastapi import FastAPI
from .lifespan import lifespan
from .middlewares import register_basic_middlewares, register_security_middleware, register_force_https_middleware
from .exception_handlers import register_exception_handlers
from .routers import register_routers

def create_app() -> FastAPI:
    """
    Construit l'app FastAPI avec le lifespan et enregistre, dans l'ordre:
      1) middlewares de base (CORS, TrustedHost) et en-têtes de sécurité
      2) gestionnaires d'exceptions (erreurs métier + HTTPException)
      3) tous les routers (API v1, admin, health)
      4) redirection HTTPS, ajoutée en dernier pour s'exécuter en premier
    """
    app = FastAPI(title="External Checkout", lifespan=lifespan)
    register_basic_middlewares(app)
    register_security_middleware(app)
    register_exception_handlers(app)
    register_routers(app)
    register_force_https_middleware(app)
    return app
