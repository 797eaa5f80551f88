"""
ASGI entrypoint: expose `app` pour les process managers.

- En production, un process manager (ex: gunicorn + uvicorn workers) importe `checkout.asgi:app`.
- Toute la configuration FastAPI est centralisée dans checkout.app_setup.factory.
"""

from checkout.app import app
