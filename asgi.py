"""
asgi.py -- ASGI entry point for the userauth service.

Run with:  uvicorn asgi:app --reload

api/main.py owns app construction; this module only re-exports it so the
server command stays stable if the assembly moves.
"""

from api.main import app

__all__ = ["app"]
