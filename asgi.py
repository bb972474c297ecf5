"""
asgi.py -- ASGI entry point for the note service.

Run with:  uvicorn asgi:app --reload
           uvicorn asgi:app --host 0.0.0.0 --port 5000 --workers 4

Keeps the server command independent of the package layout; deployment
configs only ever reference asgi:app.
"""

from api.main import app

__all__ = ["app"]
