"""
asgi.py -- ASGI entry point for PM Connect.

Run with:  uvicorn asgi:app --reload

Kept separate from api/main.py so deployment config points at one stable
module path while the application module stays importable in tests.
"""

from api.main import app

__all__ = ["app"]
