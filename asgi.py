"""
asgi.py -- ASGI entry point for BreachTracker.

Run with:  uvicorn asgi:app --reload

Kept separate from api/main.py so deployment tooling has one stable import
path even if the API package is reorganized.
"""

from api.main import app

__all__ = ["app"]
