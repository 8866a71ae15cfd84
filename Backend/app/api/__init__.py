# app/api/__init__.py
"""
API module - All route handlers.
"""
from . import health, realtime, webhooks

__all__ = [
    "health",
    "realtime",
    "webhooks",
]
