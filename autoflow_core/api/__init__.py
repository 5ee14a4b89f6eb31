"""
HTTP API for automations, events and runs.
"""

from .app import create_app
from .routes import router

__all__ = ["create_app", "router"]
