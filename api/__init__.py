"""
Actuator HTTP API.

FastAPI application exposing the actuator tables as read-only JSON endpoints.
"""

from .main import create_app

__all__ = ["create_app"]
