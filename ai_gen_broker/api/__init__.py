"""
HTTP API for the generation broker.
"""

from .app import create_app

__all__ = ["create_app"]
