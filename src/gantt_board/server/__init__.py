"""HTTP server for the Gantt board."""

from .api import create_app

__all__ = ["create_app"]
