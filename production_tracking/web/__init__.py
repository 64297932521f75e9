"""HTTP surface of the tracking engine."""

from .app import create_app

__all__ = ["create_app"]
