"""HTTP surface for the reconciliation core."""

from .app import create_app

__all__ = ["create_app"]
