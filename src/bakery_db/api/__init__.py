"""HTTP surface for database maintenance."""

from bakery_db.api.app import create_app

__all__ = ["create_app"]
