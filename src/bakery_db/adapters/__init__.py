"""Connection management.

Usage:
    from bakery_db.adapters import ConnectionManager, DatabaseClient
"""

from bakery_db.adapters.base import DatabaseClient, QueryResult
from bakery_db.adapters.pool import ConnectionManager, Transaction, normalize_database_url

__all__ = [
    "ConnectionManager",
    "DatabaseClient",
    "QueryResult",
    "Transaction",
    "normalize_database_url",
]
