"""Database adapters package.

Provides the ``DatabaseClient`` Protocol, the async PostgreSQL adapter and
the bounded connection-retry helper.

Usage:
    from db_integrity.adapters import DatabaseClient, AsyncPostgresAdapter
"""

from db_integrity.adapters.base import DatabaseClient
from db_integrity.adapters.postgres import AsyncPostgresAdapter
from db_integrity.adapters.retry import connect_with_retry

__all__ = [
    "DatabaseClient",
    "AsyncPostgresAdapter",
    "connect_with_retry",
]
