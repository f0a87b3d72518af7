"""
Persistence package for schemata.

This package provides:
- SchemaStore and TransactionStore interfaces
- In-memory implementations
- PostgreSQL implementations on asyncpg
- A factory selecting the backend from configuration
"""

from .base import SchemaStore, TransactionStore
from .factory import StoreFactory, Stores
from .memory import InMemorySchemaStore, InMemoryTransactionStore
from .postgres import PostgresSchemaStore, PostgresTransactionStore

__all__ = [
    "SchemaStore",
    "TransactionStore",
    "StoreFactory",
    "Stores",
    "InMemorySchemaStore",
    "InMemoryTransactionStore",
    "PostgresSchemaStore",
    "PostgresTransactionStore",
]
