"""
Store factory selecting a persistence backend from configuration.
"""

import logging
from typing import Callable, Dict, NamedTuple, Optional

from ..config import SchemataConfig
from ..database.connection import ConnectionPool
from ..exceptions import StoreConfigurationError
from .base import SchemaStore, TransactionStore
from .memory import InMemorySchemaStore, InMemoryTransactionStore
from .postgres import PostgresSchemaStore, PostgresTransactionStore


logger = logging.getLogger(__name__)


class Stores(NamedTuple):
    """The store pair consumed by the schema and transaction services."""

    schemas: SchemaStore
    transactions: TransactionStore
    pool: Optional[ConnectionPool] = None


def _create_memory(config: SchemataConfig, pool: Optional[ConnectionPool]) -> Stores:
    return Stores(InMemorySchemaStore(), InMemoryTransactionStore())


def _create_postgres(config: SchemataConfig, pool: Optional[ConnectionPool]) -> Stores:
    storage = config.storage
    if pool is None:
        pool = ConnectionPool.from_storage_config(storage)
    return Stores(
        PostgresSchemaStore(pool, table=storage.schema_table),
        PostgresTransactionStore(pool, table=storage.transaction_table),
        pool,
    )


class StoreFactory:
    """
    Factory for creating store pairs based on the storage backend setting.

    The postgres backend receives an uninitialized ConnectionPool unless
    one is passed in; callers own its lifecycle.
    """

    _BACKEND_REGISTRY: Dict[
        str, Callable[[SchemataConfig, Optional[ConnectionPool]], Stores]
    ] = {
        "memory": _create_memory,
        "postgres": _create_postgres,
    }

    @classmethod
    def create(
        cls, config: SchemataConfig, pool: Optional[ConnectionPool] = None
    ) -> Stores:
        backend = config.storage.backend.lower()

        if backend not in cls._BACKEND_REGISTRY:
            raise StoreConfigurationError(
                f"Unsupported storage backend: {backend}. "
                f"Available backends: {cls.get_supported_backends()}"
            )

        logger.info(f"Creating {backend} stores")
        return cls._BACKEND_REGISTRY[backend](config, pool)

    @classmethod
    def get_supported_backends(cls) -> list:
        return list(cls._BACKEND_REGISTRY.keys())
