"""
Unit tests for the store factory.
"""

import pytest

from schemata.config import SchemataConfig
from schemata.database.connection import ConnectionPool
from schemata.exceptions import StoreConfigurationError
from schemata.store import StoreFactory
from schemata.store.memory import InMemorySchemaStore, InMemoryTransactionStore
from schemata.store.postgres import PostgresSchemaStore, PostgresTransactionStore


class TestStoreFactory:
    """Test backend selection."""

    def test_supported_backends(self):
        """Both backends are registered."""
        assert StoreFactory.get_supported_backends() == ["memory", "postgres"]

    def test_memory(self, memory_config):
        """The memory backend needs no pool."""
        stores = StoreFactory.create(memory_config)

        assert isinstance(stores.schemas, InMemorySchemaStore)
        assert isinstance(stores.transactions, InMemoryTransactionStore)
        assert stores.pool is None

    def test_postgres(self, postgres_config_data):
        """The postgres backend builds an uninitialized pool from the config."""
        postgres_config_data["storage"]["schema_table"] = "schemas_v2"
        config = SchemataConfig(**postgres_config_data)

        stores = StoreFactory.create(config)

        assert isinstance(stores.schemas, PostgresSchemaStore)
        assert isinstance(stores.transactions, PostgresTransactionStore)
        assert isinstance(stores.pool, ConnectionPool)
        assert not stores.pool.is_initialized
        assert stores.schemas.table == "schemas_v2"
        assert stores.schemas.pool is stores.transactions.pool

    def test_postgres_with_pool(self, postgres_config_data, mock_pool):
        """A caller-supplied pool is reused."""
        config = SchemataConfig(**postgres_config_data)

        stores = StoreFactory.create(config, pool=mock_pool)

        assert stores.pool is mock_pool
        assert stores.schemas.pool is mock_pool

    def test_postgres_without_connection(self):
        """The postgres backend cannot be built without connection settings."""
        config = SchemataConfig(storage={"backend": "postgres"})

        with pytest.raises(StoreConfigurationError):
            StoreFactory.create(config)

    def test_unknown_backend(self, memory_config):
        """Backends outside the registry are rejected."""
        config = memory_config.model_copy(
            update={"storage": memory_config.storage.model_copy(update={"backend": "sqlite"})}
        )

        with pytest.raises(StoreConfigurationError, match="Unsupported storage backend"):
            StoreFactory.create(config)
