"""
Pytest configuration and shared fixtures for schemata tests.
"""

import tempfile
from typing import Any, Dict, List
from unittest.mock import AsyncMock, MagicMock

import pytest

from schemata.config import SchemataConfig, TransactionConfig
from schemata.database.connection import ConnectionPool
from schemata.schema.impact import ImpactAnalyzer
from schemata.schema.models import GlobalSchema, SchemaColumn
from schemata.schema.service import SchemaService
from schemata.schema.transactions import TransactionManager
from schemata.store.memory import InMemorySchemaStore, InMemoryTransactionStore


OWNER = "user_1"
OTHER_USER = "user_2"
PROJECT = "project_1"


# ============================================================================
# Data Fixtures
# ============================================================================

@pytest.fixture
def people_columns() -> List[Dict[str, Any]]:
    """Column definitions for a small people schema."""
    return [
        {"name": "id", "type": "text", "is_required": True, "is_primary_key": True},
        {"name": "email", "type": "text", "is_required": True},
        {"name": "name", "type": "text"},
        {"name": "age", "type": "integer"},
    ]


@pytest.fixture
def people_schema(people_columns) -> GlobalSchema:
    """An in-memory schema instance, not persisted."""
    return GlobalSchema(
        owner_id=OWNER,
        project_id=PROJECT,
        name="people",
        columns=[SchemaColumn(**c) for c in people_columns],
    )


# ============================================================================
# Store and Service Fixtures
# ============================================================================

@pytest.fixture
def schema_store() -> InMemorySchemaStore:
    return InMemorySchemaStore()


@pytest.fixture
def transaction_store() -> InMemoryTransactionStore:
    return InMemoryTransactionStore()


@pytest.fixture
def service(schema_store, transaction_store) -> SchemaService:
    """Schema service over empty in-memory stores."""
    return SchemaService(schema_store, transaction_store)


@pytest.fixture
def manager(service) -> TransactionManager:
    """The transaction manager owned by the service fixture."""
    return service.transactions


@pytest.fixture
def make_schema(service, people_columns):
    """Factory creating and persisting a schema through the service."""
    async def _make(columns=None, **kwargs) -> GlobalSchema:
        kwargs.setdefault("owner_id", OWNER)
        kwargs.setdefault("name", "people")
        kwargs.setdefault("project_id", PROJECT)
        result = await service.create(
            columns=people_columns if columns is None else columns, **kwargs
        )
        assert result.success, result.message
        return result.schema
    return _make


@pytest.fixture
def analyzer() -> ImpactAnalyzer:
    return ImpactAnalyzer()


@pytest.fixture
def small_tx_config() -> TransactionConfig:
    return TransactionConfig(max_operations=2)


# ============================================================================
# Database Test Fixtures
# ============================================================================

@pytest.fixture
def mock_connection():
    """Mock asyncpg connection."""
    conn = AsyncMock()
    conn.execute = AsyncMock(return_value="INSERT 0 1")
    conn.fetch = AsyncMock(return_value=[])
    conn.fetchrow = AsyncMock(return_value=None)
    conn.fetchval = AsyncMock()
    conn.transaction = MagicMock()
    conn.transaction.return_value.__aenter__ = AsyncMock(return_value=None)
    conn.transaction.return_value.__aexit__ = AsyncMock(return_value=False)
    return conn


@pytest.fixture
def mock_pool(mock_connection):
    """Mock ConnectionPool handing out mock_connection."""
    pool = AsyncMock(spec=ConnectionPool)
    pool.acquire = MagicMock()
    pool.acquire.return_value.__aenter__ = AsyncMock(return_value=mock_connection)
    pool.acquire.return_value.__aexit__ = AsyncMock(return_value=False)
    pool.transaction = MagicMock()
    pool.transaction.return_value.__aenter__ = AsyncMock(return_value=mock_connection)
    pool.transaction.return_value.__aexit__ = AsyncMock(return_value=False)
    return pool


# ============================================================================
# Configuration Fixtures
# ============================================================================

@pytest.fixture
def postgres_config_data() -> Dict[str, Any]:
    return {
        "service_name": "schemata-test",
        "storage": {
            "backend": "postgres",
            "connection": {
                "host": "localhost",
                "port": 5432,
                "database": "schemata_test",
                "user": "test_user",
                "password": "test_password",
            },
        },
        "transactions": {"max_operations": 50},
    }


@pytest.fixture
def memory_config_file() -> str:
    """Temporary configuration file using the memory backend."""
    with tempfile.NamedTemporaryFile(mode="w", suffix=".yaml", delete=False) as f:
        f.write(
            """
service_name: schemata-test
storage:
  backend: memory
transactions:
  max_operations: 20
logging:
  level: WARNING
"""
        )
        return f.name


@pytest.fixture
def memory_config() -> SchemataConfig:
    return SchemataConfig()
