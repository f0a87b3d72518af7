"""
PostgreSQL store implementations on top of asyncpg.

Column sets, operation logs and transaction options are stored as JSONB.
Writes are upserts keyed by id; batch saves run inside one database
transaction. Driver errors are wrapped in StoreError.
"""

import json
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Optional, Sequence

import asyncpg
from pydantic import ValidationError

from ..database.connection import ConnectionPool
from ..exceptions import StoreError
from ..schema.models import GlobalSchema, SchemaTransaction
from .base import SchemaStore, TransactionStore


logger = logging.getLogger(__name__)


@asynccontextmanager
async def _store_errors(action: str) -> AsyncIterator[None]:
    """Wrap driver failures raised inside the block in StoreError."""
    try:
        yield
    except (asyncpg.PostgresError, OSError) as e:
        logger.error(f"Store failure while trying to {action}: {e}")
        raise StoreError(f"Failed to {action}", cause=e) from e


def _decode_json(value: Any) -> Any:
    if isinstance(value, (str, bytes)):
        return json.loads(value)
    return value


def _validate(model, row: Dict[str, Any], json_fields: Sequence[str]):
    data = dict(row)
    for name in json_fields:
        if name in data:
            data[name] = _decode_json(data[name])
    try:
        return model.model_validate(data)
    except (ValidationError, ValueError) as e:
        raise StoreError(
            f"Stored {model.__name__} failed validation",
            details={"id": data.get("id")},
            cause=e,
        ) from e


class PostgresSchemaStore(SchemaStore):
    """Schema snapshots in a PostgreSQL table."""

    _FIELDS = (
        "id, owner_id, project_id, name, description, columns, version, "
        "previous_version_id, is_active, created_at, updated_at"
    )

    def __init__(self, pool: ConnectionPool, table: str = "global_schemas"):
        self.pool = pool
        self.table = table

    def _upsert_sql(self) -> str:
        return f"""
        INSERT INTO {self.table} ({self._FIELDS})
        VALUES ($1, $2, $3, $4, $5, $6::jsonb, $7, $8, $9, $10, $11)
        ON CONFLICT (id) DO UPDATE SET
            owner_id = EXCLUDED.owner_id,
            project_id = EXCLUDED.project_id,
            name = EXCLUDED.name,
            description = EXCLUDED.description,
            columns = EXCLUDED.columns,
            version = EXCLUDED.version,
            previous_version_id = EXCLUDED.previous_version_id,
            is_active = EXCLUDED.is_active,
            updated_at = EXCLUDED.updated_at
        """

    @staticmethod
    def _args(schema: GlobalSchema) -> tuple:
        columns = [column.model_dump(mode="json") for column in schema.columns]
        return (
            schema.id,
            schema.owner_id,
            schema.project_id,
            schema.name,
            schema.description,
            json.dumps(columns),
            schema.version,
            schema.previous_version_id,
            schema.is_active,
            schema.created_at,
            schema.updated_at,
        )

    def _load(self, row) -> GlobalSchema:
        return _validate(GlobalSchema, row, ("columns",))

    async def get_by_id(self, schema_id: str) -> Optional[GlobalSchema]:
        async with _store_errors(f"load schema {schema_id}"):
            row = await self.pool.fetchrow(
                f"SELECT {self._FIELDS} FROM {self.table} WHERE id = $1", schema_id
            )
        return self._load(row) if row is not None else None

    async def save(self, schema: GlobalSchema) -> GlobalSchema:
        async with _store_errors(f"save schema {schema.id}"):
            await self.pool.execute(self._upsert_sql(), *self._args(schema))
        logger.debug(f"Saved schema {schema.id} v{schema.version}")
        return schema

    async def save_many(self, schemas: Sequence[GlobalSchema]) -> List[GlobalSchema]:
        # Deactivations go first so the single-active index never sees two rows.
        ordered = sorted(schemas, key=lambda s: s.is_active)
        sql = self._upsert_sql()
        async with _store_errors(f"save {len(ordered)} schemas"):
            async with self.pool.transaction() as conn:
                for schema in ordered:
                    await conn.execute(sql, *self._args(schema))
        logger.debug(f"Saved {len(ordered)} schemas in one transaction")
        return list(schemas)

    async def list_for_project(
        self, project_id: str, active_only: bool = False
    ) -> List[GlobalSchema]:
        sql = f"SELECT {self._FIELDS} FROM {self.table} WHERE project_id = $1"
        if active_only:
            sql += " AND is_active"
        sql += " ORDER BY created_at, version"
        async with _store_errors(f"list schemas for project {project_id}"):
            rows = await self.pool.fetch(sql, project_id)
        return [self._load(row) for row in rows]

    async def list_successors(self, schema_id: str) -> List[GlobalSchema]:
        async with _store_errors(f"list successors of {schema_id}"):
            rows = await self.pool.fetch(
                f"SELECT {self._FIELDS} FROM {self.table} "
                f"WHERE previous_version_id = $1",
                schema_id,
            )
        return [self._load(row) for row in rows]

    async def delete(self, schema_id: str) -> bool:
        async with _store_errors(f"delete schema {schema_id}"):
            status = await self.pool.execute(
                f"DELETE FROM {self.table} WHERE id = $1", schema_id
            )
        return status.endswith(" 1")


class PostgresTransactionStore(TransactionStore):
    """Schema transactions in a PostgreSQL table."""

    _FIELDS = (
        "id, schema_id, user_id, status, operations, options, "
        "started_at, completed_at, error_message"
    )

    def __init__(self, pool: ConnectionPool, table: str = "schema_transactions"):
        self.pool = pool
        self.table = table

    def _load(self, row) -> SchemaTransaction:
        return _validate(SchemaTransaction, row, ("operations", "options"))

    async def get(self, transaction_id: str) -> Optional[SchemaTransaction]:
        async with _store_errors(f"load transaction {transaction_id}"):
            row = await self.pool.fetchrow(
                f"SELECT {self._FIELDS} FROM {self.table} WHERE id = $1",
                transaction_id,
            )
        return self._load(row) if row is not None else None

    async def save(self, transaction: SchemaTransaction) -> SchemaTransaction:
        data = transaction.model_dump(mode="json")
        sql = f"""
        INSERT INTO {self.table} ({self._FIELDS})
        VALUES ($1, $2, $3, $4, $5::jsonb, $6::jsonb, $7, $8, $9)
        ON CONFLICT (id) DO UPDATE SET
            status = EXCLUDED.status,
            operations = EXCLUDED.operations,
            options = EXCLUDED.options,
            completed_at = EXCLUDED.completed_at,
            error_message = EXCLUDED.error_message
        """
        async with _store_errors(f"save transaction {transaction.id}"):
            await self.pool.execute(
                sql,
                transaction.id,
                transaction.schema_id,
                transaction.user_id,
                transaction.status.value,
                json.dumps(data["operations"]),
                json.dumps(data["options"]),
                transaction.started_at,
                transaction.completed_at,
                transaction.error_message,
            )
        return transaction

    async def list_for_schema(self, schema_id: str) -> List[SchemaTransaction]:
        async with _store_errors(f"list transactions for {schema_id}"):
            rows = await self.pool.fetch(
                f"SELECT {self._FIELDS} FROM {self.table} "
                f"WHERE schema_id = $1 ORDER BY started_at DESC",
                schema_id,
            )
        return [self._load(row) for row in rows]
