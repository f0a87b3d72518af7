"""
In-memory store implementations.

Rows are kept as serialized JSON-compatible dicts, so callers never
alias stored state and every read goes through model validation just
like the postgres backend.
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional, Sequence

from pydantic import ValidationError

from ..exceptions import StoreError
from ..schema.models import GlobalSchema, SchemaTransaction
from .base import SchemaStore, TransactionStore


logger = logging.getLogger(__name__)


def _load_schema(row: Dict[str, Any]) -> GlobalSchema:
    try:
        return GlobalSchema.model_validate(row)
    except ValidationError as e:
        raise StoreError(
            "Stored schema failed validation", details={"id": row.get("id")}, cause=e
        ) from e


def _load_transaction(row: Dict[str, Any]) -> SchemaTransaction:
    try:
        return SchemaTransaction.model_validate(row)
    except ValidationError as e:
        raise StoreError(
            "Stored transaction failed validation",
            details={"id": row.get("id")},
            cause=e,
        ) from e


class InMemorySchemaStore(SchemaStore):
    """Dict-backed schema store guarded by an asyncio lock."""

    def __init__(self):
        self._rows: Dict[str, Dict[str, Any]] = {}
        self._lock = asyncio.Lock()

    async def get_by_id(self, schema_id: str) -> Optional[GlobalSchema]:
        async with self._lock:
            row = self._rows.get(schema_id)
        return _load_schema(row) if row is not None else None

    async def save(self, schema: GlobalSchema) -> GlobalSchema:
        row = schema.model_dump(mode="json")
        async with self._lock:
            self._rows[schema.id] = row
        logger.debug(f"Saved schema {schema.id} v{schema.version}")
        return _load_schema(row)

    async def save_many(self, schemas: Sequence[GlobalSchema]) -> List[GlobalSchema]:
        rows = [schema.model_dump(mode="json") for schema in schemas]
        async with self._lock:
            for row in rows:
                self._rows[row["id"]] = row
        logger.debug(f"Saved {len(rows)} schemas")
        return [_load_schema(row) for row in rows]

    async def list_for_project(
        self, project_id: str, active_only: bool = False
    ) -> List[GlobalSchema]:
        async with self._lock:
            rows = [
                row
                for row in self._rows.values()
                if row["project_id"] == project_id
                and (row["is_active"] or not active_only)
            ]
        schemas = [_load_schema(row) for row in rows]
        return sorted(schemas, key=lambda s: (s.created_at, s.version))

    async def list_successors(self, schema_id: str) -> List[GlobalSchema]:
        async with self._lock:
            rows = [
                row
                for row in self._rows.values()
                if row["previous_version_id"] == schema_id
            ]
        return [_load_schema(row) for row in rows]

    async def delete(self, schema_id: str) -> bool:
        async with self._lock:
            return self._rows.pop(schema_id, None) is not None


class InMemoryTransactionStore(TransactionStore):
    """Dict-backed transaction store guarded by an asyncio lock."""

    def __init__(self):
        self._rows: Dict[str, Dict[str, Any]] = {}
        self._lock = asyncio.Lock()

    async def get(self, transaction_id: str) -> Optional[SchemaTransaction]:
        async with self._lock:
            row = self._rows.get(transaction_id)
        return _load_transaction(row) if row is not None else None

    async def save(self, transaction: SchemaTransaction) -> SchemaTransaction:
        row = transaction.model_dump(mode="json")
        async with self._lock:
            self._rows[transaction.id] = row
        return _load_transaction(row)

    async def list_for_schema(self, schema_id: str) -> List[SchemaTransaction]:
        async with self._lock:
            rows = [row for row in self._rows.values() if row["schema_id"] == schema_id]
        transactions = [_load_transaction(row) for row in rows]
        return sorted(transactions, key=lambda t: t.started_at, reverse=True)
