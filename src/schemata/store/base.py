"""
Abstract persistence interfaces for schema snapshots and transactions.

Implementations must make every `save` atomic per call and give
read-your-writes semantics: `get_by_id` returns the most recently saved
value. Reads return fully validated models or None; I/O, constraint and
decode failures raise StoreError.
"""

from abc import ABC, abstractmethod
from typing import List, Optional, Sequence

from ..schema.models import GlobalSchema, SchemaTransaction


class SchemaStore(ABC):
    """
    Durable persistence for GlobalSchema snapshots and their version chain.
    """

    @abstractmethod
    async def get_by_id(self, schema_id: str) -> Optional[GlobalSchema]:
        """Return the schema with this id, or None when it does not exist."""

    @abstractmethod
    async def save(self, schema: GlobalSchema) -> GlobalSchema:
        """Insert or replace a schema by id."""

    @abstractmethod
    async def save_many(self, schemas: Sequence[GlobalSchema]) -> List[GlobalSchema]:
        """Save several schemas as one unit: all writes land or none do."""

    @abstractmethod
    async def list_for_project(
        self, project_id: str, active_only: bool = False
    ) -> List[GlobalSchema]:
        """List schemas of a project ordered by creation time."""

    @abstractmethod
    async def list_successors(self, schema_id: str) -> List[GlobalSchema]:
        """List schemas whose previous_version_id is schema_id."""

    @abstractmethod
    async def delete(self, schema_id: str) -> bool:
        """Delete a schema; return whether a row was removed."""


class TransactionStore(ABC):
    """
    Persistence for schema transactions and their operation logs.
    """

    @abstractmethod
    async def get(self, transaction_id: str) -> Optional[SchemaTransaction]:
        """Return the transaction with this id, or None."""

    @abstractmethod
    async def save(self, transaction: SchemaTransaction) -> SchemaTransaction:
        """Insert or replace a transaction by id."""

    @abstractmethod
    async def list_for_schema(self, schema_id: str) -> List[SchemaTransaction]:
        """List transactions pinned to a schema id, newest first."""
