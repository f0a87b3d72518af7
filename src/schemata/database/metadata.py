"""
Table management for the PostgreSQL store backend.

Creates and checks the schema snapshot and transaction log tables
along with their indexes.
"""

import logging
from typing import Any, Dict

import asyncpg

from ..exceptions import StoreError
from .connection import ConnectionPool


logger = logging.getLogger(__name__)


class MetadataManager:
    """Manages the tables backing the postgres stores."""

    def __init__(
        self,
        pool: ConnectionPool,
        schema_table: str = "global_schemas",
        transaction_table: str = "schema_transactions",
    ):
        self.pool = pool
        self.schema_table = schema_table
        self.transaction_table = transaction_table

        self.required_tables = {
            schema_table: self._get_schema_table_ddl(),
            transaction_table: self._get_transaction_table_ddl(),
        }

    async def setup_tables(self) -> Dict[str, Any]:
        """Create every required table that does not exist yet."""
        results = {
            "tables_created": [],
            "tables_existing": [],
            "errors": [],
        }

        for table_name, ddl in self.required_tables.items():
            try:
                created = await self._create_table_if_not_exists(table_name, ddl)
                key = "tables_created" if created else "tables_existing"
                results[key].append(table_name)
            except asyncpg.PostgresError as e:
                error_msg = f"Failed to create table {table_name}: {e}"
                logger.error(error_msg)
                results["errors"].append(error_msg)

        logger.info(f"Table setup completed: {len(results['errors'])} errors")
        return results

    async def check_integrity(self) -> Dict[str, Any]:
        """Report which required tables exist."""
        report = {
            "tables_exist": {},
            "missing_components": [],
            "is_healthy": True,
        }

        try:
            for table_name in self.required_tables:
                exists = await self._table_exists(table_name)
                report["tables_exist"][table_name] = exists
                if not exists:
                    report["missing_components"].append(f"table:{table_name}")
                    report["is_healthy"] = False
        except asyncpg.PostgresError as e:
            logger.error(f"Integrity check failed: {e}")
            raise StoreError("Failed to check store tables", cause=e) from e

        return report

    async def _table_exists(self, table: str) -> bool:
        return await self.pool.fetchval(
            """
            SELECT EXISTS (
                SELECT 1 FROM information_schema.tables
                WHERE table_schema = current_schema() AND table_name = $1
            )
            """,
            table,
        )

    async def _create_table_if_not_exists(self, table: str, ddl: str) -> bool:
        """Create table if it doesn't exist; return whether it was created."""
        async with self.pool.acquire() as conn:
            exists = await conn.fetchval(
                """
                SELECT EXISTS (
                    SELECT 1 FROM information_schema.tables
                    WHERE table_schema = current_schema() AND table_name = $1
                )
                """,
                table,
            )
            if exists:
                logger.debug(f"Table {table} already exists")
                return False
            await conn.execute(ddl)
            logger.info(f"Created table {table}")
            return True

    def _get_schema_table_ddl(self) -> str:
        """Get DDL for the schema snapshot table."""
        table = self.schema_table
        return f"""
        CREATE TABLE IF NOT EXISTS {table} (
            id TEXT PRIMARY KEY,
            owner_id TEXT NOT NULL,
            project_id TEXT,
            name TEXT NOT NULL,
            description TEXT,
            columns JSONB NOT NULL DEFAULT '[]'::jsonb,
            version INTEGER NOT NULL DEFAULT 1,
            previous_version_id TEXT,
            is_active BOOLEAN NOT NULL DEFAULT FALSE,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),

            CONSTRAINT {table}_positive_version CHECK (version >= 1)
        );

        CREATE INDEX IF NOT EXISTS idx_{table}_project
        ON {table}(project_id);

        CREATE INDEX IF NOT EXISTS idx_{table}_previous
        ON {table}(previous_version_id);

        CREATE UNIQUE INDEX IF NOT EXISTS idx_{table}_single_active
        ON {table}(project_id) WHERE is_active AND project_id IS NOT NULL;
        """

    def _get_transaction_table_ddl(self) -> str:
        """Get DDL for the transaction log table."""
        table = self.transaction_table
        return f"""
        CREATE TABLE IF NOT EXISTS {table} (
            id TEXT PRIMARY KEY,
            schema_id TEXT NOT NULL,
            user_id TEXT NOT NULL,
            status VARCHAR(20) NOT NULL DEFAULT 'pending',
            operations JSONB NOT NULL DEFAULT '[]'::jsonb,
            options JSONB NOT NULL DEFAULT '{{}}'::jsonb,
            started_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            completed_at TIMESTAMPTZ,
            error_message TEXT,

            CONSTRAINT {table}_valid_status CHECK (status IN ('pending', 'committed', 'rolledback'))
        );

        CREATE INDEX IF NOT EXISTS idx_{table}_schema
        ON {table}(schema_id, started_at DESC);
        """
