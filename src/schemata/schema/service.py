"""
Schema CRUD boundary for schemata.

SchemaService is the entry point consumed by an API layer: schema
creation, lookup, update, deletion, activation, history, version
comparison and rollback to an earlier version. Every call returns a
SchemaResult; expected business failures are reported in the result,
while store failures propagate as StoreError.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Union

from pydantic import ValidationError

from ..config import SchemataConfig
from ..exceptions import BusinessRuleError, ErrorKind, error_for_kind
from .impact import ImpactAnalyzer, ImpactIssue
from .mapping import ColumnMappingCollaborator
from .models import (
    SCHEMA_TARGET,
    GlobalSchema,
    OperationType,
    SchemaColumn,
    SchemaOperation,
)
from .transactions import TransactionManager
from .versioning import (
    ColumnChange,
    SchemaComparison,
    VersioningPolicy,
    change_log,
    compare_columns,
)


logger = logging.getLogger(__name__)

ColumnInput = Union[SchemaColumn, Dict[str, Any]]


@dataclass
class SchemaResult:
    """Outcome of a schema service call."""

    success: bool
    message: str = ""
    schema: Optional[GlobalSchema] = None
    error: Optional[ErrorKind] = None
    conflicts: List[ImpactIssue] = field(default_factory=list)
    breaking_changes: List[ImpactIssue] = field(default_factory=list)
    warnings: List[ImpactIssue] = field(default_factory=list)
    schemas: List[GlobalSchema] = field(default_factory=list)
    comparison: Optional[SchemaComparison] = None
    changes: List[ColumnChange] = field(default_factory=list)

    def raise_for_error(self) -> "SchemaResult":
        """Raise the exception matching a failed result; return self otherwise."""
        if not self.success:
            raise error_for_kind(
                self.error or ErrorKind.INVALID_REQUEST,
                self.message,
                issues=self.conflicts + self.breaking_changes,
            )
        return self

    @classmethod
    def failure(cls, kind: ErrorKind, message: str, **kwargs) -> "SchemaResult":
        logger.warning(message)
        return cls(success=False, message=message, error=kind, **kwargs)

    @classmethod
    def from_error(cls, error: BusinessRuleError) -> "SchemaResult":
        return cls.failure(error.kind, error.message)


class SchemaService:
    """
    Schema CRUD, lineage and activation on top of the stores.

    Also owns the TransactionManager so that staged mutations and direct
    updates share one analyzer and versioning policy.
    """

    def __init__(
        self,
        schema_store,
        transaction_store,
        mapping_collaborator: Optional[ColumnMappingCollaborator] = None,
        config: Optional[SchemataConfig] = None,
    ):
        self.config = config or SchemataConfig()
        self.store = schema_store
        self.analyzer = ImpactAnalyzer(mapping_collaborator)
        self.versioning = VersioningPolicy(schema_store)
        self.transactions = TransactionManager(
            schema_store,
            transaction_store,
            analyzer=self.analyzer,
            versioning=self.versioning,
            config=self.config.transactions,
        )

    async def create(
        self,
        owner_id: str,
        name: str,
        columns: Sequence[ColumnInput] = (),
        project_id: Optional[str] = None,
        description: Optional[str] = None,
        activate: bool = True,
    ) -> SchemaResult:
        """Create version 1 of a new schema lineage."""
        try:
            schema = GlobalSchema(
                owner_id=owner_id,
                project_id=project_id,
                name=name,
                description=description,
                columns=[self._parse_column(c) for c in columns],
            )
        except ValidationError as e:
            return SchemaResult.failure(
                ErrorKind.INVALID_REQUEST, f"Invalid schema definition: {e}"
            )

        if activate:
            batch = await self.versioning.activation_batch(project_id, schema)
            schema = (await self.store.save_many(batch))[-1]
        else:
            schema = await self.store.save(schema)

        logger.info(f"Created schema {schema.id} '{schema.name}' for {owner_id}")
        return SchemaResult(success=True, message="Schema created", schema=schema)

    async def get_by_id(self, schema_id: str) -> SchemaResult:
        schema = await self.store.get_by_id(schema_id)
        if schema is None:
            return SchemaResult.failure(ErrorKind.NOT_FOUND, f"Schema {schema_id} not found")
        return SchemaResult(success=True, schema=schema)

    async def list_for_project(
        self, project_id: str, active_only: bool = False
    ) -> List[GlobalSchema]:
        return await self.store.list_for_project(project_id, active_only=active_only)

    async def update(
        self,
        schema_id: str,
        user_id: str,
        name: Optional[str] = None,
        description: Optional[str] = None,
        columns: Optional[Sequence[ColumnInput]] = None,
        create_new_version: bool = False,
        activate: bool = False,
    ) -> SchemaResult:
        """
        Update a schema directly, outside any transaction.

        Column replacement is analyzed exactly like an update_schema
        operation. With create_new_version the update lands as a new
        version on top of the given schema; otherwise in place. Only the
        newest version of a lineage can be updated.
        """
        schema, failure = await self._load_owned(schema_id, user_id)
        if failure:
            return failure

        successors = await self.store.list_successors(schema.id)
        if successors:
            newest = max(successors, key=lambda s: s.version)
            return SchemaResult.failure(
                ErrorKind.INVALID_REQUEST,
                f"Schema {schema_id} v{schema.version} has been superseded by "
                f"{newest.id} v{newest.version}; update the newest version instead",
                schema=schema,
            )

        params: Dict[str, Any] = {}
        if name is not None:
            params["name"] = name
        if description is not None:
            params["description"] = description
        try:
            if columns is not None:
                params["columns"] = [
                    self._parse_column(c).model_dump(mode="json") for c in columns
                ]
        except ValidationError as e:
            return SchemaResult.failure(
                ErrorKind.INVALID_REQUEST, f"Invalid column definition: {e}"
            )

        if not params:
            return SchemaResult(success=True, message="Nothing to update", schema=schema)

        return await self._apply_replacement(
            schema, params, create_new_version, activate, "Schema updated"
        )

    async def delete(
        self, schema_id: str, user_id: str, include_history: bool = False
    ) -> SchemaResult:
        """Explicitly delete a schema, optionally with every earlier version."""
        schema, failure = await self._load_owned(schema_id, user_id)
        if failure:
            return failure

        targets = [schema]
        if include_history:
            targets = await self.versioning.get_history(schema_id)

        deleted = 0
        for target in targets:
            if await self.store.delete(target.id):
                deleted += 1

        logger.info(f"Deleted {deleted} schema version(s) starting at {schema_id}")
        return SchemaResult(
            success=True,
            message=f"Deleted {deleted} schema version(s)",
            schemas=targets,
        )

    async def set_active(
        self, project_id: str, schema_id: str, user_id: str
    ) -> SchemaResult:
        """Make schema_id the only active schema of its project."""
        _, failure = await self._load_owned(schema_id, user_id)
        if failure:
            return failure

        try:
            schema = await self.versioning.set_active(project_id, schema_id)
        except BusinessRuleError as e:
            return SchemaResult.from_error(e)
        return SchemaResult(success=True, message="Schema activated", schema=schema)

    async def get_history(self, schema_id: str) -> SchemaResult:
        """Versions of the lineage ending at schema_id, newest first."""
        try:
            history = await self.versioning.get_history(schema_id)
        except BusinessRuleError as e:
            return SchemaResult.from_error(e)
        return SchemaResult(
            success=True,
            message=f"{len(history)} version(s)",
            schema=history[0],
            schemas=history,
        )

    async def compare_versions(self, old_id: str, new_id: str) -> SchemaResult:
        old = await self.store.get_by_id(old_id)
        new = await self.store.get_by_id(new_id)
        missing = [sid for sid, s in ((old_id, old), (new_id, new)) if s is None]
        if missing:
            return SchemaResult.failure(
                ErrorKind.NOT_FOUND, f"Schema {', '.join(missing)} not found"
            )

        comparison = compare_columns(old.columns, new.columns)
        return SchemaResult(
            success=True,
            message=", ".join(f"{k}={v}" for k, v in comparison.get_summary().items()),
            schema=new,
            comparison=comparison,
            changes=change_log(comparison),
        )

    async def rollback_to_version(
        self, schema_id: str, version: int, user_id: str
    ) -> SchemaResult:
        """
        Create a new head version whose columns equal those of `version`.

        History is never rewritten: the restored column set is analyzed as
        a replacement of the current head and lands as head.version + 1.
        """
        head = await self.versioning.resolve_head(schema_id)
        if head is None:
            return SchemaResult.failure(ErrorKind.NOT_FOUND, f"Schema {schema_id} not found")
        if head.owner_id != user_id:
            return SchemaResult.failure(
                ErrorKind.FORBIDDEN,
                f"User {user_id} is not allowed to modify schema {schema_id}",
            )

        target = await self.versioning.get_version(head.id, version)
        if target is None:
            return SchemaResult.failure(
                ErrorKind.NOT_FOUND,
                f"Version {version} not found in the lineage of {schema_id}",
            )

        params = {"columns": [c.model_dump(mode="json") for c in target.columns]}
        return await self._apply_replacement(
            head, params, True, head.is_active, f"Rolled back to version {version}"
        )

    # Helpers

    async def _apply_replacement(
        self,
        schema: GlobalSchema,
        params: Dict[str, Any],
        create_new_version: bool,
        activate: bool,
        message: str,
    ) -> SchemaResult:
        operation = SchemaOperation(
            type=OperationType.UPDATE_SCHEMA, target=SCHEMA_TARGET, params=params
        )
        replay = await self.transactions.evaluate(schema, [operation])
        if replay.has_errors:
            return SchemaResult.failure(
                ErrorKind.CONFLICT if replay.conflicts else ErrorKind.BREAKING_CHANGE,
                f"Update refused: {replay.message}",
                schema=schema,
                conflicts=replay.conflicts,
                breaking_changes=replay.breaking_changes,
                warnings=replay.warnings,
            )

        if create_new_version:
            updated = self.versioning.materialize_new_version(
                schema, replay.columns, replay.name, replay.description
            )
        else:
            updated = self.versioning.apply_in_place(
                schema, replay.columns, replay.name, replay.description
            )

        if activate:
            batch = await self.versioning.activation_batch(updated.project_id, updated)
            updated = (await self.store.save_many(batch))[-1]
        else:
            updated = await self.store.save(updated)

        logger.info(f"{message}: schema {updated.id} v{updated.version}")
        return SchemaResult(
            success=True, message=message, schema=updated, warnings=replay.warnings
        )

    async def _load_owned(self, schema_id: str, user_id: str):
        schema = await self.store.get_by_id(schema_id)
        if schema is None:
            return None, SchemaResult.failure(
                ErrorKind.NOT_FOUND, f"Schema {schema_id} not found"
            )
        if schema.owner_id != user_id:
            return None, SchemaResult.failure(
                ErrorKind.FORBIDDEN,
                f"User {user_id} is not allowed to modify schema {schema_id}",
            )
        return schema, None

    @staticmethod
    def _parse_column(column: ColumnInput) -> SchemaColumn:
        if isinstance(column, SchemaColumn):
            return column
        return SchemaColumn.model_validate(column)
