"""
Staged schema transactions.

A transaction pins a schema lineage and collects an append-only log of
operations. Nothing touches the persisted schema until commit, which
replays the whole log against a working copy of the live schema and
either persists the result in one store write or refuses with the
offending conflicts and breaking changes. Every step loads and saves
the transaction through the store, so calls may arrive as independent
requests.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from ..config import TransactionConfig
from ..exceptions import ErrorKind, InvalidRequestError, error_for_kind
from .impact import ImpactAnalyzer, ImpactIssue, IssueKind
from .models import (
    SCHEMA_TARGET,
    ColumnPatch,
    GlobalSchema,
    OperationStatus,
    OperationType,
    SchemaColumn,
    SchemaOperation,
    SchemaPatch,
    SchemaTransaction,
    TransactionOptions,
    TransactionStatus,
    new_column_id,
    utcnow,
)
from .versioning import VersioningPolicy


logger = logging.getLogger(__name__)


@dataclass
class TransactionResult:
    """Outcome of a transaction call; business failures never raise."""

    success: bool
    message: str = ""
    transaction_id: Optional[str] = None
    transaction: Optional[SchemaTransaction] = None
    schema: Optional[GlobalSchema] = None
    error: Optional[ErrorKind] = None
    conflicts: List[ImpactIssue] = field(default_factory=list)
    breaking_changes: List[ImpactIssue] = field(default_factory=list)
    warnings: List[ImpactIssue] = field(default_factory=list)

    def raise_for_error(self) -> "TransactionResult":
        """Raise the exception matching a failed result; return self otherwise."""
        if not self.success:
            raise error_for_kind(
                self.error or ErrorKind.INVALID_REQUEST,
                self.message,
                issues=self.conflicts + self.breaking_changes,
            )
        return self


@dataclass
class ReplayResult:
    """Working state after replaying an operation log."""

    columns: List[SchemaColumn]
    name: Optional[str] = None
    description: Optional[str] = None
    conflicts: List[ImpactIssue] = field(default_factory=list)
    breaking_changes: List[ImpactIssue] = field(default_factory=list)
    warnings: List[ImpactIssue] = field(default_factory=list)
    failed: Dict[int, str] = field(default_factory=dict)
    touched_column_ids: List[str] = field(default_factory=list)

    @property
    def has_errors(self) -> bool:
        return bool(self.conflicts or self.breaking_changes)

    @property
    def message(self) -> str:
        return "; ".join(str(issue) for issue in self.conflicts + self.breaking_changes)


def _find(columns: List[SchemaColumn], name: str) -> Optional[SchemaColumn]:
    key = name.lower()
    for column in columns:
        if column.key == key:
            return column
    return None


def _validation_message(error: ValidationError) -> str:
    return "; ".join(
        f"{'.'.join(str(p) for p in err['loc']) or 'params'}: {err['msg']}"
        for err in error.errors()
    )


class TransactionManager:
    """
    Owns the begin/add_operation/commit/rollback state machine.

    Impact is evaluated at commit time over the cumulative effect of the
    whole log, so later operations see the effects of earlier ones.
    """

    def __init__(
        self,
        schema_store,
        transaction_store,
        analyzer: Optional[ImpactAnalyzer] = None,
        versioning: Optional[VersioningPolicy] = None,
        config: Optional[TransactionConfig] = None,
    ):
        self.schema_store = schema_store
        self.transaction_store = transaction_store
        self.analyzer = analyzer or ImpactAnalyzer()
        self.versioning = versioning or VersioningPolicy(schema_store)
        self.config = config or TransactionConfig()

    # State machine

    async def begin(
        self,
        schema_id: str,
        user_id: str,
        options: Optional[TransactionOptions] = None,
    ) -> TransactionResult:
        """Open a pending transaction against a schema the user owns."""
        schema = await self.schema_store.get_by_id(schema_id)
        if schema is None:
            return self._failure(ErrorKind.NOT_FOUND, f"Schema {schema_id} not found")
        if schema.owner_id != user_id:
            return self._failure(
                ErrorKind.FORBIDDEN,
                f"User {user_id} is not allowed to modify schema {schema_id}",
            )

        if options is None:
            options = TransactionOptions(
                create_new_version=self.config.create_new_version,
                activate=self.config.activate_on_commit,
            )

        transaction = SchemaTransaction(
            schema_id=schema_id, user_id=user_id, options=options
        )
        transaction = await self.transaction_store.save(transaction)
        logger.info(f"Began transaction {transaction.id} on schema {schema_id}")

        return TransactionResult(
            success=True,
            message="Transaction started",
            transaction_id=transaction.id,
            transaction=transaction,
        )

    async def add_operation(
        self,
        transaction_id: str,
        operation_type: Any,
        target: Optional[str] = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> TransactionResult:
        """Validate the shape of an operation and append it to the log."""
        transaction = await self.transaction_store.get(transaction_id)
        if transaction is None:
            return self._failure(
                ErrorKind.NOT_FOUND, f"Transaction {transaction_id} not found"
            )
        if transaction.is_terminal:
            return self._terminal_failure(transaction)
        if len(transaction.operations) >= self.config.max_operations:
            return self._failure(
                ErrorKind.INVALID_REQUEST,
                f"Transaction {transaction_id} already holds the maximum of "
                f"{self.config.max_operations} operations",
                transaction,
            )

        try:
            operation = self._build_operation(operation_type, target, params or {})
        except InvalidRequestError as e:
            return self._failure(ErrorKind.INVALID_REQUEST, e.message, transaction)

        operation.order = len(transaction.operations)
        transaction.operations.append(operation)
        transaction = await self.transaction_store.save(transaction)
        logger.debug(f"Transaction {transaction_id}: staged {operation.label}")

        return TransactionResult(
            success=True,
            message=f"Staged {operation.type.value} on '{operation.target}'",
            transaction_id=transaction.id,
            transaction=transaction,
        )

    async def commit(self, transaction_id: str) -> TransactionResult:
        """
        Apply the whole log in one store write, or refuse and persist nothing.

        The schema is written before the transaction is marked committed.
        If that second write raises StoreError the new version is already
        stored while the transaction stays pending, and retrying the
        commit materializes another version on top of it. Check
        resolve_head before retrying after a StoreError.
        """
        transaction = await self.transaction_store.get(transaction_id)
        if transaction is None:
            return self._failure(
                ErrorKind.NOT_FOUND, f"Transaction {transaction_id} not found"
            )
        if transaction.is_terminal:
            return self._terminal_failure(transaction)

        schema, failure = await self._load_live_schema(transaction)
        if failure:
            return failure

        replay = await self.evaluate(schema, transaction.operations)

        if replay.has_errors:
            for operation in transaction.operations:
                if operation.order in replay.failed:
                    operation.status = OperationStatus.FAILED
                    operation.error_message = replay.failed[operation.order]
                else:
                    operation.status = OperationStatus.PENDING
                    operation.error_message = None
            message = f"Commit refused: {replay.message}"
            transaction.error_message = message
            transaction = await self.transaction_store.save(transaction)
            logger.warning(f"Transaction {transaction_id}: {message}")

            return TransactionResult(
                success=False,
                message=message,
                transaction_id=transaction.id,
                transaction=transaction,
                error=ErrorKind.CONFLICT if replay.conflicts else ErrorKind.BREAKING_CHANGE,
                conflicts=replay.conflicts,
                breaking_changes=replay.breaking_changes,
                warnings=replay.warnings,
            )

        candidate = self._materialize(schema, replay, transaction.options)
        if transaction.options.activate:
            batch = await self.versioning.activation_batch(candidate.project_id, candidate)
            saved = (await self.schema_store.save_many(batch))[-1]
        else:
            saved = await self.schema_store.save(candidate)

        now = utcnow()
        for operation in transaction.operations:
            operation.status = OperationStatus.APPLIED
            operation.error_message = None
        transaction.status = TransactionStatus.COMMITTED
        transaction.completed_at = now
        transaction.error_message = None
        transaction = await self.transaction_store.save(transaction)

        comment = f" ({transaction.options.comment})" if transaction.options.comment else ""
        logger.info(
            f"Committed transaction {transaction_id}: schema {saved.id} "
            f"v{saved.version}, {len(transaction.operations)} operations{comment}"
        )

        return TransactionResult(
            success=True,
            message=f"Committed {len(transaction.operations)} operations",
            transaction_id=transaction.id,
            transaction=transaction,
            schema=saved,
            warnings=replay.warnings,
        )

    async def rollback(self, transaction_id: str) -> TransactionResult:
        """Discard a pending transaction; the schema was never touched."""
        transaction = await self.transaction_store.get(transaction_id)
        if transaction is None:
            return self._failure(
                ErrorKind.NOT_FOUND, f"Transaction {transaction_id} not found"
            )
        if transaction.is_terminal:
            return self._terminal_failure(transaction)

        transaction.status = TransactionStatus.ROLLED_BACK
        transaction.completed_at = utcnow()
        transaction = await self.transaction_store.save(transaction)
        logger.info(f"Rolled back transaction {transaction_id}")

        return TransactionResult(
            success=True,
            message="Transaction rolled back",
            transaction_id=transaction.id,
            transaction=transaction,
        )

    async def preview(self, transaction_id: str) -> TransactionResult:
        """Evaluate the log exactly like commit without saving anything."""
        transaction = await self.transaction_store.get(transaction_id)
        if transaction is None:
            return self._failure(
                ErrorKind.NOT_FOUND, f"Transaction {transaction_id} not found"
            )

        schema, failure = await self._load_live_schema(transaction)
        if failure:
            return failure

        replay = await self.evaluate(schema, transaction.operations)
        if replay.has_errors:
            return TransactionResult(
                success=False,
                message=f"Commit would be refused: {replay.message}",
                transaction_id=transaction.id,
                transaction=transaction,
                error=ErrorKind.CONFLICT if replay.conflicts else ErrorKind.BREAKING_CHANGE,
                conflicts=replay.conflicts,
                breaking_changes=replay.breaking_changes,
                warnings=replay.warnings,
            )

        return TransactionResult(
            success=True,
            message=f"{len(transaction.operations)} operations would apply cleanly",
            transaction_id=transaction.id,
            transaction=transaction,
            schema=self._materialize(schema, replay, transaction.options),
            warnings=replay.warnings,
        )

    # Queries

    async def get_transaction(self, transaction_id: str) -> TransactionResult:
        transaction = await self.transaction_store.get(transaction_id)
        if transaction is None:
            return self._failure(
                ErrorKind.NOT_FOUND, f"Transaction {transaction_id} not found"
            )
        return TransactionResult(
            success=True, transaction_id=transaction.id, transaction=transaction
        )

    async def get_transactions_for_schema(self, schema_id: str) -> List[SchemaTransaction]:
        return await self.transaction_store.list_for_schema(schema_id)

    # Replay

    def replay(
        self, schema: GlobalSchema, operations: List[SchemaOperation]
    ) -> ReplayResult:
        """Apply operations in log order to a working copy of the schema."""
        result = ReplayResult(columns=[c.model_copy(deep=True) for c in schema.columns])

        for operation in operations:
            before = len(result.conflicts) + len(result.breaking_changes)
            try:
                self._replay_operation(result, operation)
            except ValidationError as e:
                result.conflicts.append(
                    ImpactIssue(
                        operation.target,
                        IssueKind.INVALID_DEFINITION,
                        f"Operation {operation.label} produces an invalid column: "
                        f"{_validation_message(e)}",
                    )
                )

            issues = (result.conflicts + result.breaking_changes)[before:]
            if issues:
                result.failed[operation.order] = "; ".join(str(i) for i in issues)
                logger.debug(f"Replay {operation.label} failed: {result.failed[operation.order]}")
            else:
                logger.debug(f"Replay {operation.label} applied")

        return result

    def _replay_operation(self, result: ReplayResult, operation: SchemaOperation) -> None:
        working = result.columns
        analyzer = self.analyzer

        if operation.type == OperationType.ADD_COLUMN:
            column = SchemaColumn.model_validate(operation.params)
            impact = analyzer.analyze_additions(working, [column])
            result.warnings.extend(impact.warnings)
            if impact.conflicts:
                result.conflicts.extend(impact.conflicts)
                return
            working.append(column)

        elif operation.type == OperationType.REMOVE_COLUMN:
            existing = _find(working, operation.target)
            if existing is None:
                result.conflicts.append(analyzer.missing_column(operation.target))
                return
            removal = analyzer.analyze_removal(existing)
            if removal.blocked:
                result.breaking_changes.append(removal.as_issue())
                return
            working.remove(existing)
            result.touched_column_ids.append(existing.id)

        elif operation.type == OperationType.MODIFY_COLUMN:
            patch = ColumnPatch.model_validate(operation.params)
            existing = _find(working, operation.target)
            if existing is None:
                result.conflicts.append(analyzer.missing_column(operation.target))
                return

            conflicts = []
            if patch.name is not None and patch.name.lower() != existing.key:
                conflicts = analyzer.analyze_rename(working, existing, patch.name)
            impact = analyzer.analyze_update(existing, patch)
            result.warnings.extend(impact.warnings)
            if conflicts or impact.breaking_changes:
                result.conflicts.extend(conflicts)
                result.breaking_changes.extend(impact.breaking_changes)
                return

            working[working.index(existing)] = existing.apply_patch(patch)
            result.touched_column_ids.append(existing.id)

        elif operation.type == OperationType.UPDATE_SCHEMA:
            patch = SchemaPatch.model_validate(operation.params)
            if patch.columns is not None:
                impact = analyzer.analyze_replacement(working, patch.columns)
                result.warnings.extend(impact.warnings)
                if impact.has_errors:
                    result.conflicts.extend(impact.conflicts)
                    result.breaking_changes.extend(impact.breaking_changes)
                    return

                matches = [(column, _find(working, column.name)) for column in patch.columns]
                used_ids = {existing.id for _, existing in matches if existing is not None}
                replaced = []
                for column, existing in matches:
                    if existing is not None:
                        column = column.model_copy(update={"id": existing.id})
                        if column.name in impact.modified or existing.name in impact.modified:
                            result.touched_column_ids.append(existing.id)
                    elif column.id in used_ids:
                        column = column.model_copy(update={"id": new_column_id()})
                    else:
                        used_ids.add(column.id)
                    replaced.append(column)
                kept_keys = {c.key for c in replaced}
                result.touched_column_ids.extend(
                    c.id for c in working if c.key not in kept_keys
                )
                result.columns = replaced
            if patch.name is not None:
                result.name = patch.name
            if "description" in patch.model_fields_set:
                result.description = patch.description

    async def evaluate(
        self, schema: GlobalSchema, operations: List[SchemaOperation]
    ) -> ReplayResult:
        result = self.replay(schema, operations)
        if not result.has_errors:
            for column_id in dict.fromkeys(result.touched_column_ids):
                result.warnings.extend(await self.analyzer.check_mapping_impact(column_id))
        return result

    def _materialize(
        self, schema: GlobalSchema, replay: ReplayResult, options: TransactionOptions
    ) -> GlobalSchema:
        if options.create_new_version:
            return self.versioning.materialize_new_version(
                schema, replay.columns, replay.name, replay.description
            )
        return self.versioning.apply_in_place(
            schema, replay.columns, replay.name, replay.description
        )

    # Helpers

    def _build_operation(
        self, operation_type: Any, target: Optional[str], params: Dict[str, Any]
    ) -> SchemaOperation:
        try:
            op_type = OperationType(operation_type)
        except ValueError as e:
            raise InvalidRequestError(
                f"Unknown operation type: {operation_type!r}"
            ) from e

        if not isinstance(params, dict):
            raise InvalidRequestError("Operation params must be a mapping")

        if op_type == OperationType.UPDATE_SCHEMA:
            if target not in (None, SCHEMA_TARGET):
                raise InvalidRequestError(
                    f"update_schema targets the whole schema ('{SCHEMA_TARGET}'), "
                    f"got {target!r}"
                )
            target = SCHEMA_TARGET
        elif not isinstance(target, str) or not target.strip():
            raise InvalidRequestError(f"{op_type.value} requires a target column name")
        else:
            target = target.strip()

        try:
            if op_type == OperationType.ADD_COLUMN:
                if "id" in params:
                    raise InvalidRequestError("add_column assigns the column id itself")
                params = dict(params)
                name = params.setdefault("name", target)
                if not isinstance(name, str) or name.strip().lower() != target.lower():
                    raise InvalidRequestError(
                        f"Column name {name!r} does not match target '{target}'"
                    )
                column = SchemaColumn.model_validate(params)
                params = column.model_dump(mode="json")
                target = column.name

            elif op_type == OperationType.REMOVE_COLUMN:
                if params:
                    raise InvalidRequestError("remove_column takes no params")

            elif op_type == OperationType.MODIFY_COLUMN:
                patch = ColumnPatch.model_validate(params)
                if patch.is_empty:
                    raise InvalidRequestError("modify_column requires at least one field")
                params = patch.model_dump(mode="json", exclude_unset=True)

            else:
                schema_patch = SchemaPatch.model_validate(params)
                if not schema_patch.model_fields_set:
                    raise InvalidRequestError("update_schema requires at least one field")
                params = schema_patch.model_dump(mode="json", exclude_unset=True)

        except ValidationError as e:
            raise InvalidRequestError(
                f"Invalid params for {op_type.value}: {_validation_message(e)}"
            ) from e

        return SchemaOperation(type=op_type, target=target, params=params)

    async def _load_live_schema(self, transaction: SchemaTransaction):
        schema = await self.versioning.resolve_head(transaction.schema_id)
        if schema is None:
            return None, self._failure(
                ErrorKind.NOT_FOUND,
                f"Schema {transaction.schema_id} not found",
                transaction,
            )
        if schema.owner_id != transaction.user_id:
            return None, self._failure(
                ErrorKind.FORBIDDEN,
                f"User {transaction.user_id} is not allowed to modify schema {schema.id}",
                transaction,
            )
        return schema, None

    def _terminal_failure(self, transaction: SchemaTransaction) -> TransactionResult:
        return self._failure(
            ErrorKind.INVALID_STATE,
            f"Transaction {transaction.id} is already {transaction.status.value}",
            transaction,
        )

    @staticmethod
    def _failure(
        kind: ErrorKind,
        message: str,
        transaction: Optional[SchemaTransaction] = None,
    ) -> TransactionResult:
        logger.warning(message)
        return TransactionResult(
            success=False,
            message=message,
            transaction_id=transaction.id if transaction else None,
            transaction=transaction,
            error=kind,
        )
