"""
Version lineage management for global schemas.

Each new version is an immutable snapshot with a back-reference
(previous_version_id) to its predecessor. History is a walk over those
links through the store; nothing keeps live object pointers between
versions.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence

from ..exceptions import InvalidRequestError, NotFoundError
from .models import GlobalSchema, SchemaColumn, utcnow


logger = logging.getLogger(__name__)


# Column attributes compared between versions.
COMPARED_FIELDS = (
    "type",
    "description",
    "is_required",
    "is_primary_key",
    "is_foreign_key",
    "references_table",
    "references_column",
    "default_value",
    "validation_rules",
)


class ChangeAction(str, Enum):
    """Kind of change between two versions of a column."""

    ADD = "add"
    REMOVE = "remove"
    MODIFY = "modify"


@dataclass
class ColumnDiff:
    """A column present in both versions with differing attributes."""

    name: str
    before: SchemaColumn
    after: SchemaColumn
    changed_fields: List[str] = field(default_factory=list)


@dataclass
class SchemaComparison:
    """Column-level differences between two schema versions."""

    added: List[SchemaColumn] = field(default_factory=list)
    removed: List[SchemaColumn] = field(default_factory=list)
    modified: List[ColumnDiff] = field(default_factory=list)
    unchanged: List[SchemaColumn] = field(default_factory=list)

    @property
    def has_changes(self) -> bool:
        return bool(self.added or self.removed or self.modified)

    def get_summary(self) -> Dict[str, int]:
        return {
            "added": len(self.added),
            "removed": len(self.removed),
            "modified": len(self.modified),
            "unchanged": len(self.unchanged),
        }


@dataclass
class ColumnChange:
    """A flattened change log entry."""

    action: ChangeAction
    column: str
    before: Optional[Dict[str, Any]] = None
    after: Optional[Dict[str, Any]] = None


def compare_columns(
    old_columns: Sequence[SchemaColumn], new_columns: Sequence[SchemaColumn]
) -> SchemaComparison:
    """Compare two column sets by case-insensitive name."""
    comparison = SchemaComparison()
    old_by_key = {column.key: column for column in old_columns}
    new_keys = {column.key for column in new_columns}

    for column in new_columns:
        before = old_by_key.get(column.key)
        if before is None:
            comparison.added.append(column)
            continue

        changed = [
            name
            for name in COMPARED_FIELDS
            if getattr(before, name) != getattr(column, name)
        ]
        if changed:
            comparison.modified.append(
                ColumnDiff(column.name, before, column, changed)
            )
        else:
            comparison.unchanged.append(column)

    comparison.removed = [c for c in old_columns if c.key not in new_keys]
    return comparison


def change_log(comparison: SchemaComparison) -> List[ColumnChange]:
    """Flatten a comparison into add/remove/modify records."""
    changes = [
        ColumnChange(ChangeAction.ADD, c.name, after=c.model_dump(mode="json"))
        for c in comparison.added
    ]
    changes.extend(
        ColumnChange(ChangeAction.REMOVE, c.name, before=c.model_dump(mode="json"))
        for c in comparison.removed
    )
    for diff in comparison.modified:
        changes.append(
            ColumnChange(
                ChangeAction.MODIFY,
                diff.name,
                before=diff.before.model_dump(mode="json", include=set(diff.changed_fields)),
                after=diff.after.model_dump(mode="json", include=set(diff.changed_fields)),
            )
        )
    return changes


class VersioningPolicy:
    """Materializes versions and maintains lineage and activation state."""

    def __init__(self, store):
        self.store = store

    def materialize_new_version(
        self,
        base: GlobalSchema,
        columns: Sequence[SchemaColumn],
        name: Optional[str] = None,
        description: Optional[str] = None,
        activate: bool = False,
    ) -> GlobalSchema:
        """Build the successor snapshot of `base`; `base` itself is not touched."""
        now = utcnow()
        return GlobalSchema(
            owner_id=base.owner_id,
            project_id=base.project_id,
            name=name if name is not None else base.name,
            description=description if description is not None else base.description,
            columns=[column.model_copy(deep=True) for column in columns],
            version=base.version + 1,
            previous_version_id=base.id,
            is_active=activate,
            created_at=now,
            updated_at=now,
        )

    def apply_in_place(
        self,
        base: GlobalSchema,
        columns: Sequence[SchemaColumn],
        name: Optional[str] = None,
        description: Optional[str] = None,
    ) -> GlobalSchema:
        """Build an updated copy keeping id and version; only updated_at moves."""
        update = {
            "columns": [column.model_copy(deep=True) for column in columns],
            "updated_at": utcnow(),
        }
        if name is not None:
            update["name"] = name
        if description is not None:
            update["description"] = description
        return GlobalSchema.model_validate({**base.model_dump(), **update})

    async def resolve_head(self, schema_id: str) -> Optional[GlobalSchema]:
        """Return the newest version among every descendant of schema_id."""
        start = await self.store.get_by_id(schema_id)
        if start is None:
            return None

        head = start
        visited = {start.id}
        pending = [start]
        while pending:
            current = pending.pop()
            for successor in await self.store.list_successors(current.id):
                if successor.id in visited:
                    continue
                visited.add(successor.id)
                pending.append(successor)
                if (successor.version, successor.created_at) > (head.version, head.created_at):
                    head = successor
        return head

    async def get_history(self, schema_id: str) -> List[GlobalSchema]:
        """Walk previous_version_id links back to version 1, newest first."""
        schema = await self.store.get_by_id(schema_id)
        if schema is None:
            raise NotFoundError(f"Schema {schema_id} not found")

        history = [schema]
        seen = {schema.id}
        while schema.previous_version_id and schema.previous_version_id not in seen:
            previous = await self.store.get_by_id(schema.previous_version_id)
            if previous is None:
                logger.warning(
                    f"Lineage of {schema_id} is broken at {schema.previous_version_id}"
                )
                break
            history.append(previous)
            seen.add(previous.id)
            schema = previous
        return history

    async def get_version(self, schema_id: str, version: int) -> Optional[GlobalSchema]:
        """Find a version number anywhere in the lineage of schema_id."""
        head = await self.resolve_head(schema_id)
        if head is None:
            raise NotFoundError(f"Schema {schema_id} not found")
        for schema in await self.get_history(head.id):
            if schema.version == version:
                return schema
        return None

    async def activation_batch(
        self, project_id: Optional[str], target: GlobalSchema
    ) -> List[GlobalSchema]:
        """Schemas to write so that `target` is the only active one in the project."""
        if target.project_id != project_id:
            raise InvalidRequestError(
                f"Schema {target.id} does not belong to project {project_id}"
            )

        if project_id is None:
            return [target.model_copy(update={"is_active": True})]

        batch = []
        for sibling in await self.store.list_for_project(project_id, active_only=True):
            if sibling.id != target.id:
                batch.append(sibling.model_copy(update={"is_active": False}))
        batch.append(target.model_copy(update={"is_active": True}))
        return batch

    async def set_active(self, project_id: str, schema_id: str) -> GlobalSchema:
        """Deactivate every other schema of the project and activate schema_id."""
        target = await self.store.get_by_id(schema_id)
        if target is None:
            raise NotFoundError(f"Schema {schema_id} not found")

        batch = await self.activation_batch(project_id, target)
        saved = await self.store.save_many(batch)
        logger.info(
            f"Activated schema {schema_id} in project {project_id} "
            f"({len(batch) - 1} deactivated)"
        )
        return saved[-1]
