"""
Impact analysis for proposed global schema changes.

Classifies column additions, updates and removals against an existing
column set as conflicts, breaking changes or warnings. Everything here is
pure logic over in-memory column descriptions, except for the optional
mapping lookup which delegates to a ColumnMappingCollaborator.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Sequence, Union

from .mapping import ColumnMappingCollaborator
from .models import (
    ColumnPatch,
    ColumnType,
    SchemaColumn,
    ValidationRule,
    find_duplicate_names,
)


logger = logging.getLogger(__name__)


# Directed widening table: from -> types it may safely become.
COMPATIBLE_TYPE_CHANGES: Dict[str, List[str]] = {
    "integer": ["numeric", "text"],
    "numeric": ["text"],
    "boolean": ["text"],
    "timestamp": ["text"],
    "text": [],
}

REQUIRED_REMOVAL_SUGGESTION = (
    "Consider creating a new version of the schema with this column "
    "marked as optional first"
)


def _type_name(value: Union[str, ColumnType]) -> str:
    if isinstance(value, ColumnType):
        return value.value
    return str(value).lower()


def is_compatible_type_change(
    existing_type: Union[str, ColumnType], new_type: Union[str, ColumnType]
) -> bool:
    """Check whether a column type may change without losing data."""
    old = _type_name(existing_type)
    new = _type_name(new_type)
    return old == new or new in COMPATIBLE_TYPE_CHANGES.get(old, [])


def are_validation_rules_stricter(
    existing_rules: Sequence[ValidationRule], new_rules: Sequence[ValidationRule]
) -> bool:
    """Approximate "stricter" as "more rules than before"."""
    return len(new_rules) > len(existing_rules)


class IssueKind(str, Enum):
    """Categories of impact issues."""

    # Conflicts
    DUPLICATE_NAME = "duplicate_name"
    MISSING_COLUMN = "missing_column"
    INVALID_DEFINITION = "invalid_definition"

    # Breaking changes
    TYPE_NARROWING = "type_narrowing"
    REQUIRED_REMOVAL = "required_removal"

    # Warnings
    REQUIRED_ADDED = "required_added"
    PRIMARY_KEY_ADDED = "primary_key_added"
    FOREIGN_KEY_ADDED = "foreign_key_added"
    BECAME_REQUIRED = "became_required"
    BECAME_PRIMARY_KEY = "became_primary_key"
    BECAME_FOREIGN_KEY = "became_foreign_key"
    STRICTER_RULES = "stricter_rules"
    MAPPED_COLUMN = "mapped_column"


_CONFLICT_KINDS = {
    IssueKind.DUPLICATE_NAME,
    IssueKind.MISSING_COLUMN,
    IssueKind.INVALID_DEFINITION,
}
_BREAKING_KINDS = {IssueKind.TYPE_NARROWING, IssueKind.REQUIRED_REMOVAL}


@dataclass(frozen=True)
class ImpactIssue:
    """A single finding about a proposed change."""

    column: str
    kind: IssueKind
    message: str

    @property
    def is_conflict(self) -> bool:
        return self.kind in _CONFLICT_KINDS

    @property
    def is_breaking(self) -> bool:
        return self.kind in _BREAKING_KINDS

    @property
    def is_warning(self) -> bool:
        return not (self.is_conflict or self.is_breaking)

    def __str__(self) -> str:
        return self.message


@dataclass
class AdditionImpact:
    """Result of analyzing column additions."""

    conflicts: List[ImpactIssue] = field(default_factory=list)
    warnings: List[ImpactIssue] = field(default_factory=list)

    @property
    def has_conflicts(self) -> bool:
        return bool(self.conflicts)


@dataclass
class UpdateImpact:
    """Result of analyzing a column update."""

    breaking_changes: List[ImpactIssue] = field(default_factory=list)
    warnings: List[ImpactIssue] = field(default_factory=list)

    @property
    def has_breaking_changes(self) -> bool:
        return bool(self.breaking_changes)


@dataclass
class RemovalImpact:
    """Result of analyzing a column removal."""

    column: str
    blocked: bool = False
    reason: Optional[str] = None
    suggestion: Optional[str] = None

    def as_issue(self) -> Optional[ImpactIssue]:
        if not self.blocked:
            return None
        return ImpactIssue(self.column, IssueKind.REQUIRED_REMOVAL, self.reason)


@dataclass
class ReplacementImpact:
    """Result of analyzing a whole column-set replacement."""

    conflicts: List[ImpactIssue] = field(default_factory=list)
    breaking_changes: List[ImpactIssue] = field(default_factory=list)
    warnings: List[ImpactIssue] = field(default_factory=list)
    added: List[str] = field(default_factory=list)
    removed: List[str] = field(default_factory=list)
    modified: List[str] = field(default_factory=list)

    @property
    def has_errors(self) -> bool:
        return bool(self.conflicts or self.breaking_changes)


class ImpactAnalyzer:
    """Evaluates proposed column changes against an existing column set."""

    def __init__(self, mapping_collaborator: Optional[ColumnMappingCollaborator] = None):
        self.mapping_collaborator = mapping_collaborator

    def analyze_additions(
        self, existing: Sequence[SchemaColumn], additions: Sequence[SchemaColumn]
    ) -> AdditionImpact:
        """Check new columns for name collisions and risky constraints."""
        impact = AdditionImpact()
        taken = {column.key for column in existing}

        for column in additions:
            if column.key in taken:
                impact.conflicts.append(
                    ImpactIssue(
                        column.name,
                        IssueKind.DUPLICATE_NAME,
                        f"Column name '{column.name}' already exists in the schema",
                    )
                )
            taken.add(column.key)

            if column.is_required:
                impact.warnings.append(
                    ImpactIssue(
                        column.name,
                        IssueKind.REQUIRED_ADDED,
                        f"Adding required column '{column.name}' may cause issues "
                        f"with existing data",
                    )
                )
            if column.is_primary_key:
                impact.warnings.append(
                    ImpactIssue(
                        column.name,
                        IssueKind.PRIMARY_KEY_ADDED,
                        f"Adding primary key column '{column.name}' may cause issues "
                        f"with existing data",
                    )
                )
            if column.is_foreign_key:
                impact.warnings.append(
                    ImpactIssue(
                        column.name,
                        IssueKind.FOREIGN_KEY_ADDED,
                        f"Adding foreign key column '{column.name}' may require "
                        f"additional configuration",
                    )
                )

        return impact

    def analyze_update(
        self, existing_column: SchemaColumn, patch: ColumnPatch
    ) -> UpdateImpact:
        """Check a column patch for type narrowing and tightened constraints."""
        impact = UpdateImpact()
        name = existing_column.name

        if patch.type is not None and not is_compatible_type_change(
            existing_column.type, patch.type
        ):
            impact.breaking_changes.append(
                ImpactIssue(
                    name,
                    IssueKind.TYPE_NARROWING,
                    f"Changing column '{name}' type from '{_type_name(existing_column.type)}' "
                    f"to '{_type_name(patch.type)}' may cause data loss",
                )
            )

        if patch.is_required is True and not existing_column.is_required:
            impact.warnings.append(
                ImpactIssue(
                    name,
                    IssueKind.BECAME_REQUIRED,
                    f"Making column '{name}' required may cause issues with existing data",
                )
            )
        if patch.is_primary_key is True and not existing_column.is_primary_key:
            impact.warnings.append(
                ImpactIssue(
                    name,
                    IssueKind.BECAME_PRIMARY_KEY,
                    f"Making column '{name}' a primary key may cause issues "
                    f"with existing data",
                )
            )
        if patch.is_foreign_key is True and not existing_column.is_foreign_key:
            impact.warnings.append(
                ImpactIssue(
                    name,
                    IssueKind.BECAME_FOREIGN_KEY,
                    f"Making column '{name}' a foreign key may require "
                    f"additional configuration",
                )
            )
        if patch.validation_rules is not None and are_validation_rules_stricter(
            existing_column.validation_rules, patch.validation_rules
        ):
            impact.warnings.append(
                ImpactIssue(
                    name,
                    IssueKind.STRICTER_RULES,
                    f"Adding stricter validation rules to column '{name}' may cause "
                    f"issues with existing data",
                )
            )

        return impact

    def analyze_removal(self, existing_column: SchemaColumn) -> RemovalImpact:
        """Required columns can never be removed directly."""
        if existing_column.is_required:
            return RemovalImpact(
                column=existing_column.name,
                blocked=True,
                reason=f"Cannot remove required column '{existing_column.name}'",
                suggestion=REQUIRED_REMOVAL_SUGGESTION,
            )
        return RemovalImpact(column=existing_column.name)

    def analyze_rename(
        self,
        existing: Sequence[SchemaColumn],
        column: SchemaColumn,
        new_name: str,
    ) -> List[ImpactIssue]:
        """A rename may not take a name used by another column."""
        key = new_name.lower()
        for other in existing:
            if other.id != column.id and other.key == key:
                return [
                    ImpactIssue(
                        new_name,
                        IssueKind.DUPLICATE_NAME,
                        f"Cannot rename column '{column.name}' to '{new_name}': "
                        f"name already exists in the schema",
                    )
                ]
        return []

    def missing_column(self, name: str) -> ImpactIssue:
        return ImpactIssue(
            name, IssueKind.MISSING_COLUMN, f"Column '{name}' not found in the schema"
        )

    def analyze_replacement(
        self, existing: Sequence[SchemaColumn], proposed: Sequence[SchemaColumn]
    ) -> ReplacementImpact:
        """Analyze swapping the whole column set for a proposed one.

        Columns are matched by case-insensitive name. Matched columns are
        analyzed as updates, unmatched existing columns as removals and
        unmatched proposed columns as additions.
        """
        impact = ReplacementImpact()

        for name in find_duplicate_names(list(proposed)):
            impact.conflicts.append(
                ImpactIssue(
                    name,
                    IssueKind.DUPLICATE_NAME,
                    f"Column name '{name}' appears more than once",
                )
            )

        existing_by_key = {column.key: column for column in existing}
        proposed_keys = {column.key for column in proposed}

        for column in existing:
            if column.key not in proposed_keys:
                impact.removed.append(column.name)
                issue = self.analyze_removal(column).as_issue()
                if issue:
                    impact.breaking_changes.append(issue)

        added = []
        for column in proposed:
            current = existing_by_key.get(column.key)
            if current is None:
                added.append(column)
                continue
            if column.model_dump(exclude={"id"}) == current.model_dump(exclude={"id"}):
                continue
            impact.modified.append(current.name)
            update = self.analyze_update(
                current, ColumnPatch(**column.model_dump(exclude={"id"}))
            )
            impact.breaking_changes.extend(update.breaking_changes)
            impact.warnings.extend(update.warnings)

        additions = self.analyze_additions([], added)
        impact.added.extend(column.name for column in added)
        impact.warnings.extend(additions.warnings)

        logger.debug(
            f"Replacement analysis: +{len(impact.added)} -{len(impact.removed)} "
            f"~{len(impact.modified)}, {len(impact.conflicts)} conflicts, "
            f"{len(impact.breaking_changes)} breaking"
        )
        return impact

    async def check_mapping_impact(self, column_id: str) -> List[ImpactIssue]:
        """Warn about file mappings that reference a column being changed."""
        if self.mapping_collaborator is None:
            return []

        mappings = await self.mapping_collaborator.get_mappings_for_column(column_id)
        return [
            ImpactIssue(
                mapping.file_column,
                IssueKind.MAPPED_COLUMN,
                f"File '{mapping.file_id}' maps column '{mapping.file_column}' "
                f"onto schema column {column_id}",
            )
            for mapping in mappings
        ]
