"""
Data model for global schemas, their columns and schema transactions.

All entities are Pydantic models so that anything read back from a store
is validated against a single schema-shape contract.
"""

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


SCHEMA_TARGET = "*"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_schema_id() -> str:
    return f"schema_{uuid.uuid4()}"


def new_column_id() -> str:
    return f"col_{uuid.uuid4()}"


def new_transaction_id() -> str:
    return f"transaction_{uuid.uuid4()}"


class ColumnType(str, Enum):
    """Supported global schema column types."""

    TEXT = "text"
    INTEGER = "integer"
    NUMERIC = "numeric"
    BOOLEAN = "boolean"
    TIMESTAMP = "timestamp"
    JSON = "json"
    ARRAY = "array"


class ValidationRuleType(str, Enum):
    """Kinds of column validation rules."""

    MIN = "min"
    MAX = "max"
    PATTERN = "pattern"
    ENUM = "enum"
    CUSTOM = "custom"


class ValidationRule(BaseModel):
    """A single validation rule attached to a column."""

    model_config = ConfigDict(use_enum_values=False)

    type: ValidationRuleType
    value: Any
    error_message: Optional[str] = None

    @field_validator("value")
    @classmethod
    def validate_value(cls, v: Any) -> Any:
        if v is None:
            raise ValueError("Validation rule value is required")
        return v


def _normalize_name(v: Optional[str]) -> Optional[str]:
    if v is None:
        return v
    v = v.strip()
    if not v:
        raise ValueError("Column name must not be blank")
    return v


class SchemaColumn(BaseModel):
    """A column definition within a global schema."""

    id: str = Field(default_factory=new_column_id)
    name: str
    type: ColumnType = ColumnType.TEXT
    description: Optional[str] = None
    is_required: bool = False
    is_primary_key: bool = False
    is_foreign_key: bool = False
    references_table: Optional[str] = None
    references_column: Optional[str] = None
    default_value: Optional[str] = None
    validation_rules: List[ValidationRule] = Field(default_factory=list)

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        return _normalize_name(v)

    @model_validator(mode="after")
    def check_foreign_key(self) -> "SchemaColumn":
        if self.is_foreign_key and not (self.references_table and self.references_column):
            raise ValueError(
                f"Foreign key column '{self.name}' requires references_table "
                f"and references_column"
            )
        return self

    @property
    def key(self) -> str:
        """Case-insensitive identity of the column name."""
        return self.name.lower()

    def apply_patch(self, patch: "ColumnPatch") -> "SchemaColumn":
        """Return a new column with the patch applied; the id never changes."""
        data = self.model_dump()
        data.update(patch.model_dump(exclude_unset=True))
        data["id"] = self.id
        return SchemaColumn.model_validate(data)


# Patch fields whose column counterpart has no null value.
_NON_NULLABLE_PATCH_FIELDS = (
    "name",
    "type",
    "is_required",
    "is_primary_key",
    "is_foreign_key",
    "validation_rules",
)


class ColumnPatch(BaseModel):
    """Partial column definition used by modify_column operations."""

    model_config = ConfigDict(extra="forbid")

    name: Optional[str] = None
    type: Optional[ColumnType] = None
    description: Optional[str] = None
    is_required: Optional[bool] = None
    is_primary_key: Optional[bool] = None
    is_foreign_key: Optional[bool] = None
    references_table: Optional[str] = None
    references_column: Optional[str] = None
    default_value: Optional[str] = None
    validation_rules: Optional[List[ValidationRule]] = None

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: Optional[str]) -> Optional[str]:
        return _normalize_name(v)

    @model_validator(mode="after")
    def reject_explicit_nulls(self) -> "ColumnPatch":
        nulls = [
            name
            for name in _NON_NULLABLE_PATCH_FIELDS
            if name in self.model_fields_set and getattr(self, name) is None
        ]
        if nulls:
            raise ValueError(f"Fields cannot be set to null: {', '.join(nulls)}")
        return self

    @property
    def is_empty(self) -> bool:
        return not self.model_fields_set


class GlobalSchema(BaseModel):
    """A snapshot of a global schema; one node of a version lineage."""

    id: str = Field(default_factory=new_schema_id)
    owner_id: str
    project_id: Optional[str] = None
    name: str
    description: Optional[str] = None
    columns: List[SchemaColumn] = Field(default_factory=list)
    version: int = Field(1, ge=1)
    previous_version_id: Optional[str] = None
    is_active: bool = False
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @field_validator("owner_id", "name")
    @classmethod
    def validate_required_text(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("Value must not be blank")
        return v

    @field_validator("columns")
    @classmethod
    def validate_unique_names(cls, v: List[SchemaColumn]) -> List[SchemaColumn]:
        duplicates = find_duplicate_names(v)
        if duplicates:
            raise ValueError(f"Duplicate column names: {', '.join(duplicates)}")
        ids = [column.id for column in v]
        if len(set(ids)) != len(ids):
            repeated = sorted({i for i in ids if ids.count(i) > 1})
            raise ValueError(f"Duplicate column ids: {', '.join(repeated)}")
        return v

    @property
    def column_names(self) -> List[str]:
        return [column.name for column in self.columns]

    def get_column(self, name: str) -> Optional[SchemaColumn]:
        """Find a column by case-insensitive name."""
        key = name.lower()
        for column in self.columns:
            if column.key == key:
                return column
        return None

    def has_column(self, name: str) -> bool:
        return self.get_column(name) is not None


class SchemaPatch(BaseModel):
    """Schema-level fields used by update_schema operations."""

    model_config = ConfigDict(extra="forbid")

    name: Optional[str] = None
    description: Optional[str] = None
    columns: Optional[List[SchemaColumn]] = None

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and not v.strip():
            raise ValueError("Schema name must not be blank")
        return v


class OperationType(str, Enum):
    """Types of staged schema operations."""

    ADD_COLUMN = "add_column"
    REMOVE_COLUMN = "remove_column"
    MODIFY_COLUMN = "modify_column"
    UPDATE_SCHEMA = "update_schema"


class OperationStatus(str, Enum):
    """Status of a staged operation."""

    PENDING = "pending"
    APPLIED = "applied"
    FAILED = "failed"


class TransactionStatus(str, Enum):
    """Status of a schema transaction."""

    PENDING = "pending"
    COMMITTED = "committed"
    ROLLED_BACK = "rolledback"


class SchemaOperation(BaseModel):
    """One entry of a transaction's append-only operation log."""

    type: OperationType
    target: str
    params: Dict[str, Any] = Field(default_factory=dict)
    order: int = 0
    status: OperationStatus = OperationStatus.PENDING
    error_message: Optional[str] = None

    @property
    def label(self) -> str:
        return f"#{self.order} {self.type.value} {self.target}"


class TransactionOptions(BaseModel):
    """Options fixed when a transaction begins."""

    create_new_version: bool = True
    activate: bool = False
    comment: Optional[str] = None


class SchemaTransaction(BaseModel):
    """A staged set of schema operations against one lineage."""

    id: str = Field(default_factory=new_transaction_id)
    schema_id: str
    user_id: str
    status: TransactionStatus = TransactionStatus.PENDING
    operations: List[SchemaOperation] = Field(default_factory=list)
    options: TransactionOptions = Field(default_factory=TransactionOptions)
    started_at: datetime = Field(default_factory=utcnow)
    completed_at: Optional[datetime] = None
    error_message: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.status != TransactionStatus.PENDING


def find_duplicate_names(columns: List[SchemaColumn]) -> List[str]:
    """Return names that occur more than once, compared case-insensitively."""
    seen = set()
    reported = set()
    duplicates = []
    for column in columns:
        if column.key in seen and column.key not in reported:
            duplicates.append(column.name)
            reported.add(column.key)
        seen.add(column.key)
    return duplicates
