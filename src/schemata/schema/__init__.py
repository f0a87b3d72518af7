"""
Schema versioning package for schemata.

This package provides:
- The global schema and transaction data model
- Impact analysis of proposed column changes
- Version lineage management and comparison
- The staged-transaction state machine
- The schema CRUD service
"""

from .impact import ImpactAnalyzer, ImpactIssue, IssueKind, is_compatible_type_change
from .mapping import ColumnMapping, ColumnMappingCollaborator
from .models import (
    SCHEMA_TARGET,
    ColumnPatch,
    ColumnType,
    GlobalSchema,
    OperationStatus,
    OperationType,
    SchemaColumn,
    SchemaOperation,
    SchemaPatch,
    SchemaTransaction,
    TransactionOptions,
    TransactionStatus,
    ValidationRule,
    ValidationRuleType,
)
from .service import SchemaResult, SchemaService
from .transactions import TransactionManager, TransactionResult
from .versioning import SchemaComparison, VersioningPolicy, compare_columns

__all__ = [
    "ImpactAnalyzer",
    "ImpactIssue",
    "IssueKind",
    "is_compatible_type_change",
    "ColumnMapping",
    "ColumnMappingCollaborator",
    "SCHEMA_TARGET",
    "ColumnPatch",
    "ColumnType",
    "GlobalSchema",
    "OperationStatus",
    "OperationType",
    "SchemaColumn",
    "SchemaOperation",
    "SchemaPatch",
    "SchemaTransaction",
    "TransactionOptions",
    "TransactionStatus",
    "ValidationRule",
    "ValidationRuleType",
    "SchemaResult",
    "SchemaService",
    "TransactionManager",
    "TransactionResult",
    "SchemaComparison",
    "VersioningPolicy",
    "compare_columns",
]
