"""
schemata: versioned global schemas with staged, transactional mutations.

A global schema is the canonical column set that uploaded files are
mapped onto. schemata keeps an immutable version lineage for it and lets
callers stage column changes, inspect their impact and commit or roll
them back as one unit.
"""

__version__ = "0.1.0"

from .config import SchemataConfig
from .exceptions import ConfigurationError, SchemataError, StoreError
from .schema import SchemaService, TransactionManager
from .store import StoreFactory

__all__ = [
    "__version__",
    "SchemataConfig",
    "SchemataError",
    "ConfigurationError",
    "StoreError",
    "SchemaService",
    "TransactionManager",
    "StoreFactory",
]
