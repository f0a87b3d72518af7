"""
PostgreSQL connection and table management for schemata.
"""

from .connection import ConnectionPool, connection_from_url
from .metadata import MetadataManager

__all__ = ["ConnectionPool", "connection_from_url", "MetadataManager"]
