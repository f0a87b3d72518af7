"""
Interface to the external column-mapping service.

Uploaded files are mapped onto global schema columns by a service that
lives outside this package. Impact analysis only needs to ask it which
mappings reference a given column id.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List


@dataclass(frozen=True)
class ColumnMapping:
    """A file column mapped onto a global schema column."""

    file_id: str
    file_column: str
    schema_column_id: str


class ColumnMappingCollaborator(ABC):
    """Lookup of file mappings that reference schema columns."""

    @abstractmethod
    async def get_mappings_for_column(self, column_id: str) -> List[ColumnMapping]:
        """Return every mapping that targets the given schema column id."""
