from .errors import IO_ERROR, MISSING_TABLE, MissingTableError, StoreError
from .storage import IncidentStore

__all__ = [
    "IncidentStore",
    "StoreError",
    "MissingTableError",
    "IO_ERROR",
    "MISSING_TABLE",
]
