from dataclasses import dataclass


@dataclass
class StoreError(Exception):
    code: str
    message: str


@dataclass
class MissingTableError(StoreError):
    table: str


# Known error codes
IO_ERROR = "IO_ERROR"
MISSING_TABLE = "MISSING_TABLE"


__all__ = [
    "StoreError",
    "MissingTableError",
    "IO_ERROR",
    "MISSING_TABLE",
]
