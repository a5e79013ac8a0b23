"""SQLite statement executor and database configuration."""

from triggerlab.persistence.config import (
    DatabaseConfig,
    create_engine,
    resolve_metadata_path,
)
from triggerlab.persistence.sqlite import (
    MAX_CASCADE_DEPTH,
    DropResult,
    SQLiteEngine,
    StatementResult,
)

__all__ = [
    "DatabaseConfig",
    "DropResult",
    "MAX_CASCADE_DEPTH",
    "SQLiteEngine",
    "StatementResult",
    "create_engine",
    "resolve_metadata_path",
]
