"""Database and metadata path configuration."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from triggerlab.persistence.sqlite import SQLiteEngine


@dataclass
class DatabaseConfig:
    """Database connection configuration.

    Only sqlite:/// URLs are supported; ``sqlite://`` with no path is an
    in-memory database.
    """

    url: str

    @classmethod
    def from_env(cls) -> DatabaseConfig:
        """Create config from environment variables.

        Resolution order:
        1. DATABASE_URL env var (standard)
        2. TRIGGERLAB_DB_PATH env var (converted to a sqlite:/// URL)
        3. Default: in-memory database, since lab tables are throwaway
        """
        url = os.environ.get("DATABASE_URL")
        if url:
            return cls(url=url)

        db_path = os.environ.get("TRIGGERLAB_DB_PATH")
        if db_path:
            return cls(url=f"sqlite:///{db_path}")

        return cls(url="sqlite://")

    @classmethod
    def from_path(cls, db_path: Path | str | None) -> DatabaseConfig:
        if db_path is None:
            return cls.from_env()
        return cls(url=f"sqlite:///{db_path}")

    @property
    def is_sqlite(self) -> bool:
        return self.url.startswith("sqlite")

    @property
    def db_path(self) -> str:
        """Filesystem path for sqlite3.connect()."""
        path = self.url.replace("sqlite:///", "", 1).replace("sqlite://", "", 1)
        return path or ":memory:"


def create_engine(config: DatabaseConfig) -> SQLiteEngine:
    """Create a statement executor for the configured database (not yet connected).

    Raises:
        ValueError: For unsupported URL schemes.
    """
    if config.is_sqlite:
        from triggerlab.persistence.sqlite import SQLiteEngine

        return SQLiteEngine(config.db_path)

    raise ValueError(f"Unsupported database URL scheme: {config.url}")


def resolve_metadata_path(cwd: Path | None = None) -> Path:
    """Locate the metadata directory holding ``labs/``.

    TRIGGERLAB_METADATA_PATH wins; otherwise ``./metadata``, or
    ``../metadata`` when run from ``backend/``.
    """
    env_path = os.environ.get("TRIGGERLAB_METADATA_PATH")
    if env_path:
        return Path(env_path)

    cwd = cwd or Path.cwd()
    base_path = cwd.parent if cwd.name == "backend" else cwd
    return base_path / "metadata"
