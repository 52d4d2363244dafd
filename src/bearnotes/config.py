"""Configuration module for the bearnotes core."""

import logging
import os
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel, Field, model_validator

from bearnotes import __version__

# Load environment variables from the project root .env file.
# Anchored to __file__ so it works regardless of the process CWD.
_PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
load_dotenv(_PROJECT_ROOT / ".env")

# User-level config, lives alongside the default log directory
_USER_ENV = Path.home() / ".bearnotes" / ".env"
load_dotenv(_USER_ENV)


logger = logging.getLogger(__name__)


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in ("true", "1", "yes")


class BearNotesConfig(BaseModel):
    """Configuration for the bearnotes core and server."""

    # Base directory for relative paths
    base_dir: Path = Field(
        default_factory=lambda: Path(os.getenv("BEARNOTES_BASE_DIR", "."))
    )
    # Database configuration
    database_path: Path = Field(
        default_factory=lambda: Path(
            os.getenv("BEARNOTES_DATABASE_PATH", "data/db/bearnotes.db")
        )
    )
    # When True, uses an in-memory SQLite database (nothing survives the process)
    in_memory_db: bool = Field(
        default_factory=lambda: _env_flag("BEARNOTES_IN_MEMORY_DB", "false")
    )
    # Backup configuration
    backup_dir: Path = Field(
        default_factory=lambda: Path(os.getenv("BEARNOTES_BACKUP_DIR", "data/backups"))
    )
    max_backups: int = Field(
        default_factory=lambda: int(os.getenv("BEARNOTES_MAX_BACKUPS", "10"))
    )
    # Logging configuration
    log_dir: Path = Field(
        default_factory=lambda: Path(
            os.getenv("BEARNOTES_LOG_DIR", str(Path.home() / ".bearnotes" / "logs"))
        )
    )
    # The local variant has a single implicit owner
    owner_id: str = Field(default_factory=lambda: os.getenv("BEARNOTES_OWNER", "local"))
    # Listing configuration
    default_page_size: int = Field(
        default_factory=lambda: int(os.getenv("BEARNOTES_PAGE_SIZE", "20"))
    )
    max_page_size: int = Field(
        default_factory=lambda: int(os.getenv("BEARNOTES_MAX_PAGE_SIZE", "100"))
    )
    # Server configuration
    server_name: str = Field(default=os.getenv("BEARNOTES_SERVER_NAME", "bearnotes"))
    server_version: str = Field(default=__version__)

    @model_validator(mode="after")
    def _validate_sizes(self) -> "BearNotesConfig":
        """Reject sizes that would make listing or rotation meaningless."""
        if self.max_backups < 1:
            raise ValueError("max_backups must be >= 1")
        if self.default_page_size < 1:
            raise ValueError("default_page_size must be >= 1")
        if self.max_page_size < self.default_page_size:
            raise ValueError("max_page_size must be >= default_page_size")
        return self

    def get_absolute_path(self, path: Path) -> Path:
        """Convert a relative path to an absolute path based on base_dir."""
        if path.is_absolute():
            return path
        return self.base_dir / path

    def get_db_url(self) -> str:
        """Get the database URL for SQLite."""
        if self.in_memory_db:
            return "sqlite://"
        db_path = self.get_absolute_path(self.database_path)
        db_path.parent.mkdir(parents=True, exist_ok=True)
        return f"sqlite:///{db_path}"

    def get_backup_dir(self) -> Path:
        """Get the absolute backup directory, creating it if needed."""
        backup_dir = self.get_absolute_path(self.backup_dir)
        backup_dir.mkdir(parents=True, exist_ok=True)
        return backup_dir


# Create a global config instance
config = BearNotesConfig()
