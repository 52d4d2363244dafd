"""Tests for configuration, command line handling and the exception hierarchy."""
from pathlib import Path

import pytest
from pydantic import ValidationError as PydanticValidationError

from bearnotes.config import BearNotesConfig
from bearnotes.exceptions import (
    CategoryNotFoundError,
    ConfigurationError,
    ErrorCode,
    NoteNotFoundError,
    StorageError,
    ValidationError,
)
from bearnotes.main import parse_args, update_config
from bearnotes.models.schema import Category


class TestConfig:
    """Tests for BearNotesConfig."""

    def test_relative_paths_resolve_against_base_dir(self, tmp_path):
        cfg = BearNotesConfig(base_dir=tmp_path)
        assert cfg.get_absolute_path(Path("data/x.db")) == tmp_path / "data" / "x.db"
        assert cfg.get_absolute_path(tmp_path / "abs.db") == tmp_path / "abs.db"

    def test_db_url_creates_parent_directory(self, tmp_path):
        cfg = BearNotesConfig(base_dir=tmp_path, database_path=Path("db/notes.db"))
        assert cfg.get_db_url() == f"sqlite:///{tmp_path / 'db' / 'notes.db'}"
        assert (tmp_path / "db").is_dir()

    def test_in_memory_url(self):
        assert BearNotesConfig(in_memory_db=True).get_db_url() == "sqlite://"

    def test_backup_dir_created(self, tmp_path):
        cfg = BearNotesConfig(base_dir=tmp_path, backup_dir=Path("backups"))
        assert cfg.get_backup_dir() == tmp_path / "backups"
        assert (tmp_path / "backups").is_dir()

    def test_invalid_sizes(self):
        with pytest.raises(ValueError):
            BearNotesConfig(max_backups=0)
        with pytest.raises(ValueError):
            BearNotesConfig(default_page_size=50, max_page_size=10)


class TestCommandLine:
    """Tests for argument parsing and config overrides."""

    def test_parse_args(self):
        args = parse_args(["--owner", "alice", "--log-level", "DEBUG", "--backup-dir", "/tmp/b"])
        assert args.owner == "alice"
        assert args.log_level == "DEBUG"
        assert args.backup_dir == "/tmp/b"

    def test_update_config(self, test_config, tmp_path):
        args = parse_args([
            "--owner", " alice ",
            "--database-path", str(tmp_path / "other.db"),
            "--backup-dir", str(tmp_path / "other-backups"),
        ])
        update_config(args)
        assert test_config.owner_id == "alice"
        assert test_config.database_path == tmp_path / "other.db"
        assert test_config.backup_dir == tmp_path / "other-backups"

    def test_blank_owner_rejected(self, test_config):
        with pytest.raises(ConfigurationError) as exc_info:
            update_config(parse_args(["--owner", "  "]))
        assert exc_info.value.setting == "owner_id"
        assert exc_info.value.code == ErrorCode.CONFIG_INVALID
        assert test_config.owner_id == "user-1"


class TestExceptions:
    """Tests for the structured error types."""

    def test_to_dict(self):
        error = NoteNotFoundError("abc")
        assert error.to_dict() == {
            "error": "NoteNotFoundError",
            "code": ErrorCode.NOTE_NOT_FOUND.value,
            "code_name": "NOTE_NOT_FOUND",
            "message": "Note with ID 'abc' not found",
            "details": {"id": "abc"},
        }

    def test_str_includes_code_and_details(self):
        assert str(CategoryNotFoundError("c1")) == (
            "[CATEGORY_NOT_FOUND] Category with ID 'c1' not found (id=c1)"
        )
        assert str(ValidationError("bad")) == "[VALIDATION_FAILED] bad"

    def test_validation_error_truncates_value(self):
        error = ValidationError("too long", field="title", value="x" * 500)
        assert error.details == {"field": "title", "value": "x" * 100}

    def test_from_pydantic_keeps_field(self):
        with pytest.raises(PydanticValidationError) as exc_info:
            Category(owner_id="u", name="   ")
        error = ValidationError.from_pydantic(exc_info.value, code=ErrorCode.CATEGORY_VALIDATION_FAILED)
        assert error.field == "name"
        assert error.message == "Category name cannot be empty"
        assert error.code == ErrorCode.CATEGORY_VALIDATION_FAILED

    def test_storage_error_details(self):
        error = StorageError("write failed", operation="create_note", original_error=OSError("disk full"))
        assert error.details == {"operation": "create_note", "original_error": "disk full"}
        assert error.code == ErrorCode.STORAGE_READ_FAILED
