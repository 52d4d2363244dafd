"""Tests for backup creation, rotation and restore."""
import gzip
import json
import re

import pytest

from bearnotes.backup import BackupManager
from bearnotes.exceptions import ParseError, ReadError, ValidationError
from bearnotes.models.db_models import init_db
from bearnotes.services.category_service import CategoryService
from bearnotes.services.note_service import NoteService


def _read(path):
    with gzip.open(path, "rt", encoding="utf-8") as f:
        return json.load(f)


class TestCreateBackup:
    """Tests for writing backups."""

    def test_create_full_backup(self, backup_manager, note_service, category_service, work_category):
        note = note_service.create_note(title="Plan", content="Q1 plan", category_id=work_category.id)

        path = backup_manager.create_backup(note_service, category_service)

        assert path.exists()
        assert re.match(r"^bearnotes_backup_full_\d{8}T\d{6}(_\w+)?\.json\.gz$", path.name)
        payload = _read(path)
        assert payload["backup_type"] == "full"
        assert payload["owner_id"] == "user-1"
        assert [n["id"] for n in payload["notes"]] == [note.id]
        assert [c["id"] for c in payload["categories"]] == [work_category.id]

    def test_notes_only_backup(self, backup_manager, note_service, category_service, work_category):
        note_service.create_note(title="Plan", content="c")
        payload = _read(backup_manager.create_backup(note_service, category_service, "notes"))
        assert len(payload["notes"]) == 1
        assert payload["categories"] == []

    def test_invalid_type(self, backup_manager, note_service, category_service):
        with pytest.raises(ValidationError) as exc_info:
            backup_manager.create_backup(note_service, category_service, "everything")
        assert exc_info.value.field == "backup_type"

    def test_rotation(self, backup_manager, note_service, category_service):
        for _ in range(5):
            backup_manager.create_backup(note_service, category_service)
        assert len(backup_manager.list_backups()) == 3

    def test_clean_old_backups(self, backup_manager, note_service, category_service):
        for _ in range(3):
            backup_manager.create_backup(note_service, category_service)
        assert backup_manager.clean_old_backups(1) == 2
        assert len(backup_manager.list_backups()) == 1
        assert backup_manager.clean_old_backups() == 0
        with pytest.raises(ValidationError):
            backup_manager.clean_old_backups(-1)

    def test_list_backups(self, backup_manager, note_service, category_service):
        assert backup_manager.list_backups() == []
        backup_manager.create_backup(note_service, category_service, "notes")
        [info] = backup_manager.list_backups()
        assert info["type"] == "notes"
        assert set(info) == {"path", "name", "type", "size_bytes", "size_mb", "created_at"}
        assert info["size_bytes"] > 0


class TestRestoreBackup:
    """Tests for restoring backups through the services."""

    def test_restore_after_delete(
        self, backup_manager, note_service, category_service, maintainer, work_category
    ):
        kept = note_service.create_note(title="Kept", content="c", category_id=work_category.id)
        lost = note_service.create_note(title="Lost", content="c", category_id=work_category.id)
        path = backup_manager.create_backup(note_service, category_service)
        note_service.delete_note(lost.id)

        result = backup_manager.restore_backup(path, note_service, category_service)

        assert result.success is True
        assert result.notes_restored == 1
        assert result.notes_skipped == 1
        assert result.categories_reused == 1
        assert result.categories_restored == 0
        restored = note_service.get_note(lost.id)
        assert restored is not None
        assert restored.category_id == work_category.id
        assert note_service.get_note(kept.id) is not None
        assert category_service.get_category(work_category.id).metadata.note_count == 2
        assert maintainer.verify("user-1") == {}

    def test_restore_clear_existing(self, backup_manager, note_service, category_service, maintainer):
        note_service.create_note(title="Old", content="c")
        path = backup_manager.create_backup(note_service, category_service)
        note_service.create_note(title="Newer", content="c")

        result = backup_manager.restore_backup(path, note_service, category_service, clear_existing=True)

        assert result.notes_removed == 2
        assert result.notes_restored == 1
        assert [n.title for n in note_service.all_notes()] == ["Old"]
        assert maintainer.verify("user-1") == {}

    def test_restore_into_empty_store(self, backup_manager, note_service, category_service, tmp_path, work_category):
        child = category_service.create_category(name="Meetings", parent_id=work_category.id)
        note = note_service.create_note(title="Plan", content="c", category_id=work_category.id)
        path = backup_manager.create_backup(note_service, category_service)

        engine = init_db(f"sqlite:///{tmp_path / 'restored.db'}")
        try:
            fresh_notes = NoteService(owner_id="user-1", engine=engine)
            fresh_categories = CategoryService(owner_id="user-1", engine=engine)

            result = backup_manager.restore_backup(path, fresh_notes, fresh_categories)

            assert result.success is True
            assert result.categories_restored == 2
            assert result.notes_restored == 1
            restored_note = fresh_notes.get_note(note.id)
            assert restored_note.title == "Plan"
            assert restored_note.category_id == work_category.id
            assert fresh_categories.get_category(child.id).parent_id == work_category.id
            assert fresh_categories.get_category(work_category.id).metadata.note_count == 1
        finally:
            engine.dispose()

    def test_missing_category_restores_uncategorized(
        self, backup_manager, note_service, category_service, work_category
    ):
        note = note_service.create_note(title="Plan", content="c", category_id=work_category.id)
        path = backup_manager.create_backup(note_service, category_service, "notes")
        note_service.delete_note(note.id)
        category_service.delete_category(work_category.id)

        result = backup_manager.restore_backup(path, note_service, category_service)

        assert result.notes_restored == 1
        assert note_service.get_note(note.id).category_id is None


class TestReadBackup:
    """Tests for rejecting unreadable backups."""

    def test_missing_file(self, tmp_path):
        with pytest.raises(ReadError):
            BackupManager.read_backup(tmp_path / "missing.json.gz")

    def test_not_gzip(self, tmp_path):
        path = tmp_path / "garbage.json.gz"
        path.write_bytes(b"definitely not gzip")
        with pytest.raises(ReadError):
            BackupManager.read_backup(path)

    def test_not_json(self, tmp_path):
        path = tmp_path / "text.json.gz"
        with gzip.open(path, "wt", encoding="utf-8") as f:
            f.write("{not json")
        with pytest.raises(ParseError):
            BackupManager.read_backup(path)

    def test_wrong_shape(self, tmp_path):
        path = tmp_path / "shape.json.gz"
        with gzip.open(path, "wt", encoding="utf-8") as f:
            json.dump({"notes": 1}, f)
        with pytest.raises(ParseError):
            BackupManager.read_backup(path)
