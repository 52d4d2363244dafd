"""Backup utilities for the bearnotes store.

Backups are gzip-compressed JSON snapshots of one owner's notes and
categories. They are restored through the services, so category
counters are rebuilt the same way as for any other insert.
"""
import gzip
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from threading import Lock
from typing import Any, Dict, List, Optional, Union

from pydantic import ValidationError as PydanticValidationError

from bearnotes import __version__
from bearnotes.config import config
from bearnotes.exceptions import (
    BearNotesError,
    ErrorCode,
    ParseError,
    ReadError,
    StorageError,
    ValidationError,
)
from bearnotes.models.schema import Category, Note, generate_id
from bearnotes.services.category_service import CategoryService
from bearnotes.services.note_service import NoteService

logger = logging.getLogger(__name__)

BACKUP_PREFIX = "bearnotes_backup_"
BACKUP_SUFFIX = ".json.gz"
BACKUP_TYPES = ("full", "notes", "categories")

# Backup retention settings
DEFAULT_MAX_BACKUPS = 10  # Keep last N backups


@dataclass
class RestoreResult:
    """Outcome of restoring a backup."""

    backup_path: str
    categories_restored: int = 0
    categories_reused: int = 0
    notes_restored: int = 0
    notes_skipped: int = 0
    notes_removed: int = 0
    errors: List[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.errors


class BackupManager:
    """Creates, lists, rotates and restores JSON backups.

    Features:
    - Gzip compression for space efficiency
    - Rotation by count (newest ``max_backups`` are kept)
    - Restore through the services with category ID remapping
    """

    def __init__(
        self,
        backup_dir: Optional[Union[str, Path]] = None,
        max_backups: int = DEFAULT_MAX_BACKUPS,
    ):
        """Initialize the backup manager.

        Args:
            backup_dir: Directory for backups. Defaults to the configured backup dir.
            max_backups: Maximum number of backups to keep
        """
        self.backup_dir = Path(backup_dir) if backup_dir else config.get_backup_dir()
        self.max_backups = max_backups
        self._lock = Lock()

    def create_backup(
        self,
        note_service: NoteService,
        category_service: CategoryService,
        backup_type: str = "full",
    ) -> Path:
        """Write a snapshot of the owner's data.

        Args:
            note_service: Source of the notes
            category_service: Source of the categories
            backup_type: "full", "notes" or "categories"

        Returns:
            Path to the backup file.

        Raises:
            ValidationError: If the backup type is unknown.
            StorageError: If the file cannot be written.
        """
        if backup_type not in BACKUP_TYPES:
            raise ValidationError(
                f"Invalid backup type: {backup_type}. "
                f"Valid types are: {', '.join(BACKUP_TYPES)}",
                field="backup_type",
                value=backup_type,
            )
        now = datetime.now(timezone.utc)
        payload: Dict[str, Any] = {
            "version": __version__,
            "backup_type": backup_type,
            "created_at": now.isoformat(),
            "owner_id": note_service.owner_id,
            "notes": [],
            "categories": [],
        }
        if backup_type in ("full", "notes"):
            payload["notes"] = [
                n.model_dump(mode="json") for n in note_service.all_notes()
            ]
        if backup_type in ("full", "categories"):
            payload["categories"] = [
                c.model_dump(mode="json") for c in category_service.list_categories()
            ]

        with self._lock:
            try:
                self.backup_dir.mkdir(parents=True, exist_ok=True)
                timestamp = now.strftime("%Y%m%dT%H%M%S")
                backup_path = self.backup_dir / f"{BACKUP_PREFIX}{backup_type}_{timestamp}{BACKUP_SUFFIX}"
                if backup_path.exists():
                    # Two backups within one second: keep both
                    backup_path = self.backup_dir / (
                        f"{BACKUP_PREFIX}{backup_type}_{timestamp}_{generate_id()[-6:]}{BACKUP_SUFFIX}"
                    )
                with gzip.open(backup_path, "wt", encoding="utf-8", compresslevel=6) as f:
                    json.dump(payload, f, ensure_ascii=False)
            except OSError as e:
                raise StorageError(
                    f"Failed to write backup to {self.backup_dir}",
                    operation="create_backup",
                    code=ErrorCode.STORAGE_WRITE_FAILED,
                    original_error=e,
                )

            size_mb = backup_path.stat().st_size / (1024 * 1024)
            logger.info(
                f"Backup created: {backup_path} ({len(payload['notes'])} notes, "
                f"{len(payload['categories'])} categories, {size_mb:.2f} MB)"
            )
            self._rotate_backups(self.max_backups)
        return backup_path

    def _backup_files(self) -> List[Path]:
        """Backup files, newest first."""
        if not self.backup_dir.exists():
            return []
        return sorted(
            self.backup_dir.glob(f"{BACKUP_PREFIX}*{BACKUP_SUFFIX}"),
            key=lambda p: (p.stat().st_mtime, p.name),
            reverse=True,
        )

    def _rotate_backups(self, max_backups: int) -> int:
        """Remove backups beyond the newest ``max_backups``.

        Returns:
            Number of backups removed.
        """
        removed = 0
        for backup in self._backup_files()[max_backups:]:
            try:
                backup.unlink()
                removed += 1
                logger.debug(f"Removed old backup (count limit): {backup}")
            except OSError as e:
                logger.warning(f"Could not remove old backup {backup}: {e}")

        if removed > 0:
            logger.info(f"Rotated {removed} old backup(s)")
        return removed

    def clean_old_backups(self, max_backups: Optional[int] = None) -> int:
        """Keep only the newest ``max_backups`` backups (default: the manager's limit)."""
        limit = self.max_backups if max_backups is None else max_backups
        if limit < 0:
            raise ValidationError(
                "max_backups cannot be negative", field="max_backups", value=limit
            )
        with self._lock:
            return self._rotate_backups(limit)

    def list_backups(self) -> List[Dict[str, Any]]:
        """List all available backups, newest first.

        Returns:
            List of backup metadata dictionaries.
        """
        backups = []
        for path in self._backup_files():
            stat = path.stat()
            backup_type = path.name[len(BACKUP_PREFIX):].split("_", 1)[0]
            backups.append({
                "path": str(path),
                "name": path.name,
                "type": backup_type,
                "size_bytes": stat.st_size,
                "size_mb": round(stat.st_size / (1024 * 1024), 2),
                "created_at": datetime.fromtimestamp(
                    stat.st_mtime, tz=timezone.utc
                ).isoformat(),
            })
        return backups

    @staticmethod
    def read_backup(backup_path: Union[str, Path]) -> Dict[str, Any]:
        """Load and sanity-check a backup payload.

        Raises:
            ReadError: If the file is missing or unreadable.
            ParseError: If the content is not a backup payload.
        """
        backup_path = Path(backup_path)
        try:
            with gzip.open(backup_path, "rt", encoding="utf-8") as f:
                payload = json.load(f)
        except (OSError, EOFError, UnicodeDecodeError) as e:
            raise ReadError(
                f"Failed to read backup {backup_path.name}",
                source=str(backup_path),
                original_error=e,
            )
        except json.JSONDecodeError as e:
            raise ParseError(
                f"Backup {backup_path.name} is not valid JSON",
                source=str(backup_path),
                original_error=e,
            )
        if not isinstance(payload, dict) or not isinstance(payload.get("notes"), list) \
                or not isinstance(payload.get("categories"), list):
            raise ParseError(
                f"Backup {backup_path.name} has no notes/categories lists",
                source=str(backup_path),
            )
        return payload

    def restore_backup(
        self,
        backup_path: Union[str, Path],
        note_service: NoteService,
        category_service: CategoryService,
        clear_existing: bool = False,
    ) -> RestoreResult:
        """Restore a backup into the services' owner.

        Categories are restored first, keeping their IDs; a backup
        category whose name already exists is mapped onto the existing
        one. Notes are then inserted through ``NoteService.restore_note``.
        Notes whose ID is already present are skipped.

        Args:
            backup_path: Path to the backup file
            note_service: Destination for notes
            category_service: Destination for categories
            clear_existing: Delete all of the owner's notes first

        Returns:
            RestoreResult; per-item failures are listed in ``errors``.
        """
        payload = self.read_backup(backup_path)
        result = RestoreResult(backup_path=str(backup_path))

        with self._lock:
            if clear_existing:
                for note in note_service.all_notes():
                    if note_service.delete_note(note.id):
                        result.notes_removed += 1
                logger.info(f"Cleared {result.notes_removed} notes before restore")

            id_map = self._restore_categories(payload["categories"], category_service, result)
            self._restore_notes(payload["notes"], id_map, note_service, result)

        logger.info(
            f"Restored backup {Path(backup_path).name}: "
            f"{result.categories_restored} categories, {result.notes_restored} notes "
            f"({result.notes_skipped} skipped, {len(result.errors)} errors)"
        )
        return result

    @staticmethod
    def _restore_categories(
        items: List[Dict[str, Any]],
        category_service: CategoryService,
        result: RestoreResult,
    ) -> Dict[str, str]:
        """Restore categories and return a map of backup ID -> live ID."""
        id_map: Dict[str, str] = {}
        parents: Dict[str, str] = {}
        for item in items:
            try:
                category = Category.model_validate(item)
            except PydanticValidationError as e:
                result.errors.append(f"category {item.get('id')}: {e.errors()[0]['msg']}")
                continue
            existing = category_service.find_by_name(category.name)
            if existing is not None:
                id_map[category.id] = existing.id
                result.categories_reused += 1
                continue
            if category_service.repository.get(category.id) is not None:
                category = category.model_copy(update={"id": generate_id()})
            try:
                restored = category_service.restore_category(
                    category.model_copy(update={"parent_id": None})
                )
            except BearNotesError as e:
                result.errors.append(f"category {category.id}: {e.message}")
                continue
            id_map[item.get("id", restored.id)] = restored.id
            if category.parent_id:
                parents[restored.id] = category.parent_id
            result.categories_restored += 1

        for child_id, backup_parent_id in parents.items():
            parent_id = id_map.get(backup_parent_id)
            if parent_id is None:
                continue
            try:
                category_service.update_category(child_id, parent_id=parent_id)
            except BearNotesError as e:
                result.errors.append(f"category {child_id}: {e.message}")
        return id_map

    @staticmethod
    def _restore_notes(
        items: List[Dict[str, Any]],
        id_map: Dict[str, str],
        note_service: NoteService,
        result: RestoreResult,
    ) -> None:
        for item in items:
            try:
                note = Note.model_validate(item)
            except PydanticValidationError as e:
                result.errors.append(f"note {item.get('id')}: {e.errors()[0]['msg']}")
                continue
            if note_service.repository.exists(note.id):
                result.notes_skipped += 1
                continue
            category_id = note.category_id
            if category_id:
                category_id = id_map.get(category_id, category_id)
                live = note_service.category_repository.get(
                    category_id, owner_id=note_service.owner_id
                )
                if live is None or not live.is_active:
                    # Category not in this store: restore the note uncategorized
                    category_id = None
            try:
                note_service.restore_note(note.model_copy(update={"category_id": category_id}))
                result.notes_restored += 1
            except BearNotesError as e:
                result.errors.append(f"note {note.id}: {e.message}")
