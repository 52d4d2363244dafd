"""Service layer for note operations."""

import logging
from collections import defaultdict
from typing import Any, Dict, List, Optional, Tuple

from pydantic import ValidationError as PydanticValidationError

from bearnotes.config import config
from bearnotes.exceptions import (
    BearNotesError,
    BulkOperationError,
    CategoryNotFoundError,
    ErrorCode,
    NoteNotFoundError,
    ValidationError,
)
from bearnotes.models.db_models import init_db
from bearnotes.models.schema import (
    MAX_CONTENT_LENGTH,
    MAX_TITLE_LENGTH,
    BulkResult,
    Note,
    NoteFilter,
    NotePage,
    Pagination,
    Priority,
    SortOrder,
    UserStats,
    utc_now,
)
from bearnotes.services.reference_maintainer import ReferenceMaintainer
from bearnotes.storage.category_repository import CategoryRepository
from bearnotes.storage.note_repository import NoteRepository

logger = logging.getLogger(__name__)

COPY_SUFFIX = " (Copy)"

_TREND_FORMATS = {
    "week": lambda dt: f"{dt.isocalendar()[0]}-W{dt.isocalendar()[1]:02d}",
    "month": lambda dt: dt.strftime("%Y-%m"),
    "year": lambda dt: dt.strftime("%Y"),
}


def _validate_text(title: Optional[str], content: Optional[str]) -> None:
    """Check title/content bounds, raising ValidationError with the field name."""
    if title is not None:
        if not title.strip():
            raise ValidationError(
                "Title is required", field="title", code=ErrorCode.NOTE_TITLE_REQUIRED
            )
        if len(title.strip()) > MAX_TITLE_LENGTH:
            raise ValidationError(
                f"Title cannot exceed {MAX_TITLE_LENGTH} characters",
                field="title",
                value=title,
                code=ErrorCode.NOTE_TOO_LONG,
            )
    if content is not None:
        if not content.strip():
            raise ValidationError(
                "Content is required",
                field="content",
                code=ErrorCode.NOTE_CONTENT_REQUIRED,
            )
        if len(content) > MAX_CONTENT_LENGTH:
            raise ValidationError(
                f"Content cannot exceed {MAX_CONTENT_LENGTH} characters",
                field="content",
                code=ErrorCode.NOTE_TOO_LONG,
            )


class NoteService:
    """Note Store operations, scoped to a single owner.

    Every mutation that changes which category a note counts against is
    reported to the ReferenceMaintainer.
    """

    def __init__(
        self,
        owner_id: Optional[str] = None,
        repository: Optional[NoteRepository] = None,
        category_repository: Optional[CategoryRepository] = None,
        maintainer: Optional[ReferenceMaintainer] = None,
        engine: Optional[Any] = None,
    ):
        """Initialize the service.

        Args:
            owner_id: Owner every operation is scoped to. Defaults to config.owner_id.
            repository: Note storage backend. Created with defaults if None.
            category_repository: Category storage backend. Created with defaults if None.
            maintainer: Counter maintainer. Built from the repositories if None.
            engine: Shared SQLAlchemy engine, used for repositories created here.
        """
        self.owner_id = owner_id or config.owner_id
        if repository is None or category_repository is None:
            engine = engine or init_db()
        self.repository = repository or NoteRepository(engine=engine)
        self.category_repository = category_repository or CategoryRepository(engine=engine)
        self.maintainer = maintainer or ReferenceMaintainer(
            self.repository, self.category_repository
        )

    # =========================================================================
    # Helpers
    # =========================================================================

    def _check_category(self, category_id: str) -> None:
        """Ensure a category exists, is active and belongs to the owner."""
        category = self.category_repository.get(category_id, owner_id=self.owner_id)
        if category is None or not category.is_active:
            raise CategoryNotFoundError(category_id)

    def _save(self, before: Note, note: Note) -> Note:
        """Persist a modified note and move its counter if needed."""
        note.updated_at = utc_now()
        updated = self.repository.update(note)
        self.maintainer.note_changed(before, updated)
        return updated

    def _insert(self, note: Note) -> Note:
        created = self.repository.create(note)
        self.maintainer.note_changed(None, created)
        return created

    # =========================================================================
    # CRUD
    # =========================================================================

    def create_note(
        self,
        title: str,
        content: str,
        category_id: Optional[str] = None,
        tags: Optional[List[str]] = None,
        is_pinned: bool = False,
        is_archived: bool = False,
        is_public: bool = False,
        priority: Priority = Priority.MEDIUM,
        color: Optional[str] = None,
    ) -> Note:
        """Create a new note.

        Args:
            title: Note title (required, at most 200 characters).
            content: Note content (required, at most 50,000 characters).
            category_id: Category to file the note under (optional).
            tags: List of tag names.
            is_pinned: Initial pinned flag.
            is_archived: Initial archived flag.
            is_public: Initial public flag.
            priority: Note priority.
            color: Hex color, defaults to white.

        Returns:
            Created Note object.

        Raises:
            ValidationError: If a field is missing or out of bounds.
            CategoryNotFoundError: If the category does not belong to the owner.
        """
        _validate_text(title or "", content or "")
        if category_id:
            self._check_category(category_id)

        fields: Dict[str, Any] = {
            "owner_id": self.owner_id,
            "title": title,
            "content": content,
            "category_id": category_id,
            "tags": tags or [],
            "is_pinned": is_pinned,
            "is_archived": is_archived,
            "is_public": is_public,
            "priority": priority,
        }
        if color:
            fields["color"] = color
        try:
            note = Note(**fields)
        except PydanticValidationError as e:
            raise ValidationError.from_pydantic(e, code=ErrorCode.NOTE_VALIDATION_FAILED)
        note.refresh_metadata(edited_by=self.owner_id)

        created = self._insert(note)
        logger.info(f"Created note {created.id} for owner {self.owner_id}")
        return created

    def get_note(self, note_id: str) -> Optional[Note]:
        """Retrieve a note by ID within the owner's scope."""
        return self.repository.get(note_id, owner_id=self.owner_id)

    def require_note(self, note_id: str) -> Note:
        """Retrieve a note by ID, raising NoteNotFoundError if it is missing."""
        note = self.get_note(note_id)
        if note is None:
            raise NoteNotFoundError(note_id)
        return note

    def list_notes(self, note_filter: Optional[NoteFilter] = None) -> NotePage:
        """List notes with filtering, sorting and pagination.

        Archived notes are hidden unless ``note_filter.archived`` is True
        (only archived) or None (everything).
        """
        note_filter = note_filter or NoteFilter()
        limit = min(note_filter.limit or config.default_page_size, config.max_page_size)

        criteria: Dict[str, Any] = {
            "owner_id": self.owner_id,
            "archived": note_filter.archived,
            "pinned": note_filter.pinned,
            "tags": note_filter.tags,
            "search": note_filter.search,
        }
        if note_filter.category_id:
            criteria["category_id"] = note_filter.category_id

        total = self.repository.count(**criteria)
        items = self.repository.find(
            sort=[(note_filter.sort_by.value, note_filter.sort_order)],
            offset=(note_filter.page - 1) * limit,
            limit=limit,
            **criteria,
        )
        return NotePage(
            items=items, pagination=Pagination.build(note_filter.page, limit, total)
        )

    def find_notes(self, **criteria: Any) -> List[Note]:
        """Find the owner's notes by repository criteria (no pagination)."""
        criteria["owner_id"] = self.owner_id
        sort = criteria.pop("sort", None)
        return self.repository.find(sort=sort, **criteria)

    def all_notes(self, include_archived: bool = True) -> List[Note]:
        """All of the owner's notes, oldest first."""
        return self.find_notes(
            archived=None if include_archived else False,
            sort=[("created_at", SortOrder.ASC)],
        )

    def update_note(
        self,
        note_id: str,
        title: Optional[str] = None,
        content: Optional[str] = None,
        category_id: Optional[str] = None,
        tags: Optional[List[str]] = None,
        is_pinned: Optional[bool] = None,
        is_archived: Optional[bool] = None,
        is_public: Optional[bool] = None,
        is_locked: Optional[bool] = None,
        priority: Optional[Priority] = None,
        color: Optional[str] = None,
        edited_by: Optional[str] = None,
    ) -> Note:
        """Update an existing note.

        Only arguments that are not None are applied. Pass
        ``category_id=""`` to remove the note from its category.

        When the title or content actually changes, the previous values are
        pushed onto the history (at most 10 entries) and the version is
        incremented before the new values are applied.

        Returns:
            Updated Note object.

        Raises:
            NoteNotFoundError: If the note does not exist for this owner.
            ValidationError: If a new value is out of bounds.
            CategoryNotFoundError: If the new category does not belong to the owner.
        """
        before = self.require_note(note_id)
        _validate_text(title, content)
        if category_id:
            self._check_category(category_id)

        note = before.model_copy(deep=True)
        editor = edited_by or self.owner_id
        text_changed = (title is not None and title.strip() != note.title) or (
            content is not None and content != note.content
        )
        try:
            if text_changed:
                note.push_history(edited_by=editor)
                note.version += 1
            if title is not None:
                note.title = title
            if content is not None:
                note.content = content
            if category_id is not None:
                note.category_id = category_id or None
            if tags is not None:
                note.tags = tags
            if is_pinned is not None:
                note.is_pinned = is_pinned
            if is_archived is not None:
                note.is_archived = is_archived
            if is_public is not None:
                note.is_public = is_public
            if is_locked is not None:
                note.is_locked = is_locked
            if priority is not None:
                note.priority = priority
            if color is not None:
                note.color = color
        except PydanticValidationError as e:
            raise ValidationError.from_pydantic(e, code=ErrorCode.NOTE_VALIDATION_FAILED)

        note.refresh_metadata(edited_by=editor)
        updated = self._save(before, note)
        logger.info(f"Updated note {note_id} (version {updated.version})")
        return updated

    def delete_note(self, note_id: str) -> bool:
        """Delete a note. Returns False if the owner has no such note."""
        note = self.get_note(note_id)
        if note is None:
            return False
        if not self.repository.delete(note_id):
            return False
        self.maintainer.note_changed(note, None)
        logger.info(f"Deleted note {note_id}")
        return True

    def _toggle(self, note_id: str, attribute: str) -> Note:
        before = self.require_note(note_id)
        note = before.model_copy(deep=True)
        setattr(note, attribute, not getattr(note, attribute))
        return self._save(before, note)

    def toggle_pin(self, note_id: str) -> Note:
        return self._toggle(note_id, "is_pinned")

    def toggle_archive(self, note_id: str) -> Note:
        """Flip the archived flag; archived notes stop counting for their category."""
        return self._toggle(note_id, "is_archived")

    def toggle_public(self, note_id: str) -> Note:
        return self._toggle(note_id, "is_public")

    def toggle_lock(self, note_id: str) -> Note:
        return self._toggle(note_id, "is_locked")

    def duplicate_note(self, note_id: str) -> Note:
        """Copy a note into a brand-new one titled "<title> (Copy)"."""
        source = self.require_note(note_id)
        base = source.title[: MAX_TITLE_LENGTH - len(COPY_SUFFIX)]
        return self.create_note(
            title=f"{base}{COPY_SUFFIX}",
            content=source.content,
            category_id=source.category_id,
            tags=list(source.tags),
            priority=source.priority,
            color=source.color,
        )

    def restore_note(self, note: Note) -> Note:
        """Insert a fully-formed note, keeping its ID, timestamps and history.

        Used by import and backup restore. The note is re-scoped to this
        service's owner and its counter is maintained like any other insert.

        Raises:
            CategoryNotFoundError: If the note's category does not belong to the owner.
            ValidationError: If a note with the same ID already exists.
        """
        if note.category_id:
            self._check_category(note.category_id)
        note = note.model_copy(update={"owner_id": self.owner_id}, deep=True)
        note.refresh_metadata()
        return self._insert(note)

    # =========================================================================
    # Bulk operations (best-effort, per-item errors)
    # =========================================================================

    def bulk_delete(self, note_ids: List[str]) -> BulkResult:
        """Delete several notes; a failure on one does not undo the others."""
        if not note_ids:
            raise BulkOperationError(
                "No note IDs provided for deletion",
                operation="bulk_delete",
                code=ErrorCode.BULK_OPERATION_EMPTY_INPUT,
            )
        result = BulkResult(operation="bulk_delete", total_count=len(note_ids))
        for note_id in note_ids:
            try:
                if self.delete_note(note_id):
                    result.count += 1
                else:
                    result.errors.append((note_id, f"Note with ID '{note_id}' not found"))
            except BearNotesError as e:
                logger.warning(f"bulk_delete failed for {note_id}: {e}")
                result.errors.append((note_id, e.message))
        logger.info(f"bulk_delete: deleted {result.count} of {len(note_ids)} notes")
        return result

    def bulk_move(self, note_ids: List[str], category_id: Optional[str]) -> BulkResult:
        """Move several notes to one category (None moves them to uncategorized).

        Raises:
            BulkOperationError: If no note IDs are given.
            CategoryNotFoundError: If the target category does not belong to the owner.
        """
        if not note_ids:
            raise BulkOperationError(
                "No note IDs provided for move",
                operation="bulk_move",
                code=ErrorCode.BULK_OPERATION_EMPTY_INPUT,
            )
        category_id = category_id or None
        if category_id:
            self._check_category(category_id)

        result = BulkResult(operation="bulk_move", total_count=len(note_ids))
        for note_id in note_ids:
            try:
                before = self.require_note(note_id)
                if before.category_id != category_id:
                    note = before.model_copy(deep=True)
                    note.category_id = category_id
                    self._save(before, note)
                result.count += 1
            except BearNotesError as e:
                logger.warning(f"bulk_move failed for {note_id}: {e}")
                result.errors.append((note_id, e.message))
        logger.info(
            f"bulk_move: moved {result.count} of {len(note_ids)} notes to {category_id}"
        )
        return result

    # =========================================================================
    # Statistics
    # =========================================================================

    def get_user_stats(self) -> UserStats:
        """Aggregate statistics over all of the owner's notes."""
        return UserStats(**self.repository.aggregate_stats(self.owner_id))

    def get_note_trends(self, period: str = "month") -> List[Dict[str, Any]]:
        """Count notes created and updated per week, month or year.

        Returns:
            List of {"period", "created", "updated"} sorted by period.
        """
        if period not in _TREND_FORMATS:
            raise ValidationError(
                f"Invalid period: {period}. Valid periods are: {', '.join(_TREND_FORMATS)}",
                field="period",
                value=period,
            )
        bucket = _TREND_FORMATS[period]
        counts: Dict[str, List[int]] = defaultdict(lambda: [0, 0])
        for note in self.all_notes():
            counts[bucket(note.created_at)][0] += 1
            counts[bucket(note.updated_at)][1] += 1
        return [
            {"period": key, "created": created, "updated": updated}
            for key, (created, updated) in sorted(counts.items())
        ]

    def verify_counts(self) -> Dict[str, Tuple[int, int]]:
        """Return counter mismatches for the owner's categories (empty when consistent)."""
        return self.maintainer.verify(self.owner_id)
