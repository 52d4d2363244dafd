"""Repository for note storage and retrieval."""

import logging
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import and_, case, func, or_, select, update

from bearnotes.exceptions import ErrorCode, NoteNotFoundError, ValidationError
from bearnotes.models.db_models import (
    DBCategory,
    DBNote,
    DBTag,
    get_session_factory,
    init_db,
)
from bearnotes.models.schema import (
    HistoryEntry,
    Note,
    NoteMetadata,
    Priority,
    SortOrder,
    ensure_timezone_aware,
    utc_now,
)
from bearnotes.storage.base import Repository, SortSpec, storage_operation
from bearnotes.utils import escape_like_pattern

logger = logging.getLogger(__name__)

_DEFAULT_SORT: SortSpec = (("updated_at", SortOrder.DESC),)


class NoteRepository(Repository[Note]):
    """SQLite-backed note storage.

    Every query is expected to carry an ``owner_id`` criterion; the
    repository itself does not know who is asking.
    """

    def __init__(self, engine=None):
        """Initialize the repository.

        Args:
            engine: SQLAlchemy engine. If None, uses default from config.
        """
        self.engine = engine or init_db()
        self.session_factory = get_session_factory(self.engine)
        logger.info("NoteRepository initialized")

    # ------------------------------------------------------------------
    # Conversion
    # ------------------------------------------------------------------

    @staticmethod
    def _db_note_to_model(db_note: DBNote) -> Note:
        """Convert a database row into a Note domain object."""
        history = [
            HistoryEntry.model_validate(entry) for entry in (db_note.history or [])
        ]
        return Note(
            id=db_note.id,
            owner_id=db_note.owner_id,
            title=db_note.title,
            content=db_note.content,
            category_id=db_note.category_id,
            tags=sorted(tag.name for tag in db_note.tags),
            is_pinned=db_note.is_pinned,
            is_archived=db_note.is_archived,
            is_public=db_note.is_public,
            is_locked=db_note.is_locked,
            priority=Priority(db_note.priority),
            color=db_note.color,
            metadata=NoteMetadata(
                word_count=db_note.word_count,
                character_count=db_note.character_count,
                reading_time=db_note.reading_time,
                last_edited_by=db_note.last_edited_by,
            ),
            version=db_note.version,
            history=history,
            created_at=ensure_timezone_aware(db_note.created_at),
            updated_at=ensure_timezone_aware(db_note.updated_at),
        )

    @staticmethod
    def _apply_model_to_db(note: Note, db_note: DBNote) -> None:
        """Copy every persisted field of a Note onto a database row.

        Metadata is recomputed from the content first so the stored
        statistics can never be stale.
        """
        note.refresh_metadata()
        db_note.owner_id = note.owner_id
        db_note.title = note.title
        db_note.content = note.content
        db_note.category_id = note.category_id
        db_note.is_pinned = note.is_pinned
        db_note.is_archived = note.is_archived
        db_note.is_public = note.is_public
        db_note.is_locked = note.is_locked
        db_note.priority = note.priority.value
        db_note.color = note.color
        db_note.word_count = note.metadata.word_count
        db_note.character_count = note.metadata.character_count
        db_note.reading_time = note.metadata.reading_time
        db_note.last_edited_by = note.metadata.last_edited_by
        db_note.version = note.version
        db_note.history = [entry.model_dump(mode="json") for entry in note.history]
        db_note.created_at = note.created_at
        db_note.updated_at = note.updated_at

        # Sync tags without re-inserting rows that already exist
        wanted = set(note.tags)
        db_note.tags = [tag for tag in db_note.tags if tag.name in wanted]
        existing = {tag.name for tag in db_note.tags}
        for name in note.tags:
            if name not in existing:
                db_note.tags.append(DBTag(name=name))
                existing.add(name)

    # ------------------------------------------------------------------
    # CRUD
    # ------------------------------------------------------------------

    def create(self, note: Note) -> Note:
        """Insert a new note.

        Raises:
            ValidationError: If a note with the same ID already exists.
        """
        with storage_operation("create_note", ErrorCode.STORAGE_WRITE_FAILED):
            with self.session_factory() as session:
                if session.get(DBNote, note.id) is not None:
                    raise ValidationError(
                        f"Note '{note.id}' already exists",
                        field="id",
                        value=note.id,
                    )
                db_note = DBNote(id=note.id, tags=[])
                self._apply_model_to_db(note, db_note)
                session.add(db_note)
                session.commit()
                logger.debug(f"Created note {note.id}")
                return self._db_note_to_model(db_note)

    def get(self, id: str, owner_id: Optional[str] = None) -> Optional[Note]:
        """Get a note by ID, optionally scoped to an owner."""
        with storage_operation("get_note"):
            with self.session_factory() as session:
                db_note = session.get(DBNote, id)
                if db_note is None:
                    return None
                if owner_id is not None and db_note.owner_id != owner_id:
                    return None
                return self._db_note_to_model(db_note)

    def update(self, note: Note) -> Note:
        """Persist all fields of an existing note.

        Raises:
            NoteNotFoundError: If no note with this ID is stored.
        """
        with storage_operation("update_note", ErrorCode.STORAGE_WRITE_FAILED):
            with self.session_factory() as session:
                db_note = session.get(DBNote, note.id)
                if db_note is None or db_note.owner_id != note.owner_id:
                    raise NoteNotFoundError(note.id)
                self._apply_model_to_db(note, db_note)
                session.commit()
                return self._db_note_to_model(db_note)

    def delete(self, id: str) -> bool:
        """Delete a note and its tags."""
        with storage_operation("delete_note", ErrorCode.STORAGE_DELETE_FAILED):
            with self.session_factory() as session:
                db_note = session.get(DBNote, id)
                if db_note is None:
                    return False
                session.delete(db_note)
                session.commit()
                logger.debug(f"Deleted note {id}")
                return True

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @staticmethod
    def _apply_filters(query: Any, criteria: Dict[str, Any]) -> Any:
        """Apply filter criteria to a SQLAlchemy query.

        Supported criteria: owner_id, ids, category_id (None means
        uncategorized), archived, pinned, public, locked, tags (match-any),
        search (title/content substring), created_after, created_before.
        Criteria whose value is None are ignored except category_id.
        """
        if "owner_id" in criteria:
            query = query.where(DBNote.owner_id == criteria["owner_id"])
        if criteria.get("ids") is not None:
            query = query.where(DBNote.id.in_(criteria["ids"]))
        if "category_id" in criteria:
            category_id = criteria["category_id"]
            if category_id is None:
                query = query.where(DBNote.category_id.is_(None))
            else:
                query = query.where(DBNote.category_id == category_id)
        for key, column in (
            ("archived", DBNote.is_archived),
            ("pinned", DBNote.is_pinned),
            ("public", DBNote.is_public),
            ("locked", DBNote.is_locked),
        ):
            if criteria.get(key) is not None:
                query = query.where(column == bool(criteria[key]))
        if criteria.get("tags"):
            query = query.where(
                DBNote.id.in_(
                    select(DBTag.note_id).where(DBTag.name.in_(criteria["tags"]))
                )
            )
        if criteria.get("search"):
            term = escape_like_pattern(criteria["search"].strip())
            query = query.where(
                or_(
                    DBNote.title.ilike(f"%{term}%", escape="\\"),
                    DBNote.content.ilike(f"%{term}%", escape="\\"),
                )
            )
        if criteria.get("created_after") is not None:
            query = query.where(DBNote.created_at >= criteria["created_after"])
        if criteria.get("created_before") is not None:
            query = query.where(DBNote.created_at <= criteria["created_before"])
        return query

    @staticmethod
    def _apply_sort(query: Any, sort: SortSpec) -> Any:
        """Apply a sort specification, with the note ID as a final tiebreaker."""
        columns = {
            "created_at": DBNote.created_at,
            "updated_at": DBNote.updated_at,
            "title": func.lower(DBNote.title),
        }
        joined = False
        for field_name, order in sort:
            field_name = getattr(field_name, "value", field_name)
            if field_name == "category":
                if not joined:
                    query = query.outerjoin(
                        DBCategory, DBCategory.id == DBNote.category_id
                    )
                    joined = True
                column = func.lower(DBCategory.name)
            elif field_name in columns:
                column = columns[field_name]
            else:
                raise ValidationError(
                    f"Unsupported sort field: {field_name}", field="sort_by"
                )
            query = query.order_by(
                column.desc() if order == SortOrder.DESC else column.asc()
            )
        return query.order_by(DBNote.id.asc())

    def find(
        self,
        sort: Optional[SortSpec] = None,
        offset: int = 0,
        limit: Optional[int] = None,
        **criteria: Any,
    ) -> List[Note]:
        """Find notes matching criteria, sorted and paginated at SQL level."""
        with storage_operation("find_notes"):
            with self.session_factory() as session:
                query = self._apply_filters(select(DBNote), criteria)
                query = self._apply_sort(query, sort or _DEFAULT_SORT)
                if offset > 0:
                    query = query.offset(offset)
                if limit is not None:
                    query = query.limit(limit)
                db_notes = session.execute(query).scalars().all()
                return [self._db_note_to_model(db) for db in db_notes]

    def count(self, **criteria: Any) -> int:
        """Count notes matching criteria without loading them."""
        with storage_operation("count_notes"):
            with self.session_factory() as session:
                query = self._apply_filters(select(func.count(DBNote.id)), criteria)
                return session.execute(query).scalar() or 0

    def count_by_category(self, owner_id: str) -> Dict[str, int]:
        """Count non-archived notes per category for an owner."""
        with storage_operation("count_by_category"):
            with self.session_factory() as session:
                rows = session.execute(
                    select(DBNote.category_id, func.count(DBNote.id))
                    .where(
                        and_(
                            DBNote.owner_id == owner_id,
                            DBNote.category_id.is_not(None),
                            DBNote.is_archived.is_(False),
                        )
                    )
                    .group_by(DBNote.category_id)
                ).all()
                return {category_id: count for category_id, count in rows}

    def aggregate_stats(self, owner_id: str) -> Dict[str, int]:
        """Sum words/characters and count flags over an owner's notes."""

        def _flag_count(column: Any) -> Any:
            return func.coalesce(func.sum(case((column.is_(True), 1), else_=0)), 0)

        with storage_operation("aggregate_stats"):
            with self.session_factory() as session:
                row = session.execute(
                    select(
                        func.count(DBNote.id),
                        func.coalesce(func.sum(DBNote.word_count), 0),
                        func.coalesce(func.sum(DBNote.character_count), 0),
                        _flag_count(DBNote.is_pinned),
                        _flag_count(DBNote.is_archived),
                        _flag_count(DBNote.is_public),
                    ).where(DBNote.owner_id == owner_id)
                ).one()
                keys = (
                    "total_notes",
                    "total_words",
                    "total_characters",
                    "pinned_notes",
                    "archived_notes",
                    "public_notes",
                )
                return {key: int(value or 0) for key, value in zip(keys, row)}

    def reassign_category(
        self, owner_id: str, source_id: str, target_id: Optional[str]
    ) -> Tuple[int, int]:
        """Move every note of one category to another in a single statement.

        Returns:
            Tuple of (notes moved, non-archived notes moved)
        """
        with storage_operation("reassign_category", ErrorCode.STORAGE_WRITE_FAILED):
            with self.session_factory() as session:
                counted = session.execute(
                    select(func.count(DBNote.id)).where(
                        DBNote.owner_id == owner_id,
                        DBNote.category_id == source_id,
                        DBNote.is_archived.is_(False),
                    )
                ).scalar() or 0
                result = session.execute(
                    update(DBNote)
                    .where(
                        DBNote.owner_id == owner_id,
                        DBNote.category_id == source_id,
                    )
                    .values(category_id=target_id, updated_at=utc_now())
                )
                session.commit()
                moved = result.rowcount or 0
                logger.info(
                    f"Reassigned {moved} notes from category {source_id} to {target_id}"
                )
                return moved, counted

    def exists(self, id: str) -> bool:
        """Check whether any note (of any owner) has this ID."""
        with self.session_factory() as session:
            return session.get(DBNote, id) is not None
