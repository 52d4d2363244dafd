# tests/test_note_service.py
"""Tests for the Note Store service."""
import datetime

import pytest

from bearnotes.exceptions import (
    BulkOperationError,
    CategoryNotFoundError,
    ErrorCode,
    NoteNotFoundError,
    ValidationError,
)
from bearnotes.models.schema import (
    Note,
    NoteFilter,
    Priority,
    SortField,
    SortOrder,
)


def _count(category_service, category_id):
    return category_service.get_category(category_id).metadata.note_count


class TestCreateNote:
    """Tests for creating notes."""

    def test_create_note(self, note_service):
        note = note_service.create_note(
            title="Plan",
            content="Q1 plan for the team",
            tags=["work", "q1"],
            priority=Priority.HIGH,
        )
        assert note.owner_id == "user-1"
        assert note.version == 1
        assert note.history == []
        assert note.priority == Priority.HIGH
        assert sorted(note.tags) == ["q1", "work"]
        assert note.metadata.word_count == 5
        assert note.metadata.last_edited_by == "user-1"

        stored = note_service.get_note(note.id)
        assert stored is not None
        assert stored.title == "Plan"
        assert stored.content == "Q1 plan for the team"

    def test_create_in_category_counts(self, note_service, category_service, work_category):
        """Creating a note in "Work" increments its counter."""
        note_service.create_note(title="Plan", content="Q1 plan", category_id=work_category.id)
        work = category_service.get_category(work_category.id)
        assert work.metadata.note_count == 1
        assert work.metadata.last_used is not None

    def test_create_archived_note_is_not_counted(self, note_service, category_service, work_category):
        note_service.create_note(
            title="Old", content="old stuff", category_id=work_category.id, is_archived=True
        )
        assert _count(category_service, work_category.id) == 0

    def test_title_required(self, note_service):
        with pytest.raises(ValidationError) as exc_info:
            note_service.create_note(title="  ", content="content")
        assert exc_info.value.field == "title"
        assert exc_info.value.code == ErrorCode.NOTE_TITLE_REQUIRED

    def test_content_required(self, note_service):
        with pytest.raises(ValidationError) as exc_info:
            note_service.create_note(title="Title", content="")
        assert exc_info.value.field == "content"
        assert exc_info.value.code == ErrorCode.NOTE_CONTENT_REQUIRED

    def test_title_length_boundary(self, note_service):
        """200 characters is the longest allowed title."""
        note = note_service.create_note(title="t" * 200, content="c")
        assert len(note.title) == 200
        with pytest.raises(ValidationError) as exc_info:
            note_service.create_note(title="t" * 201, content="c")
        assert exc_info.value.code == ErrorCode.NOTE_TOO_LONG

    def test_content_too_long(self, note_service):
        with pytest.raises(ValidationError) as exc_info:
            note_service.create_note(title="Big", content="x" * 50_001)
        assert exc_info.value.field == "content"

    def test_invalid_color(self, note_service):
        with pytest.raises(ValidationError) as exc_info:
            note_service.create_note(title="Title", content="c", color="blue")
        assert exc_info.value.code == ErrorCode.NOTE_VALIDATION_FAILED
        assert exc_info.value.field == "color"

    def test_unknown_category(self, note_service):
        with pytest.raises(CategoryNotFoundError):
            note_service.create_note(title="Title", content="c", category_id="nope")

    def test_foreign_category(self, note_service, other_category_service):
        """A category of another owner cannot be referenced."""
        foreign = other_category_service.create_category(name="Theirs")
        with pytest.raises(CategoryNotFoundError):
            note_service.create_note(title="Title", content="c", category_id=foreign.id)


class TestReadNotes:
    """Tests for reading and owner scoping."""

    def test_get_missing_note(self, note_service):
        assert note_service.get_note("missing") is None
        with pytest.raises(NoteNotFoundError) as exc_info:
            note_service.require_note("missing")
        assert exc_info.value.code == ErrorCode.NOTE_NOT_FOUND

    def test_notes_are_owner_scoped(self, note_service, other_note_service):
        note = note_service.create_note(title="Mine", content="private")
        assert other_note_service.get_note(note.id) is None
        assert other_note_service.all_notes() == []
        assert other_note_service.delete_note(note.id) is False
        assert note_service.get_note(note.id) is not None


class TestUpdateNote:
    """Tests for updating notes."""

    def test_update_title_records_history(self, note_service):
        note = note_service.create_note(title="Draft", content="first")
        updated = note_service.update_note(note.id, title="Final")
        assert updated.title == "Final"
        assert updated.version == 2
        assert len(updated.history) == 1
        assert updated.history[0].title == "Draft"
        assert updated.history[0].content == "first"
        assert updated.updated_at >= note.updated_at

    def test_update_without_text_change_keeps_version(self, note_service):
        note = note_service.create_note(title="Draft", content="first")
        updated = note_service.update_note(note.id, tags=["x"], title="Draft")
        assert updated.version == 1
        assert updated.history == []
        assert updated.tags == ["x"]

    def test_history_bound_after_many_edits(self, note_service):
        note = note_service.create_note(title="Draft", content="v0")
        for i in range(1, 13):
            note = note_service.update_note(note.id, content=f"v{i}")
        assert note.version == 13
        assert len(note.history) == 10
        assert note.history[0].content == "v2"
        assert note.history[-1].content == "v11"

    def test_update_moves_counter(self, note_service, category_service, work_category, personal_category):
        """Moving a note from "Work" to "Personal" moves one count."""
        note = note_service.create_note(title="Plan", content="Q1", category_id=work_category.id)
        note_service.update_note(note.id, category_id=personal_category.id)
        assert _count(category_service, work_category.id) == 0
        assert _count(category_service, personal_category.id) == 1

    def test_clear_category(self, note_service, category_service, work_category):
        note = note_service.create_note(title="Plan", content="Q1", category_id=work_category.id)
        updated = note_service.update_note(note.id, category_id="")
        assert updated.category_id is None
        assert _count(category_service, work_category.id) == 0

    def test_update_validation(self, note_service):
        note = note_service.create_note(title="Draft", content="first")
        with pytest.raises(ValidationError):
            note_service.update_note(note.id, title="")
        with pytest.raises(ValidationError):
            note_service.update_note(note.id, color="#zzzzzz")
        # Nothing was written by the failed updates
        assert note_service.get_note(note.id).version == 1

    def test_update_missing_note(self, note_service):
        with pytest.raises(NoteNotFoundError):
            note_service.update_note("missing", title="x")

    def test_update_to_unknown_category(self, note_service):
        note = note_service.create_note(title="Draft", content="first")
        with pytest.raises(CategoryNotFoundError):
            note_service.update_note(note.id, category_id="missing")


class TestDeleteAndToggle:
    """Tests for delete, toggles and duplicate."""

    def test_delete_note(self, note_service, category_service, work_category):
        note = note_service.create_note(title="Plan", content="Q1", category_id=work_category.id)
        assert note_service.delete_note(note.id) is True
        assert note_service.get_note(note.id) is None
        assert _count(category_service, work_category.id) == 0
        assert note_service.delete_note(note.id) is False

    def test_toggle_archive_adjusts_counter(self, note_service, category_service, work_category):
        note = note_service.create_note(title="Plan", content="Q1", category_id=work_category.id)
        archived = note_service.toggle_archive(note.id)
        assert archived.is_archived is True
        assert _count(category_service, work_category.id) == 0
        restored = note_service.toggle_archive(note.id)
        assert restored.is_archived is False
        assert _count(category_service, work_category.id) == 1

    def test_toggle_flags(self, note_service):
        note = note_service.create_note(title="Plan", content="Q1")
        assert note_service.toggle_pin(note.id).is_pinned is True
        assert note_service.toggle_pin(note.id).is_pinned is False
        assert note_service.toggle_public(note.id).is_public is True
        assert note_service.toggle_lock(note.id).is_locked is True

    def test_toggle_missing_note(self, note_service):
        with pytest.raises(NoteNotFoundError):
            note_service.toggle_pin("missing")

    def test_duplicate_note(self, note_service, category_service, work_category):
        note = note_service.create_note(
            title="Plan", content="Q1", category_id=work_category.id, tags=["a"], color="#112233"
        )
        note = note_service.update_note(note.id, content="Q1 revised")
        copy = note_service.duplicate_note(note.id)
        assert copy.id != note.id
        assert copy.title == "Plan (Copy)"
        assert copy.content == "Q1 revised"
        assert copy.tags == ["a"]
        assert copy.color == "#112233"
        assert copy.version == 1
        assert copy.history == []
        assert _count(category_service, work_category.id) == 2

    def test_duplicate_long_title_is_truncated(self, note_service):
        note = note_service.create_note(title="t" * 200, content="c")
        copy = note_service.duplicate_note(note.id)
        assert len(copy.title) == 200
        assert copy.title.endswith(" (Copy)")


class TestListNotes:
    """Tests for filtered, sorted and paginated listings."""

    def test_archived_hidden_by_default(self, note_service):
        visible = note_service.create_note(title="Visible", content="c")
        hidden = note_service.create_note(title="Hidden", content="c", is_archived=True)

        default = note_service.list_notes()
        assert [n.id for n in default.items] == [visible.id]

        only_archived = note_service.list_notes(NoteFilter(archived=True))
        assert [n.id for n in only_archived.items] == [hidden.id]

        everything = note_service.list_notes(NoteFilter(archived=None))
        assert everything.pagination.total == 2

    def test_pagination(self, note_service):
        for i in range(5):
            note_service.create_note(title=f"Note {i}", content="c")
        page = note_service.list_notes(NoteFilter(page=3, limit=2))
        assert len(page.items) == 1
        assert page.pagination.total == 5
        assert page.pagination.total_pages == 3
        assert page.pagination.has_next is False
        assert page.pagination.has_prev is True

    def test_limit_is_clamped(self, note_service):
        page = note_service.list_notes(NoteFilter(limit=500))
        assert page.pagination.limit == 100

    def test_sort_by_title(self, note_service):
        for title in ("banana", "Apple", "cherry"):
            note_service.create_note(title=title, content="fruit")
        page = note_service.list_notes(
            NoteFilter(sort_by=SortField.TITLE, sort_order=SortOrder.ASC)
        )
        assert [n.title for n in page.items] == ["Apple", "banana", "cherry"]

    def test_sort_by_category(self, note_service, work_category, personal_category):
        note_service.create_note(title="w", content="c", category_id=work_category.id)
        note_service.create_note(title="p", content="c", category_id=personal_category.id)
        page = note_service.list_notes(
            NoteFilter(sort_by=SortField.CATEGORY, sort_order=SortOrder.ASC)
        )
        assert [n.title for n in page.items] == ["p", "w"]

    def test_filters(self, note_service, work_category):
        note_service.create_note(title="Groceries", content="milk and eggs", tags=["home"])
        note_service.create_note(
            title="Plan", content="Q1 plan", tags=["work"], category_id=work_category.id
        )
        pinned = note_service.create_note(title="Pinned", content="top", is_pinned=True)

        assert [n.title for n in note_service.list_notes(NoteFilter(search="MILK")).items] == [
            "Groceries"
        ]
        assert [
            n.title for n in note_service.list_notes(NoteFilter(category_id=work_category.id)).items
        ] == ["Plan"]
        assert [n.id for n in note_service.list_notes(NoteFilter(pinned=True)).items] == [pinned.id]
        tagged = note_service.list_notes(NoteFilter(tags=["home", "work"]))
        assert sorted(n.title for n in tagged.items) == ["Groceries", "Plan"]

    def test_search_wildcards_are_literal(self, note_service):
        note_service.create_note(title="Progress", content="100% done")
        note_service.create_note(title="Other", content="1000 items")
        page = note_service.list_notes(NoteFilter(search="100%"))
        assert [n.title for n in page.items] == ["Progress"]


class TestBulkOperations:
    """Tests for best-effort bulk operations."""

    def test_bulk_delete_partial(self, note_service):
        a = note_service.create_note(title="A", content="a")
        b = note_service.create_note(title="B", content="b")
        result = note_service.bulk_delete([a.id, "missing", b.id])
        assert result.count == 2
        assert result.total_count == 3
        assert result.failed_ids == ["missing"]
        assert note_service.all_notes() == []

    def test_bulk_delete_empty(self, note_service):
        with pytest.raises(BulkOperationError) as exc_info:
            note_service.bulk_delete([])
        assert exc_info.value.code == ErrorCode.BULK_OPERATION_EMPTY_INPUT

    def test_bulk_move(self, note_service, category_service, work_category, personal_category):
        a = note_service.create_note(title="A", content="a", category_id=work_category.id)
        b = note_service.create_note(title="B", content="b")
        result = note_service.bulk_move([a.id, b.id, "missing"], personal_category.id)
        assert result.count == 2
        assert result.failed_ids == ["missing"]
        assert _count(category_service, work_category.id) == 0
        assert _count(category_service, personal_category.id) == 2

    def test_bulk_move_to_uncategorized(self, note_service, category_service, work_category):
        a = note_service.create_note(title="A", content="a", category_id=work_category.id)
        note_service.bulk_move([a.id], None)
        assert note_service.get_note(a.id).category_id is None
        assert _count(category_service, work_category.id) == 0

    def test_bulk_move_unknown_target(self, note_service):
        a = note_service.create_note(title="A", content="a")
        with pytest.raises(CategoryNotFoundError):
            note_service.bulk_move([a.id], "missing")


class TestStatistics:
    """Tests for user statistics and trends."""

    def test_empty_stats(self, note_service):
        stats = note_service.get_user_stats()
        assert stats.total_notes == 0
        assert stats.total_words == 0
        assert stats.pinned_notes == 0

    def test_stats(self, note_service):
        note_service.create_note(title="A", content="one two", is_pinned=True)
        note_service.create_note(title="B", content="three", is_archived=True, is_public=True)
        stats = note_service.get_user_stats()
        assert stats.total_notes == 2
        assert stats.total_words == 3
        assert stats.total_characters == len("one two") + len("three")
        assert stats.pinned_notes == 1
        assert stats.archived_notes == 1
        assert stats.public_notes == 1

    def test_trends(self, note_service):
        for title in ("A", "B"):
            note_service.create_note(title=title, content="c")
        trends = note_service.get_note_trends("year")
        assert trends == [
            {"period": str(datetime.datetime.now(datetime.timezone.utc).year), "created": 2, "updated": 2}
        ]

    def test_invalid_trend_period(self, note_service):
        with pytest.raises(ValidationError):
            note_service.get_note_trends("decade")


class TestRestoreNote:
    """Tests for inserting fully-formed notes."""

    def test_restore_keeps_identity(self, note_service, category_service, work_category):
        created_at = datetime.datetime(2023, 5, 1, 9, 30, tzinfo=datetime.timezone.utc)
        note = Note(
            id="20230501T093000000000000001",
            owner_id="someone-else",
            title="Old",
            content="from a backup",
            category_id=work_category.id,
            version=4,
            created_at=created_at,
            updated_at=created_at,
        )
        restored = note_service.restore_note(note)
        assert restored.id == note.id
        assert restored.owner_id == "user-1"
        assert restored.version == 4
        assert restored.created_at == created_at
        assert _count(category_service, work_category.id) == 1

    def test_restore_existing_id(self, note_service):
        note = note_service.create_note(title="A", content="a")
        with pytest.raises(ValidationError):
            note_service.restore_note(note)
