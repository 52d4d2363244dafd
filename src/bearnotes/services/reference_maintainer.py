"""Keeps category note counters consistent with the notes that reference them."""

import logging
from typing import Dict, Optional, Tuple

from bearnotes.models.schema import Note
from bearnotes.storage.category_repository import CategoryRepository
from bearnotes.storage.note_repository import NoteRepository

logger = logging.getLogger(__name__)


class ReferenceMaintainer:
    """The single writer of ``Category.metadata.note_count`` and ``last_used``.

    A note contributes to its category's counter when it has a category
    and is not archived. Every note mutation reports the note as it was
    before and after; the maintainer turns that into at most two atomic
    counter updates (decrement old, increment new).

    The note write and the counter updates are sequential steps. If a
    counter update fails the error propagates; ``recount`` repairs any
    drift afterwards.
    """

    def __init__(self, note_repository: NoteRepository, category_repository: CategoryRepository):
        self.note_repository = note_repository
        self.category_repository = category_repository

    @staticmethod
    def counted_category(note: Optional[Note]) -> Optional[str]:
        """Category a note is counted against, or None."""
        if note is None or note.is_archived:
            return None
        return note.category_id

    def note_changed(self, before: Optional[Note], after: Optional[Note]) -> None:
        """Apply the counter delta for one note mutation.

        Args:
            before: The note before the mutation (None on create)
            after: The note after the mutation (None on delete)
        """
        old_category = self.counted_category(before)
        new_category = self.counted_category(after)
        if old_category == new_category:
            return
        if old_category:
            self.category_repository.increment_note_count(old_category, -1)
        if new_category:
            self.category_repository.increment_note_count(
                new_category, 1, touch_last_used=True
            )
        logger.debug(
            f"Counter moved for note {(after or before).id}: "
            f"{old_category} -> {new_category}"
        )

    def notes_reassigned(self, source_id: str, target_id: Optional[str], counted: int) -> None:
        """Move ``counted`` notes' worth of counter from one category to another."""
        if counted:
            self.category_repository.increment_note_count(source_id, -counted)
        if target_id:
            self.category_repository.increment_note_count(
                target_id, counted, touch_last_used=True
            )

    def verify(self, owner_id: str) -> Dict[str, Tuple[int, int]]:
        """Compare stored counters with a full recount.

        Returns:
            Mapping of category ID to (stored, actual) for every mismatch.
            Empty when all counters are consistent.
        """
        actual = self.note_repository.count_by_category(owner_id)
        mismatches: Dict[str, Tuple[int, int]] = {}
        for category in self.category_repository.find(owner_id=owner_id):
            stored = category.metadata.note_count
            real = actual.get(category.id, 0)
            if stored != real:
                mismatches[category.id] = (stored, real)
        return mismatches

    def recount(self, owner_id: str) -> Dict[str, Tuple[int, int]]:
        """Rewrite every drifted counter from the notes table.

        Returns:
            The mismatches that were corrected, as returned by ``verify``.
        """
        mismatches = self.verify(owner_id)
        for category_id, (stored, real) in mismatches.items():
            self.category_repository.set_note_count(category_id, real)
            logger.warning(
                f"Corrected note count of category {category_id}: {stored} -> {real}"
            )
        return mismatches
