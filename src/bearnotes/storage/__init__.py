"""Storage layer for the bearnotes core."""

from bearnotes.storage.base import Repository
from bearnotes.storage.category_repository import CategoryRepository
from bearnotes.storage.note_repository import NoteRepository

__all__ = [
    "Repository",
    "NoteRepository",
    "CategoryRepository",
]
