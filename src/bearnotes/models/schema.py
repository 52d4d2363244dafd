"""Data models for the bearnotes core."""

import datetime
import math
import os
import re
import threading
from dataclasses import dataclass, field
from datetime import timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, Field, field_validator

from bearnotes.utils import strip_markup

MAX_TITLE_LENGTH = 200
MAX_CONTENT_LENGTH = 50_000
MAX_TAG_LENGTH = 50
MAX_CATEGORY_NAME_LENGTH = 50
MAX_DESCRIPTION_LENGTH = 200
MAX_ICON_LENGTH = 10
MAX_HISTORY_ENTRIES = 10
WORDS_PER_MINUTE = 200

DEFAULT_NOTE_COLOR = "#ffffff"
DEFAULT_CATEGORY_COLOR = "#8b7355"
DEFAULT_CATEGORY_ICON = "📁"

# Seed categories created for a new owner, in display order
DEFAULT_CATEGORIES: List[Dict[str, Any]] = [
    {"name": "Personal", "color": "#FF6B6B", "icon": "👤", "order": 0},
    {"name": "Work", "color": "#4ECDC4", "icon": "💼", "order": 1},
    {"name": "Study", "color": "#45B7D1", "icon": "📚", "order": 2},
    {"name": "Ideas", "color": "#96CEB4", "icon": "💡", "order": 3},
    {"name": "Archive", "color": "#FFEAA7", "icon": "📦", "order": 4},
]

# Identifiers are alphanumeric plus underscores and hyphens (generated ids use 'T')
SAFE_ID_PATTERN = re.compile(r"^[a-zA-Z0-9_\-]+$")
HEX_COLOR_PATTERN = re.compile(r"^#[0-9A-Fa-f]{6}$")


def validate_id(value: str, field_name: str = "ID") -> str:
    """Validate that a value is a well-formed identifier.

    Args:
        value: The string to validate
        field_name: Name of the field for error messages

    Returns:
        The validated value (unchanged)

    Raises:
        ValueError: If the value is empty or contains unsafe characters
    """
    if not value:
        raise ValueError(f"{field_name} cannot be empty")
    if not SAFE_ID_PATTERN.match(value):
        raise ValueError(
            f"{field_name} contains invalid characters. "
            "Only alphanumeric characters, underscores and hyphens are allowed."
        )
    return value


def validate_hex_color(value: str, field_name: str = "color") -> str:
    """Validate a ``#RRGGBB`` color string (case-insensitive)."""
    if not HEX_COLOR_PATTERN.match(value or ""):
        raise ValueError(f"{field_name} must be a hex color like #8b7355")
    return value


def utc_now() -> datetime.datetime:
    """Get current UTC time as timezone-aware datetime."""
    return datetime.datetime.now(timezone.utc)


def ensure_timezone_aware(dt_value: Optional[datetime.datetime]) -> datetime.datetime:
    """Ensure a datetime is timezone-aware, treating naive datetimes as UTC.

    SQLite hands back naive datetimes, so every value read from the
    database passes through here.
    """
    if dt_value is None:
        return utc_now()
    if dt_value.tzinfo is None:
        return dt_value.replace(tzinfo=timezone.utc)
    return dt_value


# Thread-safe counter for uniqueness (seeded from PID for cross-process safety)
_id_lock = threading.Lock()
_last_timestamp = 0
_counter = (os.getpid() * 7) % 1_000_000


def generate_id() -> str:
    """Generate a unique, time-ordered identifier.

    Returns:
        A string in format "YYYYMMDDTHHMMSSsssssscccccc" where:
        - YYYYMMDDTHHMMSS is the UTC date and time
        - ssssss is the 6-digit microsecond component
        - cccccc is a 6-digit counter for same-microsecond uniqueness

    Ids sort lexicographically in creation order within a process.
    """
    global _last_timestamp, _counter

    with _id_lock:
        now = utc_now()
        current_timestamp = int(now.timestamp() * 1_000_000)

        if current_timestamp <= _last_timestamp:
            # Same microsecond (or the clock stepped back): keep the previous
            # timestamp and bump the counter so ordering never regresses
            _counter += 1
            if _counter >= 1_000_000:
                _last_timestamp += 1
                _counter = 0
            current_timestamp = _last_timestamp
        else:
            _last_timestamp = current_timestamp
            _counter = (os.getpid() * 7) % 1_000_000

        stamp = datetime.datetime.fromtimestamp(
            current_timestamp / 1_000_000, tz=timezone.utc
        )
        return f"{stamp.strftime('%Y%m%dT%H%M%S')}{stamp.microsecond:06d}{_counter:06d}"


def compute_text_metrics(content: str) -> Tuple[int, int, int]:
    """Compute word count, character count and reading time for content.

    Markup tags are stripped first. Words are whitespace-separated tokens
    and reading time is rounded up at 200 words per minute.

    Returns:
        Tuple of (word_count, character_count, reading_time_minutes)
    """
    plain = strip_markup(content)
    word_count = len(plain.split())
    character_count = len(plain)
    reading_time = math.ceil(word_count / WORDS_PER_MINUTE)
    return word_count, character_count, reading_time


class Priority(str, Enum):
    """Priority of a note."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class SortField(str, Enum):
    """Fields a note listing can be sorted by."""

    CREATED_AT = "created_at"
    UPDATED_AT = "updated_at"
    TITLE = "title"
    CATEGORY = "category"


class SortOrder(str, Enum):
    """Sort direction."""

    ASC = "asc"
    DESC = "desc"


class DuplicateStrategy(str, Enum):
    """How imported notes colliding with existing ones are reconciled."""

    OVERWRITE = "overwrite"
    SKIP = "skip"
    RENAME = "rename"


class NoteMetadata(BaseModel):
    """Derived statistics of a note's content."""

    word_count: int = Field(default=0, ge=0)
    character_count: int = Field(default=0, ge=0)
    reading_time: int = Field(default=0, ge=0, description="Minutes, rounded up")
    last_edited_by: Optional[str] = None

    @classmethod
    def from_content(cls, content: str, edited_by: Optional[str] = None) -> "NoteMetadata":
        words, characters, reading_time = compute_text_metrics(content)
        return cls(
            word_count=words,
            character_count=characters,
            reading_time=reading_time,
            last_edited_by=edited_by,
        )


class HistoryEntry(BaseModel):
    """Snapshot of a note's title and content before an edit."""

    title: str
    content: str
    edited_at: datetime.datetime = Field(default_factory=utc_now)
    edited_by: Optional[str] = None

    model_config = {"frozen": True}


class Note(BaseModel):
    """A note owned by a single user."""

    id: str = Field(default_factory=generate_id, description="Unique ID of the note")
    owner_id: str = Field(..., description="Owner scope of the note")
    title: str = Field(..., description="Title of the note")
    content: str = Field(..., description="Content of the note, may contain markup")
    category_id: Optional[str] = Field(
        default=None, description="ID of the category this note belongs to"
    )
    tags: List[str] = Field(default_factory=list, description="Tags, order irrelevant")
    is_pinned: bool = False
    is_archived: bool = False
    is_public: bool = False
    is_locked: bool = False
    priority: Priority = Priority.MEDIUM
    color: str = DEFAULT_NOTE_COLOR
    metadata: NoteMetadata = Field(default_factory=NoteMetadata)
    version: int = Field(default=1, ge=1)
    history: List[HistoryEntry] = Field(default_factory=list)
    created_at: datetime.datetime = Field(
        default_factory=utc_now, description="When the note was created (UTC)"
    )
    updated_at: datetime.datetime = Field(
        default_factory=utc_now, description="When the note was last updated (UTC)"
    )

    model_config = {"validate_assignment": True, "extra": "forbid"}

    @field_validator("id")
    @classmethod
    def validate_note_id(cls, v: str) -> str:
        return validate_id(v, "Note ID")

    @field_validator("title")
    @classmethod
    def validate_title(cls, v: str) -> str:
        """Validate that the title is present and within bounds."""
        v = v.strip()
        if not v:
            raise ValueError("Title cannot be empty")
        if len(v) > MAX_TITLE_LENGTH:
            raise ValueError(f"Title cannot exceed {MAX_TITLE_LENGTH} characters")
        return v

    @field_validator("content")
    @classmethod
    def validate_content(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Content cannot be empty")
        if len(v) > MAX_CONTENT_LENGTH:
            raise ValueError(f"Content cannot exceed {MAX_CONTENT_LENGTH} characters")
        return v

    @field_validator("category_id")
    @classmethod
    def validate_category_id(cls, v: Optional[str]) -> Optional[str]:
        # Empty string means "uncategorized"
        if v is None or not v.strip():
            return None
        return validate_id(v, "Category ID")

    @field_validator("tags")
    @classmethod
    def validate_tags(cls, v: List[str]) -> List[str]:
        """Strip tags, drop empties and duplicates, enforce the length limit."""
        seen: List[str] = []
        for tag in v:
            tag = tag.strip()
            if not tag:
                continue
            if len(tag) > MAX_TAG_LENGTH:
                raise ValueError(f"Tag '{tag[:20]}...' exceeds {MAX_TAG_LENGTH} characters")
            if tag not in seen:
                seen.append(tag)
        return seen

    @field_validator("color")
    @classmethod
    def validate_color(cls, v: str) -> str:
        return validate_hex_color(v)

    @field_validator("history")
    @classmethod
    def validate_history(cls, v: List[HistoryEntry]) -> List[HistoryEntry]:
        # Keep only the most recent entries
        return v[-MAX_HISTORY_ENTRIES:]

    def refresh_metadata(self, edited_by: Optional[str] = None) -> None:
        """Recompute derived statistics from the current content."""
        self.metadata = NoteMetadata.from_content(
            self.content, edited_by or self.metadata.last_edited_by
        )

    def push_history(self, edited_by: Optional[str] = None) -> None:
        """Snapshot the current title/content, evicting the oldest entries."""
        entry = HistoryEntry(title=self.title, content=self.content, edited_by=edited_by)
        self.history = (self.history + [entry])[-MAX_HISTORY_ENTRIES:]


class CategoryMetadata(BaseModel):
    """Denormalized usage information of a category."""

    note_count: int = Field(default=0, ge=0)
    last_used: Optional[datetime.datetime] = None


class Category(BaseModel):
    """A user-defined category notes are filed under."""

    id: str = Field(default_factory=generate_id, description="Unique ID of the category")
    owner_id: str = Field(..., description="Owner scope of the category")
    name: str = Field(..., description="Display name, unique per owner")
    description: Optional[str] = None
    color: str = DEFAULT_CATEGORY_COLOR
    icon: str = DEFAULT_CATEGORY_ICON
    parent_id: Optional[str] = Field(default=None, description="Parent category ID")
    order: int = Field(default=0, description="Manual sort position")
    is_default: bool = False
    is_active: bool = True
    metadata: CategoryMetadata = Field(default_factory=CategoryMetadata)
    created_at: datetime.datetime = Field(default_factory=utc_now)
    updated_at: datetime.datetime = Field(default_factory=utc_now)

    model_config = {"validate_assignment": True, "extra": "forbid"}

    @field_validator("id")
    @classmethod
    def validate_category_id(cls, v: str) -> str:
        return validate_id(v, "Category ID")

    @field_validator("parent_id")
    @classmethod
    def validate_parent_id(cls, v: Optional[str]) -> Optional[str]:
        if v is None or not v.strip():
            return None
        return validate_id(v, "Parent category ID")

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        """Validate that the name is present and within bounds."""
        v = v.strip()
        if not v:
            raise ValueError("Category name cannot be empty")
        if len(v) > MAX_CATEGORY_NAME_LENGTH:
            raise ValueError(
                f"Category name cannot exceed {MAX_CATEGORY_NAME_LENGTH} characters"
            )
        return v

    @field_validator("description")
    @classmethod
    def validate_description(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        v = v.strip()
        if len(v) > MAX_DESCRIPTION_LENGTH:
            raise ValueError(
                f"Description cannot exceed {MAX_DESCRIPTION_LENGTH} characters"
            )
        return v or None

    @field_validator("color")
    @classmethod
    def validate_color(cls, v: str) -> str:
        return validate_hex_color(v)

    @field_validator("icon")
    @classmethod
    def validate_icon(cls, v: str) -> str:
        v = v.strip() or DEFAULT_CATEGORY_ICON
        if len(v) > MAX_ICON_LENGTH:
            raise ValueError(f"Icon cannot exceed {MAX_ICON_LENGTH} characters")
        return v


class NoteFilter(BaseModel):
    """Filter, sort and page options for listing notes."""

    category_id: Optional[str] = None
    search: Optional[str] = None
    archived: Optional[bool] = Field(
        default=False, description="False hides archived notes, None shows all"
    )
    pinned: Optional[bool] = None
    tags: List[str] = Field(default_factory=list, description="Match any of these tags")
    sort_by: SortField = SortField.UPDATED_AT
    sort_order: SortOrder = SortOrder.DESC
    page: int = Field(default=1, ge=1)
    limit: Optional[int] = Field(default=None, ge=1)


class SearchFilter(BaseModel):
    """Criteria for full-text and advanced search."""

    query: Optional[str] = None
    category_id: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    date_from: Optional[datetime.datetime] = None
    date_to: Optional[datetime.datetime] = None
    archived: Optional[bool] = False
    locked: Optional[bool] = None
    page: int = Field(default=1, ge=1)
    limit: Optional[int] = Field(default=None, ge=1)


class Pagination(BaseModel):
    """Paging information for a listing."""

    page: int
    limit: int
    total: int
    total_pages: int
    has_next: bool
    has_prev: bool

    @classmethod
    def build(cls, page: int, limit: int, total: int) -> "Pagination":
        return cls(
            page=page,
            limit=limit,
            total=total,
            total_pages=math.ceil(total / limit) if limit else 0,
            has_next=page * limit < total,
            has_prev=page > 1,
        )


class NotePage(BaseModel):
    """One page of notes."""

    items: List[Note]
    pagination: Pagination


class UserStats(BaseModel):
    """Aggregate statistics over an owner's notes."""

    total_notes: int = 0
    total_words: int = 0
    total_characters: int = 0
    pinned_notes: int = 0
    archived_notes: int = 0
    public_notes: int = 0


class CategoryStatsReport(BaseModel):
    """Usage statistics of an owner's categories."""

    categories: List[Category] = Field(
        default_factory=list, description="Sorted by note count, descending"
    )
    total_categories: int = 0
    total_notes: int = 0
    uncategorized_notes: int = 0
    most_used: Optional[Category] = None
    least_used: Optional[Category] = None
    average_notes_per_category: float = 0.0


@dataclass
class BulkResult:
    """Outcome of a best-effort bulk operation.

    Attributes:
        operation: Name of the operation (e.g. "bulk_move")
        total_count: Number of items requested
        count: Number of items that succeeded
        errors: (item_id, message) for every item that failed
    """

    operation: str
    total_count: int
    count: int = 0
    errors: List[Tuple[str, str]] = field(default_factory=list)

    @property
    def failed_ids(self) -> List[str]:
        return [item_id for item_id, _ in self.errors]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "operation": self.operation,
            "total_count": self.total_count,
            "success_count": self.count,
            "errors": [{"id": i, "message": m} for i, m in self.errors],
        }
