"""Import, export and merge of notes.

Export renders notes as a JSON array, as Markdown with YAML frontmatter
or as a PDF. Import parses JSON or Markdown sources into normalized
records, merges them against the owner's notes with a duplicate
strategy and writes the difference back through the services.
"""
import datetime
import io
import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Union

import fitz  # PyMuPDF
import frontmatter
import yaml
from pydantic import ValidationError as PydanticValidationError

from bearnotes.exceptions import (
    BearNotesError,
    ErrorCode,
    MissingStrategyError,
    ParseError,
    ReadError,
    ValidationError,
)
from bearnotes.models.schema import (
    DuplicateStrategy,
    Note,
    ensure_timezone_aware,
    generate_id,
    utc_now,
)
from bearnotes.services.category_service import CategoryService
from bearnotes.services.note_service import NoteService

logger = logging.getLogger(__name__)

DUPLICATE_SUFFIX = " (Duplicate)"
MARKDOWN_SEPARATOR = "\n\n---\n\n"
UNCATEGORIZED = "uncategorized"

# Format name -> file extension
EXPORT_EXTENSIONS = {
    "json": "json",
    "markdown": "md",
    "md": "md",
    "pdf": "pdf",
}

# A4 in points
PAGE_WIDTH = 595
PAGE_HEIGHT = 842
PAGE_MARGIN = 50
TITLE_FONT_SIZE = 16
BODY_FONT_SIZE = 11
LINE_SPACING = 1.4
PDF_FONT = "helv"

# Keys accepted from other exporters, mapped to record keys
_FIELD_ALIASES = {
    "timestamp": "created_at",
    "createdAt": "created_at",
    "lastModified": "updated_at",
    "updatedAt": "updated_at",
    "category_id": "category",
    "categoryId": "category",
    "isPinned": "is_pinned",
    "isArchived": "is_archived",
    "isPublic": "is_public",
    "isLocked": "is_locked",
}

# Note fields copied from a record when present
_PASSTHROUGH_FIELDS = (
    "tags",
    "is_pinned",
    "is_archived",
    "is_public",
    "is_locked",
    "priority",
    "color",
    "version",
    "history",
)

ImportSource = Union[str, bytes, Path, io.IOBase, Any]


@dataclass
class ImportValidation:
    """Result of checking import data before it is merged."""

    valid: bool
    message: str


@dataclass
class ImportResult:
    """Outcome of an import.

    Attributes:
        success: Whether the import was applied
        imported_count: Number of notes written to the store
        total_count: Number of notes the owner has afterwards
        message: Human-readable summary
        skipped_count: Imported records that were not written
        error: Error message when success is False
    """

    success: bool
    imported_count: int
    total_count: int
    message: str
    skipped_count: int = 0
    error: Optional[str] = None


def _is_blank(value: Any) -> bool:
    return not isinstance(value, str) or not value.strip()


def _normalize_record(raw: Dict[str, Any]) -> Dict[str, Any]:
    """Map aliases to record keys and fill in missing id, category and timestamps."""
    record: Dict[str, Any] = {}
    for key, value in raw.items():
        target = _FIELD_ALIASES.get(key, key)
        # Canonical keys win over aliases
        if target in record and key != target:
            continue
        record[target] = value
    now = utc_now().isoformat()
    record["id"] = record.get("id") or generate_id()
    record["category"] = record.get("category") or ""
    record["created_at"] = record.get("created_at") or now
    record["updated_at"] = record.get("updated_at") or now
    return record


def merge_imported_notes(
    existing: List[Note],
    imported: List[Note],
    duplicate_strategy: Optional[Union[str, DuplicateStrategy]],
) -> List[Note]:
    """Merge imported notes into the existing ones.

    Two notes collide when they share an ID or a title.

    Strategies:
        overwrite: existing notes colliding with any imported note are
            dropped, then every imported note is appended.
        skip: the existing notes are returned unchanged; nothing is
            imported, colliding or not.
        rename: every imported note is appended; colliding ones get
            " (Duplicate)" appended to their title.

    Raises:
        MissingStrategyError: If no strategy is given.
        ValidationError: If the strategy is unknown.
    """
    if not duplicate_strategy:
        raise MissingStrategyError()
    try:
        strategy = DuplicateStrategy(duplicate_strategy)
    except ValueError:
        raise ValidationError(
            f"Unknown duplicate strategy: {duplicate_strategy}. "
            f"Valid strategies are: {', '.join(s.value for s in DuplicateStrategy)}",
            field="duplicate_strategy",
            value=duplicate_strategy,
        )

    if strategy == DuplicateStrategy.SKIP:
        return list(existing)

    if strategy == DuplicateStrategy.OVERWRITE:
        imported_ids = {n.id for n in imported}
        imported_titles = {n.title for n in imported}
        kept = [
            n
            for n in existing
            if n.id not in imported_ids and n.title not in imported_titles
        ]
        return kept + list(imported)

    existing_ids = {n.id for n in existing}
    existing_titles = {n.title for n in existing}
    merged = list(existing)
    for note in imported:
        if note.id in existing_ids or note.title in existing_titles:
            base = note.title[: 200 - len(DUPLICATE_SUFFIX)]
            note = note.model_copy(update={"title": f"{base}{DUPLICATE_SUFFIX}"})
        merged.append(note)
    return merged


class TransferService:
    """Export and import of an owner's notes through the Note and Category stores."""

    def __init__(
        self,
        note_service: Optional[NoteService] = None,
        category_service: Optional[CategoryService] = None,
    ):
        self.note_service = note_service or NoteService()
        self.category_service = category_service or CategoryService(
            owner_id=self.note_service.owner_id,
            repository=self.note_service.category_repository,
            note_repository=self.note_service.repository,
            maintainer=self.note_service.maintainer,
        )

    def _notes_or_all(self, notes: Optional[List[Note]]) -> List[Note]:
        return self.note_service.all_notes() if notes is None else notes

    def _category_name(self, category_id: Optional[str]) -> str:
        if not category_id:
            return UNCATEGORIZED
        category = self.category_service.get_category(category_id)
        return category.name if category else UNCATEGORIZED

    # =========================================================================
    # Export
    # =========================================================================

    def export_to_json(self, notes: Optional[List[Note]] = None) -> str:
        """Pretty-printed JSON array of notes (all of the owner's notes by default)."""
        notes = self._notes_or_all(notes)
        return json.dumps(
            [note.model_dump(mode="json") for note in notes],
            indent=2,
            ensure_ascii=False,
        )

    def export_to_markdown(self, notes: Optional[List[Note]] = None) -> str:
        """Markdown documents with title/category/timestamp frontmatter, one per note."""
        notes = self._notes_or_all(notes)
        documents = []
        for note in notes:
            post = frontmatter.Post(
                f"# {note.title}\n\n{note.content}",
                title=note.title,
                category=self._category_name(note.category_id),
                timestamp=note.created_at.isoformat(),
            )
            documents.append(frontmatter.dumps(post))
        return MARKDOWN_SEPARATOR.join(documents)

    def export_to_pdf(self, notes: Optional[List[Note]] = None) -> bytes:
        """Render notes as one flowing A4 PDF.

        Each note gets its title in 16pt followed by its content in 11pt,
        word-wrapped to the page width. A new page starts whenever the next
        line would run past the bottom margin.
        """
        notes = self._notes_or_all(notes)
        doc = fitz.open()
        try:
            page = doc.new_page(width=PAGE_WIDTH, height=PAGE_HEIGHT)
            usable_width = PAGE_WIDTH - 2 * PAGE_MARGIN
            bottom = PAGE_HEIGHT - PAGE_MARGIN
            y = PAGE_MARGIN

            for index, note in enumerate(notes):
                blocks = [(note.title, TITLE_FONT_SIZE)] + [
                    (paragraph, BODY_FONT_SIZE)
                    for paragraph in note.content.split("\n")
                ]
                for text, size in blocks:
                    line_height = size * LINE_SPACING
                    for line in self._wrap_text(text, size, usable_width):
                        if y + line_height > bottom:
                            page = doc.new_page(width=PAGE_WIDTH, height=PAGE_HEIGHT)
                            y = PAGE_MARGIN
                        y += line_height
                        page.insert_text(
                            (PAGE_MARGIN, y), line, fontsize=size, fontname=PDF_FONT
                        )
                if index < len(notes) - 1:
                    y += BODY_FONT_SIZE * LINE_SPACING

            return doc.tobytes()
        finally:
            doc.close()

    @staticmethod
    def _wrap_text(text: str, font_size: float, max_width: float) -> List[str]:
        """Greedy word wrap; words wider than a line are split by character."""
        def width(s: str) -> float:
            return fitz.get_text_length(s, fontname=PDF_FONT, fontsize=font_size)

        words = text.split()
        if not words:
            return [""]
        lines: List[str] = []
        current = ""
        for word in words:
            candidate = f"{current} {word}" if current else word
            if width(candidate) <= max_width:
                current = candidate
                continue
            if current:
                lines.append(current)
            current = ""
            while width(word) > max_width:
                cut = len(word)
                while cut > 1 and width(word[:cut]) > max_width:
                    cut -= 1
                lines.append(word[:cut])
                word = word[cut:]
            current = word
        if current:
            lines.append(current)
        return lines

    def export_note(self, note: Optional[Note], format: str) -> Optional[Union[str, bytes]]:
        """Export one note; returns None for a note without ID or an unknown format."""
        if note is None or not note.id:
            return None
        fmt = (format or "").lower()
        if fmt == "json":
            return self.export_to_json([note])
        if fmt in ("markdown", "md"):
            return self.export_to_markdown([note])
        if fmt == "pdf":
            return self.export_to_pdf([note])
        return None

    @staticmethod
    def generate_export_filename(format: str, prefix: str = "notes") -> Optional[str]:
        """Timestamped filename such as ``notes-2024-01-31_14-05.json``."""
        extension = EXPORT_EXTENSIONS.get((format or "").lower())
        if extension is None:
            return None
        stamp = datetime.datetime.now().strftime("%Y-%m-%d_%H-%M")
        return f"{prefix}-{stamp}.{extension}"

    # =========================================================================
    # Import
    # =========================================================================

    @staticmethod
    def _read_source(source: ImportSource) -> str:
        if source is None:
            raise ReadError("Failed to read file: no source given")
        label = getattr(source, "name", None) or (
            str(source) if isinstance(source, Path) else None
        )
        try:
            if hasattr(source, "read"):
                data = source.read()
            elif isinstance(source, Path):
                data = source.read_text(encoding="utf-8")
            elif isinstance(source, (str, bytes)):
                # Text is always content; file names must come as Path
                data = source
            else:
                raise ReadError(
                    f"Failed to read file: unsupported source type {type(source).__name__}"
                )
            if isinstance(data, bytes):
                data = data.decode("utf-8")
            return data
        except (OSError, UnicodeDecodeError) as e:
            raise ReadError(
                f"Failed to read file {label or ''}".rstrip(),
                source=label,
                original_error=e,
            )

    def import_from_json(self, source: ImportSource) -> List[Dict[str, Any]]:
        """Parse a JSON array of notes into normalized records.

        Args:
            source: A Path, JSON text as str or bytes, or a file object.

        Raises:
            ReadError: If the source cannot be read.
            ParseError: If the text is not a JSON array of objects.
        """
        text = self._read_source(source)
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise ParseError(f"Invalid JSON: {e.msg}", original_error=e)
        if not isinstance(data, list):
            raise ParseError("Import data must be a JSON array of notes")
        records = []
        for index, item in enumerate(data):
            if not isinstance(item, dict):
                raise ParseError(f"Item {index} of the import data is not an object")
            records.append(_normalize_record(item))
        logger.info(f"Parsed {len(records)} notes from JSON")
        return records

    def import_from_markdown(self, files: Iterable[Union[str, Path]]) -> List[Dict[str, Any]]:
        """One record per Markdown file: title from the filename, content from the body.

        Frontmatter ``category`` and ``timestamp`` keys are picked up when present.

        Raises:
            ReadError: If ``files`` is None or a file cannot be read.
        """
        if files is None:
            raise ReadError("Failed to read file: no files given")
        records = []
        for file in files:
            path = Path(file)
            try:
                text = path.read_text(encoding="utf-8")
            except (OSError, UnicodeDecodeError) as e:
                raise ReadError(
                    f"Failed to read file {path.name}", source=str(path), original_error=e
                )
            try:
                post = frontmatter.loads(text)
                metadata, body = post.metadata, post.content
            except yaml.YAMLError as e:
                # Malformed frontmatter: import the raw text
                logger.warning(f"Ignoring unreadable frontmatter in {path.name}: {e}")
                metadata, body = {}, text
            category = metadata.get("category")
            raw: Dict[str, Any] = {
                "title": path.stem,
                "content": body.strip(),
                "category": "" if category in (None, UNCATEGORIZED) else str(category),
            }
            if metadata.get("timestamp"):
                raw["created_at"] = str(metadata["timestamp"])
            records.append(_normalize_record(raw))
        logger.info(f"Parsed {len(records)} notes from Markdown")
        return records

    @staticmethod
    def validate_import_data(data: Any) -> ImportValidation:
        """Check that data is a non-empty list of records with title and content."""
        if not isinstance(data, list):
            return ImportValidation(False, "Import data must be a list of notes")
        if not data:
            return ImportValidation(False, "Import data is empty")
        for index, item in enumerate(data):
            if not isinstance(item, dict):
                return ImportValidation(False, f"Note {index} is not an object")
            if _is_blank(item.get("title")) or _is_blank(item.get("content")):
                return ImportValidation(
                    False, f"Note {index} is missing a title or content"
                )
        return ImportValidation(True, f"{len(data)} notes ready to import")

    def _resolve_category(self, reference: Any, cache: Dict[str, Optional[str]]) -> Optional[str]:
        """Category ID for an imported reference, creating a category for unknown names."""
        if reference is None or not str(reference).strip():
            return None
        reference = str(reference).strip()
        if reference in cache:
            return cache[reference]
        category = self.category_service.get_category(reference) or (
            self.category_service.find_by_name(reference)
        )
        if category is None:
            category = self.category_service.create_category(name=reference)
            logger.info(f"Created category '{reference}' for imported notes")
        cache[reference] = category.id
        return category.id

    def _record_to_note(self, record: Dict[str, Any]) -> Note:
        """Build an uncategorized Note from a normalized record."""
        fields: Dict[str, Any] = {
            "owner_id": self.note_service.owner_id,
            "title": record["title"],
            "content": record["content"],
            "created_at": record["created_at"],
            "updated_at": record["updated_at"],
        }
        fields.update({k: record[k] for k in _PASSTHROUGH_FIELDS if record.get(k) is not None})
        if isinstance(record.get("id"), str):
            fields["id"] = record["id"]
        try:
            note = Note(**fields)
        except PydanticValidationError as e:
            if "id" in fields and any(err["loc"] == ("id",) for err in e.errors()):
                # Foreign ID format: keep the note, give it a new ID
                return self._record_to_note({**record, "id": None})
            raise ValidationError.from_pydantic(e, code=ErrorCode.IMPORT_INVALID_DATA)
        note.created_at = ensure_timezone_aware(note.created_at)
        note.updated_at = ensure_timezone_aware(note.updated_at)
        return note

    def _roll_back(self, inserted: List[Note], removed: List[Note]) -> None:
        """Undo a partially applied import: drop new notes, put replaced ones back."""
        for note in inserted:
            self.note_service.delete_note(note.id)
        for note in removed:
            self.note_service.restore_note(note)

    def import_notes(
        self,
        records: List[Dict[str, Any]],
        duplicate_strategy: Optional[Union[str, DuplicateStrategy]] = DuplicateStrategy.RENAME,
    ) -> ImportResult:
        """Validate, merge and store imported records.

        The merge result is applied as a difference against the store:
        existing notes it dropped are deleted, notes it added are inserted.
        An added note whose ID is already taken gets a fresh ID. Categories
        are resolved before anything is deleted, and a failed insert puts
        the replaced notes back, so a rejected import leaves the notes as
        they were.

        Returns:
            ImportResult; ``success`` is False with ``error`` set when the
            data or strategy is rejected.
        """
        validation = self.validate_import_data(records)
        if not validation.valid:
            logger.warning(f"Import rejected: {validation.message}")
            return ImportResult(
                success=False,
                imported_count=0,
                total_count=len(self.note_service.all_notes()),
                message="Failed to import notes",
                skipped_count=len(records) if isinstance(records, list) else 0,
                error=validation.message,
            )

        try:
            existing = self.note_service.all_notes()
            imported: List[Note] = []
            references: Dict[str, Any] = {}
            for record in (_normalize_record(r) for r in records):
                note = self._record_to_note(record)
                references[note.id] = record.get("category")
                imported.append(note)
            merged = merge_imported_notes(existing, imported, duplicate_strategy)
        except BearNotesError as e:
            logger.warning(f"Import failed: {e}")
            return ImportResult(
                success=False,
                imported_count=0,
                total_count=len(self.note_service.all_notes()),
                message="Failed to import notes",
                skipped_count=len(records),
                error=e.message,
            )

        existing_keys = {id(n) for n in existing}
        merged_keys = {id(n) for n in merged}
        removed = [n for n in existing if id(n) not in merged_keys]
        added = [n for n in merged if id(n) not in existing_keys]

        # Resolve every addition before touching the stored notes
        removed_ids = {n.id for n in removed}
        category_cache: Dict[str, Optional[str]] = {}
        prepared: List[Note] = []
        try:
            for note in added:
                update = {
                    "category_id": self._resolve_category(references.get(note.id), category_cache)
                }
                if note.id not in removed_ids and self.note_service.repository.exists(note.id):
                    update["id"] = generate_id()
                prepared.append(note.model_copy(update=update))
        except BearNotesError as e:
            logger.warning(f"Import failed before any note was changed: {e}")
            return ImportResult(
                success=False,
                imported_count=0,
                total_count=len(existing),
                message="Failed to import notes",
                skipped_count=len(records),
                error=e.message,
            )

        for note in removed:
            self.note_service.delete_note(note.id)
        inserted: List[Note] = []
        try:
            for note in prepared:
                inserted.append(self.note_service.restore_note(note))
        except BearNotesError as e:
            self._roll_back(inserted, removed)
            logger.warning(f"Import rolled back after {len(inserted)} notes: {e}")
            return ImportResult(
                success=False,
                imported_count=0,
                total_count=len(existing),
                message="Failed to import notes",
                skipped_count=len(records),
                error=e.message,
            )

        total = len(existing) - len(removed) + len(added)
        skipped = len(imported) - len(added)
        logger.info(
            f"Imported {len(added)} notes ({len(removed)} replaced, {skipped} skipped) "
            f"for owner {self.note_service.owner_id}"
        )
        return ImportResult(
            success=True,
            imported_count=len(added),
            total_count=total,
            message=f"Successfully imported {len(added)} notes",
            skipped_count=skipped,
        )
