"""MCP server implementation for bearnotes."""

import json
import logging
import uuid
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from mcp.server.fastmcp import FastMCP

from bearnotes.backup import BackupManager
from bearnotes.config import config
from bearnotes.exceptions import BearNotesError
from bearnotes.models.db_models import init_db
from bearnotes.models.schema import (
    Category,
    Note,
    NoteFilter,
    Priority,
    SearchFilter,
    SortField,
    SortOrder,
)
from bearnotes.observability import metrics, timed_operation
from bearnotes.services.category_service import CategoryService
from bearnotes.services.note_service import NoteService
from bearnotes.services.search_service import SearchService
from bearnotes.services.transfer_service import TransferService

logger = logging.getLogger(__name__)

TOGGLE_FLAGS = ("pin", "archive", "public", "lock")


def _split_csv(value: Optional[str]) -> List[str]:
    """Split a comma-separated tool argument into trimmed, non-empty items."""
    if not value:
        return []
    return [item.strip() for item in value.split(",") if item.strip()]


def _parse_archived(value: str) -> Optional[bool]:
    value = (value or "false").strip().lower()
    if value == "all":
        return None
    if value in ("true", "only", "yes"):
        return True
    if value in ("false", "no"):
        return False
    raise ValueError(f"Invalid archived filter: {value}. Use 'false', 'true' or 'all'")


def _format_note_line(note: Note) -> str:
    flags = "".join(
        mark
        for mark, on in (("📌", note.is_pinned), ("🗄", note.is_archived), ("🔒", note.is_locked))
        if on
    )
    suffix = f" {flags}" if flags else ""
    return f"- {note.title} (ID: {note.id}){suffix}"


def _format_category_line(category: Category) -> str:
    parent = f", parent: {category.parent_id}" if category.parent_id else ""
    return (
        f"- {category.icon} {category.name} (ID: {category.id}, "
        f"notes: {category.metadata.note_count}{parent})"
    )


class BearNotesMcpServer:
    """MCP server exposing the bearnotes note and category stores."""

    def __init__(self, engine=None):
        """Initialize the MCP server.

        Args:
            engine: Pre-configured SQLAlchemy engine shared by all
                    repositories. Created from config when None.
        """
        self.mcp = FastMCP(config.server_name, version=config.server_version)
        engine = engine or init_db()

        # Services share one engine, one set of repositories and one maintainer
        self.note_service = NoteService(owner_id=config.owner_id, engine=engine)
        self.category_service = CategoryService(
            owner_id=config.owner_id,
            repository=self.note_service.category_repository,
            note_repository=self.note_service.repository,
            maintainer=self.note_service.maintainer,
        )
        self.search_service = SearchService(self.note_service)
        self.transfer_service = TransferService(self.note_service, self.category_service)
        self.backup_manager = BackupManager(
            backup_dir=config.get_backup_dir(), max_backups=config.max_backups
        )
        self.initialize()
        self._register_tools()

    def initialize(self) -> None:
        """Seed the default categories for an owner that has none."""
        if not self.category_service.list_categories():
            created = self.category_service.create_default_categories()
            logger.info(f"Seeded {len(created)} default categories for {config.owner_id}")
        logger.info("bearnotes MCP server initialized")

    def format_error_response(self, error: Exception) -> str:
        """Format an error response in a consistent way.

        Args:
            error: The exception that occurred

        Returns:
            Formatted error message with appropriate level of detail
        """
        # Generate a unique error ID for traceability in logs
        error_id = str(uuid.uuid4())[:8]

        if isinstance(error, BearNotesError):
            logger.error(
                f"[{error.code.name}] [{error_id}]: {error.message}",
                extra={"error_details": error.details},
            )
            return f"Error: {error.message}"
        elif isinstance(error, ValueError):
            # Log full detail but return generic ref to avoid leaking internals
            logger.error(f"Validation error [{error_id}]: {str(error)}")
            return f"Error: Invalid input (ref: {error_id})"
        elif isinstance(error, (IOError, OSError)):
            # File system errors - don't expose paths or detailed error messages
            logger.error(f"File system error [{error_id}]: {str(error)}", exc_info=True)
            return f"Error: A file system error occurred (ref: {error_id})"
        else:
            logger.error(f"Unexpected error [{error_id}]: {str(error)}", exc_info=True)
            return f"Error: An unexpected error occurred (ref: {error_id})"

    def _resolve_category(self, category: Optional[str]) -> Optional[str]:
        return self.category_service.resolve_reference(category)

    def _register_tools(self) -> None:
        """Register MCP tools."""
        self._register_note_tools()
        self._register_category_tools()
        self._register_search_tools()
        self._register_transfer_tools()

    # =========================================================================
    # Notes
    # =========================================================================

    def _register_note_tools(self) -> None:
        @self.mcp.tool(name="bn_create_note")
        def bn_create_note(
            title: str,
            content: str,
            category: Optional[str] = None,
            tags: Optional[str] = None,
            is_pinned: bool = False,
            priority: str = "medium",
            color: Optional[str] = None,
        ) -> str:
            """Create a new note.
            Args:
                title: The title of the note (at most 200 characters)
                content: The body of the note
                category: Category ID or name (optional)
                tags: Comma-separated list of tags (optional)
                is_pinned: Pin the note to the top of listings
                priority: low, medium or high
                color: Hex color such as #ffcc00 (optional)
            """
            with timed_operation("bn_create_note", title=title[:30]) as op:
                try:
                    try:
                        priority_enum = Priority(priority.lower())
                    except ValueError:
                        return f"Invalid priority: {priority}. Valid priorities are: {', '.join(p.value for p in Priority)}"
                    note = self.note_service.create_note(
                        title=title,
                        content=content,
                        category_id=self._resolve_category(category),
                        tags=_split_csv(tags),
                        is_pinned=is_pinned,
                        priority=priority_enum,
                        color=color,
                    )
                    op["note_id"] = note.id
                    return f"Note created successfully with ID: {note.id}"
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="bn_get_note")
        def bn_get_note(note_id: str, format: str = "summary") -> str:
            """Retrieve a note by ID.
            Args:
                note_id: The ID of the note
                format: "summary" (default), "json" or "markdown"
            """
            with timed_operation("bn_get_note", note_id=note_id) as op:
                try:
                    note = self.note_service.get_note(str(note_id))
                    op["found"] = note is not None
                    if note is None:
                        return f"Note not found: {note_id}"
                    if format in ("json", "markdown"):
                        return self.transfer_service.export_note(note, format)

                    category = (
                        self.category_service.get_category(note.category_id)
                        if note.category_id
                        else None
                    )
                    result = f"# {note.title}\n"
                    result += f"ID: {note.id}\n"
                    result += f"Category: {category.name if category else 'uncategorized'}\n"
                    result += f"Priority: {note.priority.value}\n"
                    result += f"Version: {note.version}\n"
                    result += f"Created: {note.created_at.isoformat()}\n"
                    result += f"Updated: {note.updated_at.isoformat()}\n"
                    if note.tags:
                        result += f"Tags: {', '.join(note.tags)}\n"
                    flags = [
                        name
                        for name, on in (
                            ("pinned", note.is_pinned),
                            ("archived", note.is_archived),
                            ("public", note.is_public),
                            ("locked", note.is_locked),
                        )
                        if on
                    ]
                    if flags:
                        result += f"Flags: {', '.join(flags)}\n"
                    result += (
                        f"Words: {note.metadata.word_count} "
                        f"(~{note.metadata.reading_time} min read)\n"
                    )
                    result += f"\n{note.content}\n"
                    return result
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="bn_list_notes")
        def bn_list_notes(
            category: Optional[str] = None,
            search: Optional[str] = None,
            tags: Optional[str] = None,
            archived: str = "false",
            pinned: Optional[bool] = None,
            sort_by: str = "updated_at",
            sort_order: str = "desc",
            page: int = 1,
            limit: Optional[int] = None,
        ) -> str:
            """List notes with filtering, sorting and pagination.
            Args:
                category: Category ID or name (optional)
                search: Substring to look for in title or content (optional)
                tags: Comma-separated tags; notes with any of them match (optional)
                archived: "false" (default), "true" for archived only, "all" for both
                pinned: Only pinned (true) or unpinned (false) notes (optional)
                sort_by: created_at, updated_at, title or category
                sort_order: asc or desc
                page: Page number, starting at 1
                limit: Notes per page (default from configuration)
            """
            with timed_operation("bn_list_notes", page=page) as op:
                try:
                    note_filter = NoteFilter(
                        category_id=self._resolve_category(category),
                        search=search,
                        tags=_split_csv(tags),
                        archived=_parse_archived(archived),
                        pinned=pinned,
                        sort_by=SortField(sort_by),
                        sort_order=SortOrder(sort_order),
                        page=page,
                        limit=limit,
                    )
                    result = self.note_service.list_notes(note_filter)
                    op["result_count"] = len(result.items)
                    if not result.items:
                        return "No notes found."
                    p = result.pagination
                    output = f"Notes (page {p.page} of {max(p.total_pages, 1)}, {p.total} total):\n"
                    output += "\n".join(_format_note_line(n) for n in result.items)
                    if p.has_next:
                        output += f"\n\nMore notes available: use page={p.page + 1}"
                    return output
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="bn_update_note")
        def bn_update_note(
            note_id: str,
            title: Optional[str] = None,
            content: Optional[str] = None,
            category: Optional[str] = None,
            tags: Optional[str] = None,
            priority: Optional[str] = None,
            color: Optional[str] = None,
        ) -> str:
            """Update an existing note. Omitted fields are left unchanged.
            Args:
                note_id: The ID of the note to update
                title: New title (optional)
                content: New content (optional)
                category: New category ID or name; empty string removes the category
                tags: New comma-separated list of tags; empty string clears them
                priority: low, medium or high (optional)
                color: Hex color (optional)
            """
            with timed_operation("bn_update_note", note_id=note_id) as op:
                try:
                    category_id = None
                    if category is not None:
                        category_id = self._resolve_category(category) or ""
                    note = self.note_service.update_note(
                        note_id=str(note_id),
                        title=title,
                        content=content,
                        category_id=category_id,
                        tags=_split_csv(tags) if tags is not None else None,
                        priority=Priority(priority.lower()) if priority else None,
                        color=color,
                    )
                    op["version"] = note.version
                    return f"Note updated successfully: {note.id} (version {note.version})"
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="bn_delete_note")
        def bn_delete_note(note_id: str) -> str:
            """Delete a note.
            Args:
                note_id: The ID of the note to delete
            """
            with timed_operation("bn_delete_note", note_id=note_id) as op:
                try:
                    deleted = self.note_service.delete_note(str(note_id))
                    op["deleted"] = deleted
                    if not deleted:
                        return f"Note not found: {note_id}"
                    return f"Note deleted successfully: {note_id}"
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="bn_toggle_note")
        def bn_toggle_note(note_id: str, flag: str) -> str:
            """Flip one of a note's flags.
            Args:
                note_id: The ID of the note
                flag: pin, archive, public or lock
            """
            with timed_operation("bn_toggle_note", note_id=note_id, flag=flag):
                try:
                    flag = flag.strip().lower()
                    if flag not in TOGGLE_FLAGS:
                        return f"Invalid flag: {flag}. Valid flags are: {', '.join(TOGGLE_FLAGS)}"
                    toggle = getattr(self.note_service, f"toggle_{flag}")
                    note = toggle(str(note_id))
                    state = {
                        "pin": note.is_pinned,
                        "archive": note.is_archived,
                        "public": note.is_public,
                        "lock": note.is_locked,
                    }[flag]
                    return f"Note {note.id}: {flag} is now {'on' if state else 'off'}"
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="bn_duplicate_note")
        def bn_duplicate_note(note_id: str) -> str:
            """Create a copy of a note titled "<title> (Copy)".
            Args:
                note_id: The ID of the note to copy
            """
            with timed_operation("bn_duplicate_note", note_id=note_id) as op:
                try:
                    copy = self.note_service.duplicate_note(str(note_id))
                    op["note_id"] = copy.id
                    return f"Note duplicated: {copy.title} (ID: {copy.id})"
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="bn_bulk_delete")
        def bn_bulk_delete(note_ids: str) -> str:
            """Delete several notes. Failures on individual notes are reported, not fatal.
            Args:
                note_ids: Comma-separated note IDs
            """
            with timed_operation("bn_bulk_delete") as op:
                try:
                    result = self.note_service.bulk_delete(_split_csv(note_ids))
                    op["result_count"] = result.count
                    return json.dumps(result.to_dict(), indent=2)
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="bn_bulk_move")
        def bn_bulk_move(note_ids: str, category: Optional[str] = None) -> str:
            """Move several notes to one category.
            Args:
                note_ids: Comma-separated note IDs
                category: Target category ID or name; omit to make the notes uncategorized
            """
            with timed_operation("bn_bulk_move") as op:
                try:
                    result = self.note_service.bulk_move(
                        _split_csv(note_ids), self._resolve_category(category)
                    )
                    op["result_count"] = result.count
                    return json.dumps(result.to_dict(), indent=2)
                except Exception as e:
                    return self.format_error_response(e)

    # =========================================================================
    # Categories
    # =========================================================================

    def _register_category_tools(self) -> None:
        @self.mcp.tool(name="bn_create_category")
        def bn_create_category(
            name: str,
            color: Optional[str] = None,
            icon: Optional[str] = None,
            description: Optional[str] = None,
            parent: Optional[str] = None,
        ) -> str:
            """Create a category.
            Args:
                name: Unique category name (case-insensitive, at most 50 characters)
                color: Hex color (optional)
                icon: Short icon such as an emoji (optional)
                description: Description (optional, at most 200 characters)
                parent: Parent category ID or name (optional)
            """
            with timed_operation("bn_create_category", name=name[:30]) as op:
                try:
                    kwargs = {}
                    if color:
                        kwargs["color"] = color
                    category = self.category_service.create_category(
                        name=name,
                        icon=icon,
                        description=description,
                        parent_id=self._resolve_category(parent),
                        **kwargs,
                    )
                    op["category_id"] = category.id
                    return f"Category created successfully with ID: {category.id}"
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="bn_list_categories")
        def bn_list_categories() -> str:
            """List active categories in display order."""
            with timed_operation("bn_list_categories") as op:
                try:
                    categories = self.category_service.list_categories()
                    op["result_count"] = len(categories)
                    if not categories:
                        return "No categories found."
                    return f"Categories ({len(categories)}):\n" + "\n".join(
                        _format_category_line(c) for c in categories
                    )
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="bn_update_category")
        def bn_update_category(
            category: str,
            name: Optional[str] = None,
            color: Optional[str] = None,
            icon: Optional[str] = None,
            description: Optional[str] = None,
            parent: Optional[str] = None,
            order: Optional[int] = None,
        ) -> str:
            """Update a category. Omitted fields are left unchanged.
            Args:
                category: Category ID or name
                name: New name (optional)
                color: New hex color (optional)
                icon: New icon (optional)
                description: New description (optional)
                parent: New parent ID or name; empty string removes the parent
                order: New manual sort position (optional)
            """
            with timed_operation("bn_update_category", category=category) as op:
                try:
                    category_id = self._resolve_category(category)
                    kwargs = {}
                    if description is not None:
                        kwargs["description"] = description
                    if parent is not None:
                        kwargs["parent_id"] = self._resolve_category(parent) or ""
                    updated = self.category_service.update_category(
                        category_id,
                        name=name,
                        color=color,
                        icon=icon,
                        order=order,
                        **kwargs,
                    )
                    op["category_id"] = updated.id
                    return f"Category updated successfully: {updated.name} (ID: {updated.id})"
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="bn_delete_category")
        def bn_delete_category(category: str) -> str:
            """Delete a category that has no notes and no subcategories.
            Args:
                category: Category ID or name
            """
            with timed_operation("bn_delete_category", category=category):
                try:
                    category_id = self._resolve_category(category)
                    self.category_service.delete_category(category_id)
                    return f"Category deleted successfully: {category_id}"
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="bn_merge_categories")
        def bn_merge_categories(source: str, target: str) -> str:
            """Move all notes of one category into another and delete the first.
            Args:
                source: Category ID or name to merge away
                target: Category ID or name that receives the notes
            """
            with timed_operation("bn_merge_categories", source=source, target=target) as op:
                try:
                    result = self.category_service.merge_categories(
                        self._resolve_category(source), self._resolve_category(target)
                    )
                    op["notes_moved"] = result.notes_moved
                    return (
                        f"Merged category {result.source_id} into {result.target_id}: "
                        f"{result.notes_moved} notes moved"
                    )
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="bn_category_stats")
        def bn_category_stats() -> str:
            """Show how many notes each category holds."""
            with timed_operation("bn_category_stats"):
                try:
                    report = self.category_service.get_category_stats()
                    output = "# Category Statistics\n\n"
                    output += f"**Categories:** {report.total_categories}\n"
                    output += f"**Categorized notes:** {report.total_notes}\n"
                    output += f"**Uncategorized notes:** {report.uncategorized_notes}\n"
                    output += f"**Average per category:** {report.average_notes_per_category}\n"
                    if report.most_used:
                        output += f"**Most used:** {report.most_used.name}\n"
                    if report.least_used:
                        output += f"**Least used:** {report.least_used.name}\n"
                    if report.categories:
                        output += "\n" + "\n".join(
                            f"- {c.name}: {c.metadata.note_count}" for c in report.categories
                        )
                    return output
                except Exception as e:
                    return self.format_error_response(e)

    # =========================================================================
    # Search and statistics
    # =========================================================================

    def _register_search_tools(self) -> None:
        @self.mcp.tool(name="bn_search")
        def bn_search(
            query: Optional[str] = None,
            category: Optional[str] = None,
            tags: Optional[str] = None,
            date_from: Optional[str] = None,
            date_to: Optional[str] = None,
            include_archived: bool = False,
            page: int = 1,
            limit: Optional[int] = None,
        ) -> str:
            """Search notes by text, ranked by relevance, with optional filters.
            Args:
                query: Words to look for in titles and content (optional)
                category: Category ID or name (optional)
                tags: Comma-separated tags, any of which must match (optional)
                date_from: ISO date; only notes created on or after (optional)
                date_to: ISO date; only notes created on or before (optional)
                include_archived: Also search archived notes
                page: Page number, starting at 1
                limit: Results per page
            """
            with timed_operation("bn_search", query=(query or "")[:30]) as op:
                try:
                    search_filter = SearchFilter(
                        query=query,
                        category_id=self._resolve_category(category),
                        tags=_split_csv(tags),
                        date_from=datetime.fromisoformat(date_from) if date_from else None,
                        date_to=datetime.fromisoformat(date_to) if date_to else None,
                        archived=None if include_archived else False,
                        page=page,
                        limit=limit,
                    )
                    found = self.search_service.advanced_search(search_filter)
                    op["result_count"] = len(found.results)
                    if not found.results:
                        return "No matching notes found."
                    p = found.pagination
                    output = f"Found {p.total} matching notes (page {p.page} of {max(p.total_pages, 1)}):\n\n"
                    for i, result in enumerate(found.results, (p.page - 1) * p.limit + 1):
                        note = result.note
                        output += f"{i}. {note.title} (ID: {note.id})\n"
                        if query:
                            output += f"   Relevance: {result.score:.1f}\n"
                        if result.matched_context:
                            output += f"   {self.search_service.highlight(result.matched_context, query or '')}\n"
                        output += "\n"
                    return output.rstrip() + "\n"
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="bn_user_stats")
        def bn_user_stats(trend_period: str = "month") -> str:
            """Show totals over all notes and how many were created per period.
            Args:
                trend_period: week, month or year
            """
            with timed_operation("bn_user_stats"):
                try:
                    stats = self.note_service.get_user_stats()
                    trends = self.note_service.get_note_trends(trend_period)
                    output = "# Note Statistics\n\n"
                    output += f"**Notes:** {stats.total_notes}\n"
                    output += f"**Words:** {stats.total_words}\n"
                    output += f"**Characters:** {stats.total_characters}\n"
                    output += f"**Pinned:** {stats.pinned_notes}\n"
                    output += f"**Archived:** {stats.archived_notes}\n"
                    output += f"**Public:** {stats.public_notes}\n"
                    if trends:
                        output += f"\n## Activity per {trend_period}\n"
                        for row in trends:
                            output += f"- {row['period']}: {row['created']} created, {row['updated']} updated\n"
                    return output
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="bn_status")
        def bn_status() -> str:
            """Show server metrics and the latest backup."""
            with timed_operation("bn_status"):
                try:
                    summary = metrics.get_summary()
                    output = "# bearnotes Status\n\n"
                    output += f"**Owner:** {self.note_service.owner_id}\n"
                    output += f"**Uptime:** {summary['uptime_seconds']:.0f} seconds\n"
                    output += f"**Operations:** {summary['total_operations']}\n"
                    output += f"**Success Rate:** {summary['overall_success_rate']:.1%}\n"
                    output += f"**Errors:** {summary['total_errors']}\n"
                    backups = self.backup_manager.list_backups()
                    if backups:
                        latest = backups[0]
                        output += f"**Last Backup:** {latest['created_at'][:10]} ({latest['size_mb']} MB)\n"
                    else:
                        output += "**Backups:** None found\n"
                    return output
                except Exception as e:
                    return self.format_error_response(e)

    # =========================================================================
    # Import, export and backup
    # =========================================================================

    def _register_transfer_tools(self) -> None:
        @self.mcp.tool(name="bn_export")
        def bn_export(format: str = "json", output_path: Optional[str] = None) -> str:
            """Export all notes.
            Args:
                format: json, markdown or pdf
                output_path: File to write. Required for pdf; json and
                    markdown are returned inline when omitted.
            """
            with timed_operation("bn_export", format=format) as op:
                try:
                    fmt = format.strip().lower()
                    if fmt == "json":
                        data = self.transfer_service.export_to_json()
                    elif fmt in ("markdown", "md"):
                        data = self.transfer_service.export_to_markdown()
                    elif fmt == "pdf":
                        data = self.transfer_service.export_to_pdf()
                    else:
                        return f"Invalid format: {format}. Valid formats are: json, markdown, pdf"

                    if output_path is None and fmt != "pdf":
                        return data
                    path = Path(output_path) if output_path else (
                        Path.cwd() / self.transfer_service.generate_export_filename(fmt)
                    )
                    path.parent.mkdir(parents=True, exist_ok=True)
                    if isinstance(data, bytes):
                        path.write_bytes(data)
                    else:
                        path.write_text(data, encoding="utf-8")
                    op["path"] = str(path)
                    return f"Exported notes to {path}"
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="bn_import")
        def bn_import(
            source: str,
            format: str = "json",
            duplicate_strategy: str = "rename",
        ) -> str:
            """Import notes from a JSON file or Markdown files.
            Args:
                source: JSON file path; for markdown a directory or comma-separated file paths
                format: json or markdown
                duplicate_strategy: overwrite, skip or rename (default)
            """
            with timed_operation("bn_import", format=format) as op:
                try:
                    fmt = format.strip().lower()
                    if fmt == "json":
                        records = self.transfer_service.import_from_json(Path(source))
                    elif fmt in ("markdown", "md"):
                        source_path = Path(source)
                        files = (
                            sorted(source_path.glob("*.md"))
                            if source_path.is_dir()
                            else [Path(p) for p in _split_csv(source)]
                        )
                        records = self.transfer_service.import_from_markdown(files)
                    else:
                        return f"Invalid format: {format}. Valid formats are: json, markdown"

                    result = self.transfer_service.import_notes(records, duplicate_strategy)
                    op["imported"] = result.imported_count
                    if not result.success:
                        return f"Error: {result.error}"
                    return (
                        f"{result.message} ({result.skipped_count} skipped, "
                        f"{result.total_count} notes in total)"
                    )
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="bn_backup")
        def bn_backup(
            action: str = "create",
            backup_type: str = "full",
            max_backups: Optional[int] = None,
        ) -> str:
            """Create, list or clean up backups.
            Args:
                action: create (default), list or clean
                backup_type: full, notes or categories (for create)
                max_backups: Number of newest backups to keep (for clean)
            """
            with timed_operation("bn_backup", action=action) as op:
                try:
                    action = action.strip().lower()
                    if action == "create":
                        path = self.backup_manager.create_backup(
                            self.note_service, self.category_service, backup_type
                        )
                        op["path"] = str(path)
                        return f"Backup created: {path}"
                    if action == "list":
                        backups = self.backup_manager.list_backups()
                        if not backups:
                            return "No backups found."
                        return "Backups:\n" + "\n".join(
                            f"- {b['name']} ({b['type']}, {b['size_mb']} MB, {b['created_at']})"
                            for b in backups
                        )
                    if action == "clean":
                        removed = self.backup_manager.clean_old_backups(max_backups)
                        return f"Removed {removed} old backup(s)"
                    return f"Invalid action: {action}. Valid actions are: create, list, clean"
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="bn_restore_backup")
        def bn_restore_backup(backup_path: str, clear_existing: bool = False) -> str:
            """Restore notes and categories from a backup file.
            Args:
                backup_path: Path to a backup created by bn_backup
                clear_existing: Delete all current notes before restoring
            """
            with timed_operation("bn_restore_backup") as op:
                try:
                    result = self.backup_manager.restore_backup(
                        backup_path,
                        self.note_service,
                        self.category_service,
                        clear_existing=clear_existing,
                    )
                    op["notes_restored"] = result.notes_restored
                    output = (
                        f"Restored {result.categories_restored} categories "
                        f"({result.categories_reused} reused) and "
                        f"{result.notes_restored} notes ({result.notes_skipped} already present)"
                    )
                    if result.errors:
                        output += f"\n{len(result.errors)} error(s):\n" + "\n".join(
                            f"- {err}" for err in result.errors
                        )
                    return output
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="bn_verify_counts")
        def bn_verify_counts(repair: bool = False) -> str:
            """Check that every category's note count matches its notes.
            Args:
                repair: Rewrite drifted counters from the notes table
            """
            with timed_operation("bn_verify_counts") as op:
                try:
                    maintainer = self.note_service.maintainer
                    owner_id = self.note_service.owner_id
                    mismatches = (
                        maintainer.recount(owner_id) if repair else maintainer.verify(owner_id)
                    )
                    op["mismatches"] = len(mismatches)
                    if not mismatches:
                        return "All category note counts are consistent."
                    verb = "Corrected" if repair else "Found"
                    return f"{verb} {len(mismatches)} mismatched count(s):\n" + "\n".join(
                        f"- {cid}: stored {stored}, actual {actual}"
                        for cid, (stored, actual) in mismatches.items()
                    )
                except Exception as e:
                    return self.format_error_response(e)

    def run(self) -> None:
        """Run the MCP server."""
        self.mcp.run()
