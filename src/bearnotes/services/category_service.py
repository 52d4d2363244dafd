"""Service layer for category operations."""

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from pydantic import ValidationError as PydanticValidationError

from bearnotes.config import config
from bearnotes.exceptions import (
    BearNotesError,
    BulkOperationError,
    CategoryNotFoundError,
    DuplicateNameError,
    ErrorCode,
    HasNotesError,
    HasSubcategoriesError,
    InvalidParentError,
    ValidationError,
)
from bearnotes.models.db_models import init_db
from bearnotes.models.schema import (
    DEFAULT_CATEGORIES,
    DEFAULT_CATEGORY_COLOR,
    DEFAULT_CATEGORY_ICON,
    BulkResult,
    Category,
    CategoryStatsReport,
    SortOrder,
    utc_now,
)
from bearnotes.services.reference_maintainer import ReferenceMaintainer
from bearnotes.storage.category_repository import CategoryRepository
from bearnotes.storage.note_repository import NoteRepository

logger = logging.getLogger(__name__)

# Sentinel distinguishing "not given" from "clear the value"
_UNSET: Any = object()


@dataclass
class MergeResult:
    """Outcome of merging one category into another."""

    source_id: str
    target_id: str
    notes_moved: int


class CategoryService:
    """Category Store operations, scoped to a single owner."""

    def __init__(
        self,
        owner_id: Optional[str] = None,
        repository: Optional[CategoryRepository] = None,
        note_repository: Optional[NoteRepository] = None,
        maintainer: Optional[ReferenceMaintainer] = None,
        engine: Optional[Any] = None,
    ):
        """Initialize the service.

        Args:
            owner_id: Owner every operation is scoped to. Defaults to config.owner_id.
            repository: Category storage backend. Created with defaults if None.
            note_repository: Note storage backend, used for guards and merges.
            maintainer: Counter maintainer. Built from the repositories if None.
            engine: Shared SQLAlchemy engine, used for repositories created here.
        """
        self.owner_id = owner_id or config.owner_id
        if repository is None or note_repository is None:
            engine = engine or init_db()
        self.repository = repository or CategoryRepository(engine=engine)
        self.note_repository = note_repository or NoteRepository(engine=engine)
        self.maintainer = maintainer or ReferenceMaintainer(
            self.note_repository, self.repository
        )

    # =========================================================================
    # Lookups
    # =========================================================================

    def get_category(self, category_id: str) -> Optional[Category]:
        """Get an active category of the owner by ID."""
        category = self.repository.get(category_id, owner_id=self.owner_id)
        if category is None or not category.is_active:
            return None
        return category

    def require_category(self, category_id: str) -> Category:
        category = self.get_category(category_id)
        if category is None:
            raise CategoryNotFoundError(category_id)
        return category

    def list_categories(self) -> List[Category]:
        """Active categories sorted by manual order, then name."""
        return self.repository.find(owner_id=self.owner_id, active=True)

    def find_by_name(self, name: str) -> Optional[Category]:
        """Case-insensitive lookup of an active category by name."""
        if not name or not name.strip():
            return None
        matches = self.repository.find(owner_id=self.owner_id, active=True, name=name)
        return matches[0] if matches else None

    def resolve_reference(self, reference: Optional[str]) -> Optional[str]:
        """Turn a category ID or name into a category ID.

        Returns:
            The category ID, or None for an empty reference.

        Raises:
            CategoryNotFoundError: If nothing matches the reference.
        """
        if not reference or not reference.strip():
            return None
        reference = reference.strip()
        by_id = self.get_category(reference)
        if by_id is not None:
            return by_id.id
        by_name = self.find_by_name(reference)
        if by_name is not None:
            return by_name.id
        raise CategoryNotFoundError(reference)

    # =========================================================================
    # Guards
    # =========================================================================

    def _check_unique_name(self, name: str, exclude_id: Optional[str] = None) -> None:
        existing = self.find_by_name(name)
        if existing is not None and existing.id != exclude_id:
            raise DuplicateNameError(name.strip(), existing_id=existing.id)

    def _is_descendant(self, category: Category, ancestor_id: str) -> bool:
        """Whether ``ancestor_id`` appears in the parent chain of ``category``."""
        visited = {category.id}
        current = category
        while current is not None and current.parent_id:
            if current.parent_id == ancestor_id:
                return True
            if current.parent_id in visited:
                return False
            visited.add(current.parent_id)
            current = self.repository.get(current.parent_id, owner_id=self.owner_id)
        return False

    def _check_parent(self, category_id: str, parent_id: str) -> None:
        """Validate a new parent: not itself, owned, active, and not a descendant.

        Walks up the parent chain from the proposed parent; reaching
        ``category_id`` means the assignment would create a cycle.
        """
        if parent_id == category_id:
            raise InvalidParentError(category_id, parent_id)
        parent = self.get_category(parent_id)
        if parent is None:
            raise CategoryNotFoundError(
                parent_id, f"Parent category '{parent_id}' not found"
            )
        visited = {category_id}
        current = parent
        while current is not None and current.parent_id:
            if current.parent_id in visited:
                raise InvalidParentError(
                    category_id,
                    parent_id,
                    f"Setting parent to '{parent_id}' would create a circular reference",
                )
            visited.add(current.parent_id)
            current = self.repository.get(current.parent_id, owner_id=self.owner_id)

    # =========================================================================
    # CRUD
    # =========================================================================

    def create_category(
        self,
        name: str,
        color: str = DEFAULT_CATEGORY_COLOR,
        icon: Optional[str] = None,
        description: Optional[str] = None,
        parent_id: Optional[str] = None,
        order: int = 0,
        is_default: bool = False,
    ) -> Category:
        """Create a category.

        Raises:
            ValidationError: If the name, color or description is invalid.
            DuplicateNameError: If an active category already has this name.
            CategoryNotFoundError: If the parent does not belong to the owner.
        """
        if not name or not name.strip():
            raise ValidationError(
                "Category name is required",
                field="name",
                code=ErrorCode.CATEGORY_VALIDATION_FAILED,
            )
        try:
            category = Category(
                owner_id=self.owner_id,
                name=name,
                color=color or DEFAULT_CATEGORY_COLOR,
                icon=icon or DEFAULT_CATEGORY_ICON,
                description=description,
                order=order,
                is_default=is_default,
            )
        except PydanticValidationError as e:
            raise ValidationError.from_pydantic(
                e, code=ErrorCode.CATEGORY_VALIDATION_FAILED
            )
        self._check_unique_name(category.name)
        if parent_id:
            self._check_parent(category.id, parent_id)
            category.parent_id = parent_id
        category.metadata.last_used = category.created_at

        created = self.repository.create(category)
        logger.info(f"Created category '{created.name}' for owner {self.owner_id}")
        return created

    def update_category(
        self,
        category_id: str,
        name: Optional[str] = None,
        color: Optional[str] = None,
        icon: Optional[str] = None,
        description: Optional[str] = _UNSET,
        parent_id: Optional[str] = _UNSET,
        order: Optional[int] = None,
    ) -> Category:
        """Update a category; only the arguments given are changed.

        ``description=None`` and ``parent_id=None`` (or "") clear those
        fields; leaving them out keeps the current value.

        Raises:
            CategoryNotFoundError: If the category or new parent is missing.
            DuplicateNameError: If the new name collides with another category.
            InvalidParentError: If the new parent is the category or one of its descendants.
        """
        category = self.require_category(category_id)
        try:
            if name is not None:
                category.name = name
                self._check_unique_name(category.name, exclude_id=category_id)
            if color is not None:
                category.color = color
            if icon is not None:
                category.icon = icon
            if description is not _UNSET:
                category.description = description
            if parent_id is not _UNSET:
                if parent_id and parent_id != category.parent_id:
                    self._check_parent(category_id, parent_id)
                category.parent_id = parent_id or None
            if order is not None:
                category.order = order
        except PydanticValidationError as e:
            raise ValidationError.from_pydantic(
                e, code=ErrorCode.CATEGORY_VALIDATION_FAILED
            )
        category.updated_at = utc_now()
        return self.repository.update(category)

    def delete_category(self, category_id: str) -> bool:
        """Delete a category that has no notes and no subcategories.

        Both guards run before anything is modified. Deletion is a soft
        delete (``is_active=False``); the row keeps existing for history.

        Raises:
            CategoryNotFoundError: If the category does not exist.
            HasNotesError: If any note (archived or not) still references it.
            HasSubcategoriesError: If any active category has it as parent.
        """
        category = self.require_category(category_id)
        note_count = max(
            category.metadata.note_count,
            self.note_repository.count(owner_id=self.owner_id, category_id=category_id),
        )
        if note_count > 0:
            raise HasNotesError(category_id, note_count)
        children = self.repository.find(
            owner_id=self.owner_id, active=True, parent_id=category_id
        )
        if children:
            raise HasSubcategoriesError(category_id, [c.id for c in children])
        self._deactivate(category)
        return True

    def _deactivate(self, category: Category) -> None:
        category.is_active = False
        category.updated_at = utc_now()
        self.repository.update(category)
        logger.info(f"Deleted category {category.id} ('{category.name}')")

    def merge_categories(self, source_id: str, target_id: str) -> MergeResult:
        """Move every note from source to target, then delete source.

        Subcategories of the source are re-attached to the target. When the
        target is itself below the source, it first takes over the source's
        parent so the hierarchy stays acyclic. The source is deleted
        without the has-notes guard because its notes have just been moved.

        Raises:
            ValidationError: If source and target are the same category.
            CategoryNotFoundError: If either category is missing.
        """
        if source_id == target_id:
            raise ValidationError(
                "Cannot merge a category into itself",
                field="target_id",
                value=target_id,
                code=ErrorCode.CATEGORY_VALIDATION_FAILED,
            )
        source = self.require_category(source_id)
        target = self.require_category(target_id)

        moved, counted = self.note_repository.reassign_category(
            self.owner_id, source_id, target_id
        )
        self.maintainer.notes_reassigned(source_id, target_id, counted)
        if self._is_descendant(target, source_id):
            # The target moves up to take the source's place in the tree
            target = self.require_category(target_id)
            target.parent_id = source.parent_id
            target.updated_at = utc_now()
            self.repository.update(target)
        self.repository.reparent_children(self.owner_id, source_id, target_id)
        self._deactivate(source)
        logger.info(f"Merged category {source_id} into {target_id}: {moved} notes moved")
        return MergeResult(source_id=source_id, target_id=target_id, notes_moved=moved)

    def reorder_categories(self, items: List[Dict[str, Any]]) -> BulkResult:
        """Apply {"id", "order"} updates independently of each other."""
        if not items:
            raise BulkOperationError(
                "No categories provided for reorder",
                operation="reorder_categories",
                code=ErrorCode.BULK_OPERATION_EMPTY_INPUT,
            )
        result = BulkResult(operation="reorder_categories", total_count=len(items))
        for index, item in enumerate(items):
            item_id = str(item.get("id", "")) if isinstance(item, dict) else f"item {index}"
            try:
                if not isinstance(item, dict):
                    raise ValidationError(
                        "Reorder item must be an object with id and order", value=item
                    )
                order = item.get("order")
                if not isinstance(order, int) or isinstance(order, bool):
                    raise ValidationError(
                        "Order must be an integer", field="order", value=order
                    )
                self.update_category(item_id, order=order)
                result.count += 1
            except BearNotesError as e:
                logger.warning(f"reorder_categories failed for {item_id}: {e}")
                result.errors.append((item_id, e.message))
        return result

    # =========================================================================
    # Statistics and seeding
    # =========================================================================

    def get_category_stats(self) -> CategoryStatsReport:
        """Category usage sorted by note count, descending."""
        categories = self.repository.find(
            sort=[("note_count", SortOrder.DESC), ("name", SortOrder.ASC)],
            owner_id=self.owner_id,
            active=True,
        )
        total_notes = sum(c.metadata.note_count for c in categories)
        uncategorized = self.note_repository.count(
            owner_id=self.owner_id, category_id=None, archived=False
        )
        return CategoryStatsReport(
            categories=categories,
            total_categories=len(categories),
            total_notes=total_notes,
            uncategorized_notes=uncategorized,
            most_used=categories[0] if categories else None,
            least_used=categories[-1] if categories else None,
            average_notes_per_category=(
                round(total_notes / len(categories), 2) if categories else 0.0
            ),
        )

    def create_default_categories(self) -> List[Category]:
        """Insert the five seed categories, skipping names that already exist."""
        created = []
        for seed in DEFAULT_CATEGORIES:
            if self.find_by_name(seed["name"]) is not None:
                continue
            created.append(self.create_category(is_default=True, **seed))
        logger.info(f"Created {len(created)} default categories for owner {self.owner_id}")
        return created

    def restore_category(self, category: Category) -> Category:
        """Insert a category from a backup, keeping its ID.

        The counter starts at zero; restored notes increment it.
        """
        self._check_unique_name(category.name)
        restored = category.model_copy(
            update={"owner_id": self.owner_id, "is_active": True}, deep=True
        )
        restored.metadata.note_count = 0
        if restored.parent_id and self.get_category(restored.parent_id) is None:
            restored.parent_id = None
        return self.repository.create(restored)
