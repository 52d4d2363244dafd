"""Repository for category storage and retrieval."""
import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import func, select, update

from bearnotes.exceptions import CategoryNotFoundError, ErrorCode, ValidationError
from bearnotes.models.db_models import DBCategory, get_session_factory, init_db
from bearnotes.models.schema import (
    Category,
    CategoryMetadata,
    SortOrder,
    ensure_timezone_aware,
    utc_now,
)
from bearnotes.storage.base import Repository, SortSpec, storage_operation

logger = logging.getLogger(__name__)

_DEFAULT_SORT: SortSpec = (("order", SortOrder.ASC), ("name", SortOrder.ASC))


class CategoryRepository(Repository[Category]):
    """SQLite-backed category storage.

    Owns the atomic counter primitive used to maintain ``note_count``.
    Parent validation lives in the category service, which knows the
    owner scope.
    """

    def __init__(self, engine=None):
        """Initialize the repository.

        Args:
            engine: SQLAlchemy engine. If None, uses default from config.
        """
        self.engine = engine or init_db()
        self.session_factory = get_session_factory(self.engine)
        logger.info("CategoryRepository initialized")

    @staticmethod
    def _db_to_model(db: DBCategory) -> Category:
        return Category(
            id=db.id,
            owner_id=db.owner_id,
            name=db.name,
            description=db.description,
            color=db.color,
            icon=db.icon,
            parent_id=db.parent_id,
            order=db.sort_order,
            is_default=db.is_default,
            is_active=db.is_active,
            metadata=CategoryMetadata(
                note_count=max(db.note_count or 0, 0),
                last_used=ensure_timezone_aware(db.last_used) if db.last_used else None,
            ),
            created_at=ensure_timezone_aware(db.created_at),
            updated_at=ensure_timezone_aware(db.updated_at),
        )

    @staticmethod
    def _apply_model_to_db(category: Category, db: DBCategory) -> None:
        # note_count is written only by increment_note_count and set_note_count
        db.owner_id = category.owner_id
        db.name = category.name
        db.description = category.description
        db.color = category.color
        db.icon = category.icon
        db.parent_id = category.parent_id
        db.sort_order = category.order
        db.is_default = category.is_default
        db.is_active = category.is_active
        db.last_used = category.metadata.last_used
        db.created_at = category.created_at
        db.updated_at = category.updated_at

    def create(self, category: Category) -> Category:
        """Insert a new category.

        Raises:
            ValidationError: If a category with the same ID already exists.
        """
        with storage_operation("create_category", ErrorCode.STORAGE_WRITE_FAILED):
            with self.session_factory() as session:
                if session.get(DBCategory, category.id) is not None:
                    raise ValidationError(
                        f"Category '{category.id}' already exists",
                        field="id",
                        value=category.id,
                    )
                db = DBCategory(id=category.id, note_count=category.metadata.note_count)
                self._apply_model_to_db(category, db)
                session.add(db)
                session.commit()
                logger.info(f"Created category: {category.name} ({category.id})")
                return self._db_to_model(db)

    def get(self, id: str, owner_id: Optional[str] = None) -> Optional[Category]:
        """Get a category by ID, optionally scoped to an owner."""
        with storage_operation("get_category"):
            with self.session_factory() as session:
                db = session.get(DBCategory, id)
                if db is None:
                    return None
                if owner_id is not None and db.owner_id != owner_id:
                    return None
                return self._db_to_model(db)

    def update(self, category: Category) -> Category:
        """Persist all fields of an existing category except its counter.

        Raises:
            CategoryNotFoundError: If the category does not exist.
        """
        with storage_operation("update_category", ErrorCode.STORAGE_WRITE_FAILED):
            with self.session_factory() as session:
                db = session.get(DBCategory, category.id)
                if db is None or db.owner_id != category.owner_id:
                    raise CategoryNotFoundError(category.id)
                self._apply_model_to_db(category, db)
                session.commit()
                logger.info(f"Updated category: {category.id}")
                return self._db_to_model(db)

    def delete(self, id: str) -> bool:
        """Physically delete a category row."""
        with storage_operation("delete_category", ErrorCode.STORAGE_DELETE_FAILED):
            with self.session_factory() as session:
                db = session.get(DBCategory, id)
                if db is None:
                    return False
                session.delete(db)
                session.commit()
                logger.info(f"Deleted category: {id}")
                return True

    @staticmethod
    def _apply_filters(query: Any, criteria: Dict[str, Any]) -> Any:
        """Apply criteria: owner_id, active, parent_id, name (case-insensitive exact)."""
        if "owner_id" in criteria:
            query = query.where(DBCategory.owner_id == criteria["owner_id"])
        if criteria.get("active") is not None:
            query = query.where(DBCategory.is_active == bool(criteria["active"]))
        if "parent_id" in criteria:
            query = query.where(DBCategory.parent_id == criteria["parent_id"])
        if criteria.get("name") is not None:
            query = query.where(
                func.lower(DBCategory.name) == criteria["name"].strip().lower()
            )
        return query

    def find(
        self,
        sort: Optional[SortSpec] = None,
        offset: int = 0,
        limit: Optional[int] = None,
        **criteria: Any,
    ) -> List[Category]:
        """Find categories matching criteria."""
        columns = {
            "order": DBCategory.sort_order,
            "name": func.lower(DBCategory.name),
            "note_count": DBCategory.note_count,
            "created_at": DBCategory.created_at,
        }
        with storage_operation("find_categories"):
            with self.session_factory() as session:
                query = self._apply_filters(select(DBCategory), criteria)
                for field_name, order in sort or _DEFAULT_SORT:
                    column = columns[field_name]
                    query = query.order_by(
                        column.desc() if order == SortOrder.DESC else column.asc()
                    )
                query = query.order_by(DBCategory.id.asc())
                if offset > 0:
                    query = query.offset(offset)
                if limit is not None:
                    query = query.limit(limit)
                result = session.execute(query)
                return [self._db_to_model(db) for db in result.scalars().all()]

    def count(self, **criteria: Any) -> int:
        with storage_operation("count_categories"):
            with self.session_factory() as session:
                query = self._apply_filters(select(func.count(DBCategory.id)), criteria)
                return session.execute(query).scalar() or 0

    def increment_note_count(
        self, id: str, delta: int, touch_last_used: bool = False
    ) -> None:
        """Atomically add ``delta`` to a category's note count.

        The count never drops below zero. When ``touch_last_used`` is set,
        ``last_used`` is stamped in the same statement.
        """
        values: Dict[str, Any] = {
            "note_count": func.max(DBCategory.note_count + delta, 0),
        }
        if touch_last_used:
            values["last_used"] = utc_now()
        with storage_operation("increment_note_count", ErrorCode.STORAGE_WRITE_FAILED):
            with self.session_factory() as session:
                result = session.execute(
                    update(DBCategory).where(DBCategory.id == id).values(**values)
                )
                session.commit()
                if not result.rowcount:
                    logger.warning(f"Counter update for missing category {id}")

    def set_note_count(self, id: str, value: int) -> None:
        """Overwrite a category's note count (used by recount)."""
        with storage_operation("set_note_count", ErrorCode.STORAGE_WRITE_FAILED):
            with self.session_factory() as session:
                session.execute(
                    update(DBCategory)
                    .where(DBCategory.id == id)
                    .values(note_count=max(value, 0))
                )
                session.commit()

    def reparent_children(self, owner_id: str, old_parent_id: str, new_parent_id: Optional[str]) -> int:
        """Point every child of one category at another parent.

        The new parent itself is left alone when it is one of the children.
        """
        with storage_operation("reparent_children", ErrorCode.STORAGE_WRITE_FAILED):
            with self.session_factory() as session:
                result = session.execute(
                    update(DBCategory)
                    .where(
                        DBCategory.owner_id == owner_id,
                        DBCategory.parent_id == old_parent_id,
                        DBCategory.id != new_parent_id,
                    )
                    .values(parent_id=new_parent_id, updated_at=utc_now())
                )
                session.commit()
                return result.rowcount or 0
