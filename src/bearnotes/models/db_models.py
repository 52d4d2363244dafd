"""SQLAlchemy database models for the bearnotes core."""
import datetime

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    create_engine,
    event,
)
from sqlalchemy.orm import declarative_base, relationship, sessionmaker
from sqlalchemy.pool import StaticPool

from bearnotes.config import config
from bearnotes.models.schema import (
    DEFAULT_CATEGORY_COLOR,
    DEFAULT_CATEGORY_ICON,
    DEFAULT_NOTE_COLOR,
    Priority,
)

# Create base class for SQLAlchemy models
Base = declarative_base()


def _now() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


class DBCategory(Base):
    """Database model for a category."""
    __tablename__ = "categories"
    id = Column(String(64), primary_key=True, index=True)
    owner_id = Column(String(255), nullable=False, index=True)
    name = Column(String(50), nullable=False)
    description = Column(String(200), nullable=True)
    color = Column(String(7), default=DEFAULT_CATEGORY_COLOR, nullable=False)
    icon = Column(String(10), default=DEFAULT_CATEGORY_ICON, nullable=False)
    parent_id = Column(String(64), ForeignKey("categories.id"), nullable=True, index=True)
    sort_order = Column(Integer, default=0, nullable=False)
    is_default = Column(Boolean, default=False, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False, index=True)
    note_count = Column(Integer, default=0, nullable=False)
    last_used = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=_now, nullable=False)
    updated_at = Column(DateTime, default=_now, nullable=False)

    __table_args__ = (Index("ix_categories_owner_active", "owner_id", "is_active"),)

    def __repr__(self) -> str:
        """Return string representation of category."""
        return f"<Category(id='{self.id}', name='{self.name}', notes={self.note_count})>"


class DBNote(Base):
    """Database model for a note."""
    __tablename__ = "notes"
    id = Column(String(64), primary_key=True, index=True)
    owner_id = Column(String(255), nullable=False, index=True)
    title = Column(String(200), nullable=False, index=True)
    content = Column(Text, nullable=False)
    category_id = Column(String(64), ForeignKey("categories.id"), nullable=True, index=True)
    is_pinned = Column(Boolean, default=False, nullable=False)
    is_archived = Column(Boolean, default=False, nullable=False, index=True)
    is_public = Column(Boolean, default=False, nullable=False)
    is_locked = Column(Boolean, default=False, nullable=False)
    priority = Column(String(10), default=Priority.MEDIUM.value, nullable=False)
    color = Column(String(7), default=DEFAULT_NOTE_COLOR, nullable=False)
    word_count = Column(Integer, default=0, nullable=False)
    character_count = Column(Integer, default=0, nullable=False)
    reading_time = Column(Integer, default=0, nullable=False)
    last_edited_by = Column(String(255), nullable=True)
    version = Column(Integer, default=1, nullable=False)
    history = Column(JSON, default=list, nullable=False)
    created_at = Column(DateTime, default=_now, nullable=False, index=True)
    updated_at = Column(DateTime, default=_now, nullable=False, index=True)

    # Relationships
    tags = relationship(
        "DBTag",
        back_populates="note",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    def __repr__(self) -> str:
        """Return string representation of note."""
        return f"<Note(id='{self.id}', title='{self.title}')>"


class DBTag(Base):
    """Database model for a tag attached to a note."""
    __tablename__ = "note_tags"
    note_id = Column(
        String(64), ForeignKey("notes.id", ondelete="CASCADE"), primary_key=True
    )
    name = Column(String(50), primary_key=True, index=True)

    note = relationship("DBNote", back_populates="tags")

    def __repr__(self) -> str:
        """Return string representation of tag."""
        return f"<Tag(note_id='{self.note_id}', name='{self.name}')>"


def init_db(db_url=None):
    """Initialize the database and return the engine.

    File databases use WAL journaling with NORMAL synchronous mode.
    In-memory databases share one connection so every session sees
    the same data.
    """
    url = db_url or config.get_db_url()
    in_memory = url in ("sqlite://", "sqlite:///:memory:")

    if in_memory:
        engine = create_engine(
            url,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    else:
        engine = create_engine(url, pool_pre_ping=True)

    @event.listens_for(engine, "connect")
    def set_sqlite_pragma(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        if not in_memory:
            # WAL mode: writes go to separate journal, preventing corruption on crash
            cursor.execute("PRAGMA journal_mode=WAL")
            cursor.execute("PRAGMA synchronous=NORMAL")
        cursor.close()

    Base.metadata.create_all(engine)
    return engine


def get_session_factory(engine=None):
    """Get a session factory for the database."""
    if engine is None:
        engine = init_db()
    return sessionmaker(bind=engine, expire_on_commit=False)
