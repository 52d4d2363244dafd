"""Common test fixtures for bearnotes."""

import pytest

from bearnotes.backup import BackupManager
from bearnotes.config import config
from bearnotes.models.db_models import init_db
from bearnotes.observability import metrics
from bearnotes.services.category_service import CategoryService
from bearnotes.services.note_service import NoteService
from bearnotes.services.reference_maintainer import ReferenceMaintainer
from bearnotes.services.search_service import SearchService
from bearnotes.services.transfer_service import TransferService
from bearnotes.storage.category_repository import CategoryRepository
from bearnotes.storage.note_repository import NoteRepository

OWNER = "user-1"
OTHER_OWNER = "user-2"


@pytest.fixture(autouse=True)
def isolated_metrics(tmp_path, monkeypatch):
    """Keep the global metrics collector away from the user's home directory."""
    monkeypatch.setattr(metrics, "_metrics_file", tmp_path / "metrics.json")
    metrics.reset()
    yield metrics
    metrics.reset()


@pytest.fixture
def test_config(tmp_path, monkeypatch):
    """Configure with test paths (auto-restored even on crash)."""
    monkeypatch.setattr(config, "database_path", tmp_path / "db" / "test_bearnotes.db")
    monkeypatch.setattr(config, "backup_dir", tmp_path / "backups")
    monkeypatch.setattr(config, "in_memory_db", False)
    monkeypatch.setattr(config, "owner_id", OWNER)
    monkeypatch.setattr(config, "default_page_size", 20)
    monkeypatch.setattr(config, "max_page_size", 100)
    yield config


@pytest.fixture
def engine(test_config):
    """A fresh SQLite database in the test directory."""
    engine = init_db(test_config.get_db_url())
    yield engine
    engine.dispose()


@pytest.fixture
def note_repository(engine):
    return NoteRepository(engine=engine)


@pytest.fixture
def category_repository(engine):
    return CategoryRepository(engine=engine)


@pytest.fixture
def maintainer(note_repository, category_repository):
    return ReferenceMaintainer(note_repository, category_repository)


def _services(owner_id, note_repository, category_repository, maintainer):
    note_service = NoteService(
        owner_id=owner_id,
        repository=note_repository,
        category_repository=category_repository,
        maintainer=maintainer,
    )
    category_service = CategoryService(
        owner_id=owner_id,
        repository=category_repository,
        note_repository=note_repository,
        maintainer=maintainer,
    )
    return note_service, category_service


@pytest.fixture
def note_service(note_repository, category_repository, maintainer):
    """NoteService bound to the primary test owner."""
    return _services(OWNER, note_repository, category_repository, maintainer)[0]


@pytest.fixture
def category_service(note_repository, category_repository, maintainer):
    """CategoryService bound to the primary test owner."""
    return _services(OWNER, note_repository, category_repository, maintainer)[1]


@pytest.fixture
def other_note_service(note_repository, category_repository, maintainer):
    """NoteService of a second owner sharing the same database."""
    return _services(OTHER_OWNER, note_repository, category_repository, maintainer)[0]


@pytest.fixture
def other_category_service(note_repository, category_repository, maintainer):
    return _services(OTHER_OWNER, note_repository, category_repository, maintainer)[1]


@pytest.fixture
def search_service(note_service):
    return SearchService(note_service)


@pytest.fixture
def transfer_service(note_service, category_service):
    return TransferService(note_service, category_service)


@pytest.fixture
def backup_manager(tmp_path):
    return BackupManager(backup_dir=tmp_path / "backups", max_backups=3)


@pytest.fixture
def work_category(category_service):
    """The "Work" category used throughout the scenarios."""
    return category_service.create_category(name="Work", color="#4ECDC4", icon="💼")


@pytest.fixture
def personal_category(category_service):
    return category_service.create_category(name="Personal", color="#FF6B6B", icon="👤")
