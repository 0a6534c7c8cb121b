from datetime import UTC, datetime
from pathlib import Path

import pytest

from src.adapters.memory import InMemoryStore
from src.adapters.sqlite.migrator import SQLiteMigrator
from src.adapters.sqlite.store import SQLiteStore
from src.core.entities import Site
from src.rules.loader import load_rules
from src.rules.models import Rules

# --- Mock Time Port ---


class MockTimePort:
    """Mock time provider."""

    def __init__(self, now: datetime | None = None) -> None:
        self._now = now or datetime(2025, 6, 2, 12, 0, tzinfo=UTC)

    def now_utc(self) -> datetime:
        return self._now

    def set_now(self, now: datetime) -> None:
        self._now = now


# --- Fixtures ---


@pytest.fixture
def time_port() -> MockTimePort:
    """Mock clock fixed at Monday 2025-06-02 12:00 UTC."""
    return MockTimePort()


@pytest.fixture
def store() -> InMemoryStore:
    """Fresh in-memory store."""
    return InMemoryStore()


@pytest.fixture
def site(store: InMemoryStore) -> Site:
    """A registered site on example.com."""
    return store.save_site(
        Site(name="Example", domain="example.com", allowed_origins=["https://shop.example.org"])
    )


@pytest.fixture
def rules() -> Rules:
    """Real rules from the project root."""
    rules_path = Path(__file__).parent.parent / "rules.yaml"
    if not rules_path.exists():
        raise FileNotFoundError(f"Rules not found at {rules_path}")
    return load_rules(rules_path)


@pytest.fixture
def sqlite_store(tmp_path: Path) -> SQLiteStore:
    """Migrated SQLite store in a temp directory."""
    db_path = str(tmp_path / "sitepulse.db")
    SQLiteMigrator(db_path).run_migrations()
    return SQLiteStore(db_path)
