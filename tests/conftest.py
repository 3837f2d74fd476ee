import pytest
from sqlalchemy import insert
from sqlalchemy.pool import StaticPool

from book_finder.config import CacheSettings
from book_finder.core.cache_manager import BookCacheManager
from book_finder.db.models import CachedBook, utcnow
from book_finder.db.session import Database


@pytest.fixture
def settings():
    return CacheSettings(database_url="sqlite://", catalog_retry_delay_seconds=0)


@pytest.fixture
def database(settings):
    db = Database(
        settings.database_url,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool
    )
    db.open()
    yield db
    db.close()


@pytest.fixture
def cache_manager(database, settings):
    return BookCacheManager(database, settings)


@pytest.fixture
def add_books(database):
    """Insert cached book rows aged by the given offsets from now."""
    def _add_books(ages, search_term="seed", prefix="book"):
        now = utcnow()
        rows = []
        for i, age in enumerate(ages):
            cached_at = now - age
            rows.append({
                "source_key": f"{prefix}-{i}",
                "title": f"{prefix} title {i}",
                "author": "Seed Author",
                "availability": "Available",
                "library": "Seed Library",
                "search_term": search_term,
                "cached_at": cached_at,
                "last_accessed": cached_at,
            })
        if rows:
            with database.session() as db:
                db.execute(insert(CachedBook), rows)
                db.commit()
        return rows
    return _add_books
