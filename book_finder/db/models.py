from sqlalchemy import Column, Integer, String, Text, TIMESTAMP, ForeignKey, Index
from sqlalchemy.orm import relationship
import datetime

from .session import Base

MAX_QUERY_LENGTH = 255


def utcnow() -> datetime.datetime:
    """Naive UTC timestamp, the format stored in every TIMESTAMP column."""
    return datetime.datetime.now(datetime.timezone.utc).replace(tzinfo=None)


class SearchQuery(Base):
    """
    SQLAlchemy model for the search_queries table.
    Durable popularity ledger: one row per normalized search term.
    Never removed by cache cleanup.
    """
    __tablename__ = 'search_queries'

    query_id = Column(Integer, primary_key=True)
    query = Column(String(MAX_QUERY_LENGTH), unique=True, nullable=False, index=True)
    search_count = Column(Integer, nullable=False, default=0)
    result_count = Column(Integer, nullable=False, default=0)
    first_searched = Column(TIMESTAMP, default=utcnow)
    last_searched = Column(TIMESTAMP, default=utcnow, index=True)

    # Books produced by this query that are still cached
    cached_books = relationship("CachedBook", back_populates="search_query")


class CachedBook(Base):
    """
    SQLAlchemy model for the cached_books table.
    Snapshot of one catalog search result.
    """
    __tablename__ = 'cached_books'
    __table_args__ = (
        Index('idx_cached_books_cached_at', 'cached_at'),
        Index('idx_cached_books_search_term', 'search_term'),
    )

    book_id = Column(Integer, primary_key=True)
    source_key = Column(String(64), unique=True, nullable=False)
    title = Column(Text, nullable=False)
    author = Column(String(255), nullable=False)
    availability = Column(String(255), nullable=False)
    library = Column(String(255), nullable=False)
    detail_url = Column(Text, nullable=True)
    doc_number = Column(String(32), nullable=True)
    search_term = Column(String(MAX_QUERY_LENGTH), nullable=False)
    source_url = Column(Text, nullable=True)
    region = Column(String(100), nullable=True)
    comuna = Column(String(100), nullable=True)
    search_query_id = Column(
        Integer,
        ForeignKey('search_queries.query_id', ondelete='SET NULL'),
        nullable=True
    )
    cached_at = Column(TIMESTAMP, nullable=False, default=utcnow)
    last_accessed = Column(TIMESTAMP, nullable=False, default=utcnow)

    # Relationship back to the producing query
    search_query = relationship("SearchQuery", back_populates="cached_books")
