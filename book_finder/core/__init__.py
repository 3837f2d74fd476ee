"""Core module for the Library Book Finder application."""

from .cache_manager import BookCacheManager, CacheError, CacheUnavailableError
from .catalog_api import CatalogApiError, search_catalog

__all__ = [
    'BookCacheManager',
    'CacheError',
    'CacheUnavailableError',
    'CatalogApiError',
    'search_catalog'
]
