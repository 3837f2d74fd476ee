"""Module for querying the public library catalog."""

import time
import logging
import re
import unicodedata
from typing import List, Optional
from urllib.parse import quote_plus

import requests
from bs4 import BeautifulSoup
from pydantic import BaseModel

from ..config import CacheSettings
from ..schemas import BookResult

logger = logging.getLogger(__name__)

REQUEST_HEADERS = {
    'User-Agent': 'Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36',
    'Accept': 'text/html,application/xhtml+xml,application/xml;q=0.9,image/webp,*/*;q=0.8',
    'Accept-Language': 'es-ES,es;q=0.9,en;q=0.8',
    'Connection': 'keep-alive',
    'Upgrade-Insecure-Requests': '1',
}
DOC_NUMBER_PATTERN = re.compile(r"doc_number=(\d+)")
DEFAULT_AUTHOR = "Unknown author"


class CatalogApiError(Exception):
    """Custom exception for catalog request failures."""
    pass


class RawCatalogRow(BaseModel):
    """One result row as found on the catalog page."""
    title: str
    author: str
    availability_href: Optional[str] = None


class CatalogSearchResult(BaseModel):
    books: List[BookResult]
    search_url: str
    total_rows: int
    response_time_ms: int


def build_search_url(term: str, settings: CacheSettings) -> str:
    """Return the catalog search URL for a term."""
    separator = '&' if '?' in settings.catalog_search_url else '?'
    return f"{settings.catalog_search_url}{separator}query={quote_plus(term.strip())}"


def fetch_catalog_page(url: str, settings: CacheSettings) -> str:
    """Fetch a catalog page with retry logic.

    Args:
        url: Catalog search URL
        settings: Timeout and retry settings

    Returns:
        The page HTML

    Raises:
        CatalogApiError: If every attempt fails
    """
    last_error = None
    for attempt in range(1, settings.catalog_max_retries + 1):
        if attempt > 1:
            logger.warning(
                f"Retrying catalog request. Attempt {attempt}/{settings.catalog_max_retries}. "
                f"Waiting {settings.catalog_retry_delay_seconds}s."
            )
            time.sleep(settings.catalog_retry_delay_seconds)
        try:
            logger.debug(f"Requesting catalog page {url} (attempt {attempt})")
            response = requests.get(
                url,
                headers=REQUEST_HEADERS,
                timeout=settings.catalog_timeout_seconds
            )
            if response.status_code == 200:
                return response.text
            last_error = f"HTTP {response.status_code}"
            logger.warning(f"Catalog returned status {response.status_code} for {url}")
        except requests.exceptions.RequestException as e:
            last_error = str(e)
            logger.warning(f"Catalog request failed: {e}")

    raise CatalogApiError(
        f"Failed to fetch catalog after {settings.catalog_max_retries} attempts: {last_error}"
    )


def parse_catalog_results(html: str) -> List[RawCatalogRow]:
    """Extract result rows from a catalog results page.

    Rows without a title element are skipped.
    """
    soup = BeautifulSoup(html, 'html.parser')
    rows = []
    for row in soup.select('.results .row'):
        title_element = row.select_one('.title-book')
        if title_element is None:
            continue
        author_element = row.select_one('.autor span:not(.label)')
        availability_link = row.select_one('a.availability[href*="doc_number"]')
        rows.append(RawCatalogRow(
            title=title_element.get_text(strip=True),
            author=(author_element.get_text(strip=True) if author_element else '') or DEFAULT_AUTHOR,
            availability_href=availability_link.get('href') if availability_link else None
        ))
    return rows


def normalize_text(text: str) -> str:
    """Lowercase, strip accents and punctuation, collapse whitespace."""
    decomposed = unicodedata.normalize('NFD', text.lower())
    without_accents = ''.join(c for c in decomposed if not unicodedata.combining(c))
    return ' '.join(re.sub(r'[^\w\s]', ' ', without_accents).split())


def matches_search_words(row: RawCatalogRow, term: str) -> bool:
    """True if any word of the term appears in the row's title or author."""
    words = [normalize_text(word) for word in term.split()]
    words = [word for word in words if word]
    if not words:
        return True
    title = normalize_text(row.title)
    author = normalize_text(row.author)
    return any(word in title or word in author for word in words)


def build_detail_url(href: Optional[str], settings: CacheSettings) -> Optional[str]:
    """Build the item detail URL for a catalog availability link."""
    if not href:
        return None
    match = DOC_NUMBER_PATTERN.search(href)
    if not match:
        return None
    doc_number = match.group(1).zfill(9)
    return (
        f"{settings.catalog_detail_url}?func=item-global&doc_library=SBP01"
        f"&doc_number={doc_number}&sub_library={settings.library_sub_library}"
    )


def search_catalog(term: str, settings: CacheSettings) -> CatalogSearchResult:
    """Search the external catalog and return matching books.

    Args:
        term: Search term as entered by the user
        settings: Catalog and library settings

    Returns:
        Filtered books (at most settings.max_results) and request details

    Raises:
        CatalogApiError: If the catalog cannot be fetched
    """
    search_url = build_search_url(term, settings)
    start = time.monotonic()
    html = fetch_catalog_page(search_url, settings)
    response_time_ms = int((time.monotonic() - start) * 1000)

    raw_rows = parse_catalog_results(html)
    books = []
    for row in raw_rows:
        if not row.title:
            continue
        if not matches_search_words(row, term):
            logger.debug(f"Skipping '{row.title}': no search word matched")
            continue
        books.append(BookResult(
            title=row.title,
            author=row.author,
            availability=f"Available at {settings.library_name}",
            library=settings.library_name,
            detail_url=build_detail_url(row.availability_href, settings)
        ))

    logger.info(
        f"Catalog search for '{term}': {len(raw_rows)} rows, {len(books)} matched, {response_time_ms}ms"
    )
    return CatalogSearchResult(
        books=books[:settings.max_results],
        search_url=search_url,
        total_rows=len(raw_rows),
        response_time_ms=response_time_ms
    )
